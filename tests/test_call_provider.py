# tests/test_call_provider.py
import pytest
import requests
from twilio.base.exceptions import TwilioRestException

from app.config import Settings
from app.errors import ProviderError
from app.services.call_provider import (
    BlandCallProvider,
    UnconfiguredCallProvider,
    build_call_provider,
)
from app.services.twilio_client import TwilioClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


def _bland(session):
    return BlandCallProvider(
        api_key="sk-test",
        base_url="https://bland.example/v1/",
        task="Ask about funding",
        voicemail_message="We'll try again",
        timeout=7,
        session=session,
    )


def test_bland_place_call_sends_task_and_returns_call_id():
    session = FakeSession(FakeResponse(payload={"status": "success", "call_id": "c1"}))

    handle = _bland(session).place_call("+15550001")

    assert handle.call_id == "c1"
    method, url, kwargs = session.requests[0]
    assert method == "POST"
    assert url == "https://bland.example/v1/calls"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["timeout"] == 7
    body = kwargs["json"]
    assert body["phone_number"] == "+15550001"
    assert body["task"] == "Ask about funding"
    assert body["answered_by_enabled"] is True
    assert body["voicemail_action"] == "leave_message"


def test_bland_place_call_rejected():
    session = FakeSession(FakeResponse(status_code=400, text="invalid phone number"))
    with pytest.raises(ProviderError) as exc:
        _bland(session).place_call("nope")
    assert "invalid phone number" in str(exc.value)


def test_bland_timeout_is_provider_error():
    session = FakeSession(exc=requests.Timeout("read timed out"))
    with pytest.raises(ProviderError):
        _bland(session).get_call_status("c1")


def test_bland_get_call_status_maps_fields():
    session = FakeSession(
        FakeResponse(
            payload={
                "call_id": "c1",
                "completed": True,
                "answered_by": "human",
                "concatenated_transcript": "agent: hi user: hello",
                "call_length": 1.5,
                "status": "completed",
            }
        )
    )

    status = _bland(session).get_call_status("c1")

    assert session.requests[0][1] == "https://bland.example/v1/calls/c1"
    assert status.completed is True
    assert status.answered_by == "human"
    assert status.concatenated_transcript == "agent: hi user: hello"
    assert status.duration_seconds == 90
    assert status.error_message is None


def test_bland_non_json_body():
    session = FakeSession(FakeResponse(payload=None))
    with pytest.raises(ProviderError):
        _bland(session).get_call_status("c1")


def test_missing_credentials_give_unconfigured_provider():
    provider = build_call_provider(Settings(BLAND_API_KEY=None, CALL_PROVIDER="bland"))
    assert isinstance(provider, UnconfiguredCallProvider)
    with pytest.raises(ProviderError) as exc:
        provider.place_call("+1")
    assert "BLAND_API_KEY" in str(exc.value)

    twilio = build_call_provider(Settings(CALL_PROVIDER="twilio", TWILIO_ACCOUNT_SID=None))
    assert isinstance(twilio, UnconfiguredCallProvider)
    assert "TWILIO_ACCOUNT_SID" in twilio.reason


# ---------- Twilio ----------


class FakeTwilioCall:
    def __init__(self, sid="CA_TEST", status="queued", answered_by=None, duration=None):
        self.sid = sid
        self.status = status
        self.answered_by = answered_by
        self.duration = duration


class FakeCallContext:
    def __init__(self, call):
        self._call = call

    def fetch(self):
        return self._call


class FakeCalls:
    def __init__(self, call=None, exc=None):
        self._call = call or FakeTwilioCall()
        self._exc = exc
        self.created = []

    def create(self, **kwargs):
        if self._exc is not None:
            raise self._exc
        self.created.append(kwargs)
        return self._call

    def __call__(self, sid):
        if self._exc is not None:
            raise self._exc
        return FakeCallContext(self._call)


class FakeTwilioSDK:
    def __init__(self, calls):
        self.calls = calls


def _twilio(calls):
    client = TwilioClient(
        account_sid="AC_TEST",
        auth_token="token",
        from_number="+15550000",
        voice_url="https://example.com/voice",
        timeout=5,
    )
    client._client = FakeTwilioSDK(calls)
    return client


def test_twilio_place_call():
    calls = FakeCalls(FakeTwilioCall(sid="CA_FAKE"))
    handle = _twilio(calls).place_call("+15550001")

    assert handle.call_id == "CA_FAKE"
    assert calls.created == [
        {"to": "+15550001", "from_": "+15550000", "url": "https://example.com/voice"}
    ]


def test_twilio_rest_error_is_provider_error():
    calls = FakeCalls(exc=TwilioRestException(400, "/Calls", msg="Invalid 'To' number"))
    with pytest.raises(ProviderError):
        _twilio(calls).place_call("bad")


@pytest.mark.parametrize(
    "twilio_status, completed, answered_by, status",
    [
        ("queued", False, None, "queued"),
        ("in-progress", False, None, "in-progress"),
        ("completed", True, "human", "completed"),
        ("no-answer", True, "no-answer", "no-answer"),
        ("busy", True, "no-answer", "busy"),
        ("failed", False, None, "failed"),
    ],
)
def test_twilio_status_mapping(twilio_status, completed, answered_by, status):
    call = FakeTwilioCall(status=twilio_status, answered_by="human", duration="42")
    result = _twilio(FakeCalls(call)).get_call_status("CA_TEST")

    assert result.completed is completed
    assert result.status == status
    if completed:
        assert result.answered_by == answered_by
        assert result.duration_seconds == 42
