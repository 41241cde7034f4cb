# app/services/call_provider.py
from typing import Any, Dict, Optional, Protocol

import requests

from app.config import Settings, get_settings
from app.errors import ProviderError
from app.schemas.batch import CallHandle, CallStatus


class CallProvider(Protocol):
    """
    What the orchestrator needs from a telephony provider.

    - place_call: raise ProviderError if no call was placed.
    - get_call_status: raise ProviderError if the status is unknown right now.
    """

    def place_call(self, phone: str) -> CallHandle: ...

    def get_call_status(self, call_id: str) -> CallStatus: ...


class BlandCallProvider:
    """
    Bland AI REST client (bearer-token authenticated).

    Uses a plain `requests.Session` so tests can swap the session for a fake.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        task: str,
        voicemail_message: str,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._task = task
        self._voicemail_message = voicemail_message
        self._timeout = timeout
        self._session = session or requests.Session()
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def place_call(self, phone: str) -> CallHandle:
        payload = {
            "phone_number": phone,
            "task": self._task,
            "temperature": 0.7,
            "record": True,
            "voicemail_action": "leave_message",
            "voicemail_message": self._voicemail_message,
            "answered_by_enabled": True,
            "metadata": {"source": "lead_upload"},
        }
        data = self._request("POST", "/calls", json=payload)

        call_id = data.get("call_id")
        if not call_id:
            raise ProviderError(f"Failed to call {phone}: response had no call_id")
        return CallHandle(call_id=call_id)

    def get_call_status(self, call_id: str) -> CallStatus:
        data = self._request("GET", f"/calls/{call_id}")

        # Bland reports call_length in minutes
        call_length = data.get("call_length")
        duration = float(call_length) * 60 if call_length is not None else None

        return CallStatus(
            completed=bool(data.get("completed")),
            answered_by=data.get("answered_by"),
            transcript=data.get("transcript"),
            concatenated_transcript=data.get("concatenated_transcript"),
            summary=data.get("summary"),
            duration_seconds=duration,
            status=data.get("status"),
            error_message=data.get("error_message"),
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.request(
                method, url, headers=self._headers, timeout=self._timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ProviderError(f"Call provider unreachable: {e}") from e

        if not resp.ok:
            raise ProviderError(
                f"Call provider error {resp.status_code} on {method} {path}: {resp.text}"
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(f"Call provider returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ProviderError("Call provider returned an unexpected payload")
        return data


class UnconfiguredCallProvider:
    """
    Stands in when credentials are missing, so read-only endpoints keep
    working. Every dial or status check fails with the configuration error.
    """

    def __init__(self, reason: str):
        self.reason = reason

    def place_call(self, phone: str) -> CallHandle:
        raise ProviderError(self.reason)

    def get_call_status(self, call_id: str) -> CallStatus:
        raise ProviderError(self.reason)


def build_call_provider(settings: Settings) -> CallProvider:
    if settings.CALL_PROVIDER == "twilio":
        # Imported lazily so the Twilio SDK is only loaded when selected
        from app.services.twilio_client import build_twilio_client

        try:
            return build_twilio_client(settings)
        except ProviderError as e:
            return UnconfiguredCallProvider(str(e))

    if not settings.BLAND_API_KEY:
        return UnconfiguredCallProvider("Bland AI not configured, missing: BLAND_API_KEY")

    return BlandCallProvider(
        api_key=settings.BLAND_API_KEY,
        base_url=settings.BLAND_API_URL,
        task=settings.BLAND_CALL_TASK,
        voicemail_message=settings.BLAND_VOICEMAIL_MESSAGE,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )


def get_call_provider() -> CallProvider:
    """
    FastAPI dependency to get the configured CallProvider.
    """
    return build_call_provider(get_settings())
