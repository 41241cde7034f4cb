# tests/test_qualification_service.py
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from app.errors import QualificationError
from app.services.qualification_service import QualificationClient


class FakeCompletions:
    def __init__(self, content=None, exc=None):
        self.content = content
        self.exc = exc
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(completions):
    fake_openai = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return QualificationClient(api_key=None, model="gpt-4o-mini", client=fake_openai)


def test_qualify_parses_structured_output():
    completions = FakeCompletions(
        json.dumps({"score": 4, "summary": "Wants a credit line", "transcript": "A: hi\nB: hello"})
    )

    result = _client(completions).qualify("agent: hi user: hello")

    assert result.score == 4
    assert result.summary == "Wants a credit line"
    assert result.transcript == "A: hi\nB: hello"

    request = completions.calls[0]
    assert request["model"] == "gpt-4o-mini"
    assert request["response_format"]["type"] == "json_schema"
    assert request["response_format"]["json_schema"]["strict"] is True
    assert "agent: hi user: hello" in request["messages"][1]["content"]


@pytest.mark.parametrize(
    "content",
    [
        None,
        "",
        "not json at all",
        json.dumps({"score": 9, "summary": "x", "transcript": "y"}),
        json.dumps({"score": 0, "summary": "x", "transcript": "y"}),
        json.dumps({"summary": "missing score", "transcript": "y"}),
        json.dumps({"score": 3, "summary": "x", "transcript": "y", "extra": 1}),
        json.dumps([1, 2, 3]),
    ],
)
def test_malformed_output_is_qualification_error(content):
    with pytest.raises(QualificationError):
        _client(FakeCompletions(content)).qualify("t")


def test_transport_failure_is_qualification_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    completions = FakeCompletions(exc=openai.APITimeoutError(request=request))

    with pytest.raises(QualificationError):
        _client(completions).qualify("t")


def test_missing_api_key_never_guesses_a_score():
    client = QualificationClient(api_key=None)
    with pytest.raises(QualificationError) as exc:
        client.qualify("t")
    assert "OPENAI_API_KEY" in str(exc.value)
