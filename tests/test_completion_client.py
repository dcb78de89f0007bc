import pytest
import requests

from catmatch.completion_client import CLASSIFICATION_PARAMS, CompletionClient
from catmatch.errors import ConfigError, ErrorKind
from catmatch.models import CompletionParams, CompletionRequest

from conftest import FakeResponse


class _Session:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _ok(content):
    return FakeResponse(200, {"choices": [{"message": {"role": "assistant", "content": content}}]})


def test_empty_api_key_is_config_error():
    with pytest.raises(ConfigError):
        CompletionClient("  ")


def test_complete_returns_trimmed_text_and_sends_payload():
    session = _Session(_ok("  Kitchen \n"))
    client = CompletionClient("sk-test", base_url="http://llm.local/v1/", model="m1", session=session)
    result = client.complete("pick one", CLASSIFICATION_PARAMS, timeout=12)

    assert result.ok
    assert result.text == "Kitchen"
    url, kwargs = session.calls[0]
    assert url == "http://llm.local/v1/chat/completions"
    assert kwargs["timeout"] == 12
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["json"] == {
        "model": "m1",
        "temperature": 0.3,
        "messages": [{"role": "user", "content": "pick one"}],
        "max_tokens": 100,
    }


def test_build_payload_omits_unset_max_tokens():
    client = CompletionClient("sk-test", session=_Session())
    payload = client.build_payload(CompletionRequest("p", CompletionParams(temperature=0.1)))
    assert "max_tokens" not in payload
    assert payload["temperature"] == 0.1


def test_transport_failure_is_an_err_value():
    session = _Session(error=requests.ConnectTimeout("timed out"))
    result = CompletionClient("sk-test", session=session).complete("p")
    assert not result.ok
    assert result.kind == ErrorKind.TRANSPORT
    assert "timed out" in result.message


def test_error_envelope_message_is_surfaced():
    session = _Session(FakeResponse(429, {"error": {"message": "Rate limit reached", "type": "requests"}}))
    result = CompletionClient("sk-test", session=session).complete("p")
    assert not result.ok
    assert result.kind == ErrorKind.UPSTREAM
    assert result.message == "Rate limit reached"


def test_non_2xx_without_envelope():
    session = _Session(FakeResponse(503, text="<html>busy</html>"))
    result = CompletionClient("sk-test", session=session).complete("p")
    assert not result.ok
    assert "HTTP 503" in result.message


@pytest.mark.parametrize(
    "payload",
    [
        {"choices": []},
        {"choices": [{"message": {}}]},
        {"choices": [{"message": {"content": None}}]},
        {"unexpected": True},
    ],
)
def test_missing_content_is_upstream_error(payload):
    result = CompletionClient("sk-test", session=_Session(FakeResponse(200, payload))).complete("p")
    assert not result.ok
    assert result.kind == ErrorKind.UPSTREAM


def test_from_config_reads_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
    client = CompletionClient.from_config(session=_Session())
    assert client.model == "gpt-test"
    assert client.headers["Authorization"] == "Bearer sk-env"
