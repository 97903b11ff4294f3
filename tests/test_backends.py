import json
import logging
import socket

import pytest
import requests

from ride_anomaly.analyzer_client import (
    AzureOpenAIBackend,
    OllamaBackend,
    build_backend,
    create_default_session,
)
from ride_anomaly.analyzer_client.response_handling import (
    extract_error,
    looks_like_quota_error,
)
from ride_anomaly.errors import (
    AnalyzerError,
    AnalyzerQuotaError,
    AnalyzerResponseError,
    AnalyzerTimeoutError,
    AnalyzerTransportError,
)


class FakeResp:
    """Minimal fake response matching needed parts of requests.Response."""

    def __init__(self, status_code=200, data=None, headers=None, text=None):
        self.status_code = status_code
        self._data = data
        self.headers = headers or {}
        self._text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data

    @property
    def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._data)

    def raise_for_status(self):
        if 400 <= self.status_code:
            raise requests.exceptions.HTTPError(response=self)


def _session(fake_post):
    return type("S", (), {"post": staticmethod(fake_post)})()


def test_ollama_request_shape_and_text():
    calls = []

    def fake_post(url, json=None, headers=None, params=None, timeout=None):
        calls.append({"url": url, "json": json, "params": params, "timeout": timeout})
        return FakeResp(200, {"model": "llama2", "response": '{"anomalies": []}'})

    backend = OllamaBackend(
        endpoint="http://ollama:11434/",
        model="llama2",
        session=_session(fake_post),
        timeout=7,
        max_tokens=256,
        temperature=0.1,
    )
    assert backend.is_configured()
    assert backend.analyze("prompt text") == '{"anomalies": []}'

    call = calls[0]
    assert call["url"] == "http://ollama:11434/api/generate"
    assert call["timeout"] == 7
    assert call["json"] == {
        "model": "llama2",
        "prompt": "prompt text",
        "stream": False,
        "options": {"temperature": 0.1, "num_predict": 256},
    }


def test_ollama_missing_response_field():
    backend = OllamaBackend(
        session=_session(lambda *a, **k: FakeResp(200, {"done": True}))
    )
    with pytest.raises(AnalyzerResponseError):
        backend.analyze("p")


def test_azure_request_shape_and_text():
    calls = []

    def fake_post(url, json=None, headers=None, params=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "params": params})
        return FakeResp(200, {"choices": [{"message": {"role": "assistant", "content": "[]"}}]})

    backend = AzureOpenAIBackend(
        endpoint="https://example.openai.azure.com",
        deployment="gpt-4o",
        api_version="2024-02-15-preview",
        api_key="secret-key-1234",
        session=_session(fake_post),
        max_tokens=500,
        temperature=0.3,
    )
    assert backend.analyze("hello") == "[]"

    call = calls[0]
    assert call["url"] == "https://example.openai.azure.com/openai/deployments/gpt-4o/chat/completions"
    assert call["params"] == {"api-version": "2024-02-15-preview"}
    assert call["headers"] == {"api-key": "secret-key-1234"}
    assert call["json"] == {
        "max_tokens": 500,
        "temperature": 0.3,
        "messages": [{"role": "user", "content": "hello"}],
    }


def test_azure_key_is_masked_in_logs(caplog):
    backend = AzureOpenAIBackend(
        endpoint="https://example.openai.azure.com",
        deployment="gpt-4o",
        api_key="secret-key-1234",
        session=_session(
            lambda *a, **k: FakeResp(200, {"choices": [{"message": {"content": "[]"}}]})
        ),
    )
    with caplog.at_level(logging.INFO):
        backend.analyze("hello")
    assert "secret-key-1234" not in caplog.text
    assert "****1234" in caplog.text


def test_azure_without_key_is_not_configured():
    backend = AzureOpenAIBackend(api_key="", session=_session(lambda *a, **k: None))
    assert not backend.is_configured()
    with pytest.raises(AnalyzerError):
        backend.analyze("p")


def test_azure_empty_choices_is_response_error():
    backend = AzureOpenAIBackend(
        api_key="k", session=_session(lambda *a, **k: FakeResp(200, {"choices": []}))
    )
    with pytest.raises(AnalyzerResponseError):
        backend.analyze("p")


def test_http_429_is_quota_error():
    resp = FakeResp(429, {"error": {"code": "429", "message": "Rate limit is exceeded"}})
    backend = OllamaBackend(session=_session(lambda *a, **k: resp))
    with pytest.raises(AnalyzerQuotaError) as excinfo:
        backend.analyze("p")
    assert "Rate limit is exceeded" in str(excinfo.value)


def test_quota_text_on_other_status_is_quota_error():
    resp = FakeResp(403, {"error": "You exceeded your current quota"})
    backend = OllamaBackend(session=_session(lambda *a, **k: resp))
    with pytest.raises(AnalyzerQuotaError):
        backend.analyze("p")


def test_server_error_is_transport_error():
    resp = FakeResp(500, text="<html>Internal Server Error</html>")
    backend = OllamaBackend(session=_session(lambda *a, **k: resp))
    with pytest.raises(AnalyzerTransportError) as excinfo:
        backend.analyze("p")
    assert not isinstance(excinfo.value, AnalyzerQuotaError)
    assert "status 500" in str(excinfo.value)


def test_timeout_maps_to_timeout_error():
    def fake_post(*args, **kwargs):
        raise requests.Timeout("read timed out")

    backend = OllamaBackend(session=_session(fake_post), timeout=15)
    with pytest.raises(AnalyzerTimeoutError):
        backend.analyze("p")


def test_connection_error_maps_to_transport_error():
    def fake_post(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    backend = OllamaBackend(session=_session(fake_post))
    with pytest.raises(AnalyzerTransportError):
        backend.analyze("p")


def test_non_object_body_is_response_error():
    backend = OllamaBackend(session=_session(lambda *a, **k: FakeResp(200, ["x"])))
    with pytest.raises(AnalyzerResponseError):
        backend.analyze("p")


@pytest.mark.parametrize(
    "text, status, expected",
    [
        (None, 429, True),
        ("Too Many Requests", None, True),
        ("insufficient_quota", 400, True),
        ("HTTP 429 from upstream", None, True),
        ("upstream 127.0.0.1:14290 unavailable", 503, False),
        ("model not found", 404, False),
        ("", None, False),
    ],
)
def test_looks_like_quota_error(text, status, expected):
    assert looks_like_quota_error(text, status) is expected


def test_extract_error_combines_fields():
    resp = FakeResp(400, {"error": {"message": "bad prompt", "code": "invalid"}, "message": "x"})
    assert extract_error(resp) == "bad prompt | invalid | x"
    assert extract_error(FakeResp(502, text="   ")) is None


@pytest.mark.parametrize(
    "provider, expected",
    [("ollama", OllamaBackend), ("azure_openai", AzureOpenAIBackend), ("AZURE", AzureOpenAIBackend)],
)
def test_build_backend(provider, expected):
    assert isinstance(build_backend(provider), expected)


def test_build_backend_unknown_provider():
    with pytest.raises(ValueError):
        build_backend("carrier-pigeon")


def test_default_session_has_no_retries_for_429():
    session = create_default_session(max_retries=2)
    adapter = session.get_adapter("https://example.com")
    assert adapter.max_retries.total == 2
    assert 429 not in adapter.max_retries.status_forcelist
    assert session.headers["Content-Type"] == "application/json"


def test_connection_error_naming_429_port_is_not_quota():
    def fake_post(*args, **kwargs):
        raise requests.ConnectionError(
            "HTTPConnectionPool(host='127.0.0.1', port=14290): Max retries exceeded"
        )

    backend = OllamaBackend(endpoint="http://127.0.0.1:14290", session=_session(fake_post))
    with pytest.raises(AnalyzerTransportError) as excinfo:
        backend.analyze("p")
    assert not isinstance(excinfo.value, AnalyzerQuotaError)


def test_default_session_does_not_resend_after_read_errors():
    session = create_default_session(max_retries=3)
    retry = session.get_adapter("http://localhost").max_retries
    assert retry.read is False


@pytest.fixture
def silent_server():
    """Listening socket that accepts connections and never answers."""

    server = socket.create_server(("127.0.0.1", 0))
    try:
        yield f"http://127.0.0.1:{server.getsockname()[1]}"
    finally:
        server.close()


def test_read_timeout_through_real_session_is_timeout_error(silent_server):
    backend = OllamaBackend(
        endpoint=silent_server,
        session=create_default_session(max_retries=2),
        timeout=0.5,
    )
    with pytest.raises(AnalyzerTimeoutError):
        backend.analyze("p")
