import json
import logging
from types import SimpleNamespace

import httpx
import pytest

from chat_core.domain.exceptions import (
    ConfigurationError,
    NetworkError,
    ProviderError,
    RateLimitError,
    StreamStateError,
    ValidationError,
)
from chat_core.domain.models import HistoryItem, Role, WholeResponse
from chat_core.providers.relay_client import HttpByteStream, RelayClient


LOGGER = logging.getLogger("chat_core.tests.relay")
HISTORY = [HistoryItem(role=Role.USER, content="Hello")]


def _settings(**overrides):
    values = {"relay_url": "https://relay.example.co/functions/v1/chat", "relay_anon_key": "anon", "http_timeout": 5}
    values.update(overrides)
    return SimpleNamespace(**values)


class FakeResponse:
    def __init__(self, status_code=200, content_type="text/event-stream", body=b"", chunks=None, error=None):
        self.status_code = status_code
        self.headers = {"content-type": content_type}
        self._body = body
        self._chunks = chunks or []
        self._error = error
        self.closed = False

    def read(self):
        return self._body

    @property
    def text(self):
        return self._body.decode("utf-8")

    def json(self):
        return json.loads(self.text)

    def iter_bytes(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    def close(self):
        self.closed = True


def _patch_client(monkeypatch, response=None, send_error=None):
    state = {"clients": [], "requests": []}

    class Client:
        def __init__(self, timeout=None, trust_env=True):
            self.timeout = timeout
            self.closed = False
            state["clients"].append(self)

        def build_request(self, method, url, json=None, headers=None):
            req = {"method": method, "url": url, "json": json, "headers": headers}
            state["requests"].append(req)
            return req

        def send(self, request, stream=False):
            assert stream is True
            if send_error is not None:
                raise send_error
            return response

        def close(self):
            self.closed = True

    monkeypatch.setattr("httpx.Client", Client)
    return state


def test_stream_request_payload_and_headers(monkeypatch):
    response = FakeResponse(chunks=[b"data: [DONE]\n"])
    state = _patch_client(monkeypatch, response)
    result = RelayClient(_settings(), logger=LOGGER).request(HISTORY, "GPT-4o-mini", "user-token")

    assert isinstance(result, HttpByteStream)
    req = state["requests"][0]
    assert req["method"] == "POST"
    assert req["json"] == {"messages": [{"role": "user", "content": "Hello"}], "model": "gpt-4o-mini", "stream": True}
    assert req["headers"]["Authorization"] == "Bearer user-token"
    assert req["headers"]["Accept"] == "text/event-stream"
    assert req["headers"]["apikey"] == "anon"
    assert state["clients"][0].closed is False
    assert list(result) == [b"data: [DONE]\n"]
    result.close()
    assert response.closed
    assert state["clients"][0].closed


def test_whole_json_response(monkeypatch):
    body = json.dumps({"content": "Hi there"}).encode("utf-8")
    response = FakeResponse(content_type="application/json", body=body)
    state = _patch_client(monkeypatch, response)
    result = RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o", "t", stream=False)

    assert result == WholeResponse(content="Hi there")
    assert state["requests"][0]["json"]["stream"] is False
    assert response.closed
    assert state["clients"][0].closed


def test_whole_json_response_choices_shape(monkeypatch):
    body = json.dumps({"choices": [{"message": {"role": "assistant", "content": "Hey"}}]}).encode("utf-8")
    _patch_client(monkeypatch, FakeResponse(content_type="application/json; charset=utf-8", body=body))
    result = RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o", "t", stream=False)
    assert result.content == "Hey"


def test_whole_json_response_without_content(monkeypatch):
    _patch_client(monkeypatch, FakeResponse(content_type="application/json", body=b'{"foo": 1}'))
    with pytest.raises(ProviderError) as exc_info:
        RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o", "t", stream=False)
    assert exc_info.value.code == "INVALID_RESPONSE"


def test_non_2xx_is_provider_error_with_raw_body(monkeypatch):
    response = FakeResponse(status_code=503, content_type="application/json", body=b'{"error": "upstream down"}')
    state = _patch_client(monkeypatch, response)
    with pytest.raises(ProviderError) as exc_info:
        RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o-mini", "t")
    err = exc_info.value
    assert err.status == 503
    assert err.raw_body == '{"error": "upstream down"}'
    assert "upstream down" in err.message
    assert response.closed
    assert state["clients"][0].closed


def test_rate_limit(monkeypatch):
    _patch_client(monkeypatch, FakeResponse(status_code=429, body=b"slow down"))
    with pytest.raises(RateLimitError) as exc_info:
        RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o-mini", "t")
    assert exc_info.value.status == 429


def test_upstream_not_configured_is_configuration_error(monkeypatch):
    body = b'{"error": {"message": "OpenAI API key not configured"}}'
    _patch_client(monkeypatch, FakeResponse(status_code=500, content_type="application/json", body=body))
    with pytest.raises(ConfigurationError) as exc_info:
        RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o-mini", "t")
    assert exc_info.value.code == "UPSTREAM_NOT_CONFIGURED"


def test_missing_token_fails_before_any_connection(monkeypatch):
    state = _patch_client(monkeypatch, FakeResponse())
    with pytest.raises(ConfigurationError):
        RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o-mini", None)
    assert state["clients"] == []


def test_missing_relay_url(monkeypatch):
    state = _patch_client(monkeypatch, FakeResponse())
    with pytest.raises(ConfigurationError) as exc_info:
        RelayClient(_settings(relay_url=None), logger=LOGGER).request(HISTORY, "gpt-4o-mini", "t")
    assert exc_info.value.code == "MISSING_RELAY_URL"
    assert state["clients"] == []


def test_unknown_model(monkeypatch):
    _patch_client(monkeypatch, FakeResponse())
    with pytest.raises(ValidationError):
        RelayClient(_settings(), logger=LOGGER).request(HISTORY, "no-such-model", "t")


def test_connect_error_is_network_error(monkeypatch):
    state = _patch_client(monkeypatch, send_error=httpx.ConnectError("connection refused"))
    with pytest.raises(NetworkError) as exc_info:
        RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o-mini", "t")
    assert exc_info.value.code == "NETWORK_ERROR"
    assert state["clients"][0].closed


def test_byte_stream_single_reader_and_read_errors():
    response = FakeResponse(chunks=[b"data: a\n", b""], error=httpx.ReadError("reset"))
    client = SimpleNamespace(closed=False)
    client.close = lambda: setattr(client, "closed", True)
    stream = HttpByteStream(response, client)

    chunks = iter(stream)
    assert next(chunks) == b"data: a\n"
    with pytest.raises(NetworkError):
        next(chunks)
    with pytest.raises(StreamStateError):
        iter(stream)

    stream.close()
    stream.close()
    assert response.closed
    assert client.closed


def test_redirect_is_provider_error_not_stream(monkeypatch):
    response = FakeResponse(status_code=302, content_type="text/html", body=b"<html>moved</html>")
    state = _patch_client(monkeypatch, response)
    with pytest.raises(ProviderError) as exc_info:
        RelayClient(_settings(), logger=LOGGER).request(HISTORY, "gpt-4o-mini", "t")
    assert exc_info.value.status == 302
    assert exc_info.value.raw_body == "<html>moved</html>"
    assert response.closed
    assert state["clients"][0].closed
