import asyncio
import json

import pytest

from chatgate.engines.base import (
    EngineForbiddenError,
    EngineModelNotFoundError,
    EngineRateLimitError,
    EngineUnauthorizedError,
)
from chatgate.engines.openai_compat import OpenAICompatibleEngine
from chatgate.schemas.chat import ChatCompletionRequest


class _FakeResponse:
    def __init__(
        self,
        data=None,
        raise_error: Exception | None = None,
        status_code: int = 200,
        headers=None,
    ):
        self._data = data or {}
        self._raise_error = raise_error
        self.status_code = status_code
        self.headers = headers or {}

    def raise_for_status(self):
        if self._raise_error:
            raise self._raise_error

    def json(self):
        return self._data


class _FakeAsyncStreamContext:
    def __init__(self, lines, status_code: int = 200, body: bytes = b""):
        self._lines = lines
        self._body = body
        self.status_code = status_code
        self.headers = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        pass

    async def aread(self):
        return self._body

    async def aiter_lines(self):
        for line in self._lines:
            await asyncio.sleep(0)
            yield line


class _FakeAsyncClient:
    def __init__(self, base_url=None, timeout=None, **kwargs):
        self.base_url = base_url
        self.timeout = timeout
        self._next_response: _FakeResponse | None = None
        self._stream: _FakeAsyncStreamContext | None = None
        self.last_headers = {}
        self.last_json = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, path, headers=None, json=None):
        self.last_headers = headers or {}
        self.last_json = json
        return self._next_response or _FakeResponse({})

    def stream(self, method, path, headers=None, json=None):
        self.last_headers = headers or {}
        self.last_json = json
        return self._stream or _FakeAsyncStreamContext([])


def make_request(**fields) -> ChatCompletionRequest:
    body = {
        "messages": [
            {"role": "system", "content": "be brief"},
            {"role": "user", "content": "hello"},
        ]
    }
    body.update(fields)
    return ChatCompletionRequest.model_validate(body)


@pytest.fixture
def fake_client(monkeypatch):
    client = _FakeAsyncClient()

    def _client_factory(base_url=None, timeout=None, **kwargs):
        client.base_url = base_url
        client.timeout = timeout
        return client

    monkeypatch.setattr(
        "chatgate.engines.openai_compat.httpx.AsyncClient", _client_factory
    )
    return client


@pytest.mark.asyncio
async def test_generate_maps_response(monkeypatch, fake_client):
    fake_client._next_response = _FakeResponse(
        {
            "id": "abc123",
            "object": "chat.completion",
            "created": 123,
            "model": "llama3",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": "hi"},
                    "finish_reason": "length",
                }
            ],
            "usage": {"prompt_tokens": 4, "completion_tokens": 1, "total_tokens": 5},
        }
    )
    monkeypatch.setenv("OPENAI_COMPAT_API_KEY", "env-key")

    engine = OpenAICompatibleEngine()
    resp = await engine.generate(make_request(), authorization="Bearer inbound")

    assert resp.id == "abc123"
    assert resp.created == 123
    assert resp.model == "llama3"
    assert resp.choices[0].message.content == "hi"
    assert resp.choices[0].finish_reason == "length"
    assert resp.usage.total_tokens == 5
    # inbound auth wins over the env key
    assert fake_client.last_headers.get("Authorization") == "Bearer inbound"


@pytest.mark.asyncio
async def test_generate_payload(monkeypatch, fake_client):
    monkeypatch.setenv("OPENAI_COMPAT_MODEL", "llama3:8b")
    engine = OpenAICompatibleEngine()
    await engine.generate(
        make_request(max_gen_len=16, temperature=0.2, stop="###", n=2), authorization=None
    )
    payload = fake_client.last_json
    assert payload["model"] == "llama3:8b"
    assert payload["stream"] is False
    assert payload["max_tokens"] == 16
    assert "max_gen_len" not in payload
    assert payload["temperature"] == 0.2
    assert payload["stop"] == "###"
    assert payload["n"] == 2
    assert "top_p" not in payload
    assert payload["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hello"},
    ]


@pytest.mark.asyncio
async def test_generate_defaults_when_fields_missing(fake_client):
    fake_client._next_response = _FakeResponse({"choices": []})
    engine = OpenAICompatibleEngine()
    resp = await engine.generate(make_request(), authorization="x")
    assert len(resp.choices) == 1
    assert resp.choices[0].message.role == "assistant"
    assert resp.choices[0].finish_reason == "stop"
    assert resp.model == engine.model
    assert resp.id.startswith("chatcmpl-")
    assert resp.usage is None


@pytest.mark.asyncio
async def test_upstream_abort_is_not_passed_through(fake_client):
    fake_client._next_response = _FakeResponse(
        {"choices": [{"message": {"content": "x"}, "finish_reason": "abort"}]}
    )
    resp = await OpenAICompatibleEngine().generate(make_request())
    assert resp.choices[0].finish_reason == "stop"


@pytest.mark.asyncio
async def test_upstream_abort_in_stream_becomes_stop(fake_client):
    fake_client._stream = _FakeAsyncStreamContext(
        ['data: {"choices":[{"delta":{},"finish_reason":"abort"}]}', "data: [DONE]"]
    )
    chunks = [
        c
        async for c in OpenAICompatibleEngine().generate_stream(
            make_request(stream=True)
        )
    ]
    assert [c.choices[0].finish_reason for c in chunks] == ["stop"]


@pytest.mark.asyncio
async def test_unknown_finish_reason_becomes_stop(fake_client):
    fake_client._next_response = _FakeResponse(
        {"choices": [{"message": {"content": ""}, "finish_reason": "content_filter"}]}
    )
    resp = await OpenAICompatibleEngine().generate(make_request())
    assert resp.choices[0].finish_reason == "stop"


@pytest.mark.asyncio
async def test_headers_use_env_key_when_no_inbound(monkeypatch, fake_client):
    monkeypatch.setenv("OPENAI_COMPAT_API_KEY", "sekret")
    await OpenAICompatibleEngine().generate(make_request(), authorization="")
    assert fake_client.last_headers.get("Authorization") == "Bearer sekret"


@pytest.mark.asyncio
async def test_headers_omit_auth_when_unconfigured(monkeypatch, fake_client):
    monkeypatch.delenv("OPENAI_COMPAT_API_KEY", raising=False)
    await OpenAICompatibleEngine().generate(make_request(), authorization=None)
    assert "Authorization" not in fake_client.last_headers


@pytest.mark.asyncio
async def test_generate_raises_http_error(fake_client):
    class _HTTPError(Exception):
        pass

    fake_client._next_response = _FakeResponse({}, raise_error=_HTTPError("boom"))
    with pytest.raises(_HTTPError):
        await OpenAICompatibleEngine().generate(make_request(), authorization="x")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, error_cls",
    [
        (401, EngineUnauthorizedError),
        (403, EngineForbiddenError),
        (429, EngineRateLimitError),
    ],
)
async def test_generate_maps_status_errors(fake_client, status_code, error_cls):
    fake_client._next_response = _FakeResponse(
        {"error": {"message": "nope"}},
        status_code=status_code,
        headers={"Retry-After": "7"},
    )
    with pytest.raises(error_cls) as excinfo:
        await OpenAICompatibleEngine().generate(make_request())
    assert str(excinfo.value) == "nope"
    if status_code == 429:
        assert excinfo.value.retry_after_seconds == 7


@pytest.mark.asyncio
async def test_generate_maps_unknown_model(monkeypatch, fake_client):
    monkeypatch.setenv("OPENAI_COMPAT_MODEL", "missing-model")
    fake_client._next_response = _FakeResponse(
        {"error": 'model "missing-model" not found, try pulling it first'},
        status_code=404,
    )
    with pytest.raises(EngineModelNotFoundError):
        await OpenAICompatibleEngine().generate(make_request())


@pytest.mark.asyncio
async def test_generate_stream_parses_chunks(fake_client):
    lines = [
        "",
        'data: {"id":"up-1","created":9,"model":"llama3","choices":[{"index":0,"delta":{"role":"assistant","content":"hel"}}]}',
        "data: not-json",
        '{"choices":[{"delta":{"content":"lo"}}]}',
        'data: {"choices":[]}',
        'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}',
        "data: [DONE]",
        'data: {"choices":[{"delta":{"content":"ignored"}}]}',
    ]
    fake_client._stream = _FakeAsyncStreamContext(lines)
    engine = OpenAICompatibleEngine()
    chunks = [c async for c in engine.generate_stream(make_request(stream=True))]
    assert len(chunks) == 3
    assert {c.id for c in chunks} == {"up-1"}
    assert chunks[0].model == "llama3"
    assert chunks[0].choices[0].delta.role == "assistant"
    assert "".join(c.choices[0].delta.content or "" for c in chunks) == "hello"
    assert [c.choices[0].finish_reason for c in chunks] == [None, None, "stop"]
    assert fake_client.last_json["stream"] is True
    assert fake_client.timeout is None


@pytest.mark.asyncio
async def test_generate_stream_abort(fake_client):
    lines = [
        'data: {"choices":[{"delta":{"content":"a"}}]}',
        'data: {"choices":[{"delta":{"content":"b"}}]}',
        'data: {"choices":[{"delta":{"content":"c"}}]}',
    ]
    fake_client._stream = _FakeAsyncStreamContext(lines)
    abort = asyncio.Event()
    chunks = []
    async for chunk in OpenAICompatibleEngine().generate_stream(
        make_request(stream=True), abort=abort
    ):
        chunks.append(chunk)
        abort.set()
    assert chunks[0].choices[0].delta.content == "a"
    assert len(chunks) == 2
    assert chunks[1].choices[0].finish_reason == "abort"


@pytest.mark.asyncio
async def test_generate_stream_maps_unauthorized(fake_client):
    fake_client._stream = _FakeAsyncStreamContext(
        [], status_code=401, body=json.dumps({"message": "bad key"}).encode()
    )
    with pytest.raises(EngineUnauthorizedError) as excinfo:
        async for _ in OpenAICompatibleEngine().generate_stream(
            make_request(stream=True)
        ):
            pass
    assert str(excinfo.value) == "bad key"


def test_base_url_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_COMPAT_BASE_URL", "http://example.local/api/v1/")
    engine = OpenAICompatibleEngine()
    assert engine.base_url == "http://example.local/api/v1"


def test_non_stream_timeout_from_env(monkeypatch, fake_client):
    monkeypatch.setenv("OPENAI_COMPAT_TIMEOUT_SECONDS", "123.5")
    engine = OpenAICompatibleEngine()
    fake_client._next_response = _FakeResponse({"choices": [{}]})
    asyncio.run(engine.generate(make_request(), authorization="x"))
    assert fake_client.timeout == 123.5


def test_invalid_timeout_falls_back(monkeypatch):
    monkeypatch.setenv("OPENAI_COMPAT_TIMEOUT_SECONDS", "soon")
    assert OpenAICompatibleEngine().timeout_seconds == 600.0
