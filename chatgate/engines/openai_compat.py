"""
OpenAI-compatible engine
------------------------

`OpenAICompatibleEngine` executes validated chat requests against any server
exposing the OpenAI Chat Completions API shape (`/chat/completions`), e.g.
Ollama, LM Studio, LocalAI, llama.cpp server or vLLM.

1) Configuration
   - `OPENAI_COMPAT_BASE_URL` (default `http://localhost:11434/v1`, the usual
     Ollama endpoint). We never default to a paid public endpoint.
   - `OPENAI_COMPAT_MODEL` names the upstream model. Requests are not allowed
     to carry `model`, so the engine decides which model serves them.
   - `OPENAI_COMPAT_API_KEY` is sent as a Bearer token only when the inbound
     request did not bring its own Authorization header.
   - `OPENAI_COMPAT_TIMEOUT_SECONDS` bounds non-streaming calls.

2) Schema mapping
   - Only the supported generation parameters are forwarded; `max_gen_len`
     travels as `max_tokens`.
   - Responses and stream chunks are parsed into our `ChatCompletion` /
     `ChatCompletionChunk` models with tolerant defaults, since compatible
     servers differ in which optional fields they fill in.

3) Error handling
   - 401/403/429 and explicit unknown-model 404s are mapped to the
     `EngineError` family; everything else goes through
     `raise_for_status()`. Malformed stream lines are skipped.
"""

import asyncio
import json
import logging
import os
import time
import uuid
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from chatgate.config import env_float
from chatgate.engines.base import (
    ChatEngine,
    EngineForbiddenError,
    EngineModelNotFoundError,
    EngineRateLimitError,
    EngineUnauthorizedError,
)
from chatgate.schemas.chat import ChatCompletionRequest
from chatgate.schemas.completion import (
    ChatCompletion,
    ChatCompletionChunk,
    ChatCompletionMessage,
    Choice,
    ChunkChoice,
    CompletionUsage,
    Delta,
)

logger = logging.getLogger("chatgate.engines.openai_compat")

# "abort" is only produced locally, when the caller cancels
_FINISH_REASONS = {"stop", "length", "tool_calls"}
_DELTA_ROLES = {"system", "user", "assistant", "tool"}

# request attribute -> upstream payload key
_FORWARDED_PARAMS = (
    ("n", "n"),
    ("frequency_penalty", "frequency_penalty"),
    ("presence_penalty", "presence_penalty"),
    ("max_gen_len", "max_tokens"),
    ("stop", "stop"),
    ("temperature", "temperature"),
    ("top_p", "top_p"),
)


def _finish_reason(raw: Any, default: Optional[str]) -> Optional[str]:
    if raw is None:
        return default
    # e.g. "content_filter" from some servers; treat as a normal stop
    return raw if raw in _FINISH_REASONS else "stop"


def _error_message(obj: Any) -> str:
    if not isinstance(obj, dict):
        return ""
    err = obj.get("error") or obj.get("message") or ""
    if isinstance(err, dict):
        err = err.get("message") or ""
    return str(err)


def _retry_after(headers: Any) -> Optional[int]:
    try:
        return int(headers.get("Retry-After"))
    except (AttributeError, TypeError, ValueError):
        return None


def _raise_for_engine_error(
    status_code: int, body: Any, headers: Any, model: str
) -> None:
    message = _error_message(body)
    if status_code == 401:
        raise EngineUnauthorizedError(message or "Unauthorized")
    if status_code == 403:
        raise EngineForbiddenError(message or "Forbidden")
    if status_code == 429:
        raise EngineRateLimitError(
            message or "Rate Limited", retry_after_seconds=_retry_after(headers)
        )
    # Only an explicit unknown-model body counts; other 404s fall through
    if status_code == 404:
        lower_msg = message.lower()
        if (
            any(key in lower_msg for key in ["model", "not found", "unknown model"])
            and model.replace(" ", "").lower() in lower_msg
        ):
            raise EngineModelNotFoundError(message or f"Model not found: {model}")


class OpenAICompatibleEngine(ChatEngine):
    """Engine backed by a remote OpenAI-compatible server.

    Attributes:
        base_url: Base URL of the compatible API.
        model: Upstream model id sent with every request.
        env_api_key: Fallback API key when the caller sent no Authorization.
        timeout_seconds: Timeout for non-streaming calls.
    """

    def __init__(self) -> None:
        self.base_url = os.getenv(
            "OPENAI_COMPAT_BASE_URL", "http://localhost:11434/v1"
        ).rstrip("/")
        self.model = os.getenv("OPENAI_COMPAT_MODEL") or "default"
        self.env_api_key = os.getenv("OPENAI_COMPAT_API_KEY")
        self.timeout_seconds = env_float("OPENAI_COMPAT_TIMEOUT_SECONDS", 600.0)

    def _headers(self, authorization: Optional[str]) -> Dict[str, str]:
        """Inbound Authorization wins over `OPENAI_COMPAT_API_KEY`; else none."""
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        token: Optional[str] = None

        if authorization and authorization.strip():
            token = authorization
        elif self.env_api_key:
            token = f"Bearer {self.env_api_key}"

        if token:
            headers["Authorization"] = token
        return headers

    def _payload(self, request: ChatCompletionRequest, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.model_dump(exclude_none=True) for m in request.messages],
            "stream": stream,
        }
        for attr, key in _FORWARDED_PARAMS:
            value = getattr(request, attr, None)
            if value is not None:
                payload[key] = value
        return payload

    async def generate(
        self, request: ChatCompletionRequest, authorization: Optional[str] = None
    ) -> ChatCompletion:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout_seconds
        ) as client:
            response = await client.post(
                "/chat/completions",
                headers=self._headers(authorization),
                json=self._payload(request, stream=False),
            )
            if response.status_code in (401, 403, 404, 429):
                try:
                    body = response.json()
                except ValueError:
                    body = {}
                _raise_for_engine_error(
                    response.status_code,
                    body,
                    getattr(response, "headers", {}),
                    self.model,
                )
            response.raise_for_status()
            data: Dict[str, Any] = response.json()

        choices_raw: List[Dict[str, Any]] = data.get("choices") or []
        if not choices_raw:
            choices_raw = [{"index": 0, "message": {"content": ""}}]

        choices: List[Choice] = []
        for position, choice in enumerate(choices_raw):
            message_raw = choice.get("message") or {}
            choices.append(
                Choice(
                    index=choice.get("index", position),
                    message=ChatCompletionMessage(
                        content=message_raw.get("content"),
                    ),
                    finish_reason=_finish_reason(choice.get("finish_reason"), "stop"),
                )
            )

        usage: Optional[CompletionUsage] = None
        usage_raw = data.get("usage")
        if usage_raw:
            usage = CompletionUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )

        return ChatCompletion(
            id=str(data.get("id") or f"chatcmpl-{uuid.uuid4().hex}"),
            created=int(data.get("created") or time.time()),
            model=str(data.get("model") or self.model),
            choices=choices,
            system_fingerprint=data.get("system_fingerprint"),
            usage=usage,
        )

    async def generate_stream(
        self,
        request: ChatCompletionRequest,
        authorization: Optional[str] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[ChatCompletionChunk, None]:
        completion_id = f"chatcmpl-{uuid.uuid4().hex}"
        created = int(time.time())
        model = self.model
        async with httpx.AsyncClient(base_url=self.base_url, timeout=None) as client:
            async with client.stream(
                "POST",
                "/chat/completions",
                headers=self._headers(authorization),
                json=self._payload(request, stream=True),
            ) as response:
                if response.status_code in (401, 403, 404, 429):
                    try:
                        text = await response.aread()
                        body = json.loads(text.decode("utf-8", errors="ignore"))
                    except ValueError:
                        body = {}
                    _raise_for_engine_error(
                        response.status_code,
                        body,
                        getattr(response, "headers", {}),
                        self.model,
                    )
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if abort is not None and abort.is_set():
                        logger.debug("stream aborted id=%s", completion_id)
                        yield ChatCompletionChunk(
                            id=completion_id,
                            created=created,
                            model=model,
                            choices=[
                                ChunkChoice(
                                    index=0, delta=Delta(), finish_reason="abort"
                                )
                            ],
                        )
                        return
                    if not line:
                        continue
                    data_str = line
                    if line.startswith("data:"):
                        data_str = line[5:].strip()
                    if data_str == "[DONE]":
                        break
                    try:
                        obj = json.loads(data_str)
                    except json.JSONDecodeError:
                        continue
                    if not isinstance(obj, dict):
                        continue
                    choices = obj.get("choices") or []
                    if not choices:
                        continue
                    # Upstream ids are kept so clients can correlate with logs
                    completion_id = str(obj.get("id") or completion_id)
                    created = int(obj.get("created") or created)
                    model = str(obj.get("model") or model)
                    chunk_choices: List[ChunkChoice] = []
                    for position, choice in enumerate(choices):
                        delta_raw = choice.get("delta") or {}
                        role = delta_raw.get("role")
                        chunk_choices.append(
                            ChunkChoice(
                                index=choice.get("index", position),
                                delta=Delta(
                                    role=role if role in _DELTA_ROLES else None,
                                    content=delta_raw.get("content"),
                                ),
                                finish_reason=_finish_reason(
                                    choice.get("finish_reason"), None
                                ),
                            )
                        )
                    yield ChatCompletionChunk(
                        id=completion_id,
                        created=created,
                        model=model,
                        choices=chunk_choices,
                        system_fingerprint=obj.get("system_fingerprint"),
                    )
