import asyncio
import time
import uuid
from typing import AsyncGenerator, List, Optional, Tuple

from chatgate.engines.base import ChatEngine
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

STUB_MODEL = "stub"
STUB_TOKENS = ("stub ", "response")


def _prompt_tokens(request: ChatCompletionRequest) -> int:
    total = 0
    for message in request.messages:
        if isinstance(message.content, str):
            total += len(message.content.split())
    return total


def _plan(request: ChatCompletionRequest) -> Tuple[List[str], str]:
    """Tokens to emit and the finish reason once they run out."""
    tokens = list(STUB_TOKENS)
    if request.max_gen_len is not None and request.max_gen_len < len(tokens):
        return tokens[: max(request.max_gen_len, 0)], "length"
    return tokens, "stop"


class StubEngine(ChatEngine):
    """Deterministic offline engine, used by default and in tests."""

    async def generate(
        self, request: ChatCompletionRequest, authorization: Optional[str] = None
    ) -> ChatCompletion:
        tokens, finish_reason = _plan(request)
        n = request.n or 1
        choices = [
            Choice(
                index=i,
                message=ChatCompletionMessage(content="".join(tokens)),
                finish_reason=finish_reason,
            )
            for i in range(n)
        ]
        prompt_tokens = _prompt_tokens(request)
        completion_tokens = len(tokens) * n
        return ChatCompletion(
            id=f"chatcmpl-{uuid.uuid4().hex}",
            created=int(time.time()),
            model=STUB_MODEL,
            choices=choices,
            usage=CompletionUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    async def generate_stream(
        self,
        request: ChatCompletionRequest,
        authorization: Optional[str] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[ChatCompletionChunk, None]:
        completion_id = f"chatcmpl-{uuid.uuid4().hex}"
        created = int(time.time())

        def chunk(delta: Delta, finish_reason=None) -> ChatCompletionChunk:
            return ChatCompletionChunk(
                id=completion_id,
                created=created,
                model=STUB_MODEL,
                choices=[ChunkChoice(index=0, delta=delta, finish_reason=finish_reason)],
            )

        tokens, finish_reason = _plan(request)
        for i, token in enumerate(tokens):
            if abort is not None and abort.is_set():
                yield chunk(Delta(), "abort")
                return
            role = "assistant" if i == 0 else None
            yield chunk(Delta(role=role, content=token))
            # Let the caller observe disconnects between tokens
            await asyncio.sleep(0)
        yield chunk(Delta(), finish_reason)
