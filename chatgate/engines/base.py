import asyncio
from abc import ABC, abstractmethod
from typing import AsyncGenerator, Optional

from chatgate.schemas.chat import ChatCompletionRequest
from chatgate.schemas.completion import ChatCompletion, ChatCompletionChunk


class EngineError(Exception):
    """Base class for engine-specific errors raised intentionally.

    Engines raise these to signal failures that the API layer can map to
    precise HTTP responses instead of a generic 500.
    """


class EngineModelNotFoundError(EngineError):
    """Raised when the configured model is not available on the engine side."""


class EngineUnauthorizedError(EngineError):
    """Raised when the engine backend rejects the caller's credentials (401)."""


class EngineForbiddenError(EngineError):
    """Raised when the engine backend forbids access (403)."""


class EngineRateLimitError(EngineError):
    """Raised when the engine backend rate limits the request (429).

    Optionally carries a Retry-After value (seconds).
    """

    def __init__(self, message: str = "", retry_after_seconds: int | None = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ChatEngine(ABC):
    """Consumes validated requests and produces completions.

    Engines may assume the request already passed
    ``post_init_and_check_fields``: plain-string user content, no tools, a
    trailing user turn, and at most one choice when streaming.
    """

    @abstractmethod
    async def generate(
        self, request: ChatCompletionRequest, authorization: Optional[str] = None
    ) -> ChatCompletion: ...

    @abstractmethod
    def generate_stream(
        self,
        request: ChatCompletionRequest,
        authorization: Optional[str] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncGenerator[ChatCompletionChunk, None]:
        """Yield chunks for a single choice.

        When ``abort`` is set before generation finishes, the engine stops
        and emits a terminal chunk with ``finish_reason="abort"``.
        """
