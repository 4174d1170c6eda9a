from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import StreamingResponse
import asyncio
import json
import logging
import time
from typing import Optional

from chatgate.engines.base import ChatEngine
from chatgate.engines.registry import get_default_engine
from chatgate.metrics import (
    chat_request_rejections_total,
    engine_request_duration_seconds,
    engine_requests_total,
)
from chatgate.schemas.chat import ChatCompletionRequest
from chatgate.schemas.completion import ChatCompletion
from chatgate.validation import (
    CHAT_COMPLETION_REQUEST_UNSUPPORTED_FIELDS,
    UNSUPPORTED_FIELDS_VERSION,
    ChatRequestError,
    post_init_and_check_fields,
)

router = APIRouter(prefix="/v1/chat/completions", tags=["chat"])
logger = logging.getLogger("chatgate.chat")


def get_engine_override() -> Optional[ChatEngine]:
    """Dependency hook for tests to inject an engine instance.

    Returns None in production so the engine configured by CHAT_ENGINE is
    used.
    """
    return None


def _check_request(request: ChatCompletionRequest, rid: str) -> None:
    try:
        post_init_and_check_fields(request)
    except ChatRequestError as exc:
        reason = type(exc).__name__
        chat_request_rejections_total.labels(reason=reason).inc()
        logger.info("chat.rejected rid=%s reason=%s detail=%s", rid, reason, exc)
        raise


def _observe(engine_name: str, operation: str, outcome: str, start: float) -> None:
    duration = time.perf_counter() - start
    engine_requests_total.labels(
        engine=engine_name, operation=operation, outcome=outcome
    ).inc()
    engine_request_duration_seconds.labels(
        engine=engine_name, operation=operation, outcome=outcome
    ).observe(duration)


@router.get("/unsupported_fields")
async def unsupported_fields():
    """Request fields that are part of the wire schema but always rejected."""
    return {
        "version": UNSUPPORTED_FIELDS_VERSION,
        "fields": list(CHAT_COMPLETION_REQUEST_UNSUPPORTED_FIELDS),
    }


@router.post("", response_model=ChatCompletion)
async def create_chat_completion(
    request: ChatCompletionRequest,
    http_request: Request,
    authorization: Optional[str] = Header(None),
    engine: Optional[ChatEngine] = Depends(get_engine_override),
):
    rid = getattr(http_request.state, "request_id", "-")
    _check_request(request, rid)
    chosen_engine = engine or get_default_engine()
    engine_name = type(chosen_engine).__name__
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "chat rid=%s engine=%s messages=%d stream=%s n=%s has_auth=%s",
            rid,
            engine_name,
            len(request.messages),
            bool(request.stream),
            request.n,
            bool(authorization),
        )

    if not request.stream:
        start = time.perf_counter()
        outcome = "success"
        try:
            return await chosen_engine.generate(request, authorization)
        except Exception:
            outcome = "error"
            raise
        finally:
            _observe(engine_name, "generate", outcome, start)

    abort = asyncio.Event()

    async def event_gen():
        start = time.perf_counter()
        outcome = "success"
        try:
            async for chunk in chosen_engine.generate_stream(
                request, authorization, abort=abort
            ):
                yield f"data: {chunk.model_dump_json()}\n\n"
            yield "data: [DONE]\n\n"
        except (asyncio.CancelledError, GeneratorExit):
            # StreamingResponse cancels the body when the client disconnects
            abort.set()
            outcome = "aborted"
            logger.info("chat.stream client disconnected rid=%s", rid)
            raise
        except Exception as exc:
            outcome = "error"
            # Emit an error frame then DONE so clients can close gracefully
            logger.exception("chat.stream error rid=%s: %s", rid, str(exc))
            err = {"error": "stream_error", "message": str(exc), "request_id": rid}
            yield f"data: {json.dumps(err)}\n\n"
            yield "data: [DONE]\n\n"
        finally:
            _observe(engine_name, "generate_stream", outcome, start)

    return StreamingResponse(event_gen(), media_type="text/event-stream")
