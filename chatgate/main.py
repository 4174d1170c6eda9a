from fastapi import FastAPI, Response, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
import time
import uuid
from chatgate.config import cors_origins
from chatgate.routers.chat import router as chat_router
from chatgate.routers.health import router as health_router
from chatgate.metrics import (
    registry,
    CONTENT_TYPE_LATEST,
    generate_latest,
)
from chatgate.middleware.request_id import request_id_and_metrics_middleware
from chatgate.middleware.logging import request_logging_middleware
from chatgate.engines.base import (
    EngineError,
    EngineForbiddenError,
    EngineModelNotFoundError,
    EngineRateLimitError,
    EngineUnauthorizedError,
)
from chatgate.validation import ChatRequestError, UnsupportedFieldError

app = FastAPI(title="chatgate")
app.state.start_time = time.time()

origins = cors_origins()
# Browsers reject credentials with ACAO "*", so only allow them for explicit origins
is_wildcard = len(origins) == 1 and origins[0] == "*"
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=not is_wildcard,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Register middlewares (last registered runs first)
@app.middleware("http")
async def _request_logging(request, call_next):
    return await request_logging_middleware(request, call_next)


@app.middleware("http")
async def _request_id_and_metrics(request, call_next):
    return await request_id_and_metrics_middleware(request, call_next)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


@app.exception_handler(ChatRequestError)
async def chat_request_error_handler(request: Request, exc: ChatRequestError):
    request_id = _request_id(request)
    content = {
        "error": exc.title,
        "type": type(exc).__name__,
        "detail": str(exc),
        "request_id": request_id,
    }
    if isinstance(exc, UnsupportedFieldError):
        content["fields"] = exc.fields
    return JSONResponse(
        status_code=400, content=content, headers={"x-request-id": request_id}
    )


_ENGINE_ERROR_STATUS = (
    (EngineModelNotFoundError, 404, "Model Not Found"),
    (EngineUnauthorizedError, 401, "Unauthorized"),
    (EngineForbiddenError, 403, "Forbidden"),
    (EngineRateLimitError, 429, "Rate Limited"),
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    request_id = _request_id(request)
    headers = {"x-request-id": request_id}
    for error_cls, status_code, title in _ENGINE_ERROR_STATUS:
        if isinstance(exc, error_cls):
            break
    else:
        status_code, title = 502, "Bad Gateway"
    if isinstance(exc, EngineRateLimitError) and exc.retry_after_seconds is not None:
        headers["Retry-After"] = str(exc.retry_after_seconds)
    logging.getLogger("chatgate.errors").warning(
        "engine_error rid=%s status=%s type=%s detail=%s",
        request_id,
        status_code,
        type(exc).__name__,
        exc,
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": title, "detail": str(exc) or title, "request_id": request_id},
        headers=headers,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = _request_id(request)
    logging.getLogger("chatgate.errors").exception(
        "unhandled_exception rid=%s path=%s method=%s",
        request_id,
        request.url.path,
        request.method,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "Internal Server Error", "request_id": request_id},
        headers={"x-request-id": request_id},
    )


@app.get("/metrics")
async def metrics() -> Response:
    return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)


app.include_router(health_router)
app.include_router(chat_router)
