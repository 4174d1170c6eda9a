import logging
import time

from chatgate.config import env_flag, log_level

LOG_REQUESTS = env_flag("LOG_REQUESTS")
LOG_LEVEL = log_level()
_logger = logging.getLogger("chatgate.request")
if LOG_REQUESTS:
    # Leave global logging to the server (uvicorn); only configure our logger
    _logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(_logger.level)
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        _logger.addHandler(handler)
        _logger.propagate = False


async def request_logging_middleware(request, call_next):
    if not LOG_REQUESTS:
        return await call_next(request)
    start = time.perf_counter()

    if _logger.isEnabledFor(logging.DEBUG):
        _logger.debug(
            "incoming rid=%s method=%s path=%s content_length=%s ua=%s has_auth=%s",
            getattr(
                request.state, "request_id", request.headers.get("x-request-id") or "-"
            ),
            request.method,
            request.url.path,
            request.headers.get("content-length"),
            request.headers.get("user-agent", ""),
            "authorization" in request.headers,
        )

    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000.0
    rid = getattr(
        request.state, "request_id", request.headers.get("x-request-id") or "-"
    )
    _logger.info(
        "rid=%s method=%s path=%s status=%s duration_ms=%.2f client=%s auth=%s",
        rid,
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
        request.client.host if request.client else "",
        "redacted" if "authorization" in request.headers else "none",
    )
    return response
