from fastapi import APIRouter, Request
import time

from chatgate.config import (
    app_version,
    cors_origins,
    engine_name,
    env_flag,
    log_level,
)
from chatgate.validation import UNSUPPORTED_FIELDS_VERSION

router = APIRouter()


@router.get("/healthz")
async def healthz(request: Request):
    start_time = getattr(request.app.state, "start_time", None)
    uptime_seconds = time.time() - start_time if start_time else None

    # Nothing is hard-required yet; the engine is resolved per request
    return {
        "status": "ok",
        "uptime_seconds": uptime_seconds,
        "version": app_version(),
        "engine": engine_name(),
        "unsupported_fields_version": UNSUPPORTED_FIELDS_VERSION,
        "logging": {
            "enabled": env_flag("LOG_REQUESTS"),
            "level": log_level(),
        },
        "cors": {"allow_origins": cors_origins()},
    }
