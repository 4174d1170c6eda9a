import os
from typing import List

_TRUTHY = {"1", "true", "yes"}


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, "") or default)
    except ValueError:
        return default


def cors_origins() -> List[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()]


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def engine_name() -> str:
    return (os.getenv("CHAT_ENGINE") or "stub").strip().lower()


def app_version() -> str:
    return os.getenv("APP_VERSION") or "1.0"
