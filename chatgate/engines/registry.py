from typing import Dict, Optional

from chatgate.config import engine_name
from chatgate.engines.base import ChatEngine
from chatgate.engines.stub import StubEngine

# Names under which an OpenAI-compatible backend is commonly known
OPENAI_COMPAT_ALIASES = {
    "ollama",
    "openai",
    "openai_compat",
    "openai-compatible",
    "compat",
    "vllm",
    "localai",
    "lmstudio",
    "llamacpp",
    "llama.cpp",
}

_engine_cache: Dict[str, ChatEngine] = {}


def get_engine_by_name(name: Optional[str]) -> ChatEngine:
    name = (name or "stub").strip().lower()
    if name in OPENAI_COMPAT_ALIASES:
        # Imported lazily so the stub path never needs httpx configured
        from chatgate.engines.openai_compat import OpenAICompatibleEngine

        if name not in _engine_cache:
            _engine_cache[name] = OpenAICompatibleEngine()
        return _engine_cache[name]
    # unknown names fall back to the stub
    if name not in _engine_cache:
        _engine_cache[name] = StubEngine()
    return _engine_cache[name]


def get_default_engine() -> ChatEngine:
    """Engine selected by the CHAT_ENGINE environment variable."""
    return get_engine_by_name(engine_name())


def clear_engine_cache() -> None:
    _engine_cache.clear()
