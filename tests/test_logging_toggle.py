import importlib
import logging

from fastapi.testclient import TestClient


def _reload_app():
    import chatgate.middleware.logging as request_logging
    import chatgate.main as main

    importlib.reload(request_logging)
    importlib.reload(main)
    return main


def test_logging_disabled_by_default(monkeypatch):
    monkeypatch.delenv("LOG_REQUESTS", raising=False)
    main = _reload_app()
    client = TestClient(main.app)
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["logging"]["enabled"] is False


def test_logging_enabled_path(monkeypatch):
    monkeypatch.setenv("LOG_REQUESTS", "true")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    try:
        main = _reload_app()
        logger = logging.getLogger("chatgate.request")
        assert logger.level == logging.DEBUG
        assert logger.handlers
        client = TestClient(main.app)
        r = client.post(
            "/v1/chat/completions",
            json={"messages": [{"role": "user", "content": "hi"}]},
        )
        assert r.status_code == 200
        assert client.get("/healthz").json()["logging"] == {
            "enabled": True,
            "level": "DEBUG",
        }
    finally:
        monkeypatch.delenv("LOG_REQUESTS", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        _reload_app()
