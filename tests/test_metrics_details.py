from fastapi.testclient import TestClient
from chatgate.main import app
from chatgate.engines.base import ChatEngine
from chatgate.routers import chat as chat_router

client = TestClient(app)

URL = "/v1/chat/completions"


def test_metrics_increments_after_request():
    r1 = client.get("/healthz")
    assert r1.status_code == 200

    body = client.get("/metrics").text
    assert 'http_requests_total{method="GET",path="/healthz",status="200"}' in body


def test_latency_histogram_buckets_present():
    body = client.get("/metrics").text
    assert "http_request_duration_seconds_bucket" in body
    assert "http_request_duration_seconds_sum" in body
    assert "http_request_duration_seconds_count" in body


def test_rejections_counted_by_reason():
    r = client.post(
        URL,
        json={"messages": [{"role": "user", "content": "hi"}], "stream": True, "n": 3},
    )
    assert r.status_code == 400
    body = client.get("/metrics").text
    assert (
        'chat_request_rejections_total{reason="InvalidStreamingFanoutError"}' in body
    )


def test_engine_calls_counted():
    r = client.post(URL, json={"messages": [{"role": "user", "content": "hi"}]})
    assert r.status_code == 200
    body = client.get("/metrics").text
    assert (
        'engine_requests_total{engine="StubEngine",operation="generate",outcome="success"}'
        in body
    )


def test_metrics_records_500_for_errors():
    class RaisingEngine(ChatEngine):
        async def generate(self, request, authorization=None):
            raise RuntimeError("boom")

        async def generate_stream(self, request, authorization=None, abort=None):
            raise RuntimeError("boom")
            yield  # pragma: no cover

    app.dependency_overrides[chat_router.get_engine_override] = lambda: RaisingEngine()
    try:
        error_client = TestClient(app, raise_server_exceptions=False)
        r = error_client.post(URL, json={"messages": [{"role": "user", "content": "hi"}]})
        assert r.status_code == 500
        lines = error_client.get("/metrics").text.splitlines()
        assert any(
            line.startswith("http_requests_total{")
            and 'method="POST"' in line
            and f'path="{URL}"' in line
            and 'status="500"' in line
            for line in lines
        )
        assert any(
            line.startswith("engine_requests_total{")
            and 'engine="RaisingEngine"' in line
            and 'outcome="error"' in line
            for line in lines
        )
    finally:
        app.dependency_overrides.pop(chat_router.get_engine_override, None)
