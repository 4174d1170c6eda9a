from fastapi.testclient import TestClient
from chatgate.main import app

client = TestClient(app)


def test_request_id_generated_when_missing():
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.headers["x-request-id"]


def test_request_id_propagated_when_present():
    r = client.get("/healthz", headers={"x-request-id": "abc-123"})
    assert r.status_code == 200
    assert r.headers["x-request-id"] == "abc-123"


def test_request_id_on_rejection():
    r = client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "system", "content": "x"}]},
        headers={"x-request-id": "rej-1"},
    )
    assert r.status_code == 400
    assert r.headers["x-request-id"] == "rej-1"
    assert r.json()["request_id"] == "rej-1"
