from prometheus_client import (
    Counter,
    Histogram,
    CollectorRegistry,
    CONTENT_TYPE_LATEST,
    generate_latest,
)

registry = CollectorRegistry()

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path", "status"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    registry=registry,
)

# Engine-level metrics
engine_requests_total = Counter(
    "engine_requests_total",
    "Total engine calls by engine and operation",
    ["engine", "operation", "outcome"],
    registry=registry,
)

engine_request_duration_seconds = Histogram(
    "engine_request_duration_seconds",
    "Engine call latency in seconds",
    ["engine", "operation", "outcome"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60),
    registry=registry,
)

# Requests turned away by the validation gate, by error class
chat_request_rejections_total = Counter(
    "chat_request_rejections_total",
    "Chat completion requests rejected before reaching an engine",
    ["reason"],
    registry=registry,
)

__all__ = [
    "registry",
    "http_requests_total",
    "http_request_duration_seconds",
    "engine_requests_total",
    "engine_request_duration_seconds",
    "chat_request_rejections_total",
    "CONTENT_TYPE_LATEST",
    "generate_latest",
]
