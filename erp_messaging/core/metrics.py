"""Prometheus metrics for messaging, kept on a dedicated registry."""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry(auto_describe=True)

MESSAGE_CREATE_LATENCY = Histogram(
    "messaging_message_create_latency_seconds",
    "Latency for successful messaging create operations in seconds",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
    registry=REGISTRY,
)

RATE_LIMIT_HITS = Counter(
    "messaging_rate_limit_hits_total",
    "Total number of messaging rate limit denials",
    ["reason"],
    registry=REGISTRY,
)

WEBSOCKET_CONNECTIONS = Gauge(
    "messaging_websocket_connections",
    "Current number of active websocket connections for messaging",
    registry=REGISTRY,
)


def render_latest() -> bytes:
    return generate_latest(REGISTRY)
