# geoguard/observability/metrics.py
from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

__all__ = [
    "REGISTRY",
    "DECISIONS",
    "LOOKUP_LATENCY",
    "LOOKUP_FAILURES",
    "SESSIONS_TERMINATED",
    "record_decision",
    "render_latest",
    "CONTENT_TYPE_LATEST",
]

# Собственный реестр: не смешиваемся с метриками хост-приложения
REGISTRY = CollectorRegistry(auto_describe=True)

DECISIONS = Counter(
    "geoguard_decisions_total",
    "Location policy decisions",
    ["outcome", "reason"],
    registry=REGISTRY,
)
LOOKUP_LATENCY = Histogram(
    "geoguard_lookup_seconds",
    "Geolocation lookup latency",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)
LOOKUP_FAILURES = Counter(
    "geoguard_lookup_failures_total",
    "Geolocation lookup failures",
    ["kind"],  # timeout | error
    registry=REGISTRY,
)
SESSIONS_TERMINATED = Counter(
    "geoguard_sessions_terminated_total",
    "Sessions terminated after a location re-check",
    ["reason"],
    registry=REGISTRY,
)


def record_decision(blocked: bool, reason: str | None) -> None:
    DECISIONS.labels(outcome="blocked" if blocked else "allowed", reason=reason or "none").inc()


def render_latest() -> bytes:
    return generate_latest(REGISTRY)
