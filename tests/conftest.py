# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import pytest

from geoguard.context import RequestContext
from geoguard.geo import GeoSnapshot, StaticGeoLookup
from geoguard.policy.audit import DecisionAuditEmitter, MemoryAuditSink
from geoguard.policy.config import PolicyConfig, PolicyStore
from geoguard.policy.evaluator import PolicyEvaluator

# ---------- Константы ----------

FIXED_TS = "2024-05-01T12:00:00.000Z"


def at_utc(hour: int, minute: int = 0) -> datetime:
    """Фиксированный момент времени (UTC) для детерминированных проверок окна."""
    return datetime(2024, 5, 1, hour, minute, tzinfo=timezone.utc)


# ---------- Фикстуры ----------

@pytest.fixture
def sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def emitter(sink: MemoryAuditSink) -> DecisionAuditEmitter:
    return DecisionAuditEmitter(sink, clock=lambda: FIXED_TS)


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(
        ip="198.51.100.7",
        user_agent="pytest/1.0",
        path="/api/resource",
        method="GET",
        user_email="alice@example.com",
        auth_type="password",
    )


@pytest.fixture
def make_ctx() -> Callable[..., RequestContext]:
    def _make(ip: str = "198.51.100.7", **kw: Any) -> RequestContext:
        kw.setdefault("user_agent", "pytest/1.0")
        kw.setdefault("path", "/api/resource")
        kw.setdefault("method", "GET")
        return RequestContext(ip=ip, **kw)

    return _make


@pytest.fixture
def make_evaluator(emitter: DecisionAuditEmitter) -> Callable[..., PolicyEvaluator]:
    """
    Фабрика evaluator'а: политика задаётся mapping'ом (enabled=True по умолчанию),
    геоданные задаются одним снапшотом для любого IP или таблицей.
    """

    def _make(
        policy: Optional[Dict[str, Any]] = None,
        *,
        snapshot: Optional[GeoSnapshot] = None,
        table: Optional[Dict[str, GeoSnapshot]] = None,
        lookup: Any = None,
        now: Optional[datetime] = None,
        lookup_timeout: float = 5.0,
    ) -> PolicyEvaluator:
        data = {"enabled": True}
        data.update(policy or {})
        if lookup is None:
            lookup = StaticGeoLookup(table, default=snapshot)
        kwargs: Dict[str, Any] = {}
        if now is not None:
            kwargs["clock"] = lambda: now
        return PolicyEvaluator(
            PolicyStore(PolicyConfig.from_mapping(data)),
            lookup,
            emitter=emitter,
            lookup_timeout=lookup_timeout,
            **kwargs,
        )

    return _make
