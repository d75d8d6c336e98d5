# tests/unit/test_guard.py
# -*- coding: utf-8 -*-
"""
SessionLocationGuard: повторная проверка открытой сессии и её завершение
при смене локации.
"""

from __future__ import annotations

import pytest

from geoguard.geo import GeoSnapshot, StaticGeoLookup
from geoguard.policy.audit import EVENT_ALLOWED, EVENT_BLOCKED, EVENT_SESSION_TERMINATED
from geoguard.policy.config import PolicyConfig, PolicyStore
from geoguard.policy.decision import BlockReason
from geoguard.policy.evaluator import PolicyEvaluator
from geoguard.policy.guard import SessionLocationGuard
from geoguard.session import MemorySessionManager, SessionIdentity

IDENTITY = SessionIdentity(session_id="s-1", subject="u-42", email="alice@example.com", auth_type="sso")


@pytest.fixture
def sessions() -> MemorySessionManager:
    m = MemorySessionManager()
    m.register(IDENTITY)
    return m


@pytest.fixture
def lookup() -> StaticGeoLookup:
    return StaticGeoLookup(default=GeoSnapshot(country="DE"))


@pytest.fixture
def store() -> PolicyStore:
    return PolicyStore(PolicyConfig(enabled=True, blocked_countries=frozenset({"CN"})))


@pytest.fixture
def guard(store, lookup, sessions, emitter) -> SessionLocationGuard:
    return SessionLocationGuard(PolicyEvaluator(store, lookup, emitter=emitter), sessions)


@pytest.mark.asyncio
async def test_allowed_session_is_untouched(guard, sessions, ctx, sink):
    res = await guard.verify(IDENTITY, ctx)
    assert res.allowed is True
    assert res.terminated is False
    assert sessions.is_active("s-1")
    assert sink.names() == [EVENT_ALLOWED]


@pytest.mark.asyncio
async def test_country_entering_blocklist_terminates_session(guard, store, sessions, ctx, sink):
    first = await guard.check_continued_access("s-1", ctx)
    assert first.allowed is True

    store.update({"blocked_countries": ["CN", "DE"]})
    second = await guard.check_continued_access("s-1", ctx)

    assert second.allowed is False
    assert second.terminated is True
    assert second.decision.reason is BlockReason.COUNTRY_BLOCKED
    assert not sessions.is_active("s-1")
    assert sessions.terminated_ids() == ["s-1"]

    assert sink.names() == [EVENT_ALLOWED, EVENT_BLOCKED, EVENT_SESSION_TERMINATED]
    event = sink.events[-1].to_dict()
    assert event["sessionId"] == "s-1"
    assert event["userId"] == "u-42"
    assert event["email"] == "alice@example.com"
    assert event["reason"] == "country_blocked"
    assert event["terminated"] is True


@pytest.mark.asyncio
async def test_identity_fills_missing_request_identity(guard, store, make_ctx, sink):
    store.update({"blocked_countries": ["DE"]})
    await guard.verify(IDENTITY, make_ctx())
    blocked_event = sink.events[0].to_dict()
    assert blocked_event["userEmail"] == "alice@example.com"
    assert blocked_event["authType"] == "sso"
    assert blocked_event["check"] == "session"


@pytest.mark.asyncio
async def test_unknown_session_is_not_allowed(guard, ctx, sink):
    res = await guard.check_continued_access("nope", ctx)
    assert res.allowed is False
    assert res.decision is None
    assert sink.events == []


@pytest.mark.asyncio
async def test_termination_failure_still_denies(store, lookup, emitter, ctx, sink):
    class StuckSessions(MemorySessionManager):
        async def terminate(self, identity):
            raise ConnectionError("idp unavailable")

    sessions = StuckSessions()
    sessions.register(IDENTITY)
    guard = SessionLocationGuard(PolicyEvaluator(store, lookup, emitter=emitter), sessions)
    store.update({"blocked_countries": ["DE"]})

    res = await guard.verify(IDENTITY, ctx)
    assert res.allowed is False
    assert res.terminated is False
    assert sessions.is_active("s-1")
    assert sink.events[-1].event == EVENT_SESSION_TERMINATED
    assert sink.events[-1].context["terminated"] is False
