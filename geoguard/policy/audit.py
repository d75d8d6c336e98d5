# geoguard/policy/audit.py
# -*- coding: utf-8 -*-
"""
Преобразование Decision + контекста запроса в структурное аудит-событие.

Эмиттер не делает I/O сам: событие передаётся во внедрённый AuditSink.
За доставку (sync/async, надёжность) отвечает sink. Ошибка sink'а
логируется и никогда не пробрасывается в оценку политики.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

import structlog

from ..context import RequestContext
from ..session import SessionIdentity
from .decision import Decision

__all__ = [
    "EVENT_WHITELISTED",
    "EVENT_ALLOWED",
    "EVENT_BLOCKED",
    "EVENT_ERROR",
    "EVENT_SESSION_TERMINATED",
    "AuditEvent",
    "AuditSink",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "DecisionAuditEmitter",
    "event_name_for",
]

log = logging.getLogger("geoguard.policy.audit")

EVENT_WHITELISTED = "whitelisted_access"
EVENT_ALLOWED = "location_allowed"
EVENT_BLOCKED = "location_blocked"
EVENT_ERROR = "location_check_error"
EVENT_SESSION_TERMINATED = "session_terminated_location_change"

_HIGH_SEVERITY = {EVENT_BLOCKED, EVENT_ERROR, EVENT_SESSION_TERMINATED}


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class AuditEvent:
    timestamp: str
    event: str
    ip: str
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    isp: Optional[str] = None
    risk_score: Optional[int] = None
    user_agent: Optional[str] = None
    path: Optional[str] = None
    method: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def severity(self) -> str:
        return "HIGH" if self.event in _HIGH_SEVERITY else "MEDIUM"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "event": self.event,
            "ip": self.ip,
            "country": self.country,
            "region": self.region,
            "city": self.city,
            "isp": self.isp,
            "riskScore": self.risk_score,
            "userAgent": self.user_agent,
            "path": self.path,
            "method": self.method,
        }
        # фиксированный набор полей не перетирается контекстом вызывающего
        for k, v in self.context.items():
            out.setdefault(k, v)
        return out


class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes events as structured log records (JSON when structlog renders JSON)."""

    def __init__(self, logger_name: str = "geoguard.audit") -> None:
        self._log = structlog.get_logger(logger_name)

    def emit(self, event: AuditEvent) -> None:
        payload = event.to_dict()
        name = payload.pop("event")
        payload["severity"] = event.severity
        if name in _HIGH_SEVERITY:
            self._log.warning(name, **payload)
        else:
            self._log.info(name, **payload)


def event_name_for(decision: Decision) -> str:
    if decision.error is not None:
        return EVENT_ERROR
    if decision.allowed_by_whitelist:
        return EVENT_WHITELISTED
    return EVENT_BLOCKED if decision.blocked else EVENT_ALLOWED


def _compact(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


class DecisionAuditEmitter:
    def __init__(
        self,
        sink: Optional[AuditSink] = None,
        *,
        clock: Callable[[], str] = _now_rfc3339,
    ) -> None:
        self.sink: AuditSink = sink or LoggingAuditSink()
        self._clock = clock

    def build(self, event: str, decision: Decision, ctx: RequestContext, **extra: Any) -> AuditEvent:
        geo = decision.geo
        context = _compact({
            "userEmail": ctx.user_email,
            "authType": ctx.auth_type,
            "blocked": decision.blocked,
            "reason": decision.reason.value if decision.reason else None,
            "detail": decision.detail,
            "allowedByWhitelist": decision.allowed_by_whitelist or None,
            "error": decision.error,
            "policyVersion": decision.config_version,
        })
        context.update(ctx.extra)
        context.update(_compact(extra))
        return AuditEvent(
            timestamp=self._clock(),
            event=event,
            ip=ctx.ip,
            country=geo.country if geo else "unknown",
            region=geo.region if geo else None,
            city=geo.city if geo else None,
            isp=geo.isp if geo else None,
            risk_score=decision.risk_score,
            user_agent=ctx.user_agent,
            path=ctx.path,
            method=ctx.method,
            context=context,
        )

    def emit_decision(self, decision: Decision, ctx: RequestContext, **extra: Any) -> AuditEvent:
        event = self.build(event_name_for(decision), decision, ctx, **extra)
        self._deliver(event)
        return event

    def emit_session_terminated(
        self,
        identity: SessionIdentity,
        decision: Decision,
        ctx: RequestContext,
        **extra: Any,
    ) -> AuditEvent:
        event = self.build(
            EVENT_SESSION_TERMINATED,
            decision,
            ctx,
            sessionId=identity.session_id,
            userId=identity.subject,
            email=identity.email,
            authType=identity.auth_type,
            **extra,
        )
        self._deliver(event)
        return event

    def _deliver(self, event: AuditEvent) -> None:
        try:
            self.sink.emit(event)
        except Exception:
            log.exception("audit sink failed for event %s", event.event)


class MemoryAuditSink:
    """Collects events in a list; handy for embedding and for tests."""

    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [e.event for e in self.events]
