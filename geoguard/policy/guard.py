# geoguard/policy/guard.py
# -*- coding: utf-8 -*-
"""
SessionLocationGuard: повторная проверка уже аутентифицированной сессии.

Вызывается вызывающей стороной на границах доверия (обмен учётных данных,
refresh токена, явная проверка "continued access"). Собственного
планировщика нет. Если решение стало blocked:
  1) сессия завершается через SessionManager;
  2) эмитится session_terminated_location_change с идентичностью сессии;
  3) вызывающему возвращается allowed=False (форсировать logout/re-auth).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..context import RequestContext
from ..observability.metrics import SESSIONS_TERMINATED
from ..session import SessionIdentity, SessionManager
from .audit import DecisionAuditEmitter
from .decision import Decision
from .evaluator import PolicyEvaluator

__all__ = ["GuardResult", "SessionLocationGuard"]

log = logging.getLogger("geoguard.policy.guard")


@dataclass(frozen=True)
class GuardResult:
    allowed: bool
    decision: Optional[Decision] = None
    terminated: bool = False
    identity: Optional[SessionIdentity] = None


class SessionLocationGuard:
    def __init__(
        self,
        evaluator: PolicyEvaluator,
        sessions: SessionManager,
        *,
        emitter: Optional[DecisionAuditEmitter] = None,
    ) -> None:
        self.evaluator = evaluator
        self.sessions = sessions
        # по умолчанию пишем в тот же sink, что и evaluator
        self.emitter = emitter or evaluator.emitter

    async def verify(self, identity: SessionIdentity, ctx: RequestContext) -> GuardResult:
        ctx = _with_identity(ctx, identity)
        decision = await self.evaluator.evaluate(ctx, sessionId=identity.session_id, check="session")
        if not decision.blocked:
            return GuardResult(allowed=True, decision=decision, identity=identity)

        terminated = True
        try:
            await self.sessions.terminate(identity)
        except Exception:
            terminated = False
            log.exception("failed to terminate session %s", identity.session_id)

        if terminated:
            SESSIONS_TERMINATED.labels(reason=decision.reason.value if decision.reason else "none").inc()
        try:
            self.emitter.emit_session_terminated(identity, decision, ctx, terminated=terminated)
        except Exception:
            log.exception("audit emission failed for session %s", identity.session_id)
        return GuardResult(allowed=False, decision=decision, terminated=terminated, identity=identity)

    async def check_continued_access(self, session_id: str, ctx: RequestContext) -> GuardResult:
        identity = await self.sessions.get_identity(session_id)
        if identity is None:
            return GuardResult(allowed=False)
        return await self.verify(identity, ctx)


def _with_identity(ctx: RequestContext, identity: SessionIdentity) -> RequestContext:
    if ctx.user_email and ctx.auth_type:
        return ctx
    return RequestContext(
        ip=ctx.ip,
        user_agent=ctx.user_agent,
        path=ctx.path,
        method=ctx.method,
        user_email=ctx.user_email or identity.email,
        auth_type=ctx.auth_type or identity.auth_type,
        extra=ctx.extra,
    )
