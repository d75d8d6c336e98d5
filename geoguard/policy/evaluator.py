# geoguard/policy/evaluator.py
# -*- coding: utf-8 -*-
"""
Location-aware access policy evaluator.

Pipeline (fixed order, first block wins):

    disabled? -> whitelist (raw IP) -> geo lookup -> country -> region
              -> ISP heuristics -> risk threshold -> time window -> allow

* Whitelist works on the raw client IP only, so it runs before the lookup and
  wins even when the lookup is down.
* The lookup is the only suspension point. It is bounded by ``lookup_timeout``;
  a timeout or error resolves through ``fail_open``. Cancellation of the
  calling task propagates (the lookup is abandoned, not awaited).
* Any unexpected error inside a stage is caught here and resolved with the
  same fail-open/fail-closed rule; callers never see an exception.
* Every decision is handed to the audit emitter before it is returned.

Один вызов evaluate() читает ровно один снапшот PolicyConfig.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ..context import RequestContext
from ..errors import LookupFailure
from ..geo import GeoLookup, GeoSnapshot
from ..observability.metrics import LOOKUP_FAILURES, LOOKUP_LATENCY, record_decision
from .audit import DecisionAuditEmitter
from .config import PolicyConfig, PolicyStore
from .decision import BlockReason, Decision
from .heuristics import HeuristicClassifier, NetworkCategory
from .time_window import TimeWindowEvaluator
from .whitelist import WhitelistMatcher

__all__ = ["Stage", "PolicyEvaluator"]

log = logging.getLogger("geoguard.policy.evaluator")

_Block = Tuple[BlockReason, str]
_Stage = Callable[[PolicyConfig, GeoSnapshot], Optional[_Block]]

_CATEGORY_REASON = {
    NetworkCategory.VPN: (BlockReason.VPN_DETECTED, "VPN detected"),
    NetworkCategory.PROXY: (BlockReason.PROXY_DETECTED, "Proxy detected"),
    NetworkCategory.DATACENTER: (BlockReason.DATACENTER_DETECTED, "Datacenter IP detected"),
}


class Stage(str, Enum):
    WHITELIST = "whitelist"
    LOOKUP = "lookup"
    COUNTRY = "country"
    REGION = "region"
    HEURISTIC = "heuristic"
    RISK = "risk"
    TIME = "time"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamp_score(v: Optional[int]) -> int:
    if v is None:
        return 0
    return max(0, min(100, int(v)))


class PolicyEvaluator:
    def __init__(
        self,
        policy: Union[PolicyStore, PolicyConfig],
        lookup: GeoLookup,
        *,
        emitter: Optional[DecisionAuditEmitter] = None,
        lookup_timeout: float = 5.0,
        whitelist: Optional[WhitelistMatcher] = None,
        classifier: Optional[HeuristicClassifier] = None,
        time_window: Optional[TimeWindowEvaluator] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = policy if isinstance(policy, PolicyStore) else PolicyStore(policy)
        self.lookup = lookup
        self.emitter = emitter or DecisionAuditEmitter()
        self.lookup_timeout = lookup_timeout
        self._whitelist = whitelist or WhitelistMatcher()
        self._classifier = classifier or HeuristicClassifier()
        self._time_window = time_window or TimeWindowEvaluator()
        self._clock = clock
        self._stages: Tuple[Tuple[Stage, _Stage], ...] = (
            (Stage.COUNTRY, self._country_stage),
            (Stage.REGION, self._region_stage),
            (Stage.HEURISTIC, self._heuristic_stage),
            (Stage.RISK, self._risk_stage),
            (Stage.TIME, self._time_stage),
        )

    # ---- public API ----

    async def evaluate(self, ctx: RequestContext, **audit_extra: Any) -> Decision:
        config = self.store.snapshot()
        try:
            decision, extra = await self._decide(config, ctx)
        except Exception as e:
            # CancelledError сюда не попадает (BaseException) и уходит вызывающему
            log.exception("location check failed for %s", ctx.ip)
            decision = self._failure(config, e)
            extra = {"stage": "internal"}
        record_decision(decision.blocked, decision.reason.value if decision.reason else None)
        self._audit(decision, ctx, {**extra, **audit_extra})
        return decision

    # ---- pipeline ----

    async def _decide(self, config: PolicyConfig, ctx: RequestContext) -> Tuple[Decision, Dict[str, Any]]:
        if not config.enabled:
            return Decision(blocked=False, detail="location policy disabled", config_version=config.version), {}

        entry = self._whitelist.first_match(ctx.ip, config.whitelist)
        if entry is not None:
            decision = Decision(
                blocked=False,
                reason=BlockReason.WHITELIST_ALLOWED,
                allowed_by_whitelist=True,
                detail="Whitelisted origin",
                config_version=config.version,
            )
            return decision, {"stage": Stage.WHITELIST.value, "whitelistEntry": entry}

        try:
            geo = await self._lookup_geo(ctx.ip)
        except LookupFailure as e:
            log.warning("geolocation lookup failed for %s: %s", ctx.ip, e)
            return self._failure(config, e), {"stage": Stage.LOOKUP.value}

        risk = _clamp_score(geo.risk_score)
        for stage, check in self._stages:
            blocked = check(config, geo)
            if blocked is not None:
                reason, detail = blocked
                decision = Decision(
                    blocked=True,
                    reason=reason,
                    risk_score=risk,
                    geo=geo,
                    detail=detail,
                    config_version=config.version,
                )
                return decision, {"stage": stage.value}

        return Decision(blocked=False, risk_score=risk, geo=geo, config_version=config.version), {}

    async def _lookup_geo(self, ip: str) -> GeoSnapshot:
        started = time.perf_counter()
        try:
            geo = await asyncio.wait_for(self.lookup.lookup(ip), timeout=self.lookup_timeout)
        except asyncio.TimeoutError as e:
            LOOKUP_FAILURES.labels(kind="timeout").inc()
            raise LookupFailure(f"lookup timed out after {self.lookup_timeout}s", ip=ip) from e
        except LookupFailure:
            LOOKUP_FAILURES.labels(kind="error").inc()
            raise
        except Exception as e:
            LOOKUP_FAILURES.labels(kind="error").inc()
            raise LookupFailure(f"lookup error: {e.__class__.__name__}: {e}", ip=ip) from e
        finally:
            LOOKUP_LATENCY.observe(time.perf_counter() - started)
        if not isinstance(geo, GeoSnapshot):
            LOOKUP_FAILURES.labels(kind="error").inc()
            raise LookupFailure(f"lookup returned {type(geo).__name__}, expected GeoSnapshot", ip=ip)
        return geo

    def _failure(self, config: PolicyConfig, exc: BaseException) -> Decision:
        error = f"{exc.__class__.__name__}: {exc}"
        if config.fail_open:
            return Decision(
                blocked=False,
                risk_score=0,
                detail="Location verification unavailable",
                error=error,
                config_version=config.version,
            )
        return Decision(
            blocked=True,
            reason=BlockReason.LOOKUP_FAILED,
            risk_score=100,
            detail="Location verification failed",
            error=error,
            config_version=config.version,
        )

    # ---- stages ----

    def _country_stage(self, config: PolicyConfig, geo: GeoSnapshot) -> Optional[_Block]:
        country = (geo.country or "unknown").strip().upper()
        if config.allowed_countries:
            if country not in config.allowed_countries:
                return BlockReason.COUNTRY_NOT_ALLOWLISTED, "Country not in allowlist"
            return None
        if country in config.blocked_countries:
            return BlockReason.COUNTRY_BLOCKED, "Country blocked"
        return None

    def _region_stage(self, config: PolicyConfig, geo: GeoSnapshot) -> Optional[_Block]:
        if geo.region and geo.region.strip().upper() in config.blocked_regions:
            return BlockReason.REGION_BLOCKED, "Region blocked"
        return None

    def _heuristic_stage(self, config: PolicyConfig, geo: GeoSnapshot) -> Optional[_Block]:
        category = self._classifier.classify(
            geo.isp,
            vpn=config.vpn_blocking,
            proxy=config.proxy_blocking,
            datacenter=config.datacenter_blocking,
        )
        return _CATEGORY_REASON[category] if category else None

    def _risk_stage(self, config: PolicyConfig, geo: GeoSnapshot) -> Optional[_Block]:
        threshold = config.risk_threshold
        if not 0 <= threshold <= 100:
            log.warning("risk threshold %s out of range 0..100, risk stage skipped", threshold)
            return None
        if geo.risk_score is not None and geo.risk_score >= threshold:
            return BlockReason.RISK_THRESHOLD_EXCEEDED, f"High risk score: {geo.risk_score}"
        return None

    def _time_stage(self, config: PolicyConfig, geo: GeoSnapshot) -> Optional[_Block]:
        window = config.time_window
        if not window.enabled:
            return None
        tz_name = geo.timezone or window.timezone
        check = self._time_window.check(tz_name, window.start, window.end, now=self._clock())
        if check.error:
            log.warning("time window check skipped (%s): %s", tz_name, check.error)
            return None
        if check.outside:
            return BlockReason.OUTSIDE_ALLOWED_HOURS, "Access outside allowed hours"
        return None

    # ---- audit ----

    def _audit(self, decision: Decision, ctx: RequestContext, extra: Dict[str, Any]) -> None:
        try:
            self.emitter.emit_decision(decision, ctx, **extra)
        except Exception:
            log.exception("audit emission failed")
