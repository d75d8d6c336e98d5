# geoguard/policy/decision.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..geo import GeoSnapshot

__all__ = ["BlockReason", "Decision"]


class BlockReason(str, Enum):
    WHITELIST_ALLOWED = "whitelist_allowed"
    COUNTRY_NOT_ALLOWLISTED = "country_not_allowlisted"
    COUNTRY_BLOCKED = "country_blocked"
    REGION_BLOCKED = "region_blocked"
    VPN_DETECTED = "vpn_detected"
    PROXY_DETECTED = "proxy_detected"
    DATACENTER_DETECTED = "datacenter_detected"
    RISK_THRESHOLD_EXCEEDED = "risk_threshold_exceeded"
    OUTSIDE_ALLOWED_HOURS = "outside_allowed_hours"
    LOOKUP_FAILED = "lookup_failed"


@dataclass(frozen=True)
class Decision:
    """
    Result of one evaluation. Built and consumed inside a single call.

    ``reason`` is None for a plain allow; WHITELIST_ALLOWED marks an allow that
    skipped every other stage. ``error`` is set only when the geolocation
    lookup or an internal stage failed (fail-open or fail-closed outcome).
    """
    blocked: bool
    reason: Optional[BlockReason] = None
    risk_score: int = 0
    allowed_by_whitelist: bool = False
    geo: Optional[GeoSnapshot] = None
    detail: Optional[str] = None
    error: Optional[str] = None
    config_version: int = 0

    @property
    def country(self) -> str:
        return self.geo.country if self.geo else "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blocked": self.blocked,
            "reason": self.reason.value if self.reason else None,
            "risk_score": self.risk_score,
            "allowed_by_whitelist": self.allowed_by_whitelist,
            "geo": self.geo.to_dict() if self.geo else None,
            "detail": self.detail,
            "config_version": self.config_version,
        }
