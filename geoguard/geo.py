# geoguard/geo.py
# Geolocation collaborator boundary: snapshot model + provider interface.
from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional, Protocol

from .errors import LookupFailure

__all__ = [
    "GeoSnapshot",
    "GeoLookup",
    "NoopGeoLookup",
    "StaticGeoLookup",
]


@dataclass(frozen=True)
class GeoSnapshot:
    """
    Per-request geo metadata produced by an external lookup.

    Живёт только в рамках одной оценки; ядро его не сохраняет.
    """
    country: str = "unknown"
    region: Optional[str] = None
    city: Optional[str] = None
    isp: Optional[str] = None
    org: Optional[str] = None
    risk_score: Optional[int] = None
    timezone: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GeoSnapshot":
        risk = data.get("risk_score", data.get("riskScore"))
        return cls(
            country=str(data.get("country") or "unknown"),
            region=data.get("region") or None,
            city=data.get("city") or None,
            isp=data.get("isp") or None,
            org=data.get("org") or data.get("organization") or None,
            risk_score=int(risk) if risk is not None else None,
            timezone=data.get("timezone") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class GeoLookup(Protocol):
    async def lookup(self, ip: str) -> GeoSnapshot:
        """
        Return a GeoSnapshot for ``ip`` or raise LookupFailure.
        """


class NoopGeoLookup:
    """Placeholder provider: every lookup fails, so failOpen decides."""

    async def lookup(self, ip: str) -> GeoSnapshot:
        raise LookupFailure("no geolocation provider configured", ip=ip)


class StaticGeoLookup:
    """
    Table-driven provider. Unknown IPs resolve to ``default`` or fail.

    ``delay`` simulates upstream latency (used by timeout tests and the CLI).
    """

    def __init__(
        self,
        table: Optional[Mapping[str, GeoSnapshot]] = None,
        *,
        default: Optional[GeoSnapshot] = None,
        delay: float = 0.0,
    ) -> None:
        self._table: Dict[str, GeoSnapshot] = dict(table or {})
        self._default = default
        self._delay = delay

    async def lookup(self, ip: str) -> GeoSnapshot:
        if self._delay > 0:
            await asyncio.sleep(self._delay)
        snap = self._table.get(ip, self._default)
        if snap is None:
            raise LookupFailure(f"no geolocation data for {ip}", ip=ip)
        return snap
