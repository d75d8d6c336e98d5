# geoguard/policy/config.py
# -*- coding: utf-8 -*-
"""
Versioned, hot-swappable location policy.

PolicyConfig is an immutable value. An update never edits the live object:
a new snapshot is built (PolicyConfig.merged / PolicyStore.update) and the
store swaps a single reference. An evaluation reads ``store.snapshot()`` once
and works with that object only, so a reload in flight cannot produce a mix
of old and new rule fields.

Keys are accepted in snake_case or in the camelCase used by the admin
dashboard payloads (blockedCountries, timeBasedBlocking, allowedHours, ...).
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Union

from ..errors import ConfigError

__all__ = [
    "Whitelist",
    "TimeWindow",
    "PolicyConfig",
    "PolicyStore",
]

log = logging.getLogger("geoguard.policy.config")

_StrItems = Union[str, Iterable[str], None]

_ALIASES: Dict[str, str] = {
    "blockedCountries": "blocked_countries",
    "blockedRegions": "blocked_regions",
    "allowedCountries": "allowed_countries",
    "vpnBlocking": "vpn_blocking",
    "proxyBlocking": "proxy_blocking",
    "datacenterBlocking": "datacenter_blocking",
    "riskThreshold": "risk_threshold",
    "failOpen": "fail_open",
    "timeBasedBlocking": "time_window",
    "time_based_blocking": "time_window",
    "allowedHours": "allowed_hours",
}


def _canon(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {_ALIASES.get(k, k): v for k, v in data.items()}


_SEQ_TYPES = (list, tuple, set, frozenset)


def _items(value: _StrItems, name: str = "value") -> Iterable[str]:
    if value is None:
        return ()
    if isinstance(value, str):
        return value.split(",")
    if not isinstance(value, _SEQ_TYPES):
        raise ConfigError(f"{name}: expected list of strings, got {type(value).__name__}")
    bad = [v for v in value if not isinstance(v, str)]
    if bad:
        raise ConfigError(f"{name}: expected list of strings, got item {bad[0]!r}")
    return value


def _codes(value: _StrItems, name: str = "value") -> FrozenSet[str]:
    return frozenset(s.strip().upper() for s in _items(value, name) if s and s.strip())


def _entries(value: _StrItems, name: str = "value") -> FrozenSet[str]:
    return frozenset(s.strip() for s in _items(value, name) if s and s.strip())


def _hours(value: Any) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"time_window.allowed_hours: expected object, got {type(value).__name__}")
    return value


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name}: expected integer, got bool")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name}: expected integer, got {value!r}") from e


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s in ("1", "true", "yes", "y", "on"):
            return True
        if s in ("0", "false", "no", "n", "off", ""):
            return False
    if isinstance(value, int):
        return bool(value)
    raise ConfigError(f"{name}: expected boolean, got {value!r}")


@dataclass(frozen=True)
class Whitelist:
    ips: FrozenSet[str] = frozenset()
    cidrs: FrozenSet[str] = frozenset()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Whitelist":
        unknown = set(data) - {"ips", "cidrs"}
        if unknown:
            raise ConfigError(f"whitelist: unknown keys {sorted(unknown)}")
        return cls(ips=_entries(data.get("ips"), "whitelist.ips"), cidrs=_entries(data.get("cidrs"), "whitelist.cidrs"))

    def merged(self, changes: Mapping[str, Any]) -> "Whitelist":
        data = {"ips": self.ips, "cidrs": self.cidrs}
        data.update(changes)
        return Whitelist.from_mapping(data)

    def to_dict(self) -> Dict[str, Any]:
        return {"ips": sorted(self.ips), "cidrs": sorted(self.cidrs)}


@dataclass(frozen=True)
class TimeWindow:
    enabled: bool = False
    timezone: str = "UTC"
    start: int = 0
    end: int = 24

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TimeWindow":
        d = _canon(data)
        hours = _hours(d.pop("allowed_hours", None))
        d.setdefault("start", hours.get("start", 0))
        d.setdefault("end", hours.get("end", 24))
        unknown = set(d) - {"enabled", "timezone", "start", "end"}
        if unknown:
            raise ConfigError(f"time_window: unknown keys {sorted(unknown)}")
        # диапазон часов здесь не проверяем: битое окно пропускается при оценке
        return cls(
            enabled=_as_bool("time_window.enabled", d.get("enabled", False)),
            timezone=str(d.get("timezone") or "UTC"),
            start=_as_int("time_window.start", d["start"]),
            end=_as_int("time_window.end", d["end"]),
        )

    def merged(self, changes: Mapping[str, Any]) -> "TimeWindow":
        data: Dict[str, Any] = dataclasses.asdict(self)
        c = _canon(changes)
        hours = _hours(c.pop("allowed_hours", None))
        if hours:
            data.update({k: v for k, v in hours.items() if k in ("start", "end")})
        data.update(c)
        return TimeWindow.from_mapping(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "timezone": self.timezone,
            "allowed_hours": {"start": self.start, "end": self.end},
        }


_FIELDS = (
    "enabled",
    "blocked_countries",
    "blocked_regions",
    "allowed_countries",
    "vpn_blocking",
    "proxy_blocking",
    "datacenter_blocking",
    "risk_threshold",
    "fail_open",
    "whitelist",
    "time_window",
)


@dataclass(frozen=True)
class PolicyConfig:
    enabled: bool = False
    blocked_countries: FrozenSet[str] = frozenset({"CN", "RU", "KP", "IR", "SY"})
    blocked_regions: FrozenSet[str] = frozenset()
    allowed_countries: Optional[FrozenSet[str]] = None
    vpn_blocking: bool = False
    proxy_blocking: bool = False
    datacenter_blocking: bool = False
    risk_threshold: int = 70
    fail_open: bool = False
    whitelist: Whitelist = field(default_factory=Whitelist)
    time_window: TimeWindow = field(default_factory=TimeWindow)
    version: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        # коды сравниваются в верхнем регистре, как и на стороне снапшота
        object.__setattr__(self, "blocked_countries", _codes(self.blocked_countries, "blocked_countries"))
        object.__setattr__(self, "blocked_regions", _codes(self.blocked_regions, "blocked_regions"))
        if self.allowed_countries is not None:
            object.__setattr__(self, "allowed_countries", _codes(self.allowed_countries, "allowed_countries"))

    @property
    def country_mode(self) -> str:
        # непустой allowlist полностью отключает blocklist
        return "allowlist" if self.allowed_countries else "blocklist"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PolicyConfig":
        d = _canon(data)
        unknown = set(d) - set(_FIELDS) - {"version", "country_mode"}
        if unknown:
            raise ConfigError(f"policy: unknown keys {sorted(unknown)}")
        defaults = cls()
        allowed = d.get("allowed_countries", defaults.allowed_countries)
        wl = d.get("whitelist")
        tw = d.get("time_window")
        for name, block, kind in (("whitelist", wl, Whitelist), ("time_window", tw, TimeWindow)):
            if block is not None and not isinstance(block, (Mapping, kind)):
                raise ConfigError(f"{name}: expected object, got {type(block).__name__}")
        return cls(
            enabled=_as_bool("enabled", d.get("enabled", defaults.enabled)),
            blocked_countries=_codes(d.get("blocked_countries", defaults.blocked_countries), "blocked_countries"),
            blocked_regions=_codes(d.get("blocked_regions", defaults.blocked_regions), "blocked_regions"),
            allowed_countries=None if allowed is None else _codes(allowed, "allowed_countries"),
            vpn_blocking=_as_bool("vpn_blocking", d.get("vpn_blocking", defaults.vpn_blocking)),
            proxy_blocking=_as_bool("proxy_blocking", d.get("proxy_blocking", defaults.proxy_blocking)),
            datacenter_blocking=_as_bool("datacenter_blocking", d.get("datacenter_blocking", defaults.datacenter_blocking)),
            risk_threshold=_as_int("risk_threshold", d.get("risk_threshold", defaults.risk_threshold)),
            fail_open=_as_bool("fail_open", d.get("fail_open", defaults.fail_open)),
            whitelist=wl if isinstance(wl, Whitelist) else Whitelist.from_mapping(wl or {}),
            time_window=tw if isinstance(tw, TimeWindow) else TimeWindow.from_mapping(tw or {}),
            version=_as_int("version", d.get("version", 0)),
        )

    def merged(self, changes: Mapping[str, Any]) -> "PolicyConfig":
        """New snapshot with ``changes`` applied; nested blocks merge key by key."""
        c = _canon(changes)
        data: Dict[str, Any] = {name: getattr(self, name) for name in _FIELDS}
        for key, value in c.items():
            if key == "whitelist" and isinstance(value, Mapping):
                data[key] = self.whitelist.merged(value)
            elif key == "time_window" and isinstance(value, Mapping):
                data[key] = self.time_window.merged(value)
            else:
                data[key] = value
        data["version"] = self.version
        return PolicyConfig.from_mapping(data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "enabled": self.enabled,
            "country_mode": self.country_mode,
            "blocked_countries": sorted(self.blocked_countries),
            "blocked_regions": sorted(self.blocked_regions),
            "allowed_countries": None if self.allowed_countries is None else sorted(self.allowed_countries),
            "vpn_blocking": self.vpn_blocking,
            "proxy_blocking": self.proxy_blocking,
            "datacenter_blocking": self.datacenter_blocking,
            "risk_threshold": self.risk_threshold,
            "fail_open": self.fail_open,
            "whitelist": self.whitelist.to_dict(),
            "time_window": self.time_window.to_dict(),
        }


class PolicyStore:
    """
    Holder of the live PolicyConfig.

    Readers call ``snapshot()`` without locking (a single attribute read).
    Writers serialize on a lock, build the next snapshot, stamp the next
    version and swap the reference.
    """

    def __init__(self, initial: Optional[PolicyConfig] = None) -> None:
        self._lock = threading.Lock()
        self._current = dataclasses.replace(initial or PolicyConfig(), version=1)

    def snapshot(self) -> PolicyConfig:
        return self._current

    @property
    def version(self) -> int:
        return self._current.version

    def replace(self, config: PolicyConfig) -> PolicyConfig:
        with self._lock:
            new = dataclasses.replace(config, version=self._current.version + 1)
            self._current = new
        log.info("policy replaced", extra={"policy_version": new.version})
        return new

    def update(self, changes: Mapping[str, Any]) -> PolicyConfig:
        with self._lock:
            base = self._current
            new = dataclasses.replace(base.merged(changes), version=base.version + 1)
            self._current = new
        log.info("policy updated", extra={"policy_version": new.version, "keys": sorted(_canon(changes))})
        return new
