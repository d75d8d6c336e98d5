# geoguard/policy/whitelist.py
"""
Exact-IP and CIDR membership for the policy whitelist.

IPv4 containment is plain 32-bit arithmetic:
    mask = ~(2 ** (32 - prefix) - 1)  (truncated to 32 bits)
    (ip & mask) == (base & mask)
so /32 is an exact match and /0 matches every address. IPv6 ranges fall back
to ``ipaddress`` containment. Malformed entries are skipped one by one.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Optional, Protocol

__all__ = [
    "ip_to_int",
    "prefix_mask",
    "cidr_contains",
    "WhitelistMatcher",
]

log = logging.getLogger("geoguard.policy.whitelist")

_U32 = 0xFFFFFFFF


class _WhitelistLike(Protocol):
    ips: Iterable[str]
    cidrs: Iterable[str]


def ip_to_int(ip: str) -> int:
    """Dotted quad -> unsigned 32-bit int. Raises ValueError on malformed input."""
    return int(ipaddress.IPv4Address(ip.strip()))


def prefix_mask(prefix: int) -> int:
    if not 0 <= prefix <= 32:
        raise ValueError(f"prefix length out of range: {prefix}")
    return ~(2 ** (32 - prefix) - 1) & _U32


def cidr_contains(cidr: str, ip: str) -> bool:
    """
    True iff ``ip`` lies inside ``cidr``. Raises ValueError for a malformed
    range or address; callers that must not fail use WhitelistMatcher.
    """
    base, sep, bits = cidr.strip().partition("/")
    if ":" in base:
        network = ipaddress.ip_network(cidr.strip(), strict=False)
        return ipaddress.ip_address(ip.strip()) in network
    prefix = int(bits) if sep else 32
    mask = prefix_mask(prefix)
    return (ip_to_int(ip) & mask) == (ip_to_int(base) & mask)


def _ip_version(ip: str) -> Optional[int]:
    try:
        return ipaddress.ip_address(ip).version
    except ValueError:
        return None


class WhitelistMatcher:
    """Stateless; one instance can be shared by all evaluations."""

    def matches(self, ip: str, whitelist: _WhitelistLike) -> bool:
        return self.first_match(ip, whitelist) is not None

    def first_match(self, ip: str, whitelist: _WhitelistLike) -> Optional[str]:
        """Entry that admitted ``ip`` (exact IP or CIDR), or None."""
        candidate = (ip or "").strip()
        if not candidate:
            return None
        if candidate in whitelist.ips:
            return candidate
        version = _ip_version(candidate)
        if version is None:
            # "unknown" и прочий мусор из заголовков: CIDR проверять нечем
            return None
        for cidr in whitelist.cidrs:
            if self._contains(cidr, candidate, version):
                return cidr
        return None

    @staticmethod
    def _contains(cidr: str, ip: str, version: int) -> bool:
        if (":" in cidr) != (version == 6):
            return False
        try:
            return cidr_contains(cidr, ip)
        except ValueError as e:
            log.warning("whitelist entry skipped: %s (%s)", cidr, e)
            return False
