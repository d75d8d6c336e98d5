# geoguard/policy/heuristics.py
# Дешёвая эвристика по строке ISP/организации: VPN -> proxy -> datacenter.
# Таблицы ключевых слов отделены от порядка пайплайна.
from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence, Tuple

__all__ = [
    "NetworkCategory",
    "VPN_INDICATORS",
    "PROXY_INDICATORS",
    "DATACENTER_INDICATORS",
    "HeuristicClassifier",
]


class NetworkCategory(str, Enum):
    VPN = "vpn"
    PROXY = "proxy"
    DATACENTER = "datacenter"


VPN_INDICATORS: Tuple[str, ...] = (
    "vpn",
    "virtual private network",
    "tunnel",
    "secure",
    "privacy",
    "anonymous",
    "hide",
    "mask",
)

PROXY_INDICATORS: Tuple[str, ...] = (
    "proxy",
    "socks",
    "http proxy",
    "web proxy",
    "anonymizer",
    "tor",
)

DATACENTER_INDICATORS: Tuple[str, ...] = (
    "hosting",
    "datacenter",
    "data center",
    "cloud",
    "server",
    "dedicated",
    "colocation",
    "aws",
    "google cloud",
    "azure",
    "digitalocean",
    "ovh",
    "hetzner",
    "linode",
)


def _hit(text: str, indicators: Sequence[str]) -> bool:
    return any(ind in text for ind in indicators)


class HeuristicClassifier:
    """
    Not authoritative: false positives/negatives are expected. The contract is
    the deterministic table lookup, checked in the fixed order VPN, proxy,
    datacenter, consulting only the enabled categories.
    """

    def __init__(
        self,
        *,
        vpn_indicators: Sequence[str] = VPN_INDICATORS,
        proxy_indicators: Sequence[str] = PROXY_INDICATORS,
        datacenter_indicators: Sequence[str] = DATACENTER_INDICATORS,
    ) -> None:
        self._tables = (
            (NetworkCategory.VPN, tuple(i.lower() for i in vpn_indicators)),
            (NetworkCategory.PROXY, tuple(i.lower() for i in proxy_indicators)),
            (NetworkCategory.DATACENTER, tuple(i.lower() for i in datacenter_indicators)),
        )

    def classify(
        self,
        text: Optional[str],
        *,
        vpn: bool = True,
        proxy: bool = True,
        datacenter: bool = True,
    ) -> Optional[NetworkCategory]:
        if not text:
            return None
        lowered = text.lower()
        enabled = {NetworkCategory.VPN: vpn, NetworkCategory.PROXY: proxy, NetworkCategory.DATACENTER: datacenter}
        for category, indicators in self._tables:
            if enabled[category] and _hit(lowered, indicators):
                return category
        return None
