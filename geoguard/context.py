# geoguard/context.py
# -*- coding: utf-8 -*-
"""
Контекст входящего запроса для оценки политики.

Собирает client IP (с учётом прокси/CDN заголовков), user-agent, путь, метод
и опциональную идентичность пользователя. Значение неизменяемое и живёт в
пределах одной оценки.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

__all__ = [
    "UNKNOWN_IP",
    "RequestContext",
    "client_ip_from_headers",
]

UNKNOWN_IP = "unknown"

# Порядок доверия: CDN -> первый хоп XFF -> reverse proxy
_IP_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    # Starlette Headers уже case-insensitive, обычный dict нет
    v = headers.get(name)
    if v is None:
        for k, val in headers.items():
            if k.lower() == name:
                return val
    return v


def client_ip_from_headers(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    for name in _IP_HEADERS:
        raw = _header(headers, name)
        if not raw:
            continue
        if name == "x-forwarded-for":
            raw = raw.split(",")[0]
        ip = raw.strip()
        if ip:
            return ip
    return peer or UNKNOWN_IP


@dataclass(frozen=True)
class RequestContext:
    ip: str
    user_agent: Optional[str] = None
    path: Optional[str] = None
    method: Optional[str] = None
    user_email: Optional[str] = None
    auth_type: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        *,
        peer: Optional[str] = None,
        path: Optional[str] = None,
        method: Optional[str] = None,
        user_email: Optional[str] = None,
        auth_type: Optional[str] = None,
    ) -> "RequestContext":
        return cls(
            ip=client_ip_from_headers(headers, peer),
            user_agent=_header(headers, "user-agent"),
            path=path,
            method=method.upper() if method else None,
            user_email=user_email,
            auth_type=auth_type,
        )
