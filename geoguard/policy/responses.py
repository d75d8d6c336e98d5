# geoguard/policy/responses.py
# Deny payload для внешних клиентов: код, сообщение, причина, страна, риск.
# Никаких исключений, эвристик или содержимого конфига.
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .decision import Decision

__all__ = [
    "DEFAULT_SUPPORT_CONTACT",
    "LOCATION_DENIED",
    "SESSION_TERMINATED",
    "deny_payload",
    "deny_headers",
]

DEFAULT_SUPPORT_CONTACT = "support@example.com"

LOCATION_DENIED = ("Access denied", "Access from your location is not permitted")
SESSION_TERMINATED = ("Session terminated", "Your session was ended because your location is no longer permitted")


def deny_payload(
    decision: Decision,
    *,
    support_contact: str = DEFAULT_SUPPORT_CONTACT,
    error: str = LOCATION_DENIED[0],
    message: str = LOCATION_DENIED[1],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    ts = (now or datetime.now(timezone.utc)).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return {
        "error": error,
        "message": message,
        "blocked": True,
        "reason": decision.reason.value if decision.reason else "location",
        "country": decision.country,
        "riskScore": decision.risk_score,
        "timestamp": ts,
        "supportContact": support_contact,
    }


def deny_headers(decision: Decision) -> Dict[str, str]:
    return {
        "X-Blocked-Reason": decision.reason.value if decision.reason else "location",
        "X-Blocked-Country": decision.country,
        "X-Risk-Score": str(decision.risk_score),
        "Cache-Control": "no-store, no-cache, must-revalidate",
        "Pragma": "no-cache",
    }
