# geoguard/__init__.py
"""
geoguard-core: location-aware access policy engine.

Оценивает запрос по IP/геолокации (whitelist, страны, регионы, VPN/proxy/
datacenter эвристики, risk score, окно разрешённых часов) и повторно
проверяет уже открытые сессии.
"""

__version__ = "0.1.0"

from .context import RequestContext
from .errors import ConfigError, GeoguardError, LookupFailure
from .geo import GeoLookup, GeoSnapshot, NoopGeoLookup, StaticGeoLookup
from .policy import (
    BlockReason,
    Decision,
    DecisionAuditEmitter,
    PolicyConfig,
    PolicyEvaluator,
    PolicyStore,
    SessionLocationGuard,
)
from .session import MemorySessionManager, SessionIdentity, SessionManager

__all__ = [
    "__version__",
    "BlockReason",
    "ConfigError",
    "Decision",
    "DecisionAuditEmitter",
    "GeoLookup",
    "GeoSnapshot",
    "GeoguardError",
    "LookupFailure",
    "MemorySessionManager",
    "NoopGeoLookup",
    "PolicyConfig",
    "PolicyEvaluator",
    "PolicyStore",
    "RequestContext",
    "SessionIdentity",
    "SessionLocationGuard",
    "SessionManager",
    "StaticGeoLookup",
]
