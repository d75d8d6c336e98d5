# geoguard/policy/__init__.py
from .audit import (
    AuditEvent,
    AuditSink,
    DecisionAuditEmitter,
    LoggingAuditSink,
    MemoryAuditSink,
)
from .config import PolicyConfig, PolicyStore, TimeWindow, Whitelist
from .decision import BlockReason, Decision
from .evaluator import PolicyEvaluator
from .guard import GuardResult, SessionLocationGuard
from .heuristics import HeuristicClassifier, NetworkCategory
from .responses import deny_headers, deny_payload
from .time_window import TimeWindowEvaluator, WindowCheck
from .whitelist import WhitelistMatcher, cidr_contains

__all__ = [
    "AuditEvent",
    "AuditSink",
    "BlockReason",
    "Decision",
    "DecisionAuditEmitter",
    "GuardResult",
    "HeuristicClassifier",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "NetworkCategory",
    "PolicyConfig",
    "PolicyEvaluator",
    "PolicyStore",
    "SessionLocationGuard",
    "TimeWindow",
    "TimeWindowEvaluator",
    "Whitelist",
    "WhitelistMatcher",
    "WindowCheck",
    "cidr_contains",
    "deny_headers",
    "deny_payload",
]
