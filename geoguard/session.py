# geoguard/session.py
# Session-management collaborator boundary + in-memory default store.
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

__all__ = [
    "SessionIdentity",
    "SessionManager",
    "MemorySessionManager",
]


@dataclass(frozen=True)
class SessionIdentity:
    session_id: str
    subject: str
    email: Optional[str] = None
    auth_type: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)


class SessionManager(Protocol):
    """
    Абстракция внешнего хранилища сессий (identity provider / session store).
    """
    async def get_identity(self, session_id: str) -> Optional[SessionIdentity]: ...
    async def terminate(self, identity: SessionIdentity) -> None: ...


class MemorySessionManager:
    """
    Потокобезопасный in-process реестр сессий.
    Подходит для тестов и single-node развёртываний; в проде заменяется адаптером.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, SessionIdentity] = {}
        self._terminated: Dict[str, float] = {}
        self._lock = threading.RLock()

    def register(self, identity: SessionIdentity) -> None:
        with self._lock:
            self._sessions[identity.session_id] = identity
            self._terminated.pop(identity.session_id, None)

    def is_active(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def terminated_ids(self) -> List[str]:
        with self._lock:
            return list(self._terminated)

    async def get_identity(self, session_id: str) -> Optional[SessionIdentity]:
        with self._lock:
            return self._sessions.get(session_id)

    async def terminate(self, identity: SessionIdentity) -> None:
        with self._lock:
            self._sessions.pop(identity.session_id, None)
            self._terminated[identity.session_id] = time.time()
