"""Viewer sessions and the registry that holds them.

Learn: One ViewerSession per open WebSocket. It is a fixed struct — no
free-form metadata dict — and only AdmissionControl changes its fields.
The notifier just reads the registry to decide who gets what.

The registry is built once in create_app() and handed to both
AdmissionControl (writer) and OrderNotifier (reader). There is no
module-level connection map.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Optional, Protocol

from muta.events.types import ORDERS_GROUP


class SessionTransport(Protocol):
    """What the realtime layer needs from a connection.

    fastapi.WebSocket satisfies this as-is; tests use a fake.
    """

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class SessionState(str, Enum):
    OPEN = "open"
    AUTHENTICATED = "authenticated"
    BLOCKED = "blocked"
    CLOSED = "closed"


@dataclass
class ViewerSession:
    transport: SessionTransport = field(repr=False)
    origin: str
    connected_at: datetime
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    client_ip: str = "unknown"
    user_agent: str = "unknown"
    origin_validated: bool = False
    authenticated: bool = False
    groups: set[str] = field(default_factory=set)
    message_window_start: Optional[datetime] = None
    message_count: int = 0
    blocked_until: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    closed: bool = False

    @property
    def subscribed(self) -> bool:
        return ORDERS_GROUP in self.groups

    @property
    def blocked(self) -> bool:
        return self.blocked_until is not None

    @property
    def state(self) -> SessionState:
        if self.closed:
            return SessionState.CLOSED
        if self.blocked:
            return SessionState.BLOCKED
        if self.authenticated:
            return SessionState.AUTHENTICATED
        return SessionState.OPEN


class SessionRegistry:
    """The live session set, keyed by session id."""

    def __init__(self) -> None:
        self._sessions: dict[str, ViewerSession] = {}

    def add(self, session: ViewerSession) -> None:
        self._sessions[session.session_id] = session

    def remove(self, session_id: str) -> Optional[ViewerSession]:
        return self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Optional[ViewerSession]:
        return self._sessions.get(session_id)

    def in_group(self, group: str) -> list[ViewerSession]:
        return [s for s in self._sessions.values() if group in s.groups]

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[ViewerSession]:
        # Snapshot, so callers may close sessions while iterating
        return iter(list(self._sessions.values()))

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
