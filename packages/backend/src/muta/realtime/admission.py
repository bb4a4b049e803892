"""Session admission control — the gate in front of the session set.

Learn: Two gates, one per phase of a connection:

1. Connect: the Origin header must be on the allow-list (or be
   http://localhost:<port> in development). Anything else never gets a
   session.
2. Every inbound message: a fixed-window quota (default 30 messages per
   60 s). The message that goes over the quota blocks the session for
   5 minutes. While blocked, messages are rejected without being counted.
   The first message after the block expires resets the window.

"subscribe" additionally needs an authenticated session: either no
shared secret is configured (sessions start authenticated) or the client
sends the secret once.

State per session:
  open ⇄ authenticated, either → blocked → back when the block expires,
  anything → closed (terminal)

This class is the ONLY writer of ViewerSession fields and of the registry.
"""

import hmac
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from muta.config import Settings
from muta.errors import (
    AuthenticationError,
    ClientBlockedError,
    OriginRejectedError,
    RateLimitExceededError,
)
from muta.events.types import ORDERS_GROUP
from muta.realtime.sessions import SessionRegistry, SessionTransport, ViewerSession

logger = structlog.get_logger()

MIN_API_KEY_LENGTH = 8
# WebSocket close code for policy violations (RFC 6455)
POLICY_VIOLATION = 1008


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdmissionControl:
    """Origin check, message quota, subscribe auth, and eviction."""

    def __init__(
        self,
        registry: SessionRegistry,
        allowed_origins: list[str],
        development: bool = False,
        api_key: Optional[str] = None,
        window_seconds: float = 60.0,
        max_messages: int = 30,
        block_seconds: float = 300.0,
        max_idle_hours: float = 24.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.registry = registry
        self.allowed_origins = [o.strip() for o in allowed_origins]
        self.development = development
        self.api_key = api_key
        self.window = timedelta(seconds=window_seconds)
        self.max_messages = max_messages
        self.block_duration = timedelta(seconds=block_seconds)
        self.max_idle = timedelta(hours=max_idle_hours)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        registry: SessionRegistry,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "AdmissionControl":
        return cls(
            registry,
            allowed_origins=settings.cors_origins,
            development=settings.is_development,
            api_key=settings.ws_api_key,
            window_seconds=settings.ws_rate_window_seconds,
            max_messages=settings.ws_max_messages,
            block_seconds=settings.ws_block_seconds,
            max_idle_hours=settings.ws_session_max_idle_hours,
            clock=clock,
        )

    @property
    def requires_auth(self) -> bool:
        return self.api_key is not None

    # ─── Gate 1: connect ─────────────────────────────────

    def origin_allowed(self, origin: Optional[str]) -> bool:
        if not origin:
            return False
        if origin in self.allowed_origins:
            return True
        return self.development and origin.startswith("http://localhost:")

    def admit(
        self,
        transport: SessionTransport,
        origin: Optional[str],
        client_ip: str = "unknown",
        user_agent: str = "unknown",
    ) -> ViewerSession:
        """Create and register a session, or raise OriginRejectedError."""
        if not self.origin_allowed(origin):
            logger.warning(
                "security.ws_invalid_origin",
                origin=origin,
                ip=client_ip,
                user_agent=user_agent,
            )
            raise OriginRejectedError("Invalid origin")

        now = self._clock()
        session = ViewerSession(
            transport=transport,
            origin=origin,
            connected_at=now,
            client_ip=client_ip,
            user_agent=user_agent,
            origin_validated=True,
            authenticated=not self.requires_auth,
            message_window_start=now,
            last_seen=now,
        )
        self.registry.add(session)
        logger.info(
            "realtime.session_admitted",
            session_id=session.session_id,
            ip=client_ip,
            origin=origin,
            requires_auth=self.requires_auth,
            total_sessions=len(self.registry),
        )
        return session

    # ─── Gate 2: every inbound message ───────────────────

    def touch(self, session: ViewerSession) -> None:
        """Record activity (any inbound frame, including pongs)."""
        session.last_seen = self._clock()

    def check_message(self, session: ViewerSession) -> None:
        """Count one inbound message against the session's quota.

        Raises ClientBlockedError while a block is running (not counted),
        or RateLimitExceededError for the message that trips the quota.
        """
        now = self._clock()

        if session.blocked_until is not None:
            if now < session.blocked_until:
                logger.warning(
                    "security.ws_blocked_message",
                    session_id=session.session_id,
                    ip=session.client_ip,
                )
                raise ClientBlockedError("Client is temporarily blocked")
            # Block served, start over with a fresh window
            session.blocked_until = None
            session.message_count = 0
            session.message_window_start = now
            logger.info("realtime.session_unblocked", session_id=session.session_id)

        window_start = session.message_window_start
        if window_start is None or now - window_start > self.window:
            session.message_window_start = now
            session.message_count = 1
            return

        session.message_count += 1
        if session.message_count > self.max_messages:
            session.blocked_until = now + self.block_duration
            logger.warning(
                "security.ws_rate_limit_exceeded",
                session_id=session.session_id,
                ip=session.client_ip,
                message_count=session.message_count,
            )
            raise RateLimitExceededError(
                "Rate limit exceeded. Client temporarily blocked."
            )

    # ─── Subscriptions ───────────────────────────────────

    def authorize_subscribe(
        self, session: ViewerSession, api_key: Optional[str] = None
    ) -> bool:
        """Make sure the session may subscribe.

        Returns True if this call is what authenticated the session.
        Raises AuthenticationError otherwise; the session stays open.
        """
        if session.authenticated:
            return False

        if self.requires_auth and (
            api_key is None
            or len(api_key) < MIN_API_KEY_LENGTH
            or not hmac.compare_digest(api_key.encode(), self.api_key.encode())
        ):
            logger.warning(
                "security.ws_failed_auth",
                session_id=session.session_id,
                ip=session.client_ip,
            )
            raise AuthenticationError("Authentication required")

        session.authenticated = True
        logger.info(
            "realtime.session_authenticated",
            session_id=session.session_id,
            ip=session.client_ip,
        )
        return True

    def subscribe(
        self,
        session: ViewerSession,
        api_key: Optional[str] = None,
        group: str = ORDERS_GROUP,
    ) -> bool:
        """Authorize, then join a broadcast group.

        Returns True when the session was authenticated by this call —
        the caller owes it an initial snapshot before it joins the stream.
        """
        newly_authenticated = self.authorize_subscribe(session, api_key)
        session.groups.add(group)
        logger.debug("realtime.subscribed", session_id=session.session_id, group=group)
        return newly_authenticated

    def unsubscribe(self, session: ViewerSession, group: str = ORDERS_GROUP) -> None:
        session.groups.discard(group)
        logger.debug("realtime.unsubscribed", session_id=session.session_id, group=group)

    # ─── Teardown ────────────────────────────────────────

    def close(self, session: ViewerSession, reason: str = "disconnect") -> None:
        """Terminal transition. Safe to call more than once."""
        if session.closed:
            return
        session.closed = True
        session.groups.clear()
        self.registry.remove(session.session_id)
        duration = (self._clock() - session.connected_at).total_seconds()
        logger.info(
            "realtime.session_closed",
            session_id=session.session_id,
            ip=session.client_ip,
            reason=reason,
            duration_seconds=round(duration, 3),
            total_sessions=len(self.registry),
        )

    def stale_reason(self, session: ViewerSession) -> Optional[str]:
        """Why the sweeper should evict this session, or None."""
        now = self._clock()
        if session.blocked_until is not None and now > session.blocked_until:
            return "stale_block"
        last_seen = session.last_seen or session.connected_at
        if now - last_seen > self.max_idle:
            return "idle"
        return None

    async def sweep(self) -> int:
        """Evict idle sessions and sessions whose block expired unused."""
        evicted = 0
        for session in self.registry:
            reason = self.stale_reason(session)
            if reason is None:
                continue
            self.close(session, reason=reason)
            try:
                await session.transport.close(code=POLICY_VIOLATION, reason=reason)
            except Exception as e:
                logger.debug(
                    "realtime.sweep_close_failed",
                    session_id=session.session_id,
                    error=str(e),
                )
            evicted += 1

        if evicted:
            logger.info("realtime.sessions_swept", evicted=evicted)
        return evicted
