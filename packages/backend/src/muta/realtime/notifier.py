"""Fan-out notifier — turns order mutations into WebSocket frames.

Learn: Delivery is fire-and-forget, exactly like Redis pub/sub: each open
session gets each event at most once, with no ack, retry or replay. A
session that is gone at send time simply misses the event. That's fine —
a reconnecting client re-fetches page 1 and is consistent again
(reconnect-resync, not gap-filling).

Two delivery primitives:
- broadcast(frame): every open session
- broadcast_to_group(group, frame): sessions that joined a group

Order change events go to the "orders" group, so only sessions that sent
"subscribe" receive the stream. Unsubscribed sessions still count as
connected in stats().
"""

import asyncio
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog
from pydantic import BaseModel

from muta.events.types import (
    INITIAL_ORDERS,
    ORDER_CREATED,
    ORDER_DELETED,
    ORDER_UPDATED,
    ORDERS_GROUP,
    SYSTEM_STATUS,
)
from muta.realtime.sessions import SessionRegistry, ViewerSession
from muta.schemas.order import Order, OrderPage

logger = structlog.get_logger()


class ChangeEvent(BaseModel):
    """Envelope for one order mutation: {type, order, timestamp}."""

    type: str  # ORDER_CREATED | ORDER_UPDATED | ORDER_DELETED
    order: Order
    timestamp: datetime

    def to_frame(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderNotifier:
    """Delivers typed change events to viewer sessions."""

    def __init__(self, registry: SessionRegistry, group: str = ORDERS_GROUP):
        self.registry = registry
        self.group = group

    # ─── Order events ────────────────────────────────────

    async def order_created(self, order: Order) -> int:
        return await self._publish(ORDER_CREATED, order)

    async def order_updated(self, order: Order) -> int:
        return await self._publish(ORDER_UPDATED, order)

    async def order_deleted(self, order: Order) -> int:
        return await self._publish(ORDER_DELETED, order)

    async def _publish(self, event_type: str, order: Order) -> int:
        event = ChangeEvent(type=event_type, order=order, timestamp=_utcnow())
        delivered = await self.broadcast_to_group(self.group, event.to_frame())
        logger.debug(
            "notifier.event_sent",
            type=event_type,
            order_id=order.id,
            recipients=delivered,
        )
        return delivered

    # ─── Delivery primitives ─────────────────────────────

    async def broadcast(self, frame: dict[str, Any]) -> int:
        """Send to every open session. Returns how many sends succeeded."""
        return await self._deliver_all(self.registry, frame)

    async def broadcast_to_group(self, group: str, frame: dict[str, Any]) -> int:
        return await self._deliver_all(self.registry.in_group(group), frame)

    async def send_to_session(self, session_id: str, frame: dict[str, Any]) -> bool:
        session = self.registry.get(session_id)
        if session is None:
            logger.warning("notifier.unknown_session", session_id=session_id)
            return False
        return await self._deliver(session, frame)

    async def send_initial_snapshot(self, session: ViewerSession, page: OrderPage) -> bool:
        """Push the baseline a client builds on before incremental events."""
        frame = {
            "type": INITIAL_ORDERS,
            **page.model_dump(mode="json", by_alias=True),
            "timestamp": _utcnow().isoformat(),
        }
        return await self._deliver(session, frame)

    async def notify_system_status(self, status: str) -> int:
        return await self.broadcast({
            "type": SYSTEM_STATUS,
            "status": status,
            "timestamp": _utcnow().isoformat(),
        })

    async def _deliver_all(
        self, sessions: Iterable[ViewerSession], frame: dict[str, Any]
    ) -> int:
        targets = [s for s in sessions if not s.closed]
        if not targets:
            return 0
        results = await asyncio.gather(*(self._deliver(s, frame) for s in targets))
        return sum(results)

    async def _deliver(self, session: ViewerSession, frame: dict[str, Any]) -> bool:
        """One send, at most once. A failed send never affects other sessions."""
        if session.closed:
            return False
        try:
            await session.transport.send_json(frame)
            return True
        except Exception as e:
            logger.warning(
                "notifier.delivery_failed",
                session_id=session.session_id,
                type=frame.get("type"),
                error=str(e),
            )
            return False

    # ─── Introspection ───────────────────────────────────

    def connection_count(self) -> int:
        return len(self.registry)

    def connected_session_ids(self) -> list[str]:
        return [s.session_id for s in self.registry]

    def get_session(self, session_id: str) -> Optional[ViewerSession]:
        return self.registry.get(session_id)

    def stats(self) -> dict[str, Any]:
        sessions = list(self.registry)
        return {
            "total": len(sessions),
            "authenticated": sum(1 for s in sessions if s.authenticated),
            "subscribed": sum(1 for s in sessions if self.group in s.groups),
            "blocked": sum(1 for s in sessions if s.blocked),
            "byOrigin": dict(Counter(s.origin for s in sessions)),
        }
