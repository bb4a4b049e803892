"""Event type constants.

Learn: Centralizing frame types as constants prevents typos and makes it
easy to see the whole WebSocket vocabulary in one place.
"""

# ─── Server → client: order changes ──────────────────────

ORDER_CREATED = "order-created"
ORDER_UPDATED = "order-update"
ORDER_DELETED = "order-deleted"
INITIAL_ORDERS = "initial-orders"

# ─── Server → client: protocol ───────────────────────────

PONG = "pong"
PING = "ping"  # liveness probe; the client answers with PONG
ACK = "ack"
ERROR = "error"
SYSTEM_STATUS = "system-status"

# ─── Client → server ─────────────────────────────────────

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"

# ─── Subscription groups ─────────────────────────────────

ORDERS_GROUP = "orders"
