"""Muta Orders — real-time order tracking backend.

REST API for creating, filtering and paging through collection orders,
plus a WebSocket channel that keeps every open dashboard in sync with
the in-memory order store.
"""

__version__ = "1.0.0"
