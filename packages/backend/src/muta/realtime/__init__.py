"""Real-time infrastructure — viewer sessions + WebSocket fan-out.

Learn: Events flow one way:
1. OrderService mutates the store, then calls OrderNotifier
2. OrderNotifier → every subscribed session's WebSocket (at most once)

AdmissionControl guards the session set (origin, quota, shared secret);
Heartbeat and SessionSweeper drop connections that went quiet.
"""
