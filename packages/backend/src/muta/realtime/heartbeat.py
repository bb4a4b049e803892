"""Liveness probing and the periodic session sweep.

Learn: A WebSocket can go half-open (laptop lid closed, network dropped)
without either side seeing a close frame. Heartbeat catches that: every
`interval` seconds it sends {"type": "ping"} and waits up to `timeout`
seconds for the client's {"type": "pong"}. A missed pong ends run(), and
the connection handler tears the session down.

SessionSweeper is the background loop (started in the app lifespan) that
asks AdmissionControl to evict idle and stale-blocked sessions.
"""

import asyncio
from datetime import datetime, timezone

import structlog

from muta.events.types import PING
from muta.realtime.admission import AdmissionControl
from muta.realtime.sessions import ViewerSession

logger = structlog.get_logger()


class Heartbeat:
    """Probe/response liveness check for one session."""

    def __init__(self, session: ViewerSession, interval: float, timeout: float):
        self.session = session
        self.interval = interval
        self.timeout = timeout
        self.awaiting = False
        self._pong = asyncio.Event()

    def acknowledge(self) -> bool:
        """Called by the connection handler when a pong arrives.

        Returns True only for the first pong after a ping; any other pong
        is ordinary client traffic.
        """
        if not self.awaiting:
            return False
        self.awaiting = False
        self._pong.set()
        return True

    async def run(self) -> None:
        """Probe until the peer misses a deadline, then return."""
        while not self.session.closed:
            await asyncio.sleep(self.interval)
            self._pong.clear()
            self.awaiting = True
            await self.session.transport.send_json({
                "type": PING,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })
            try:
                await asyncio.wait_for(self._pong.wait(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "realtime.heartbeat_timeout",
                    session_id=self.session.session_id,
                    ip=self.session.client_ip,
                )
                return


class SessionSweeper:
    """Background task that runs AdmissionControl.sweep() periodically.

    Usage:
        sweeper = SessionSweeper(admission, interval=300)
        asyncio.create_task(sweeper.run_loop())
    """

    def __init__(self, admission: AdmissionControl, interval: float = 300.0):
        self.admission = admission
        self.interval = interval
        self._running = False

    async def run_loop(self) -> None:
        self._running = True
        logger.info("session_sweeper.started", interval=self.interval)

        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.admission.sweep()
            except Exception:
                logger.exception("session_sweeper.error")

    def stop(self) -> None:
        """Signal the sweeper to stop."""
        self._running = False
        logger.info("session_sweeper.stopping")
