"""WebSocket endpoint — live order stream for viewer clients.

Learn: Each browser tab connects to /ws/orders. The handler:
1. Checks the Origin header BEFORE accepting (close code 4003 on failure)
2. Sends the initial snapshot once the session is authenticated
3. Answers client frames (subscribe / unsubscribe / ping / pong)
4. Runs a heartbeat next to the receive loop and tears everything down
   when either one finishes

Everything the handler needs (admission, notifier, service, settings)
lives on app.state — built once in create_app().
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional, Union

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError
from starlette.websockets import WebSocketState

from muta.errors import AppError, OriginRejectedError
from muta.events.types import ACK, ERROR, ORDERS_GROUP, PONG, SUBSCRIBE, UNSUBSCRIBE
from muta.realtime.admission import AdmissionControl
from muta.realtime.heartbeat import Heartbeat
from muta.realtime.notifier import OrderNotifier
from muta.realtime.sessions import ViewerSession
from muta.schemas.messages import ClientMessage
from muta.services.order_service import OrderService

logger = structlog.get_logger()
router = APIRouter()

# Application-defined close code (4000-4999 range)
ORIGIN_REJECTED_CLOSE = 4003


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_frame(message: str, code: Optional[str] = None) -> dict[str, Any]:
    frame = {"type": ERROR, "error": message, "timestamp": _now()}
    if code:
        frame["code"] = code
    return frame


class OrderStreamHandler:
    """Turns one inbound text frame into (at most) one reply frame."""

    def __init__(
        self,
        session: ViewerSession,
        admission: AdmissionControl,
        notifier: OrderNotifier,
        service: OrderService,
        heartbeat: Optional[Heartbeat] = None,
    ):
        self.session = session
        self.admission = admission
        self.notifier = notifier
        self.service = service
        self.heartbeat = heartbeat

    async def send_snapshot(self) -> None:
        page = await self.service.get_initial_snapshot()
        await self.notifier.send_initial_snapshot(self.session, page)

    async def handle(self, raw: Union[str, bytes]) -> Optional[dict[str, Any]]:
        """Binary frames are never valid; they are counted and rejected."""
        self.admission.touch(self.session)

        data = None
        if isinstance(raw, str):
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                pass

        is_pong = isinstance(data, dict) and data.get("type") == PONG
        # The pong answering an outstanding ping is not counted
        if is_pong and self.heartbeat is not None and self.heartbeat.acknowledge():
            return None

        try:
            self.admission.check_message(self.session)
        except AppError as e:
            return error_frame(e.message, e.code)

        if is_pong:
            return None

        try:
            message = ClientMessage.model_validate(data)
        except PydanticValidationError:
            logger.debug("realtime.invalid_message", session_id=self.session.session_id)
            return error_frame("Invalid message format", "VALIDATION_ERROR")

        if message.type == SUBSCRIBE:
            return await self._subscribe(message)
        if message.type == UNSUBSCRIBE:
            self.admission.unsubscribe(self.session)
            return {"type": ACK, "action": UNSUBSCRIBE, "group": ORDERS_GROUP, "timestamp": _now()}
        return {"type": PONG, "timestamp": _now()}

    async def _subscribe(self, message: ClientMessage) -> dict[str, Any]:
        try:
            newly_authenticated = self.admission.authorize_subscribe(
                self.session, message.api_key
            )
        except AppError as e:
            return error_frame(e.message, e.code)

        # Snapshot goes out before the session joins the group
        if newly_authenticated:
            await self.send_snapshot()
        self.admission.subscribe(self.session)
        return {"type": ACK, "action": SUBSCRIBE, "group": ORDERS_GROUP, "timestamp": _now()}


@router.websocket("/ws/orders")
async def orders_websocket(websocket: WebSocket):
    """WebSocket endpoint for the live order stream.

    Learn: Two concurrent tasks run:
    1. Client listener — reads frames and answers them
    2. Heartbeat — pings every ws_ping_interval, gives up after ws_ping_timeout

    When either finishes, the other is cancelled and the session closed.
    """
    state = websocket.app.state
    admission: AdmissionControl = state.admission
    cfg = state.settings

    # ── Origin check (before accept) ────────────────────────
    client_ip = websocket.client.host if websocket.client else "unknown"
    try:
        session = admission.admit(
            websocket,
            origin=websocket.headers.get("origin"),
            client_ip=client_ip,
            user_agent=websocket.headers.get("user-agent", "unknown"),
        )
    except OriginRejectedError as e:
        await websocket.close(code=ORIGIN_REJECTED_CLOSE, reason=e.message)
        return

    heartbeat = Heartbeat(session, interval=cfg.ws_ping_interval, timeout=cfg.ws_ping_timeout)
    handler = OrderStreamHandler(
        session, admission, state.notifier, state.order_service, heartbeat
    )

    async def client_listener():
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                reply = await handler.handle(raw)
                if reply is not None:
                    await websocket.send_json(reply)
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    reason = "disconnect"
    tasks: list[asyncio.Task] = []
    try:
        # ── Connection accepted ─────────────────────────────
        await websocket.accept()

        if session.authenticated:
            await handler.send_snapshot()

        client_task = asyncio.create_task(client_listener())
        heartbeat_task = asyncio.create_task(heartbeat.run())
        tasks = [client_task, heartbeat_task]

        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        if heartbeat_task in done:
            reason = "heartbeat_timeout"
        for task in done:
            if task.exception() is not None:
                reason = "error"
                logger.warning(
                    "realtime.connection_error",
                    session_id=session.session_id,
                    error=str(task.exception()),
                )
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        admission.close(session, reason=reason)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
