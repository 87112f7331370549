import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from shared.utils import verify_token, UnauthorizedException

from marketplace.dependencies import ADMIN
from marketplace.integrations import NotificationHub, user_room, ADMIN_ROOM

logger = logging.getLogger("marketplace.realtime")

router = APIRouter(tags=["realtime"])


async def _forward(websocket: WebSocket, queue: asyncio.Queue):
    while True:
        await websocket.send_json(await queue.get())


async def stop_sender(sender: asyncio.Task, user_id: str):
    """Cancel the forwarding task and log a send failure it may have ended with."""
    sender.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        try:
            await sender
        except Exception:
            logger.warning("Websocket sender failed", extra={"user_id": user_id}, exc_info=True)


@router.websocket("/ws")
async def notifications(websocket: WebSocket, token: Optional[str] = None):
    """Push stock and order events to the caller's rooms. Authenticates with ?token=<access token>."""
    services = websocket.app.state.services
    try:
        payload = await services.users.authenticate(verify_token(token or ""))
    except UnauthorizedException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    rooms = [user_room(payload["sub"])]
    if payload.get("role") == ADMIN:
        rooms.append(ADMIN_ROOM)

    await websocket.accept()
    hub: NotificationHub = services.hub
    queue = hub.subscribe(*rooms)
    sender = asyncio.create_task(_forward(websocket, queue))
    try:
        # Inbound frames are ignored; reading only detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("Websocket closed", extra={"user_id": payload["sub"]})
    finally:
        hub.unsubscribe(queue)
        await stop_sender(sender, payload["sub"])
