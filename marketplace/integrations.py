"""
Thin clients for the collaborators the marketplace talks to: the transactional
email API, the image host, and the real-time notification hub behind /ws.
"""
import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Set

import httpx

from shared.utils import Settings, UpstreamException

logger = logging.getLogger("marketplace.integrations")

BROADCAST_ROOM = "broadcast"
ADMIN_ROOM = "admin"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class EmailSender:
    """Posts templated messages to an HTTP email API. Never raises to callers."""

    def __init__(self, config: Settings, timeout: float = 5.0):
        self.api_url = config.EMAIL_API_URL
        self.api_key = config.EMAIL_API_KEY
        self.sender = config.EMAIL_FROM
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    async def send(self, to: str, subject: str, template: str, context: dict) -> bool:
        if not to:
            return False
        if not self.enabled:
            logger.info(f"Email disabled, skipping '{template}' to {to}", extra={"event": "email.skipped"})
            return False

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {
            "from": self.sender,
            "to": to,
            "subject": subject,
            "template": template,
            "context": context,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.api_url, json=body, headers=headers)
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Email '{template}' to {to} failed: {e}", extra={"event": "email.failed"})
                return False
        logger.info(f"Email '{template}' sent to {to}", extra={"event": "email.sent"})
        return True


class ImageHost:
    def __init__(self, config: Settings, timeout: float = 10.0):
        self.base_url = (config.IMAGE_HOST_URL or "").rstrip("/")
        self.api_key = config.IMAGE_HOST_API_KEY
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    async def upload(self, content: bytes, filename: str, folder: str = "products") -> dict:
        if not self.enabled:
            raise UpstreamException("Image host is not configured")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/upload",
                    files={"file": (filename, content)},
                    data={"folder": folder},
                    headers=self._headers()
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                logger.error(f"Image upload failed: {e}")
                raise UpstreamException("Image host unavailable")
        return {"public_id": data.get("public_id"), "url": data.get("url") or data.get("secure_url")}

    async def delete(self, public_id: str) -> bool:
        if not self.enabled or not public_id:
            return False
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.delete(f"{self.base_url}/images/{public_id}", headers=self._headers())
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"Image delete failed for {public_id}: {e}")
                return False
        return True


class NotificationHub:
    """
    In-process fan-out of events to websocket subscribers.

    Each subscriber owns a bounded queue and a set of rooms. ``emit`` never
    blocks: a subscriber whose queue is full simply misses the event.
    """

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: Dict[asyncio.Queue, Set[str]] = {}

    def subscribe(self, *rooms: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[queue] = {BROADCAST_ROOM, *rooms}
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self._subscribers.pop(queue, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def emit(self, event: str, payload: dict, room: Optional[str] = None) -> int:
        target = room or BROADCAST_ROOM
        message = {"event": event, "data": payload, "timestamp": datetime.utcnow().isoformat()}
        delivered = 0
        for queue, rooms in list(self._subscribers.items()):
            if target not in rooms:
                continue
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"Dropping '{event}' for a slow subscriber")
        return delivered
