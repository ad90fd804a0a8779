"""
Presence event stream for WebSocket clients.

A client receives a ``status`` frame with the current snapshot as soon as
it connects, then one frame per service event. Presence changes carry the
collective state alongside the device that caused them.
"""

import logging
from datetime import datetime, timezone

from fastapi import WebSocket
from pydantic import BaseModel, Field

from presence.models import PresenceEvent

logger = logging.getLogger(__name__)

STATUS_EVENT = "status"


class EventMessage(BaseModel):
    """One frame on the event stream."""
    event: str
    data: dict
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PresenceBroadcaster:
    """Fans PresenceService events out to connected WebSocket clients."""

    def __init__(self, presence_service) -> None:
        self._service = presence_service
        self._clients: set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        snapshot = EventMessage(
            event=STATUS_EVENT,
            data=self._service.status().model_dump(mode="json"),
        )
        await websocket.send_text(snapshot.model_dump_json())
        self._clients.add(websocket)
        logger.info(f"Presence client connected. Listening: {self.client_count}")

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.info(f"Presence client disconnected. Listening: {self.client_count}")

    async def handle_event(self, event: PresenceEvent, data: dict) -> None:
        """Event handler compatible with PresenceService.on_event()."""
        event = PresenceEvent(event)
        if event != PresenceEvent.PING_RESULT:
            data = {**data, "is_present": event == PresenceEvent.PRESENT}
        message = EventMessage(event=event.value, data=data).model_dump_json()

        for ws in list(self._clients):
            try:
                await ws.send_text(message)
            except Exception as e:
                logger.debug(f"Dropping presence client: {e}")
                self._clients.discard(ws)
