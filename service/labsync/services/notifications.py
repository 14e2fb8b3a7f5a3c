"""
Dashboard notifications over WebSocket.

`Notifier.emit` never blocks the caller: it schedules the broadcast on the
running loop and returns. Delivery is best-effort; sockets that fail to
receive are dropped from the connection set.
"""

import asyncio
from typing import Any, Protocol

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from labsync.logging_config import get_logger

logger = get_logger("notifications")


class SocketEvents:
    MESSAGE_CREATED = "message:created"
    MESSAGE_STATUS_UPDATED = "message:status:updated"
    MEETING_EXTRACTED = "meeting:extracted"
    BUDGET_DESIGNED = "budget:designed"
    ALLOCATION_CREATED = "allocation:created"
    ALLOCATION_UPDATED = "allocation:updated"
    ALLOCATION_EXPENSE = "allocation:expense"


class EventEmitter(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        ...


class ConnectionManager:
    """Connected dashboard sockets."""

    def __init__(self):
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.add(websocket)
        logger.info(f"Client connected ({len(self.active_connections)} total)")

    def disconnect(self, websocket: WebSocket) -> None:
        self.active_connections.discard(websocket)
        logger.info(f"Client disconnected ({len(self.active_connections)} total)")

    async def broadcast(self, message: dict[str, Any]) -> None:
        dead = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping socket after send failure: {e}")
                dead.append(connection)
        for connection in dead:
            self.active_connections.discard(connection)


class Notifier:
    """Fire-and-forget event broadcaster used by the pipeline stages."""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self._pending: set[asyncio.Task] = set()

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        message = {"event": event, "data": jsonable_encoder(payload)}
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop, dropping event {event}")
            return

        task = loop.create_task(self._send(event, message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, event: str, message: dict[str, Any]) -> None:
        try:
            await self.manager.broadcast(message)
            logger.debug(f"Emitted event: {event}")
        except Exception as e:
            logger.warning(f"Failed to emit {event}: {e}")
