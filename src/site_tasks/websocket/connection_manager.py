"""WebSocket connection management and push notifications."""

import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages active WebSocket connections and broadcasts messages."""

    def __init__(self) -> None:
        """Initialize connection manager with empty connection list."""
        self.active_connections: list[WebSocket] = []
        self._background_tasks: set[asyncio.Task[None]] = set()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a new WebSocket connection.

        Args:
            websocket: WebSocket connection to register
        """
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"[ConnectionManager] Client connected (total: {len(self.active_connections)})")

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection from active list.

        Args:
            websocket: WebSocket connection to remove
        """
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(
                f"[ConnectionManager] Client disconnected (total: {len(self.active_connections)})"
            )

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Broadcast message to all connected clients.

        Args:
            message: Dictionary to send as JSON to all clients
        """
        if not self.active_connections:
            logger.debug("[ConnectionManager] No active connections to broadcast to")
            return

        message_json = json.dumps(message, default=str)
        num_clients = len(self.active_connections)
        logger.debug(f"[ConnectionManager] Broadcasting {message.get('type')} to {num_clients} clients")

        dead_connections = []
        for connection in list(self.active_connections):
            try:
                await connection.send_text(message_json)
            except Exception as e:
                logger.warning(f"[ConnectionManager] Failed to send to client: {e}")
                dead_connections.append(connection)

        for connection in dead_connections:
            self.disconnect(connection)

    async def send_personal(self, message: dict[str, Any], websocket: WebSocket) -> None:
        """Send message to specific client.

        Args:
            message: Dictionary to send as JSON
            websocket: Target WebSocket connection
        """
        try:
            await websocket.send_text(json.dumps(message, default=str))
        except Exception as e:
            logger.warning(f"[ConnectionManager] Failed to send personal message: {e}")
            self.disconnect(websocket)

    def schedule(self, message: dict[str, Any]) -> None:
        """Broadcast from synchronous code running on the event loop.

        Without a running loop (e.g. during shutdown) the message is dropped.

        Args:
            message: Dictionary to send as JSON to all clients
        """
        if not self.active_connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"[ConnectionManager] No running loop, dropping {message.get('type')}")
            return
        task = loop.create_task(self.broadcast(message))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)


class BroadcastNotifier:
    """Notifier that pushes alerts to every WebSocket client."""

    def __init__(self, manager: ConnectionManager) -> None:
        """Initialize notifier for a connection manager."""
        self.manager = manager

    def alert(self, title: str, message: str) -> None:
        """Log the alert and push it to clients."""
        logger.warning(f"[Alert] {title}: {message}")
        self.manager.schedule({"type": "alert", "title": title, "message": message})
