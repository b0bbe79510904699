"""WebSocket API endpoints for real-time updates."""

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from site_tasks.api.models import tasks_changed_message
from site_tasks.factory import get_board

if TYPE_CHECKING:
    from site_tasks.websocket.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter()

# Global connection manager (injected via set_connection_manager)
_connection_manager: "ConnectionManager | None" = None


def set_connection_manager(manager: "ConnectionManager") -> None:
    """Set global connection manager.

    Args:
        manager: ConnectionManager instance
    """
    global _connection_manager
    _connection_manager = manager


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for board updates.

    Sends the current task list on connect, then tasks_changed and alert
    messages as they happen.

    Args:
        websocket: WebSocket connection
    """
    if not _connection_manager:
        logger.error("[WebSocket] Connection manager not initialized")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await _connection_manager.connect(websocket)
    try:
        try:
            board = get_board()
        except RuntimeError:
            logger.warning("[WebSocket] Board not open, skipping initial snapshot")
        else:
            await _connection_manager.send_personal(tasks_changed_message(board.tasks), websocket)

        while True:
            # Keep connection alive (ping/pong)
            data = await websocket.receive_text()
            logger.debug(f"[WebSocket] Received from client: {data}")
            if data == "ping":
                await websocket.send_text("pong")

    except WebSocketDisconnect:
        logger.info("[WebSocket] Client disconnected normally")
        _connection_manager.disconnect(websocket)
    except Exception as e:
        logger.error(f"[WebSocket] Error: {e}", exc_info=True)
        _connection_manager.disconnect(websocket)
