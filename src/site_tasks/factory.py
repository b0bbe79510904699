"""Dependency injection factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from site_tasks.api.models import tasks_changed_message
from site_tasks.board import TaskBoard
from site_tasks.config import Config
from site_tasks.prioritization import RuleBasedPrioritizer
from site_tasks.remote.contract import RemoteStore
from site_tasks.remote.yaml_store import YamlRemoteStore
from site_tasks.store.task_store import TaskStore
from site_tasks.websocket.connection_manager import BroadcastNotifier, ConnectionManager

logger = logging.getLogger(__name__)

# Global config instance for dependency injection
_config: Config | None = None

# Global remote store, connection manager and board
_remote: RemoteStore | None = None
_connection_manager: ConnectionManager | None = None
_board: TaskBoard | None = None


def get_config() -> Config:
    """Get or create Config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_remote() -> RemoteStore:
    """Get or create the remote store (YAML files under the data directory)."""
    global _remote
    if _remote is None:
        config = get_config()
        _remote = YamlRemoteStore(config.data_dir)
        logger.info(f"[Factory] Using YAML store at {config.data_dir}")
    return _remote


def get_connection_manager() -> ConnectionManager:
    """Get or create ConnectionManager singleton."""
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager


def create_board() -> TaskBoard:
    """Create a board for the configured session."""
    config = get_config()
    manager = get_connection_manager()
    store = TaskStore(
        get_remote(), config.session(), criteria=config.criteria(), table=config.tasks_table
    )
    return TaskBoard(
        store,
        notifier=BroadcastNotifier(manager),
        prioritizer=RuleBasedPrioritizer(),
        prioritizer_timeout=config.prioritizer_timeout,
    )


def get_board() -> TaskBoard:
    """Get the running board.

    Raises:
        RuntimeError: Application has not started
    """
    if _board is None:
        raise RuntimeError("Board not initialized")
    return _board


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle - startup and shutdown."""
    global _board
    logger.info("[Lifespan] Opening task board...")
    _board = create_board()
    manager = get_connection_manager()

    def broadcast_tasks(store: TaskStore) -> None:
        manager.schedule(tasks_changed_message(store.tasks))

    _board.add_listener(broadcast_tasks)
    await _board.open()
    if _board.error:
        logger.warning(f"[Lifespan] Initial load failed: {_board.error}")
    try:
        yield
    finally:
        logger.info("[Lifespan] Closing task board...")
        _board.remove_listener(broadcast_tasks)
        await _board.close()
        _board = None


def create_app() -> FastAPI:
    """Create FastAPI application (composition root)."""
    from site_tasks.api.errors import register_exception_handlers
    from site_tasks.api.tasks import router as tasks_router
    from site_tasks.api.websocket import router as ws_router
    from site_tasks.api.websocket import set_connection_manager

    app = FastAPI(
        title="SiteTasks",
        description="Construction site task board with optimistic updates",
        version="0.1.0",
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    set_connection_manager(get_connection_manager())

    # Mount API routes
    app.include_router(tasks_router, prefix="/api")
    app.include_router(ws_router)  # WebSocket at /ws

    return app
