"""dmrelay Backend Application.

This is the main entry point for the direct-message relay service.

Modules:
    - chat: WebSocket transport, connection manager and session handling
    - rooms: Room identity, message store, file persistence and retention
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from dmrelay import __version__
from dmrelay.chat.manager import ConnectionManager
from dmrelay.chat.router import router as chat_router
from dmrelay.chat.session import SessionCoordinator
from dmrelay.config import get_config
from dmrelay.rooms.persistence import RoomFileBackend
from dmrelay.rooms.retention import RetentionSweeper
from dmrelay.rooms.router import router as rooms_router
from dmrelay.rooms.store import RoomStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if isinstance(configured_level, int):
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    backend = RoomFileBackend(config.storage.data_dir)
    store = RoomStore(backend, max_messages=config.storage.max_messages)
    sweeper = RetentionSweeper(
        backend,
        keep_days=config.retention.keep_days,
        interval_seconds=config.retention.sweep_interval_hours * 3600,
    )

    app.state.room_backend = backend
    app.state.room_store = store
    app.state.coordinator = SessionCoordinator(
        store,
        history_limit=config.chat.history_limit,
        max_name_length=config.chat.max_name_length,
    )
    app.state.connection_manager = ConnectionManager()
    app.state.sweeper = sweeper

    await sweeper.start(run_now=config.retention.sweep_on_startup)
    logger.info(
        f"Server ready on http://{config.server.host}:{config.server.port} "
        f"(rooms in {backend.data_dir}, old rooms deleted after {config.retention.keep_days} days)"
    )

    yield  # Application runs here

    # Shutdown
    await sweeper.stop()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="dmrelay API",
    description="Real-time two-party direct messaging with durable per-room history",
    version=__version__,
    lifespan=lifespan,
)

# Register all routers
app.include_router(chat_router)
app.include_router(rooms_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
