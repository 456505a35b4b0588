"""roomcast Application.

This is the main entry point for the roomcast service: a realtime chat
server that keeps every connected client in exactly one named room,
replays the last day of a room's messages on join, and fans out chat
traffic within rooms.

Modules:
    - chat: room coordinator, broadcast router and the /ws endpoint
    - auth: account registration, login and bearer-token verification
    - archive: DuckDB message archive with a 24h retention horizon
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomcast.archive import MessageArchive
from roomcast.auth.router import router as auth_router
from roomcast.auth.service import UserStore
from roomcast.chat import BroadcastRouter, RoomCoordinator
from roomcast.chat.router import router as chat_router
from roomcast.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-request noise from the server stack.
for _noisy in ("uvicorn.access", "websockets", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


async def _purge_loop(archive: MessageArchive, interval_seconds: int) -> None:
    """Periodically delete archived messages past the retention horizon."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            purged = await asyncio.to_thread(archive.purge_expired)
            if purged:
                logger.info("[Archive] Purged %d expired messages", purged)
        except Exception as e:
            logger.error(f"[Archive] Purge failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    archive = MessageArchive.get_instance(
        config.archive.db_path,
        retention=timedelta(hours=config.archive.retention_hours),
    )
    UserStore.get_instance(config.auth.db_path)

    coordinator = RoomCoordinator(
        archive,
        default_room=config.rooms.default_room,
        history_window=timedelta(hours=config.rooms.history_window_hours),
        send_timeout=config.rooms.send_timeout_seconds,
    )
    app.state.coordinator = coordinator
    app.state.broadcaster = BroadcastRouter(coordinator)
    logger.info("Room coordinator ready (default room: %s)", coordinator.default_room)

    purge_task = None
    if config.archive.purge_interval_seconds > 0:
        purge_task = asyncio.create_task(
            _purge_loop(archive, config.archive.purge_interval_seconds)
        )
    else:
        logger.info("Archive purge disabled in config.")

    yield  # Application runs here

    # Shutdown
    if purge_task is not None:
        purge_task.cancel()
        try:
            await purge_task
        except asyncio.CancelledError:
            pass
    await coordinator.drain()
    coordinator.close()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="roomcast API",
    description="Realtime multi-room chat with history replay",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(auth_router)
app.include_router(chat_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "roomcast.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
    )
