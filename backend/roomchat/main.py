"""roomchat Backend Application.

This is the main entry point for the roomchat backend service: a room-scoped
real-time chat where clients join named rooms, exchange short messages, see
who is online and page back through recent history.

Modules:
    - chat: WebSocket transport, presence, room sessions and message dispatch
    - messages: DuckDB message log and retention sweeper
    - config: YAML-backed settings
"""
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional

import uvicorn
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from roomchat.chat.router import router as chat_router
from roomchat.chat.service import ChatService, set_chat_service
from roomchat.config import ServerSettings, get_config
from roomchat.messages.retention import RetentionSweeper
from roomchat.messages.store import MessageStore

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
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = MessageStore.get_instance(config.storage.db_path)
    service = ChatService.create(store, config.chat)
    set_chat_service(service)

    sweeper = None
    if config.retention.enabled:
        sweeper = RetentionSweeper(
            store,
            ttl=timedelta(hours=config.retention.ttl_hours),
            interval_seconds=config.retention.sweep_interval_seconds,
        )
        sweeper.start()
    else:
        logger.info("Retention sweeper disabled in config.")

    yield  # Application runs here

    # Shutdown
    if sweeper is not None:
        await sweeper.stop()
    service.shutdown()
    set_chat_service(None)
    MessageStore.reset_instance()
    logger.info("Application shutdown complete")


router = APIRouter()


@router.get("/")
async def index() -> dict:
    """Basic informational endpoint."""
    return {"message": "hello world!"}


@router.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def create_app(allowed_origins: Optional[List[str]] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        allowed_origins: Origins admitted by CORS. Defaults to
            ``ServerSettings().allowed_origins``; ``run()`` passes the
            configured list. Settings are otherwise read in the lifespan.
    """
    if allowed_origins is None:
        allowed_origins = ServerSettings().allowed_origins

    app = FastAPI(
        title="roomchat API",
        description="Room-scoped real-time chat backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS for browser clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.include_router(chat_router)
    return app


app = create_app()


def run() -> None:
    """Run the server with uvicorn using the configured host, port and origins."""
    config = get_config()
    uvicorn.run(
        create_app(config.server.allowed_origins),
        host=config.server.host,
        port=config.server.port,
    )


if __name__ == "__main__":
    run()
