"""
Snap Judge - FastAPI Backend

Main application entry point with REST API and Socket.IO.
"""
import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import get_settings
from .dependencies import get_bus, get_registry
from .error_handlers import register_error_handlers
from .routers import health_router, lobbies_router
from .socket_manager import BusRelay, configure_cors, sio
from .tasks import CleanupTask

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Startup
    logger.info("Starting Snap Judge API v%s", __version__)
    logger.info("  Storage Type: %s", settings.storage_type)
    logger.info("  Judge Provider: %s", settings.judge_provider)
    logger.info("  CORS Origins: %s", settings.cors_origins)

    # Initialize database if using SQL storage
    if settings.storage_type == "sql":
        from .db.connection import init_db
        logger.info("  Database URL: %s", settings.database_url)
        await init_db()
        logger.info("  Database initialized")

    # Configure Socket.IO CORS
    configure_cors(settings.cors_origins)

    relay = BusRelay(get_bus())
    relay.start()

    cleanup_task = CleanupTask(interval_seconds=settings.cleanup_interval_seconds)
    cleanup_task.start()

    yield

    # Shutdown
    logger.info("Shutting down...")
    cleanup_task.stop()
    relay.stop()
    await get_registry().close_all()
    if settings.storage_type == "sql":
        from .db.connection import close_db
        await close_db()
        logger.info("  Database connection closed")


# Create FastAPI app
app = FastAPI(
    title="Snap Judge API",
    description="Backend API for the AI-judged multiplayer photo game",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Include routers
app.include_router(health_router, prefix="/api")
app.include_router(lobbies_router, prefix="/api")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Snap Judge API",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/health",
    }


def create_app() -> socketio.ASGIApp:
    """Create the combined FastAPI + Socket.IO ASGI app."""
    return socketio.ASGIApp(sio, other_asgi_app=app)


# For running with uvicorn directly
combined_app = create_app()
