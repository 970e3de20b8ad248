"""FastAPI application setup."""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from api.routes import actions, chats, events, scheduled
from api.routes.health import router as health_router
from config.logging_config import setup_logging
from config.settings import settings
from core.dependencies import init_dependencies, shutdown_dependencies

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan (replaces deprecated @app.on_event)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # STARTUP
    logger.info("Opening message store and starting change watcher...")
    await init_dependencies()
    logger.info("Application started")
    yield
    # SHUTDOWN
    await shutdown_dependencies()
    logger.info("Application shut down")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""

    # Setup logging
    setup_logging(settings.LOG_LEVEL)

    # Create app with lifespan
    app = FastAPI(
        title="Message Sync API",
        description="Live view and verified actions over a read-only message store",
        version="1.0.0",
        lifespan=lifespan,
    )

    # -----------------------------------------------------------------------
    # CORS: never combine allow_credentials=True with allow_origins=["*"]
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router, tags=["Health"])
    app.include_router(events.router, tags=["Events"])
    app.include_router(chats.router, tags=["Chats"])
    app.include_router(actions.router, tags=["Actions"])
    app.include_router(scheduled.router, prefix="/scheduled-messages", tags=["Scheduled"])

    logger.info("FastAPI application created")
    return app
