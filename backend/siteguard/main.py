"""Main FastAPI application - wires the monitoring engine and the HTTP API."""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db, close_db, create_session_factory, get_engine as get_db_engine
from .engine import MonitoringEngine, build_engine
from .errors import TargetValidationError
from .repositories import build_repositories
from .routers import targets_router, alerts_router, status_router, status_ws_router
from .services.comparator import PlaywrightCapture
from .services.notifier import ChannelNotifier, LoggingNotifier
from .services.websocket_manager import websocket_manager

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def create_engine_from_settings() -> MonitoringEngine:
    """Build the engine for the configured storage backend and transports."""
    session_factory = None
    if settings.storage_backend == "memory":
        logger.info("Using in-memory storage")
    else:
        db_engine = get_db_engine()
        await init_db(db_engine)
        logger.info("Database initialized")
        session_factory = create_session_factory(db_engine)
    repositories = build_repositories(settings.storage_backend, session_factory)

    notifier = ChannelNotifier.from_settings()
    if not notifier.any_configured:
        logger.info("No notification transport configured, alerts will be logged only")
        notifier = LoggingNotifier()

    return build_engine(
        repositories,
        notifier=notifier,
        capture=PlaywrightCapture(),
        listener=websocket_manager.broadcast_check_result,
    )


def create_app(engine: Optional[MonitoringEngine] = None, run_scheduler: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing an engine skips building one from settings (and leaves the
    database alone); run_scheduler=False leaves ticking to the caller.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        logger.info("Starting SiteGuard")
        owns_engine = engine is None
        app.state.engine = engine or await create_engine_from_settings()

        if run_scheduler:
            app.state.engine.scheduler.start()

        yield

        # Shutdown
        scheduler = app.state.engine.scheduler
        scheduler.stop()
        try:
            await asyncio.wait_for(scheduler.wait_idle(), timeout=settings.probe_timeout_seconds + 5)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for in-flight checks to finish")

        if owns_engine and settings.storage_backend != "memory":
            await close_db()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="SiteGuard",
        description="Website uptime and visual change monitoring",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TargetValidationError)
    async def validation_error_handler(request: Request, exc: TargetValidationError):
        return JSONResponse(status_code=422, content={"detail": exc.message})

    app.include_router(targets_router)
    app.include_router(alerts_router)
    app.include_router(status_router)
    app.include_router(status_ws_router)

    # Health check endpoint
    @app.get("/health")
    async def health_check(request: Request):
        return {
            "status": "healthy",
            "monitoring_active": request.app.state.engine.scheduler.is_active(),
        }

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
