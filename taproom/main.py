from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from taproom.config import settings
from taproom.api.v1.router import api_router
from taproom.core.errors import TaproomError
from taproom.database import init_db, async_session_factory
from taproom.jobs.keg_level_jobs import KegLevelPoller
from taproom.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from taproom.services.inventory_api_client import InventoryApiClient
from taproom.services.keg_level_service import KegLevelService
from taproom.services.notification_service import NotificationService
from taproom.services.offline_sync_service import OfflineSyncService
from taproom.services.session_controller import SessionController

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_controller() -> SessionController:
    """Wire the counter's services together."""
    notifier = NotificationService()
    api = InventoryApiClient()
    sync = OfflineSyncService(api, session_factory=async_session_factory, notifier=notifier)
    keg_levels = KegLevelService(notifier=notifier) if settings.pmb_configured else None
    return SessionController(
        api,
        sync,
        notifier=notifier,
        keg_levels=keg_levels,
        poller=KegLevelPoller(scheduler),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create local store tables
    - Load preferences and the catalogue, resume an in-progress session
    - Start background scheduler (connectivity check)
    """
    # Startup
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()

    controller = build_controller()
    try:
        await controller.initialize()
    except TaproomError as e:
        logger.error(f"Counter initialisation incomplete: {e.message}")
    app.state.controller = controller

    start_scheduler(controller.sync)

    yield

    # Shutdown
    await controller.close()
    shutdown_scheduler()
    logger.info("Shutting down...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Device-local inventory counting service: count sessions, unit reconciliation and offline sync.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(TaproomError)
async def taproom_exception_handler(request: Request, exc: TaproomError):
    """Counting errors leave the counter in its previous mode; report that mode."""
    controller = getattr(request.app.state, "controller", None)
    mode = controller.mode.value if controller is not None else None
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "code": exc.code,
            "mode": mode,
            "details": exc.details,
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint with local store validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "local_store": "unknown",
            "inventory_api": "unknown",
        },
        "jobs": get_job_status(),
    }

    # Check local store
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["local_store"] = "connected"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["local_store"] = f"error: {str(e)}"

    controller = getattr(request.app.state, "controller", None)
    if controller is not None:
        health_status["checks"]["inventory_api"] = "online" if controller.sync.is_online else "offline"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
