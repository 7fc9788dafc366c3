from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager, suppress
import asyncio
import logging

from healpoints.config.settings import settings
from healpoints.core.errors import register_error_handlers
from healpoints.core.middleware import verify_token_middleware
from healpoints.db.base import get_engine
from healpoints.db.base import get_session_factory
from healpoints.services.notifier import ConnectionManager, NotificationDispatcher
from healpoints.services.sweeper import run_status_sweeper

# -------------------------------------------------------------------------------------
# Logging
# -------------------------------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application start-up & shutdown hooks."""
    # ------------------------------------------------------------------ start‑up -----
    logger.info("Application startup …")

    # --- DATABASE ---
    engine = None
    try:
        logger.info("Initializing Database Engine...")
        engine = await get_engine(str(settings.database_url))
        app.state.engine = engine
        app.state.session_factory = await get_session_factory(engine)
        logger.info("DB engine and session factory ready.")
    except Exception as e:
        logger.critical(f"CRITICAL ERROR DURING STARTUP INITIALIZATIONS: {e}", exc_info=True)
        if engine:
            await engine.dispose()
        raise

    # --- PUSH CHANNEL ---
    app.state.connections = ConnectionManager()
    app.state.dispatcher = NotificationDispatcher(
        app.state.connections, replay_limit=settings.ws_replay_limit
    )

    # --- STATUS SWEEPER ---
    sweeper = None
    if settings.status_sweep_interval_seconds > 0:
        sweeper = asyncio.create_task(
            run_status_sweeper(app, settings.status_sweep_interval_seconds)
        )
    else:
        logger.info("Status sweeper disabled")

    # ------------------------------------------------ give control back
    yield

    # ------------------------------------------------ shutdown --------
    logger.info("Application shutdown …")

    if sweeper:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        logger.info("Status sweeper stopped")

    try:
        await engine.dispose()
        logger.info("DB engine disposed")
    except Exception:
        logger.exception("Error disposing DB engine")

    logger.info("Shutdown complete")


# -------------------------------------------------------------------------------------
# FastAPI application instance
# -------------------------------------------------------------------------------------
app = FastAPI(title="HealPoints Booking API", lifespan=lifespan)

# CORS -------------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(o) for o in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Auth: decodes the JWT into request.state.user for every non-public path
app.middleware("http")(verify_token_middleware)

register_error_handlers(app)


# ----------------------------------------------------------------- health‑check -----
@app.get("/health")
async def health_check(request: Request):
    connections = getattr(request.app.state, "connections", None)
    return {
        "status": "ok",
        "connected_users": len(connections.online_users()) if connections else 0,
    }


# ------------------------------------------------------------------- routes ---------
from healpoints.routes.auth.router import router as auth_router  # noqa: E402  (after app creation)
from healpoints.routes.appointment.router import router as appointment_router  # noqa: E402
from healpoints.routes.rating.router import router as rating_router  # noqa: E402
from healpoints.routes.notification.router import router as notification_router  # noqa: E402
from healpoints.routes.notification.router import socket_router  # noqa: E402
from healpoints.routes.dashboard.router import doctor_router, admin_router  # noqa: E402
from healpoints.routes.user.router import router as user_router  # noqa: E402

app.include_router(auth_router)
app.include_router(appointment_router)
app.include_router(rating_router)
app.include_router(notification_router)
app.include_router(socket_router)
app.include_router(doctor_router)
app.include_router(admin_router)
app.include_router(user_router)
