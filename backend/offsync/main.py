import logging

from dotenv import load_dotenv

# Load environment variables FIRST - before any other imports
load_dotenv()

# ruff: noqa: E402
from fastapi import FastAPI
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from offsync.config import get_settings
from offsync.constants import API_PREFIX
from offsync.database import initialize_database
from offsync.events.publisher import shutdown_event_publisher
from offsync.routers.sync import router as sync_router
from offsync.routers.websocket import router as websocket_router

# Long-running loops keep the event loop alive, so they are not started when
# ``TESTING`` is set (see backend/tests/conftest.py).
from offsync.services.retry_scheduler import retry_scheduler
from offsync.services.sync_engine import sync_engine
from offsync.websocket.manager import topic_manager

_settings = get_settings()

# --------------------------------------------------------------------------
# Logging: LOG_LEVEL env (default INFO); websocket modules stay at WARNING
# --------------------------------------------------------------------------
_log_level = getattr(logging, _settings.log_level.upper(), logging.INFO)
logging.basicConfig(level=_log_level, format="%(levelname)s - %(message)s", handlers=[logging.StreamHandler()])

for _noisy_mod in ("offsync.routers.websocket", "offsync.websocket.manager"):
    logging.getLogger(_noisy_mod).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(title="Offline Sync Engine", redirect_slashes=True)

# CORS: wildcard in dev/tests, explicit list otherwise
if _settings.auth_disabled:
    cors_origins = ["*"]
else:
    cors_origins = [o.strip() for o in _settings.allowed_cors_origins.split(",") if o.strip()]
    if not cors_origins:
        cors_origins = ["http://localhost:3000"]


@app.exception_handler(Exception)
async def ensure_cors_on_errors(request: Request, exc: Exception):
    """Keep CORS headers on unhandled 500 responses."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    origin = request.headers.get("origin", "*")
    allow_origin = origin if origin in cors_origins or "*" in cors_origins else cors_origins[0]
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
        headers={
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Credentials": "true",
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync_router, prefix=API_PREFIX)
app.include_router(websocket_router, prefix=API_PREFIX)


@app.on_event("startup")
async def startup_event():
    """Initialize services on app startup."""
    try:
        initialize_database()
        logger.info("Database tables initialized")

        if not _settings.testing:
            await retry_scheduler.start()
            logger.info("Background services initialised (retry scheduler)")
    except Exception as e:
        logger.error(f"Error during startup: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up services on app shutdown."""
    try:
        if not _settings.testing:
            await retry_scheduler.stop()
        await sync_engine.shutdown()
        await topic_manager.shutdown()
        await shutdown_event_publisher()
        logger.info("Background services stopped")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


@app.get("/")
async def read_root():
    """Return a simple message to indicate the API is working."""
    return {"message": "Offline sync API is running"}
