from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from app.api import trip_requests, notifications, bookings, health
from app.scheduler import start_scheduler, stop_scheduler
from app.config import get_settings
from app.database import init_sqlite_schema
from app import models  # noqa: F401  registers tables on Base.metadata
from app.services.errors import TripDeskError

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Trip Desk")

    if settings.database_url.startswith("sqlite"):
        logger.info("SQLite detected - creating tables if needed")
        init_sqlite_schema()

    if settings.scheduler_enabled:
        try:
            start_scheduler()
            logger.info("APScheduler started")
        except Exception as e:
            logger.error(f"Scheduler startup failed: {e}")

    yield

    logger.info("Shutting down Trip Desk")
    try:
        stop_scheduler()
    except Exception as e:
        logger.error(f"Shutdown error: {e}")


app = FastAPI(
    title="Trip Desk",
    description="Custom trip requests, staff approval and booking hand-off for Sri Lanka travel",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(TripDeskError)
async def trip_desk_error_handler(request: Request, exc: TripDeskError):
    body = {"error": exc.kind, "detail": exc.message}
    if exc.detail:
        body["context"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "detail": "Internal server error"},
    )


app.include_router(trip_requests.router, prefix="/trip-requests", tags=["trip-requests"])
app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
app.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
app.include_router(health.router, tags=["health"])


@app.get("/ping")
async def ping():
    """Simple ping endpoint for health checks."""
    return {"status": "ok"}
