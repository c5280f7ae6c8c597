"""
FastAPI app entrypoint.

Waitlist engine: polls business calendars for booked slots that free up and offers them,
one customer at a time, to the people waiting for them.
"""
import logging
import os
import threading
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from waitlist.api.routes import admin, calendar, engine, public
from waitlist.core.constants import (
    WAITLIST_HOUSEKEEPING_JOB_ID,
    WAITLIST_TICK_INTERVAL_SECONDS,
    WAITLIST_TICK_JOB_ID,
)
from waitlist.core.engine_config import DISABLE_INTERNAL_SCHEDULER
from waitlist.scheduler.waitlist_job import run_housekeeping_job, run_waitlist_tick

logger = logging.getLogger(__name__)

_scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if DISABLE_INTERNAL_SCHEDULER:
        logger.info("Internal scheduler disabled; drive the engine with POST /waitlist/cron/check")
    else:
        _scheduler.add_job(
            run_waitlist_tick,
            "interval",
            seconds=WAITLIST_TICK_INTERVAL_SECONDS,
            id=WAITLIST_TICK_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.add_job(
            run_housekeeping_job,
            "cron",
            hour=4,
            minute=15,
            id=WAITLIST_HOUSEKEEPING_JOB_ID,
        )
        _scheduler.start()
        app.state.scheduler = _scheduler

        def startup_background():
            # One tick on startup so overdue slots do not wait a full interval after a deploy
            try:
                run_waitlist_tick()
                logger.info("Waitlist tick on startup; next tick in %ss", WAITLIST_TICK_INTERVAL_SECONDS)
            except Exception as e:
                logger.warning("Waitlist tick on startup failed: %s", e, exc_info=True)

        threading.Thread(target=startup_background, daemon=True).start()
    logger.info("Waitlist backend ready")
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)


app = FastAPI(title="Waitlist Engine", version="0.1.0", lifespan=lifespan)

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for the production frontend
_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5000",
    "http://127.0.0.1:5000",
]
_cors_extra = os.getenv("CORS_ORIGINS", "")
if _cors_extra:
    _cors_origins.extend(o.strip() for o in _cors_extra.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(engine.router, prefix="/waitlist", tags=["engine"])
app.include_router(public.router, prefix="/waitlist", tags=["public"])
app.include_router(admin.router, prefix="/waitlist", tags=["admin"])
app.include_router(calendar.router, prefix="/waitlist/calendar", tags=["calendar"])


@app.get("/", include_in_schema=False)
def root():
    """Root: point to API docs and health."""
    return {"message": "Waitlist API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
