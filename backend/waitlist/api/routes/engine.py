"""
Engine entry points: waitlist trigger (voice agent / automation), external cron tick and health.

Mounted under /waitlist: POST /waitlist/trigger, POST /waitlist/cron/check, GET /waitlist/health.
"""
import logging
from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from waitlist.api.deps import get_availability_watcher, get_waitlist_service, require_cron_key, require_trigger_key
from waitlist.core.clock import utcnow
from waitlist.core.constants import SLOT_AVAILABLE, SLOT_MONITORING, WAITLIST_TICK_INTERVAL_SECONDS, WAITLIST_TICK_JOB_ID
from waitlist.core.engine_config import DISABLE_INTERNAL_SCHEDULER
from waitlist.core.errors import WaitlistError, error_to_http
from waitlist.db.session import get_db
from waitlist.models.slot import Slot
from waitlist.scheduler.waitlist_job import get_scheduler_heartbeat, run_waitlist_check_now
from waitlist.services.availability_watcher import AvailabilityWatcher
from waitlist.services.waitlist_service import WaitlistService

router = APIRouter()
logger = logging.getLogger(__name__)


class TriggerRequest(BaseModel):
    owner_id: str = Field(..., min_length=1, max_length=64)
    phone: str = Field(..., min_length=4, max_length=32)
    requested_slot: datetime
    slot_end: datetime | None = None
    first_name: str | None = Field(None, max_length=128)
    last_name: str | None = Field(None, max_length=128)
    email: str | None = Field(None, max_length=255)
    nb_persons: int = Field(1, ge=1, le=50)
    alternative_slots: list[datetime] = Field(default_factory=list, max_length=10)
    business_name: str | None = Field(None, max_length=255)
    source: str | None = Field(None, max_length=64)


def _next_tick_iso(request: Request) -> str | None:
    """Next tick run time (UTC ISO) from the in-process scheduler, None when it is not running."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if not scheduler:
        return None
    job = scheduler.get_job(WAITLIST_TICK_JOB_ID)
    if job and getattr(job, "next_run_time", None):
        return job.next_run_time.isoformat()
    return None


@router.post("/trigger")
def trigger_waitlist(
    body: TriggerRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_trigger_key),
    service: WaitlistService = Depends(get_waitlist_service),
) -> dict[str, Any]:
    """Put a customer on the waitlist for a booked time; they get a registration link by SMS."""
    try:
        result = service.trigger(
            db,
            owner_id=body.owner_id.strip(),
            phone=body.phone,
            requested_slot=body.requested_slot,
            slot_end=body.slot_end,
            first_name=body.first_name,
            last_name=body.last_name,
            email=body.email,
            nb_persons=body.nb_persons,
            alternative_slots=body.alternative_slots,
            business_name=body.business_name,
            source=body.source,
        )
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "entry_id": result["entry_id"], "slot_id": result["slot_id"], "waitlist_url": result["waitlist_url"]}


@router.post("/cron/check")
def cron_check(
    db: Session = Depends(get_db),
    _: None = Depends(require_cron_key),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    """One synchronous tick, for deployments that run the engine from an external cron."""
    result = run_waitlist_check_now(db, watcher)
    logger.info("Cron check: %s", result["outcomes"])
    return {"ok": True, **result}


@router.get("/health")
def waitlist_health(
    request: Request,
    db: Session = Depends(get_db),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    """
    Engine health: scheduler heartbeat, in-flight slots, overdue monitoring slots and engine config.
    A slot is overdue when its check is late by more than two ticks.
    """
    now = utcnow()
    heartbeat = get_scheduler_heartbeat()
    counts = dict(
        db.query(Slot.status, func.count(Slot.id))
        .filter(Slot.status.in_((SLOT_MONITORING, SLOT_AVAILABLE)))
        .group_by(Slot.status)
        .all()
    )
    overdue = (
        db.query(func.count(Slot.id))
        .filter(
            Slot.status == SLOT_MONITORING,
            Slot.next_check_at.isnot(None),
            Slot.next_check_at < now - timedelta(seconds=2 * WAITLIST_TICK_INTERVAL_SECONDS),
        )
        .scalar()
    ) or 0
    return {
        "status": "ok",
        "internal_scheduler": not DISABLE_INTERNAL_SCHEDULER,
        "next_tick_at": _next_tick_iso(request),
        "scheduler": heartbeat,
        "monitoring_slots": counts.get(SLOT_MONITORING, 0),
        "available_slots": counts.get(SLOT_AVAILABLE, 0),
        "overdue_slots": overdue,
        "engine_config": watcher.config.to_dict(),
    }
