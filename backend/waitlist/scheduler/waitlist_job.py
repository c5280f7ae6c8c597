"""
Tick every WAITLIST_TICK_SECONDS: expire past slots, collect slots with work due (a calendar
check, an expired offer, or an available slot nobody holds an offer on), and dispatch each to
the shared executor. A slot already in flight is skipped until its worker finishes, so one
slot is never processed by two workers of this process at once; the compare-and-set
transitions cover other processes.

The tick thread only does cheap DB reads; calendar calls and sends happen in the workers.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy.orm import Session

from waitlist.core.clock import isoformat, utcnow
from waitlist.core.engine_config import get_engine_config
from waitlist.db.session import SessionLocal
from waitlist.services.availability_watcher import AvailabilityWatcher

logger = logging.getLogger(__name__)

_in_flight: set[int] = set()
_lock = threading.Lock()
_executor: ThreadPoolExecutor | None = None
_watcher: AvailabilityWatcher | None = None
_heartbeat: dict[str, Any] = {"last_tick_at": None, "last_dispatched": 0, "last_error": None}


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=get_engine_config().max_concurrent_slots,
            thread_name_prefix="waitlist_slot",
        )
    return _executor


def get_watcher() -> AvailabilityWatcher:
    global _watcher
    if _watcher is None:
        _watcher = AvailabilityWatcher()
    return _watcher


def set_watcher(watcher: AvailabilityWatcher | None) -> None:
    """Swap the watcher used by the tick (tests, or a custom gateway/sender)."""
    global _watcher
    _watcher = watcher


def collect_due_slot_ids(db: Session, watcher: AvailabilityWatcher, now: datetime) -> list[int]:
    """Expire past slots (and their pending entries), then return slot ids with work due, oldest first."""
    expired = watcher.slots.expire_past(db, now)
    if expired:
        watcher.entries.expire_pending_for_slots(db, expired)
        logger.info("Expired %s past slots: %s", len(expired), expired)
    ids: list[int] = []
    for slot in watcher.slots.due_slots(db, now):
        ids.append(slot.id)
    for slot_id in watcher.matcher.slots_with_due_offers(db, now) + watcher.matcher.unoffered_available_slots(db):
        if slot_id not in ids:
            ids.append(slot_id)
    return ids


def _run_slot_then_release(slot_id: int, session_factory: Callable[[], Session]) -> None:
    """Process one slot in its own session; on finish drop it from the in-flight set."""
    db = session_factory()
    try:
        outcome = get_watcher().process_slot(db, slot_id)
        logger.debug("Slot %s processed: %s", slot_id, outcome)
    except Exception as e:
        logger.exception("Slot %s failed: %s", slot_id, e)
        db.rollback()
    finally:
        db.close()
        with _lock:
            _in_flight.discard(slot_id)


def run_waitlist_tick(session_factory: Callable[[], Session] = SessionLocal) -> int:
    """
    One tick. Does not wait for workers; slots re-enter the queue on the next tick once their
    worker is done and their next check is due. Returns how many slots were dispatched.
    """
    now = utcnow()
    watcher = get_watcher()
    db = session_factory()
    try:
        due = collect_due_slot_ids(db, watcher, now)
    except Exception as e:
        logger.warning("Waitlist tick failed to collect work: %s", e, exc_info=True)
        db.rollback()
        _heartbeat["last_error"] = str(e)
        return 0
    finally:
        db.close()

    with _lock:
        to_run = [sid for sid in due if sid not in _in_flight]
        for sid in to_run:
            _in_flight.add(sid)
        _heartbeat.update(last_tick_at=now, last_dispatched=len(to_run), last_error=None)

    executor = _get_executor()
    for sid in to_run:
        executor.submit(_run_slot_then_release, sid, session_factory)
    if to_run:
        logger.debug("Waitlist tick: dispatched %s slots", len(to_run))
    return len(to_run)


def run_waitlist_check_now(db: Session, watcher: AvailabilityWatcher | None = None, now: datetime | None = None) -> dict:
    """
    Synchronous tick for the external cron endpoint: same work as a scheduler tick, processed
    inline in the caller's session. Slots a background worker is already handling are skipped.
    """
    now = now or utcnow()
    watcher = watcher or get_watcher()
    due = collect_due_slot_ids(db, watcher, now)
    outcomes: dict[str, int] = {}
    for slot_id in due:
        with _lock:
            if slot_id in _in_flight:
                continue
            _in_flight.add(slot_id)
        try:
            outcome = watcher.process_slot(db, slot_id, now)
        except Exception as e:
            logger.exception("Slot %s failed during manual check: %s", slot_id, e)
            db.rollback()
            outcome = "error"
        finally:
            with _lock:
                _in_flight.discard(slot_id)
        outcomes[outcome] = outcomes.get(outcome, 0) + 1
    return {"checked": sum(outcomes.values()), "outcomes": outcomes, "at": isoformat(now)}


def run_housekeeping(db: Session, watcher: AvailabilityWatcher | None = None, now: datetime | None = None) -> dict:
    """Purge expired link tokens and archive terminal slots older than the retention window."""
    now = now or utcnow()
    watcher = watcher or get_watcher()
    retention = timedelta(days=watcher.config.retention_days)
    purged = watcher.matcher.tokens.purge_expired(db, now - retention)
    archived = watcher.slots.archive_terminal(db, now - retention)
    logger.info("Waitlist housekeeping: purged %s tokens, archived %s slots", purged, archived)
    return {"tokens_purged": purged, "slots_archived": archived}


def run_housekeeping_job(session_factory: Callable[[], Session] = SessionLocal) -> None:
    db = session_factory()
    try:
        run_housekeeping(db)
    except Exception as e:
        logger.warning("Waitlist housekeeping failed: %s", e, exc_info=True)
        db.rollback()
    finally:
        db.close()


def get_scheduler_heartbeat() -> dict[str, Any]:
    with _lock:
        return {
            "last_tick_at": isoformat(_heartbeat["last_tick_at"]),
            "last_dispatched": _heartbeat["last_dispatched"],
            "last_error": _heartbeat["last_error"],
            "in_flight_count": len(_in_flight),
        }
