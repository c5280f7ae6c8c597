"""
Business dashboard API: slots, entries, delivery failures, stats and manual actions.

Mounted under /waitlist. Every route requires X-Owner-Id (and X-Api-Key when ADMIN_API_KEY is set);
rows of other owners are reported as not found.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from waitlist.api.deps import get_availability_watcher, owner_id
from waitlist.core.constants import SLOT_MONITORING
from waitlist.core.errors import NotFoundError, WaitlistError, error_to_http
from waitlist.db.session import get_db
from waitlist.models.entry import Entry
from waitlist.models.slot import Slot
from waitlist.services.admin_service import (
    delivery_to_dict,
    entry_to_dict,
    get_waitlist_stats,
    list_deliveries,
    slot_to_dict,
)
from waitlist.services.availability_watcher import AvailabilityWatcher

router = APIRouter()
logger = logging.getLogger(__name__)


def _owned_slot(db: Session, slot_id: int, owner: str) -> Slot:
    slot = db.get(Slot, slot_id)
    if slot is None or slot.owner_id != owner:
        raise NotFoundError(f"Slot {slot_id} not found")
    return slot


def _owned_entry(db: Session, entry_id: int, owner: str) -> Entry:
    entry = db.get(Entry, entry_id)
    if entry is None or entry.owner_id != owner:
        raise NotFoundError(f"Entry {entry_id} not found")
    return entry


# --- Slots ---


@router.get("/slots")
def list_slots(
    status: str | None = Query(None),
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    slots = watcher.slots.list_for_owner(db, owner, status)
    return {"slots": [slot_to_dict(s) for s in slots], "count": len(slots)}


@router.get("/slots/{slot_id}")
def get_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    """Slot with its entries in offer order."""
    try:
        slot = _owned_slot(db, slot_id, owner)
    except WaitlistError as e:
        raise error_to_http(e) from e
    entries = watcher.entries.list_for_slot(db, slot.id)
    return {"slot": slot_to_dict(slot), "entries": [entry_to_dict(e) for e in entries]}


@router.post("/slots/{slot_id}/cancel")
def cancel_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    try:
        slot = _owned_slot(db, slot_id, owner)
        cancelled = watcher.matcher.cancel_slot(db, slot.id)
    except WaitlistError as e:
        raise error_to_http(e) from e
    db.refresh(slot)
    return {"ok": cancelled, "slot": slot_to_dict(slot)}


@router.post("/slots/{slot_id}/check")
def check_slot_now(
    slot_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    """Poll the calendar for one monitoring slot now, outside its schedule."""
    try:
        slot = _owned_slot(db, slot_id, owner)
        if slot.status != SLOT_MONITORING:
            return {"ok": False, "outcome": "skipped", "slot": slot_to_dict(slot)}
        outcome = watcher.check_slot(db, slot)
    except WaitlistError as e:
        raise error_to_http(e) from e
    db.refresh(slot)
    return {"ok": True, "outcome": outcome, "slot": slot_to_dict(slot)}


@router.delete("/slots/{slot_id}")
def delete_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    try:
        _owned_slot(db, slot_id, owner)
        watcher.slots.delete(db, slot_id)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "deleted": slot_id}


# --- Entries ---


@router.get("/entries")
def list_entries(
    status: str | None = Query(None),
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    entries = watcher.entries.list_for_owner(db, owner, status)
    return {"entries": [entry_to_dict(e) for e in entries], "count": len(entries)}


@router.post("/entries/{entry_id}/cancel")
def cancel_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    """Cancelling an entry that holds an offer passes the slot to the next candidate."""
    try:
        _owned_entry(db, entry_id, owner)
        entry = watcher.matcher.cancel_entry(db, entry_id)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "entry": entry_to_dict(entry)}


@router.delete("/entries/{entry_id}")
def delete_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    watcher: AvailabilityWatcher = Depends(get_availability_watcher),
) -> dict[str, Any]:
    try:
        _owned_entry(db, entry_id, owner)
        watcher.entries.delete(db, entry_id)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "deleted": entry_id}


# --- Stats and deliveries ---


@router.get("/stats")
def waitlist_stats(db: Session = Depends(get_db), owner: str = Depends(owner_id)) -> dict[str, Any]:
    return get_waitlist_stats(db, owner)


@router.get("/deliveries")
def deliveries(
    failed_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
) -> dict[str, Any]:
    """Outbound SMS/email attempts, newest first. failed_only=true lists only failed sends."""
    rows = list_deliveries(db, owner, failed_only=failed_only, limit=limit)
    return {"deliveries": [delivery_to_dict(r) for r in rows], "count": len(rows)}
