"""
Slot entities and their state machine.

    pending -> monitoring -> available -> filled | expired
    monitoring -> cancelled
    available -> monitoring   (offer chain exhausted, slot re-enters polling)

plus expiry once the slot start has passed and business cancellation of any open slot.

Every status change is a compare-and-set: UPDATE ... WHERE id = :id AND status = :expected.
A transition that finds another status is a no-op (returns False), never an error; that is
the race guard that lets only one path move a slot out of `available`.
"""
import logging
import random
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from waitlist.core.clock import as_utc, utcnow
from waitlist.core.constants import (
    CHECK_INTERVAL_FALLBACK_MINUTES,
    CHECK_INTERVAL_RULES,
    ENTRY_ACTIVE_STATUSES,
    SLOT_ACTIVE_STATUSES,
    SLOT_AVAILABLE,
    SLOT_CANCELLED,
    SLOT_EXPIRED,
    SLOT_FILLED,
    SLOT_MONITORING,
    SLOT_PENDING,
    SLOT_TERMINAL_STATUSES,
)
from waitlist.core.engine_config import EngineConfig, get_engine_config
from waitlist.core.errors import NotFoundError, ValidationError
from waitlist.models.calendar_connection import CalendarConnection
from waitlist.models.entry import Entry
from waitlist.models.slot import Slot

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    SLOT_PENDING: frozenset({SLOT_MONITORING, SLOT_CANCELLED, SLOT_EXPIRED}),
    SLOT_MONITORING: frozenset({SLOT_AVAILABLE, SLOT_CANCELLED, SLOT_EXPIRED}),
    SLOT_AVAILABLE: frozenset({SLOT_FILLED, SLOT_MONITORING, SLOT_EXPIRED, SLOT_CANCELLED}),
}


def compute_check_interval(slot_start: datetime, now: datetime) -> int:
    """Poll more often as the slot gets closer: 3 min on the day (<= 6h), 5 min within 24h, else 10."""
    hours_until = (as_utc(slot_start) - now).total_seconds() / 3600
    for max_hours, minutes in CHECK_INTERVAL_RULES:
        if hours_until <= max_hours:
            return minutes
    return CHECK_INTERVAL_FALLBACK_MINUTES


class SlotRegistry:
    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or get_engine_config()

    # --- Reads ---

    def get(self, db: Session, slot_id: int) -> Slot:
        slot = db.get(Slot, slot_id)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    def list_for_owner(self, db: Session, owner_id: str, status: str | None = None) -> list[Slot]:
        q = db.query(Slot).filter(Slot.owner_id == owner_id)
        if status:
            q = q.filter(Slot.status == status)
        return q.order_by(Slot.slot_start.desc()).all()

    def due_slots(self, db: Session, now: datetime, limit: int | None = None) -> list[Slot]:
        """Monitoring slots whose next check is due and whose business has an enabled calendar connection."""
        q = (
            db.query(Slot)
            .join(CalendarConnection, CalendarConnection.owner_id == Slot.owner_id)
            .filter(
                Slot.status == SLOT_MONITORING,
                Slot.next_check_at.isnot(None),
                Slot.next_check_at <= now,
                CalendarConnection.is_enabled.is_(True),
            )
            .order_by(Slot.next_check_at.asc(), Slot.id.asc())
        )
        if limit:
            q = q.limit(limit)
        return q.all()

    # --- Creation ---

    def find_or_create(
        self,
        db: Session,
        owner_id: str,
        slot_start: datetime,
        slot_end: datetime | None = None,
        *,
        business_name: str | None = None,
        now: datetime | None = None,
    ) -> Slot:
        """
        Reuse an open slot (pending, monitoring or available) of the same business starting within
        ± the match window, else create one (pending). Joining an available slot queues the caller
        behind its live offer; a second slot over the same window would run a parallel offer.
        """
        now = now or utcnow()
        slot_start = as_utc(slot_start)
        window = timedelta(minutes=self.config.slot_match_window_minutes)
        existing = (
            db.query(Slot)
            .filter(
                Slot.owner_id == owner_id,
                Slot.status.in_(SLOT_ACTIVE_STATUSES),
                Slot.slot_start >= slot_start - window,
                Slot.slot_start <= slot_start + window,
            )
            .order_by(Slot.id.asc())
            .first()
        )
        if existing:
            return existing
        slot_end = as_utc(slot_end) if slot_end else slot_start + timedelta(minutes=self.config.default_slot_minutes)
        if slot_end <= slot_start:
            raise ValidationError("slot_end must be after slot_start")
        slot = Slot(
            owner_id=owner_id,
            business_name=business_name,
            slot_start=slot_start,
            slot_end=slot_end,
            status=SLOT_PENDING,
            check_interval_minutes=compute_check_interval(slot_start, now),
        )
        db.add(slot)
        db.commit()
        db.refresh(slot)
        logger.info("Slot %s created for owner %s at %s", slot.id, owner_id, slot_start.isoformat())
        return slot

    # --- Transitions ---

    def transition(
        self, db: Session, slot_id: int, expected: str, new: str, *, commit: bool = True, criteria=(), **values
    ) -> bool:
        """
        Compare-and-set the slot status. Returns True when this call won the transition.
        With commit=False the caller owns the transaction (e.g. confirm moves entry and slot together).
        """
        if new not in ALLOWED_TRANSITIONS.get(expected, frozenset()):
            raise ValueError(f"Illegal slot transition {expected} -> {new}")
        updated = (
            db.query(Slot)
            .filter(Slot.id == slot_id, Slot.status == expected, *criteria)
            .update({Slot.status: new, **{getattr(Slot, k): v for k, v in values.items()}}, synchronize_session=False)
        )
        if commit:
            db.commit()
        if updated:
            logger.info("Slot %s: %s -> %s", slot_id, expected, new)
        else:
            logger.debug("Slot %s: %s -> %s lost (status changed)", slot_id, expected, new)
        return updated == 1

    def activate_monitoring(self, db: Session, slot: Slot, now: datetime | None = None) -> bool:
        """pending -> monitoring; first check is due one interval from now."""
        now = now or utcnow()
        interval = compute_check_interval(slot.slot_start, now)
        won = self.transition(
            db,
            slot.id,
            SLOT_PENDING,
            SLOT_MONITORING,
            check_interval_minutes=interval,
            next_check_at=now + timedelta(minutes=interval),
        )
        db.refresh(slot)
        return won

    def mark_checked(self, db: Session, slot: Slot, now: datetime) -> bool:
        """Record a completed poll (busy, or nothing to offer) and schedule the next one."""
        interval = compute_check_interval(slot.slot_start, now)
        updated = (
            db.query(Slot)
            .filter(Slot.id == slot.id, Slot.status == SLOT_MONITORING)
            .update(
                {
                    Slot.last_check_at: now,
                    Slot.check_interval_minutes: interval,
                    Slot.next_check_at: now + timedelta(minutes=interval),
                    Slot.last_error: None,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    def defer_after_error(self, db: Session, slot: Slot, now: datetime, error: str) -> datetime:
        """
        Transient polling failure: keep the schedule, push the next check back by a jittered backoff.
        Never earlier than the already planned check, so failures cannot tighten the polling loop.
        """
        base = self.config.transient_backoff_seconds
        backoff = timedelta(seconds=random.uniform(base, base * 2))
        planned = as_utc(slot.next_check_at) or now
        next_check = max(planned, now) + backoff
        db.query(Slot).filter(Slot.id == slot.id, Slot.status == SLOT_MONITORING).update(
            {Slot.next_check_at: next_check, Slot.last_error: (error or "")[:1000]},
            synchronize_session=False,
        )
        db.commit()
        return next_check

    def cancel(self, db: Session, slot_id: int) -> bool:
        slot = self.get(db, slot_id)
        if slot.status not in SLOT_ACTIVE_STATUSES:
            return False
        return self.transition(db, slot.id, slot.status, SLOT_CANCELLED, next_check_at=None)

    def expire_past(self, db: Session, now: datetime) -> list[int]:
        """Slots whose start has passed while still open. Returns ids this call expired."""
        candidates = (
            db.query(Slot.id, Slot.status)
            .filter(Slot.status.in_(SLOT_ACTIVE_STATUSES), Slot.slot_start < now)
            .all()
        )
        expired = []
        for slot_id, status in candidates:
            if self.transition(db, slot_id, status, SLOT_EXPIRED, next_check_at=None):
                expired.append(slot_id)
        return expired

    # --- Removal ---

    def _is_referenced(self, db: Session, slot_id: int) -> bool:
        return (
            db.query(Entry.id)
            .filter(
                (Entry.requested_slot_id == slot_id) | (Entry.offer_slot_id == slot_id),
                Entry.status.in_(ENTRY_ACTIVE_STATUSES),
            )
            .first()
            is not None
        )

    def delete(self, db: Session, slot_id: int) -> None:
        slot = self.get(db, slot_id)
        if slot.status not in SLOT_TERMINAL_STATUSES and slot.status != SLOT_PENDING:
            raise ValidationError("Cancel the slot before deleting it")
        if self._is_referenced(db, slot_id):
            raise ValidationError("Slot is still referenced by active waitlist entries")
        db.delete(slot)
        db.commit()

    def archive_terminal(self, db: Session, older_than: datetime) -> int:
        """Delete filled/expired/cancelled slots that ended before `older_than` and no active entry references."""
        rows = (
            db.query(Slot)
            .filter(Slot.status.in_(SLOT_TERMINAL_STATUSES), Slot.slot_end < older_than)
            .all()
        )
        deleted = 0
        for slot in rows:
            if self._is_referenced(db, slot.id):
                continue
            db.delete(slot)
            deleted += 1
        db.commit()
        return deleted
