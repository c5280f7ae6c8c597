"""
Entry entities and their status field.

    pending -> notified -> confirmed | declined | expired
    pending | notified -> cancelled
    pending -> expired        (requested slot passed without an offer)

Status changes are compare-and-set on (id, expected status), same discipline as slots.
Cancelling a `notified` entry releases its offer; the matcher registers `on_offer_released`
so the next candidate is offered immediately, exactly like a decline.
"""
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from waitlist.core.clock import as_utc, utcnow
from waitlist.core.constants import (
    DEFAULT_ENTRY_SOURCE,
    ENTRY_CANCELLED,
    ENTRY_CONFIRMED,
    ENTRY_DECLINED,
    ENTRY_EXPIRED,
    ENTRY_NOTIFIED,
    ENTRY_PENDING,
    SLOT_ACTIVE_STATUSES,
)
from waitlist.core.errors import NotFoundError, StaleStateError, ValidationError
from waitlist.models.entry import Entry
from waitlist.models.slot import Slot

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    ENTRY_PENDING: frozenset({ENTRY_NOTIFIED, ENTRY_CANCELLED, ENTRY_EXPIRED}),
    ENTRY_NOTIFIED: frozenset({ENTRY_CONFIRMED, ENTRY_DECLINED, ENTRY_EXPIRED, ENTRY_CANCELLED}),
}

CANCELLABLE_STATUSES = (ENTRY_PENDING, ENTRY_NOTIFIED)


def _within(value: datetime, start: datetime, end: datetime) -> bool:
    return start <= value < end


class EntryRegistry:
    def __init__(self, on_offer_released: Callable[[Session, Entry, datetime], None] | None = None) -> None:
        self.on_offer_released = on_offer_released

    # --- Reads ---

    def get(self, db: Session, entry_id: int) -> Entry:
        entry = db.get(Entry, entry_id)
        if entry is None:
            raise NotFoundError(f"Entry {entry_id} not found")
        return entry

    def list_for_slot(self, db: Session, slot_id: int) -> list[Entry]:
        return (
            db.query(Entry)
            .filter((Entry.requested_slot_id == slot_id) | (Entry.offer_slot_id == slot_id))
            .order_by(Entry.priority.asc(), Entry.created_at.asc(), Entry.id.asc())
            .all()
        )

    def list_for_owner(self, db: Session, owner_id: str, status: str | None = None) -> list[Entry]:
        q = db.query(Entry).filter(Entry.owner_id == owner_id)
        if status:
            q = q.filter(Entry.status == status)
        return q.order_by(Entry.created_at.desc(), Entry.id.desc()).all()

    def candidates_for(self, db: Session, slot: Slot) -> list[Entry]:
        """
        Ranked candidate pool for a slot that became available: pending entries of the same business
        that requested this slot, or whose alternative time falls inside [slot_start, slot_end).
        The requested time itself only matches another slot's window once the entry's own slot is
        closed; while that slot is open the entry stays queued on it. Ordered by priority, then FIFO.
        """
        start, end = as_utc(slot.slot_start), as_utc(slot.slot_end)
        rows = (
            db.query(Entry, Slot.status)
            .outerjoin(Slot, Slot.id == Entry.requested_slot_id)
            .filter(Entry.owner_id == slot.owner_id, Entry.status == ENTRY_PENDING)
            .order_by(Entry.priority.asc(), Entry.created_at.asc(), Entry.id.asc())
            .all()
        )
        candidates = []
        for entry, own_status in rows:
            if entry.requested_slot_id == slot.id:
                candidates.append(entry)
                continue
            times = list(entry.alternative_slots)
            if own_status not in SLOT_ACTIVE_STATUSES:
                times.insert(0, as_utc(entry.requested_slot))
            if any(_within(t, start, end) for t in times):
                candidates.append(entry)
        return candidates

    def has_candidates(self, db: Session, slot: Slot) -> bool:
        return bool(self.candidates_for(db, slot))

    # --- Creation ---

    def next_priority(self, db: Session, owner_id: str) -> int:
        """Monotonically increasing per business: earlier requests are served first."""
        current = db.query(func.max(Entry.priority)).filter(Entry.owner_id == owner_id).scalar()
        return (current or 0) + 1

    def create(
        self,
        db: Session,
        *,
        owner_id: str,
        slot: Slot,
        phone: str,
        requested_slot: datetime,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        nb_persons: int = 1,
        alternative_slots: list[datetime] | None = None,
        source: str | None = None,
    ) -> Entry:
        phone = (phone or "").strip()
        if not phone:
            raise ValidationError("phone is required")
        if nb_persons < 1:
            raise ValidationError("nb_persons must be at least 1")
        entry = Entry(
            owner_id=owner_id,
            requested_slot_id=slot.id,
            first_name=(first_name or "").strip() or "Client",
            last_name=(last_name or "").strip(),
            phone=phone,
            email=(email or "").strip() or None,
            requested_slot=as_utc(requested_slot),
            nb_persons=nb_persons,
            status=ENTRY_PENDING,
            priority=self.next_priority(db, owner_id),
            source=(source or "").strip() or DEFAULT_ENTRY_SOURCE,
        )
        entry.alternative_slots = alternative_slots
        db.add(entry)
        db.commit()
        db.refresh(entry)
        logger.info("Entry %s created for slot %s (priority %s)", entry.id, slot.id, entry.priority)
        return entry

    def update_registration(
        self,
        db: Session,
        entry: Entry,
        *,
        first_name: str,
        last_name: str,
        phone: str,
        email: str | None,
        alternative_slots: list[datetime],
        commit: bool = True,
    ) -> Entry:
        """Customer corrects contact details and picks alternative times from the registration page."""
        if entry.status != ENTRY_PENDING:
            raise StaleStateError("Entry can no longer be edited", entry_id=entry.id)
        entry.first_name = first_name.strip() or entry.first_name
        entry.last_name = last_name.strip()
        entry.phone = phone.strip() or entry.phone
        entry.email = (email or "").strip() or None
        entry.alternative_slots = alternative_slots
        if commit:
            db.commit()
            db.refresh(entry)
        return entry

    # --- Transitions ---

    def transition(
        self, db: Session, entry_id: int, expected: str, new: str, *, commit: bool = True, criteria=(), **values
    ) -> bool:
        """Compare-and-set the entry status (plus optional extra WHERE criteria). True when this call won."""
        if new not in ALLOWED_TRANSITIONS.get(expected, frozenset()):
            raise ValueError(f"Illegal entry transition {expected} -> {new}")
        updated = (
            db.query(Entry)
            .filter(Entry.id == entry_id, Entry.status == expected, *criteria)
            .update({Entry.status: new, **{getattr(Entry, k): v for k, v in values.items()}}, synchronize_session=False)
        )
        if commit:
            db.commit()
        if updated:
            logger.info("Entry %s: %s -> %s", entry_id, expected, new)
        else:
            logger.debug("Entry %s: %s -> %s lost (status changed)", entry_id, expected, new)
        return updated == 1

    def cancel(self, db: Session, entry_id: int, now: datetime | None = None) -> Entry:
        """Manual cancellation (customer or business). Only from pending or notified."""
        now = now or utcnow()
        entry = self.get(db, entry_id)
        previous = entry.status
        if previous not in CANCELLABLE_STATUSES:
            raise StaleStateError(f"Entry {entry_id} is {previous}; cannot cancel", entry_id=entry_id)
        if not self.transition(db, entry_id, previous, ENTRY_CANCELLED):
            raise StaleStateError(f"Entry {entry_id} changed while cancelling", entry_id=entry_id)
        db.refresh(entry)
        if previous == ENTRY_NOTIFIED and self.on_offer_released is not None:
            self.on_offer_released(db, entry, now)
        return entry

    def expire_pending_for_slots(self, db: Session, slot_ids: list[int]) -> int:
        """Pending entries whose requested slot expired. Returns count."""
        if not slot_ids:
            return 0
        updated = (
            db.query(Entry)
            .filter(Entry.requested_slot_id.in_(slot_ids), Entry.status == ENTRY_PENDING)
            .update({Entry.status: ENTRY_EXPIRED}, synchronize_session=False)
        )
        db.commit()
        if updated:
            logger.info("Expired %s pending entries for past slots %s", updated, slot_ids)
        return updated

    def delete(self, db: Session, entry_id: int, now: datetime | None = None) -> None:
        """Remove an entry. A live offer is cancelled first so the slot moves on to the next candidate."""
        entry = self.get(db, entry_id)
        if entry.status == ENTRY_NOTIFIED:
            entry = self.cancel(db, entry_id, now)
        db.delete(entry)
        db.commit()
