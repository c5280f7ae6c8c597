"""
Offer protocol: when a slot becomes available, offer it to one waiting customer at a time.

A slot is claimed for an offer by compare-and-set on waitlist_slots.current_offer_entry_id
(NULL -> entry id, only while the slot is `available`); the candidate entry then moves
pending -> notified in the same transaction. Whoever loses either CAS rolls back and re-reads,
so at most one entry per slot is ever `notified`, across threads and processes.

The claim is released (entry id -> NULL) when the offer ends by decline, expiry or
cancellation, and the next candidate is offered immediately. Confirmation moves the slot
available -> filled and the entry notified -> confirmed together, or neither.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from waitlist.core.clock import as_utc, utcnow
from waitlist.core.constants import (
    ENTRY_CONFIRMED,
    ENTRY_DECLINED,
    ENTRY_EXPIRED,
    ENTRY_NOTIFIED,
    ENTRY_PENDING,
    SLOT_AVAILABLE,
    SLOT_EXPIRED,
    SLOT_FILLED,
    SLOT_MONITORING,
    TOKEN_CONFIRMATION,
)
from waitlist.core.engine_config import EXHAUSTED_CLOSE, EngineConfig, get_engine_config
from waitlist.core.errors import (
    MSG_OFFER_NO_LONGER_VALID,
    MSG_SLOT_NO_LONGER_AVAILABLE,
    OfferExpiredError,
    StaleStateError,
    ValidationError,
)
from waitlist.models.entry import Entry
from waitlist.models.offer_token import OfferToken
from waitlist.models.slot import Slot
from waitlist.services.entry_registry import EntryRegistry
from waitlist.services.notification_dispatcher import NotificationDispatcher
from waitlist.services.offer_token_service import OfferTokenService
from waitlist.services.slot_registry import SlotRegistry, compute_check_interval

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationResult:
    entry_id: int
    slot_id: int
    status: str
    confirmed_at: datetime


class WaitlistMatcher:
    def __init__(
        self,
        slots: SlotRegistry | None = None,
        entries: EntryRegistry | None = None,
        dispatcher: NotificationDispatcher | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.config = config or get_engine_config()
        self.slots = slots or SlotRegistry(self.config)
        self.entries = entries or EntryRegistry()
        self.entries.on_offer_released = self._on_offer_released
        self.dispatcher = dispatcher or NotificationDispatcher(config=self.config)
        self.tokens: OfferTokenService = self.dispatcher.tokens

    # --- Claim on the slot ---

    def _claim(self, db: Session, slot_id: int, entry_id: int) -> bool:
        updated = (
            db.query(Slot)
            .filter(Slot.id == slot_id, Slot.status == SLOT_AVAILABLE, Slot.current_offer_entry_id.is_(None))
            .update({Slot.current_offer_entry_id: entry_id}, synchronize_session=False)
        )
        return updated == 1

    def _release_claim(self, db: Session, slot_id: int | None, entry_id: int) -> bool:
        if slot_id is None:
            return False
        updated = (
            db.query(Slot)
            .filter(Slot.id == slot_id, Slot.current_offer_entry_id == entry_id)
            .update({Slot.current_offer_entry_id: None}, synchronize_session=False)
        )
        return updated == 1

    def active_offer(self, db: Session, slot: Slot) -> Entry | None:
        """The entry currently holding the offer for this slot, if its claim is live."""
        if slot.current_offer_entry_id is None:
            return None
        entry = db.get(Entry, slot.current_offer_entry_id)
        if entry is not None and entry.status == ENTRY_NOTIFIED and entry.offer_slot_id == slot.id:
            return entry
        return None

    # --- Offering ---

    def on_slot_available(self, db: Session, slot_id: int, now: datetime | None = None) -> Entry | None:
        return self.offer_next(db, slot_id, now)

    def offer_next(self, db: Session, slot_id: int, now: datetime | None = None) -> Entry | None:
        """
        Offer the slot to the best pending candidate. Returns the notified entry (possibly one
        notified earlier by another worker), or None when the slot is not available or the pool
        is exhausted.
        """
        now = now or utcnow()
        slot = self.slots.get(db, slot_id)
        db.refresh(slot)
        if slot.status != SLOT_AVAILABLE:
            return None
        current = self.active_offer(db, slot)
        if current is not None:
            return current
        if slot.current_offer_entry_id is not None:
            # Holder left `notified` without releasing (crash between commits)
            self._release_claim(db, slot.id, slot.current_offer_entry_id)
            db.commit()
            db.refresh(slot)

        expires_at = now + timedelta(minutes=self.config.offer_window_minutes)
        for candidate in self.entries.candidates_for(db, slot):
            if not self._claim(db, slot.id, candidate.id):
                db.rollback()
                db.refresh(slot)
                logger.debug("Slot %s claim lost; another worker is offering", slot.id)
                return self.active_offer(db, slot)
            won = self.entries.transition(
                db,
                candidate.id,
                ENTRY_PENDING,
                ENTRY_NOTIFIED,
                commit=False,
                notified_at=now,
                offer_expires_at=expires_at,
                offer_slot_id=slot.id,
            )
            if not won:
                # Candidate was cancelled meanwhile; the rollback drops our claim too
                db.rollback()
                continue
            db.commit()
            db.refresh(candidate)
            db.refresh(slot)
            logger.info(
                "Slot %s offered to entry %s (priority %s) until %s",
                slot.id,
                candidate.id,
                candidate.priority,
                expires_at.isoformat(),
            )
            self.dispatcher.send_offer(db, candidate, slot, now)
            return candidate

        self._pool_exhausted(db, slot, now)
        return None

    def _pool_exhausted(self, db: Session, slot: Slot, now: datetime) -> None:
        if self.config.exhausted_action == EXHAUSTED_CLOSE:
            self.slots.transition(
                db, slot.id, SLOT_AVAILABLE, SLOT_EXPIRED, criteria=(Slot.current_offer_entry_id.is_(None),),
                next_check_at=None,
            )
            logger.info("Slot %s: no candidates left, closed", slot.id)
        else:
            interval = compute_check_interval(slot.slot_start, now)
            self.slots.transition(
                db,
                slot.id,
                SLOT_AVAILABLE,
                SLOT_MONITORING,
                criteria=(Slot.current_offer_entry_id.is_(None),),
                last_check_at=now,
                check_interval_minutes=interval,
                next_check_at=now + timedelta(minutes=interval),
            )
            logger.info("Slot %s: no candidates left, back to monitoring", slot.id)
        db.refresh(slot)

    # --- Ending an offer ---

    def release_offer(
        self, db: Session, entry: Entry, new_status: str, now: datetime | None = None, *, criteria=(), token_row=None
    ) -> Entry | None:
        """
        notified -> declined | expired, release the slot claim and offer the next candidate.
        Raises StaleStateError if the entry already left `notified`. Returns the next offered entry.

        Rows are written slot, entry, token: the order confirm uses, so the two never wait on each other.
        """
        now = now or utcnow()
        slot_id = entry.offer_slot_id
        try:
            self._release_claim(db, slot_id, entry.id)
            released = self.entries.transition(
                db, entry.id, ENTRY_NOTIFIED, new_status, commit=False, criteria=criteria
            )
            if released and token_row is not None:
                released = self.tokens.consume(db, token_row, now, commit=False)
            if not released:
                db.rollback()
                raise StaleStateError(MSG_OFFER_NO_LONGER_VALID, entry_id=entry.id)
            db.commit()
        except OperationalError as exc:
            db.rollback()
            logger.warning("Releasing offer of entry %s aborted by the database: %s", entry.id, exc)
            raise StaleStateError(MSG_OFFER_NO_LONGER_VALID, entry_id=entry.id) from exc
        db.refresh(entry)
        if slot_id is None:
            return None
        return self.offer_next(db, slot_id, now)

    def _on_offer_released(self, db: Session, entry: Entry, now: datetime) -> None:
        """Entry registry hook: a notified entry was cancelled."""
        self._release_claim(db, entry.offer_slot_id, entry.id)
        db.commit()
        if entry.offer_slot_id is not None:
            self.offer_next(db, entry.offer_slot_id, now)

    def expire_due_offers(self, db: Session, now: datetime | None = None, slot_id: int | None = None) -> int:
        """Notified entries past their offer TTL -> expired; each freed slot goes to the next candidate."""
        now = now or utcnow()
        q = db.query(Entry).filter(
            Entry.status == ENTRY_NOTIFIED,
            Entry.offer_expires_at.isnot(None),
            Entry.offer_expires_at <= now,
        )
        if slot_id is not None:
            q = q.filter(Entry.offer_slot_id == slot_id)
        expired = 0
        for entry in q.order_by(Entry.offer_expires_at.asc(), Entry.id.asc()).all():
            try:
                self.release_offer(db, entry, ENTRY_EXPIRED, now, criteria=(Entry.offer_expires_at <= now,))
                expired += 1
                logger.info("Offer to entry %s expired without response", entry.id)
            except StaleStateError:
                logger.debug("Entry %s answered before its offer expired", entry.id)
        return expired

    def slots_with_due_offers(self, db: Session, now: datetime) -> list[int]:
        rows = (
            db.query(Entry.offer_slot_id)
            .filter(
                Entry.status == ENTRY_NOTIFIED,
                Entry.offer_expires_at.isnot(None),
                Entry.offer_expires_at <= now,
                Entry.offer_slot_id.isnot(None),
            )
            .distinct()
            .all()
        )
        return [r[0] for r in rows]

    def unoffered_available_slots(self, db: Session) -> list[int]:
        """Available slots nobody holds an offer on (e.g. a worker died between CAS and offer)."""
        rows = (
            db.query(Slot.id)
            .filter(Slot.status == SLOT_AVAILABLE, Slot.current_offer_entry_id.is_(None))
            .all()
        )
        return [r[0] for r in rows]

    # --- Customer responses ---

    def _load_offer(self, db: Session, entry_id: int, token: str, now: datetime) -> tuple[Entry, OfferToken]:
        row = self.tokens.resolve(db, token, kind=TOKEN_CONFIRMATION)
        if row.entry_id != entry_id:
            raise ValidationError("Token does not belong to this entry")
        entry = self.entries.get(db, entry_id)
        db.refresh(entry)
        offer_expires_at = as_utc(entry.offer_expires_at)
        superseded = entry.offer_slot_id is None or row.slot_id != entry.offer_slot_id
        if entry.status == ENTRY_EXPIRED or superseded or offer_expires_at is None or now >= offer_expires_at:
            raise OfferExpiredError(MSG_OFFER_NO_LONGER_VALID, entry_id=entry_id)
        if entry.status == ENTRY_CONFIRMED:
            raise StaleStateError("Entry already confirmed", entry_id=entry_id)
        if entry.status != ENTRY_NOTIFIED or row.consumed_at is not None:
            raise StaleStateError(MSG_OFFER_NO_LONGER_VALID, entry_id=entry_id)
        return entry, row

    def confirm(self, db: Session, entry_id: int, token: str, now: datetime | None = None) -> ConfirmationResult:
        """
        Accept the offer. The slot becomes `filled` and the entry `confirmed` in one transaction.

        Raises OfferExpiredError past the TTL (nothing changes), StaleStateError when the offer was
        already answered or the slot is gone, NotFoundError for an unknown token.
        """
        now = now or utcnow()
        entry, row = self._load_offer(db, entry_id, token, now)
        slot = self.slots.get(db, entry.offer_slot_id)
        db.refresh(slot)
        if slot.status != SLOT_AVAILABLE:
            raise StaleStateError(MSG_SLOT_NO_LONGER_AVAILABLE, slot_id=slot.id)

        try:
            filled = self.slots.transition(
                db,
                slot.id,
                SLOT_AVAILABLE,
                SLOT_FILLED,
                commit=False,
                criteria=(Slot.current_offer_entry_id == entry.id,),
                next_check_at=None,
            )
            confirmed = filled and self.entries.transition(
                db,
                entry.id,
                ENTRY_NOTIFIED,
                ENTRY_CONFIRMED,
                commit=False,
                criteria=(Entry.offer_expires_at > now, Entry.offer_slot_id == slot.id),
                confirmed_at=now,
            )
            consumed = confirmed and self.tokens.consume(db, row, now, commit=False)
            if not consumed:
                db.rollback()
                raise StaleStateError(MSG_SLOT_NO_LONGER_AVAILABLE, slot_id=slot.id, entry_id=entry.id)
            db.commit()
        except OperationalError as exc:
            db.rollback()
            logger.warning("Confirmation of entry %s aborted by the database: %s", entry.id, exc)
            raise StaleStateError(MSG_SLOT_NO_LONGER_AVAILABLE, slot_id=slot.id, entry_id=entry.id) from exc
        logger.info("Slot %s filled by entry %s", slot.id, entry.id)
        return ConfirmationResult(entry_id=entry.id, slot_id=slot.id, status=ENTRY_CONFIRMED, confirmed_at=now)

    def decline(self, db: Session, entry_id: int, token: str, now: datetime | None = None) -> Entry | None:
        """Customer turns the offer down; the next candidate is offered right away. Returns that entry."""
        now = now or utcnow()
        entry, row = self._load_offer(db, entry_id, token, now)
        return self.release_offer(
            db, entry, ENTRY_DECLINED, now, criteria=(Entry.offer_expires_at > now,), token_row=row
        )

    # --- Business actions ---

    def cancel_slot(self, db: Session, slot_id: int, now: datetime | None = None) -> bool:
        """Business withdraws a slot: any live offer ends (entry expired), pending requesters stay queued."""
        slot = self.slots.get(db, slot_id)
        if not self.slots.cancel(db, slot.id):
            return False
        db.refresh(slot)
        holder_id = slot.current_offer_entry_id
        if holder_id is not None:
            self._release_claim(db, slot.id, holder_id)
            self.entries.transition(
                db, holder_id, ENTRY_NOTIFIED, ENTRY_EXPIRED, commit=False, criteria=(Entry.offer_slot_id == slot.id,)
            )
            db.commit()
        return True

    def cancel_entry(self, db: Session, entry_id: int, now: datetime | None = None) -> Entry:
        return self.entries.cancel(db, entry_id, now)


__all__ = ["ConfirmationResult", "WaitlistMatcher"]
