"""
Waitlist entry points used by the API: put a customer on the waitlist (trigger), and the
public page behind the single-use links (view, register details, confirm, decline, cancel).
"""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from waitlist.core.clock import as_utc, isoformat, utcnow
from waitlist.core.constants import (
    ENTRY_NOTIFIED,
    ENTRY_PENDING,
    SLOT_PENDING,
    TOKEN_CONFIRMATION,
    TOKEN_REGISTRATION,
)
from waitlist.core.errors import MSG_INVALID_LINK, NotFoundError, StaleStateError, ValidationError
from waitlist.models.entry import Entry
from waitlist.services.waitlist_matcher import ConfirmationResult, WaitlistMatcher

logger = logging.getLogger(__name__)


def _mask_phone(phone: str | None) -> str:
    phone = phone or ""
    return f"{phone[:4]}***{phone[-2:]}" if len(phone) > 6 else "***"


class WaitlistService:
    def __init__(self, matcher: WaitlistMatcher | None = None) -> None:
        self.matcher = matcher or WaitlistMatcher()

    @property
    def slots(self):
        return self.matcher.slots

    @property
    def entries(self):
        return self.matcher.entries

    @property
    def tokens(self):
        return self.matcher.tokens

    # --- Trigger ---

    def trigger(
        self,
        db: Session,
        *,
        owner_id: str,
        phone: str,
        requested_slot: datetime,
        slot_end: datetime | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        nb_persons: int = 1,
        alternative_slots: list[datetime] | None = None,
        business_name: str | None = None,
        source: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Put a customer on the waitlist for a time that is currently booked: reuse or create the
        slot, create the entry with the next priority, start monitoring, send the registration link.
        """
        now = now or utcnow()
        if not (owner_id or "").strip():
            raise ValidationError("owner_id is required")
        requested_slot = as_utc(requested_slot)
        if requested_slot <= now:
            raise ValidationError("requested_slot must be in the future")
        alternatives = [as_utc(a) for a in (alternative_slots or []) if as_utc(a) > now]

        slot = self.slots.find_or_create(
            db, owner_id, requested_slot, slot_end, business_name=business_name, now=now
        )
        entry = self.entries.create(
            db,
            owner_id=owner_id,
            slot=slot,
            phone=phone,
            requested_slot=requested_slot,
            first_name=first_name,
            last_name=last_name,
            email=email,
            nb_persons=nb_persons,
            alternative_slots=alternatives,
            source=source,
        )
        if slot.status == SLOT_PENDING:
            self.slots.activate_monitoring(db, slot, now)
        token, link = self.matcher.dispatcher.send_registration(db, entry, slot, now)
        logger.info("Waitlist trigger: entry %s (%s) on slot %s", entry.id, _mask_phone(entry.phone), slot.id)
        return {"entry_id": entry.id, "slot_id": slot.id, "token": token, "waitlist_url": link}

    # --- Public page ---

    def describe(self, db: Session, token: str, now: datetime | None = None) -> dict[str, Any]:
        """What the public page shows for a link: the entry, the slot it concerns and what the customer can do."""
        now = now or utcnow()
        row = self.tokens.resolve(db, token)
        entry = self.entries.get(db, row.entry_id)
        slot = self.slots.get(db, row.slot_id) if row.slot_id else None
        usable = self.tokens.is_usable(row, now)
        offer_open = (
            row.kind == TOKEN_CONFIRMATION
            and usable
            and entry.status == ENTRY_NOTIFIED
            and entry.offer_slot_id == row.slot_id
            and as_utc(entry.offer_expires_at) is not None
            and as_utc(entry.offer_expires_at) > now
        )
        return {
            "kind": row.kind,
            "entry": {
                "id": entry.id,
                "first_name": entry.first_name,
                "last_name": entry.last_name,
                "phone": entry.phone,
                "email": entry.email,
                "status": entry.status,
                "requested_slot": isoformat(entry.requested_slot),
                "alternative_slots": [isoformat(a) for a in entry.alternative_slots],
                "nb_persons": entry.nb_persons,
                "offer_expires_at": isoformat(entry.offer_expires_at),
            },
            "slot": {
                "id": slot.id,
                "business_name": slot.business_name,
                "slot_start": isoformat(slot.slot_start),
                "slot_end": isoformat(slot.slot_end),
                "status": slot.status,
            }
            if slot
            else None,
            "can_register": row.kind == TOKEN_REGISTRATION and usable and entry.status == ENTRY_PENDING,
            "can_confirm": offer_open,
            "expires_at": isoformat(row.expires_at),
        }

    def register(
        self,
        db: Session,
        token: str,
        *,
        first_name: str,
        last_name: str,
        phone: str,
        email: str | None = None,
        alternative_slots: list[datetime] | None = None,
        now: datetime | None = None,
    ) -> Entry:
        """Customer completes the registration page. The registration link works once."""
        now = now or utcnow()
        row = self.tokens.resolve(db, token, kind=TOKEN_REGISTRATION)
        if not self.tokens.is_usable(row, now):
            raise NotFoundError(MSG_INVALID_LINK)
        entry = self.entries.get(db, row.entry_id)
        db.refresh(entry)
        alternatives = [as_utc(a) for a in (alternative_slots or []) if as_utc(a) > now]
        # The token is claimed before any edit so a losing submission writes nothing
        if not self.tokens.consume(db, row, now, commit=False):
            db.rollback()
            raise StaleStateError("Registration link already used", entry_id=row.entry_id)
        try:
            entry = self.entries.update_registration(
                db,
                entry,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                email=email,
                alternative_slots=alternatives,
                commit=False,
            )
        except StaleStateError:
            db.rollback()
            raise
        db.commit()
        db.refresh(entry)
        logger.info("Entry %s registered (%s alternative slots)", entry.id, len(alternatives))
        return entry

    def confirm(self, db: Session, token: str, now: datetime | None = None) -> ConfirmationResult:
        row = self.tokens.resolve(db, token, kind=TOKEN_CONFIRMATION)
        return self.matcher.confirm(db, row.entry_id, token, now)

    def decline(self, db: Session, token: str, now: datetime | None = None) -> Entry | None:
        row = self.tokens.resolve(db, token, kind=TOKEN_CONFIRMATION)
        return self.matcher.decline(db, row.entry_id, token, now)

    def cancel(self, db: Session, token: str, now: datetime | None = None) -> Entry:
        """Customer leaves the waitlist from any of their links."""
        row = self.tokens.resolve(db, token)
        return self.entries.cancel(db, row.entry_id, now)
