"""
Business dashboard reads: slots, entries, delivery failures and waitlist statistics.
All queries are scoped to one owner.
"""
import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from waitlist.core.clock import isoformat
from waitlist.core.constants import (
    ENTRY_CONFIRMED,
    ENTRY_NOTIFIED,
    ENTRY_PENDING,
    SLOT_ACTIVE_STATUSES,
)
from waitlist.models.delivery_log import DeliveryLog
from waitlist.models.entry import Entry
from waitlist.models.slot import Slot

logger = logging.getLogger(__name__)


def slot_to_dict(slot: Slot) -> dict[str, Any]:
    return {
        "id": slot.id,
        "business_name": slot.business_name,
        "slot_start": isoformat(slot.slot_start),
        "slot_end": isoformat(slot.slot_end),
        "status": slot.status,
        "check_interval_minutes": slot.check_interval_minutes,
        "last_check_at": isoformat(slot.last_check_at),
        "next_check_at": isoformat(slot.next_check_at),
        "current_offer_entry_id": slot.current_offer_entry_id,
        "last_error": slot.last_error,
        "created_at": isoformat(slot.created_at),
    }


def entry_to_dict(entry: Entry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "requested_slot_id": entry.requested_slot_id,
        "offer_slot_id": entry.offer_slot_id,
        "first_name": entry.first_name,
        "last_name": entry.last_name,
        "phone": entry.phone,
        "email": entry.email,
        "requested_slot": isoformat(entry.requested_slot),
        "alternative_slots": [isoformat(a) for a in entry.alternative_slots],
        "nb_persons": entry.nb_persons,
        "status": entry.status,
        "priority": entry.priority,
        "source": entry.source,
        "notified_at": isoformat(entry.notified_at),
        "offer_expires_at": isoformat(entry.offer_expires_at),
        "confirmed_at": isoformat(entry.confirmed_at),
        "created_at": isoformat(entry.created_at),
    }


def delivery_to_dict(row: DeliveryLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "entry_id": row.entry_id,
        "kind": row.kind,
        "channel": row.channel,
        "recipient": row.recipient,
        "success": bool(row.success),
        "message_id": row.message_id,
        "error": row.error_message,
        "created_at": isoformat(row.created_at),
    }


def list_deliveries(db: Session, owner_id: str, *, failed_only: bool = False, limit: int = 100) -> list[DeliveryLog]:
    q = db.query(DeliveryLog).filter(DeliveryLog.owner_id == owner_id)
    if failed_only:
        q = q.filter(DeliveryLog.success.is_(False))
    return q.order_by(DeliveryLog.created_at.desc(), DeliveryLog.id.desc()).limit(limit).all()


def get_waitlist_stats(db: Session, owner_id: str) -> dict[str, Any]:
    """
    Totals for the dashboard. conversion_rate = confirmed / total entries * 100, one decimal;
    0.0 when there are no entries.
    """
    entry_counts = dict(
        db.query(Entry.status, func.count(Entry.id))
        .filter(Entry.owner_id == owner_id)
        .group_by(Entry.status)
        .all()
    )
    slot_counts = dict(
        db.query(Slot.status, func.count(Slot.id))
        .filter(Slot.owner_id == owner_id)
        .group_by(Slot.status)
        .all()
    )
    total = sum(entry_counts.values())
    confirmed = entry_counts.get(ENTRY_CONFIRMED, 0)
    failed_deliveries = (
        db.query(func.count(DeliveryLog.id))
        .filter(DeliveryLog.owner_id == owner_id, DeliveryLog.success.is_(False))
        .scalar()
    ) or 0
    return {
        "total_entries": total,
        "pending_entries": entry_counts.get(ENTRY_PENDING, 0),
        "notified_entries": entry_counts.get(ENTRY_NOTIFIED, 0),
        "confirmed_entries": confirmed,
        "active_slots": sum(slot_counts.get(s, 0) for s in SLOT_ACTIVE_STATUSES),
        "entries_by_status": entry_counts,
        "slots_by_status": slot_counts,
        "failed_deliveries": failed_deliveries,
        "conversion_rate": round(confirmed / total * 100, 1) if total else 0.0,
    }
