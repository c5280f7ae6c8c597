"""One customer's request to be offered a slot (or one of their alternative times) when it frees up."""
import json
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from waitlist.core.clock import as_utc
from waitlist.db.base import Base


class Entry(Base):
    __tablename__ = "waitlist_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    requested_slot_id = Column(Integer, ForeignKey("waitlist_slots.id", ondelete="SET NULL"), nullable=True, index=True)
    first_name = Column(String(128), nullable=False, default="Client")
    last_name = Column(String(128), nullable=False, default="")
    phone = Column(String(32), nullable=False)
    email = Column(String(255), nullable=True)
    requested_slot = Column(DateTime(timezone=True), nullable=False)
    alternative_slots_json = Column(Text, nullable=True)  # JSON list of ISO timestamps, customer's order
    nb_persons = Column(Integer, nullable=False, default=1)
    # pending | notified | confirmed | declined | expired | cancelled
    status = Column(String(16), nullable=False, default="pending", index=True)
    priority = Column(Integer, nullable=False, index=True)  # lower = served first
    source = Column(String(64), nullable=True)
    notified_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    offer_expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    # Slot the current/last offer was made for (the requested slot or one matched by an alternative time)
    offer_slot_id = Column(Integer, ForeignKey("waitlist_slots.id", ondelete="SET NULL"), nullable=True)
    last_message_id = Column(String(64), nullable=True)  # provider id of the last SMS/email sent
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def alternative_slots(self) -> list[datetime]:
        if not self.alternative_slots_json:
            return []
        try:
            raw = json.loads(self.alternative_slots_json)
        except (TypeError, json.JSONDecodeError):
            return []
        out = []
        for value in raw:
            try:
                out.append(as_utc(datetime.fromisoformat(value)))
            except (TypeError, ValueError):
                continue
        return out

    @alternative_slots.setter
    def alternative_slots(self, values: list[datetime] | None) -> None:
        values = [as_utc(v).isoformat() for v in (values or [])]
        self.alternative_slots_json = json.dumps(values) if values else None
