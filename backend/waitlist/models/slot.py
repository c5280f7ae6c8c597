"""A time window a business wants monitored on its calendar. One row per (business, requested time)."""
from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from waitlist.db.base import Base


class Slot(Base):
    __tablename__ = "waitlist_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    business_name = Column(String(255), nullable=True)  # shown in SMS/email and on the public page
    slot_start = Column(DateTime(timezone=True), nullable=False, index=True)
    slot_end = Column(DateTime(timezone=True), nullable=False)
    # pending | monitoring | available | filled | expired | cancelled
    status = Column(String(16), nullable=False, default="pending", index=True)
    check_interval_minutes = Column(Integer, nullable=False, default=10)
    last_check_at = Column(DateTime(timezone=True), nullable=True)
    next_check_at = Column(DateTime(timezone=True), nullable=True, index=True)
    # Entry holding the single active offer while `available`; claimed/released by compare-and-set
    current_offer_entry_id = Column(Integer, nullable=True)
    calendar_event_ref = Column(String(255), nullable=True)  # opaque provider reference, never parsed
    last_error = Column(Text, nullable=True)  # last transient polling error, for the dashboard
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
