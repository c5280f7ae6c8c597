"""Outbound SMS/email attempts, so persistent send failures are visible to the business."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from waitlist.db.base import Base


class DeliveryLog(Base):
    __tablename__ = "delivery_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(Integer, ForeignKey("waitlist_entries.id", ondelete="CASCADE"), nullable=True, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(16), nullable=False)  # registration | confirmation
    channel = Column(String(8), nullable=False)  # sms | email
    recipient = Column(String(255), nullable=False)
    success = Column(Boolean, nullable=False, default=False)
    message_id = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
