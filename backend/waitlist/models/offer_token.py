"""Single-use link tokens (registration or confirmation). Only the SHA-256 of the token is stored."""
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import func

from waitlist.db.base import Base


class OfferToken(Base):
    __tablename__ = "offer_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(Integer, ForeignKey("waitlist_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    slot_id = Column(Integer, ForeignKey("waitlist_slots.id", ondelete="CASCADE"), nullable=True)
    kind = Column(String(16), nullable=False)  # registration | confirmation
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
