"""OAuth credentials for one business's calendar. Mutated only by the token refresh manager and the connect flow."""
from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from waitlist.db.base import Base


class CalendarConnection(Base):
    __tablename__ = "calendar_connections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, unique=True, index=True)
    provider = Column(String(32), nullable=False, default="google_calendar")
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    calendar_id = Column(String(255), nullable=True)
    calendar_name = Column(String(255), nullable=True)
    # Polling for this business's slots is suspended while disabled
    is_enabled = Column(Boolean, nullable=False, default=False)
    last_error = Column(Text, nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_connected(self) -> bool:
        return bool(self.access_token and self.refresh_token)
