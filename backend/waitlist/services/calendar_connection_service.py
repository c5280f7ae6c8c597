"""
Business-side calendar connection: OAuth connect flow, calendar selection, enable/disable,
disconnect and reconnect. One connection per owner.

A freshly connected calendar stays disabled until the business picks which calendar to watch.
"""
import logging
from datetime import datetime, timedelta
from typing import Any

import jwt
from sqlalchemy.orm import Session

from waitlist.config import settings
from waitlist.core.clock import isoformat, utcnow
from waitlist.core.constants import PROVIDER_GOOGLE, SLOT_MONITORING
from waitlist.core.errors import NotFoundError, ValidationError
from waitlist.models.calendar_connection import CalendarConnection
from waitlist.models.slot import Slot
from waitlist.services.calendar import CalendarGateway, CalendarInfo, default_gateway
from waitlist.services.token_refresh_service import TokenRefreshManager

logger = logging.getLogger(__name__)

OAUTH_STATE_TTL_MINUTES = 10
_STATE_PURPOSE = "calendar_oauth"


def connection_to_dict(connection: CalendarConnection | None) -> dict[str, Any]:
    if connection is None:
        return {"connected": False, "is_enabled": False}
    return {
        "connected": connection.is_connected,
        "provider": connection.provider,
        "calendar_id": connection.calendar_id,
        "calendar_name": connection.calendar_name,
        "is_enabled": bool(connection.is_enabled),
        "last_error": connection.last_error,
        "last_sync_at": isoformat(connection.last_sync_at),
        "token_expiry": isoformat(connection.token_expiry),
    }


class CalendarConnectionService:
    def __init__(
        self,
        gateway: CalendarGateway | None = None,
        refresher: TokenRefreshManager | None = None,
        *,
        redirect_uri: str | None = None,
        secret: str | None = None,
    ) -> None:
        self.gateway = gateway or default_gateway
        self.refresher = refresher or TokenRefreshManager(self.gateway)
        self.redirect_uri = redirect_uri or settings.google_redirect_uri
        self._secret = secret or settings.confirmation_token_secret

    def get(self, db: Session, owner_id: str) -> CalendarConnection | None:
        return db.query(CalendarConnection).filter(CalendarConnection.owner_id == owner_id).first()

    def _require(self, db: Session, owner_id: str) -> CalendarConnection:
        connection = self.get(db, owner_id)
        if connection is None or not connection.is_connected:
            raise NotFoundError("No calendar connected")
        return connection

    # --- OAuth ---

    def start_oauth(self, owner_id: str, now: datetime | None = None) -> str:
        """Consent URL; `state` is a short-lived signed token carrying the owner id."""
        now = now or utcnow()
        state = jwt.encode(
            {"owner_id": owner_id, "purpose": _STATE_PURPOSE, "exp": now + timedelta(minutes=OAUTH_STATE_TTL_MINUTES)},
            self._secret,
            algorithm="HS256",
        )
        return self.gateway.authorize_url(self.redirect_uri, state)

    def _owner_from_state(self, state: str) -> str:
        try:
            claims = jwt.decode(state, self._secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            raise ValidationError("Invalid or expired OAuth state") from e
        if claims.get("purpose") != _STATE_PURPOSE or not claims.get("owner_id"):
            raise ValidationError("Invalid OAuth state")
        return claims["owner_id"]

    def handle_callback(self, db: Session, code: str, state: str, now: datetime | None = None) -> CalendarConnection:
        """Exchange the code and upsert the connection. Left disabled until a calendar is selected."""
        now = now or utcnow()
        if not code:
            raise ValidationError("Missing authorization code")
        owner_id = self._owner_from_state(state)
        tokens = self.gateway.exchange_code(code, self.redirect_uri)
        connection = self.get(db, owner_id)
        if connection is None:
            connection = CalendarConnection(owner_id=owner_id, provider=PROVIDER_GOOGLE)
            db.add(connection)
        connection.access_token = tokens.access_token
        # Google only returns a refresh token on first consent; keep the old one otherwise
        if tokens.refresh_token:
            connection.refresh_token = tokens.refresh_token
        connection.token_expiry = now + timedelta(seconds=tokens.expires_in)
        connection.is_enabled = False
        connection.last_error = None
        db.commit()
        db.refresh(connection)
        logger.info("Calendar connected for owner %s", owner_id)
        return connection

    # --- Calendar selection and state ---

    def list_calendars(self, db: Session, owner_id: str, now: datetime | None = None) -> list[CalendarInfo]:
        connection = self._require(db, owner_id)
        self.refresher.ensure_fresh(db, connection, now=now)
        return self.gateway.list_calendars(connection)

    def select_calendar(
        self, db: Session, owner_id: str, calendar_id: str, calendar_name: str | None = None
    ) -> CalendarConnection:
        if not (calendar_id or "").strip():
            raise ValidationError("calendar_id is required")
        connection = self._require(db, owner_id)
        connection.calendar_id = calendar_id.strip()
        connection.calendar_name = (calendar_name or "").strip() or connection.calendar_id
        connection.is_enabled = True
        connection.last_error = None
        db.commit()
        db.refresh(connection)
        logger.info("Owner %s watches calendar %s", owner_id, connection.calendar_id)
        return connection

    def toggle(self, db: Session, owner_id: str, enabled: bool) -> CalendarConnection:
        connection = self._require(db, owner_id)
        if enabled and not connection.calendar_id:
            raise ValidationError("Select a calendar before enabling")
        connection.is_enabled = enabled
        db.commit()
        db.refresh(connection)
        return connection

    def reconnect(self, db: Session, owner_id: str) -> CalendarConnection:
        """Business fixed the credentials issue: clear the error and resume polling."""
        connection = self._require(db, owner_id)
        if not connection.calendar_id:
            raise ValidationError("Select a calendar before reconnecting")
        connection.last_error = None
        connection.is_enabled = True
        db.commit()
        db.refresh(connection)
        logger.info("Calendar connection %s re-enabled for owner %s", connection.id, owner_id)
        return connection

    def disconnect(self, db: Session, owner_id: str) -> None:
        connection = self.get(db, owner_id)
        if connection is None:
            raise NotFoundError("No calendar connected")
        connection.access_token = None
        connection.refresh_token = None
        connection.token_expiry = None
        connection.calendar_id = None
        connection.calendar_name = None
        connection.is_enabled = False
        db.commit()
        logger.info("Calendar disconnected for owner %s", owner_id)

    def status(self, db: Session, owner_id: str) -> dict[str, Any]:
        out = connection_to_dict(self.get(db, owner_id))
        out["monitoring_slots"] = (
            db.query(Slot).filter(Slot.owner_id == owner_id, Slot.status == SLOT_MONITORING).count()
        )
        return out
