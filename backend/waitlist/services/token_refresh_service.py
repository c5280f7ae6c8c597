"""
Keep each calendar connection's OAuth access token valid.

Refreshes run under a per-connection lock so two workers polling slots of the same business
never refresh concurrently. A failed refresh (revoked/invalid grant) disables the connection:
its slots stay `monitoring` but the scheduler skips them until the business reconnects.
"""
import logging
import threading
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from waitlist.core.clock import as_utc, utcnow
from waitlist.core.engine_config import EngineConfig, get_engine_config
from waitlist.core.errors import AuthError
from waitlist.models.calendar_connection import CalendarConnection
from waitlist.services.calendar import CalendarGateway, default_gateway

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_connection_locks: dict[int, threading.Lock] = {}


def _connection_lock(connection_id: int) -> threading.Lock:
    with _registry_lock:
        lock = _connection_locks.get(connection_id)
        if lock is None:
            lock = _connection_locks[connection_id] = threading.Lock()
        return lock


def disable_connection(db: Session, connection: CalendarConnection, error: str) -> None:
    """Pause polling for every slot of this business until reconnection."""
    connection.is_enabled = False
    connection.last_error = (error or "Calendar authorization failed")[:1000]
    db.commit()
    logger.warning(
        "Calendar connection %s (owner %s) disabled: %s", connection.id, connection.owner_id, connection.last_error
    )


class TokenRefreshManager:
    def __init__(self, gateway: CalendarGateway | None = None, config: EngineConfig | None = None) -> None:
        self.gateway = gateway or default_gateway
        self.config = config or get_engine_config()

    def needs_refresh(self, connection: CalendarConnection, now: datetime) -> bool:
        expiry = as_utc(connection.token_expiry)
        if not connection.access_token or expiry is None:
            return True
        return expiry <= now + timedelta(seconds=self.config.token_refresh_margin_seconds)

    def ensure_fresh(
        self,
        db: Session,
        connection: CalendarConnection,
        *,
        now: datetime | None = None,
        rejected_access_token: str | None = None,
    ) -> CalendarConnection:
        """
        Refresh when the token is within the safety margin of expiry, or when the provider just
        rejected `rejected_access_token` (401). Raises AuthError after disabling the connection;
        TransientError propagates with credentials untouched.
        """
        now = now or utcnow()
        if rejected_access_token is None and not self.needs_refresh(connection, now):
            return connection
        with _connection_lock(connection.id):
            # Another worker may have refreshed while we waited for the lock
            db.refresh(connection)
            if rejected_access_token is not None:
                if connection.access_token and connection.access_token != rejected_access_token:
                    return connection
            elif not self.needs_refresh(connection, now):
                return connection
            try:
                tokens = self.gateway.refresh_token(connection)
            except AuthError as e:
                disable_connection(db, connection, f"Token refresh failed: {e}")
                raise
            connection.access_token = tokens.access_token
            connection.token_expiry = now + timedelta(seconds=tokens.expires_in)
            if tokens.refresh_token:
                connection.refresh_token = tokens.refresh_token
            connection.last_error = None
            db.commit()
            logger.info("Calendar connection %s token refreshed (expires in %ss)", connection.id, tokens.expires_in)
            return connection
