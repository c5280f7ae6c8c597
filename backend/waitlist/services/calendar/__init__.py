"""Calendar gateway: the only calendar surface the engine uses. Validation here; client below just sends requests."""
from datetime import datetime

from waitlist.core.errors import AuthError
from waitlist.models.calendar_connection import CalendarConnection
from waitlist.services.calendar.client import GoogleCalendarClient
from waitlist.services.calendar.config import GoogleCalendarConfig
from waitlist.services.calendar.types import BusyInterval, CalendarInfo, FreeBusyResult, TokenSet


class CalendarGateway:
    """
    check_free(connection, start, end) -> FreeBusyResult
    refresh_token(connection) -> TokenSet

    Raises TransientError (network/5xx, already retried), TokenExpiredError (401) or AuthError
    (revoked, forbidden, unknown calendar). No side effects beyond the outbound call.
    """

    def __init__(self, client: GoogleCalendarClient | None = None) -> None:
        self.client = client or GoogleCalendarClient()

    def check_free(self, connection: CalendarConnection, window_start: datetime, window_end: datetime) -> FreeBusyResult:
        if not connection.access_token:
            raise AuthError("Calendar not connected", connection_id=connection.id)
        if not connection.calendar_id:
            raise AuthError("No calendar selected", connection_id=connection.id)
        busy = self.client.free_busy(connection.access_token, connection.calendar_id, window_start, window_end)
        overlapping = [b for b in busy if b.overlaps(window_start, window_end)]
        return FreeBusyResult(free=not overlapping, busy=overlapping)

    def refresh_token(self, connection: CalendarConnection) -> TokenSet:
        return self.client.refresh(connection.refresh_token or "")

    def list_calendars(self, connection: CalendarConnection) -> list[CalendarInfo]:
        if not connection.access_token:
            raise AuthError("Calendar not connected", connection_id=connection.id)
        return self.client.list_calendars(connection.access_token)

    def authorize_url(self, redirect_uri: str, state: str) -> str:
        return self.client.authorize_url(redirect_uri, state)

    def exchange_code(self, code: str, redirect_uri: str) -> TokenSet:
        return self.client.exchange_code(code, redirect_uri)


default_gateway = CalendarGateway()

__all__ = [
    "BusyInterval",
    "CalendarGateway",
    "CalendarInfo",
    "FreeBusyResult",
    "GoogleCalendarClient",
    "GoogleCalendarConfig",
    "TokenSet",
    "default_gateway",
]
