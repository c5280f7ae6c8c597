"""Google Calendar API client: lowest level, sends requests and classifies failures. No DB access."""
import logging
import time
from datetime import datetime
from typing import Any, Callable
from urllib.parse import urlencode

import httpx

from waitlist.core.clock import as_utc
from waitlist.core.engine_config import WAITLIST_CALENDAR_MAX_RETRIES, WAITLIST_HTTP_TIMEOUT_SECONDS
from waitlist.core.errors import AuthError, TokenExpiredError, TransientError
from waitlist.services.calendar.config import GoogleCalendarConfig
from waitlist.services.calendar.types import BusyInterval, CalendarInfo, TokenSet

logger = logging.getLogger(__name__)

# First retry waits this long, doubling each attempt
RETRY_BASE_DELAY_SECONDS = 0.5


def _parse_rfc3339(value: str) -> datetime:
    # Python < 3.11 fromisoformat does not accept a trailing Z
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


class GoogleCalendarClient:
    """OAuth code flow, token refresh and free/busy queries for Google Calendar."""

    def __init__(
        self,
        config: GoogleCalendarConfig | None = None,
        *,
        timeout: float = WAITLIST_HTTP_TIMEOUT_SECONDS,
        max_retries: int = WAITLIST_CALENDAR_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or GoogleCalendarConfig()
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self._timeout, transport=self._transport)

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send with bounded retry on network errors, 429 and 5xx. Raises TransientError once exhausted."""
        last_error = ""
        for attempt in range(self._max_retries + 1):
            if attempt:
                self._sleep(RETRY_BASE_DELAY_SECONDS * (2 ** (attempt - 1)))
            try:
                with self._client() as c:
                    r = c.request(method, url, **kwargs)
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
                logger.warning("Calendar request %s %s failed (attempt %s): %s", method, url, attempt + 1, last_error)
                continue
            if r.status_code == 429 or r.status_code >= 500:
                last_error = f"Calendar API error: {r.status_code}"
                logger.warning("Calendar request %s %s returned %s (attempt %s)", method, url, r.status_code, attempt + 1)
                continue
            return r
        raise TransientError(last_error or "Calendar request failed")

    @staticmethod
    def _raise_for_auth(r: httpx.Response) -> None:
        if r.is_success:
            return
        detail = r.text[:500] if r.text else ""
        if r.status_code == 401:
            raise TokenExpiredError("Calendar access token rejected (401)", detail=detail)
        # 403 (revoked/insufficient scope), 400 invalid_grant, 404 unknown calendar: nothing a retry fixes
        raise AuthError(f"Calendar API error: {r.status_code}", detail=detail)

    def _json(self, r: httpx.Response) -> dict[str, Any]:
        try:
            return r.json() if r.content else {}
        except ValueError as e:
            raise TransientError(f"Calendar API returned invalid JSON: {e}") from e

    # --- OAuth ---

    def authorize_url(self, redirect_uri: str, state: str) -> str:
        """Consent URL for the authorization-code flow (offline access so we get a refresh token)."""
        params = {
            "client_id": self._config.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._config.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self._config.auth_url}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> TokenSet:
        if not self._config.is_configured():
            raise AuthError("Google Calendar OAuth not configured. Add GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET to .env.")
        r = self._send(
            "POST",
            self._config.token_url,
            data={
                "code": code,
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        self._raise_for_auth(r)
        data = self._json(r)
        if not data.get("access_token"):
            raise AuthError("No access token in code exchange response")
        return TokenSet(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in") or 3600),
            refresh_token=data.get("refresh_token"),
        )

    def refresh(self, refresh_token: str) -> TokenSet:
        if not refresh_token:
            raise AuthError("No refresh token stored; reconnect required")
        if not self._config.is_configured():
            raise AuthError("Google Calendar OAuth not configured. Add GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET to .env.")
        r = self._send(
            "POST",
            self._config.token_url,
            data={
                "refresh_token": refresh_token,
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
                "grant_type": "refresh_token",
            },
        )
        if r.status_code == 401:
            # On the token endpoint a 401 means the client or grant is invalid, not a stale access token
            raise AuthError("Token refresh rejected (401)", detail=r.text[:500] if r.text else "")
        self._raise_for_auth(r)
        data = self._json(r)
        if not data.get("access_token"):
            raise AuthError("No access token in refresh response")
        return TokenSet(
            access_token=data["access_token"],
            expires_in=int(data.get("expires_in") or 3600),
            refresh_token=data.get("refresh_token"),
        )

    # --- Calendar reads ---

    def free_busy(self, access_token: str, calendar_id: str, start: datetime, end: datetime) -> list[BusyInterval]:
        """Busy intervals for one calendar over [start, end)."""
        body = {
            "timeMin": as_utc(start).isoformat(),
            "timeMax": as_utc(end).isoformat(),
            "items": [{"id": calendar_id}],
        }
        r = self._send(
            "POST",
            f"{self._config.api_base_url}/freeBusy",
            json=body,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        self._raise_for_auth(r)
        data = self._json(r)
        cal = (data.get("calendars") or {}).get(calendar_id) or {}
        errors = cal.get("errors") or []
        if errors:
            reasons = ", ".join(str(e.get("reason")) for e in errors if isinstance(e, dict))
            # backendError is Google's own transient failure; notFound/forbidden need the business
            if all(isinstance(e, dict) and e.get("reason") == "backendError" for e in errors):
                raise TransientError(f"Calendar free/busy backend error: {reasons}")
            raise AuthError(f"Calendar free/busy error for {calendar_id}: {reasons}")
        busy = []
        for item in cal.get("busy") or []:
            try:
                busy.append(BusyInterval(start=_parse_rfc3339(item["start"]), end=_parse_rfc3339(item["end"])))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed busy interval: %s", item)
        return busy

    def list_calendars(self, access_token: str) -> list[CalendarInfo]:
        r = self._send(
            "GET",
            f"{self._config.api_base_url}/users/me/calendarList",
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        self._raise_for_auth(r)
        items = self._json(r).get("items") or []
        return [
            CalendarInfo(id=c["id"], summary=c.get("summary") or c["id"], primary=bool(c.get("primary")))
            for c in items
            if isinstance(c, dict) and c.get("id")
        ]
