"""Google Calendar OAuth config. Credentials from settings (GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET) or GoogleCalendarConfig args."""
from waitlist.config import settings

DEFAULT_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Free/busy only needs read access
CALENDAR_SCOPES: tuple[str, ...] = ("https://www.googleapis.com/auth/calendar.readonly",)


class GoogleCalendarConfig:
    """OAuth client credentials and endpoints for Google Calendar."""

    __slots__ = ("client_id", "client_secret", "api_base_url", "auth_url", "token_url", "scopes")

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        api_base_url: str = DEFAULT_API_BASE_URL,
        auth_url: str = DEFAULT_AUTH_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        scopes: tuple[str, ...] = CALENDAR_SCOPES,
    ) -> None:
        self.client_id = (client_id if client_id is not None else settings.google_client_id).strip()
        self.client_secret = (client_secret if client_secret is not None else settings.google_client_secret).strip()
        self.api_base_url = api_base_url.rstrip("/")
        self.auth_url = auth_url
        self.token_url = token_url
        self.scopes = scopes

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)
