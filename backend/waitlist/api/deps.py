"""
Shared FastAPI dependencies: API-key guards, owner scoping and the engine services.

An empty key in settings leaves the matching endpoints open (local dev).
"""
import secrets

from fastapi import Depends, Header, HTTPException

from waitlist.config import settings
from waitlist.core.errors import STATUS_BAD_REQUEST, STATUS_UNAUTHORIZED
from waitlist.scheduler.waitlist_job import get_watcher
from waitlist.services.availability_watcher import AvailabilityWatcher
from waitlist.services.calendar_connection_service import CalendarConnectionService
from waitlist.services.waitlist_service import WaitlistService

def _presented_key(x_api_key: str | None, authorization: str | None) -> str:
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return ""


def _check_key(expected: str, presented: str) -> None:
    if expected and not secrets.compare_digest(expected, presented):
        raise HTTPException(status_code=STATUS_UNAUTHORIZED, detail="Invalid API key")


def require_admin_key(
    x_api_key: str | None = Header(None, alias="X-Api-Key"),
    authorization: str | None = Header(None),
) -> None:
    _check_key(settings.admin_api_key, _presented_key(x_api_key, authorization))


def require_cron_key(
    x_api_key: str | None = Header(None, alias="X-Api-Key"),
    authorization: str | None = Header(None),
) -> None:
    _check_key(settings.cron_api_key, _presented_key(x_api_key, authorization))


def require_trigger_key(
    x_api_key: str | None = Header(None, alias="X-Api-Key"),
    authorization: str | None = Header(None),
) -> None:
    _check_key(settings.trigger_api_key, _presented_key(x_api_key, authorization))


def owner_id(
    x_owner_id: str | None = Header(None, alias="X-Owner-Id"),
    _: None = Depends(require_admin_key),
) -> str:
    """Business the request acts for. Every business endpoint is scoped by it."""
    value = (x_owner_id or "").strip()
    if not value:
        raise HTTPException(status_code=STATUS_BAD_REQUEST, detail="X-Owner-Id header is required")
    return value


def get_availability_watcher() -> AvailabilityWatcher:
    return get_watcher()


def get_waitlist_service(watcher: AvailabilityWatcher = Depends(get_availability_watcher)) -> WaitlistService:
    return WaitlistService(watcher.matcher)


def get_calendar_service(watcher: AvailabilityWatcher = Depends(get_availability_watcher)) -> CalendarConnectionService:
    return CalendarConnectionService(watcher.gateway, watcher.refresher)
