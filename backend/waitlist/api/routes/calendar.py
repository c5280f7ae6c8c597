"""
Calendar connection API for the business: connect (OAuth), pick a calendar, toggle, reconnect, disconnect.

Mounted under /waitlist/calendar. The OAuth callback is called by Google and carries the owner in
the signed `state`, so it is the only route here without X-Owner-Id.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from waitlist.api.deps import get_calendar_service, owner_id
from waitlist.core.errors import WaitlistError, error_to_http
from waitlist.db.session import get_db
from waitlist.services.calendar_connection_service import CalendarConnectionService, connection_to_dict

router = APIRouter()
logger = logging.getLogger(__name__)


class SelectCalendarRequest(BaseModel):
    calendar_id: str = Field(..., min_length=1, max_length=255)
    calendar_name: str | None = Field(None, max_length=255)


class ToggleRequest(BaseModel):
    enabled: bool


@router.get("/status")
def calendar_status(
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    service: CalendarConnectionService = Depends(get_calendar_service),
) -> dict[str, Any]:
    return service.status(db, owner)


@router.get("/oauth/google/start")
def oauth_start(
    owner: str = Depends(owner_id),
    service: CalendarConnectionService = Depends(get_calendar_service),
) -> dict[str, str]:
    """Consent URL to open in the browser."""
    return {"auth_url": service.start_oauth(owner)}


@router.get("/oauth/google/callback")
def oauth_callback(
    code: str = Query(""),
    state: str = Query(""),
    db: Session = Depends(get_db),
    service: CalendarConnectionService = Depends(get_calendar_service),
) -> dict[str, Any]:
    try:
        connection = service.handle_callback(db, code, state)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "connection": connection_to_dict(connection)}


@router.get("/calendars")
def list_calendars(
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    service: CalendarConnectionService = Depends(get_calendar_service),
) -> dict[str, Any]:
    try:
        calendars = service.list_calendars(db, owner)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"calendars": [{"id": c.id, "summary": c.summary, "primary": c.primary} for c in calendars]}


@router.post("/select")
def select_calendar(
    body: SelectCalendarRequest,
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    service: CalendarConnectionService = Depends(get_calendar_service),
) -> dict[str, Any]:
    try:
        connection = service.select_calendar(db, owner, body.calendar_id, body.calendar_name)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "connection": connection_to_dict(connection)}


@router.post("/toggle")
def toggle_calendar(
    body: ToggleRequest,
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    service: CalendarConnectionService = Depends(get_calendar_service),
) -> dict[str, Any]:
    try:
        connection = service.toggle(db, owner, body.enabled)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "connection": connection_to_dict(connection)}


@router.post("/reconnect")
def reconnect_calendar(
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    service: CalendarConnectionService = Depends(get_calendar_service),
) -> dict[str, Any]:
    """Resume polling after an auth failure paused the connection."""
    try:
        connection = service.reconnect(db, owner)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "connection": connection_to_dict(connection)}


@router.delete("")
def disconnect_calendar(
    db: Session = Depends(get_db),
    owner: str = Depends(owner_id),
    service: CalendarConnectionService = Depends(get_calendar_service),
) -> dict[str, Any]:
    try:
        service.disconnect(db, owner)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True}
