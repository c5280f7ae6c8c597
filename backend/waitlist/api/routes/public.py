"""
Public waitlist page API, reached from the single-use links sent by SMS/email.

Mounted under /waitlist: GET /waitlist/entry/{token}, POST .../register, .../confirm, .../decline, .../cancel.
The token is the only credential. Errors never tell the customer why another attempt won.
"""
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from waitlist.api.deps import get_waitlist_service
from waitlist.core.clock import isoformat
from waitlist.core.errors import WaitlistError, error_to_http
from waitlist.db.session import get_db
from waitlist.services.waitlist_service import WaitlistService

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=128)
    last_name: str = Field("", max_length=128)
    phone: str = Field(..., min_length=4, max_length=32)
    email: str | None = Field(None, max_length=255)
    alternative_slots: list[datetime] = Field(default_factory=list, max_length=10)


@router.get("/entry/{token}")
def view_entry(
    token: str,
    db: Session = Depends(get_db),
    service: WaitlistService = Depends(get_waitlist_service),
) -> dict[str, Any]:
    try:
        return service.describe(db, token)
    except WaitlistError as e:
        raise error_to_http(e) from e


@router.post("/entry/{token}/register")
def register_entry(
    token: str,
    body: RegisterRequest,
    db: Session = Depends(get_db),
    service: WaitlistService = Depends(get_waitlist_service),
) -> dict[str, Any]:
    """Customer completes their details and picks alternative times. The link works once."""
    try:
        entry = service.register(
            db,
            token,
            first_name=body.first_name,
            last_name=body.last_name,
            phone=body.phone,
            email=body.email,
            alternative_slots=body.alternative_slots,
        )
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {
        "ok": True,
        "entry_id": entry.id,
        "status": entry.status,
        "alternative_slots": [isoformat(a) for a in entry.alternative_slots],
    }


@router.post("/entry/{token}/confirm")
def confirm_offer(
    token: str,
    db: Session = Depends(get_db),
    service: WaitlistService = Depends(get_waitlist_service),
) -> dict[str, Any]:
    """
    Accept the slot. 200 when this request filled it; 410 when the offer ran out; 409 when
    the offer was already answered or the slot is gone.
    """
    try:
        result = service.confirm(db, token)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {
        "ok": True,
        "entry_id": result.entry_id,
        "slot_id": result.slot_id,
        "status": result.status,
        "confirmed_at": isoformat(result.confirmed_at),
    }


@router.post("/entry/{token}/decline")
def decline_offer(
    token: str,
    db: Session = Depends(get_db),
    service: WaitlistService = Depends(get_waitlist_service),
) -> dict[str, Any]:
    try:
        service.decline(db, token)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "status": "declined"}


@router.post("/entry/{token}/cancel")
def cancel_entry(
    token: str,
    db: Session = Depends(get_db),
    service: WaitlistService = Depends(get_waitlist_service),
) -> dict[str, Any]:
    """Leave the waitlist."""
    try:
        entry = service.cancel(db, token)
    except WaitlistError as e:
        raise error_to_http(e) from e
    return {"ok": True, "entry_id": entry.id, "status": entry.status}

