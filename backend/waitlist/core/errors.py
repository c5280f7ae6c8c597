"""
Centralized error taxonomy for the waitlist engine and its HTTP mapping.

Services raise these; routes stay thin and call error_to_http. Background jobs catch
TransientError/AuthError themselves and never let them escape a tick.
"""
from __future__ import annotations

from fastapi import HTTPException

# ---------------------------------------------------------------------------
# Constants: status codes and user-facing messages
# ---------------------------------------------------------------------------

MSG_SLOT_NO_LONGER_AVAILABLE = "This slot is no longer available."
MSG_OFFER_NO_LONGER_VALID = "This offer is no longer valid."
MSG_INVALID_LINK = "This link is invalid or has expired."
MSG_CALENDAR_RECONNECT = "Calendar access was revoked or expired. Reconnect your calendar."

STATUS_BAD_REQUEST = 400
STATUS_UNAUTHORIZED = 401
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_GONE = 410
STATUS_SERVICE_UNAVAILABLE = 503
STATUS_INTERNAL_ERROR = 500


class WaitlistError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class TransientError(WaitlistError):
    """Network failure or provider 5xx. Retried with backoff; state unchanged."""


class AuthError(WaitlistError):
    """Token invalid or revoked. Connection gets disabled; surfaced to the business."""


class TokenExpiredError(AuthError):
    """Provider answered 401: access token stale, a refresh may fix it."""


class StaleStateError(WaitlistError):
    """Transition attempted against a Slot/Entry no longer in the expected state. A normal race outcome."""


class OfferExpiredError(WaitlistError):
    """Confirmation attempted after the offer TTL or after the offer was superseded."""


class ValidationError(WaitlistError):
    """Malformed input to a public endpoint; rejected before touching state."""


class NotFoundError(WaitlistError):
    """Unknown entry, slot, connection or token."""


# ---------------------------------------------------------------------------
# Error rules: (exception type, status_code, detail). First match wins.
# Add new rules here instead of scattering checks in routes.
# StaleStateError never leaks details to the end customer.
# ---------------------------------------------------------------------------

ERROR_RULES: list[tuple[type[Exception], int, str | None]] = [
    (ValidationError, STATUS_BAD_REQUEST, None),
    (NotFoundError, STATUS_NOT_FOUND, MSG_INVALID_LINK),
    (OfferExpiredError, STATUS_GONE, MSG_OFFER_NO_LONGER_VALID),
    (StaleStateError, STATUS_CONFLICT, MSG_SLOT_NO_LONGER_AVAILABLE),
    (AuthError, STATUS_CONFLICT, MSG_CALENDAR_RECONNECT),
    (TransientError, STATUS_SERVICE_UNAVAILABLE, None),
]


def error_to_http(exc: Exception) -> HTTPException:
    """
    Map an engine exception into an HTTPException.
    Rules with a None detail pass the exception message through (validation errors, provider outages).
    """
    for exc_type, status_code, detail in ERROR_RULES:
        if isinstance(exc, exc_type):
            return HTTPException(status_code=status_code, detail=detail or str(exc) or exc_type.__name__)
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=str(exc))
