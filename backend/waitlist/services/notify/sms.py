"""
Send SMS via the Twilio REST API (httpx, no SDK).
Requires TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER in env.
If not configured, send_sms no-ops (logs and returns a failed DeliveryResult).
"""
import logging

import httpx

from waitlist.config import settings
from waitlist.core.engine_config import WAITLIST_HTTP_TIMEOUT_SECONDS
from waitlist.services.notify.types import DeliveryResult

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioSmsClient:
    def __init__(
        self,
        *,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.from_number = from_number if from_number is not None else settings.twilio_from_number
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send_sms(self, to_phone: str, body: str) -> DeliveryResult:
        """Send one SMS. Never raises."""
        to_phone = (to_phone or "").strip()
        if not to_phone:
            return DeliveryResult(success=False, error="No phone number provided")
        if not to_phone.startswith("+"):
            return DeliveryResult(success=False, error="Phone number must be in E.164 format (e.g. +33612345678)")
        if not self.is_configured():
            logger.debug("Twilio not configured; skipping SMS")
            return DeliveryResult(success=False, error="Twilio not configured")
        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/Messages.json"
        try:
            with httpx.Client(timeout=WAITLIST_HTTP_TIMEOUT_SECONDS, transport=self._transport) as c:
                r = c.post(
                    url,
                    data={"To": to_phone, "From": self.from_number, "Body": body},
                    auth=(self.account_sid, self.auth_token),
                )
        except httpx.HTTPError as e:
            logger.warning("Twilio request failed for %s...: %s", to_phone[:6], e)
            return DeliveryResult(success=False, error=str(e))
        if r.status_code not in (200, 201):
            logger.warning("Twilio returned %s for %s...: %s", r.status_code, to_phone[:6], r.text[:300])
            return DeliveryResult(success=False, error=f"Twilio error {r.status_code}")
        try:
            sid = (r.json() or {}).get("sid")
        except ValueError:
            sid = None
        logger.info("SMS sent to %s... (sid=%s)", to_phone[:6], sid)
        return DeliveryResult(success=True, message_id=sid)
