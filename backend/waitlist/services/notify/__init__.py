"""Outbound notification sender: send(channel, to, template_vars) -> DeliveryResult."""
from typing import Any

from waitlist.core.constants import CHANNEL_EMAIL, CHANNEL_SMS
from waitlist.services.notify.email_notify import send_email
from waitlist.services.notify.sms import TwilioSmsClient
from waitlist.services.notify.templates import TEMPLATE_OFFER, TEMPLATE_REGISTRATION, render_email, render_sms
from waitlist.services.notify.types import DeliveryResult


class NotificationSender:
    """Routes one message to SMS (Twilio) or email (SMTP). template_vars["template"] picks the body."""

    def __init__(self, sms_client: TwilioSmsClient | None = None) -> None:
        self.sms_client = sms_client or TwilioSmsClient()

    def send(self, channel: str, to: str, template_vars: dict[str, Any]) -> DeliveryResult:
        template = template_vars.get("template") or TEMPLATE_OFFER
        if channel == CHANNEL_SMS:
            return self.sms_client.send_sms(to, render_sms(template, template_vars))
        if channel == CHANNEL_EMAIL:
            subject, body = render_email(template, template_vars)
            return send_email(to, subject, body)
        return DeliveryResult(success=False, error=f"Unknown channel {channel}")


__all__ = [
    "DeliveryResult",
    "NotificationSender",
    "TEMPLATE_OFFER",
    "TEMPLATE_REGISTRATION",
    "TwilioSmsClient",
]
