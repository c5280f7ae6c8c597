"""Message bodies for waitlist SMS/email. Vars: business_name, first_name, slot_start, link, offer_minutes."""
from datetime import datetime
from typing import Any

TEMPLATE_REGISTRATION = "registration"
TEMPLATE_OFFER = "offer"


def format_slot_time(value: datetime | str | None) -> str:
    if isinstance(value, datetime):
        return value.strftime("%a %d %b, %H:%M")
    return (value or "").strip()


def render_sms(template: str, v: dict[str, Any]) -> str:
    business = v.get("business_name") or "Our team"
    when = format_slot_time(v.get("slot_start"))
    if template == TEMPLATE_OFFER:
        return (
            f"{business}\n\n"
            f"Good news {v.get('first_name') or ''}: the {when} slot just opened up.\n"
            f"Confirm within {v.get('offer_minutes')} min: {v.get('link')}"
        )
    return (
        f"{business}\n\n"
        f"Your requested time ({when}) is not available.\n\n"
        f"Join the waitlist: {v.get('link')}"
    )


def render_email(template: str, v: dict[str, Any]) -> tuple[str, str]:
    """Returns (subject, plain-text body)."""
    business = v.get("business_name") or "Our team"
    when = format_slot_time(v.get("slot_start"))
    if template == TEMPLATE_OFFER:
        subject = f"{business}: your {when} slot is available"
        body = "\n".join([
            f"Hello {v.get('first_name') or ''},",
            "",
            f"A slot you were waiting for opened up: {when}.",
            f"It is held for you for {v.get('offer_minutes')} minutes. Confirm or decline here:",
            str(v.get("link") or ""),
            "",
            business,
        ])
        return subject, body
    subject = f"{business}: you are on the waitlist"
    body = "\n".join([
        f"Hello {v.get('first_name') or ''},",
        "",
        f"The time you asked for ({when}) is not available. Review your waitlist request here:",
        str(v.get("link") or ""),
        "",
        business,
    ])
    return subject, body
