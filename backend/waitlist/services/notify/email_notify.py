"""
Send waitlist emails via SMTP (Google Gmail or other).
Set SMTP_USER, SMTP_PASSWORD (and optionally NOTIFY_FROM) in .env. Use a Gmail App Password (not your normal password).
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from waitlist.config import settings
from waitlist.core.engine_config import WAITLIST_HTTP_TIMEOUT_SECONDS
from waitlist.services.notify.types import DeliveryResult

logger = logging.getLogger(__name__)


def _from_address() -> str:
    if (settings.notify_from or "").strip():
        return settings.notify_from.strip()
    user = (settings.smtp_user or "").strip()
    if user:
        return f"Waitlist <{user}>"
    return "Waitlist <noreply@localhost>"


def send_email(to_email: str, subject: str, body: str) -> DeliveryResult:
    """Send one plain-text + HTML email. Never raises; failures come back as DeliveryResult(success=False)."""
    to_email = (to_email or "").strip()
    if not to_email:
        return DeliveryResult(success=False, error="No recipient email")
    user = (settings.smtp_user or "").strip()
    password = (settings.smtp_password or "").strip()
    if not user or not password:
        logger.debug("SMTP_USER or SMTP_PASSWORD not set; skipping email")
        return DeliveryResult(success=False, error="SMTP not configured")
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = _from_address()
    msg["To"] = to_email
    msg["Message-ID"] = make_msgid()
    msg.attach(MIMEText(body, "plain"))
    msg.attach(MIMEText(f"<pre style='font-family:sans-serif'>{body}</pre>", "html"))
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=WAITLIST_HTTP_TIMEOUT_SECONDS) as server:
            server.starttls()
            server.login(user, password)
            server.sendmail(user, [to_email], msg.as_string())
        logger.info("Waitlist email sent: %s", subject)
        return DeliveryResult(success=True, message_id=msg["Message-ID"])
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("Failed to send waitlist email: %s", e, exc_info=True)
        return DeliveryResult(success=False, error=str(e))
