"""
Build single-use links and hand messages to the send channel.

Sending never blocks the offer protocol: a failed SMS/email is logged (and recorded in
delivery_logs for the business), the entry stays `notified` and its TTL keeps running.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from waitlist.config import settings
from waitlist.core.clock import as_utc, utcnow
from waitlist.core.constants import CHANNEL_EMAIL, CHANNEL_SMS, TOKEN_CONFIRMATION, TOKEN_REGISTRATION
from waitlist.core.engine_config import EngineConfig, get_engine_config
from waitlist.models.delivery_log import DeliveryLog
from waitlist.models.entry import Entry
from waitlist.models.slot import Slot
from waitlist.services.notify import TEMPLATE_OFFER, TEMPLATE_REGISTRATION, DeliveryResult, NotificationSender
from waitlist.services.offer_token_service import OfferTokenService

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(
        self,
        sender: NotificationSender | None = None,
        tokens: OfferTokenService | None = None,
        *,
        base_url: str | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.sender = sender or NotificationSender()
        self.tokens = tokens or OfferTokenService()
        self.base_url = (base_url or settings.public_base_url).rstrip("/")
        self.config = config or get_engine_config()

    def link_for(self, token: str) -> str:
        return f"{self.base_url}/waitlist/{token}"

    def _channels(self, entry: Entry) -> list[tuple[str, str]]:
        out = [(CHANNEL_SMS, entry.phone)]
        if entry.email:
            out.append((CHANNEL_EMAIL, entry.email))
        return out

    def _deliver(self, db: Session, entry: Entry, kind: str, template_vars: dict) -> list[DeliveryResult]:
        results = []
        for channel, to in self._channels(entry):
            try:
                result = self.sender.send(channel, to, template_vars)
            except Exception as e:  # a broken sender must not break the protocol
                logger.exception("Notification send via %s crashed for entry %s", channel, entry.id)
                result = DeliveryResult(success=False, error=str(e))
            if not result.success:
                logger.warning("Notification via %s failed for entry %s: %s", channel, entry.id, result.error)
            db.add(
                DeliveryLog(
                    entry_id=entry.id,
                    owner_id=entry.owner_id,
                    kind=kind,
                    channel=channel,
                    recipient=to,
                    success=result.success,
                    message_id=result.message_id,
                    error_message=result.error,
                )
            )
            if result.success and result.message_id:
                entry.last_message_id = result.message_id
            results.append(result)
        db.commit()
        return results

    def send_offer(self, db: Session, entry: Entry, slot: Slot, now: datetime | None = None) -> str:
        """Issue a confirmation token valid until the offer expires, send the link. Returns the link."""
        now = now or utcnow()
        expires_at = as_utc(entry.offer_expires_at) or now + timedelta(minutes=self.config.offer_window_minutes)
        token = self.tokens.issue(db, entry.id, TOKEN_CONFIRMATION, expires_at, slot_id=slot.id)
        link = self.link_for(token)
        self._deliver(
            db,
            entry,
            TOKEN_CONFIRMATION,
            {
                "template": TEMPLATE_OFFER,
                "business_name": slot.business_name,
                "first_name": entry.first_name,
                "slot_start": as_utc(slot.slot_start),
                "link": link,
                "offer_minutes": self.config.offer_window_minutes,
            },
        )
        return link

    def send_registration(self, db: Session, entry: Entry, slot: Slot, now: datetime | None = None) -> tuple[str, str]:
        """Registration link sent when a customer is put on the waitlist. Returns (token, link)."""
        now = now or utcnow()
        expires_at = now + timedelta(hours=self.config.registration_token_hours)
        token = self.tokens.issue(db, entry.id, TOKEN_REGISTRATION, expires_at, slot_id=slot.id)
        link = self.link_for(token)
        self._deliver(
            db,
            entry,
            TOKEN_REGISTRATION,
            {
                "template": TEMPLATE_REGISTRATION,
                "business_name": slot.business_name,
                "first_name": entry.first_name,
                "slot_start": as_utc(entry.requested_slot),
                "link": link,
            },
        )
        return token, link
