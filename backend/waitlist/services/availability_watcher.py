"""
Per-slot work unit run by the scheduler tick: expire due offers, then poll the business
calendar if the slot's next check is due.

Outcomes are returned as short strings so the tick can log a summary. Transient failures
push the next check back; auth failures pause the whole connection. Neither escapes.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from waitlist.core.clock import as_utc, utcnow
from waitlist.core.constants import SLOT_AVAILABLE, SLOT_MONITORING
from waitlist.core.engine_config import EngineConfig, get_engine_config
from waitlist.core.errors import AuthError, TokenExpiredError, TransientError
from waitlist.models.calendar_connection import CalendarConnection
from waitlist.models.slot import Slot
from waitlist.services.calendar import CalendarGateway, FreeBusyResult, default_gateway
from waitlist.services.token_refresh_service import TokenRefreshManager, disable_connection
from waitlist.services.waitlist_matcher import WaitlistMatcher

logger = logging.getLogger(__name__)

OUTCOME_SKIPPED = "skipped"
OUTCOME_NOT_DUE = "not_due"
OUTCOME_SUSPENDED = "suspended"
OUTCOME_NO_CANDIDATES = "no_candidates"
OUTCOME_BUSY = "busy"
OUTCOME_AVAILABLE = "available"
OUTCOME_OFFERED = "offered"
OUTCOME_TRANSIENT_ERROR = "transient_error"
OUTCOME_AUTH_ERROR = "auth_error"
OUTCOME_STALE = "stale"


class AvailabilityWatcher:
    def __init__(
        self,
        gateway: CalendarGateway | None = None,
        matcher: WaitlistMatcher | None = None,
        refresher: TokenRefreshManager | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.config = config or get_engine_config()
        self.gateway = gateway or default_gateway
        self.matcher = matcher or WaitlistMatcher(config=self.config)
        self.refresher = refresher or TokenRefreshManager(self.gateway, self.config)

    @property
    def slots(self):
        return self.matcher.slots

    @property
    def entries(self):
        return self.matcher.entries

    def process_slot(self, db: Session, slot_id: int, now: datetime | None = None) -> str:
        now = now or utcnow()
        self.matcher.expire_due_offers(db, now, slot_id=slot_id)
        slot = db.get(Slot, slot_id)
        if slot is None:
            return OUTCOME_SKIPPED
        db.refresh(slot)
        if slot.status == SLOT_AVAILABLE:
            # Recover a slot left without an active offer
            if self.matcher.active_offer(db, slot) is None:
                if self.matcher.offer_next(db, slot.id, now) is None:
                    return OUTCOME_NO_CANDIDATES
                return OUTCOME_OFFERED
            return OUTCOME_SKIPPED
        if slot.status != SLOT_MONITORING:
            return OUTCOME_SKIPPED
        next_check = as_utc(slot.next_check_at)
        if next_check is None or next_check > now:
            return OUTCOME_NOT_DUE
        return self.check_slot(db, slot, now)

    def check_slot(self, db: Session, slot: Slot, now: datetime | None = None) -> str:
        """Poll the calendar once for a monitoring slot, whatever its schedule."""
        now = now or utcnow()
        connection = db.query(CalendarConnection).filter(CalendarConnection.owner_id == slot.owner_id).first()
        if connection is None or not connection.is_enabled:
            logger.debug("Slot %s: calendar connection missing or disabled, not polling", slot.id)
            return OUTCOME_SUSPENDED
        if not self.entries.has_candidates(db, slot):
            self.slots.mark_checked(db, slot, now)
            return OUTCOME_NO_CANDIDATES

        try:
            result = self._check_free(db, connection, slot, now)
        except TransientError as e:
            next_check = self.slots.defer_after_error(db, slot, now, str(e))
            logger.warning("Slot %s: calendar check failed (%s); retry after %s", slot.id, e, next_check.isoformat())
            return OUTCOME_TRANSIENT_ERROR
        except AuthError as e:
            db.refresh(connection)
            if connection.is_enabled:
                disable_connection(db, connection, str(e))
            return OUTCOME_AUTH_ERROR

        connection.last_sync_at = now
        db.commit()
        if not result.free:
            self.slots.mark_checked(db, slot, now)
            logger.debug("Slot %s busy (%s overlapping events)", slot.id, len(result.busy))
            return OUTCOME_BUSY

        if not self.slots.transition(
            db, slot.id, SLOT_MONITORING, SLOT_AVAILABLE, last_check_at=now, next_check_at=None, last_error=None
        ):
            return OUTCOME_STALE
        logger.info("Slot %s is free on the calendar of owner %s", slot.id, slot.owner_id)
        self.matcher.on_slot_available(db, slot.id, now)
        return OUTCOME_AVAILABLE

    def _check_free(self, db: Session, connection: CalendarConnection, slot: Slot, now: datetime) -> FreeBusyResult:
        start, end = as_utc(slot.slot_start), as_utc(slot.slot_end)
        self.refresher.ensure_fresh(db, connection, now=now)
        used_token = connection.access_token
        try:
            return self.gateway.check_free(connection, start, end)
        except TokenExpiredError:
            logger.info("Calendar connection %s: access token rejected, refreshing", connection.id)
            self.refresher.ensure_fresh(db, connection, now=now, rejected_access_token=used_token)
            return self.gateway.check_free(connection, start, end)
