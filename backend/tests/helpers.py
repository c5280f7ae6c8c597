"""Shared fixtures: in-memory database, fake calendar gateway and sender, engine wiring with a pinned clock."""
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import waitlist.models  # noqa: F401  (registers tables)
from waitlist.core.constants import SLOT_MONITORING
from waitlist.core.engine_config import get_engine_config
from waitlist.db.base import Base
from waitlist.models.calendar_connection import CalendarConnection
from waitlist.models.slot import Slot
from waitlist.services.availability_watcher import AvailabilityWatcher
from waitlist.services.calendar import FreeBusyResult, TokenSet
from waitlist.services.entry_registry import EntryRegistry
from waitlist.services.notification_dispatcher import NotificationDispatcher
from waitlist.services.notify import DeliveryResult
from waitlist.services.offer_token_service import OfferTokenService
from waitlist.services.slot_registry import SlotRegistry
from waitlist.services.token_refresh_service import TokenRefreshManager
from waitlist.services.waitlist_matcher import WaitlistMatcher

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
OWNER = "salon-42"


def make_session_factory(url: str = "sqlite://") -> sessionmaker:
    """In-memory by default; a file URL gives each connection its own handle, for tests that race threads."""
    if url == "sqlite://":
        engine = create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


class FakeGateway:
    """Calendar gateway double. `results` is consumed in order; an exception instance is raised."""

    def __init__(self, results=None, refresh_result=None):
        self.results = list(results or [])
        self.refresh_result = refresh_result or TokenSet(access_token="fresh-token", expires_in=3600)
        self.checks = []
        self.refreshes = 0

    def check_free(self, connection, start, end):
        self.checks.append((connection.access_token, start, end))
        outcome = self.results.pop(0) if self.results else FreeBusyResult(free=False)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def refresh_token(self, connection):
        self.refreshes += 1
        if isinstance(self.refresh_result, Exception):
            raise self.refresh_result
        return self.refresh_result

    def list_calendars(self, connection):
        return []

    def authorize_url(self, redirect_uri, state):
        return f"https://accounts.test/auth?state={state}"

    def exchange_code(self, code, redirect_uri):
        return TokenSet(access_token="access-1", expires_in=3600, refresh_token="refresh-1")


class FakeSender:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    def send(self, channel, to, template_vars):
        self.sent.append((channel, to, dict(template_vars)))
        if self.fail:
            return DeliveryResult(success=False, error="provider down")
        return DeliveryResult(success=True, message_id=f"msg-{len(self.sent)}")

    def links(self, template=None):
        return [v["link"] for _, _, v in self.sent if template is None or v.get("template") == template]

    def last_token(self, template=None) -> str:
        return self.links(template)[-1].rsplit("/", 1)[-1]


def build_watcher(gateway=None, sender=None, **overrides) -> AvailabilityWatcher:
    config = get_engine_config().with_overrides(**overrides)
    dispatcher = NotificationDispatcher(
        sender or FakeSender(),
        OfferTokenService(secret="test-secret"),
        base_url="https://book.test",
        config=config,
    )
    matcher = WaitlistMatcher(SlotRegistry(config), EntryRegistry(), dispatcher, config)
    gateway = gateway or FakeGateway()
    return AvailabilityWatcher(gateway, matcher, TokenRefreshManager(gateway, config), config)


def add_connection(db: Session, owner_id: str = OWNER, **values) -> CalendarConnection:
    fields = {
        "owner_id": owner_id,
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "token_expiry": NOW + timedelta(hours=1),
        "calendar_id": "primary",
        "is_enabled": True,
    }
    fields.update(values)
    connection = CalendarConnection(**fields)
    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


def add_slot(db: Session, start: datetime, owner_id: str = OWNER, minutes: int = 60, **values) -> Slot:
    fields = {
        "owner_id": owner_id,
        "business_name": "Salon 42",
        "slot_start": start,
        "slot_end": start + timedelta(minutes=minutes),
        "status": SLOT_MONITORING,
        "check_interval_minutes": 5,
        "next_check_at": NOW,
    }
    fields.update(values)
    slot = Slot(**fields)
    db.add(slot)
    db.commit()
    db.refresh(slot)
    return slot


def add_entry(watcher: AvailabilityWatcher, db: Session, slot: Slot, phone: str = "+33600000001", **values):
    return watcher.entries.create(
        db,
        owner_id=values.pop("owner_id", slot.owner_id),
        slot=slot,
        phone=phone,
        requested_slot=values.pop("requested_slot", slot.slot_start),
        **values,
    )
