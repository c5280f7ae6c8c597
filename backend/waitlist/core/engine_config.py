"""
Waitlist engine config. .env is the source of truth; these defaults apply only when
the env var is unset. All values read at import time.

Env vars: WAITLIST_TICK_SECONDS, WAITLIST_MAX_CONCURRENT_SLOTS, WAITLIST_OFFER_WINDOW_MINUTES,
WAITLIST_TOKEN_REFRESH_MARGIN_SECONDS, WAITLIST_TRANSIENT_BACKOFF_SECONDS,
WAITLIST_CALENDAR_MAX_RETRIES, WAITLIST_HTTP_TIMEOUT_SECONDS, WAITLIST_EXHAUSTED_ACTION,
WAITLIST_SLOT_MATCH_WINDOW_MINUTES, WAITLIST_DEFAULT_SLOT_MINUTES, WAITLIST_RETENTION_DAYS,
WAITLIST_REGISTRATION_TOKEN_HOURS, DISABLE_INTERNAL_SCHEDULER.

Verify with GET /waitlist/health (includes engine config).
"""
import logging
import os
from dataclasses import asdict, dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

# Load backend/.env so scripts/tests/workers that import engine_config see env vars too
_backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(_backend_dir / ".env", override=False)

_log = logging.getLogger(__name__)

EXHAUSTED_MONITOR = "monitor"
EXHAUSTED_CLOSE = "close"


def _int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    raw = os.environ.get(key)
    if raw is None:
        v = default
    else:
        try:
            v = int(raw.strip())
        except ValueError:
            v = default
    if min_val is not None and v < min_val:
        v = min_val
    if max_val is not None and v > max_val:
        v = max_val
    return v


def _bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes")


def _choice(key: str, default: str, allowed: tuple[str, ...]) -> str:
    raw = (os.environ.get(key) or "").strip().lower()
    return raw if raw in allowed else default


# -----------------------------------------------------------------------------
# Scheduler: tick and concurrency
# -----------------------------------------------------------------------------
WAITLIST_TICK_SECONDS = _int("WAITLIST_TICK_SECONDS", 30, min_val=1, max_val=600)
WAITLIST_MAX_CONCURRENT_SLOTS = _int("WAITLIST_MAX_CONCURRENT_SLOTS", 8, min_val=1, max_val=64)
DISABLE_INTERNAL_SCHEDULER = _bool("DISABLE_INTERNAL_SCHEDULER", False)

# -----------------------------------------------------------------------------
# Offer protocol
# -----------------------------------------------------------------------------
WAITLIST_OFFER_WINDOW_MINUTES = _int("WAITLIST_OFFER_WINDOW_MINUTES", 30, min_val=1, max_val=24 * 60)
# What happens when every candidate declined/expired and the slot is still free
WAITLIST_EXHAUSTED_ACTION = _choice(
    "WAITLIST_EXHAUSTED_ACTION", EXHAUSTED_MONITOR, (EXHAUSTED_MONITOR, EXHAUSTED_CLOSE)
)
WAITLIST_REGISTRATION_TOKEN_HOURS = _int("WAITLIST_REGISTRATION_TOKEN_HOURS", 2, min_val=1, max_val=72)

# -----------------------------------------------------------------------------
# Calendar polling and outbound calls
# -----------------------------------------------------------------------------
WAITLIST_TOKEN_REFRESH_MARGIN_SECONDS = _int(
    "WAITLIST_TOKEN_REFRESH_MARGIN_SECONDS", 300, min_val=0, max_val=3600
)
WAITLIST_TRANSIENT_BACKOFF_SECONDS = _int("WAITLIST_TRANSIENT_BACKOFF_SECONDS", 60, min_val=5, max_val=1800)
WAITLIST_CALENDAR_MAX_RETRIES = _int("WAITLIST_CALENDAR_MAX_RETRIES", 2, min_val=0, max_val=5)
WAITLIST_HTTP_TIMEOUT_SECONDS = _int("WAITLIST_HTTP_TIMEOUT_SECONDS", 10, min_val=1, max_val=60)

# -----------------------------------------------------------------------------
# Slots and retention
# -----------------------------------------------------------------------------
# A new request reuses an open slot of the same business starting within ± this many minutes
WAITLIST_SLOT_MATCH_WINDOW_MINUTES = _int("WAITLIST_SLOT_MATCH_WINDOW_MINUTES", 30, min_val=0, max_val=240)
WAITLIST_DEFAULT_SLOT_MINUTES = _int("WAITLIST_DEFAULT_SLOT_MINUTES", 60, min_val=5, max_val=24 * 60)
WAITLIST_RETENTION_DAYS = _int("WAITLIST_RETENTION_DAYS", 7, min_val=1, max_val=90)

_log.info(
    "Waitlist engine config (from env): tick_sec=%s max_concurrent_slots=%s offer_window_min=%s "
    "exhausted_action=%s refresh_margin_sec=%s backoff_sec=%s calendar_retries=%s",
    WAITLIST_TICK_SECONDS,
    WAITLIST_MAX_CONCURRENT_SLOTS,
    WAITLIST_OFFER_WINDOW_MINUTES,
    WAITLIST_EXHAUSTED_ACTION,
    WAITLIST_TOKEN_REFRESH_MARGIN_SECONDS,
    WAITLIST_TRANSIENT_BACKOFF_SECONDS,
    WAITLIST_CALENDAR_MAX_RETRIES,
)


@dataclass(frozen=True)
class EngineConfig:
    """Snapshot of engine config for passing around (e.g. tests)."""
    tick_seconds: int
    max_concurrent_slots: int
    offer_window_minutes: int
    exhausted_action: str
    registration_token_hours: int
    token_refresh_margin_seconds: int
    transient_backoff_seconds: int
    calendar_max_retries: int
    http_timeout_seconds: int
    slot_match_window_minutes: int
    default_slot_minutes: int
    retention_days: int

    def with_overrides(self, **kwargs) -> "EngineConfig":
        return replace(self, **kwargs)

    def to_dict(self) -> dict:
        return asdict(self)


def get_engine_config() -> EngineConfig:
    return EngineConfig(
        tick_seconds=WAITLIST_TICK_SECONDS,
        max_concurrent_slots=WAITLIST_MAX_CONCURRENT_SLOTS,
        offer_window_minutes=WAITLIST_OFFER_WINDOW_MINUTES,
        exhausted_action=WAITLIST_EXHAUSTED_ACTION,
        registration_token_hours=WAITLIST_REGISTRATION_TOKEN_HOURS,
        token_refresh_margin_seconds=WAITLIST_TOKEN_REFRESH_MARGIN_SECONDS,
        transient_backoff_seconds=WAITLIST_TRANSIENT_BACKOFF_SECONDS,
        calendar_max_retries=WAITLIST_CALENDAR_MAX_RETRIES,
        http_timeout_seconds=WAITLIST_HTTP_TIMEOUT_SECONDS,
        slot_match_window_minutes=WAITLIST_SLOT_MATCH_WINDOW_MINUTES,
        default_slot_minutes=WAITLIST_DEFAULT_SLOT_MINUTES,
        retention_days=WAITLIST_RETENTION_DAYS,
    )
