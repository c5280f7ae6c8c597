"""
Centralized constants for scheduler and statuses.

Change job IDs or status names here instead of scattering literals across main, services and routes.
Tick interval and concurrency come from engine_config (env-driven).
"""
from waitlist.core.engine_config import WAITLIST_TICK_SECONDS

# Scheduler job IDs (must match ids used in main.py add_job)
WAITLIST_TICK_JOB_ID = "waitlist_tick"
WAITLIST_HOUSEKEEPING_JOB_ID = "waitlist_housekeeping"
WAITLIST_TICK_INTERVAL_SECONDS = WAITLIST_TICK_SECONDS

# Slot statuses
SLOT_PENDING = "pending"
SLOT_MONITORING = "monitoring"
SLOT_AVAILABLE = "available"
SLOT_FILLED = "filled"
SLOT_EXPIRED = "expired"
SLOT_CANCELLED = "cancelled"

SLOT_ACTIVE_STATUSES = (SLOT_PENDING, SLOT_MONITORING, SLOT_AVAILABLE)
SLOT_TERMINAL_STATUSES = (SLOT_FILLED, SLOT_EXPIRED, SLOT_CANCELLED)

# Entry statuses
ENTRY_PENDING = "pending"
ENTRY_NOTIFIED = "notified"
ENTRY_CONFIRMED = "confirmed"
ENTRY_DECLINED = "declined"
ENTRY_EXPIRED = "expired"
ENTRY_CANCELLED = "cancelled"

ENTRY_ACTIVE_STATUSES = (ENTRY_PENDING, ENTRY_NOTIFIED)
ENTRY_TERMINAL_STATUSES = (ENTRY_CONFIRMED, ENTRY_DECLINED, ENTRY_EXPIRED, ENTRY_CANCELLED)

# Offer token kinds
TOKEN_REGISTRATION = "registration"
TOKEN_CONFIRMATION = "confirmation"

# Notification channels
CHANNEL_SMS = "sms"
CHANNEL_EMAIL = "email"

# Calendar providers
PROVIDER_GOOGLE = "google_calendar"

# Adaptive polling: (hours until slot start, interval minutes); first match wins, else the fallback
CHECK_INTERVAL_RULES: tuple[tuple[int, int], ...] = ((6, 3), (24, 5))
CHECK_INTERVAL_FALLBACK_MINUTES = 10

# Default entry source when the caller does not provide one
DEFAULT_ENTRY_SOURCE = "voice_agent"
