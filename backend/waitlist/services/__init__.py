from waitlist.services.availability_watcher import AvailabilityWatcher
from waitlist.services.entry_registry import EntryRegistry
from waitlist.services.slot_registry import SlotRegistry
from waitlist.services.waitlist_matcher import ConfirmationResult, WaitlistMatcher
from waitlist.services.waitlist_service import WaitlistService

__all__ = [
    "AvailabilityWatcher",
    "ConfirmationResult",
    "EntryRegistry",
    "SlotRegistry",
    "WaitlistMatcher",
    "WaitlistService",
]
