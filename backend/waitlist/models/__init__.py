from waitlist.models.calendar_connection import CalendarConnection
from waitlist.models.delivery_log import DeliveryLog
from waitlist.models.entry import Entry
from waitlist.models.offer_token import OfferToken
from waitlist.models.slot import Slot

__all__ = [
    "CalendarConnection",
    "DeliveryLog",
    "Entry",
    "OfferToken",
    "Slot",
]
