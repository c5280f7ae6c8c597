"""Delivery result shared by all channels."""
from dataclasses import dataclass


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
