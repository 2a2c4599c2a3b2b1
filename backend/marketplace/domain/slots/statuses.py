from enum import Enum


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    HELD = "held"
    BOOKED = "booked"
    BLOCKED = "blocked"


# Statuses that tie a slot to an order.
CLAIMED_STATUSES = {SlotStatus.HELD.value, SlotStatus.BOOKED.value}
CREATABLE_STATUSES = {SlotStatus.AVAILABLE.value, SlotStatus.BLOCKED.value}
