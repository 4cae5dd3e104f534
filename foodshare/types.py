"""
Enumerations shared by the schemas, the stores and the routes.
"""

from __future__ import annotations

from enum import Enum


class UserRole(str, Enum):
    DONOR = "donor"
    RECIPIENT = "recipient"
    VOLUNTEER = "volunteer"


class FoodCategory(str, Enum):
    FRUITS = "fruits"
    VEGETABLES = "vegetables"
    DAIRY = "dairy"
    GRAINS = "grains"
    MEAT = "meat"
    PREPARED = "prepared"
    BAKED = "baked"
    OTHER = "other"


class ListingStatus(str, Enum):
    """Lifecycle of a listing. Transitions only ever move forward."""

    AVAILABLE = "available"
    RESERVED = "reserved"
    CLAIMED = "claimed"
    EXPIRED = "expired"

    @property
    def rank(self) -> int:
        return _LISTING_STATUS_ORDER.index(self)

    def can_transition_to(self, target: "ListingStatus") -> bool:
        return target.rank > self.rank


_LISTING_STATUS_ORDER = [
    ListingStatus.AVAILABLE,
    ListingStatus.RESERVED,
    ListingStatus.CLAIMED,
    ListingStatus.EXPIRED,
]


class DonationStatus(str, Enum):
    RESERVED = "reserved"
    PICKED_UP = "picked-up"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
