"""
Pydantic schemas for the FoodShare API.

Request payloads use the camelCase field names of the wire format.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, model_validator

from foodshare.types import DonationStatus, FoodCategory, ListingStatus, UserRole

Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Description = Annotated[str, StringConstraints(min_length=1, max_length=500)]
NonEmpty = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class Coordinates(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipCode: Optional[str] = None
    coordinates: Optional[Coordinates] = None


class Organization(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None


class RegisterPayload(BaseModel):
    name: NonEmpty = Field(..., max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.RECIPIENT
    phone: Optional[str] = None
    address: Optional[Address] = None
    organization: Optional[Organization] = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


def _check_window(available_from: Optional[datetime], available_until: Optional[datetime]) -> None:
    if available_from and available_until and available_until < available_from:
        raise ValueError("availableUntil must not be before availableFrom")


class ListingCreatePayload(BaseModel):
    """Fields a donor may set when posting a listing; anything else is ignored."""

    model_config = ConfigDict(extra="ignore")

    title: Title
    description: Description
    category: FoodCategory
    quantity: NonEmpty
    expiryDate: datetime
    images: list[str] = Field(default_factory=list)
    pickupAddress: Optional[Address] = None
    availableFrom: datetime
    availableUntil: datetime
    specialInstructions: Optional[str] = None
    allergens: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_availability_window(self) -> "ListingCreatePayload":
        _check_window(self.availableFrom, self.availableUntil)
        return self


class ListingUpdatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[Title] = None
    description: Optional[Description] = None
    category: Optional[FoodCategory] = None
    quantity: Optional[NonEmpty] = None
    expiryDate: Optional[datetime] = None
    images: Optional[list[str]] = None
    pickupAddress: Optional[Address] = None
    availableFrom: Optional[datetime] = None
    availableUntil: Optional[datetime] = None
    specialInstructions: Optional[str] = None
    allergens: Optional[list[str]] = None
    status: Optional[ListingStatus] = None

    @model_validator(mode="after")
    def check_availability_window(self) -> "ListingUpdatePayload":
        _check_window(self.availableFrom, self.availableUntil)
        return self


class RatingEntry(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = None


class DonationRatings(BaseModel):
    byDonor: Optional[RatingEntry] = None
    byRecipient: Optional[RatingEntry] = None


class DonationCreatePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    foodListing: NonEmpty
    scheduledPickup: datetime
    status: DonationStatus = DonationStatus.RESERVED
    actualPickup: Optional[datetime] = None
    rating: Optional[DonationRatings] = None
    completionNotes: Optional[str] = None


class DataResponse(BaseModel):
    success: Literal[True] = True
    data: Any


class ListingListResponse(BaseModel):
    success: Literal[True] = True
    count: int
    pagination: dict
    data: list[dict]


class DonationListResponse(BaseModel):
    success: Literal[True] = True
    count: int
    data: list[dict]


class AuthResponse(BaseModel):
    success: Literal[True] = True
    token: str
    user: dict
