"""
HTTP and WebSocket routes for the FoodShare API.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Iterable

from fastapi import APIRouter, Depends, Request, WebSocket
from pydantic import BaseModel

from foodshare.auth import (
    AuthContext,
    create_access_token,
    get_auth_context,
    hash_password,
    verify_password,
)
from foodshare.config import Settings, get_settings
from foodshare.db import DbClient, DonationRecord, ListingRecord, UserRecord
from foodshare.dependencies import get_broadcaster, get_db_client
from foodshare.errors import (
    AuthenticationError,
    NotAuthorizedError,
    NotFoundError,
    ReservationConflictError,
    ValidationFailedError,
)
from foodshare.notifications import NEW_LISTING_EVENT, EventBroadcaster
from foodshare.query import build_pagination, parse_listing_query
from foodshare.responses import ErrorBoundaryRoute
from foodshare.schemas import (
    AuthResponse,
    DataResponse,
    DonationCreatePayload,
    DonationListResponse,
    ListingCreatePayload,
    ListingListResponse,
    ListingUpdatePayload,
    LoginPayload,
    RegisterPayload,
)
from foodshare.timeutils import to_utc_naive
from foodshare.types import ListingStatus

logger = logging.getLogger(__name__)

router = APIRouter(route_class=ErrorBoundaryRoute)

CONTACT_FIELDS = ("name", "email", "phone")
DONOR_DETAIL_FIELDS = ("name", "email", "phone", "address")

_LISTING_ATTRS = {
    "title": "title",
    "description": "description",
    "category": "category",
    "quantity": "quantity",
    "expiryDate": "expiry_date",
    "images": "images",
    "pickupAddress": "pickup_address",
    "availableFrom": "available_from",
    "availableUntil": "available_until",
    "specialInstructions": "special_instructions",
    "allergens": "allergens",
    "status": "status",
}


def _listing_fields(payload: BaseModel, **dump_options) -> dict:
    fields = {}
    for key, value in payload.model_dump(exclude_unset=True, **dump_options).items():
        if isinstance(value, datetime):
            value = to_utc_naive(value)
        fields[_LISTING_ATTRS[key]] = value
    return fields


def _get_listing_or_404(db: DbClient, listing_id: str) -> ListingRecord:
    listing = db.get_listing(listing_id)
    if not listing:
        raise NotFoundError("Food listing not found")
    return listing


def _ensure_owner(listing: ListingRecord, auth: AuthContext, action: str) -> None:
    if listing.donor != auth.user_id:
        raise NotAuthorizedError(f"User not authorized to {action} this food listing")


def _join_users(
    doc: dict, users: dict[str, UserRecord], keys: Iterable[str], fields: tuple
) -> dict:
    for key in keys:
        user = users.get(doc.get(key))
        doc[key] = user.summary(*fields) if user else None
    return doc


# Auth


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterPayload,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    email = payload.email.lower()
    if db.get_user_by_email(email):
        raise ValidationFailedError("Email is already registered")
    user = db.create_user(
        UserRecord(
            name=payload.name,
            email=email,
            password_hash=hash_password(payload.password),
            role=payload.role,
            phone=payload.phone,
            address=payload.address.model_dump(exclude_none=True) if payload.address else None,
            organization=(
                payload.organization.model_dump(exclude_none=True)
                if payload.organization
                else None
            ),
        )
    )
    logger.info("Registered %s user %s", user.role.value, user.user_id)
    return AuthResponse(token=create_access_token(user, settings), user=user.as_dict())


@router.post("/auth/login", response_model=AuthResponse)
def login(
    payload: LoginPayload,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    user = db.get_user_by_email(payload.email.lower())
    if not user or not verify_password(user.password_hash, payload.password):
        raise AuthenticationError("Invalid credentials")
    return AuthResponse(token=create_access_token(user, settings), user=user.as_dict())


@router.get("/auth/me", response_model=DataResponse)
def current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: DbClient = Depends(get_db_client),
):
    user = db.get_user(auth.user_id)
    if not user:
        raise NotFoundError("User not found")
    return DataResponse(data=user.as_dict())


# Food listings


@router.get("/food-listings", response_model=ListingListResponse)
def list_food_listings(request: Request, db: DbClient = Depends(get_db_client)):
    query = parse_listing_query(request.query_params.multi_items())
    listings, total = db.find_listings(query)
    donors = db.get_users(listing.donor for listing in listings)
    data = [
        query.project(_join_users(listing.as_dict(), donors, ("donor",), CONTACT_FIELDS))
        for listing in listings
    ]
    return ListingListResponse(
        count=len(data),
        pagination=build_pagination(query.page, query.limit, total),
        data=data,
    )


@router.get("/food-listings/{listing_id}", response_model=DataResponse)
def get_food_listing(listing_id: str, db: DbClient = Depends(get_db_client)):
    listing = _get_listing_or_404(db, listing_id)
    donors = db.get_users([listing.donor])
    return DataResponse(
        data=_join_users(listing.as_dict(), donors, ("donor",), DONOR_DETAIL_FIELDS)
    )


@router.post("/food-listings", response_model=DataResponse, status_code=201)
def create_food_listing(
    payload: ListingCreatePayload,
    auth: AuthContext = Depends(get_auth_context),
    db: DbClient = Depends(get_db_client),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
):
    listing = db.create_listing(ListingRecord(donor=auth.user_id, **_listing_fields(payload)))
    logger.info("Donor %s created listing %s", auth.user_id, listing.listing_id)
    doc = listing.as_dict()
    broadcaster.publish(
        NEW_LISTING_EVENT, {"message": "New food listing available!", "listing": doc}
    )
    return DataResponse(data=doc)


@router.put("/food-listings/{listing_id}", response_model=DataResponse)
def update_food_listing(
    listing_id: str,
    payload: ListingUpdatePayload,
    auth: AuthContext = Depends(get_auth_context),
    db: DbClient = Depends(get_db_client),
):
    listing = _get_listing_or_404(db, listing_id)
    _ensure_owner(listing, auth, "update")

    changes = _listing_fields(payload, exclude_none=True)
    status = changes.get("status")
    if status is not None and status != listing.status:
        # reservedBy/claimedBy are only ever set alongside these statuses.
        if status in (ListingStatus.RESERVED, ListingStatus.CLAIMED):
            raise ValidationFailedError(
                f"Status '{status.value}' can only be set by reserving the listing"
            )
        if not ListingStatus(listing.status).can_transition_to(status):
            raise ValidationFailedError(
                f"Cannot change status from '{ListingStatus(listing.status).value}' "
                f"to '{status.value}'"
            )
    available_from = changes.get("available_from", listing.available_from)
    available_until = changes.get("available_until", listing.available_until)
    if available_until < available_from:
        raise ValidationFailedError("availableUntil must not be before availableFrom")

    updated = db.update_listing(listing_id, changes)
    if not updated:
        raise NotFoundError("Food listing not found")
    logger.info("Listing %s updated by owner", listing_id)
    return DataResponse(data=updated.as_dict())


@router.delete("/food-listings/{listing_id}", response_model=DataResponse)
def delete_food_listing(
    listing_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: DbClient = Depends(get_db_client),
):
    listing = _get_listing_or_404(db, listing_id)
    _ensure_owner(listing, auth, "delete")
    if not db.delete_listing(listing_id):
        raise NotFoundError("Food listing not found")
    logger.info("Listing %s deleted by owner", listing_id)
    return DataResponse(data={})


@router.put("/food-listings/{listing_id}/reserve", response_model=DataResponse)
def reserve_food_listing(
    listing_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    listing = _get_listing_or_404(db, listing_id)
    if listing.donor == auth.user_id and not settings.allow_self_reservation:
        raise NotAuthorizedError("Donors cannot reserve their own food listing")
    if listing.status != ListingStatus.AVAILABLE:
        logger.warning("Reservation of %s rejected: status is %s", listing_id, listing.status)
        raise ReservationConflictError("Food listing is not available for reservation")

    # Compare-and-swap on status; a concurrent reserver loses here.
    reserved = db.reserve_listing(listing_id, auth.user_id)
    if not reserved:
        logger.warning("Reservation of %s lost to a concurrent request", listing_id)
        raise ReservationConflictError("Food listing is not available for reservation")
    logger.info("Listing %s reserved by %s", listing_id, auth.user_id)
    return DataResponse(data=reserved.as_dict())


# Donations


@router.get("/donations", response_model=DonationListResponse)
def list_donations(
    auth: AuthContext = Depends(get_auth_context),
    db: DbClient = Depends(get_db_client),
):
    donations = db.list_donations_for_user(auth.user_id)
    listings = db.get_listings(d.food_listing for d in donations)
    users = db.get_users(
        [d.donor for d in donations] + [d.recipient for d in donations]
    )
    data = []
    for donation in donations:
        doc = _join_users(donation.as_dict(), users, ("donor", "recipient"), CONTACT_FIELDS)
        listing = listings.get(donation.food_listing)
        doc["foodListing"] = listing.as_dict() if listing else None
        data.append(doc)
    return DonationListResponse(count=len(data), data=data)


@router.post("/donations", response_model=DataResponse, status_code=201)
def create_donation(
    payload: DonationCreatePayload,
    auth: AuthContext = Depends(get_auth_context),
    db: DbClient = Depends(get_db_client),
):
    listing = _get_listing_or_404(db, payload.foodListing)
    donation = db.create_donation(
        DonationRecord(
            food_listing=listing.listing_id,
            donor=listing.donor,
            recipient=auth.user_id,
            scheduled_pickup=to_utc_naive(payload.scheduledPickup),
            status=payload.status,
            actual_pickup=to_utc_naive(payload.actualPickup),
            rating=payload.rating.model_dump(exclude_none=True) if payload.rating else {},
            completion_notes=payload.completionNotes,
        )
    )
    logger.info(
        "Donation %s recorded for listing %s", donation.donation_id, listing.listing_id
    )
    return DataResponse(data=donation.as_dict())


# Users


@router.get("/users/{user_id}", response_model=DataResponse)
def get_user(user_id: str, db: DbClient = Depends(get_db_client)):
    user = db.get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    return DataResponse(data=user.as_dict())


# Real-time channel


async def _forward_events(websocket: WebSocket, messages) -> None:
    async for message in messages:
        await websocket.send_json(message)


@router.websocket("/ws")
async def listing_events(
    websocket: WebSocket, broadcaster: EventBroadcaster = Depends(get_broadcaster)
):
    async with broadcaster.subscribe() as messages:
        await websocket.accept()
        forward = asyncio.create_task(_forward_events(websocket, messages))
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            forward.cancel()
            await asyncio.gather(forward, return_exceptions=True)
