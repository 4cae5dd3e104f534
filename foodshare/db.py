"""
Database abstraction for SQL databases (via SQLAlchemy) and an in-memory
implementation for development and tests.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    String,
    Text,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from foodshare.errors import ValidationFailedError
from foodshare.query import ListingQuery, sort_records
from foodshare.timeutils import format_datetime, utcnow
from foodshare.types import DonationStatus, FoodCategory, ListingStatus, UserRole


def new_id() -> str:
    return uuid.uuid4().hex


class DbClient(Protocol):
    """Interface for database access."""

    def create_user(self, user: "UserRecord") -> "UserRecord":
        ...

    def get_user(self, user_id: str) -> Optional["UserRecord"]:
        ...

    def get_users(self, user_ids: Iterable[str]) -> Dict[str, "UserRecord"]:
        ...

    def get_user_by_email(self, email: str) -> Optional["UserRecord"]:
        ...

    def create_listing(self, listing: "ListingRecord") -> "ListingRecord":
        ...

    def get_listing(self, listing_id: str) -> Optional["ListingRecord"]:
        ...

    def get_listings(self, listing_ids: Iterable[str]) -> Dict[str, "ListingRecord"]:
        ...

    def find_listings(self, query: ListingQuery) -> tuple[list["ListingRecord"], int]:
        ...

    def update_listing(
        self, listing_id: str, changes: dict
    ) -> Optional["ListingRecord"]:
        ...

    def delete_listing(self, listing_id: str) -> bool:
        ...

    def reserve_listing(
        self, listing_id: str, user_id: str
    ) -> Optional["ListingRecord"]:
        """Set status to reserved only if the listing is still available."""
        ...

    def expire_listings(self, now: datetime) -> int:
        ...

    def create_donation(self, donation: "DonationRecord") -> "DonationRecord":
        ...

    def list_donations_for_user(self, user_id: str) -> list["DonationRecord"]:
        ...


@dataclass
class UserRecord:
    name: str
    email: str
    password_hash: str
    role: UserRole
    phone: Optional[str] = None
    address: Optional[dict] = None
    organization: Optional[dict] = None
    user_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": UserRole(self.role).value,
            "phone": self.phone,
            "address": self.address,
            "organization": self.organization,
            "createdAt": format_datetime(self.created_at),
        }

    def summary(self, *fields: str) -> dict:
        full = self.as_dict()
        return {"_id": self.user_id, **{name: full.get(name) for name in fields}}


@dataclass
class ListingRecord:
    title: str
    description: str
    donor: str
    category: FoodCategory
    quantity: str
    expiry_date: datetime
    available_from: datetime
    available_until: datetime
    images: list = field(default_factory=list)
    pickup_address: Optional[dict] = None
    status: ListingStatus = ListingStatus.AVAILABLE
    reserved_by: Optional[str] = None
    claimed_by: Optional[str] = None
    special_instructions: Optional[str] = None
    allergens: list = field(default_factory=list)
    listing_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "_id": self.listing_id,
            "title": self.title,
            "description": self.description,
            "donor": self.donor,
            "category": FoodCategory(self.category).value,
            "quantity": self.quantity,
            "expiryDate": format_datetime(self.expiry_date),
            "images": list(self.images or []),
            "pickupAddress": self.pickup_address,
            "availableFrom": format_datetime(self.available_from),
            "availableUntil": format_datetime(self.available_until),
            "status": ListingStatus(self.status).value,
            "reservedBy": self.reserved_by,
            "claimedBy": self.claimed_by,
            "specialInstructions": self.special_instructions,
            "allergens": list(self.allergens or []),
            "createdAt": format_datetime(self.created_at),
        }


@dataclass
class DonationRecord:
    food_listing: str
    donor: str
    recipient: str
    scheduled_pickup: datetime
    status: DonationStatus = DonationStatus.RESERVED
    actual_pickup: Optional[datetime] = None
    rating: dict = field(default_factory=dict)
    completion_notes: Optional[str] = None
    donation_id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return {
            "_id": self.donation_id,
            "foodListing": self.food_listing,
            "donor": self.donor,
            "recipient": self.recipient,
            "status": DonationStatus(self.status).value,
            "scheduledPickup": format_datetime(self.scheduled_pickup),
            "actualPickup": format_datetime(self.actual_pickup),
            "rating": self.rating or {},
            "completionNotes": self.completion_notes,
            "createdAt": format_datetime(self.created_at),
        }


def _is_past(value: Optional[datetime], now: datetime) -> bool:
    return value is not None and value < now


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.listings: Dict[str, ListingRecord] = {}
        self.donations: Dict[str, DonationRecord] = {}
        # Request handlers run on a thread pool; conditional updates hold this.
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.listings.clear()
            self.donations.clear()

    def create_user(self, user: UserRecord) -> UserRecord:
        with self._lock:
            if any(u.email == user.email for u in self.users.values()):
                raise ValidationFailedError("Email is already registered")
            self.users[user.user_id] = user
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_users(self, user_ids: Iterable[str]) -> Dict[str, UserRecord]:
        return {uid: self.users[uid] for uid in set(user_ids) if uid in self.users}

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._lock:
            users = list(self.users.values())
        for user in users:
            if user.email == email:
                return user
        return None

    def create_listing(self, listing: ListingRecord) -> ListingRecord:
        with self._lock:
            self.listings[listing.listing_id] = listing
        return listing

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        return self.listings.get(listing_id)

    def get_listings(self, listing_ids: Iterable[str]) -> Dict[str, ListingRecord]:
        return {
            lid: self.listings[lid] for lid in set(listing_ids) if lid in self.listings
        }

    def find_listings(self, query: ListingQuery) -> tuple[list[ListingRecord], int]:
        with self._lock:
            listings = list(self.listings.values())
        matched = [r for r in listings if query.filter.matches(r)]
        matched.sort(key=lambda r: r.listing_id)
        ordered = sort_records(matched, query.sort)
        return ordered[query.offset : query.offset + query.limit], len(matched)

    def update_listing(self, listing_id: str, changes: dict) -> Optional[ListingRecord]:
        with self._lock:
            listing = self.listings.get(listing_id)
            if not listing:
                return None
            updated = replace(listing, **changes)
            self.listings[listing_id] = updated
            return updated

    def delete_listing(self, listing_id: str) -> bool:
        with self._lock:
            return self.listings.pop(listing_id, None) is not None

    def reserve_listing(self, listing_id: str, user_id: str) -> Optional[ListingRecord]:
        with self._lock:
            listing = self.listings.get(listing_id)
            if not listing or listing.status != ListingStatus.AVAILABLE:
                return None
            updated = replace(
                listing, status=ListingStatus.RESERVED, reserved_by=user_id
            )
            self.listings[listing_id] = updated
            return updated

    def expire_listings(self, now: datetime) -> int:
        expired = 0
        with self._lock:
            for listing_id, listing in list(self.listings.items()):
                if listing.status != ListingStatus.AVAILABLE:
                    continue
                if _is_past(listing.available_until, now) or _is_past(
                    listing.expiry_date, now
                ):
                    self.listings[listing_id] = replace(
                        listing, status=ListingStatus.EXPIRED
                    )
                    expired += 1
        return expired

    def create_donation(self, donation: DonationRecord) -> DonationRecord:
        self.donations[donation.donation_id] = donation
        return donation

    def list_donations_for_user(self, user_id: str) -> list[DonationRecord]:
        mine = [
            d
            for d in self.donations.values()
            if d.donor == user_id or d.recipient == user_id
        ]
        return sorted(mine, key=lambda d: d.created_at, reverse=True)


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url:
                # A single shared connection keeps the in-memory database alive.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # Users

    def create_user(self, user: UserRecord) -> UserRecord:
        with self.Session() as session:
            session.add(_user_to_row(user))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise ValidationFailedError("Email is already registered")
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return _row_to_user(row) if row else None

    def get_users(self, user_ids: Iterable[str]) -> Dict[str, UserRecord]:
        ids = set(user_ids)
        if not ids:
            return {}
        with self.Session() as session:
            rows = session.execute(
                select(UserRow).where(UserRow.user_id.in_(ids))
            ).scalars()
            return {row.user_id: _row_to_user(row) for row in rows}

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email)
            ).scalar_one_or_none()
            return _row_to_user(row) if row else None

    # Listings

    def create_listing(self, listing: ListingRecord) -> ListingRecord:
        with self.Session() as session:
            session.add(_listing_to_row(listing))
            session.commit()
        return listing

    def get_listing(self, listing_id: str) -> Optional[ListingRecord]:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            return _row_to_listing(row) if row else None

    def get_listings(self, listing_ids: Iterable[str]) -> Dict[str, ListingRecord]:
        ids = set(listing_ids)
        if not ids:
            return {}
        with self.Session() as session:
            rows = session.execute(
                select(ListingRow).where(ListingRow.listing_id.in_(ids))
            ).scalars()
            return {row.listing_id: _row_to_listing(row) for row in rows}

    def find_listings(self, query: ListingQuery) -> tuple[list[ListingRecord], int]:
        clause = query.filter.to_sql(ListingRow)
        stmt = select(ListingRow)
        count_stmt = select(func.count()).select_from(ListingRow)
        if clause is not None:
            stmt = stmt.where(clause)
            count_stmt = count_stmt.where(clause)
        for key in query.sort:
            column = getattr(ListingRow, key.field.column)
            stmt = stmt.order_by(column.desc() if key.descending else column.asc())
        stmt = stmt.order_by(ListingRow.listing_id.asc())
        stmt = stmt.offset(query.offset).limit(query.limit)
        with self.Session() as session:
            total = session.execute(count_stmt).scalar_one()
            rows = session.execute(stmt).scalars().all()
            return [_row_to_listing(row) for row in rows], total

    def update_listing(self, listing_id: str, changes: dict) -> Optional[ListingRecord]:
        with self.Session() as session:
            row = session.get(ListingRow, listing_id)
            if not row:
                return None
            updated = replace(_row_to_listing(row), **changes)
            for key, value in _listing_columns(updated).items():
                setattr(row, key, value)
            session.commit()
            return updated

    def delete_listing(self, listing_id: str) -> bool:
        with self.Session() as session:
            deleted = (
                session.query(ListingRow)
                .filter(ListingRow.listing_id == listing_id)
                .delete(synchronize_session=False)
            )
            session.commit()
            return bool(deleted)

    def reserve_listing(self, listing_id: str, user_id: str) -> Optional[ListingRecord]:
        with self.Session() as session:
            updated = (
                session.query(ListingRow)
                .filter(
                    ListingRow.listing_id == listing_id,
                    ListingRow.status == ListingStatus.AVAILABLE.value,
                )
                .update(
                    {
                        ListingRow.status: ListingStatus.RESERVED.value,
                        ListingRow.reserved_by: user_id,
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
            if updated != 1:
                return None
            row = session.get(ListingRow, listing_id)
            return _row_to_listing(row) if row else None

    def expire_listings(self, now: datetime) -> int:
        with self.Session() as session:
            updated = (
                session.query(ListingRow)
                .filter(
                    ListingRow.status == ListingStatus.AVAILABLE.value,
                    or_(
                        ListingRow.available_until < now,
                        ListingRow.expiry_date < now,
                    ),
                )
                .update(
                    {ListingRow.status: ListingStatus.EXPIRED.value},
                    synchronize_session=False,
                )
            )
            session.commit()
            return updated or 0

    # Donations

    def create_donation(self, donation: DonationRecord) -> DonationRecord:
        with self.Session() as session:
            session.add(
                DonationRow(
                    donation_id=donation.donation_id,
                    food_listing_id=donation.food_listing,
                    donor_id=donation.donor,
                    recipient_id=donation.recipient,
                    status=DonationStatus(donation.status).value,
                    scheduled_pickup=donation.scheduled_pickup,
                    actual_pickup=donation.actual_pickup,
                    rating=donation.rating or {},
                    completion_notes=donation.completion_notes,
                    created_at=donation.created_at,
                )
            )
            session.commit()
        return donation

    def list_donations_for_user(self, user_id: str) -> list[DonationRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(DonationRow)
                .where(
                    or_(
                        DonationRow.donor_id == user_id,
                        DonationRow.recipient_id == user_id,
                    )
                )
                .order_by(DonationRow.created_at.desc())
            ).scalars()
            return [_row_to_donation(row) for row in rows]


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    address = Column(JSON, nullable=True)
    organization = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False)


class ListingRow(Base):
    __tablename__ = "food_listings"

    listing_id = Column(String, primary_key=True)
    title = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False)
    donor_id = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False, index=True)
    quantity = Column(String, nullable=False)
    expiry_date = Column(DateTime, nullable=False)
    images = Column(JSON, nullable=False, default=list)
    pickup_street = Column(String, nullable=True)
    pickup_city = Column(String, nullable=True)
    pickup_state = Column(String, nullable=True)
    pickup_zip_code = Column(String, nullable=True)
    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    available_from = Column(DateTime, nullable=False)
    available_until = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, index=True)
    reserved_by = Column(String, nullable=True)
    claimed_by = Column(String, nullable=True)
    special_instructions = Column(Text, nullable=True)
    allergens = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_food_listings_pickup_coordinates", "pickup_lat", "pickup_lng"),
    )


class DonationRow(Base):
    __tablename__ = "donations"

    donation_id = Column(String, primary_key=True)
    food_listing_id = Column(String, nullable=False, index=True)
    donor_id = Column(String, nullable=False, index=True)
    recipient_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)
    scheduled_pickup = Column(DateTime, nullable=False)
    actual_pickup = Column(DateTime, nullable=True)
    rating = Column(JSON, nullable=False, default=dict)
    completion_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)


def _user_to_row(user: UserRecord) -> UserRow:
    return UserRow(
        user_id=user.user_id,
        name=user.name,
        email=user.email,
        password_hash=user.password_hash,
        role=UserRole(user.role).value,
        phone=user.phone,
        address=user.address,
        organization=user.organization,
        created_at=user.created_at,
    )


def _row_to_user(row: UserRow) -> UserRecord:
    return UserRecord(
        user_id=row.user_id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        role=UserRole(row.role),
        phone=row.phone,
        address=row.address,
        organization=row.organization,
        created_at=row.created_at,
    )


def _listing_columns(listing: ListingRecord) -> dict:
    address = listing.pickup_address or {}
    coordinates = address.get("coordinates") or {}
    return {
        "title": listing.title,
        "description": listing.description,
        "donor_id": listing.donor,
        "category": FoodCategory(listing.category).value,
        "quantity": listing.quantity,
        "expiry_date": listing.expiry_date,
        "images": list(listing.images or []),
        "pickup_street": address.get("street"),
        "pickup_city": address.get("city"),
        "pickup_state": address.get("state"),
        "pickup_zip_code": address.get("zipCode"),
        "pickup_lat": coordinates.get("lat"),
        "pickup_lng": coordinates.get("lng"),
        "available_from": listing.available_from,
        "available_until": listing.available_until,
        "status": ListingStatus(listing.status).value,
        "reserved_by": listing.reserved_by,
        "claimed_by": listing.claimed_by,
        "special_instructions": listing.special_instructions,
        "allergens": list(listing.allergens or []),
    }


def _listing_to_row(listing: ListingRecord) -> ListingRow:
    return ListingRow(
        listing_id=listing.listing_id,
        created_at=listing.created_at,
        **_listing_columns(listing),
    )


def _row_to_listing(row: ListingRow) -> ListingRecord:
    address = None
    if any(
        value is not None
        for value in (
            row.pickup_street,
            row.pickup_city,
            row.pickup_state,
            row.pickup_zip_code,
            row.pickup_lat,
            row.pickup_lng,
        )
    ):
        address = {
            "street": row.pickup_street,
            "city": row.pickup_city,
            "state": row.pickup_state,
            "zipCode": row.pickup_zip_code,
        }
        if row.pickup_lat is not None or row.pickup_lng is not None:
            address["coordinates"] = {"lat": row.pickup_lat, "lng": row.pickup_lng}
    return ListingRecord(
        listing_id=row.listing_id,
        title=row.title,
        description=row.description,
        donor=row.donor_id,
        category=FoodCategory(row.category),
        quantity=row.quantity,
        expiry_date=row.expiry_date,
        images=list(row.images or []),
        pickup_address=address,
        available_from=row.available_from,
        available_until=row.available_until,
        status=ListingStatus(row.status),
        reserved_by=row.reserved_by,
        claimed_by=row.claimed_by,
        special_instructions=row.special_instructions,
        allergens=list(row.allergens or []),
        created_at=row.created_at,
    )


def _row_to_donation(row: DonationRow) -> DonationRecord:
    return DonationRecord(
        donation_id=row.donation_id,
        food_listing=row.food_listing_id,
        donor=row.donor_id,
        recipient=row.recipient_id,
        status=DonationStatus(row.status),
        scheduled_pickup=row.scheduled_pickup,
        actual_pickup=row.actual_pickup,
        rating=row.rating or {},
        completion_notes=row.completion_notes,
        created_at=row.created_at,
    )
