import unittest
from datetime import datetime

from foodshare.db import (
    DonationRecord,
    ListingRecord,
    SqlDbClient,
    UserRecord,
)
from foodshare.errors import ValidationFailedError
from foodshare.query import parse_listing_query
from foodshare.types import DonationStatus, FoodCategory, ListingStatus, UserRole


def make_listing(donor: str, **overrides) -> ListingRecord:
    fields = dict(
        title="Milk",
        description="Two litres",
        donor=donor,
        category=FoodCategory.DAIRY,
        quantity="2",
        expiry_date=datetime(2030, 1, 5),
        available_from=datetime(2030, 1, 1),
        available_until=datetime(2030, 1, 2),
        pickup_address={
            "street": "12 Market St",
            "city": "Springfield",
            "coordinates": {"lat": 39.78, "lng": -89.65},
        },
        allergens=["lactose"],
    )
    fields.update(overrides)
    return ListingRecord(**fields)


class SqlDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the SQL client logic.
    """

    def setUp(self):
        self.db = SqlDbClient("sqlite+pysqlite:///:memory:")
        self.donor = self.db.create_user(
            UserRecord(
                name="Dana",
                email="dana@example.com",
                password_hash="hash",
                role=UserRole.DONOR,
                address={"city": "Springfield"},
            )
        )
        self.recipient = self.db.create_user(
            UserRecord(
                name="Rico",
                email="rico@example.com",
                password_hash="hash",
                role=UserRole.RECIPIENT,
            )
        )

    def test_user_roundtrip_and_unique_email(self):
        fetched = self.db.get_user(self.donor.user_id)
        self.assertEqual(fetched.email, "dana@example.com")
        self.assertEqual(fetched.role, UserRole.DONOR)
        self.assertEqual(self.db.get_user_by_email("rico@example.com").user_id, self.recipient.user_id)
        self.assertEqual(
            set(self.db.get_users([self.donor.user_id, "missing"])), {self.donor.user_id}
        )
        with self.assertRaises(ValidationFailedError):
            self.db.create_user(
                UserRecord(
                    name="Other",
                    email="dana@example.com",
                    password_hash="hash",
                    role=UserRole.RECIPIENT,
                )
            )

    def test_listing_roundtrip(self):
        listing = self.db.create_listing(make_listing(self.donor.user_id))
        fetched = self.db.get_listing(listing.listing_id)
        self.assertEqual(fetched.title, "Milk")
        self.assertEqual(fetched.category, FoodCategory.DAIRY)
        self.assertEqual(fetched.status, ListingStatus.AVAILABLE)
        self.assertEqual(fetched.pickup_address["city"], "Springfield")
        self.assertEqual(fetched.pickup_address["coordinates"], {"lat": 39.78, "lng": -89.65})
        self.assertEqual(fetched.allergens, ["lactose"])
        self.assertIsNone(self.db.get_listing("missing"))

    def test_find_listings_filters_sorts_and_counts(self):
        self.db.create_listing(make_listing(self.donor.user_id, title="A", expiry_date=datetime(2024, 1, 5)))
        self.db.create_listing(make_listing(self.donor.user_id, title="B", expiry_date=datetime(2023, 12, 1)))
        self.db.create_listing(make_listing(self.donor.user_id, title="C", category=FoodCategory.MEAT))
        self.db.create_listing(make_listing(self.donor.user_id, title="D", expiry_date=datetime(2024, 6, 1)))

        query = parse_listing_query(
            [
                ("category", "dairy"),
                ("expiryDate[gte]", "2024-01-01"),
                ("sort", "-title"),
                ("limit", "1"),
            ]
        )
        records, total = self.db.find_listings(query)
        self.assertEqual(total, 2)
        self.assertEqual([r.title for r in records], ["D"])

        query = parse_listing_query(
            [("category[in]", "dairy,meat"), ("pickupAddress.city", "Springfield"), ("sort", "title")]
        )
        records, total = self.db.find_listings(query)
        self.assertEqual(total, 4)
        self.assertEqual([r.title for r in records], ["A", "B", "C", "D"])

    def test_pages_are_stable_when_sort_values_tie(self):
        created = datetime(2024, 3, 1)
        ids = {
            self.db.create_listing(
                make_listing(self.donor.user_id, title=f"L{i}", created_at=created)
            ).listing_id
            for i in range(5)
        }

        seen = []
        for page in range(1, 6):
            query = parse_listing_query([("page", str(page)), ("limit", "1")])
            records, total = self.db.find_listings(query)
            self.assertEqual(total, 5)
            seen.extend(r.listing_id for r in records)
        self.assertEqual(seen, sorted(ids))

    def test_update_and_delete_listing(self):
        listing = self.db.create_listing(make_listing(self.donor.user_id))
        updated = self.db.update_listing(listing.listing_id, {"quantity": "5", "status": ListingStatus.CLAIMED})
        self.assertEqual(updated.quantity, "5")
        fetched = self.db.get_listing(listing.listing_id)
        self.assertEqual(fetched.quantity, "5")
        self.assertEqual(fetched.status, ListingStatus.CLAIMED)
        self.assertIsNone(self.db.update_listing("missing", {"quantity": "1"}))

        self.assertTrue(self.db.delete_listing(listing.listing_id))
        self.assertFalse(self.db.delete_listing(listing.listing_id))

    def test_reserve_is_conditional(self):
        listing = self.db.create_listing(make_listing(self.donor.user_id))
        reserved = self.db.reserve_listing(listing.listing_id, self.recipient.user_id)
        self.assertEqual(reserved.status, ListingStatus.RESERVED)
        self.assertEqual(reserved.reserved_by, self.recipient.user_id)

        self.assertIsNone(self.db.reserve_listing(listing.listing_id, "someone-else"))
        self.assertEqual(
            self.db.get_listing(listing.listing_id).reserved_by, self.recipient.user_id
        )
        self.assertIsNone(self.db.reserve_listing("missing", self.recipient.user_id))

    def test_expire_listings(self):
        stale = self.db.create_listing(
            make_listing(self.donor.user_id, available_until=datetime(2020, 1, 1))
        )
        fresh = self.db.create_listing(make_listing(self.donor.user_id))
        reserved = self.db.create_listing(
            make_listing(self.donor.user_id, expiry_date=datetime(2020, 1, 1))
        )
        self.db.reserve_listing(reserved.listing_id, self.recipient.user_id)

        self.assertEqual(self.db.expire_listings(datetime(2025, 1, 1)), 1)
        self.assertEqual(self.db.get_listing(stale.listing_id).status, ListingStatus.EXPIRED)
        self.assertEqual(self.db.get_listing(fresh.listing_id).status, ListingStatus.AVAILABLE)
        self.assertEqual(self.db.get_listing(reserved.listing_id).status, ListingStatus.RESERVED)

    def test_donations_for_user(self):
        listing = self.db.create_listing(make_listing(self.donor.user_id))
        older = self.db.create_donation(
            DonationRecord(
                food_listing=listing.listing_id,
                donor=self.donor.user_id,
                recipient=self.recipient.user_id,
                scheduled_pickup=datetime(2030, 1, 1, 10),
                created_at=datetime(2024, 1, 1),
            )
        )
        newer = self.db.create_donation(
            DonationRecord(
                food_listing=listing.listing_id,
                donor=self.donor.user_id,
                recipient=self.recipient.user_id,
                scheduled_pickup=datetime(2030, 1, 2, 10),
                status=DonationStatus.COMPLETED,
                rating={"byDonor": {"rating": 4}},
                created_at=datetime(2024, 2, 1),
            )
        )

        for user_id in (self.donor.user_id, self.recipient.user_id):
            donations = self.db.list_donations_for_user(user_id)
            self.assertEqual(
                [d.donation_id for d in donations], [newer.donation_id, older.donation_id]
            )
        self.assertEqual(donations[0].status, DonationStatus.COMPLETED)
        self.assertEqual(donations[0].rating, {"byDonor": {"rating": 4}})
        self.assertEqual(self.db.list_donations_for_user("stranger"), [])
        self.assertEqual(
            set(self.db.get_listings([listing.listing_id, "missing"])), {listing.listing_id}
        )


if __name__ == "__main__":
    unittest.main()
