"""Shared model fixtures for bookings and overstay tests."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone

from bookings.models import Booking
from listings.models import Listing, Location
from payments.models import OwnerPayoutAccount

User = get_user_model()


def _create_user(*, username: str, **extra) -> User:
    return User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="testpass",
        email_verified=True,
        **extra,
    )


@pytest.fixture
def manager_user():
    return _create_user(username="manager", first_name="Morgan", last_name="Manager")


@pytest.fixture
def renter_user():
    return _create_user(
        username="renter",
        first_name="Riley",
        last_name="Renter",
        can_list=False,
        stripe_customer_id="cus_profile_renter",
    )


@pytest.fixture
def other_user():
    return _create_user(username="other", can_list=False)


@pytest.fixture
def staff_user():
    return _create_user(username="ops", is_staff=True)


@pytest.fixture
def manager_payout_account(manager_user):
    return OwnerPayoutAccount.objects.create(
        user=manager_user,
        stripe_account_id="acct_test_manager",
        payouts_enabled=True,
        charges_enabled=True,
        last_synced_at=timezone.now(),
    )


@pytest.fixture
def location(manager_user):
    return Location.objects.create(
        name="Whyte Ave Storage",
        manager=manager_user,
        city="Edmonton",
        tax_rate_percent=Decimal("0.00"),
    )


@pytest.fixture
def listing(location):
    return Listing.objects.create(
        location=location,
        title="10x10 Indoor Unit",
        description="Heated unit with roll-up door.",
        daily_rate_cents=2000,
        is_active=True,
    )


@pytest.fixture
def today() -> date:
    return timezone.localdate()


@pytest.fixture
def booking_factory(listing, renter_user, today) -> Callable[..., Booking]:
    def _create_booking(
        *,
        listing_override: Listing | None = None,
        renter=None,
        start_date: date | None = None,
        end_date: date | None = None,
        status=Booking.Status.CONFIRMED,
        **extra_fields,
    ) -> Booking:
        end = end_date or today - timedelta(days=5)
        extra_fields.setdefault("renter_stripe_customer_id", "cus_booking_renter")
        extra_fields.setdefault("renter_stripe_payment_method_id", "pm_card_visa")
        return Booking.objects.create(
            listing=listing_override or listing,
            renter=renter or renter_user,
            start_date=start_date or end - timedelta(days=30),
            end_date=end,
            status=status,
            **extra_fields,
        )

    return _create_booking


@pytest.fixture
def overdue_booking(booking_factory):
    return booking_factory()
