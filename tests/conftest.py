"""Shared fixtures for rental handover tests."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from rental_handover.application.services.booking_service import BookingService
from rental_handover.application.services.handover_coordinator import HandoverCoordinator
from rental_handover.application.services.handover_notifier import HandoverNotifier
from rental_handover.application.services.handover_service import HandoverService
from rental_handover.application.services.locks import KeyedLocks
from rental_handover.application.services.otp_service import OtpService
from rental_handover.domain.entities.booking import Booking
from rental_handover.infrastructure.notifications import LoggingNotificationChannel
from rental_handover.infrastructure.repositories.memory_repositories import (
    InMemoryBookingRepository,
    InMemoryHandoverSessionRepository,
    InMemoryPasscodeRepository,
    InMemoryUnitOfWork,
    InMemoryUserDirectory,
)

OWNER_ID = "owner-1"
RENTER_ID = "renter-1"
STRANGER_ID = "stranger-1"
OWNER_EMAIL = "owner@example.com"
RENTER_EMAIL = "renter@example.com"
START = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock returning timezone-aware UTC datetimes."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class HandoverWiring:
    """In-memory service graph for one test."""
    clock: FakeClock
    bookings: InMemoryBookingRepository
    sessions: InMemoryHandoverSessionRepository
    passcodes: InMemoryPasscodeRepository
    users: InMemoryUserDirectory
    channel: LoggingNotificationChannel
    unit_of_work: InMemoryUnitOfWork
    booking_service: BookingService
    coordinator: HandoverCoordinator
    otp_service: OtpService
    handover_service: HandoverService


@pytest.fixture
def clock():
    """Clock starting at the beginning of the rental."""
    return FakeClock()


@pytest.fixture
def make_booking():
    """Factory for bookings with sensible defaults."""
    def _make(**overrides) -> Booking:
        values = dict(
            renter_id=RENTER_ID,
            owner_id=OWNER_ID,
            product_id="camera-42",
            start_date=START,
            end_date=START + timedelta(days=3),
            total_price=Decimal("1000"),
            created_at=START - timedelta(days=2),
            updated_at=START - timedelta(days=2)
        )
        values.update(overrides)
        return Booking(**values)

    return _make


@pytest.fixture
def wiring(clock):
    """Booking, coordinator and OTP services over in-memory stores."""
    bookings = InMemoryBookingRepository()
    sessions = InMemoryHandoverSessionRepository()
    passcodes = InMemoryPasscodeRepository()
    users = InMemoryUserDirectory({OWNER_ID: OWNER_EMAIL, RENTER_ID: RENTER_EMAIL})
    channel = LoggingNotificationChannel()
    locks = KeyedLocks()
    unit_of_work = InMemoryUnitOfWork()

    booking_service = BookingService(bookings, locks=locks, unit_of_work=unit_of_work, clock=clock)
    coordinator = HandoverCoordinator(
        sessions, booking_service,
        notifier=HandoverNotifier(users, channel, clock=clock),
        clock=clock
    )
    otp_service = OtpService(
        booking_service=booking_service,
        coordinator=coordinator,
        passcode_repository=passcodes,
        user_directory=users,
        notification_channel=channel,
        clock=clock
    )
    return HandoverWiring(
        clock=clock,
        bookings=bookings,
        sessions=sessions,
        passcodes=passcodes,
        users=users,
        channel=channel,
        unit_of_work=unit_of_work,
        booking_service=booking_service,
        coordinator=coordinator,
        otp_service=otp_service,
        handover_service=HandoverService(booking_service, otp_service)
    )


@pytest_asyncio.fixture
async def paid_booking(wiring):
    """A booking accepted by the owner and paid by the renter."""
    booking = await wiring.booking_service.request_rental(
        renter_id=RENTER_ID,
        owner_id=OWNER_ID,
        product_id="camera-42",
        start_date=START,
        end_date=START + timedelta(days=3),
        total_price=Decimal("1000")
    )
    await wiring.booking_service.accept_request(booking.id, OWNER_ID)
    return await wiring.booking_service.confirm_payment(booking.id, "pay_123")
