"""In-memory repository implementations for testing and development."""

import copy
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from rental_handover.application.ports.repositories import (
    BookingRepository,
    HandoverSessionRepository,
    PasscodeRepository,
    UnitOfWork,
    UserDirectory,
)
from rental_handover.domain.entities.booking import Booking
from rental_handover.domain.entities.handover_session import HandoverSession
from rental_handover.domain.exceptions import ConcurrentModificationError
from rental_handover.domain.value_objects.passcode import HandoverType, OneTimePasscode, PartyRole


class InMemoryBookingRepository(BookingRepository):
    """In-memory implementation of booking repository.

    Stores snapshots rather than live objects so a caller's unsaved changes
    never leak into the store.
    """

    def __init__(self):
        self._bookings: Dict[UUID, Booking] = {}

    async def add(self, booking: Booking) -> Booking:
        """Persist a new booking."""
        if booking.id in self._bookings:
            raise ConcurrentModificationError(f"Booking already exists: {booking.id}")
        booking.mark_persisted(1)
        self._bookings[booking.id] = copy.deepcopy(booking)
        return booking

    async def save(self, booking: Booking) -> Booking:
        """Persist changes with an optimistic version check."""
        stored = self._bookings.get(booking.id)
        if stored is None:
            return await self.add(booking)
        if stored.version != booking.version:
            raise ConcurrentModificationError(
                f"Booking {booking.id} was modified concurrently",
                expected_version=booking.version,
                actual_version=stored.version
            )
        booking.mark_persisted(booking.version + 1)
        self._bookings[booking.id] = copy.deepcopy(booking)
        return booking

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID."""
        stored = self._bookings.get(booking_id)
        return copy.deepcopy(stored) if stored else None

    async def find_by_party(self, user_id: str) -> List[Booking]:
        """Find all bookings for a renter or owner, newest first."""
        bookings = [
            copy.deepcopy(booking) for booking in self._bookings.values()
            if user_id in (booking.renter_id, booking.owner_id)
        ]
        return sorted(bookings, key=lambda booking: booking.created_at, reverse=True)


class InMemoryHandoverSessionRepository(HandoverSessionRepository):
    """In-memory implementation of handover session repository."""

    def __init__(self):
        self._sessions: Dict[Tuple[UUID, HandoverType], HandoverSession] = {}

    async def find(self, booking_id: UUID, handover_type: HandoverType) -> Optional[HandoverSession]:
        """Find the session for a booking's handover."""
        stored = self._sessions.get((booking_id, handover_type))
        return copy.deepcopy(stored) if stored else None

    async def save(self, session: HandoverSession) -> HandoverSession:
        """Create or update a session with an optimistic version check."""
        key = (session.booking_id, session.handover_type)
        stored = self._sessions.get(key)
        current = stored.version if stored else 0
        if session.version != current:
            raise ConcurrentModificationError(
                f"{session.handover_type.value} handover session of booking {session.booking_id} was modified concurrently",
                expected_version=session.version,
                actual_version=current
            )
        session.mark_persisted(current + 1)
        self._sessions[key] = copy.deepcopy(session)
        return session


class InMemoryPasscodeRepository(PasscodeRepository):
    """In-memory implementation of passcode repository, one entry per slot."""

    def __init__(self):
        self._passcodes: Dict[Tuple[UUID, HandoverType, PartyRole], OneTimePasscode] = {}

    async def replace(self, passcode: OneTimePasscode) -> None:
        """Store a passcode, invalidating the previous one for its slot."""
        self._passcodes[passcode.slot] = passcode

    async def find(self, booking_id: UUID, handover_type: HandoverType, role: PartyRole) -> Optional[OneTimePasscode]:
        """Find the current passcode for a slot."""
        return self._passcodes.get((booking_id, handover_type, role))

    async def consume(self, booking_id: UUID, handover_type: HandoverType, role: PartyRole) -> bool:
        """Remove the passcode for a slot."""
        return self._passcodes.pop((booking_id, handover_type, role), None) is not None


class InMemoryUserDirectory(UserDirectory):
    """In-memory user directory keyed by identity-provider user ID."""

    def __init__(self, emails: Optional[Dict[str, str]] = None):
        self._emails: Dict[str, str] = dict(emails or {})

    def register(self, user_id: str, email: str) -> None:
        """Register or update a user's email address."""
        self._emails[user_id] = email

    async def get_email(self, user_id: str) -> Optional[str]:
        """Get the registered email address of a user."""
        return self._emails.get(user_id)


class InMemoryUnitOfWork(UnitOfWork):
    """Writes to the in-memory stores are visible immediately; commit only counts."""

    def __init__(self):
        self.commits = 0

    async def commit(self) -> None:
        self.commits += 1
