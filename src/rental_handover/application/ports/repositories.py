"""Port interfaces for repositories and outbound collaborators (Dependency Inversion Principle)."""

from abc import ABC, abstractmethod
from typing import List, Optional, TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from rental_handover.domain.entities.booking import Booking
    from rental_handover.domain.entities.handover_session import HandoverSession
    from rental_handover.domain.value_objects.passcode import (
        HandoverType,
        HandoverNotice,
        OneTimePasscode,
        PartyRole,
        PasscodeMessage,
    )


class BookingRepository(ABC):
    """Port interface for booking repository."""

    @abstractmethod
    async def add(self, booking: "Booking") -> "Booking":
        """Persist a new booking."""
        raise NotImplementedError

    @abstractmethod
    async def save(self, booking: "Booking") -> "Booking":
        """Persist changes to an existing booking.

        Raises ConcurrentModificationError when the stored version differs
        from the version the booking was loaded at.
        """
        raise NotImplementedError

    @abstractmethod
    async def find_by_id(self, booking_id: UUID) -> Optional["Booking"]:
        """Find booking by ID."""
        raise NotImplementedError

    @abstractmethod
    async def find_by_party(self, user_id: str) -> List["Booking"]:
        """Find all bookings where the user is renter or owner."""
        raise NotImplementedError


class HandoverSessionRepository(ABC):
    """Port interface for handover session repository."""

    @abstractmethod
    async def find(self, booking_id: UUID, handover_type: "HandoverType") -> Optional["HandoverSession"]:
        """Find the session for a booking's handover."""
        raise NotImplementedError

    @abstractmethod
    async def save(self, session: "HandoverSession") -> "HandoverSession":
        """Create or update a session.

        Raises ConcurrentModificationError when another writer stored the
        session after this snapshot was loaded.
        """
        raise NotImplementedError


class PasscodeRepository(ABC):
    """Port interface for the currently valid passcode of each slot."""

    @abstractmethod
    async def replace(self, passcode: "OneTimePasscode") -> None:
        """Store a passcode, invalidating any prior one for the same slot."""
        raise NotImplementedError

    @abstractmethod
    async def find(self, booking_id: UUID, handover_type: "HandoverType", role: "PartyRole") -> Optional["OneTimePasscode"]:
        """Find the current passcode for a slot."""
        raise NotImplementedError

    @abstractmethod
    async def consume(self, booking_id: UUID, handover_type: "HandoverType", role: "PartyRole") -> bool:
        """Remove the passcode for a slot after a successful verification."""
        raise NotImplementedError


class UserDirectory(ABC):
    """Port interface for looking up contact details of identity-provider users."""

    @abstractmethod
    async def get_email(self, user_id: str) -> Optional[str]:
        """Get the registered email address of a user."""
        raise NotImplementedError


class UnitOfWork(ABC):
    """Port interface for making pending repository writes durable."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit everything written since the last commit."""
        raise NotImplementedError


class NotificationChannel(ABC):
    """Port interface for out-of-band passcode and handover notices."""

    @abstractmethod
    async def send(self, message: "PasscodeMessage") -> None:
        """Deliver a passcode. Raises DeliveryFailedError on failure."""
        raise NotImplementedError

    @abstractmethod
    async def send_notice(self, notice: "HandoverNotice") -> None:
        """Deliver a handover completion notice. Raises DeliveryFailedError on failure."""
        raise NotImplementedError
