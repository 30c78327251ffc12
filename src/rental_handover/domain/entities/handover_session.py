"""Handover session entity tracking dual-party confirmation."""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Union
from uuid import UUID

from ..clock import utc_now
from ..value_objects.passcode import HandoverType, PartyRole


@dataclass(frozen=True)
class Pending:
    """Neither party has confirmed."""


@dataclass(frozen=True)
class OneConfirmed:
    """Exactly one party has confirmed."""
    role: PartyRole


@dataclass(frozen=True)
class BothConfirmed:
    """Both parties confirmed; the session is finalized."""


SessionState = Union[Pending, OneConfirmed, BothConfirmed]


@dataclass(frozen=True)
class Confirmation:
    """One party's accepted passcode submission."""
    role: PartyRole
    otp_issued_at: datetime
    confirmed_at: datetime


class HandoverSession:
    """Confirmation state of one handover of one booking.

    Completion is monotonic: once both parties confirmed, further
    confirmations are ignored and the session is never reopened.
    """

    def __init__(
        self,
        booking_id: UUID,
        handover_type: HandoverType,
        confirmations: Optional[Dict[PartyRole, Confirmation]] = None,
        created_at: Optional[datetime] = None,
        finalized_at: Optional[datetime] = None,
        version: int = 0
    ):
        self._booking_id = booking_id
        self._handover_type = handover_type
        self._confirmations: Dict[PartyRole, Confirmation] = dict(confirmations or {})
        self._created_at = created_at or utc_now()
        self._finalized_at = finalized_at
        self._version = version
        if len(self._confirmations) == 2 and self._finalized_at is None:
            self._finalized_at = max(c.confirmed_at for c in self._confirmations.values())

    @property
    def booking_id(self) -> UUID:
        return self._booking_id

    @property
    def handover_type(self) -> HandoverType:
        return self._handover_type

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def finalized_at(self) -> Optional[datetime]:
        return self._finalized_at

    @property
    def version(self) -> int:
        """Get the persisted version this snapshot was loaded at; 0 if never stored."""
        return self._version

    @property
    def state(self) -> SessionState:
        """Get the tagged confirmation state."""
        if len(self._confirmations) == 2:
            return BothConfirmed()
        if len(self._confirmations) == 1:
            return OneConfirmed(next(iter(self._confirmations)))
        return Pending()

    @property
    def is_complete(self) -> bool:
        """Check if both parties have confirmed."""
        return isinstance(self.state, BothConfirmed)

    @property
    def owner_confirmed(self) -> bool:
        return PartyRole.OWNER in self._confirmations

    @property
    def renter_confirmed(self) -> bool:
        return PartyRole.RENTER in self._confirmations

    @property
    def confirmations(self) -> Dict[PartyRole, Confirmation]:
        """Get recorded confirmations by role."""
        return dict(self._confirmations)

    def mark_persisted(self, version: int) -> None:
        """Record the version assigned by the repository on save."""
        self._version = version

    def has_confirmed(self, role: PartyRole) -> bool:
        """Check if a role has already confirmed."""
        return role in self._confirmations

    def confirm(self, role: PartyRole, otp_issued_at: datetime, now: Optional[datetime] = None) -> bool:
        """Record a party's confirmation.

        Returns True only for the call that moves the session into
        ``BothConfirmed``; repeated or late confirmations return False.
        """
        if self.is_complete or role in self._confirmations:
            return False
        now = now or utc_now()
        self._confirmations[role] = Confirmation(role=role, otp_issued_at=otp_issued_at, confirmed_at=now)
        if self.is_complete:
            self._finalized_at = now
            return True
        return False

    def __str__(self) -> str:
        """String representation."""
        return f"HandoverSession({self._booking_id}, {self._handover_type.value}, {type(self.state).__name__})"
