"""Handover passcode value objects and generation."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
from uuid import UUID
import hashlib
import hmac
import secrets


OTP_LENGTH = 6
OTP_TTL = timedelta(minutes=10)


class HandoverType(Enum):
    """Physical custody transfer events of a booking."""
    PICKUP = "pickup"
    RETURN = "return"


class PartyRole(Enum):
    """The two parties of a booking."""
    OWNER = "owner"
    RENTER = "renter"

    @property
    def counterpart(self) -> "PartyRole":
        """Get the other party's role."""
        return PartyRole.RENTER if self is PartyRole.OWNER else PartyRole.OWNER


def hash_code(code: str) -> str:
    """Digest a passcode for storage."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class OneTimePasscode:
    """A stored passcode bound to one party's confirmation of one handover.

    Only the digest of the code is kept; the clear-text code travels through
    the notification channel and nowhere else.
    """

    booking_id: UUID
    handover_type: HandoverType
    role: PartyRole
    code_hash: str
    issued_at: datetime
    expires_at: datetime

    def __post_init__(self) -> None:
        """Validate passcode data."""
        if self.expires_at <= self.issued_at:
            raise ValueError("Passcode must expire after it is issued")
        if not self.code_hash:
            raise ValueError("Passcode digest cannot be empty")

    @property
    def slot(self) -> Tuple[UUID, HandoverType, PartyRole]:
        """Key under which at most one valid passcode exists."""
        return (self.booking_id, self.handover_type, self.role)

    def is_expired(self, now: datetime) -> bool:
        """Check whether the validity window has passed."""
        return now > self.expires_at

    def matches(self, submitted_code: str) -> bool:
        """Compare a submitted code against the stored digest in constant time."""
        if not submitted_code:
            return False
        return hmac.compare_digest(hash_code(submitted_code.strip()), self.code_hash)


@dataclass(frozen=True)
class OtpIssueReceipt:
    """Acknowledgment returned to the caller of an issue request.

    Never carries the code itself.
    """

    booking_id: UUID
    handover_type: HandoverType
    role: PartyRole
    expires_at: datetime
    delivered: bool
    delivery_error: Optional[str] = None


@dataclass(frozen=True)
class VerifyResult:
    """Outcome of an accepted passcode submission."""

    accepted: bool
    both_confirmed: bool


@dataclass(frozen=True)
class PasscodeMessage:
    """Out-of-band delivery payload for one issued passcode."""

    recipient_email: str
    role: PartyRole
    booking_id: UUID
    handover_type: HandoverType
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class HandoverNotice:
    """Completion notice sent to each party once a handover is finalized."""

    recipient_email: str
    role: PartyRole
    booking_id: UUID
    handover_type: HandoverType
    completed_at: datetime
    late_fee: Decimal = Decimal("0")


class PasscodeGenerator:
    """Service for generating numeric handover passcodes."""

    def __init__(self, length: int = OTP_LENGTH, ttl: timedelta = OTP_TTL):
        if length < 4:
            raise ValueError("Passcode length must be at least 4 digits")
        self.length = length
        self.ttl = ttl

    def generate_code(self) -> str:
        """Generate a random numeric code without a leading zero."""
        low = 10 ** (self.length - 1)
        high = 10 ** self.length
        return str(low + secrets.randbelow(high - low))

    def issue(
        self,
        booking_id: UUID,
        handover_type: HandoverType,
        role: PartyRole,
        now: datetime
    ) -> Tuple[str, OneTimePasscode]:
        """Create a fresh code and the passcode record that stores its digest."""
        code = self.generate_code()
        passcode = OneTimePasscode(
            booking_id=booking_id,
            handover_type=handover_type,
            role=role,
            code_hash=hash_code(code),
            issued_at=now,
            expires_at=now + self.ttl
        )
        return code, passcode
