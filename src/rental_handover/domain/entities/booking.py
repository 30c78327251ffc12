"""Booking entity and its lifecycle state machine."""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from ..clock import ensure_utc, utc_now
from ..exceptions import IllegalTransitionError
from ..value_objects.late_fee import LateFeePolicy, is_overdue
from ..value_objects.passcode import HandoverType, PartyRole


class BookingStatus(Enum):
    """Booking status enumeration."""
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    IN_RENTAL = "in_rental"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class PaymentStatus(Enum):
    """Payment status enumeration."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PickupStatus(Enum):
    """Pickup status enumeration."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"


class DeliveryStatus(Enum):
    """Delivery status enumeration."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"


class ReturnStatus(Enum):
    """Return status enumeration."""
    PENDING = "pending"
    COMPLETED = "completed"
    LATE = "late"


TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED})

DEFAULT_PLATFORM_FEE_RATE = Decimal("0.10")


def split_total(total_price: Decimal, platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE) -> tuple[Decimal, Decimal]:
    """Split a total into the platform fee and the owner's share."""
    platform_fee = (total_price * platform_fee_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return platform_fee, total_price - platform_fee


class Booking:
    """Booking entity representing a rental of one product between two parties.

    Every method that changes state validates its precondition before touching
    any field, so a rejected transition leaves the booking unchanged.
    """

    def __init__(
        self,
        renter_id: str,
        owner_id: str,
        product_id: str,
        start_date: datetime,
        end_date: datetime,
        total_price: Decimal,
        booking_id: Optional[UUID] = None,
        security_deposit: Decimal = Decimal("0"),
        platform_fee: Optional[Decimal] = None,
        owner_amount: Optional[Decimal] = None,
        late_fee: Decimal = Decimal("0"),
        status: BookingStatus = BookingStatus.REQUESTED,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        pickup_status: PickupStatus = PickupStatus.PENDING,
        delivery_status: DeliveryStatus = DeliveryStatus.PENDING,
        return_status: ReturnStatus = ReturnStatus.PENDING,
        payment_reference: Optional[str] = None,
        pickup_date: Optional[datetime] = None,
        delivery_date: Optional[datetime] = None,
        return_date: Optional[datetime] = None,
        cancel_reason: Optional[str] = None,
        version: int = 0,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        """Initialize booking entity."""
        if not renter_id or not owner_id:
            raise ValueError("Booking requires both a renter and an owner")
        if renter_id == owner_id:
            raise ValueError("Owner cannot rent their own product")
        if not product_id:
            raise ValueError("Booking requires a product")
        start_date = ensure_utc(start_date)
        end_date = ensure_utc(end_date)
        if start_date >= end_date:
            raise ValueError("Start date must be before end date")
        total_price = Decimal(total_price)
        if total_price < 0:
            raise ValueError("Total price cannot be negative")
        late_fee = Decimal(late_fee)
        if late_fee < 0:
            raise ValueError("Late fee cannot be negative")
        security_deposit = Decimal(security_deposit)
        if security_deposit < 0:
            raise ValueError("Security deposit cannot be negative")

        if platform_fee is None or owner_amount is None:
            platform_fee, owner_amount = split_total(total_price)

        now = utc_now()
        self._id = booking_id or uuid4()
        self._renter_id = renter_id
        self._owner_id = owner_id
        self._product_id = product_id
        self._start_date = start_date
        self._end_date = end_date
        self._total_price = total_price
        self._security_deposit = security_deposit
        self._platform_fee = Decimal(platform_fee)
        self._owner_amount = Decimal(owner_amount)
        self._late_fee = late_fee
        self._status = status
        self._payment_status = payment_status
        self._pickup_status = pickup_status
        self._delivery_status = delivery_status
        self._return_status = return_status
        self._payment_reference = payment_reference
        self._pickup_date = ensure_utc(pickup_date) if pickup_date else None
        self._delivery_date = ensure_utc(delivery_date) if delivery_date else None
        self._return_date = ensure_utc(return_date) if return_date else None
        self._cancel_reason = cancel_reason
        self._version = version
        self._created_at = ensure_utc(created_at) if created_at else now
        self._updated_at = ensure_utc(updated_at) if updated_at else now

    @property
    def id(self) -> UUID:
        """Get booking ID."""
        return self._id

    @property
    def renter_id(self) -> str:
        """Get renter user ID."""
        return self._renter_id

    @property
    def owner_id(self) -> str:
        """Get owner user ID."""
        return self._owner_id

    @property
    def product_id(self) -> str:
        """Get rented product ID."""
        return self._product_id

    @property
    def start_date(self) -> datetime:
        return self._start_date

    @property
    def end_date(self) -> datetime:
        return self._end_date

    @property
    def total_price(self) -> Decimal:
        return self._total_price

    @property
    def security_deposit(self) -> Decimal:
        return self._security_deposit

    @property
    def platform_fee(self) -> Decimal:
        return self._platform_fee

    @property
    def owner_amount(self) -> Decimal:
        return self._owner_amount

    @property
    def late_fee(self) -> Decimal:
        """Get late fee recorded so far."""
        return self._late_fee

    @property
    def status(self) -> BookingStatus:
        """Get booking status."""
        return self._status

    @property
    def payment_status(self) -> PaymentStatus:
        return self._payment_status

    @property
    def pickup_status(self) -> PickupStatus:
        return self._pickup_status

    @property
    def delivery_status(self) -> DeliveryStatus:
        return self._delivery_status

    @property
    def return_status(self) -> ReturnStatus:
        return self._return_status

    @property
    def payment_reference(self) -> Optional[str]:
        return self._payment_reference

    @property
    def pickup_date(self) -> Optional[datetime]:
        return self._pickup_date

    @property
    def delivery_date(self) -> Optional[datetime]:
        """Get the moment the pickup handover completed."""
        return self._delivery_date

    @property
    def return_date(self) -> Optional[datetime]:
        """Get the moment the return handover completed."""
        return self._return_date

    @property
    def cancel_reason(self) -> Optional[str]:
        return self._cancel_reason

    @property
    def version(self) -> int:
        """Get the persisted version this snapshot was loaded at."""
        return self._version

    @property
    def created_at(self) -> datetime:
        """Get creation timestamp."""
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        """Get last update timestamp."""
        return self._updated_at

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return self._status in TERMINAL_STATUSES

    def mark_persisted(self, version: int) -> None:
        """Record the version assigned by the repository on save."""
        self._version = version

    def party_role(self, user_id: str) -> Optional[PartyRole]:
        """Resolve which party a user is on this booking, if any."""
        if user_id == self._owner_id:
            return PartyRole.OWNER
        if user_id == self._renter_id:
            return PartyRole.RENTER
        return None

    def party_id(self, role: PartyRole) -> str:
        """Get the user ID holding a role."""
        return self._owner_id if role is PartyRole.OWNER else self._renter_id

    def can_request_pickup_otp(self) -> bool:
        """Paid, confirmed and not yet handed over."""
        return (
            self._status == BookingStatus.CONFIRMED
            and self._payment_status == PaymentStatus.PAID
            and self._delivery_status != DeliveryStatus.DELIVERED
        )

    def can_request_return_otp(self) -> bool:
        """Handed over, in rental and not yet returned."""
        return (
            self._status == BookingStatus.IN_RENTAL
            and self._delivery_status == DeliveryStatus.DELIVERED
            and self._return_status != ReturnStatus.COMPLETED
        )

    def can_request_otp(self, handover_type: HandoverType) -> bool:
        """Check the precondition for a handover of the given type."""
        if handover_type is HandoverType.PICKUP:
            return self.can_request_pickup_otp()
        return self.can_request_return_otp()

    def is_overdue(self, now: datetime) -> bool:
        """Check if the rental has run past its end date."""
        return is_overdue(self, now)

    def accept(self, now: Optional[datetime] = None) -> None:
        """Owner accepts the rental request."""
        self._require_status(BookingStatus.REQUESTED, "Only requested bookings can be accepted")
        self._status = BookingStatus.CONFIRMED
        self._touch(now)

    def reject(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """Owner rejects the rental request."""
        self._require_status(BookingStatus.REQUESTED, "Only requested bookings can be rejected")
        self._status = BookingStatus.REJECTED
        self._cancel_reason = reason or "Rejected by owner"
        self._touch(now)

    def cancel(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """Renter withdraws the rental request."""
        self._require_status(BookingStatus.REQUESTED, "Only requested bookings can be cancelled by the renter")
        self._status = BookingStatus.CANCELLED
        self._cancel_reason = reason or "Cancelled by renter"
        self._touch(now)

    def confirm_payment(self, gateway_reference: str, now: Optional[datetime] = None) -> bool:
        """Record a captured payment.

        Returns False without changing anything when the booking is already
        paid, so repeated provider callbacks are harmless.
        """
        if self._payment_status == PaymentStatus.PAID:
            return False
        if not gateway_reference:
            raise ValueError("Gateway reference is required")
        self._require_status(BookingStatus.CONFIRMED, "Payment can only be captured for confirmed bookings")
        self._payment_status = PaymentStatus.PAID
        self._payment_reference = gateway_reference
        self._touch(now)
        return True

    def mark_payment_failed(self, reason: Optional[str] = None, now: Optional[datetime] = None) -> bool:
        """Record a failed payment attempt; a paid booking is left alone."""
        if self._payment_status != PaymentStatus.PENDING:
            return False
        self._require_status(BookingStatus.CONFIRMED, "Payment can only fail for confirmed bookings")
        self._payment_status = PaymentStatus.FAILED
        if reason:
            self._cancel_reason = reason
        self._touch(now)
        return True

    def schedule_pickup(self, pickup_date: datetime, now: Optional[datetime] = None) -> None:
        """Agree on a pickup date ahead of the handover."""
        if not self.can_request_pickup_otp():
            raise IllegalTransitionError("Pickup can only be scheduled for paid, confirmed bookings")
        self._pickup_status = PickupStatus.SCHEDULED
        self._delivery_status = DeliveryStatus.SCHEDULED
        self._pickup_date = ensure_utc(pickup_date)
        self._touch(now)

    def complete_pickup(self, now: Optional[datetime] = None) -> None:
        """Both parties confirmed the pickup handover."""
        if not self.can_request_pickup_otp():
            raise IllegalTransitionError(
                f"Pickup handover cannot complete for booking in status {self._status.value} "
                f"with payment {self._payment_status.value}"
            )
        now = now or utc_now()
        self._delivery_status = DeliveryStatus.DELIVERED
        self._pickup_status = PickupStatus.COMPLETED
        self._status = BookingStatus.IN_RENTAL
        self._delivery_date = now
        self._touch(now)

    def complete_return(self, policy: LateFeePolicy, now: Optional[datetime] = None) -> None:
        """Both parties confirmed the return handover; settles the late fee."""
        if not self.can_request_return_otp():
            raise IllegalTransitionError(
                f"Return handover cannot complete for booking in status {self._status.value}"
            )
        now = now or utc_now()
        late = policy.is_overdue(self, now)
        late_fee = policy.late_fee(self, now)
        self._late_fee = late_fee
        self._return_status = ReturnStatus.LATE if late or self._return_status == ReturnStatus.LATE else ReturnStatus.COMPLETED
        self._return_date = now
        self._status = BookingStatus.COMPLETED
        self._touch(now)

    def override_status(self, new_status: BookingStatus, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
        """Administrative cancellation of a non-terminal booking."""
        if new_status != BookingStatus.CANCELLED:
            raise IllegalTransitionError("Administrators can only force a booking into cancelled")
        if self.is_terminal:
            raise IllegalTransitionError(f"Booking is already {self._status.value}")
        if self._payment_status == PaymentStatus.PAID and self._delivery_status == DeliveryStatus.DELIVERED:
            raise IllegalTransitionError("Paid bookings with a delivered item require a refund adjustment before cancellation")
        self._status = BookingStatus.CANCELLED
        self._cancel_reason = reason or "Cancelled by administrator"
        self._touch(now)

    def _require_status(self, expected: BookingStatus, message: str) -> None:
        if self._status != expected:
            raise IllegalTransitionError(f"{message} (current status: {self._status.value})")

    def _touch(self, now: Optional[datetime]) -> None:
        self._updated_at = now or utc_now()

    def __eq__(self, other: object) -> bool:
        """Check equality based on booking ID."""
        if not isinstance(other, Booking):
            return False
        return self._id == other._id

    def __hash__(self) -> int:
        """Hash based on booking ID."""
        return hash(self._id)

    def __str__(self) -> str:
        """String representation."""
        return f"Booking({self._id}, {self._product_id}, {self._status.value})"
