"""Booking service implementing the rental lifecycle use cases."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional
from uuid import UUID

from ..ports.repositories import BookingRepository, UnitOfWork
from .locks import KeyedLocks
from .timeline_projector import TimelineProjector
from ...domain.clock import Clock, utc_now
from ...domain.entities.booking import (
    DEFAULT_PLATFORM_FEE_RATE,
    Booking,
    BookingStatus,
    split_total,
)
from ...domain.exceptions import IllegalTransitionError, NotFoundError, UnauthorizedError
from ...domain.value_objects.late_fee import LateFeePolicy
from ...domain.value_objects.passcode import HandoverType, PartyRole
from ...domain.value_objects.timeline import TimelineEvent
from ...infrastructure.logging import get_logger, log_business_rule_violation, log_state_transition


@dataclass(frozen=True)
class BookingState:
    """Read-side view of a booking with its derived values."""

    booking: Booking
    is_overdue: bool
    late_fee: Decimal
    timeline: List[TimelineEvent]
    can_request_pickup_otp: bool
    can_request_return_otp: bool


class BookingService:
    """Source of truth for booking state and the authority on legal actions.

    Every mutation of a booking runs under that booking's lock, is written
    back with an optimistic version check and is committed before the lock
    is released, so preconditions are evaluated against the snapshot that
    gets persisted.
    """

    def __init__(
        self,
        booking_repository: BookingRepository,
        late_fee_policy: Optional[LateFeePolicy] = None,
        platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE,
        locks: Optional[KeyedLocks] = None,
        timeline_projector: Optional[TimelineProjector] = None,
        unit_of_work: Optional[UnitOfWork] = None,
        clock: Clock = utc_now
    ):
        self._booking_repository = booking_repository
        self._late_fee_policy = late_fee_policy or LateFeePolicy()
        self._platform_fee_rate = platform_fee_rate
        self._locks = locks or KeyedLocks()
        self._timeline_projector = timeline_projector or TimelineProjector()
        self._unit_of_work = unit_of_work
        self._clock = clock
        self._logger = get_logger(__name__)

    def locked(self, booking_id: UUID):
        """Hold a booking's lock while reading it and writing dependent state."""
        return self._locks.acquire(booking_id)

    async def commit(self) -> None:
        """Commit pending writes of this unit of work, if one is configured."""
        if self._unit_of_work is not None:
            await self._unit_of_work.commit()

    @property
    def late_fee_policy(self) -> LateFeePolicy:
        return self._late_fee_policy

    async def request_rental(
        self,
        renter_id: str,
        owner_id: str,
        product_id: str,
        start_date: datetime,
        end_date: datetime,
        total_price: Decimal,
        security_deposit: Decimal = Decimal("0")
    ) -> Booking:
        """Create a rental request on behalf of the renter."""
        platform_fee, owner_amount = split_total(Decimal(total_price), self._platform_fee_rate)
        now = self._clock()
        booking = Booking(
            renter_id=renter_id,
            owner_id=owner_id,
            product_id=product_id,
            start_date=start_date,
            end_date=end_date,
            total_price=Decimal(total_price),
            security_deposit=security_deposit,
            platform_fee=platform_fee,
            owner_amount=owner_amount,
            created_at=now,
            updated_at=now
        )
        saved = await self._booking_repository.add(booking)
        self._logger.info(
            f"Rental requested for product {product_id}",
            extra={"booking_id": str(saved.id), "renter_id": renter_id, "owner_id": owner_id}
        )
        return saved

    async def get_booking(self, booking_id: UUID) -> Booking:
        """Get a booking by ID or raise NotFoundError."""
        booking = await self._booking_repository.find_by_id(booking_id)
        if not booking:
            raise NotFoundError(f"Booking not found: {booking_id}")
        return booking

    async def get_party_bookings(self, user_id: str) -> List[Booking]:
        """Get all bookings where the user is renter or owner."""
        return await self._booking_repository.find_by_party(user_id)

    async def resolve_role(self, booking_id: UUID, caller_id: str) -> PartyRole:
        """Resolve the caller's party role on a booking or raise UnauthorizedError."""
        booking = await self.get_booking(booking_id)
        return self._role_of(booking, caller_id)

    async def get_booking_state(self, booking_id: UUID, now: Optional[datetime] = None) -> BookingState:
        """Get status fields together with overdue, late fee and timeline."""
        booking = await self.get_booking(booking_id)
        now = now or self._clock()
        return BookingState(
            booking=booking,
            is_overdue=self._late_fee_policy.is_overdue(booking, now),
            late_fee=self._late_fee_policy.late_fee(booking, now),
            timeline=self._timeline_projector.project(booking),
            can_request_pickup_otp=booking.can_request_pickup_otp(),
            can_request_return_otp=booking.can_request_return_otp()
        )

    async def accept_request(self, booking_id: UUID, caller_id: str) -> Booking:
        """Owner accepts a rental request."""
        return await self._transition(
            booking_id, "accept",
            lambda booking, now: booking.accept(now),
            required_role=PartyRole.OWNER, caller_id=caller_id
        )

    async def reject_request(self, booking_id: UUID, caller_id: str, reason: Optional[str] = None) -> Booking:
        """Owner rejects a rental request."""
        return await self._transition(
            booking_id, "reject",
            lambda booking, now: booking.reject(reason, now),
            required_role=PartyRole.OWNER, caller_id=caller_id
        )

    async def cancel_request(self, booking_id: UUID, caller_id: str, reason: Optional[str] = None) -> Booking:
        """Renter withdraws a rental request."""
        return await self._transition(
            booking_id, "cancel",
            lambda booking, now: booking.cancel(reason, now),
            required_role=PartyRole.RENTER, caller_id=caller_id
        )

    async def schedule_pickup(self, booking_id: UUID, caller_id: str, pickup_date: datetime) -> Booking:
        """Either party records the agreed pickup date."""
        return await self._transition(
            booking_id, "schedule_pickup",
            lambda booking, now: booking.schedule_pickup(pickup_date, now),
            caller_id=caller_id
        )

    async def confirm_payment(self, booking_id: UUID, gateway_reference: str) -> Booking:
        """Payment provider callback; repeated deliveries leave the booking untouched."""
        async with self._locks.acquire(booking_id):
            booking = await self.get_booking(booking_id)
            changed = booking.confirm_payment(gateway_reference, self._clock())
            if not changed:
                self._logger.info(
                    "Duplicate payment confirmation ignored",
                    extra={
                        "booking_id": str(booking_id),
                        "gateway_reference": gateway_reference,
                        "recorded_reference": booking.payment_reference
                    }
                )
                return booking
            saved = await self._booking_repository.save(booking)
            await self.commit()
            log_state_transition(
                self._logger, str(booking_id), "confirm_payment", "pending", "paid",
                gateway_reference=gateway_reference
            )
            return saved

    async def record_payment_failure(self, booking_id: UUID, reason: Optional[str] = None) -> Booking:
        """Payment provider reported a failed capture."""
        async with self._locks.acquire(booking_id):
            booking = await self.get_booking(booking_id)
            if not booking.mark_payment_failed(reason, self._clock()):
                return booking
            saved = await self._booking_repository.save(booking)
            await self.commit()
            log_state_transition(self._logger, str(booking_id), "payment_failed", "pending", "failed")
            return saved

    async def complete_handover(self, booking_id: UUID, handover_type: HandoverType) -> Booking:
        """Apply the transition for a handover both parties confirmed."""
        if handover_type is HandoverType.PICKUP:
            return await self._transition(
                booking_id, "complete_pickup",
                lambda booking, now: booking.complete_pickup(now)
            )
        return await self._transition(
            booking_id, "complete_return",
            lambda booking, now: booking.complete_return(self._late_fee_policy, now)
        )

    async def admin_override_status(self, booking_id: UUID, new_status: BookingStatus, reason: Optional[str] = None) -> Booking:
        """Administrative status override; only cancellation is supported."""
        return await self._transition(
            booking_id, "admin_override",
            lambda booking, now: booking.override_status(new_status, reason, now)
        )

    async def _transition(
        self,
        booking_id: UUID,
        action: str,
        apply: Callable[[Booking, datetime], None],
        required_role: Optional[PartyRole] = None,
        caller_id: Optional[str] = None
    ) -> Booking:
        async with self._locks.acquire(booking_id):
            booking = await self.get_booking(booking_id)
            if caller_id is not None:
                role = self._role_of(booking, caller_id)
                if required_role is not None and role is not required_role:
                    raise UnauthorizedError(f"Only the {required_role.value} can {action.replace('_', ' ')} this booking")
            from_status = booking.status.value
            try:
                apply(booking, self._clock())
            except IllegalTransitionError as e:
                log_business_rule_violation(self._logger, action, str(e), booking_id=str(booking_id))
                raise
            saved = await self._booking_repository.save(booking)
            await self.commit()
            log_state_transition(self._logger, str(booking_id), action, from_status, saved.status.value)
            return saved

    def _role_of(self, booking: Booking, caller_id: str) -> PartyRole:
        role = booking.party_role(caller_id)
        if role is None:
            raise UnauthorizedError("Caller is not a party to this booking")
        return role
