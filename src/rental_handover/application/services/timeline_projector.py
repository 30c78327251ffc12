"""Read-side projection of a booking into an ordered progress timeline."""

from datetime import datetime, timezone
from typing import List, Optional

from ...domain.entities.booking import (
    Booking,
    BookingStatus,
    PaymentStatus,
    PickupStatus,
    ReturnStatus,
)
from ...domain.value_objects.timeline import TimelineEvent, TimelineEventStatus


PENDING_PLACEHOLDER = "pending"
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _format_date(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else PENDING_PLACEHOLDER


class TimelineProjector:
    """Builds the event timeline of a booking from its current field values.

    There is no stored event log: the same booking state always projects to
    the same, identically ordered list. Payment time is approximated by
    ``updated_at`` because the booking does not record when it was paid.
    """

    def __init__(self, currency_symbol: str = "₹"):
        self.currency_symbol = currency_symbol

    def project(self, booking: Booking) -> List[TimelineEvent]:
        """Project a booking into events sorted by timestamp, undated events last."""
        events: List[TimelineEvent] = [
            TimelineEvent(
                event_type="booking_created",
                title="Booking Created",
                description="Rental request submitted",
                status=TimelineEventStatus.COMPLETED,
                timestamp=booking.created_at
            )
        ]

        payment_event = self._payment_event(booking)
        if payment_event:
            events.append(payment_event)

        pickup_event = self._pickup_event(booking)
        if pickup_event:
            events.append(pickup_event)

        if booking.status == BookingStatus.IN_RENTAL:
            events.append(TimelineEvent(
                event_type="rental_active",
                title="Rental Active",
                description=f"Item in use until {_format_date(booking.end_date)}",
                status=TimelineEventStatus.ACTIVE,
                timestamp=booking.start_date
            ))

        return_event = self._return_event(booking)
        if return_event:
            events.append(return_event)

        if booking.status == BookingStatus.COMPLETED:
            events.append(TimelineEvent(
                event_type="booking_completed",
                title="Rental Completed",
                description="Booking successfully completed",
                status=TimelineEventStatus.COMPLETED,
                timestamp=booking.return_date or booking.updated_at
            ))

        return sorted(events, key=lambda event: (event.timestamp is None, event.timestamp or _EARLIEST))

    def _payment_event(self, booking: Booking) -> Optional[TimelineEvent]:
        if booking.payment_status == PaymentStatus.PAID:
            return TimelineEvent(
                event_type="payment_completed",
                title="Payment Completed",
                description=f"{self.currency_symbol}{booking.total_price} paid successfully",
                status=TimelineEventStatus.COMPLETED,
                timestamp=booking.updated_at
            )
        if booking.payment_status == PaymentStatus.FAILED:
            return TimelineEvent(
                event_type="payment_failed",
                title="Payment Failed",
                description="Payment could not be completed",
                status=TimelineEventStatus.FAILED
            )
        if booking.status in (BookingStatus.REJECTED, BookingStatus.CANCELLED):
            return None
        return TimelineEvent(
            event_type="payment_pending",
            title="Payment Pending",
            description="Waiting for payment completion",
            status=TimelineEventStatus.PENDING
        )

    def _pickup_event(self, booking: Booking) -> Optional[TimelineEvent]:
        if booking.pickup_status == PickupStatus.COMPLETED:
            return TimelineEvent(
                event_type="pickup_completed",
                title="Item Picked Up",
                description="Product successfully delivered to renter",
                status=TimelineEventStatus.COMPLETED,
                timestamp=booking.delivery_date
            )
        if booking.pickup_status == PickupStatus.SCHEDULED:
            return TimelineEvent(
                event_type="pickup_scheduled",
                title="Pickup Scheduled",
                description=f"Scheduled for {_format_date(booking.pickup_date)}",
                status=TimelineEventStatus.SCHEDULED,
                timestamp=booking.pickup_date
            )
        if booking.status == BookingStatus.CONFIRMED and booking.payment_status == PaymentStatus.PAID:
            return TimelineEvent(
                event_type="pickup_pending",
                title="Pickup Pending",
                description="Ready for pickup verification",
                status=TimelineEventStatus.PENDING
            )
        return None

    def _return_event(self, booking: Booking) -> Optional[TimelineEvent]:
        if booking.return_status == ReturnStatus.COMPLETED:
            return TimelineEvent(
                event_type="return_completed",
                title="Item Returned",
                description="Product successfully returned to owner",
                status=TimelineEventStatus.COMPLETED,
                timestamp=booking.return_date
            )
        if booking.return_status == ReturnStatus.LATE:
            return TimelineEvent(
                event_type="return_late",
                title="Returned Late",
                description=f"Late fee: {self.currency_symbol}{booking.late_fee}",
                status=TimelineEventStatus.OVERDUE,
                timestamp=booking.return_date or booking.end_date
            )
        if booking.status == BookingStatus.IN_RENTAL:
            return TimelineEvent(
                event_type="return_due",
                title="Return Due",
                description=f"Expected return: {_format_date(booking.end_date)}",
                status=TimelineEventStatus.UPCOMING,
                timestamp=booking.end_date
            )
        return None
