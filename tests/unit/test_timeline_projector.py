"""Unit tests for the booking timeline projection."""

from datetime import timedelta
from decimal import Decimal

from rental_handover.application.services.timeline_projector import TimelineProjector
from rental_handover.domain.entities.booking import (
    BookingStatus,
    DeliveryStatus,
    PaymentStatus,
    PickupStatus,
    ReturnStatus,
)
from rental_handover.domain.value_objects.timeline import TimelineEventStatus


def event_types(events):
    return [event.event_type for event in events]


class TestTimelineProjector:
    """Test cases for TimelineProjector."""

    def test_requested_booking(self, make_booking):
        events = TimelineProjector().project(make_booking())

        assert event_types(events) == ["booking_created", "payment_pending"]
        assert events[1].is_pending
        assert events[1].status == TimelineEventStatus.PENDING

    def test_rejected_booking_has_no_pending_payment(self, make_booking):
        events = TimelineProjector().project(make_booking(status=BookingStatus.REJECTED))

        assert event_types(events) == ["booking_created"]

    def test_paid_booking_ready_for_pickup(self, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.PAID)

        events = TimelineProjector().project(booking)

        assert event_types(events) == ["booking_created", "payment_completed", "pickup_pending"]
        assert events[1].description == "₹1000 paid successfully"
        assert events[1].timestamp == booking.updated_at

    def test_payment_failed(self, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.FAILED)

        events = TimelineProjector().project(booking)

        assert event_types(events) == ["booking_created", "payment_failed"]
        assert events[-1].status == TimelineEventStatus.FAILED

    def test_scheduled_pickup_without_date_reads_pending(self, make_booking):
        booking = make_booking(
            status=BookingStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            pickup_status=PickupStatus.SCHEDULED
        )

        events = TimelineProjector().project(booking)

        assert events[-1].event_type == "pickup_scheduled"
        assert events[-1].description == "Scheduled for pending"
        assert events[-1].timestamp is None

    def test_active_rental(self, make_booking):
        booking = make_booking(
            status=BookingStatus.IN_RENTAL,
            payment_status=PaymentStatus.PAID,
            pickup_status=PickupStatus.COMPLETED,
            delivery_status=DeliveryStatus.DELIVERED,
            delivery_date=make_booking().start_date
        )

        events = TimelineProjector().project(booking)

        assert "rental_active" in event_types(events)
        assert events[-1].event_type == "return_due"
        assert events[-1].description == "Expected return: 2025-03-04"
        assert events[-1].status == TimelineEventStatus.UPCOMING

    def test_completed_late_rental_is_ordered(self, make_booking):
        """Dated events are sorted by timestamp; undated events come last."""
        start = make_booking().start_date
        booking = make_booking(
            status=BookingStatus.COMPLETED,
            payment_status=PaymentStatus.PAID,
            pickup_status=PickupStatus.COMPLETED,
            delivery_status=DeliveryStatus.DELIVERED,
            return_status=ReturnStatus.LATE,
            late_fee=Decimal("150.00"),
            delivery_date=start,
            return_date=start + timedelta(days=5),
            updated_at=start + timedelta(days=5)
        )

        events = TimelineProjector().project(booking)
        timestamps = [event.timestamp for event in events if event.timestamp is not None]

        assert timestamps == sorted(timestamps)
        assert event_types(events) == [
            "booking_created", "pickup_completed", "payment_completed", "return_late", "booking_completed"
        ]
        late = next(event for event in events if event.event_type == "return_late")
        assert late.description == "Late fee: ₹150.00"
        assert late.status == TimelineEventStatus.OVERDUE

    def test_projection_is_deterministic(self, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.PAID)
        projector = TimelineProjector()

        assert projector.project(booking) == projector.project(booking)

    def test_undated_events_sort_last(self, make_booking):
        booking = make_booking(
            status=BookingStatus.CONFIRMED,
            payment_status=PaymentStatus.FAILED,
            created_at=make_booking().start_date + timedelta(days=30)
        )

        events = TimelineProjector().project(booking)

        assert events[0].timestamp is not None
        assert events[-1].timestamp is None

    def test_custom_currency(self, make_booking):
        booking = make_booking(status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.PAID)

        events = TimelineProjector(currency_symbol="$").project(booking)

        assert events[1].description == "$1000 paid successfully"
