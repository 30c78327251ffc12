"""Booking endpoints for renters and owners."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Path, status

from ....infrastructure.services import ServiceFactory, get_service_factory
from ..middleware.auth import CallerIdentity, auth_required
from ..schemas.booking_schemas import (
    BookingActionRequest,
    BookingListResponse,
    BookingResponse,
    BookingStateResponse,
    RentalRequest,
    SchedulePickupRequest,
    TimelineEventResponse,
)

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def request_rental(
    request: RentalRequest,
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingResponse:
    """Create a rental request; the caller becomes the renter."""
    async with factory.get_booking_service() as booking_service:
        booking = await booking_service.request_rental(
            renter_id=caller.user_id,
            owner_id=request.owner_id,
            product_id=request.product_id,
            start_date=request.start_date,
            end_date=request.end_date,
            total_price=request.total_price,
            security_deposit=request.security_deposit
        )
    return BookingResponse.from_entity(booking)


@router.get("")
async def list_my_bookings(
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingListResponse:
    """List bookings where the caller is renter or owner."""
    async with factory.get_booking_service() as booking_service:
        bookings = await booking_service.get_party_bookings(caller.user_id)
    return BookingListResponse(
        bookings=[BookingResponse.from_entity(booking) for booking in bookings],
        total_count=len(bookings)
    )


@router.get("/{booking_id}")
async def get_booking(
    booking_id: UUID = Path(..., description="Booking ID"),
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingStateResponse:
    """Get booking status with computed overdue flag, late fee and timeline."""
    async with factory.get_booking_service() as booking_service:
        if not caller.is_admin:
            await booking_service.resolve_role(booking_id, caller.user_id)
        state = await booking_service.get_booking_state(booking_id)
    return BookingStateResponse.from_state(state)


@router.get("/{booking_id}/timeline")
async def get_timeline(
    booking_id: UUID = Path(..., description="Booking ID"),
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> List[TimelineEventResponse]:
    """Get the booking's progress timeline, oldest first."""
    async with factory.get_booking_service() as booking_service:
        if not caller.is_admin:
            await booking_service.resolve_role(booking_id, caller.user_id)
        state = await booking_service.get_booking_state(booking_id)
    return [TimelineEventResponse.from_event(event) for event in state.timeline]


@router.post("/{booking_id}/accept")
async def accept_booking(
    booking_id: UUID = Path(..., description="Booking ID"),
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingResponse:
    """Owner accepts a rental request."""
    async with factory.get_booking_service() as booking_service:
        booking = await booking_service.accept_request(booking_id, caller.user_id)
    return BookingResponse.from_entity(booking)


@router.post("/{booking_id}/reject")
async def reject_booking(
    booking_id: UUID = Path(..., description="Booking ID"),
    request: BookingActionRequest = BookingActionRequest(),
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingResponse:
    """Owner rejects a rental request."""
    async with factory.get_booking_service() as booking_service:
        booking = await booking_service.reject_request(booking_id, caller.user_id, request.reason)
    return BookingResponse.from_entity(booking)


@router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: UUID = Path(..., description="Booking ID"),
    request: BookingActionRequest = BookingActionRequest(),
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingResponse:
    """Renter withdraws a rental request."""
    async with factory.get_booking_service() as booking_service:
        booking = await booking_service.cancel_request(booking_id, caller.user_id, request.reason)
    return BookingResponse.from_entity(booking)


@router.post("/{booking_id}/schedule-pickup")
async def schedule_pickup(
    request: SchedulePickupRequest,
    booking_id: UUID = Path(..., description="Booking ID"),
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingResponse:
    """Record the agreed pickup date for a paid booking."""
    async with factory.get_booking_service() as booking_service:
        booking = await booking_service.schedule_pickup(booking_id, caller.user_id, request.pickup_date)
    return BookingResponse.from_entity(booking)
