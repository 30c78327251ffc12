"""Administrative endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Path

from ....infrastructure.logging import get_logger
from ....infrastructure.services import ServiceFactory, get_service_factory
from ..middleware.auth import CallerIdentity, admin_required
from ..schemas.booking_schemas import AdminStatusRequest, BookingResponse

router = APIRouter()
logger = get_logger(__name__)


@router.post("/bookings/{booking_id}/status")
async def override_booking_status(
    request: AdminStatusRequest,
    booking_id: UUID = Path(..., description="Booking ID"),
    admin: CallerIdentity = Depends(admin_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingResponse:
    """Force a booking into cancelled."""
    logger.warning(
        f"Admin status override requested: {request.status.value}",
        extra={"booking_id": str(booking_id), "admin_id": admin.user_id}
    )
    async with factory.get_booking_service() as booking_service:
        booking = await booking_service.admin_override_status(booking_id, request.status, request.reason)
    return BookingResponse.from_entity(booking)
