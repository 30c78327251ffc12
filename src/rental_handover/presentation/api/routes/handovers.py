"""Handover passcode endpoints.

Each party requests its own passcode and submits it at the physical
handover. The caller's role is resolved from the booking, never from the
request.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Path

from ....domain.value_objects.passcode import HandoverType
from ....infrastructure.services import ServiceFactory, get_service_factory
from ..middleware.auth import CallerIdentity, auth_required
from ..schemas.booking_schemas import OtpIssueResponse, OtpVerifyRequest, OtpVerifyResponse

router = APIRouter()


@router.post("/{booking_id}/handovers/{handover_type}/otp")
async def request_handover_otp(
    booking_id: UUID = Path(..., description="Booking ID"),
    handover_type: HandoverType = Path(..., description="pickup or return"),
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> OtpIssueResponse:
    """Send the caller a fresh passcode for this handover."""
    async with factory.get_handover_service() as handover_service:
        receipt = await handover_service.request_handover_otp(booking_id, handover_type, caller.user_id)
    return OtpIssueResponse.from_receipt(receipt)


@router.post("/{booking_id}/handovers/{handover_type}/verify")
async def verify_handover_otp(
    request: OtpVerifyRequest,
    booking_id: UUID = Path(..., description="Booking ID"),
    handover_type: HandoverType = Path(..., description="pickup or return"),
    caller: CallerIdentity = Depends(auth_required),
    factory: ServiceFactory = Depends(get_service_factory)
) -> OtpVerifyResponse:
    """Submit the caller's passcode; the handover completes once both parties have."""
    async with factory.get_handover_service() as handover_service:
        result = await handover_service.submit_handover_otp(
            booking_id, handover_type, caller.user_id, request.code
        )
    return OtpVerifyResponse.from_result(result)
