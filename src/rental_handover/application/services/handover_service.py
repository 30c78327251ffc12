"""Caller-facing handover operations with party authorization."""

from uuid import UUID

from .booking_service import BookingService
from .otp_service import OtpService
from ...domain.value_objects.passcode import HandoverType, OtpIssueReceipt, VerifyResult


class HandoverService:
    """Resolves the caller's role on the booking before delegating to the OTP service.

    Role is never taken from the client: the caller's identity is matched
    against the booking's owner and renter.
    """

    def __init__(self, booking_service: BookingService, otp_service: OtpService):
        self._booking_service = booking_service
        self._otp_service = otp_service

    async def request_handover_otp(self, booking_id: UUID, handover_type: HandoverType, caller_id: str) -> OtpIssueReceipt:
        """Send the caller a passcode for a pickup or return handover."""
        role = await self._booking_service.resolve_role(booking_id, caller_id)
        return await self._otp_service.issue(booking_id, handover_type, role)

    async def submit_handover_otp(self, booking_id: UUID, handover_type: HandoverType, caller_id: str, code: str) -> VerifyResult:
        """Verify the caller's passcode for a pickup or return handover."""
        role = await self._booking_service.resolve_role(booking_id, caller_id)
        return await self._otp_service.verify(booking_id, handover_type, role, code)
