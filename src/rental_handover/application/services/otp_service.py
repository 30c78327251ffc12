"""Issuing and verifying role-scoped handover passcodes."""

import asyncio
from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from ..ports.repositories import NotificationChannel, PasscodeRepository, UserDirectory
from .booking_service import BookingService
from .handover_coordinator import HandoverCoordinator
from .locks import KeyedLocks
from ...domain.clock import Clock, utc_now
from ...domain.exceptions import (
    DeliveryFailedError,
    ExpiredCodeError,
    IllegalTransitionError,
    InvalidCodeError,
)
from ...domain.value_objects.passcode import (
    HandoverType,
    OtpIssueReceipt,
    PartyRole,
    PasscodeGenerator,
    PasscodeMessage,
    VerifyResult,
)
from ...infrastructure.logging import get_logger, log_business_rule_violation, log_handover_event


class OtpService:
    """Generates, delivers and verifies passcodes bound to (booking, handover, role).

    The code is only ever handed to the notification channel. Issuing stores
    the code before delivery is attempted, so a failed or slow delivery is
    reported on the receipt without invalidating the code.
    """

    def __init__(
        self,
        booking_service: BookingService,
        coordinator: HandoverCoordinator,
        passcode_repository: PasscodeRepository,
        user_directory: UserDirectory,
        notification_channel: NotificationChannel,
        generator: Optional[PasscodeGenerator] = None,
        locks: Optional[KeyedLocks] = None,
        delivery_timeout_seconds: float = 5.0,
        clock: Clock = utc_now
    ):
        self._booking_service = booking_service
        self._coordinator = coordinator
        self._passcode_repository = passcode_repository
        self._user_directory = user_directory
        self._notification_channel = notification_channel
        self._generator = generator or PasscodeGenerator()
        self._locks = locks or KeyedLocks()
        self._delivery_timeout_seconds = delivery_timeout_seconds
        self._clock = clock
        self._logger = get_logger(__name__)

    async def issue(self, booking_id: UUID, handover_type: HandoverType, role: PartyRole) -> OtpIssueReceipt:
        """Issue a fresh passcode for one party, replacing any earlier one.

        The readiness check and the stored code share the booking lock, so a
        transition racing the request either lands first and refuses it or
        waits until the code is committed.
        """
        async with self._booking_service.locked(booking_id):
            booking = await self._booking_service.get_booking(booking_id)
            if not booking.can_request_otp(handover_type):
                log_business_rule_violation(
                    self._logger, f"request_{handover_type.value}_otp",
                    f"booking status {booking.status.value}, payment {booking.payment_status.value}",
                    booking_id=str(booking_id)
                )
                raise IllegalTransitionError(
                    f"Booking is not ready for {handover_type.value} verification "
                    f"(status: {booking.status.value}, payment: {booking.payment_status.value})"
                )

            await self._coordinator.get_or_create_session(booking_id, handover_type)

            async with self._locks.acquire((booking_id, handover_type, role)):
                code, passcode = self._generator.issue(booking_id, handover_type, role, self._clock())
                await self._passcode_repository.replace(passcode)
                await self._booking_service.commit()
        log_handover_event(self._logger, str(booking_id), handover_type.value, role.value, "otp_issued",
                           expires_at=passcode.expires_at.isoformat())

        delivered, delivery_error = await self._deliver(
            booking.party_id(role), role, booking_id, handover_type, code, passcode.expires_at
        )
        return OtpIssueReceipt(
            booking_id=booking_id,
            handover_type=handover_type,
            role=role,
            expires_at=passcode.expires_at,
            delivered=delivered,
            delivery_error=delivery_error
        )

    async def verify(self, booking_id: UUID, handover_type: HandoverType, role: PartyRole, submitted_code: str) -> VerifyResult:
        """Verify a submitted passcode and record the party's confirmation."""
        await self._booking_service.get_booking(booking_id)

        async with self._locks.acquire((booking_id, handover_type, role)):
            passcode = await self._passcode_repository.find(booking_id, handover_type, role)
            if passcode is None:
                log_handover_event(self._logger, str(booking_id), handover_type.value, role.value, "otp_missing")
                raise InvalidCodeError("No active passcode; request a new one")
            if passcode.is_expired(self._clock()):
                log_handover_event(self._logger, str(booking_id), handover_type.value, role.value, "otp_expired")
                raise ExpiredCodeError("Passcode has expired; request a new one")
            if not passcode.matches(submitted_code):
                log_handover_event(self._logger, str(booking_id), handover_type.value, role.value, "otp_rejected")
                raise InvalidCodeError("Invalid passcode")
            await self._passcode_repository.consume(booking_id, handover_type, role)

        log_handover_event(self._logger, str(booking_id), handover_type.value, role.value, "otp_accepted")
        both_confirmed = await self._coordinator.record_confirmation(
            booking_id, handover_type, role, passcode.issued_at
        )
        return VerifyResult(accepted=True, both_confirmed=both_confirmed)

    async def _deliver(
        self,
        party_id: str,
        role: PartyRole,
        booking_id: UUID,
        handover_type: HandoverType,
        code: str,
        expires_at: datetime
    ) -> Tuple[bool, Optional[str]]:
        try:
            email = await self._user_directory.get_email(party_id)
            if not email:
                raise DeliveryFailedError(f"No email address registered for {role.value}")
            message = PasscodeMessage(
                recipient_email=email,
                role=role,
                booking_id=booking_id,
                handover_type=handover_type,
                code=code,
                expires_at=expires_at
            )
            await asyncio.wait_for(self._notification_channel.send(message), timeout=self._delivery_timeout_seconds)
        except DeliveryFailedError as e:
            return self._delivery_failed(booking_id, handover_type, role, str(e))
        except asyncio.TimeoutError:
            return self._delivery_failed(
                booking_id, handover_type, role,
                f"Delivery timed out after {self._delivery_timeout_seconds}s"
            )
        return True, None

    def _delivery_failed(self, booking_id: UUID, handover_type: HandoverType, role: PartyRole, error: str) -> Tuple[bool, str]:
        self._logger.warning(
            "Passcode issued but delivery failed",
            extra={
                "booking_id": str(booking_id),
                "handover_type": handover_type.value,
                "party_role": role.value,
                "delivery_error": error
            }
        )
        return False, error
