"""Completion notices for finalized handovers."""

import asyncio
from typing import List

from ..ports.repositories import NotificationChannel, UserDirectory
from ...domain.clock import Clock, utc_now
from ...domain.entities.booking import Booking
from ...domain.exceptions import DeliveryFailedError
from ...domain.value_objects.passcode import HandoverNotice, HandoverType, PartyRole
from ...infrastructure.logging import get_logger


class HandoverNotifier:
    """Tells both parties that a handover completed.

    Notices are best-effort: a missing address, a channel error or a timeout
    is logged and skipped, never undoing the booking transition.
    """

    def __init__(
        self,
        user_directory: UserDirectory,
        notification_channel: NotificationChannel,
        delivery_timeout_seconds: float = 5.0,
        clock: Clock = utc_now
    ):
        self._user_directory = user_directory
        self._notification_channel = notification_channel
        self._delivery_timeout_seconds = delivery_timeout_seconds
        self._clock = clock
        self._logger = get_logger(__name__)

    async def handover_completed(self, booking: Booking, handover_type: HandoverType) -> List[PartyRole]:
        """Send the completion notice to owner and renter; returns the roles reached."""
        if handover_type is HandoverType.PICKUP:
            completed_at = booking.delivery_date
        else:
            completed_at = booking.return_date

        delivered = []
        for role in (PartyRole.OWNER, PartyRole.RENTER):
            try:
                email = await self._user_directory.get_email(booking.party_id(role))
                if not email:
                    raise DeliveryFailedError(f"No email address registered for {role.value}")
                notice = HandoverNotice(
                    recipient_email=email,
                    role=role,
                    booking_id=booking.id,
                    handover_type=handover_type,
                    completed_at=completed_at or self._clock(),
                    late_fee=booking.late_fee
                )
                await asyncio.wait_for(
                    self._notification_channel.send_notice(notice),
                    timeout=self._delivery_timeout_seconds
                )
            except DeliveryFailedError as e:
                self._notice_failed(booking, handover_type, role, str(e))
            except asyncio.TimeoutError:
                self._notice_failed(
                    booking, handover_type, role,
                    f"Delivery timed out after {self._delivery_timeout_seconds}s"
                )
            else:
                delivered.append(role)
        return delivered

    def _notice_failed(self, booking: Booking, handover_type: HandoverType, role: PartyRole, error: str) -> None:
        self._logger.warning(
            "Handover completed but notice not delivered",
            extra={
                "booking_id": str(booking.id),
                "handover_type": handover_type.value,
                "party_role": role.value,
                "delivery_error": error
            }
        )
