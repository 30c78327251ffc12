"""Notification channel implementations for passcodes and handover notices."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from rental_handover.application.ports.repositories import NotificationChannel
from rental_handover.domain.exceptions import DeliveryFailedError
from rental_handover.domain.value_objects.passcode import HandoverNotice, HandoverType, PasscodeMessage
from rental_handover.infrastructure.logging import get_logger

logger = get_logger(__name__)


def render_subject(message: PasscodeMessage) -> str:
    """Email subject for a passcode message."""
    action = "Pickup" if message.handover_type is HandoverType.PICKUP else "Return"
    return f"{action} verification code for booking {message.booking_id}"


def render_body(message: PasscodeMessage) -> str:
    """Plain-text email body for a passcode message."""
    action = "pickup" if message.handover_type is HandoverType.PICKUP else "return"
    return (
        f"Your {action} verification code is {message.code}.\n"
        f"Share it only at the {action} of the rented item. "
        f"It expires at {message.expires_at.strftime('%Y-%m-%d %H:%M UTC')}."
    )


def render_notice_subject(notice: HandoverNotice) -> str:
    if notice.handover_type is HandoverType.PICKUP:
        return f"Pickup confirmed for booking {notice.booking_id}"
    return f"Item returned for booking {notice.booking_id}"


def render_notice_body(notice: HandoverNotice) -> str:
    """Plain-text email body for a completion notice."""
    when = notice.completed_at.strftime('%Y-%m-%d %H:%M UTC')
    if notice.handover_type is HandoverType.PICKUP:
        return f"Both parties confirmed the pickup at {when}. The rental is now in progress."
    body = f"Both parties confirmed the return at {when}. The rental is complete."
    if notice.late_fee > Decimal("0"):
        body += f"\nA late fee of {notice.late_fee} was charged for the late return."
    return body


class HttpNotificationChannel(NotificationChannel):
    """Delivers emails through an HTTP email relay."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    async def send(self, message: PasscodeMessage) -> None:
        """POST the passcode email to the relay."""
        await self._post({
            "to": message.recipient_email,
            "subject": render_subject(message),
            "body": render_body(message),
            "metadata": {
                "booking_id": str(message.booking_id),
                "handover_type": message.handover_type.value,
                "role": message.role.value,
            },
        })

    async def send_notice(self, notice: HandoverNotice) -> None:
        """POST the completion email to the relay."""
        await self._post({
            "to": notice.recipient_email,
            "subject": render_notice_subject(notice),
            "body": render_notice_body(notice),
            "metadata": {
                "booking_id": str(notice.booking_id),
                "handover_type": notice.handover_type.value,
                "role": notice.role.value,
                "late_fee": str(notice.late_fee),
            },
        })

    async def _post(self, payload: Dict[str, Any]) -> None:
        """Any transport or HTTP error becomes DeliveryFailedError."""
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            if self._client is not None:
                response = await self._client.post(f"{self._base_url}/emails", json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(f"{self._base_url}/emails", json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryFailedError(f"Email relay responded with {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise DeliveryFailedError(f"Email relay unreachable: {e}") from e


class LoggingNotificationChannel(NotificationChannel):
    """Development channel that records messages instead of sending them."""

    def __init__(self):
        self.sent: List[PasscodeMessage] = []
        self.notices: List[HandoverNotice] = []

    async def send(self, message: PasscodeMessage) -> None:
        """Record the message and log its envelope without the code."""
        self.sent.append(message)
        logger.info(
            f"Passcode email queued for {message.recipient_email}: {render_subject(message)}",
            extra={
                "booking_id": str(message.booking_id),
                "handover_type": message.handover_type.value,
                "party_role": message.role.value
            }
        )

    async def send_notice(self, notice: HandoverNotice) -> None:
        self.notices.append(notice)
        logger.info(
            f"Completion email queued for {notice.recipient_email}: {render_notice_subject(notice)}",
            extra={
                "booking_id": str(notice.booking_id),
                "handover_type": notice.handover_type.value,
                "party_role": notice.role.value
            }
        )

    def last_code_for(self, recipient_email: str) -> Optional[str]:
        """Get the most recent code sent to an address."""
        for message in reversed(self.sent):
            if message.recipient_email == recipient_email:
                return message.code
        return None
