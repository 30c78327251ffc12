"""Payment provider callbacks."""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, status

from ....infrastructure.services import ServiceFactory, get_service_factory
from ..config import get_settings
from ..schemas.booking_schemas import BookingResponse, PaymentFailureRequest, PaymentWebhookRequest

router = APIRouter()


def verify_webhook_secret(x_webhook_secret: str = Header(default="")) -> None:
    """Reject callbacks that do not carry the shared webhook secret."""
    expected = get_settings().payment_webhook_secret
    if not hmac.compare_digest(x_webhook_secret.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret"
        )


@router.post("/webhook", dependencies=[Depends(verify_webhook_secret)])
async def payment_captured(
    request: PaymentWebhookRequest,
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingResponse:
    """Mark a confirmed booking as paid; repeated callbacks are no-ops."""
    async with factory.get_booking_service() as booking_service:
        booking = await booking_service.confirm_payment(request.booking_id, request.gateway_reference)
    return BookingResponse.from_entity(booking)


@router.post("/failure", dependencies=[Depends(verify_webhook_secret)])
async def payment_failed(
    request: PaymentFailureRequest,
    factory: ServiceFactory = Depends(get_service_factory)
) -> BookingResponse:
    """Record a failed payment for a confirmed booking."""
    async with factory.get_booking_service() as booking_service:
        booking = await booking_service.record_payment_failure(request.booking_id, request.reason)
    return BookingResponse.from_entity(booking)
