"""Pydantic schemas for booking and handover API requests and responses."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from ....application.services.booking_service import BookingState
from ....domain.clock import ensure_utc
from ....domain.entities.booking import Booking, BookingStatus
from ....domain.value_objects.passcode import OtpIssueReceipt, VerifyResult
from ....domain.value_objects.timeline import TimelineEvent


class RentalRequest(BaseModel):
    """Request model for creating a rental request as the renter."""
    owner_id: str = Field(..., min_length=1, description="Identity-provider ID of the product owner")
    product_id: str = Field(..., min_length=1, description="Rented product")
    start_date: datetime = Field(..., description="Start of the rental period")
    end_date: datetime = Field(..., description="End of the rental period")
    total_price: Decimal = Field(..., ge=0, description="Total rental price")
    security_deposit: Decimal = Field(default=Decimal("0"), ge=0, description="Refundable deposit")

    @model_validator(mode='after')
    def validate_period(self):
        """Validate that the rental period is not empty."""
        if ensure_utc(self.end_date) <= ensure_utc(self.start_date):
            raise ValueError('End date must be after start date')
        return self


class BookingActionRequest(BaseModel):
    """Request model for reject/cancel actions."""
    reason: Optional[str] = Field(default=None, max_length=500)


class SchedulePickupRequest(BaseModel):
    """Request model for scheduling the pickup handover."""
    pickup_date: datetime


class BookingResponse(BaseModel):
    """Response model for booking operations."""
    id: UUID
    renter_id: str
    owner_id: str
    product_id: str
    start_date: datetime
    end_date: datetime
    total_price: Decimal
    security_deposit: Decimal
    platform_fee: Decimal
    owner_amount: Decimal
    late_fee: Decimal
    status: str
    payment_status: str
    pickup_status: str
    delivery_status: str
    return_status: str
    pickup_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    return_date: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, booking: Booking) -> "BookingResponse":
        """Build the response from a booking entity."""
        return cls(
            id=booking.id,
            renter_id=booking.renter_id,
            owner_id=booking.owner_id,
            product_id=booking.product_id,
            start_date=booking.start_date,
            end_date=booking.end_date,
            total_price=booking.total_price,
            security_deposit=booking.security_deposit,
            platform_fee=booking.platform_fee,
            owner_amount=booking.owner_amount,
            late_fee=booking.late_fee,
            status=booking.status.value,
            payment_status=booking.payment_status.value,
            pickup_status=booking.pickup_status.value,
            delivery_status=booking.delivery_status.value,
            return_status=booking.return_status.value,
            pickup_date=booking.pickup_date,
            delivery_date=booking.delivery_date,
            return_date=booking.return_date,
            cancel_reason=booking.cancel_reason,
            created_at=booking.created_at,
            updated_at=booking.updated_at
        )


class TimelineEventResponse(BaseModel):
    """Response model for one timeline entry."""
    event_type: str
    title: str
    description: str
    status: str
    timestamp: Optional[datetime] = None

    @classmethod
    def from_event(cls, event: TimelineEvent) -> "TimelineEventResponse":
        return cls(
            event_type=event.event_type,
            title=event.title,
            description=event.description,
            status=event.status.value,
            timestamp=event.timestamp
        )


class BookingStateResponse(BaseModel):
    """Booking with its computed overdue flag, late fee and timeline."""
    booking: BookingResponse
    is_overdue: bool
    late_fee: Decimal
    can_request_pickup_otp: bool
    can_request_return_otp: bool
    timeline: List[TimelineEventResponse]

    @classmethod
    def from_state(cls, state: BookingState) -> "BookingStateResponse":
        return cls(
            booking=BookingResponse.from_entity(state.booking),
            is_overdue=state.is_overdue,
            late_fee=state.late_fee,
            can_request_pickup_otp=state.can_request_pickup_otp,
            can_request_return_otp=state.can_request_return_otp,
            timeline=[TimelineEventResponse.from_event(event) for event in state.timeline]
        )


class BookingListResponse(BaseModel):
    """Response model for listing bookings."""
    bookings: List[BookingResponse]
    total_count: int


class OtpIssueResponse(BaseModel):
    """Receipt for an issued passcode; the code itself is only sent out-of-band."""
    booking_id: UUID
    handover_type: str
    role: str
    expires_at: datetime
    delivered: bool
    delivery_error: Optional[str] = None

    @classmethod
    def from_receipt(cls, receipt: OtpIssueReceipt) -> "OtpIssueResponse":
        return cls(
            booking_id=receipt.booking_id,
            handover_type=receipt.handover_type.value,
            role=receipt.role.value,
            expires_at=receipt.expires_at,
            delivered=receipt.delivered,
            delivery_error=receipt.delivery_error
        )


class OtpVerifyRequest(BaseModel):
    """Request model for submitting a handover passcode."""
    code: str = Field(..., min_length=4, max_length=10, description="Numeric passcode")

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        """Validate passcode is numeric."""
        v = v.strip()
        if not v.isdigit():
            raise ValueError('Passcode must contain only digits')
        return v


class OtpVerifyResponse(BaseModel):
    """Response model for a verified passcode."""
    accepted: bool
    both_confirmed: bool

    @classmethod
    def from_result(cls, result: VerifyResult) -> "OtpVerifyResponse":
        return cls(accepted=result.accepted, both_confirmed=result.both_confirmed)


class PaymentWebhookRequest(BaseModel):
    """Payment provider callback for a captured payment."""
    booking_id: UUID
    gateway_reference: str = Field(..., min_length=1)


class PaymentFailureRequest(BaseModel):
    """Payment provider callback for a failed payment."""
    booking_id: UUID
    reason: Optional[str] = None


class AdminStatusRequest(BaseModel):
    """Administrative status override."""
    status: BookingStatus
    reason: Optional[str] = Field(default=None, max_length=500)
