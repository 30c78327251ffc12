"""SQLAlchemy database models."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, String, DateTime, Integer, Text, Enum as SQLEnum, ForeignKey, Numeric, PrimaryKeyConstraint, Uuid
from sqlalchemy.orm import declarative_base

from rental_handover.domain.entities.booking import (
    BookingStatus,
    DeliveryStatus,
    PaymentStatus,
    PickupStatus,
    ReturnStatus,
)
from rental_handover.domain.value_objects.passcode import HandoverType, PartyRole

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_class):
    return SQLEnum(enum_class, values_callable=lambda obj: [e.value for e in obj], native_enum=False, length=20)


class BookingModel(Base):
    """SQLAlchemy model for bookings."""

    __tablename__ = "bookings"

    id = Column(Uuid, primary_key=True, default=uuid4)

    # Parties and subject
    renter_id = Column(String(64), nullable=False, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    product_id = Column(String(64), nullable=False, index=True)

    # Rental window
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False, index=True)

    # Money
    total_price = Column(Numeric(precision=12, scale=2), nullable=False)
    security_deposit = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    platform_fee = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    owner_amount = Column(Numeric(precision=12, scale=2), nullable=False, default=0)
    late_fee = Column(Numeric(precision=12, scale=2), nullable=False, default=0)

    # Status axes
    status = Column(_enum(BookingStatus), nullable=False, default=BookingStatus.REQUESTED, index=True)
    payment_status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    pickup_status = Column(_enum(PickupStatus), nullable=False, default=PickupStatus.PENDING)
    delivery_status = Column(_enum(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING)
    return_status = Column(_enum(ReturnStatus), nullable=False, default=ReturnStatus.PENDING)

    payment_reference = Column(String(255), nullable=True)
    pickup_date = Column(DateTime(timezone=True), nullable=True)
    delivery_date = Column(DateTime(timezone=True), nullable=True)
    return_date = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(Text, nullable=True)

    # Optimistic concurrency token
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<BookingModel(id={self.id}, product_id='{self.product_id}', status='{self.status}', version={self.version})>"


class HandoverSessionModel(Base):
    """SQLAlchemy model for handover sessions, one per booking and handover type."""

    __tablename__ = "handover_sessions"
    __table_args__ = (PrimaryKeyConstraint("booking_id", "handover_type"),)

    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False)
    handover_type = Column(_enum(HandoverType), nullable=False)

    owner_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    owner_otp_issued_at = Column(DateTime(timezone=True), nullable=True)
    renter_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    renter_otp_issued_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    finalized_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<HandoverSessionModel(booking_id={self.booking_id}, type='{self.handover_type}', finalized_at={self.finalized_at}, version={self.version})>"


class HandoverPasscodeModel(Base):
    """SQLAlchemy model for the current passcode of each (booking, handover, role) slot."""

    __tablename__ = "handover_passcodes"
    __table_args__ = (PrimaryKeyConstraint("booking_id", "handover_type", "role"),)

    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=False)
    handover_type = Column(_enum(HandoverType), nullable=False)
    role = Column(_enum(PartyRole), nullable=False)

    code_hash = Column(String(64), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<HandoverPasscodeModel(booking_id={self.booking_id}, type='{self.handover_type}', role='{self.role}')>"


class UserModel(Base):
    """SQLAlchemy model for contact details of identity-provider users."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<UserModel(id='{self.id}', email='{self.email}')>"
