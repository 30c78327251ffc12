"""SQLAlchemy repository implementations."""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rental_handover.application.ports.repositories import (
    BookingRepository,
    HandoverSessionRepository,
    PasscodeRepository,
    UnitOfWork,
    UserDirectory,
)
from rental_handover.domain.clock import ensure_utc
from rental_handover.domain.entities.booking import Booking
from rental_handover.domain.entities.handover_session import Confirmation, HandoverSession
from rental_handover.domain.exceptions import ConcurrentModificationError
from rental_handover.domain.value_objects.passcode import HandoverType, OneTimePasscode, PartyRole
from rental_handover.infrastructure.database.models import (
    BookingModel,
    HandoverPasscodeModel,
    HandoverSessionModel,
    UserModel,
)
from rental_handover.infrastructure.logging import get_logger, log_database_operation


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value else None


class SQLAlchemyBookingRepository(BookingRepository):
    """SQLAlchemy implementation of booking repository."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._logger = get_logger(__name__)

    async def add(self, booking: Booking) -> Booking:
        """Insert a new booking."""
        log_database_operation(self._logger, "INSERT", "bookings", booking_id=str(booking.id))
        model = BookingModel(id=booking.id, version=1, **self._entity_values(booking))
        self._session.add(model)
        await self._session.flush()
        booking.mark_persisted(1)
        return booking

    async def save(self, booking: Booking) -> Booking:
        """Update a booking if its stored version still matches."""
        log_database_operation(
            self._logger, "UPDATE", "bookings",
            booking_id=str(booking.id), expected_version=booking.version
        )
        stmt = (
            update(BookingModel)
            .where(BookingModel.id == booking.id, BookingModel.version == booking.version)
            .values(version=booking.version + 1, **self._entity_values(booking))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            current = await self._session.scalar(select(BookingModel.version).where(BookingModel.id == booking.id))
            if current is None:
                return await self.add(booking)
            raise ConcurrentModificationError(
                f"Booking {booking.id} was modified concurrently",
                expected_version=booking.version,
                actual_version=current
            )
        booking.mark_persisted(booking.version + 1)
        return booking

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID."""
        stmt = select(BookingModel).where(BookingModel.id == booking_id).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()

        if not model:
            return None

        return self._model_to_entity(model)

    async def find_by_party(self, user_id: str) -> List[Booking]:
        """Find all bookings for a renter or owner, newest first."""
        stmt = select(BookingModel).where(
            or_(BookingModel.renter_id == user_id, BookingModel.owner_id == user_id)
        ).order_by(BookingModel.created_at.desc())

        result = await self._session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]

    @staticmethod
    def _entity_values(booking: Booking) -> Dict[str, object]:
        return {
            "renter_id": booking.renter_id,
            "owner_id": booking.owner_id,
            "product_id": booking.product_id,
            "start_date": booking.start_date,
            "end_date": booking.end_date,
            "total_price": booking.total_price,
            "security_deposit": booking.security_deposit,
            "platform_fee": booking.platform_fee,
            "owner_amount": booking.owner_amount,
            "late_fee": booking.late_fee,
            "status": booking.status,
            "payment_status": booking.payment_status,
            "pickup_status": booking.pickup_status,
            "delivery_status": booking.delivery_status,
            "return_status": booking.return_status,
            "payment_reference": booking.payment_reference,
            "pickup_date": booking.pickup_date,
            "delivery_date": booking.delivery_date,
            "return_date": booking.return_date,
            "cancel_reason": booking.cancel_reason,
            "created_at": booking.created_at,
            "updated_at": booking.updated_at,
        }

    @staticmethod
    def _model_to_entity(model: BookingModel) -> Booking:
        return Booking(
            booking_id=model.id,
            renter_id=model.renter_id,
            owner_id=model.owner_id,
            product_id=model.product_id,
            start_date=model.start_date,
            end_date=model.end_date,
            total_price=model.total_price,
            security_deposit=model.security_deposit,
            platform_fee=model.platform_fee,
            owner_amount=model.owner_amount,
            late_fee=model.late_fee,
            status=model.status,
            payment_status=model.payment_status,
            pickup_status=model.pickup_status,
            delivery_status=model.delivery_status,
            return_status=model.return_status,
            payment_reference=model.payment_reference,
            pickup_date=model.pickup_date,
            delivery_date=model.delivery_date,
            return_date=model.return_date,
            cancel_reason=model.cancel_reason,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at
        )


class SQLAlchemyHandoverSessionRepository(HandoverSessionRepository):
    """SQLAlchemy implementation of handover session repository."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._logger = get_logger(__name__)

    async def find(self, booking_id: UUID, handover_type: HandoverType) -> Optional[HandoverSession]:
        """Find the session for a booking's handover, bypassing stale identity-map rows."""
        stmt = (
            select(HandoverSessionModel)
            .where(HandoverSessionModel.booking_id == booking_id, HandoverSessionModel.handover_type == handover_type)
            .execution_options(populate_existing=True)
        )
        model = await self._session.scalar(stmt)
        if not model:
            return None
        return self._model_to_entity(model)

    async def save(self, session: HandoverSession) -> HandoverSession:
        """Insert a new session or update one whose stored version still matches."""
        if session.version == 0:
            return await self._insert(session)

        log_database_operation(
            self._logger, "UPDATE", "handover_sessions",
            booking_id=str(session.booking_id), handover_type=session.handover_type.value,
            expected_version=session.version
        )
        stmt = (
            update(HandoverSessionModel)
            .where(
                HandoverSessionModel.booking_id == session.booking_id,
                HandoverSessionModel.handover_type == session.handover_type,
                HandoverSessionModel.version == session.version
            )
            .values(version=session.version + 1, **self._confirmation_values(session))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrentModificationError(
                f"{session.handover_type.value} handover session of booking {session.booking_id} was modified concurrently",
                expected_version=session.version
            )
        session.mark_persisted(session.version + 1)
        return session

    async def _insert(self, session: HandoverSession) -> HandoverSession:
        log_database_operation(
            self._logger, "INSERT", "handover_sessions",
            booking_id=str(session.booking_id), handover_type=session.handover_type.value
        )
        model = HandoverSessionModel(
            booking_id=session.booking_id,
            handover_type=session.handover_type,
            created_at=session.created_at,
            version=1,
            **self._confirmation_values(session)
        )
        # Savepoint keeps the outer transaction usable when another writer inserted first
        try:
            async with self._session.begin_nested():
                self._session.add(model)
        except IntegrityError as e:
            raise ConcurrentModificationError(
                f"{session.handover_type.value} handover session of booking {session.booking_id} already exists",
                expected_version=0
            ) from e
        session.mark_persisted(1)
        return session

    @staticmethod
    def _confirmation_values(session: HandoverSession) -> Dict[str, Optional[datetime]]:
        owner = session.confirmations.get(PartyRole.OWNER)
        renter = session.confirmations.get(PartyRole.RENTER)
        return {
            "owner_confirmed_at": owner.confirmed_at if owner else None,
            "owner_otp_issued_at": owner.otp_issued_at if owner else None,
            "renter_confirmed_at": renter.confirmed_at if renter else None,
            "renter_otp_issued_at": renter.otp_issued_at if renter else None,
            "finalized_at": session.finalized_at,
        }

    @staticmethod
    def _model_to_entity(model: HandoverSessionModel) -> HandoverSession:
        confirmations = {}
        if model.owner_confirmed_at:
            confirmations[PartyRole.OWNER] = Confirmation(
                role=PartyRole.OWNER,
                otp_issued_at=_utc(model.owner_otp_issued_at or model.owner_confirmed_at),
                confirmed_at=_utc(model.owner_confirmed_at)
            )
        if model.renter_confirmed_at:
            confirmations[PartyRole.RENTER] = Confirmation(
                role=PartyRole.RENTER,
                otp_issued_at=_utc(model.renter_otp_issued_at or model.renter_confirmed_at),
                confirmed_at=_utc(model.renter_confirmed_at)
            )
        return HandoverSession(
            booking_id=model.booking_id,
            handover_type=model.handover_type,
            confirmations=confirmations,
            created_at=_utc(model.created_at),
            finalized_at=_utc(model.finalized_at),
            version=model.version
        )


class SQLAlchemyPasscodeRepository(PasscodeRepository):
    """SQLAlchemy implementation of passcode repository."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._logger = get_logger(__name__)

    async def replace(self, passcode: OneTimePasscode) -> None:
        """Store a passcode, invalidating the previous one for its slot."""
        log_database_operation(
            self._logger, "UPSERT", "handover_passcodes",
            booking_id=str(passcode.booking_id), handover_type=passcode.handover_type.value
        )
        model = await self._session.get(HandoverPasscodeModel, passcode.slot)
        if model is None:
            model = HandoverPasscodeModel(
                booking_id=passcode.booking_id,
                handover_type=passcode.handover_type,
                role=passcode.role
            )
            self._session.add(model)
        model.code_hash = passcode.code_hash
        model.issued_at = passcode.issued_at
        model.expires_at = passcode.expires_at
        await self._session.flush()

    async def find(self, booking_id: UUID, handover_type: HandoverType, role: PartyRole) -> Optional[OneTimePasscode]:
        """Find the current passcode for a slot."""
        model = await self._session.get(HandoverPasscodeModel, (booking_id, handover_type, role))
        if not model:
            return None
        return OneTimePasscode(
            booking_id=model.booking_id,
            handover_type=model.handover_type,
            role=model.role,
            code_hash=model.code_hash,
            issued_at=_utc(model.issued_at),
            expires_at=_utc(model.expires_at)
        )

    async def consume(self, booking_id: UUID, handover_type: HandoverType, role: PartyRole) -> bool:
        """Remove the passcode for a slot."""
        stmt = delete(HandoverPasscodeModel).where(
            HandoverPasscodeModel.booking_id == booking_id,
            HandoverPasscodeModel.handover_type == handover_type,
            HandoverPasscodeModel.role == role
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0


class SQLAlchemyUserDirectory(UserDirectory):
    """SQLAlchemy implementation of the user directory."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_email(self, user_id: str) -> Optional[str]:
        """Get the registered email address of a user."""
        return await self._session.scalar(select(UserModel.email).where(UserModel.id == user_id))


class SQLAlchemyUnitOfWork(UnitOfWork):
    """Commits the request's database session."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._logger = get_logger(__name__)

    async def commit(self) -> None:
        log_database_operation(self._logger, "COMMIT", "*")
        await self._session.commit()
