"""Unit tests for SQLAlchemy repositories against a mocked session."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from sqlalchemy.exc import IntegrityError
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from rental_handover.domain.entities.booking import (
    BookingStatus,
    DeliveryStatus,
    PaymentStatus,
    PickupStatus,
    ReturnStatus,
)
from rental_handover.domain.entities.handover_session import HandoverSession
from rental_handover.domain.exceptions import ConcurrentModificationError
from rental_handover.domain.value_objects.passcode import HandoverType, PartyRole
from rental_handover.infrastructure.database.models import BookingModel, HandoverSessionModel
from rental_handover.infrastructure.repositories.sql_repositories import (
    SQLAlchemyBookingRepository,
    SQLAlchemyHandoverSessionRepository,
    SQLAlchemyPasscodeRepository,
    SQLAlchemyUnitOfWork,
    SQLAlchemyUserDirectory,
)

pytestmark = pytest.mark.asyncio

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def session():
    """AsyncSession double."""
    session = MagicMock()
    session.execute = AsyncMock(return_value=MagicMock(rowcount=1))
    session.scalar = AsyncMock(return_value=None)
    session.flush = AsyncMock()
    session.get = AsyncMock(return_value=None)
    return session


class TestSQLAlchemyBookingRepository:
    """Test cases for SQLAlchemyBookingRepository."""

    async def test_add_inserts_model(self, session, make_booking):
        booking = make_booking()

        saved = await SQLAlchemyBookingRepository(session).add(booking)

        model = session.add.call_args.args[0]
        assert isinstance(model, BookingModel)
        assert model.id == booking.id
        assert model.version == 1
        assert model.status == BookingStatus.REQUESTED
        assert saved.version == 1
        session.flush.assert_awaited_once()

    async def test_save_bumps_version(self, session, make_booking):
        booking = make_booking(version=3)

        saved = await SQLAlchemyBookingRepository(session).save(booking)

        assert saved.version == 4
        session.execute.assert_awaited_once()

    async def test_save_stale_version_conflicts(self, session, make_booking):
        session.execute.return_value = MagicMock(rowcount=0)
        session.scalar.return_value = 5
        booking = make_booking(version=3)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await SQLAlchemyBookingRepository(session).save(booking)

        assert exc_info.value.expected_version == 3
        assert exc_info.value.actual_version == 5
        assert booking.version == 3

    async def test_save_unknown_booking_inserts(self, session, make_booking):
        session.execute.return_value = MagicMock(rowcount=0)
        session.scalar.return_value = None

        saved = await SQLAlchemyBookingRepository(session).save(make_booking())

        assert saved.version == 1
        session.add.assert_called_once()

    async def test_model_to_entity_restores_utc(self):
        booking_id = uuid4()
        model = BookingModel(
            id=booking_id,
            renter_id="renter-1",
            owner_id="owner-1",
            product_id="camera-42",
            start_date=datetime(2025, 3, 1, 9, 0),
            end_date=datetime(2025, 3, 4, 9, 0),
            total_price=Decimal("1000.00"),
            security_deposit=Decimal("200.00"),
            platform_fee=Decimal("100.00"),
            owner_amount=Decimal("900.00"),
            late_fee=Decimal("0.00"),
            status=BookingStatus.CONFIRMED,
            payment_status=PaymentStatus.PAID,
            pickup_status=PickupStatus.PENDING,
            delivery_status=DeliveryStatus.PENDING,
            return_status=ReturnStatus.PENDING,
            version=7,
            created_at=datetime(2025, 2, 27, 9, 0),
            updated_at=datetime(2025, 2, 28, 9, 0)
        )
        booking = SQLAlchemyBookingRepository._model_to_entity(model)

        assert booking.id == booking_id
        assert booking.start_date == NOW
        assert booking.version == 7
        assert booking.can_request_pickup_otp()
        assert booking.security_deposit == Decimal("200.00")


class TestSQLAlchemyHandoverSessionRepository:
    """Test cases for SQLAlchemyHandoverSessionRepository."""

    async def test_find_maps_confirmations(self, session):
        booking_id = uuid4()
        session.scalar.return_value = HandoverSessionModel(
            booking_id=booking_id,
            handover_type=HandoverType.PICKUP,
            owner_confirmed_at=datetime(2025, 3, 1, 9, 5),
            owner_otp_issued_at=datetime(2025, 3, 1, 9, 0),
            renter_confirmed_at=None,
            renter_otp_issued_at=None,
            created_at=datetime(2025, 3, 1, 8, 0),
            finalized_at=None,
            version=3
        )

        found = await SQLAlchemyHandoverSessionRepository(session).find(booking_id, HandoverType.PICKUP)

        assert found.owner_confirmed
        assert not found.renter_confirmed
        assert found.confirmations[PartyRole.OWNER].otp_issued_at == NOW
        assert found.confirmations[PartyRole.OWNER].confirmed_at == NOW + timedelta(minutes=5)
        assert found.version == 3

    async def test_find_missing(self, session):
        assert await SQLAlchemyHandoverSessionRepository(session).find(uuid4(), HandoverType.RETURN) is None

    async def test_new_session_inserted_in_savepoint(self, session):
        new = HandoverSession(uuid4(), HandoverType.PICKUP, created_at=NOW)

        saved = await SQLAlchemyHandoverSessionRepository(session).save(new)

        session.begin_nested.assert_called_once()
        model = session.add.call_args.args[0]
        assert model.version == 1
        assert model.finalized_at is None
        assert saved.version == 1

    async def test_duplicate_insert_conflicts(self, session):
        session.add.side_effect = IntegrityError("INSERT INTO handover_sessions", {}, Exception("duplicate key"))

        with pytest.raises(ConcurrentModificationError):
            await SQLAlchemyHandoverSessionRepository(session).save(
                HandoverSession(uuid4(), HandoverType.PICKUP, created_at=NOW)
            )

    async def test_update_bumps_version(self, session):
        stored = HandoverSession(uuid4(), HandoverType.RETURN, created_at=NOW, version=2)
        stored.confirm(PartyRole.RENTER, NOW, NOW)

        saved = await SQLAlchemyHandoverSessionRepository(session).save(stored)

        assert saved.version == 3
        session.execute.assert_awaited_once()

    async def test_stale_update_conflicts(self, session):
        session.execute.return_value = MagicMock(rowcount=0)
        stale = HandoverSession(uuid4(), HandoverType.PICKUP, created_at=NOW, version=1)
        stale.confirm(PartyRole.OWNER, NOW, NOW)

        with pytest.raises(ConcurrentModificationError) as exc:
            await SQLAlchemyHandoverSessionRepository(session).save(stale)

        assert exc.value.expected_version == 1
        assert stale.version == 1


class TestSQLAlchemyUnitOfWork:
    """Test cases for SQLAlchemyUnitOfWork."""

    async def test_commit(self, session):
        session.commit = AsyncMock()

        await SQLAlchemyUnitOfWork(session).commit()

        session.commit.assert_awaited_once()


class TestSQLAlchemyPasscodeRepository:
    """Test cases for SQLAlchemyPasscodeRepository."""

    async def test_consume_reports_deleted_row(self, session):
        repository = SQLAlchemyPasscodeRepository(session)

        assert await repository.consume(uuid4(), HandoverType.PICKUP, PartyRole.OWNER) is True

        session.execute.return_value = MagicMock(rowcount=0)
        assert await repository.consume(uuid4(), HandoverType.PICKUP, PartyRole.OWNER) is False


class TestSQLAlchemyUserDirectory:
    """Test cases for SQLAlchemyUserDirectory."""

    async def test_get_email(self, session):
        session.scalar.return_value = "owner@example.com"

        assert await SQLAlchemyUserDirectory(session).get_email("owner-1") == "owner@example.com"
