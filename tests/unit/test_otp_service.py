"""Unit tests for issuing and verifying handover passcodes."""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

from rental_handover.application.services.otp_service import OtpService
from rental_handover.domain.entities.booking import BookingStatus, DeliveryStatus, ReturnStatus
from rental_handover.domain.exceptions import (
    DeliveryFailedError,
    ExpiredCodeError,
    IllegalTransitionError,
    InvalidCodeError,
    NotFoundError,
    UnauthorizedError,
)
from rental_handover.domain.value_objects.passcode import HandoverType, PartyRole

pytestmark = pytest.mark.asyncio

OWNER_ID = "owner-1"
RENTER_ID = "renter-1"
OWNER_EMAIL = "owner@example.com"
RENTER_EMAIL = "renter@example.com"
OTP_MINUTES = timedelta(minutes=10)
ONE_DAY = timedelta(days=1)


def otp_service_with_channel(wiring, channel, timeout: float = 5.0) -> OtpService:
    return OtpService(
        booking_service=wiring.booking_service,
        coordinator=wiring.coordinator,
        passcode_repository=wiring.passcodes,
        user_directory=wiring.users,
        notification_channel=channel,
        delivery_timeout_seconds=timeout,
        clock=wiring.clock
    )


async def confirm(wiring, booking_id, handover_type, role):
    email = OWNER_EMAIL if role is PartyRole.OWNER else RENTER_EMAIL
    await wiring.otp_service.issue(booking_id, handover_type, role)
    code = wiring.channel.last_code_for(email)
    return await wiring.otp_service.verify(booking_id, handover_type, role, code)


class TestIssue:
    """Test cases for OtpService.issue."""

    async def test_code_sent_only_to_the_role(self, wiring, paid_booking):
        receipt = await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)

        assert receipt.delivered
        assert receipt.role is PartyRole.OWNER
        assert receipt.expires_at == wiring.clock() + OTP_MINUTES
        assert [message.recipient_email for message in wiring.channel.sent] == [OWNER_EMAIL]
        assert not hasattr(receipt, "code")

    async def test_issue_opens_session(self, wiring, paid_booking):
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)

        session = await wiring.coordinator.get_session(paid_booking.id, HandoverType.PICKUP)
        assert not session.is_complete

    async def test_unpaid_booking_is_refused_without_session(self, wiring):
        """Pickup passcodes require a paid booking; no session is opened."""
        booking = await wiring.booking_service.request_rental(
            renter_id=RENTER_ID, owner_id=OWNER_ID, product_id="tent-3",
            start_date=wiring.clock(), end_date=wiring.clock() + ONE_DAY, total_price=100
        )
        await wiring.booking_service.accept_request(booking.id, OWNER_ID)

        with pytest.raises(IllegalTransitionError):
            await wiring.otp_service.issue(booking.id, HandoverType.PICKUP, PartyRole.OWNER)

        with pytest.raises(NotFoundError):
            await wiring.coordinator.get_session(booking.id, HandoverType.PICKUP)
        assert wiring.channel.sent == []

    async def test_return_before_pickup_is_refused(self, wiring, paid_booking):
        with pytest.raises(IllegalTransitionError):
            await wiring.otp_service.issue(paid_booking.id, HandoverType.RETURN, PartyRole.RENTER)

    async def test_unknown_booking(self, wiring):
        with pytest.raises(NotFoundError):
            await wiring.otp_service.issue(uuid4(), HandoverType.PICKUP, PartyRole.OWNER)

    async def test_delivery_failure_keeps_code_valid(self, wiring, paid_booking):
        channel = AsyncMock()
        channel.send.side_effect = DeliveryFailedError("relay down")
        service = otp_service_with_channel(wiring, channel)

        receipt = await service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)

        assert not receipt.delivered
        assert receipt.delivery_error == "relay down"
        stored = await wiring.passcodes.find(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        sent_code = channel.send.call_args.args[0].code
        assert stored.matches(sent_code)

    async def test_delivery_timeout_is_reported(self, wiring, paid_booking):
        class SlowChannel:
            async def send(self, message):
                await asyncio.sleep(1)

        service = otp_service_with_channel(wiring, SlowChannel(), timeout=0.01)

        receipt = await service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)

        assert not receipt.delivered
        assert "timed out" in receipt.delivery_error

    async def test_missing_email_is_a_delivery_failure(self, wiring, paid_booking):
        wiring.users.register(OWNER_ID, "")

        receipt = await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)

        assert not receipt.delivered
        assert "No email address" in receipt.delivery_error

    async def test_cancellation_waits_for_inflight_issue(self, wiring, paid_booking):
        """A cancellation racing an issue lands only after the code is stored."""
        events = []
        store = wiring.passcodes.replace

        async def slow_replace(passcode):
            await asyncio.sleep(0.01)
            await store(passcode)
            events.append("code stored")

        async def cancel():
            await wiring.booking_service.admin_override_status(
                paid_booking.id, BookingStatus.CANCELLED, "Listing removed"
            )
            events.append("cancelled")

        wiring.passcodes.replace = slow_replace
        receipt, _ = await asyncio.gather(
            wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER),
            cancel(),
        )

        assert events == ["code stored", "cancelled"]
        assert receipt.delivered

    async def test_issue_after_cancellation_is_refused(self, wiring, paid_booking):
        await wiring.booking_service.admin_override_status(paid_booking.id, BookingStatus.CANCELLED, "Listing removed")

        with pytest.raises(IllegalTransitionError):
            await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)

        assert await wiring.passcodes.find(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER) is None
        assert wiring.channel.sent == []

    async def test_issued_code_is_committed(self, wiring, paid_booking):
        commits = wiring.unit_of_work.commits

        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)

        # session opened, then code stored
        assert wiring.unit_of_work.commits == commits + 2


class TestVerify:
    """Test cases for OtpService.verify."""

    async def test_dual_confirmation_completes_pickup(self, wiring, paid_booking):
        """Owner first: booking unchanged; renter second: booking in rental."""
        first = await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)

        assert first.accepted and not first.both_confirmed
        booking = await wiring.booking_service.get_booking(paid_booking.id)
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.delivery_status == DeliveryStatus.PENDING

        second = await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)

        assert second.accepted and second.both_confirmed
        booking = await wiring.booking_service.get_booking(paid_booking.id)
        assert booking.status == BookingStatus.IN_RENTAL
        assert booking.delivery_status == DeliveryStatus.DELIVERED

    @pytest.mark.parametrize("order", [
        (PartyRole.OWNER, PartyRole.RENTER),
        (PartyRole.RENTER, PartyRole.OWNER),
    ])
    async def test_confirmation_order_does_not_matter(self, wiring, paid_booking, order):
        complete_handover = AsyncMock(wraps=wiring.booking_service.complete_handover)
        wiring.booking_service.complete_handover = complete_handover

        for role in order:
            await confirm(wiring, paid_booking.id, HandoverType.PICKUP, role)

        complete_handover.assert_awaited_once_with(paid_booking.id, HandoverType.PICKUP)
        booking = await wiring.booking_service.get_booking(paid_booking.id)
        assert booking.status == BookingStatus.IN_RENTAL

    async def test_wrong_code_then_right_code(self, wiring, paid_booking):
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        code = wiring.channel.last_code_for(OWNER_EMAIL)
        wrong = "1" * 6 if code != "1" * 6 else "2" * 6

        with pytest.raises(InvalidCodeError):
            await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER, wrong)

        result = await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER, code)
        assert result.accepted

    async def test_code_is_bound_to_role(self, wiring, paid_booking):
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        owner_code = wiring.channel.last_code_for(OWNER_EMAIL)

        with pytest.raises(InvalidCodeError):
            await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER, owner_code)

    async def test_code_is_single_use(self, wiring, paid_booking):
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        code = wiring.channel.last_code_for(OWNER_EMAIL)
        await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER, code)

        with pytest.raises(InvalidCodeError):
            await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER, code)

    async def test_reissue_invalidates_previous_code(self, wiring, paid_booking):
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)
        old_code = wiring.channel.last_code_for(RENTER_EMAIL)
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)
        new_code = wiring.channel.last_code_for(RENTER_EMAIL)

        if old_code != new_code:
            with pytest.raises(InvalidCodeError):
                await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER, old_code)
        result = await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER, new_code)
        assert result.accepted

    async def test_reissue_keeps_other_confirmation(self, wiring, paid_booking):
        await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)

        session = await wiring.coordinator.get_session(paid_booking.id, HandoverType.PICKUP)
        assert session.owner_confirmed

    async def test_expired_code_fails_even_if_correct(self, wiring, paid_booking):
        """Issued at t=0 and submitted at t=11min: expired; a resend works at t=12min."""
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        code = wiring.channel.last_code_for(OWNER_EMAIL)
        wiring.clock.advance(minutes=11)

        with pytest.raises(ExpiredCodeError):
            await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER, code)

        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        fresh = wiring.channel.last_code_for(OWNER_EMAIL)
        wiring.clock.advance(minutes=1)

        result = await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER, fresh)
        assert result.accepted

    async def test_expired_wrong_code_reports_expiry(self, wiring, paid_booking):
        await wiring.otp_service.issue(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        wiring.clock.advance(minutes=30)

        with pytest.raises(ExpiredCodeError):
            await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER, "000000")

    async def test_verify_without_issue(self, wiring, paid_booking):
        with pytest.raises(InvalidCodeError):
            await wiring.otp_service.verify(paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER, "123456")

    async def test_full_rental_round_trip(self, wiring, paid_booking):
        for role in (PartyRole.OWNER, PartyRole.RENTER):
            await confirm(wiring, paid_booking.id, HandoverType.PICKUP, role)
        wiring.clock.advance(days=1)
        for role in (PartyRole.RENTER, PartyRole.OWNER):
            await confirm(wiring, paid_booking.id, HandoverType.RETURN, role)

        booking = await wiring.booking_service.get_booking(paid_booking.id)
        assert booking.status == BookingStatus.COMPLETED
        assert booking.return_status == ReturnStatus.COMPLETED

    async def test_completion_notices_reach_both_parties(self, wiring, paid_booking):
        await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        assert wiring.channel.notices == []

        await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)

        notices = wiring.channel.notices
        assert sorted(notice.recipient_email for notice in notices) == [OWNER_EMAIL, RENTER_EMAIL]
        assert {notice.handover_type for notice in notices} == {HandoverType.PICKUP}
        assert {notice.completed_at for notice in notices} == {wiring.clock()}

    async def test_return_notice_carries_late_fee(self, wiring, paid_booking):
        await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)
        await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)
        wiring.clock.advance(days=5)

        await confirm(wiring, paid_booking.id, HandoverType.RETURN, PartyRole.RENTER)
        await confirm(wiring, paid_booking.id, HandoverType.RETURN, PartyRole.OWNER)

        booking = await wiring.booking_service.get_booking(paid_booking.id)
        returns = [notice for notice in wiring.channel.notices if notice.handover_type is HandoverType.RETURN]
        assert len(returns) == 2
        assert booking.late_fee > 0
        assert all(notice.late_fee == booking.late_fee for notice in returns)

    async def test_failed_notice_keeps_transition(self, wiring, paid_booking):
        wiring.channel.send_notice = AsyncMock(side_effect=DeliveryFailedError("relay down"))
        await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.OWNER)

        result = await confirm(wiring, paid_booking.id, HandoverType.PICKUP, PartyRole.RENTER)

        assert result.both_confirmed
        assert wiring.channel.send_notice.await_count == 2
        booking = await wiring.booking_service.get_booking(paid_booking.id)
        assert booking.status == BookingStatus.IN_RENTAL


class TestHandoverService:
    """Test cases for caller-facing role resolution."""

    async def test_role_resolved_from_identity(self, wiring, paid_booking):
        receipt = await wiring.handover_service.request_handover_otp(paid_booking.id, HandoverType.PICKUP, RENTER_ID)

        assert receipt.role is PartyRole.RENTER
        code = wiring.channel.last_code_for(RENTER_EMAIL)
        result = await wiring.handover_service.submit_handover_otp(paid_booking.id, HandoverType.PICKUP, RENTER_ID, code)
        assert result.accepted and not result.both_confirmed

    async def test_stranger_is_refused(self, wiring, paid_booking):
        with pytest.raises(UnauthorizedError):
            await wiring.handover_service.request_handover_otp(paid_booking.id, HandoverType.PICKUP, "stranger-1")
        assert wiring.channel.sent == []

