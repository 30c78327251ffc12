"""Coordinator for dual-party handover confirmation."""

from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID

from ..ports.repositories import HandoverSessionRepository
from .booking_service import BookingService
from .handover_notifier import HandoverNotifier
from .locks import KeyedLocks
from ...domain.clock import Clock, utc_now
from ...domain.entities.handover_session import HandoverSession
from ...domain.exceptions import ConcurrentModificationError, NotFoundError, RentalError
from ...domain.value_objects.passcode import HandoverType, PartyRole
from ...infrastructure.logging import get_logger, log_handover_event

MAX_SAVE_ATTEMPTS = 3


class HandoverCoordinator:
    """Owns handover sessions and fires the booking transition once both parties confirmed.

    Session writes are versioned and committed while the session lock is
    held; a writer in another process that loses the version race reloads
    and reapplies its confirmation.
    """

    def __init__(
        self,
        session_repository: HandoverSessionRepository,
        booking_service: BookingService,
        locks: Optional[KeyedLocks] = None,
        notifier: Optional[HandoverNotifier] = None,
        clock: Clock = utc_now
    ):
        self._session_repository = session_repository
        self._booking_service = booking_service
        self._locks = locks or KeyedLocks()
        self._notifier = notifier
        self._clock = clock
        self._logger = get_logger(__name__)

    async def get_or_create_session(self, booking_id: UUID, handover_type: HandoverType) -> HandoverSession:
        """Return the session for a handover, creating it on first use."""
        async with self._locks.acquire((booking_id, handover_type)):
            session = await self._session_repository.find(booking_id, handover_type)
            if session is not None:
                return session
            try:
                session = await self._session_repository.save(
                    HandoverSession(booking_id, handover_type, created_at=self._clock())
                )
            except ConcurrentModificationError:
                # Opened by another process in the meantime
                return await self.get_session(booking_id, handover_type)
            await self._booking_service.commit()
            self._logger.info(
                f"Opened {handover_type.value} handover session",
                extra={"booking_id": str(booking_id), "handover_type": handover_type.value}
            )
            return session

    async def get_session(self, booking_id: UUID, handover_type: HandoverType) -> HandoverSession:
        """Return an existing session or raise NotFoundError."""
        session = await self._session_repository.find(booking_id, handover_type)
        if session is None:
            raise NotFoundError(f"No {handover_type.value} handover session for booking {booking_id}")
        return session

    async def record_confirmation(
        self,
        booking_id: UUID,
        handover_type: HandoverType,
        role: PartyRole,
        otp_issued_at: Optional[datetime] = None
    ) -> bool:
        """Mark a role confirmed; returns True when both parties have now confirmed.

        The booking transition fires exactly once, on the confirmation that
        completes the session. The finalized session is committed first, so
        if the transition fails the session stays finalized and the error
        propagates to the caller.
        """
        async with self._locks.acquire((booking_id, handover_type)):
            completed, session = await self._confirm(booking_id, handover_type, role, otp_issued_at)
            await self._booking_service.commit()

        if not completed:
            log_handover_event(self._logger, str(booking_id), handover_type.value, role.value, "confirmed",
                               both_confirmed=session.is_complete)
            return session.is_complete

        log_handover_event(self._logger, str(booking_id), handover_type.value, role.value, "finalized",
                           both_confirmed=True)
        try:
            booking = await self._booking_service.complete_handover(booking_id, handover_type)
        except RentalError:
            self._logger.error(
                "Handover finalized but booking transition failed",
                extra={"booking_id": str(booking_id), "handover_type": handover_type.value},
                exc_info=True
            )
            raise
        if self._notifier is not None:
            await self._notifier.handover_completed(booking, handover_type)
        return True

    async def _confirm(
        self,
        booking_id: UUID,
        handover_type: HandoverType,
        role: PartyRole,
        otp_issued_at: Optional[datetime]
    ) -> Tuple[bool, HandoverSession]:
        attempt = 1
        while True:
            session = await self.get_session(booking_id, handover_type)
            if session.is_complete or session.has_confirmed(role):
                return False, session
            now = self._clock()
            completed = session.confirm(role, otp_issued_at or now, now)
            try:
                await self._session_repository.save(session)
            except ConcurrentModificationError:
                if attempt >= MAX_SAVE_ATTEMPTS:
                    raise
                self._logger.info(
                    "Handover session changed concurrently; reloading",
                    extra={"booking_id": str(booking_id), "handover_type": handover_type.value, "attempt": attempt}
                )
                attempt += 1
                continue
            return completed, session
