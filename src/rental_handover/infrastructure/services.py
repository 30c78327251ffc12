"""Dependency injection and service factory."""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncGenerator, Optional

from rental_handover.application.ports.repositories import (
    BookingRepository,
    HandoverSessionRepository,
    NotificationChannel,
    PasscodeRepository,
    UnitOfWork,
    UserDirectory,
)
from rental_handover.application.services.booking_service import BookingService
from rental_handover.application.services.handover_coordinator import HandoverCoordinator
from rental_handover.application.services.handover_notifier import HandoverNotifier
from rental_handover.application.services.handover_service import HandoverService
from rental_handover.application.services.locks import KeyedLocks
from rental_handover.application.services.otp_service import OtpService
from rental_handover.domain.value_objects.late_fee import LateFeePolicy
from rental_handover.domain.value_objects.passcode import PasscodeGenerator
from rental_handover.infrastructure.database.connection import DatabaseManager
from rental_handover.infrastructure.logging import get_logger
from rental_handover.infrastructure.notifications import HttpNotificationChannel, LoggingNotificationChannel
from rental_handover.infrastructure.repositories.memory_repositories import (
    InMemoryBookingRepository,
    InMemoryHandoverSessionRepository,
    InMemoryPasscodeRepository,
    InMemoryUnitOfWork,
    InMemoryUserDirectory,
)
from rental_handover.infrastructure.repositories.sql_repositories import (
    SQLAlchemyBookingRepository,
    SQLAlchemyHandoverSessionRepository,
    SQLAlchemyPasscodeRepository,
    SQLAlchemyUnitOfWork,
    SQLAlchemyUserDirectory,
)
from rental_handover.presentation.api.config import Settings, get_settings

logger = get_logger(__name__)


@dataclass
class _Repositories:
    bookings: BookingRepository
    sessions: HandoverSessionRepository
    passcodes: PasscodeRepository
    users: UserDirectory
    unit_of_work: UnitOfWork


class ServiceFactory:
    """Factory for creating application services with proper dependencies."""

    def __init__(self, settings: Settings, notification_channel: Optional[NotificationChannel] = None):
        self.settings = settings
        self.use_in_memory = settings.use_in_memory_storage
        self.database_manager = None if self.use_in_memory else DatabaseManager(
            settings.database_url,
            echo=settings.debug and settings.log_level.upper() == "DEBUG",
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow
        )
        self._connected = False

        # Lock registries are process-wide so concurrent requests serialize
        self._booking_locks = KeyedLocks()
        self._session_locks = KeyedLocks()
        self._passcode_locks = KeyedLocks()

        self.notification_channel = notification_channel or self._build_notification_channel()

        # Shared stores for in-memory mode
        self.user_directory = InMemoryUserDirectory()
        self._memory = _Repositories(
            bookings=InMemoryBookingRepository(),
            sessions=InMemoryHandoverSessionRepository(),
            passcodes=InMemoryPasscodeRepository(),
            users=self.user_directory,
            unit_of_work=InMemoryUnitOfWork()
        )

    def _build_notification_channel(self) -> NotificationChannel:
        if self.settings.notification_url:
            logger.info(f"Passcodes delivered through email relay at {self.settings.notification_url}")
            return HttpNotificationChannel(
                self.settings.notification_url,
                api_key=self.settings.notification_api_key,
                timeout=self.settings.notification_timeout_seconds
            )
        logger.warning("NOTIFICATION_URL not set; passcodes are only recorded by the logging channel")
        return LoggingNotificationChannel()

    async def initialize(self):
        """Initialize the service factory."""
        if self.database_manager is not None and not self._connected:
            await self.database_manager.connect()
            self._connected = True

    async def shutdown(self):
        """Shutdown the service factory."""
        if self.database_manager is not None and self._connected:
            await self.database_manager.disconnect()
            self._connected = False

    @asynccontextmanager
    async def _repositories(self) -> AsyncGenerator[_Repositories, None]:
        if self.use_in_memory:
            yield self._memory
            return

        async with self.database_manager.get_session() as session:
            yield _Repositories(
                bookings=SQLAlchemyBookingRepository(session),
                sessions=SQLAlchemyHandoverSessionRepository(session),
                passcodes=SQLAlchemyPasscodeRepository(session),
                users=SQLAlchemyUserDirectory(session),
                unit_of_work=SQLAlchemyUnitOfWork(session)
            )

    def _booking_service(self, repositories: _Repositories) -> BookingService:
        return BookingService(
            booking_repository=repositories.bookings,
            late_fee_policy=LateFeePolicy(
                daily_rate=self.settings.daily_late_rate,
                rate_of_total=self.settings.late_fee_rate
            ),
            platform_fee_rate=self.settings.platform_fee_rate,
            locks=self._booking_locks,
            unit_of_work=repositories.unit_of_work
        )

    @asynccontextmanager
    async def get_booking_service(self) -> AsyncGenerator[BookingService, None]:
        """Get booking service with configured repositories."""
        async with self._repositories() as repositories:
            yield self._booking_service(repositories)

    @asynccontextmanager
    async def get_handover_service(self) -> AsyncGenerator[HandoverService, None]:
        """Get handover service wired to the OTP issuer and coordinator."""
        async with self._repositories() as repositories:
            booking_service = self._booking_service(repositories)
            coordinator = HandoverCoordinator(
                session_repository=repositories.sessions,
                booking_service=booking_service,
                locks=self._session_locks,
                notifier=HandoverNotifier(
                    repositories.users,
                    self.notification_channel,
                    delivery_timeout_seconds=self.settings.notification_timeout_seconds
                )
            )
            otp_service = OtpService(
                booking_service=booking_service,
                coordinator=coordinator,
                passcode_repository=repositories.passcodes,
                user_directory=repositories.users,
                notification_channel=self.notification_channel,
                generator=PasscodeGenerator(
                    length=self.settings.otp_length,
                    ttl=timedelta(minutes=self.settings.otp_ttl_minutes)
                ),
                locks=self._passcode_locks,
                delivery_timeout_seconds=self.settings.notification_timeout_seconds
            )
            yield HandoverService(booking_service, otp_service)


# Global service factory instance
_service_factory: Optional[ServiceFactory] = None


def get_service_factory() -> ServiceFactory:
    """Get the global service factory instance."""
    global _service_factory

    if _service_factory is None:
        _service_factory = ServiceFactory(get_settings())

    return _service_factory


def reset_service_factory(factory: Optional[ServiceFactory] = None) -> None:
    """Replace the global service factory (used by tests)."""
    global _service_factory
    _service_factory = factory


async def initialize_services():
    """Initialize application services."""
    factory = get_service_factory()
    await factory.initialize()


async def shutdown_services():
    """Shutdown application services."""
    factory = get_service_factory()
    await factory.shutdown()
