"""FastAPI main application module."""

from contextlib import asynccontextmanager
from typing import Dict, Type

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ...domain.exceptions import (
    ConcurrentModificationError,
    DeliveryFailedError,
    ExpiredCodeError,
    IllegalTransitionError,
    InvalidCodeError,
    NotFoundError,
    RentalError,
    UnauthorizedError,
)
from ...infrastructure.logging import get_logger, configure_logging
from ...infrastructure.services import initialize_services, shutdown_services
from .config import get_settings
from .middleware.logging import RequestResponseLoggingMiddleware
from .routes import admin, bookings, handovers, health, payments


logger = get_logger(__name__)

# Most specific classes first; lookup walks the exception's MRO
ERROR_STATUS_CODES: Dict[Type[RentalError], int] = {
    NotFoundError: 404,
    UnauthorizedError: 403,
    IllegalTransitionError: 409,
    ConcurrentModificationError: 409,
    InvalidCodeError: 400,
    ExpiredCodeError: 410,
    DeliveryFailedError: 502,
    RentalError: 400,
}


API_ROUTERS = (
    (bookings.router, "/bookings", "bookings"),
    (handovers.router, "/bookings", "handovers"),
    (payments.router, "/payments", "payments"),
    (admin.router, "/admin", "admin"),
)


def status_code_for(exc: RentalError) -> int:
    """HTTP status for a domain error."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Starting Rental Handover Service API")
    await initialize_services()

    yield

    logger.info("Shutting down Rental Handover Service API")
    await shutdown_services()


def add_exception_handlers(app: FastAPI) -> None:
    """Add custom exception handlers to the FastAPI application."""

    @app.exception_handler(RentalError)
    async def rental_error_handler(request: Request, exc: RentalError):
        """Handle booking lifecycle and handover errors."""
        status_code = status_code_for(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            f"{type(exc).__name__} on {request.url.path}: {str(exc)}",
            extra={"error_type": exc.error_type, "status_code": status_code}
        )
        return JSONResponse(
            status_code=status_code,
            content={
                "detail": str(exc),
                "type": exc.error_type
            }
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """Handle validation errors from business logic."""
        logger.warning(f"Validation error on {request.url.path}: {str(exc)}")
        return JSONResponse(
            status_code=400,
            content={
                "detail": str(exc),
                "type": "validation_error"
            }
        )

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(request: Request, exc: RuntimeError):
        """Handle runtime errors from infrastructure."""
        logger.error(f"Runtime error on {request.url.path}: {str(exc)}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error occurred",
                "type": "runtime_error"
            }
        )


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title="Rental Handover Service",
        description="Equipment rental bookings with dual-party passcode handover verification",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    add_exception_handlers(app)

    app.add_middleware(RequestResponseLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=settings.allowed_methods,
        allow_headers=settings.allowed_headers,
    )

    app.include_router(health.router, tags=["health"])
    for router, path, tag in API_ROUTERS:
        app.include_router(router, prefix=f"{settings.api_prefix}{path}", tags=[tag])

    return app


# Create app instance
app = create_app()
