"""Access logging with correlation ids.

Request bodies are never logged: verify requests carry passcodes.
"""

import logging
import time
from typing import Callable, Dict, Iterable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ....infrastructure.logging import (
    bind_correlation_id,
    get_correlation_id,
    get_logger,
    reset_correlation_id,
)

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

REDACTED_HEADERS = frozenset({
    "authorization",
    "cookie",
    "x-webhook-secret",
    "x-api-key",
})

QUIET_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})


def redact_headers(headers: Iterable) -> Dict[str, str]:
    return {
        key: "[REDACTED]" if key.lower() in REDACTED_HEADERS else value
        for key, value in headers
    }


def level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestResponseLoggingMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id per request and writes one access record."""

    def __init__(self, app: ASGIApp, quiet_paths: Optional[Iterable[str]] = None, log_headers: bool = False):
        super().__init__(app)
        self.quiet_paths = frozenset(quiet_paths) if quiet_paths is not None else QUIET_PATHS
        self.log_headers = log_headers

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        token = bind_correlation_id(request.headers.get(CORRELATION_HEADER))
        correlation_id = get_correlation_id()
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                f"{request.method} {request.url.path} raised",
                extra=self._access_fields(request, started)
            )
            raise
        else:
            response.headers[CORRELATION_HEADER] = correlation_id
            if request.url.path not in self.quiet_paths:
                fields = self._access_fields(request, started, status_code=response.status_code)
                logger.log(
                    level_for_status(response.status_code),
                    f"{request.method} {request.url.path} -> {response.status_code}",
                    extra=fields
                )
            return response
        finally:
            reset_correlation_id(token)

    def _access_fields(self, request: Request, started: float, status_code: Optional[int] = None) -> dict:
        fields = {
            "http_method": request.method,
            "http_path": request.url.path,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_host": request.client.host if request.client else None,
        }
        if status_code is not None:
            fields["http_status"] = status_code
        if self.log_headers:
            fields["http_headers"] = redact_headers(request.headers.items())
        return fields
