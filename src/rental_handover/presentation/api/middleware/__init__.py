"""Middleware module for rental handover API."""

from .auth import CallerIdentity, admin_required, auth_required, get_current_caller
from .logging import RequestResponseLoggingMiddleware

__all__ = [
    "CallerIdentity",
    "admin_required",
    "auth_required",
    "get_current_caller",
    "RequestResponseLoggingMiddleware"
]
