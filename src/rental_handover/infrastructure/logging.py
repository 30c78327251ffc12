"""Structured JSON logging for the rental handover service.

Every record carries the correlation id of the request that produced it.
Booking and handover identifiers passed through ``extra`` are promoted to
top-level keys so log queries can filter on them directly; anything that
could hold a passcode is scrubbed before formatting.
"""

import json
import logging
import logging.handlers
import os
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


SERVICE_NAME = "rental-handover-service"

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

PROMOTED_FIELDS = ("booking_id", "handover_type", "party_role", "transition_action")
SENSITIVE_FIELDS = frozenset({"code", "passcode", "otp", "submitted_code", "token", "password"})
QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
}

_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "correlation_id"}


class CorrelationIdFilter(logging.Filter):
    """Stamp records with the current correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        context = scrub({
            key: value for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS
        })
        for key in PROMOTED_FIELDS:
            if key in context:
                entry[key] = context.pop(key)
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[0] is not None:
            entry["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str, ensure_ascii=False)


def scrub(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Replace values of passcode-like keys."""
    return {
        key: "[REDACTED]" if key.lower() in SENSITIVE_FIELDS else value
        for key, value in fields.items()
    }


@dataclass(frozen=True)
class LogSettings:
    level: str = "INFO"
    service_name: str = SERVICE_NAME
    log_file: Optional[str] = None
    max_file_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5

    @classmethod
    def from_env(cls) -> "LogSettings":
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            service_name=os.getenv("SERVICE_NAME", SERVICE_NAME),
            log_file=os.getenv("LOG_FILE") or None,
            max_file_bytes=int(os.getenv("LOG_MAX_FILE_BYTES", str(10 * 1024 * 1024))),
            backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
        )


def configure_logging(settings: Optional[LogSettings] = None) -> LogSettings:
    """Install JSON handlers on the root logger, replacing existing ones."""
    settings = settings or LogSettings.from_env()
    level = logging.getLevelName(settings.level)

    handlers = [logging.StreamHandler(sys.stdout)]
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.max_file_bytes,
            backupCount=settings.backup_count,
            encoding="utf-8"
        ))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(level)

    formatter = JSONFormatter(settings.service_name)
    correlation_filter = CorrelationIdFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(correlation_filter)
        root.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
    return settings


def bind_correlation_id(correlation_id: Optional[str] = None) -> Token:
    """Bind a correlation id (generated if missing) to the current context."""
    return correlation_id_var.set(correlation_id or str(uuid.uuid4()))


def reset_correlation_id(token: Token) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_state_transition(logger: logging.Logger, booking_id: str, action: str, from_status: str, to_status: str, **extra) -> None:
    """Log a booking status change."""
    logger.info(
        f"Booking {booking_id} {action}: {from_status} -> {to_status}",
        extra=dict(extra, booking_id=booking_id, transition_action=action, from_status=from_status, to_status=to_status)
    )


def log_handover_event(logger: logging.Logger, booking_id: str, handover_type: str, role: str, event: str, **extra) -> None:
    """Log a passcode issue, confirmation or rejection."""
    logger.info(
        f"Handover {handover_type} {event} by {role} for booking {booking_id}",
        extra=dict(extra, booking_id=booking_id, handover_type=handover_type, party_role=role, handover_event=event)
    )


def log_database_operation(logger: logging.Logger, operation: str, table: str, **extra) -> None:
    logger.debug(f"Database {operation}: {table}", extra=dict(extra, db_operation=operation, db_table=table))


def log_business_rule_violation(logger: logging.Logger, rule: str, details: str, **extra) -> None:
    """Log a refused operation at WARNING."""
    logger.warning(
        f"Business rule violation: {rule} - {details}",
        extra=dict(extra, business_rule=rule, violation_details=details)
    )
