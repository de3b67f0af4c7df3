"""
Registry Logging
Structured JSON logs for Cloud Logging, with plain text for local runs.

Registry identifiers passed through `extra=` (association_id, moved_id,
error_id, ...) are copied into Cloud Logging labels so log queries can
filter one association's history across create, move and repair.
"""

import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from opentelemetry import trace
from pythonjsonlogger import jsonlogger

from assoc_registry.app.config import settings

LABELS_KEY = "logging.googleapis.com/labels"

# extra= keys promoted to Cloud Logging labels
LABEL_FIELDS = ("association_id", "moved_id", "descendant_id", "parent_id", "error_id")

SENSITIVE_PATTERNS = [
    (re.compile(r'Bearer\s+[a-zA-Z0-9\-_.]+', re.IGNORECASE), 'Bearer [REDACTED]'),
    (re.compile(r'"private_key":\s*"[^"]+?"', re.IGNORECASE), '"private_key": "[REDACTED]"'),
    (re.compile(r'password["\']?\s*[:=]\s*["\']?[^\s"\']+', re.IGNORECASE), 'password: [REDACTED]'),
    (re.compile(r'[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}'), '[EMAIL]'),
]

MAX_ERROR_MESSAGE_LENGTH = 500


class CloudLoggingFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter for Cloud Logging.

    Adds severity, service metadata, trace correlation and a labels map built
    from registry identifiers in the record's extras.
    """

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any]
    ):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_record["severity"] = record.levelname
        log_record["service"] = settings.app_name
        log_record["version"] = settings.app_version
        log_record["environment"] = settings.environment
        log_record["storage_backend"] = settings.storage_backend

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            log_record["trace_id"] = f"{span_context.trace_id:032x}"
            log_record["span_id"] = f"{span_context.span_id:016x}"

        labels = {
            key: str(log_record[key])
            for key in LABEL_FIELDS
            if log_record.get(key) is not None
        }
        if labels:
            log_record[LABELS_KEY] = labels


class RegistryTextFormatter(logging.Formatter):
    """Plain text formatter that appends the association id when one is attached."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        association_id = getattr(record, "association_id", None) or getattr(record, "moved_id", None)
        if association_id:
            line = f"{line} [association={association_id}]"
        return line


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return CloudLoggingFormatter("%(severity)s %(name)s %(message)s", json_ensure_ascii=False)
    return RegistryTextFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None):
    """
    Configure root logging for the registry service.

    Args:
        log_level: Defaults to settings.log_level
        log_format: "json" or "text". Defaults to settings.log_format
    """
    level = log_level or settings.log_level

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(log_format or settings.log_format))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # BigQuery client retries are noisy at INFO
    for noisy in ("google", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging initialized",
        extra={"log_level": level, "storage_backend": settings.storage_backend}
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def should_include_stacktrace() -> bool:
    """Stack traces are only logged outside production."""
    return not settings.is_production


def sanitize_error_message(error_msg: str) -> str:
    """Redact credentials and contact emails, then cap the length."""
    sanitized = error_msg
    for pattern, replacement in SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    if len(sanitized) > MAX_ERROR_MESSAGE_LENGTH:
        sanitized = sanitized[:MAX_ERROR_MESSAGE_LENGTH] + "... [TRUNCATED]"
    return sanitized


def safe_error_log(
    logger: logging.Logger,
    message: str,
    error: Exception,
    **extra_context
) -> None:
    """
    Log an error with a stack trace outside production, or a sanitized
    one-line message in production.
    """
    error_info = {"error_type": type(error).__name__, **extra_context}

    if should_include_stacktrace():
        logger.error(message, exc_info=error, extra=error_info)
    else:
        logger.error(
            f"{message}: {sanitize_error_message(str(error))}",
            extra={**error_info, "sanitized": True}
        )
