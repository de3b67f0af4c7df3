"""
Centralized Error Handling Utility
Maps registry exceptions to HTTP responses and keeps internal details out of
client-facing messages.

Every error response carries an error id that is also logged server-side.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse

from assoc_registry.core.exceptions import ErrorCategory, RegistryException

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {"password", "credential", "api_key", "secret", "token", "private_key"}

GENERIC_MESSAGE = "An unexpected error occurred. Please try again or contact support."


def generate_error_id() -> str:
    """Generate a unique error ID for tracking."""
    return f"ERR-{uuid.uuid4().hex[:12].upper()}"


def _sanitize_context(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    sanitized = {}
    for key, value in (context or {}).items():
        if any(s in key.lower() for s in SENSITIVE_KEYS):
            sanitized[key] = "[REDACTED]"
        else:
            sanitized[key] = value
    return sanitized


def log_error_details(
    error_id: str,
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    operation: Optional[str] = None
) -> None:
    """
    Log detailed error information server-side only.

    Client errors (validation, conflict, not found) are logged at info,
    partial cascades at warning, everything else at error with a traceback.
    """
    category = error.category if isinstance(error, RegistryException) else ErrorCategory.PERMANENT
    log_data = {
        "error_id": error_id,
        "error_category": category.value,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
    }
    log_data.update(_sanitize_context(context))
    message = f"[{category.value}] Error {error_id}: {type(error).__name__} during {operation or 'operation'}"

    if category in (ErrorCategory.VALIDATION, ErrorCategory.CONFLICT, ErrorCategory.NOT_FOUND):
        logger.info(message, extra=log_data)
    elif category == ErrorCategory.PARTIAL:
        logger.warning(message, extra=log_data)
    else:
        logger.error(message, extra=log_data, exc_info=error)


def registry_error_response(exc: RegistryException, operation: Optional[str] = None) -> JSONResponse:
    """
    Build the JSON response for a registry exception.

    Body is `exc.to_dict()` plus `error_id`. A partial cascade also carries
    the association's committed state.
    """
    error_id = generate_error_id()
    log_error_details(error_id, exc, exc.context, operation)

    content = exc.to_dict()
    content["error_id"] = error_id
    association = getattr(exc, "association", None)
    if association is not None and hasattr(association, "model_dump"):
        content["association"] = association.model_dump(mode="json")

    return JSONResponse(status_code=exc.http_status, content=content)


def internal_error_response(
    exc: Exception,
    expose_details: bool = False,
    operation: Optional[str] = None
) -> JSONResponse:
    """Generic 500 for unexpected exceptions."""
    error_id = generate_error_id()
    log_error_details(error_id, exc, operation=operation)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_ERROR",
            "message": f"{type(exc).__name__}: {exc}" if expose_details else GENERIC_MESSAGE,
            "error_id": error_id,
            "support_message": f"Please provide error ID {error_id} when contacting support."
        }
    )
