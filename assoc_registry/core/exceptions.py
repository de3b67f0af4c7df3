"""
Structured Error Handling for the Association Registry
Provides error hierarchy with categorization, error codes, and structured context.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    """Error categories for classification and handling."""
    VALIDATION = "VALIDATION"  # Rejected before any write
    CONFLICT = "CONFLICT"  # Uniqueness or reference conflicts
    NOT_FOUND = "NOT_FOUND"
    PARTIAL = "PARTIAL"  # Write committed but follow-up work incomplete
    TRANSIENT = "TRANSIENT"  # Temporary errors that should be retried
    PERMANENT = "PERMANENT"  # Errors that won't succeed on retry


class ErrorCode(str, Enum):
    """Standardized error codes for monitoring and debugging."""
    DUPLICATE_ID = "DUPLICATE_ID"
    DUPLICATE_CODE = "DUPLICATE_CODE"
    PARENT_NOT_FOUND = "PARENT_NOT_FOUND"
    SELF_PARENT = "SELF_PARENT"
    CIRCULAR_REFERENCE = "CIRCULAR_REFERENCE"
    HAS_CHILDREN = "HAS_CHILDREN"
    HAS_CLUBS = "HAS_CLUBS"
    HAS_ACTIVE_REFERENCES = "HAS_ACTIVE_REFERENCES"
    NOT_FOUND = "NOT_FOUND"
    PARTIAL_CASCADE_FAILURE = "PARTIAL_CASCADE_FAILURE"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    STORAGE_ERROR = "STORAGE_ERROR"


class RegistryException(Exception):
    """
    Base exception for all registry errors.

    Provides structured error information for monitoring, debugging, and error recovery.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        error_code: ErrorCode,
        http_status: int = 500,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize structured exception.

        Args:
            message: Human-readable, actionable error message
            category: Error category for classification
            error_code: Standardized error code
            http_status: HTTP status code to return
            context: Additional context (association id, counts, etc.)
            original_error: Original exception if wrapped
        """
        super().__init__(message)
        self.message = message
        self.category = category
        self.error_code = error_code
        self.http_status = http_status
        self.context = context or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error": self.error_code.value,
            "message": self.message,
            "category": self.category.value,
            "http_status": self.http_status
        }

        if self.context:
            result["context"] = self.context

        return result

    def is_retryable(self) -> bool:
        """Check if this error should be retried."""
        return self.category in (ErrorCategory.TRANSIENT, ErrorCategory.PARTIAL)


# ============================================
# Validation Errors (nothing was written)
# ============================================

class ValidationError(RegistryException):
    """Input rejected before reaching storage."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INVALID_PARAMETER,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.VALIDATION,
            error_code=error_code,
            http_status=400,
            context=context,
            original_error=original_error
        )


class ParentNotFoundError(ValidationError):
    """The declared parent association does not exist."""

    def __init__(self, parent_id: str):
        super().__init__(
            message=f"Parent association '{parent_id}' not found",
            error_code=ErrorCode.PARENT_NOT_FOUND,
            context={"parent_id": parent_id}
        )
        self.parent_id = parent_id


class SelfParentError(ValidationError):
    """An association cannot be its own parent."""

    def __init__(self, association_id: str):
        super().__init__(
            message=f"Cannot set association '{association_id}' as its own parent",
            error_code=ErrorCode.SELF_PARENT,
            context={"association_id": association_id}
        )


class CircularReferenceError(ValidationError):
    """The chosen parent is a descendant of the association being moved."""

    def __init__(self, association_id: str, new_parent_id: str):
        super().__init__(
            message=(
                f"Circular reference detected: '{new_parent_id}' is a descendant of "
                f"'{association_id}' and cannot become its parent"
            ),
            error_code=ErrorCode.CIRCULAR_REFERENCE,
            context={"association_id": association_id, "new_parent_id": new_parent_id}
        )


# ============================================
# Conflict Errors
# ============================================

class AlreadyExistsError(RegistryException):
    """An association with the same unique key already exists."""

    def __init__(self, message: str, error_code: ErrorCode, context: Dict[str, Any]):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFLICT,
            error_code=error_code,
            http_status=409,
            context=context
        )


class DuplicateAssociationIdError(AlreadyExistsError):
    def __init__(self, association_id: str):
        super().__init__(
            message=f"Association ID '{association_id}' already exists",
            error_code=ErrorCode.DUPLICATE_ID,
            context={"association_id": association_id}
        )


class DuplicateAssociationCodeError(AlreadyExistsError):
    def __init__(self, code: str):
        super().__init__(
            message=f"Association code '{code}' already exists",
            error_code=ErrorCode.DUPLICATE_CODE,
            context={"code": code}
        )


class DeletionBlockedError(RegistryException):
    """
    Deletion refused because something still references the association.
    Nothing is written when this is raised.
    """

    def __init__(self, message: str, error_code: ErrorCode, association_id: str, count: int):
        super().__init__(
            message=message,
            category=ErrorCategory.CONFLICT,
            error_code=error_code,
            http_status=409,
            context={"association_id": association_id, "count": count}
        )
        self.association_id = association_id
        self.count = count


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


class HasChildrenError(DeletionBlockedError):
    def __init__(self, association_id: str, count: int):
        verb = "exists" if count == 1 else "exist"
        super().__init__(
            message=f"cannot delete: {_plural(count, 'child association', 'child associations')} {verb}",
            error_code=ErrorCode.HAS_CHILDREN,
            association_id=association_id,
            count=count
        )


class HasClubsError(DeletionBlockedError):
    def __init__(self, association_id: str, count: int):
        verb = "is" if count == 1 else "are"
        super().__init__(
            message=f"cannot delete: {_plural(count, 'club', 'clubs')} {verb} attached to this association",
            error_code=ErrorCode.HAS_CLUBS,
            association_id=association_id,
            count=count
        )


class HasActiveReferencesError(DeletionBlockedError):
    def __init__(self, association_id: str, count: int):
        verb = "references" if count == 1 else "reference"
        super().__init__(
            message=(
                f"cannot delete: {_plural(count, 'active registration', 'active registrations')} "
                f"{verb} this association"
            ),
            error_code=ErrorCode.HAS_ACTIVE_REFERENCES,
            association_id=association_id,
            count=count
        )


# ============================================
# Not Found
# ============================================

class NotFoundError(RegistryException):
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            category=ErrorCategory.NOT_FOUND,
            error_code=ErrorCode.NOT_FOUND,
            http_status=404,
            context=context
        )


class AssociationNotFoundError(NotFoundError):
    def __init__(self, association_id: str):
        super().__init__(
            message=f"Association '{association_id}' not found",
            context={"association_id": association_id}
        )
        self.association_id = association_id


# ============================================
# Partial Failure
# ============================================

class PartialCascadeFailure(RegistryException):
    """
    The association's own path was committed but some descendants could not
    be rewritten. Re-running the cascade with the same target path converges.
    """

    def __init__(
        self,
        association: Any,
        repaired: List[str],
        failed: List[str],
        skipped: Optional[List[str]] = None
    ):
        total = len(repaired) + len(failed)
        super().__init__(
            message=(
                f"update succeeded but {len(failed)} of {total} descendants may be stale "
                f"- retry recommended"
            ),
            category=ErrorCategory.PARTIAL,
            error_code=ErrorCode.PARTIAL_CASCADE_FAILURE,
            http_status=207,
            context={
                "association_id": getattr(association, "id", None),
                "repaired": list(repaired),
                "failed": list(failed),
                "skipped": list(skipped or []),
            }
        )
        self.association = association
        self.repaired = list(repaired)
        self.failed = list(failed)
        self.skipped = list(skipped or [])


# ============================================
# Storage Errors
# ============================================

class StorageError(RegistryException):
    """Storage operation failed and will not succeed on retry."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.PERMANENT,
            error_code=ErrorCode.STORAGE_ERROR,
            http_status=500,
            context=context,
            original_error=original_error
        )


class StorageUnavailableError(RegistryException):
    """Temporary storage failure (network, 503, rate limiting)."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message=message,
            category=ErrorCategory.TRANSIENT,
            error_code=ErrorCode.STORAGE_UNAVAILABLE,
            http_status=503,
            context=context,
            original_error=original_error
        )


# ============================================
# Error Classification Helper
# ============================================

def classify_exception(exc: Exception) -> RegistryException:
    """
    Classify a generic exception into a structured RegistryException.

    Used for wrapping storage library exceptions (BigQuery, etc.) into
    our structured error hierarchy.
    """
    from google.api_core import exceptions as google_exceptions

    if isinstance(exc, RegistryException):
        return exc

    if isinstance(exc, (
        google_exceptions.ServiceUnavailable,
        google_exceptions.TooManyRequests,
        google_exceptions.InternalServerError,
        google_exceptions.DeadlineExceeded,
        ConnectionError,
        TimeoutError,
    )):
        return StorageUnavailableError(message=str(exc), original_error=exc)

    if isinstance(exc, (ValueError, TypeError)):
        return ValidationError(message=str(exc), original_error=exc)

    return StorageError(
        message=f"Unexpected storage error: {type(exc).__name__}: {exc}",
        original_error=exc
    )
