"""
Errors raised by the quota API.

Every error carries an HTTP status and a stable ErrorCode; error_handlers.py
renders them as {"success": false, "error", "error_code", "details"}.

    MemorialQuotaException (500)
    ├── AuthenticationError (401)  missing or malformed X-User-ID
    ├── QuotaExceededError (403)   plan limit would be exceeded
    └── DatabaseError (500)        usage tables unreachable
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable codes clients branch on."""

    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    DATABASE_ERROR = "DATABASE_ERROR"


class MemorialQuotaException(Exception):
    """
    Base class for API errors.

    ``message`` is shown to the client; ``internal_message`` only goes to
    the logs.
    """

    status_code: int = 500
    default_error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        self.internal_message = internal_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "error_code": self.error_code.value,
        }
        if self.details:
            body["details"] = self.details
        return body


class AuthenticationError(MemorialQuotaException):
    status_code = 401
    default_error_code = ErrorCode.AUTHENTICATION_REQUIRED
    default_message = "Authentication required"


class QuotaExceededError(MemorialQuotaException):
    """
    A memorial, upload or timeline entry would go over the plan.

    The numbers behind the denial travel in ``details`` together with
    ``upgrade_required``; ``upgrade_url`` is only attached when a plan
    change would actually lift the limit.
    """

    status_code = 403
    default_error_code = ErrorCode.QUOTA_EXCEEDED
    default_message = "Plan limit reached"

    def __init__(
        self,
        message: Optional[str] = None,
        quota_type: Optional[str] = None,
        limit: Optional[float] = None,
        current_usage: Optional[float] = None,
        requested: Optional[float] = None,
        upgrade_required: bool = False,
        upgrade_url: Optional[str] = None,
    ):
        numbers = {"limit": limit, "current_usage": current_usage, "requested": requested}
        details: Dict[str, Any] = {k: v for k, v in numbers.items() if v is not None}
        if quota_type:
            details["quota_type"] = quota_type
        details["upgrade_required"] = upgrade_required
        if upgrade_required and upgrade_url:
            details["upgrade_url"] = upgrade_url

        self.upgrade_required = upgrade_required
        super().__init__(message=message, details=details)


class DatabaseError(MemorialQuotaException):
    """Usage bookkeeping failed; the cause is logged, never returned."""

    status_code = 500
    default_error_code = ErrorCode.DATABASE_ERROR
    default_message = "A database error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.original_error = original_error
        internal = None
        if operation and original_error is not None:
            internal = f"{operation} failed: {type(original_error).__name__}: {original_error}"
        super().__init__(message=message, internal_message=internal)
