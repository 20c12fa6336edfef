"""
Memorial quota API package.

FastAPI components (exceptions, handlers, middleware, routes) assembled by
server.py around the memorial_quota engine.
"""

from .error_handlers import register_exception_handlers
from .exceptions import (
    AuthenticationError,
    DatabaseError,
    ErrorCode,
    MemorialQuotaException,
    QuotaExceededError,
)

__all__ = [
    "register_exception_handlers",
    "AuthenticationError",
    "DatabaseError",
    "ErrorCode",
    "MemorialQuotaException",
    "QuotaExceededError",
]
