"""Middleware components for the memorial quota API."""

from .logging import RequestLoggingMiddleware
from .quota_check import (
    MemorialUsageRefresh,
    decision_to_error,
    enforce_usage_limit,
    refresh_usage_for_memorial,
    require_memorial_slot,
)

__all__ = [
    # Logging
    "RequestLoggingMiddleware",
    # Quota
    "MemorialUsageRefresh",
    "decision_to_error",
    "enforce_usage_limit",
    "refresh_usage_for_memorial",
    "require_memorial_slot",
]
