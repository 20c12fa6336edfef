"""Utility modules for the memorial quota service."""

from .logging import (
    clear_request_context,
    get_request_id,
    set_request_context,
    setup_logging,
    short_id,
    timed,
)

__all__ = [
    "setup_logging",
    "set_request_context",
    "clear_request_context",
    "get_request_id",
    "short_id",
    "timed",
]
