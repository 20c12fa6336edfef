"""Pydantic models for the memorial quota API."""

from .usage import (
    AllPlansResponse,
    MemorialUsageResponse,
    PlanInfoResponse,
    UsageCheckRequest,
    UsageCheckResponse,
    UsageResponse,
)

__all__ = [
    "AllPlansResponse",
    "MemorialUsageResponse",
    "PlanInfoResponse",
    "UsageCheckRequest",
    "UsageCheckResponse",
    "UsageResponse",
]
