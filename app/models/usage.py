"""
Pydantic models for the usage endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from memorial_quota.types.usage import (
    PlanType,
    SubscriptionStatus,
    UploadItem,
    UsageAction,
    UsageDimension,
    UsageLimits,
    UserUsage,
)


class UsageResponse(BaseModel):
    """Response model for the caller's plan and current usage."""

    plan_type: PlanType
    status: SubscriptionStatus
    limits: UsageLimits
    usage: UserUsage


class PlanInfoResponse(BaseModel):
    """Response model for one plan's limits."""

    plan: PlanType
    name: str
    description: str
    self_serve: bool
    max_memorials: int
    max_photos_per_memorial: int
    max_videos_per_memorial: int
    max_video_size_mb: int
    max_total_storage_mb: int
    max_timeline_events: int
    is_current: bool = False


class AllPlansResponse(BaseModel):
    """Response model for the limits table."""

    plans: List[PlanInfoResponse]
    current_plan: PlanType


class UsageCheckRequest(BaseModel):
    """Request model for checking an action before performing it."""

    action: str = Field(
        ...,
        description="create_memorial, upload_media or add_timeline_event",
        examples=[UsageAction.UPLOAD_MEDIA.value],
    )
    memorial_id: Optional[str] = Field(
        default=None,
        max_length=64,
        description="Target memorial (required for upload_media and add_timeline_event)",
    )
    items: List[UploadItem] = Field(
        default_factory=list,
        max_length=500,
        description="Files in the proposed upload (kind and size in bytes)",
    )


class UsageCheckResponse(BaseModel):
    """Response model for a usage check (allowed or denied)."""

    allowed: bool
    message: Optional[str] = None
    upgrade_required: Optional[bool] = None
    dimension: Optional[UsageDimension] = None
    limit: Optional[int] = None
    current_usage: Optional[float] = None
    requested: Optional[float] = None
    upgrade_plan: Optional[PlanType] = None
    upgrade_url: Optional[str] = None


class MemorialUsageResponse(BaseModel):
    """Response model for a memorial's stored counters."""

    memorial_id: str
    media_count: int = 0
    photo_count: int = 0
    video_count: int = 0
    media_size_mb: float = 0.0
    timeline_events: int = 0
    enforced: bool = Field(
        default=True,
        description="False when no datastore is configured and nothing was stored",
    )
