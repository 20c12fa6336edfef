"""
Pydantic models for memorial plan limits and usage tracking.

This module defines the data models for:
- Plan types and the per-plan limits table
- Per-memorial usage rows and the derived per-user usage snapshot
- Action payloads evaluated by the quota enforcer
- The allow/deny decision returned to callers
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UNLIMITED = -1
BYTES_PER_MB = 1024 * 1024


class PlanType(str, Enum):
    """
    Available subscription plans, in tier order.

    Each plan caps memorials, media and timeline entries differently.
    """
    FREE = "free"
    PREMIUM = "premium"
    FULLY_MANAGED = "fully_managed"


class UsageAction(str, Enum):
    """Actions callers gate behind a usage check."""
    CREATE_MEMORIAL = "create_memorial"
    UPLOAD_MEDIA = "upload_media"
    ADD_TIMELINE_EVENT = "add_timeline_event"


class MediaKind(str, Enum):
    """Kinds of media attached to a memorial."""
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"


class UsageDimension(str, Enum):
    """Independently capped resource axes."""
    MEMORIALS = "memorials"
    PHOTOS = "photos"
    VIDEOS = "videos"
    VIDEO_SIZE = "video_size"
    STORAGE = "storage"
    TIMELINE_EVENTS = "timeline_events"


class SubscriptionStatus(str, Enum):
    """Lifecycle states of a stored subscription."""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"


def is_unlimited(limit: int) -> bool:
    """True when a limit carries the unlimited sentinel."""
    return limit == UNLIMITED


def _coerce_id(value: Union[int, str]) -> str:
    return str(value).strip()


class UsageLimits(BaseModel):
    """Limits for one plan. -1 means unlimited for that dimension."""

    model_config = ConfigDict(frozen=True)

    plan: PlanType
    name: str
    max_memorials: int = Field(
        ...,
        description="Memorials a user may own (-1 for unlimited)"
    )
    max_photos_per_memorial: int = Field(
        ...,
        description="Image items per memorial (-1 for unlimited)"
    )
    max_videos_per_memorial: int = Field(
        ...,
        description="Video items per memorial (-1 for unlimited)"
    )
    max_video_size_mb: int = Field(
        ...,
        description="Size of a single video in MB (-1 for unlimited)"
    )
    max_total_storage_mb: int = Field(
        ...,
        description="Media size across all of a user's memorials in MB (-1 for unlimited)"
    )
    max_timeline_events: int = Field(
        ...,
        description="Timeline entries per memorial (-1 for unlimited)"
    )
    self_serve: bool = Field(
        default=True,
        description="Whether users can switch to this plan without contacting sales"
    )
    description: str = Field(
        default="",
        description="Human-readable plan description"
    )

    def limit_for(self, dimension: UsageDimension) -> int:
        """Return the limit that applies to a dimension."""
        return {
            UsageDimension.MEMORIALS: self.max_memorials,
            UsageDimension.PHOTOS: self.max_photos_per_memorial,
            UsageDimension.VIDEOS: self.max_videos_per_memorial,
            UsageDimension.VIDEO_SIZE: self.max_video_size_mb,
            UsageDimension.STORAGE: self.max_total_storage_mb,
            UsageDimension.TIMELINE_EVENTS: self.max_timeline_events,
        }[dimension]


# Plan limits, in tier order
PLAN_LIMITS: Dict[PlanType, UsageLimits] = {
    PlanType.FREE: UsageLimits(
        plan=PlanType.FREE,
        name="Free",
        max_memorials=1,
        max_photos_per_memorial=3,
        max_videos_per_memorial=1,
        max_video_size_mb=50,
        max_total_storage_mb=100,
        max_timeline_events=5,
        description="One memorial with a handful of photos and a short video",
    ),
    PlanType.PREMIUM: UsageLimits(
        plan=PlanType.PREMIUM,
        name="Premium",
        max_memorials=UNLIMITED,
        max_photos_per_memorial=500,
        max_videos_per_memorial=50,
        max_video_size_mb=2048,  # shown on the pricing page, not enforced per file
        max_total_storage_mb=UNLIMITED,
        max_timeline_events=UNLIMITED,
        description="Unlimited memorials and timelines with large galleries",
    ),
    PlanType.FULLY_MANAGED: UsageLimits(
        plan=PlanType.FULLY_MANAGED,
        name="Fully Managed",
        max_memorials=UNLIMITED,
        max_photos_per_memorial=UNLIMITED,
        max_videos_per_memorial=UNLIMITED,
        max_video_size_mb=UNLIMITED,
        max_total_storage_mb=UNLIMITED,
        max_timeline_events=UNLIMITED,
        self_serve=False,
        description="Our team builds and maintains the memorial for you",
    ),
}

PLAN_ORDER: List[PlanType] = list(PLAN_LIMITS.keys())


def resolve_plan_type(value: Optional[Union[str, PlanType]]) -> PlanType:
    """
    Normalise a raw plan identifier.

    Unknown or missing identifiers resolve to the free plan, the most
    restrictive policy.
    """
    if isinstance(value, PlanType):
        return value
    if not value:
        return PlanType.FREE
    try:
        return PlanType(str(value).strip().lower())
    except ValueError:
        return PlanType.FREE


def get_plan_limits(plan: Optional[Union[str, PlanType]]) -> UsageLimits:
    """
    Get the limits for a plan.

    Args:
        plan: Plan identifier; unknown values fall back to the free plan.

    Returns:
        UsageLimits for the plan.
    """
    return PLAN_LIMITS[resolve_plan_type(plan)]


def get_all_plans() -> List[UsageLimits]:
    """Get every plan's limits in tier order."""
    return [PLAN_LIMITS[plan] for plan in PLAN_ORDER]


def _is_more_permissive(candidate: int, current: int) -> bool:
    if is_unlimited(current):
        return False
    return is_unlimited(candidate) or candidate > current


def next_self_serve_upgrade(
    plan: Union[str, PlanType],
    dimension: UsageDimension,
) -> Optional[PlanType]:
    """
    Find the first higher self-serve plan that lifts a dimension's limit.

    Returns None when no self-serve plan above the current one would change
    the outcome, i.e. an upgrade would not resolve the denial.
    """
    current = resolve_plan_type(plan)
    current_limit = PLAN_LIMITS[current].limit_for(dimension)
    for candidate in PLAN_ORDER[PLAN_ORDER.index(current) + 1:]:
        limits = PLAN_LIMITS[candidate]
        if limits.self_serve and _is_more_permissive(limits.limit_for(dimension), current_limit):
            return candidate
    return None


class PerMemorialUsage(BaseModel):
    """
    Usage counters for one memorial, as stored in memorial_usage.

    The row is a cache over the media and timeline tables, replaced by
    full recomputation after every mutation.
    """

    memorial_id: str
    media_count: int = Field(default=0, ge=0)
    photo_count: int = Field(default=0, ge=0)
    video_count: int = Field(default=0, ge=0)
    media_size_mb: float = Field(default=0.0, ge=0)
    timeline_events: int = Field(default=0, ge=0)

    @field_validator("memorial_id", mode="before")
    @classmethod
    def _normalise_memorial_id(cls, value):
        return _coerce_id(value)

    @field_validator("media_count", "photo_count", "video_count", "timeline_events", mode="before")
    @classmethod
    def _coerce_count(cls, value):
        return 0 if value is None else int(value)

    @field_validator("media_size_mb", mode="before")
    @classmethod
    def _coerce_size(cls, value):
        return 0.0 if value is None else float(value)

    @classmethod
    def zero(cls, memorial_id: Union[int, str]) -> "PerMemorialUsage":
        """Usage of a memorial that has no stored row yet."""
        return cls(memorial_id=memorial_id)


class UserUsage(BaseModel):
    """Current consumption for one user, derived on demand."""

    memorial_count: int = Field(default=0, ge=0)
    total_storage_mb: float = Field(default=0.0, ge=0)
    memorial_usage: List[PerMemorialUsage] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "UserUsage":
        """Zero usage, returned when no datastore is configured."""
        return cls()

    @classmethod
    def from_rows(cls, memorial_count: int, rows: List[PerMemorialUsage]) -> "UserUsage":
        """Build a snapshot, summing storage across the user's memorials."""
        return cls(
            memorial_count=memorial_count,
            total_storage_mb=sum(row.media_size_mb for row in rows),
            memorial_usage=rows,
        )

    def for_memorial(self, memorial_id: Union[int, str]) -> PerMemorialUsage:
        """Return a memorial's counters, or zero usage when it has none."""
        key = _coerce_id(memorial_id)
        for row in self.memorial_usage:
            if row.memorial_id == key:
                return row
        return PerMemorialUsage.zero(key)


class UploadItem(BaseModel):
    """One file in a proposed upload, described by kind and size only."""

    kind: MediaKind
    size_bytes: int = Field(default=0, ge=0)

    @property
    def size_mb(self) -> float:
        return self.size_bytes / BYTES_PER_MB


class UploadMediaPayload(BaseModel):
    """Payload for upload_media checks."""

    memorial_id: str
    items: List[UploadItem] = Field(default_factory=list)

    @field_validator("memorial_id", mode="before")
    @classmethod
    def _normalise_memorial_id(cls, value):
        return _coerce_id(value)

    def count(self, kind: MediaKind) -> int:
        return sum(1 for item in self.items if item.kind == kind)

    @property
    def total_size_mb(self) -> float:
        return sum(item.size_mb for item in self.items)


class TimelineEventPayload(BaseModel):
    """Payload for add_timeline_event checks."""

    memorial_id: str

    @field_validator("memorial_id", mode="before")
    @classmethod
    def _normalise_memorial_id(cls, value):
        return _coerce_id(value)


class MemorialUsageUpdate(BaseModel):
    """
    Partial counters for a memorial_usage upsert.

    Omitted fields keep their stored value (or default to zero on insert).
    A supplied media_count may not be below the supplied photo and video
    counts.
    """

    media_count: Optional[int] = Field(default=None, ge=0)
    photo_count: Optional[int] = Field(default=None, ge=0)
    video_count: Optional[int] = Field(default=None, ge=0)
    media_size_mb: Optional[float] = Field(default=None, ge=0)
    timeline_events: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_media_total(self):
        if self.media_count is not None:
            kinds = (self.photo_count or 0) + (self.video_count or 0)
            if self.media_count < kinds:
                raise ValueError(
                    f"media_count ({self.media_count}) is below photo_count + video_count ({kinds})"
                )
        return self

    def provided(self) -> Dict[str, Union[int, float]]:
        """Only the counters the caller supplied."""
        return self.model_dump(exclude_none=True)


class UsageDecision(BaseModel):
    """
    Result of a usage limit check.

    Denials carry a message naming the limit, the current count and the
    requested amount, plus whether changing plan would resolve them.
    """

    allowed: bool
    message: Optional[str] = None
    upgrade_required: Optional[bool] = None
    dimension: Optional[UsageDimension] = None
    limit: Optional[int] = None
    current_usage: Optional[float] = None
    requested: Optional[float] = None
    upgrade_plan: Optional[PlanType] = None

    @classmethod
    def allow(cls) -> "UsageDecision":
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        message: str,
        upgrade_required: bool,
        dimension: Optional[UsageDimension] = None,
        limit: Optional[int] = None,
        current_usage: Optional[float] = None,
        requested: Optional[float] = None,
        upgrade_plan: Optional[PlanType] = None,
    ) -> "UsageDecision":
        return cls(
            allowed=False,
            message=message,
            upgrade_required=upgrade_required,
            dimension=dimension,
            limit=limit,
            current_usage=current_usage,
            requested=requested,
            upgrade_plan=upgrade_plan,
        )


class UserSubscription(BaseModel):
    """A row of user_subscriptions, read-only from this service's side."""

    id: Optional[Union[int, str]] = None
    user_id: str
    plan_type: PlanType = PlanType.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("plan_type", mode="before")
    @classmethod
    def _normalise_plan(cls, value):
        return resolve_plan_type(value)

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value):
        try:
            return SubscriptionStatus(value or SubscriptionStatus.ACTIVE.value)
        except ValueError:
            return SubscriptionStatus.INCOMPLETE


class UsageSummary(BaseModel):
    """Plan, subscription status, limits and usage for one user."""

    plan_type: PlanType
    status: SubscriptionStatus
    limits: UsageLimits
    usage: UserUsage
