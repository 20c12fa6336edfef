"""
Type definitions for the memorial quota service.
"""

from .usage import (
    BYTES_PER_MB,
    PLAN_LIMITS,
    PLAN_ORDER,
    UNLIMITED,
    MediaKind,
    MemorialUsageUpdate,
    PerMemorialUsage,
    PlanType,
    SubscriptionStatus,
    TimelineEventPayload,
    UploadItem,
    UploadMediaPayload,
    UsageAction,
    UsageDecision,
    UsageDimension,
    UsageLimits,
    UsageSummary,
    UserSubscription,
    UserUsage,
    get_all_plans,
    get_plan_limits,
    is_unlimited,
    next_self_serve_upgrade,
    resolve_plan_type,
)

__all__ = [
    "BYTES_PER_MB",
    "PLAN_LIMITS",
    "PLAN_ORDER",
    "UNLIMITED",
    "MediaKind",
    "MemorialUsageUpdate",
    "PerMemorialUsage",
    "PlanType",
    "SubscriptionStatus",
    "TimelineEventPayload",
    "UploadItem",
    "UploadMediaPayload",
    "UsageAction",
    "UsageDecision",
    "UsageDimension",
    "UsageLimits",
    "UsageSummary",
    "UserSubscription",
    "UserUsage",
    "get_all_plans",
    "get_plan_limits",
    "is_unlimited",
    "next_self_serve_upgrade",
    "resolve_plan_type",
]
