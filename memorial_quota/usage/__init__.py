"""
Usage enforcement engine.

Exports the service facade and the components it is built from.
"""

from memorial_quota.usage.aggregator import UsageAggregator
from memorial_quota.usage.datastore import (
    DatastoreAvailability,
    InMemoryUsageStore,
    MissingColumnError,
    SupabaseUsageStore,
    UsageStore,
    UsageStoreError,
    create_usage_store,
)
from memorial_quota.usage.enforcer import QuotaEnforcer
from memorial_quota.usage.quota_service import (
    UsageLimitService,
    check_usage_limits,
    get_usage_service,
    get_user_usage,
    recompute_memorial_usage,
    refresh_memorial_usage,
    set_usage_service,
    update_memorial_usage,
)
from memorial_quota.usage.recorder import UsageRecorder
from memorial_quota.usage.subscription import SubscriptionResolver

__all__ = [
    "DatastoreAvailability",
    "InMemoryUsageStore",
    "MissingColumnError",
    "QuotaEnforcer",
    "SubscriptionResolver",
    "SupabaseUsageStore",
    "UsageAggregator",
    "UsageLimitService",
    "UsageRecorder",
    "UsageStore",
    "UsageStoreError",
    "check_usage_limits",
    "create_usage_store",
    "get_usage_service",
    "get_user_usage",
    "recompute_memorial_usage",
    "refresh_memorial_usage",
    "set_usage_service",
    "update_memorial_usage",
]
