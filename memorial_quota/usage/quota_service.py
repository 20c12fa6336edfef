"""
Usage limit service for memorial plans.

This module ties the quota engine together:
- check_usage_limits: Decide whether a create/upload/timeline action is allowed
- get_user_usage: Current consumption snapshot
- update_memorial_usage: Partial counter upsert
- recompute_memorial_usage: Rebuild a memorial's counters from source records
- refresh_memorial_usage: Best-effort recompute for post-mutation hooks

When no datastore is configured every check is allowed and usage reads as
zero, so local environments stay usable.
"""

import logging
from typing import Any, Optional, Union

from memorial_quota.config import Settings, get_settings
from memorial_quota.types.usage import (
    MemorialUsageUpdate,
    PerMemorialUsage,
    SubscriptionStatus,
    UsageAction,
    UsageDecision,
    UsageSummary,
    UserUsage,
    get_plan_limits,
)
from memorial_quota.usage.aggregator import UsageAggregator
from memorial_quota.usage.datastore import (
    DatastoreAvailability,
    UsageStore,
    create_usage_store,
)
from memorial_quota.usage.enforcer import QuotaEnforcer
from memorial_quota.usage.recorder import UsageRecorder
from memorial_quota.usage.subscription import SubscriptionResolver
from memorial_quota.utils.logging import short_id

logger = logging.getLogger(__name__)


class UsageLimitService:
    """
    Service for checking plan limits and keeping usage counters current.

    Collaborators default to ones built from the given store; pass them
    explicitly to substitute fakes in tests.
    """

    def __init__(
        self,
        store: Optional[UsageStore],
        availability: DatastoreAvailability,
        resolver: Optional[SubscriptionResolver] = None,
        aggregator: Optional[UsageAggregator] = None,
        recorder: Optional[UsageRecorder] = None,
        enforcer: Optional[QuotaEnforcer] = None,
    ):
        self._store = store
        self._availability = availability
        self.resolver = resolver or SubscriptionResolver(store, availability)
        self.aggregator = aggregator or UsageAggregator(store, availability)
        self.recorder = recorder or UsageRecorder(store, availability)
        self.enforcer = enforcer or QuotaEnforcer()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "UsageLimitService":
        """Build the Supabase-backed service from application settings."""
        settings = settings or get_settings()
        store = create_usage_store(settings)
        availability = DatastoreAvailability(configured=store is not None)
        return cls(store, availability)

    @property
    def is_enforcing(self) -> bool:
        """False when running without a datastore (fail-open)."""
        return bool(self._availability) and self._store is not None

    @property
    def store(self) -> Optional[UsageStore]:
        return self._store

    async def check_usage_limits(
        self,
        user_id: str,
        action: Union[UsageAction, str],
        payload: Any = None,
    ) -> UsageDecision:
        """
        Check whether a user may perform an action.

        Args:
            user_id: The user identifier.
            action: create_memorial, upload_media or add_timeline_event.
            payload: Action details (memorial id, upload items).

        Returns:
            UsageDecision. Policy denials are returned, never raised.
        """
        if not self.is_enforcing:
            return UsageDecision.allow()

        plan = await self.resolver.resolve_plan(user_id)
        limits = get_plan_limits(plan)
        usage = await self.aggregator.aggregate(user_id)

        decision = self.enforcer.evaluate(limits, usage, action, payload)
        action_name = action.value if isinstance(action, UsageAction) else action
        if decision.allowed:
            logger.debug(f"Usage check passed for user {short_id(user_id)}: {action_name}")
        else:
            logger.info(
                f"Usage check denied for user {short_id(user_id)}: {action_name} "
                f"({limits.plan.value}, {decision.dimension.value if decision.dimension else 'invalid'})",
                extra={
                    "limit": decision.limit,
                    "current_usage": decision.current_usage,
                    "requested": decision.requested,
                    "upgrade_required": decision.upgrade_required,
                },
            )
        return decision

    async def get_user_usage(self, user_id: str) -> UserUsage:
        """Get current usage for a user (zero when no datastore is configured)."""
        return await self.aggregator.aggregate(user_id)

    async def get_usage_summary(self, user_id: str) -> UsageSummary:
        """Plan, subscription status, limits and usage for a user."""
        subscription = await self.resolver.get_subscription(user_id)
        usage = await self.aggregator.aggregate(user_id)
        plan = get_plan_limits(subscription.plan_type if subscription else None)
        return UsageSummary(
            plan_type=plan.plan,
            status=subscription.status if subscription else SubscriptionStatus.ACTIVE,
            limits=plan,
            usage=usage,
        )

    async def update_memorial_usage(
        self,
        user_id: str,
        memorial_id: Union[int, str],
        counters: Union[MemorialUsageUpdate, dict],
    ) -> None:
        """
        Upsert the counters a caller has at hand.

        Prefer recompute_memorial_usage; partial updates trust the caller's
        numbers until the next recompute replaces them.
        """
        if isinstance(counters, dict):
            counters = MemorialUsageUpdate.model_validate(counters)
        await self.recorder.update(user_id, memorial_id, counters)

    async def recompute_memorial_usage(
        self,
        user_id: str,
        memorial_id: Union[int, str],
    ) -> Optional[PerMemorialUsage]:
        """Rebuild and store a memorial's counters. Raises on store failure."""
        return await self.recorder.recompute(user_id, memorial_id)

    async def refresh_memorial_usage(
        self,
        user_id: str,
        memorial_id: Union[int, str],
    ) -> Optional[PerMemorialUsage]:
        """
        Recompute a memorial's counters after a successful mutation.

        Bookkeeping failures are logged and swallowed: the mutation already
        happened and must not be reported as failed or rolled back.
        """
        try:
            return await self.recorder.recompute(user_id, memorial_id)
        except Exception as e:
            logger.error(
                f"Failed to refresh usage for memorial {memorial_id} "
                f"(user {short_id(user_id)}): {e}"
            )
            return None


# Singleton instance
_usage_service: Optional[UsageLimitService] = None


def get_usage_service() -> UsageLimitService:
    """Get the singleton usage limit service instance."""
    global _usage_service
    if _usage_service is None:
        _usage_service = UsageLimitService.from_settings()
    return _usage_service


def set_usage_service(service: Optional[UsageLimitService]) -> None:
    """Replace the singleton (None resets it to be rebuilt from settings)."""
    global _usage_service
    _usage_service = service


# Convenience functions for direct access
async def check_usage_limits(
    user_id: str,
    action: Union[UsageAction, str],
    payload: Any = None,
) -> UsageDecision:
    """Check whether a user may perform an action."""
    return await get_usage_service().check_usage_limits(user_id, action, payload)


async def get_user_usage(user_id: str) -> UserUsage:
    """Get current usage for a user."""
    return await get_usage_service().get_user_usage(user_id)


async def update_memorial_usage(
    user_id: str,
    memorial_id: Union[int, str],
    counters: Union[MemorialUsageUpdate, dict],
) -> None:
    """Upsert partial counters for a memorial."""
    await get_usage_service().update_memorial_usage(user_id, memorial_id, counters)


async def recompute_memorial_usage(
    user_id: str,
    memorial_id: Union[int, str],
) -> Optional[PerMemorialUsage]:
    """Rebuild and store a memorial's counters."""
    return await get_usage_service().recompute_memorial_usage(user_id, memorial_id)


async def refresh_memorial_usage(
    user_id: str,
    memorial_id: Union[int, str],
) -> Optional[PerMemorialUsage]:
    """Best-effort recompute for post-mutation hooks."""
    return await get_usage_service().refresh_memorial_usage(user_id, memorial_id)
