"""
Subscription lookup.

Resolves the plan a user is on from user_subscriptions. Any failure to
resolve (no datastore, no row, query error, unknown plan) yields the free
plan.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from memorial_quota.types.usage import PlanType, UserSubscription
from memorial_quota.usage.datastore import (
    DatastoreAvailability,
    UsageStore,
)
from memorial_quota.utils.logging import short_id

logger = logging.getLogger(__name__)


class SubscriptionResolver:
    """Reads the caller's subscription and plan."""

    def __init__(
        self,
        store: Optional[UsageStore],
        availability: DatastoreAvailability,
    ):
        self._store = store
        self._availability = availability

    async def get_subscription(self, user_id: str) -> Optional[UserSubscription]:
        """
        Get the stored subscription for a user.

        Returns None when the datastore is not configured, when the user has
        no subscription row, or when the lookup fails.
        """
        if not self._availability or self._store is None:
            logger.debug("Datastore not configured, no subscription to resolve")
            return None

        try:
            row = await self._store.fetch_subscription(user_id)
        except Exception as e:
            # Includes transport errors raised outside PostgREST
            logger.warning(
                f"Failed to load subscription for user {short_id(user_id)}; "
                f"treating as free plan ({e})"
            )
            return None

        if row is None:
            return None

        try:
            return UserSubscription.model_validate({**row, "user_id": str(row.get("user_id") or user_id)})
        except ValidationError as e:
            logger.warning(
                f"Malformed subscription row for user {short_id(user_id)}; "
                f"treating as free plan ({e.error_count()} error(s))"
            )
            return None

    async def resolve_plan(self, user_id: str) -> PlanType:
        """Get the user's plan, defaulting to free."""
        subscription = await self.get_subscription(user_id)
        if subscription is None:
            return PlanType.FREE
        return subscription.plan_type
