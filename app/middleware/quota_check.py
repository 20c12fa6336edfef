"""
Plan limit enforcement for mutation endpoints.

Provides the pre-mutation gate (enforce_usage_limit and the dependencies
built on it) and the post-mutation hook (MemorialUsageRefresh) that keeps
memorial_usage current after media or timeline changes.
"""

import logging
from typing import Any, Optional, Union

from fastapi import Depends

from memorial_quota.types.usage import PerMemorialUsage, UsageAction, UsageDecision
from memorial_quota.usage.quota_service import (
    check_usage_limits as service_check_usage_limits,
    refresh_memorial_usage as service_refresh_memorial_usage,
)
from memorial_quota.utils.logging import short_id

from ..auth import get_current_user_id
from ..exceptions import QuotaExceededError

logger = logging.getLogger(__name__)

UPGRADE_URL = "/pricing"


def decision_to_error(decision: UsageDecision) -> QuotaExceededError:
    """Convert a denial into the exception mutation endpoints raise."""
    return QuotaExceededError(
        message=decision.message,
        quota_type=decision.dimension.value if decision.dimension else None,
        limit=decision.limit,
        current_usage=decision.current_usage,
        requested=decision.requested,
        upgrade_required=bool(decision.upgrade_required),
        upgrade_url=UPGRADE_URL,
    )


async def enforce_usage_limit(
    user_id: str,
    action: Union[UsageAction, str],
    payload: Any = None,
) -> UsageDecision:
    """
    Check an action against the caller's plan before performing it.

    Args:
        user_id: The authenticated user ID.
        action: The action about to be performed.
        payload: Action details (memorial id, upload items).

    Returns:
        The allowing decision.

    Raises:
        QuotaExceededError: 403 when the plan does not allow the action.

    Usage:
        await enforce_usage_limit(
            user_id,
            UsageAction.UPLOAD_MEDIA,
            UploadMediaPayload(memorial_id=memorial_id, items=items),
        )
    """
    decision = await service_check_usage_limits(user_id, action, payload)
    if not decision.allowed:
        raise decision_to_error(decision)
    return decision


async def require_memorial_slot(user_id: str = Depends(get_current_user_id)) -> str:
    """
    FastAPI dependency that enforces the memorial count limit.

    Usage:
        @router.post("/memorials")
        async def create_memorial(
            request: MemorialRequest,
            user_id: str = Depends(require_memorial_slot)
        ):
            # Only reached when the plan allows another memorial
            ...
    """
    await enforce_usage_limit(user_id, UsageAction.CREATE_MEMORIAL)
    return user_id


class MemorialUsageRefresh:
    """
    Context manager that recomputes a memorial's counters after a mutation.

    The recompute runs only when the wrapped block succeeds. Bookkeeping
    failures are logged and never surface to the caller, and exceptions
    raised by the block itself are never suppressed.

    Usage:
        async with MemorialUsageRefresh(user_id, memorial_id) as refresh:
            await store_uploaded_media(...)
        # refresh.usage holds the new counters (None if the refresh failed)
    """

    def __init__(self, user_id: str, memorial_id: Union[int, str]):
        self.user_id = user_id
        self.memorial_id = str(memorial_id)
        self.usage: Optional[PerMemorialUsage] = None
        self._refreshed = False

    @property
    def refreshed(self) -> bool:
        return self._refreshed

    async def __aenter__(self) -> "MemorialUsageRefresh":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            try:
                self.usage = await service_refresh_memorial_usage(self.user_id, self.memorial_id)
            except Exception as e:
                logger.error(f"Failed to refresh usage for memorial {self.memorial_id}: {e}")
            self._refreshed = self.usage is not None
            if self._refreshed:
                logger.debug(
                    f"Usage refreshed for memorial {self.memorial_id} "
                    f"(user {short_id(self.user_id)})"
                )

        return False  # Don't suppress exceptions


async def refresh_usage_for_memorial(
    user_id: str,
    memorial_id: Union[int, str],
) -> Optional[PerMemorialUsage]:
    """
    Recompute a memorial's counters after a mutation outside a with-block.

    Never raises; returns None when the refresh failed or no datastore is
    configured.
    """
    return await service_refresh_memorial_usage(user_id, str(memorial_id))
