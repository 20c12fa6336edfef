"""
Plan limits and usage endpoints.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path

from memorial_quota.types.usage import (
    PerMemorialUsage,
    UsageAction,
    get_all_plans,
)
from memorial_quota.usage.datastore import UsageStoreError
from memorial_quota.usage.quota_service import get_usage_service
from memorial_quota.utils.logging import short_id

from ..auth import get_current_user_id
from ..exceptions import DatabaseError
from ..middleware.quota_check import UPGRADE_URL
from ..models import (
    AllPlansResponse,
    MemorialUsageResponse,
    PlanInfoResponse,
    UsageCheckRequest,
    UsageCheckResponse,
    UsageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])

MEMORIAL_ID_PATH = Path(..., min_length=1, max_length=64, description="Memorial identifier")


def _usage_to_response(usage: Optional[PerMemorialUsage], memorial_id: str) -> MemorialUsageResponse:
    if usage is None:
        return MemorialUsageResponse(memorial_id=memorial_id, enforced=False)
    return MemorialUsageResponse(**usage.model_dump(), enforced=True)


def _check_payload(request: UsageCheckRequest) -> Optional[Dict[str, Any]]:
    """Build the action payload; omitted when no memorial is named."""
    if request.memorial_id is None:
        return None
    payload: Dict[str, Any] = {"memorial_id": request.memorial_id}
    if request.action == UsageAction.UPLOAD_MEDIA.value:
        payload["items"] = [item.model_dump() for item in request.items]
    return payload


@router.get("")
async def get_usage(
    user_id: str = Depends(get_current_user_id),
) -> UsageResponse:
    """
    Get the caller's plan, subscription status, limits and current usage.
    """
    try:
        summary = await get_usage_service().get_usage_summary(user_id)
    except UsageStoreError as e:
        raise DatabaseError(
            message="Failed to fetch usage data",
            operation="get_usage_summary",
            original_error=e,
        )

    return UsageResponse(**summary.model_dump())


@router.get("/plans")
async def get_plans(
    user_id: str = Depends(get_current_user_id),
) -> AllPlansResponse:
    """
    Get the limits of every plan.

    -1 marks an unlimited dimension; the caller's plan is flagged as current.
    """
    current_plan = await get_usage_service().resolver.resolve_plan(user_id)

    plans = [
        PlanInfoResponse(
            **limits.model_dump(),
            is_current=limits.plan == current_plan,
        )
        for limits in get_all_plans()
    ]

    return AllPlansResponse(plans=plans, current_plan=current_plan)


@router.post("/check")
async def check_usage(
    request: UsageCheckRequest,
    user_id: str = Depends(get_current_user_id),
) -> UsageCheckResponse:
    """
    Check whether an action is allowed before performing it.

    Denials are returned with 200 and allowed=false so clients can show the
    message and upgrade prompt.
    """
    try:
        decision = await get_usage_service().check_usage_limits(
            user_id,
            request.action,
            _check_payload(request),
        )
    except UsageStoreError as e:
        raise DatabaseError(
            message="Failed to check usage limits",
            operation="check_usage_limits",
            original_error=e,
        )

    return UsageCheckResponse(
        **decision.model_dump(),
        upgrade_url=UPGRADE_URL if decision.upgrade_required else None,
    )


@router.post("/memorials/{memorial_id}/recompute")
async def recompute_memorial_usage(
    memorial_id: str = MEMORIAL_ID_PATH,
    user_id: str = Depends(get_current_user_id),
) -> MemorialUsageResponse:
    """
    Rebuild a memorial's counters from its media and timeline entries.
    """
    try:
        usage = await get_usage_service().recompute_memorial_usage(user_id, memorial_id)
    except UsageStoreError as e:
        raise DatabaseError(
            message="Failed to recompute memorial usage",
            operation="recompute_memorial_usage",
            original_error=e,
        )

    logger.info(f"Usage recompute for memorial {memorial_id} requested by user {short_id(user_id)}")
    return _usage_to_response(usage, memorial_id)
