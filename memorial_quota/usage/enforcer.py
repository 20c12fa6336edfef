"""
Plan limit enforcement.

QuotaEnforcer is a pure function of (limits, usage, action, payload): it
performs no I/O and never raises for a policy violation. Checks run in a
fixed order per action and the first violation wins.
"""

import logging
from typing import Any, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from memorial_quota.types.usage import (
    PLAN_LIMITS,
    MediaKind,
    PlanType,
    TimelineEventPayload,
    UploadMediaPayload,
    UsageAction,
    UsageDecision,
    UsageDimension,
    UsageLimits,
    UserUsage,
    is_unlimited,
    next_self_serve_upgrade,
)

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

# Only the free plan enforces a per-file video size ceiling
PER_FILE_VIDEO_SIZE_PLANS = frozenset({PlanType.FREE})


def pluralize(count: Union[int, float], singular: str, plural: Optional[str] = None) -> str:
    """Format a count with its noun, e.g. '1 memorial', '3 photos'."""
    if isinstance(count, float) and not count.is_integer():
        return f"{count:g} {plural or singular + 's'}"
    count = int(count)
    noun = singular if count == 1 else (plural or singular + "s")
    return f"{count} {noun}"


def format_mb(value: float) -> str:
    return f"{value:,.1f}MB" if not float(value).is_integer() else f"{int(value):,}MB"


class QuotaEnforcer:
    """Evaluates a proposed action against a plan's limits."""

    def evaluate(
        self,
        limits: UsageLimits,
        usage: UserUsage,
        action: Union[UsageAction, str],
        payload: Any = None,
    ) -> UsageDecision:
        """
        Decide whether an action is allowed.

        Args:
            limits: Limits of the caller's plan.
            usage: Current usage snapshot.
            action: Action kind; unrecognised kinds are denied.
            payload: UploadMediaPayload / TimelineEventPayload or an
                equivalent dict, depending on the action.

        Returns:
            UsageDecision; denials carry a message and upgrade hint.
        """
        try:
            action = UsageAction(action)
        except ValueError:
            logger.warning(f"Rejecting unknown usage action: {action!r}")
            return UsageDecision.deny(
                message=f"Unknown action '{action}'.",
                upgrade_required=False,
            )

        if action == UsageAction.CREATE_MEMORIAL:
            return self._check_create_memorial(limits, usage)

        if action == UsageAction.UPLOAD_MEDIA:
            upload = self._parse_payload(UploadMediaPayload, payload)
            if upload is None:
                return self._invalid_payload(action)
            return self._check_upload_media(limits, usage, upload)

        timeline = self._parse_payload(TimelineEventPayload, payload)
        if timeline is None:
            return self._invalid_payload(action)
        return self._check_add_timeline_event(limits, usage, timeline)

    # ------------------------------------------------------------------
    # Action checks
    # ------------------------------------------------------------------

    def _check_create_memorial(self, limits: UsageLimits, usage: UserUsage) -> UsageDecision:
        limit = limits.max_memorials
        if is_unlimited(limit) or usage.memorial_count < limit:
            return UsageDecision.allow()

        return self._deny(
            limits,
            UsageDimension.MEMORIALS,
            f"The {limits.name} plan allows {pluralize(limit, 'memorial')} "
            f"and you already have {usage.memorial_count}.",
            current=usage.memorial_count,
            requested=1,
            unlimited_noun="memorials",
        )

    def _check_upload_media(
        self,
        limits: UsageLimits,
        usage: UserUsage,
        upload: UploadMediaPayload,
    ) -> UsageDecision:
        current = usage.for_memorial(upload.memorial_id)
        photos = upload.count(MediaKind.IMAGE)
        videos = upload.count(MediaKind.VIDEO)

        limit = limits.max_photos_per_memorial
        if not is_unlimited(limit) and current.photo_count + photos > limit:
            return self._deny(
                limits,
                UsageDimension.PHOTOS,
                f"The {limits.name} plan allows {pluralize(limit, 'photo')} per memorial. "
                f"This memorial has {current.photo_count} and you're trying to upload "
                f"{photos} more.",
                current=current.photo_count,
                requested=photos,
                unlimited_noun="photos",
            )

        limit = limits.max_videos_per_memorial
        if not is_unlimited(limit) and current.video_count + videos > limit:
            return self._deny(
                limits,
                UsageDimension.VIDEOS,
                f"The {limits.name} plan allows {pluralize(limit, 'video')} per memorial. "
                f"This memorial has {current.video_count} and you're trying to upload "
                f"{videos} more.",
                current=current.video_count,
                requested=videos,
                unlimited_noun="videos",
            )

        limit = limits.max_video_size_mb
        if limits.plan in PER_FILE_VIDEO_SIZE_PLANS and not is_unlimited(limit):
            for item in upload.items:
                if item.kind == MediaKind.VIDEO and item.size_mb > limit:
                    return self._deny(
                        limits,
                        UsageDimension.VIDEO_SIZE,
                        f"The {limits.name} plan allows videos up to {format_mb(limit)} each. "
                        f"This video is {format_mb(item.size_mb)}.",
                        current=round(item.size_mb, 2),
                        requested=round(item.size_mb, 2),
                        unlimited_noun="video sizes",
                    )

        limit = limits.max_total_storage_mb
        requested_mb = upload.total_size_mb
        if not is_unlimited(limit) and usage.total_storage_mb + requested_mb > limit:
            return self._deny(
                limits,
                UsageDimension.STORAGE,
                f"The {limits.name} plan allows {format_mb(limit)} of total storage. "
                f"You're using {format_mb(usage.total_storage_mb)} and this upload adds "
                f"{format_mb(requested_mb)}.",
                current=round(usage.total_storage_mb, 2),
                requested=round(requested_mb, 2),
                unlimited_noun="storage",
            )

        return UsageDecision.allow()

    def _check_add_timeline_event(
        self,
        limits: UsageLimits,
        usage: UserUsage,
        payload: TimelineEventPayload,
    ) -> UsageDecision:
        current = usage.for_memorial(payload.memorial_id)
        limit = limits.max_timeline_events
        if is_unlimited(limit) or current.timeline_events < limit:
            return UsageDecision.allow()

        return self._deny(
            limits,
            UsageDimension.TIMELINE_EVENTS,
            f"The {limits.name} plan allows {pluralize(limit, 'timeline event')} per memorial "
            f"and this memorial already has {current.timeline_events}.",
            current=current.timeline_events,
            requested=1,
            unlimited_noun="timeline events",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_payload(model: Type[PayloadT], payload: Any) -> Optional[PayloadT]:
        if isinstance(payload, model):
            return payload
        if payload is None:
            return None
        try:
            if isinstance(payload, BaseModel):
                payload = payload.model_dump()
            return model.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Invalid {model.__name__}: {e.error_count()} validation error(s)")
            return None

    @staticmethod
    def _invalid_payload(action: UsageAction) -> UsageDecision:
        return UsageDecision.deny(
            message=f"The request for '{action.value}' is missing or has invalid details.",
            upgrade_required=False,
        )

    @staticmethod
    def _deny(
        limits: UsageLimits,
        dimension: UsageDimension,
        message: str,
        current: float,
        requested: float,
        unlimited_noun: str,
    ) -> UsageDecision:
        upgrade_plan = next_self_serve_upgrade(limits.plan, dimension)
        if upgrade_plan is not None:
            target = PLAN_LIMITS[upgrade_plan]
            if is_unlimited(target.limit_for(dimension)):
                message += f" Upgrade to {target.name} for unlimited {unlimited_noun}."
            else:
                message += f" Upgrade to {target.name} for higher limits."
        else:
            managed = PLAN_LIMITS[PlanType.FULLY_MANAGED]
            if limits.plan != PlanType.FULLY_MANAGED and is_unlimited(managed.limit_for(dimension)):
                message += f" Contact us about the {managed.name} plan for unlimited {unlimited_noun}."

        return UsageDecision.deny(
            message=message,
            upgrade_required=upgrade_plan is not None,
            dimension=dimension,
            limit=limits.limit_for(dimension),
            current_usage=current,
            requested=requested,
            upgrade_plan=upgrade_plan,
        )
