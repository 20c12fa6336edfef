"""
Usage bookkeeping after a mutation.

Counters in memorial_usage are always rebuilt from the media and timeline
tables and written back whole. A stored row is never incremented, so a lost
or duplicated update is corrected by the next recompute.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from memorial_quota.types.usage import (
    BYTES_PER_MB,
    MediaKind,
    MemorialUsageUpdate,
    PerMemorialUsage,
)
from memorial_quota.usage.aggregator import LEGACY_USAGE_COLUMNS, USAGE_COLUMNS
from memorial_quota.usage.datastore import (
    DatastoreAvailability,
    MissingColumnError,
    UsageStore,
)
from memorial_quota.utils.logging import short_id

logger = logging.getLogger(__name__)

MEDIA_COLUMNS = ("file_type", "file_size")
LEGACY_MEDIA_COLUMNS = ("file_type",)


class UsageRecorder:
    """Recomputes and stores per-memorial usage counters."""

    def __init__(
        self,
        store: Optional[UsageStore],
        availability: DatastoreAvailability,
    ):
        self._store = store
        self._availability = availability

    @property
    def is_available(self) -> bool:
        return bool(self._availability) and self._store is not None

    async def recompute(
        self, user_id: str, memorial_id: Union[int, str]
    ) -> Optional[PerMemorialUsage]:
        """
        Rebuild a memorial's counters from source records and replace the row.

        Returns the stored counters, or None when no datastore is configured.
        Raises on store failure; callers that must not fail wrap this.
        """
        if not self.is_available:
            return None

        memorial_id = str(memorial_id)
        media_rows = await self._fetch_media(memorial_id)
        timeline_events = await self._store.count_timeline_events(memorial_id)

        usage = self.summarize(memorial_id, media_rows, timeline_events)
        await self._store.upsert_memorial_usage(
            user_id,
            memorial_id,
            usage.model_dump(exclude={"memorial_id"}),
        )
        logger.debug(
            f"Recomputed usage for memorial {memorial_id} (user {short_id(user_id)}): "
            f"{usage.photo_count} photos, {usage.video_count} videos, "
            f"{usage.media_size_mb:.2f}MB, {usage.timeline_events} timeline events"
        )
        return usage

    async def update(
        self,
        user_id: str,
        memorial_id: Union[int, str],
        counters: MemorialUsageUpdate,
    ) -> None:
        """
        Upsert only the counters provided.

        Omitted counters keep their stored values (zero for a new row). When
        the merged row would hold fewer media than photos plus videos,
        media_count is raised to that sum and written as well.
        """
        if not self.is_available:
            return

        values = counters.provided()
        if not values:
            logger.debug(f"No counters supplied for memorial {memorial_id}, skipping upsert")
            return

        memorial_id = str(memorial_id)
        merged = (await self._stored_usage(user_id, memorial_id)).model_copy(update=values)
        kinds = merged.photo_count + merged.video_count
        if merged.media_count < kinds:
            logger.info(
                f"Raising media_count of memorial {memorial_id} from {merged.media_count} to {kinds}"
            )
            values["media_count"] = kinds

        await self._store.upsert_memorial_usage(user_id, memorial_id, values)

    async def _stored_usage(self, user_id: str, memorial_id: str) -> PerMemorialUsage:
        try:
            rows = await self._store.fetch_memorial_usage(user_id, USAGE_COLUMNS)
        except MissingColumnError:
            rows = await self._store.fetch_memorial_usage(user_id, LEGACY_USAGE_COLUMNS)

        for row in rows:
            if str(row.get("memorial_id")) == memorial_id:
                return PerMemorialUsage.model_validate(row)
        return PerMemorialUsage.zero(memorial_id)

    async def _fetch_media(self, memorial_id: str) -> List[Dict[str, Any]]:
        try:
            return await self._store.fetch_media(memorial_id, MEDIA_COLUMNS)
        except MissingColumnError as e:
            logger.warning(
                f"media is missing column {e.column or '?'}; "
                f"counting memorial {memorial_id} without file sizes"
            )
            return await self._store.fetch_media(memorial_id, LEGACY_MEDIA_COLUMNS)

    @staticmethod
    def summarize(
        memorial_id: str,
        media_rows: List[Dict[str, Any]],
        timeline_events: int,
    ) -> PerMemorialUsage:
        """Derive counters from a memorial's media rows and timeline count."""
        photos = videos = 0
        total_bytes = 0
        for row in media_rows:
            kind = str(row.get("file_type") or "").lower()
            if kind == MediaKind.IMAGE.value or kind.startswith("image/"):
                photos += 1
            elif kind == MediaKind.VIDEO.value or kind.startswith("video/"):
                videos += 1
            total_bytes += int(row.get("file_size") or 0)

        return PerMemorialUsage(
            memorial_id=memorial_id,
            media_count=len(media_rows),
            photo_count=photos,
            video_count=videos,
            media_size_mb=round(total_bytes / BYTES_PER_MB, 4),
            timeline_events=timeline_events,
        )
