"""
Usage aggregation.

Builds a UserUsage snapshot from the memorials count and the user's
memorial_usage rows. Deployments that predate the per-kind counters are
read with a reduced projection and zero-filled.
"""

import logging
from typing import Any, Dict, List, Optional

from memorial_quota.types.usage import PerMemorialUsage, UserUsage
from memorial_quota.usage.datastore import (
    DatastoreAvailability,
    MissingColumnError,
    UsageStore,
)
from memorial_quota.utils.logging import short_id, timed

logger = logging.getLogger(__name__)

USAGE_COLUMNS = (
    "memorial_id",
    "media_count",
    "photo_count",
    "video_count",
    "media_size_mb",
    "timeline_events",
)

# Columns present since the first memorial_usage migration
LEGACY_USAGE_COLUMNS = (
    "memorial_id",
    "media_count",
    "media_size_mb",
    "timeline_events",
)


class UsageAggregator:
    """Computes current consumption for a user."""

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

    @timed("usage_aggregation")
    async def aggregate(self, user_id: str) -> UserUsage:
        """
        Get the usage snapshot for a user.

        Returns zero usage when no datastore is configured. Store failures
        other than a missing column propagate to the caller.
        """
        if not self.is_available:
            return UserUsage.empty()

        memorial_count = await self._store.count_memorials(user_id)
        rows = await self._fetch_rows(user_id)
        return UserUsage.from_rows(memorial_count, rows)

    async def _fetch_rows(self, user_id: str) -> List[PerMemorialUsage]:
        try:
            raw_rows = await self._store.fetch_memorial_usage(user_id, USAGE_COLUMNS)
        except MissingColumnError as e:
            logger.warning(
                f"memorial_usage is missing column {e.column or '?'}; "
                f"retrying with reduced projection for user {short_id(user_id)}"
            )
            raw_rows = await self._store.fetch_memorial_usage(user_id, LEGACY_USAGE_COLUMNS)

        return [self._row_to_usage(row) for row in raw_rows]

    @staticmethod
    def _row_to_usage(row: Dict[str, Any]) -> PerMemorialUsage:
        return PerMemorialUsage(
            memorial_id=row["memorial_id"],
            media_count=row.get("media_count"),
            photo_count=row.get("photo_count"),
            video_count=row.get("video_count"),
            media_size_mb=row.get("media_size_mb"),
            timeline_events=row.get("timeline_events"),
        )
