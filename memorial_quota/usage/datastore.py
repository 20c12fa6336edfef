"""
Datastore access for usage enforcement.

The quota engine only reads counts and rows and upserts memorial_usage; it
never opens transactions. Supabase backs production, with an in-memory
implementation for local development and testing. Whether a datastore is
wired up at all is an explicit DatastoreAvailability value injected into the
engine rather than an environment check made at call time.
"""

import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from postgrest.exceptions import APIError

from memorial_quota.config import Settings

logger = logging.getLogger(__name__)

MEMORIALS_TABLE = "memorials"
MEMORIAL_USAGE_TABLE = "memorial_usage"
MEDIA_TABLE = "media"
TIMELINE_EVENTS_TABLE = "timeline_events"
SUBSCRIPTIONS_TABLE = "user_subscriptions"

DELETED_MEMORIAL_STATUS = "deleted"

# Postgres undefined_column, and PostgREST's schema-cache miss on writes
UNDEFINED_COLUMN_CODES = frozenset({"42703", "PGRST204"})
PAGE_SIZE = 1000

_COLUMN_PATTERNS = (
    re.compile(r'column "?(?:\w+\.)?(\w+)"? does not exist', re.IGNORECASE),
    re.compile(r"could not find the '(\w+)' column", re.IGNORECASE),
)


class UsageStoreError(Exception):
    """Raised when a datastore query fails."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(message)


class MissingColumnError(UsageStoreError):
    """Raised when a query references a column the deployed schema lacks."""

    def __init__(self, message: str, column: Optional[str] = None, code: Optional[str] = None):
        self.column = column
        super().__init__(message, code=code)


@dataclass(frozen=True)
class DatastoreAvailability:
    """Whether a persistence backend is wired up for this process."""

    configured: bool

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatastoreAvailability":
        return cls(configured=settings.is_supabase_configured)

    @classmethod
    def absent(cls) -> "DatastoreAvailability":
        return cls(configured=False)

    @classmethod
    def present(cls) -> "DatastoreAvailability":
        return cls(configured=True)

    def __bool__(self) -> bool:
        return self.configured


class UsageStore(ABC):
    """Read/aggregate and upsert operations the quota engine needs."""

    @abstractmethod
    async def count_memorials(self, user_id: str) -> int:
        """Count memorials owned by a user, excluding deleted ones."""
        pass

    @abstractmethod
    async def fetch_memorial_usage(
        self, user_id: str, columns: Sequence[str]
    ) -> List[Dict[str, Any]]:
        """Fetch the user's memorial_usage rows with the given projection."""
        pass

    @abstractmethod
    async def fetch_media(
        self, memorial_id: str, columns: Sequence[str]
    ) -> List[Dict[str, Any]]:
        """Fetch every media row attached to a memorial."""
        pass

    @abstractmethod
    async def count_timeline_events(self, memorial_id: str) -> int:
        """Count timeline entries of a memorial."""
        pass

    @abstractmethod
    async def upsert_memorial_usage(
        self, user_id: str, memorial_id: str, values: Dict[str, Any]
    ) -> None:
        """Insert or replace the counters of (user_id, memorial_id)."""
        pass

    @abstractmethod
    async def fetch_subscription(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the user's subscription row, if any."""
        pass

    @abstractmethod
    async def ping(self) -> float:
        """Run a trivial query and return its latency in milliseconds."""
        pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryUsageStore(UsageStore):
    """In-memory storage for local development and testing."""

    def __init__(self) -> None:
        self.memorials: List[Dict[str, Any]] = []
        self.media: List[Dict[str, Any]] = []
        self.timeline_events: List[Dict[str, Any]] = []
        self.usage_rows: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self._missing_columns: Dict[str, Set[str]] = {}
        self._next_id = 1

    def _id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def drop_column(self, table: str, column: str) -> None:
        """Simulate a deployment whose schema lacks a column."""
        self._missing_columns.setdefault(table, set()).add(column)

    def _check_columns(self, table: str, columns: Sequence[str]) -> None:
        for column in columns:
            if column in self._missing_columns.get(table, set()):
                raise MissingColumnError(
                    f"column {table}.{column} does not exist",
                    column=column,
                    code="42703",
                )

    def add_memorial(self, user_id: str, status: Optional[str] = "active") -> str:
        memorial_id = str(self._id())
        self.memorials.append({"id": memorial_id, "created_by": user_id, "status": status})
        return memorial_id

    def add_media(self, memorial_id: str, file_type: str, file_size: Optional[int] = 0) -> str:
        media_id = str(self._id())
        self.media.append({
            "id": media_id,
            "memorial_id": str(memorial_id),
            "file_type": file_type,
            "file_size": file_size,
        })
        return media_id

    def remove_media(self, media_id: str) -> None:
        self.media = [row for row in self.media if row["id"] != media_id]

    def add_timeline_event(self, memorial_id: str) -> str:
        event_id = str(self._id())
        self.timeline_events.append({"id": event_id, "memorial_id": str(memorial_id)})
        return event_id

    def set_subscription(self, user_id: str, plan_type: str, status: str = "active") -> None:
        self.subscriptions[user_id] = {
            "id": self._id(),
            "user_id": user_id,
            "plan_type": plan_type,
            "status": status,
        }

    async def count_memorials(self, user_id: str) -> int:
        return sum(
            1 for row in self.memorials
            if row["created_by"] == user_id and row.get("status") != DELETED_MEMORIAL_STATUS
        )

    async def fetch_memorial_usage(
        self, user_id: str, columns: Sequence[str]
    ) -> List[Dict[str, Any]]:
        self._check_columns(MEMORIAL_USAGE_TABLE, columns)
        return [
            {column: row.get(column) for column in columns}
            for (owner, _), row in self.usage_rows.items()
            if owner == user_id
        ]

    async def fetch_media(
        self, memorial_id: str, columns: Sequence[str]
    ) -> List[Dict[str, Any]]:
        self._check_columns(MEDIA_TABLE, columns)
        return [
            {column: row.get(column) for column in columns}
            for row in self.media
            if row["memorial_id"] == str(memorial_id)
        ]

    async def count_timeline_events(self, memorial_id: str) -> int:
        return sum(1 for row in self.timeline_events if row["memorial_id"] == str(memorial_id))

    async def upsert_memorial_usage(
        self, user_id: str, memorial_id: str, values: Dict[str, Any]
    ) -> None:
        self._check_columns(MEMORIAL_USAGE_TABLE, list(values))
        key = (user_id, str(memorial_id))
        row = self.usage_rows.get(key) or {
            "user_id": user_id,
            "memorial_id": str(memorial_id),
            "media_count": 0,
            "photo_count": 0,
            "video_count": 0,
            "media_size_mb": 0.0,
            "timeline_events": 0,
        }
        row.update(values)
        row["updated_at"] = _now_iso()
        self.usage_rows[key] = row

    async def fetch_subscription(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = self.subscriptions.get(user_id)
        return dict(row) if row else None

    async def ping(self) -> float:
        return 0.0


class SupabaseUsageStore(UsageStore):
    """Supabase-backed storage for production use."""

    def __init__(self, supabase_url: str, supabase_key: str, client: Any = None) -> None:
        self._supabase_url = supabase_url
        self._supabase_key = supabase_key
        self._client = client

    def _get_client(self):
        """Get or create Supabase client (lazy initialization)."""
        if self._client is not None:
            return self._client

        from supabase import create_client

        self._client = create_client(self._supabase_url, self._supabase_key)
        logger.info("Initialized Supabase usage store")
        return self._client

    @staticmethod
    def _translate(error: APIError) -> UsageStoreError:
        code = str(error.code) if error.code is not None else None
        message = error.message or str(error)
        if code in UNDEFINED_COLUMN_CODES:
            column = None
            for pattern in _COLUMN_PATTERNS:
                match = pattern.search(message)
                if match:
                    column = match.group(1)
                    break
            return MissingColumnError(message, column=column, code=code)
        return UsageStoreError(message, code=code)

    async def _execute(self, build_query):
        """Run a synchronous PostgREST query in the thread pool."""
        try:
            return await asyncio.to_thread(lambda: build_query(self._get_client()).execute())
        except APIError as e:
            raise self._translate(e) from e

    async def count_memorials(self, user_id: str) -> int:
        response = await self._execute(
            lambda client: client.table(MEMORIALS_TABLE)
            .select("id", count="exact", head=True)
            .eq("created_by", user_id)
            .or_(f"status.is.null,status.neq.{DELETED_MEMORIAL_STATUS}")
        )
        return int(response.count or 0)

    async def fetch_memorial_usage(
        self, user_id: str, columns: Sequence[str]
    ) -> List[Dict[str, Any]]:
        projection = ",".join(columns)
        response = await self._execute(
            lambda client: client.table(MEMORIAL_USAGE_TABLE)
            .select(projection)
            .eq("user_id", user_id)
        )
        return list(response.data or [])

    async def fetch_media(
        self, memorial_id: str, columns: Sequence[str]
    ) -> List[Dict[str, Any]]:
        projection = ",".join(columns)
        rows: List[Dict[str, Any]] = []
        start = 0
        while True:
            response = await self._execute(
                lambda client, start=start: client.table(MEDIA_TABLE)
                .select(projection)
                .eq("memorial_id", memorial_id)
                .order("id")
                .range(start, start + PAGE_SIZE - 1)
            )
            page = list(response.data or [])
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            start += PAGE_SIZE

    async def count_timeline_events(self, memorial_id: str) -> int:
        response = await self._execute(
            lambda client: client.table(TIMELINE_EVENTS_TABLE)
            .select("id", count="exact", head=True)
            .eq("memorial_id", memorial_id)
        )
        return int(response.count or 0)

    async def upsert_memorial_usage(
        self, user_id: str, memorial_id: str, values: Dict[str, Any]
    ) -> None:
        row = {
            "user_id": user_id,
            "memorial_id": memorial_id,
            **values,
            "updated_at": _now_iso(),
        }
        await self._execute(
            lambda client: client.table(MEMORIAL_USAGE_TABLE)
            .upsert(row, on_conflict="user_id,memorial_id")
        )

    async def fetch_subscription(self, user_id: str) -> Optional[Dict[str, Any]]:
        response = await self._execute(
            lambda client: client.table(SUBSCRIPTIONS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
        )
        if response.data:
            return response.data[0]
        return None

    async def ping(self) -> float:
        start = time.perf_counter()
        await self._execute(
            lambda client: client.table(MEMORIALS_TABLE).select("id").limit(1)
        )
        return (time.perf_counter() - start) * 1000


def create_usage_store(settings: Settings) -> Optional[UsageStore]:
    """
    Build the Supabase store from settings.

    Returns None when Supabase is not configured; callers pair that with
    DatastoreAvailability.absent() and fail open.
    """
    if not settings.is_supabase_configured:
        logger.info("Supabase not configured, usage limits will not be enforced")
        return None
    return SupabaseUsageStore(
        settings.database.supabase_url,
        settings.database.get_client_key(),
    )
