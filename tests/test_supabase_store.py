"""
Tests for the Supabase-backed usage store.

Queries run against FakeSupabaseClient, which records the builder calls
and replays queued responses.
"""

import unittest

from memorial_quota.config import DatabaseSettings, Settings
from memorial_quota.usage.datastore import (
    MEDIA_TABLE,
    MEMORIAL_USAGE_TABLE,
    MEMORIALS_TABLE,
    PAGE_SIZE,
    SUBSCRIPTIONS_TABLE,
    TIMELINE_EVENTS_TABLE,
    MissingColumnError,
    SupabaseUsageStore,
    UsageStoreError,
    create_usage_store,
)

from .supabase_mock import FakeSupabaseClient, postgrest_error

USER_ID = "user-supabase"


def make_store():
    client = FakeSupabaseClient()
    store = SupabaseUsageStore("https://example.supabase.co", "service-key", client=client)
    return store, client


class TestCounts(unittest.IsolatedAsyncioTestCase):
    """Head-only counting queries."""

    async def test_count_memorials_excludes_deleted(self):
        store, client = make_store()
        client.queue(MEMORIALS_TABLE, count=3)

        self.assertEqual(await store.count_memorials(USER_ID), 3)

        query = client.queries_for(MEMORIALS_TABLE)[0]
        self.assertEqual(query.called("select"), [(("id",), {"count": "exact", "head": True})])
        self.assertEqual(query.called("eq"), [(("created_by", USER_ID), {})])
        self.assertEqual(query.called("or_"), [(("status.is.null,status.neq.deleted",), {})])

    async def test_missing_count_reads_as_zero(self):
        store, client = make_store()
        self.assertEqual(await store.count_memorials(USER_ID), 0)

    async def test_count_timeline_events(self):
        store, client = make_store()
        client.queue(TIMELINE_EVENTS_TABLE, count=4)

        self.assertEqual(await store.count_timeline_events("m1"), 4)
        query = client.queries_for(TIMELINE_EVENTS_TABLE)[0]
        self.assertEqual(query.called("eq"), [(("memorial_id", "m1"), {})])


class TestRowQueries(unittest.IsolatedAsyncioTestCase):
    """Row fetching, pagination and upserts."""

    async def test_fetch_memorial_usage_projection(self):
        store, client = make_store()
        client.queue(MEMORIAL_USAGE_TABLE, data=[{"memorial_id": "m1", "media_count": 2}])

        rows = await store.fetch_memorial_usage(USER_ID, ("memorial_id", "media_count"))

        self.assertEqual(rows, [{"memorial_id": "m1", "media_count": 2}])
        query = client.queries_for(MEMORIAL_USAGE_TABLE)[0]
        self.assertEqual(query.called("select"), [(("memorial_id,media_count",), {})])

    async def test_fetch_media_paginates(self):
        store, client = make_store()
        client.queue(MEDIA_TABLE, data=[{"file_type": "image", "file_size": 1}] * PAGE_SIZE)
        client.queue(MEDIA_TABLE, data=[{"file_type": "video", "file_size": 2}] * 5)

        rows = await store.fetch_media("m1", ("file_type", "file_size"))

        self.assertEqual(len(rows), PAGE_SIZE + 5)
        queries = client.queries_for(MEDIA_TABLE)
        self.assertEqual(len(queries), 2)
        self.assertEqual(queries[0].called("range"), [((0, PAGE_SIZE - 1), {})])
        self.assertEqual(queries[1].called("range"), [((PAGE_SIZE, 2 * PAGE_SIZE - 1), {})])

    async def test_upsert_conflicts_on_user_and_memorial(self):
        store, client = make_store()

        await store.upsert_memorial_usage(USER_ID, "m1", {"photo_count": 2})

        (args, kwargs), = client.queries_for(MEMORIAL_USAGE_TABLE)[0].called("upsert")
        row = args[0]
        self.assertEqual(kwargs, {"on_conflict": "user_id,memorial_id"})
        self.assertEqual(row["user_id"], USER_ID)
        self.assertEqual(row["memorial_id"], "m1")
        self.assertEqual(row["photo_count"], 2)
        self.assertIn("updated_at", row)

    async def test_fetch_subscription_first_row(self):
        store, client = make_store()
        client.queue(SUBSCRIPTIONS_TABLE, data=[{"user_id": USER_ID, "plan_type": "premium"}])

        row = await store.fetch_subscription(USER_ID)

        self.assertEqual(row["plan_type"], "premium")
        self.assertEqual(client.queries_for(SUBSCRIPTIONS_TABLE)[0].called("limit"), [((1,), {})])

    async def test_fetch_subscription_none(self):
        store, client = make_store()
        self.assertIsNone(await store.fetch_subscription(USER_ID))


class TestErrorTranslation(unittest.IsolatedAsyncioTestCase):
    """PostgREST errors become store errors."""

    async def test_undefined_column(self):
        store, client = make_store()
        client.queue(
            MEMORIAL_USAGE_TABLE,
            error=postgrest_error("column memorial_usage.photo_count does not exist", "42703"),
        )

        with self.assertRaises(MissingColumnError) as ctx:
            await store.fetch_memorial_usage(USER_ID, ("memorial_id", "photo_count"))

        self.assertEqual(ctx.exception.column, "photo_count")
        self.assertEqual(ctx.exception.code, "42703")

    async def test_schema_cache_miss_on_write(self):
        store, client = make_store()
        client.queue(
            MEMORIAL_USAGE_TABLE,
            error=postgrest_error(
                "Could not find the 'video_count' column of 'memorial_usage' in the schema cache",
                "PGRST204",
            ),
        )

        with self.assertRaises(MissingColumnError) as ctx:
            await store.upsert_memorial_usage(USER_ID, "m1", {"video_count": 1})

        self.assertEqual(ctx.exception.column, "video_count")

    async def test_other_errors(self):
        store, client = make_store()
        client.queue(MEMORIALS_TABLE, error=postgrest_error("permission denied for table memorials", "42501"))

        with self.assertRaises(UsageStoreError) as ctx:
            await store.count_memorials(USER_ID)

        self.assertNotIsInstance(ctx.exception, MissingColumnError)
        self.assertEqual(ctx.exception.code, "42501")


class TestCreateUsageStore(unittest.TestCase):

    def test_unconfigured_returns_none(self):
        settings = Settings(
            database=DatabaseSettings(
                supabase_url=None,
                supabase_key=None,
                supabase_service_role_key=None,
            )
        )
        self.assertIsNone(create_usage_store(settings))

    def test_configured_prefers_service_role(self):
        settings = Settings(
            database=DatabaseSettings(
                supabase_url="https://example.supabase.co",
                supabase_key="anon-key",
                supabase_service_role_key="service-key",
            )
        )
        store = create_usage_store(settings)
        self.assertIsInstance(store, SupabaseUsageStore)
        self.assertEqual(store._supabase_key, "service-key")


if __name__ == "__main__":
    unittest.main()
