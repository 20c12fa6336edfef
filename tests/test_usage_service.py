"""
Tests for the usage limit service.

This module tests the service end to end over the in-memory store:
- Plan resolution, aggregation and enforcement together
- Fail-open behaviour without a datastore
- Recompute versus best-effort refresh error handling
- The module-level convenience functions and singleton
"""

import unittest
from unittest.mock import AsyncMock

from memorial_quota.config import DatabaseSettings, Settings
from memorial_quota.types.usage import (
    BYTES_PER_MB,
    PlanType,
    SubscriptionStatus,
    UsageAction,
    UsageDimension,
)
from memorial_quota.usage import quota_service
from memorial_quota.usage.datastore import (
    DatastoreAvailability,
    InMemoryUsageStore,
    UsageStore,
    UsageStoreError,
)
from memorial_quota.usage.quota_service import UsageLimitService

USER_ID = "user-service"


def upload_payload(memorial_id, *items):
    return {
        "memorial_id": memorial_id,
        "items": [{"kind": kind, "size_bytes": size} for kind, size in items],
    }


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.store = InMemoryUsageStore()
        self.service = UsageLimitService(self.store, DatastoreAvailability.present())


class TestFreeUserJourney(ServiceTestCase):
    """A free user filling up their plan."""

    async def test_first_memorial_allowed_second_denied(self):
        decision = await self.service.check_usage_limits(USER_ID, UsageAction.CREATE_MEMORIAL)
        self.assertTrue(decision.allowed)

        self.store.add_memorial(USER_ID)
        decision = await self.service.check_usage_limits(USER_ID, "create_memorial")

        self.assertFalse(decision.allowed)
        self.assertTrue(decision.upgrade_required)
        self.assertEqual(decision.upgrade_plan, PlanType.PREMIUM)
        self.assertEqual(decision.limit, 1)
        self.assertEqual(decision.current_usage, 1)

    async def test_photo_cap_follows_recomputed_counters(self):
        memorial_id = self.store.add_memorial(USER_ID)
        photo = ("image", BYTES_PER_MB)

        decision = await self.service.check_usage_limits(
            USER_ID, UsageAction.UPLOAD_MEDIA, upload_payload(memorial_id, photo, photo, photo)
        )
        self.assertTrue(decision.allowed)

        for _ in range(3):
            self.store.add_media(memorial_id, "image/png", BYTES_PER_MB)
        await self.service.refresh_memorial_usage(USER_ID, memorial_id)

        decision = await self.service.check_usage_limits(
            USER_ID, UsageAction.UPLOAD_MEDIA, upload_payload(memorial_id, photo)
        )
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.dimension, UsageDimension.PHOTOS)
        self.assertIn("This memorial has 3", decision.message)

    async def test_timeline_cap(self):
        memorial_id = self.store.add_memorial(USER_ID)
        for _ in range(5):
            self.store.add_timeline_event(memorial_id)
        await self.service.recompute_memorial_usage(USER_ID, memorial_id)

        decision = await self.service.check_usage_limits(
            USER_ID, UsageAction.ADD_TIMELINE_EVENT, {"memorial_id": memorial_id}
        )

        self.assertFalse(decision.allowed)
        self.assertEqual(decision.dimension, UsageDimension.TIMELINE_EVENTS)
        self.assertTrue(decision.upgrade_required)

    async def test_denial_logged_at_info(self):
        self.store.add_memorial(USER_ID)

        with self.assertLogs("memorial_quota.usage.quota_service", level="INFO") as logs:
            await self.service.check_usage_limits(USER_ID, UsageAction.CREATE_MEMORIAL)

        self.assertIn("denied", logs.output[0])


class TestPremiumUser(ServiceTestCase):

    async def test_video_cap_has_no_self_serve_upgrade(self):
        self.store.set_subscription(USER_ID, "premium")
        memorial_id = self.store.add_memorial(USER_ID)
        for _ in range(48):
            self.store.add_media(memorial_id, "video", BYTES_PER_MB)
        await self.service.recompute_memorial_usage(USER_ID, memorial_id)

        decision = await self.service.check_usage_limits(
            USER_ID,
            UsageAction.UPLOAD_MEDIA,
            upload_payload(memorial_id, *[("video", BYTES_PER_MB)] * 3),
        )

        self.assertFalse(decision.allowed)
        self.assertEqual(decision.dimension, UsageDimension.VIDEOS)
        self.assertFalse(decision.upgrade_required)
        self.assertIsNone(decision.upgrade_plan)

    async def test_premium_many_memorials_allowed(self):
        self.store.set_subscription(USER_ID, "premium")
        for _ in range(25):
            self.store.add_memorial(USER_ID)

        decision = await self.service.check_usage_limits(USER_ID, UsageAction.CREATE_MEMORIAL)

        self.assertTrue(decision.allowed)


class TestSummary(ServiceTestCase):

    async def test_summary_defaults_to_free_active(self):
        summary = await self.service.get_usage_summary(USER_ID)

        self.assertEqual(summary.plan_type, PlanType.FREE)
        self.assertEqual(summary.status, SubscriptionStatus.ACTIVE)
        self.assertEqual(summary.limits.max_memorials, 1)
        self.assertEqual(summary.usage.memorial_count, 0)

    async def test_summary_reports_subscription(self):
        self.store.set_subscription(USER_ID, "premium", status="past_due")
        memorial_id = self.store.add_memorial(USER_ID)
        await self.service.update_memorial_usage(USER_ID, memorial_id, {"media_size_mb": 12.0})

        summary = await self.service.get_usage_summary(USER_ID)

        self.assertEqual(summary.plan_type, PlanType.PREMIUM)
        self.assertEqual(summary.status, SubscriptionStatus.PAST_DUE)
        self.assertEqual(summary.usage.memorial_count, 1)
        self.assertAlmostEqual(summary.usage.total_storage_mb, 12.0)


class TestFailOpen(unittest.IsolatedAsyncioTestCase):
    """Without a datastore every action is allowed."""

    def setUp(self):
        self.service = UsageLimitService(None, DatastoreAvailability.absent())

    async def test_not_enforcing(self):
        self.assertFalse(self.service.is_enforcing)

    async def test_all_actions_allowed(self):
        for action in ("create_memorial", "upload_media", "add_timeline_event", "delete_everything"):
            decision = await self.service.check_usage_limits(USER_ID, action)
            self.assertTrue(decision.allowed, action)

    async def test_usage_is_zero(self):
        usage = await self.service.get_user_usage(USER_ID)
        self.assertEqual(usage.memorial_count, 0)
        self.assertIsNone(await self.service.recompute_memorial_usage(USER_ID, "m"))

    async def test_from_unconfigured_settings(self):
        settings = Settings(
            database=DatabaseSettings(
                supabase_url=None,
                supabase_key=None,
                supabase_service_role_key=None,
            )
        )
        service = UsageLimitService.from_settings(settings)
        self.assertFalse(service.is_enforcing)
        self.assertIsNone(service.store)


class TestBookkeepingErrors(unittest.IsolatedAsyncioTestCase):
    """Recompute raises; refresh logs and swallows."""

    def setUp(self):
        self.store = AsyncMock(spec=UsageStore)
        self.store.fetch_subscription.return_value = None
        self.store.fetch_media.side_effect = UsageStoreError("connection refused")
        self.service = UsageLimitService(self.store, DatastoreAvailability.present())

    async def test_recompute_raises(self):
        with self.assertRaises(UsageStoreError):
            await self.service.recompute_memorial_usage(USER_ID, "m1")

    async def test_refresh_swallows(self):
        with self.assertLogs("memorial_quota.usage.quota_service", level="ERROR") as logs:
            result = await self.service.refresh_memorial_usage(USER_ID, "m1")

        self.assertIsNone(result)
        self.assertIn("m1", logs.output[0])

    async def test_check_propagates_aggregation_failure(self):
        self.store.count_memorials.side_effect = UsageStoreError("timeout")

        with self.assertRaises(UsageStoreError):
            await self.service.check_usage_limits(USER_ID, UsageAction.CREATE_MEMORIAL)


class TestModuleFunctions(unittest.IsolatedAsyncioTestCase):
    """Module-level shortcuts delegate to the installed singleton."""

    def setUp(self):
        self.store = InMemoryUsageStore()
        self.service = UsageLimitService(self.store, DatastoreAvailability.present())
        quota_service.set_usage_service(self.service)

    def tearDown(self):
        quota_service.set_usage_service(None)

    async def test_singleton_is_installed_service(self):
        self.assertIs(quota_service.get_usage_service(), self.service)

    async def test_shortcuts(self):
        memorial_id = self.store.add_memorial(USER_ID)
        self.store.add_media(memorial_id, "image", BYTES_PER_MB)

        decision = await quota_service.check_usage_limits(USER_ID, UsageAction.CREATE_MEMORIAL)
        self.assertFalse(decision.allowed)

        usage = await quota_service.recompute_memorial_usage(USER_ID, memorial_id)
        self.assertEqual(usage.photo_count, 1)

        await quota_service.update_memorial_usage(USER_ID, memorial_id, {"timeline_events": 2})
        snapshot = await quota_service.get_user_usage(USER_ID)
        self.assertEqual(snapshot.for_memorial(memorial_id).timeline_events, 2)
        self.assertEqual(snapshot.for_memorial(memorial_id).photo_count, 1)

        refreshed = await quota_service.refresh_memorial_usage(USER_ID, memorial_id)
        self.assertEqual(refreshed.timeline_events, 0)

    async def test_partial_update_keeps_media_total(self):
        await quota_service.update_memorial_usage(USER_ID, "m1", {"photo_count": 5})

        snapshot = await quota_service.get_user_usage(USER_ID)
        row = snapshot.for_memorial("m1")
        self.assertGreaterEqual(row.media_count, row.photo_count + row.video_count)
        self.assertEqual(row.media_count, 5)

    async def test_get_user_usage_is_repeatable(self):
        memorial_id = self.store.add_memorial(USER_ID)
        self.store.add_media(memorial_id, "image", BYTES_PER_MB)
        self.store.add_media(memorial_id, "video/mp4", 3 * BYTES_PER_MB)
        await quota_service.recompute_memorial_usage(USER_ID, memorial_id)

        first = await quota_service.get_user_usage(USER_ID)
        second = await quota_service.get_user_usage(USER_ID)

        self.assertEqual(first.model_dump(), second.model_dump())


if __name__ == "__main__":
    unittest.main()
