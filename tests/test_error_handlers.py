"""
Tests for error handlers.

Tests exception handling, error sanitization, and response formatting.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

# Set environment before imports
os.environ["ENVIRONMENT"] = "development"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.error_handlers import (
    format_pydantic_errors,
    register_exception_handlers,
    report_to_sentry,
    sanitize_details,
    sanitize_error_message,
)
from app.exceptions import (
    AuthenticationError,
    DatabaseError,
    ErrorCode,
    MemorialQuotaException,
    QuotaExceededError,
)


class TestErrorMessageSanitization(unittest.TestCase):
    """Tests for error message sanitization."""

    def test_normal_message_unchanged(self):
        """Normal messages should pass through."""
        message = "The Free plan allows 3 photos per memorial."
        self.assertEqual(sanitize_error_message(message), message)

    def test_service_role_key_is_redacted(self):
        message = "Invalid service_role key eyJhbGciOi"
        self.assertNotIn("eyJhbGciOi", sanitize_error_message(message))

    def test_supabase_host_is_redacted(self):
        message = "Connection to abcd.supabase.co timed out"
        self.assertNotIn("abcd", sanitize_error_message(message))

    def test_connection_string_is_redacted(self):
        message = "could not connect to postgresql://admin@db:5432/memorials"
        self.assertNotIn("admin@db", sanitize_error_message(message))

    def test_ip_address_is_redacted(self):
        message = "Connection failed to 192.168.1.100:5432"
        self.assertNotIn("192.168.1.100", sanitize_error_message(message))

    def test_uuid_is_redacted(self):
        message = "Memorial 123e4567-e89b-12d3-a456-426614174000 not found"
        sanitized = sanitize_error_message(message)
        self.assertNotIn("123e4567", sanitized)
        self.assertIn("[id]", sanitized)

    def test_long_message_truncated(self):
        sanitized = sanitize_error_message("x" * 600)
        self.assertEqual(len(sanitized), 503)
        self.assertTrue(sanitized.endswith("..."))

    def test_empty_message(self):
        self.assertEqual(sanitize_error_message(""), "")


class TestDetailsSanitization(unittest.TestCase):
    """Tests for error details sanitization."""

    def test_quota_details_pass_through(self):
        details = {
            "quota_type": "photos",
            "limit": 3,
            "current_usage": 3,
            "requested": 1,
            "upgrade_required": True,
            "upgrade_url": "/pricing",
        }
        self.assertEqual(sanitize_details(details), details)

    def test_unknown_keys_dropped(self):
        sanitized = sanitize_details({"limit": 3, "query": "select * from memorials"})
        self.assertEqual(sanitized, {"limit": 3})

    def test_nested_values_dropped(self):
        self.assertEqual(sanitize_details({"limit": {"nested": 1}}), {})

    def test_lists_capped(self):
        sanitized = sanitize_details({"errors": [{"field": str(i)} for i in range(20)]})
        self.assertEqual(len(sanitized["errors"]), 10)

    def test_empty(self):
        self.assertEqual(sanitize_details({}), {})
        self.assertEqual(sanitize_details(None), {})


class TestPydanticErrorFormatting(unittest.TestCase):

    def test_missing_field(self):
        errors = format_pydantic_errors([{"loc": ("body", "action"), "type": "missing", "msg": "Field required"}])
        self.assertEqual(errors, [{"field": "action", "message": "Field 'action' is required"}])

    def test_enum_field(self):
        errors = format_pydantic_errors([
            {"loc": ("body", "items", 0, "kind"), "type": "enum", "msg": "Input should be 'image'"}
        ])
        self.assertEqual(errors[0]["field"], "items.0.kind")
        self.assertEqual(errors[0]["message"], "Field 'items.0.kind' has an invalid value")


class TestExceptions(unittest.TestCase):
    """Tests for exception classes."""

    def test_quota_exceeded(self):
        exc = QuotaExceededError(
            message="The Free plan allows 1 memorial and you already have 1.",
            quota_type="memorials",
            limit=1,
            current_usage=1,
            requested=1,
            upgrade_required=True,
            upgrade_url="/pricing",
        )
        self.assertEqual(exc.status_code, 403)
        self.assertEqual(exc.error_code, ErrorCode.QUOTA_EXCEEDED)
        self.assertEqual(exc.details["upgrade_url"], "/pricing")

    def test_quota_exceeded_without_upgrade_omits_url(self):
        exc = QuotaExceededError(upgrade_required=False, upgrade_url="/pricing")
        self.assertEqual(exc.message, "Plan limit reached")
        self.assertEqual(exc.details, {"upgrade_required": False})

    def test_database_error_keeps_cause_internal(self):
        cause = RuntimeError("permission denied for table memorial_usage")
        exc = DatabaseError("Failed to fetch usage data", operation="get_usage_summary", original_error=cause)
        self.assertEqual(exc.message, "Failed to fetch usage data")
        self.assertIn("permission denied", exc.internal_message)
        self.assertNotIn("permission denied", str(exc.to_dict()))

    def test_authentication_error_defaults(self):
        exc = AuthenticationError()
        self.assertEqual(exc.status_code, 401)
        self.assertEqual(exc.to_dict()["error"], "Authentication required")


class TestHandlers(unittest.TestCase):
    """Handlers produce the standard error body."""

    def setUp(self):
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/quota")
        async def quota():
            raise QuotaExceededError(
                message="The Free plan allows 3 photos per memorial.",
                quota_type="photos",
                limit=3,
                current_usage=3,
                requested=1,
                upgrade_required=True,
                upgrade_url="/pricing",
            )

        @app.get("/database")
        async def database():
            raise DatabaseError("Failed to check usage limits", operation="check", original_error=RuntimeError("x"))

        @app.get("/boom")
        async def boom():
            raise RuntimeError("secret internals")

        @app.get("/base")
        async def base():
            raise MemorialQuotaException(details={"limit": 1, "internal": "hidden"})

        self.client = TestClient(app, raise_server_exceptions=False)

    def test_quota_exceeded_response(self):
        response = self.client.get("/quota")
        self.assertEqual(response.status_code, 403)
        data = response.json()
        self.assertFalse(data["success"])
        self.assertEqual(data["error_code"], "QUOTA_EXCEEDED")
        self.assertEqual(data["details"]["quota_type"], "photos")
        self.assertEqual(data["details"]["upgrade_url"], "/pricing")

    def test_database_error_response(self):
        response = self.client.get("/database")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "Failed to check usage limits")

    def test_unhandled_exception_response(self):
        response = self.client.get("/boom")
        self.assertEqual(response.status_code, 500)
        data = response.json()
        self.assertEqual(data["error_code"], "INTERNAL_ERROR")
        self.assertNotIn("secret internals", response.text)
        self.assertIn("error_reference", data["details"])

    def test_unsafe_details_filtered(self):
        data = self.client.get("/base").json()
        self.assertEqual(data["details"], {"limit": 1})

    def test_unknown_route_is_standard_404(self):
        response = self.client.get("/nope")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error_code"], "RESOURCE_NOT_FOUND")

    def test_wrong_method_is_standard_405(self):
        response = self.client.post("/quota")
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.json()["error_code"], "VALIDATION_ERROR")


class TestSentryReporting(unittest.TestCase):

    @patch("app.error_handlers.sentry_sdk")
    def test_inactive_client_not_reported(self, mock_sdk):
        mock_sdk.get_client.return_value.is_active.return_value = False
        self.assertIsNone(report_to_sentry(RuntimeError("x")))
        mock_sdk.capture_exception.assert_not_called()

    @patch("app.error_handlers.sentry_sdk")
    def test_active_client_reports_with_request_context(self, mock_sdk):
        mock_sdk.get_client.return_value.is_active.return_value = True
        mock_sdk.capture_exception.return_value = "event-1"
        request = MagicMock()
        request.method = "POST"
        request.url.path = "/usage/check"
        request.state.user_id = "user-1"
        request.state.request_id = "req-1"

        event_id = report_to_sentry(RuntimeError("x"), request)

        self.assertEqual(event_id, "event-1")
        scope = mock_sdk.new_scope.return_value.__enter__.return_value
        scope.set_user.assert_called_once_with({"id": "user-1"})
        scope.set_tag.assert_called_once_with("request_id", "req-1")


if __name__ == "__main__":
    unittest.main()
