"""
Exception handlers for the quota API.

Every failure leaves the service in the same envelope:

    {"success": false, "error": "...", "error_code": "...", "details": {...}}

Messages and details are scrubbed before they reach the client so that
Supabase hosts, keys and PostgREST internals never leak. Unexpected errors
are reported to Sentry when a DSN is configured.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

import sentry_sdk
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from memorial_quota.config import get_settings

from .exceptions import ErrorCode, MemorialQuotaException

logger = logging.getLogger(__name__)

# Any hit replaces the whole message with a generic one
_LEAKY = re.compile(
    r"api[_-]?key|secret|password|token|credential|bearer|service[_-]?role"
    r"|postgres(?:ql)?://|supabase\.co|/home/|/Users/|/var/|/etc/",
    re.IGNORECASE,
)
_SCRUBS = (
    (re.compile(r"[/\\][\w./\\-]+\.\w+"), "[path]"),
    (re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b"), "[ip]"),
    (re.compile(r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.IGNORECASE), "[id]"),
)
MAX_MESSAGE_LENGTH = 500
MAX_LIST_ITEMS = 10

# Quota denial numbers plus the handler's own bookkeeping
SAFE_DETAIL_KEYS = frozenset({
    "quota_type",
    "limit",
    "current_usage",
    "requested",
    "upgrade_required",
    "upgrade_url",
    "errors",
    "error_reference",
    "sentry_event_id",
})

STATUS_CODES = {
    401: ErrorCode.AUTHENTICATION_REQUIRED,
    403: ErrorCode.PERMISSION_DENIED,
    404: ErrorCode.RESOURCE_NOT_FOUND,
}


def sanitize_error_message(message: str) -> str:
    if not message:
        return message
    if _LEAKY.search(message):
        return "An error occurred while processing your request"
    for pattern, replacement in _SCRUBS:
        message = pattern.sub(replacement, message)
    if len(message) > MAX_MESSAGE_LENGTH:
        message = message[:MAX_MESSAGE_LENGTH] + "..."
    return message


def sanitize_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep whitelisted keys whose values are primitives or short lists."""
    clean: Dict[str, Any] = {}
    for key, value in (details or {}).items():
        if key not in SAFE_DETAIL_KEYS:
            continue
        if isinstance(value, (bool, int, float)):
            clean[key] = value
        elif isinstance(value, str):
            # upgrade_url is a path and would otherwise be scrubbed
            clean[key] = value if key == "upgrade_url" else sanitize_error_message(value)
        elif isinstance(value, list):
            clean[key] = [
                item for item in value if isinstance(item, (str, int, float, bool, dict))
            ][:MAX_LIST_ITEMS]
    return clean


def format_pydantic_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Flatten pydantic errors to ``{"field", "message"}`` pairs, e.g. ``items.0.kind``."""
    formatted = []
    for error in errors[:MAX_LIST_ITEMS]:
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "request"
        kind = error.get("type", "")
        if kind == "missing":
            message = f"Field '{field}' is required"
        elif "enum" in kind.lower():
            message = f"Field '{field}' has an invalid value"
        elif kind in ("int_type", "int_parsing", "float_type", "float_parsing"):
            message = f"Field '{field}' must be a number"
        else:
            message = sanitize_error_message(error.get("msg", "Invalid value"))
        formatted.append({"field": field, "message": message})
    return formatted


def error_response(
    status_code: int,
    message: str,
    error_code: ErrorCode,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "success": False,
        "error": sanitize_error_message(message),
        "error_code": error_code.value,
    }
    safe_details = sanitize_details(details)
    if safe_details:
        content["details"] = safe_details
    return JSONResponse(status_code=status_code, content=content)


def report_to_sentry(
    exc: Exception,
    request: Optional[Request] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Capture ``exc`` with the request's method, path, user and request id.

    Returns the Sentry event id, or None when Sentry is not active.
    """
    try:
        if not sentry_sdk.get_client().is_active():
            return None

        with sentry_sdk.new_scope() as scope:
            if request is not None:
                scope.set_context("request", {"method": request.method, "path": request.url.path})
                user_id = getattr(request.state, "user_id", None)
                if user_id:
                    scope.set_user({"id": user_id})
                request_id = getattr(request.state, "request_id", None)
                if request_id:
                    scope.set_tag("request_id", request_id)
            if extra_context:
                scope.set_context("extra", extra_context)
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning(f"Sentry capture failed: {e}")
        return None


async def memorial_quota_exception_handler(
    request: Request,
    exc: MemorialQuotaException,
) -> JSONResponse:
    line = f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
    if exc.internal_message:
        line += f" ({exc.internal_message})"

    if exc.status_code >= 500:
        logger.error(line, exc_info=exc)
        report_to_sentry(exc, request)
    else:
        logger.warning(line)

    return error_response(exc.status_code, exc.message, exc.error_code, exc.details)


def _validation_response(request: Request, errors: List[Dict[str, Any]], status_code: int) -> JSONResponse:
    formatted = format_pydantic_errors(errors)
    logger.warning(
        f"Rejected {request.method} {request.url.path}: {len(formatted)} invalid field(s)"
    )
    message = (
        formatted[0]["message"] if len(formatted) == 1
        else f"Validation failed with {len(formatted)} error(s)"
    )
    return error_response(status_code, message, ErrorCode.VALIDATION_ERROR, {"errors": formatted})


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies, paths or queries."""
    return _validation_response(request, exc.errors(), status.HTTP_422_UNPROCESSABLE_ENTITY)


async def pydantic_validation_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    """A model built inside a route rejected its input."""
    return _validation_response(request, exc.errors(), status.HTTP_400_BAD_REQUEST)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    default = ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.VALIDATION_ERROR
    error_code = STATUS_CODES.get(exc.status_code, default)

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {detail}")

    return error_response(exc.status_code, detail, error_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last resort for anything the routes did not anticipate.

    The client gets a short reference to quote to support; outside
    production it also gets the exception type and the Sentry event id.
    """
    reference = uuid.uuid4().hex[:8]
    logger.error(
        f"Unhandled {type(exc).__name__} [ref:{reference}] on {request.method} {request.url.path}",
        exc_info=exc,
    )
    event_id = report_to_sentry(exc, request, {"error_reference": reference})

    details: Dict[str, Any] = {"error_reference": reference}
    if get_settings().is_production:
        message = "An unexpected error occurred. Please try again later."
    else:
        message = f"Internal server error: {type(exc).__name__}"
        if event_id:
            details["sentry_event_id"] = event_id

    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, message, ErrorCode.INTERNAL_ERROR, details
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MemorialQuotaException, memorial_quota_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, pydantic_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    logger.debug("Exception handlers registered")
