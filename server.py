"""
API server for memorial plan limits.

This is the main entry point that assembles the modular components
from the app package.
"""

import os
import re

import sentry_sdk
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

# Configure structured logging FIRST, before other imports that use logging
from memorial_quota.config import Settings, get_settings
from memorial_quota.utils.logging import setup_logging

settings: Settings = get_settings()

logger = setup_logging(
    service_name="memorial-quota-api",
    log_level=settings.logging.log_level,
    force_json=settings.logging.log_format_json,
    environment=settings.security.environment,
)
logger.info("Configuration loaded", extra=settings.get_config_summary())

from memorial_quota import __version__  # noqa: E402
from app.error_handlers import register_exception_handlers  # noqa: E402
from app.middleware import RequestLoggingMiddleware  # noqa: E402
from app.routes import health_router, usage_router  # noqa: E402

# =============================================================================
# Sentry Configuration
# =============================================================================

SENSITIVE_BREADCRUMB_KEYS = [
    "password", "api_key", "apikey", "secret", "token",
    "authorization", "bearer", "credential", "service_role",
]


def filter_sensitive_breadcrumbs(crumb, hint):
    """
    Filter sensitive data from Sentry breadcrumbs.

    Removes authorization headers, keys in query strings and log messages
    that mention credentials.
    """
    if crumb.get("category") == "http":
        data = crumb.get("data")
        if isinstance(data, dict):
            headers = data.get("headers")
            if isinstance(headers, dict):
                for key in list(headers.keys()):
                    if any(s in key.lower() for s in SENSITIVE_BREADCRUMB_KEYS):
                        headers[key] = "[FILTERED]"
            if "url" in data:
                for key in SENSITIVE_BREADCRUMB_KEYS:
                    pattern = re.compile(f"({key}=)[^&]*", re.IGNORECASE)
                    data["url"] = pattern.sub(r"\1[FILTERED]", data["url"])

    if crumb.get("category") in ("console", "log") and "message" in crumb:
        message = str(crumb["message"]).lower()
        if any(key in message for key in SENSITIVE_BREADCRUMB_KEYS):
            crumb["message"] = "[FILTERED - may contain sensitive data]"

    return crumb


if settings.is_sentry_configured:
    sentry_settings = settings.sentry
    sentry_sdk.init(
        dsn=sentry_settings.sentry_dsn,
        environment=sentry_settings.sentry_environment,
        sample_rate=1.0,
        traces_sample_rate=sentry_settings.sentry_traces_sample_rate,
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        before_breadcrumb=filter_sensitive_breadcrumbs,
        send_default_pii=False,
        attach_stacktrace=True,
        release=sentry_settings.sentry_release,
    )
    logger.info(f"Sentry initialized for environment: {sentry_settings.sentry_environment}")
else:
    logger.info("Sentry DSN not configured, error tracking disabled")

if not settings.is_supabase_configured:
    logger.warning("Supabase not configured: plan limits are NOT enforced")

# =============================================================================
# Initialize FastAPI App
# =============================================================================

app = FastAPI(
    title="Memorial Quota API",
    description="""
Plan limit enforcement for memorial pages.

Checks memorial creation, media uploads and timeline entries against the
caller's plan (Free, Premium, Fully Managed) and keeps per-memorial usage
counters current. Identity is taken from the `X-User-ID` header set by the
upstream auth gateway.
""",
    version=__version__,
    openapi_tags=[
        {"name": "health", "description": "Health checks and system status"},
        {"name": "usage", "description": "Plan limits, usage and checks"},
    ],
)

register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.security.origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        settings.security.user_id_header,
        "X-Request-ID",
        "Accept",
        "Origin",
    ],
    expose_headers=["X-Request-ID", "X-Response-Time"],
    max_age=600,
)

# Added last so it wraps all other middleware
if settings.logging.request_logging_enabled:
    app.add_middleware(RequestLoggingMiddleware)
    logger.info("Request logging middleware enabled")

app.include_router(health_router)
app.include_router(usage_router)


if __name__ == "__main__":
    reload_enabled = os.environ.get("UVICORN_RELOAD", "false").lower() == "true"
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=reload_enabled)
