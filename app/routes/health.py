"""
Health check and root endpoints.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

import sentry_sdk
from fastapi import APIRouter

from memorial_quota import __version__
from memorial_quota.config import get_settings
from memorial_quota.usage.quota_service import get_usage_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def get_database_status() -> Dict[str, Any]:
    """
    Check Supabase connectivity with a trivial query.
    """
    store = get_usage_service().store
    if store is None:
        return {
            "configured": False,
            "connected": False,
            "error": "SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY not set",
        }

    try:
        latency_ms = await store.ping()
        return {
            "configured": True,
            "connected": True,
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return {
            "configured": True,
            "connected": False,
            "error": str(e)[:100],  # Truncate for safety
        }


def get_sentry_status() -> Dict[str, Any]:
    """Whether Sentry is configured and its client active."""
    settings = get_settings()
    configured = settings.is_sentry_configured
    return {
        "configured": configured,
        "active": sentry_sdk.get_client().is_active() if configured else False,
        "environment": settings.sentry.sentry_environment if configured else None,
    }


def _service_status(status: Dict[str, Any], up_key: str = "connected") -> str:
    if status.get(up_key):
        return "up"
    return "unconfigured" if not status.get("configured") else "down"


@router.get("/")
async def root() -> Dict[str, Any]:
    """Service banner."""
    return {
        "service": "memorial-quota-api",
        "version": __version__,
        "docs": "/docs",
    }


@router.get(
    "/health",
    summary="System health check",
    description="""
Health check endpoint for monitoring and load balancers.

The service reports healthy when the datastore is reachable or not
configured at all (usage limits are then not enforced).

**Authentication**: Not required.
    """,
)
async def health_check() -> Dict[str, Any]:
    """Overall health including datastore and Sentry status."""
    settings = get_settings()
    db_status = await get_database_status()
    sentry_status = get_sentry_status()

    is_healthy = db_status.get("connected", False) or not db_status.get("configured", False)

    return {
        "status": "healthy" if is_healthy else "degraded",
        "timestamp": _now(),
        "version": __version__,
        "environment": settings.security.environment,
        "enforcing_limits": db_status.get("configured", False),
        "services": {
            "database": {
                "status": _service_status(db_status),
                "latency_ms": db_status.get("latency_ms"),
            },
            "sentry": {
                "status": _service_status(sentry_status, up_key="active"),
            },
        },
    }


@router.get("/health/db")
async def database_health() -> Dict[str, Any]:
    """Detailed Supabase connectivity check."""
    return {
        "timestamp": _now(),
        "database": await get_database_status(),
    }
