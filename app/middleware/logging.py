"""
Access log middleware.

Each request gets a request id (reused from X-Request-ID when the gateway
sends one) that is bound to the logging context for the duration of the
call and echoed back with the elapsed time.
"""

import logging
import time
import uuid
from typing import Callable, FrozenSet, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from memorial_quota.utils.logging import (
    clear_request_context,
    set_request_context,
    short_id,
)

logger = logging.getLogger(__name__)

QUIET_PATHS: FrozenSet[str] = frozenset({"/", "/docs", "/openapi.json", "/redoc", "/favicon.ico"})
# Probed by the load balancer; only worth a line when unhealthy
HEALTH_PATHS: FrozenSet[str] = frozenset({"/health", "/health/db"})


def level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One access log line per quota API request."""

    def __init__(
        self,
        app,
        quiet_paths: FrozenSet[str] = QUIET_PATHS,
        health_paths: FrozenSet[str] = HEALTH_PATHS,
    ):
        super().__init__(app)
        self.quiet_paths = quiet_paths
        self.health_paths = health_paths

    @staticmethod
    def client_ip(request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    def _level(self, path: str, status_code: int) -> Optional[int]:
        if path in self.quiet_paths:
            return None
        if path in self.health_paths and status_code < 400:
            return None
        return level_for_status(status_code)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_context(request_id=request_id)
        request.state.request_id = request_id
        route = f"{request.method} {request.url.path}"
        fields = {
            "http_method": request.method,
            "http_path": request.url.path,
            "client_ip": self.client_ip(request),
        }
        started = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception as exc:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.error(
                    f"{route} raised {type(exc).__name__} after {elapsed_ms:.2f}ms",
                    extra={**fields, "event": "http_request_error", "duration_ms": round(elapsed_ms, 2)},
                    exc_info=True,
                )
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"

            level = self._level(request.url.path, response.status_code)
            if level is not None:
                logger.log(
                    level,
                    f"{route} {response.status_code} ({elapsed_ms:.2f}ms)",
                    extra={
                        **fields,
                        "event": "http_request",
                        "http_status": response.status_code,
                        "duration_ms": round(elapsed_ms, 2),
                        "user": short_id(getattr(request.state, "user_id", None)),
                    },
                )
            return response
        finally:
            clear_request_context()
