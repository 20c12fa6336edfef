"""
Logging setup for the memorial quota service.

One stdout handler on the root logger. Records pick up the current request
id and (truncated) user id from contextvars, Supabase keys and JWTs are
masked before formatting, and output is a JSON line in production or a
coloured console line everywhere else.
"""

import inspect
import json
import logging
import os
import re
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

# Credentials that can end up in PostgREST errors or config dumps
_SECRET_PATTERNS = (
    re.compile(r'service[_-]?role[_-]?key["\']?\s*[:=]\s*["\']?[\w.-]+', re.IGNORECASE),
    re.compile(r'(?:api[_-]?)?key["\']?\s*[:=]\s*["\']?[\w.-]{16,}', re.IGNORECASE),
    re.compile(r'bearer\s+[\w.-]+', re.IGNORECASE),
    re.compile(r'sb_(?:secret|publishable)_[\w-]+'),
    re.compile(r'eyJ[\w-]+\.eyJ[\w-]+\.[\w-]+'),
)
MASK = "[REDACTED]"

# LogRecord attributes that are not caller-supplied extras
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "request_id", "user_id"}

SERVICE_NAME = "memorial-quota-api"


def short_id(value: Optional[str], length: int = 8) -> str:
    """Truncate an identifier for log lines (user ids are never logged in full)."""
    if not value:
        return "-"
    value = str(value)
    return value if len(value) <= length else f"{value[:length]}..."


def _mask(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(MASK, text)
    return text


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class LogContextFilter(logging.Filter):
    """Attach request context and mask credentials in the message."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        record.user_id = user_id_var.get() or "-"
        if isinstance(record.msg, str):
            record.msg = _mask(record.msg)
        if record.args:
            record.args = tuple(_mask(a) if isinstance(a, str) else a for a in record.args)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; caller extras are nested under "extra"."""

    def __init__(self, service_name: str = SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "request_id": getattr(record, "request_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
        }
        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.pathname}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        extras = _extras(record)
        if extras:
            entry["extra"] = extras
        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for local runs."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        when = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        context = f"{short_id(getattr(record, 'request_id', None))}/{getattr(record, 'user_id', '-')}"

        line = (
            f"{self.DIM}{when}{self.RESET} {color}{record.levelname:<8}{self.RESET} "
            f"{self.DIM}{context}{self.RESET} {record.name}: {record.getMessage()}"
        )
        extras = _extras(record)
        if extras:
            line += f" {self.DIM}{extras}{self.RESET}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    service_name: str = SERVICE_NAME,
    log_level: Optional[str] = None,
    force_json: bool = False,
    environment: Optional[str] = None,
) -> logging.Logger:
    """
    Install the stdout handler on the root logger.

    Call once from server.py before the app modules are imported. Level and
    environment fall back to LOG_LEVEL and ENVIRONMENT.
    """
    level = logging.getLevelName((log_level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    environment = (environment or os.environ.get("ENVIRONMENT", "development")).lower()
    use_json = force_json or environment == "production"

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(LogContextFilter())
    handler.setFormatter(JSONFormatter(service_name) if use_json else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "hpack"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    root.info(
        "Logging configured",
        extra={"log_level": logging.getLevelName(level), "json": use_json},
    )
    return root


def set_request_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """Set the ids stamped on every record logged in the current request."""
    if request_id is not None:
        request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)


def clear_request_context() -> None:
    request_id_var.set(None)
    user_id_var.set(None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def timed(name: Optional[str] = None, level: int = logging.DEBUG) -> Callable:
    """
    Log how long a sync or async function took, on the function's module logger.

    Usage:
        @timed("usage_aggregation")
        async def aggregate(self, user_id: str):
            ...
    """
    def decorator(func: Callable) -> Callable:
        operation = name or func.__name__
        logger = logging.getLogger(func.__module__)

        def log_duration(start: float, ok: bool) -> None:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.log(
                level,
                f"{operation} {'completed' if ok else 'failed'} in {elapsed_ms:.2f}ms",
                extra={"operation": operation, "duration_ms": round(elapsed_ms, 2)},
            )

        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                ok = False
                try:
                    result = await func(*args, **kwargs)
                    ok = True
                    return result
                finally:
                    log_duration(start, ok)

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            ok = False
            try:
                result = func(*args, **kwargs)
                ok = True
                return result
            finally:
                log_duration(start, ok)

        return sync_wrapper

    return decorator
