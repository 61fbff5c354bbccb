"""
Logging for vendor connectors

Connector events go through a structlog processor chain that stamps the vendor,
property and correlation id on every line, scrubs PII and renders JSON onto a
stdlib logger. Resilience and dispute internals use the lighter SafeLogger.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, MutableMapping, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

import structlog

from ..config import get_settings
from .pii_redactor import get_default_redactor

correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

REDACTED_PARAM = "<REDACTED>"

SENSITIVE_QUERY_PARAMS = frozenset(
    [
        "api_key", "apikey", "key", "token", "secret", "password", "pwd",
        "auth", "authorization", "client_secret", "client_id", "access_token",
        "refresh_token", "session", "sid", "clienttoken", "accesstoken",
    ]
)


def bind_correlation_id(value: Optional[str] = None) -> str:
    """Attach a correlation id to the current context, generating one if needed."""
    value = value or uuid.uuid4().hex
    correlation_id.set(value)
    return value


def current_correlation_id() -> Optional[str]:
    return correlation_id.get()


def add_correlation_id(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]):
    event_dict.setdefault("correlation_id", correlation_id.get())
    return event_dict


def redact_event(logger: Any, method_name: str, event_dict: MutableMapping[str, Any]):
    """Scrub the event text and any request or response payload attached to it."""
    redactor = get_default_redactor()
    event = event_dict.get("event")
    if isinstance(event, str):
        event_dict["event"] = redactor.redact_text(event)
    for key in ("request", "response"):
        payload = event_dict.get(key)
        if isinstance(payload, dict):
            event_dict[key] = redactor.redact_dict(payload)
    return event_dict


CONNECTOR_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True, key="@timestamp"),
    add_correlation_id,
    redact_event,
    structlog.processors.format_exc_info,
    structlog.processors.JSONRenderer(default=str),
]


def _stdlib_logger(name: str, level: str) -> logging.Logger:
    target = logging.getLogger(name)
    target.setLevel(level)
    if not target.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        target.addHandler(handler)
    return target


class ConnectorLogger:
    """
    Per-adapter logger bound to a vendor and property

    Keyword arguments become JSON fields; ``log_api_call`` records one outbound
    vendor request with its timing and outcome. The level defaults to the
    ``log_level`` setting.
    """

    def __init__(self, name: str, vendor: str, property_id: Optional[str] = None, level: Optional[str] = None):
        self.name = name
        self.vendor = vendor
        self.property_id = property_id
        self.level = (level or get_settings().log_level).upper()
        self._log = structlog.wrap_logger(
            _stdlib_logger(name, self.level),
            processors=CONNECTOR_PROCESSORS,
            wrapper_class=structlog.stdlib.BoundLogger,
        ).bind(logger=name, vendor=vendor, property_id=property_id)

    def log_api_call(
        self,
        operation: str,
        request_data: Optional[Dict[str, Any]] = None,
        response_data: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        status_code: Optional[int] = None,
        error: Optional[BaseException] = None,
    ):
        fields: Dict[str, Any] = {"operation": operation, "status_code": status_code}
        if duration_ms is not None:
            fields["duration_ms"] = round(duration_ms, 2)
        if request_data:
            fields["request"] = request_data
        if response_data:
            fields["response"] = response_data

        if error is None:
            self._log.info("vendor_call_completed", **fields)
        else:
            self._log.error(
                "vendor_call_failed", error=str(error), error_type=type(error).__name__, **fields
            )

    def debug(self, msg: str, **kwargs):
        self._log.debug(msg, **kwargs)

    def info(self, msg: str, **kwargs):
        self._log.info(msg, **kwargs)

    def warning(self, msg: str, **kwargs):
        self._log.warning(msg, **kwargs)

    def error(self, msg: str, exc_info=None, **kwargs):
        self._log.error(msg, exc_info=exc_info, **kwargs)


def log_performance(operation: str):
    """Time an async adapter method and log its duration on the adapter's logger."""

    def decorator(func):
        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            started = time.perf_counter()
            try:
                result = await func(self, *args, **kwargs)
            except Exception as e:
                _timing(self, operation, started, error_type=type(e).__name__)
                raise
            _timing(self, operation, started)
            return result

        return wrapper

    return decorator


def _timing(owner: Any, operation: str, started: float, error_type: Optional[str] = None) -> None:
    log = getattr(owner, "logger", None) or get_safe_logger(type(owner).__module__)
    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    if error_type:
        log.warning(f"{operation} failed", operation=operation, duration_ms=duration_ms, error_type=error_type)
    else:
        log.debug(f"{operation} completed", operation=operation, duration_ms=duration_ms)


def sanitize_url(url: str) -> str:
    """Mask credential-bearing query parameters so the URL can be logged."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    params = [
        (name, REDACTED_PARAM if name.lower() in SENSITIVE_QUERY_PARAMS else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return parts._replace(query=urlencode(params)).geturl()


class SafeLogger:
    """
    Thin wrapper over a structlog logger taking event names plus keyword context.
    """

    def __init__(self, logger: Any):
        self._logger = logger

    def bind(self, **kwargs) -> "SafeLogger":
        return SafeLogger(self._logger.bind(**kwargs))

    def debug(self, event: str, **kwargs) -> None:
        self._logger.debug(event, correlation_id=correlation_id.get(), **kwargs)

    def info(self, event: str, **kwargs) -> None:
        self._logger.info(event, correlation_id=correlation_id.get(), **kwargs)

    def warning(self, event: str, **kwargs) -> None:
        self._logger.warning(event, correlation_id=correlation_id.get(), **kwargs)

    def error(self, event: str, **kwargs) -> None:
        self._logger.error(event, correlation_id=correlation_id.get(), **kwargs)

    warn = warning


def get_safe_logger(name: Optional[str] = None) -> SafeLogger:
    """Get a structlog-backed logger for resilience and dispute internals."""
    return SafeLogger(structlog.get_logger(name) if name else structlog.get_logger())
