"""Logging setup for MedVerse processes.

Every record is stamped with the service name, the deployment environment and,
while a span is active, the OpenTelemetry trace ids. The cache modules attach
``operation_id``, ``operation_name`` and ``cache_level`` through ``extra=``; the
JSON formatter emits them as top-level fields.

Records go to stderr so that command output on stdout stays machine readable.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

from opentelemetry import trace

DEFAULT_LOG_FORMAT = (
    "%(asctime)s %(levelname)s [%(service_name)s/%(environment)s] %(name)s: %(message)s"
)

# Domain fields passed via ``extra=`` by the cache modules
CONTEXT_FIELDS = ("operation_id", "operation_name", "cache_level")

LOG_OFF_LEVEL = "OFF"


class ServiceContextFilter(logging.Filter):
    """Inject service, environment and trace context into log records."""

    def __init__(self, service_name: str, environment: str) -> None:
        super().__init__()
        self.service_name = service_name
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        record.environment = self.environment

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = None
            record.span_id = None
        return True


class MedVerseJSONFormatter(logging.Formatter):
    """One JSON object per record, carrying cache context when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service_name", "unknown"),
            "environment": getattr(record, "environment", "unknown"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in (*CONTEXT_FIELDS, "trace_id", "span_id"):
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    service_name: str = "medverse-cache",
    environment: str = "development",
    log_level_env_var: str = "LOG_LEVEL",
    log_format_env_var: str = "LOG_FORMAT",
) -> None:
    """
    Configure the root logger for a MedVerse process.

    Args:
        service_name: Reported as ``service`` on every record
        environment: Deployment environment, usually ``CacheManagerConfig.environment``
        log_level_env_var: Environment variable holding the level name, or ``OFF``
        log_format_env_var: Environment variable holding ``json`` or a %-style format
    """
    level_name = os.environ.get(log_level_env_var, "INFO").upper()
    log_format = os.environ.get(log_format_env_var, DEFAULT_LOG_FORMAT)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if level_name == LOG_OFF_LEVEL:
        root_logger.setLevel(logging.CRITICAL + 1)
        return

    root_logger.setLevel(_resolve_level(level_name))

    handler = logging.StreamHandler(sys.stderr)
    if log_format.lower() == "json":
        handler.setFormatter(MedVerseJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(log_format))
    handler.addFilter(ServiceContextFilter(service_name, environment))
    root_logger.addHandler(handler)

    # Webhook delivery logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured for %s (%s) at %s", service_name, environment, level_name
    )
