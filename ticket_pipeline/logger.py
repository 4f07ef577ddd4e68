"""
Structured logging for the pipeline services.

Every line is one JSON object (or a plain text line in development) carrying
the service name and, for anything about a single order, a correlation_id so
an order can be followed from the API through fulfillment into analytics.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

PACKAGE_LOGGER = "ticket_pipeline"

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "correlation_id", "taskName"}


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON with any `extra` fields attached."""

    def __init__(self, service_name: str = "ticket-pipeline", include_extra: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "correlation_id"):
            log_data["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extra_fields = {
                k: v
                for k, v in record.__dict__.items()
                if k not in _STANDARD_ATTRS and not k.startswith("_")
            }
            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)

    @staticmethod
    def _format_timestamp(created: float) -> str:
        dt = datetime.fromtimestamp(created, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class PlainTextFormatter(logging.Formatter):
    """[2025-01-10 14:30:00] INFO [ticket-pipeline] Order received"""

    def __init__(self, service_name: str = "ticket-pipeline"):
        super().__init__(
            fmt=f"[%(asctime)s] %(levelname)s [{service_name}] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logger(
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    name: str = PACKAGE_LOGGER,
) -> logging.Logger:
    """
    Configure the package logger.

    Module loggers (`logging.getLogger(__name__)`) inside the package propagate
    here, so this is called once at startup. Calling it again replaces the
    handler rather than stacking a second one.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logger.level)

    if log_format.lower() == "json":
        formatter = JSONFormatter(service_name=service_name)
    else:
        formatter = PlainTextFormatter(service_name=service_name)

    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    logger.propagate = False

    return logger


class CorrelationAdapter(logging.LoggerAdapter):
    """Adds the adapter's correlation_id to every record it emits."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        if "correlation_id" in self.extra:
            extra["correlation_id"] = self.extra["correlation_id"]
        kwargs["extra"] = extra
        return msg, kwargs
