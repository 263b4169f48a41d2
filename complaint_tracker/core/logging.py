"""
Logging configuration.

JSON lines by default (one object per record, machine readable); set
LOG_FORMAT=text for plain lines during local development.
"""
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

# request/record context copied into the JSON object when passed via `extra=`
CONTEXT_FIELDS = ("complaint_id", "event_type", "attempt")


class ComplaintJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level, logger name and complaint context."""

    def __init__(self, *args, environment: str = "dev", **kwargs):
        super().__init__(*args, **kwargs)
        self.environment = environment

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["environment"] = self.environment

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_record[field] = getattr(record, field)

        if record.exc_info:
            log_record["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
            log_record.pop("exc_info", None)


def build_logging_config(level: str = "INFO", fmt: str = "json", environment: str = "dev") -> Dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            },
            "json": {
                "()": ComplaintJsonFormatter,
                "fmt": "%(message)s",
                "environment": environment,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if fmt == "json" else "standard",
            },
        },
        "loggers": {
            "complaint_tracker": {
                "handlers": ["console"],
                "level": level.upper(),
                "propagate": False,
            },
        },
    }


def configure_logging(level: str = "INFO", fmt: str = "json", environment: str = "dev") -> None:
    logging.config.dictConfig(build_logging_config(level, fmt, environment))
