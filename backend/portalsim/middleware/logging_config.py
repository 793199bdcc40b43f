"""
Structured JSON logging configuration.

Every log line includes timestamp, level, logger, message, request_id and
run_id, plus duration_ms and the exception when the record carries them.
"""

import json
import logging
from datetime import datetime, timezone

from portalsim.middleware.request_context import get_request_id, get_run_id

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
            "run_id": get_run_id(),
        }

        if hasattr(record, "duration_ms"):
            log_entry["duration_ms"] = record.duration_ms

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_json_logging(log_level: str = "INFO"):
    """Replace the root logger's formatter with JSON output."""
    _install(JSONFormatter(), log_level)


def configure_text_logging(log_level: str = "INFO"):
    """Plain single-line logs for the CLI and local worker runs."""
    _install(logging.Formatter(TEXT_FORMAT), log_level)


def configure_logging(log_level: str = "INFO", log_format: str = "json"):
    if log_format == "text":
        configure_text_logging(log_level)
    else:
        configure_json_logging(log_level)


def _install(formatter: logging.Formatter, log_level: str):
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
