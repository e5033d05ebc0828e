from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

from agencycrm.context import get_log_context, get_run_id


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())
_KNOWN_FIELDS = {
    "phase",
    "mode",
    "status",
    "duration_ms",
    "error",
    "backup_id",
    "row_count",
    "batch_offset",
    "batch_size",
    "batch_rows",
    "policy_number",
    "templates_created",
    "instances_created",
    "policies_migrated",
    "duplicate_templates",
    "duplicate_instances",
    "skipped_policies",
    "error_count",
    "restored_count",
    "deleted_count",
    "check",
    "passed",
    "actor",
    "entity_type",
    "action",
}


class RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "run_id", None):
            record.run_id = get_run_id()
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    if not getattr(record, "run_id", None):
        record.run_id = get_run_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "run_id": getattr(record, "run_id", None) or context["run_id"],
            "actor": context["actor"],
        }

        extras: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key.startswith("_"):
                continue
            if key in _BASE_RECORD_KEYS:
                continue
            if key in {"args", "msg"}:
                continue
            if key in _KNOWN_FIELDS:
                extras[key] = value

        if record.exc_info:
            extras["exception"] = self.formatException(record.exc_info)

        error_value = extras.get("error")
        if isinstance(error_value, str):
            extras["error"] = error_value[:500]

        payload["fields"] = extras
        return json.dumps(payload, default=str)


def configure_logging(stream: TextIO | None = None) -> None:
    """Install the JSON handler on the root logger once per process.

    Logs go to stderr by default so operator summaries printed on stdout stay clean.
    """
    root_logger = logging.getLogger()
    if getattr(root_logger, "_agencycrm_configured", False):
        return

    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RunIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._agencycrm_configured = True  # type: ignore[attr-defined]
