"""Logging setup: JSON lines in production, plain text in development."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

_HANDLER_NAME = "user-directory"

# ``extra=`` keys the repository and routers attach to their records.
CONTEXT_FIELDS = ("user_id", "path", "records")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record: when, level, logger, message, plus any context fields set."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log.update({key: getattr(record, key) for key in CONTEXT_FIELDS if getattr(record, key, None) is not None})
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


def setup_logging(level: str = "INFO", fmt: str = "text") -> logging.Handler:
    """Configure the root logger. Calling it again replaces our handler."""
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler
