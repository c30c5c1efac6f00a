"""Logging setup for the API process.

Plain text by default; ``FOLIO_LOG_JSON=true`` switches the root handler to a
JSON line formatter that also carries the structured extras attached by the
services (``user_id``, ``action``, ``resource``).
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone

from .config import settings

_EXTRA_FIELDS = ("user_id", "action", "resource", "target_id")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def configure_logging(level: str | None = None, *, json_output: bool | None = None) -> None:
    level_name = (level or settings.LOG_LEVEL).upper()
    use_json = settings.LOG_JSON if json_output is None else json_output
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "plain": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
                "json": {"()": JSONFormatter},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if use_json else "plain",
                },
            },
            "loggers": {
                "folio_finance": {"level": level_name, "handlers": ["console"], "propagate": False},
            },
        }
    )
