"""Logging setup for the bridge process.

``format="auto"`` picks JSON lines when stderr is not a terminal (services,
containers) and a human-readable layout otherwise.
"""

import json
import logging
import sys
from datetime import datetime, timezone

_HUMAN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """Install a single root handler.

    Args:
        level: Logging level name (``DEBUG``, ``INFO``...)
        format: ``"json"``, ``"human"`` or ``"auto"``
    """
    if format == "auto":
        format = "human" if sys.stderr.isatty() else "json"

    handler = logging.StreamHandler(sys.stderr)
    if format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_HUMAN_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    # one INFO line per chat.update otherwise
    logging.getLogger("httpx").setLevel(logging.WARNING)
