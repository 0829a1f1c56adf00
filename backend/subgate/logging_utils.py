from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys
from typing import IO, Optional

# Attributes copied from ``extra={...}`` into the JSON line when present.
GATEWAY_FIELDS = (
    "event",
    "ip",
    "method",
    "path",
    "status",
    "reason",
    "user_agent",
    "traffic",
    "limiter",
    "deleted",
    "ban_seconds",
)


class JsonFormatter(logging.Formatter):
    def __init__(self, fields: tuple[str, ...] = GATEWAY_FIELDS) -> None:
        super().__init__()
        self.fields = fields

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in self.fields:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO", stream: Optional[IO[str]] = None) -> None:
    """Send JSON lines to ``stream`` (stdout by default) unless logging is already set up."""
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.addHandler(handler)
