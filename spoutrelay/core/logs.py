"""
spoutrelay/core/logs.py

Process-wide logging setup.

Modules log through logging.getLogger(__name__) and attach event context
with `extra=`. Two output formats:

    text   2026-01-01 00:00:00,000 [INFO] spoutrelay.settlement.orchestrator: Minted ...
    json   one JSON object per line, context fields promoted to top level
"""

import json
import logging
import sys
from typing import Optional

from spoutrelay.core.time import timestamp_from_epoch

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# extra= keys copied into JSON output
CONTEXT_FIELDS = (
    "signature",
    "settlement_key",
    "side",
    "user",
    "phase",
    "tx",
    "report",
)

LOG_FORMATS = ("text", "json")


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": timestamp_from_epoch(record.created),
            "level":     record.levelname,
            "logger":    record.name,
            "message":   record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_logging(level: str = "INFO", fmt: str = "text", stream: Optional[object] = None) -> None:
    """
    Install one root handler. Replaces handlers from earlier calls.

    Raises ValueError for an unknown level or format.
    """
    if fmt not in LOG_FORMATS:
        raise ValueError(f"Unknown log format: {fmt!r} (expected one of {', '.join(LOG_FORMATS)})")
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric)

    # Request-level chatter from the HTTP stack
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))
