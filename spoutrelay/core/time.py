"""
spoutrelay/core/time.py

Timestamps for journal entries and JSON log lines.

Format: YYYY-MM-DDTHH:MM:SS.mmmZ
        (UTC, milliseconds, explicit Z)
"""

from datetime import datetime, timezone


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime in the relayer's timestamp format."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def utc_timestamp() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def timestamp_from_epoch(seconds: float) -> str:
    return format_timestamp(datetime.fromtimestamp(seconds, tz=timezone.utc))
