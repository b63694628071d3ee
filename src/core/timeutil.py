"""
Timestamp Normalization

Both backends render timestamps differently (UTC with "Z", offsets, naive
local times, bare dates). Everything is parsed into aware datetimes and
compared as integer UTC epoch seconds, so formatting or DST differences
never cause a mismatch.
"""

from datetime import datetime, timezone, tzinfo
from typing import Optional

LOCAL_FORMAT = "%Y-%m-%dT%H:%M:%S"


def parse_timestamp(value: Optional[str], tz: tzinfo) -> Optional[datetime]:
    """
    Parse an API timestamp into an aware datetime.

    Naive values and bare dates ("2024-05-01") are interpreted in `tz`.
    Returns None for empty values; raises ValueError for garbage.
    """
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Timestamp is not a string: {value!r}")
    text = value.strip()
    if len(text) == 10:
        text += "T00:00:00"
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def to_epoch(value: datetime) -> int:
    """Whole UTC epoch seconds of an aware datetime."""
    return int(value.astimezone(timezone.utc).timestamp() // 1)


def same_second(a: datetime, b: datetime) -> bool:
    return to_epoch(a) == to_epoch(b)


def format_local(value: datetime, tz: tzinfo) -> str:
    """Render in the configured local timezone without offset (billing format)."""
    return value.astimezone(tz).strftime(LOCAL_FORMAT)


def format_api(value: datetime) -> str:
    """Render as UTC ISO-8601 with a trailing Z (usage store / vendor format)."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
