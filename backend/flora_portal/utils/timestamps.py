"""Timestamp parsing and display helpers.

WordPress and the inventory plugin hand back timestamps in several shapes:
MySQL ``YYYY-MM-DD HH:MM:SS`` strings (stored in UTC), ISO-8601 strings with
or without an offset, and unix epochs in seconds or milliseconds. Everything
here normalizes to timezone-aware UTC datetimes.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

TimestampInput = Union[str, int, float, datetime, None]

_MYSQL_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")
_EPOCH_SECONDS_RE = re.compile(r"^\d{10}$")
_EPOCH_MILLIS_RE = re.compile(r"^\d{13}$")
_EMPTY_MARKERS = {"", "null", "undefined", "0"}
_MAX_DISTANCE = timedelta(days=365 * 10)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_epoch(value: float) -> datetime:
    if value >= 1e12:
        value = value / 1000.0
    return datetime.fromtimestamp(value, tz=timezone.utc)


def parse_timestamp(value: TimestampInput, now: Optional[datetime] = None) -> Optional[datetime]:
    """Return an aware UTC datetime for ``value`` or None when it is unusable.

    Dates more than ten years away from ``now`` are rejected as garbage.
    """
    if value is None:
        return None

    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if value <= 0:
            return None
        parsed = _from_epoch(float(value))
    elif isinstance(value, str):
        text = value.strip()
        if text.lower() in _EMPTY_MARKERS:
            return None
        if _MYSQL_RE.match(text):
            parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
        elif _EPOCH_SECONDS_RE.match(text) or _EPOCH_MILLIS_RE.match(text):
            parsed = _from_epoch(float(text))
        else:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
    else:
        return None

    parsed = parsed.astimezone(timezone.utc)
    reference = now or _utcnow()
    if abs(parsed - reference) > _MAX_DISTANCE:
        return None
    return parsed


def format_relative_time(value: TimestampInput, now: Optional[datetime] = None) -> str:
    now = now or _utcnow()
    parsed = parse_timestamp(value, now=now)
    if parsed is None:
        return "Invalid date"

    seconds = int((now - parsed).total_seconds())
    if seconds < 0:
        ahead = -seconds
        if ahead < 3600:
            return f"in {max(1, ahead // 60)}m"
        if ahead < 86400:
            return f"in {ahead // 3600}h"
        if ahead < 604800:
            return f"in {ahead // 86400}d"
        return f"in {ahead // 604800}w"

    if seconds < 30:
        return "just now"
    if seconds < 60:
        return "less than 1m ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    if seconds < 604800:
        return f"{seconds // 86400}d ago"
    if seconds < 2592000:
        return f"{seconds // 604800}w ago"
    if seconds < 31536000:
        return f"{seconds // 2592000}mo ago"
    return f"{seconds // 31536000}y ago"


def _clock(dt: datetime) -> str:
    return dt.strftime("%I:%M %p").lstrip("0")


def format_absolute_time(value: TimestampInput, now: Optional[datetime] = None) -> str:
    now = now or _utcnow()
    parsed = parse_timestamp(value, now=now)
    if parsed is None:
        return "Invalid date"

    if parsed.date() == now.date():
        return f"Today at {_clock(parsed)}"
    if parsed.date() == (now - timedelta(days=1)).date():
        return f"Yesterday at {_clock(parsed)}"
    if parsed.year == now.year:
        return f"{parsed.strftime('%b')} {parsed.day} at {_clock(parsed)}"
    return f"{parsed.strftime('%b')} {parsed.day}, {parsed.year} at {_clock(parsed)}"


def get_timestamp_info(value: TimestampInput, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or _utcnow()
    parsed = parse_timestamp(value, now=now)
    if parsed is None:
        return {
            "relative": "Invalid date",
            "absolute": "Invalid date",
            "iso": None,
            "is_valid": False,
            "error": f"Unparseable timestamp: {value!r}",
        }
    return {
        "relative": format_relative_time(parsed, now=now),
        "absolute": format_absolute_time(parsed, now=now),
        "iso": parsed.isoformat(),
        "is_valid": True,
        "error": None,
    }


def is_recent_timestamp(value: TimestampInput, hours: int = 24, now: Optional[datetime] = None) -> bool:
    now = now or _utcnow()
    parsed = parse_timestamp(value, now=now)
    if parsed is None:
        return False
    return timedelta(0) <= now - parsed < timedelta(hours=hours)
