from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_iso() -> str:
    """Current UTC instant as an ISO-8601 string, e.g. 2024-05-01T09:30:00.000Z"""
    return to_iso(datetime.now(timezone.utc))


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_iso(value) -> Optional[datetime]:
    """Parse an ISO datetime string into an aware UTC datetime, or None if it isn't one"""
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_valid_timezone(name) -> bool:
    if not isinstance(name, str) or not name.strip():
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def _to_minutes(hhmm: str) -> int:
    parts = (hhmm or "0:0").split(":")
    hours = int(parts[0] or 0) if parts else 0
    minutes = int(parts[1] or 0) if len(parts) > 1 else 0
    return hours * 60 + minutes


def is_within_business_hours(timezone_name: str, start: str, end: str, at: Optional[datetime] = None) -> bool:
    """
    Check whether `at` (default: now) falls inside the daily start-end window
    in the given timezone. Both bounds are inclusive. A window whose end is
    earlier than its start runs past midnight, e.g. 22:00-06:00.

    The timezone must already be valid; see is_valid_timezone.
    """
    if at is None:
        at = datetime.now(timezone.utc)
    elif at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)

    local = at.astimezone(ZoneInfo(timezone_name))
    current_minutes = local.hour * 60 + local.minute
    start_minutes = _to_minutes(start)
    end_minutes = _to_minutes(end)

    if end_minutes < start_minutes:
        return current_minutes >= start_minutes or current_minutes <= end_minutes

    return start_minutes <= current_minutes <= end_minutes
