# Overview: UTC time helpers; the database stores naive UTC, the API speaks ISO-8601 with 'Z'.

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Naive UTC now, the form every timestamp column holds."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_day_bounds(moment: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """[midnight, next midnight) of the UTC day containing `moment` (default: now)."""
    moment = moment or utcnow()
    start = datetime(moment.year, moment.month, moment.day)
    return start, start + timedelta(days=1)


def parse_iso_datetime(value: Optional[str], *, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a history filter bound into naive UTC.

    Accepts a full timestamp ("2026-10-18T09:30", "...Z", "...+00:00") or a bare
    date. A bare date means its midnight, or the following midnight when
    end_of_day is set so that `end=2026-10-18` includes the whole day.
    Raises ValueError on anything else.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()

    if len(text) == 10:
        day = date.fromisoformat(text)
        start = datetime(day.year, day.month, day.day)
        return start + timedelta(days=1) if end_of_day else start

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to second precision with a trailing 'Z'; naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
