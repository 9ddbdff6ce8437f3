from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional


# Spreadsheet serial day 0 (accounts for the 1900 leap-year bug).
SPREADSHEET_EPOCH = date(1899, 12, 30)

# Serials at or below this (1970-01-01) are treated as plain numbers, not dates.
MIN_SPREADSHEET_SERIAL = 25569


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return utcnow().date()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _from_day_first(text: str, sep: str) -> Optional[date]:
    parts = text.split(sep)
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        return None
    day, month, year = (int(p) for p in parts)
    if len(parts[2]) != 4:
        return None
    return date(year, month, day)


def parse_flexible_date(value: Any) -> Optional[date]:
    """
    Parse a business date coming from a form or an imported table.

    Accepted shapes:
    - date / datetime objects (datetime is truncated to its date)
    - spreadsheet serial numbers > 25569 (days since 1899-12-30)
    - "YYYY-MM-DD" or any ISO-8601 datetime string
    - "DD/MM/YYYY" and "DD-MM-YYYY"

    Returns None for None / blank input. Raises ValueError for anything else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid date: {value!r}")
    if isinstance(value, (int, float)):
        if value > MIN_SPREADSHEET_SERIAL:
            return SPREADSHEET_EPOCH + timedelta(days=int(value))
        raise ValueError(f"Invalid date: {value!r}")

    text = str(value).strip()
    if not text:
        return None

    try:
        serial = float(text)
    except ValueError:
        serial = None
    if serial is not None:
        return parse_flexible_date(serial)

    for sep in ("/", "-"):
        parsed = _from_day_first(text, sep)
        if parsed is not None:
            return parsed

    try:
        dt = parse_iso_datetime(text)
    except ValueError:
        raise ValueError(f"Invalid date: {value!r}")
    return dt.date() if dt else None


def to_iso_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
