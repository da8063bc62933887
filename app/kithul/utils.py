from __future__ import annotations

import secrets
import time
from datetime import date, datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_id(prefix: str) -> str:
    """Business identifier like ``pb1718000000000a3f9``: prefix, epoch millis, short random suffix."""
    return f"{prefix}{int(time.time() * 1000)}{secrets.token_hex(2)}"


def epoch_millis() -> int:
    return int(time.time() * 1000)


def iso(value: datetime | date | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat() + "Z" if value.tzinfo is None else value.isoformat()
    return value.isoformat()


def num(value) -> float | None:
    if value is None:
        return None
    return float(value)


def parse_date(raw: str | None) -> date | None:
    """Parse YYYY-MM-DD (a trailing time component is ignored). Returns None on bad input."""
    if not raw:
        return None
    try:
        return date.fromisoformat(str(raw).strip()[:10])
    except ValueError:
        return None


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime(day.year, day.month, day.day)
    return start, start + timedelta(days=1)
