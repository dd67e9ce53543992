"""ISO week helpers. Weeks start on Monday; dates travel as YYYY-MM-DD strings."""

from __future__ import annotations

from datetime import date, datetime, timedelta


def parse_iso(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value.strip()[:10], "%Y-%m-%d").date()


def week_start(value: date | str) -> date:
    d = parse_iso(value)
    return d - timedelta(days=d.weekday())


def week_end(value: date | str) -> date:
    return week_start(value) + timedelta(days=6)


def week_key(value: date | str) -> str:
    """Return the cache key (Monday, ISO string) of the week containing ``value``."""
    return week_start(value).isoformat()


def week_days(value: date | str) -> list[str]:
    start = week_start(value)
    return [(start + timedelta(days=i)).isoformat() for i in range(7)]


def week_starts(first: date | str, count: int) -> list[str]:
    start = week_start(first)
    return [(start + timedelta(weeks=i)).isoformat() for i in range(max(count, 0))]


def is_next_day(previous: str, current: str) -> bool:
    return parse_iso(current) - parse_iso(previous) == timedelta(days=1)


def format_week_range(value: date | str) -> str:
    """Human label for a week, e.g. "Jan 6 - 12, 2025" or "Dec 30 - Jan 5, 2025"."""
    start = week_start(value)
    end = start + timedelta(days=6)
    if start.month == end.month:
        return f"{start:%b} {start.day} - {end.day}, {end.year}"
    return f"{start:%b} {start.day} - {end:%b} {end.day}, {end.year}"
