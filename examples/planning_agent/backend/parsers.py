"""Parsing of user-typed weeks and hour values.

The agent receives weeks as loose phrases ("next week", "week of March 3")
and hours as strings from a grid; both are normalized here before anything
reaches the cache or the reconciliation engine.
"""

from __future__ import annotations

import math
import re
from datetime import date as _date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .dates import week_start

_MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_NUMBER_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6}


def resolve_week_phrase(
    phrase: str,
    *,
    timezone: str | None = None,
    base_date: str | None = None,
) -> str:
    """Resolve a week phrase to the ISO date of that week's Monday.

    Supported:
    - Relative: "this week", "next week", "last week", "in 2 weeks", "2 weeks ago".
    - Any single day ("today", "tomorrow", "next friday", "2025-01-08",
      "January 8 2025", "8 Jan 2025", "01/08/2025") resolves to its week.

    Returns an empty string when the phrase is not understood.
    """
    s = re.sub(r"^(the\s+)?week\s+of\s+", "", (phrase or "").strip().lower())
    if not s:
        return ""
    today = _parse_iso_date(base_date) or datetime.now(_resolve_tz(timezone)).date()

    offset = _relative_week_offset(s)
    if offset is not None:
        return week_start(today + timedelta(weeks=offset)).isoformat()

    day = _resolve_day(s, today)
    return week_start(day).isoformat() if day else ""


def parse_hours(value: Any) -> float:
    """Coerce a grid cell to hours; blanks mean zero.

    Accepts numbers and strings such as "7.5", "7,5", " 8 ", "8h".
    Raises ``ValueError`` for anything else.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"Not an hour value: {value!r}")
    if isinstance(value, (int, float)):
        hours = float(value)
    else:
        s = str(value).strip().lower().replace(",", ".")
        s = re.sub(r"\s*(h|hr|hrs|hour|hours)$", "", s)
        if not s:
            return 0.0
        hours = float(s)
    if not math.isfinite(hours):
        raise ValueError(f"Not an hour value: {value!r}")
    return hours


def _relative_week_offset(s: str) -> int | None:
    if s in {"this week", "current week"}:
        return 0
    if s == "next week":
        return 1
    if s in {"last week", "previous week"}:
        return -1
    m = re.fullmatch(r"in\s+(\w+)\s+weeks?", s)
    if m:
        n = _as_count(m.group(1))
        return n
    m = re.fullmatch(r"(\w+)\s+weeks?\s+ago", s)
    if m:
        n = _as_count(m.group(1))
        return -n if n is not None else None
    return None


def _as_count(token: str) -> int | None:
    if token.isdigit():
        return int(token)
    return _NUMBER_WORDS.get(token)


def _resolve_day(s: str, today: _date) -> _date | None:
    if s == "today":
        return today
    if s == "yesterday":
        return today - timedelta(days=1)
    if s == "tomorrow":
        return today + timedelta(days=1)

    iso = _parse_iso_date(s)
    if iso:
        return iso

    mdy = re.search(r"\b([a-z]+)\s+(\d{1,2})(?:st|nd|rd|th)?\s*,?\s*(\d{4})\b", s)
    if mdy:
        return _safe_date(int(mdy.group(3)), _MONTHS.get(mdy.group(1)[:3]), int(mdy.group(2)))

    dmy = re.search(r"\b(\d{1,2})(?:st|nd|rd|th)?\s+([a-z]+)\s*,?\s*(\d{4})\b", s)
    if dmy:
        return _safe_date(int(dmy.group(3)), _MONTHS.get(dmy.group(2)[:3]), int(dmy.group(1)))

    mdy_num = re.fullmatch(r"(\d{1,2})/(\d{1,2})/(\d{4})", s)
    if mdy_num:
        return _safe_date(int(mdy_num.group(3)), int(mdy_num.group(1)), int(mdy_num.group(2)))

    wk = re.fullmatch(r"(this|next|last)\s+(" + "|".join(_WEEKDAYS) + ")", s)
    if wk:
        # "next friday" is the Friday of next week, not the next Friday to come.
        weeks = {"this": 0, "next": 1, "last": -1}[wk.group(1)]
        target = _WEEKDAYS.index(wk.group(2))
        return today + timedelta(days=target - today.weekday(), weeks=weeks)
    return None


def _safe_date(year: int, month: int | None, day: int) -> _date | None:
    if not month:
        return None
    try:
        return _date(year, month, day)
    except ValueError:
        return None


def _resolve_tz(timezone: str | None):
    if timezone:
        try:
            return ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return datetime.now().astimezone().tzinfo or ZoneInfo("UTC")


def _parse_iso_date(s: str | None) -> _date | None:
    if not s or not re.fullmatch(r"\d{4}-\d{2}-\d{2}", s.strip()):
        return None
    try:
        return datetime.strptime(s.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None
