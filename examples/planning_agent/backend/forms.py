"""Coercion and validation of a week's hours grid.

The reconciliation engine assumes pre-validated input, so every grid the user
edits goes through ``from_dict`` and ``validate`` first.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .dates import week_days
from .models import DesiredDayMap
from .parsers import parse_hours

DEFAULT_DAILY_CEILING = 24.0


def from_dict(data: Mapping[str, Any], week_start: str) -> tuple[DesiredDayMap, list[str]]:
    """Convert raw grid cells to a ``DesiredDayMap`` covering the whole week.

    Days the user left out become 0. Cells that cannot be parsed are reported
    as problems and treated as 0 in the returned map.
    """
    desired: DesiredDayMap = {day: 0.0 for day in week_days(week_start)}
    problems: list[str] = []
    for day, raw in data.items():
        try:
            desired[str(day)] = parse_hours(raw)
        except ValueError:
            problems.append(f"{day}: '{raw}' is not a number of hours.")
            desired[str(day)] = 0.0
    return desired, problems


def validate(
    desired: Mapping[str, float],
    week_start: str,
    ceiling: float = DEFAULT_DAILY_CEILING,
) -> list[str]:
    """Return human-readable problems; an empty list means the grid is valid."""
    issues: list[str] = []
    days = set(week_days(week_start))
    over_ceiling = False
    for day in sorted(desired):
        hours = desired[day]
        if day not in days:
            issues.append(f"{day} is outside the week starting {week_start}.")
            continue
        if hours < 0:
            issues.append(f"{day}: hours cannot be negative.")
        elif hours > ceiling and not over_ceiling:
            over_ceiling = True
            issues.append(f"Cannot enter more than {ceiling:g} hours per day.")
    return issues
