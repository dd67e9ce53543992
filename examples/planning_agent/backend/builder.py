"""Normalization of raw ledger records into allocation blocks.

Names are resolved once per fetch and copied onto each block, so a block never
needs to look its resource, project or task up again.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import NamedTuple

from .dates import is_next_day
from .gateway import RawLine, RawProject, RawResource, RawTask, RawTimesheet, concurrency_token
from .models import AllocationBlock, LineType, Project, Resource, TimesheetSummary

PROJECT_COLORS = (
    "#22c55e",  # green
    "#3b82f6",  # blue
    "#f59e0b",  # amber
    "#ef4444",  # red
    "#8b5cf6",  # purple
    "#ec4899",  # pink
    "#06b6d4",  # cyan
    "#f97316",  # orange
    "#84cc16",  # lime
    "#6366f1",  # indigo
)


class TaskKey(NamedTuple):
    project_number: str
    task_number: str


class _GroupKey(NamedTuple):
    resource_number: str
    project_number: str
    task_number: str


class ColorPalette:
    """Round-robin palette with a sticky project number → slot mapping."""

    def __init__(self, size: int = len(PROJECT_COLORS)) -> None:
        if size <= 0:
            raise ValueError("Palette size must be positive")
        self.size = size
        self._slots: dict[str, int] = {}

    def index_for(self, project_number: str) -> int:
        slot = self._slots.get(project_number)
        if slot is None:
            slot = len(self._slots) % self.size
            self._slots[project_number] = slot
        return slot

    def color_for(self, project_number: str) -> str:
        return PROJECT_COLORS[self.index_for(project_number) % len(PROJECT_COLORS)]

    def assign(self, project_numbers: Iterable[str]) -> None:
        for number in project_numbers:
            self.index_for(number)


def resource_from_raw(raw: RawResource) -> Resource:
    return Resource(
        id=str(raw.get("id") or raw["number"]),
        number=str(raw["number"]),
        name=str(raw.get("name") or raw.get("displayName") or raw["number"]),
        email=raw.get("email") or None,
        owner_user_id=raw.get("timeSheetOwnerUserId") or None,
    )


def project_from_raw(raw: RawProject) -> Project:
    return Project(
        id=str(raw.get("id") or raw["number"]),
        number=str(raw["number"]),
        name=str(raw.get("displayName") or raw["number"]),
        customer_name=str(raw.get("billToCustomerName") or ""),
    )


def timesheet_from_raw(raw: RawTimesheet) -> TimesheetSummary:
    return TimesheetSummary(
        id=str(raw["id"]),
        number=str(raw.get("number") or ""),
        resource_number=str(raw["resourceNo"]),
        starting_date=str(raw["startingDate"])[:10],
        ending_date=str(raw.get("endingDate") or "")[:10],
        open_exists=bool(raw.get("openExists")),
        submitted_exists=bool(raw.get("submittedExists")),
        rejected_exists=bool(raw.get("rejectedExists")),
        approved_exists=bool(raw.get("approvedExists")),
        total_hours=float(raw.get("totalQuantity") or 0),
    )


def index_resources(resources: Iterable[Resource]) -> dict[str, Resource]:
    return {r.number: r for r in resources}


def index_projects(projects: Iterable[Project]) -> dict[str, Project]:
    return {p.number: p for p in projects}


def index_task_names(tasks: Iterable[RawTask]) -> dict[TaskKey, str]:
    names: dict[TaskKey, str] = {}
    for task in tasks:
        key = TaskKey(str(task["jobNo"]), str(task["jobTaskNo"]))
        names[key] = str(task.get("description") or task["jobTaskNo"])
    return names


def is_resource_line(line: RawLine) -> bool:
    return (line.get("type") or "Resource") == "Resource" and float(line.get("quantity") or 0) > 0


def planning_date(line: RawLine) -> str:
    return str(line["planningDate"])[:10]


def build_blocks(
    raw_lines: Iterable[RawLine],
    project_index: Mapping[str, Project],
    resource_index: Mapping[str, Resource],
    task_name_index: Mapping[TaskKey, str],
    palette: ColorPalette,
) -> list[AllocationBlock]:
    """Group resource planning lines into one block per contiguous date run.

    Lines are grouped by (resource, project, task); within a group, lines on
    consecutive calendar days form one run. Several lines on the same day
    (legacy duplicates) land in the same run and their quantities add up.
    """
    groups: dict[_GroupKey, list[RawLine]] = defaultdict(list)
    for line in raw_lines:
        if not is_resource_line(line):
            continue
        key = _GroupKey(str(line["number"]), str(line["jobNo"]), str(line.get("jobTaskNo") or ""))
        groups[key].append(line)

    blocks: list[AllocationBlock] = []
    for key in sorted(groups):
        ordered = sorted(
            groups[key], key=lambda l: (planning_date(l), int(l.get("lineNo") or 0), str(l["id"]))
        )
        for run in _contiguous_runs(ordered):
            blocks.append(_make_block(key, run, project_index, resource_index, task_name_index, palette))
    blocks.sort(key=lambda b: (b.resource_number, b.project_number, b.task_number or "", b.start_date))
    return blocks


def _contiguous_runs(lines: list[RawLine]) -> list[list[RawLine]]:
    runs: list[list[RawLine]] = []
    for line in lines:
        day = planning_date(line)
        if runs:
            last_day = planning_date(runs[-1][-1])
            if day == last_day or is_next_day(last_day, day):
                runs[-1].append(line)
                continue
        runs.append([line])
    return runs


def _line_ref(line: RawLine) -> str:
    # Line numbers are optional on some payloads; the record id is always there.
    line_no = line.get("lineNo")
    return str(line_no) if line_no is not None else str(line["id"])


def _make_block(
    key: _GroupKey,
    run: list[RawLine],
    project_index: Mapping[str, Project],
    resource_index: Mapping[str, Resource],
    task_name_index: Mapping[TaskKey, str],
    palette: ColorPalette,
) -> AllocationBlock:
    per_day: dict[str, float] = {}
    for line in run:
        day = planning_date(line)
        per_day[day] = per_day.get(day, 0.0) + float(line["quantity"])

    first = run[0]
    resource = resource_index.get(key.resource_number)
    project = project_index.get(key.project_number)
    task_number = key.task_number or None
    single = first if len(run) == 1 else None
    return AllocationBlock(
        id=f"{key.project_number}-{key.task_number}-{_line_ref(first)}",
        resource_id=resource.id if resource else key.resource_number,
        resource_number=key.resource_number,
        resource_name=resource.name if resource else key.resource_number,
        project_id=project.id if project else key.project_number,
        project_number=key.project_number,
        project_name=project.name if project else key.project_number,
        task_id=task_number,
        task_number=task_number,
        task_name=(
            task_name_index.get(TaskKey(key.project_number, key.task_number), key.task_number)
            if task_number
            else None
        ),
        start_date=min(per_day),
        end_date=max(per_day),
        daily_hours=tuple(sorted(per_day.items())),
        color=palette.color_for(key.project_number),
        line_type=LineType.combine([LineType.parse(l.get("lineType")) for l in run]),
        remote_line_id=str(single["id"]) if single else None,
        remote_line_no=int(single["lineNo"]) if single and single.get("lineNo") is not None else None,
        concurrency_token=(concurrency_token(single) or None) if single else None,
    )
