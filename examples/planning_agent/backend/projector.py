"""Team and project projections of the week cache.

``project`` is a pure function of the cache contents and the view state; it
is recomputed in full on every change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Union

from .cache import WeekCache
from .dates import week_starts
from .models import NO_TIMESHEET, AllocationBlock, TimesheetSummary


class ViewMode(str, Enum):
    TEAM = "team"
    PROJECTS = "projects"


class ResourceKey(NamedTuple):
    resource_number: str


class ProjectKey(NamedTuple):
    project_number: str


@dataclass(frozen=True)
class ViewFilters:
    first_week: str
    weeks_to_show: int = 1
    search: str = ""
    email_domain: str | None = None

    @property
    def weeks(self) -> list[str]:
        return week_starts(self.first_week, self.weeks_to_show)


@dataclass
class TeamMember:
    id: str
    number: str
    name: str
    allocations: list[AllocationBlock] = field(default_factory=list)
    timesheet: TimesheetSummary | None = None
    user_principal_name: str | None = None

    @property
    def total_hours(self) -> float:
        return sum(a.total_hours for a in self.allocations)

    @property
    def timesheet_status(self) -> str:
        return self.timesheet.display_status if self.timesheet else NO_TIMESHEET


@dataclass
class ResourceGroup:
    resource_number: str
    resource_name: str
    allocations: list[AllocationBlock] = field(default_factory=list)

    @property
    def total_hours(self) -> float:
        return sum(a.total_hours for a in self.allocations)


@dataclass
class ProjectGroup:
    id: str
    number: str
    name: str
    customer_name: str
    color: str
    resources: list[ResourceGroup] = field(default_factory=list)

    @property
    def allocations(self) -> list[AllocationBlock]:
        return [a for group in self.resources for a in group.allocations]

    @property
    def total_hours(self) -> float:
        return sum(group.total_hours for group in self.resources)


@dataclass(frozen=True)
class TeamView:
    team_view: list[TeamMember]


@dataclass(frozen=True)
class ProjectView:
    project_view: list[ProjectGroup]


Projection = Union[TeamView, ProjectView]


def visible_blocks(cache: WeekCache, filters: ViewFilters) -> list[AllocationBlock]:
    """Blocks of every loaded week in the visible range, in week order."""
    blocks: list[AllocationBlock] = []
    for week in filters.weeks:
        entry = cache.get_week(week)
        if entry is not None:
            blocks.extend(entry.blocks)
    return blocks


def project(cache: WeekCache, view_mode: ViewMode | str, filters: ViewFilters) -> Projection:
    blocks = visible_blocks(cache, filters)
    if ViewMode(view_mode) is ViewMode.TEAM:
        return TeamView(team_view=_team_view(cache, blocks, filters))
    return ProjectView(project_view=_project_view(cache, blocks, filters))


def _matches(query: str, *values: str | None) -> bool:
    return any(query in (v or "").lower() for v in values)


def _team_view(
    cache: WeekCache, blocks: list[AllocationBlock], filters: ViewFilters
) -> list[TeamMember]:
    by_resource: dict[ResourceKey, list[AllocationBlock]] = {}
    for block in blocks:
        by_resource.setdefault(ResourceKey(block.resource_number), []).append(block)

    first = cache.get_week(filters.first_week)
    query = filters.search.strip().lower()
    members: list[TeamMember] = []
    # Remote resource order is kept as-is.
    for resource in cache.resources:
        if query and not _matches(query, resource.name, resource.number):
            continue
        upn = None
        if resource.owner_user_id and filters.email_domain:
            upn = f"{resource.owner_user_id.lower()}@{filters.email_domain}"
        members.append(
            TeamMember(
                id=resource.id,
                number=resource.number,
                name=resource.name,
                allocations=by_resource.get(ResourceKey(resource.number), []),
                timesheet=first.timesheet_for(resource.number) if first else None,
                user_principal_name=upn,
            )
        )
    return members


def _project_view(
    cache: WeekCache, blocks: list[AllocationBlock], filters: ViewFilters
) -> list[ProjectGroup]:
    by_project: dict[ProjectKey, dict[ResourceKey, ResourceGroup]] = {}
    for block in blocks:
        groups = by_project.setdefault(ProjectKey(block.project_number), {})
        group = groups.get(ResourceKey(block.resource_number))
        if group is None:
            group = ResourceGroup(block.resource_number, block.resource_name)
            groups[ResourceKey(block.resource_number)] = group
        group.allocations.append(block)

    query = filters.search.strip().lower()
    position = {r.number: i for i, r in enumerate(cache.resources)}
    projects: list[ProjectGroup] = []
    for p in cache.projects:
        groups = by_project.get(ProjectKey(p.number), {})
        resource_names = [g.resource_name for g in groups.values()]
        if query and not _matches(query, p.name, p.number, *resource_names):
            continue
        for group in groups.values():
            group.allocations.sort(key=lambda a: a.start_date)
        projects.append(
            ProjectGroup(
                id=p.id,
                number=p.number,
                name=p.name,
                customer_name=p.customer_name,
                color=cache.palette.color_for(p.number),
                resources=sorted(
                    groups.values(),
                    key=lambda g: position.get(g.resource_number, len(position)),
                ),
            )
        )
    return projects
