"""Planning workflow: compute plan, execute plan, invalidate cache, re-project.

Cached blocks are never edited in place. After a confirmed write the
affected week is dropped from the cache and loaded again.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .builder import ColorPalette
from .cache import WeekCache
from .config import PlannerConfig
from .dates import week_days, week_end, week_key
from .errors import GridValidationError, PlanningError
from .executor import BatchExecutor
from .forms import from_dict as grid_from_dict, validate as validate_grid
from .gateway import RemoteGateway
from .models import (
    BatchResult,
    ExistingDayRecords,
    PlanTarget,
    ReconciliationPlan,
)
from .projector import Projection, ViewFilters, ViewMode, project
from .reconcile import current_hours, existing_from_lines, reconcile
from .utils import sum_hours

logger = logging.getLogger(__name__)


@dataclass
class WeekEditor:
    """State of one open week grid for a resource/project/task."""

    target: PlanTarget
    week_start: str
    existing: ExistingDayRecords
    hours: dict[str, float]
    # Hours the resource has planned on other projects or tasks, per day.
    other_hours: dict[str, float] = field(default_factory=dict)
    stale: bool = False

    @property
    def days(self) -> list[str]:
        return week_days(self.week_start)

    @property
    def total_hours(self) -> float:
        return sum(self.hours.values())

    @property
    def line_count(self) -> int:
        return sum(len(records) for records in self.existing.values())

    @property
    def daily_totals(self) -> dict[str, float]:
        return {day: sum_hours([h, self.other_hours.get(day, 0.0)]) for day, h in self.hours.items()}

    def overbooked_days(self, ceiling: float) -> list[str]:
        return [day for day, total in self.daily_totals.items() if total > ceiling]


@dataclass
class TimesheetBatchResult:
    created: list[str] = field(default_factory=list)
    errors: dict[str, BaseException] = field(default_factory=dict)

    @property
    def success(self) -> int:
        return len(self.created)

    @property
    def failed(self) -> int:
        return len(self.errors)


class PlanningService:
    def __init__(self, gateway: RemoteGateway, config: PlannerConfig | None = None) -> None:
        self.config = config or PlannerConfig()
        self.cache = WeekCache(
            gateway,
            fan_out=self.config.fan_out,
            palette=ColorPalette(self.config.palette_size),
        )
        self.executor = BatchExecutor(gateway, fan_out=self.config.fan_out)

    @property
    def gateway(self) -> RemoteGateway:
        return self.cache.gateway

    def switch_company(self, gateway: RemoteGateway) -> None:
        self.cache.invalidate_all(gateway)
        self.executor.gateway = gateway

    async def load_view(self, view_mode: ViewMode | str, filters: ViewFilters) -> Projection:
        await self.cache.ensure_weeks_loaded(filters.weeks)
        return project(self.cache, view_mode, filters)

    async def open_week(self, target: PlanTarget, week_start: str) -> WeekEditor:
        """Fetch the tuple's current planning lines for the week and build its grid."""
        key = week_key(week_start)
        lines = await self.gateway.get_planning_lines_for_range(
            target.project_number,
            target.task_number,
            target.resource_number,
            key,
            week_end(key).isoformat(),
        )
        existing = existing_from_lines(lines)
        hours = {day: 0.0 for day in week_days(key)}
        hours.update(current_hours(existing, self.config.hours_precision))
        return WeekEditor(
            target=target,
            week_start=key,
            existing=existing,
            hours=hours,
            other_hours=await self._other_hours(target, key),
        )

    async def _other_hours(self, target: PlanTarget, week_start: str) -> dict[str, float]:
        """Per-day hours the resource is planned for outside the target project/task."""
        try:
            await self.cache.ensure_weeks_loaded([week_start])
        except PlanningError as exc:
            logger.warning("Workload for week %s unavailable: %s", week_start, exc)
            return {}
        entry = self.cache.get_week(week_start)
        if entry is None:
            return {}
        others = [
            b
            for b in entry.blocks
            if b.resource_number == target.resource_number
            and not (
                b.project_number == target.project_number
                and (b.task_number or "") == target.task_number
            )
        ]
        return {
            day: sum_hours((b.hours_on(day) for b in others), self.config.hours_precision)
            for day in week_days(week_start)
        }

    def plan_week(self, editor: WeekEditor, grid: Mapping[str, Any]) -> ReconciliationPlan:
        """Validate an edited grid and return the plan that would apply it.

        Raises ``GridValidationError`` when the grid has problems.
        """
        desired, problems = grid_from_dict(grid, editor.week_start)
        problems += validate_grid(desired, editor.week_start, self.config.daily_ceiling)
        if problems:
            raise GridValidationError(problems)
        return reconcile(desired, editor.existing, self.config.hours_precision)

    async def save_week(self, editor: WeekEditor, grid: Mapping[str, Any]) -> BatchResult:
        if editor.stale:
            raise PlanningError("This week changed since it was opened; re-open it first.")
        plan = self.plan_week(editor, grid)
        if plan.is_empty:
            logger.info("No changes for %s in week %s", editor.target, editor.week_start)
            return BatchResult()
        return await self._apply(editor, plan)

    async def clear_week(self, editor: WeekEditor) -> BatchResult:
        """Delete every planning line of the tuple in the week."""
        if editor.stale:
            raise PlanningError("This week changed since it was opened; re-open it first.")
        plan = reconcile({}, editor.existing, self.config.hours_precision)
        if plan.is_empty:
            return BatchResult()
        return await self._apply(editor, plan)

    async def _apply(self, editor: WeekEditor, plan: ReconciliationPlan) -> BatchResult:
        result = await self.executor.execute(plan, editor.target)
        # The ledger changed (fully or partly), so the editor's tokens are spent.
        editor.stale = True
        if result.has_conflict:
            logger.warning(
                "Concurrency conflict saving week %s for %s; reload required",
                editor.week_start,
                editor.target,
            )
        self.cache.invalidate_week(editor.week_start)
        try:
            await self.cache.ensure_weeks_loaded([editor.week_start])
        except PlanningError as exc:
            # The write already happened; the view shows a retry for this week.
            logger.warning("Reloading week %s after save failed: %s", editor.week_start, exc)
        return result

    async def create_timesheets(
        self, resource_numbers: Iterable[str], week_start: str
    ) -> TimesheetBatchResult:
        """Create the week's timesheet for each resource; failures are collected per resource."""
        key = week_key(week_start)
        numbers = list(dict.fromkeys(resource_numbers))
        result = TimesheetBatchResult()
        if not numbers:
            return result
        semaphore = asyncio.Semaphore(self.config.fan_out)

        async def create_one(number: str) -> BaseException | None:
            async with semaphore:
                try:
                    await self.gateway.create_timesheet(number, key)
                except Exception as exc:
                    return exc
            return None

        outcomes = await asyncio.gather(*(create_one(n) for n in numbers))
        for number, error in zip(numbers, outcomes):
            if error is None:
                result.created.append(number)
            else:
                logger.warning("Creating timesheet for %s failed: %s", number, error)
                result.errors[number] = error
        if result.created:
            self.cache.invalidate_week(key)
        return result

    def resources_without_timesheet(self, week_start: str) -> list[str]:
        entry = self.cache.get_week(week_start)
        if entry is None:
            return []
        return [r.number for r in self.cache.resources if entry.timesheet_for(r.number) is None]
