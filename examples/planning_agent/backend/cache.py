"""Week-partitioned cache of allocation blocks and timesheet summaries.

A week is either fully loaded or absent. Entries are immutable and replaced
wholesale; the only mutations are ``ensure_weeks_loaded``,
``invalidate_week`` and ``invalidate_all``.

Concurrent requests for the same week share one in-flight task. Every load
records the generation of its week when it starts; if the week (or the whole
cache) was invalidated meanwhile, the result is dropped instead of published.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, TypeVar

from .builder import (
    ColorPalette,
    TaskKey,
    build_blocks,
    index_projects,
    index_resources,
    index_task_names,
    planning_date,
    project_from_raw,
    resource_from_raw,
    timesheet_from_raw,
)
from .dates import week_end, week_key
from .errors import NotConfiguredError, WeekLoadError
from .gateway import RemoteGateway
from .models import AllocationBlock, Project, Resource, TimesheetSummary

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Directory:
    """Resources, projects and task names, looked up once per context."""

    resources: tuple[Resource, ...] = ()
    projects: tuple[Project, ...] = ()
    task_names: Mapping[TaskKey, str] = field(default_factory=dict)

    @property
    def resource_index(self) -> dict[str, Resource]:
        return index_resources(self.resources)

    @property
    def project_index(self) -> dict[str, Project]:
        return index_projects(self.projects)


@dataclass(frozen=True)
class WeekEntry:
    week_start: str
    blocks: tuple[AllocationBlock, ...]
    timesheets: Mapping[str, TimesheetSummary]

    def timesheet_for(self, resource_number: str) -> TimesheetSummary | None:
        return self.timesheets.get(resource_number)


class WeekCache:
    def __init__(
        self,
        gateway: RemoteGateway,
        *,
        fan_out: int = 5,
        palette: ColorPalette | None = None,
    ) -> None:
        self.gateway = gateway
        self.fan_out = fan_out
        self.palette = palette if palette is not None else ColorPalette()
        self._semaphore = asyncio.Semaphore(fan_out)
        self._entries: dict[str, WeekEntry] = {}
        self._inflight: dict[str, asyncio.Task[WeekEntry | None]] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._directory: Directory | None = None
        self._directory_task: asyncio.Task[Directory] | None = None

    # --- read side ---

    @property
    def directory(self) -> Directory:
        return self._directory or Directory()

    @property
    def resources(self) -> tuple[Resource, ...]:
        return self.directory.resources

    @property
    def projects(self) -> tuple[Project, ...]:
        return self.directory.projects

    @property
    def loaded_weeks(self) -> list[str]:
        return sorted(self._entries)

    def get_week(self, week_start: str) -> WeekEntry | None:
        return self._entries.get(week_key(week_start))

    def is_loaded(self, week_start: str) -> bool:
        return week_key(week_start) in self._entries

    # --- lifecycle ---

    async def init(self) -> Directory:
        """Load the resource/project directory once; concurrent callers share the fetch."""
        if self._directory is not None:
            return self._directory
        if self._directory_task is None:
            task = asyncio.create_task(self._load_directory(self._epoch))
            task.add_done_callback(self._directory_done)
            self._directory_task = task
        return await asyncio.shield(self._directory_task)

    def invalidate_week(self, week_start: str) -> None:
        key = week_key(week_start)
        self._entries.pop(key, None)
        self._inflight.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1
        logger.debug("Invalidated week %s", key)

    def invalidate_all(self, gateway: RemoteGateway | None = None) -> None:
        """Drop every week and the directory, e.g. when the active company changes."""
        if gateway is not None:
            self.gateway = gateway
        self._entries.clear()
        self._inflight.clear()
        self._generations.clear()
        self._directory = None
        self._directory_task = None
        self._epoch += 1
        logger.info("Planning cache cleared")

    # --- fill ---

    async def ensure_weeks_loaded(self, week_starts: Iterable[str]) -> None:
        """Load every requested week that is not cached yet.

        Raises ``NotConfiguredError`` when the planning extension is missing
        and ``WeekLoadError`` when other fetches failed; weeks that loaded
        successfully stay cached either way.
        """
        keys = list(dict.fromkeys(week_key(w) for w in week_starts))
        waiting: dict[str, asyncio.Task[WeekEntry | None]] = {}
        for key in keys:
            if key in self._entries:
                continue
            task = self._inflight.get(key)
            if task is None:
                task = self._start_load(key)
            waiting[key] = task
        if not waiting:
            return

        logger.info("Loading planning weeks: %s", ", ".join(waiting))
        results = await asyncio.gather(
            *(asyncio.shield(t) for t in waiting.values()), return_exceptions=True
        )
        failures = {
            key: result
            for key, result in zip(waiting, results)
            if isinstance(result, BaseException)
        }
        for error in failures.values():
            if isinstance(error, asyncio.CancelledError):
                raise error
        if failures:
            first = next(iter(failures.values()))
            for error in failures.values():
                if isinstance(error, NotConfiguredError):
                    raise error
            raise WeekLoadError(failures) from first

        # Weeks invalidated while loading were dropped; load them again.
        retry = [key for key in waiting if key not in self._entries]
        if retry:
            await self.ensure_weeks_loaded(retry)

    def _start_load(self, key: str) -> asyncio.Task[WeekEntry | None]:
        token = (self._epoch, self._generations.get(key, 0))
        task = asyncio.create_task(self._load_week(key, token))
        self._inflight[key] = task

        def _forget(done: asyncio.Task[WeekEntry | None]) -> None:
            if self._inflight.get(key) is done:
                del self._inflight[key]

        task.add_done_callback(_forget)
        return task

    def _is_current(self, key: str, token: tuple[int, int]) -> bool:
        return token == (self._epoch, self._generations.get(key, 0))

    async def _limited(self, fn: Callable[..., Awaitable[T]], *args: Any) -> T:
        async with self._semaphore:
            return await fn(*args)

    async def _load_week(self, key: str, token: tuple[int, int]) -> WeekEntry | None:
        directory = await self.init()
        end = week_end(key).isoformat()

        line_fetches = asyncio.gather(
            *(self._limited(self.gateway.get_planning_lines, p.number) for p in directory.projects),
            return_exceptions=True,
        )
        sheet_fetches = asyncio.gather(
            *(
                self._limited(self.gateway.get_timesheet_summary, r.number, key)
                for r in directory.resources
            ),
            return_exceptions=True,
        )
        line_results, sheet_results = await asyncio.gather(line_fetches, sheet_fetches)
        for result in (*line_results, *sheet_results):
            if isinstance(result, BaseException):
                logger.warning("Loading week %s failed: %s", key, result)
                raise result

        week_lines = [
            line
            for lines in line_results
            for line in lines
            if key <= planning_date(line) <= end
        ]
        blocks = build_blocks(
            week_lines,
            directory.project_index,
            directory.resource_index,
            directory.task_names,
            self.palette,
        )
        timesheets = {
            resource.number: timesheet_from_raw(raw)
            for resource, raw in zip(directory.resources, sheet_results)
            if raw is not None
        }
        entry = WeekEntry(
            week_start=key,
            blocks=tuple(blocks),
            timesheets=MappingProxyType(timesheets),
        )
        if not self._is_current(key, token):
            logger.debug("Discarding stale load of week %s", key)
            return None
        self._entries[key] = entry
        logger.info("Week %s loaded: %d blocks, %d timesheets", key, len(blocks), len(timesheets))
        return entry

    async def _load_directory(self, epoch: int) -> Directory:
        raw_resources, raw_projects = await asyncio.gather(
            self._limited(self.gateway.get_resources),
            self._limited(self.gateway.get_projects),
        )
        resources = tuple(resource_from_raw(r) for r in raw_resources)
        projects = tuple(project_from_raw(p) for p in raw_projects)
        self.palette.assign(p.number for p in projects)

        task_results = await asyncio.gather(
            *(self._limited(self.gateway.get_project_tasks, p.number) for p in projects),
            return_exceptions=True,
        )
        tasks = []
        for project, result in zip(projects, task_results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                # Task names are cosmetic; blocks fall back to the task number.
                logger.warning("Could not load tasks for project %s: %s", project.number, result)
                continue
            tasks.extend(result)

        directory = Directory(
            resources=resources,
            projects=projects,
            task_names=MappingProxyType(index_task_names(tasks)),
        )
        if epoch == self._epoch:
            self._directory = directory
        return directory

    def _directory_done(self, task: asyncio.Task[Directory]) -> None:
        if self._directory_task is not task:
            return
        if task.cancelled() or task.exception() is not None:
            self._directory_task = None
