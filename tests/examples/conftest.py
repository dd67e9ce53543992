from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any

import pytest

from examples.planning_agent.backend.errors import ConcurrencyConflictError


class FakeGateway:
    """In-memory ledger that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.resources: list[dict[str, Any]] = []
        self.projects: list[dict[str, Any]] = []
        self.tasks: dict[str, list[dict[str, Any]]] = {}
        self.lines: list[dict[str, Any]] = []
        self.timesheets: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: Counter[str] = Counter()
        self.log: list[tuple[str, Any]] = []
        self.delay = 0.0
        self.active = 0
        self.peak = 0
        self._rules: list[dict[str, Any]] = []
        self._next_id = 1
        self._next_etag = 1

    # --- setup helpers ---

    def add_resource(self, number: str, name: str, **extra: Any) -> dict[str, Any]:
        raw = {"id": f"res-{number}", "number": number, "displayName": name, "type": "Person", **extra}
        self.resources.append(raw)
        return raw

    def add_project(self, number: str, name: str, customer: str = "", tasks: dict[str, str] | None = None):
        raw = {"id": f"job-{number}", "number": number, "displayName": name, "billToCustomerName": customer}
        self.projects.append(raw)
        self.tasks[number] = [
            {"jobNo": number, "jobTaskNo": task_no, "description": desc}
            for task_no, desc in (tasks or {}).items()
        ]
        return raw

    def add_line(
        self,
        resource: str,
        project: str,
        task: str,
        day: str,
        hours: float,
        *,
        line_no: int | None = None,
        line_id: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        line = {
            "id": line_id or f"line-{self._next_id}",
            "jobNo": project,
            "jobTaskNo": task,
            "lineNo": line_no if line_no is not None else self._next_id * 10000,
            "type": "Resource",
            "number": resource,
            "planningDate": day,
            "quantity": hours,
            "@odata.etag": self._etag(),
            **extra,
        }
        self._next_id += 1
        self.lines.append(line)
        return line

    def add_timesheet(self, resource: str, week_start: str, **flags: Any) -> dict[str, Any]:
        sheet = {
            "id": f"ts-{resource}-{week_start}",
            "number": f"TS-{resource}",
            "resourceNo": resource,
            "startingDate": week_start,
            **flags,
        }
        self.timesheets[(resource, week_start)] = sheet
        return sheet

    def fail(self, method: str, error: BaseException, *, match: Any = None, times: int | None = 1) -> None:
        """Make ``method`` raise ``error``; ``match`` limits it to calls with that key argument."""
        self._rules.append({"method": method, "error": error, "match": match, "times": times})

    def line(self, line_id: str) -> dict[str, Any] | None:
        return next((l for l in self.lines if l["id"] == line_id), None)

    def lines_for(self, resource: str, project: str, task: str) -> list[dict[str, Any]]:
        return [
            l
            for l in self.lines
            if l["number"] == resource and l["jobNo"] == project and l["jobTaskNo"] == task
        ]

    # --- plumbing ---

    def _etag(self) -> str:
        tag = f'W/"{self._next_etag}"'
        self._next_etag += 1
        return tag

    async def _enter(self, method: str, key: Any = None) -> None:
        self.calls[method] += 1
        self.log.append((method, key))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        for rule in self._rules:
            if rule["method"] != method or rule["times"] == 0:
                continue
            if rule["match"] is not None and rule["match"] != key:
                continue
            if rule["times"] is not None:
                rule["times"] -= 1
            raise rule["error"]

    # --- RemoteGateway ---

    async def get_resources(self):
        await self._enter("get_resources")
        return [dict(r) for r in self.resources]

    async def get_projects(self):
        await self._enter("get_projects")
        return [dict(p) for p in self.projects]

    async def get_project_tasks(self, project_number):
        await self._enter("get_project_tasks", project_number)
        return [dict(t) for t in self.tasks.get(project_number, [])]

    async def get_planning_lines(self, project_number):
        await self._enter("get_planning_lines", project_number)
        return [dict(l) for l in self.lines if l["jobNo"] == project_number]

    async def get_planning_lines_for_range(self, project_number, task_number, resource_number, start, end):
        await self._enter("get_planning_lines_for_range", (project_number, task_number, resource_number))
        return [
            dict(l)
            for l in self.lines_for(resource_number, project_number, task_number)
            if start <= l["planningDate"][:10] <= end
        ]

    async def create_planning_line(self, *, project_number, task_number, resource_number, date, hours):
        await self._enter("create_planning_line", date)
        line_no = max((l["lineNo"] for l in self.lines), default=0) + 10000
        return dict(self.add_line(resource_number, project_number, task_number, date, hours, line_no=line_no))

    async def update_planning_line(self, line_id, hours, concurrency_token):
        await self._enter("update_planning_line", line_id)
        line = self._checked(line_id, concurrency_token)
        line["quantity"] = hours
        line["@odata.etag"] = self._etag()
        return dict(line)

    async def delete_planning_line(self, line_id, concurrency_token):
        await self._enter("delete_planning_line", line_id)
        line = self._checked(line_id, concurrency_token)
        self.lines.remove(line)

    async def get_timesheet_summary(self, resource_number, week_start):
        await self._enter("get_timesheet_summary", (resource_number, week_start))
        return self.timesheets.get((resource_number, week_start))

    async def create_timesheet(self, resource_number, week_start):
        await self._enter("create_timesheet", resource_number)
        return self.add_timesheet(resource_number, week_start, openExists=True)

    def _checked(self, line_id: str, token: str) -> dict[str, Any]:
        line = self.line(line_id)
        if line is None:
            raise ConcurrencyConflictError(f"Line {line_id} no longer exists")
        if line["@odata.etag"] != token:
            raise ConcurrencyConflictError(f"Line {line_id} was changed")
        return line


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def office(gateway: FakeGateway) -> FakeGateway:
    """Two people, two projects; Alice planned Mon-Wed on JOB1, Bob on Fri on JOB2."""
    gateway.add_resource("R1", "Alice Smith", timeSheetOwnerUserId="ASMITH")
    gateway.add_resource("R2", "Bob Jones")
    gateway.add_project("JOB1", "Website", "Contoso", tasks={"100": "Design"})
    gateway.add_project("JOB2", "Warehouse", "Fabrikam", tasks={"200": "Install"})
    gateway.add_line("R1", "JOB1", "100", "2025-01-06", 8)
    gateway.add_line("R1", "JOB1", "100", "2025-01-07", 8)
    gateway.add_line("R1", "JOB1", "100", "2025-01-08", 4)
    gateway.add_line("R2", "JOB2", "200", "2025-01-10", 6)
    gateway.add_timesheet("R1", "2025-01-06", submittedExists=True)
    return gateway


@pytest.fixture
def make_gateway():
    return FakeGateway
