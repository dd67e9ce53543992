from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from typing_extensions import TypedDict

from agents import Agent, ModelSettings, RunContextWrapper, function_tool, run_demo_loop

from .backend.config import load_from_env
from .backend.dates import format_week_range, week_key
from .backend.errors import GridValidationError, NotConfiguredError, PlanningError, user_hint
from .backend.gateway import LedgerGateway
from .backend.models import PlanTarget
from .backend.parsers import resolve_week_phrase
from .backend.projector import ProjectView, TeamView, ViewFilters, ViewMode
from .backend.service import PlanningService, WeekEditor
from .backend.utils import format_hours, format_quantity


class DayHours(TypedDict):
    date: str
    hours: float


@dataclass
class PlanningContext:
    """Per-run context holding the planning service and open week grids."""

    service: PlanningService
    editors: dict[str, WeekEditor] = field(default_factory=dict)
    email_domain: str | None = None
    weeks_to_show: int = 1


def _editor_key(target: PlanTarget, week_start: str) -> str:
    return f"{target.resource_number}|{target.project_number}|{target.task_number}|{week_start}"


def _editor_payload(editor: WeekEditor, ceiling: float = 24.0) -> dict[str, Any]:
    return {
        "week": editor.week_start,
        "label": format_week_range(editor.week_start),
        "resource": editor.target.resource_number,
        "project": editor.target.project_number,
        "task": editor.target.task_number,
        "hours": {day: format_quantity(h) for day, h in editor.hours.items()},
        "total": format_hours(editor.total_hours),
        "existing_lines": editor.line_count,
        "other_projects": {day: format_quantity(h) for day, h in editor.other_hours.items() if h},
        "daily_totals": {day: format_quantity(h) for day, h in editor.daily_totals.items()},
        "overbooked_days": editor.overbooked_days(ceiling),
    }


def _week_or_error(week: str) -> str:
    resolved = resolve_week_phrase(
        week,
        timezone=os.environ.get("PLANNER_TZ"),
        base_date=os.environ.get("PLANNER_BASE_DATE"),
    )
    if not resolved:
        raise ValueError(f"Could not understand the week '{week}'.")
    return resolved


async def _load(ctx: PlanningContext, view: ViewMode, week: str, search: str) -> dict[str, Any]:
    first = _week_or_error(week)
    filters = ViewFilters(
        first_week=first,
        weeks_to_show=ctx.weeks_to_show,
        search=search or "",
        email_domain=ctx.email_domain,
    )
    try:
        projection = await ctx.service.load_view(view, filters)
    except NotConfiguredError as exc:
        return {"status": "unavailable", "message": user_hint(exc)}
    except PlanningError as exc:
        return {"status": "error", "message": str(exc), "retry_week": first}
    return {"status": "ok", "week": first, "label": format_week_range(first), "view": projection}


@function_tool
def resolve_week(phrase: str) -> str:
    """Resolve a week phrase (e.g. "next week", "January 8 2025") to its Monday as YYYY-MM-DD.

    Returns an empty string if the phrase is not understood.
    """
    return resolve_week_phrase(
        phrase,
        timezone=os.environ.get("PLANNER_TZ"),
        base_date=os.environ.get("PLANNER_BASE_DATE"),
    )


@function_tool
async def show_team_week(
    ctx: RunContextWrapper[PlanningContext], week: str, search: str | None = None
) -> dict[str, Any]:
    """Show each team member's planned allocations and timesheet status for a week.

    Args:
        week: Week phrase or any date within the week.
        search: Optional filter on resource name or number.
    """
    loaded = await _load(ctx.context, ViewMode.TEAM, week, search or "")
    view = loaded.pop("view", None)
    if isinstance(view, TeamView):
        loaded["members"] = [
            {
                "number": m.number,
                "name": m.name,
                "timesheet": m.timesheet_status,
                "total": format_hours(m.total_hours),
                "allocations": [
                    {
                        "project": a.project_number,
                        "project_name": a.project_name,
                        "task": a.task_number,
                        "task_name": a.task_name,
                        "start": a.start_date,
                        "end": a.end_date,
                        "hours": format_quantity(a.total_hours),
                    }
                    for a in m.allocations
                ],
            }
            for m in view.team_view
        ]
    return loaded


@function_tool
async def show_projects_week(
    ctx: RunContextWrapper[PlanningContext], week: str, search: str | None = None
) -> dict[str, Any]:
    """Show planned hours per project and resource for a week.

    Args:
        week: Week phrase or any date within the week.
        search: Optional filter on project name/number or resource name.
    """
    loaded = await _load(ctx.context, ViewMode.PROJECTS, week, search or "")
    view = loaded.pop("view", None)
    if isinstance(view, ProjectView):
        loaded["projects"] = [
            {
                "number": p.number,
                "name": p.name,
                "customer": p.customer_name,
                "total": format_hours(p.total_hours),
                "resources": [
                    {
                        "number": g.resource_number,
                        "name": g.resource_name,
                        "total": format_hours(g.total_hours),
                    }
                    for g in p.resources
                ],
            }
            for p in view.project_view
        ]
    return loaded


@function_tool
async def open_allocation_week(
    ctx: RunContextWrapper[PlanningContext],
    resource: str,
    project: str,
    task: str,
    week: str,
) -> dict[str, Any]:
    """Load the current hour-per-day grid for a resource/project/task in a week.

    Always call this before changing hours; it fetches the latest ledger data.
    """
    target = PlanTarget(project_number=project, task_number=task, resource_number=resource)
    try:
        editor = await ctx.context.service.open_week(target, _week_or_error(week))
    except PlanningError as exc:
        return {"status": "error", "message": user_hint(exc)}
    ctx.context.editors[_editor_key(target, editor.week_start)] = editor
    return {
        "status": "ok",
        **_editor_payload(editor, ctx.context.service.config.daily_ceiling),
    }


@function_tool
async def save_allocation_week(
    ctx: RunContextWrapper[PlanningContext],
    resource: str,
    project: str,
    task: str,
    week: str,
    hours: list[DayHours],
) -> dict[str, Any]:
    """Set planned hours for days of an opened week grid.

    Args:
        hours: Days to change, each with a YYYY-MM-DD date and hours. Days not listed keep
            their current value; 0 removes the allocation for that day.
    """
    target = PlanTarget(project_number=project, task_number=task, resource_number=resource)
    week_start = week_key(_week_or_error(week))
    editor = ctx.context.editors.get(_editor_key(target, week_start))
    if editor is None or editor.stale:
        return {"status": "error", "message": "Open the week first with open_allocation_week."}
    grid = {**editor.hours, **{entry["date"]: entry["hours"] for entry in hours}}
    try:
        result = await ctx.context.service.save_week(editor, grid)
    except GridValidationError as exc:
        return {"status": "error", "problems": exc.problems}
    except PlanningError as exc:
        return {"status": "error", "message": user_hint(exc)}
    return {
        "status": "ok" if result.ok else "partial",
        "summary": result.summary(),
        "failures": result.explain(),
        "reopen_required": result.has_conflict,
    }


@function_tool
async def clear_allocation_week(
    ctx: RunContextWrapper[PlanningContext],
    resource: str,
    project: str,
    task: str,
    week: str,
) -> dict[str, Any]:
    """Delete every planning line of a resource/project/task in an opened week."""
    target = PlanTarget(project_number=project, task_number=task, resource_number=resource)
    week_start = week_key(_week_or_error(week))
    editor = ctx.context.editors.get(_editor_key(target, week_start))
    if editor is None or editor.stale:
        return {"status": "error", "message": "Open the week first with open_allocation_week."}
    try:
        result = await ctx.context.service.clear_week(editor)
    except PlanningError as exc:
        return {"status": "error", "message": user_hint(exc)}
    return {
        "status": "ok" if result.ok else "partial",
        "summary": result.summary(),
        "failures": result.explain(),
    }


@function_tool
async def create_missing_timesheets(
    ctx: RunContextWrapper[PlanningContext],
    week: str,
    resources: list[str] | None = None,
) -> dict[str, Any]:
    """Create timesheets for a week.

    Args:
        week: Week phrase or date.
        resources: Resource numbers; defaults to everyone without a timesheet that week.
    """
    service = ctx.context.service
    week_start = _week_or_error(week)
    if resources is None:
        try:
            await service.cache.ensure_weeks_loaded([week_start])
        except PlanningError as exc:
            return {"status": "error", "message": user_hint(exc)}
        resources = service.resources_without_timesheet(week_start)
    result = await service.create_timesheets(resources, week_start)
    status = "ok" if result.success and not result.failed else ("partial" if result.success else "error")
    return {
        "status": status,
        "created": result.created,
        "errors": [f"{number}: {user_hint(err)}" for number, err in result.errors.items()],
    }


def build_agent(model_name: str) -> Agent[PlanningContext]:
    instructions = (
        "You are a resource planning assistant for a project lead. "
        "Planning data lives in the company's ledger; you read and change it only through your tools. "
        "Use show_team_week for who is planned on what, and show_projects_week for a project-centric view. "
        "When the user mentions a relative or natural-language week, resolve it with resolve_week; do not guess dates. "
        "To change planned hours, first call open_allocation_week for the resource, project and task, "
        "show the current grid along with hours already planned on other projects, "
        "then call save_allocation_week with only the days that change. "
        "Never plan more than 24 hours on a day. "
        "Report the save summary (created, updated, deleted, failed) and explain each failure. "
        "If a save reports reopen_required, someone else changed the week: open it again and confirm with the user before retrying. "
        "Ledger validation errors must be fixed in the ledger; relay the hint and do not retry. "
        "Be concise and ask one question at a time."
    )

    return Agent[PlanningContext](
        name="Planning Agent",
        instructions=instructions,
        tools=[
            resolve_week,
            show_team_week,
            show_projects_week,
            open_allocation_week,
            save_allocation_week,
            clear_allocation_week,
            create_missing_timesheets,
        ],
        model=model_name,
        model_settings=ModelSettings(),
    )


async def main() -> None:
    logging.basicConfig(
        level=os.environ.get("PLANNER_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_from_env(
        default_path=os.path.join(os.path.dirname(__file__), "planner.example.json")
    )
    model = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")

    if not os.environ.get("OPENAI_API_KEY"):
        print("Warning: OPENAI_API_KEY is not set. Set it in your shell or a .env file.")
    if not config.company_id:
        print("Warning: PLANNER_COMPANY_ID is not set; ledger requests will fail.")

    async with LedgerGateway(config) as gateway:
        context = PlanningContext(
            service=PlanningService(gateway, config),
            email_domain=config.email_domain,
            weeks_to_show=config.weeks_to_show,
        )
        agent = build_agent(model)
        print("Planning Agent ready. Ask about a week or change planned hours. Ctrl+C to exit.")
        await run_demo_loop(agent, stream=True, context=context)


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
