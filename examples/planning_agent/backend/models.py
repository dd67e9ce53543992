"""Domain types for planning allocations, reconciliation plans and batches.

Remote payloads are plain dictionaries (see ``gateway``); everything in this
module is the normalized, UI-agnostic form the core works with.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .errors import ConcurrencyConflictError, user_hint


class LineType(str, Enum):
    BUDGET = "Budget"
    BILLABLE = "Billable"
    BOTH = "Both Budget and Billable"

    @classmethod
    def parse(cls, value: str | None) -> LineType:
        """Map a remote line type string onto the enum (unknown values → Budget)."""
        v = (value or "").strip().lower()
        if v.startswith("both"):
            return cls.BOTH
        if v == "billable":
            return cls.BILLABLE
        return cls.BUDGET

    @classmethod
    def combine(cls, types: list[LineType]) -> LineType:
        distinct = set(types)
        if len(distinct) == 1:
            return distinct.pop()
        return cls.BOTH


@dataclass(frozen=True)
class Resource:
    id: str
    number: str
    name: str
    email: str | None = None
    owner_user_id: str | None = None


@dataclass(frozen=True)
class Project:
    id: str
    number: str
    name: str
    customer_name: str = ""


@dataclass(frozen=True)
class AllocationBlock:
    """One contiguous run of planned work for a resource/project/task."""

    id: str
    resource_id: str
    resource_number: str
    resource_name: str
    project_id: str
    project_number: str
    project_name: str
    start_date: str
    end_date: str
    daily_hours: tuple[tuple[str, float], ...]
    color: str
    line_type: LineType = LineType.BUDGET
    task_id: str | None = None
    task_number: str | None = None
    task_name: str | None = None
    remote_line_id: str | None = None
    remote_line_no: int | None = None
    concurrency_token: str | None = None

    def __post_init__(self) -> None:
        if not self.daily_hours:
            raise ValueError(f"Allocation block {self.id} has no days")

    @property
    def total_hours(self) -> float:
        return sum(hours for _, hours in self.daily_hours)

    @property
    def hours_per_day(self) -> float:
        return self.total_hours / len(self.daily_hours)

    def hours_on(self, day: str) -> float:
        return sum(hours for d, hours in self.daily_hours if d == day)


@dataclass(frozen=True)
class TimesheetSummary:
    """Per-resource timesheet state for one week."""

    id: str
    number: str
    resource_number: str
    starting_date: str
    ending_date: str
    open_exists: bool = False
    submitted_exists: bool = False
    rejected_exists: bool = False
    approved_exists: bool = False
    total_hours: float = 0.0

    @property
    def display_status(self) -> str:
        """Collapse the line-level status flags into one display status."""
        if (
            self.approved_exists
            and not self.open_exists
            and not self.submitted_exists
            and not self.rejected_exists
        ):
            return "Approved"
        if self.rejected_exists:
            return "Rejected"
        if self.submitted_exists and not self.open_exists:
            return "Submitted"
        if self.submitted_exists and self.open_exists:
            return "Partially Submitted"
        if self.approved_exists and (self.open_exists or self.submitted_exists):
            return "Mixed"
        return "Open"


NO_TIMESHEET = "No Timesheet"


@dataclass(frozen=True)
class ExistingRecord:
    """A remote planning line as seen by the reconciliation engine."""

    remote_line_id: str
    concurrency_token: str
    quantity: float
    line_no: int | None = None


DesiredDayMap = dict[str, float]
ExistingDayRecords = dict[str, list[ExistingRecord]]


@dataclass(frozen=True)
class CreateOp:
    date: str
    hours: float


@dataclass(frozen=True)
class UpdateOp:
    remote_line_id: str
    concurrency_token: str
    hours: float


@dataclass(frozen=True)
class DeleteOp:
    remote_line_id: str
    concurrency_token: str


Operation = Union[CreateOp, UpdateOp, DeleteOp]


@dataclass
class ReconciliationPlan:
    to_create: list[CreateOp] = field(default_factory=list)
    to_update: list[UpdateOp] = field(default_factory=list)
    to_delete: list[DeleteOp] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create or self.to_update or self.to_delete)

    def __len__(self) -> int:
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)


@dataclass(frozen=True)
class PlanTarget:
    """The (resource, project, task) tuple a week's grid is edited for."""

    project_number: str
    task_number: str
    resource_number: str


@dataclass(frozen=True)
class BatchFailure:
    operation: Operation
    error: BaseException

    def explain(self) -> str:
        return f"{describe_operation(self.operation)}: {user_hint(self.error)}"


@dataclass
class BatchResult:
    created_count: int = 0
    updated_count: int = 0
    deleted_count: int = 0
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def has_conflict(self) -> bool:
        return any(isinstance(f.error, ConcurrencyConflictError) for f in self.failures)

    def summary(self) -> str:
        return (
            f"{self.created_count} created, {self.updated_count} updated, "
            f"{self.deleted_count} deleted, {self.failed_count} failed"
        )

    def explain(self) -> list[str]:
        return [f.explain() for f in self.failures]


def describe_operation(op: Operation) -> str:
    if isinstance(op, CreateOp):
        return f"create {op.date} ({op.hours:g}h)"
    if isinstance(op, UpdateOp):
        return f"update line {op.remote_line_id} ({op.hours:g}h)"
    return f"delete line {op.remote_line_id}"
