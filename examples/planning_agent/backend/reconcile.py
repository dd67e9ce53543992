"""Diff of desired daily hours against the remote planning lines of one week.

Pure and synchronous: no I/O, no clamping. Callers validate the grid
(``forms.validate``) before calling ``reconcile``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from itertools import count

from .builder import planning_date
from .gateway import RawLine, concurrency_token
from .models import (
    CreateOp,
    DeleteOp,
    DesiredDayMap,
    ExistingDayRecords,
    ExistingRecord,
    ReconciliationPlan,
    UpdateOp,
)
from .utils import DEFAULT_PRECISION, round_hours


def _record_order(record: ExistingRecord) -> tuple[int, int, str]:
    # Lowest line number is the line of record; lines without a number go last.
    if record.line_no is None:
        return (1, 0, record.remote_line_id)
    return (0, record.line_no, record.remote_line_id)


def order_records(records: Iterable[ExistingRecord]) -> list[ExistingRecord]:
    return sorted(records, key=_record_order)


def existing_from_lines(lines: Iterable[RawLine]) -> ExistingDayRecords:
    """Index remote lines by day, each day ordered by ascending line number."""
    by_day: ExistingDayRecords = {}
    for line in lines:
        if (line.get("type") or "Resource") != "Resource":
            continue
        record = ExistingRecord(
            remote_line_id=str(line["id"]),
            concurrency_token=concurrency_token(line),
            quantity=float(line.get("quantity") or 0),
            line_no=int(line["lineNo"]) if line.get("lineNo") is not None else None,
        )
        by_day.setdefault(planning_date(line), []).append(record)
    return {day: order_records(records) for day, records in sorted(by_day.items())}


def current_hours(existing: ExistingDayRecords, precision: int = DEFAULT_PRECISION) -> DesiredDayMap:
    """Per-day totals of the existing records, the grid a user starts editing from."""
    return {
        day: round_hours(sum(r.quantity for r in records), precision)
        for day, records in existing.items()
        if records
    }


def reconcile(
    desired: Mapping[str, float],
    existing: ExistingDayRecords,
    precision: int = DEFAULT_PRECISION,
) -> ReconciliationPlan:
    """Compute the creates, updates and deletes that turn ``existing`` into ``desired``.

    Per day, the first existing record (lowest line number) is kept as the
    line of record and updated when its quantity differs from the wanted
    hours; every other record on that day is deleted, even when the day total
    is already right. A day with zero wanted hours loses all its records.
    """
    plan = ReconciliationPlan()
    for day in sorted(set(desired) | set(existing)):
        want = round_hours(desired.get(day, 0.0), precision)
        have = order_records(existing.get(day, []))

        if want > 0 and not have:
            plan.to_create.append(CreateOp(date=day, hours=want))
        elif want > 0:
            first, *extras = have
            # Extras are deleted, so the kept line alone must carry the hours.
            if round_hours(first.quantity, precision) != want:
                plan.to_update.append(
                    UpdateOp(
                        remote_line_id=first.remote_line_id,
                        concurrency_token=first.concurrency_token,
                        hours=want,
                    )
                )
            plan.to_delete.extend(
                DeleteOp(remote_line_id=r.remote_line_id, concurrency_token=r.concurrency_token)
                for r in extras
            )
        else:
            plan.to_delete.extend(
                DeleteOp(remote_line_id=r.remote_line_id, concurrency_token=r.concurrency_token)
                for r in have
            )
    return plan


def apply_plan(
    existing: ExistingDayRecords,
    plan: ReconciliationPlan,
    *,
    new_ids: Iterable[str] | None = None,
) -> ExistingDayRecords:
    """Return the record state after every operation of ``plan`` succeeded.

    Does not touch ``existing``. Created records get ids from ``new_ids``
    (default ``new-1``, ``new-2``...) and line numbers after the highest seen.
    """
    deleted = {op.remote_line_id for op in plan.to_delete}
    updates = {op.remote_line_id: op.hours for op in plan.to_update}
    ids = iter(new_ids) if new_ids is not None else (f"new-{i}" for i in count(1))
    next_no = max(
        (r.line_no or 0 for records in existing.values() for r in records), default=0
    )

    result: ExistingDayRecords = {}
    for day, records in existing.items():
        kept = [
            ExistingRecord(
                remote_line_id=r.remote_line_id,
                concurrency_token=r.concurrency_token,
                quantity=updates.get(r.remote_line_id, r.quantity),
                line_no=r.line_no,
            )
            for r in records
            if r.remote_line_id not in deleted
        ]
        if kept:
            result[day] = kept
    for op in plan.to_create:
        next_no += 10000
        result.setdefault(op.date, []).append(
            ExistingRecord(
                remote_line_id=next(ids),
                concurrency_token="",
                quantity=op.hours,
                line_no=next_no,
            )
        )
    return {day: order_records(records) for day, records in sorted(result.items())}
