"""Execution of reconciliation plans against the ledger.

Phases run strictly in order (deletes, updates, creates) so a duplicate line
is gone before its replacement is written. Within a phase, operations run
concurrently under a fan-out limit. A failing item never stops the batch:
every outcome is recorded and the caller gets one aggregate ``BatchResult``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .errors import ConcurrencyConflictError, TransientError
from .gateway import RemoteGateway
from .models import (
    BatchFailure,
    BatchResult,
    CreateOp,
    DeleteOp,
    Operation,
    PlanTarget,
    ReconciliationPlan,
    UpdateOp,
)

logger = logging.getLogger(__name__)

DEFAULT_FAN_OUT = 5


class BatchExecutor:
    def __init__(
        self,
        gateway: RemoteGateway,
        *,
        fan_out: int = DEFAULT_FAN_OUT,
        retry_wait: float = 0.5,
    ) -> None:
        self.gateway = gateway
        self.fan_out = fan_out
        self.retry_wait = retry_wait

    async def execute(self, plan: ReconciliationPlan, target: PlanTarget) -> BatchResult:
        result = BatchResult()
        semaphore = asyncio.Semaphore(self.fan_out)

        deleted = await self._run_phase("delete", plan.to_delete, self._delete, semaphore, result)
        result.deleted_count = deleted
        updated = await self._run_phase("update", plan.to_update, self._update, semaphore, result)
        result.updated_count = updated
        created = await self._run_phase(
            "create",
            plan.to_create,
            lambda op: self._create(op, target),
            semaphore,
            result,
        )
        result.created_count = created

        logger.info(
            "Planning batch for %s/%s/%s: %s",
            target.resource_number,
            target.project_number,
            target.task_number,
            result.summary(),
        )
        return result

    async def _run_phase(
        self,
        name: str,
        operations: Sequence[Operation],
        action: Callable[[Operation], Awaitable[object]],
        semaphore: asyncio.Semaphore,
        result: BatchResult,
    ) -> int:
        if not operations:
            return 0

        async def run_one(op: Operation) -> BaseException | None:
            async with semaphore:
                try:
                    await self._with_retry(action, op)
                except Exception as exc:
                    return exc
            return None

        outcomes = await asyncio.gather(*(run_one(op) for op in operations))
        succeeded = 0
        for op, error in zip(operations, outcomes):
            if error is None:
                succeeded += 1
                continue
            if isinstance(error, ConcurrencyConflictError):
                logger.warning("Concurrency conflict on %s phase: %s", name, error)
            else:
                logger.warning("Planning %s failed: %s", name, error)
            result.failures.append(BatchFailure(operation=op, error=error))
        return succeeded

    async def _with_retry(self, action: Callable[[Operation], Awaitable[object]], op: Operation) -> None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(TransientError),
            stop=stop_after_attempt(2),
            wait=wait_fixed(self.retry_wait),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        ):
            with attempt:
                await action(op)

    async def _delete(self, op: DeleteOp) -> None:
        await self.gateway.delete_planning_line(op.remote_line_id, op.concurrency_token)

    async def _update(self, op: UpdateOp) -> None:
        await self.gateway.update_planning_line(op.remote_line_id, op.hours, op.concurrency_token)

    async def _create(self, op: CreateOp, target: PlanTarget) -> None:
        await self.gateway.create_planning_line(
            project_number=target.project_number,
            task_number=target.task_number,
            resource_number=target.resource_number,
            date=op.date,
            hours=op.hours,
        )
