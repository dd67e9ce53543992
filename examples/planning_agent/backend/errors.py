"""Error taxonomy for talking to the ledger.

Every failure the gateway can produce is mapped onto one of these classes so
callers can decide how to degrade without inspecting HTTP details.
"""

from __future__ import annotations


class PlanningError(Exception):
    """Base class for planning failures."""


class NotConfiguredError(PlanningError):
    """The ledger extension that serves planning data is not installed."""


class ValidationRejectedError(PlanningError):
    """The ledger refused a write because of its own business rules."""


class ConcurrencyConflictError(PlanningError):
    """The concurrency token is stale; someone else changed the record."""


class TransientError(PlanningError):
    """Network failure, timeout, throttling or a server-side error."""


class RemoteError(PlanningError):
    """Any other unexpected ledger response (auth, unknown status)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WeekLoadError(PlanningError):
    """One or more weeks could not be loaded into the cache."""

    def __init__(self, failures: dict[str, BaseException]) -> None:
        self.failures = dict(failures)
        weeks = ", ".join(sorted(self.failures))
        super().__init__(f"Failed to load planning data for week(s): {weeks}")

    @property
    def weeks(self) -> list[str]:
        return sorted(self.failures)


class GridValidationError(PlanningError):
    """The edited hours grid failed local validation."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


def user_hint(error: BaseException) -> str:
    """Return a user-facing explanation for a failed planning operation."""
    message = str(error)
    if isinstance(error, ValidationRejectedError):
        if "Gen. Prod. Posting Group" in message:
            return (
                'Resource is missing "Gen. Prod. Posting Group". '
                "Please configure this on the Resource Card in the ledger."
            )
        if "must have a value" in message:
            return (
                f"Ledger validation error: {message}. "
                "Please check the resource/project setup in the ledger."
            )
        return f"Ledger rejected the change: {message}"
    if isinstance(error, ConcurrencyConflictError):
        return "This week was changed by someone else. Re-open it to load fresh data."
    if isinstance(error, NotConfiguredError):
        return "Planning is unavailable: the ledger extension is not installed."
    if isinstance(error, TransientError):
        return f"The ledger could not be reached ({message}). Please try again."
    return message or error.__class__.__name__
