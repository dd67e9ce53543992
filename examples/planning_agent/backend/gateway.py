"""Access to the ledger's OData API.

``RemoteGateway`` is the contract the core depends on; ``LedgerGateway`` is the
HTTP implementation. Resources come from the standard v2.0 API, everything
planning-related from the planning extension's API.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from typing_extensions import NotRequired, TypedDict

from .config import PlannerConfig
from .errors import (
    ConcurrencyConflictError,
    NotConfiguredError,
    RemoteError,
    TransientError,
    ValidationRejectedError,
)

logger = logging.getLogger(__name__)


class RawResource(TypedDict):
    id: str
    number: str
    displayName: NotRequired[str]
    name: NotRequired[str]
    type: NotRequired[str]
    email: NotRequired[str]
    timeSheetOwnerUserId: NotRequired[str]


class RawProject(TypedDict):
    id: str
    number: str
    displayName: NotRequired[str]
    billToCustomerName: NotRequired[str]


class RawTask(TypedDict):
    jobNo: str
    jobTaskNo: str
    description: NotRequired[str]
    id: NotRequired[str]
    jobTaskType: NotRequired[str]


class RawLine(TypedDict):
    """A job planning line as returned by the planning extension."""

    id: str
    jobNo: str
    jobTaskNo: str
    lineNo: int
    number: str
    planningDate: str
    quantity: float
    type: NotRequired[str]
    lineType: NotRequired[str]
    description: NotRequired[str]


class RawTimesheet(TypedDict):
    id: str
    number: str
    resourceNo: str
    startingDate: str
    endingDate: NotRequired[str]
    openExists: NotRequired[bool]
    submittedExists: NotRequired[bool]
    rejectedExists: NotRequired[bool]
    approvedExists: NotRequired[bool]
    totalQuantity: NotRequired[float]


ETAG_KEY = "@odata.etag"


def concurrency_token(record: dict[str, Any]) -> str:
    return str(record.get(ETAG_KEY) or "")


class RemoteGateway(Protocol):
    async def get_resources(self) -> list[RawResource]: ...

    async def get_projects(self) -> list[RawProject]: ...

    async def get_project_tasks(self, project_number: str) -> list[RawTask]: ...

    async def get_planning_lines(self, project_number: str) -> list[RawLine]: ...

    async def get_planning_lines_for_range(
        self,
        project_number: str,
        task_number: str,
        resource_number: str,
        start: str,
        end: str,
    ) -> list[RawLine]: ...

    async def create_planning_line(
        self,
        *,
        project_number: str,
        task_number: str,
        resource_number: str,
        date: str,
        hours: float,
    ) -> RawLine: ...

    async def update_planning_line(
        self, line_id: str, hours: float, concurrency_token: str
    ) -> RawLine: ...

    async def delete_planning_line(self, line_id: str, concurrency_token: str) -> None: ...

    async def get_timesheet_summary(
        self, resource_number: str, week_start: str
    ) -> RawTimesheet | None: ...

    async def create_timesheet(self, resource_number: str, week_start: str) -> RawTimesheet: ...


def _quote(value: str) -> str:
    return "'" + str(value).replace("'", "''") + "'"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return response.text or response.reason_phrase


def classify_response(response: httpx.Response, *, record: bool) -> Exception:
    """Map a failed ledger response to the planning error taxonomy.

    ``record`` tells whether the URL addressed a single record (PATCH/DELETE
    of a line) rather than a collection; a missing record means it was
    removed concurrently, a missing collection means the extension is absent.
    """
    status = response.status_code
    message = f"Ledger API error ({status}): {_error_message(response)}"
    if status in (409, 412):
        return ConcurrencyConflictError(message)
    if status == 404:
        if record:
            return ConcurrencyConflictError(message)
        return NotConfiguredError(message)
    if status in (400, 422):
        return ValidationRejectedError(_error_message(response))
    if status == 429 or status >= 500:
        return TransientError(message)
    return RemoteError(message, status_code=status)


class LedgerGateway:
    """Async HTTP client for the ledger's planning data."""

    def __init__(
        self,
        config: PlannerConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> LedgerGateway:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # --- transport ---

    async def _request(
        self,
        method: str,
        url: str,
        *,
        record: bool = False,
        etag: str | None = None,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.config.access_token:
            headers["Authorization"] = f"Bearer {self.config.access_token}"
        if etag:
            headers["If-Match"] = etag
        try:
            response = await self._client.request(
                method, url, headers=headers, params=params, json=json
            )
        except httpx.TimeoutException as exc:
            raise TransientError(f"Ledger request timed out: {method} {url}") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"Could not reach the ledger: {exc}") from exc
        if response.is_error:
            error = classify_response(response, record=record)
            logger.warning("%s %s failed: %s", method, url, error)
            raise error
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(
                f"Ledger returned a non-JSON body for {method} {url}",
                status_code=response.status_code,
            ) from exc

    async def _collect(self, url: str, params: dict[str, str] | None = None) -> list[Any]:
        """GET a collection, following @odata.nextLink pages."""
        items: list[Any] = []
        next_url: str | None = url
        while next_url:
            page = await self._request("GET", next_url, params=params)
            items.extend(page.get("value") or [])
            next_url = page.get("@odata.nextLink")
            params = None  # nextLink already carries the query
        return items

    def _ext(self, path: str) -> str:
        return f"{self.config.extension_api_url}{path}"

    # --- reads ---

    async def get_resources(self) -> list[RawResource]:
        url = f"{self.config.standard_api_url}/resources"
        return await self._collect(url, {"$filter": "type eq 'Person'"})

    async def get_projects(self) -> list[RawProject]:
        return await self._collect(self._ext("/projects"))

    async def get_project_tasks(self, project_number: str) -> list[RawTask]:
        return await self._collect(
            self._ext("/jobTasks"), {"$filter": f"jobNo eq {_quote(project_number)}"}
        )

    async def get_planning_lines(self, project_number: str) -> list[RawLine]:
        return await self._collect(
            self._ext("/jobPlanningLines"),
            {"$filter": f"jobNo eq {_quote(project_number)}"},
        )

    async def get_planning_lines_for_range(
        self,
        project_number: str,
        task_number: str,
        resource_number: str,
        start: str,
        end: str,
    ) -> list[RawLine]:
        flt = " and ".join(
            [
                f"jobNo eq {_quote(project_number)}",
                f"jobTaskNo eq {_quote(task_number)}",
                f"number eq {_quote(resource_number)}",
                f"planningDate ge {start}",
                f"planningDate le {end}",
            ]
        )
        return await self._collect(self._ext("/jobPlanningLines"), {"$filter": flt})

    async def get_timesheet_summary(
        self, resource_number: str, week_start: str
    ) -> RawTimesheet | None:
        flt = f"resourceNo eq {_quote(resource_number)} and startingDate eq {week_start}"
        sheets = await self._collect(self._ext("/timeSheets"), {"$filter": flt})
        return sheets[0] if sheets else None

    # --- writes ---

    async def create_planning_line(
        self,
        *,
        project_number: str,
        task_number: str,
        resource_number: str,
        date: str,
        hours: float,
    ) -> RawLine:
        payload = {
            "jobNo": project_number,
            "jobTaskNo": task_number,
            "type": "Resource",
            "number": resource_number,
            "planningDate": date,
            "quantity": hours,
        }
        return await self._request("POST", self._ext("/jobPlanningLines"), json=payload)

    async def update_planning_line(
        self, line_id: str, hours: float, concurrency_token: str
    ) -> RawLine:
        return await self._request(
            "PATCH",
            self._ext(f"/jobPlanningLines({line_id})"),
            record=True,
            etag=concurrency_token,
            json={"quantity": hours},
        )

    async def delete_planning_line(self, line_id: str, concurrency_token: str) -> None:
        await self._request(
            "DELETE",
            self._ext(f"/jobPlanningLines({line_id})"),
            record=True,
            etag=concurrency_token,
        )

    async def create_timesheet(self, resource_number: str, week_start: str) -> RawTimesheet:
        payload = {"resourceNo": resource_number, "startingDate": week_start}
        return await self._request("POST", self._ext("/timeSheets"), json=payload)
