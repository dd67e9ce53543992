import asyncio

import httpx
import pytest

from examples.planning_agent.backend.config import PlannerConfig
from examples.planning_agent.backend.errors import (
    ConcurrencyConflictError,
    NotConfiguredError,
    RemoteError,
    TransientError,
    ValidationRejectedError,
)
from examples.planning_agent.backend.gateway import LedgerGateway, classify_response, concurrency_token

CONFIG = PlannerConfig(
    base_url="https://ledger.test/v2.0",
    environment="prod",
    company_id="c1",
    access_token="secret",
)


def _run(handler, call):
    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with LedgerGateway(CONFIG, client=client) as gateway:
            try:
                return await call(gateway)
            finally:
                await client.aclose()

    return asyncio.run(scenario())


def _response(status, body=None):
    request = httpx.Request("GET", "https://ledger.test/")
    return httpx.Response(status, json=body, request=request)


@pytest.mark.parametrize(
    "status,record,expected",
    [
        (409, True, ConcurrencyConflictError),
        (412, True, ConcurrencyConflictError),
        (404, True, ConcurrencyConflictError),
        (404, False, NotConfiguredError),
        (400, False, ValidationRejectedError),
        (422, True, ValidationRejectedError),
        (429, False, TransientError),
        (503, False, TransientError),
        (401, False, RemoteError),
    ],
)
def test_classify_response(status, record, expected):
    error = classify_response(_response(status, {"error": {"message": "x"}}), record=record)

    assert type(error) is expected


def test_validation_message_is_surfaced_verbatim():
    body = {"error": {"code": "Internal_TestFieldError", "message": "Gen. Prod. Posting Group must have a value in Resource: No.=R1."}}

    error = classify_response(_response(400, body), record=False)

    assert str(error) == "Gen. Prod. Posting Group must have a value in Resource: No.=R1."


def test_collections_follow_next_link_pages():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if "skiptoken" in str(request.url):
            return httpx.Response(200, json={"value": [{"id": "2", "number": "JOB2"}]})
        return httpx.Response(
            200,
            json={
                "value": [{"id": "1", "number": "JOB1"}],
                "@odata.nextLink": "https://ledger.test/v2.0/prod/api/knowall/thyme/v1.0/companies(c1)/projects?$skiptoken=1",
            },
        )

    projects = _run(handler, lambda g: g.get_projects())

    assert [p["number"] for p in projects] == ["JOB1", "JOB2"]
    assert seen[0].url.path == "/v2.0/prod/api/knowall/thyme/v1.0/companies(c1)/projects"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert len(seen) == 2


def test_resources_use_standard_api_with_person_filter():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"value": []})

    _run(handler, lambda g: g.get_resources())

    assert seen[0].url.path == "/v2.0/prod/api/v2.0/companies(c1)/resources"
    assert seen[0].url.params["$filter"] == "type eq 'Person'"


def test_range_query_filters_on_tuple_and_dates():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"value": []})

    _run(handler, lambda g: g.get_planning_lines_for_range("JOB'1", "100", "R1", "2025-01-06", "2025-01-12"))

    assert seen[0].url.params["$filter"] == (
        "jobNo eq 'JOB''1' and jobTaskNo eq '100' and number eq 'R1' "
        "and planningDate ge 2025-01-06 and planningDate le 2025-01-12"
    )


def test_update_sends_concurrency_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "L1", "quantity": 6, "@odata.etag": 'W/"2"'})

    line = _run(handler, lambda g: g.update_planning_line("L1", 6, 'W/"1"'))

    assert seen[0].method == "PATCH"
    assert seen[0].headers["If-Match"] == 'W/"1"'
    assert seen[0].url.path.endswith("/jobPlanningLines(L1)")
    assert concurrency_token(line) == 'W/"2"'


def test_delete_of_missing_line_is_a_conflict():
    def handler(request):
        return httpx.Response(404, json={"error": {"message": "not found"}})

    with pytest.raises(ConcurrencyConflictError):
        _run(handler, lambda g: g.delete_planning_line("L1", 'W/"1"'))


def test_missing_extension_endpoint_is_not_configured():
    def handler(request):
        return httpx.Response(404, json={"error": {"message": "No HTTP resource was found"}})

    with pytest.raises(NotConfiguredError):
        _run(handler, lambda g: g.get_planning_lines("JOB1"))


def test_network_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientError):
        _run(handler, lambda g: g.get_projects())


def test_delete_with_no_content_returns_quietly():
    def handler(request):
        return httpx.Response(204)

    assert _run(handler, lambda g: g.delete_planning_line("L1", 'W/"1"')) is None


def test_timesheet_summary_is_none_when_missing():
    def handler(request):
        return httpx.Response(200, json={"value": []})

    assert _run(handler, lambda g: g.get_timesheet_summary("R1", "2025-01-06")) is None


def test_empty_concurrency_token_sends_no_if_match():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    _run(handler, lambda g: g.delete_planning_line("L1", ""))

    assert "If-Match" not in seen[0].headers


def test_non_json_success_body_is_a_remote_error():
    def handler(request):
        return httpx.Response(200, text="<html>gateway page</html>")

    with pytest.raises(RemoteError) as info:
        _run(handler, lambda g: g.get_projects())

    assert info.value.status_code == 200
