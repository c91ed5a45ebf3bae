from __future__ import annotations

import asyncio
from typing import Any

import frontend.search_client as search_module
import httpx
import pytest
from frontend.search_client import (
    DEFAULT_ERROR_MESSAGE,
    NO_RESULTS_MESSAGE,
    SearchClient,
    SearchError,
    SearchParams,
    SearchSession,
    build_error_message,
    build_query_params,
)

pytestmark = pytest.mark.unit


class StubResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        if isinstance(self._payload, str):
            raise ValueError("not json")
        return self._payload


class StubAsyncClient:
    def __init__(self, response: StubResponse | Exception, capture: dict[str, Any]) -> None:
        self.response = response
        self.capture = capture

    async def __aenter__(self) -> StubAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def get(self, url: str, params: dict[str, Any] | None = None) -> StubResponse:
        self.capture["url"] = url
        self.capture["params"] = params or {}
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def install_stub(
    monkeypatch: pytest.MonkeyPatch, response: StubResponse | Exception
) -> dict[str, Any]:
    capture: dict[str, Any] = {}
    monkeypatch.setattr(
        search_module.httpx,
        "AsyncClient",
        lambda *_, **__: StubAsyncClient(response, capture),
    )
    return capture


class ScriptedClient:
    """Returns a payload per call, each released by the test."""

    def __init__(self) -> None:
        self.pending: list[tuple[asyncio.Event, dict[str, Any]]] = []

    def respond(self, index: int, payload: dict[str, Any]) -> None:
        gate, box = self.pending[index]
        box["payload"] = payload
        gate.set()

    async def search_jobs(self, params: SearchParams) -> dict[str, Any]:
        gate: asyncio.Event = asyncio.Event()
        box: dict[str, Any] = {}
        self.pending.append((gate, box))
        await gate.wait()
        return box["payload"]


def test_query_params_keep_only_provided_filters() -> None:
    params = SearchParams(
        query="python",
        location="",
        salary_min=40000,
        salary_max=0,
        full_time=True,
        permanent=False,
        sort_by="date",
    )

    assert build_query_params(params) == {
        "what": "python",
        "salaryMin": "40000",
        "fullTime": "true",
        "sortBy": "date",
    }


def test_query_params_for_empty_search_are_empty() -> None:
    assert build_query_params(SearchParams()) == {}


def test_error_message_combines_error_and_serialized_details() -> None:
    payload = {"error": "Failed to fetch jobs", "details": {"exception": "AUTH_FAIL"}}

    assert build_error_message(payload) == 'Failed to fetch jobs: {"exception":"AUTH_FAIL"}'
    assert build_error_message({"error": "Boom"}) == "Boom"
    assert build_error_message({}) == DEFAULT_ERROR_MESSAGE
    assert build_error_message("gateway timeout") == DEFAULT_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_search_jobs_calls_proxy_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    capture = install_stub(monkeypatch, StubResponse(200, {"count": 0, "results": []}))
    client = SearchClient("http://proxy.example/api/")

    payload = await client.search_jobs(SearchParams(query="rust", location="leeds"))

    assert payload == {"count": 0, "results": []}
    assert capture["url"] == "http://proxy.example/api/jobs"
    assert capture["params"] == {"what": "rust", "where": "leeds"}


@pytest.mark.asyncio
async def test_search_jobs_raises_with_proxy_error_text(monkeypatch: pytest.MonkeyPatch) -> None:
    install_stub(
        monkeypatch,
        StubResponse(401, {"error": "Failed to fetch jobs", "details": "bad key"}),
    )

    with pytest.raises(SearchError) as exc_info:
        await SearchClient("http://proxy.example/api").search_jobs(SearchParams())

    assert str(exc_info.value) == 'Failed to fetch jobs: "bad key"'


@pytest.mark.asyncio
async def test_search_jobs_uses_default_message_for_unreadable_errors(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    install_stub(monkeypatch, StubResponse(502, "Bad Gateway"))

    with pytest.raises(SearchError) as exc_info:
        await SearchClient("http://proxy.example/api").search_jobs(SearchParams())

    assert str(exc_info.value) == DEFAULT_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_search_jobs_wraps_transport_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    request = httpx.Request("GET", "http://proxy.example/api/jobs")
    install_stub(monkeypatch, httpx.ConnectError("connection refused", request=request))

    with pytest.raises(SearchError) as exc_info:
        await SearchClient("http://proxy.example/api").search_jobs(SearchParams())

    assert str(exc_info.value).startswith(DEFAULT_ERROR_MESSAGE)
    assert "connection refused" in str(exc_info.value)


@pytest.mark.asyncio
async def test_session_ignores_responses_overtaken_by_newer_search() -> None:
    client = ScriptedClient()
    session = SearchSession(client)

    first = asyncio.create_task(session.search(SearchParams(query="java")))
    await asyncio.sleep(0)
    second = asyncio.create_task(session.search(SearchParams(query="python")))
    await asyncio.sleep(0)

    client.respond(1, {"count": 1, "results": [{"id": 2, "title": "Python Developer"}]})
    newest = await second
    client.respond(0, {"count": 1, "results": [{"id": 1, "title": "Java Developer"}]})
    older = await first

    assert newest.stale is False
    assert older.stale is True
    assert [job.title for job in session.results] == ["Python Developer"]
    assert session.latest_sequence == 2


@pytest.mark.asyncio
async def test_session_keeps_previous_results_when_search_is_empty() -> None:
    client = ScriptedClient()
    session = SearchSession(client)

    first = asyncio.create_task(session.search(SearchParams(query="python")))
    await asyncio.sleep(0)
    client.respond(0, {"count": 1, "results": [{"id": "a-1", "title": "Python Developer"}]})
    await first

    second = asyncio.create_task(session.search(SearchParams(query="cobol")))
    await asyncio.sleep(0)
    client.respond(1, {"count": 0, "results": []})
    outcome = await second

    assert outcome.results == []
    assert outcome.message == NO_RESULTS_MESSAGE
    assert session.message == NO_RESULTS_MESSAGE
    assert [job.id for job in session.results] == ["a-1"]


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"results": ["not-a-job"]}, {"results": "oops"}])
async def test_session_turns_malformed_results_into_search_error(payload: dict[str, Any]) -> None:
    client = ScriptedClient()
    session = SearchSession(client)

    pending = asyncio.create_task(session.search(SearchParams(query="python")))
    await asyncio.sleep(0)
    client.respond(0, payload)

    with pytest.raises(SearchError) as exc_info:
        await pending

    assert str(exc_info.value) == DEFAULT_ERROR_MESSAGE
    assert session.results == []


@pytest.mark.asyncio
async def test_session_drops_failures_of_overtaken_searches() -> None:
    client = ScriptedClient()
    session = SearchSession(client)

    first = asyncio.create_task(session.search(SearchParams(query="java")))
    await asyncio.sleep(0)
    second = asyncio.create_task(session.search(SearchParams(query="python")))
    await asyncio.sleep(0)

    client.respond(1, {"count": 1, "results": [{"id": 2, "title": "Python Developer"}]})
    await second
    client.respond(0, {"results": ["not-a-job"]})
    older = await first

    assert older.stale is True
    assert older.results == []
    assert older.message == DEFAULT_ERROR_MESSAGE
    assert [job.title for job in session.results] == ["Python Developer"]
