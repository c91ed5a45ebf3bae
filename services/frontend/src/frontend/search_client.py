from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from common.utils import compact_params, stringify_details
from pydantic import BaseModel, Field, ValidationError

from frontend.models import JobListing

DEFAULT_ERROR_MESSAGE = "Failed to fetch jobs"
NO_RESULTS_MESSAGE = "No jobs found matching your criteria. Try adjusting your search filters."
PARAMETER_NAMES = {
    "query": "what",
    "location": "where",
    "salary_min": "salaryMin",
    "salary_max": "salaryMax",
    "full_time": "fullTime",
    "permanent": "permanent",
    "sort_by": "sortBy",
    "results_per_page": "resultsPerPage",
    "page": "page",
    "exclude_query": "excludeQuery",
    "category": "category",
    "max_days_old": "maxDaysOld",
}
LOGGER = logging.getLogger("jobboard.frontend")


class SearchError(Exception):
    pass


class SearchParams(BaseModel):
    query: str | None = None
    location: str | None = None
    salary_min: int | None = Field(default=None, ge=0)
    salary_max: int | None = Field(default=None, ge=0)
    full_time: bool | None = None
    permanent: bool | None = None
    sort_by: str | None = None
    results_per_page: int | None = Field(default=None, ge=1)
    page: int | None = Field(default=None, ge=1)
    exclude_query: str | None = None
    category: str | None = None
    max_days_old: int | None = Field(default=None, ge=1)


def build_query_params(params: SearchParams) -> dict[str, str]:
    return compact_params(
        {
            PARAMETER_NAMES[field]: value
            for field, value in params.model_dump().items()
            if field in PARAMETER_NAMES
        }
    )


def build_error_message(payload: Any) -> str:
    if not isinstance(payload, dict):
        return DEFAULT_ERROR_MESSAGE
    message = payload.get("error") or DEFAULT_ERROR_MESSAGE
    details = stringify_details(payload.get("details"))
    return f"{message}: {details}" if details else str(message)


def parse_results(payload: dict[str, Any]) -> list[JobListing]:
    raw = payload.get("results") or []
    if not isinstance(raw, list):
        raise SearchError(DEFAULT_ERROR_MESSAGE)
    try:
        return [JobListing.model_validate(item) for item in raw]
    except ValidationError as exc:
        LOGGER.warning(json.dumps({"event": "search_malformed", "error": str(exc)}))
        raise SearchError(DEFAULT_ERROR_MESSAGE) from exc


class SearchClient:
    def __init__(self, base_url: str, *, timeout: float = 15) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def search_jobs(self, params: SearchParams) -> dict[str, Any]:
        query = build_query_params(params)
        url = f"{self.base_url}/jobs"
        LOGGER.info(json.dumps({"event": "search_request", "url": url, "params": query}))

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=query)
        except httpx.RequestError as exc:
            LOGGER.warning(json.dumps({"event": "search_unreachable", "error": str(exc)}))
            raise SearchError(f"{DEFAULT_ERROR_MESSAGE}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            message = build_error_message(payload)
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "search_failed",
                        "status_code": response.status_code,
                        "message": message,
                    }
                )
            )
            raise SearchError(message)

        if not isinstance(payload, dict):
            raise SearchError(DEFAULT_ERROR_MESSAGE)
        return payload


class SearchOutcome(BaseModel):
    sequence: int
    stale: bool
    results: list[JobListing]
    count: int | None = None
    message: str | None = None


class SearchSession:
    """Keeps the current result set; responses overtaken by a newer search are dropped."""

    def __init__(self, client: SearchClient) -> None:
        self.client = client
        self.results: list[JobListing] = []
        self.message: str | None = None
        self._issued = 0

    @property
    def latest_sequence(self) -> int:
        return self._issued

    def find(self, job_id: str) -> JobListing | None:
        for listing in self.results:
            if listing.id == job_id:
                return listing
        return None

    async def search(self, params: SearchParams) -> SearchOutcome:
        self._issued += 1
        sequence = self._issued
        try:
            payload = await self.client.search_jobs(params)
            results = parse_results(payload)
        except SearchError as exc:
            if sequence != self._issued:
                self._log_stale(sequence)
                return SearchOutcome(sequence=sequence, stale=True, results=[], message=str(exc))
            raise
        message = None if results else NO_RESULTS_MESSAGE

        if sequence != self._issued:
            self._log_stale(sequence)
            return SearchOutcome(sequence=sequence, stale=True, results=results, message=message)

        if results:
            self.results = results
        self.message = message
        count = payload.get("count")
        return SearchOutcome(
            sequence=sequence,
            stale=False,
            results=results,
            count=count if isinstance(count, int) else None,
            message=message,
        )

    def _log_stale(self, sequence: int) -> None:
        LOGGER.info(
            json.dumps({"event": "search_stale", "sequence": sequence, "latest": self._issued})
        )
