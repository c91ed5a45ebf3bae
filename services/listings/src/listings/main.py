from __future__ import annotations

import json
import logging
import os
import time
import uuid
from typing import Any

import httpx
from common.utils import now_utc_iso
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

ADZUNA_BASE_URL = os.getenv(
    "ADZUNA_BASE_URL",
    "http://api.adzuna.com/v1/api/jobs/gb/search/1",
)
ADZUNA_APP_ID = os.getenv("ADZUNA_APP_ID", "").strip()
ADZUNA_APP_KEY = os.getenv("ADZUNA_APP_KEY", "").strip()
LISTINGS_TIMEOUT_SECONDS = float(os.getenv("LISTINGS_TIMEOUT_SECONDS", "15"))

RESULTS_PER_PAGE = 20
DEFAULT_WHAT = "developer"
DEFAULT_WHERE = "new york"
FETCH_FAILED_MESSAGE = "Failed to fetch jobs"
FALLBACK_STATUS_CODE = 500
REDACTED_PARAMS = ("app_id", "app_key")
LOGGER = logging.getLogger("jobboard.listings")


def build_upstream_params(
    *,
    app_id: str,
    app_key: str,
    what: str,
    where: str,
    salary_min: int | None = None,
    salary_max: int | None = None,
    full_time: bool | None = None,
    permanent: bool | None = None,
    sort_by: str | None = None,
    exclude_query: str | None = None,
    category: str | None = None,
    max_days_old: int | None = None,
) -> dict[str, str | int]:
    params: dict[str, str | int] = {
        "app_id": app_id,
        "app_key": app_key,
        "results_per_page": RESULTS_PER_PAGE,
        "what": what,
        "where": where,
    }
    if salary_min:
        params["salary_min"] = salary_min
    if salary_max:
        params["salary_max"] = salary_max
    if full_time:
        params["full_time"] = 1
    if permanent:
        params["permanent"] = 1
    if sort_by:
        params["sort_by"] = sort_by
    if exclude_query:
        params["what_exclude"] = exclude_query
    if category:
        params["category"] = category
    if max_days_old:
        params["max_days_old"] = max_days_old
    return params


def redact_params(params: dict[str, str | int]) -> dict[str, str | int]:
    return {
        key: ("***" if key in REDACTED_PARAMS and value else value)
        for key, value in params.items()
    }


def error_response(status_code: int, details: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": FETCH_FAILED_MESSAGE, "details": details},
    )


def read_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def create_app(
    *,
    app_id: str | None = None,
    app_key: str | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
) -> FastAPI:
    resolved_app_id = app_id if app_id is not None else ADZUNA_APP_ID
    resolved_app_key = app_key if app_key is not None else ADZUNA_APP_KEY
    resolved_base_url = base_url or ADZUNA_BASE_URL
    resolved_timeout = timeout if timeout is not None else LISTINGS_TIMEOUT_SECONDS

    app = FastAPI(title="Job Board Listings Proxy", version="0.1.0")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid search parameters",
                "details": json.loads(json.dumps(exc.errors(), default=str)),
            },
        )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": FALLBACK_STATUS_CODE,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=FALLBACK_STATUS_CODE,
                content={"error": FETCH_FAILED_MESSAGE, "details": "Internal Server Error"},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                }
            )
        )
        return response

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": now_utc_iso()}

    @app.get("/api/jobs")
    async def search(
        what: str = Query(default=DEFAULT_WHAT),
        where: str = Query(default=DEFAULT_WHERE),
        salary_min: int | None = Query(default=None, alias="salaryMin", ge=0),
        salary_max: int | None = Query(default=None, alias="salaryMax", ge=0),
        full_time: bool | None = Query(default=None, alias="fullTime"),
        permanent: bool | None = Query(default=None),
        sort_by: str | None = Query(default=None, alias="sortBy"),
        exclude_query: str | None = Query(default=None, alias="excludeQuery"),
        category: str | None = Query(default=None),
        max_days_old: int | None = Query(default=None, alias="maxDaysOld", ge=1),
    ) -> JSONResponse:
        params = build_upstream_params(
            app_id=resolved_app_id,
            app_key=resolved_app_key,
            what=what,
            where=where,
            salary_min=salary_min,
            salary_max=salary_max,
            full_time=full_time,
            permanent=permanent,
            sort_by=sort_by,
            exclude_query=exclude_query,
            category=category,
            max_days_old=max_days_old,
        )
        LOGGER.info(
            json.dumps(
                {
                    "event": "upstream_request",
                    "url": resolved_base_url,
                    "params": redact_params(params),
                }
            )
        )

        try:
            async with httpx.AsyncClient(
                timeout=resolved_timeout,
                follow_redirects=True,
            ) as client:
                response = await client.get(
                    resolved_base_url,
                    params=params,
                    headers={"Accept": "application/json"},
                )
        except httpx.RequestError as exc:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "upstream_unreachable",
                        "url": resolved_base_url,
                        "error": str(exc),
                    }
                )
            )
            return error_response(FALLBACK_STATUS_CODE, str(exc) or type(exc).__name__)

        payload = read_payload(response)
        LOGGER.info(
            json.dumps({"event": "upstream_response", "status_code": response.status_code})
        )

        if not 200 <= response.status_code < 300:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "upstream_error",
                        "status_code": response.status_code,
                        "details": payload,
                    },
                    default=str,
                )
            )
            return error_response(response.status_code, payload)

        if isinstance(payload, str):
            return error_response(FALLBACK_STATUS_CODE, "Upstream returned a non-JSON body")

        return JSONResponse(status_code=200, content=payload)

    return app


app = create_app()
