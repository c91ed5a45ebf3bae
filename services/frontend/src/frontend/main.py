from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, EmailStr, Field

from frontend.documents import (
    DEFAULT_DB_PATH,
    PERMISSION_DENIED,
    DocumentRepository,
    DocumentStore,
    DocumentStoreError,
)
from frontend.identity import (
    AuthError,
    FirebaseIdentityProvider,
    IdentityProvider,
    InMemoryIdentityProvider,
)
from frontend.models import Identity, JobListing, SavedJob
from frontend.notifications import Notifier
from frontend.profiles import ProfileEditor, ProfileStore
from frontend.saved_jobs import PreconditionError, SavedJobsStore
from frontend.search_client import SearchClient, SearchError, SearchParams, SearchSession
from frontend.session import SessionStore
from frontend.subscriptions import LiveValue, Subscription

LISTINGS_BASE_URL = os.getenv("LISTINGS_BASE_URL", "http://localhost:5001/api")
FRONTEND_DB_PATH = os.getenv("FRONTEND_DB_PATH", DEFAULT_DB_PATH)
FIREBASE_API_KEY = os.getenv("FIREBASE_API_KEY", "").strip()
IDENTITY_BACKEND = os.getenv("IDENTITY_BACKEND", "").strip().lower()
LOGGER = logging.getLogger("jobboard.frontend")


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1, max_length=120)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class FederatedLoginRequest(BaseModel):
    credential: str = Field(..., min_length=1)


class PasswordResetRequest(BaseModel):
    email: EmailStr


class AccountUpdateRequest(BaseModel):
    display_name: str | None = Field(default=None, max_length=120)
    photo_url: str | None = None


class ToggleSaveRequest(BaseModel):
    job: JobListing


class ProfileUpdateRequest(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    location: str | None = None
    skills: str | None = None
    experience: str | None = None
    education: str | None = None


def build_identity_provider(
    backend: str = IDENTITY_BACKEND,
    api_key: str = FIREBASE_API_KEY,
) -> IdentityProvider:
    if backend == "memory" or (not backend and not api_key):
        return InMemoryIdentityProvider()
    if not api_key:
        raise ValueError("FIREBASE_API_KEY must be set for the firebase identity backend.")
    return FirebaseIdentityProvider(api_key)


class IdentityViews:
    """Live views that belong to the signed-in identity; released when it changes."""

    def __init__(self, saved_jobs: SavedJobsStore, profiles: ProfileStore) -> None:
        self.saved_jobs = saved_jobs
        self.profiles = profiles
        self.uid: str | None = None
        self.saved: LiveValue[list[SavedJob]] | None = None
        self.editor: ProfileEditor | None = None

    def on_identity(self, identity: Identity | None) -> None:
        uid = identity.uid if identity else None
        if uid != self.uid:
            self.release()

    async def saved_view(self, identity: Identity) -> LiveValue[list[SavedJob]]:
        self._claim(identity)
        if self.saved is None:
            self.saved = await self.saved_jobs.list_saved(identity)
        return self.saved

    async def profile_editor(self, identity: Identity) -> ProfileEditor:
        self._claim(identity)
        if self.editor is None:
            self.editor = await ProfileEditor(self.profiles, identity).open()
        return self.editor

    def release(self) -> None:
        if self.saved is not None:
            self.saved.close()
            self.saved = None
        if self.editor is not None:
            self.editor.close()
            self.editor = None
        self.uid = None

    def _claim(self, identity: Identity) -> None:
        if self.uid != identity.uid:
            self.release()
            self.uid = identity.uid


def store_error_to_http(exc: DocumentStoreError) -> HTTPException:
    if exc.code == PERMISSION_DENIED:
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


def raise_for_live_error(error: Exception | None, fallback: str) -> None:
    if error is None:
        return
    if isinstance(error, DocumentStoreError):
        raise store_error_to_http(error) from error
    raise HTTPException(status_code=502, detail=fallback) from error


def editor_payload(editor: ProfileEditor) -> dict[str, Any]:
    return {
        "profile": editor.form.model_dump(),
        "has_changes": editor.has_changes,
        "loading": editor.loading,
    }


def create_app(
    *,
    listings_base_url: str | None = None,
    database_path: str | None = None,
    identity_provider: IdentityProvider | None = None,
) -> FastAPI:
    resolved_base_url = listings_base_url or LISTINGS_BASE_URL
    resolved_path = database_path or FRONTEND_DB_PATH

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        notifier = Notifier()
        provider = identity_provider or build_identity_provider()
        session = SessionStore(provider, notifier)
        repository = DocumentRepository(resolved_path)
        await run_in_threadpool(repository.connect)
        documents = DocumentStore(repository, owner_resolver=lambda: session.current_uid)
        saved_jobs = SavedJobsStore(documents, notifier)
        profiles = ProfileStore(documents, notifier)
        views = IdentityViews(saved_jobs, profiles)
        session_listener: Subscription = session.subscribe(views.on_identity)
        session.start()

        app.state.notifier = notifier
        app.state.session = session
        app.state.documents = documents
        app.state.saved_jobs = saved_jobs
        app.state.profiles = profiles
        app.state.views = views
        app.state.search = SearchSession(SearchClient(resolved_base_url))
        try:
            yield
        finally:
            views.release()
            session_listener.unsubscribe()
            session.close()
            await run_in_threadpool(repository.close)

    app = FastAPI(title="Job Board Frontend", version="0.1.0", lifespan=lifespan)

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 3),
                }
            )
        )
        return response

    async def require_identity(request: Request) -> Identity:
        session: SessionStore = request.app.state.session
        state = await session.wait_until_ready(timeout=5)
        if state.identity is None:
            raise HTTPException(status_code=401, detail="You must be signed in.")
        return state.identity

    async def open_editor(request: Request) -> ProfileEditor:
        identity = await require_identity(request)
        editor = await request.app.state.views.profile_editor(identity)
        raise_for_live_error(editor.error, "Failed to load profile")
        return editor

    async def run_auth(operation) -> Any:
        try:
            return await operation
        except AuthError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "frontend"}

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return INDEX_HTML

    @app.get("/api/session")
    async def get_session(request: Request) -> dict[str, Any]:
        session: SessionStore = request.app.state.session
        state = await session.wait_until_ready(timeout=5)
        return state.model_dump()

    @app.post("/api/auth/register")
    async def register(payload: RegisterRequest, request: Request) -> dict[str, Any]:
        identity = await run_auth(
            request.app.state.session.register(
                str(payload.email), payload.password, payload.display_name
            )
        )
        return {"identity": identity.model_dump()}

    @app.post("/api/auth/login")
    async def login(payload: LoginRequest, request: Request) -> dict[str, Any]:
        identity = await run_auth(
            request.app.state.session.login(str(payload.email), payload.password)
        )
        return {"identity": identity.model_dump()}

    @app.post("/api/auth/federated")
    async def login_federated(payload: FederatedLoginRequest, request: Request) -> dict[str, Any]:
        identity = await run_auth(
            request.app.state.session.login_with_federated_provider(payload.credential)
        )
        return {"identity": identity.model_dump()}

    @app.post("/api/auth/logout")
    async def logout(request: Request) -> dict[str, bool]:
        await run_auth(request.app.state.session.logout())
        return {"signed_out": True}

    @app.post("/api/auth/password-reset")
    async def password_reset(payload: PasswordResetRequest, request: Request) -> dict[str, bool]:
        await run_auth(request.app.state.session.request_password_reset(str(payload.email)))
        return {"sent": True}

    @app.patch("/api/auth/profile")
    async def update_account(payload: AccountUpdateRequest, request: Request) -> dict[str, Any]:
        identity = await run_auth(
            request.app.state.session.update_profile(
                display_name=payload.display_name,
                photo_url=payload.photo_url,
            )
        )
        return {"identity": identity.model_dump()}

    @app.post("/api/search")
    async def search(payload: SearchParams, request: Request) -> dict[str, Any]:
        try:
            outcome = await request.app.state.search.search(payload)
        except SearchError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return outcome.model_dump()

    @app.get("/api/jobs/{job_id}")
    async def job_details(job_id: str, request: Request) -> dict[str, Any]:
        listing = request.app.state.search.find(job_id)
        if listing is None:
            raise HTTPException(status_code=404, detail="Job not found in current results.")
        session: SessionStore = request.app.state.session
        try:
            saved = await request.app.state.saved_jobs.is_saved(session.current_identity, job_id)
        except DocumentStoreError as exc:
            raise store_error_to_http(exc) from exc
        return {"job": listing.model_dump(), "saved": saved}

    @app.get("/api/saved")
    async def list_saved(request: Request) -> dict[str, Any]:
        identity = await require_identity(request)
        live = await request.app.state.views.saved_view(identity)
        raise_for_live_error(live.error, "Failed to load saved jobs")
        return {
            "jobs": [job.model_dump() for job in live.value],
            "count": len(live.value),
            "loading": not live.ready,
        }

    @app.get("/api/saved/{job_id}")
    async def check_saved(job_id: str, request: Request) -> dict[str, bool]:
        identity = await require_identity(request)
        try:
            saved = await request.app.state.saved_jobs.is_saved(identity, job_id)
        except DocumentStoreError as exc:
            raise store_error_to_http(exc) from exc
        return {"saved": saved}

    @app.post("/api/saved/toggle")
    async def toggle_saved(payload: ToggleSaveRequest, request: Request) -> dict[str, bool]:
        session: SessionStore = request.app.state.session
        await session.wait_until_ready(timeout=5)
        try:
            saved = await request.app.state.saved_jobs.toggle_save(
                session.current_identity, payload.job
            )
        except PreconditionError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        except DocumentStoreError as exc:
            raise store_error_to_http(exc) from exc
        return {"saved": saved}

    @app.get("/api/profile")
    async def get_profile(request: Request) -> dict[str, Any]:
        editor = await open_editor(request)
        return editor_payload(editor)

    @app.patch("/api/profile")
    async def edit_profile(payload: ProfileUpdateRequest, request: Request) -> dict[str, Any]:
        editor = await open_editor(request)
        editor.update(**payload.model_dump(exclude_none=True))
        return editor_payload(editor)

    @app.post("/api/profile/save")
    async def save_profile(request: Request) -> dict[str, Any]:
        editor = await open_editor(request)
        try:
            written = await editor.submit()
        except DocumentStoreError as exc:
            raise store_error_to_http(exc) from exc
        return {"saved": written, **editor_payload(editor)}

    @app.get("/api/notifications")
    async def notifications(request: Request) -> dict[str, Any]:
        drained = request.app.state.notifier.drain()
        return {"notifications": [asdict(item) for item in drained]}

    return app


INDEX_HTML = """
<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"UTF-8\" />
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\" />
    <title>Job Board</title>
    <style>
      body { font-family: ui-sans-serif, system-ui, sans-serif; margin: 2rem; max-width: 1100px; }
      .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 1rem; }
      .panel { border: 1px solid #ddd; border-radius: 8px; padding: 1rem; }
      input, select, textarea { width: 100%; margin: 0.35rem 0; padding: 0.55rem; }
      button { padding: 0.55rem 0.9rem; cursor: pointer; margin-right: 0.4rem; margin-top: 0.4rem; }
      .job { border-bottom: 1px solid #eee; padding: 0.6rem 0; }
      #toasts { position: fixed; top: 1rem; right: 1rem; }
      .toast { padding: 0.5rem 0.8rem; margin-bottom: 0.4rem; border-radius: 6px; }
      .success { background: #e6f6ea; } .error { background: #fde8e8; }
      @media (max-width: 900px) { .grid { grid-template-columns: 1fr; } }
    </style>
  </head>
  <body>
    <h1>Find Your Dream Job</h1>
    <p id=\"session\">Loading...</p>
    <div id=\"toasts\"></div>

    <div class=\"grid\">
      <div class=\"panel\">
        <h2>Account</h2>
        <input id=\"email\" placeholder=\"you@example.com\" />
        <input id=\"password\" type=\"password\" placeholder=\"Password\" />
        <input id=\"display_name\" placeholder=\"Display name (sign up)\" />
        <button onclick=\"signUp()\">Sign Up</button>
        <button onclick=\"signIn()\">Log In</button>
        <button onclick=\"resetPassword()\">Reset Password</button>
        <button onclick=\"signOut()\">Log Out</button>
      </div>

      <div class=\"panel\">
        <h2>Search</h2>
        <input id=\"query\" placeholder=\"Job title, keywords\" />
        <input id=\"location\" placeholder=\"Location\" />
        <select id=\"max_days_old\">
          <option value=\"\">Any Time</option>
          <option value=\"1\">Last 24 Hours</option>
          <option value=\"7\">Last 7 Days</option>
          <option value=\"30\">Last 30 Days</option>
        </select>
        <label><input id=\"full_time\" type=\"checkbox\" style=\"width:auto\" /> Full time</label>
        <button onclick=\"runSearch()\">Search</button>
      </div>
    </div>

    <h2>Results</h2>
    <div id=\"results\"></div>

    <h2>Saved Jobs</h2>
    <button onclick=\"loadSaved()\">Refresh</button>
    <div id=\"saved\"></div>

    <h2>Profile</h2>
    <div class=\"panel\" id=\"profile\">
      <input name=\"full_name\" placeholder=\"Full name\" />
      <input name=\"phone\" placeholder=\"Phone number\" />
      <input name=\"location\" placeholder=\"Location\" />
      <textarea name=\"skills\" rows=\"2\" placeholder=\"Skills (comma-separated)\"></textarea>
      <textarea name=\"experience\" rows=\"3\" placeholder=\"Experience\"></textarea>
      <textarea name=\"education\" rows=\"2\" placeholder=\"Education\"></textarea>
      <button id=\"save_profile\" onclick=\"saveProfile()\" disabled>Save Changes</button>
    </div>

    <script>
      let latestResults = [];

      async function callApi(path, method = 'GET', payload = null) {
        const response = await fetch(path, {
          method,
          headers: { 'Content-Type': 'application/json' },
          body: payload === null ? null : JSON.stringify(payload)
        });
        const data = await response.json();
        await showToasts();
        if (!response.ok) {
          throw new Error(data.detail || JSON.stringify(data));
        }
        return data;
      }

      async function showToasts() {
        const response = await fetch('/api/notifications');
        const data = await response.json();
        const box = document.getElementById('toasts');
        for (const item of data.notifications) {
          const el = document.createElement('div');
          el.className = `toast ${item.level}`;
          el.textContent = item.message;
          box.appendChild(el);
          setTimeout(() => el.remove(), 4000);
        }
      }

      function credentials() {
        return {
          email: document.getElementById('email').value.trim(),
          password: document.getElementById('password').value
        };
      }

      async function refreshSession() {
        const state = await callApi('/api/session');
        const label = state.identity
          ? `Signed in as ${state.identity.display_name || state.identity.email}`
          : 'Not signed in';
        document.getElementById('session').textContent = label;
        if (state.identity) {
          await loadSaved();
          await loadProfile();
        }
      }

      async function signUp() {
        await callApi('/api/auth/register', 'POST', {
          ...credentials(),
          display_name: document.getElementById('display_name').value.trim()
        });
        await refreshSession();
      }

      async function signIn() {
        await callApi('/api/auth/login', 'POST', credentials());
        await refreshSession();
      }

      async function signOut() {
        await callApi('/api/auth/logout', 'POST');
        await refreshSession();
      }

      async function resetPassword() {
        await callApi('/api/auth/password-reset', 'POST', { email: credentials().email });
      }

      function renderJobs(target, jobs) {
        const box = document.getElementById(target);
        box.innerHTML = '';
        jobs.forEach((job, index) => {
          const el = document.createElement('div');
          el.className = 'job';
          const company = job.company_name || (job.company && job.company.display_name) || '';
          const where = typeof job.location === 'string'
            ? job.location
            : (job.location && job.location.display_name) || 'Location not specified';
          el.innerHTML = `<strong></strong><div></div><button>Save / Unsave</button>`;
          el.querySelector('strong').textContent = job.title || '';
          el.querySelector('div').textContent = `${company} | ${where}`;
          el.querySelector('button').onclick = () => toggleSave(jobs[index]);
          box.appendChild(el);
        });
      }

      async function runSearch() {
        const maxDays = document.getElementById('max_days_old').value;
        const outcome = await callApi('/api/search', 'POST', {
          query: document.getElementById('query').value.trim() || null,
          location: document.getElementById('location').value.trim() || null,
          full_time: document.getElementById('full_time').checked || null,
          max_days_old: maxDays ? Number(maxDays) : null
        });
        if (outcome.stale) return;
        if (outcome.message) {
          document.getElementById('results').textContent = outcome.message;
          return;
        }
        latestResults = outcome.results;
        renderJobs('results', latestResults);
      }

      async function toggleSave(job) {
        await callApi('/api/saved/toggle', 'POST', { job });
        await loadSaved();
      }

      async function loadSaved() {
        const data = await callApi('/api/saved');
        renderJobs('saved', data.jobs);
      }

      function readProfileForm() {
        const fields = {};
        document.querySelectorAll('#profile [name]').forEach(el => { fields[el.name] = el.value; });
        return fields;
      }

      async function loadProfile() {
        const data = await callApi('/api/profile');
        document.querySelectorAll('#profile [name]').forEach(el => {
          el.value = data.profile[el.name] || '';
          el.oninput = onProfileInput;
        });
        document.getElementById('save_profile').disabled = !data.has_changes;
      }

      async function onProfileInput() {
        const data = await callApi('/api/profile', 'PATCH', readProfileForm());
        document.getElementById('save_profile').disabled = !data.has_changes;
      }

      async function saveProfile() {
        const data = await callApi('/api/profile/save', 'POST');
        document.getElementById('save_profile').disabled = !data.has_changes;
      }

      refreshSession();
    </script>
  </body>
</html>
"""


app = create_app()
