from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from common.utils import now_utc_iso

from frontend.documents import PERMISSION_DENIED, Document, DocumentStore, DocumentStoreError
from frontend.models import Identity, JobListing, SavedJob
from frontend.notifications import Notifier
from frontend.subscriptions import LiveValue

LOCATION_NOT_SPECIFIED = "Location not specified"
CATEGORY_NOT_SPECIFIED = "Category not specified"
LOGGER = logging.getLogger("jobboard.frontend")


class PreconditionError(Exception):
    pass


class SignInRequiredError(PreconditionError):
    def __init__(self) -> None:
        super().__init__("You must be signed in to save jobs.")


class MissingJobIdError(PreconditionError):
    def __init__(self) -> None:
        super().__init__("Job ID is missing. Cannot save.")


def saved_jobs_collection(uid: str) -> str:
    return f"users/{uid}/savedJobs"


def build_snapshot(
    job: JobListing | dict[str, Any],
    *,
    saved_at: str | None = None,
) -> SavedJob:
    listing = job if isinstance(job, JobListing) else JobListing.model_validate(job)
    if not listing.id:
        raise MissingJobIdError()
    now = saved_at or now_utc_iso()
    return SavedJob(
        id=listing.id,
        title=listing.title or "",
        company_name=listing.resolved_company() or "",
        company_logo=listing.company_logo or "",
        location=listing.resolved_location() or LOCATION_NOT_SPECIFIED,
        salary_min=listing.salary_min or 0,
        salary_max=listing.salary_max or 0,
        description=listing.description or "",
        category=listing.resolved_category() or CATEGORY_NOT_SPECIFIED,
        contract_type=listing.contract_type or "",
        created=listing.created or now,
        redirect_url=listing.redirect_url or "",
        saved_at=now,
    )


def to_saved_jobs(documents: list[tuple[str, Document]]) -> list[SavedJob]:
    return [SavedJob.model_validate({**data, "id": doc_id}) for doc_id, data in documents]


class SavedJobsStore:
    def __init__(
        self,
        documents: DocumentStore,
        notifier: Notifier,
        *,
        clock: Callable[[], str] = now_utc_iso,
    ) -> None:
        self.documents = documents
        self.notifier = notifier
        self.clock = clock

    async def is_saved(self, identity: Identity | None, job_id: str) -> bool:
        if identity is None or not job_id:
            return False
        try:
            return await self._exists(identity, job_id)
        except DocumentStoreError as exc:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "saved_check_failed",
                        "uid": identity.uid,
                        "job_id": job_id,
                        "code": exc.code,
                    }
                )
            )
            self.notifier.error("Failed to check saved status")
            raise

    async def _exists(self, identity: Identity, job_id: str) -> bool:
        document = await self.documents.get_document(saved_jobs_collection(identity.uid), job_id)
        return document is not None

    async def toggle_save(
        self,
        identity: Identity | None,
        job: JobListing | dict[str, Any],
    ) -> bool:
        """Flip the saved state of ``job`` and return the new state."""
        if identity is None:
            self.notifier.error("Please login to save jobs")
            raise SignInRequiredError()
        listing = job if isinstance(job, JobListing) else JobListing.model_validate(job)
        if not listing.id:
            self.notifier.error("Job ID is missing. Cannot save.")
            raise MissingJobIdError()

        collection = saved_jobs_collection(identity.uid)
        try:
            if await self._exists(identity, listing.id):
                await self.documents.delete_document(collection, listing.id)
                saved = False
            else:
                snapshot = build_snapshot(listing, saved_at=self.clock())
                await self.documents.set_document(collection, listing.id, snapshot.model_dump())
                saved = True
        except DocumentStoreError as exc:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "toggle_save_failed",
                        "uid": identity.uid,
                        "job_id": listing.id,
                        "code": exc.code,
                    }
                )
            )
            if exc.code == PERMISSION_DENIED:
                self.notifier.error(
                    "You do not have permission to save jobs. Please try logging in again."
                )
            else:
                self.notifier.error("Failed to save job. Please try again.")
            raise

        self.notifier.success("Job saved successfully" if saved else "Job removed from saved jobs")
        return saved

    async def list_saved(self, identity: Identity | None) -> LiveValue[list[SavedJob]]:
        """Live list of saved jobs, newest first; ``close()`` it when done."""
        if identity is None:
            self.notifier.error("Please login to save jobs")
            raise SignInRequiredError()

        live: LiveValue[list[SavedJob]] = LiveValue([])

        def on_error(exc: Exception) -> None:
            self.notifier.error("Failed to load saved jobs")
            live.fail(exc)

        subscription = await self.documents.watch_collection(
            saved_jobs_collection(identity.uid),
            lambda documents: live.publish(to_saved_jobs(documents)),
            order_by="saved_at",
            descending=True,
            on_error=on_error,
        )
        live.attach(subscription)
        return live
