from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from common.utils import now_utc_iso

from frontend.documents import Document, DocumentStore, DocumentStoreError
from frontend.models import DEFAULT_PROFILE, Identity, UserProfile
from frontend.notifications import Notifier
from frontend.saved_jobs import SignInRequiredError
from frontend.subscriptions import LiveValue, Subscription

PROFILES_COLLECTION = "users"
LOGGER = logging.getLogger("jobboard.frontend")


def to_profile(document: Document | None) -> UserProfile:
    if not document:
        return DEFAULT_PROFILE.model_copy()
    known = {key: value for key, value in document.items() if key in UserProfile.model_fields}
    return UserProfile.model_validate({**DEFAULT_PROFILE.model_dump(), **known})


def has_changes(profile: UserProfile, baseline: UserProfile) -> bool:
    return profile.editable_fields() != baseline.editable_fields()


class ProfileStore:
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

    async def load(self, identity: Identity | None) -> LiveValue[UserProfile]:
        if identity is None:
            raise SignInRequiredError()

        live: LiveValue[UserProfile] = LiveValue(DEFAULT_PROFILE.model_copy())

        def on_error(exc: Exception) -> None:
            self.notifier.error("Failed to load profile")
            live.fail(exc)

        subscription = await self.documents.watch_document(
            PROFILES_COLLECTION,
            identity.uid,
            lambda document: live.publish(to_profile(document)),
            on_error=on_error,
        )
        live.attach(subscription)
        return live

    async def save(
        self,
        identity: Identity | None,
        profile: UserProfile,
        baseline: UserProfile = DEFAULT_PROFILE,
    ) -> bool:
        """Write ``profile`` unless it matches ``baseline``; return whether it wrote."""
        if identity is None:
            raise SignInRequiredError()
        if not has_changes(profile, baseline):
            return False

        record = {**profile.editable_fields(), "updated_at": self.clock()}
        try:
            await self.documents.set_document(
                PROFILES_COLLECTION,
                identity.uid,
                record,
                merge=True,
            )
        except DocumentStoreError as exc:
            LOGGER.warning(
                json.dumps({"event": "profile_save_failed", "uid": identity.uid, "code": exc.code})
            )
            self.notifier.error(str(exc) or "Failed to update profile")
            raise

        self.notifier.success("Profile updated successfully!")
        return True


class ProfileEditor:
    """Form state over a live profile with dirty tracking."""

    def __init__(self, store: ProfileStore, identity: Identity) -> None:
        self.store = store
        self.identity = identity
        self.form = DEFAULT_PROFILE.model_copy()
        self.baseline = DEFAULT_PROFILE.model_copy()
        self.has_changes = False
        self.saving = False
        self._live: LiveValue[UserProfile] | None = None
        self._listener: Subscription | None = None

    @property
    def loading(self) -> bool:
        return self._live is None or not self._live.ready

    @property
    def error(self) -> Exception | None:
        return self._live.error if self._live is not None else None

    async def open(self) -> ProfileEditor:
        self._live = await self.store.load(self.identity)
        self._listener = self._live.add_listener(self._on_remote_change)
        if self._live.ready and self._live.error is None:
            self._on_remote_change(self._live.value)
        return self

    def update(self, **fields: Any) -> bool:
        unknown = set(fields) - set(self.form.editable_fields())
        if unknown:
            raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        self.form = self.form.model_copy(update=fields)
        self.has_changes = has_changes(self.form, self.baseline)
        return self.has_changes

    async def submit(self) -> bool:
        if not self.has_changes:
            return False
        self.saving = True
        try:
            written = await self.store.save(self.identity, self.form, self.baseline)
        finally:
            self.saving = False
        self.baseline = self.form.model_copy()
        self.has_changes = False
        return written

    def close(self) -> None:
        if self._listener is not None:
            self._listener.unsubscribe()
            self._listener = None
        if self._live is not None:
            self._live.close()

    def _on_remote_change(self, profile: UserProfile) -> None:
        self.baseline = profile.model_copy()
        if not self.has_changes:
            self.form = profile.model_copy()
        else:
            self.has_changes = has_changes(self.form, self.baseline)
