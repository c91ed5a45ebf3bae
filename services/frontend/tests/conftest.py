from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from frontend.documents import DocumentRepository, DocumentStore
from frontend.models import Identity
from frontend.notifications import Notifier


class CurrentUser:
    def __init__(self, uid: str | None = None) -> None:
        self.uid = uid

    def __call__(self) -> str | None:
        return self.uid


@pytest.fixture
def repository(tmp_path: Path) -> Iterator[DocumentRepository]:
    repo = DocumentRepository(str(tmp_path / "documents.sqlite3"))
    repo.connect()
    yield repo
    repo.close()


@pytest.fixture
def current_user() -> CurrentUser:
    return CurrentUser("user-1")


@pytest.fixture
def documents(repository: DocumentRepository, current_user: CurrentUser) -> DocumentStore:
    return DocumentStore(repository, owner_resolver=current_user)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def identity() -> Identity:
    return Identity(uid="user-1", display_name="Ada", email="ada@example.com")
