from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import tempfile
import threading
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from common.utils import now_utc_iso
from fastapi.concurrency import run_in_threadpool

from frontend.subscriptions import Subscription

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "jobboard", "documents.sqlite3")
PERMISSION_DENIED = "permission-denied"
UNAVAILABLE = "unavailable"
FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
LOGGER = logging.getLogger("jobboard.frontend")

Document = dict[str, Any]
Refresh = Callable[[], Awaitable[None]]


class DocumentStoreError(Exception):
    def __init__(self, message: str, code: str = UNAVAILABLE) -> None:
        super().__init__(message)
        self.code = code


class DocumentRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                );
                """
            )
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT data_json
                FROM documents
                WHERE collection = ? AND doc_id = ?
                """,
                (collection, doc_id),
            ).fetchone()
            if row is None:
                return None
            return json.loads(row["data_json"])

    def set(self, collection: str, doc_id: str, data: Document, *, merge: bool = False) -> None:
        with self._lock:
            document = dict(data)
            if merge:
                existing = self.get(collection, doc_id) or {}
                document = {**existing, **data}
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO documents (collection, doc_id, data_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(collection, doc_id) DO UPDATE SET
                    data_json = excluded.data_json,
                    updated_at = excluded.updated_at
                """,
                (collection, doc_id, json.dumps(document), now, now),
            )
            self.connection.commit()

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            cursor = self.connection.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    def query(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[tuple[str, Document]]:
        with self._lock:
            query = "SELECT doc_id, data_json FROM documents WHERE collection = ?"
            params: list[Any] = [collection]
            direction = "DESC" if descending else "ASC"
            if order_by is not None:
                if not FIELD_NAME_PATTERN.match(order_by):
                    raise ValueError(f"Invalid order_by field: {order_by}")
                query += f" ORDER BY json_extract(data_json, ?) {direction}, doc_id {direction}"
                params.append(f"$.{order_by}")
            else:
                query += f" ORDER BY doc_id {direction}"
            if limit is not None:
                query += " LIMIT ?"
                params.append(limit)
            cursor = self.connection.execute(query, tuple(params))
            return [(row["doc_id"], json.loads(row["data_json"])) for row in cursor.fetchall()]


def watch_key(collection: str, doc_id: str | None = None) -> str:
    if doc_id is None:
        return collection
    return f"{collection}#{doc_id}"


def owner_of(collection: str, doc_id: str) -> str | None:
    parts = collection.strip("/").split("/")
    if parts[0] != "users":
        return None
    if len(parts) == 1:
        return doc_id
    return parts[1]


class DocumentStore:
    """Async document access with live watches over a ``DocumentRepository``.

    Watches receive their first snapshot before ``watch_*`` returns and are
    refreshed after every write made through this store to the watched path.
    When ``owner_resolver`` is given, documents under ``users/{uid}`` are only
    reachable while it returns that ``uid``.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        *,
        owner_resolver: Callable[[], str | None] | None = None,
    ) -> None:
        self.repository = repository
        self.owner_resolver = owner_resolver
        self._watches: dict[str, dict[int, Refresh]] = {}
        self._next_watch_id = 0

    def check_access(self, collection: str, doc_id: str = "") -> None:
        if self.owner_resolver is None:
            return
        owner = owner_of(collection, doc_id)
        if owner is None:
            return
        if self.owner_resolver() != owner:
            raise DocumentStoreError(
                "Missing or insufficient permissions.",
                code=PERMISSION_DENIED,
            )

    async def get_document(self, collection: str, doc_id: str) -> Document | None:
        self.check_access(collection, doc_id)
        return await self._call(self.repository.get, collection, doc_id)

    async def set_document(
        self,
        collection: str,
        doc_id: str,
        data: Document,
        *,
        merge: bool = False,
    ) -> None:
        self.check_access(collection, doc_id)
        await self._call(self.repository.set, collection, doc_id, data, merge=merge)
        await self._notify(collection, doc_id)

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        self.check_access(collection, doc_id)
        deleted = await self._call(self.repository.delete, collection, doc_id)
        await self._notify(collection, doc_id)
        return deleted

    async def query_collection(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[tuple[str, Document]]:
        self.check_access(collection)
        return await self._call(
            self.repository.query,
            collection,
            order_by=order_by,
            descending=descending,
            limit=limit,
        )

    async def watch_document(
        self,
        collection: str,
        doc_id: str,
        on_change: Callable[[Document | None], None],
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        async def refresh() -> None:
            try:
                document = await self.get_document(collection, doc_id)
            except (DocumentStoreError, sqlite3.Error) as exc:
                self._report(on_error, exc, collection)
                return
            self._deliver(on_change, document, on_error, collection)

        return await self._register(watch_key(collection, doc_id), refresh)

    async def watch_collection(
        self,
        collection: str,
        on_change: Callable[[list[tuple[str, Document]]], None],
        *,
        order_by: str | None = None,
        descending: bool = False,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Subscription:
        async def refresh() -> None:
            try:
                documents = await self.query_collection(
                    collection,
                    order_by=order_by,
                    descending=descending,
                )
            except (DocumentStoreError, sqlite3.Error) as exc:
                self._report(on_error, exc, collection)
                return
            self._deliver(on_change, documents, on_error, collection)

        return await self._register(watch_key(collection), refresh)

    def watch_count(self) -> int:
        return sum(len(watches) for watches in self._watches.values())

    async def _register(self, key: str, refresh: Refresh) -> Subscription:
        watch_id = self._next_watch_id
        self._next_watch_id += 1
        self._watches.setdefault(key, {})[watch_id] = refresh

        def release() -> None:
            watches = self._watches.get(key)
            if watches is None:
                return
            watches.pop(watch_id, None)
            if not watches:
                del self._watches[key]

        try:
            await refresh()
        except BaseException:
            release()
            raise
        return Subscription(release)

    async def _notify(self, collection: str, doc_id: str) -> None:
        for key in (watch_key(collection, doc_id), watch_key(collection)):
            for watch_id, refresh in list(self._watches.get(key, {}).items()):
                if watch_id not in self._watches.get(key, {}):
                    continue
                try:
                    await refresh()
                except Exception:
                    LOGGER.exception(
                        json.dumps({"event": "watch_callback_failed", "watch": key})
                    )

    async def _call(self, func, *args: Any, **kwargs: Any) -> Any:
        try:
            return await run_in_threadpool(func, *args, **kwargs)
        except sqlite3.Error as exc:
            raise DocumentStoreError(str(exc), code=UNAVAILABLE) from exc

    def _deliver(
        self,
        on_change: Callable[[Any], None],
        snapshot: Any,
        on_error: Callable[[Exception], None] | None,
        collection: str,
    ) -> None:
        # ValueError covers pydantic ValidationError on malformed stored documents.
        try:
            on_change(snapshot)
        except ValueError as exc:
            self._report(on_error, exc, collection)

    def _report(
        self,
        on_error: Callable[[Exception], None] | None,
        exc: Exception,
        collection: str,
    ) -> None:
        LOGGER.warning(
            json.dumps({"event": "watch_failed", "collection": collection, "error": str(exc)})
        )
        if on_error is not None:
            on_error(exc)
