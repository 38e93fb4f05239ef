"""Async SQLite document store for Ingest and FontFamily records.

Documents are JSON objects keyed by ``(collection, key)``. The store
offers per-key get/put/merge and an equality-filtered scan with
key-ordered pagination, which is all the pipeline needs from a document
database.

Each write method commits immediately -- no transactions are held across
``await`` boundaries. Family records follow last-writer-wins semantics
per key. Any ``sqlite3.Error`` surfaces as :class:`StoreUnavailableError`,
the only hard failure of an Ingest.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from fontingest.exceptions import InvalidTransition, StoreUnavailableError
from fontingest.ingest.fsm import (
    ANALYSIS_EVENTS,
    UPLOAD_EVENTS,
    create_analysis_fsm,
    create_upload_fsm,
)
from fontingest.ingest.status import legacy_status
from fontingest.models import (
    UPLOAD_COMPLETED,
    AnalysisState,
    FontFamily,
    Ingest,
    UploadState,
)

logger = logging.getLogger(__name__)

INGESTS = "ingests"
FAMILIES = "families"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    key TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (collection, key)
)
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")


class DocumentStore:
    """Async JSON document store on SQLite.

    Usage::

        async with DocumentStore("data/fonts.db") as store:
            await store.put("families", "owner__inter", {...})
            rows = await store.query("families", {"owner_id": "owner"})
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the connection with WAL mode and create the schema."""
        try:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=NORMAL")
            await self._db.execute(_SCHEMA)
            await self._db.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open document store {self.db_path}: {exc}") from exc

    async def close(self) -> None:
        """Close the connection if open."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> DocumentStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreUnavailableError("Not connected -- use 'async with' or call connect()")
        return self._db

    # ------------------------------------------------------------------
    # Document operations
    # ------------------------------------------------------------------

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return the document at *key*, or ``None``."""
        db = self._ensure_connected()
        try:
            cursor = await db.execute(
                "SELECT data FROM documents WHERE collection = ? AND key = ?",
                (collection, key),
            )
            row = await cursor.fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"get {collection}/{key} failed: {exc}") from exc
        return json.loads(row["data"]) if row else None

    async def put(self, collection: str, key: str, data: Mapping[str, Any]) -> dict[str, Any]:
        """Write *data* at *key*, replacing any existing document."""
        db = self._ensure_connected()
        now = _now_iso()
        doc = dict(data)
        if not doc.get("created_at"):
            doc["created_at"] = now
        doc["updated_at"] = now
        try:
            await db.execute(
                """INSERT INTO documents (collection, key, data, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(collection, key)
                   DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at""",
                (collection, key, json.dumps(doc), doc["created_at"], now),
            )
            await db.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"put {collection}/{key} failed: {exc}") from exc
        return doc

    async def merge(
        self, collection: str, key: str, partial: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Shallow-merge *partial* into the document at *key* (created if absent)."""
        current = await self.get(collection, key) or {}
        current.update(partial)
        return await self.put(collection, key, current)

    async def delete(self, collection: str, key: str) -> None:
        db = self._ensure_connected()
        try:
            await db.execute(
                "DELETE FROM documents WHERE collection = ? AND key = ?",
                (collection, key),
            )
            await db.commit()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"delete {collection}/{key} failed: {exc}") from exc

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any] | None = None,
        limit: int = 100,
        start_after: str | None = None,
    ) -> list[tuple[str, dict[str, Any]]]:
        """Equality-filtered scan ordered by key.

        Args:
            collection: Collection name.
            filters: Top-level field -> required value. ``None`` matches a
                missing or null field.
            limit: Page size.
            start_after: Key of the last row of the previous page.

        Returns:
            List of ``(key, document)`` pairs.
        """
        db = self._ensure_connected()
        clauses = ["collection = ?"]
        params: list[Any] = [collection]
        for field_name, value in (filters or {}).items():
            path = f"$.{field_name}"
            if value is None:
                clauses.append("json_extract(data, ?) IS NULL")
                params.append(path)
            else:
                clauses.append("json_extract(data, ?) = ?")
                params.extend([path, value])
        if start_after is not None:
            clauses.append("key > ?")
            params.append(start_after)
        params.append(limit)

        sql = (
            "SELECT key, data FROM documents WHERE "
            + " AND ".join(clauses)
            + " ORDER BY key LIMIT ?"
        )
        try:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"query {collection} failed: {exc}") from exc
        return [(row["key"], json.loads(row["data"])) for row in rows]


class IngestRepository:
    """Typed Ingest access with lane transition validation."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def create(
        self,
        owner_id: str,
        original_name: str,
        *,
        content_hash: str | None = None,
        quick_hash: str | None = None,
        size: int = 0,
        storage_path: str | None = None,
        preview_family_key: str | None = None,
        normalization_spec_version: str | None = None,
    ) -> Ingest:
        ingest = Ingest(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            original_name=original_name,
            content_hash=content_hash,
            quick_hash=quick_hash,
            size=size,
            storage_path=storage_path,
            preview_family_key=preview_family_key,
            normalization_spec_version=normalization_spec_version,
        )
        doc = await self._store.put(INGESTS, ingest.id, ingest.to_dict())
        logger.info("Registered ingest %s for %s (%s)", ingest.id, owner_id, original_name)
        return Ingest.from_dict(doc)

    async def get(self, ingest_id: str) -> Ingest | None:
        doc = await self._store.get(INGESTS, ingest_id)
        return Ingest.from_dict(doc) if doc else None

    async def require(self, ingest_id: str) -> Ingest:
        ingest = await self.get(ingest_id)
        if ingest is None:
            raise KeyError(f"Unknown ingest {ingest_id}")
        return ingest

    async def find_by_content_hash(self, owner_id: str, content_hash: str) -> Ingest | None:
        rows = await self._store.query(
            INGESTS, {"owner_id": owner_id, "content_hash": content_hash}, limit=1
        )
        return Ingest.from_dict(rows[0][1]) if rows else None

    async def list_for_owner(
        self,
        owner_id: str | None = None,
        limit: int = 100,
        start_after: str | None = None,
    ) -> list[Ingest]:
        filters = {"owner_id": owner_id} if owner_id is not None else None
        rows = await self._store.query(INGESTS, filters, limit=limit, start_after=start_after)
        return [Ingest.from_dict(doc) for _, doc in rows]

    async def update(self, ingest_id: str, **fields: Any) -> Ingest:
        """Merge plain field updates (no lane changes)."""
        for lane in ("upload_state", "analysis_state"):
            if lane in fields:
                raise ValueError(f"use transition_* to change {lane}")
        doc = await self._store.merge(INGESTS, ingest_id, fields)
        return Ingest.from_dict(doc)

    # ------------------------------------------------------------------
    # Lane transitions (FSM-validated)
    # ------------------------------------------------------------------

    async def _save_lanes(
        self, ingest: Ingest, upload: UploadState, analysis: AnalysisState, **extra: Any
    ) -> Ingest:
        partial = {
            "upload_state": upload.value,
            "analysis_state": analysis.value,
            "status": legacy_status(upload, analysis).value,
            **extra,
        }
        doc = await self._store.merge(INGESTS, ingest.id, partial)
        return Ingest.from_dict(doc)

    async def transition_upload(self, ingest_id: str, event: str, **extra: Any) -> Ingest:
        """Apply an upload-lane *event* and persist the new state.

        Raises:
            InvalidTransition: If *event* is not legal from the current state.
        """
        ingest = await self.require(ingest_id)
        fsm = create_upload_fsm(ingest.upload_state.value)
        try:
            if event not in UPLOAD_EVENTS:
                raise ValueError(f"unknown upload event {event!r}")
            fsm.send(event)
        except Exception as exc:
            raise InvalidTransition(
                ingest_id, "upload", ingest.upload_state.value, event
            ) from exc
        new_state = UploadState(fsm.current_state_value)
        logger.debug("Ingest %s upload %s -> %s", ingest_id, ingest.upload_state.value, new_state.value)
        return await self._save_lanes(ingest, new_state, ingest.analysis_state, **extra)

    async def transition_analysis(self, ingest_id: str, event: str, **extra: Any) -> Ingest:
        """Apply an analysis-lane *event* and persist the new state.

        Analysis cannot leave ``not_started`` until the upload lane is
        stored (``uploaded`` or ``verifying``); a canceled or failed upload
        therefore never advances analysis.

        Raises:
            InvalidTransition: If *event* is illegal, or the upload lane
                has not completed.
        """
        ingest = await self.require(ingest_id)
        if (
            ingest.analysis_state is AnalysisState.NOT_STARTED
            and ingest.upload_state not in UPLOAD_COMPLETED
        ):
            raise InvalidTransition(
                ingest_id,
                "analysis",
                f"{ingest.analysis_state.value} (upload {ingest.upload_state.value})",
                event,
            )
        fsm = create_analysis_fsm(ingest.analysis_state.value)
        try:
            if event not in ANALYSIS_EVENTS:
                raise ValueError(f"unknown analysis event {event!r}")
            fsm.send(event)
        except Exception as exc:
            raise InvalidTransition(
                ingest_id, "analysis", ingest.analysis_state.value, event
            ) from exc
        new_state = AnalysisState(fsm.current_state_value)
        logger.debug(
            "Ingest %s analysis %s -> %s", ingest_id, ingest.analysis_state.value, new_state.value
        )
        return await self._save_lanes(ingest, ingest.upload_state, new_state, **extra)

    async def mark_failed(self, ingest_id: str, lane: str, message: str, code: str) -> Ingest:
        """Force a lane into its failed variant after an unrecoverable error.

        Bypasses the FSM: infrastructure failures can strike from any
        state. An upload lane that never stored its bytes keeps analysis
        at ``not_started``.
        """
        ingest = await self.require(ingest_id)
        upload, analysis = ingest.upload_state, ingest.analysis_state
        if lane == "upload":
            upload = UploadState.FAILED
        elif lane == "analysis":
            analysis = AnalysisState.ERROR
        else:
            raise ValueError(f"unknown lane {lane!r}")
        logger.error("Ingest %s %s failed [%s]: %s", ingest_id, lane, code, message)
        return await self._save_lanes(ingest, upload, analysis, error=message, error_code=code)


def family_doc_id(owner_id: str, normalized_name: str) -> str:
    """Canonical family key: one family per (owner, normalized name)."""
    return f"{owner_id}__{normalized_name}"


class FamilyRepository:
    """Typed FontFamily access; writes are last-writer-wins per family id."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get(self, family_id: str) -> FontFamily | None:
        doc = await self._store.get(FAMILIES, family_id)
        return FontFamily.from_dict(doc) if doc else None

    async def put(self, family: FontFamily) -> FontFamily:
        doc = await self._store.put(FAMILIES, family.id, family.to_dict())
        return FontFamily.from_dict(doc)

    async def list_for_owner(
        self,
        owner_id: str | None = None,
        limit: int = 100,
        start_after: str | None = None,
    ) -> list[FontFamily]:
        """Families for *owner_id*; ``None`` selects families with no owner."""
        rows = await self._store.query(
            FAMILIES, {"owner_id": owner_id}, limit=limit, start_after=start_after
        )
        return [FontFamily.from_dict(doc) for _, doc in rows]
