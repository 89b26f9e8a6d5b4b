"""SQLite-backed document store.

Persists documents to a local SQLite database using ``aiosqlite``.  The
chunk list, metadata, source descriptor and tags are JSON columns on the
``documents`` row, so replacing a document's chunks is one ``UPDATE``:
there is no window in which a reader sees half the old and half the new
chunks.

Lexical search uses an FTS5 table kept in sync by triggers.  FTS5's
``bm25()`` is lower-is-better and unbounded; it is mapped to ``(0, 1)``
with ``s / (1 + s)`` where ``s = -bm25``.

Every stage write is a guarded ``UPDATE ... WHERE owner_id = ? AND
document_id = ? [AND processing_status IN (...)]``.  A zero row count is
turned into NotFoundError or ConflictError after a follow-up existence
check.
"""

from __future__ import annotations

import json
from collections.abc import Collection
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from memoria.interfaces.document_store import IDocumentStore
from memoria.models.document import (
    Chunk,
    ContentType,
    Document,
    DocumentMetadata,
    ProcessingStatus,
    as_utc,
    utc_now,
)
from memoria.models.search import DateRange
from memoria.providers.store.memory_store import tokenize
from memoria.utils.errors import ConflictError, NotFoundError, StoreError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/memoria.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    document_id       TEXT PRIMARY KEY,
    owner_id          TEXT    NOT NULL,
    title             TEXT    NOT NULL,
    content           TEXT    NOT NULL DEFAULT '',
    content_type      TEXT    NOT NULL,
    source_json       TEXT    NOT NULL,
    metadata_json     TEXT    NOT NULL,
    chunks_json       TEXT    NOT NULL DEFAULT '[]',
    tags_json         TEXT    NOT NULL DEFAULT '[]',
    is_processed      INTEGER NOT NULL DEFAULT 0,
    processing_status TEXT    NOT NULL,
    processing_error  TEXT,
    created_at        TEXT    NOT NULL,
    updated_at        TEXT    NOT NULL,
    indexed_at        TEXT,
    last_accessed_at  TEXT
);
"""

_CREATE_FTS_SQL = """\
CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    document_id UNINDEXED,
    title,
    content,
    tokenize = 'unicode61'
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_documents_owner_type ON documents(owner_id, content_type);",
]

_CREATE_TRIGGERS_SQL = [
    """\
CREATE TRIGGER IF NOT EXISTS documents_fts_insert AFTER INSERT ON documents BEGIN
    INSERT INTO documents_fts (document_id, title, content)
    VALUES (new.document_id, new.title, new.content);
END;
""",
    """\
CREATE TRIGGER IF NOT EXISTS documents_fts_delete AFTER DELETE ON documents BEGIN
    DELETE FROM documents_fts WHERE document_id = old.document_id;
END;
""",
    """\
CREATE TRIGGER IF NOT EXISTS documents_fts_update AFTER UPDATE OF title, content ON documents BEGIN
    DELETE FROM documents_fts WHERE document_id = old.document_id;
    INSERT INTO documents_fts (document_id, title, content)
    VALUES (new.document_id, new.title, new.content);
END;
""",
]

_INSERT_SQL = """\
INSERT INTO documents (
    document_id, owner_id, title, content, content_type, source_json,
    metadata_json, chunks_json, tags_json, is_processed, processing_status,
    processing_error, created_at, updated_at, indexed_at, last_accessed_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_COLUMNS = (
    "d.document_id, d.owner_id, d.title, d.content, d.content_type, d.source_json, "
    "d.metadata_json, d.chunks_json, d.tags_json, d.is_processed, d.processing_status, "
    "d.processing_error, d.created_at, d.updated_at, d.indexed_at, d.last_accessed_at"
)

_SELECT_ONE_SQL = f"SELECT {_SELECT_COLUMNS} FROM documents d WHERE d.owner_id = ? AND d.document_id = ?;"


def _iso(moment: datetime) -> str:
    """Normalise to an aware UTC ISO string so text comparison orders correctly."""
    return as_utc(moment).isoformat()


def _row_to_document(row: aiosqlite.Row) -> Document:
    return Document.model_validate(
        {
            "document_id": row["document_id"],
            "owner_id": row["owner_id"],
            "title": row["title"],
            "content": row["content"],
            "content_type": row["content_type"],
            "source": json.loads(row["source_json"]),
            "metadata": json.loads(row["metadata_json"]),
            "chunks": json.loads(row["chunks_json"]),
            "tags": json.loads(row["tags_json"]),
            "is_processed": bool(row["is_processed"]),
            "processing_status": row["processing_status"],
            "processing_error": row["processing_error"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "indexed_at": row["indexed_at"],
            "last_accessed_at": row["last_accessed_at"],
        }
    )


def _filter_clause(
    content_type: ContentType | None,
    date_range: DateRange | None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if content_type is not None:
        clauses.append("d.content_type = ?")
        params.append(content_type.value)
    if date_range is not None and date_range.start is not None:
        clauses.append("d.created_at >= ?")
        params.append(_iso(date_range.start))
    if date_range is not None and date_range.end is not None:
        clauses.append("d.created_at <= ?")
        params.append(_iso(date_range.end))
    sql = "".join(f" AND {c}" for c in clauses)
    return sql, params


def _fts_query(query: str) -> str:
    """OR together quoted terms so user punctuation never hits FTS5 syntax."""
    terms = dict.fromkeys(tokenize(query))
    return " OR ".join(f'"{t}"' for t in terms)


class SQLiteDocumentStore(IDocumentStore):
    """aiosqlite-backed :class:`IDocumentStore` with FTS5 lexical search."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create tables, FTS index, indices and triggers if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("PRAGMA journal_mode=WAL;")
                await db.execute(_CREATE_TABLE_SQL)
                await db.execute(_CREATE_FTS_SQL)
                for sql in (*_CREATE_INDICES_SQL, *_CREATE_TRIGGERS_SQL):
                    await db.execute(sql)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"Failed to initialise document store: {exc}", provider_name="sqlite") from exc
        logger.info("document_store_initialized", path=str(self._db_path))

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(str(self._db_path))

    async def _fetch(self, sql: str, params: list[Any] | tuple[Any, ...]) -> list[aiosqlite.Row]:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, params)
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StoreError(f"Query failed: {exc}", provider_name="sqlite") from exc

    async def _guarded_update(
        self,
        owner_id: str,
        document_id: str,
        assignments: dict[str, Any],
        allowed: Collection[ProcessingStatus] | None,
        conflict: str,
    ) -> Document:
        """Run one guarded UPDATE and return the fresh row."""
        assignments = {**assignments, "updated_at": _iso(utc_now())}
        set_sql = ", ".join(f"{column} = ?" for column in assignments)
        params: list[Any] = [*assignments.values(), owner_id, document_id]
        sql = f"UPDATE documents SET {set_sql} WHERE owner_id = ? AND document_id = ?"
        if allowed is not None:
            statuses = [s.value for s in allowed]
            sql += f" AND processing_status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)

        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, params)
                updated = cursor.rowcount
                await db.commit()
                cursor = await db.execute(_SELECT_ONE_SQL, (owner_id, document_id))
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreError(f"Update failed: {exc}", provider_name="sqlite") from exc

        if row is None:
            raise NotFoundError(f"Document {document_id} not found")
        if updated == 0:
            raise ConflictError(f"{conflict} (document {document_id} is {row['processing_status']})")
        return _row_to_document(row)

    # -- CRUD ----------------------------------------------------------------

    async def create_document(self, document: Document) -> Document:
        params = (
            document.document_id,
            document.owner_id,
            document.title,
            document.content,
            document.content_type.value,
            document.source.model_dump_json(),
            document.metadata.model_dump_json(),
            json.dumps([c.model_dump() for c in document.chunks]),
            json.dumps(document.tags),
            int(document.is_processed),
            document.processing_status.value,
            document.processing_error,
            _iso(document.created_at),
            _iso(document.updated_at),
            _iso(document.indexed_at) if document.indexed_at else None,
            _iso(document.last_accessed_at) if document.last_accessed_at else None,
        )
        try:
            async with self._connect() as db:
                await db.execute(_INSERT_SQL, params)
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(f"Document {document.document_id} already exists") from exc
        except aiosqlite.Error as exc:
            raise StoreError(f"Insert failed: {exc}", provider_name="sqlite") from exc
        logger.debug("document_created", document_id=document.document_id, store="sqlite")
        return document

    async def get_document(self, owner_id: str, document_id: str) -> Document:
        rows = await self._fetch(_SELECT_ONE_SQL, (owner_id, document_id))
        if not rows:
            raise NotFoundError(f"Document {document_id} not found")
        return _row_to_document(rows[0])

    async def get_documents(self, owner_id: str, document_ids: Collection[str]) -> dict[str, Document]:
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = await self._fetch(
            f"SELECT {_SELECT_COLUMNS} FROM documents d "
            f"WHERE d.owner_id = ? AND d.document_id IN ({placeholders})",
            [owner_id, *ids],
        )
        return {row["document_id"]: _row_to_document(row) for row in rows}

    async def list_documents(
        self,
        owner_id: str,
        content_type: ContentType | None = None,
        tags: Collection[str] | None = None,
        date_range: DateRange | None = None,
        limit: int = 50,
        processed_only: bool = False,
    ) -> list[Document]:
        filter_sql, params = _filter_clause(content_type, date_range)
        if processed_only:
            filter_sql = f" AND d.is_processed = 1{filter_sql}"
        wanted_tags = set(tags or ())
        # Tags live in a JSON column; filter after the fetch when requested.
        sql_limit = -1 if wanted_tags else limit
        rows = await self._fetch(
            f"SELECT {_SELECT_COLUMNS} FROM documents d WHERE d.owner_id = ?{filter_sql} "
            "ORDER BY d.created_at DESC LIMIT ?",
            [owner_id, *params, sql_limit],
        )
        documents = [_row_to_document(row) for row in rows]
        if wanted_tags:
            documents = [d for d in documents if wanted_tags.intersection(d.tags)]
        return documents[:limit]

    async def delete_document(self, owner_id: str, document_id: str) -> None:
        try:
            async with self._connect() as db:
                cursor = await db.execute(
                    "DELETE FROM documents WHERE owner_id = ? AND document_id = ?",
                    (owner_id, document_id),
                )
                deleted = cursor.rowcount
                await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"Delete failed: {exc}", provider_name="sqlite") from exc
        if deleted == 0:
            raise NotFoundError(f"Document {document_id} not found")

    # -- Guarded stage writes ------------------------------------------------

    async def transition_status(
        self,
        owner_id: str,
        document_id: str,
        expected: Collection[ProcessingStatus],
        new_status: ProcessingStatus,
    ) -> Document:
        assignments: dict[str, Any] = {
            "processing_status": new_status.value,
            "processing_error": None,
        }
        if new_status != ProcessingStatus.COMPLETED:
            assignments["is_processed"] = 0
        return await self._guarded_update(
            owner_id,
            document_id,
            assignments,
            allowed=expected,
            conflict=f"Cannot move to {new_status.value}",
        )

    async def save_extraction(
        self,
        owner_id: str,
        document_id: str,
        content: str,
        metadata: DocumentMetadata,
        title: str | None = None,
    ) -> Document:
        assignments: dict[str, Any] = {
            "content": content,
            "metadata_json": metadata.model_dump_json(),
        }
        if title:
            assignments["title"] = title
        return await self._guarded_update(
            owner_id,
            document_id,
            assignments,
            allowed=[ProcessingStatus.PROCESSING],
            conflict="Extraction can only be saved while processing",
        )

    async def replace_chunks(
        self,
        owner_id: str,
        document_id: str,
        chunks: list[Chunk],
        indexed_at: datetime,
    ) -> Document:
        return await self._guarded_update(
            owner_id,
            document_id,
            {
                "chunks_json": json.dumps([c.model_dump() for c in chunks]),
                "processing_status": ProcessingStatus.COMPLETED.value,
                "processing_error": None,
                "is_processed": 1,
                "indexed_at": _iso(indexed_at),
            },
            allowed=[ProcessingStatus.PENDING, ProcessingStatus.PROCESSING, ProcessingStatus.COMPLETED],
            conflict="Cannot index a failed document",
        )

    async def mark_failed(self, owner_id: str, document_id: str, error: str) -> Document:
        return await self._guarded_update(
            owner_id,
            document_id,
            {
                "processing_status": ProcessingStatus.FAILED.value,
                "processing_error": error or "Processing failed",
                "is_processed": 0,
            },
            allowed=None,
            conflict="",
        )

    async def touch_documents(self, owner_id: str, document_ids: Collection[str], at: datetime) -> None:
        ids = list(dict.fromkeys(document_ids))
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        try:
            async with self._connect() as db:
                await db.execute(
                    f"UPDATE documents SET last_accessed_at = ? "
                    f"WHERE owner_id = ? AND document_id IN ({placeholders})",
                    [_iso(at), owner_id, *ids],
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"Access-time update failed: {exc}", provider_name="sqlite") from exc

    # -- Retrieval primitives ------------------------------------------------

    async def full_text_search(
        self,
        owner_id: str,
        query: str,
        content_type: ContentType | None = None,
        date_range: DateRange | None = None,
        limit: int = 20,
    ) -> list[tuple[Document, float]]:
        match = _fts_query(query)
        if not match:
            return []
        filter_sql, params = _filter_clause(content_type, date_range)
        rows = await self._fetch(
            f"SELECT {_SELECT_COLUMNS}, bm25(documents_fts) AS rank "
            "FROM documents_fts JOIN documents d ON d.document_id = documents_fts.document_id "
            f"WHERE documents_fts MATCH ? AND d.owner_id = ? AND d.is_processed = 1{filter_sql} "
            "ORDER BY rank LIMIT ?",
            [match, owner_id, *params, limit],
        )
        results: list[tuple[Document, float]] = []
        for row in rows:
            # bm25 can round to ~0 for terms present in every document.
            strength = max(-float(row["rank"]), 1e-6)
            results.append((_row_to_document(row), strength / (1.0 + strength)))
        return results

    async def scan_chunks(
        self,
        owner_id: str,
        content_type: ContentType | None = None,
        date_range: DateRange | None = None,
    ) -> list[tuple[Document, Chunk]]:
        filter_sql, params = _filter_clause(content_type, date_range)
        rows = await self._fetch(
            f"SELECT {_SELECT_COLUMNS} FROM documents d "
            f"WHERE d.owner_id = ? AND d.is_processed = 1{filter_sql}",
            [owner_id, *params],
        )
        pairs: list[tuple[Document, Chunk]] = []
        for row in rows:
            document = _row_to_document(row)
            pairs.extend((document, chunk) for chunk in document.chunks)
        return pairs
