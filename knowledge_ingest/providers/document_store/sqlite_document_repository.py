"""SQLite-backed document repository.

Persists document records and their ingestion status in a local SQLite
database (``data/knowledge.db`` by default).  Uses ``aiosqlite`` for async
I/O with one short-lived connection per operation.

State transitions are single conditional ``UPDATE`` statements, so SQLite's
write lock makes each one an atomic compare-and-set:

* ``claim``        -- ``status != 'processing'``  → processing + new lease
* ``mark_ready``   -- ``lease_token = ?``          → ready
* ``mark_error``   -- ``lease_token = ?``          → error
* ``release_stale``-- ``lease_token = ?``          → pending

``verify_lease`` reads the same predicate without changing anything; chunk
stores call it from inside their own write so a superseded worker cannot
publish chunks.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import aiosqlite
import structlog

from knowledge_ingest.interfaces.document_repository import IDocumentRepository
from knowledge_ingest.models.document import DocumentStatus, KnowledgeDocument
from knowledge_ingest.utils.errors import DocumentNotFoundError, LeaseLostError, StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS documents (
    document_id       TEXT    PRIMARY KEY,
    tenant_id         TEXT    NOT NULL,
    collection_id     TEXT    NOT NULL,
    filename          TEXT    NOT NULL,
    format            TEXT    NOT NULL,
    source_location   TEXT    NOT NULL,
    status            TEXT    NOT NULL DEFAULT 'pending'
                      CHECK (status IN ('pending', 'processing', 'ready', 'error')),
    chunk_count       INTEGER NOT NULL DEFAULT 0,
    error_message     TEXT,
    lease_token       TEXT,
    lease_acquired_at TEXT,
    created_at        TEXT    NOT NULL,
    updated_at        TEXT    NOT NULL
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_scope ON documents(tenant_id, collection_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status, lease_acquired_at);",
]

_INSERT_SQL = """\
INSERT INTO documents (
    document_id, tenant_id, collection_id, filename, format, source_location,
    status, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, 'pending', ?, ?);
"""

_SELECT_COLUMNS = (
    "document_id, tenant_id, collection_id, filename, format, source_location, "
    "status, chunk_count, error_message, lease_token, lease_acquired_at, "
    "created_at, updated_at"
)

_CLAIM_SQL = """\
UPDATE documents
SET status = 'processing', lease_token = ?, lease_acquired_at = ?,
    error_message = NULL, updated_at = ?
WHERE document_id = ? AND status != 'processing';
"""

_MARK_READY_SQL = """\
UPDATE documents
SET status = 'ready', chunk_count = ?, error_message = NULL,
    lease_token = NULL, lease_acquired_at = NULL, updated_at = ?
WHERE document_id = ? AND status = 'processing' AND lease_token = ?;
"""

_MARK_ERROR_SQL = """\
UPDATE documents
SET status = 'error', error_message = ?,
    lease_token = NULL, lease_acquired_at = NULL, updated_at = ?
WHERE document_id = ? AND status = 'processing' AND lease_token = ?;
"""

_RELEASE_STALE_SQL = """\
UPDATE documents
SET status = 'pending', lease_token = NULL, lease_acquired_at = NULL, updated_at = ?
WHERE document_id = ? AND status = 'processing' AND lease_token = ?;
"""

_VERIFY_LEASE_SQL = """\
SELECT 1 FROM documents
WHERE document_id = ? AND status = 'processing' AND lease_token = ?;
"""

# Error messages are user-visible; keep them bounded.
_MAX_ERROR_MESSAGE = 2000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(moment: datetime) -> str:
    """Format as fixed-width UTC ISO-8601 so string order equals time order."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class SQLiteDocumentRepository(IDocumentRepository):
    """SQLite-backed document records and ingestion state machine.

    Parameters
    ----------
    db_path:
        Path of the SQLite database file; parent directories are created.
    clock:
        Returns the current UTC time.  Injected by tests that need to age
        leases without sleeping.
    """

    def __init__(
        self,
        db_path: str | Path = _DEFAULT_DB_PATH,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db_path = Path(db_path)
        self._clock = clock

    async def initialize(self) -> None:
        """Create the documents table and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("PRAGMA journal_mode=WAL;")
                await db.execute(_CREATE_TABLE_SQL)
                for idx_sql in _CREATE_INDICES_SQL:
                    await db.execute(idx_sql)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Could not initialise document store: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("document_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def register_document(
        self,
        tenant_id: str,
        collection_id: str,
        filename: str,
        format: str,
        source_location: str,
        document_id: str | None = None,
    ) -> KnowledgeDocument:
        """Insert a new ``pending`` document and return it."""
        doc_id = document_id or str(uuid.uuid4())
        now = _to_iso(self._clock())
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _INSERT_SQL,
                    (doc_id, tenant_id, collection_id, filename, format, source_location, now, now),
                )
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            raise StorageError(
                message=f"Document {doc_id} already exists",
                provider_name=self.get_provider_name(),
            ) from exc
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Could not register document: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "document_registered",
            document_id=doc_id,
            tenant_id=tenant_id,
            collection_id=collection_id,
            format=format,
        )
        document = await self.get_document(doc_id)
        if document is None:
            raise StorageError(
                message=f"Document {doc_id} vanished after insert",
                provider_name=self.get_provider_name(),
            )
        return document

    async def get_document(self, document_id: str) -> KnowledgeDocument | None:
        rows = await self._fetch(
            f"SELECT {_SELECT_COLUMNS} FROM documents WHERE document_id = ?",
            (document_id,),
        )
        return self._row_to_document(rows[0]) if rows else None

    async def list_documents(
        self,
        tenant_id: str,
        collection_id: str | None = None,
    ) -> list[KnowledgeDocument]:
        """Return a tenant's documents, newest first."""
        if collection_id is None:
            rows = await self._fetch(
                f"SELECT {_SELECT_COLUMNS} FROM documents WHERE tenant_id = ? "
                "ORDER BY created_at DESC, document_id",
                (tenant_id,),
            )
        else:
            rows = await self._fetch(
                f"SELECT {_SELECT_COLUMNS} FROM documents "
                "WHERE tenant_id = ? AND collection_id = ? "
                "ORDER BY created_at DESC, document_id",
                (tenant_id, collection_id),
            )
        return [self._row_to_document(r) for r in rows]

    async def delete_document(self, document_id: str) -> bool:
        rowcount = await self._execute(
            "DELETE FROM documents WHERE document_id = ?", (document_id,)
        )
        if rowcount:
            logger.info("document_deleted", document_id=document_id)
        return rowcount > 0

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def claim(self, document_id: str) -> str | None:
        """Compare-and-set the document into ``processing`` under a new lease."""
        lease_token = uuid.uuid4().hex
        now = _to_iso(self._clock())
        rowcount = await self._execute(_CLAIM_SQL, (lease_token, now, now, document_id))
        if rowcount == 1:
            logger.info("document_claimed", document_id=document_id, lease_token=lease_token)
            return lease_token

        if await self.get_document(document_id) is None:
            raise DocumentNotFoundError(
                message=f"Document {document_id} does not exist",
                provider_name=self.get_provider_name(),
            )
        logger.info("document_claim_refused", document_id=document_id)
        return None

    async def mark_ready(self, document_id: str, lease_token: str, chunk_count: int) -> None:
        now = _to_iso(self._clock())
        rowcount = await self._execute(
            _MARK_READY_SQL, (chunk_count, now, document_id, lease_token)
        )
        if rowcount != 1:
            raise LeaseLostError(
                message=f"Lease on document {document_id} lost before it was marked ready",
                provider_name=self.get_provider_name(),
            )
        logger.info("document_ready", document_id=document_id, chunk_count=chunk_count)

    async def mark_error(self, document_id: str, lease_token: str, message: str) -> None:
        now = _to_iso(self._clock())
        rowcount = await self._execute(
            _MARK_ERROR_SQL,
            (message[:_MAX_ERROR_MESSAGE], now, document_id, lease_token),
        )
        if rowcount != 1:
            raise LeaseLostError(
                message=f"Lease on document {document_id} lost before it was marked error",
                provider_name=self.get_provider_name(),
            )
        logger.info("document_error", document_id=document_id, error=message)

    async def verify_lease(self, document_id: str, lease_token: str) -> None:
        rows = await self._fetch(_VERIFY_LEASE_SQL, (document_id, lease_token))
        if not rows:
            raise LeaseLostError(
                message=f"Lease on document {document_id} lost before its chunks were written",
                provider_name=self.get_provider_name(),
            )

    async def find_stale_processing(self, older_than_seconds: float) -> list[KnowledgeDocument]:
        """Return ``processing`` documents whose lease predates the cutoff."""
        cutoff = _to_iso(self._clock() - timedelta(seconds=older_than_seconds))
        rows = await self._fetch(
            f"SELECT {_SELECT_COLUMNS} FROM documents "
            "WHERE status = 'processing' AND lease_acquired_at <= ? "
            "ORDER BY lease_acquired_at",
            (cutoff,),
        )
        return [self._row_to_document(r) for r in rows]

    async def release_stale(self, document_id: str, lease_token: str) -> bool:
        now = _to_iso(self._clock())
        rowcount = await self._execute(_RELEASE_STALE_SQL, (now, document_id, lease_token))
        if rowcount:
            logger.warning("stale_lease_released", document_id=document_id)
        return rowcount == 1

    def get_provider_name(self) -> str:
        return "sqlite_documents"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _execute(self, sql: str, params: tuple[Any, ...]) -> int:
        """Run a single write statement and return the affected row count."""
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(sql, params)
                await db.commit()
                return cursor.rowcount
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Document store write failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[aiosqlite.Row]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, params)
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Document store read failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    @staticmethod
    def _row_to_document(row: aiosqlite.Row) -> KnowledgeDocument:
        data = dict(row)
        data["status"] = DocumentStatus(data["status"])
        return KnowledgeDocument(**data)
