"""SQLite-backed knowledge-base catalog provider.

Persists knowledge bases and their file manifests to a local SQLite
database (default ``data/catalog.db``).  Uses ``aiosqlite`` for async I/O.

Uniqueness of knowledge-base names is enforced by a ``UNIQUE`` constraint,
so two concurrent creates with the same name have exactly one winner.
Counter updates run inside ``BEGIN IMMEDIATE`` transactions with SQL-side
arithmetic, so concurrent appends to one knowledge base cannot lose an
update.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import structlog

from src.interfaces.catalog_provider import ICatalogProvider
from src.models.knowledge_base import (
    CatalogStats,
    EducationalMetadata,
    FileManifest,
    KnowledgeBase,
    KnowledgeBaseDraft,
)
from src.utils.errors import CatalogError, DuplicateNameError, NotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/catalog.db")

# Seconds a writer waits for another writer's lock before failing.
_BUSY_TIMEOUT = 30.0

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS knowledge_bases (
    id                 TEXT    PRIMARY KEY,
    name               TEXT    NOT NULL UNIQUE,
    description        TEXT    NOT NULL DEFAULT '',
    educational_board  TEXT    NOT NULL,
    subject            TEXT    NOT NULL,
    level              TEXT    NOT NULL,
    total_chunks       INTEGER NOT NULL DEFAULT 0,
    total_tokens       INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT    NOT NULL,
    updated_at         TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS kb_files (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    knowledge_base_id  TEXT    NOT NULL
                               REFERENCES knowledge_bases(id) ON DELETE CASCADE,
    storage_filename   TEXT    NOT NULL,
    original_filename  TEXT    NOT NULL,
    size_bytes         INTEGER NOT NULL DEFAULT 0,
    uploaded_at        TEXT    NOT NULL,
    chunk_count        INTEGER NOT NULL DEFAULT 0,
    token_count        INTEGER NOT NULL DEFAULT 0,
    UNIQUE(knowledge_base_id, original_filename)
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_kb_updated ON knowledge_bases(updated_at);",
    "CREATE INDEX IF NOT EXISTS idx_kb_files_kb ON kb_files(knowledge_base_id);",
]

_INSERT_KB_SQL = """\
INSERT INTO knowledge_bases
    (id, name, description, educational_board, subject, level,
     total_chunks, total_tokens, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_INSERT_FILE_SQL = """\
INSERT INTO kb_files
    (knowledge_base_id, storage_filename, original_filename, size_bytes,
     uploaded_at, chunk_count, token_count)
VALUES (?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_FILE_SQL = """\
SELECT storage_filename, original_filename, size_bytes, uploaded_at,
       chunk_count, token_count
FROM kb_files
WHERE knowledge_base_id = ? AND original_filename = ?;
"""

_ADJUST_COUNTERS_SQL = """\
UPDATE knowledge_bases
SET total_chunks = total_chunks + ?,
    total_tokens = total_tokens + ?,
    updated_at   = ?
WHERE id = ?;
"""

_SEARCH_CLAUSE = " WHERE name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\'"


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _like_pattern(search: str) -> str:
    escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SQLiteCatalogProvider(ICatalogProvider):
    """SQLite-backed knowledge-base catalog."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        # isolation_level=None: transactions are opened explicitly with
        # BEGIN IMMEDIATE so the write lock is taken before any reads.
        async with aiosqlite.connect(
            str(self._db_path), timeout=_BUSY_TIMEOUT, isolation_level=None
        ) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON;")
            yield db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE;")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK;")
                raise
            await db.execute("COMMIT;")

    async def initialize(self) -> None:
        """Create the catalog tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
        logger.info("catalog_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        knowledge_base_id: str,
        draft: KnowledgeBaseDraft,
        first_file: FileManifest | None = None,
    ) -> KnowledgeBase:
        now = _now_iso()
        try:
            async with self._transaction() as db:
                await db.execute(
                    _INSERT_KB_SQL,
                    (
                        knowledge_base_id,
                        draft.name,
                        draft.description,
                        draft.metadata.educational_board,
                        draft.metadata.subject,
                        draft.metadata.level,
                        0,
                        0,
                        now,
                        now,
                    ),
                )
                if first_file is not None:
                    await self._insert_file(db, knowledge_base_id, first_file)
        except aiosqlite.IntegrityError as exc:
            if "knowledge_bases.name" in str(exc):
                raise DuplicateNameError(
                    message=f"A knowledge base named '{draft.name}' already exists",
                    provider_name=self.get_provider_name(),
                ) from exc
            raise CatalogError(
                message=f"Could not create knowledge base: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "knowledge_base_created",
            knowledge_base_id=knowledge_base_id,
            name=draft.name,
            with_file=first_file is not None,
        )
        return await self._require(knowledge_base_id)

    async def update(
        self,
        knowledge_base_id: str,
        name: str | None = None,
        description: str | None = None,
    ) -> KnowledgeBase | None:
        assignments: list[str] = []
        params: list[object] = []
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        if description is not None:
            assignments.append("description = ?")
            params.append(description)
        if not assignments:
            return await self.get(knowledge_base_id)

        assignments.append("updated_at = ?")
        params.extend([_now_iso(), knowledge_base_id])
        try:
            async with self._transaction() as db:
                cursor = await db.execute(
                    f"UPDATE knowledge_bases SET {', '.join(assignments)} WHERE id = ?;",
                    params,
                )
                updated = cursor.rowcount
        except aiosqlite.IntegrityError as exc:
            raise DuplicateNameError(
                message=f"A knowledge base named '{name}' already exists",
                provider_name=self.get_provider_name(),
            ) from exc

        if not updated:
            return None
        return await self.get(knowledge_base_id)

    async def append_file(
        self,
        knowledge_base_id: str,
        manifest: FileManifest,
    ) -> tuple[KnowledgeBase, FileManifest | None]:
        async with self._transaction() as db:
            await self._ensure_exists(db, knowledge_base_id)
            previous = await self._fetch_file(db, knowledge_base_id, manifest.original_filename)
            if previous is not None:
                await db.execute(
                    "DELETE FROM kb_files WHERE knowledge_base_id = ? AND original_filename = ?;",
                    (knowledge_base_id, manifest.original_filename),
                )
            await self._insert_file(db, knowledge_base_id, manifest, previous)

        logger.info(
            "knowledge_base_file_appended",
            knowledge_base_id=knowledge_base_id,
            filename=manifest.original_filename,
            chunk_count=manifest.chunk_count,
            replaced=previous is not None,
        )
        return await self._require(knowledge_base_id), previous

    async def remove_file(self, knowledge_base_id: str, filename: str) -> KnowledgeBase:
        async with self._transaction() as db:
            await self._ensure_exists(db, knowledge_base_id)
            previous = await self._fetch_file(db, knowledge_base_id, filename)
            if previous is None:
                raise NotFoundError(
                    message=f"File '{filename}' not found in knowledge base {knowledge_base_id}",
                    provider_name=self.get_provider_name(),
                )
            await db.execute(
                "DELETE FROM kb_files WHERE knowledge_base_id = ? AND original_filename = ?;",
                (knowledge_base_id, filename),
            )
            await db.execute(
                _ADJUST_COUNTERS_SQL,
                (-previous.chunk_count, -previous.token_count, _now_iso(), knowledge_base_id),
            )

        logger.info(
            "knowledge_base_file_removed",
            knowledge_base_id=knowledge_base_id,
            filename=filename,
        )
        return await self._require(knowledge_base_id)

    async def delete(self, knowledge_base_id: str) -> bool:
        async with self._transaction() as db:
            cursor = await db.execute(
                "DELETE FROM knowledge_bases WHERE id = ?;", (knowledge_base_id,)
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("knowledge_base_deleted", knowledge_base_id=knowledge_base_id)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, knowledge_base_id: str) -> KnowledgeBase | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT * FROM knowledge_bases WHERE id = ?;", (knowledge_base_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            files = await self._load_files(db, [knowledge_base_id])
        return self._row_to_knowledge_base(row, files.get(knowledge_base_id, []))

    async def get_by_name(self, name: str) -> KnowledgeBase | None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT id FROM knowledge_bases WHERE name = ?;", (name,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return await self.get(row["id"])

    async def list_knowledge_bases(
        self,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[KnowledgeBase]:
        sql = "SELECT * FROM knowledge_bases"
        params: list[object] = []
        if search:
            pattern = _like_pattern(search)
            sql += _SEARCH_CLAUSE
            params.extend([pattern, pattern])
        sql += " ORDER BY updated_at DESC, name ASC LIMIT ? OFFSET ?;"
        params.extend([limit, offset])

        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
            files = await self._load_files(db, [r["id"] for r in rows])
        return [self._row_to_knowledge_base(r, files.get(r["id"], [])) for r in rows]

    async def count_knowledge_bases(self, search: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM knowledge_bases"
        params: list[object] = []
        if search:
            pattern = _like_pattern(search)
            sql += _SEARCH_CLAUSE
            params.extend([pattern, pattern])
        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            row = await cursor.fetchone()
        return int(row["n"])

    async def stats(self, recent_limit: int = 5) -> CatalogStats:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT COUNT(*) AS kbs, "
                "COALESCE(SUM(total_chunks), 0) AS chunks, "
                "COALESCE(SUM(total_tokens), 0) AS tokens "
                "FROM knowledge_bases;"
            )
            totals = dict(await cursor.fetchone())
            cursor = await db.execute("SELECT COUNT(*) AS files FROM kb_files;")
            total_files = int((await cursor.fetchone())["files"])

        recent = await self.list_knowledge_bases(limit=recent_limit)
        kb_count = int(totals["kbs"])
        return CatalogStats(
            total_knowledge_bases=kb_count,
            total_files=total_files,
            total_chunks=int(totals["chunks"]),
            total_tokens=int(totals["tokens"]),
            avg_files_per_knowledge_base=round(total_files / kb_count, 2) if kb_count else 0.0,
            avg_chunks_per_knowledge_base=(
                round(int(totals["chunks"]) / kb_count, 2) if kb_count else 0.0
            ),
            recent=recent,
        )

    def get_provider_name(self) -> str:
        return "sqlite_catalog"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _require(self, knowledge_base_id: str) -> KnowledgeBase:
        knowledge_base = await self.get(knowledge_base_id)
        if knowledge_base is None:
            raise NotFoundError(
                message=f"Knowledge base {knowledge_base_id} not found",
                provider_name=self.get_provider_name(),
            )
        return knowledge_base

    async def _ensure_exists(self, db: aiosqlite.Connection, knowledge_base_id: str) -> None:
        cursor = await db.execute(
            "SELECT 1 FROM knowledge_bases WHERE id = ?;", (knowledge_base_id,)
        )
        if await cursor.fetchone() is None:
            raise NotFoundError(
                message=f"Knowledge base {knowledge_base_id} not found",
                provider_name=self.get_provider_name(),
            )

    @staticmethod
    async def _fetch_file(
        db: aiosqlite.Connection, knowledge_base_id: str, filename: str
    ) -> FileManifest | None:
        cursor = await db.execute(_SELECT_FILE_SQL, (knowledge_base_id, filename))
        row = await cursor.fetchone()
        return FileManifest.model_validate(dict(row)) if row is not None else None

    @staticmethod
    async def _insert_file(
        db: aiosqlite.Connection,
        knowledge_base_id: str,
        manifest: FileManifest,
        previous: FileManifest | None = None,
    ) -> None:
        await db.execute(
            _INSERT_FILE_SQL,
            (
                knowledge_base_id,
                manifest.storage_filename,
                manifest.original_filename,
                manifest.size_bytes,
                manifest.uploaded_at.isoformat(),
                manifest.chunk_count,
                manifest.token_count,
            ),
        )
        chunk_delta = manifest.chunk_count - (previous.chunk_count if previous else 0)
        token_delta = manifest.token_count - (previous.token_count if previous else 0)
        await db.execute(
            _ADJUST_COUNTERS_SQL,
            (chunk_delta, token_delta, _now_iso(), knowledge_base_id),
        )

    @staticmethod
    async def _load_files(
        db: aiosqlite.Connection, knowledge_base_ids: list[str]
    ) -> dict[str, list[FileManifest]]:
        if not knowledge_base_ids:
            return {}
        placeholders = ", ".join("?" for _ in knowledge_base_ids)
        cursor = await db.execute(
            "SELECT knowledge_base_id, storage_filename, original_filename, size_bytes, "
            "uploaded_at, chunk_count, token_count "
            f"FROM kb_files WHERE knowledge_base_id IN ({placeholders}) "
            "ORDER BY uploaded_at ASC, id ASC;",
            knowledge_base_ids,
        )
        files: dict[str, list[FileManifest]] = {}
        for row in await cursor.fetchall():
            data = dict(row)
            kb_id = data.pop("knowledge_base_id")
            files.setdefault(kb_id, []).append(FileManifest.model_validate(data))
        return files

    @staticmethod
    def _row_to_knowledge_base(row: aiosqlite.Row, files: list[FileManifest]) -> KnowledgeBase:
        return KnowledgeBase(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            metadata=EducationalMetadata(
                educational_board=row["educational_board"],
                subject=row["subject"],
                level=row["level"],
            ),
            files=files,
            total_chunks=row["total_chunks"],
            total_tokens=row["total_tokens"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
