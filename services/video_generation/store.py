"""
Generation Store - durable record of every generation.

Every mutation is a single guarded update keyed by job id: the update only
applies while the stored status is one of the new status's allowed
predecessors, and progress only ever grows. Concurrent writers (two tabs
polling the same job) therefore converge without locks and a record never
leaves a terminal state.

Backends:
- PostgresGenerationStore: asyncpg pool (DATABASE_URL)
- SqliteGenerationStore:   single database file under STATE_DIR (default)
- InMemoryGenerationStore: process-local, for embedding and tests

Usage:
    store = await PostgresGenerationStore.connect(config.database)
    await store.create(record)
    updated = await store.update(job_id, status=GenerationStatus.PROCESSING, progress=50)
"""

import asyncio
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import asyncpg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import DatabaseConfig

from .models import ACTIVE_STATUSES, GenerationRecord, GenerationStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS generations (
    id TEXT PRIMARY KEY,
    prompt TEXT NOT NULL,
    params_json JSONB NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('queued', 'processing', 'completed', 'failed', 'cancelled')),
    video_path TEXT,
    thumbnail_path TEXT,
    error TEXT,
    created_at BIGINT NOT NULL,
    completed_at BIGINT,
    progress INTEGER NOT NULL DEFAULT 0,
    estimated_time INTEGER,
    execution_time INTEGER,
    delay_time INTEGER
);

CREATE INDEX IF NOT EXISTS idx_generations_status ON generations (status);
CREATE INDEX IF NOT EXISTS idx_generations_created_at ON generations (created_at DESC);
"""

# Record attribute -> column, for fields the coordinator may update
UPDATABLE_COLUMNS = {
    "video_url": "video_path",
    "thumbnail_url": "thumbnail_path",
    "error": "error",
    "completed_at": "completed_at",
    "execution_time": "execution_time",
    "delay_time": "delay_time",
}


def allowed_current_statuses(status: Optional[GenerationStatus]) -> frozenset[GenerationStatus]:
    """Stored statuses from which an update to `status` may apply."""
    if status is None:
        return ACTIVE_STATUSES
    return status.predecessors()


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the search term matches literally (with ESCAPE '\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class GenerationStore(ABC):
    """Access contract for persisted generation records."""

    @abstractmethod
    async def create(self, record: GenerationRecord) -> None:
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[GenerationRecord]:
        ...

    @abstractmethod
    async def update(
        self,
        job_id: str,
        status: Optional[GenerationStatus] = None,
        progress: Optional[int] = None,
        **fields: Any,
    ) -> Optional[GenerationRecord]:
        """
        Atomically apply changes to an active record.

        Returns the updated record, or None when the record is missing or its
        current status does not allow the transition (e.g. it is terminal).
        """
        ...

    @abstractmethod
    async def set_thumbnail(self, job_id: str, thumbnail_url: str) -> Optional[GenerationRecord]:
        """
        Attach a regenerated thumbnail to a completed record.

        Only the thumbnail path changes; status and every other field stay as
        stored. Returns None unless the record exists and is completed.
        """
        ...

    @abstractmethod
    async def list(
        self,
        query: Optional[str] = None,
        status: Optional[GenerationStatus] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> list[GenerationRecord]:
        """Records newest first, optionally filtered."""
        ...

    @abstractmethod
    async def latest_active(self) -> Optional[GenerationRecord]:
        """Most recently created queued/processing record (ties: greatest id)."""
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        ...

    @abstractmethod
    async def purge(self) -> int:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        pass


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - set(UPDATABLE_COLUMNS)
    if unknown:
        raise TypeError(f"Cannot update field(s): {', '.join(sorted(unknown))}")


def _record_from_row(row: Any) -> GenerationRecord:
    params = row["params_json"]
    if isinstance(params, str):
        params = json.loads(params)
    return GenerationRecord(
        id=row["id"],
        prompt=row["prompt"],
        params=params,
        status=GenerationStatus(row["status"]),
        created_at=row["created_at"],
        progress=row["progress"] or 0,
        estimated_time=row["estimated_time"],
        video_url=row["video_path"],
        thumbnail_url=row["thumbnail_path"],
        error=row["error"],
        completed_at=row["completed_at"],
        execution_time=row["execution_time"],
        delay_time=row["delay_time"],
    )


class PostgresGenerationStore(GenerationStore):
    """Generation records in PostgreSQL via an asyncpg pool."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    @classmethod
    @retry(
        retry=retry_if_exception_type((OSError, asyncpg.CannotConnectNowError)),
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def connect(cls, config: DatabaseConfig) -> "PostgresGenerationStore":
        """Open a pool (retrying while the database starts up) and ensure the schema."""
        db_pool = await asyncpg.create_pool(
            config.url,
            min_size=config.pool_min_size,
            max_size=config.pool_max_size,
        )
        store = cls(db_pool)
        await store.ensure_schema()
        logger.info("Connected to generation database")
        return store

    async def ensure_schema(self) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(CREATE_TABLES_SQL)

    async def close(self) -> None:
        await self.db_pool.close()

    async def create(self, record: GenerationRecord) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO generations (
                    id, prompt, params_json, status, video_path, thumbnail_path,
                    error, created_at, completed_at, progress, estimated_time
                ) VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7, $8, $9, $10, $11)
                """,
                record.id,
                record.prompt,
                json.dumps(record.params),
                record.status.value,
                record.video_url,
                record.thumbnail_url,
                record.error,
                record.created_at,
                record.completed_at,
                record.progress,
                record.estimated_time,
            )
        logger.info(f"Created generation {record.id} ({record.status.value})")

    async def get(self, job_id: str) -> Optional[GenerationRecord]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM generations WHERE id = $1", job_id)
        return _record_from_row(row) if row else None

    async def update(
        self,
        job_id: str,
        status: Optional[GenerationStatus] = None,
        progress: Optional[int] = None,
        **fields: Any,
    ) -> Optional[GenerationRecord]:
        _check_fields(fields)

        assignments: list[str] = []
        values: list[Any] = [job_id]

        if status is not None:
            values.append(status.value)
            assignments.append(f"status = ${len(values)}")
        if progress is not None:
            values.append(progress)
            assignments.append(f"progress = GREATEST(progress, ${len(values)})")
        for attr, value in fields.items():
            values.append(value)
            assignments.append(f"{UPDATABLE_COLUMNS[attr]} = ${len(values)}")

        if not assignments:
            return await self.get(job_id)

        values.append([s.value for s in allowed_current_statuses(status)])
        query = (
            f"UPDATE generations SET {', '.join(assignments)} "
            f"WHERE id = $1 AND status = ANY(${len(values)}::text[]) "
            f"RETURNING *"
        )

        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(query, *values)

        if row is None:
            logger.debug(f"Update to {job_id} rejected by status guard")
            return None
        return _record_from_row(row)

    async def set_thumbnail(self, job_id: str, thumbnail_url: str) -> Optional[GenerationRecord]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE generations SET thumbnail_path = $2
                WHERE id = $1 AND status = 'completed'
                RETURNING *
                """,
                job_id,
                thumbnail_url,
            )
        return _record_from_row(row) if row else None

    async def list(
        self,
        query: Optional[str] = None,
        status: Optional[GenerationStatus] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> list[GenerationRecord]:
        sql = "SELECT * FROM generations WHERE 1=1"
        params: list[Any] = []

        if query:
            params.append(f"%{escape_like(query)}%")
            sql += f" AND prompt ILIKE ${len(params)} ESCAPE '\\'"
        if status:
            params.append(status.value)
            sql += f" AND status = ${len(params)}"
        if start is not None:
            params.append(start)
            sql += f" AND created_at >= ${len(params)}"
        if end is not None:
            params.append(end)
            sql += f" AND created_at <= ${len(params)}"

        sql += " ORDER BY created_at DESC, id DESC"

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(sql, *params)
        return [_record_from_row(row) for row in rows]

    async def latest_active(self) -> Optional[GenerationRecord]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM generations
                WHERE status IN ('queued', 'processing')
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """
            )
        return _record_from_row(row) if row else None

    async def delete(self, job_id: str) -> bool:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("DELETE FROM generations WHERE id = $1", job_id)
        deleted = result.endswith(" 1")
        if deleted:
            logger.info(f"Deleted generation {job_id}")
        return deleted

    async def purge(self) -> int:
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("DELETE FROM generations")
        count = int(result.split()[-1])
        logger.info(f"Purged {count} generation(s)")
        return count

    async def ping(self) -> bool:
        try:
            async with self.db_pool.acquire() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"Database health check failed: {e}")
            return False


class SqliteGenerationStore(GenerationStore):
    """
    Generation records in a local SQLite file.

    The default when no DATABASE_URL is configured, so history and the CLI's
    in-flight job survive restarts. Each operation opens its own connection
    on a worker thread; the status guard lives in the UPDATE's WHERE clause,
    so separate processes sharing the file converge the same way Postgres
    writers do.
    """

    def __init__(self, db_path: Path, timeout: float = 10.0):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        connection = self._connect()
        try:
            connection.executescript(CREATE_TABLES_SQL)
        finally:
            connection.close()
        logger.info(f"Using generation database {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        connection.row_factory = sqlite3.Row
        return connection

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[GenerationRecord]:
        connection = self._connect()
        try:
            row = connection.execute(sql, params).fetchone()
        finally:
            connection.close()
        return _record_from_row(row) if row else None

    def _execute(self, sql: str, params: tuple = ()) -> int:
        connection = self._connect()
        try:
            with connection:
                return connection.execute(sql, params).rowcount
        finally:
            connection.close()

    def _guarded_update(
        self,
        job_id: str,
        assignments: list[str],
        values: list[Any],
        allowed: list[str],
    ) -> Optional[GenerationRecord]:
        placeholders = ", ".join("?" for _ in allowed)
        sql = (
            f"UPDATE generations SET {', '.join(assignments)} "
            f"WHERE id = ? AND status IN ({placeholders})"
        )
        connection = self._connect()
        try:
            with connection:
                # Write lock first so the read-back sees exactly this update
                connection.execute("BEGIN IMMEDIATE")
                changed = connection.execute(sql, (*values, job_id, *allowed)).rowcount
                row = connection.execute(
                    "SELECT * FROM generations WHERE id = ?", (job_id,)
                ).fetchone()
        finally:
            connection.close()

        if not changed or row is None:
            return None
        return _record_from_row(row)

    async def create(self, record: GenerationRecord) -> None:
        sql = """
            INSERT INTO generations (
                id, prompt, params_json, status, video_path, thumbnail_path,
                error, created_at, completed_at, progress, estimated_time
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            record.id,
            record.prompt,
            json.dumps(record.params),
            record.status.value,
            record.video_url,
            record.thumbnail_url,
            record.error,
            record.created_at,
            record.completed_at,
            record.progress,
            record.estimated_time,
        )
        try:
            await self._run(self._execute, sql, params)
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Generation {record.id} already exists") from e
        logger.info(f"Created generation {record.id} ({record.status.value})")

    async def get(self, job_id: str) -> Optional[GenerationRecord]:
        return await self._run(self._fetchone, "SELECT * FROM generations WHERE id = ?", (job_id,))

    async def update(
        self,
        job_id: str,
        status: Optional[GenerationStatus] = None,
        progress: Optional[int] = None,
        **fields: Any,
    ) -> Optional[GenerationRecord]:
        _check_fields(fields)

        assignments: list[str] = []
        values: list[Any] = []

        if status is not None:
            assignments.append("status = ?")
            values.append(status.value)
        if progress is not None:
            assignments.append("progress = MAX(progress, ?)")
            values.append(progress)
        for attr, value in fields.items():
            assignments.append(f"{UPDATABLE_COLUMNS[attr]} = ?")
            values.append(value)

        if not assignments:
            return await self.get(job_id)

        allowed = [s.value for s in allowed_current_statuses(status)]
        updated = await self._run(self._guarded_update, job_id, assignments, values, allowed)
        if updated is None:
            logger.debug(f"Update to {job_id} rejected by status guard")
        return updated

    async def set_thumbnail(self, job_id: str, thumbnail_url: str) -> Optional[GenerationRecord]:
        return await self._run(
            self._guarded_update,
            job_id,
            ["thumbnail_path = ?"],
            [thumbnail_url],
            [GenerationStatus.COMPLETED.value],
        )

    def _list(self, sql: str, params: tuple) -> list[GenerationRecord]:
        connection = self._connect()
        try:
            rows = connection.execute(sql, params).fetchall()
        finally:
            connection.close()
        return [_record_from_row(row) for row in rows]

    async def list(
        self,
        query: Optional[str] = None,
        status: Optional[GenerationStatus] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> list[GenerationRecord]:
        sql = "SELECT * FROM generations WHERE 1=1"
        params: list[Any] = []

        # LIKE is case-insensitive for ASCII in SQLite
        if query:
            sql += " AND prompt LIKE ? ESCAPE '\\'"
            params.append(f"%{escape_like(query)}%")
        if status:
            sql += " AND status = ?"
            params.append(status.value)
        if start is not None:
            sql += " AND created_at >= ?"
            params.append(start)
        if end is not None:
            sql += " AND created_at <= ?"
            params.append(end)

        sql += " ORDER BY created_at DESC, id DESC"
        return await self._run(self._list, sql, tuple(params))

    async def latest_active(self) -> Optional[GenerationRecord]:
        return await self._run(
            self._fetchone,
            """
            SELECT * FROM generations
            WHERE status IN ('queued', 'processing')
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
        )

    async def delete(self, job_id: str) -> bool:
        deleted = await self._run(self._execute, "DELETE FROM generations WHERE id = ?", (job_id,)) > 0
        if deleted:
            logger.info(f"Deleted generation {job_id}")
        return deleted

    async def purge(self) -> int:
        count = await self._run(self._execute, "DELETE FROM generations")
        logger.info(f"Purged {count} generation(s)")
        return count

    async def ping(self) -> bool:
        try:
            await self._run(self._execute, "SELECT 1")
            return True
        except sqlite3.Error as e:
            logger.warning(f"Database health check failed: {e}")
            return False


class InMemoryGenerationStore(GenerationStore):
    """
    Process-local store with the same guard semantics.

    Nothing survives the process; used when embedding the coordinator and in
    tests.
    """

    def __init__(self):
        self._records: dict[str, GenerationRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: GenerationRecord) -> None:
        async with self._lock:
            if record.id in self._records:
                raise ValueError(f"Generation {record.id} already exists")
            self._records[record.id] = record
        logger.info(f"Created generation {record.id} ({record.status.value})")

    async def get(self, job_id: str) -> Optional[GenerationRecord]:
        return self._records.get(job_id)

    async def update(
        self,
        job_id: str,
        status: Optional[GenerationStatus] = None,
        progress: Optional[int] = None,
        **fields: Any,
    ) -> Optional[GenerationRecord]:
        _check_fields(fields)

        async with self._lock:
            current = self._records.get(job_id)
            if current is None or current.status not in allowed_current_statuses(status):
                return None

            changes = dict(fields)
            if status is not None:
                changes["status"] = status
            if progress is not None:
                changes["progress"] = max(current.progress, progress)

            updated = current.evolve(**changes)
            self._records[job_id] = updated
            return updated

    async def set_thumbnail(self, job_id: str, thumbnail_url: str) -> Optional[GenerationRecord]:
        async with self._lock:
            current = self._records.get(job_id)
            if current is None or current.status != GenerationStatus.COMPLETED:
                return None
            updated = current.evolve(thumbnail_url=thumbnail_url)
            self._records[job_id] = updated
            return updated

    async def list(
        self,
        query: Optional[str] = None,
        status: Optional[GenerationStatus] = None,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> list[GenerationRecord]:
        records = list(self._records.values())
        if query:
            needle = query.lower()
            records = [r for r in records if needle in r.prompt.lower()]
        if status:
            records = [r for r in records if r.status == status]
        if start is not None:
            records = [r for r in records if r.created_at >= start]
        if end is not None:
            records = [r for r in records if r.created_at <= end]
        return sorted(records, key=lambda r: (r.created_at, r.id), reverse=True)

    async def latest_active(self) -> Optional[GenerationRecord]:
        active = [r for r in self._records.values() if r.status in ACTIVE_STATUSES]
        if not active:
            return None
        return max(active, key=lambda r: (r.created_at, r.id))

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            return self._records.pop(job_id, None) is not None

    async def purge(self) -> int:
        async with self._lock:
            count = len(self._records)
            self._records.clear()
        return count

    async def ping(self) -> bool:
        return True
