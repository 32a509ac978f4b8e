"""
SQLite Storage Implementation

DESIGN DECISION: A single local SQLite file is the storage backend because:
1. It needs no server and works offline
2. It has real transactions, so restore can be all-or-nothing
3. One file is trivial to locate, inspect and back up

All three stores (records, key-value settings, audit log) share ONE
connection per database file. SQLite serializes access on that connection,
and settings written during a restore join the restore's transaction.

The connection runs in autocommit mode (isolation_level=None): single
statements commit immediately, and transaction() opens an explicit
BEGIN IMMEDIATE ... COMMIT/ROLLBACK block around multi-step writes.
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Sequence
from uuid import UUID

import aiosqlite
import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from budget_tracker.config import get_settings
from budget_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from budget_tracker.models.record import Record, RecordDraft
from budget_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    KeyValueStoreInterface,
    RecordNotFoundError,
    RecordStoreInterface,
    StoreError,
)


logger = structlog.get_logger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS spending (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    amount REAL,
    details TEXT,
    date TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    correlation_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_message TEXT,
    is_user_action INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_audit_log_timestamp ON audit_log (timestamp);
"""

# Column mappings for the audit_log table
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db_time(moment: datetime) -> str:
    # Fixed-width UTC so created_at compares correctly as text
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqliteDatabase:
    """
    Owns the connection to one SQLite file.

    This is the single connection-acquisition path for every store.
    Opening is retried with exponential backoff.
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path else get_settings().storage.database_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._connect_lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._in_transaction = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(sqlite3.OperationalError),
        reraise=True,
    )
    async def _open(self) -> aiosqlite.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(self._path), isolation_level=None)
        conn.row_factory = aiosqlite.Row
        return conn

    async def connect(self) -> aiosqlite.Connection:
        """Open the connection on first use and return it."""
        async with self._connect_lock:
            if self._conn is None:
                try:
                    self._conn = await self._open()
                except (sqlite3.Error, OSError) as e:
                    raise ConnectionError(f"Failed to open database {self._path}: {e}") from e
                logger.debug("database_connected", path=str(self._path))
        return self._conn

    async def initialize(self) -> None:
        """
        Create all tables if absent.

        Idempotent; concurrent callers wait on the same lock instead of
        racing on table creation.
        """
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            conn = await self.connect()
            try:
                await conn.executescript(SCHEMA_SQL)
                await self._migrate(conn)
            except sqlite3.Error as e:
                raise StoreError(f"Failed to initialize schema: {e}") from e
            self._initialized = True
            logger.info("database_initialized", path=str(self._path))

    async def _migrate(self, conn: aiosqlite.Connection) -> None:
        # Databases created before duplicate detection lack created_at
        async with conn.execute("PRAGMA table_info(spending)") as cursor:
            columns = {row["name"] for row in await cursor.fetchall()}
        if "created_at" not in columns:
            await conn.execute("ALTER TABLE spending ADD COLUMN created_at TEXT")
            logger.info("database_migrated", added_column="spending.created_at")
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_spending_dedup "
            "ON spending (amount, details, created_at)"
        )

    async def _ready(self) -> aiosqlite.Connection:
        await self.initialize()
        return await self.connect()

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> tuple[Optional[int], int]:
        """
        Run a write statement.

        Returns:
            (lastrowid, rowcount)
        """
        conn = await self._ready()
        try:
            async with conn.execute(sql, params) as cursor:
                return cursor.lastrowid, cursor.rowcount
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"Statement failed: {e}") from e

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        conn = await self._ready()
        try:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"Query failed: {e}") from e

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        conn = await self._ready()
        try:
            async with conn.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except (sqlite3.Error, ValueError) as e:
            raise StoreError(f"Query failed: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        BEGIN IMMEDIATE ... COMMIT, or ROLLBACK if the block raises.

        Nested transactions are rejected.
        """
        conn = await self._ready()
        if self._in_transaction:
            raise StoreError("A transaction is already in progress")
        try:
            await conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreError(f"Failed to begin transaction: {e}") from e

        self._in_transaction = True
        try:
            yield
        except BaseException:
            await self._rollback(conn)
            raise
        else:
            try:
                await conn.execute("COMMIT")
            except sqlite3.Error as e:
                await self._rollback(conn)
                raise StoreError(f"Failed to commit transaction: {e}") from e
        finally:
            self._in_transaction = False

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.execute("ROLLBACK")
            logger.warning("transaction_rolled_back", path=str(self._path))
        except sqlite3.Error as e:
            # Nothing left to undo if SQLite already aborted the transaction
            logger.error("rollback_failed", error=str(e))

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self._initialized = False


class SqliteRecordStore(RecordStoreInterface):
    """
    SQLite implementation of the record store.

    Records live in the 'spending' table. created_at holds the insertion
    time used for duplicate detection; restored rows leave it empty so
    they never count as recent inserts.
    """

    def __init__(
        self,
        database: SqliteDatabase,
        duplicate_window: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._db = database
        if duplicate_window is None:
            duplicate_window = timedelta(minutes=get_settings().app.duplicate_window_minutes)
        self._duplicate_window = duplicate_window
        self._clock = clock or _utcnow

    def _row_to_record(self, row: aiosqlite.Row) -> Record:
        return Record(
            id=row["id"],
            amount=Decimal(str(row["amount"])),
            details=row["details"],
            date=row["date"],
        )

    async def init(self) -> None:
        await self._db.initialize()

    async def list_records(self) -> list[Record]:
        rows = await self._db.fetch_all(
            "SELECT id, amount, details, date FROM spending ORDER BY date DESC, id DESC"
        )
        records = []
        for row in rows:
            try:
                records.append(self._row_to_record(row))
            except (ValidationError, ArithmeticError, TypeError):
                logger.warning("malformed_record_skipped", record_id=row["id"])
        return records

    async def get_record(self, record_id: int) -> Optional[Record]:
        row = await self._db.fetch_one(
            "SELECT id, amount, details, date FROM spending WHERE id = ?",
            (record_id,),
        )
        return self._row_to_record(row) if row else None

    async def _find_duplicate(self, draft: RecordDraft, now: datetime) -> Optional[int]:
        """Id of an identical record inserted within the window, if any."""
        if self._duplicate_window <= timedelta(0):
            return None
        cutoff = _to_db_time(now - self._duplicate_window)
        try:
            row = await self._db.fetch_one(
                "SELECT id FROM spending "
                "WHERE amount = ? AND details = ? AND created_at >= ? "
                "ORDER BY id DESC LIMIT 1",
                (float(draft.amount), draft.details, cutoff),
            )
        except StoreError as e:
            # A failed check must not block the insert
            logger.warning("duplicate_check_failed", error=str(e))
            return None
        return row["id"] if row else None

    async def add_record(self, amount: Decimal, details: str, date: str) -> int:
        draft = RecordDraft(amount=amount, details=details, date=date)
        now = self._clock()

        existing_id = await self._find_duplicate(draft, now)
        if existing_id is not None:
            logger.info("duplicate_record_skipped", existing_id=existing_id)
            return existing_id

        record_id, _ = await self._db.execute(
            "INSERT INTO spending (amount, details, date, created_at) VALUES (?, ?, ?, ?)",
            (float(draft.amount), draft.details, draft.date, _to_db_time(now)),
        )
        logger.debug("record_added", record_id=record_id)
        return record_id

    async def update_record(
        self,
        record_id: int,
        amount: Decimal,
        details: str,
        date: str,
    ) -> Record:
        draft = RecordDraft(amount=amount, details=details, date=date)
        _, changed = await self._db.execute(
            "UPDATE spending SET amount = ?, details = ?, date = ? WHERE id = ?",
            (float(draft.amount), draft.details, draft.date, record_id),
        )
        if changed == 0:
            raise RecordNotFoundError(f"Record not found: {record_id}")
        return Record(id=record_id, **draft.model_dump())

    async def delete_record(self, record_id: int) -> bool:
        _, changed = await self._db.execute(
            "DELETE FROM spending WHERE id = ?",
            (record_id,),
        )
        return changed > 0

    async def insert_record(self, record: Record) -> None:
        await self._db.execute(
            "INSERT INTO spending (id, amount, details, date, created_at) VALUES (?, ?, ?, ?, NULL)",
            (record.id, float(record.amount), record.details, record.date),
        )

    async def delete_all(self) -> int:
        _, changed = await self._db.execute("DELETE FROM spending")
        return changed

    async def count(self) -> int:
        row = await self._db.fetch_one("SELECT COUNT(*) AS total FROM spending")
        return row["total"] if row else 0

    @property
    def supports_transactions(self) -> bool:
        return True

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._db.transaction():
            yield


class SqliteSettingsStore(KeyValueStoreInterface):
    """Key-value settings kept in the kv_store table."""

    def __init__(self, database: SqliteDatabase):
        self._db = database

    async def get(self, key: str) -> Optional[str]:
        row = await self._db.fetch_one("SELECT value FROM kv_store WHERE key = ?", (key,))
        return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        await self._db.execute(
            "INSERT INTO kv_store (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    async def delete(self, key: str) -> bool:
        _, changed = await self._db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        return changed > 0


class SqliteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, database: SqliteDatabase):
        self._db = database

    def _row_to_event(self, row: aiosqlite.Row) -> AuditEvent:
        """Convert an audit_log row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_message=row["error_message"],
            is_user_action=bool(row["is_user_action"]),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        placeholders = ", ".join("?" for _ in AUDIT_COLUMNS)
        try:
            await self._db.execute(
                f"INSERT INTO audit_log ({', '.join(AUDIT_COLUMNS)}) VALUES ({placeholders})",
                event.to_row(),
            )
            return True
        except StoreError as e:
            # Don't raise - audit logging should not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        rows = await self._db.fetch_all(
            f"SELECT {', '.join(AUDIT_COLUMNS)} FROM audit_log "
            "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        events = []
        for row in rows:
            try:
                events.append(self._row_to_event(row))
            except (ValueError, ValidationError):
                continue  # Skip malformed rows
        return events
