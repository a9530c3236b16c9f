import asyncio
import logging
import secrets
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from budgetbuddy.models.transactions import TransactionInput
from budgetbuddy.offline.errors import QueueIntegrityError, StorageIOError, StorageUnavailable

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS pending_transactions (
    local_id             TEXT    PRIMARY KEY,
    payload              TEXT    NOT NULL,
    enqueued_at          TEXT    NOT NULL,
    synced               INTEGER NOT NULL DEFAULT 0,
    sync_attempts        INTEGER NOT NULL DEFAULT 0,
    last_sync_attempt_at TEXT,
    last_error           TEXT,
    remote_id            TEXT
);

CREATE INDEX IF NOT EXISTS idx_pending_synced
    ON pending_transactions(synced);
CREATE INDEX IF NOT EXISTS idx_pending_enqueued_at
    ON pending_transactions(enqueued_at);
"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QueuedTransaction:
    local_id: str
    payload: TransactionInput
    enqueued_at: datetime
    synced: bool = False
    sync_attempts: int = 0
    last_sync_attempt_at: datetime | None = None
    last_error: str | None = None
    remote_id: str | None = None

    @property
    def pending(self) -> bool:
        return not self.synced


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _row_to_item(row: sqlite3.Row) -> QueuedTransaction:
    try:
        payload = TransactionInput.model_validate_json(row["payload"])
    except ValidationError as exc:
        raise StorageIOError(f"Corrupt queue record {row['local_id']}: {exc}") from exc
    return QueuedTransaction(
        local_id=row["local_id"],
        payload=payload,
        enqueued_at=_parse_ts(row["enqueued_at"]),
        synced=bool(row["synced"]),
        sync_attempts=int(row["sync_attempts"]),
        last_sync_attempt_at=_parse_ts(row["last_sync_attempt_at"]),
        last_error=row["last_error"],
        remote_id=row["remote_id"],
    )


class OfflineQueue:
    """Durable queue of transactions written while the remote service was unreachable.

    Backed by a single SQLite file so queued writes and their retry counters
    survive restarts. Blocking SQLite calls run in a worker thread and are
    serialized through one lock; callers only ever see coroutines.
    """

    def __init__(self, db_path: str, clock: Callable[[], datetime] = utc_now) -> None:
        self._db_path = db_path
        self._clock = clock
        self._conn: sqlite3.Connection | None = None
        self._open_lock = asyncio.Lock()
        self._db_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._conn is not None:
            return
        async with self._open_lock:
            if self._conn is not None:
                return
            self._conn = await asyncio.to_thread(self._connect)
            logger.info("Offline queue opened at %s", self._db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = None
        try:
            if self._db_path != ":memory:":
                Path(self._db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(Path(self._db_path).expanduser()), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        except (OSError, sqlite3.Error) as exc:
            if conn is not None:
                conn.close()
            raise StorageUnavailable(f"Cannot open offline queue at {self._db_path}: {exc}") from exc
        return conn

    async def close(self) -> None:
        async with self._open_lock:
            conn, self._conn = self._conn, None
            if conn is not None:
                await asyncio.to_thread(self._close_conn, conn)

    def _close_conn(self, conn: sqlite3.Connection) -> None:
        with self._db_lock:
            conn.close()

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        await self.open()
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._db_lock:
            conn = self._conn
            if conn is None:
                raise StorageIOError("Offline queue is closed")
            try:
                return fn(conn, *args)
            except sqlite3.Error as exc:
                raise StorageIOError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def enqueue(self, payload: TransactionInput) -> str:
        now = self._clock()
        local_id = f"offline_{int(now.timestamp() * 1000)}_{secrets.token_hex(6)}"
        await self._run(self._insert, local_id, payload.model_dump_json(), now.isoformat())
        logger.info("Transaction saved offline: %s", local_id)
        return local_id

    @staticmethod
    def _insert(conn: sqlite3.Connection, local_id: str, payload_json: str, enqueued_at: str) -> None:
        try:
            with conn:
                conn.execute(
                    "INSERT INTO pending_transactions (local_id, payload, enqueued_at) VALUES (?, ?, ?)",
                    (local_id, payload_json, enqueued_at),
                )
        except sqlite3.IntegrityError as exc:
            raise QueueIntegrityError(f"Local id collision for {local_id}") from exc

    async def mark_synced(self, local_id: str, remote_id: str) -> None:
        await self._run(self._mark_synced, local_id, remote_id)

    @staticmethod
    def _mark_synced(conn: sqlite3.Connection, local_id: str, remote_id: str) -> None:
        with conn:
            # Only pending rows flip; a missing or already-synced row is left alone.
            conn.execute(
                "UPDATE pending_transactions SET synced = 1, remote_id = ? WHERE local_id = ? AND synced = 0",
                (remote_id, local_id),
            )

    async def record_attempt_failure(self, local_id: str, error: str) -> None:
        await self._run(self._record_failure, local_id, error, self._clock().isoformat())

    @staticmethod
    def _record_failure(conn: sqlite3.Connection, local_id: str, error: str, attempted_at: str) -> None:
        with conn:
            conn.execute(
                "UPDATE pending_transactions "
                "SET sync_attempts = sync_attempts + 1, last_sync_attempt_at = ?, last_error = ? "
                "WHERE local_id = ?",
                (attempted_at, error, local_id),
            )

    async def remove(self, local_id: str) -> None:
        await self._run(self._delete, local_id)

    @staticmethod
    def _delete(conn: sqlite3.Connection, local_id: str) -> None:
        with conn:
            conn.execute("DELETE FROM pending_transactions WHERE local_id = ?", (local_id,))

    async def prune_synced(self) -> int:
        removed = await self._run(self._prune)
        if removed:
            logger.info("Pruned %d synced transactions", removed)
        return removed

    @staticmethod
    def _prune(conn: sqlite3.Connection) -> int:
        with conn:
            cur = conn.execute("DELETE FROM pending_transactions WHERE synced = 1")
            return cur.rowcount

    async def clear(self) -> None:
        await self._run(self._clear)
        logger.warning("Offline queue cleared")

    @staticmethod
    def _clear(conn: sqlite3.Connection) -> None:
        with conn:
            conn.execute("DELETE FROM pending_transactions")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, local_id: str) -> QueuedTransaction | None:
        return await self._run(self._select_one, local_id)

    @staticmethod
    def _select_one(conn: sqlite3.Connection, local_id: str) -> QueuedTransaction | None:
        row = conn.execute("SELECT * FROM pending_transactions WHERE local_id = ?", (local_id,)).fetchone()
        return _row_to_item(row) if row else None

    async def list_pending(self) -> list[QueuedTransaction]:
        return await self._run(self._select, "WHERE synced = 0")

    async def list_all(self) -> list[QueuedTransaction]:
        return await self._run(self._select, "")

    @staticmethod
    def _select(conn: sqlite3.Connection, where: str) -> list[QueuedTransaction]:
        rows = conn.execute(f"SELECT * FROM pending_transactions {where} ORDER BY enqueued_at, local_id").fetchall()
        return [_row_to_item(row) for row in rows]

    async def count_pending(self) -> int:
        return await self._run(self._count_pending)

    @staticmethod
    def _count_pending(conn: sqlite3.Connection) -> int:
        row = conn.execute("SELECT COUNT(*) AS n FROM pending_transactions WHERE synced = 0").fetchone()
        return int(row["n"])
