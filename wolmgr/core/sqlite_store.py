# wolmgr/core/sqlite_store.py
"""
SQLite task store.

- one connection per operation (safe to call from worker threads)
- writes run inside ``BEGIN IMMEDIATE`` so the write lock is taken before
  the candidate rows are read; two claimers are serialized by SQLite itself
- every value is a bound parameter
- schema is created if missing and upgraded additively (tables created by
  older deployments lack the owner/device columns)
"""

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from wolmgr.core.errors import StoreError
from wolmgr.core.lifecycle import CLAIMABLE_STATUSES, TaskStatus
from wolmgr.models.models import Device, Task

logger = logging.getLogger(__name__)

_TASK_COLUMNS = "id, mac_address, status, created_at, updated_at, attempts, owner_id, device_ref"

# Constant predicate, the attempt cap is bound at execution time
_CLAIMABLE_WHERE = "(status = 'pending' OR (status = 'failed' AND attempts < ?))"
_NEWEST_FIRST = "ORDER BY created_at DESC, rowid DESC"


class SQLiteTaskStore:
    """SQLite-backed implementation of :class:`wolmgr.core.store.TaskStore`."""

    def __init__(self, db_path: str | Path = "data/wol_tasks.sqlite3", timeout: float = 30.0):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._timeout = timeout
        self._ensure_schema()
        logger.info(f"SQLite task store ready: {self._db_path}")

    def close(self) -> None:
        """No persistent connection is held."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly with BEGIN IMMEDIATE
        conn = sqlite3.connect(str(self._db_path), timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextlib.contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open task database {self._db_path}: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StoreError(f"Task database read failed: {exc}") from exc
        finally:
            conn.close()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open task database {self._db_path}: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise StoreError(f"Task database write failed: {exc}") from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wol_tasks (
                    id TEXT PRIMARY KEY,
                    mac_address TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    attempts INTEGER NOT NULL
                )
                """
            )

            cols = {row["name"] for row in conn.execute("PRAGMA table_info(wol_tasks)")}
            for name in ("owner_id", "device_ref"):
                if name not in cols:
                    # Column names come from the tuple above, never from input
                    conn.execute(f"ALTER TABLE wol_tasks ADD COLUMN {name} TEXT")
                    logger.info(f"Task store migration: added column {name}")

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_wol_tasks_status_created "
                "ON wol_tasks(status, created_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_wol_tasks_mac_created "
                "ON wol_tasks(mac_address, created_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_wol_tasks_owner ON wol_tasks(owner_id, created_at)"
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS wol_devices (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    name TEXT,
                    mac_address TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_wol_devices_owner ON wol_devices(owner_id)"
            )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        try:
            status = TaskStatus(str(row["status"]).lower())
        except ValueError as exc:
            raise StoreError(f"Task {row['id']} has an unknown status {row['status']!r}") from exc
        return Task(
            id=str(row["id"]),
            mac_address=str(row["mac_address"]).upper(),
            status=status,
            created_at=int(row["created_at"] or 0),
            updated_at=int(row["updated_at"] or 0),
            attempts=int(row["attempts"] or 0),
            owner_id=row["owner_id"],
            device_ref=row["device_ref"],
        )

    @staticmethod
    def _row_to_device(row: sqlite3.Row) -> Device:
        return Device(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            name=row["name"],
            mac_address=str(row["mac_address"]),
            created_at=int(row["created_at"] or 0),
        )

    def _fetch_tasks(self, conn: sqlite3.Connection, task_ids: Sequence[str]) -> List[Task]:
        """Load tasks by id, preserving the order of ``task_ids``."""
        if not task_ids:
            return []
        placeholders = ", ".join("?" for _ in task_ids)
        rows = conn.execute(
            f"SELECT {_TASK_COLUMNS} FROM wol_tasks WHERE id IN ({placeholders})",
            tuple(task_ids),
        ).fetchall()
        by_id = {row["id"]: self._row_to_task(row) for row in rows}
        return [by_id[task_id] for task_id in task_ids if task_id in by_id]

    # ---- tasks ----

    def insert_task(self, task: Task) -> Task:
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO wol_tasks ({_TASK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    task.id,
                    task.mac_address,
                    task.status.value,
                    task.created_at,
                    task.updated_at,
                    task.attempts,
                    task.owner_id,
                    task.device_ref,
                ),
            )
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM wol_tasks WHERE id = ? LIMIT 1", (task_id,)
            ).fetchone()
        return self._row_to_task(row) if row else None

    def find_latest_by_mac(self, mac_address: str) -> Optional[Task]:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM wol_tasks WHERE mac_address = ? "
                f"{_NEWEST_FIRST} LIMIT 1",
                (mac_address,),
            ).fetchone()
        return self._row_to_task(row) if row else None

    def list_tasks(self, owner_id: Optional[str] = None) -> List[Task]:
        with self._read() as conn:
            if owner_id is None:
                rows = conn.execute(
                    f"SELECT {_TASK_COLUMNS} FROM wol_tasks {_NEWEST_FIRST}"
                ).fetchall()
            else:
                rows = conn.execute(
                    f"SELECT {_TASK_COLUMNS} FROM wol_tasks WHERE owner_id = ? {_NEWEST_FIRST}",
                    (owner_id,),
                ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def list_claimable(self, limit: int, max_attempts: int) -> List[Task]:
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM wol_tasks WHERE {_CLAIMABLE_WHERE} "
                f"{_NEWEST_FIRST} LIMIT ?",
                (max_attempts, limit),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    def claim(self, limit: int, max_attempts: int, now: int) -> List[Task]:
        claimable = tuple(status.value for status in CLAIMABLE_STATUSES)
        with self._transaction() as conn:
            candidates = [
                row["id"]
                for row in conn.execute(
                    f"SELECT id FROM wol_tasks WHERE {_CLAIMABLE_WHERE} {_NEWEST_FIRST} LIMIT ?",
                    (max_attempts, limit),
                )
            ]

            claimed: List[str] = []
            for task_id in candidates:
                cursor = conn.execute(
                    "UPDATE wol_tasks SET status = ?, updated_at = ?, attempts = attempts + 1 "
                    "WHERE id = ? AND status IN (?, ?)",
                    (TaskStatus.PROCESSING.value, now, task_id, *claimable),
                )
                if cursor.rowcount == 1:
                    claimed.append(task_id)

            return self._fetch_tasks(conn, claimed)

    def compare_and_set(
        self,
        task_id: str,
        expected_status: TaskStatus,
        new_status: TaskStatus,
        attempts_delta: int,
        now: int,
        *,
        expected_attempts: Optional[int] = None,
        expected_updated_at: Optional[int] = None,
    ) -> Optional[Task]:
        where = "id = ? AND status = ?"
        params: List[object] = [new_status.value, now, attempts_delta, task_id, expected_status.value]
        if expected_attempts is not None:
            where += " AND attempts = ?"
            params.append(expected_attempts)
        if expected_updated_at is not None:
            where += " AND updated_at = ?"
            params.append(expected_updated_at)

        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE wol_tasks SET status = ?, updated_at = ?, attempts = attempts + ? "
                f"WHERE {where}",
                tuple(params),
            )
            if cursor.rowcount != 1:
                return None
            updated = self._fetch_tasks(conn, [task_id])
        return updated[0] if updated else None

    def list_stale_processing(self, updated_before: int) -> List[Task]:
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT {_TASK_COLUMNS} FROM wol_tasks "
                "WHERE status = ? AND updated_at < ? ORDER BY updated_at ASC",
                (TaskStatus.PROCESSING.value, updated_before),
            ).fetchall()
        return [self._row_to_task(row) for row in rows]

    # ---- devices ----

    def insert_device(self, device: Device) -> Device:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO wol_devices (id, owner_id, name, mac_address, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (device.id, device.owner_id, device.name, device.mac_address, device.created_at),
            )
        return device

    def get_device(self, device_id: str) -> Optional[Device]:
        with self._read() as conn:
            row = conn.execute(
                "SELECT id, owner_id, name, mac_address, created_at FROM wol_devices "
                "WHERE id = ? LIMIT 1",
                (device_id,),
            ).fetchone()
        return self._row_to_device(row) if row else None

    def list_devices(self, owner_id: str) -> List[Device]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT id, owner_id, name, mac_address, created_at FROM wol_devices "
                "WHERE owner_id = ? ORDER BY created_at DESC, rowid DESC",
                (owner_id,),
            ).fetchall()
        return [self._row_to_device(row) for row in rows]

    def delete_device(self, device_id: str, owner_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM wol_devices WHERE id = ? AND owner_id = ?", (device_id, owner_id)
            )
            return cursor.rowcount == 1
