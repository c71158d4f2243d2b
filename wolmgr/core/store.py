# wolmgr/core/store.py
"""
Storage interface for tasks and saved devices.

Every method is atomic on its own. ``claim`` and ``compare_and_set`` are the
only ways a stored task changes status; both are conditional on the current
status so that concurrent callers can never both act on the same row.

Implementations are synchronous; the service layer runs them in a worker
thread (``asyncio.to_thread``).
"""

from typing import List, Optional, Protocol

from wolmgr.core.lifecycle import TaskStatus
from wolmgr.models.models import Device, Task


class TaskStore(Protocol):
    def insert_task(self, task: Task) -> Task:
        ...

    def get_task(self, task_id: str) -> Optional[Task]:
        ...

    def find_latest_by_mac(self, mac_address: str) -> Optional[Task]:
        """Most recently created task for an already-normalized MAC."""
        ...

    def list_tasks(self, owner_id: Optional[str] = None) -> List[Task]:
        """All tasks (or one owner's), newest first."""
        ...

    def list_claimable(self, limit: int, max_attempts: int) -> List[Task]:
        """Read-only view of what ``claim`` would select right now."""
        ...

    def claim(self, limit: int, max_attempts: int, now: int) -> List[Task]:
        """
        Select up to ``limit`` claimable tasks (newest first) and move them to
        processing with ``attempts + 1`` as one unit. Returns exactly the rows
        that were transitioned.
        """
        ...

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
        """
        Write ``new_status`` only if the stored status still equals
        ``expected_status`` (and, when given, the stored attempts and
        updated_at still equal ``expected_attempts``/``expected_updated_at``).
        Returns the updated task, or None when the task is missing or changed
        in the meantime.
        """
        ...

    def list_stale_processing(self, updated_before: int) -> List[Task]:
        ...

    def insert_device(self, device: Device) -> Device:
        ...

    def get_device(self, device_id: str) -> Optional[Device]:
        ...

    def list_devices(self, owner_id: str) -> List[Device]:
        ...

    def delete_device(self, device_id: str, owner_id: str) -> bool:
        ...

    def close(self) -> None:
        ...


def create_store(backend: str, path: str, lock_timeout: int = 10) -> TaskStore:
    """
    Build the configured store backend.

    Args:
        backend: ``sqlite`` or ``json``
        path: Database file (sqlite) or JSON document path (json)
        lock_timeout: Seconds to wait for the database/file lock

    Raises:
        ValueError: If the backend name is unknown
    """
    if backend == "sqlite":
        from wolmgr.core.sqlite_store import SQLiteTaskStore

        return SQLiteTaskStore(path, timeout=float(lock_timeout))
    if backend == "json":
        from wolmgr.core.json_store import JSONFileTaskStore

        return JSONFileTaskStore(path, lock_timeout=lock_timeout)
    raise ValueError(f"Unknown store backend: {backend!r}")
