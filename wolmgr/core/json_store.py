# wolmgr/core/json_store.py
"""
File-backed task store.

All state lives in one JSON document protected by a filelock, so several
worker processes (gunicorn) share a consistent view. Each operation is a
read-modify-write under the lock; writes go to a temporary file that
atomically replaces the document.

Document layout::

    {"seq": 3, "tasks": {"<id>": {..., "seq": 1}}, "devices": {"<id>": {..., "seq": 2}}}

``seq`` is an insertion counter used to order records created within the
same millisecond.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from filelock import FileLock, Timeout

from wolmgr.core.errors import StoreError
from wolmgr.core.lifecycle import TaskStatus, is_claimable
from wolmgr.models.models import Device, Task

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


def _empty_document() -> Dict[str, Any]:
    return {"seq": 0, "tasks": {}, "devices": {}}


class JSONFileTaskStore:
    """JSON document implementation of :class:`wolmgr.core.store.TaskStore`."""

    def __init__(self, state_file: str | Path = "data/wol_tasks.json", lock_timeout: int = 10):
        self._state_file = Path(state_file)
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        self.lock_timeout = lock_timeout
        self._lock = FileLock(f"{self._state_file}.lock", timeout=lock_timeout)

        self._with_lock(self._initialize)
        logger.info(f"JSON task store ready: {self._state_file}")

    def close(self) -> None:
        return

    # ---- low-level helpers ----

    def _initialize(self) -> None:
        if not self._state_file.exists():
            self._write_disk(_empty_document())

    def _with_lock(self, operation: Callable[[], _T]) -> _T:
        try:
            with self._lock:
                return operation()
        except Timeout as exc:
            logger.error(
                f"Could not acquire task store lock (timeout after {self.lock_timeout}s)"
            )
            raise StoreError("Task store is busy, lock timeout") from exc

    def _read_disk(self) -> Dict[str, Any]:
        if not self._state_file.exists():
            return _empty_document()

        try:
            with self._state_file.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError as exc:
            self._backup_corrupted_file()
            raise StoreError(f"Task store document is not valid JSON: {exc}") from exc
        except OSError as exc:
            raise StoreError(f"Failed to read task store: {exc}") from exc

        if not isinstance(raw, dict):
            raise StoreError("Task store document root must be an object")

        raw.setdefault("seq", 0)
        raw.setdefault("tasks", {})
        raw.setdefault("devices", {})
        return raw

    def _write_disk(self, document: Dict[str, Any]) -> None:
        tmp_path = self._state_file.with_suffix(self._state_file.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
            tmp_path.replace(self._state_file)
        except OSError as exc:
            raise StoreError(f"Failed to write task store: {exc}") from exc

    def _backup_corrupted_file(self) -> None:
        backup_path = self._state_file.with_suffix(self._state_file.suffix + ".bak")
        try:
            shutil.copy2(self._state_file, backup_path)
            logger.warning(f"Created backup of corrupted task store at {backup_path}")
        except OSError as e:
            logger.error(f"Failed to create backup file: {e}")

    @staticmethod
    def _next_seq(document: Dict[str, Any]) -> int:
        document["seq"] = int(document.get("seq", 0)) + 1
        return document["seq"]

    @staticmethod
    def _to_task(payload: Dict[str, Any]) -> Task:
        data = {key: value for key, value in payload.items() if key != "seq"}
        try:
            return Task.model_validate(data)
        except ValueError as exc:
            raise StoreError(f"Invalid task record {payload.get('id')!r}: {exc}") from exc

    @staticmethod
    def _to_record(task: Task, seq: int) -> Dict[str, Any]:
        record = task.model_dump(mode="json")
        record["seq"] = seq
        return record

    @staticmethod
    def _newest_first(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return sorted(
            records,
            key=lambda r: (int(r.get("created_at", 0)), int(r.get("seq", 0))),
            reverse=True,
        )

    def _claimable_records(
        self, document: Dict[str, Any], limit: int, max_attempts: int
    ) -> List[Dict[str, Any]]:
        candidates = [
            record
            for record in document["tasks"].values()
            if is_claimable(TaskStatus(record["status"]), int(record["attempts"]), max_attempts)
        ]
        return self._newest_first(candidates)[:limit]

    # ---- tasks ----

    def insert_task(self, task: Task) -> Task:
        def _operation() -> Task:
            document = self._read_disk()
            if task.id in document["tasks"]:
                raise StoreError(f"Task {task.id} already exists")
            document["tasks"][task.id] = self._to_record(task, self._next_seq(document))
            self._write_disk(document)
            return task

        return self._with_lock(_operation)

    def get_task(self, task_id: str) -> Optional[Task]:
        def _operation() -> Optional[Task]:
            record = self._read_disk()["tasks"].get(task_id)
            return self._to_task(record) if record else None

        return self._with_lock(_operation)

    def find_latest_by_mac(self, mac_address: str) -> Optional[Task]:
        def _operation() -> Optional[Task]:
            matches = [
                record
                for record in self._read_disk()["tasks"].values()
                if record.get("mac_address") == mac_address
            ]
            newest = self._newest_first(matches)
            return self._to_task(newest[0]) if newest else None

        return self._with_lock(_operation)

    def list_tasks(self, owner_id: Optional[str] = None) -> List[Task]:
        def _operation() -> List[Task]:
            records = [
                record
                for record in self._read_disk()["tasks"].values()
                if owner_id is None or record.get("owner_id") == owner_id
            ]
            return [self._to_task(record) for record in self._newest_first(records)]

        return self._with_lock(_operation)

    def list_claimable(self, limit: int, max_attempts: int) -> List[Task]:
        def _operation() -> List[Task]:
            document = self._read_disk()
            return [
                self._to_task(record)
                for record in self._claimable_records(document, limit, max_attempts)
            ]

        return self._with_lock(_operation)

    def claim(self, limit: int, max_attempts: int, now: int) -> List[Task]:
        def _operation() -> List[Task]:
            document = self._read_disk()
            selected = self._claimable_records(document, limit, max_attempts)
            if not selected:
                return []

            for record in selected:
                record["status"] = TaskStatus.PROCESSING.value
                record["attempts"] = int(record["attempts"]) + 1
                record["updated_at"] = now

            self._write_disk(document)
            return [self._to_task(record) for record in selected]

        return self._with_lock(_operation)

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
        def _operation() -> Optional[Task]:
            document = self._read_disk()
            record = document["tasks"].get(task_id)
            if record is None or record.get("status") != expected_status.value:
                return None
            if expected_attempts is not None and int(record["attempts"]) != expected_attempts:
                return None
            if expected_updated_at is not None and int(record["updated_at"]) != expected_updated_at:
                return None

            record["status"] = new_status.value
            record["attempts"] = int(record["attempts"]) + attempts_delta
            record["updated_at"] = now
            self._write_disk(document)
            return self._to_task(record)

        return self._with_lock(_operation)

    def list_stale_processing(self, updated_before: int) -> List[Task]:
        def _operation() -> List[Task]:
            records = [
                record
                for record in self._read_disk()["tasks"].values()
                if record.get("status") == TaskStatus.PROCESSING.value
                and int(record.get("updated_at", 0)) < updated_before
            ]
            records.sort(key=lambda r: int(r.get("updated_at", 0)))
            return [self._to_task(record) for record in records]

        return self._with_lock(_operation)

    # ---- devices ----

    def insert_device(self, device: Device) -> Device:
        def _operation() -> Device:
            document = self._read_disk()
            record = device.model_dump(mode="json")
            record["seq"] = self._next_seq(document)
            document["devices"][device.id] = record
            self._write_disk(document)
            return device

        return self._with_lock(_operation)

    def get_device(self, device_id: str) -> Optional[Device]:
        def _operation() -> Optional[Device]:
            record = self._read_disk()["devices"].get(device_id)
            if not record:
                return None
            return Device.model_validate({k: v for k, v in record.items() if k != "seq"})

        return self._with_lock(_operation)

    def list_devices(self, owner_id: str) -> List[Device]:
        def _operation() -> List[Device]:
            records = [
                record
                for record in self._read_disk()["devices"].values()
                if record.get("owner_id") == owner_id
            ]
            return [
                Device.model_validate({k: v for k, v in record.items() if k != "seq"})
                for record in self._newest_first(records)
            ]

        return self._with_lock(_operation)

    def delete_device(self, device_id: str, owner_id: str) -> bool:
        def _operation() -> bool:
            document = self._read_disk()
            record = document["devices"].get(device_id)
            if record is None or record.get("owner_id") != owner_id:
                return False
            del document["devices"][device_id]
            self._write_disk(document)
            return True

        return self._with_lock(_operation)
