# wolmgr/services/task_service.py
"""
Service for creating, claiming and resolving wake tasks.

Every operation goes through the store; nothing is cached in the process.
Status changes follow the same pattern: read the task, compute the next
state with wolmgr.core.lifecycle, then write it with a compare-and-set on
the status that was read. A lost race re-reads and recomputes, so a late
update can never overwrite a success written in between.
"""

import asyncio
import uuid
from typing import Callable, List, Optional

from wolmgr.core.config import config
from wolmgr.core.errors import InvalidArgumentError, StoreError, TaskNotFoundError
from wolmgr.core.lifecycle import (
    TaskStatus,
    Transition,
    explicit_transition,
    notify_transition,
    now_ms,
    parse_status,
)
from wolmgr.core.mac import normalize_mac
from wolmgr.core.setup_logging import setup_default_logging, task_log_extra
from wolmgr.core.state import get_store
from wolmgr.core.store import TaskStore
from wolmgr.models.models import Task

logger = setup_default_logging()

# A task can only flip a handful of times before reaching success
_MAX_TRANSITION_ROUNDS = 8


def _resolve_limit(limit: Optional[int]) -> int:
    if limit is None:
        return config.CLAIM_LIMIT
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidArgumentError("limit must be a positive integer")
    return min(limit, config.CLAIM_LIMIT_MAX)


async def create_task(
    store: TaskStore,
    mac_address: Optional[str],
    owner_id: Optional[str] = None,
    device_ref: Optional[str] = None,
) -> Task:
    """
    Enqueue a new pending wake task.

    Args:
        store: Task store
        mac_address: Target MAC in any accepted separator style
        owner_id: Owning principal, when the request is attributed
        device_ref: Saved device the request originates from

    Returns:
        Task: The stored task (status pending, attempts 0)

    Raises:
        InvalidArgumentError: If the MAC address is missing or malformed
    """
    if mac_address is None or (isinstance(mac_address, str) and not mac_address.strip()):
        raise InvalidArgumentError("macAddress is required")

    normalized = normalize_mac(mac_address)
    now = now_ms()
    task = Task(
        id=str(uuid.uuid4()),
        mac_address=normalized,
        status=TaskStatus.PENDING,
        created_at=now,
        updated_at=now,
        attempts=0,
        owner_id=owner_id,
        device_ref=device_ref,
    )
    await asyncio.to_thread(store.insert_task, task)

    logger.info(
        f"Task {task.id} created for {normalized}",
        extra=task_log_extra(task, "create", principal=owner_id),
    )
    return task


async def list_tasks(
    store: TaskStore, owner_id: Optional[str] = None, unowned_only: bool = False
) -> List[Task]:
    """
    Tasks newest first: all of them, those of ``owner_id``, or with
    ``unowned_only`` the ones attributed to nobody.
    """
    tasks = await asyncio.to_thread(store.list_tasks, owner_id)
    if unowned_only:
        return [task for task in tasks if task.owner_id is None]
    return tasks


async def list_pending(store: TaskStore, limit: Optional[int] = None) -> List[Task]:
    """
    Read-only view of the tasks a claim would select right now.

    Same candidate set and order as :func:`claim_pending`, without side effects.
    """
    resolved = _resolve_limit(limit)
    return await asyncio.to_thread(store.list_claimable, resolved, config.CLAIM_MAX_ATTEMPTS)


async def claim_pending(store: TaskStore, limit: Optional[int] = None) -> List[Task]:
    """
    Atomically move up to ``limit`` claimable tasks to processing.

    Newest-created tasks are served first. Concurrent callers receive disjoint
    sets; losing a race simply yields fewer tasks.

    Returns:
        List[Task]: Exactly the tasks transitioned by this call
    """
    resolved = _resolve_limit(limit)
    claimed = await asyncio.to_thread(
        store.claim, resolved, config.CLAIM_MAX_ATTEMPTS, now_ms()
    )

    if claimed:
        logger.info(
            f"Claimed {len(claimed)} task(s) (limit {resolved}): "
            + ", ".join(task.id for task in claimed),
            extra={"operation": "claim"},
        )
    else:
        logger.debug("Claim found no pending task", extra={"operation": "claim"})
    return claimed


async def _apply_transition(
    store: TaskStore,
    task_id: str,
    compute: Callable[[TaskStatus], Transition],
    operation: str,
) -> Task:
    for _ in range(_MAX_TRANSITION_ROUNDS):
        task = await asyncio.to_thread(store.get_task, task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found")

        transition = compute(task.status)
        if not transition.changed:
            if transition.stale:
                logger.info(
                    f"Ignoring stale {operation} for task {task_id}: already success",
                    extra=task_log_extra(task, operation),
                )
            return task

        updated = await asyncio.to_thread(
            store.compare_and_set,
            task.id,
            task.status,
            transition.status,
            transition.attempts_delta,
            now_ms(),
        )
        if updated is not None:
            logger.info(
                f"Task {task_id} {task.status.value} -> {updated.status.value} "
                f"(attempts {updated.attempts})",
                extra=task_log_extra(updated, operation),
            )
            return updated

        logger.info(
            f"Task {task_id} changed concurrently during {operation}, re-evaluating",
            extra={"task_id": task_id, "operation": operation},
        )

    raise StoreError(f"Task {task_id} kept changing concurrently, {operation} abandoned")


async def apply_status(store: TaskStore, task_id: Optional[str], status: Optional[str]) -> Task:
    """
    Apply an explicit status update (slow path from agents or operators).

    Raises:
        InvalidArgumentError: Missing id/status, unknown status, or a move back to pending
        TaskNotFoundError: If no task has this id
    """
    if not task_id or not status:
        raise InvalidArgumentError("id and status are required")

    def _compute(current: TaskStatus) -> Transition:
        return explicit_transition(current, parse_status(status))

    return await _apply_transition(store, task_id, _compute, "status_update")


async def apply_notify(
    store: TaskStore,
    task_id: Optional[str] = None,
    mac_address: Optional[str] = None,
) -> Task:
    """
    Close out a task because its device was observed online.

    Resolution: exact id first, then the most recently created task for the
    MAC address. The MAC is only parsed when the id does not resolve.
    Already-successful tasks are returned unchanged.

    Raises:
        InvalidArgumentError: If neither identifier is given, or the MAC
            fallback is needed and malformed
        TaskNotFoundError: If nothing resolves
    """
    if not task_id and not mac_address:
        raise InvalidArgumentError("id or macAddress is required")

    task: Optional[Task] = None
    if task_id:
        task = await asyncio.to_thread(store.get_task, task_id)

    if task is None and mac_address:
        normalized = normalize_mac(mac_address)
        task = await asyncio.to_thread(store.find_latest_by_mac, normalized)
        if task is not None and task_id:
            logger.info(
                f"Notify for unknown task {task_id} resolved by MAC {normalized} to {task.id}",
                extra=task_log_extra(task, "notify"),
            )

    if task is None:
        raise TaskNotFoundError("Task not found")

    return await _apply_transition(store, task.id, notify_transition, "notify")


async def fail_stale_processing(
    store: TaskStore, timeout_seconds: int, now: Optional[int] = None
) -> List[Task]:
    """
    Mark tasks stuck in processing for longer than ``timeout_seconds`` as failed.

    Failed tasks become claimable again (within CLAIM_MAX_ATTEMPTS), so a
    crashed agent does not strand its batch.

    Returns:
        List[Task]: Tasks actually moved to failed
    """
    current = now if now is not None else now_ms()
    cutoff = current - timeout_seconds * 1000
    stale = await asyncio.to_thread(store.list_stale_processing, cutoff)

    failed: List[Task] = []
    for task in stale:
        # Only the claim that was listed; a re-claim since then bumps attempts
        updated = await asyncio.to_thread(
            store.compare_and_set,
            task.id,
            TaskStatus.PROCESSING,
            TaskStatus.FAILED,
            0,
            current,
            expected_attempts=task.attempts,
            expected_updated_at=task.updated_at,
        )
        if updated is None:
            logger.info(
                f"Task {task.id} changed since it was found stale, timeout skipped",
                extra=task_log_extra(task, "processing_timeout"),
            )
        else:
            failed.append(updated)
            logger.warning(
                f"Task {task.id} timed out in processing after {timeout_seconds}s, marked failed",
                extra=task_log_extra(updated, "processing_timeout"),
            )
    return failed


async def check_processing_timeouts(
    poll_interval: Optional[float] = None,
    stop_event: Optional[asyncio.Event] = None,
    store_getter: Callable[[], TaskStore] = get_store,
) -> None:
    """
    Periodically fail tasks left in processing past PROCESSING_TIMEOUT_SECONDS.
    """
    interval = config.PROCESSING_TIMEOUT_POLL_SECONDS if poll_interval is None else poll_interval
    logger.info("Starting processing timeout monitoring")

    while True:
        if stop_event and stop_event.is_set():
            logger.info("Stopping processing timeout monitoring")
            break

        await asyncio.sleep(interval)

        timeout_seconds = config.PROCESSING_TIMEOUT_SECONDS
        if timeout_seconds <= 0:
            continue

        try:
            await fail_stale_processing(store_getter(), timeout_seconds)
        except StoreError as exc:
            logger.error(f"Processing timeout check failed: {exc}")
