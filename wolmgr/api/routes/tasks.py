# wolmgr/api/routes/tasks.py
"""
Wake task routes.
Endpoints responsible for task creation, listing, claiming, status updates and notifications.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from wolmgr.core.auth import is_agent_request, resolve_principal, verify_token
from wolmgr.core.setup_logging import setup_default_logging
from wolmgr.core.state import get_store
from wolmgr.core.store import TaskStore
from wolmgr.models.models import (
    ClaimRequest,
    ErrorResponse,
    NotifyRequest,
    PendingTask,
    PendingTaskListEnvelope,
    Principal,
    Task,
    TaskCreateRequest,
    TaskEnvelope,
    TaskListEnvelope,
    TaskStatusUpdate,
)
from wolmgr.services import task_service

# Configure logging
logger = setup_default_logging()

# Create API router
router = APIRouter(
    prefix="/api/wol/tasks",
    tags=["Task"],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid argument"},
        401: {"model": ErrorResponse, "description": "Missing or invalid token"},
        404: {"model": ErrorResponse, "description": "Task not found"},
    },
)


def _pending_view(tasks: List[Task]) -> PendingTaskListEnvelope:
    return PendingTaskListEnvelope(
        tasks=[PendingTask(id=task.id, mac_address=task.mac_address) for task in tasks]
    )


# ======================================================
# Endpoints
# ======================================================


@router.get(
    "",
    response_model=TaskListEnvelope,
    response_model_exclude_none=True,
    summary="List tasks",
    description=(
        "Tasks newest first. A user token sees its own tasks, an agent token sees every "
        "task, an anonymous caller only sees tasks attributed to nobody"
    ),
)
async def list_tasks(
    principal: Optional[Principal] = Depends(resolve_principal),
    agent: bool = Depends(is_agent_request),
    store: TaskStore = Depends(get_store),
) -> TaskListEnvelope:
    if principal is not None:
        tasks = await task_service.list_tasks(store, owner_id=principal.id)
    else:
        tasks = await task_service.list_tasks(store, unowned_only=not agent)
    return TaskListEnvelope(tasks=tasks)


@router.post(
    "",
    response_model=TaskEnvelope,
    response_model_exclude_none=True,
    summary="Create a wake task",
    description="Enqueue a pending wake task for a MAC address (colon or dash separated)",
)
async def create_task(
    request: TaskCreateRequest,
    principal: Optional[Principal] = Depends(resolve_principal),
    store: TaskStore = Depends(get_store),
) -> TaskEnvelope:
    task = await task_service.create_task(
        store, request.mac_address, owner_id=principal.id if principal else None
    )
    return TaskEnvelope(task=task)


@router.put(
    "",
    response_model=TaskEnvelope,
    response_model_exclude_none=True,
    summary="Update task status",
    description=(
        "Explicit status update from an agent or operator. Updates arriving after the task "
        "reached success are ignored and the unchanged task is returned."
    ),
    dependencies=[Depends(verify_token)],
)
async def update_task_status(
    request: TaskStatusUpdate,
    store: TaskStore = Depends(get_store),
) -> TaskEnvelope:
    task = await task_service.apply_status(store, request.id, request.status)
    return TaskEnvelope(task=task)


@router.get(
    "/pending",
    response_model=PendingTaskListEnvelope,
    summary="Peek at claimable tasks",
    description="Tasks the next claim would take, newest first. Does not change any task.",
    dependencies=[Depends(verify_token)],
)
async def list_pending_tasks(
    limit: Optional[int] = Query(None, ge=1, description="Maximum number of tasks returned"),
    store: TaskStore = Depends(get_store),
) -> PendingTaskListEnvelope:
    tasks = await task_service.list_pending(store, limit)
    return _pending_view(tasks)


@router.post(
    "/claim",
    response_model=PendingTaskListEnvelope,
    summary="Claim pending tasks",
    description=(
        "Atomically move up to `limit` claimable tasks to processing and return them. "
        "Concurrent claimers never receive the same task."
    ),
    dependencies=[Depends(verify_token)],
)
async def claim_tasks(
    request: Optional[ClaimRequest] = None,
    store: TaskStore = Depends(get_store),
) -> PendingTaskListEnvelope:
    limit = request.limit if request else None
    tasks = await task_service.claim_pending(store, limit)
    return _pending_view(tasks)


@router.post(
    "/notify",
    response_model=TaskEnvelope,
    response_model_exclude_none=True,
    summary="Notify device online",
    description=(
        "Mark a task successful because its device was observed online. Resolves by task id, "
        "then by the most recent task for the MAC address."
    ),
    dependencies=[Depends(verify_token)],
)
async def notify_task(
    request: NotifyRequest,
    store: TaskStore = Depends(get_store),
) -> TaskEnvelope:
    task = await task_service.apply_notify(
        store, task_id=request.id, mac_address=request.mac_address
    )
    return TaskEnvelope(task=task)
