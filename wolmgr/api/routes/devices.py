# wolmgr/api/routes/devices.py
"""
Saved device routes. Every endpoint is scoped to the authenticated user principal.
"""

from fastapi import APIRouter, Depends, Path

from wolmgr.core.auth import require_user
from wolmgr.core.state import get_store
from wolmgr.core.store import TaskStore
from wolmgr.models.models import (
    DeviceCreateRequest,
    DeviceEnvelope,
    DeviceListEnvelope,
    ErrorResponse,
    Principal,
    TaskEnvelope,
)
from wolmgr.services import device_service

router = APIRouter(
    prefix="/api/devices",
    tags=["Device"],
    responses={
        401: {"model": ErrorResponse, "description": "User authentication required"},
        404: {"model": ErrorResponse, "description": "Device not found"},
    },
)


@router.get(
    "",
    response_model=DeviceListEnvelope,
    response_model_exclude_none=True,
    summary="List saved devices",
)
async def list_devices(
    principal: Principal = Depends(require_user),
    store: TaskStore = Depends(get_store),
) -> DeviceListEnvelope:
    devices = await device_service.list_devices(store, principal.id)
    return DeviceListEnvelope(devices=devices)


@router.post(
    "",
    response_model=DeviceEnvelope,
    response_model_exclude_none=True,
    summary="Save a device",
)
async def create_device(
    request: DeviceCreateRequest,
    principal: Principal = Depends(require_user),
    store: TaskStore = Depends(get_store),
) -> DeviceEnvelope:
    device = await device_service.create_device(
        store, principal.id, request.mac_address, name=request.name
    )
    return DeviceEnvelope(device=device)


@router.delete(
    "/{device_id}",
    response_model=dict,
    summary="Delete a saved device",
)
async def delete_device(
    device_id: str = Path(..., description="Device identifier"),
    principal: Principal = Depends(require_user),
    store: TaskStore = Depends(get_store),
) -> dict:
    await device_service.delete_device(store, device_id, principal.id)
    return {"ok": True}


@router.post(
    "/{device_id}/wake",
    response_model=TaskEnvelope,
    response_model_exclude_none=True,
    summary="Wake a saved device",
    description="Create a wake task for the device's MAC address, attributed to the caller",
)
async def wake_device(
    device_id: str = Path(..., description="Device identifier"),
    principal: Principal = Depends(require_user),
    store: TaskStore = Depends(get_store),
) -> TaskEnvelope:
    task = await device_service.wake_device(store, device_id, principal.id)
    return TaskEnvelope(task=task)
