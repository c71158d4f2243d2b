# wolmgr/services/device_service.py
"""
Saved devices: a remembered MAC address (and optional label) owned by a
principal, used as a template for creating wake tasks.
"""

import asyncio
import uuid
from typing import List, Optional

from wolmgr.core.errors import DeviceNotFoundError, InvalidArgumentError
from wolmgr.core.lifecycle import now_ms
from wolmgr.core.mac import normalize_mac
from wolmgr.core.setup_logging import setup_default_logging
from wolmgr.core.store import TaskStore
from wolmgr.models.models import Device, Task
from wolmgr.services import task_service

logger = setup_default_logging()


async def create_device(
    store: TaskStore, owner_id: str, mac_address: Optional[str], name: Optional[str] = None
) -> Device:
    if mac_address is None or (isinstance(mac_address, str) and not mac_address.strip()):
        raise InvalidArgumentError("macAddress is required")

    label = name.strip() if isinstance(name, str) and name.strip() else None
    device = Device(
        id=str(uuid.uuid4()),
        owner_id=owner_id,
        name=label,
        mac_address=normalize_mac(mac_address),
        created_at=now_ms(),
    )
    await asyncio.to_thread(store.insert_device, device)

    logger.info(
        f"Device {device.id} saved for {owner_id}",
        extra={"device_id": device.id, "principal": owner_id, "mac_address": device.mac_address},
    )
    return device


async def list_devices(store: TaskStore, owner_id: str) -> List[Device]:
    return await asyncio.to_thread(store.list_devices, owner_id)


async def get_owned_device(store: TaskStore, device_id: str, owner_id: str) -> Device:
    """
    Fetch a device belonging to ``owner_id``.

    A device owned by someone else is reported exactly like a missing one.

    Raises:
        DeviceNotFoundError: If the device does not exist for this principal
    """
    device = await asyncio.to_thread(store.get_device, device_id)
    if device is None or device.owner_id != owner_id:
        raise DeviceNotFoundError("Device not found")
    return device


async def delete_device(store: TaskStore, device_id: str, owner_id: str) -> None:
    deleted = await asyncio.to_thread(store.delete_device, device_id, owner_id)
    if not deleted:
        raise DeviceNotFoundError("Device not found")
    logger.info(
        f"Device {device_id} deleted by {owner_id}",
        extra={"device_id": device_id, "principal": owner_id},
    )


async def wake_device(store: TaskStore, device_id: str, owner_id: str) -> Task:
    """
    Create a wake task from a saved device.

    The task carries ``owner_id`` and ``device_ref`` so that it shows up in
    the owner's task list and can be traced back to the device.
    """
    device = await get_owned_device(store, device_id, owner_id)
    return await task_service.create_task(
        store, device.mac_address, owner_id=owner_id, device_ref=device.id
    )
