# wolmgr/models/models.py
"""
Data models for the Wake-on-LAN task manager.
Defines Pydantic models for stored records and request/response schemas.

JSON field names are camelCase (``macAddress``, ``createdAt``...); Python
attributes stay snake_case. Both names are accepted on input.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from wolmgr.core.lifecycle import TaskStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Task(CamelModel):
    """
    One wake request and its lifecycle record.

    Attributes:
        id: Opaque identifier assigned at creation
        mac_address: Normalized target MAC (AA:BB:CC:DD:EE:FF)
        status: Lifecycle position (pending, processing, success, failed)
        created_at: Creation time in epoch milliseconds
        updated_at: Last mutation time in epoch milliseconds
        attempts: Number of times the task entered processing
        owner_id: Owning principal, when the deployment attributes tasks
        device_ref: Saved device the task was created from, if any
    """

    id: str = Field(..., description="Task unique identifier - immutable")
    mac_address: str = Field(
        ..., description="Target MAC address, always uppercase and colon-separated"
    )
    status: TaskStatus = Field(
        TaskStatus.PENDING,
        description="Task status: pending, processing, success, failed",
    )
    created_at: int = Field(..., description="Creation timestamp (epoch milliseconds)")
    updated_at: int = Field(
        ..., description="Last update timestamp (epoch milliseconds) - changes on every mutation"
    )
    attempts: int = Field(0, ge=0, description="Number of times the task entered processing")
    owner_id: Optional[str] = Field(None, description="Owning principal, if attributed")
    device_ref: Optional[str] = Field(
        None, description="Identifier of the saved device this task was created from"
    )


class PendingTask(CamelModel):
    """Minimal view handed to waking agents: what to wake and how to report back."""

    id: str = Field(..., description="Task identifier to report status for")
    mac_address: str = Field(..., description="MAC address to wake")


class Device(CamelModel):
    """A saved MAC address with an optional label, owned by a principal."""

    id: str = Field(..., description="Device unique identifier")
    owner_id: str = Field(..., description="Principal owning this device")
    name: Optional[str] = Field(None, description="Human readable label")
    mac_address: str = Field(..., description="Normalized MAC address")
    created_at: int = Field(..., description="Creation timestamp (epoch milliseconds)")


# ======================================================
# Request bodies
# ======================================================

# Fields are optional at the schema level so that missing values produce the
# domain error message ("macAddress is required") rather than a schema dump.


class TaskCreateRequest(CamelModel):
    mac_address: Optional[str] = Field(None, description="MAC address of the device to wake")


class TaskStatusUpdate(CamelModel):
    id: Optional[str] = Field(None, description="Task identifier")
    status: Optional[str] = Field(
        None, description="New status: pending, processing, success or failed"
    )


class NotifyRequest(CamelModel):
    """Device-observed signal: resolve by task id first, then by newest task for the MAC."""

    id: Optional[str] = Field(None, description="Task identifier, if known")
    mac_address: Optional[str] = Field(None, description="MAC address of the observed device")


class ClaimRequest(CamelModel):
    limit: Optional[int] = Field(
        None, ge=1, description="Maximum number of tasks to claim (server default if omitted)"
    )


class DeviceCreateRequest(CamelModel):
    name: Optional[str] = Field(None, max_length=120, description="Optional label")
    mac_address: Optional[str] = Field(None, description="MAC address to remember")


# ======================================================
# Response envelopes
# ======================================================


class TaskEnvelope(CamelModel):
    task: Task


class TaskListEnvelope(CamelModel):
    tasks: List[Task]


class PendingTaskListEnvelope(CamelModel):
    tasks: List[PendingTask]


class DeviceEnvelope(CamelModel):
    device: Device


class DeviceListEnvelope(CamelModel):
    devices: List[Device]


class Principal(CamelModel):
    id: str = Field(..., description="Principal identifier (token name)")


class MeResponse(CamelModel):
    user: Optional[Principal] = None


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Human readable error message")
