# wolmgr/core/lifecycle.py
"""
Task lifecycle rules.

Pure functions: no storage, no clock side effects. The service layer reads a
task, asks this module what the next state is, and writes the result with a
conditional update so a concurrent change is detected instead of overwritten.

    pending ──claim──► processing ──update(success)/notify──► success (absorbing)
       │                  │  ▲
       │                  │  └──claim again / update(processing)──┐
       │                  └──update(failed)──► failed ───────────────┘
       └──update(success|failed|processing) (no claim involved)
"""

import time
from dataclasses import dataclass
from enum import Enum

from wolmgr.core.errors import InvalidArgumentError, InvalidTransitionError


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


CLAIMABLE_STATUSES = (TaskStatus.PENDING, TaskStatus.FAILED)

_VALID_STATUS_VALUES = {status.value for status in TaskStatus}


@dataclass(frozen=True)
class Transition:
    """Outcome of applying an event to a task in a given status."""

    status: TaskStatus
    attempts_delta: int = 0
    changed: bool = True
    # True when an update arrived for a task that already reached success
    stale: bool = False


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds (the stored timestamp unit)."""
    return int(time.time() * 1000)


def parse_status(value) -> TaskStatus:
    """
    Convert a raw status string into a TaskStatus.

    Raises:
        InvalidArgumentError: If the value is not one of the four lifecycle states
    """
    if isinstance(value, TaskStatus):
        return value
    if not isinstance(value, str) or value.strip().lower() not in _VALID_STATUS_VALUES:
        raise InvalidArgumentError(
            f"Invalid status {value!r}: expected one of {sorted(_VALID_STATUS_VALUES)}"
        )
    return TaskStatus(value.strip().lower())


def _unchanged(current: TaskStatus, *, stale: bool = False) -> Transition:
    return Transition(status=current, attempts_delta=0, changed=False, stale=stale)


def claim_transition(current: TaskStatus) -> Transition:
    """A claim moves a pending or failed task to processing and counts an attempt."""
    if current not in CLAIMABLE_STATUSES:
        raise InvalidTransitionError(f"Task in status {current.value!r} cannot be claimed")
    return Transition(status=TaskStatus.PROCESSING, attempts_delta=1)


def explicit_transition(current: TaskStatus, target: TaskStatus) -> Transition:
    """
    Transition for an explicit status update from an agent or operator.

    - same status: no write
    - success is absorbing: any other target is a stale update and is ignored
    - nothing re-enters pending
    - processing (manual retry) counts an attempt, success/failed do not
    """
    if target == current:
        return _unchanged(current)

    if current == TaskStatus.SUCCESS:
        return _unchanged(current, stale=True)

    if target == TaskStatus.PENDING:
        raise InvalidTransitionError(
            f"Task in status {current.value!r} cannot return to 'pending'"
        )

    if target == TaskStatus.PROCESSING:
        return Transition(status=TaskStatus.PROCESSING, attempts_delta=1)

    return Transition(status=target, attempts_delta=0)


def notify_transition(current: TaskStatus) -> Transition:
    """Out-of-band presence signal: anything but success becomes success, idempotently."""
    if current == TaskStatus.SUCCESS:
        return _unchanged(current)
    return Transition(status=TaskStatus.SUCCESS, attempts_delta=0)


def is_claimable(status: TaskStatus, attempts: int, max_attempts: int) -> bool:
    """Pending tasks are always claimable; failed ones while under the attempt cap."""
    if status == TaskStatus.PENDING:
        return True
    return status == TaskStatus.FAILED and attempts < max_attempts
