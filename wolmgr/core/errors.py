# wolmgr/core/errors.py
"""
Exception hierarchy for task lifecycle, lookup and storage failures.

The HTTP layer maps each family to one status code (see wolmgr.api.errors).
"""


class WolError(Exception):
    """Base error for the task manager."""


class InvalidArgumentError(WolError):
    """Caller-fixable input problem (bad MAC, missing field, unknown status)."""


class InvalidTransitionError(InvalidArgumentError):
    """Requested status change is not part of the lifecycle graph."""


class NotFoundError(WolError):
    """Referenced record does not exist (or is not visible to the caller)."""


class TaskNotFoundError(NotFoundError):
    """No task matches the given id or MAC address."""


class DeviceNotFoundError(NotFoundError):
    """No saved device matches the given id for this principal."""


class StoreError(WolError):
    """Storage unavailable, lock timeout or corrupt state."""
