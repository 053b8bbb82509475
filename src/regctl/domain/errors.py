"""Typed failures raised by the lifecycle engine.

Four families, each handled differently by callers:

- :class:`ValidationError` — malformed input; surfaced immediately, never retried.
- :class:`StateConflict` — wrong-state transition; rejected, never auto-retried
  because retrying without an external change repeats the conflict.
- :class:`TransientStorageError` — contention or timeout inside a
  single-resource transaction; retried with bounded backoff.
- :class:`LinkedResourceException` — an expected negative outcome of a
  deletion request, not a fault.

Every class carries a stable ``code`` used as ``ServiceError.code``.
"""

from __future__ import annotations

from typing import Any


class RegistryError(Exception):
    """Base class for all engine failures."""

    code = "REGISTRY_ERROR"

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


# --- Validation ---


class ValidationError(RegistryError):
    code = "VALIDATION_ERROR"


class OrderViolation(ValidationError):
    """A timed-transition write was not strictly after the last key, or broke the value rule."""

    code = "ORDER_VIOLATION"


class InvalidTransitionValue(OrderViolation):
    """A timed-transition value broke the map's value rule (state graph, sign)."""

    code = "INVALID_TRANSITION_VALUE"


class NotInitialized(ValidationError):
    """A timed-transition read happened before the first key."""

    code = "NOT_INITIALIZED"


# --- State conflicts ---


class StateConflict(RegistryError):
    code = "STATE_CONFLICT"


class ResourceDoesNotExist(StateConflict):
    code = "RESOURCE_DOES_NOT_EXIST"


class ResourceNotOwned(StateConflict):
    code = "RESOURCE_NOT_OWNED"


class LabelAlreadyActive(StateConflict):
    code = "LABEL_ALREADY_ACTIVE"


class AlreadyPendingTransfer(StateConflict):
    code = "ALREADY_PENDING_TRANSFER"


class InvalidTransferState(StateConflict):
    code = "INVALID_TRANSFER_STATE"


class NotAuthorizedForTransfer(StateConflict):
    code = "NOT_AUTHORIZED_FOR_TRANSFER"


class ObjectAlreadySponsored(StateConflict):
    code = "OBJECT_ALREADY_SPONSORED"


class TransferLockPeriod(StateConflict):
    code = "TRANSFER_LOCK_PERIOD"


class ResourceAlreadyPendingDelete(StateConflict):
    code = "RESOURCE_ALREADY_PENDING_DELETE"


class DomainHasSubordinateHosts(StateConflict):
    code = "DOMAIN_HAS_SUBORDINATE_HOSTS"


class StatusProhibitsOperation(StateConflict):
    """A client or server *Prohibited status blocks the operation."""

    code = "STATUS_PROHIBITS_OPERATION"


# --- Storage ---


class TransientStorageError(RegistryError):
    """Retryable contention/timeout from the storage layer."""

    code = "TRANSIENT_STORAGE_ERROR"


# --- Deletion outcomes ---


class LinkedResourceException(RegistryError):
    """A live referrer was confirmed by a strongly consistent read."""

    code = "RESOURCE_LINKED"


class ScanTimeout(RegistryError):
    """A bulk scan exceeded its elapsed-time budget."""

    code = "SCAN_TIMEOUT"


class JobCancelled(RegistryError):
    code = "JOB_CANCELLED"
