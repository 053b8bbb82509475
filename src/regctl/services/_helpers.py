"""Shared service-layer helpers: lookups, ownership checks, payload shaping."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from regctl.domain.errors import ResourceDoesNotExist, ResourceNotOwned, StatusProhibitsOperation
from regctl.domain.lifecycle import ResourceType, StatusValue
from regctl.domain.projection import ProjectedState, project
from regctl.domain.resources import HistoryEntry, PollMessage, Resource
from regctl.domain.times import to_iso
from regctl.infrastructure.datastore import DatastoreTransaction


def new_request_id() -> str:
    return uuid.uuid4().hex


def require_active(
    txn: DatastoreTransaction, resource_type: ResourceType, label: str, now: datetime
) -> Resource:
    """The resource active under *label* at *now*, or ResourceDoesNotExist."""
    resource = txn.load_by_label(str(resource_type), label, now)
    if resource is None:
        msg = f"The {resource_type} with given ID ({label}) doesn't exist."
        raise ResourceDoesNotExist(msg, resource_type=str(resource_type), label=label)
    return resource


def require_linkable(
    txn: DatastoreTransaction, resource_type: ResourceType, label: str, now: datetime
) -> Resource:
    """Like require_active, but refuses a target that is being deleted."""
    resource = require_active(txn, resource_type, label, now)
    reject_statuses(resource, {StatusValue.PENDING_DELETE}, "Linking")
    return resource


def require_sponsor(resource: Resource, client_id: str) -> None:
    if resource.current_sponsor != client_id:
        msg = f"{resource.label} is not owned by {client_id}"
        raise ResourceNotOwned(msg, label=resource.label, client_id=client_id)


def reject_statuses(
    resource: Resource, prohibited: Iterable[StatusValue], operation: str
) -> None:
    present = sorted(str(s) for s in resource.statuses.intersection(prohibited))
    if present:
        msg = f"{operation} of {resource.label} is prohibited by status {', '.join(present)}"
        raise StatusProhibitsOperation(msg, label=resource.label, statuses=present)


def history(
    txn: DatastoreTransaction,
    resource: Resource,
    type_: Any,
    client_id: str,
    now: datetime,
    **detail: str,
) -> None:
    txn.insert_history(
        HistoryEntry(
            repo_id=resource.repo_id,
            type=type_,
            client_id=client_id,
            modification_time=now,
            detail=detail,
        )
    )


def notify(
    txn: DatastoreTransaction, resource: Resource, client_id: str, now: datetime, msg: str
) -> int:
    """Committed one-time poll message."""
    return txn.insert_poll_message(
        PollMessage(repo_id=resource.repo_id, client_id=client_id, event_time=now, msg=msg)
    )


def state_payload(state: ProjectedState) -> dict[str, Any]:
    """JSON-friendly dict of a projection (ISO timestamps, sorted statuses)."""
    payload = state.model_dump(mode="json")
    payload["statuses"] = sorted(str(s) for s in state.statuses)
    for key in (
        "as_of",
        "pending_transfer_expiration_time",
        "registration_expiration_time",
        "last_transfer_time",
        "creation_time",
        "deletion_time",
    ):
        value = getattr(state, key)
        payload[key] = to_iso(value) if value is not None else None
    return payload


def projected_payload(resource: Resource, now: datetime) -> dict[str, Any]:
    return state_payload(project(resource, now))
