"""Lazy state projection — derive logical state from persisted facts and ``now``.

No scheduled job ever applies a timed transition. Every read re-derives it
from the stored facts and an explicit clock value, so:

- the result is deterministic and side-effect free;
- two reads at the same ``now`` agree;
- a read at a later ``now`` never un-resolves what an earlier read resolved.

Rules, in priority order:

1. ``deletion_time <= now`` → DELETED, regardless of anything else.
2. A nominally PENDING transfer with ``now >= pending_expiration_time``
   projects as SERVER_APPROVED, with the gaining client as sponsor, even
   though storage still says PENDING.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from regctl.domain.lifecycle import (
    LogicalState,
    ResourceType,
    StatusValue,
    TransferStatus,
)
from regctl.domain.resources import GracePeriod, Resource
from regctl.domain.times import ensure_utc


class ProjectedState(BaseModel):
    """Read-only view of a resource at one instant."""

    model_config = ConfigDict(frozen=True)

    repo_id: str
    resource_type: ResourceType
    label: str
    as_of: datetime
    state: LogicalState
    sponsor: str
    statuses: frozenset[StatusValue]
    transfer_status: TransferStatus
    gaining_client_id: str | None = None
    losing_client_id: str | None = None
    pending_transfer_expiration_time: datetime | None = None
    registration_expiration_time: datetime | None = None
    last_transfer_time: datetime | None = None
    creation_time: datetime
    deletion_time: datetime
    grace_periods: tuple[GracePeriod, ...] = ()


def has_implicitly_resolved_transfer(resource: Resource, now: datetime) -> bool:
    """True when storage says PENDING but the expiration instant has passed.

    A transfer that would only have expired after the resource was deleted
    never resolves.
    """
    data = resource.transfer_data
    if data is None or not data.is_nominally_pending:
        return False
    expiration = data.pending_expiration_time
    return now >= expiration and expiration < resource.deletion_time


def clone_projected_at_time(resource: Resource, now: datetime) -> Resource:
    """Return *resource* as storage would hold it once materialized at *now*.

    Pure: callers that persist the result are responsible for committing the
    staged billing/poll rows referenced by the original transfer data.
    """
    now = ensure_utc(now)
    if not has_implicitly_resolved_transfer(resource, now):
        return resource
    data = resource.transfer_data
    assert data is not None
    expiration = data.pending_expiration_time
    statuses = set(resource.statuses)
    statuses.discard(StatusValue.PENDING_TRANSFER)
    update: dict[str, object] = {
        "current_sponsor": data.gaining_client_id,
        "statuses": frozenset(statuses),
        "last_transfer_time": expiration,
        "transfer_data": data.resolved(TransferStatus.SERVER_APPROVED, expiration),
    }
    if data.transferred_registration_expiration_time is not None:
        update["registration_expiration_time"] = data.transferred_registration_expiration_time
    if data.server_approve_autorenew_event is not None:
        update["autorenew_billing_event"] = data.server_approve_autorenew_event
    if data.server_approve_autorenew_poll_message is not None:
        update["autorenew_poll_message"] = data.server_approve_autorenew_poll_message
    return resource.model_copy(update=update)


def active_grace_periods(resource: Resource, now: datetime) -> tuple[GracePeriod, ...]:
    return tuple(gp for gp in resource.grace_periods if gp.expiration_time > now)


def project(resource: Resource, now: datetime) -> ProjectedState:
    """Pure projection of *resource* at *now*."""
    now = ensure_utc(now)
    current = clone_projected_at_time(resource, now)
    data = current.transfer_data
    state = LogicalState.DELETED if current.is_deleted_at(now) else LogicalState.ACTIVE
    return ProjectedState(
        repo_id=current.repo_id,
        resource_type=current.resource_type,
        label=current.label,
        as_of=now,
        state=state,
        sponsor=current.current_sponsor,
        statuses=current.statuses,
        transfer_status=data.status if data is not None else TransferStatus.NONE,
        gaining_client_id=data.gaining_client_id if data is not None else None,
        losing_client_id=data.losing_client_id if data is not None else None,
        pending_transfer_expiration_time=(
            data.pending_expiration_time if data is not None else None
        ),
        registration_expiration_time=current.registration_expiration_time,
        last_transfer_time=current.last_transfer_time,
        creation_time=current.creation_time,
        deletion_time=current.deletion_time,
        grace_periods=active_grace_periods(current, now),
    )


def is_logically_pending(resource: Resource, now: datetime) -> bool:
    data = resource.transfer_data
    return (
        data is not None
        and data.is_nominally_pending
        and not has_implicitly_resolved_transfer(resource, now)
        and not resource.is_deleted_at(now)
    )
