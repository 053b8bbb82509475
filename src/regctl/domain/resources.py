"""Persisted facts: resources, embedded transfer data, billing and poll records.

All models are frozen; mutations produce new instances via
``model_copy(update=...)``. Cross-resource links are plain repository ids
(weak references); existence is checked explicitly by readers, never
assumed.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from regctl.domain.lifecycle import (
    BillingReason,
    ContactType,
    EntityStage,
    GracePeriodStatus,
    HistoryType,
    ResourceType,
    StatusValue,
    TransferStatus,
)
from regctl.domain.times import END_OF_TIME

_FROZEN = ConfigDict(frozen=True)


def resource_key(resource_type: str, repo_id: str) -> str:
    """Stable identifier used in integrity findings (``domain/3-TLD``)."""
    return f"{resource_type}/{repo_id}"


def foreign_key_index_key(resource_type: str, label: str) -> str:
    return f"fki/{resource_type}/{label}"


class GracePeriod(BaseModel):
    model_config = _FROZEN

    type: GracePeriodStatus
    expiration_time: datetime
    client_id: str
    billing_event_id: int | None = None


class DesignatedContact(BaseModel):
    model_config = _FROZEN

    type: ContactType
    contact: str


class TransferData(BaseModel):
    """Transfer facts embedded in a domain.

    ``status`` is authoritative only while ``now < pending_expiration_time``;
    after that the logical status is SERVER_APPROVED whether or not storage
    has been rewritten. The ``server_approve_*`` ids point at staged rows
    that take effect only when the transfer is committed.
    """

    model_config = _FROZEN

    gaining_client_id: str
    losing_client_id: str
    request_time: datetime
    pending_expiration_time: datetime
    status: TransferStatus = TransferStatus.PENDING
    extended_registration_years: int = 1
    transferred_registration_expiration_time: datetime | None = None
    losing_autorenew_end_time: datetime | None = None
    server_approve_billing_event: int | None = None
    server_approve_autorenew_event: int | None = None
    server_approve_autorenew_poll_message: int | None = None
    server_approve_entities: tuple[int, ...] = ()

    @property
    def is_nominally_pending(self) -> bool:
        return self.status == TransferStatus.PENDING

    def staged_billing_ids(self) -> list[int]:
        return [
            i
            for i in (self.server_approve_billing_event, self.server_approve_autorenew_event)
            if i is not None
        ]

    def staged_poll_ids(self) -> list[int]:
        ids = list(self.server_approve_entities)
        if self.server_approve_autorenew_poll_message is not None:
            ids.append(self.server_approve_autorenew_poll_message)
        return ids

    def resolved(self, status: TransferStatus, at: datetime) -> TransferData:
        """Terminal copy with staged references cleared."""
        return self.model_copy(
            update={
                "status": status,
                "pending_expiration_time": at,
                "server_approve_billing_event": None,
                "server_approve_autorenew_event": None,
                "server_approve_autorenew_poll_message": None,
                "server_approve_entities": (),
            }
        )


class Resource(BaseModel):
    """A domain, host, or contact. Soft-deleted in place via ``deletion_time``."""

    model_config = _FROZEN

    repo_id: str
    resource_type: ResourceType
    label: str
    creation_time: datetime
    deletion_time: datetime = END_OF_TIME
    current_sponsor: str
    creation_client_id: str
    statuses: frozenset[StatusValue] = frozenset()

    # Domain fields
    tld: str | None = None
    registration_expiration_time: datetime | None = None
    nameservers: tuple[str, ...] = ()
    registrant: str | None = None
    contacts: tuple[DesignatedContact, ...] = ()
    grace_periods: tuple[GracePeriod, ...] = ()
    autorenew_billing_event: int | None = None
    autorenew_poll_message: int | None = None
    subordinate_hosts: tuple[str, ...] = ()
    last_transfer_time: datetime | None = None
    transfer_data: TransferData | None = None

    # Host fields
    superordinate_domain: str | None = None

    @property
    def key(self) -> str:
        return resource_key(self.resource_type, self.repo_id)

    def is_deleted_at(self, now: datetime) -> bool:
        return self.deletion_time <= now

    def is_active_at(self, now: datetime) -> bool:
        return self.creation_time <= now < self.deletion_time

    def referenced_repo_ids(self) -> list[tuple[ResourceType, str]]:
        """Outgoing weak references, in a stable order."""
        refs: list[tuple[ResourceType, str]] = []
        if self.resource_type == ResourceType.DOMAIN:
            refs.extend((ResourceType.HOST, ns) for ns in self.nameservers)
            if self.registrant is not None:
                refs.append((ResourceType.CONTACT, self.registrant))
            refs.extend((ResourceType.CONTACT, c.contact) for c in self.contacts)
        elif self.resource_type == ResourceType.HOST and self.superordinate_domain:
            refs.append((ResourceType.DOMAIN, self.superordinate_domain))
        return refs

    def references(self, target: Resource) -> bool:
        """True if this resource's live reference fields point at *target*."""
        return (target.resource_type, target.repo_id) in self.referenced_repo_ids()

    def with_status(self, status: StatusValue, *, present: bool) -> Resource:
        statuses = set(self.statuses)
        if present:
            statuses.add(status)
        else:
            statuses.discard(status)
        return self.model_copy(update={"statuses": frozenset(statuses)})


class BillingEvent(BaseModel):
    """One-time charge or recurring (autorenew) billing record."""

    model_config = _FROZEN

    id: int | None = None
    kind: Literal["one_time", "recurring"]
    repo_id: str
    target_label: str
    reason: BillingReason
    client_id: str
    event_time: datetime
    billing_time: datetime | None = None
    cost: Decimal | None = None
    currency: str | None = None
    period_years: int | None = None
    recurrence_end_time: datetime | None = None
    stage: EntityStage = EntityStage.COMMITTED


class PollMessage(BaseModel):
    model_config = _FROZEN

    id: int | None = None
    kind: Literal["one_time", "autorenew"] = "one_time"
    repo_id: str
    client_id: str
    event_time: datetime
    msg: str
    autorenew_end_time: datetime | None = None
    stage: EntityStage = EntityStage.COMMITTED


class HistoryEntry(BaseModel):
    model_config = _FROZEN

    id: int | None = None
    repo_id: str
    type: HistoryType
    client_id: str
    modification_time: datetime
    detail: dict[str, str] = Field(default_factory=dict)
