"""Datastore — repository with per-resource transactional access.

The Datastore is the single dependency injected into every service. It owns
the SQLAlchemy engine and hands out :class:`DatastoreTransaction` objects:

- :meth:`Datastore.transaction` opens a ``BEGIN IMMEDIATE`` transaction, so
  mutations of one resource are totally ordered. Commit on success,
  rollback on any exception.
- :meth:`Datastore.read` opens a deferred read transaction. Every resource
  load is a strongly consistent read of the current committed row.
- :meth:`Datastore.transact` wraps a unit of work in the bounded-backoff
  :class:`Retrier` so transient lock contention is retried.

Secondary indexes (``foreign_key_index``, ``reference_index``) are
conveniences for lookup only; correctness-critical paths re-read resources
by primary key.
"""

from __future__ import annotations

import json
import logging
import zlib
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import delete, insert, select, update

from regctl.domain.errors import ResourceDoesNotExist, ValidationError
from regctl.domain.lifecycle import (
    DeletionOutcome,
    EntityStage,
    ResourceType,
)
from regctl.domain.resources import BillingEvent, HistoryEntry, PollMessage, Resource
from regctl.domain.times import END_OF_TIME, from_iso, to_iso
from regctl.domain.tld import Tld
from regctl.infrastructure.database.engine import (
    READ_ONLY_OPTION,
    REPO_ID_PREFIX,
    init_database,
)
from regctl.infrastructure.database.schema import (
    billing_events,
    deletion_requests,
    foreign_key_index,
    history_entries,
    id_counters,
    poll_messages,
    reference_index,
    resource_index,
    resources,
    tlds,
)
from regctl.infrastructure.retry import Retrier

if TYPE_CHECKING:
    from sqlalchemy import Connection, Row
    from sqlalchemy.engine import Engine

    from regctl.config.settings import RegSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Resources are hashed into this many fixed buckets; bulk jobs split the
# bucket range into shards.
SHARD_BUCKETS = 1024


def bucket_for(repo_id: str) -> int:
    return zlib.crc32(repo_id.encode("utf-8")) % SHARD_BUCKETS


def shard_ranges(count: int) -> list[tuple[int, int]]:
    """Split the bucket space into *count* contiguous ``[lo, hi)`` ranges."""
    count = max(1, min(count, SHARD_BUCKETS))
    bounds = [SHARD_BUCKETS * i // count for i in range(count + 1)]
    return list(zip(bounds, bounds[1:], strict=False))


def _opt_iso(value: datetime | None) -> str | None:
    return to_iso(value) if value is not None else None


def _opt_dt(raw: str | None) -> datetime | None:
    return from_iso(raw) if raw is not None else None


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def _billing_values(event: BillingEvent) -> dict[str, Any]:
    return {
        "kind": event.kind,
        "repo_id": event.repo_id,
        "target_label": event.target_label,
        "reason": str(event.reason),
        "client_id": event.client_id,
        "event_time": to_iso(event.event_time),
        "billing_time": _opt_iso(event.billing_time),
        "cost": str(event.cost) if event.cost is not None else None,
        "currency": event.currency,
        "period_years": event.period_years,
        "recurrence_end_time": _opt_iso(event.recurrence_end_time),
        "stage": str(event.stage),
    }


def _billing_from_row(row: Row[Any]) -> BillingEvent:
    return BillingEvent(
        id=row.id,
        kind=row.kind,
        repo_id=row.repo_id,
        target_label=row.target_label,
        reason=row.reason,
        client_id=row.client_id,
        event_time=from_iso(row.event_time),
        billing_time=_opt_dt(row.billing_time),
        cost=Decimal(row.cost) if row.cost is not None else None,
        currency=row.currency,
        period_years=row.period_years,
        recurrence_end_time=_opt_dt(row.recurrence_end_time),
        stage=row.stage,
    )


def _poll_values(message: PollMessage) -> dict[str, Any]:
    return {
        "kind": message.kind,
        "repo_id": message.repo_id,
        "client_id": message.client_id,
        "event_time": to_iso(message.event_time),
        "msg": message.msg,
        "autorenew_end_time": _opt_iso(message.autorenew_end_time),
        "stage": str(message.stage),
    }


def _poll_from_row(row: Row[Any]) -> PollMessage:
    return PollMessage(
        id=row.id,
        kind=row.kind,
        repo_id=row.repo_id,
        client_id=row.client_id,
        event_time=from_iso(row.event_time),
        msg=row.msg,
        autorenew_end_time=_opt_dt(row.autorenew_end_time),
        stage=row.stage,
    )


def _resource_values(resource: Resource) -> dict[str, Any]:
    return {
        "resource_type": str(resource.resource_type),
        "label": resource.label,
        "creation_time": to_iso(resource.creation_time),
        "deletion_time": to_iso(resource.deletion_time),
        "sponsor": resource.current_sponsor,
        "payload": resource.model_dump_json(),
    }


@dataclass(frozen=True)
class DeletionRequestRecord:
    request_id: str
    repo_id: str
    resource_type: ResourceType
    requesting_client_id: str
    requested_at: datetime
    outcome: DeletionOutcome
    referrers: tuple[str, ...] = ()
    message: str | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class ForeignKeyRow:
    resource_type: str
    label: str
    repo_id: str
    deletion_time: datetime


# ---------------------------------------------------------------------------
# DatastoreTransaction: yielded by transaction() and read()
# ---------------------------------------------------------------------------


@dataclass
class DatastoreTransaction:
    """Active connection with typed data-access helpers.

    Within :meth:`Datastore.transaction` every write participates in one
    atomic commit. Within :meth:`Datastore.read` only the read helpers
    should be used.
    """

    conn: Connection

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def allocate_repo_id(self, suffix: str) -> str:
        """Claim the next repository id, e.g. ``"7-TLD"``."""
        row = self.conn.execute(
            select(id_counters.c.next_value).where(id_counters.c.type_prefix == REPO_ID_PREFIX)
        ).one()
        value: int = row.next_value
        self.conn.execute(
            update(id_counters)
            .where(id_counters.c.type_prefix == REPO_ID_PREFIX)
            .values(next_value=value + 1)
        )
        return f"{value}-{suffix.upper()}"

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def load_resource(self, repo_id: str) -> Resource | None:
        """Strongly consistent read by primary key."""
        row = self.conn.execute(
            select(resources.c.payload).where(resources.c.repo_id == repo_id)
        ).first()
        if row is None:
            return None
        return Resource.model_validate_json(row.payload)

    def require_resource(self, repo_id: str) -> Resource:
        resource = self.load_resource(repo_id)
        if resource is None:
            msg = f"Resource {repo_id} does not exist"
            raise ResourceDoesNotExist(msg, repo_id=repo_id)
        return resource

    def insert_resource(self, resource: Resource) -> None:
        """Insert a new resource with its existence, foreign-key and reference index rows."""
        self.conn.execute(insert(resources).values(repo_id=resource.repo_id, **_resource_values(resource)))
        self.conn.execute(
            insert(resource_index).values(
                repo_id=resource.repo_id,
                resource_type=str(resource.resource_type),
                shard=bucket_for(resource.repo_id),
            )
        )
        self.conn.execute(
            insert(foreign_key_index).values(
                resource_type=str(resource.resource_type),
                label=resource.label,
                repo_id=resource.repo_id,
                deletion_time=to_iso(resource.deletion_time),
            )
        )
        self._index_references(resource)

    def save_resource(self, resource: Resource) -> None:
        """Overwrite a resource row and keep its index rows in step.

        Raises:
            ValidationError: The write would move a finite ``deletion_time``
                later (soft deletes are monotonic).
        """
        existing = self.require_resource(resource.repo_id)
        if existing.deletion_time != END_OF_TIME and resource.deletion_time > existing.deletion_time:
            msg = (
                f"deletion_time of {resource.repo_id} cannot move from "
                f"{to_iso(existing.deletion_time)} to {to_iso(resource.deletion_time)}"
            )
            raise ValidationError(msg, repo_id=resource.repo_id)
        self.conn.execute(
            update(resources)
            .where(resources.c.repo_id == resource.repo_id)
            .values(**_resource_values(resource))
        )
        if resource.deletion_time != existing.deletion_time:
            self.conn.execute(
                update(foreign_key_index)
                .where(foreign_key_index.c.repo_id == resource.repo_id)
                .values(deletion_time=to_iso(resource.deletion_time))
            )
        if resource.referenced_repo_ids() != existing.referenced_repo_ids():
            self.conn.execute(
                delete(reference_index).where(
                    reference_index.c.referrer_repo_id == resource.repo_id
                )
            )
            self._index_references(resource)

    def _index_references(self, resource: Resource) -> None:
        targets = {repo_id for _, repo_id in resource.referenced_repo_ids()}
        for target in sorted(targets):
            self.conn.execute(
                insert(reference_index).values(
                    target_repo_id=target, referrer_repo_id=resource.repo_id
                )
            )

    def foreign_key_rows(self, resource_type: str, label: str) -> list[ForeignKeyRow]:
        rows = self.conn.execute(
            select(foreign_key_index)
            .where(
                foreign_key_index.c.resource_type == resource_type,
                foreign_key_index.c.label == label,
            )
            .order_by(foreign_key_index.c.id)
        ).fetchall()
        return [
            ForeignKeyRow(r.resource_type, r.label, r.repo_id, from_iso(r.deletion_time))
            for r in rows
        ]

    def load_by_label(self, resource_type: str, label: str, now: datetime) -> Resource | None:
        """The resource active under *label* at *now*, via the foreign-key index.

        Index hits are confirmed against the resource row itself.
        """
        for fki in self.foreign_key_rows(resource_type, label):
            if fki.deletion_time <= now:
                continue
            resource = self.load_resource(fki.repo_id)
            if resource is not None and resource.is_active_at(now):
                return resource
        return None

    def query_referrers(self, target_repo_id: str, limit: int) -> list[str]:
        """Candidate referrers from the eventually-consistent reverse index."""
        rows = self.conn.execute(
            select(reference_index.c.referrer_repo_id)
            .where(reference_index.c.target_repo_id == target_repo_id)
            .order_by(reference_index.c.referrer_repo_id)
            .limit(limit)
        ).fetchall()
        return [r.referrer_repo_id for r in rows]

    def indexed_repo_ids(
        self,
        bucket_range: tuple[int, int],
        *,
        resource_type: ResourceType | None = None,
    ) -> list[str]:
        """Repo ids from the resource index whose bucket falls in ``[lo, hi)``."""
        lo, hi = bucket_range
        stmt = select(resource_index.c.repo_id).where(
            resource_index.c.shard >= lo, resource_index.c.shard < hi
        )
        if resource_type is not None:
            stmt = stmt.where(resource_index.c.resource_type == str(resource_type))
        return [r.repo_id for r in self.conn.execute(stmt.order_by(resource_index.c.repo_id))]

    def stored_repo_ids(self, bucket_range: tuple[int, int]) -> list[str]:
        """Repo ids straight from the resources table (bypasses every index)."""
        lo, hi = bucket_range
        ids = [r.repo_id for r in self.conn.execute(select(resources.c.repo_id))]
        return sorted(i for i in ids if lo <= bucket_for(i) < hi)

    def has_resource_index(self, repo_id: str) -> bool:
        row = self.conn.execute(
            select(resource_index.c.repo_id).where(resource_index.c.repo_id == repo_id)
        ).first()
        return row is not None

    # ------------------------------------------------------------------
    # Billing events and poll messages
    # ------------------------------------------------------------------

    def insert_billing_event(self, event: BillingEvent) -> int:
        result = self.conn.execute(insert(billing_events).values(**_billing_values(event)))
        return int(result.inserted_primary_key[0])

    def load_billing_event(self, event_id: int) -> BillingEvent | None:
        row = self.conn.execute(
            select(billing_events).where(billing_events.c.id == event_id)
        ).first()
        return _billing_from_row(row) if row is not None else None

    def set_recurrence_end_time(self, event_id: int, end: datetime) -> None:
        self.conn.execute(
            update(billing_events)
            .where(billing_events.c.id == event_id)
            .values(recurrence_end_time=to_iso(end))
        )

    def billing_events_for(self, repo_id: str) -> list[BillingEvent]:
        rows = self.conn.execute(
            select(billing_events)
            .where(billing_events.c.repo_id == repo_id)
            .order_by(billing_events.c.id)
        ).fetchall()
        return [_billing_from_row(r) for r in rows]

    def insert_poll_message(self, message: PollMessage) -> int:
        result = self.conn.execute(insert(poll_messages).values(**_poll_values(message)))
        return int(result.inserted_primary_key[0])

    def load_poll_message(self, message_id: int) -> PollMessage | None:
        row = self.conn.execute(
            select(poll_messages).where(poll_messages.c.id == message_id)
        ).first()
        return _poll_from_row(row) if row is not None else None

    def set_autorenew_end_time(self, message_id: int, end: datetime) -> None:
        self.conn.execute(
            update(poll_messages)
            .where(poll_messages.c.id == message_id)
            .values(autorenew_end_time=to_iso(end))
        )

    def poll_messages_for(
        self, *, client_id: str | None = None, repo_id: str | None = None
    ) -> list[PollMessage]:
        stmt = select(poll_messages).order_by(poll_messages.c.id)
        if client_id is not None:
            stmt = stmt.where(poll_messages.c.client_id == client_id)
        if repo_id is not None:
            stmt = stmt.where(poll_messages.c.repo_id == repo_id)
        return [_poll_from_row(r) for r in self.conn.execute(stmt)]

    def commit_staged(self, *, billing_ids: list[int], poll_ids: list[int]) -> None:
        """Flip staged rows to committed. Already-committed rows are untouched."""
        if billing_ids:
            self.conn.execute(
                update(billing_events)
                .where(billing_events.c.id.in_(billing_ids))
                .values(stage=str(EntityStage.COMMITTED))
            )
        if poll_ids:
            self.conn.execute(
                update(poll_messages)
                .where(poll_messages.c.id.in_(poll_ids))
                .values(stage=str(EntityStage.COMMITTED))
            )

    def discard_staged(self, *, billing_ids: list[int], poll_ids: list[int]) -> None:
        """Delete staged rows. Committed rows are never deleted."""
        if billing_ids:
            self.conn.execute(
                delete(billing_events).where(
                    billing_events.c.id.in_(billing_ids),
                    billing_events.c.stage == str(EntityStage.STAGED),
                )
            )
        if poll_ids:
            self.conn.execute(
                delete(poll_messages).where(
                    poll_messages.c.id.in_(poll_ids),
                    poll_messages.c.stage == str(EntityStage.STAGED),
                )
            )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def insert_history(self, entry: HistoryEntry) -> int:
        result = self.conn.execute(
            insert(history_entries).values(
                repo_id=entry.repo_id,
                type=str(entry.type),
                client_id=entry.client_id,
                modification_time=to_iso(entry.modification_time),
                detail=json.dumps(entry.detail, sort_keys=True),
            )
        )
        return int(result.inserted_primary_key[0])

    def history_for(self, repo_id: str) -> list[HistoryEntry]:
        rows = self.conn.execute(
            select(history_entries)
            .where(history_entries.c.repo_id == repo_id)
            .order_by(history_entries.c.id)
        ).fetchall()
        return [
            HistoryEntry(
                id=r.id,
                repo_id=r.repo_id,
                type=r.type,
                client_id=r.client_id,
                modification_time=from_iso(r.modification_time),
                detail=json.loads(r.detail) if r.detail else {},
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # TLDs
    # ------------------------------------------------------------------

    def save_tld(self, tld: Tld) -> None:
        payload = json.dumps(tld.to_dict(), sort_keys=True)
        existing = self.conn.execute(select(tlds.c.name).where(tlds.c.name == tld.name)).first()
        if existing is None:
            self.conn.execute(insert(tlds).values(name=tld.name, payload=payload))
        else:
            self.conn.execute(update(tlds).where(tlds.c.name == tld.name).values(payload=payload))

    def load_tld(self, name: str) -> Tld | None:
        row = self.conn.execute(select(tlds.c.payload).where(tlds.c.name == name)).first()
        return Tld.from_dict(json.loads(row.payload)) if row is not None else None

    # ------------------------------------------------------------------
    # Deletion requests
    # ------------------------------------------------------------------

    def insert_deletion_request(self, record: DeletionRequestRecord) -> None:
        self.conn.execute(
            insert(deletion_requests).values(
                request_id=record.request_id,
                repo_id=record.repo_id,
                resource_type=str(record.resource_type),
                requesting_client_id=record.requesting_client_id,
                requested_at=to_iso(record.requested_at),
                outcome=str(record.outcome),
            )
        )

    def load_deletion_request(self, request_id: str) -> DeletionRequestRecord | None:
        row = self.conn.execute(
            select(deletion_requests).where(deletion_requests.c.request_id == request_id)
        ).first()
        if row is None:
            return None
        return DeletionRequestRecord(
            request_id=row.request_id,
            repo_id=row.repo_id,
            resource_type=ResourceType(row.resource_type),
            requesting_client_id=row.requesting_client_id,
            requested_at=from_iso(row.requested_at),
            outcome=DeletionOutcome(row.outcome),
            referrers=tuple(json.loads(row.referrers)) if row.referrers else (),
            message=row.message,
            completed_at=_opt_dt(row.completed_at),
        )

    def complete_deletion_request(
        self,
        request_id: str,
        outcome: DeletionOutcome,
        *,
        completed_at: datetime,
        referrers: list[str] | None = None,
        message: str | None = None,
    ) -> bool:
        """Record a terminal outcome if none is recorded yet.

        Returns False when another execution already completed the request.
        """
        result = self.conn.execute(
            update(deletion_requests)
            .where(
                deletion_requests.c.request_id == request_id,
                deletion_requests.c.outcome == str(DeletionOutcome.PENDING),
            )
            .values(
                outcome=str(outcome),
                completed_at=to_iso(completed_at),
                referrers=json.dumps(referrers or []),
                message=message,
            )
        )
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# Datastore
# ---------------------------------------------------------------------------


class Datastore:
    """Repository encapsulating all registry storage access.

    Constructed once from :class:`RegSettings`. Services receive the
    Datastore via their :class:`BaseService` constructor.
    """

    def __init__(self, settings: RegSettings, *, retrier: Retrier | None = None) -> None:
        self._settings = settings
        storage = settings.storage
        self._engine: Engine = init_database(self.root, busy_timeout=storage.busy_timeout)
        self._retrier = retrier or Retrier(
            attempts=storage.max_retries,
            base_delay=storage.retry_base_delay,
            max_delay=storage.retry_max_delay,
        )

    @property
    def root(self) -> Path:
        return self._settings.data_root

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def settings(self) -> RegSettings:
        return self._settings

    @property
    def retrier(self) -> Retrier:
        return self._retrier

    @contextmanager
    def transaction(self) -> Iterator[DatastoreTransaction]:
        """Single write transaction (``BEGIN IMMEDIATE``).

        Usage::

            with store.transaction() as txn:
                resource = txn.require_resource(repo_id)
                txn.save_resource(resource.model_copy(update=...))
                # Commits on normal exit, rolls back on exception.
        """
        with self._engine.begin() as conn:
            yield DatastoreTransaction(conn=conn)

    @contextmanager
    def read(self) -> Iterator[DatastoreTransaction]:
        """Deferred read transaction; never takes the write lock."""
        with self._engine.connect() as conn:
            conn.execution_options(**{READ_ONLY_OPTION: True})
            yield DatastoreTransaction(conn=conn)

    def transact(self, work: Callable[[DatastoreTransaction], T]) -> T:
        """Run *work* in a write transaction, retrying transient failures.

        *work* may be invoked more than once, so it must not have side
        effects outside the transaction.
        """

        def _attempt() -> T:
            with self.transaction() as txn:
                return work(txn)

        return self._retrier.call(_attempt)

    def load_resource(self, repo_id: str) -> Resource | None:
        """Standalone strongly consistent read, retried on contention."""

        def _attempt() -> Resource | None:
            with self.read() as txn:
                return txn.load_resource(repo_id)

        return self._retrier.call(_attempt)

    def close(self) -> None:
        self._engine.dispose()
