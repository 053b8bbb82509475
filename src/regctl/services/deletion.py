"""DeletionCoordinator — two-phase safe deletion of hosts and contacts.

Phase 1 (synchronous, inside the request transaction): sample up to
``failfast_check_count`` candidates from the eventually-consistent
reference index and confirm each with a strong read. A confirmed live
reference rejects the request immediately with ``RESOURCE_LINKED``.
Otherwise the resource is flagged ``pendingDelete`` and a PENDING deletion
request row is written.

Phase 2 (:class:`DeletionScanJob`, on the job runner): strong reads of
every domain through the resource index, never the reference index, then
one final commit per request. The request row is compare-and-set, so each
``request_id`` records exactly one terminal outcome no matter how often
the job runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from regctl.domain.errors import (
    LinkedResourceException,
    RegistryError,
    ResourceAlreadyPendingDelete,
    ResourceDoesNotExist,
    ScanTimeout,
    ValidationError,
)
from regctl.domain.lifecycle import (
    DELETE_PROHIBITING_STATUSES,
    TERMINAL_DELETION_OUTCOMES,
    DeletionOutcome,
    HistoryType,
    ResourceType,
    StatusValue,
)
from regctl.domain.resources import Resource
from regctl.domain.times import earliest, ensure_utc, to_iso
from regctl.infrastructure.datastore import (
    Datastore,
    DatastoreTransaction,
    DeletionRequestRecord,
    shard_ranges,
)
from regctl.infrastructure.jobs import BulkJob, JobContext, JobHandle, JobRunner
from regctl.services._helpers import (
    history,
    new_request_id,
    notify,
    reject_statuses,
    require_active,
    require_sponsor,
)
from regctl.services.base import BaseService
from regctl.services.result import ServiceResult
from regctl.services.telemetry import traced
from regctl.services.transfer import materialize, server_cancel

logger = structlog.get_logger(__name__)

_HISTORY = {
    ResourceType.HOST: (
        HistoryType.HOST_PENDING_DELETE,
        HistoryType.HOST_DELETE,
        HistoryType.HOST_DELETE_FAILURE,
    ),
    ResourceType.CONTACT: (
        HistoryType.CONTACT_PENDING_DELETE,
        HistoryType.CONTACT_DELETE,
        HistoryType.CONTACT_DELETE_FAILURE,
    ),
}


@dataclass(frozen=True)
class DeletionParams:
    request_id: str
    repo_id: str
    resource_type: ResourceType
    client_id: str
    now: datetime


@dataclass(frozen=True)
class DeletionReport:
    request_id: str
    outcome: DeletionOutcome
    referrers: tuple[str, ...] = field(default_factory=tuple)
    message: str | None = None

    @classmethod
    def from_record(cls, record: DeletionRequestRecord) -> DeletionReport:
        return cls(record.request_id, record.outcome, record.referrers, record.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "outcome": str(self.outcome),
            "referrers": list(self.referrers),
            "message": self.message,
        }


# ---------------------------------------------------------------------------
# Phase 2
# ---------------------------------------------------------------------------


class DeletionScanJob(BulkJob[DeletionParams, tuple[int, int], DeletionReport]):
    """Full scan for live referrers of one resource pending deletion."""

    name = "deletion-scan"

    def __init__(self, store: Datastore) -> None:
        self._store = store
        config = store.settings.deletion
        self._shard_count = config.shard_count
        self._budget = config.scan_time_budget

    def plan(self, params: DeletionParams) -> list[tuple[int, int]]:
        return shard_ranges(self._shard_count)

    def run_shard(
        self, shard: tuple[int, int], params: DeletionParams, ctx: JobContext
    ) -> list[str]:
        with self._store.read() as txn:
            candidates = txn.indexed_repo_ids(shard, resource_type=ResourceType.DOMAIN)
        target = (params.resource_type, params.repo_id)
        referrers: list[str] = []
        for repo_id in candidates:
            ctx.raise_if_cancelled()
            self._check_budget(ctx, params)
            domain = self._store.load_resource(repo_id)
            if (
                domain is not None
                and domain.deletion_time > params.now
                and target in domain.referenced_repo_ids()
            ):
                referrers.append(repo_id)
        return referrers

    def finish(
        self, partials: list[Any], params: DeletionParams, ctx: JobContext
    ) -> DeletionReport:
        self._check_budget(ctx, params)
        referrers = sorted(r for part in partials for r in part)
        return self._store.transact(lambda txn: self._commit(txn, params, referrers))

    def on_cancel(self, params: DeletionParams, ctx: JobContext) -> DeletionReport:
        logger.warning("deletion.cancelled", request_id=params.request_id)
        return self._abandon(params, DeletionOutcome.CANCELLED, "Deletion cancelled by operator")

    def on_error(
        self, exc: Exception, params: DeletionParams, ctx: JobContext
    ) -> DeletionReport:
        if not isinstance(exc, ScanTimeout):
            raise exc
        logger.error(
            "deletion.scan_timeout",
            request_id=params.request_id,
            repo_id=params.repo_id,
            elapsed_seconds=round(ctx.elapsed(), 3),
            budget_seconds=self._budget,
        )
        return self._abandon(params, DeletionOutcome.TIMED_OUT, exc.message)

    def _check_budget(self, ctx: JobContext, params: DeletionParams) -> None:
        if ctx.elapsed() > self._budget:
            msg = f"Deletion scan exceeded its {self._budget}s budget"
            raise ScanTimeout(msg, request_id=params.request_id)

    # ------------------------------------------------------------------
    # Final commit
    # ------------------------------------------------------------------

    def _commit(
        self, txn: DatastoreTransaction, params: DeletionParams, referrers: list[str]
    ) -> DeletionReport:
        record = self._pending_record(txn, params)
        if record.outcome in TERMINAL_DELETION_OUTCOMES:
            return DeletionReport.from_record(record)

        _, deleted_type, failure_type = _HISTORY[params.resource_type]
        resource = materialize(txn, txn.require_resource(params.repo_id), params.now)
        kind = str(params.resource_type)

        if referrers:
            updated = resource.with_status(StatusValue.PENDING_DELETE, present=False)
            txn.save_resource(updated)
            message = f"Can't delete {kind} {resource.label} because it is referenced by a domain."
            history(
                txn, updated, failure_type, params.client_id, params.now,
                referrers=",".join(referrers),
            )
            notify(txn, updated, params.client_id, params.now, message)
            outcome = DeletionOutcome.FAILED_LINKED
        else:
            updated = (
                server_cancel(txn, resource, params.now)
                .with_status(StatusValue.PENDING_DELETE, present=False)
                .model_copy(update={"deletion_time": earliest(resource.deletion_time, params.now)})
            )
            txn.save_resource(updated)
            self._unlink_from_superordinate(txn, updated, params.now)
            message = f"Deleted {kind} {resource.label}."
            history(txn, updated, deleted_type, params.client_id, params.now)
            notify(txn, updated, params.client_id, params.now, message)
            outcome = DeletionOutcome.SUCCEEDED

        completed = txn.complete_deletion_request(
            params.request_id,
            outcome,
            completed_at=params.now,
            referrers=referrers,
            message=message,
        )
        assert completed, "deletion request row changed inside a write transaction"
        logger.info(
            "deletion.completed",
            request_id=params.request_id,
            outcome=str(outcome),
            referrers=len(referrers),
        )
        return DeletionReport(params.request_id, outcome, tuple(referrers), message)

    @staticmethod
    def _unlink_from_superordinate(
        txn: DatastoreTransaction, host: Resource, now: datetime
    ) -> None:
        if host.resource_type != ResourceType.HOST or host.superordinate_domain is None:
            return
        domain = txn.load_resource(host.superordinate_domain)
        if domain is None:
            return
        domain = materialize(txn, domain, now)
        txn.save_resource(
            domain.model_copy(
                update={
                    "subordinate_hosts": tuple(
                        h for h in domain.subordinate_hosts if h != host.repo_id
                    )
                }
            )
        )

    def _abandon(
        self, params: DeletionParams, outcome: DeletionOutcome, message: str
    ) -> DeletionReport:
        """Record a terminal non-deletion outcome and lift ``pendingDelete``."""

        def _work(txn: DatastoreTransaction) -> DeletionReport:
            record = self._pending_record(txn, params)
            if record.outcome in TERMINAL_DELETION_OUTCOMES:
                return DeletionReport.from_record(record)
            resource = txn.require_resource(params.repo_id)
            updated = resource.with_status(StatusValue.PENDING_DELETE, present=False)
            txn.save_resource(updated)
            history(
                txn, updated, _HISTORY[params.resource_type][2], params.client_id, params.now,
                reason=str(outcome),
            )
            txn.complete_deletion_request(
                params.request_id, outcome, completed_at=params.now, message=message
            )
            return DeletionReport(params.request_id, outcome, (), message)

        return self._store.transact(_work)

    @staticmethod
    def _pending_record(txn: DatastoreTransaction, params: DeletionParams) -> DeletionRequestRecord:
        record = txn.load_deletion_request(params.request_id)
        if record is None:
            msg = f"Unknown deletion request {params.request_id}"
            raise ResourceDoesNotExist(msg, request_id=params.request_id)
        return record


# ---------------------------------------------------------------------------
# DeletionService
# ---------------------------------------------------------------------------


class DeletionService(BaseService):
    """Entry point for host and contact deletion requests.

    Domains are deleted synchronously by ``ResourceService.delete_domain``.
    """

    def __init__(self, store: Datastore, runner: JobRunner) -> None:
        super().__init__(store)
        self._runner = runner
        self._handles: dict[str, JobHandle[DeletionReport]] = {}

    @traced
    def request_delete(
        self,
        resource_type: ResourceType,
        label: str,
        client_id: str,
        now: datetime,
        *,
        request_id: str | None = None,
    ) -> ServiceResult:
        """Run Phase 1 and, if it passes, start the Phase 2 scan.

        Repeating a call with the same *request_id* returns the recorded
        state of that request without side effects.
        """
        op = "delete"
        now = ensure_utc(now)
        request_id = request_id or new_request_id()

        existing = self._load_record(request_id)
        if existing is not None:
            return self._record_result(op, existing)

        def _phase1(txn: DatastoreTransaction) -> Resource:
            if resource_type not in _HISTORY:
                msg = f"Asynchronous deletion applies to hosts and contacts, not {resource_type}"
                raise ValidationError(msg, resource_type=str(resource_type))
            resource = materialize(txn, require_active(txn, resource_type, label, now), now)
            require_sponsor(resource, client_id)
            if StatusValue.PENDING_DELETE in resource.statuses:
                msg = f"{label} is already pending deletion"
                raise ResourceAlreadyPendingDelete(msg, label=label)
            reject_statuses(resource, DELETE_PROHIBITING_STATUSES, "Deletion")
            self._fail_fast(txn, resource, now)

            updated = resource.with_status(StatusValue.PENDING_DELETE, present=True)
            txn.save_resource(updated)
            txn.insert_deletion_request(
                DeletionRequestRecord(
                    request_id=request_id,
                    repo_id=resource.repo_id,
                    resource_type=resource_type,
                    requesting_client_id=client_id,
                    requested_at=now,
                    outcome=DeletionOutcome.PENDING,
                )
            )
            history(
                txn, updated, _HISTORY[resource_type][0], client_id, now, request_id=request_id
            )
            return updated

        try:
            resource = self._store.transact(_phase1)
        except LinkedResourceException as exc:
            logger.info("deletion.linked", label=label, referrer=exc.detail.get("referrer"))
            return ServiceResult.failure(op, exc, label=label, request_id=request_id)
        except RegistryError as exc:
            return ServiceResult.failure(op, exc, label=label, request_id=request_id)

        params = DeletionParams(request_id, resource.repo_id, resource_type, client_id, now)
        return self._start(op, params, label=label)

    def _fail_fast(self, txn: DatastoreTransaction, resource: Resource, now: datetime) -> None:
        """Phase 1: confirm a bounded sample of reverse-index candidates."""
        limit = self._settings.deletion.failfast_check_count
        for referrer_id in txn.query_referrers(resource.repo_id, limit):
            referrer = txn.load_resource(referrer_id)
            if (
                referrer is not None
                and referrer.deletion_time > now
                and referrer.references(resource)
            ):
                msg = f"Resource to be deleted is linked to {referrer.label}"
                raise LinkedResourceException(
                    msg, label=resource.label, referrer=referrer.repo_id
                )

    def _start(self, op: str, params: DeletionParams, **data: Any) -> ServiceResult:
        handle = self._runner.start(DeletionScanJob(self._store), params)
        self._handles[params.request_id] = handle
        payload: dict[str, Any] = {
            **data,
            "request_id": params.request_id,
            "repo_id": params.repo_id,
            "job_id": handle.job_id,
            "outcome": str(DeletionOutcome.PENDING),
        }
        warnings: list[str] = []
        if handle.done():
            self._handles.pop(params.request_id, None)
            try:
                payload.update(handle.result().to_dict())
            except RegistryError as exc:
                warnings.append(f"Deletion scan failed ({exc.code}): {exc.message}")
        return ServiceResult(ok=True, op=op, data=payload, warnings=warnings)

    @traced
    def resume(self, request_id: str) -> ServiceResult:
        """Re-run Phase 2 for a request still PENDING (e.g. after a crash)."""
        op = "deletion_resume"
        record = self._load_record(request_id)
        if record is None:
            exc = ResourceDoesNotExist(f"Unknown deletion request {request_id}", request_id=request_id)
            return ServiceResult.failure(op, exc)
        if record.outcome in TERMINAL_DELETION_OUTCOMES:
            return self._record_result(op, record)
        params = DeletionParams(
            request_id,
            record.repo_id,
            record.resource_type,
            record.requesting_client_id,
            record.requested_at,
        )
        return self._start(op, params)

    @traced
    def status(self, request_id: str) -> ServiceResult:
        op = "deletion_status"
        record = self._load_record(request_id)
        if record is None:
            exc = ResourceDoesNotExist(f"Unknown deletion request {request_id}", request_id=request_id)
            return ServiceResult.failure(op, exc)
        if record.outcome in TERMINAL_DELETION_OUTCOMES:
            self._handles.pop(request_id, None)
        return self._record_result(op, record)

    def wait(self, request_id: str, *, timeout: float | None = None) -> ServiceResult:
        """Block until this process's Phase 2 scan for *request_id* ends, then report."""
        handle = self._handles.get(request_id)
        if handle is not None:
            try:
                handle.result(timeout=timeout)
            except RegistryError as exc:
                self._handles.pop(request_id, None)
                return ServiceResult.failure("deletion_status", exc, request_id=request_id)
        return self.status(request_id)

    def cancel(self, request_id: str) -> ServiceResult:
        """Ask a running Phase 2 scan to stop; it records CANCELLED."""
        op = "deletion_cancel"
        handle = self._handles.get(request_id)
        cancelled = handle.cancel() if handle is not None else False
        return ServiceResult(
            ok=True, op=op, data={"request_id": request_id, "cancel_requested": cancelled}
        )

    def handle(self, request_id: str) -> JobHandle[DeletionReport] | None:
        return self._handles.get(request_id)

    def _load_record(self, request_id: str) -> DeletionRequestRecord | None:
        with self._store.read() as txn:
            return txn.load_deletion_request(request_id)

    @staticmethod
    def _record_result(op: str, record: DeletionRequestRecord) -> ServiceResult:
        data = DeletionReport.from_record(record).to_dict()
        data.update(
            repo_id=record.repo_id,
            resource_type=str(record.resource_type),
            requested_at=to_iso(record.requested_at),
            completed_at=to_iso(record.completed_at) if record.completed_at else None,
        )
        return ServiceResult(ok=True, op=op, data=data)
