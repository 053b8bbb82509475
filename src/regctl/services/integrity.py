"""IntegrityScanner — read-only audit of resources and their indexes.

Each shard enumerates stored resources directly (not through any index)
and runs the per-resource checks; the reduce step groups instances by
label to find overlapping lifetimes. The scanner never writes to resources;
findings go to a :class:`FindingSink`.

Findings are sorted before they are written, so re-running on unchanged
data appends an identical set of rows.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from regctl.domain.resources import Resource, foreign_key_index_key, resource_key
from regctl.domain.times import ensure_utc, to_iso
from regctl.infrastructure.datastore import Datastore, DatastoreTransaction, shard_ranges
from regctl.infrastructure.jobs import BulkJob, JobContext, JobRunner
from regctl.infrastructure.reporting import Finding, FindingSink, MemorySink, TableSink
from regctl.services._helpers import new_request_id
from regctl.services.base import BaseService
from regctl.services.result import ServiceResult
from regctl.services.telemetry import trace_span, traced

logger = structlog.get_logger(__name__)

MISSING_FOREIGN_KEY_INDEX = "Missing foreign key index for EppResource"
MISSING_RESOURCE_INDEX = "Missing EPP resource index for EPP resource"
TARGET_DOES_NOT_EXIST = "Target entity does not exist"
INACTIVE_DELETED_AFTER_ACTIVE_CREATED = (
    "Found inactive resource deleted more recently than when active resource was created"
)
MULTIPLE_ACTIVE = "Multiple active EppResources with same foreign key"


@dataclass(frozen=True)
class ScanParams:
    scan_id: str
    now: datetime


@dataclass(frozen=True)
class _Lifetime:
    key: str
    creation_time: datetime
    deletion_time: datetime


@dataclass
class _ShardResult:
    findings: list[Finding] = field(default_factory=list)
    lifetimes: dict[tuple[str, str], list[_Lifetime]] = field(
        default_factory=lambda: defaultdict(list)
    )


def _sort_key(finding: Finding) -> tuple[str, str, str]:
    return (finding.message, finding.source or "", finding.target)


class IntegrityScanJob(BulkJob[ScanParams, tuple[int, int], list[Finding]]):
    name = "integrity-scan"

    def __init__(self, store: Datastore, sink: FindingSink, *, shard_count: int) -> None:
        self._store = store
        self._sink = sink
        self._shard_count = shard_count

    def plan(self, params: ScanParams) -> list[tuple[int, int]]:
        return shard_ranges(self._shard_count)

    def run_shard(
        self, shard: tuple[int, int], params: ScanParams, ctx: JobContext
    ) -> _ShardResult:
        result = _ShardResult()
        with self._store.read() as txn:
            for repo_id in txn.stored_repo_ids(shard):
                ctx.raise_if_cancelled()
                resource = txn.load_resource(repo_id)
                if resource is None:
                    continue
                result.findings.extend(self._check_resource(txn, resource, params.now))
                result.lifetimes[(str(resource.resource_type), resource.label)].append(
                    _Lifetime(resource.key, resource.creation_time, resource.deletion_time)
                )
        return result

    @staticmethod
    def _check_resource(
        txn: DatastoreTransaction, resource: Resource, now: datetime
    ) -> list[Finding]:
        findings: list[Finding] = []
        if not txn.has_resource_index(resource.repo_id):
            findings.append(Finding(resource.key, MISSING_RESOURCE_INDEX, None, now))

        if not resource.is_deleted_at(now):
            fki_rows = txn.foreign_key_rows(str(resource.resource_type), resource.label)
            if not any(r.repo_id == resource.repo_id and r.deletion_time > now for r in fki_rows):
                findings.append(
                    Finding(str(resource.resource_type), MISSING_FOREIGN_KEY_INDEX, resource.label, now)
                )

        for target_type, target_id in resource.referenced_repo_ids():
            target = txn.load_resource(target_id)
            if target is None or target.resource_type != target_type:
                findings.append(
                    Finding(
                        resource_key(target_type, target_id),
                        TARGET_DOES_NOT_EXIST,
                        resource.key,
                        now,
                    )
                )
        return findings

    def finish(
        self, partials: list[Any], params: ScanParams, ctx: JobContext
    ) -> list[Finding]:
        findings: list[Finding] = []
        groups: dict[tuple[str, str], list[_Lifetime]] = defaultdict(list)
        for part in partials:
            findings.extend(part.findings)
            for label_key, lifetimes in part.lifetimes.items():
                groups[label_key].extend(lifetimes)

        with trace_span("foreign_key_overlaps"):
            for (resource_type, label), lifetimes in groups.items():
                findings.extend(
                    self._check_label(resource_type, label, lifetimes, params.now)
                )

        findings.sort(key=_sort_key)
        self._sink.write(params.scan_id, findings)
        return findings

    @staticmethod
    def _check_label(
        resource_type: str, label: str, lifetimes: list[_Lifetime], now: datetime
    ) -> list[Finding]:
        fki_key = foreign_key_index_key(resource_type, label)
        active = [lt for lt in lifetimes if lt.deletion_time > now]
        if len(active) > 1:
            return [Finding(lt.key, MULTIPLE_ACTIVE, fki_key, now) for lt in active]
        ordered = sorted(lifetimes, key=lambda lt: (lt.creation_time, lt.key))
        overlapping: dict[str, Finding] = {}
        for i, earlier in enumerate(ordered):
            for later in ordered[i + 1 :]:
                if later.creation_time >= earlier.deletion_time:
                    continue
                # the instance deleted first is the one reported
                target = later if later.deletion_time < earlier.deletion_time else earlier
                overlapping.setdefault(
                    target.key,
                    Finding(target.key, INACTIVE_DELETED_AFTER_ACTIVE_CREATED, fki_key, now),
                )
        return list(overlapping.values())


class IntegrityService(BaseService):
    """Runs integrity scans and reports their findings."""

    def __init__(
        self,
        store: Datastore,
        runner: JobRunner,
        *,
        sink: FindingSink | None = None,
    ) -> None:
        super().__init__(store)
        self._runner = runner
        self._sink = sink or self._default_sink()

    def _default_sink(self) -> FindingSink:
        if self._settings.integrity.sink == "memory":
            return MemorySink()
        return TableSink(self._store.engine)

    @property
    def sink(self) -> FindingSink:
        return self._sink

    @traced
    def scan(self, now: datetime, *, scan_id: str | None = None) -> ServiceResult:
        """Scan the whole dataset as of *now* and wait for the result.

        Violations are data, not failures: the result is ``ok`` whenever
        the scan itself completed.
        """
        op = "integrity_scan"
        now = ensure_utc(now)
        params = ScanParams(scan_id or new_request_id(), now)
        job = IntegrityScanJob(
            self._store, self._sink, shard_count=self._settings.integrity.shard_count
        )
        handle = self._runner.start(job, params)
        findings = handle.result()

        counts: dict[str, int] = defaultdict(int)
        for finding in findings:
            counts[finding.message] += 1
        if findings:
            logger.warning("integrity.violations", scan_id=params.scan_id, count=len(findings))
        else:
            logger.info("integrity.clean", scan_id=params.scan_id)
        return ServiceResult(
            ok=True,
            op=op,
            data={
                "scan_id": params.scan_id,
                "scan_time": to_iso(now),
                "count": len(findings),
                "by_message": dict(counts),
                "findings": [f.to_row() for f in findings],
            },
            meta={"job_id": handle.job_id},
        )
