"""Bulk job runner — sharded, cancellable work over a ThreadPoolExecutor.

A :class:`BulkJob` splits its input into independent shards, maps each shard
on a worker thread, then reduces the partial results in one final step.
Shards share nothing; they coordinate only through single-resource storage
transactions.

``sync=True`` runs everything inline in :meth:`JobRunner.start` (tests and
``[jobs] sync = true``).

INVARIANT: each :meth:`JobRunner.start` produces exactly one result, from
``finish`` or, when the run is cancelled or fails, ``on_cancel``/``on_error``.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from enum import StrEnum
from typing import Any, Generic, TypeVar

from regctl.domain.errors import JobCancelled

logger = logging.getLogger(__name__)

P = TypeVar("P")
S = TypeVar("S")
R = TypeVar("R")

_job_ids = itertools.count(1)


class JobStatus(StrEnum):
    RUNNING = "running"
    CANCELLING = "cancelling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobContext:
    """Per-run state shared by every shard of one job."""

    def __init__(self, job_id: str, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.job_id = job_id
        self._clock = clock
        self._started = clock()
        self._cancel = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def request_cancel(self) -> None:
        self._cancel.set()

    def raise_if_cancelled(self) -> None:
        if self._cancel.is_set():
            msg = f"Job {self.job_id} was cancelled"
            raise JobCancelled(msg, job_id=self.job_id)

    def elapsed(self) -> float:
        return self._clock() - self._started


class BulkJob(Generic[P, S, R]):
    """Base class for sharded jobs. Subclasses override the hooks."""

    name = "job"

    def plan(self, params: P) -> Sequence[S]:
        raise NotImplementedError

    def run_shard(self, shard: S, params: P, ctx: JobContext) -> Any:
        raise NotImplementedError

    def finish(self, partials: list[Any], params: P, ctx: JobContext) -> R:
        raise NotImplementedError

    def on_cancel(self, params: P, ctx: JobContext) -> R:
        """Called instead of ``finish`` when the job was cancelled."""
        ctx.raise_if_cancelled()
        raise AssertionError("on_cancel called for a job that was not cancelled")

    def on_error(self, exc: Exception, params: P, ctx: JobContext) -> R:
        """Called when a shard raised. The default re-raises."""
        raise exc


class JobHandle(Generic[R]):
    """Caller-side view of a started job."""

    def __init__(self, job_id: str, name: str, future: Future[R], ctx: JobContext) -> None:
        self.job_id = job_id
        self.name = name
        self._future = future
        self._ctx = ctx
        self._was_cancelled = False

    def _mark_cancelled(self) -> None:
        self._was_cancelled = True

    def status(self) -> JobStatus:
        if not self._future.done():
            return JobStatus.CANCELLING if self._ctx.cancelled else JobStatus.RUNNING
        if self._future.exception() is not None:
            return JobStatus.FAILED
        return JobStatus.CANCELLED if self._was_cancelled else JobStatus.SUCCEEDED

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> R:
        """Block for the job's result; re-raises the job's failure."""
        return self._future.result(timeout=timeout)

    def cancel(self) -> bool:
        """Request cancellation. Returns False if the job already finished."""
        if self._future.done():
            return False
        self._ctx.request_cancel()
        logger.info("Cancellation requested for job %s (%s)", self.job_id, self.name)
        return True


class JobRunner:
    """Runs :class:`BulkJob` instances on a bounded worker pool.

    Parameters:
        max_workers: Shard worker count.
        sync: Run jobs inline in the calling thread.
        clock: Monotonic clock used for elapsed-time budgets.
    """

    def __init__(
        self,
        *,
        max_workers: int = 4,
        sync: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sync = sync
        self._clock = clock
        self._shard_pool: ThreadPoolExecutor | None = None
        self._driver_pool: ThreadPoolExecutor | None = None
        if not sync:
            self._shard_pool = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="regctl-shard"
            )
            self._driver_pool = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="regctl-job"
            )
        self._handles: list[JobHandle[Any]] = []

    @property
    def sync(self) -> bool:
        return self._sync

    def start(self, job: BulkJob[P, S, R], params: P) -> JobHandle[R]:
        job_id = f"{job.name}-{next(_job_ids)}"
        ctx = JobContext(job_id, clock=self._clock)
        future: Future[R] = Future()
        handle: JobHandle[R] = JobHandle(job_id, job.name, future, ctx)
        self._handles = [h for h in self._handles if not h.done()]
        self._handles.append(handle)
        logger.debug("Starting job %s", job_id)

        if self._sync:
            self._drive(job, params, ctx, handle, future)
        else:
            assert self._driver_pool is not None
            self._driver_pool.submit(self._drive, job, params, ctx, handle, future)
        return handle

    def shutdown(self, *, cancel_running: bool = False) -> None:
        if cancel_running:
            for handle in self._handles:
                handle.cancel()
        for pool in (self._driver_pool, self._shard_pool):
            if pool is not None:
                pool.shutdown(wait=True)
        self._driver_pool = None
        self._shard_pool = None
        self._handles.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _drive(
        self,
        job: BulkJob[P, S, R],
        params: P,
        ctx: JobContext,
        handle: JobHandle[R],
        future: Future[R],
    ) -> None:
        future.set_running_or_notify_cancel()
        try:
            result = self._run(job, params, ctx, handle)
        except Exception as exc:
            logger.debug("Job %s failed: %s", ctx.job_id, exc)
            future.set_exception(exc)
        else:
            logger.debug("Job %s finished", ctx.job_id)
            future.set_result(result)

    def _run(
        self, job: BulkJob[P, S, R], params: P, ctx: JobContext, handle: JobHandle[R]
    ) -> R:
        try:
            shards = list(job.plan(params))
            partials = self._map_shards(job, shards, params, ctx)
            ctx.raise_if_cancelled()
            return job.finish(partials, params, ctx)
        except JobCancelled:
            handle._mark_cancelled()
            return job.on_cancel(params, ctx)
        except Exception as exc:
            return job.on_error(exc, params, ctx)

    def _map_shards(
        self, job: BulkJob[P, S, R], shards: list[S], params: P, ctx: JobContext
    ) -> list[Any]:
        partials: list[Any] = []
        if self._shard_pool is None:
            for shard in shards:
                ctx.raise_if_cancelled()
                partials.append(job.run_shard(shard, params, ctx))
            return partials

        futures = [self._shard_pool.submit(job.run_shard, s, params, ctx) for s in shards]
        first_error: BaseException | None = None
        for fut in futures:
            try:
                partials.append(fut.result())
            except Exception as exc:
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
        return partials
