"""Concurrent gather cycle.

Cycle (one per call, nothing carried over between calls):

  connect ──► select datacenter ──► host pattern 1 ──► resolve ─► fetch ─► extract ─► emit
                                ├─► host pattern 2 ──► ...
                                ├─► datastore pattern 1 ──► ...
                                └─► vm pattern N ──► ...
                                                     ──► join all ──► disconnect

Concurrency:
  - One asyncio task per configured (kind, pattern), all created up front and
    joined before the cycle returns.
  - Blocking pyVmomi calls run in a ThreadPoolExecutor owned by the cycle;
    extraction and emission run on the event loop.
  - The session is shared read-only by every task. A failing pattern reports
    its error and ends; siblings keep going and the session stays open.

Cancellation:
  - An asyncio.Event cancel token and/or collection.timeout_seconds end the
    cycle early, from the session handshake onwards. Cancelling the gather()
    task itself has the same effect before the CancelledError propagates.
  - Every unfinished pattern reports a GatherCancelledError. Records already
    emitted stay emitted.
  - Abandoned API calls are not waited for; the session is closed under them.
    A handshake still in flight is disconnected as soon as it returns.

Errors:
  - AuthenticationError / VSphereConnectionError / EndpointError are raised
    from gather(); nothing is emitted.
  - Everything else goes to accumulator.report_error() and the cycle carries on.
"""

from __future__ import annotations

import asyncio
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from vsphere_metrics.config import AppConfig
from vsphere_metrics.errors import (
    CollectorError,
    EndpointError,
    ExtractionError,
    GatherCancelledError,
    PatternError,
    VSphereConnectionError,
    describe_fault,
)
from vsphere_metrics.metrics.accumulator import Accumulator
from vsphere_metrics.metrics.extractors import Extractor, get_extractor
from vsphere_metrics.models import ObjectKind, PropertyBag
from vsphere_metrics.utils.logging import get_logger
from vsphere_metrics.vmware.client import VSphereClient
from vsphere_metrics.vmware.inventory import InventoryResolver
from vsphere_metrics.vmware.properties import PropertyFetcher

logger = get_logger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  Data Models
# ═══════════════════════════════════════════════════════════════════

class JobStatus(str, Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    EMITTED = "emitted"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CycleStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    PARTIAL = "partial"       # Some patterns or objects failed, others emitted
    FAILED = "failed"         # Every pattern failed
    CANCELLED = "cancelled"   # Cancel token or deadline fired


@dataclass
class PatternJob:
    """Tracks one configured name pattern within a cycle."""
    kind: ObjectKind
    pattern: str

    status: JobStatus = JobStatus.PENDING
    matched: int = 0
    emitted: int = 0
    extraction_errors: int = 0
    error: Optional[str] = None
    started_at: float = 0
    completed_at: float = 0

    @property
    def duration_s(self) -> float:
        if self.completed_at and self.started_at:
            return self.completed_at - self.started_at
        return 0

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "pattern": self.pattern,
            "status": self.status.value,
            "matched": self.matched,
            "emitted": self.emitted,
            "extraction_errors": self.extraction_errors,
            "error": self.error,
            "duration_s": round(self.duration_s, 3),
        }


@dataclass
class GatherReport:
    """Outcome of one gather cycle."""
    status: CycleStatus = CycleStatus.RUNNING
    started_at: float = 0
    completed_at: float = 0
    jobs: list[PatternJob] = field(default_factory=list)

    @property
    def succeeded(self) -> list[PatternJob]:
        return [j for j in self.jobs if j.status == JobStatus.EMITTED]

    @property
    def failed(self) -> list[PatternJob]:
        return [j for j in self.jobs if j.status == JobStatus.FAILED]

    @property
    def cancelled(self) -> list[PatternJob]:
        return [j for j in self.jobs if j.status == JobStatus.CANCELLED]

    @property
    def records_emitted(self) -> int:
        return sum(j.emitted for j in self.jobs)

    @property
    def errors_reported(self) -> int:
        return len(self.failed) + len(self.cancelled) + sum(j.extraction_errors for j in self.jobs)

    @property
    def duration_s(self) -> float:
        if self.completed_at and self.started_at:
            return self.completed_at - self.started_at
        return 0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "records_emitted": self.records_emitted,
            "errors_reported": self.errors_reported,
            "jobs": [j.to_dict() for j in self.jobs],
        }


# ═══════════════════════════════════════════════════════════════════
#  Collector
# ═══════════════════════════════════════════════════════════════════

class MetricsCollector:
    """Runs gather cycles against one vSphere endpoint.

    Usage:
        config = AppConfig.from_yaml("vsphere.yaml")
        collector = MetricsCollector(config)
        acc = MemoryAccumulator()

        report = collector.run_once(acc)

        # Or from async code, with a cancel token
        stop = asyncio.Event()
        report = await collector.gather(acc, cancel_event=stop)
    """

    def __init__(self, config: AppConfig, client_factory: Callable[[], VSphereClient] = VSphereClient):
        """
        Args:
            config: AppConfig instance
            client_factory: Builds a fresh, unconnected client for each cycle
        """
        self.config = config
        self.client_factory = client_factory

    def run_once(self, accumulator: Accumulator) -> GatherReport:
        """Run one cycle on a private event loop."""
        return asyncio.run(self.gather(accumulator))

    async def gather(self, accumulator: Accumulator,
                     cancel_event: Optional[asyncio.Event] = None) -> GatherReport:
        """Run one gather cycle.

        The cancel token and the deadline are honoured from the start of the
        cycle, including while the session is being opened.

        Args:
            accumulator: Receives records and per-pattern/per-object errors
            cancel_event: Setting it cancels every unfinished pattern

        Returns:
            GatherReport with per-pattern results

        Raises:
            AuthenticationError, VSphereConnectionError, EndpointError
        """
        collection = self.config.collection
        report = GatherReport(started_at=time.time())
        report.jobs = [PatternJob(kind=kind, pattern=pattern) for kind, pattern in collection.patterns()]

        loop = asyncio.get_running_loop()
        deadline = loop.time() + collection.timeout_seconds if collection.timeout_seconds else None
        executor = ThreadPoolExecutor(max_workers=collection.max_workers,
                                      thread_name_prefix="vsphere-gather")
        client = self.client_factory()
        session = executor.submit(self._open_session, client)
        reason: Optional[str] = None

        try:
            reason = await self._await_session(session, cancel_event, deadline)
            if reason is None:
                resolver = InventoryResolver(client, max_objects=collection.max_objects_per_page)
                fetcher = PropertyFetcher(client, max_objects=collection.max_objects_per_page)

                tasks = {
                    asyncio.create_task(
                        self._run_job(job, resolver, fetcher, accumulator, executor),
                        name=f"gather-{job.kind.value}-{job.pattern}",
                    ): job
                    for job in report.jobs
                }
                reason = await self._join(tasks, cancel_event, deadline)
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        except CollectorError as e:
            logger.error(f"Gather aborted: {e}")
            raise
        finally:
            if reason is not None:
                self._cancel_unfinished(report, accumulator, deadline=reason == "deadline")
            executor.shutdown(wait=reason is None, cancel_futures=True)
            await self._close_session(client, session)

        report.completed_at = time.time()
        report.status = self._final_status(report)
        logger.info(
            f"Gathered {report.records_emitted} records from {len(report.jobs)} patterns "
            f"in {report.duration_s:.1f}s ({len(report.failed)} failed, "
            f"{len(report.cancelled)} cancelled)"
        )
        return report

    # ─── Session ──────────────────────────────────────────────────

    def _open_session(self, client: VSphereClient) -> VSphereClient:
        """Connect and bind to the datacenter (runs in the executor)."""
        vs = self.config.vsphere
        client.connect(
            vs.server,
            vs.username,
            vs.password_value(),
            insecure=vs.insecure,
            max_retries=vs.connect_retries,
        )
        try:
            client.select_datacenter(vs.datacenter)
        except EndpointError:
            client.disconnect()
            raise
        except Exception as e:
            client.disconnect()
            raise VSphereConnectionError(f"Cannot list datacenters: {describe_fault(e)}") from e
        return client

    async def _await_session(self, session: Future, cancel_event: Optional[asyncio.Event],
                             deadline: Optional[float]) -> Optional[str]:
        """Wait for the handshake, or give up on the cancel token / deadline.

        Returns None once the session is open, otherwise "cancelled" or
        "deadline". Fatal handshake errors are raised.
        """
        connecting = asyncio.wrap_future(session)
        try:
            reason, _ = await self._race({connecting}, cancel_event, deadline)
        except asyncio.CancelledError:
            connecting.cancel()
            raise
        if reason is not None:
            connecting.cancel()
            logger.warning(f"Gather {reason} while connecting to {self.config.vsphere.server}")
            return reason
        connecting.result()
        return None

    async def _close_session(self, client: VSphereClient, session: Future) -> None:
        if session.done():
            await asyncio.to_thread(client.disconnect)
        else:
            # Handshake still running in its thread: close when it returns.
            session.add_done_callback(lambda _: client.disconnect())

    # ─── Fan-out / fan-in ─────────────────────────────────────────

    async def _race(self, aws: set, cancel_event: Optional[asyncio.Event],
                    deadline: Optional[float]) -> tuple[Optional[str], set]:
        """Wait for every awaitable, the cancel token or the deadline.

        Returns (reason, unfinished) where reason is None when everything
        finished, otherwise "cancelled" or "deadline".
        """
        loop = asyncio.get_running_loop()
        pending = set(aws)
        waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event else None

        try:
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    return "cancelled", pending
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    return "deadline", pending
                wait_for = (pending | {waiter}) if waiter else set(pending)
                done, _ = await asyncio.wait(wait_for, timeout=remaining,
                                             return_when=asyncio.FIRST_COMPLETED)
                pending -= done
            return None, pending
        finally:
            if waiter is not None and not waiter.done():
                waiter.cancel()

    async def _join(self, tasks: dict[asyncio.Task, PatternJob],
                    cancel_event: Optional[asyncio.Event],
                    deadline: Optional[float]) -> Optional[str]:
        """Wait for every pattern task, or stop early on the cancel token / deadline.

        Unfinished tasks are cancelled and awaited on every exit path,
        including cancellation of the caller.
        """
        reason: Optional[str] = "cancelled"
        pending: set[asyncio.Task] = set(tasks)
        try:
            reason, pending = await self._race(pending, cancel_event, deadline)
        finally:
            unfinished = [task for task in pending if not task.done()]
            if unfinished:
                logger.warning(f"Gather {reason}: stopping {len(unfinished)} unfinished pattern(s)")
                for task in unfinished:
                    task.cancel()
                await asyncio.gather(*unfinished, return_exceptions=True)
        return reason

    @staticmethod
    def _cancel_unfinished(report: GatherReport, accumulator: Accumulator, deadline: bool) -> None:
        for job in report.jobs:
            if job.status in (JobStatus.EMITTED, JobStatus.FAILED):
                continue
            job.status = JobStatus.CANCELLED
            job.completed_at = job.completed_at or time.time()
            accumulator.report_error(GatherCancelledError(job.kind, job.pattern, deadline=deadline))

    async def _run_job(self, job: PatternJob, resolver: InventoryResolver,
                       fetcher: PropertyFetcher, accumulator: Accumulator,
                       executor: ThreadPoolExecutor) -> None:
        """Resolve, fetch, extract and emit one pattern."""
        loop = asyncio.get_running_loop()
        extractor = get_extractor(job.kind)
        job.started_at = time.time()

        try:
            job.status = JobStatus.RESOLVING
            refs = await loop.run_in_executor(executor, resolver.resolve, job.kind, job.pattern)
            job.matched = len(refs)

            job.status = JobStatus.FETCHING
            bags = await loop.run_in_executor(
                executor, fetcher.fetch, refs, list(extractor.properties), job.pattern,
            )

            job.status = JobStatus.EXTRACTING
            self._emit(job, extractor, bags, accumulator)
            job.status = JobStatus.EMITTED

        except asyncio.CancelledError:
            job.status = JobStatus.CANCELLED
            raise
        except Exception as e:
            error = e if isinstance(e, PatternError) else PatternError(job.kind, job.pattern, e)
            job.status = JobStatus.FAILED
            job.error = str(error)
            logger.debug(f"{job.kind.value} pattern '{job.pattern}' failed: {e}")
            accumulator.report_error(error)
        finally:
            job.completed_at = time.time()

    def _emit(self, job: PatternJob, extractor: Extractor, bags: list[PropertyBag],
              accumulator: Accumulator) -> None:
        for bag in bags:
            try:
                tags, fields = extractor(bag)
            except ExtractionError as e:
                job.extraction_errors += 1
                accumulator.report_error(ExtractionError(e.ref, e.reason, pattern=job.pattern))
                continue
            accumulator.emit(extractor.measurement, fields, tags)
            job.emitted += 1

    @staticmethod
    def _final_status(report: GatherReport) -> CycleStatus:
        if report.cancelled:
            return CycleStatus.CANCELLED
        had_errors = report.failed or any(j.extraction_errors for j in report.jobs)
        if not had_errors:
            return CycleStatus.COMPLETE
        if report.succeeded:
            return CycleStatus.PARTIAL
        return CycleStatus.FAILED
