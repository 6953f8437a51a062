"""
Prune operation - drives a single prune of one directory tree.

An operation wires four stages together with bounded queues:

    finder     walks the tree under the root and yields objects
    extractor  attaches each object's time bucket and basename
    policy     buffers every object, then decides what to remove and keep
    target     reports (dry run) or applies (remove) each decision

Each stage runs as its own task and handles one item at a time; a full queue
makes the upstream stage wait. The first failure in any stage cancels the
others and is raised from run() as a StageError labeled 'finder', 'policy'
or 'remover'. Warnings from the policy are passed on to the listeners
registered with on_warning().
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, TextIO

from .audit import PruneAuditLogger
from .config import PruneSettings
from .errors import PruneError, StageError
from .extractor import BucketExtractor
from .finder import ObjectFinder, PathFilter, accept_all
from .metrics import PruneMetrics
from .models import PruneSummary, PruneWarning
from .policies import PolicyFactory
from .store import LocalObjectStore, ObjectStore
from .targets import DecisionTarget, DryRunTarget, RemoverTarget
from .timefilter import TimeFormat

logger = logging.getLogger(__name__)

STAGE_FINDER = "finder"
STAGE_POLICY = "policy"
STAGE_REMOVER = "remover"

# marks the end of a stage's output
_END = object()


def make_find_filter(time_filter: TimeFormat, start: Optional[datetime], end: Optional[datetime]) -> PathFilter:
    """Build the finder's path filter for an optional time window."""
    if start is None and end is None:
        return accept_all

    def filter_path_by_time(path: str) -> bool:
        return time_filter.range_contains(start, end, path)

    return filter_path_by_time


class PruneOperation:
    """
    A single prune operation.

    The policy is resolved when the operation is created, so an unsupported
    policy name fails before any storage is touched.
    """

    def __init__(self, settings: PruneSettings, store: Optional[ObjectStore] = None,
                 time_filter: Optional[TimeFormat] = None, target: Optional[DecisionTarget] = None,
                 metrics: Optional[PruneMetrics] = None, audit: Optional[PruneAuditLogger] = None,
                 stream: Optional[TextIO] = None):
        self.settings = settings
        self.policy_kind = settings.policy_kind()

        self.store = store or LocalObjectStore(settings.store_base)
        self.time_filter = time_filter or settings.time_filter()
        self.policy = PolicyFactory.create_policy(
            self.policy_kind,
            expect=settings.expect,
            logger=logging.getLogger(f"{__name__}.policy")
        )
        if target is not None:
            self.target = target
        elif settings.dry_run:
            self.target = DryRunTarget(stream)
        else:
            self.target = RemoverTarget(self.store)

        self.extractor = BucketExtractor(self.time_filter)
        self.finder = ObjectFinder(
            self.store,
            settings.root,
            make_find_filter(self.time_filter, settings.start, settings.end)
        )
        self.metrics = metrics
        self.audit = audit

        self.operation_id = f"prune_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        self.summary = PruneSummary(
            operation_id=self.operation_id,
            started_at=datetime.now(),
            root=settings.root,
            policy=self.policy_kind.value,
            dry_run=settings.dry_run
        )

        self._warning_listeners: List[Callable[[PruneWarning], None]] = []
        self._error_listeners: List[Callable[[StageError], None]] = []
        self._started = False
        self.policy.on_warning(self._forward_warning)

    def on_warning(self, callback: Callable[[PruneWarning], None]) -> None:
        """Register a listener for policy warnings."""
        self._warning_listeners.append(callback)

    def on_error(self, callback: Callable[[StageError], None]) -> None:
        """Register a listener for the operation's fatal failure."""
        self._error_listeners.append(callback)

    def _forward_warning(self, warning: PruneWarning) -> None:
        self.summary.warnings.append(warning)
        if self.metrics:
            self.metrics.record_warning(warning)
        for callback in self._warning_listeners:
            callback(warning)

    async def run(self) -> PruneSummary:
        """
        Run the operation to completion.

        Returns:
            The operation summary.

        Raises:
            StageError: If any stage fails; the label names the stage.
        """
        if self._started:
            raise PruneError(f"operation {self.operation_id} has already been started")
        self._started = True

        logger.info(
            f"Starting prune {self.operation_id} of {self.settings.root} "
            f"(policy={self.policy_kind.value}, dry_run={self.settings.dry_run}, force={self.settings.force})"
        )
        start_time = time.monotonic()
        if self.audit:
            self.audit.open(self.operation_id)

        hwm = self.settings.high_water_mark
        found: asyncio.Queue = asyncio.Queue(maxsize=hwm)
        annotated: asyncio.Queue = asyncio.Queue(maxsize=hwm)
        decisions: asyncio.Queue = asyncio.Queue(maxsize=hwm)

        tasks = [
            asyncio.create_task(self._run_stage(STAGE_FINDER, self._find(found))),
            asyncio.create_task(self._run_stage(STAGE_FINDER, self._extract(found, annotated))),
            asyncio.create_task(self._run_stage(STAGE_POLICY, self._decide(annotated, decisions))),
            asyncio.create_task(self._run_stage(STAGE_REMOVER, self._apply(decisions))),
        ]

        failure = None
        try:
            failure = await self._wait_for_stages(tasks)
        except asyncio.CancelledError:
            self.summary.status = 'failed'
            self.summary.error_message = "operation cancelled"
            logger.warning(f"Prune {self.operation_id} cancelled")
            raise
        else:
            if failure is not None:
                self.summary.status = 'failed'
                self.summary.error_message = str(failure)
            else:
                self.summary.status = 'success'
        finally:
            self.summary.duration_seconds = time.monotonic() - start_time
            self.summary.removed = self.target.removed
            self.summary.skipped = self.target.skipped
            if self.metrics:
                self.metrics.record_run(self.summary.duration_seconds)
            self._finish_audit()

        if failure is not None:
            logger.error(f"Prune {self.operation_id} failed: {failure}")
            if self.metrics:
                self.metrics.record_stage_error(failure.label)
            for callback in self._error_listeners:
                callback(failure)
            raise failure

        logger.info(
            f"Prune {self.operation_id} completed: {self.summary.objects_seen} objects, "
            f"{self.summary.removed} removed, {self.summary.skipped} skipped, "
            f"{len(self.summary.warnings)} warnings in {self.summary.duration_seconds:.2f}s"
        )
        return self.summary

    async def _wait_for_stages(self, tasks: List["asyncio.Task"]) -> Optional[StageError]:
        """Wait for every stage; on the first failure cancel the rest and return it."""
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        failure = None
        for task in tasks:
            if task in done and not task.cancelled() and task.exception() is not None:
                failure = task.exception()
                break

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        return failure

    def _finish_audit(self) -> None:
        if self.audit:
            self.audit.close()
            self.audit.write_report(self.summary)

    @staticmethod
    async def _run_stage(label: str, stage: Awaitable[Any]) -> None:
        try:
            await stage
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise StageError(label, e) from e

    async def _find(self, out: asyncio.Queue) -> None:
        async for record in self.finder:
            self.summary.objects_seen += 1
            if self.metrics:
                self.metrics.record_object_seen()
            await out.put(record)
        await out.put(_END)

    async def _extract(self, inbox: asyncio.Queue, out: asyncio.Queue) -> None:
        while True:
            record = await inbox.get()
            if record is _END:
                await out.put(_END)
                return
            await out.put(self.extractor.annotate(record))

    async def _decide(self, inbox: asyncio.Queue, out: asyncio.Queue) -> None:
        while True:
            record = await inbox.get()
            if record is _END:
                break
            self.policy.ingest(record)

        logger.debug(f"Policy received {self.policy.records_ingested} objects; deciding")
        for decision in self.policy.finish():
            await out.put(decision)
        await out.put(_END)

    async def _apply(self, inbox: asyncio.Queue) -> None:
        while True:
            decision = await inbox.get()
            if decision is _END:
                await self.target.close()
                return

            await self.target.write(decision)
            if self.metrics:
                self.metrics.record_decision(decision)
            if self.audit:
                self.audit.record_decision(decision)


async def prune(settings: PruneSettings, **kwargs: Any) -> PruneSummary:
    """Create and run a prune operation; see PruneOperation for arguments."""
    operation = PruneOperation(settings, **kwargs)
    return await operation.run()
