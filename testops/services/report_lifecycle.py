"""
Report Lifecycle Manager.

Owns the state machine of every batch report:

    Running -> Completed | Failed      (finalize_report)
    Running -> Stopped                 (stop_report)

All three targets are terminal. Nothing leaves a terminal status and every
operation on a terminal report is a no-op returning its current state.

Concurrency:
    Each live report has its own asyncio.Lock. The lock covers only the
    in-memory counter mutation and the status check; directory creation,
    storage writes and sink publishing all happen outside it. Storage keeps its
    own counters with atomic increments, so persisting details out of order
    never loses an update.

Degraded mode:
    If storage is unavailable when a report opens, the report continues in
    memory only (ReportContext.degraded = True) and nothing about it is
    persisted. Test execution is never blocked by a reporting outage.

Usage:
    manager = ReportLifecycleManager(store, base_dir='artifacts/reports')
    batch = await manager.open_report('smoke', created_by='alice')
    await manager.record_detail(batch.report_id, detail)
    report = await manager.finalize_report(batch.report_id)
"""

import asyncio
import itertools
import logging
import os
import random
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from testops.core.exceptions import PersistenceUnavailable, ReportNotFound
from testops.models import (
    ReportContext,
    ReportStatus,
    TestDetailRecord,
    TriggerType,
)
from testops.services.storage import ReportStore


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

SCREENSHOTS_DIR: str = 'screenshots'
API_ARTIFACTS_DIR: str = 'api-artifacts'
LOGS_DIR: str = 'logs'

REPORT_SUBDIRS = (SCREENSHOTS_DIR, API_ARTIFACTS_DIR, LOGS_DIR)

# Environment variables set by common CI systems
CI_ENV_VARS = ('CI', 'JENKINS_URL', 'GITHUB_ACTIONS', 'GITLAB_CI', 'BUILD_ID')


# =============================================================================
# Report Identity
# =============================================================================

# Seeded randomly per process, then strictly sequential, so ids generated in
# one process never repeat within 2**32 reports.
_id_sequence = itertools.count(random.getrandbits(32))


def generate_report_id(now: Optional[datetime] = None) -> str:
    """
    Generate a report id of the form RPT_<yyyyMMdd_HHmmss>_<8 hex>.

    Example:
        >>> generate_report_id(datetime(2026, 1, 14, 9, 30))
        'RPT_20260114_093000_3fa9c2d1'
    """
    now = now or datetime.now()
    suffix = next(_id_sequence) & 0xFFFFFFFF
    return f"RPT_{now:%Y%m%d_%H%M%S}_{suffix:08x}"


def detect_trigger_type() -> TriggerType:
    """CI/CD when running under a CI system, Manual otherwise."""
    if any(os.environ.get(name) for name in CI_ENV_VARS):
        return TriggerType.CI_CD
    return TriggerType.MANUAL


# =============================================================================
# Batch Context
# =============================================================================

@dataclass
class BatchContext:
    """
    Handle bound to one running batch.

    Passed explicitly to every test runner invocation instead of any ambient
    per-thread report state.

    Attributes:
        report_id: Id of the report the batch accumulates into.
        suite_type: Suite being executed.
        report_path: Artifact directory of the report.
        created_by: Who opened the report.
        trigger_type: What started the batch.
        environment: Target environment, if any.
        stop_event: Set when the report is stopped; no new tests are
            dispatched once it is set.
    """
    report_id: str
    suite_type: str
    report_path: Path
    created_by: str
    trigger_type: TriggerType
    environment: Optional[str] = None
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def screenshot_path(self, name: str) -> Path:
        return self.report_path / SCREENSHOTS_DIR / name

    def api_artifact_path(self, name: str) -> Path:
        return self.report_path / API_ARTIFACTS_DIR / name

    def log_path(self, name: str) -> Path:
        return self.report_path / LOGS_DIR / name


@dataclass
class _TrackedReport:
    context: ReportContext
    batch: BatchContext
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    details: List[TestDetailRecord] = field(default_factory=list)
    # Set once a finalize or stop has claimed the report; context keeps
    # showing Running until the terminal state is decided.
    closing: bool = False
    closed: asyncio.Event = field(default_factory=asyncio.Event)


def _make_report_dirs(path: Path) -> None:
    for sub in REPORT_SUBDIRS:
        (path / sub).mkdir(parents=True, exist_ok=True)


# =============================================================================
# Lifecycle Manager
# =============================================================================

class ReportLifecycleManager:
    """
    Opens, accumulates and finalizes batch reports.

    Args:
        store: Storage collaborator for reports and details.
        base_dir: Root directory of the per-report artifact folders.
        sink: Optional reporting sink receiving every report that reaches a
            terminal status, together with its details.
        clock: Source of "now"; injectable for tests.
        retention: Number of terminal reports kept in memory so that repeated
            finalize/stop calls stay idempotent.
    """

    def __init__(
        self,
        store: ReportStore,
        base_dir: str = 'artifacts/reports',
        sink=None,
        clock: Callable[[], datetime] = datetime.now,
        retention: int = 1000,
    ):
        self._store = store
        self._base_dir = Path(base_dir)
        self._sink = sink
        self._clock = clock
        self._retention = retention
        self._active: Dict[str, _TrackedReport] = {}
        self._finished: "OrderedDict[str, _TrackedReport]" = OrderedDict()

    @property
    def active_report_ids(self) -> List[str]:
        return list(self._active)

    # -------------------------------------------------------------------------
    # open
    # -------------------------------------------------------------------------

    async def open_report(
        self,
        suite_type: str,
        created_by: str = 'System',
        trigger_type: TriggerType = TriggerType.MANUAL,
        environment: Optional[str] = None,
    ) -> BatchContext:
        """
        Create a new Running report and return the batch handle bound to it.

        The report directory (with screenshots/, api-artifacts/ and logs/) is
        created in a worker thread. Persistence is best-effort: when storage
        is unavailable the report is kept in memory only.

        Returns:
            BatchContext: Handle for the caller's batch.
        """
        started_at = self._clock()
        report_id = generate_report_id(started_at)
        report_path = await self._create_report_dir(report_id)

        context = ReportContext(
            reportId=report_id,
            suiteType=suite_type,
            status=ReportStatus.RUNNING,
            startedAt=started_at,
            createdBy=created_by,
            triggerType=trigger_type,
            reportPath=str(report_path),
            environment=environment,
        )

        try:
            await self._store.save_report(context)
        except PersistenceUnavailable as e:
            logger.warning(f"Storage unavailable, report {report_id} continues in degraded mode: {e}")
            context.degraded = True

        batch = BatchContext(
            report_id=report_id,
            suite_type=suite_type,
            report_path=report_path,
            created_by=created_by,
            trigger_type=trigger_type,
            environment=environment,
        )
        self._active[report_id] = _TrackedReport(context=context, batch=batch)

        logger.info(f"Opened report {report_id} for suite '{suite_type}' ({trigger_type.value})")
        return batch

    async def _create_report_dir(self, report_id: str) -> Path:
        path = self._base_dir / report_id
        try:
            await asyncio.to_thread(_make_report_dirs, path)
        except OSError as e:
            logger.warning(f"Could not create report directory {path}: {e}")
        return path

    # -------------------------------------------------------------------------
    # accumulate
    # -------------------------------------------------------------------------

    async def record_detail(self, report_id: str, detail: TestDetailRecord) -> bool:
        """
        Add one test outcome to a Running report.

        Returns:
            True if the detail was counted; False if the report has already
            left Running (the detail is discarded and a warning logged).

        Raises:
            ReportNotFound: If the report id was never opened here.
        """
        tracked = self._active.get(report_id)
        if tracked is None:
            if report_id in self._finished:
                logger.warning(f"Rejected detail '{detail.testName}': report {report_id} is no longer running")
                return False
            raise ReportNotFound(report_id)

        if detail.reportId != report_id:
            detail = detail.model_copy(update={'reportId': report_id})

        async with tracked.lock:
            if tracked.closing or tracked.context.status is not ReportStatus.RUNNING:
                logger.warning(
                    f"Rejected detail '{detail.testName}': report {report_id} is no longer running"
                )
                return False
            tracked.context.apply_outcome(detail.status)
            tracked.details.append(detail)

        if not tracked.context.degraded:
            try:
                await self._store.append_detail(detail)
            except PersistenceUnavailable as e:
                logger.warning(f"Detail '{detail.testName}' of report {report_id} not persisted: {e}")

        return True

    # -------------------------------------------------------------------------
    # terminal transitions
    # -------------------------------------------------------------------------

    async def finalize_report(self, report_id: str) -> ReportContext:
        """
        Complete a Running report.

        Computes durationMs and moves the report to Completed. If writing the
        final state to storage raises, the report becomes Failed with the
        error as its message; it is never left Running. Finalizing a terminal
        report is a no-op.

        Returns:
            ReportContext: Snapshot of the report after the call.

        Raises:
            ReportNotFound: If the report id is unknown.
        """
        tracked = self._lookup(report_id)
        context = await self._terminate(tracked, ReportStatus.COMPLETED)

        logger.info(
            f"Report {report_id} {context.status.value}: {context.totalTests} tests, "
            f"{context.passedTests} passed, {context.failedTests} failed, "
            f"{context.skippedTests} skipped ({context.successRate:.2f}%) in {context.durationMs} ms"
        )
        return context

    async def stop_report(self, report_id: str, reason: str = 'Stopped by user') -> ReportContext:
        """
        Stop a Running report.

        Cooperative: the batch stops dispatching new tests, tests already
        running finish on their own and their details are rejected. Stopping
        a terminal report is a no-op.

        Raises:
            ReportNotFound: If the report id is unknown.
        """
        tracked = self._lookup(report_id)
        context = await self._terminate(tracked, ReportStatus.STOPPED, reason)
        logger.info(f"Report {report_id} {context.status.value}: {context.message}")
        return context

    async def _terminate(
        self, tracked: _TrackedReport, status: ReportStatus, message: Optional[str] = None
    ) -> ReportContext:
        """
        Move a report to a terminal status exactly once.

        The terminal state is built on a copy, persisted, and only then
        published on the tracked report, so readers never observe a status
        that is later revised. Callers arriving while another caller is
        closing the report wait for it and get the same final snapshot.
        """
        async with tracked.lock:
            already_closing = tracked.closing or tracked.context.status.is_terminal
            if not already_closing:
                tracked.closing = True
                if status is ReportStatus.STOPPED:
                    tracked.batch.stop_event.set()
                candidate = tracked.context.model_copy()
                self._close(candidate, status)
                candidate.message = message

        if already_closing:
            await tracked.closed.wait()
            return tracked.context.model_copy()

        report_id = candidate.reportId
        if not candidate.degraded:
            try:
                await self._store.finish_report(candidate)
            except Exception as e:
                if status is ReportStatus.COMPLETED:
                    logger.error(f"Failed to persist final state of report {report_id}: {e}")
                    candidate.status = ReportStatus.FAILED
                    candidate.message = f"Failed to persist final report state: {e}"
                else:
                    logger.warning(f"{status.value} state of report {report_id} not persisted: {e}")

        async with tracked.lock:
            tracked.context = candidate
        tracked.closed.set()
        await self._retire(tracked)
        return candidate.model_copy()

    def _close(self, context: ReportContext, status: ReportStatus) -> None:
        now = self._clock()
        context.status = status
        context.finishedAt = now
        context.durationMs = max(0, int((now - context.startedAt).total_seconds() * 1000))

    def _lookup(self, report_id: str) -> _TrackedReport:
        tracked = self._active.get(report_id) or self._finished.get(report_id)
        if tracked is None:
            raise ReportNotFound(report_id)
        return tracked

    async def _retire(self, tracked: _TrackedReport) -> None:
        report_id = tracked.context.reportId
        self._active.pop(report_id, None)
        self._finished[report_id] = tracked
        while len(self._finished) > self._retention:
            self._finished.popitem(last=False)

        if self._sink is not None:
            try:
                await self._sink.publish(tracked.context.model_copy(), list(tracked.details))
            except Exception:
                logger.exception(f"Reporting sink failed for report {report_id}")

    # -------------------------------------------------------------------------
    # reads
    # -------------------------------------------------------------------------

    async def get_report(self, report_id: str) -> ReportContext:
        """
        Return a live or historical report.

        Raises:
            ReportNotFound: If neither memory nor storage knows the id.
        """
        tracked = self._active.get(report_id) or self._finished.get(report_id)
        if tracked is not None:
            return tracked.context.model_copy()
        try:
            report = await self._store.get_report(report_id)
        except PersistenceUnavailable:
            report = None
        if report is None:
            raise ReportNotFound(report_id)
        return report

    async def get_details(self, report_id: str) -> List[TestDetailRecord]:
        tracked = self._active.get(report_id) or self._finished.get(report_id)
        if tracked is not None:
            return list(tracked.details)
        try:
            details = await self._store.list_details(report_id)
        except PersistenceUnavailable:
            details = []
        if not details and await self._store_lacks(report_id):
            raise ReportNotFound(report_id)
        return details

    async def _store_lacks(self, report_id: str) -> bool:
        try:
            return await self._store.get_report(report_id) is None
        except PersistenceUnavailable:
            return True

    async def list_reports(
        self, limit: int = 50, status: Optional[ReportStatus] = None
    ) -> List[ReportContext]:
        """Reports newest first; in-memory state wins over stored rows."""
        reports: Dict[str, ReportContext] = {}
        try:
            for report in await self._store.list_reports(limit=limit, status=status):
                reports[report.reportId] = report
        except PersistenceUnavailable as e:
            logger.warning(f"Listing reports from memory only: {e}")

        for tracked in itertools.chain(self._finished.values(), self._active.values()):
            if status is None or tracked.context.status == status:
                reports[tracked.context.reportId] = tracked.context.model_copy()

        ordered = sorted(reports.values(), key=lambda r: r.startedAt, reverse=True)
        return ordered[:limit]
