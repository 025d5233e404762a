"""
Storage collaborator for reports, test details, schedules and test cases.

Two implementations share the ReportStore interface:

- PostgresReportStore: asyncpg pool from testops.core.database plus the
  parameterized queries in testops.sql. Any connection or server error is
  surfaced as PersistenceUnavailable so callers can fall back locally.
- InMemoryReportStore: plain dictionaries, used when DATABASE_URL is unset
  and in tests.

Every write is atomic for a single entity. append_detail() stores a detail and
applies it to the report counters in one step, so concurrent writers never lose
an increment in the store.

Usage:
    store = create_store(get_settings())
    await store.save_report(report)
    await store.append_detail(detail)
    executions = await store.fetch_executions(start, end)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

import asyncpg

from testops.core.config import Settings
from testops.core.database import get_db_pool
from testops.core.exceptions import PersistenceUnavailable
from testops.models import (
    ReportContext,
    ReportStatus,
    TestDetailRecord,
    TestStatus,
    ScheduleDefinition,
    TestCaseRef,
    ExecutionRecord,
)
from testops.sql import (
    get_report_upsert_query,
    get_report_increment_query,
    get_report_finish_query,
    get_report_query,
    get_report_list_query,
    get_detail_insert_query,
    get_details_for_report_query,
    get_schedule_upsert_query,
    get_schedule_query,
    get_schedule_list_query,
    get_test_cases_query,
    get_executions_query,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Storage Interface
# =============================================================================

class ReportStore(ABC):
    """Persistence port used by the lifecycle manager, orchestrator and analytics."""

    # Reports

    @abstractmethod
    async def save_report(self, report: ReportContext) -> None: ...

    @abstractmethod
    async def finish_report(self, report: ReportContext) -> None:
        """Persist the terminal status, finish time, duration and message."""

    @abstractmethod
    async def get_report(self, report_id: str) -> Optional[ReportContext]: ...

    @abstractmethod
    async def list_reports(
        self, limit: int = 50, status: Optional[ReportStatus] = None
    ) -> List[ReportContext]: ...

    # Details

    @abstractmethod
    async def append_detail(self, detail: TestDetailRecord) -> None:
        """Store a detail and increment its report's counters atomically."""

    @abstractmethod
    async def list_details(self, report_id: str) -> List[TestDetailRecord]: ...

    @abstractmethod
    async def fetch_executions(
        self, start: datetime, end: datetime, suite: Optional[str] = None
    ) -> List[ExecutionRecord]:
        """Executions with start <= startTime < end, oldest first."""

    # Schedules

    @abstractmethod
    async def save_schedule(self, schedule: ScheduleDefinition) -> None: ...

    @abstractmethod
    async def get_schedule(self, schedule_id: str) -> Optional[ScheduleDefinition]: ...

    @abstractmethod
    async def list_schedules(self, active_only: bool = False) -> List[ScheduleDefinition]: ...

    # Test cases

    @abstractmethod
    async def list_test_cases(self, suite: str) -> List[TestCaseRef]: ...


def _increments(status: TestStatus) -> tuple:
    """(passed, failed, skipped) deltas for one outcome; Error counts as failed."""
    if status is TestStatus.PASSED:
        return 1, 0, 0
    if status is TestStatus.SKIPPED:
        return 0, 0, 1
    return 0, 1, 0


# =============================================================================
# PostgreSQL Implementation
# =============================================================================

def _record_to_report(record) -> ReportContext:
    row = dict(record)
    return ReportContext(
        reportId=row['report_id'],
        suiteType=row['suite_type'],
        status=ReportStatus(row['status']),
        totalTests=row.get('total_tests') or 0,
        passedTests=row.get('passed_tests') or 0,
        failedTests=row.get('failed_tests') or 0,
        skippedTests=row.get('skipped_tests') or 0,
        successRate=float(row.get('success_rate') or 0.0),
        startedAt=row['started_at'],
        finishedAt=row.get('finished_at'),
        durationMs=row.get('duration_ms'),
        createdBy=row.get('created_by') or 'System',
        triggerType=row.get('trigger_type') or 'Manual',
        reportPath=row.get('report_path'),
        environment=row.get('environment'),
        message=row.get('message'),
    )


def _record_to_detail(record) -> TestDetailRecord:
    row = dict(record)
    return TestDetailRecord(
        reportId=row.get('report_id'),
        testName=row['test_name'],
        status=row['status'],
        startTime=row.get('start_time'),
        endTime=row.get('end_time'),
        durationMs=row.get('duration_ms') or 0,
        errorMessage=row.get('error_message'),
        artifactRef=row.get('artifact_ref'),
        testType=row.get('test_type'),
    )


def _record_to_execution(record) -> ExecutionRecord:
    row = dict(record)
    return ExecutionRecord(
        reportId=row.get('report_id'),
        testName=row['test_name'],
        status=row['status'],
        startTime=row['start_time'],
        durationMs=row.get('duration_ms') or 0,
        environment=row.get('environment'),
        suiteType=row.get('suite_type'),
        testType=row.get('test_type'),
        errorMessage=row.get('error_message'),
    )


def _record_to_schedule(record) -> ScheduleDefinition:
    row = dict(record)
    return ScheduleDefinition(
        scheduleId=row['schedule_id'],
        scheduleName=row.get('schedule_name'),
        cronExpression=row.get('cron_expression'),
        targetSuite=row.get('target_suite'),
        environment=row.get('environment'),
        parallelism=row.get('parallelism'),
        isActive=bool(row.get('is_active')),
        lastExecution=row.get('last_execution'),
        nextExecution=row.get('next_execution'),
        description=row.get('description'),
        createdBy=row.get('created_by'),
        timeoutMinutes=row.get('timeout_minutes'),
    )


class PostgresReportStore(ReportStore):
    """ReportStore backed by the asyncpg connection pool."""

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await get_db_pool()
        try:
            async with pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Database operation failed: {e}")
            raise PersistenceUnavailable(str(e)) from e

    async def save_report(self, report: ReportContext) -> None:
        async with self._connection() as conn:
            await conn.execute(
                get_report_upsert_query(),
                report.reportId,
                report.suiteType,
                report.status.value,
                report.totalTests,
                report.passedTests,
                report.failedTests,
                report.skippedTests,
                report.successRate,
                report.startedAt,
                report.finishedAt,
                report.durationMs,
                report.createdBy,
                report.triggerType.value,
                report.reportPath,
                report.environment,
                report.message,
            )

    async def finish_report(self, report: ReportContext) -> None:
        async with self._connection() as conn:
            await conn.execute(
                get_report_finish_query(),
                report.reportId,
                report.status.value,
                report.finishedAt,
                report.durationMs,
                report.message,
            )

    async def get_report(self, report_id: str) -> Optional[ReportContext]:
        async with self._connection() as conn:
            row = await conn.fetchrow(get_report_query(), report_id)
        return _record_to_report(row) if row else None

    async def list_reports(
        self, limit: int = 50, status: Optional[ReportStatus] = None
    ) -> List[ReportContext]:
        args = [limit, status.value] if status else [limit]
        async with self._connection() as conn:
            rows = await conn.fetch(get_report_list_query(status.value if status else None), *args)
        return [_record_to_report(row) for row in rows]

    async def append_detail(self, detail: TestDetailRecord) -> None:
        passed, failed, skipped = _increments(detail.status)
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    get_detail_insert_query(),
                    detail.reportId,
                    detail.testName,
                    detail.status.value,
                    detail.startTime,
                    detail.endTime,
                    detail.durationMs,
                    detail.errorMessage,
                    detail.artifactRef,
                    detail.testType,
                )
                await conn.execute(
                    get_report_increment_query(),
                    detail.reportId,
                    passed,
                    failed,
                    skipped,
                )

    async def list_details(self, report_id: str) -> List[TestDetailRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(get_details_for_report_query(), report_id)
        return [_record_to_detail(row) for row in rows]

    async def fetch_executions(
        self, start: datetime, end: datetime, suite: Optional[str] = None
    ) -> List[ExecutionRecord]:
        args = [start, end, suite] if suite else [start, end]
        async with self._connection() as conn:
            rows = await conn.fetch(get_executions_query(suite), *args)
        return [_record_to_execution(row) for row in rows]

    async def save_schedule(self, schedule: ScheduleDefinition) -> None:
        async with self._connection() as conn:
            await conn.execute(
                get_schedule_upsert_query(),
                schedule.scheduleId,
                schedule.scheduleName,
                schedule.cronExpression,
                schedule.targetSuite,
                schedule.environment,
                schedule.parallelism,
                schedule.isActive,
                schedule.lastExecution,
                schedule.nextExecution,
                schedule.description,
                schedule.createdBy,
                schedule.timeoutMinutes,
            )

    async def get_schedule(self, schedule_id: str) -> Optional[ScheduleDefinition]:
        async with self._connection() as conn:
            row = await conn.fetchrow(get_schedule_query(), schedule_id)
        return _record_to_schedule(row) if row else None

    async def list_schedules(self, active_only: bool = False) -> List[ScheduleDefinition]:
        async with self._connection() as conn:
            rows = await conn.fetch(get_schedule_list_query(active_only))
        return [_record_to_schedule(row) for row in rows]

    async def list_test_cases(self, suite: str) -> List[TestCaseRef]:
        async with self._connection() as conn:
            rows = await conn.fetch(get_test_cases_query(suite), suite)
        return [
            TestCaseRef(
                name=row['name'],
                suite=row['suite'],
                testType=row.get('test_type'),
                target=row.get('target'),
                timeoutSeconds=row.get('timeout_seconds'),
            )
            for row in map(dict, rows)
        ]


# =============================================================================
# In-Memory Implementation
# =============================================================================

class InMemoryReportStore(ReportStore):
    """
    ReportStore kept in process memory.

    Stored models are copies, so callers mutating their own ReportContext do
    not change what the store holds until they save again. Each method runs
    without awaiting in the middle, which makes every write atomic on the
    event loop.
    """

    def __init__(self, test_cases: Optional[Dict[str, List[TestCaseRef]]] = None):
        self._reports: Dict[str, ReportContext] = {}
        self._details: Dict[str, List[TestDetailRecord]] = {}
        self._schedules: Dict[str, ScheduleDefinition] = {}
        self._test_cases: Dict[str, List[TestCaseRef]] = dict(test_cases or {})

    def add_test_cases(self, suite: str, cases: List[TestCaseRef]) -> None:
        self._test_cases.setdefault(suite, []).extend(cases)

    async def save_report(self, report: ReportContext) -> None:
        self._reports[report.reportId] = report.model_copy(deep=True)
        self._details.setdefault(report.reportId, [])

    async def finish_report(self, report: ReportContext) -> None:
        stored = self._reports.get(report.reportId)
        if stored is None:
            self._reports[report.reportId] = report.model_copy(deep=True)
            return
        stored.status = report.status
        stored.finishedAt = report.finishedAt
        stored.durationMs = report.durationMs
        stored.message = report.message

    async def get_report(self, report_id: str) -> Optional[ReportContext]:
        stored = self._reports.get(report_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_reports(
        self, limit: int = 50, status: Optional[ReportStatus] = None
    ) -> List[ReportContext]:
        reports = [r for r in self._reports.values() if status is None or r.status == status]
        reports.sort(key=lambda r: r.startedAt, reverse=True)
        return [r.model_copy(deep=True) for r in reports[:limit]]

    async def append_detail(self, detail: TestDetailRecord) -> None:
        self._details.setdefault(detail.reportId, []).append(detail)
        stored = self._reports.get(detail.reportId)
        if stored is not None:
            stored.apply_outcome(detail.status)

    async def list_details(self, report_id: str) -> List[TestDetailRecord]:
        return list(self._details.get(report_id, []))

    async def fetch_executions(
        self, start: datetime, end: datetime, suite: Optional[str] = None
    ) -> List[ExecutionRecord]:
        executions = []
        for report_id, details in self._details.items():
            report = self._reports.get(report_id)
            if report is None:
                continue
            if suite and report.suiteType != suite:
                continue
            for detail in details:
                started = detail.startTime or detail.endTime or report.startedAt
                if not (start <= started < end):
                    continue
                executions.append(ExecutionRecord(
                    reportId=report_id,
                    testName=detail.testName,
                    status=detail.status,
                    startTime=started,
                    durationMs=detail.durationMs,
                    environment=report.environment,
                    suiteType=report.suiteType,
                    testType=detail.testType,
                    errorMessage=detail.errorMessage,
                ))
        executions.sort(key=lambda e: e.startTime)
        return executions

    async def save_schedule(self, schedule: ScheduleDefinition) -> None:
        self._schedules[schedule.scheduleId] = schedule.model_copy(deep=True)

    async def get_schedule(self, schedule_id: str) -> Optional[ScheduleDefinition]:
        stored = self._schedules.get(schedule_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_schedules(self, active_only: bool = False) -> List[ScheduleDefinition]:
        return [
            s.model_copy(deep=True)
            for s in self._schedules.values()
            if s.isActive or not active_only
        ]

    async def list_test_cases(self, suite: str) -> List[TestCaseRef]:
        return list(self._test_cases.get(suite, []))


def create_store(settings: Settings) -> ReportStore:
    """PostgreSQL store when DATABASE_URL is set, in-memory otherwise."""
    if settings.database_url:
        return PostgresReportStore()
    logger.warning("DATABASE_URL not set; using in-memory report store")
    return InMemoryReportStore()
