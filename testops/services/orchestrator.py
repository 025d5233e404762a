"""
Scheduled Execution Orchestrator.

Turns persisted ScheduleDefinitions into live recurring triggers and runs one
batch per fire:

    fire(job_key)
      -> skip if the previous batch of this job key is still running
      -> open report (createdBy="Scheduler", triggerType="Scheduled")
      -> update lastExecution / nextExecution (derived from the cron expression)
      -> dispatch every test case of the target suite, at most `parallelism`
         at a time, recording each outcome into the report
      -> finalize once all dispatched work completes or the batch timeout elapses

Invariants:
    - Registration validates the whole definition before any side effect.
    - A job key never has two batches in flight. A fire arriving while the
      previous batch runs is skipped, not queued, and lastExecution is left
      untouched.
    - A test runner exception becomes an Error detail and never aborts the
      batch.
    - Stopping the report stops new dispatches; running tests finish.

Startup registers every active schedule, isolating failures per schedule. Only
a trigger engine that cannot start at all is raised to the caller.
"""

import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from testops.core.exceptions import (
    PersistenceUnavailable,
    ScheduleNotFound,
    TestExecutionFailure,
    TriggerEngineFailure,
    ValidationError,
)
from testops.models import (
    FireResult,
    ScheduleDefinition,
    ScheduleStatus,
    StartupReport,
    TestCaseRef,
    TestDetailRecord,
    TestOutcome,
    TestStatus,
    TriggerType,
)
from testops.services.report_lifecycle import BatchContext, ReportLifecycleManager
from testops.services.storage import ReportStore
from testops.services.test_runner import TestRunner
from testops.services.trigger_engine import TriggerEngine, next_fire_time, validate_cron


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

JOB_KEY_PREFIX: str = 'schedule_'
SCHEDULER_USER: str = 'Scheduler'
MAX_PARALLELISM: int = 64

# Called with the finalized report after each fired batch
CompletionHook = Callable[[Any], Awaitable[Any]]


def job_key_for(schedule_id: str) -> str:
    """Stable trigger job key of a schedule."""
    return f"{JOB_KEY_PREFIX}{schedule_id}"


def _slugify(name: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-') or 'schedule'


def effective_parallelism(requested: Optional[int], case_count: int,
                          default: int = 4, cap: int = MAX_PARALLELISM) -> int:
    """
    Number of workers for a batch: requested (or default) clamped to
    [1, min(cap, case_count)].
    """
    wanted = requested if requested is not None else default
    upper = max(1, min(cap, case_count))
    return max(1, min(wanted, upper))


def validate_schedule(schedule: ScheduleDefinition) -> None:
    """
    Validate required fields and the cron expression.

    Raises:
        ValidationError: Listing every problem found.
    """
    errors: List[str] = []
    if not schedule.scheduleName:
        errors.append("scheduleName is required")
    if not schedule.targetSuite:
        errors.append("targetSuite is required")
    try:
        validate_cron(schedule.cronExpression)
    except ValidationError as e:
        errors.extend(e.errors)
    if schedule.parallelism is not None and schedule.parallelism < 1:
        errors.append("parallelism must be at least 1")

    if errors:
        raise ValidationError(f"Invalid schedule: {'; '.join(errors)}", errors)


# =============================================================================
# Orchestrator
# =============================================================================

class ScheduledExecutionOrchestrator:
    """
    Owns the live schedules of one schedule store.

    Args:
        store: Storage collaborator for schedules and test cases.
        lifecycle: Report lifecycle manager batches report into.
        runner: Test runner executing individual test cases.
        engine: Trigger engine firing the registered cron jobs.
        default_parallelism: Workers when a schedule does not specify any.
        max_parallelism: Hard cap on workers per batch.
        batch_timeout_seconds: Deadline after which a batch is finalized with
            whatever has been recorded; unfinished tests are left running.
        on_batch_complete: Optional coroutine called with the finalized report
            of every fired batch. Failures are logged only.
        clock: Source of "now"; injectable for tests.
    """

    def __init__(
        self,
        store: ReportStore,
        lifecycle: ReportLifecycleManager,
        runner: TestRunner,
        engine: TriggerEngine,
        default_parallelism: int = 4,
        max_parallelism: int = MAX_PARALLELISM,
        batch_timeout_seconds: Optional[float] = 3600.0,
        on_batch_complete: Optional[CompletionHook] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = store
        self._lifecycle = lifecycle
        self._runner = runner
        self._engine = engine
        self._default_parallelism = default_parallelism
        self._max_parallelism = max_parallelism
        self._batch_timeout = batch_timeout_seconds
        self._on_batch_complete = on_batch_complete
        self._clock = clock

        self._schedules: Dict[str, ScheduleDefinition] = {}
        self._in_flight: Set[str] = set()
        self._background: Set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # startup / shutdown
    # -------------------------------------------------------------------------

    async def start(self) -> StartupReport:
        """
        Load every active schedule, register it and start the trigger engine.

        Per-schedule failures are logged and collected in the returned report.

        Raises:
            TriggerEngineFailure: If the engine itself cannot start.
        """
        report = StartupReport()
        try:
            schedules = await self._store.list_schedules(active_only=True)
        except PersistenceUnavailable as e:
            logger.warning(f"Could not load schedules at startup: {e}")
            schedules = []

        for schedule in schedules:
            schedule_id = schedule.scheduleId or _slugify(schedule.scheduleName or '')
            try:
                await self.register(schedule)
                report.registered.append(job_key_for(schedule_id))
            except (ValidationError, TriggerEngineFailure) as e:
                logger.error(f"Failed to register schedule {schedule_id} at startup: {e}")
                report.failed[schedule_id] = str(e)

        self._engine.start()
        logger.info(
            f"Orchestrator started: {len(report.registered)} schedules registered, "
            f"{len(report.failed)} failed"
        )
        return report

    def shutdown(self) -> None:
        self._engine.shutdown()
        for task in list(self._background):
            task.cancel()

    # -------------------------------------------------------------------------
    # registration
    # -------------------------------------------------------------------------

    async def register(self, schedule: ScheduleDefinition) -> ScheduleDefinition:
        """
        Validate a schedule, register its trigger and persist it as active.

        Returns:
            The stored definition with scheduleId, isActive and nextExecution set.

        Raises:
            ValidationError: Before any side effect, if the definition is malformed.
            TriggerEngineFailure: If the trigger engine rejects the job.
        """
        validate_schedule(schedule)

        schedule_id = schedule.scheduleId or _slugify(schedule.scheduleName)
        job_key = job_key_for(schedule_id)
        cron = schedule.cronExpression.strip()

        self._engine.register(job_key, cron, self.fire)

        stored = schedule.model_copy(update={
            'scheduleId': schedule_id,
            'cronExpression': cron,
            'isActive': True,
            'nextExecution': next_fire_time(cron, self._clock()),
        })
        self._schedules[job_key] = stored
        await self._persist(stored)

        logger.info(f"Schedule '{stored.scheduleName}' registered as {job_key} ({cron})")
        return stored.model_copy()

    async def unregister(self, schedule_id: str) -> bool:
        """
        Remove a schedule's trigger and mark it inactive. Unknown ids are a no-op.

        Returns:
            True if a live trigger was removed.
        """
        job_key = job_key_for(schedule_id)
        removed = self._engine.unregister(job_key)
        schedule = self._schedules.pop(job_key, None)
        if schedule is not None:
            await self._persist(schedule.model_copy(update={'isActive': False, 'nextExecution': None}))
        if removed:
            logger.info(f"Schedule {schedule_id} unregistered")
        return removed

    async def reschedule(self, schedule: ScheduleDefinition) -> Optional[ScheduleDefinition]:
        """
        Replace a schedule's definition: unregister, then register if active.

        Returns:
            The registered definition, or None when the new definition is inactive.
        """
        validate_schedule(schedule)
        schedule_id = schedule.scheduleId or _slugify(schedule.scheduleName)
        await self.unregister(schedule_id)
        if not schedule.isActive:
            await self._persist(schedule.model_copy(update={'scheduleId': schedule_id, 'nextExecution': None}))
            return None
        return await self.register(schedule.model_copy(update={'scheduleId': schedule_id}))

    async def activate(self, schedule_id: str) -> ScheduleDefinition:
        """
        Activate a stored schedule and register its trigger.

        Raises:
            ScheduleNotFound: If the schedule is not known.
        """
        schedule = await self._find(schedule_id)
        return await self.register(schedule.model_copy(update={'isActive': True}))

    async def deactivate(self, schedule_id: str) -> ScheduleDefinition:
        """
        Deactivate a schedule and deregister its live trigger.

        Raises:
            ScheduleNotFound: If the schedule is not known.
        """
        schedule = await self._find(schedule_id)
        await self.unregister(schedule_id)
        inactive = schedule.model_copy(update={'isActive': False, 'nextExecution': None})
        await self._persist(inactive)
        return inactive

    async def _find(self, schedule_id: str) -> ScheduleDefinition:
        schedule = self._schedules.get(job_key_for(schedule_id))
        if schedule is not None:
            return schedule.model_copy()
        try:
            schedule = await self._store.get_schedule(schedule_id)
        except PersistenceUnavailable:
            schedule = None
        if schedule is None:
            raise ScheduleNotFound(schedule_id)
        return schedule

    async def _persist(self, schedule: ScheduleDefinition) -> None:
        try:
            await self._store.save_schedule(schedule)
        except PersistenceUnavailable as e:
            logger.warning(f"Schedule {schedule.scheduleId} not persisted: {e}")

    # -------------------------------------------------------------------------
    # status
    # -------------------------------------------------------------------------

    def schedule_status(self, schedule_id: str) -> ScheduleStatus:
        job_key = job_key_for(schedule_id)
        if job_key in self._in_flight:
            return ScheduleStatus.RUNNING
        if self._engine.is_registered(job_key):
            return ScheduleStatus.SCHEDULED
        return ScheduleStatus.NOT_SCHEDULED

    def get_schedule(self, schedule_id: str) -> Optional[ScheduleDefinition]:
        schedule = self._schedules.get(job_key_for(schedule_id))
        return schedule.model_copy() if schedule else None

    def list_schedules(self) -> List[ScheduleDefinition]:
        return [s.model_copy() for s in self._schedules.values()]

    # -------------------------------------------------------------------------
    # firing
    # -------------------------------------------------------------------------

    async def run_now(self, schedule_id: str) -> FireResult:
        """
        Fire a registered schedule immediately as a Manual batch.

        Raises:
            ScheduleNotFound: If the schedule is not registered.
        """
        job_key = job_key_for(schedule_id)
        if job_key not in self._schedules:
            raise ScheduleNotFound(schedule_id)
        return await self.fire(job_key, trigger_type=TriggerType.MANUAL)

    def run_in_background(self, schedule_id: str) -> asyncio.Task:
        """
        Start run_now() as a task and return it without waiting for the batch.

        Raises:
            ScheduleNotFound: If the schedule is not registered.
        """
        job_key = job_key_for(schedule_id)
        if job_key not in self._schedules:
            raise ScheduleNotFound(schedule_id)
        task = asyncio.create_task(self.fire(job_key, trigger_type=TriggerType.MANUAL))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def fire(self, job_key: str, trigger_type: TriggerType = TriggerType.SCHEDULED) -> FireResult:
        """
        Run one batch for a job key. Registered as the trigger callback.

        Returns:
            FireResult describing whether the batch ran and how it ended.
        """
        schedule = self._schedules.get(job_key)
        if schedule is None or not schedule.isActive:
            logger.warning(f"Fire for {job_key} ignored: schedule not active")
            return FireResult(jobKey=job_key, fired=False, skipped=True, reason="not active")

        if job_key in self._in_flight:
            logger.warning(f"Fire for {job_key} skipped: previous batch still running")
            return FireResult(jobKey=job_key, fired=False, skipped=True, reason="previous batch still running")

        self._in_flight.add(job_key)
        try:
            return await self._run_batch(job_key, schedule, trigger_type)
        finally:
            self._in_flight.discard(job_key)

    async def _run_batch(
        self, job_key: str, schedule: ScheduleDefinition, trigger_type: TriggerType
    ) -> FireResult:
        fired_at = self._clock()
        updated = schedule.model_copy(update={
            'lastExecution': fired_at,
            'nextExecution': next_fire_time(schedule.cronExpression, fired_at),
        })
        self._schedules[job_key] = updated

        batch = await self._lifecycle.open_report(
            schedule.targetSuite,
            created_by=SCHEDULER_USER,
            trigger_type=trigger_type,
            environment=schedule.environment,
        )

        # A deactivate, unregister or reschedule during the open owns the stored definition.
        if self._schedules.get(job_key) is updated:
            await self._persist(updated)

        try:
            try:
                test_cases = await self._store.list_test_cases(schedule.targetSuite)
            except PersistenceUnavailable as e:
                logger.error(f"Cannot load test cases for suite '{schedule.targetSuite}': {e}")
                test_cases = []

            workers = effective_parallelism(
                schedule.parallelism, len(test_cases),
                default=self._default_parallelism, cap=self._max_parallelism,
            )
            logger.info(
                f"Batch {batch.report_id} for {job_key}: {len(test_cases)} tests, {workers} workers"
            )
            await self._dispatch(batch, test_cases, workers, self._timeout_for(schedule))
        finally:
            report = await self._lifecycle.finalize_report(batch.report_id)

        await self._notify(report)
        return FireResult(
            jobKey=job_key,
            fired=True,
            reportId=report.reportId,
            status=report.status,
            totalTests=report.totalTests,
        )

    def _timeout_for(self, schedule: ScheduleDefinition) -> Optional[float]:
        if schedule.timeoutMinutes:
            return schedule.timeoutMinutes * 60.0
        return self._batch_timeout

    async def _dispatch(
        self,
        batch: BatchContext,
        test_cases: List[TestCaseRef],
        workers: int,
        timeout: Optional[float],
    ) -> None:
        if not test_cases:
            return

        semaphore = asyncio.Semaphore(workers)

        async def worker(test_case: TestCaseRef) -> None:
            async with semaphore:
                if batch.stopped:
                    return
                await self._execute(batch, test_case)

        tasks = [asyncio.create_task(worker(tc)) for tc in test_cases]
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.warning(
                f"Batch {batch.report_id} timed out after {timeout}s with {len(pending)} tests unfinished"
            )
            # queued tests must not start once the report is finalized
            batch.stop_event.set()

    async def _execute(self, batch: BatchContext, test_case: TestCaseRef) -> None:
        started = self._clock()
        try:
            outcome = await self._runner.run(test_case, batch)
        except TestExecutionFailure as e:
            outcome = TestOutcome(status=TestStatus.ERROR, errorMessage=e.message)
        except Exception as e:
            logger.exception(f"Test runner raised for '{test_case.name}'")
            outcome = TestOutcome(status=TestStatus.ERROR, errorMessage=str(e) or type(e).__name__)

        detail = TestDetailRecord(
            reportId=batch.report_id,
            testName=test_case.name,
            status=outcome.status,
            startTime=started,
            endTime=self._clock(),
            durationMs=outcome.durationMs,
            errorMessage=outcome.errorMessage,
            artifactRef=outcome.artifactRef,
            testType=test_case.testType,
        )
        await self._lifecycle.record_detail(batch.report_id, detail)

    async def _notify(self, report) -> None:
        if self._on_batch_complete is None:
            return
        try:
            await self._on_batch_complete(report)
        except Exception:
            logger.exception(f"Completion hook failed for report {report.reportId}")
