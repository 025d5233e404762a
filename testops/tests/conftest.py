"""
Pytest Configuration and Shared Fixtures for TestOps Backend Tests.

This module provides fixtures shared by all backend tests:
- Mock asyncpg pool for exercising PostgresReportStore without a database
- Mock settings patched into modules that call get_settings()
- A manually advanced clock for deterministic timestamps and durations
- In-memory store, lifecycle manager and orchestrator wiring
- FakeTriggerEngine recording registrations instead of scheduling them
- Execution record builders for analytics tests
- Mock Slack WebhookClient

Async tests run under pytest-asyncio in auto mode (see pyproject.toml), each
with its own event loop.
"""

from datetime import date, datetime, timedelta
from typing import Callable, Dict, Generator, List, Optional
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from testops.core.config import Settings
from testops.core.exceptions import TriggerEngineFailure
from testops.models import ExecutionRecord, TestCaseRef, TestStatus
from testops.services.orchestrator import ScheduledExecutionOrchestrator
from testops.services.report_lifecycle import ReportLifecycleManager
from testops.services.storage import InMemoryReportStore
from testops.services.test_runner import FunctionTestRunner
from testops.services.trigger_engine import TriggerEngine, validate_cron


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: concurrency stress tests (deselect with -m "not slow")
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )


# ============================================================
# CONSTANTS
# ============================================================

FIXED_NOW = datetime(2026, 1, 14, 9, 30, 0)
FIXED_TODAY = FIXED_NOW.date()


# ============================================================
# TIME FIXTURES
# ============================================================

class FakeClock:
    """Callable clock that only moves when advanced."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def today() -> date:
    return FIXED_TODAY


# ============================================================
# DATABASE MOCK FIXTURES
# ============================================================

@pytest.fixture
def mock_db_pool() -> AsyncMock:
    """
    Mock asyncpg pool.

    pool.acquire() is an async context manager yielding a connection whose
    execute/fetch/fetchrow/fetchval are AsyncMocks. conn.transaction() is an
    async context manager as well.

    Usage:
        conn = mock_db_pool.acquire.return_value.__aenter__.return_value
        conn.fetch.return_value = [{'report_id': 'RPT_...', ...}]
    """
    pool = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=None)
    conn.transaction = MagicMock()

    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)

    pool.release = AsyncMock(return_value=None)
    pool.close = AsyncMock(return_value=None)

    return pool


@pytest.fixture
def mock_database(mock_db_pool: AsyncMock) -> Generator[AsyncMock, None, None]:
    """Patch get_db_pool where the storage module imported it."""
    with patch('testops.services.storage.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
        yield mock_db_pool


# ============================================================
# SETTINGS FIXTURES
# ============================================================

@pytest.fixture
def mock_settings() -> Generator[Settings, None, None]:
    """
    Settings with a Slack webhook configured and no database.

    Patched into the notification job, the only module that reads settings at
    call time.
    """
    settings = Settings(
        _env_file=None,
        database_url=None,
        report_base_dir='artifacts/test-reports',
        slack_webhook_url='https://hooks.slack.com/services/TEST/WEBHOOK/URL',
    )
    with patch('testops.jobs.run_notifications.get_settings', return_value=settings):
        yield settings


@pytest.fixture
def mock_slack_client() -> Generator[Mock, None, None]:
    """Mock WebhookClient whose send() returns a 200 response."""
    client = Mock()
    response = Mock()
    response.status_code = 200
    response.body = 'ok'
    client.send = Mock(return_value=response)

    with patch('testops.jobs.run_notifications.WebhookClient', return_value=client):
        yield client


# ============================================================
# SERVICE FIXTURES
# ============================================================

@pytest.fixture
def in_memory_store() -> InMemoryReportStore:
    return InMemoryReportStore()


@pytest.fixture
def lifecycle(tmp_path, in_memory_store: InMemoryReportStore, clock: FakeClock) -> ReportLifecycleManager:
    return ReportLifecycleManager(in_memory_store, base_dir=str(tmp_path / 'reports'), clock=clock)


class FakeTriggerEngine(TriggerEngine):
    """
    TriggerEngine that records registrations and never fires on its own.

    Tests fire jobs by awaiting the stored callback directly.
    """

    def __init__(self, fail_keys: Optional[List[str]] = None):
        self.jobs: Dict[str, tuple] = {}
        self.started = False
        self.register_calls = 0
        self._fail_keys = set(fail_keys or [])

    def register(self, job_key, cron_expression, callback) -> None:
        self.register_calls += 1
        validate_cron(cron_expression)
        if job_key in self._fail_keys:
            raise TriggerEngineFailure(f"Rejected {job_key}")
        self.jobs[job_key] = (cron_expression, callback)

    def unregister(self, job_key) -> bool:
        return self.jobs.pop(job_key, None) is not None

    def is_registered(self, job_key) -> bool:
        return job_key in self.jobs

    def job_keys(self) -> List[str]:
        return list(self.jobs)

    def start(self) -> None:
        self.started = True

    def shutdown(self) -> None:
        self.started = False


@pytest.fixture
def trigger_engine() -> FakeTriggerEngine:
    return FakeTriggerEngine()


@pytest.fixture
def runner() -> FunctionTestRunner:
    """Runner whose unregistered tests pass."""
    return FunctionTestRunner(default=lambda test_case, batch: None)


@pytest.fixture
def orchestrator(
    in_memory_store: InMemoryReportStore,
    lifecycle: ReportLifecycleManager,
    runner: FunctionTestRunner,
    trigger_engine: FakeTriggerEngine,
    clock: FakeClock,
) -> ScheduledExecutionOrchestrator:
    return ScheduledExecutionOrchestrator(
        in_memory_store,
        lifecycle,
        runner,
        trigger_engine,
        batch_timeout_seconds=5.0,
        clock=clock,
    )


def make_test_cases(suite: str, count: int) -> List[TestCaseRef]:
    return [TestCaseRef(name=f"{suite}_test_{i:03d}", suite=suite, testType='UI') for i in range(count)]


# ============================================================
# ANALYTICS DATA FIXTURES
# ============================================================

def make_execution(
    test_name: str,
    status: TestStatus,
    day: date = FIXED_TODAY,
    hour: int = 10,
    duration_ms: int = 100,
    environment: Optional[str] = 'staging',
    error: Optional[str] = None,
    suite: str = 'regression',
    test_type: str = 'API',
) -> ExecutionRecord:
    return ExecutionRecord(
        reportId=f"RPT_{day:%Y%m%d}_{hour:02d}0000_00000000",
        testName=test_name,
        status=status,
        startTime=datetime.combine(day, datetime.min.time()) + timedelta(hours=hour),
        durationMs=duration_ms,
        environment=environment,
        suiteType=suite,
        testType=test_type,
        errorMessage=error,
    )


@pytest.fixture
def execution_factory() -> Callable[..., ExecutionRecord]:
    return make_execution


@pytest.fixture
def sample_executions() -> List[ExecutionRecord]:
    """
    Three days of history ending on FIXED_TODAY.

    - login: passes every day
    - checkout: fails twice, errors once
    - search: skipped once, then passes on staging and prod
    """
    d0 = FIXED_TODAY - timedelta(days=2)
    d1 = FIXED_TODAY - timedelta(days=1)
    d2 = FIXED_TODAY
    return [
        make_execution('login', TestStatus.PASSED, d0, duration_ms=120),
        make_execution('checkout', TestStatus.FAILED, d0, hour=11, duration_ms=300, error='HTTP 500'),
        make_execution('search', TestStatus.SKIPPED, d0, hour=12, duration_ms=0),
        make_execution('login', TestStatus.PASSED, d1, duration_ms=110),
        make_execution('checkout', TestStatus.ERROR, d1, hour=11, duration_ms=5000, error='Timed out after 5s'),
        make_execution('login', TestStatus.PASSED, d2, duration_ms=130),
        make_execution('checkout', TestStatus.FAILED, d2, hour=11, duration_ms=280, error='HTTP 502'),
        make_execution('search', TestStatus.PASSED, d2, hour=12, duration_ms=90, environment='prod'),
    ]
