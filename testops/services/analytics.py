"""
Analytics Aggregation Engine.

Read-only statistics over historical test executions. Every view is a pure
function of the execution records inside a time window; the AnalyticsEngine
class only resolves windows, loads records from storage and delegates.

Windows are calendar-date based: [from 00:00, (to + 1 day) 00:00), so `to`
includes its whole day. The default window is today-7 .. today.

Views:
    - Summary: counts, pass/fail rates, mean and p95 duration, breakdowns
    - Daily trend: one {date, passed, failed} per day, zero days included
    - Test matrix: per-test pass rate, latest run and trend direction
    - Failure heatmap: per-test failure counts per day
    - Top failures: most frequently failing tests with their latest error
    - Regression metrics: stability and regression detection per environment

Failed counts always include Error outcomes. Empty input yields zero-valued
structures, never errors. Storage outages are treated as empty input.
Windows longer than MAX_WINDOW_DAYS are rejected with ValueError.

Percentile (nearest rank):
    p95 = sorted(durations)[ceil(0.95 * n) - 1], 0 when n = 0

Trend classification:
    Runs of a test are sorted chronologically and split in halves, the earlier
    half taking the extra run when the count is odd. Improving when the later
    half's pass rate exceeds the earlier one by more than the threshold
    (5 percentage points), Declining when it trails by more than the
    threshold, Stable otherwise and whenever there are fewer than 2 runs.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np

from testops.core.exceptions import PersistenceUnavailable
from testops.models import (
    AnalyticsSummary,
    DailyTrendPoint,
    ExecutionRecord,
    FailureHeatmap,
    HeatmapRow,
    RegressionMetrics,
    TestMatrixEntry,
    TestStatus,
    TopFailure,
    TrendDirection,
)
from testops.services.storage import ReportStore


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_WINDOW_DAYS: int = 7
DEFAULT_TOP_FAILURES: int = 5
TREND_THRESHOLD_POINTS: float = 5.0
P95: int = 95
MAX_WINDOW_DAYS: int = 365


# =============================================================================
# Window helpers
# =============================================================================

def resolve_window(
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    days: int = DEFAULT_WINDOW_DAYS,
    today: Optional[date] = None,
) -> Tuple[date, date]:
    """
    Fill in missing window ends: to defaults to today, from to to - days.

    Raises:
        ValueError: If the window spans more than MAX_WINDOW_DAYS.
    """
    to_date = to_date or today or date.today()
    if from_date is None:
        from_date = to_date - timedelta(days=min(days, (to_date - date.min).days))
    if (to_date - from_date).days > MAX_WINDOW_DAYS:
        raise ValueError(
            f"Window {from_date}..{to_date} exceeds the maximum of {MAX_WINDOW_DAYS} days"
        )
    return from_date, to_date


def window_bounds(from_date: date, to_date: date) -> Tuple[datetime, datetime]:
    """Half-open datetime range [from 00:00, (to + 1 day) 00:00); open-ended at date.max."""
    start = datetime.combine(from_date, time.min)
    if to_date >= date.max:
        return start, datetime.max
    end = datetime.combine(to_date + timedelta(days=1), time.min)
    return start, end


def _day_range(from_date: date, to_date: date) -> List[date]:
    span = (to_date - from_date).days
    return [from_date + timedelta(days=i) for i in range(span + 1)]


def _rate(part: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(part * 100.0 / total, 2)


# =============================================================================
# Statistics
# =============================================================================

def nearest_rank_percentile(values: Iterable[int], pct: int = P95) -> int:
    """
    Nearest-rank percentile of integer values.

    Example:
        >>> nearest_rank_percentile(range(10, 1001, 10), 95)
        950
    """
    arr = np.sort(np.asarray(list(values), dtype=np.int64))
    n = arr.size
    if n == 0:
        return 0
    rank = (pct * n + 99) // 100  # ceil(pct * n / 100) in integer arithmetic
    return int(arr[max(rank, 1) - 1])


def summarize_executions(
    records: List[ExecutionRecord], from_date: date, to_date: date
) -> AnalyticsSummary:
    """Counts, rates, duration statistics and breakdowns over the records."""
    summary = AnalyticsSummary(fromDate=from_date, toDate=to_date)
    if not records:
        return summary

    status_counts: Dict[str, int] = defaultdict(int)
    environment_counts: Dict[str, int] = defaultdict(int)
    type_counts: Dict[str, int] = defaultdict(int)
    for record in records:
        status_counts[record.status.value] += 1
        environment_counts[record.environment or 'unknown'] += 1
        type_counts[record.testType or 'unknown'] += 1

    durations = np.array([r.durationMs for r in records], dtype=np.float64)
    total = len(records)
    passed = status_counts.get(TestStatus.PASSED.value, 0)
    errors = status_counts.get(TestStatus.ERROR.value, 0)
    failed = status_counts.get(TestStatus.FAILED.value, 0) + errors
    skipped = status_counts.get(TestStatus.SKIPPED.value, 0)

    summary.total = total
    summary.passed = passed
    summary.failed = failed
    summary.skipped = skipped
    summary.errors = errors
    summary.passRate = _rate(passed, total)
    summary.failRate = _rate(failed, total)
    summary.avgDurationMs = round(float(np.mean(durations)), 2)
    summary.p95DurationMs = nearest_rank_percentile(r.durationMs for r in records)
    summary.statusBreakdown = dict(status_counts)
    summary.environmentBreakdown = dict(environment_counts)
    summary.typeBreakdown = dict(type_counts)
    return summary


def build_daily_trend(
    records: List[ExecutionRecord], from_date: date, to_date: date
) -> List[DailyTrendPoint]:
    """One point per calendar day in [from_date, to_date], zero days included."""
    points = {day: DailyTrendPoint(date=day) for day in _day_range(from_date, to_date)}
    for record in records:
        point = points.get(record.startTime.date())
        if point is None:
            continue
        if record.status is TestStatus.PASSED:
            point.passed += 1
        elif record.status.is_failure:
            point.failed += 1
    return list(points.values())


def classify_trend(
    statuses: List[TestStatus], threshold: float = TREND_THRESHOLD_POINTS
) -> TrendDirection:
    """Trend of chronologically ordered outcomes; see module docstring."""
    if len(statuses) < 2:
        return TrendDirection.STABLE

    passed = np.array([s is TestStatus.PASSED for s in statuses], dtype=np.float64)
    mid = (len(passed) + 1) // 2
    first_rate = float(np.mean(passed[:mid])) * 100.0
    second_rate = float(np.mean(passed[mid:])) * 100.0
    delta = second_rate - first_rate

    if delta > threshold:
        return TrendDirection.IMPROVING
    if delta < -threshold:
        return TrendDirection.DECLINING
    return TrendDirection.STABLE


def _group_by_test(records: Iterable[ExecutionRecord]) -> Dict[str, List[ExecutionRecord]]:
    groups: Dict[str, List[ExecutionRecord]] = defaultdict(list)
    for record in records:
        groups[record.testName].append(record)
    for runs in groups.values():
        runs.sort(key=lambda r: r.startTime)
    return groups


def build_test_matrix(
    records: List[ExecutionRecord],
    status_filter: Optional[Union[TestStatus, str]] = None,
    threshold: float = TREND_THRESHOLD_POINTS,
) -> List[TestMatrixEntry]:
    """
    Per-test rows sorted by test name.

    Args:
        records: Executions already restricted to the window (and suite).
        status_filter: Keep only tests whose most recent run has this status.
        threshold: Trend threshold in percentage points.
    """
    wanted = TestStatus.from_external(status_filter) if status_filter else None

    entries = []
    for name, runs in sorted(_group_by_test(records).items()):
        latest = runs[-1]
        if wanted is not None and latest.status is not wanted:
            continue
        passed = sum(1 for r in runs if r.status is TestStatus.PASSED)
        entries.append(TestMatrixEntry(
            testName=name,
            passRate=_rate(passed, len(runs)),
            totalRuns=len(runs),
            trend=classify_trend([r.status for r in runs], threshold),
            lastStatus=latest.status,
            lastDurationMs=latest.durationMs,
            lastEnvironment=latest.environment,
            lastRunAt=latest.startTime,
        ))
    return entries


def build_failure_heatmap(
    records: List[ExecutionRecord], from_date: date, to_date: date
) -> FailureHeatmap:
    """
    Failure counts per test per day, oldest day first.

    Only tests with at least one failure in the range get a row. Rows are
    ordered by total failures descending, then test name.
    """
    dates = _day_range(from_date, to_date)
    index = {day: i for i, day in enumerate(dates)}
    counts: Dict[str, np.ndarray] = {}

    for record in records:
        if not record.status.is_failure:
            continue
        i = index.get(record.startTime.date())
        if i is None:
            continue
        row = counts.setdefault(record.testName, np.zeros(len(dates), dtype=np.int64))
        row[i] += 1

    rows = [
        HeatmapRow(testName=name, counts=[int(c) for c in row], totalFailures=int(row.sum()))
        for name, row in counts.items()
    ]
    rows.sort(key=lambda r: (-r.totalFailures, r.testName))
    return FailureHeatmap(dates=dates, rows=rows)


def rank_top_failures(
    records: List[ExecutionRecord], limit: int = DEFAULT_TOP_FAILURES
) -> List[TopFailure]:
    """
    Most frequently failing tests.

    Ranked by failure count descending, ties broken by most recent failure
    descending. lastError is the error message of the most recent failure.
    """
    failures: Dict[str, TopFailure] = {}
    for record in records:
        if not record.status.is_failure:
            continue
        entry = failures.get(record.testName)
        if entry is None:
            entry = failures[record.testName] = TopFailure(testName=record.testName, failureCount=0)
        entry.failureCount += 1
        if entry.lastFailureAt is None or record.startTime >= entry.lastFailureAt:
            entry.lastFailureAt = record.startTime
            entry.lastError = record.errorMessage

    ranked = sorted(
        failures.values(),
        key=lambda f: (-f.failureCount, -f.lastFailureAt.timestamp(), f.testName),
    )
    return ranked[:max(limit, 0)]


def compute_regression_metrics(
    records: List[ExecutionRecord], environment: Optional[str], days: int
) -> RegressionMetrics:
    """
    Stability indicators for one environment.

    stabilityScore: tests executed more than once, per 100 executions.
    regressionDetectionRate: distinct failing tests, per 100 executions.
    """
    if environment:
        records = [r for r in records if r.environment == environment]

    metrics = RegressionMetrics(environment=environment, days=days)
    total = len(records)
    if total == 0:
        return metrics

    runs_per_test = _group_by_test(records)
    repeated = sum(1 for runs in runs_per_test.values() if len(runs) > 1)
    failing = sum(1 for runs in runs_per_test.values() if any(r.status.is_failure for r in runs))

    metrics.stabilityScore = _rate(repeated, total)
    metrics.regressionDetectionRate = _rate(failing, total)
    metrics.averageExecutionTime = round(float(np.mean([r.durationMs for r in records])), 2)
    metrics.totalExecutions = total
    return metrics


def results_by_suite(records: List[ExecutionRecord]) -> Dict[str, Dict[str, float]]:
    """Total/passed/failed/passRate per suite."""
    suites: Dict[str, Dict[str, float]] = {}
    for record in records:
        stats = suites.setdefault(
            record.suiteType or 'unknown', {'total': 0, 'passed': 0, 'failed': 0, 'passRate': 0.0}
        )
        stats['total'] += 1
        if record.status is TestStatus.PASSED:
            stats['passed'] += 1
        elif record.status.is_failure:
            stats['failed'] += 1
    for stats in suites.values():
        stats['passRate'] = _rate(int(stats['passed']), int(stats['total']))
    return suites


# =============================================================================
# Engine
# =============================================================================

class AnalyticsEngine:
    """
    Loads execution history for a window and computes the requested view.

    Args:
        store: Storage collaborator providing execution history.
        default_days: Window length when the caller gives none.
        top_failures_limit: Default length of the top-failures ranking.
        trend_threshold: Trend threshold in percentage points.
        today: Source of the current date; injectable for tests.
    """

    def __init__(
        self,
        store: ReportStore,
        default_days: int = DEFAULT_WINDOW_DAYS,
        top_failures_limit: int = DEFAULT_TOP_FAILURES,
        trend_threshold: float = TREND_THRESHOLD_POINTS,
        today: Callable[[], date] = date.today,
    ):
        self._store = store
        self._default_days = default_days
        self._top_failures_limit = top_failures_limit
        self._trend_threshold = trend_threshold
        self._today = today

    def _window(
        self,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        days: Optional[int] = None,
    ) -> Tuple[date, date]:
        return resolve_window(
            from_date, to_date,
            days=max(days if days is not None else self._default_days, 0),
            today=self._today(),
        )

    async def _load(
        self, from_date: date, to_date: date, suite: Optional[str] = None
    ) -> List[ExecutionRecord]:
        if from_date > to_date:
            return []
        start, end = window_bounds(from_date, to_date)
        try:
            return await self._store.fetch_executions(start, end, suite)
        except PersistenceUnavailable as e:
            logger.warning(f"Execution history unavailable, returning empty analytics: {e}")
            return []

    async def get_summary(
        self, from_date: Optional[date] = None, to_date: Optional[date] = None
    ) -> AnalyticsSummary:
        from_date, to_date = self._window(from_date, to_date)
        records = await self._load(from_date, to_date)
        return summarize_executions(records, from_date, to_date)

    async def get_daily_trend(
        self, from_date: Optional[date] = None, to_date: Optional[date] = None
    ) -> List[DailyTrendPoint]:
        from_date, to_date = self._window(from_date, to_date)
        records = await self._load(from_date, to_date)
        return build_daily_trend(records, from_date, to_date)

    async def get_test_matrix(
        self,
        days: Optional[int] = None,
        suite: Optional[str] = None,
        status: Optional[Union[TestStatus, str]] = None,
    ) -> List[TestMatrixEntry]:
        from_date, to_date = self._window(days=days)
        records = await self._load(from_date, to_date, suite)
        return build_test_matrix(records, status, self._trend_threshold)

    async def get_failure_heatmap(self, days: Optional[int] = None) -> FailureHeatmap:
        """`days` daily columns ending today."""
        span = min(max(days if days is not None else self._default_days, 1), MAX_WINDOW_DAYS)
        to_date = self._today()
        from_date = to_date - timedelta(days=span - 1)
        records = await self._load(from_date, to_date)
        return build_failure_heatmap(records, from_date, to_date)

    async def get_top_failures(
        self, limit: Optional[int] = None, days: Optional[int] = None
    ) -> List[TopFailure]:
        from_date, to_date = self._window(days=days)
        records = await self._load(from_date, to_date)
        return rank_top_failures(records, limit if limit is not None else self._top_failures_limit)

    async def get_regression_metrics(
        self, environment: Optional[str] = None, days: Optional[int] = None
    ) -> RegressionMetrics:
        span = days if days is not None else self._default_days
        from_date, to_date = self._window(days=span)
        records = await self._load(from_date, to_date)
        return compute_regression_metrics(records, environment, span)

    async def get_recent_executions(
        self, limit: int = 20, days: Optional[int] = None
    ) -> List[ExecutionRecord]:
        from_date, to_date = self._window(days=days)
        records = await self._load(from_date, to_date)
        return sorted(records, key=lambda r: r.startTime, reverse=True)[:max(limit, 0)]

    async def get_results_by_suite(
        self, from_date: Optional[date] = None, to_date: Optional[date] = None
    ) -> Dict[str, Dict[str, float]]:
        from_date, to_date = self._window(from_date, to_date)
        records = await self._load(from_date, to_date)
        return results_by_suite(records)
