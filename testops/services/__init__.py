"""
TestOps Services Module

Business logic for scheduled test execution, report tracking and analytics.

Services:
- storage: ReportStore port with PostgreSQL and in-memory implementations
- report_lifecycle: Report state machine and concurrent detail accumulation
- test_runner: TestRunner port and the callable-based adapter
- trigger_engine: Cron trigger engine port and the APScheduler adapter
- orchestrator: Schedule registration and non-overlapping batch execution
- analytics: Summaries, trends, test matrix, heatmap and failure rankings
- export: Delimited text export with exact round-trip quoting
- report_sink: CSV files written for every terminal report

Services are constructed explicitly and wired together in testops.main.
"""

from testops.services.storage import (
    ReportStore,
    PostgresReportStore,
    InMemoryReportStore,
    create_store,
)
from testops.services.report_lifecycle import (
    BatchContext,
    ReportLifecycleManager,
    generate_report_id,
    detect_trigger_type,
)
from testops.services.test_runner import (
    TestRunner,
    FunctionTestRunner,
    to_outcome,
)
from testops.services.trigger_engine import (
    TriggerEngine,
    APSchedulerTriggerEngine,
    CroniterTrigger,
    validate_cron,
    next_fire_time,
)
from testops.services.orchestrator import (
    ScheduledExecutionOrchestrator,
    effective_parallelism,
    job_key_for,
    validate_schedule,
)
from testops.services.analytics import (
    AnalyticsEngine,
    summarize_executions,
    build_daily_trend,
    build_test_matrix,
    build_failure_heatmap,
    rank_top_failures,
    compute_regression_metrics,
    classify_trend,
    nearest_rank_percentile,
)
from testops.services.export import (
    escape_field,
    unescape_field,
    to_delimited,
    from_delimited,
)
from testops.services.report_sink import CsvReportSink


__all__ = [
    'ReportStore',
    'PostgresReportStore',
    'InMemoryReportStore',
    'create_store',
    'BatchContext',
    'ReportLifecycleManager',
    'generate_report_id',
    'detect_trigger_type',
    'TestRunner',
    'FunctionTestRunner',
    'to_outcome',
    'TriggerEngine',
    'APSchedulerTriggerEngine',
    'CroniterTrigger',
    'validate_cron',
    'next_fire_time',
    'ScheduledExecutionOrchestrator',
    'effective_parallelism',
    'job_key_for',
    'validate_schedule',
    'AnalyticsEngine',
    'summarize_executions',
    'build_daily_trend',
    'build_test_matrix',
    'build_failure_heatmap',
    'rank_top_failures',
    'compute_regression_metrics',
    'classify_trend',
    'nearest_rank_percentile',
    'escape_field',
    'unescape_field',
    'to_delimited',
    'from_delimited',
    'CsvReportSink',
]
