"""
Package initialization file for TestOps models.

Re-exports all Pydantic schemas and enumerations so other modules can import
them from testops.models directly:

    from testops.models import ReportContext, TestStatus, ScheduleDefinition
"""

# =============================================================================
# Enums
# =============================================================================

from testops.models.enums import (
    ReportStatus,
    TestStatus,
    TriggerType,
    TrendDirection,
    ScheduleStatus,
)

# =============================================================================
# Schemas
# =============================================================================

from testops.models.schemas import (
    # Report lifecycle
    ReportContext,
    TestDetailRecord,
    OpenReportRequest,
    StopReportRequest,
    compute_success_rate,
    # Scheduling
    ScheduleDefinition,
    TestCaseRef,
    TestOutcome,
    StartupReport,
    FireResult,
    ScheduleStatusResponse,
    # Analytics
    ExecutionRecord,
    AnalyticsSummary,
    DailyTrendPoint,
    TestMatrixEntry,
    HeatmapRow,
    FailureHeatmap,
    TopFailure,
    RegressionMetrics,
)


__all__ = [
    'ReportStatus',
    'TestStatus',
    'TriggerType',
    'TrendDirection',
    'ScheduleStatus',
    'ReportContext',
    'TestDetailRecord',
    'OpenReportRequest',
    'StopReportRequest',
    'compute_success_rate',
    'ScheduleDefinition',
    'TestCaseRef',
    'TestOutcome',
    'StartupReport',
    'FireResult',
    'ScheduleStatusResponse',
    'ExecutionRecord',
    'AnalyticsSummary',
    'DailyTrendPoint',
    'TestMatrixEntry',
    'HeatmapRow',
    'FailureHeatmap',
    'TopFailure',
    'RegressionMetrics',
]
