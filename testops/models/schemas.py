"""
Pydantic models for the TestOps backend.

This module holds the data contracts shared by the services, the storage layer
and the API routers:

- Report lifecycle: ReportContext, TestDetailRecord, request payloads
- Scheduling: ScheduleDefinition, TestCaseRef, TestOutcome, startup/fire results
- Analytics: ExecutionRecord (input) and the computed snapshot models
  (AnalyticsSummary, DailyTrendPoint, TestMatrixEntry, FailureHeatmap,
  TopFailure, RegressionMetrics)

Field names are camelCase to match the JSON contract of the dashboard.
All timestamps are naive local datetimes.

All models use Pydantic v2 syntax.
"""

from datetime import datetime, date as DateType
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, Field, ConfigDict, field_validator

from testops.models.enums import (
    ReportStatus,
    TestStatus,
    TriggerType,
    TrendDirection,
    ScheduleStatus,
)


# =============================================================================
# Report Lifecycle Models
# =============================================================================

class ReportContext(BaseModel):
    """
    Aggregate state of one batch execution.

    Owned by the lifecycle manager while Running; an immutable historical
    record once terminal. After finalize, totalTests equals the sum of the
    passed, failed and skipped counters.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "reportId": "RPT_20260114_093000_3fa9c2d1",
                "suiteType": "regression",
                "status": "Completed",
                "totalTests": 12,
                "passedTests": 10,
                "failedTests": 1,
                "skippedTests": 1,
                "successRate": 83.33,
                "createdBy": "Scheduler",
                "triggerType": "Scheduled",
            }
        }
    )

    reportId: str = Field(..., description="RPT_<yyyyMMdd_HHmmss>_<8 hex>")
    suiteType: str = Field(..., description="Suite the batch executes")
    status: ReportStatus = Field(default=ReportStatus.RUNNING)
    totalTests: int = Field(default=0, ge=0)
    passedTests: int = Field(default=0, ge=0)
    failedTests: int = Field(default=0, ge=0, description="Failed plus Error outcomes")
    skippedTests: int = Field(default=0, ge=0)
    successRate: float = Field(default=0.0, ge=0.0, le=100.0)
    startedAt: datetime
    finishedAt: Optional[datetime] = None
    durationMs: Optional[int] = Field(default=None, ge=0)
    createdBy: str = Field(default="System")
    triggerType: TriggerType = Field(default=TriggerType.MANUAL)
    reportPath: Optional[str] = Field(default=None, description="Artifact directory of the report")
    environment: Optional[str] = None
    message: Optional[str] = Field(default=None, description="Stop reason or failure message")
    degraded: bool = Field(default=False, description="True when the report lives in memory only")

    def apply_outcome(self, status: TestStatus) -> None:
        """Apply one outcome to the counters and recompute successRate."""
        if status is TestStatus.PASSED:
            self.passedTests += 1
        elif status is TestStatus.SKIPPED:
            self.skippedTests += 1
        else:
            self.failedTests += 1
        self.totalTests += 1
        self.successRate = compute_success_rate(self.passedTests, self.totalTests)


def compute_success_rate(passed: int, total: int) -> float:
    """passed*100/total, or 0 when nothing ran."""
    if total <= 0:
        return 0.0
    return passed * 100.0 / total


class TestDetailRecord(BaseModel):
    """
    Result of one executed test case inside a report.

    Immutable after creation; belongs to exactly one report.
    """
    __test__ = False

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    reportId: Optional[str] = None
    testName: str = Field(..., min_length=1)
    status: TestStatus
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    durationMs: int = Field(default=0, ge=0)
    errorMessage: Optional[str] = None
    artifactRef: Optional[str] = Field(default=None, description="Screenshot or log path")
    testType: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, value: Any) -> TestStatus:
        return TestStatus.from_external(value)


class OpenReportRequest(BaseModel):
    suiteType: str = Field(..., min_length=1)
    createdBy: str = Field(default="System")
    triggerType: Optional[TriggerType] = Field(default=None, description="Detected from the environment when omitted")
    environment: Optional[str] = None


class StopReportRequest(BaseModel):
    reason: str = Field(default="Stopped by user")


# =============================================================================
# Scheduling Models
# =============================================================================

class ScheduleDefinition(BaseModel):
    """
    Declarative recurring batch.

    Required fields are validated by the orchestrator at registration so that
    every problem is reported together as a single ValidationError.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "scheduleName": "Nightly regression",
                "cronExpression": "0 2 * * *",
                "targetSuite": "regression",
                "environment": "staging",
                "parallelism": 8,
                "isActive": True,
            }
        },
    )

    scheduleId: Optional[str] = Field(default=None, description="Stable identity; job key source")
    scheduleName: Optional[str] = None
    cronExpression: Optional[str] = Field(default=None, description="Five-field cron expression")
    targetSuite: Optional[str] = None
    environment: Optional[str] = None
    parallelism: Optional[int] = None
    isActive: bool = True
    lastExecution: Optional[datetime] = None
    nextExecution: Optional[datetime] = None
    description: Optional[str] = None
    createdBy: Optional[str] = None
    timeoutMinutes: Optional[int] = Field(default=None, ge=1)


class TestCaseRef(BaseModel):
    """What the orchestrator hands to a test runner."""
    __test__ = False

    name: str = Field(..., min_length=1)
    suite: str
    testType: Optional[str] = None
    target: Optional[str] = Field(default=None, description="URL, endpoint or locator under test")
    timeoutSeconds: Optional[float] = Field(default=None, gt=0)
    tags: List[str] = Field(default_factory=list)


class TestOutcome(BaseModel):
    """
    Status/duration/error payload returned by a test runner.

    The status accepts raw runner strings and parses them once into TestStatus.
    """
    __test__ = False

    status: TestStatus
    durationMs: int = Field(default=0, ge=0)
    errorMessage: Optional[str] = None
    artifactRef: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, value: Any) -> TestStatus:
        return TestStatus.from_external(value)


class StartupReport(BaseModel):
    """Outcome of registering all active schedules at startup."""
    registered: List[str] = Field(default_factory=list, description="Job keys now live")
    failed: Dict[str, str] = Field(default_factory=dict, description="Schedule id -> error")


class FireResult(BaseModel):
    """What happened when a trigger fired for a job key."""
    jobKey: str
    fired: bool
    skipped: bool = False
    reason: Optional[str] = None
    reportId: Optional[str] = None
    status: Optional[ReportStatus] = None
    totalTests: int = 0


class ScheduleStatusResponse(BaseModel):
    scheduleId: str
    jobKey: str
    status: ScheduleStatus


# =============================================================================
# Analytics Models
# =============================================================================

class ExecutionRecord(BaseModel):
    """One historical test execution joined with its report."""
    reportId: Optional[str] = None
    testName: str
    status: TestStatus
    startTime: datetime
    durationMs: int = Field(default=0, ge=0)
    environment: Optional[str] = None
    suiteType: Optional[str] = None
    testType: Optional[str] = None
    errorMessage: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, value: Any) -> TestStatus:
        return TestStatus.from_external(value)


class AnalyticsSummary(BaseModel):
    """Counts and duration statistics over an analytics window."""
    fromDate: DateType
    toDate: DateType
    total: int = 0
    passed: int = 0
    failed: int = Field(default=0, description="Failed plus Error")
    skipped: int = 0
    errors: int = 0
    passRate: float = 0.0
    failRate: float = 0.0
    avgDurationMs: float = 0.0
    p95DurationMs: int = 0
    statusBreakdown: Dict[str, int] = Field(default_factory=dict)
    environmentBreakdown: Dict[str, int] = Field(default_factory=dict)
    typeBreakdown: Dict[str, int] = Field(default_factory=dict)


class DailyTrendPoint(BaseModel):
    date: DateType
    passed: int = 0
    failed: int = 0


class TestMatrixEntry(BaseModel):
    """Per-test row of the test matrix."""
    __test__ = False

    testName: str
    passRate: float
    totalRuns: int
    trend: TrendDirection
    lastStatus: TestStatus
    lastDurationMs: int
    lastEnvironment: Optional[str] = None
    lastRunAt: datetime


class HeatmapRow(BaseModel):
    testName: str
    counts: List[int] = Field(..., description="Failures per day, oldest first")
    totalFailures: int


class FailureHeatmap(BaseModel):
    dates: List[DateType] = Field(default_factory=list)
    rows: List[HeatmapRow] = Field(default_factory=list)


class TopFailure(BaseModel):
    testName: str
    failureCount: int
    lastError: Optional[str] = None
    lastFailureAt: Optional[datetime] = None


class RegressionMetrics(BaseModel):
    """Stability and regression indicators for one environment."""
    environment: Optional[str] = None
    days: int
    stabilityScore: float = 0.0
    regressionDetectionRate: float = 0.0
    averageExecutionTime: float = 0.0
    totalExecutions: int = 0
