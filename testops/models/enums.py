"""
Enumeration definitions for the TestOps backend.

All enums inherit from both `str` and `Enum` so they serialize transparently in
Pydantic models and API responses.

TestStatus is the closed set of per-test outcomes. Raw status strings reported
by runners ("PASS", "passed", "FAIL", "timeout", ...) are parsed exactly once,
at the runner boundary, through TestStatus.from_external().
"""

from enum import Enum


class ReportStatus(str, Enum):
    """
    Lifecycle status of a batch report.

    Transitions: RUNNING -> COMPLETED | FAILED | STOPPED. All three targets are
    terminal; nothing leaves a terminal status.
    """
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    STOPPED = "Stopped"

    @property
    def is_terminal(self) -> bool:
        return self is not ReportStatus.RUNNING


class TestStatus(str, Enum):
    """
    Outcome of a single test case.

    ERROR is counted as a failure in report counters and analytics.
    """
    __test__ = False

    PASSED = "Passed"
    FAILED = "Failed"
    SKIPPED = "Skipped"
    ERROR = "Error"

    @property
    def is_failure(self) -> bool:
        return self in (TestStatus.FAILED, TestStatus.ERROR)

    @classmethod
    def from_external(cls, raw: str) -> "TestStatus":
        """
        Parse a runner-reported status string.

        Matching is case-insensitive and accepts both the short and the long
        spelling (PASS/PASSED, FAIL/FAILED, SKIP/SKIPPED). TIMEOUT maps to ERROR.

        Raises:
            ValueError: If the string is not a recognised status.
        """
        if isinstance(raw, cls):
            return raw
        key = str(raw).strip().upper()
        try:
            return _EXTERNAL_STATUS[key]
        except KeyError:
            raise ValueError(f"Unknown test status: {raw!r}") from None


_EXTERNAL_STATUS = {
    "PASS": TestStatus.PASSED,
    "PASSED": TestStatus.PASSED,
    "SUCCESS": TestStatus.PASSED,
    "FAIL": TestStatus.FAILED,
    "FAILED": TestStatus.FAILED,
    "FAILURE": TestStatus.FAILED,
    "SKIP": TestStatus.SKIPPED,
    "SKIPPED": TestStatus.SKIPPED,
    "ERROR": TestStatus.ERROR,
    "TIMEOUT": TestStatus.ERROR,
}


class TriggerType(str, Enum):
    """What started a batch."""
    SCHEDULED = "Scheduled"
    MANUAL = "Manual"
    CI_CD = "CI/CD"


class TrendDirection(str, Enum):
    """
    Pass-rate trend of a single test over the analytics window.

    Computed by comparing the pass rate of the chronologically later half of
    runs with the earlier half.
    """
    IMPROVING = "Improving"
    DECLINING = "Declining"
    STABLE = "Stable"


class ScheduleStatus(str, Enum):
    """Live state of a schedule inside the orchestrator."""
    NOT_SCHEDULED = "NOT_SCHEDULED"
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
