"""
Error taxonomy for the TestOps backend.

Every error raised by the core services derives from TestOpsError so the API
layer can translate them into HTTP responses in one place.

Recovery rules:
- ValidationError: raised synchronously before any side effect is applied.
- PersistenceUnavailable: recovered locally. Reports continue in memory and
  analytics return empty results.
- TestExecutionFailure: recorded as an Error detail; never aborts a batch.
- TriggerEngineFailure: fatal for the affected schedule. A total outage at
  startup is raised to the caller.
"""

from typing import List, Optional


class TestOpsError(Exception):
    """Base class for all TestOps errors."""

    __test__ = False


class ValidationError(TestOpsError):
    """
    Raised when a schedule definition or request payload is malformed.

    Attributes:
        errors: Individual validation messages, one per problem found.
    """

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class PersistenceUnavailable(TestOpsError):
    """Raised when the storage collaborator cannot be reached."""


class TestExecutionFailure(TestOpsError):
    """Raised by a test runner when an individual test case errors out."""

    def __init__(self, test_name: str, message: str):
        super().__init__(f"{test_name}: {message}")
        self.test_name = test_name
        self.message = message


class TriggerEngineFailure(TestOpsError):
    """Raised when the trigger engine rejects a registration or is down."""


class ReportNotFound(TestOpsError):
    """Raised when a report id is not known to the lifecycle manager or store."""

    def __init__(self, report_id: str):
        super().__init__(f"Report not found: {report_id}")
        self.report_id = report_id


class ScheduleNotFound(TestOpsError):
    """Raised when a schedule id is not known to the orchestrator or store."""

    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule not found: {schedule_id}")
        self.schedule_id = schedule_id
