"""
Pytest test module for the Slack run notification job.

Covers:
- Block Kit message formatting
- Idempotency: a report is never notified twice unless forced
- Failure reporting through the result dict (no webhook, non-200, exceptions)
- notify_report(): top failures derived from the report's details
"""

from datetime import datetime
from typing import Generator
from unittest.mock import Mock, patch

import pytest

from testops.core.config import Settings
from testops.jobs.run_notifications import (
    check_already_notified,
    format_run_message,
    mark_notified,
    notify_report,
    reset_notification_state,
    send_run_notification,
)
from testops.models import ReportContext, ReportStatus, TestDetailRecord, TopFailure


pytestmark = pytest.mark.asyncio


@pytest.fixture(autouse=True)
def clean_notification_state() -> Generator[None, None, None]:
    reset_notification_state()
    yield
    reset_notification_state()


def finished_report(report_id: str = 'RPT_20260114_093000_0000000a', **kwargs) -> ReportContext:
    values = dict(
        reportId=report_id,
        suiteType='regression',
        status=ReportStatus.COMPLETED,
        totalTests=4,
        passedTests=3,
        failedTests=1,
        skippedTests=0,
        successRate=75.0,
        startedAt=datetime(2026, 1, 14, 9, 30),
        finishedAt=datetime(2026, 1, 14, 9, 31),
        durationMs=60000,
        createdBy='Scheduler',
        environment='staging',
    )
    values.update(kwargs)
    return ReportContext(**values)


# =============================================================================
# Formatting
# =============================================================================

class TestFormatRunMessage:

    async def test_summary_blocks(self) -> None:
        # Act
        blocks = format_run_message(finished_report())

        # Assert
        assert blocks[0]['type'] == 'header'
        assert blocks[0]['text']['text'] == 'regression run Completed'
        summary = blocks[2]['text']['text']
        assert 'Passed: *3*' in summary
        assert 'Success rate: *75.0%*' in summary
        assert 'Duration: *60.0s*' in summary
        assert 'Env: staging' in blocks[3]['elements'][0]['text']

    async def test_top_failures_section(self) -> None:
        failures = [TopFailure(testName='checkout', failureCount=2, lastError='HTTP 500')]

        blocks = format_run_message(finished_report(), failures)

        assert blocks[-1]['text']['text'] == '*Top failures*\n- `checkout` x2: HTTP 500'


# =============================================================================
# Idempotency
# =============================================================================

class TestNotificationIdempotency:

    async def test_mark_and_check(self) -> None:
        assert check_already_notified('RPT_1') is False

        mark_notified('RPT_1')

        assert check_already_notified('RPT_1') is True

    async def test_second_send_is_skipped(self, mock_settings, mock_slack_client: Mock) -> None:
        # Arrange
        report = finished_report()

        # Act
        first = await send_run_notification(report)
        second = await send_run_notification(report)

        # Assert
        assert first['success'] is True
        assert second['skipped'] is True
        mock_slack_client.send.assert_called_once()

    async def test_force_bypasses_idempotency(self, mock_settings, mock_slack_client: Mock) -> None:
        report = finished_report()
        await send_run_notification(report)

        result = await send_run_notification(report, force=True)

        assert result['success'] is True
        assert result.get('skipped') is None
        assert mock_slack_client.send.call_count == 2


# =============================================================================
# Failures
# =============================================================================

class TestNotificationFailures:

    async def test_missing_webhook_is_reported(self) -> None:
        settings = Settings(_env_file=None, slack_webhook_url=None)

        with patch('testops.jobs.run_notifications.get_settings', return_value=settings):
            result = await send_run_notification(finished_report())

        assert result['success'] is False
        assert 'SLACK_WEBHOOK_URL' in result['error']

    async def test_non_200_response_is_not_marked(self, mock_settings, mock_slack_client: Mock) -> None:
        # Arrange
        mock_slack_client.send.return_value.status_code = 500
        mock_slack_client.send.return_value.body = 'server_error'
        report = finished_report()

        # Act
        result = await send_run_notification(report)

        # Assert
        assert result['success'] is False
        assert '500' in result['error']
        assert check_already_notified(report.reportId) is False

    async def test_client_exception_is_captured(self, mock_settings, mock_slack_client: Mock) -> None:
        mock_slack_client.send.side_effect = ConnectionError('network unreachable')

        result = await send_run_notification(finished_report())

        assert result['success'] is False
        assert 'network unreachable' in result['error']


# =============================================================================
# notify_report
# =============================================================================

class TestNotifyReport:

    async def test_lists_failing_details(self, mock_settings, mock_slack_client: Mock) -> None:
        # Arrange
        report = finished_report()
        details = [
            TestDetailRecord(testName='login', status='PASS', startTime=datetime(2026, 1, 14, 9, 30)),
            TestDetailRecord(
                testName='checkout', status='FAIL', errorMessage='HTTP 500',
                startTime=datetime(2026, 1, 14, 9, 30, 10),
            ),
        ]

        # Act
        result = await notify_report(report, details)

        # Assert
        assert result['success'] is True
        blocks = mock_slack_client.send.call_args.kwargs['blocks']
        assert '`checkout` x1: HTTP 500' in blocks[-1]['text']['text']
        assert 'login' not in blocks[-1]['text']['text']
