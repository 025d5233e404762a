"""
Slack run-completion notification job.

Posts a Block Kit summary of a finished batch to Slack using the WebhookClient
from slack-sdk. The application wires notify_report() as the orchestrator's
batch completion hook when a webhook is configured.

Idempotency:
- Never notifies twice for the same report id within a process
- force=True bypasses the check

Environment Requirements:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL
  Format: https://hooks.slack.com/services/xxx/yyy/zzz

Usage:
    result = await send_run_notification(report)
    if result['success'] and not result.get('skipped'):
        print(f"Notified for {result['report_id']}")
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from testops.core.config import get_settings
from testops.models import (
    ExecutionRecord,
    ReportContext,
    ReportStatus,
    TestDetailRecord,
    TopFailure,
)
from testops.services.analytics import rank_top_failures


logger = logging.getLogger(__name__)

# Report ids already notified, oldest first
_notified: "OrderedDict[str, None]" = OrderedDict()
_NOTIFIED_LIMIT: int = 5000

STATUS_EMOJI: Dict[ReportStatus, str] = {
    ReportStatus.COMPLETED: ':white_check_mark:',
    ReportStatus.FAILED: ':x:',
    ReportStatus.STOPPED: ':octagonal_sign:',
    ReportStatus.RUNNING: ':hourglass_flowing_sand:',
}


# =============================================================================
# Idempotency
# =============================================================================

def check_already_notified(report_id: str) -> bool:
    return report_id in _notified


def mark_notified(report_id: str) -> None:
    _notified[report_id] = None
    _notified.move_to_end(report_id)
    while len(_notified) > _NOTIFIED_LIMIT:
        _notified.popitem(last=False)


def reset_notification_state() -> None:
    _notified.clear()


# =============================================================================
# Message Formatting
# =============================================================================

def format_run_message(
    report: ReportContext,
    top_failures: Optional[List[TopFailure]] = None,
) -> List[Dict[str, Any]]:
    """
    Build the Block Kit blocks for a finished report.

    Args:
        report: The terminal report.
        top_failures: Optional failing tests to list under the summary.

    Returns:
        List of Slack Block Kit block dicts.
    """
    emoji = STATUS_EMOJI.get(report.status, '')
    duration_s = (report.durationMs or 0) / 1000.0

    blocks: List[Dict[str, Any]] = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{report.suiteType} run {report.status.value}",
                "emoji": True,
            },
        },
        {"type": "divider"},
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": (
                    f"{emoji} *{report.reportId}*\n"
                    f"Total: *{report.totalTests}*  |  Passed: *{report.passedTests}*  |  "
                    f"Failed: *{report.failedTests}*  |  Skipped: *{report.skippedTests}*\n"
                    f"Success rate: *{report.successRate:.1f}%*  |  Duration: *{duration_s:.1f}s*"
                ),
            },
        },
    ]

    context = [f"Trigger: {report.triggerType.value}", f"By: {report.createdBy}"]
    if report.environment:
        context.append(f"Env: {report.environment}")
    if report.message:
        context.append(report.message)
    blocks.append({
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": "  |  ".join(context)}],
    })

    if top_failures:
        lines = [
            f"- `{f.testName}` x{f.failureCount}" + (f": {f.lastError}" if f.lastError else "")
            for f in top_failures
        ]
        blocks.append({"type": "divider"})
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": "*Top failures*\n" + "\n".join(lines)},
        })

    return blocks


# =============================================================================
# Main Entry Point
# =============================================================================

async def send_run_notification(
    report: ReportContext,
    top_failures: Optional[List[TopFailure]] = None,
    force: bool = False,
) -> Dict[str, Any]:
    """
    Send a run-completion notification for a report.

    Returns:
        Dict with:
        - success: True if sent or skipped appropriately
        - skipped: True if skipped (already notified)
        - reason: Reason for skip
        - report_id: The report id
        - error: Error message (if failed)

    Raises:
        Nothing; all errors are captured in the return dict.
    """
    settings = get_settings()

    if not settings.slack_webhook_url:
        return {
            'success': False,
            'error': 'SLACK_WEBHOOK_URL not configured. Set this environment variable to enable run notifications.',
        }

    if not force and check_already_notified(report.reportId):
        return {
            'success': True,
            'skipped': True,
            'reason': f'Notification already sent for {report.reportId}',
            'report_id': report.reportId,
        }

    blocks = format_run_message(report, top_failures)
    text = f"{report.suiteType} run {report.status.value}: {report.passedTests}/{report.totalTests} passed"

    try:
        client = WebhookClient(settings.slack_webhook_url)
        response = await asyncio.to_thread(client.send, text=text, blocks=blocks)
    except Exception as e:
        logger.error(f"Failed to send Slack notification for {report.reportId}: {e}")
        return {
            'success': False,
            'error': f'Failed to send Slack message: {e}',
            'report_id': report.reportId,
        }

    if response.status_code != 200:
        return {
            'success': False,
            'error': f'Slack API returned status {response.status_code}: {response.body}',
            'report_id': report.reportId,
        }

    mark_notified(report.reportId)
    return {
        'success': True,
        'report_id': report.reportId,
        'status': report.status.value,
    }


async def notify_report(
    report: ReportContext,
    details: List[TestDetailRecord],
    limit: int = 5,
) -> Dict[str, Any]:
    """Notify for a finished report, listing its most frequent failures."""
    executions = [
        ExecutionRecord(
            reportId=report.reportId,
            testName=detail.testName,
            status=detail.status,
            startTime=detail.startTime or report.startedAt,
            durationMs=detail.durationMs,
            errorMessage=detail.errorMessage,
        )
        for detail in details
    ]
    result = await send_run_notification(report, rank_top_failures(executions, limit))
    if not result['success']:
        logger.warning(f"Run notification for {report.reportId} not sent: {result.get('error')}")
    return result
