"""
Automation jobs for TestOps.

- run_notifications: Slack message after each scheduled batch completes.
  Never notifies twice for the same report unless force=True.

Environment Requirements:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL.
"""

from testops.jobs.run_notifications import (
    send_run_notification,
    notify_report,
    format_run_message,
    check_already_notified,
    mark_notified,
)


__all__ = [
    'send_run_notification',
    'notify_report',
    'format_run_message',
    'check_already_notified',
    'mark_notified',
]
