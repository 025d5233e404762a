'''
TestOps Backend Test Suite

Test Modules:
-------------
- test_report_lifecycle.py: Report state machine
  - Report id format and uniqueness
  - Counter accuracy under concurrent detail recording
  - Terminal states reject further details; finalize is idempotent
  - Degraded mode when storage is unavailable at open

- test_orchestrator.py: Scheduled execution
  - Schedule validation collects every error before registering
  - Parallelism clamping and peak concurrency
  - Overlapping fires are skipped, never queued
  - Stop, batch timeout and per-test runner failures

- test_trigger_engine.py: Cron parsing and the APScheduler adapter

- test_analytics.py: Summaries, trends, test matrix, heatmap, rankings

- test_export.py: Delimited text quoting and the CSV report sink

- test_storage.py: PostgreSQL store over a mock pool, in-memory store

- test_jobs.py: Slack run notifications and their idempotency

- test_api.py: HTTP contract of the reports, schedules and analytics routers

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v
    pytest -m "not slow"

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
