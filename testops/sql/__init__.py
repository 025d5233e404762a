"""
SQL Query Module for the TestOps backend.

Provides parameterized SQL queries for:
- Report and detail persistence (report_queries)
- Schedule and test-case persistence (schedule_queries)
- Execution history reads for analytics (analytics_queries)

Only the PostgreSQL store uses these; the in-memory store keeps the same
semantics in plain Python.
"""

from testops.sql.report_queries import (
    get_report_upsert_query,
    get_report_increment_query,
    get_report_finish_query,
    get_report_query,
    get_report_list_query,
    get_detail_insert_query,
    get_details_for_report_query,
)
from testops.sql.schedule_queries import (
    get_schedule_upsert_query,
    get_schedule_query,
    get_schedule_list_query,
    get_test_cases_query,
)
from testops.sql.analytics_queries import get_executions_query


__all__ = [
    'get_report_upsert_query',
    'get_report_increment_query',
    'get_report_finish_query',
    'get_report_query',
    'get_report_list_query',
    'get_detail_insert_query',
    'get_details_for_report_query',
    'get_schedule_upsert_query',
    'get_schedule_query',
    'get_schedule_list_query',
    'get_test_cases_query',
    'get_executions_query',
]
