"""
Analytics Queries Module for the TestOps backend.

Provides the read queries behind the analytics engine. The engine computes all
statistics in Python (numpy/pandas); these queries only select the raw
execution history for a half-open time window [start, end).
"""

from typing import Optional


def get_executions_query(suite: Optional[str] = None) -> str:
    """
    Generate SQL to fetch executions joined with their report.

    Parameters:
        $1: window start (inclusive)
        $2: window end (exclusive)
        $3: suite type (only when suite filtering is requested)

    Returns:
        str: Query ordered chronologically by start_time.
    """
    suite_filter = "AND r.suite_type = $3" if suite else ""
    return f"""
    -- Execution History Query
    SELECT
        d.report_id,
        d.test_name,
        d.status,
        d.start_time,
        d.duration_ms,
        d.error_message,
        d.test_type,
        r.environment,
        r.suite_type
    FROM test_report_detail d
    JOIN test_report r ON r.report_id = d.report_id
    WHERE d.start_time >= $1
      AND d.start_time < $2
      {suite_filter}
    ORDER BY d.start_time ASC
    """
