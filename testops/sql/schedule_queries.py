"""
Schedule Queries Module for the TestOps backend.

Parameterized PostgreSQL queries for the test_schedule and test_case tables
read and written by the scheduled-execution orchestrator.
"""

from typing import Optional


SCHEDULE_COLUMNS: str = """
        schedule_id,
        schedule_name,
        cron_expression,
        target_suite,
        environment,
        parallelism,
        is_active,
        last_execution,
        next_execution,
        description,
        created_by,
        timeout_minutes
"""


def get_schedule_upsert_query() -> str:
    """
    Generate SQL for inserting or replacing a schedule row.

    Parameters ($1..$12) follow SCHEDULE_COLUMNS order.
    """
    return f"""
    -- Upsert Schedule Query
    INSERT INTO test_schedule ({SCHEDULE_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
    ON CONFLICT (schedule_id) DO UPDATE SET
        schedule_name = EXCLUDED.schedule_name,
        cron_expression = EXCLUDED.cron_expression,
        target_suite = EXCLUDED.target_suite,
        environment = EXCLUDED.environment,
        parallelism = EXCLUDED.parallelism,
        is_active = EXCLUDED.is_active,
        last_execution = EXCLUDED.last_execution,
        next_execution = EXCLUDED.next_execution,
        description = EXCLUDED.description,
        timeout_minutes = EXCLUDED.timeout_minutes
    """


def get_schedule_query() -> str:
    return f"""
    -- Single Schedule Query
    SELECT {SCHEDULE_COLUMNS}
    FROM test_schedule
    WHERE schedule_id = $1
    """


def get_schedule_list_query(active_only: bool = False) -> str:
    """
    Generate SQL for listing schedules.

    Args:
        active_only: Restrict to schedules with is_active = TRUE.
    """
    active_filter = "WHERE is_active = TRUE" if active_only else ""
    return f"""
    -- Schedule List Query
    SELECT {SCHEDULE_COLUMNS}
    FROM test_schedule
    {active_filter}
    ORDER BY schedule_name ASC
    """


def get_test_cases_query(suite: Optional[str] = None) -> str:
    """
    Generate SQL for the enabled test cases of a suite.

    Returns:
        str: Query with $1 = suite when a suite is given.
    """
    suite_filter = "AND suite = $1" if suite else ""
    return f"""
    -- Test Cases Query
    SELECT
        name,
        suite,
        test_type,
        target,
        timeout_seconds
    FROM test_case
    WHERE enabled = TRUE
    {suite_filter}
    ORDER BY name ASC
    """
