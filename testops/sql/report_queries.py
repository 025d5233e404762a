"""
Report Queries Module for the TestOps backend.

Provides parameterized PostgreSQL queries for the test_report and
test_report_detail tables used by the report lifecycle.

Counter updates are expressed as storage-side increments
(`total_tests = total_tests + 1`) so that concurrent detail writes for the
same report never lose an update, whatever order they commit in.
"""

from typing import Optional


# =============================================================================
# CONSTANTS
# =============================================================================

REPORT_COLUMNS: str = """
        report_id,
        suite_type,
        status,
        total_tests,
        passed_tests,
        failed_tests,
        skipped_tests,
        success_rate,
        started_at,
        finished_at,
        duration_ms,
        created_by,
        trigger_type,
        report_path,
        environment,
        message
"""

DEFAULT_REPORT_LIST_LIMIT: int = 50


# =============================================================================
# REPORT WRITES
# =============================================================================

def get_report_upsert_query() -> str:
    """
    Generate SQL for inserting or replacing a report row.

    Parameters ($1..$16) follow REPORT_COLUMNS order.

    Returns:
        str: Parameterized UPSERT query string.
    """
    return f"""
    -- Upsert Report Query
    INSERT INTO test_report ({REPORT_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
    ON CONFLICT (report_id) DO UPDATE SET
        status = EXCLUDED.status,
        total_tests = EXCLUDED.total_tests,
        passed_tests = EXCLUDED.passed_tests,
        failed_tests = EXCLUDED.failed_tests,
        skipped_tests = EXCLUDED.skipped_tests,
        success_rate = EXCLUDED.success_rate,
        finished_at = EXCLUDED.finished_at,
        duration_ms = EXCLUDED.duration_ms,
        report_path = EXCLUDED.report_path,
        message = EXCLUDED.message
    """


def get_report_increment_query() -> str:
    """
    Generate SQL for applying one test outcome to a report's counters.

    Parameters:
        $1: report_id
        $2: passed increment (0 or 1)
        $3: failed increment (0 or 1)
        $4: skipped increment (0 or 1)

    Returns:
        str: Parameterized UPDATE query string. success_rate is recomputed
            from the incremented counters in the same statement.
    """
    return """
    -- Increment Report Counters Query
    UPDATE test_report
    SET
        total_tests = total_tests + 1,
        passed_tests = passed_tests + $2,
        failed_tests = failed_tests + $3,
        skipped_tests = skipped_tests + $4,
        success_rate = (passed_tests + $2) * 100.0 / (total_tests + 1)
    WHERE report_id = $1
    """


def get_report_finish_query() -> str:
    """
    Generate SQL for writing the terminal state of a report.

    Parameters:
        $1: report_id
        $2: status
        $3: finished_at
        $4: duration_ms
        $5: message
    """
    return """
    -- Finish Report Query
    UPDATE test_report
    SET
        status = $2,
        finished_at = $3,
        duration_ms = $4,
        message = $5
    WHERE report_id = $1
    """


# =============================================================================
# REPORT READS
# =============================================================================

def get_report_query() -> str:
    return f"""
    -- Single Report Query
    SELECT {REPORT_COLUMNS}
    FROM test_report
    WHERE report_id = $1
    """


def get_report_list_query(status: Optional[str] = None) -> str:
    """
    Generate SQL for listing reports newest first.

    Args:
        status: When given, adds a status filter as parameter $2.

    Returns:
        str: Query with $1 = limit (and $2 = status when filtered).
    """
    status_filter = "WHERE status = $2" if status else ""
    return f"""
    -- Report List Query
    SELECT {REPORT_COLUMNS}
    FROM test_report
    {status_filter}
    ORDER BY started_at DESC
    LIMIT $1
    """


# =============================================================================
# DETAIL QUERIES
# =============================================================================

def get_detail_insert_query() -> str:
    """
    Generate SQL for inserting a test detail row.

    Parameters ($1..$9): report_id, test_name, status, start_time, end_time,
    duration_ms, error_message, artifact_ref, test_type.
    """
    return """
    -- Insert Test Detail Query
    INSERT INTO test_report_detail (
        report_id,
        test_name,
        status,
        start_time,
        end_time,
        duration_ms,
        error_message,
        artifact_ref,
        test_type
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
    """


def get_details_for_report_query() -> str:
    return """
    -- Details For Report Query
    SELECT
        report_id,
        test_name,
        status,
        start_time,
        end_time,
        duration_ms,
        error_message,
        artifact_ref,
        test_type
    FROM test_report_detail
    WHERE report_id = $1
    ORDER BY start_time ASC NULLS LAST
    """
