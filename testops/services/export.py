"""
Row-oriented delimited text export.

Quoting rule: a field containing the delimiter, a double quote, a carriage
return or a line feed is wrapped in double quotes with embedded quotes doubled.
Any other field is written as-is. escape_field/unescape_field round-trip
exactly:

    >>> escape_field('Error: "timeout", retried')
    '"Error: ""timeout"", retried"'
    >>> unescape_field(escape_field('Error: "timeout", retried'))
    'Error: "timeout", retried'

Tables are assembled as pandas DataFrames (one column per exported field),
written with DataFrame.to_csv under the same minimal quoting rule and parsed
back with pandas.read_csv, including line breaks inside quoted fields.
"""

import io
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, List

import pandas as pd

from testops.models import ReportContext, TestDetailRecord, TestMatrixEntry


QUOTE: str = '"'

REPORT_COLUMNS: List[str] = [
    'reportId', 'suiteType', 'status', 'environment', 'totalTests', 'passedTests',
    'failedTests', 'skippedTests', 'successRate', 'startedAt', 'finishedAt',
    'durationMs', 'createdBy', 'triggerType', 'message',
]

DETAIL_COLUMNS: List[str] = [
    'testName', 'status', 'testType', 'startTime', 'endTime', 'durationMs',
    'errorMessage', 'artifactRef',
]

MATRIX_COLUMNS: List[str] = [
    'testName', 'passRate', 'totalRuns', 'trend', 'lastStatus',
    'lastDurationMs', 'lastEnvironment', 'lastRunAt',
]


# =============================================================================
# Field quoting
# =============================================================================

def escape_field(value: Any, delimiter: str = ',') -> str:
    """Render one field, quoting it when it holds a special character."""
    text = _cell(value)
    if (delimiter in text) or (QUOTE in text) or ('\n' in text) or ('\r' in text):
        return QUOTE + text.replace(QUOTE, QUOTE * 2) + QUOTE
    return text


def unescape_field(text: str) -> str:
    """Inverse of escape_field for a single rendered field."""
    if len(text) >= 2 and text.startswith(QUOTE) and text.endswith(QUOTE):
        return text[1:-1].replace(QUOTE * 2, QUOTE)
    return text


def _cell(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and pd.isna(value):
        return ''
    return str(value)


# =============================================================================
# Tables
# =============================================================================

def to_delimited(frame: pd.DataFrame, delimiter: str = ',') -> str:
    """Render a DataFrame as delimited text with a header row."""
    rendered = frame.map(_cell)
    return rendered.to_csv(sep=delimiter, index=False, lineterminator='\n', quotechar=QUOTE, doublequote=True)


def from_delimited(text: str, delimiter: str = ',') -> pd.DataFrame:
    """Parse delimited text produced by to_delimited; every cell is a string."""
    return pd.read_csv(
        io.StringIO(text),
        sep=delimiter,
        dtype=str,
        keep_default_na=False,
        quotechar=QUOTE,
        doublequote=True,
        engine='c' if len(delimiter) == 1 else 'python',
    )


def _frame(models: Iterable[Any], columns: List[str]) -> pd.DataFrame:
    rows = [[getattr(model, column) for column in columns] for model in models]
    return pd.DataFrame(rows, columns=columns, dtype=object)


def reports_frame(reports: Iterable[ReportContext]) -> pd.DataFrame:
    return _frame(reports, REPORT_COLUMNS)


def details_frame(details: Iterable[TestDetailRecord]) -> pd.DataFrame:
    return _frame(details, DETAIL_COLUMNS)


def matrix_frame(entries: Iterable[TestMatrixEntry]) -> pd.DataFrame:
    return _frame(entries, MATRIX_COLUMNS)
