"""
Tests for delimited text export and the CSV reporting sink.
"""

from datetime import datetime

import pytest

from testops.models import ReportContext, ReportStatus, TestDetailRecord
from testops.services.export import (
    DETAIL_COLUMNS,
    details_frame,
    escape_field,
    from_delimited,
    reports_frame,
    to_delimited,
    unescape_field,
)
from testops.services.report_sink import DETAILS_FILE, SUMMARY_FILE, CsvReportSink


class TestFieldQuoting:

    def test_field_with_quotes_and_delimiter(self) -> None:
        escaped = escape_field('Error: "timeout", retried')

        assert escaped == '"Error: ""timeout"", retried"'
        assert unescape_field(escaped) == 'Error: "timeout", retried'

    @pytest.mark.parametrize('value', ['plain', '', 'a;b', '42'])
    def test_plain_fields_unquoted(self, value) -> None:
        assert escape_field(value) == value

    @pytest.mark.parametrize('value', ['line1\nline2', 'cr\rhere', 'semi;colon'])
    def test_line_breaks_and_custom_delimiter_quoted(self, value) -> None:
        escaped = escape_field(value, delimiter=';')

        assert escaped.startswith('"') and escaped.endswith('"')
        assert unescape_field(escaped) == value

    def test_none_and_enum_rendering(self) -> None:
        assert escape_field(None) == ''
        assert escape_field(ReportStatus.COMPLETED) == 'Completed'
        assert escape_field(datetime(2026, 1, 14, 9, 30)) == '2026-01-14T09:30:00'


class TestTables:

    def test_details_table_parses_back(self) -> None:
        # Arrange
        details = [
            TestDetailRecord(testName='login', status='PASS', durationMs=120),
            TestDetailRecord(
                testName='checkout',
                status='FAIL',
                durationMs=300,
                errorMessage='Error: "timeout", retried\nsecond line',
            ),
        ]

        # Act
        text = to_delimited(details_frame(details))
        parsed = from_delimited(text)

        # Assert
        assert list(parsed.columns) == DETAIL_COLUMNS
        assert parsed['testName'].tolist() == ['login', 'checkout']
        assert parsed['status'].tolist() == ['Passed', 'Failed']
        assert parsed['errorMessage'].tolist() == ['', 'Error: "timeout", retried\nsecond line']

    def test_semicolon_table_quotes_minimally(self) -> None:
        # Arrange
        details = [
            TestDetailRecord(testName='login', status='PASS'),
            TestDetailRecord(testName='a;b', status='FAIL', errorMessage='said "no", twice'),
        ]

        # Act
        text = to_delimited(details_frame(details), delimiter=';')
        parsed = from_delimited(text, delimiter=';')

        # Assert
        lines = text.split('\n')
        assert lines[0] == ';'.join(DETAIL_COLUMNS)
        assert lines[1].startswith('login;Passed;')
        assert lines[2].startswith('"a;b";Failed;')
        assert '"said ""no"", twice"' in lines[2]
        assert parsed['testName'].tolist() == ['login', 'a;b']
        assert parsed['errorMessage'].tolist() == ['', 'said "no", twice']

    def test_empty_table_has_header_only(self) -> None:
        text = to_delimited(details_frame([]))

        assert text == ','.join(DETAIL_COLUMNS) + '\n'


class TestCsvReportSink:

    async def test_publish_writes_summary_and_details(self, tmp_path) -> None:
        # Arrange
        report = ReportContext(
            reportId='RPT_20260114_093000_00000001',
            suiteType='smoke',
            status=ReportStatus.COMPLETED,
            startedAt=datetime(2026, 1, 14, 9, 30),
            reportPath=str(tmp_path / 'RPT_20260114_093000_00000001'),
            message='a, "quoted" message',
        )
        details = [TestDetailRecord(testName='login', status='PASS')]

        # Act
        await CsvReportSink().publish(report, details)

        # Assert
        directory = tmp_path / 'RPT_20260114_093000_00000001'
        summary = from_delimited((directory / SUMMARY_FILE).read_text(encoding='utf-8'))
        assert summary['reportId'].tolist() == [report.reportId]
        assert summary['message'].tolist() == ['a, "quoted" message']
        assert from_delimited((directory / DETAILS_FILE).read_text(encoding='utf-8'))['testName'].tolist() == ['login']

    async def test_publish_without_path_is_skipped(self, tmp_path) -> None:
        report = ReportContext(reportId='RPT_x', suiteType='smoke', startedAt=datetime(2026, 1, 14))

        await CsvReportSink().publish(report, [])

        assert list(tmp_path.iterdir()) == []

    def test_reports_frame_columns(self) -> None:
        report = ReportContext(reportId='RPT_x', suiteType='smoke', startedAt=datetime(2026, 1, 14))

        frame = reports_frame([report])

        assert frame.loc[0, 'status'] == 'Running'
        assert frame.loc[0, 'finishedAt'] is None
