"""
Reporting sink for terminal reports.

The lifecycle manager hands every report that reaches a terminal status to a
sink together with its details. CsvReportSink writes them next to the report's
artifacts:

    <report_path>/summary.csv   one row, the report counters and timing
    <report_path>/details.csv   one row per executed test
"""

import asyncio
import logging
from pathlib import Path
from typing import List

from testops.models import ReportContext, TestDetailRecord
from testops.services.export import details_frame, reports_frame, to_delimited


logger = logging.getLogger(__name__)

SUMMARY_FILE: str = 'summary.csv'
DETAILS_FILE: str = 'details.csv'


class CsvReportSink:
    """Writes summary.csv and details.csv into the report directory."""

    def __init__(self, delimiter: str = ','):
        self._delimiter = delimiter

    async def publish(self, report: ReportContext, details: List[TestDetailRecord]) -> None:
        if not report.reportPath:
            logger.warning(f"Report {report.reportId} has no report path; export skipped")
            return

        directory = Path(report.reportPath)
        summary = to_delimited(reports_frame([report]), self._delimiter)
        rows = to_delimited(details_frame(details), self._delimiter)
        await asyncio.to_thread(_write_files, directory, summary, rows)
        logger.info(f"Exported report {report.reportId} to {directory}")


def _write_files(directory: Path, summary: str, details: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / SUMMARY_FILE).write_text(summary, encoding='utf-8')
    (directory / DETAILS_FILE).write_text(details, encoding='utf-8')
