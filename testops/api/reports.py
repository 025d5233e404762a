"""
FastAPI router module for batch reports.

Exposes the report lifecycle over HTTP so that external runners (CI jobs,
manual test sessions) can open a report, stream test outcomes into it and
finalize or stop it.

Key Endpoints:
- GET  /reports                         - List reports, newest first
- POST /reports                         - Open a new Running report
- GET  /reports/{report_id}             - Report counters and status
- GET  /reports/{report_id}/details     - Recorded test details
- POST /reports/{report_id}/details     - Record one test outcome
- POST /reports/{report_id}/finalize    - Complete the report
- POST /reports/{report_id}/stop        - Stop the report
- GET  /reports/{report_id}/export      - Details as delimited text

Error mapping:
- ReportNotFound -> 404
- Detail rejected because the report left Running -> 409
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

from testops.core.dependencies import LifecycleDep
from testops.core.exceptions import ReportNotFound
from testops.models import (
    OpenReportRequest,
    ReportContext,
    ReportStatus,
    StopReportRequest,
    TestDetailRecord,
)
from testops.services.export import details_frame, reports_frame, to_delimited
from testops.services.report_lifecycle import detect_trigger_type


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT: int = 50
MAX_LIST_LIMIT: int = 500


router = APIRouter()


# =============================================================================
# Endpoints
# =============================================================================

@router.get("", response_model=List[ReportContext])
async def list_reports(
    lifecycle: LifecycleDep,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    status: Optional[ReportStatus] = Query(None),
) -> List[ReportContext]:
    """List reports newest first, optionally filtered by status."""
    return await lifecycle.list_reports(limit=limit, status=status)


@router.post("", response_model=ReportContext, status_code=201)
async def open_report(request: OpenReportRequest, lifecycle: LifecycleDep) -> ReportContext:
    """
    Open a new report in Running state.

    When triggerType is omitted it is detected from the environment:
    CI/CD under a CI system, Manual otherwise.
    """
    batch = await lifecycle.open_report(
        request.suiteType,
        created_by=request.createdBy,
        trigger_type=request.triggerType or detect_trigger_type(),
        environment=request.environment,
    )
    return await lifecycle.get_report(batch.report_id)


@router.get("/{report_id}", response_model=ReportContext)
async def get_report(report_id: str, lifecycle: LifecycleDep) -> ReportContext:
    try:
        return await lifecycle.get_report(report_id)
    except ReportNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{report_id}/details", response_model=List[TestDetailRecord])
async def get_details(report_id: str, lifecycle: LifecycleDep) -> List[TestDetailRecord]:
    try:
        return await lifecycle.get_details(report_id)
    except ReportNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{report_id}/details", response_model=ReportContext)
async def record_detail(
    report_id: str,
    detail: TestDetailRecord,
    lifecycle: LifecycleDep,
) -> ReportContext:
    """
    Record one test outcome.

    Status strings are accepted in any common spelling (PASS, passed, FAIL,
    skipped, timeout, ...).
    """
    try:
        accepted = await lifecycle.record_detail(report_id, detail)
    except ReportNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    if not accepted:
        raise HTTPException(
            status_code=409,
            detail=f"Report {report_id} is no longer running; detail rejected",
        )
    return await lifecycle.get_report(report_id)


@router.post("/{report_id}/finalize", response_model=ReportContext)
async def finalize_report(report_id: str, lifecycle: LifecycleDep) -> ReportContext:
    try:
        return await lifecycle.finalize_report(report_id)
    except ReportNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{report_id}/stop", response_model=ReportContext)
async def stop_report(
    report_id: str,
    lifecycle: LifecycleDep,
    request: Optional[StopReportRequest] = None,
) -> ReportContext:
    reason = request.reason if request else StopReportRequest().reason
    try:
        return await lifecycle.stop_report(report_id, reason)
    except ReportNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{report_id}/export", response_class=PlainTextResponse)
async def export_report(
    report_id: str,
    lifecycle: LifecycleDep,
    kind: str = Query("details", pattern="^(details|summary)$"),
    delimiter: str = Query(",", min_length=1, max_length=1),
) -> PlainTextResponse:
    """Export the report summary or its details as delimited text."""
    try:
        if kind == "summary":
            frame = reports_frame([await lifecycle.get_report(report_id)])
        else:
            frame = details_frame(await lifecycle.get_details(report_id))
    except ReportNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info(f"Exported {kind} of report {report_id}")
    return PlainTextResponse(to_delimited(frame, delimiter), media_type="text/csv")
