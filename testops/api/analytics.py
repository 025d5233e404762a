"""
FastAPI router module for execution analytics.

All endpoints are read-only views computed on demand from execution history.
Windows longer than MAX_WINDOW_DAYS are rejected with 422.
Empty windows return zero-valued structures.

Key Endpoints:
- GET /analytics/summary?from=&to=                 - Counts, rates, p95 duration
- GET /analytics/trend?from=&to=                   - Dense daily passed/failed series
- GET /analytics/test-matrix?days=&suite=&status=  - Per-test pass rate and trend
- GET /analytics/test-matrix/export                - Test matrix as delimited text
- GET /analytics/failure-heatmap?days=             - Failures per test per day
- GET /analytics/top-failures?limit=&days=         - Most frequent failures
- GET /analytics/regression?environment=&days=     - Stability indicators
- GET /analytics/recent?limit=                     - Latest executions
- GET /analytics/suites?from=&to=                  - Results per suite
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

from testops.core.dependencies import AnalyticsDep
from testops.models import (
    AnalyticsSummary,
    DailyTrendPoint,
    ExecutionRecord,
    FailureHeatmap,
    RegressionMetrics,
    TestMatrixEntry,
    TopFailure,
)
from testops.services.analytics import MAX_WINDOW_DAYS
from testops.services.export import matrix_frame, to_delimited


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/summary", response_model=AnalyticsSummary)
async def get_summary(
    analytics: AnalyticsDep,
    from_date: Optional[date] = Query(None, alias="from"),
    to_date: Optional[date] = Query(None, alias="to"),
) -> AnalyticsSummary:
    try:
        return await analytics.get_summary(from_date, to_date)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/trend", response_model=List[DailyTrendPoint])
async def get_daily_trend(
    analytics: AnalyticsDep,
    from_date: Optional[date] = Query(None, alias="from"),
    to_date: Optional[date] = Query(None, alias="to"),
) -> List[DailyTrendPoint]:
    try:
        return await analytics.get_daily_trend(from_date, to_date)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


async def _test_matrix(analytics, days, suite, status) -> List[TestMatrixEntry]:
    try:
        return await analytics.get_test_matrix(days=days, suite=suite, status=status)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/test-matrix", response_model=List[TestMatrixEntry])
async def get_test_matrix(
    analytics: AnalyticsDep,
    days: int = Query(7, ge=1, le=MAX_WINDOW_DAYS),
    suite: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="Latest-run status filter"),
) -> List[TestMatrixEntry]:
    return await _test_matrix(analytics, days, suite, status)


@router.get("/test-matrix/export", response_class=PlainTextResponse)
async def export_test_matrix(
    analytics: AnalyticsDep,
    days: int = Query(7, ge=1, le=MAX_WINDOW_DAYS),
    suite: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    delimiter: str = Query(",", min_length=1, max_length=1),
) -> PlainTextResponse:
    entries = await _test_matrix(analytics, days, suite, status)
    return PlainTextResponse(to_delimited(matrix_frame(entries), delimiter), media_type="text/csv")


@router.get("/failure-heatmap", response_model=FailureHeatmap)
async def get_failure_heatmap(
    analytics: AnalyticsDep,
    days: int = Query(7, ge=1, le=MAX_WINDOW_DAYS),
) -> FailureHeatmap:
    return await analytics.get_failure_heatmap(days)


@router.get("/top-failures", response_model=List[TopFailure])
async def get_top_failures(
    analytics: AnalyticsDep,
    limit: Optional[int] = Query(None, ge=1, le=100),
    days: Optional[int] = Query(None, ge=1, le=MAX_WINDOW_DAYS),
) -> List[TopFailure]:
    return await analytics.get_top_failures(limit=limit, days=days)


@router.get("/regression", response_model=RegressionMetrics)
async def get_regression_metrics(
    analytics: AnalyticsDep,
    environment: Optional[str] = Query(None),
    days: int = Query(30, ge=1, le=MAX_WINDOW_DAYS),
) -> RegressionMetrics:
    return await analytics.get_regression_metrics(environment, days)


@router.get("/recent", response_model=List[ExecutionRecord])
async def get_recent_executions(
    analytics: AnalyticsDep,
    limit: int = Query(20, ge=1, le=500),
) -> List[ExecutionRecord]:
    return await analytics.get_recent_executions(limit=limit)


@router.get("/suites")
async def get_results_by_suite(
    analytics: AnalyticsDep,
    from_date: Optional[date] = Query(None, alias="from"),
    to_date: Optional[date] = Query(None, alias="to"),
) -> Dict[str, Dict[str, float]]:
    try:
        return await analytics.get_results_by_suite(from_date, to_date)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
