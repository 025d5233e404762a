"""
TestOps API package.

FastAPI router modules:
- reports: Report lifecycle (open, record details, finalize, stop, export)
- schedules: Schedule registration, activation and manual runs
- analytics: Summaries, trends, test matrix, heatmap and failure rankings
"""

from fastapi import FastAPI

from testops.api.reports import router as reports_router
from testops.api.schedules import router as schedules_router
from testops.api.analytics import router as analytics_router


def include_routers(app: FastAPI) -> None:
    """Mount every router under its prefix."""
    app.include_router(reports_router, prefix="/reports", tags=["reports"])
    app.include_router(schedules_router, prefix="/schedules", tags=["schedules"])
    app.include_router(analytics_router, prefix="/analytics", tags=["analytics"])


__all__ = [
    "include_routers",
    "reports_router",
    "schedules_router",
    "analytics_router",
]
