"""
FastAPI dependency injection module for the TestOps backend.

The services are constructed once in the application lifespan (testops.main)
and kept on app.state. These dependencies hand them to endpoint handlers, so
handlers never build or look up services themselves and tests can swap them
through app.dependency_overrides.

Dependencies Provided:
- get_lifecycle / LifecycleDep: ReportLifecycleManager
- get_orchestrator / OrchestratorDep: ScheduledExecutionOrchestrator
- get_analytics / AnalyticsDep: AnalyticsEngine

Usage Examples:
    @router.get("/reports/{report_id}")
    async def get_report(report_id: str, lifecycle: LifecycleDep) -> ReportContext:
        return await lifecycle.get_report(report_id)
"""

from typing import Annotated

from fastapi import Depends, Request

from testops.services.analytics import AnalyticsEngine
from testops.services.orchestrator import ScheduledExecutionOrchestrator
from testops.services.report_lifecycle import ReportLifecycleManager


# =============================================================================
# Service Dependencies
# =============================================================================

def get_lifecycle(request: Request) -> ReportLifecycleManager:
    return request.app.state.lifecycle


def get_orchestrator(request: Request) -> ScheduledExecutionOrchestrator:
    return request.app.state.orchestrator


def get_analytics(request: Request) -> AnalyticsEngine:
    return request.app.state.analytics


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

LifecycleDep = Annotated[ReportLifecycleManager, Depends(get_lifecycle)]
OrchestratorDep = Annotated[ScheduledExecutionOrchestrator, Depends(get_orchestrator)]
AnalyticsDep = Annotated[AnalyticsEngine, Depends(get_analytics)]
