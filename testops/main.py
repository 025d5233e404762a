"""
FastAPI application entry point for the TestOps backend.

This module is the composition root: the lifespan builds the report store,
the report lifecycle manager, the test runner, the trigger engine, the
orchestrator and the analytics engine once, keeps them on app.state for the
dependencies in testops.core.dependencies, registers every active schedule
and tears everything down on shutdown.

Persistence:
- DATABASE_URL set and reachable: PostgreSQL via asyncpg
- otherwise: in-memory store (a warning is logged; nothing survives restart)

Test implementations are registered on app.state.runner by the embedding
process; a test case without an implementation is recorded as Error.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from testops import __version__
from testops.api import include_routers
from testops.core.config import Settings, get_settings
from testops.core.database import close_db, init_db
from testops.core.exceptions import PersistenceUnavailable
from testops.jobs.run_notifications import notify_report
from testops.models import ReportContext
from testops.services.analytics import AnalyticsEngine
from testops.services.orchestrator import ScheduledExecutionOrchestrator
from testops.services.report_lifecycle import ReportLifecycleManager
from testops.services.report_sink import CsvReportSink
from testops.services.storage import InMemoryReportStore, ReportStore, create_store
from testops.services.test_runner import FunctionTestRunner
from testops.services.trigger_engine import APSchedulerTriggerEngine


logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def build_services(settings: Settings, store: ReportStore) -> Dict[str, Any]:
    """
    Wire the services around one store.

    Returns:
        Dict with store, lifecycle, runner, engine, orchestrator and analytics.
    """
    lifecycle = ReportLifecycleManager(
        store,
        base_dir=settings.report_base_dir,
        sink=CsvReportSink(),
        retention=settings.report_retention,
    )
    runner = FunctionTestRunner()
    engine = APSchedulerTriggerEngine()

    on_batch_complete = None
    if settings.slack_webhook_url and settings.notify_on_completion:
        async def on_batch_complete(report: ReportContext) -> None:
            details = await lifecycle.get_details(report.reportId)
            await notify_report(report, details, settings.top_failures_limit)

    orchestrator = ScheduledExecutionOrchestrator(
        store,
        lifecycle,
        runner,
        engine,
        default_parallelism=settings.default_parallelism,
        max_parallelism=settings.max_parallelism,
        batch_timeout_seconds=settings.batch_timeout_seconds,
        on_batch_complete=on_batch_complete,
    )
    analytics = AnalyticsEngine(
        store,
        default_days=settings.analytics_window_days,
        top_failures_limit=settings.top_failures_limit,
        trend_threshold=settings.trend_threshold_points,
    )
    return {
        'store': store,
        'lifecycle': lifecycle,
        'runner': runner,
        'engine': engine,
        'orchestrator': orchestrator,
        'analytics': analytics,
    }


async def open_store(settings: Settings) -> ReportStore:
    """Create the configured store, falling back to memory if PostgreSQL is unreachable."""
    store = create_store(settings)
    if not settings.database_url:
        return store
    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except PersistenceUnavailable as e:
        logger.error(f"Failed to initialize database, using in-memory store: {e}")
        store = InMemoryReportStore()
    return store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        - open the store
        - build services and attach them to app.state
        - register active schedules and start the trigger engine
    Shutdown:
        - stop the trigger engine
        - close the database pool
    """
    settings = get_settings()
    logger.info("TestOps API starting")

    services = build_services(settings, await open_store(settings))
    for name, service in services.items():
        setattr(app.state, name, service)

    startup = await services['orchestrator'].start()
    for schedule_id, error in startup.failed.items():
        logger.warning(f"Schedule {schedule_id} not registered: {error}")

    yield

    logger.info("TestOps API shutting down")
    services['orchestrator'].shutdown()
    try:
        await close_db()
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


def create_app() -> FastAPI:
    app = FastAPI(
        title="TestOps API",
        version=__version__,
        description=(
            "Backend for test automation: batch report lifecycle, "
            "cron-scheduled suite execution and execution analytics."
        ),
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    include_routers(app)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    @app.get("/")
    async def root():
        return {
            "name": "TestOps API",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    return app


configure_logging(get_settings())
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "testops.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
