"""
API contract tests.

The routers are mounted on a bare FastAPI app whose state holds services wired
around the in-memory store and the fake trigger engine, and called through
httpx's ASGI transport on the test's own event loop.
"""

import asyncio
from typing import AsyncGenerator

import httpx
import pytest
from fastapi import FastAPI

from testops.api import include_routers
from testops.core.config import Settings
from testops.main import build_services, create_app
from testops.models import ReportStatus
from testops.services.analytics import AnalyticsEngine
from testops.services.storage import InMemoryReportStore
from testops.services.trigger_engine import APSchedulerTriggerEngine
from testops.tests.conftest import FIXED_TODAY, make_test_cases


pytestmark = pytest.mark.asyncio


@pytest.fixture
def api_app(lifecycle, orchestrator, in_memory_store) -> FastAPI:
    app = FastAPI()
    include_routers(app)
    app.state.lifecycle = lifecycle
    app.state.orchestrator = orchestrator
    app.state.analytics = AnalyticsEngine(in_memory_store, today=lambda: FIXED_TODAY)
    return app


@pytest.fixture
async def client(api_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=api_app)
    async with httpx.AsyncClient(transport=transport, base_url='http://testserver') as c:
        yield c


async def open_report(client: httpx.AsyncClient) -> str:
    response = await client.post('/reports', json={'suiteType': 'smoke', 'triggerType': 'Manual'})
    assert response.status_code == 201
    return response.json()['reportId']


# =============================================================================
# Reports
# =============================================================================

class TestReportEndpoints:

    async def test_report_lifecycle_over_http(self, client) -> None:
        # Arrange
        report_id = await open_report(client)

        # Act
        recorded = await client.post(f'/reports/{report_id}/details', json={'testName': 'login', 'status': 'PASS'})
        finalized = await client.post(f'/reports/{report_id}/finalize')
        late = await client.post(f'/reports/{report_id}/details', json={'testName': 'late', 'status': 'FAIL'})

        # Assert
        assert recorded.status_code == 200
        assert recorded.json()['passedTests'] == 1
        assert finalized.json()['status'] == 'Completed'
        assert finalized.json()['successRate'] == 100.0
        assert late.status_code == 409

    async def test_unknown_report_is_404(self, client) -> None:
        response = await client.get('/reports/RPT_19700101_000000_00000000')

        assert response.status_code == 404

    async def test_unknown_status_string_is_422(self, client) -> None:
        report_id = await open_report(client)

        response = await client.post(f'/reports/{report_id}/details', json={'testName': 'x', 'status': 'flaky'})

        assert response.status_code == 422

    async def test_stop_with_and_without_reason(self, client) -> None:
        first = await open_report(client)
        second = await open_report(client)

        with_reason = await client.post(f'/reports/{first}/stop', json={'reason': 'Cancelled'})
        without = await client.post(f'/reports/{second}/stop')

        assert with_reason.json()['status'] == 'Stopped'
        assert with_reason.json()['message'] == 'Cancelled'
        assert without.json()['message'] == 'Stopped by user'

    async def test_list_and_export(self, client) -> None:
        # Arrange
        report_id = await open_report(client)
        await client.post(
            f'/reports/{report_id}/details',
            json={'testName': 'checkout', 'status': 'FAIL', 'errorMessage': 'Error: "timeout", retried'},
        )

        # Act
        listed = await client.get('/reports', params={'status': 'Running'})
        exported = await client.get(f'/reports/{report_id}/export')

        # Assert
        assert [r['reportId'] for r in listed.json()] == [report_id]
        assert exported.headers['content-type'].startswith('text/csv')
        assert '"Error: ""timeout"", retried"' in exported.text


# =============================================================================
# Schedules
# =============================================================================

class TestScheduleEndpoints:

    async def test_invalid_cron_is_422_with_errors(self, client) -> None:
        response = await client.post('/schedules', json={
            'scheduleName': 'Broken', 'cronExpression': '* * *', 'targetSuite': 'smoke',
        })

        assert response.status_code == 422
        assert len(response.json()['detail']['errors']) == 1

    async def test_register_status_and_deactivate(self, client) -> None:
        # Act
        created = await client.post('/schedules', json={
            'scheduleId': 'nightly', 'scheduleName': 'Nightly', 'cronExpression': '0 2 * * *', 'targetSuite': 'smoke',
        })
        status = await client.get('/schedules/nightly/status')
        deactivated = await client.post('/schedules/nightly/deactivate')
        after = await client.get('/schedules/nightly/status')

        # Assert
        assert created.status_code == 201
        assert created.json()['nextExecution'] == '2026-01-15T02:00:00'
        assert status.json() == {'scheduleId': 'nightly', 'jobKey': 'schedule_nightly', 'status': 'SCHEDULED'}
        assert deactivated.json()['isActive'] is False
        assert after.json()['status'] == 'NOT_SCHEDULED'

    async def test_manual_run_starts_batch(self, client, in_memory_store, lifecycle) -> None:
        # Arrange
        in_memory_store.add_test_cases('smoke', make_test_cases('smoke', 2))
        await client.post('/schedules', json={
            'scheduleId': 'nightly', 'scheduleName': 'Nightly', 'cronExpression': '0 2 * * *', 'targetSuite': 'smoke',
        })

        # Act
        response = await client.post('/schedules/nightly/run')
        for _ in range(200):
            completed = await lifecycle.list_reports(status=ReportStatus.COMPLETED)
            if completed:
                break
            await asyncio.sleep(0.01)

        # Assert
        assert response.status_code == 202
        assert response.json()['accepted'] is True
        assert completed[0].totalTests == 2
        assert completed[0].triggerType.value == 'Manual'

    async def test_run_unknown_schedule_is_404(self, client) -> None:
        response = await client.post('/schedules/missing/run')

        assert response.status_code == 404


# =============================================================================
# Analytics
# =============================================================================

class TestAnalyticsEndpoints:

    async def test_summary_and_heatmap(self, client) -> None:
        report_id = await open_report(client)
        await client.post(
            f'/reports/{report_id}/details',
            json={'testName': 'login', 'status': 'FAIL', 'startTime': '2026-01-14T09:30:00'},
        )

        summary = await client.get('/analytics/summary', params={'from': '2026-01-14', 'to': '2026-01-14'})
        heatmap = await client.get('/analytics/failure-heatmap', params={'days': 3})

        assert summary.json()['total'] == 1
        assert summary.json()['failed'] == 1
        assert heatmap.json()['dates'] == ['2026-01-12', '2026-01-13', '2026-01-14']
        assert heatmap.json()['rows'][0]['counts'] == [0, 0, 1]

    async def test_overlong_window_is_422(self, client) -> None:
        for path in ('/analytics/summary', '/analytics/trend', '/analytics/suites'):
            response = await client.get(path, params={'from': '0001-01-01', 'to': '2026-01-14'})

            assert response.status_code == 422

    async def test_window_ending_on_last_day_is_served(self, client) -> None:
        response = await client.get('/analytics/summary', params={'from': '9999-12-25', 'to': '9999-12-31'})

        assert response.status_code == 200
        assert response.json()['total'] == 0

    async def test_invalid_matrix_status_is_422(self, client) -> None:
        response = await client.get('/analytics/test-matrix', params={'status': 'flaky'})

        assert response.status_code == 422

    async def test_empty_history_gives_zero_summary(self, client) -> None:
        response = await client.get('/analytics/summary')

        assert response.status_code == 200
        assert response.json()['total'] == 0
        assert response.json()['p95DurationMs'] == 0


# =============================================================================
# Application wiring
# =============================================================================

class TestApplication:

    async def test_health_and_root(self) -> None:
        transport = httpx.ASGITransport(app=create_app())
        async with httpx.AsyncClient(transport=transport, base_url='http://testserver') as c:
            health = await c.get('/health')
            root = await c.get('/')

        assert health.json() == {'status': 'healthy'}
        assert root.json()['docs'] == '/docs'

    async def test_build_services_shares_one_store(self, tmp_path) -> None:
        settings = Settings(_env_file=None, database_url=None, report_base_dir=str(tmp_path), slack_webhook_url=None)
        store = InMemoryReportStore()

        services = build_services(settings, store)

        assert services['store'] is store
        assert isinstance(services['engine'], APSchedulerTriggerEngine)
        assert services['orchestrator']._on_batch_complete is None
        batch = await services['lifecycle'].open_report('smoke')
        assert (await services['analytics'].get_recent_executions()) == []
        assert (tmp_path / batch.report_id / 'logs').is_dir()
