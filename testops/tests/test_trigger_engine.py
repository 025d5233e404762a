"""
Tests for cron validation and the APScheduler-backed trigger engine.

The scheduler is used unstarted (jobs stay pending) except in the start/shutdown
test, so no job ever fires during the suite.
"""

from datetime import datetime

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from testops.core.exceptions import ValidationError
from testops.services.trigger_engine import (
    APSchedulerTriggerEngine,
    CroniterTrigger,
    next_fire_time,
    validate_cron,
)


async def noop(job_key: str) -> None:
    return None


class TestCronValidation:

    @pytest.mark.parametrize('expression', ['0 2 * * *', '*/5 * * * *', '0 9 * * 1-5', '30 4 1 * 0'])
    def test_valid_expressions(self, expression) -> None:
        assert validate_cron(expression) == expression

    def test_surrounding_whitespace_is_stripped(self) -> None:
        assert validate_cron('  */5 * * * *  ') == '*/5 * * * *'

    @pytest.mark.parametrize('expression', [None, '', '   ', '* * *', '0 0 2 * * *', '61 * * * *', 'every day'])
    def test_invalid_expressions(self, expression) -> None:
        with pytest.raises(ValidationError):
            validate_cron(expression)

    def test_sunday_is_day_zero(self) -> None:
        # 2026-01-14 is a Wednesday
        assert next_fire_time('0 0 * * 0', datetime(2026, 1, 14, 9, 30)) == datetime(2026, 1, 18, 0, 0)

    def test_next_fire_time_is_strictly_after(self) -> None:
        assert next_fire_time('0 2 * * *', datetime(2026, 1, 14, 2, 0)) == datetime(2026, 1, 15, 2, 0)


class TestCroniterTrigger:

    def test_next_fire_time_from_now(self) -> None:
        trigger = CroniterTrigger('*/15 * * * *')

        assert trigger.get_next_fire_time(None, datetime(2026, 1, 14, 9, 31)) == datetime(2026, 1, 14, 9, 45)

    def test_next_fire_time_after_previous_fire(self) -> None:
        trigger = CroniterTrigger('*/15 * * * *')

        fire = trigger.get_next_fire_time(datetime(2026, 1, 14, 9, 45), datetime(2026, 1, 14, 9, 30))

        assert fire == datetime(2026, 1, 14, 10, 0)

    def test_invalid_expression_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CroniterTrigger('* * *')


class TestAPSchedulerTriggerEngine:

    async def test_register_and_unregister(self) -> None:
        # Arrange
        engine = APSchedulerTriggerEngine(AsyncIOScheduler())

        # Act
        engine.register('schedule_a', '0 2 * * *', noop)
        engine.register('schedule_b', '0 2 * * *', noop)

        # Assert
        assert engine.is_registered('schedule_a')
        assert sorted(engine.job_keys()) == ['schedule_a', 'schedule_b']
        assert engine.unregister('schedule_a') is True
        assert engine.unregister('schedule_a') is False
        assert engine.job_keys() == ['schedule_b']

    async def test_register_same_key_replaces_job(self) -> None:
        engine = APSchedulerTriggerEngine(AsyncIOScheduler())

        engine.register('schedule_a', '0 2 * * *', noop)
        engine.register('schedule_a', '0 3 * * *', noop)

        assert engine.job_keys() == ['schedule_a']

    async def test_invalid_cron_registers_nothing(self) -> None:
        engine = APSchedulerTriggerEngine(AsyncIOScheduler())

        with pytest.raises(ValidationError):
            engine.register('schedule_a', '* * *', noop)

        assert engine.job_keys() == []

    async def test_start_computes_fire_times_and_shutdown_stops(self) -> None:
        # Arrange
        scheduler = AsyncIOScheduler()
        engine = APSchedulerTriggerEngine(scheduler)
        engine.register('schedule_a', '0 2 * * *', noop)

        # Act
        engine.start()
        engine.start()

        # Assert
        try:
            assert engine.running is True
            next_run = scheduler.get_job('schedule_a').next_run_time
            assert (next_run.hour, next_run.minute) == (2, 0)
        finally:
            engine.shutdown()
        assert engine.running is False
