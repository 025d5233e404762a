"""
Cron trigger engine.

The orchestrator only needs four things from a trigger engine: register a
callback under a job key with a cron expression, unregister it, start and shut
down. TriggerEngine is that port; APSchedulerTriggerEngine implements it on top
of APScheduler's AsyncIOScheduler.

Cron handling:
    Expressions have exactly five fields (minute hour day-of-month month
    day-of-week) with standard cron semantics, Sunday = 0. Validation and fire
    time computation both use croniter, so the next_execution stored on a
    schedule and the moment the job actually fires always agree.

Jobs are added with max_instances=1 and coalesce=True: a job key never runs
two callbacks at once, and a backlog of missed fires collapses into one.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from croniter import croniter

from testops.core.exceptions import TriggerEngineFailure, ValidationError


logger = logging.getLogger(__name__)

FireCallback = Callable[[str], Awaitable[Any]]

CRON_FIELD_COUNT: int = 5


# =============================================================================
# Cron helpers
# =============================================================================

def validate_cron(expression: Optional[str]) -> str:
    """
    Check a five-field cron expression.

    Returns:
        The expression with surrounding whitespace removed.

    Raises:
        ValidationError: If the expression is empty, has the wrong number of
            fields or does not parse.
    """
    if expression is None or not expression.strip():
        raise ValidationError("Cron expression is required")

    expression = expression.strip()
    fields = expression.split()
    if len(fields) != CRON_FIELD_COUNT:
        raise ValidationError(
            f"Cron expression must have {CRON_FIELD_COUNT} fields, got {len(fields)}: '{expression}'"
        )
    if not croniter.is_valid(expression):
        raise ValidationError(f"Invalid cron expression: '{expression}'")
    return expression


def next_fire_time(expression: str, after: datetime) -> datetime:
    """First fire time of the expression strictly after `after`."""
    return croniter(expression, after).get_next(datetime)


class CroniterTrigger(BaseTrigger):
    """APScheduler trigger whose fire times come from croniter."""

    __slots__ = ('expression',)

    def __init__(self, expression: str):
        self.expression = validate_cron(expression)

    def get_next_fire_time(self, previous_fire_time, now):
        base = max(previous_fire_time, now) if previous_fire_time else now
        return next_fire_time(self.expression, base)

    def __str__(self) -> str:
        return f"cron[{self.expression}]"

    def __repr__(self) -> str:
        return f"<CroniterTrigger (expression='{self.expression}')>"


# =============================================================================
# Trigger engine port
# =============================================================================

class TriggerEngine(ABC):

    @abstractmethod
    def register(self, job_key: str, cron_expression: str, callback: FireCallback) -> None:
        """
        Register a recurring callback, replacing any job with the same key.

        Raises:
            ValidationError: If the cron expression is malformed.
            TriggerEngineFailure: If the engine rejects the job.
        """

    @abstractmethod
    def unregister(self, job_key: str) -> bool:
        """Remove a job. Returns False when it was not registered."""

    @abstractmethod
    def is_registered(self, job_key: str) -> bool: ...

    @abstractmethod
    def job_keys(self) -> List[str]: ...

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def shutdown(self) -> None: ...


class APSchedulerTriggerEngine(TriggerEngine):
    """
    TriggerEngine backed by APScheduler's AsyncIOScheduler.

    The callback is a coroutine function; APScheduler's asyncio executor runs
    it on the application's event loop with the job key as its only argument.
    """

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self._scheduler = scheduler or AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def register(self, job_key: str, cron_expression: str, callback: FireCallback) -> None:
        trigger = CroniterTrigger(cron_expression)

        if self.is_registered(job_key):
            self.unregister(job_key)

        try:
            self._scheduler.add_job(
                callback,
                trigger=trigger,
                args=[job_key],
                id=job_key,
                name=job_key,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        except Exception as e:
            raise TriggerEngineFailure(f"Failed to register job {job_key}: {e}") from e

        logger.info(f"Registered job {job_key} with cron '{trigger.expression}'")

    def unregister(self, job_key: str) -> bool:
        try:
            self._scheduler.remove_job(job_key)
        except JobLookupError:
            return False
        logger.info(f"Unregistered job {job_key}")
        return True

    def is_registered(self, job_key: str) -> bool:
        return self._scheduler.get_job(job_key) is not None

    def job_keys(self) -> List[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def start(self) -> None:
        if self._scheduler.running:
            return
        try:
            self._scheduler.start()
        except Exception as e:
            raise TriggerEngineFailure(f"Trigger engine failed to start: {e}") from e
        logger.info("Trigger engine started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Trigger engine shut down")
