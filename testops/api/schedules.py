"""
FastAPI router module for scheduled test executions.

Key Endpoints:
- GET    /schedules                         - Registered schedules
- POST   /schedules                         - Register a schedule
- PUT    /schedules/{schedule_id}           - Replace a schedule definition
- DELETE /schedules/{schedule_id}           - Unregister a schedule
- POST   /schedules/{schedule_id}/activate  - Activate and register
- POST   /schedules/{schedule_id}/deactivate - Deactivate and deregister
- POST   /schedules/{schedule_id}/run       - Start a Manual batch now
- GET    /schedules/{schedule_id}/status    - NOT_SCHEDULED / SCHEDULED / RUNNING

Error mapping:
- ValidationError -> 422 (nothing is registered)
- ScheduleNotFound -> 404
- TriggerEngineFailure -> 503
- Batch already running -> 409
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException

from testops.core.dependencies import OrchestratorDep
from testops.core.exceptions import ScheduleNotFound, TriggerEngineFailure, ValidationError
from testops.models import ScheduleDefinition, ScheduleStatus, ScheduleStatusResponse
from testops.services.orchestrator import job_key_for


logger = logging.getLogger(__name__)

router = APIRouter()


def _validation_error(e: ValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail={"message": str(e), "errors": e.errors})


@router.get("", response_model=List[ScheduleDefinition])
async def list_schedules(orchestrator: OrchestratorDep) -> List[ScheduleDefinition]:
    return orchestrator.list_schedules()


@router.post("", response_model=ScheduleDefinition, status_code=201)
async def register_schedule(
    schedule: ScheduleDefinition,
    orchestrator: OrchestratorDep,
) -> ScheduleDefinition:
    """Validate and register a schedule; the stored definition is returned."""
    try:
        return await orchestrator.register(schedule)
    except ValidationError as e:
        raise _validation_error(e)
    except TriggerEngineFailure as e:
        logger.error(f"Trigger engine rejected schedule '{schedule.scheduleName}': {e}")
        raise HTTPException(status_code=503, detail=str(e))


@router.put("/{schedule_id}", response_model=ScheduleDefinition)
async def reschedule(
    schedule_id: str,
    schedule: ScheduleDefinition,
    orchestrator: OrchestratorDep,
) -> ScheduleDefinition:
    """Replace a schedule. An inactive definition is stored but not registered."""
    definition = schedule.model_copy(update={'scheduleId': schedule_id})
    try:
        registered = await orchestrator.reschedule(definition)
    except ValidationError as e:
        raise _validation_error(e)
    except TriggerEngineFailure as e:
        raise HTTPException(status_code=503, detail=str(e))
    return registered or definition.model_copy(update={'nextExecution': None})


@router.delete("/{schedule_id}")
async def unregister_schedule(schedule_id: str, orchestrator: OrchestratorDep) -> Dict[str, Any]:
    removed = await orchestrator.unregister(schedule_id)
    return {"scheduleId": schedule_id, "removed": removed}


@router.post("/{schedule_id}/activate", response_model=ScheduleDefinition)
async def activate_schedule(schedule_id: str, orchestrator: OrchestratorDep) -> ScheduleDefinition:
    try:
        return await orchestrator.activate(schedule_id)
    except ScheduleNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise _validation_error(e)
    except TriggerEngineFailure as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/{schedule_id}/deactivate", response_model=ScheduleDefinition)
async def deactivate_schedule(schedule_id: str, orchestrator: OrchestratorDep) -> ScheduleDefinition:
    try:
        return await orchestrator.deactivate(schedule_id)
    except ScheduleNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{schedule_id}/run", status_code=202)
async def run_schedule_now(schedule_id: str, orchestrator: OrchestratorDep) -> Dict[str, Any]:
    """Start a Manual batch in the background; the report appears under /reports."""
    if orchestrator.schedule_status(schedule_id) is ScheduleStatus.RUNNING:
        raise HTTPException(status_code=409, detail=f"Schedule {schedule_id} is already running")
    try:
        orchestrator.run_in_background(schedule_id)
    except ScheduleNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"scheduleId": schedule_id, "jobKey": job_key_for(schedule_id), "accepted": True}


@router.get("/{schedule_id}/status", response_model=ScheduleStatusResponse)
async def schedule_status(schedule_id: str, orchestrator: OrchestratorDep) -> ScheduleStatusResponse:
    return ScheduleStatusResponse(
        scheduleId=schedule_id,
        jobKey=job_key_for(schedule_id),
        status=orchestrator.schedule_status(schedule_id),
    )
