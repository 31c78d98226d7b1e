"""Schedule endpoints: creation, queries and admin state changes."""
from typing import Optional

from fastapi import APIRouter, Depends

from api.deps import get_engine, success
from api.schemas import CancelRequest, CompleteRequest, MissedRequest, RescheduleRequest, ScheduleCreate
from core.engine import SchedulingEngine
from models.collection_models import CompletionDetails, ScheduleStatus
from models.serialization import schedule_to_dict

router = APIRouter(prefix="/api/schedules", tags=["schedules"])


@router.post("")
def create_schedule(payload: ScheduleCreate, engine: SchedulingEngine = Depends(get_engine)):
    schedule = engine.schedules.create_schedule(
        payload.bin,
        payload.collector,
        payload.window.to_window(),
        priority=payload.priority,
        recurrence=payload.recurrence,
        recurrence_end_date=payload.recurrence_end_date,
        notes=payload.notes,
        supersede=payload.supersede,
    )
    return success(schedule_to_dict(schedule), status_code=201)


@router.get("")
def list_schedules(bin_id: Optional[str] = None, collector_id: Optional[str] = None,
                   status: Optional[ScheduleStatus] = None,
                   engine: SchedulingEngine = Depends(get_engine)):
    schedules = [schedule_to_dict(s) for s in engine.schedules.list_schedules(bin_id, collector_id, status)]
    return success(schedules, count=len(schedules))


@router.get("/{schedule_id}")
def get_schedule(schedule_id: str, engine: SchedulingEngine = Depends(get_engine)):
    return success(schedule_to_dict(engine.schedules.get_schedule(schedule_id)))


@router.post("/{schedule_id}/reschedule")
def reschedule(schedule_id: str, payload: RescheduleRequest, engine: SchedulingEngine = Depends(get_engine)):
    """Retire the schedule; the response carries its successor."""
    successor = engine.schedules.reschedule(
        schedule_id, payload.window.to_window(), priority=payload.priority, reason=payload.reason
    )
    return success(schedule_to_dict(successor), status_code=201)


@router.post("/{schedule_id}/cancel")
def cancel(schedule_id: str, payload: CancelRequest, engine: SchedulingEngine = Depends(get_engine)):
    return success(schedule_to_dict(engine.schedules.cancel(schedule_id, payload.reason)))


@router.post("/{schedule_id}/complete")
def complete(schedule_id: str, payload: CompleteRequest, engine: SchedulingEngine = Depends(get_engine)):
    details = CompletionDetails(
        completed_at=payload.completed_at or engine.clock(),
        actual_fill_level=payload.actual_fill_level,
        collection_time=payload.collection_time,
    )
    return success(schedule_to_dict(engine.schedules.complete(schedule_id, details)))


@router.post("/{schedule_id}/missed")
def mark_missed(schedule_id: str, payload: MissedRequest, engine: SchedulingEngine = Depends(get_engine)):
    return success(schedule_to_dict(engine.schedules.mark_missed(schedule_id, reason=payload.reason)))
