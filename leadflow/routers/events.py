"""Inbound trigger events from the pipeline and appointment subsystems."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.workflow import AppointmentBookedEvent, StageEnteredEvent
from ..security import verify_event_request
from ..services import trigger_svc

router = APIRouter(prefix="/events", tags=["events"])


async def _read_event(request: Request, model):
    raw_body = await request.body()
    verify_event_request(request, raw_body)
    try:
        payload = json.loads(raw_body.decode("utf-8")) if raw_body else {}
    except json.JSONDecodeError:
        raise HTTPException(status_code=422, detail="Invalid JSON body")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422, detail=exc.errors(include_url=False, include_context=False)
        ) from exc


@router.post("/stage-entered")
async def stage_entered(request: Request, db: AsyncSession = Depends(get_db)):
    """A lead moved into a pipeline stage."""
    event = await _read_event(request, StageEnteredEvent)
    results = await trigger_svc.notify_stage_entered(db, event.stage_id, event.lead_id)
    return {"status": "accepted", "started": len(results), "executions": results}


@router.post("/appointment-booked")
async def appointment_booked(request: Request, db: AsyncSession = Depends(get_db)):
    """An appointment was created for a lead."""
    event = await _read_event(request, AppointmentBookedEvent)

    if event.lead_id and event.appointment_time:
        results = await trigger_svc.notify_appointment_booked(
            db, event.lead_id, event.appointment_id, event.appointment_time
        )
    elif event.sender_id and event.appointment_date and event.start_time:
        results = await trigger_svc.notify_appointment_booked_by_sender(
            db, event.sender_id, event.appointment_id, event.appointment_date, event.start_time
        )
    else:
        raise HTTPException(
            status_code=422,
            detail="Provide lead_id and appointment_time, or sender_id, appointment_date and start_time",
        )
    return {"status": "accepted", "started": len(results), "executions": results}
