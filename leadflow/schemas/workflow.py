"""Pydantic models for the workflow and event API."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from ..models.workflow import TRIGGER_STAGE_CHANGE
from ..services.trigger_svc import parse_appointment_time


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    trigger_type: Literal["stage_change", "appointment_booked"] = TRIGGER_STAGE_CHANGE
    trigger_stage_id: str | None = None
    graph: dict | None = None
    user_id: str | None = None


class WorkflowUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    trigger_type: Literal["stage_change", "appointment_booked"] | None = None
    trigger_stage_id: str | None = None
    graph: dict | None = None


class PublishRequest(BaseModel):
    is_published: bool = True
    apply_to_existing: bool = False


class TestRunRequest(BaseModel):
    __test__ = False

    lead_id: uuid.UUID


class StageEnteredEvent(BaseModel):
    lead_id: uuid.UUID
    stage_id: str


class AppointmentBookedEvent(BaseModel):
    """Either ``lead_id`` + ``appointment_time`` or ``sender_id`` + date/time strings."""

    appointment_id: str
    lead_id: uuid.UUID | None = None
    appointment_time: datetime | None = None
    sender_id: str | None = None
    appointment_date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: str | None = Field(default=None, pattern=r"^\d{1,2}:\d{2}(:\d{2})?$")

    @field_validator("appointment_date")
    @classmethod
    def _real_date(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                parse_appointment_time(v, "00:00")
            except ValueError as exc:
                raise ValueError(f"not a calendar date: {exc}") from exc
        return v

    @field_validator("start_time")
    @classmethod
    def _real_time(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                parse_appointment_time("2000-01-01", v)
            except ValueError as exc:
                raise ValueError(f"not a time of day: {exc}") from exc
        return v
