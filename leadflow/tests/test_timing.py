"""Tests for wait-node resume times and the execution context bag."""

from __future__ import annotations

from datetime import timedelta

import pytest

from leadflow.engine.context import ExecutionContext
from leadflow.engine.errors import ContextError
from leadflow.engine.graph import WaitNode
from leadflow.engine.timing import compute_resume_time, wait_offset
from leadflow.tests.factories import T0


@pytest.mark.parametrize(
    "amount,unit,expected",
    [
        (5, "minutes", timedelta(minutes=5)),
        (2, "hours", timedelta(hours=2)),
        (3, "days", timedelta(days=3)),
    ],
)
def test_wait_offset_units(amount, unit, expected):
    assert wait_offset(amount, unit) == expected


def test_duration_wait_is_relative_to_now():
    node = WaitNode(id="w1", amount=1, unit="hours")
    assert compute_resume_time(node, ExecutionContext(), T0) == T0 + timedelta(hours=1)


def test_before_appointment_wait_counts_back_from_appointment():
    node = WaitNode(id="w1", mode="before_appointment", amount=1, unit="days")
    ctx = ExecutionContext.build("lead", "psid", appointment_time=T0 + timedelta(hours=36))
    assert compute_resume_time(node, ctx, T0) == T0 + timedelta(hours=12)


def test_before_appointment_wait_may_land_in_the_past():
    node = WaitNode(id="w1", mode="before_appointment", amount=2, unit="days")
    ctx = ExecutionContext.build("lead", "psid", appointment_time=T0 + timedelta(hours=1))
    assert compute_resume_time(node, ctx, T0) < T0


def test_before_appointment_wait_without_appointment_raises():
    node = WaitNode(id="w1", mode="before_appointment", amount=1, unit="hours")
    with pytest.raises(ContextError) as exc_info:
        compute_resume_time(node, ExecutionContext.build("lead", "psid"), T0)
    assert exc_info.value.node_id == "w1"


def test_context_times_survive_json_round_trip():
    ctx = ExecutionContext.build("lead", "psid", appointment_time=T0, started_at=T0)
    restored = ExecutionContext(ctx.to_dict())
    assert restored.appointment_time == T0
    assert restored.last_checkpoint_at == T0
    assert isinstance(ctx.to_dict()["appointment_time"], str)


def test_context_template_substitution():
    ctx = ExecutionContext.build("lead", "psid", lead={"name": "Ada"})
    assert ctx.resolve_template("Hi {{ lead.name }}!") == "Hi Ada!"
    assert ctx.resolve_template("Hi {{lead.nickname}}") == "Hi {{lead.nickname}}"
