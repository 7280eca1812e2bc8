"""Execution context: the JSON bag persisted with each execution."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any


def _parse_time(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ExecutionContext:
    """Holds the runtime state one execution carries between invocations.

    Provides variable substitution using {{variable}} syntax. Timestamps are
    stored as ISO strings so the bag survives a JSON column round trip.
    """

    def __init__(self, data: dict | None = None):
        self._data: dict[str, Any] = dict(data or {})

    @classmethod
    def build(
        cls,
        lead_id: str,
        sender_id: str,
        *,
        user_id: str | None = None,
        appointment_id: str | None = None,
        appointment_time: datetime | None = None,
        lead: dict | None = None,
        started_at: datetime | None = None,
    ) -> ExecutionContext:
        ctx = cls({"lead_id": str(lead_id), "sender_id": sender_id})
        if user_id:
            ctx.set("user_id", user_id)
        if appointment_id:
            ctx.set("appointment_id", str(appointment_id))
        if appointment_time is not None:
            ctx.set_time("appointment_time", appointment_time)
        if lead:
            ctx.set("lead", dict(lead))
        if started_at is not None:
            ctx.set_time("last_checkpoint_at", started_at)
        return ctx

    @property
    def lead_id(self) -> str | None:
        return self._data.get("lead_id")

    @property
    def sender_id(self) -> str | None:
        return self._data.get("sender_id")

    @property
    def appointment_time(self) -> datetime | None:
        return self.get_time("appointment_time")

    @property
    def last_checkpoint_at(self) -> datetime | None:
        """When the execution last suspended (or was created, before any wait)."""
        return self.get_time("last_checkpoint_at")

    @property
    def last_branch(self) -> bool | None:
        return self._data.get("last_branch")

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def set_time(self, key: str, value: datetime) -> None:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        self._data[key] = value.astimezone(timezone.utc).isoformat()

    def get_time(self, key: str) -> datetime | None:
        return _parse_time(self._data.get(key))

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dotted key path (e.g. 'lead.name')."""
        parts = key.split(".")
        current = self._data
        for part in parts:
            if isinstance(current, dict):
                current = current.get(part)
            else:
                return default
            if current is None:
                return default
        return current

    def resolve_template(self, text: str) -> str:
        """Replace {{variable}} placeholders with context values."""
        def replacer(match):
            key = match.group(1).strip()
            value = self.get(key)
            return str(value) if value is not None else match.group(0)

        return re.sub(r"\{\{(.+?)\}\}", replacer, text)

    def to_dict(self) -> dict:
        return dict(self._data)
