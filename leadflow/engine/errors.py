"""Engine error types."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for errors that end a single execution."""

    def __init__(self, message: str, node_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id

    def to_dict(self) -> dict:
        return {"node_id": self.node_id, "message": self.message}


class StructuralError(EngineError):
    """The graph is malformed (missing successor, orphan branch, revisited trigger)."""


class ContextError(EngineError):
    """A node needs execution context that is not there."""


class GraphValidationError(Exception):
    """Raised when a workflow cannot be published because its graph is invalid."""

    def __init__(self, errors: list[StructuralError]):
        super().__init__("; ".join(e.message for e in errors))
        self.errors = errors


class StaleExecutionError(EngineError):
    """The execution row left the expected status (cancelled or claimed elsewhere)."""
