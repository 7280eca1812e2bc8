"""Execution graph: typed nodes, edges, structural validation.

The editor stores an authoring model (React Flow style)::

    {
        "nodes": [
            {"id": "n1", "type": "custom", "position": {"x": 0, "y": 0},
             "data": {"type": "message", "label": "Greet", "messageText": "Hi"}}
        ],
        "edges": [{"id": "e1", "source": "n0", "target": "n1", "sourceHandle": "true"}]
    }

``parse_graph`` reduces that to the execution graph: id, logical type, the
payload fields that type uses, and the source/target/branch relation. Canvas
positions and labels never reach the engine.
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..models.workflow import TRIGGER_STAGE_CHANGE, TRIGGER_TYPES
from .errors import StructuralError

WAIT_UNITS = ("minutes", "hours", "days")


class _NodeBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    label: str | None = None


class TriggerNode(_NodeBase):
    type: Literal["trigger"] = "trigger"
    trigger_type: str | None = Field(default=None, alias="triggerType")
    trigger_stage_id: str | None = Field(default=None, alias="triggerStageId")
    # Publish-time backfill only; the walker never looks at it.
    apply_to_existing: bool = Field(default=False, alias="applyToExisting")


class MessageNode(_NodeBase):
    type: Literal["message"] = "message"
    mode: Literal["custom", "ai"] = Field(default="custom", alias="messageMode")
    text: str = Field(default="", alias="messageText")
    attachment_url: str | None = Field(default=None, alias="imageUrl")
    attachment_type: Literal["image", "video", "audio", "file"] = Field(
        default="image", alias="attachmentType"
    )

    @property
    def content(self) -> str:
        """Literal text for custom mode, generation instruction for ai mode."""
        return self.text or self.label or ""


class WaitNode(_NodeBase):
    type: Literal["wait"] = "wait"
    mode: Literal["duration", "before_appointment"] = Field(default="duration", alias="waitMode")
    amount: int = Field(default=5, alias="duration")
    unit: Literal["minutes", "hours", "days"] = "minutes"


class SmartConditionNode(_NodeBase):
    type: Literal["smart_condition"] = "smart_condition"
    kind: Literal["has_replied", "ai_rule"] = Field(default="has_replied", alias="conditionType")
    rule: str | None = Field(default=None, alias="conditionRule")
    description: str | None = None

    @property
    def criteria(self) -> str:
        return (self.rule or self.description or "").strip()


class StopBotNode(_NodeBase):
    type: Literal["stop_bot"] = "stop_bot"
    reason: str | None = None


Node = Annotated[
    Union[TriggerNode, MessageNode, WaitNode, SmartConditionNode, StopBotNode],
    Field(discriminator="type"),
]

_node_adapter: TypeAdapter[Node] = TypeAdapter(Node)


class Edge(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    branch: bool | None = None  # None = unconditional


def _parse_branch(raw: dict) -> bool | None:
    handle = raw.get("branch", raw.get("sourceHandle"))
    if handle is True or handle == "true":
        return True
    if handle is False or handle == "false":
        return False
    return None


def _node_payload(raw: Any) -> dict:
    if not isinstance(raw, dict):
        raise StructuralError(f"Node entry is not an object: {raw!r}")
    data = raw.get("data") or {}
    if not isinstance(data, dict):
        raise StructuralError(f"Node {raw.get('id')!r} data is not an object", node_id=raw.get("id"))
    payload = {k: v for k, v in data.items() if k != "id"}
    payload["id"] = raw.get("id")
    payload["type"] = data.get("type") or raw.get("type")
    return payload


def parse_graph(raw: dict | None) -> ExecutionGraph:
    """Build the execution graph from a stored authoring graph.

    Raises ``StructuralError`` for entries that cannot be typed.
    """
    raw = raw or {}
    if not isinstance(raw, dict):
        raise StructuralError("Graph must be an object with nodes and edges")
    for key in ("nodes", "edges"):
        if not isinstance(raw.get(key) or [], list):
            raise StructuralError(f"Graph {key} must be a list")
    nodes: list = []
    seen: set[str] = set()
    for entry in raw.get("nodes") or []:
        payload = _node_payload(entry)
        try:
            node = _node_adapter.validate_python(payload)
        except ValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(p) for p in first.get("loc", ()))
            raise StructuralError(
                f"Invalid node {payload.get('id')!r}: {where} {first.get('msg')}".strip(),
                node_id=payload.get("id"),
            ) from exc
        if node.id in seen:
            raise StructuralError(f"Duplicate node id {node.id!r}", node_id=node.id)
        seen.add(node.id)
        nodes.append(node)

    edges: list[Edge] = []
    for entry in raw.get("edges") or []:
        if not isinstance(entry, dict) or not entry.get("source") or not entry.get("target"):
            raise StructuralError(f"Edge entry is missing source/target: {entry!r}")
        edges.append(
            Edge(source=str(entry["source"]), target=str(entry["target"]), branch=_parse_branch(entry))
        )
    return ExecutionGraph(nodes, edges)


class ExecutionGraph:
    """Logical node/edge relation the walker traverses."""

    def __init__(self, nodes: list, edges: list[Edge]):
        self.nodes: dict[str, Any] = {node.id: node for node in nodes}
        self.edges = list(edges)
        self._outgoing: dict[str, list[Edge]] = defaultdict(list)
        self._incoming: dict[str, list[Edge]] = defaultdict(list)
        for edge in self.edges:
            self._outgoing[edge.source].append(edge)
            self._incoming[edge.target].append(edge)

    def node(self, node_id: str | None):
        return self.nodes.get(node_id) if node_id else None

    def outgoing(self, node_id: str) -> list[Edge]:
        return list(self._outgoing.get(node_id, ()))

    def incoming(self, node_id: str) -> list[Edge]:
        return list(self._incoming.get(node_id, ()))

    def triggers(self) -> list[TriggerNode]:
        return [n for n in self.nodes.values() if isinstance(n, TriggerNode)]

    def entry_node(self) -> TriggerNode:
        """The single trigger node."""
        triggers = self.triggers()
        if len(triggers) != 1:
            raise StructuralError(f"Expected exactly one trigger node, found {len(triggers)}")
        return triggers[0]

    def _target(self, edge: Edge):
        target = self.nodes.get(edge.target)
        if target is None:
            raise StructuralError(
                f"Edge from {edge.source!r} points at missing node {edge.target!r}",
                node_id=edge.source,
            )
        return target

    def successor(self, node_id: str):
        """Unconditional successor of ``node_id``, or None at the end of a path."""
        unconditional = [e for e in self.outgoing(node_id) if e.branch is None]
        if len(unconditional) > 1:
            raise StructuralError(
                f"Node {node_id!r} has {len(unconditional)} unconditional edges", node_id=node_id
            )
        if not unconditional:
            return None
        return self._target(unconditional[0])

    def successor_for_branch(self, node_id: str, outcome: bool):
        """Successor for a resolved condition; a missing branch is fatal."""
        edges = self.outgoing(node_id)
        for edge in edges:
            if edge.branch is outcome:
                return self._target(edge)
        defaults = [e for e in edges if e.branch is None]
        if len(defaults) == 1:
            return self._target(defaults[0])
        label = "true" if outcome else "false"
        raise StructuralError(f"Condition {node_id!r} has no {label} branch", node_id=node_id)

    def next_node(self, current_node_id: str | None, last_branch: bool | None = None):
        """Node to process after ``current_node_id`` (the last completed node)."""
        if current_node_id is None:
            return self.successor(self.entry_node().id)
        current = self.nodes.get(current_node_id)
        if current is None:
            raise StructuralError(
                f"Resume node {current_node_id!r} no longer exists", node_id=current_node_id
            )
        if isinstance(current, SmartConditionNode):
            if last_branch is None:
                raise StructuralError(
                    f"No recorded outcome for condition {current_node_id!r}", node_id=current_node_id
                )
            return self.successor_for_branch(current_node_id, last_branch)
        return self.successor(current_node_id)


def validate_graph(graph: ExecutionGraph) -> list[StructuralError]:
    """Check the structural invariants of an execution graph."""
    errors: list[StructuralError] = []

    triggers = graph.triggers()
    if len(triggers) != 1:
        errors.append(StructuralError(f"Expected exactly one trigger node, found {len(triggers)}"))

    for edge in graph.edges:
        for end in (edge.source, edge.target):
            if end not in graph.nodes:
                errors.append(
                    StructuralError(f"Edge references missing node {end!r}", node_id=edge.source)
                )

    for node in graph.nodes.values():
        out = graph.outgoing(node.id)
        unconditional = [e for e in out if e.branch is None]
        if isinstance(node, TriggerNode):
            if graph.incoming(node.id):
                errors.append(StructuralError("Trigger node has incoming edges", node_id=node.id))
        elif not graph.incoming(node.id):
            errors.append(StructuralError(f"Node {node.id!r} has no incoming edge", node_id=node.id))

        if isinstance(node, SmartConditionNode):
            labels = [e.branch for e in out if e.branch is not None]
            if len(out) > 2:
                errors.append(
                    StructuralError(f"Condition {node.id!r} has more than two edges", node_id=node.id)
                )
            if len(labels) != len(set(labels)):
                errors.append(
                    StructuralError(f"Condition {node.id!r} repeats a branch label", node_id=node.id)
                )
            if len(unconditional) > 1:
                errors.append(
                    StructuralError(f"Condition {node.id!r} has several default edges", node_id=node.id)
                )
        else:
            if len(unconditional) != len(out):
                errors.append(
                    StructuralError(f"Node {node.id!r} has a branch label but is not a condition", node_id=node.id)
                )
            if len(unconditional) > 1:
                errors.append(
                    StructuralError(f"Node {node.id!r} has more than one outgoing edge", node_id=node.id)
                )

    if len(triggers) == 1:
        reachable = _reachable_from(graph, triggers[0].id)
        for node_id in graph.nodes:
            if node_id not in reachable:
                errors.append(
                    StructuralError(f"Node {node_id!r} is unreachable from the trigger", node_id=node_id)
                )
    return errors


def _reachable_from(graph: ExecutionGraph, start: str) -> set[str]:
    seen = {start}
    queue = deque([start])
    while queue:
        for edge in graph.outgoing(queue.popleft()):
            if edge.target in graph.nodes and edge.target not in seen:
                seen.add(edge.target)
                queue.append(edge.target)
    return seen


def validate_workflow(workflow) -> list[StructuralError]:
    """Graph invariants plus trigger configuration of a workflow row."""
    errors: list[StructuralError] = []
    if workflow.trigger_type not in TRIGGER_TYPES:
        errors.append(StructuralError(f"Unknown trigger type {workflow.trigger_type!r}"))
    elif workflow.trigger_type == TRIGGER_STAGE_CHANGE and not workflow.trigger_stage_id:
        errors.append(StructuralError("stage_change workflows need a trigger_stage_id"))
    elif workflow.trigger_type != TRIGGER_STAGE_CHANGE and workflow.trigger_stage_id:
        errors.append(StructuralError(f"{workflow.trigger_type} workflows must not set a trigger_stage_id"))

    try:
        graph = parse_graph(workflow.graph)
    except StructuralError as exc:
        return errors + [exc]
    return errors + validate_graph(graph)


def entry_node(workflow) -> TriggerNode:
    return parse_graph(workflow.graph).entry_node()
