"""Workflow walker: advances one execution through its graph."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.execution import STATUS_PENDING, STATUS_RUNNING, WorkflowExecution
from ..models.lead import Lead
from ..models.workflow import Workflow
from ..services.collaborators import EngineServices, default_services
from .actions import ActionDispatcher
from .context import ExecutionContext
from .errors import ContextError, StaleExecutionError, StructuralError
from .evaluator import ConditionEvaluator
from .graph import (
    ExecutionGraph,
    MessageNode,
    SmartConditionNode,
    StopBotNode,
    TriggerNode,
    WaitNode,
    parse_graph,
    validate_graph,
)
from .store import ExecutionStore, utcnow
from .timing import compute_resume_time

logger = logging.getLogger(__name__)


class WorkflowRunner:
    """Executes a workflow for one lead by traversing its node graph.

    A walk processes message, condition and stop nodes back to back and
    returns at the first wait (suspended), stop (stopped), path end
    (completed) or error (failed). Each node is recorded with
    ``advance_to`` before its successor is looked at.
    """

    def __init__(self, db: AsyncSession, services: EngineServices | None = None):
        self.db = db
        self.services = services or default_services
        self.store = ExecutionStore(db)
        self.evaluator = ConditionEvaluator(db, self.services)
        self.dispatcher = ActionDispatcher(db, self.services)

    async def start(
        self,
        workflow: Workflow,
        lead: Lead,
        *,
        appointment_id: str | None = None,
        appointment_time: datetime | None = None,
        now: datetime | None = None,
    ) -> WorkflowExecution:
        """Create an execution for ``lead`` and walk it right away."""
        now = now or utcnow()
        ctx = ExecutionContext.build(
            lead.id,
            lead.sender_id,
            user_id=workflow.user_id or lead.user_id,
            appointment_id=appointment_id,
            appointment_time=appointment_time,
            lead={"id": str(lead.id), "name": lead.name, "sender_id": lead.sender_id},
            started_at=now,
        )
        execution = await self.store.create(
            workflow, lead.id, lead.sender_id, ctx, appointment_id=appointment_id
        )
        return await self.walk(execution, workflow, now=now)

    async def walk(
        self,
        execution: WorkflowExecution,
        workflow: Workflow,
        now: datetime | None = None,
    ) -> WorkflowExecution:
        """Advance ``execution`` until it suspends or terminates.

        Pending executions are moved to running here; waiting ones must have
        been claimed by the scheduler first.
        """
        now = now or utcnow()
        if execution.status == STATUS_PENDING:
            try:
                await self.store.start(execution)
            except StaleExecutionError:
                logger.info("Execution %s was picked up elsewhere", execution.id)
                return execution
        elif execution.status != STATUS_RUNNING:
            logger.warning(
                "Refusing to walk execution %s in status %s", execution.id, execution.status
            )
            return execution

        ctx = ExecutionContext(execution.context)
        try:
            graph = parse_graph(workflow.graph)
            problems = validate_graph(graph)
            if problems:
                raise problems[0]
            await self._advance(execution, graph, ctx, now)
        except StaleExecutionError as exc:
            logger.warning("Execution %s changed underneath the walk: %s", execution.id, exc)
        except (StructuralError, ContextError) as exc:
            logger.error(
                "Execution %s failed at node %s: %s", execution.id, exc.node_id, exc.message
            )
            await self.store.fail(execution, exc.message, node_id=exc.node_id, now=now)
        except Exception as exc:
            logger.exception("Execution %s crashed", execution.id)
            await self.db.rollback()
            await self.db.refresh(execution)
            await self.store.fail(execution, f"Unexpected error: {exc}", now=now)
        return execution

    async def _advance(
        self,
        execution: WorkflowExecution,
        graph: ExecutionGraph,
        ctx: ExecutionContext,
        now: datetime,
    ) -> None:
        node = graph.next_node(execution.current_node_id, ctx.last_branch)
        visited: set[str] = set()

        while True:
            if node is None:
                await self.store.complete(execution, now=now)
                return
            if node.id in visited:
                raise StructuralError(
                    f"Node {node.id!r} revisited without an intervening wait", node_id=node.id
                )
            visited.add(node.id)
            logger.debug("Execution %s processing %s node %s", execution.id, node.type, node.id)

            if isinstance(node, MessageNode):
                result = await self.dispatcher.send_message(node, execution.lead_id, ctx)
                if not result["delivered"]:
                    await self.store.record_event(
                        execution,
                        "warn",
                        "message.delivery_failed",
                        f"Delivery failed for {', '.join(result['failures'])}",
                        node_id=node.id,
                    )
                await self.store.advance_to(execution, node.id, ctx)
                node = graph.successor(node.id)

            elif isinstance(node, StopBotNode):
                await self.dispatcher.stop_bot(node, execution.lead_id)
                await self.store.advance_to(execution, node.id, ctx)
                await self.store.stop(execution, reason=node.reason, now=now)
                return

            elif isinstance(node, WaitNode):
                resume_at = compute_resume_time(node, ctx, now)
                await self.store.advance_to(execution, node.id, ctx)
                await self.store.suspend_until(execution, resume_at, ctx, now=now)
                return

            elif isinstance(node, SmartConditionNode):
                outcome = await self.evaluator.evaluate(node, execution.lead_id, ctx)
                await self.store.advance_to(execution, node.id, ctx, branch=outcome)
                node = graph.successor_for_branch(node.id, outcome)

            elif isinstance(node, TriggerNode):
                raise StructuralError("Trigger node reached mid-execution", node_id=node.id)

            else:  # pragma: no cover - the node union is closed
                raise StructuralError(f"Unsupported node type {node.type!r}", node_id=node.id)
