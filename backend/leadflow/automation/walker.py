"""Sequential traversal of one automation graph for one record."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

from flask import current_app

from ..crm.gateway import CrmGateway, EntityNotFoundError
from ..extensions import db
from ..models.automation import Automation
from ..models.runs import ExecutionRun
from ..utils.clock import utcnow
from .actions import ActionContext, ActionExecutor
from .context import reset_hops, set_hops
from .errors import (
    AutomationError,
    DispatchIsolationError,
    GraphRuntimeError,
    LoopGuardError,
    RuntimeActionError,
)
from .events import DomainEvent
from .execution_log import ExecutionLogger
from .graph import ActionNode, BranchNode, ConditionNode, WorkflowGraph, load_graph


class GraphWalker:
    """Runs an automation graph node by node until it completes, suspends or fails."""

    def __init__(
        self,
        executor: ActionExecutor,
        gateway: CrmGateway,
        execution_log: ExecutionLogger,
        max_hops: int = 50,
    ) -> None:
        self.executor = executor
        self.gateway = gateway
        self.execution_log = execution_log
        self.max_hops = max_hops

    def start(
        self,
        automation: Automation,
        graph: WorkflowGraph,
        event: DomainEvent,
        triggered_by: str,
    ) -> ExecutionRun:
        """Create a run for the event and walk from the trigger's successor."""

        run = self.execution_log.start_run(
            automation.id, event.record_id, triggered_by, hops=event.hops
        )
        current_app.logger.info(
            "automation %s run %s started for record %s (%s)",
            automation.id,
            run.id,
            event.record_id,
            triggered_by,
        )
        with self._guarded(run, event.hops):
            trigger = graph.trigger
            self.execution_log.record_step(run, trigger, "matched", {"event": event.type})
            self._walk(run, automation, graph, graph.successor(trigger.id), event.hops, event)
        return run

    def resume(self, run: ExecutionRun, automation: Automation) -> ExecutionRun:
        """Continue a claimed run at its stored continuation node using the current graph."""

        state = _load_resume_state(run)
        hops = state["hops"] if state else run.hops or 0
        with self._guarded(run, hops):
            if state is None:
                raise GraphRuntimeError(f"resume state of run {run.id} is missing or unreadable")
            graph = load_graph(automation.graph_json)
            next_node_id = state.get("nextNodeId")
            if next_node_id not in graph.nodes:
                raise GraphRuntimeError(
                    f"continuation node {next_node_id} no longer exists in the graph"
                )
            event = DomainEvent.from_dict(state.get("event") or {})
            current_app.logger.info("automation %s run %s resumed at %s", automation.id, run.id, next_node_id)
            self._walk(run, automation, graph, next_node_id, hops, event)
        return run

    @contextmanager
    def _guarded(self, run: ExecutionRun, hops: int) -> Iterator[None]:
        token = set_hops(hops)
        try:
            yield
        except AutomationError as exc:
            db.session.rollback()
            current_app.logger.warning("automation run %s failed: %s", run.id, exc)
            self.execution_log.fail(run, str(exc), hops=getattr(exc, "hops", None))
        except Exception as exc:
            raise DispatchIsolationError(run.id, exc) from exc
        finally:
            reset_hops(token)

    def _walk(
        self,
        run: ExecutionRun,
        automation: Automation,
        graph: WorkflowGraph,
        node_id: str | None,
        hops: int,
        event: DomainEvent,
    ) -> None:
        context = ActionContext(
            automation_id=automation.id,
            run_id=run.id,
            record_id=run.record_id,
            automation_name=automation.name,
        )

        while node_id is not None:
            node = graph.nodes.get(node_id)
            if node is None:
                raise GraphRuntimeError(f"node {node_id} does not exist")

            hops += 1
            set_hops(hops)
            if hops > self.max_hops:
                raise LoopGuardError(hops, self.max_hops)

            if isinstance(node, ActionNode):
                next_id = graph.successor(node.id)
                if node.is_wait:
                    if next_id is None:
                        self.execution_log.record_step(run, node, "skipped", hops=hops)
                        break
                    resume_at = utcnow() + timedelta(seconds=node.wait_seconds())
                    self.execution_log.record_step(
                        run, node, "waiting", {"resumeAt": resume_at.isoformat() + "Z"}, hops=hops
                    )
                    self.execution_log.suspend(
                        run,
                        resume_at,
                        {
                            "nextNodeId": next_id,
                            "recordId": run.record_id,
                            "hops": hops,
                            "event": event.to_dict(),
                        },
                    )
                    current_app.logger.info(
                        "automation %s run %s suspended until %s", automation.id, run.id, resume_at
                    )
                    return
                detail = self.executor.execute(node, context)
                self.execution_log.record_step(run, node, "completed", detail, hops=hops)
                node_id = next_id

            elif isinstance(node, ConditionNode):
                try:
                    record = self.gateway.get_record(run.record_id)
                except EntityNotFoundError as exc:
                    raise RuntimeActionError(node.id, node.subtype, str(exc)) from exc
                branch_id = node.select_branch(record)
                target = graph.successor(node.id, branch_id)
                if target is None:
                    raise GraphRuntimeError(f"condition {node.id} has no edge for branch {branch_id}")
                self.execution_log.record_step(run, node, "evaluated", {"branchId": branch_id}, hops=hops)
                node_id = target

            elif isinstance(node, BranchNode):
                self.execution_log.record_step(run, node, "passed", hops=hops)
                node_id = graph.successor(node.id)

            else:
                raise GraphRuntimeError(f"trigger node {node.id} reached during a run")

        self.execution_log.complete(run)
        current_app.logger.info("automation %s run %s completed", automation.id, run.id)


def _load_resume_state(run: ExecutionRun) -> dict | None:
    try:
        state = json.loads(run.resume_state_json or "")
    except ValueError:
        return None
    if not isinstance(state, dict) or not state.get("nextNodeId"):
        return None
    hops = state.get("hops") or 0
    if isinstance(hops, bool) or not isinstance(hops, int):
        return None
    return {**state, "hops": hops}
