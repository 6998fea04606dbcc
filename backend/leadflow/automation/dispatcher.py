"""Matches domain events to active automations and runs them off the caller's thread."""

from __future__ import annotations

import threading
import time
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from flask import Flask

from ..crm.gateway import CrmGateway, EntityNotFoundError
from ..extensions import db
from ..models.automation import Automation
from .context import get_hops
from .errors import DispatchIsolationError, ValidationError
from .events import DomainEvent
from .execution_log import ExecutionLogger
from .graph import load_graph, parse_graph, peek_trigger_subtype
from .walker import GraphWalker


class TriggerDispatcher:
    """Fans a domain event out to one independent run per matching automation."""

    def __init__(
        self,
        app: Flask,
        walker: GraphWalker,
        execution_log: ExecutionLogger,
        gateway: CrmGateway,
        max_workers: int = 4,
    ) -> None:
        self.app = app
        self.walker = walker
        self.execution_log = execution_log
        self.gateway = gateway
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="automation-dispatch"
        )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def emit(
        self,
        event_type: str,
        record_id: str,
        payload: Mapping[str, Any] | None = None,
        actor_id: str | None = None,
        tenant_id: str | None = None,
    ) -> list[int]:
        """Raise a domain event; returns the ids of the automations it was dispatched to.

        This is the CRM's event sink, so it never raises: a write that already happened
        must not fail because automations could not be matched. Events raised while a
        run is executing inherit that run's hop count.
        """

        event = DomainEvent(
            type=event_type,
            record_id=str(record_id),
            payload=dict(payload or {}),
            actor_id=actor_id,
            tenant_id=tenant_id,
            hops=get_hops(),
        )
        try:
            return self.dispatch(event)
        except Exception:
            self.app.logger.exception(
                "event %s for record %s could not be dispatched", event_type, record_id
            )
            return []

    def dispatch(self, event: DomainEvent) -> list[int]:
        with self.app.app_context():
            matched = self.match(event)
        for automation_id in matched:
            self._submit(automation_id, event)
        return matched

    def match(self, event: DomainEvent) -> list[int]:
        """Return ids of the tenant's active automations whose trigger fires for the event.

        Automations whose stored graph no longer parses are included when their trigger
        subtype names the event, so the broken graph is reported as a failed run.
        """

        tenant_id = event.tenant_id or self._resolve_tenant(event.record_id)
        automations = (
            Automation.query.filter(
                Automation.tenant_id == tenant_id, Automation.is_active.is_(True)
            )
            .order_by(Automation.id.asc())
            .all()
        )

        matched = []
        for automation in automations:
            try:
                trigger = parse_graph(automation.graph_json).trigger
            except ValidationError:
                if peek_trigger_subtype(automation.graph_json) == event.type:
                    matched.append(automation.id)
                continue
            if trigger.matches(event.type, event.payload):
                matched.append(automation.id)
        return matched

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for every queued run, including runs queued by running ones."""

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                pending = list(self._pending)
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait(pending, timeout=remaining)

    def shutdown(self, wait_for_runs: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_runs)

    def _submit(self, automation_id: int, event: DomainEvent) -> Future:
        future = self._executor.submit(self._run_isolated, automation_id, event)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _resolve_tenant(self, record_id: str) -> str:
        try:
            return self.gateway.get_record(record_id).tenant_id
        except EntityNotFoundError:
            return self.app.config.get("DEFAULT_TENANT_ID", "default")

    def _run_isolated(self, automation_id: int, event: DomainEvent) -> int | None:
        with self.app.app_context():
            try:
                automation = db.session.get(Automation, automation_id)
                if automation is None or not automation.is_active:
                    return None
                try:
                    graph = load_graph(automation.graph_json)
                except ValidationError as exc:
                    run = self.execution_log.start_run(
                        automation.id, event.record_id, event.type, hops=event.hops
                    )
                    self.execution_log.fail(run, f"invalid workflow graph: {exc}")
                    self.app.logger.warning(
                        "automation %s has an invalid graph: %s", automation_id, exc
                    )
                    return run.id
                return self.walker.start(automation, graph, event, triggered_by=event.type).id
            except DispatchIsolationError as exc:
                self.app.logger.exception(
                    "automation %s run %s crashed on event %s", automation_id, exc.run_id, event.type
                )
                self.execution_log.fail_by_id(exc.run_id, str(exc))
                return exc.run_id
            except Exception:
                self.app.logger.exception(
                    "automation %s could not be dispatched for event %s", automation_id, event.type
                )
                db.session.rollback()
                return None
