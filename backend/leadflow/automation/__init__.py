"""Event-triggered automation engine."""

from __future__ import annotations

from dataclasses import dataclass

from flask import Flask, current_app

from ..crm.gateway import CrmGateway
from .actions import ActionExecutor
from .dispatcher import TriggerDispatcher
from .execution_log import ExecutionLogger
from .manual import TestRunner
from .scheduler import ResumeScheduler
from .walker import GraphWalker


@dataclass
class AutomationEngine:
    gateway: CrmGateway
    execution_log: ExecutionLogger
    executor: ActionExecutor
    walker: GraphWalker
    dispatcher: TriggerDispatcher
    scheduler: ResumeScheduler
    test_runner: TestRunner


def init_app(app: Flask, gateway: CrmGateway) -> AutomationEngine:
    """Wire the engine components for ``app`` and bind the gateway's events to dispatch."""

    execution_log = ExecutionLogger(
        lease_seconds=float(app.config.get("RESUME_LEASE_SECONDS", 300))
    )
    executor = ActionExecutor(gateway)
    walker = GraphWalker(
        executor,
        gateway,
        execution_log,
        max_hops=int(app.config.get("AUTOMATION_MAX_HOPS", 50)),
    )
    dispatcher = TriggerDispatcher(
        app,
        walker,
        execution_log,
        gateway,
        max_workers=int(app.config.get("AUTOMATION_DISPATCH_WORKERS", 4)),
    )
    scheduler = ResumeScheduler(
        app,
        walker,
        execution_log,
        poll_interval=float(app.config.get("RESUME_POLL_INTERVAL", 15)),
        batch_size=int(app.config.get("RESUME_BATCH_SIZE", 100)),
    )
    engine = AutomationEngine(
        gateway=gateway,
        execution_log=execution_log,
        executor=executor,
        walker=walker,
        dispatcher=dispatcher,
        scheduler=scheduler,
        test_runner=TestRunner(walker, execution_log, gateway),
    )

    bind = getattr(gateway, "bind_event_sink", None)
    if bind is not None:
        bind(dispatcher.emit)

    app.extensions["automation"] = engine
    return engine


def get_engine(app: Flask | None = None) -> AutomationEngine:
    return (app or current_app).extensions["automation"]


__all__ = ["AutomationEngine", "get_engine", "init_app"]
