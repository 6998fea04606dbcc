"""Manual single-record runs used to try out automations from the builder."""

from __future__ import annotations

from ..crm.gateway import CrmGateway
from ..extensions import db
from ..models.automation import Automation
from ..models.runs import ExecutionRun
from .errors import DispatchIsolationError
from .events import DomainEvent
from .execution_log import ExecutionLogger
from .graph import load_graph
from .walker import GraphWalker

MANUAL_TEST = "manual_test"


class TestRunner:
    """Runs an automation against one record, active or not, on the caller's thread."""

    __test__ = False

    def __init__(
        self, walker: GraphWalker, execution_log: ExecutionLogger, gateway: CrmGateway
    ) -> None:
        self.walker = walker
        self.execution_log = execution_log
        self.gateway = gateway

    def run(self, automation: Automation, record_id: str) -> ExecutionRun:
        """Validate the graph and walk it for the record.

        Raises ``ValidationError`` for an invalid graph and ``EntityNotFoundError`` for
        an unknown record; failures during the walk are recorded on the returned run.
        """

        graph = load_graph(automation.graph_json)
        record = self.gateway.get_record(record_id)
        event = DomainEvent(
            type=graph.trigger.subtype,
            record_id=record.id,
            actor_id=MANUAL_TEST,
            tenant_id=automation.tenant_id,
        )
        try:
            return self.walker.start(automation, graph, event, triggered_by=MANUAL_TEST)
        except DispatchIsolationError as exc:
            return self.execution_log.fail_by_id(exc.run_id, str(exc))
