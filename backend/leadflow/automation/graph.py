"""Workflow graph model, parsing and save-time validation."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from . import conditions as evaluator
from .conditions import (
    COMBINATORS,
    FIELD_OPERATORS,
    NONE_BRANCH_ID,
    TEMPERATURES,
    VALUE_OPERATORS,
)
from .errors import ValidationError

TRIGGER = "trigger"
CONDITION = "condition"
BRANCH = "branch"
ACTION = "action"

NODE_KINDS = (TRIGGER, CONDITION, BRANCH, ACTION)

# Filter keys each trigger compares against the event payload. Unset keys match anything.
TRIGGER_FILTERS: dict[str, tuple[str, ...]] = {
    "record_created": (),
    "record_updated": (),
    "status_changed": ("fromStatusId", "toStatusId"),
    "temperature_changed": ("fromTemperature", "toTemperature"),
    "tag_added": ("tagId",),
    "tag_removed": ("tagId",),
    "record_assigned": ("userId",),
    "record_unassigned": (),
    "added_to_board": ("boardId", "columnId"),
    "moved_to_column": ("boardId", "columnId"),
    "task_created": (),
    "task_completed": (),
}

CONDITION_SUBTYPES = ("if_else",)

# Config keys each action requires.
ACTION_PARAMS: dict[str, tuple[str, ...]] = {
    "update_status": ("statusId",),
    "update_temperature": ("temperature",),
    "add_tag": ("tagId",),
    "remove_tag": ("tagId",),
    "add_motivation": ("motivationId",),
    "remove_motivation": ("motivationId",),
    "assign_user": ("userId",),
    "unassign_user": (),
    "mark_complete": (),
    "add_to_board": ("boardId", "columnId"),
    "move_to_column": ("boardId", "columnId"),
    "create_task": ("title",),
    "complete_task": (),
    "send_notification": ("userId", "title", "message"),
    "wait": ("duration", "unit"),
}

WAIT_UNITS = {"seconds": 1, "minutes": 60, "hours": 3600, "days": 86400}
TASK_PRIORITIES = ("LOW", "MEDIUM", "HIGH")
ASSIGNMENT_TYPES = ("MANUAL", "ROUND_ROBIN")


@dataclass(frozen=True)
class Condition:
    field: str
    operator: str
    value: Any = None
    combinator: str = "AND"


@dataclass(frozen=True)
class ConditionBranch:
    id: str
    name: str
    conditions: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class TriggerNode:
    kind: ClassVar[str] = TRIGGER

    id: str
    subtype: str
    config: Mapping[str, Any] = field(default_factory=dict)

    def matches(self, event_type: str, payload: Mapping[str, Any] | None) -> bool:
        """Return whether a domain event fires this trigger."""

        if event_type != self.subtype:
            return False
        payload = payload or {}
        for key in TRIGGER_FILTERS.get(self.subtype, ()):
            expected = self.config.get(key)
            if expected in (None, ""):
                continue
            if payload.get(key) != expected:
                return False
        return True


@dataclass(frozen=True)
class ConditionNode:
    kind: ClassVar[str] = CONDITION

    id: str
    subtype: str
    branches: tuple[ConditionBranch, ...] = ()

    def select_branch(self, record: Any) -> str:
        return evaluator.select_branch(self.branches, record)


@dataclass(frozen=True)
class BranchNode:
    kind: ClassVar[str] = BRANCH

    id: str
    name: str = ""


@dataclass(frozen=True)
class ActionNode:
    kind: ClassVar[str] = ACTION

    id: str
    subtype: str
    config: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_wait(self) -> bool:
        return self.subtype == "wait"

    def wait_seconds(self) -> int:
        return int(self.config["duration"]) * WAIT_UNITS[self.config["unit"]]


WorkflowNode = Union[TriggerNode, ConditionNode, BranchNode, ActionNode]


@dataclass(frozen=True)
class WorkflowEdge:
    source: str
    target: str
    branch_id: str | None = None


@dataclass(frozen=True)
class WorkflowGraph:
    nodes: Mapping[str, WorkflowNode]
    edges: tuple[WorkflowEdge, ...] = ()

    @property
    def triggers(self) -> list[TriggerNode]:
        return [node for node in self.nodes.values() if isinstance(node, TriggerNode)]

    @property
    def trigger(self) -> TriggerNode:
        triggers = self.triggers
        if len(triggers) != 1:
            raise ValidationError(
                f"graph must contain exactly one trigger node (found {len(triggers)})"
            )
        return triggers[0]

    def outgoing(self, node_id: str) -> list[WorkflowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def successor(self, node_id: str, branch_id: str | None = None) -> str | None:
        """Return the target of the node's outgoing edge, keyed by branch when given."""

        for edge in self.outgoing(node_id):
            if branch_id is None or edge.branch_id == branch_id:
                return edge.target
        return None


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _parse_condition(raw: Any) -> Condition:
    if not isinstance(raw, Mapping):
        raw = {}
    combinator = raw.get("combinator") or raw.get("logic") or "AND"
    return Condition(
        field=_text(raw.get("field")),
        operator=_text(raw.get("operator")),
        value=raw.get("value"),
        combinator=str(combinator).upper(),
    )


def _parse_branches(config: Mapping[str, Any]) -> tuple[ConditionBranch, ...]:
    branches = []
    for raw in config.get("branches") or ():
        if not isinstance(raw, Mapping):
            raw = {}
        branches.append(
            ConditionBranch(
                id=_text(raw.get("id")),
                name=_text(raw.get("name")),
                conditions=tuple(_parse_condition(item) for item in raw.get("conditions") or ()),
            )
        )
    return tuple(branches)


def _parse_node(raw: Mapping[str, Any], errors: list[str]) -> WorkflowNode | None:
    node_id = _text(raw.get("id"))
    data = raw.get("data") if isinstance(raw.get("data"), Mapping) else {}
    kind = _text(raw.get("kind") or raw.get("type")).lower()
    subtype = _text(raw.get("subtype") or data.get("type"))
    config = raw.get("config")
    if not isinstance(config, Mapping):
        config = data.get("config") if isinstance(data.get("config"), Mapping) else {}

    if not node_id:
        errors.append("every node needs an id")
        return None
    if kind not in NODE_KINDS:
        errors.append(f"node {node_id} has unknown kind {kind or '<missing>'!r}")
        return None

    if kind == TRIGGER:
        return TriggerNode(id=node_id, subtype=subtype, config=dict(config))
    if kind == CONDITION:
        return ConditionNode(id=node_id, subtype=subtype or "if_else", branches=_parse_branches(config))
    if kind == BRANCH:
        return BranchNode(id=node_id, name=_text(config.get("name") or data.get("label")))
    return ActionNode(id=node_id, subtype=subtype, config=dict(config))


def parse_graph(value: Any) -> WorkflowGraph:
    """Build a graph from its JSON text or decoded form.

    UI-only keys (positions, viewport, labels) are dropped. Structural problems that
    prevent building the graph at all raise :class:`ValidationError`.
    """

    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value or "{}")
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"graph is not valid JSON: {exc}") from exc
    if not isinstance(value, Mapping):
        raise ValidationError("graph must be an object with nodes and edges")

    raw_nodes = value.get("nodes") or []
    raw_edges = value.get("edges") or []
    if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
        raise ValidationError("graph nodes and edges must be lists")

    errors: list[str] = []
    nodes: dict[str, WorkflowNode] = {}
    for raw in raw_nodes:
        if not isinstance(raw, Mapping):
            errors.append("every node must be an object")
            continue
        node = _parse_node(raw, errors)
        if node is None:
            continue
        if node.id in nodes:
            errors.append(f"duplicate node id {node.id}")
            continue
        nodes[node.id] = node

    edges = []
    for raw in raw_edges:
        if not isinstance(raw, Mapping):
            errors.append("every edge must be an object")
            continue
        branch_id = raw.get("branchId", raw.get("sourceHandle"))
        edges.append(
            WorkflowEdge(
                source=_text(raw.get("source")),
                target=_text(raw.get("target")),
                branch_id=_text(branch_id) or None,
            )
        )

    if errors:
        raise ValidationError(errors)
    return WorkflowGraph(nodes=nodes, edges=tuple(edges))


def peek_trigger_subtype(value: Any) -> str | None:
    """Best-effort lookup of the trigger subtype of a graph that may not parse."""

    try:
        data = json.loads(value) if isinstance(value, (str, bytes)) else value
    except (TypeError, ValueError):
        return None
    if not isinstance(data, Mapping) or not isinstance(data.get("nodes"), list):
        return None
    for raw in data["nodes"]:
        if not isinstance(raw, Mapping):
            continue
        if _text(raw.get("kind") or raw.get("type")).lower() == TRIGGER:
            node_data = raw.get("data") if isinstance(raw.get("data"), Mapping) else {}
            return _text(raw.get("subtype") or node_data.get("type")) or None
    return None


def _check_condition(node_id: str, branch: ConditionBranch, condition: Condition) -> list[str]:
    where = f"condition node {node_id} branch {branch.id}"
    operators = FIELD_OPERATORS.get(condition.field)
    if operators is None:
        return [f"{where}: unknown field {condition.field!r}"]
    if condition.operator not in operators:
        return [
            f"{where}: operator {condition.operator!r} is not supported for field {condition.field!r}"
        ]

    errors = []
    if condition.combinator not in COMBINATORS:
        errors.append(f"{where}: combinator must be AND or OR")
    if condition.operator in VALUE_OPERATORS:
        if condition.value is None or (isinstance(condition.value, str) and not condition.value.strip()):
            errors.append(f"{where}: operator {condition.operator!r} requires a value")
        elif condition.field == "temperature" and str(condition.value).upper() not in TEMPERATURES:
            errors.append(f"{where}: temperature must be one of {', '.join(TEMPERATURES)}")
    return errors


def _check_action(node: ActionNode) -> list[str]:
    required = ACTION_PARAMS.get(node.subtype)
    if required is None:
        return [f"action node {node.id} has unknown subtype {node.subtype!r}"]

    config = node.config
    errors = [
        f"action node {node.id} ({node.subtype}) requires {key}"
        for key in required
        if config.get(key) in (None, "")
    ]
    if errors:
        return errors

    if node.subtype == "update_temperature" and str(config["temperature"]).upper() not in TEMPERATURES:
        errors.append(f"action node {node.id}: temperature must be one of {', '.join(TEMPERATURES)}")
    elif node.subtype == "wait":
        duration = config["duration"]
        if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
            errors.append(f"action node {node.id}: wait duration must be a positive integer")
        if config["unit"] not in WAIT_UNITS:
            errors.append(f"action node {node.id}: wait unit must be one of {', '.join(WAIT_UNITS)}")
    elif node.subtype == "create_task":
        if config.get("priority") and config["priority"] not in TASK_PRIORITIES:
            errors.append(f"action node {node.id}: priority must be one of {', '.join(TASK_PRIORITIES)}")
        assignment = config.get("assignmentType") or "MANUAL"
        if assignment not in ASSIGNMENT_TYPES:
            errors.append(f"action node {node.id}: unknown assignmentType {assignment!r}")
        elif assignment == "ROUND_ROBIN":
            users = config.get("roundRobinUsers")
            if not isinstance(users, list) or not users:
                errors.append(f"action node {node.id}: round robin assignment requires roundRobinUsers")
        due_days = config.get("dueDaysFromNow")
        if due_days is not None and (isinstance(due_days, bool) or not isinstance(due_days, int) or due_days < 0):
            errors.append(f"action node {node.id}: dueDaysFromNow must be a non-negative integer")
        due_time = config.get("dueTime")
        if due_time not in (None, "") and not _is_clock_time(due_time):
            errors.append(f"action node {node.id}: dueTime must be HH:MM")
        if "skipWeekends" in config and not isinstance(config["skipWeekends"], bool):
            errors.append(f"action node {node.id}: skipWeekends must be true or false")
    return errors


def _is_clock_time(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    hour, sep, minute = value.partition(":")
    if not sep or not hour.isdigit() or len(minute) != 2 or not minute.isdigit():
        return False
    return int(hour) < 24 and int(minute) < 60


def _find_cycle(graph: WorkflowGraph) -> str | None:
    adjacency: dict[str, list[str]] = {node_id: [] for node_id in graph.nodes}
    for edge in graph.edges:
        if edge.source in adjacency and edge.target in adjacency:
            adjacency[edge.source].append(edge.target)

    visiting, done = set(), set()

    def visit(node_id: str) -> str | None:
        visiting.add(node_id)
        for target in adjacency[node_id]:
            if target in visiting:
                return target
            if target not in done:
                found = visit(target)
                if found is not None:
                    return found
        visiting.discard(node_id)
        done.add(node_id)
        return None

    for node_id in adjacency:
        if node_id not in done:
            found = visit(node_id)
            if found is not None:
                return found
    return None


def validate_graph(graph: WorkflowGraph) -> None:
    """Raise :class:`ValidationError` listing every structural violation of the graph."""

    errors: list[str] = []

    triggers = graph.triggers
    if len(triggers) != 1:
        errors.append(f"graph must contain exactly one trigger node (found {len(triggers)})")
    for trigger in triggers:
        if trigger.subtype not in TRIGGER_FILTERS:
            errors.append(f"trigger node {trigger.id} has unknown subtype {trigger.subtype!r}")

    dangling = False
    for edge in graph.edges:
        for end in (edge.source, edge.target):
            if end not in graph.nodes:
                errors.append(f"edge {edge.source} -> {edge.target} references unknown node {end or '<missing>'}")
                dangling = True

    for node in graph.nodes.values():
        outgoing = graph.outgoing(node.id)
        if isinstance(node, ConditionNode):
            errors.extend(_check_condition_node(graph, node, outgoing))
            continue
        if len(outgoing) > 1:
            errors.append(f"{node.kind} node {node.id} has more than one outgoing edge")
        if isinstance(node, ActionNode):
            errors.extend(_check_action(node))

    if not dangling:
        cycle_at = _find_cycle(graph)
        if cycle_at is not None:
            errors.append(f"graph contains a cycle through node {cycle_at}")
        elif len(triggers) == 1:
            reachable = _reachable(graph, triggers[0].id)
            for node_id in graph.nodes:
                if node_id not in reachable:
                    errors.append(f"node {node_id} is not reachable from the trigger")

    if errors:
        raise ValidationError(errors)


def _check_condition_node(
    graph: WorkflowGraph, node: ConditionNode, outgoing: list[WorkflowEdge]
) -> list[str]:
    errors = []
    if node.subtype not in CONDITION_SUBTYPES:
        errors.append(f"condition node {node.id} has unknown subtype {node.subtype!r}")

    declared = []
    for branch in node.branches:
        if not branch.id:
            errors.append(f"condition node {node.id} has a branch without an id")
            continue
        if branch.id == NONE_BRANCH_ID:
            errors.append(f"condition node {node.id}: branch id {NONE_BRANCH_ID!r} is reserved")
            continue
        if branch.id in declared:
            errors.append(f"condition node {node.id} has duplicate branch id {branch.id}")
            continue
        declared.append(branch.id)
        if not branch.conditions:
            errors.append(f"condition node {node.id} branch {branch.id} has no conditions")
        for condition in branch.conditions:
            errors.extend(_check_condition(node.id, branch, condition))

    expected = declared + [NONE_BRANCH_ID]
    seen: dict[str, int] = {}
    for edge in outgoing:
        key = edge.branch_id or "<missing>"
        if key not in expected:
            errors.append(f"condition node {node.id} has an edge for undeclared branch {key}")
            continue
        seen[key] = seen.get(key, 0) + 1
        target = graph.nodes.get(edge.target)
        if target is not None and not isinstance(target, BranchNode):
            errors.append(f"condition node {node.id} branch {key} must lead to a branch node")

    for branch_id in expected:
        count = seen.get(branch_id, 0)
        if count == 0:
            errors.append(f"condition node {node.id} is missing an edge for branch {branch_id}")
        elif count > 1:
            errors.append(f"condition node {node.id} has {count} edges for branch {branch_id}")
    return errors


def _reachable(graph: WorkflowGraph, start: str) -> set[str]:
    seen = {start}
    stack = [start]
    while stack:
        for edge in graph.outgoing(stack.pop()):
            if edge.target not in seen:
                seen.add(edge.target)
                stack.append(edge.target)
    return seen


def load_graph(value: Any) -> WorkflowGraph:
    """Parse and validate a stored or submitted graph."""

    graph = parse_graph(value)
    validate_graph(graph)
    return graph
