"""Action node handlers applied against the CRM gateway."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from ..crm.gateway import CrmGateway
from ..extensions import db
from ..models.automation import RoundRobinCursor
from ..utils.clock import isoformat, utcnow
from .errors import GraphRuntimeError, RuntimeActionError
from .graph import ActionNode

MAX_CURSOR_ATTEMPTS = 50
CURSOR_RETRY_DELAY = 0.01

ACTIVITY_DESCRIPTIONS = {
    "update_status": 'Status changed to "{statusId}"',
    "update_temperature": 'Temperature changed to "{temperature}"',
    "add_tag": 'Tag "{tagId}" added',
    "remove_tag": 'Tag "{tagId}" removed',
    "add_motivation": 'Motivation "{motivationId}" added',
    "remove_motivation": 'Motivation "{motivationId}" removed',
    "assign_user": 'Assigned to "{userId}"',
    "unassign_user": "Unassigned",
    "mark_complete": "Marked as complete",
    "add_to_board": 'Added to board "{boardId}" in column "{columnId}"',
    "move_to_column": 'Moved to column "{columnId}" on board "{boardId}"',
    "create_task": 'Task "{title}" created',
    "complete_task": "{completed} task(s) completed",
    "send_notification": 'Notification sent to "{userId}"',
}


@dataclass(frozen=True)
class ActionContext:
    automation_id: int
    run_id: int
    record_id: str
    automation_name: str = ""

    @property
    def actor_id(self) -> str:
        return f"automation:{self.automation_id}"


def compute_due_date(config: Mapping[str, Any], now: datetime) -> datetime | None:
    """Resolve ``dueDaysFromNow``/``dueTime``/``skipWeekends`` into a due date."""

    days = config.get("dueDaysFromNow")
    due_time = config.get("dueTime")
    if days is None and not due_time:
        return None

    due = now + timedelta(days=int(days or 0))
    if due_time:
        hour, _, minute = str(due_time).partition(":")
        due = due.replace(hour=int(hour), minute=int(minute or 0), second=0, microsecond=0)
    if config.get("skipWeekends"):
        if due.weekday() == 5:
            due += timedelta(days=2)
        elif due.weekday() == 6:
            due += timedelta(days=1)
    return due


class ActionExecutor:
    """Applies one action node to the CRM and owns the round-robin cursors."""

    def __init__(self, gateway: CrmGateway, clock: Callable[[], datetime] = utcnow) -> None:
        self.gateway = gateway
        self.clock = clock
        self._handlers: dict[str, Callable[[ActionNode, ActionContext], dict[str, Any] | None]] = {
            "update_status": self._update_status,
            "update_temperature": self._update_temperature,
            "add_tag": self._add_tag,
            "remove_tag": self._remove_tag,
            "add_motivation": self._add_motivation,
            "remove_motivation": self._remove_motivation,
            "assign_user": self._assign_user,
            "unassign_user": self._unassign_user,
            "mark_complete": self._mark_complete,
            "add_to_board": self._add_to_board,
            "move_to_column": self._move_to_column,
            "create_task": self._create_task,
            "complete_task": self._complete_task,
            "send_notification": self._send_notification,
        }

    def execute(self, node: ActionNode, context: ActionContext) -> dict[str, Any] | None:
        """Apply the node's effect, returning a small summary for the run log."""

        handler = self._handlers.get(node.subtype)
        if handler is None:
            raise GraphRuntimeError(f"no handler for action {node.subtype!r} ({node.id})")
        try:
            detail = handler(node, context)
        except RuntimeActionError:
            raise
        except Exception as exc:
            raise RuntimeActionError(node.id, node.subtype, str(exc)) from exc
        self._log_activity(node, context, detail)
        return detail

    def _log_activity(
        self, node: ActionNode, context: ActionContext, detail: dict[str, Any] | None
    ) -> None:
        """Add a per-record activity entry for an applied action; failures are only logged."""

        template = ACTIVITY_DESCRIPTIONS.get(node.subtype)
        if template is None:
            return
        try:
            self.gateway.log_activity(
                context.record_id,
                action=f"automation_{node.subtype}",
                field=node.subtype,
                new_value=template.format(**(detail or {})),
                source=f"Automation: {context.automation_name}",
            )
        except Exception:
            current_app.logger.exception(
                "activity entry for action %s on record %s was not written", node.id, context.record_id
            )

    def next_round_robin_slot(self, automation_id: int, node_id: str) -> int:
        """Claim the next rotation slot of a node's cursor.

        The cursor row is advanced with a compare-and-swap update, so concurrent runs
        never read the same slot and never skip one.
        """

        for _ in range(MAX_CURSOR_ATTEMPTS):
            try:
                row = db.session.execute(
                    select(RoundRobinCursor.id, RoundRobinCursor.next_index).where(
                        RoundRobinCursor.automation_id == automation_id,
                        RoundRobinCursor.node_id == node_id,
                    )
                ).first()
                if row is None:
                    db.session.add(
                        RoundRobinCursor(automation_id=automation_id, node_id=node_id, next_index=1)
                    )
                    db.session.commit()
                    return 0

                cursor_id, seen = row
                result = db.session.execute(
                    update(RoundRobinCursor)
                    .where(RoundRobinCursor.id == cursor_id, RoundRobinCursor.next_index == seen)
                    .values(next_index=seen + 1, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    db.session.commit()
                    return seen
                db.session.rollback()
            except IntegrityError:
                db.session.rollback()
            except OperationalError:
                db.session.rollback()
                time.sleep(CURSOR_RETRY_DELAY)
        raise RuntimeActionError(node_id, "create_task", "round robin cursor is contended")

    def _update_status(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        status_id = node.config["statusId"]
        self.gateway.update_status(context.record_id, status_id, actor_id=context.actor_id)
        return {"statusId": status_id}

    def _update_temperature(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        temperature = str(node.config["temperature"]).upper()
        self.gateway.update_temperature(context.record_id, temperature, actor_id=context.actor_id)
        return {"temperature": temperature}

    def _add_tag(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        self.gateway.add_tag(context.record_id, node.config["tagId"], actor_id=context.actor_id)
        return {"tagId": node.config["tagId"]}

    def _remove_tag(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        self.gateway.remove_tag(context.record_id, node.config["tagId"], actor_id=context.actor_id)
        return {"tagId": node.config["tagId"]}

    def _add_motivation(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        motivation_id = node.config["motivationId"]
        self.gateway.add_motivation(context.record_id, motivation_id, actor_id=context.actor_id)
        return {"motivationId": motivation_id}

    def _remove_motivation(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        motivation_id = node.config["motivationId"]
        self.gateway.remove_motivation(context.record_id, motivation_id, actor_id=context.actor_id)
        return {"motivationId": motivation_id}

    def _assign_user(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        self.gateway.assign_user(context.record_id, node.config["userId"], actor_id=context.actor_id)
        return {"userId": node.config["userId"]}

    def _unassign_user(self, node: ActionNode, context: ActionContext) -> None:
        self.gateway.assign_user(context.record_id, None, actor_id=context.actor_id)

    def _mark_complete(self, node: ActionNode, context: ActionContext) -> None:
        self.gateway.mark_complete(context.record_id, actor_id=context.actor_id)

    def _add_to_board(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        return self._place(node, context, move=False)

    def _move_to_column(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        return self._place(node, context, move=True)

    def _place(self, node: ActionNode, context: ActionContext, *, move: bool) -> dict[str, Any]:
        board_id = node.config["boardId"]
        column_id = node.config["columnId"]
        self.gateway.place_on_board(
            context.record_id, board_id, column_id, move=move, actor_id=context.actor_id
        )
        return {"boardId": board_id, "columnId": column_id}

    def _create_task(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        config = node.config
        if config.get("assignmentType") == "ROUND_ROBIN":
            users = list(config["roundRobinUsers"])
            slot = self.next_round_robin_slot(context.automation_id, node.id)
            assignee = users[slot % len(users)]
        else:
            assignee = config.get("assignedToId") or None

        due_date = compute_due_date(config, self.clock())
        task_id = self.gateway.create_task(
            context.record_id,
            title=config["title"],
            description=config.get("description") or None,
            priority=config.get("priority") or "MEDIUM",
            assigned_to_id=assignee,
            due_date=due_date,
            actor_id=context.actor_id,
        )
        return {"taskId": task_id, "title": config["title"], "assignedToId": assignee, "dueDate": isoformat(due_date)}

    def _complete_task(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        count = self.gateway.complete_tasks(
            context.record_id, title=node.config.get("title") or None, actor_id=context.actor_id
        )
        return {"completed": count}

    def _send_notification(self, node: ActionNode, context: ActionContext) -> dict[str, Any]:
        config = node.config
        self.gateway.send_notification(
            config["userId"],
            title=config["title"],
            message=config["message"],
            record_id=context.record_id,
        )
        return {"userId": config["userId"]}
