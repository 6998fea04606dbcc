"""Interfaces the automation engine needs from the surrounding CRM."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

EventSink = Callable[..., Any]


class EntityNotFoundError(LookupError):
    """Raised when a record, status, tag, user or board referenced by a write does not exist."""

    def __init__(self, kind: str, entity_id: Any) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


@dataclass(frozen=True)
class RecordSnapshot:
    """Point-in-time view of a lead record used for condition evaluation."""

    id: str
    tenant_id: str
    status_id: str | None = None
    temperature: str | None = None
    is_complete: bool = False
    assigned_to_id: str | None = None
    tag_ids: frozenset[str] = frozenset()
    motivation_ids: frozenset[str] = frozenset()


class CrmGateway(Protocol):
    """Record, task and notification stores consumed by automation actions."""

    def get_record(self, record_id: str) -> RecordSnapshot:
        """Return the current state of a record."""

    def update_status(self, record_id: str, status_id: str, *, actor_id: str | None = None) -> None:
        """Set the record's status."""

    def update_temperature(
        self, record_id: str, temperature: str, *, actor_id: str | None = None
    ) -> None:
        """Set the record's temperature."""

    def add_tag(self, record_id: str, tag_id: str, *, actor_id: str | None = None) -> None:
        """Attach a tag to the record."""

    def remove_tag(self, record_id: str, tag_id: str, *, actor_id: str | None = None) -> None:
        """Detach a tag from the record."""

    def add_motivation(
        self, record_id: str, motivation_id: str, *, actor_id: str | None = None
    ) -> None:
        """Attach a seller motivation to the record."""

    def remove_motivation(
        self, record_id: str, motivation_id: str, *, actor_id: str | None = None
    ) -> None:
        """Detach a seller motivation from the record."""

    def assign_user(self, record_id: str, user_id: str | None, *, actor_id: str | None = None) -> None:
        """Assign the record to a user, or unassign it when ``user_id`` is ``None``."""

    def mark_complete(self, record_id: str, *, actor_id: str | None = None) -> None:
        """Flag the record as complete."""

    def place_on_board(
        self,
        record_id: str,
        board_id: str,
        column_id: str,
        *,
        move: bool = False,
        actor_id: str | None = None,
    ) -> None:
        """Add the record to a board column, or move it there when ``move`` is set."""

    def create_task(
        self,
        record_id: str,
        *,
        title: str,
        description: str | None = None,
        priority: str = "MEDIUM",
        assigned_to_id: str | None = None,
        due_date: datetime | None = None,
        actor_id: str | None = None,
    ) -> str:
        """Create a task for the record and return its id."""

    def complete_tasks(
        self, record_id: str, *, title: str | None = None, actor_id: str | None = None
    ) -> int:
        """Complete the record's open tasks, optionally only those with the given title."""

    def send_notification(
        self, user_id: str, *, title: str, message: str, record_id: str | None = None
    ) -> None:
        """Deliver an in-app notification to a user."""

    def log_activity(
        self,
        record_id: str,
        *,
        action: str,
        field: str,
        new_value: str,
        source: str,
    ) -> None:
        """Append an entry to the record's activity history."""
