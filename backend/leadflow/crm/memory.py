"""Thread-safe in-memory CRM used by default and in tests."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..utils.clock import utcnow
from .gateway import EntityNotFoundError, EventSink, RecordSnapshot


@dataclass
class _Record:
    id: str
    tenant_id: str
    status_id: str | None = None
    temperature: str | None = None
    is_complete: bool = False
    assigned_to_id: str | None = None
    tag_ids: set[str] = field(default_factory=set)
    motivation_ids: set[str] = field(default_factory=set)
    boards: dict[str, str] = field(default_factory=dict)

    def snapshot(self) -> RecordSnapshot:
        return RecordSnapshot(
            id=self.id,
            tenant_id=self.tenant_id,
            status_id=self.status_id,
            temperature=self.temperature,
            is_complete=self.is_complete,
            assigned_to_id=self.assigned_to_id,
            tag_ids=frozenset(self.tag_ids),
            motivation_ids=frozenset(self.motivation_ids),
        )


@dataclass
class Task:
    id: str
    record_id: str
    title: str
    description: str | None
    priority: str
    assigned_to_id: str | None
    due_date: datetime | None
    completed: bool = False


@dataclass(frozen=True)
class Notification:
    user_id: str
    title: str
    message: str
    record_id: str | None = None


@dataclass(frozen=True)
class ActivityEntry:
    record_id: str
    action: str
    field: str
    new_value: str
    source: str
    created_at: datetime


class InMemoryCrmGateway:
    """CRM stores kept in process memory.

    Every write is reported to the bound event sink (normally
    ``TriggerDispatcher.emit``) after the store lock has been released, the same way
    the real record and task services raise domain events.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._sink: EventSink | None = None
        self.clear()

    def bind_event_sink(self, sink: EventSink | None) -> None:
        self._sink = sink

    def clear(self) -> None:
        with self._lock:
            self.records: dict[str, _Record] = {}
            self.statuses: set[str] = set()
            self.tags: set[str] = set()
            self.motivations: set[str] = set()
            self.users: set[str] = set()
            self.boards: dict[str, set[str]] = {}
            self.tasks: list[Task] = []
            self.notifications: list[Notification] = []
            self.activities: list[ActivityEntry] = []

    # Seeding helpers

    def add_status(self, *status_ids: str) -> None:
        with self._lock:
            self.statuses.update(status_ids)

    def add_tag_definition(self, *tag_ids: str) -> None:
        with self._lock:
            self.tags.update(tag_ids)

    def add_motivation_definition(self, *motivation_ids: str) -> None:
        with self._lock:
            self.motivations.update(motivation_ids)

    def add_user(self, *user_ids: str) -> None:
        with self._lock:
            self.users.update(user_ids)

    def add_board(self, board_id: str, columns: list[str]) -> None:
        with self._lock:
            self.boards[board_id] = set(columns)

    def add_record(self, record_id: str, tenant_id: str = "default", **fields: Any) -> RecordSnapshot:
        tag_ids = set(fields.pop("tag_ids", ()))
        motivation_ids = set(fields.pop("motivation_ids", ()))
        record = _Record(
            id=record_id,
            tenant_id=tenant_id,
            tag_ids=tag_ids,
            motivation_ids=motivation_ids,
            **fields,
        )
        with self._lock:
            self.records[record_id] = record
        return record.snapshot()

    def remove_record(self, record_id: str) -> None:
        with self._lock:
            self.records.pop(record_id, None)

    def tasks_for(self, record_id: str) -> list[Task]:
        with self._lock:
            return [task for task in self.tasks if task.record_id == record_id]

    def activities_for(self, record_id: str) -> list[ActivityEntry]:
        with self._lock:
            return [entry for entry in self.activities if entry.record_id == record_id]

    # Gateway contract

    def get_record(self, record_id: str) -> RecordSnapshot:
        with self._lock:
            return self._record(record_id).snapshot()

    def update_status(self, record_id: str, status_id: str, *, actor_id: str | None = None) -> None:
        with self._lock:
            record = self._record(record_id)
            self._require(self.statuses, "status", status_id)
            previous = record.status_id
            record.status_id = status_id
            tenant_id = record.tenant_id
        self._emit(
            "status_changed",
            record_id,
            {"fromStatusId": previous, "toStatusId": status_id},
            actor_id,
            tenant_id,
        )
        self._emit("record_updated", record_id, {"field": "status"}, actor_id, tenant_id)

    def update_temperature(
        self, record_id: str, temperature: str, *, actor_id: str | None = None
    ) -> None:
        with self._lock:
            record = self._record(record_id)
            previous = record.temperature
            record.temperature = temperature
            tenant_id = record.tenant_id
        self._emit(
            "temperature_changed",
            record_id,
            {"fromTemperature": previous, "toTemperature": temperature},
            actor_id,
            tenant_id,
        )
        self._emit("record_updated", record_id, {"field": "temperature"}, actor_id, tenant_id)

    def add_tag(self, record_id: str, tag_id: str, *, actor_id: str | None = None) -> None:
        with self._lock:
            record = self._record(record_id)
            self._require(self.tags, "tag", tag_id)
            added = tag_id not in record.tag_ids
            record.tag_ids.add(tag_id)
            tenant_id = record.tenant_id
        if added:
            self._emit("tag_added", record_id, {"tagId": tag_id}, actor_id, tenant_id)

    def remove_tag(self, record_id: str, tag_id: str, *, actor_id: str | None = None) -> None:
        with self._lock:
            record = self._record(record_id)
            self._require(self.tags, "tag", tag_id)
            removed = tag_id in record.tag_ids
            record.tag_ids.discard(tag_id)
            tenant_id = record.tenant_id
        if removed:
            self._emit("tag_removed", record_id, {"tagId": tag_id}, actor_id, tenant_id)

    def add_motivation(
        self, record_id: str, motivation_id: str, *, actor_id: str | None = None
    ) -> None:
        with self._lock:
            record = self._record(record_id)
            self._require(self.motivations, "motivation", motivation_id)
            record.motivation_ids.add(motivation_id)
            tenant_id = record.tenant_id
        self._emit("record_updated", record_id, {"field": "motivations"}, actor_id, tenant_id)

    def remove_motivation(
        self, record_id: str, motivation_id: str, *, actor_id: str | None = None
    ) -> None:
        with self._lock:
            record = self._record(record_id)
            self._require(self.motivations, "motivation", motivation_id)
            record.motivation_ids.discard(motivation_id)
            tenant_id = record.tenant_id
        self._emit("record_updated", record_id, {"field": "motivations"}, actor_id, tenant_id)

    def assign_user(
        self, record_id: str, user_id: str | None, *, actor_id: str | None = None
    ) -> None:
        with self._lock:
            record = self._record(record_id)
            if user_id is not None:
                self._require(self.users, "user", user_id)
            previous = record.assigned_to_id
            record.assigned_to_id = user_id
            tenant_id = record.tenant_id
        if user_id is None:
            if previous is not None:
                self._emit(
                    "record_unassigned", record_id, {"userId": previous}, actor_id, tenant_id
                )
        else:
            self._emit("record_assigned", record_id, {"userId": user_id}, actor_id, tenant_id)

    def mark_complete(self, record_id: str, *, actor_id: str | None = None) -> None:
        with self._lock:
            record = self._record(record_id)
            record.is_complete = True
            tenant_id = record.tenant_id
        self._emit("record_updated", record_id, {"field": "isComplete"}, actor_id, tenant_id)

    def place_on_board(
        self,
        record_id: str,
        board_id: str,
        column_id: str,
        *,
        move: bool = False,
        actor_id: str | None = None,
    ) -> None:
        with self._lock:
            record = self._record(record_id)
            columns = self.boards.get(board_id)
            if columns is None:
                raise EntityNotFoundError("board", board_id)
            if column_id not in columns:
                raise EntityNotFoundError("column", column_id)
            on_board = board_id in record.boards
            if on_board and not move:
                return
            record.boards[board_id] = column_id
            tenant_id = record.tenant_id
        event_type = "moved_to_column" if on_board else "added_to_board"
        self._emit(
            event_type, record_id, {"boardId": board_id, "columnId": column_id}, actor_id, tenant_id
        )

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
        with self._lock:
            record = self._record(record_id)
            if assigned_to_id is not None:
                self._require(self.users, "user", assigned_to_id)
            task = Task(
                id=f"task-{next(self._ids)}",
                record_id=record_id,
                title=title,
                description=description,
                priority=priority,
                assigned_to_id=assigned_to_id,
                due_date=due_date,
            )
            self.tasks.append(task)
            tenant_id = record.tenant_id
        self._emit("task_created", record_id, {"taskId": task.id}, actor_id, tenant_id)
        return task.id

    def complete_tasks(
        self, record_id: str, *, title: str | None = None, actor_id: str | None = None
    ) -> int:
        with self._lock:
            record = self._record(record_id)
            completed = [
                task
                for task in self.tasks
                if task.record_id == record_id
                and not task.completed
                and (title is None or task.title == title)
            ]
            for task in completed:
                task.completed = True
            tenant_id = record.tenant_id
        for task in completed:
            self._emit("task_completed", record_id, {"taskId": task.id}, actor_id, tenant_id)
        return len(completed)

    def send_notification(
        self, user_id: str, *, title: str, message: str, record_id: str | None = None
    ) -> None:
        with self._lock:
            self._require(self.users, "user", user_id)
            self.notifications.append(
                Notification(user_id=user_id, title=title, message=message, record_id=record_id)
            )

    def log_activity(
        self,
        record_id: str,
        *,
        action: str,
        field: str,
        new_value: str,
        source: str,
    ) -> None:
        with self._lock:
            self._record(record_id)
            self.activities.append(
                ActivityEntry(
                    record_id=record_id,
                    action=action,
                    field=field,
                    new_value=new_value,
                    source=source,
                    created_at=utcnow(),
                )
            )

    def _record(self, record_id: str) -> _Record:
        record = self.records.get(record_id)
        if record is None:
            raise EntityNotFoundError("record", record_id)
        return record

    @staticmethod
    def _require(known: set[str], kind: str, entity_id: str) -> None:
        if entity_id not in known:
            raise EntityNotFoundError(kind, entity_id)

    def _emit(
        self,
        event_type: str,
        record_id: str,
        payload: dict[str, Any],
        actor_id: str | None,
        tenant_id: str,
    ) -> None:
        sink = self._sink
        if sink is None:
            return
        sink(event_type, record_id, payload, actor_id, tenant_id=tenant_id)
