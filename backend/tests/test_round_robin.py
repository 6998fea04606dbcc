"""Tests for fair round-robin task assignment and task scheduling fields."""

from __future__ import annotations

import threading
from collections import Counter
from datetime import datetime

from backend.leadflow.automation.actions import compute_due_date
from backend.leadflow.extensions import db
from backend.leadflow.models import RoundRobinCursor, RunStatus
from backend.tests.helpers import action, chain, create_automation, runs_for, trigger


def _round_robin_automation(users: list[str]):
    return create_automation(
        "Rotation",
        chain(
            trigger("record_created"),
            action(
                "task",
                "create_task",
                title="Intro call",
                assignmentType="ROUND_ROBIN",
                roundRobinUsers=users,
            ),
        ),
    )


def _cursor(automation_id: int) -> RoundRobinCursor:
    db.session.expire_all()
    return RoundRobinCursor.query.filter_by(automation_id=automation_id, node_id="task").one()


def test_consecutive_runs_rotate_through_users(engine, crm):
    automation = _round_robin_automation(["A", "B", "C"])

    assignees = []
    for index in range(4):
        record_id = f"r{index}"
        crm.add_record(record_id)
        engine.dispatcher.emit("record_created", record_id, {}, "user-1")
        assert engine.dispatcher.drain(timeout=30)
        [task] = crm.tasks_for(record_id)
        assignees.append(task.assigned_to_id)

    assert assignees == ["A", "B", "C", "A"]
    assert _cursor(automation.id).next_index == 4


def test_concurrent_runs_never_share_or_skip_a_slot(engine, crm):
    automation = _round_robin_automation(["A", "B", "C"])
    for index in range(6):
        crm.add_record(f"r{index}")

    for index in range(6):
        engine.dispatcher.emit("record_created", f"r{index}", {}, "user-1")
    assert engine.dispatcher.drain(timeout=60)

    runs = runs_for(automation.id)
    assert [run.status for run in runs] == [RunStatus.COMPLETED] * 6
    assignees = Counter(task.assigned_to_id for task in crm.tasks)
    assert assignees == {"A": 2, "B": 2, "C": 2}
    assert _cursor(automation.id).next_index == 6


def test_cursor_claims_are_unique_across_threads(app, engine):
    automation_id = _round_robin_automation(["A", "B"]).id
    claimed: list[int] = []
    lock = threading.Lock()

    def claim() -> None:
        with app.app_context():
            for _ in range(3):
                slot = engine.executor.next_round_robin_slot(automation_id, "task")
                with lock:
                    claimed.append(slot)

    threads = [threading.Thread(target=claim) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert sorted(claimed) == list(range(12))
    assert _cursor(automation_id).next_index == 12


def test_cursor_is_kept_per_node(engine):
    automation = create_automation(
        "Two rotations",
        chain(
            trigger("record_created"),
            action("first", "create_task", title="a", assignmentType="ROUND_ROBIN", roundRobinUsers=["A"]),
            action("second", "create_task", title="b", assignmentType="ROUND_ROBIN", roundRobinUsers=["B"]),
        ),
    )
    executor = engine.executor
    assert executor.next_round_robin_slot(automation.id, "first") == 0
    assert executor.next_round_robin_slot(automation.id, "first") == 1
    assert executor.next_round_robin_slot(automation.id, "second") == 0


def test_due_date_skips_weekends_and_applies_time():
    friday = datetime(2024, 5, 3, 15, 30)

    assert compute_due_date({}, friday) is None
    assert compute_due_date({"dueDaysFromNow": 3}, friday) == datetime(2024, 5, 6, 15, 30)
    assert compute_due_date({"dueDaysFromNow": 1, "skipWeekends": True}, friday) == datetime(
        2024, 5, 6, 15, 30
    )
    assert compute_due_date({"dueDaysFromNow": 2, "skipWeekends": True}, friday) == datetime(
        2024, 5, 6, 15, 30
    )
    assert compute_due_date(
        {"dueDaysFromNow": 0, "dueTime": "09:00"}, friday
    ) == datetime(2024, 5, 3, 9, 0)
