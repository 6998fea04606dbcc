"""Durable execution run records."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, func, or_, select, update

from ..extensions import db
from ..models.automation import Automation
from ..models.runs import ExecutionRun, RunStatus
from ..utils.clock import isoformat, utcnow
from .errors import RunStateError


class ExecutionLogger:
    """Creates and advances :class:`ExecutionRun` rows.

    Every transition is committed before the method returns, so a run's state on
    disk always reflects the last node the walker finished. Runs claimed for resumption
    hold a lease that every recorded step renews; a run whose lease expires before it
    finishes is handed out again.
    """

    def __init__(self, lease_seconds: float = 300) -> None:
        self.lease = timedelta(seconds=lease_seconds)

    def start_run(
        self, automation_id: int, record_id: str, triggered_by: str, hops: int = 0
    ) -> ExecutionRun:
        run = ExecutionRun(
            automation_id=automation_id,
            record_id=record_id,
            triggered_by=triggered_by,
            status=RunStatus.RUNNING,
            hops=hops,
            steps_json="[]",
        )
        db.session.add(run)
        db.session.commit()
        return run

    def record_step(
        self,
        run: ExecutionRun,
        node: Any,
        outcome: str,
        detail: dict[str, Any] | None = None,
        hops: int | None = None,
    ) -> None:
        self._ensure_mutable(run)
        steps = json.loads(run.steps_json or "[]")
        step = {
            "nodeId": node.id,
            "kind": node.kind,
            "subtype": getattr(node, "subtype", None),
            "outcome": outcome,
            "at": isoformat(utcnow()),
        }
        if detail:
            step["detail"] = detail
        steps.append(step)
        run.steps_json = json.dumps(steps)
        if hops is not None:
            run.hops = hops
        if run.claimed_at is not None:
            run.claimed_at = utcnow()
        db.session.commit()

    def suspend(
        self, run: ExecutionRun, resume_at: datetime, state: dict[str, Any]
    ) -> None:
        self._ensure_mutable(run)
        run.status = RunStatus.SUSPENDED
        run.resume_at = resume_at
        run.resume_state_json = json.dumps(state)
        run.claimed_at = None
        db.session.commit()

    def complete(self, run: ExecutionRun) -> None:
        self._ensure_mutable(run)
        now = utcnow()
        run.status = RunStatus.COMPLETED
        run.completed_at = now
        run.resume_at = None
        run.resume_state_json = None
        db.session.execute(
            update(Automation)
            .where(Automation.id == run.automation_id)
            .values(run_count=Automation.run_count + 1, last_run_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()

    def fail(self, run: ExecutionRun, message: str, hops: int | None = None) -> None:
        self._ensure_mutable(run)
        if hops is not None:
            run.hops = hops
        run.status = RunStatus.FAILED
        run.error_message = message
        run.completed_at = utcnow()
        run.resume_at = None
        db.session.commit()

    def fail_by_id(self, run_id: int | None, message: str) -> ExecutionRun | None:
        """Fail a run that may be held by a broken session; terminal runs are left alone."""

        db.session.rollback()
        if run_id is None:
            return None
        run = db.session.get(ExecutionRun, run_id)
        if run is None or run.is_terminal:
            return run
        self.fail(run, message)
        return run

    def claim_for_resume(self, run_id: int, now: datetime | None = None) -> bool:
        """Atomically take a run for resumption; ``False`` if someone else holds it.

        Suspended runs and resumed runs whose lease has expired can be claimed.
        """

        now = now or utcnow()
        result = db.session.execute(
            update(ExecutionRun)
            .where(ExecutionRun.id == run_id, self._resumable(now))
            .values(status=RunStatus.RUNNING, resume_at=None, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def cancel(self, run_id: int) -> bool:
        result = db.session.execute(
            update(ExecutionRun)
            .where(ExecutionRun.id == run_id, ExecutionRun.status == RunStatus.SUSPENDED)
            .values(
                status=RunStatus.CANCELLED,
                resume_at=None,
                completed_at=utcnow(),
                error_message="cancelled",
            )
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def due_run_ids(self, now: datetime, limit: int) -> list[int]:
        rows = db.session.execute(
            select(ExecutionRun.id)
            .where(
                or_(
                    and_(ExecutionRun.status == RunStatus.SUSPENDED, ExecutionRun.resume_at <= now),
                    self._lease_expired(now),
                )
            )
            .order_by(ExecutionRun.id.asc())
            .limit(limit)
        ).scalars()
        return list(rows)

    def list_runs(
        self,
        automation_id: int,
        *,
        limit: int = 50,
        offset: int = 0,
        status: str | None = None,
    ) -> tuple[list[ExecutionRun], int]:
        query = ExecutionRun.query.filter(ExecutionRun.automation_id == automation_id)
        if status:
            query = query.filter(ExecutionRun.status == status)
        total = query.with_entities(func.count(ExecutionRun.id)).scalar() or 0
        runs = (
            query.order_by(ExecutionRun.started_at.desc(), ExecutionRun.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return runs, total

    def _lease_expired(self, now: datetime):
        return and_(
            ExecutionRun.status == RunStatus.RUNNING,
            ExecutionRun.claimed_at <= now - self.lease,
            ExecutionRun.resume_state_json.isnot(None),
        )

    def _resumable(self, now: datetime):
        return or_(ExecutionRun.status == RunStatus.SUSPENDED, self._lease_expired(now))

    @staticmethod
    def _ensure_mutable(run: ExecutionRun) -> None:
        if run.is_terminal:
            raise RunStateError(f"run {run.id} is already {run.status}")
