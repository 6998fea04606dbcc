"""Execution run (automation log) model definition."""

from __future__ import annotations

from ..extensions import db
from ..utils.clock import utcnow


class RunStatus:
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    ALL = (RUNNING, SUSPENDED, COMPLETED, FAILED, CANCELLED)
    TERMINAL = frozenset({COMPLETED, FAILED, CANCELLED})


class ExecutionRun(db.Model):
    """Durable record of one automation run for one record."""

    __tablename__ = "automation_runs"

    id = db.Column(db.Integer, primary_key=True)
    automation_id = db.Column(
        db.Integer,
        db.ForeignKey("automations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    record_id = db.Column(db.String(128), nullable=False)
    triggered_by = db.Column(db.String(64), nullable=False)
    status = db.Column(
        db.Enum(*RunStatus.ALL, name="automation_run_status"),
        nullable=False,
        default=RunStatus.RUNNING,
        index=True,
    )
    hops = db.Column(db.Integer, nullable=False, default=0)
    steps_json = db.Column(db.Text, nullable=False, default="[]")
    resume_state_json = db.Column(db.Text, nullable=True)
    resume_at = db.Column(db.DateTime, nullable=True, index=True)
    claimed_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in RunStatus.TERMINAL

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<ExecutionRun {self.id} {self.status}>"
