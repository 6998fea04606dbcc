"""Automation, folder and round-robin cursor model definitions."""

from __future__ import annotations

from ..extensions import db
from ..utils.clock import utcnow

EMPTY_GRAPH_JSON = '{"nodes": [], "edges": []}'
DEFAULT_FOLDER_COLOR = "#6366f1"


class AutomationFolder(db.Model):
    """Named group of automations shown together in the builder."""

    __tablename__ = "automation_folders"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    color = db.Column(db.String(16), nullable=False, default=DEFAULT_FOLDER_COLOR)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    automations = db.relationship(
        "Automation", backref="folder", order_by="Automation.created_at"
    )

    __table_args__ = (db.UniqueConstraint("tenant_id", "name", name="uq_automation_folder_tenant_name"),)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<AutomationFolder {self.name!r}>"


class Automation(db.Model):
    """A tenant-owned, event-triggered workflow graph."""

    __tablename__ = "automations"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    folder_id = db.Column(
        db.Integer,
        db.ForeignKey("automation_folders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    description = db.Column(db.Text, nullable=True)
    graph_json = db.Column(db.Text, nullable=False, default=EMPTY_GRAPH_JSON)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    is_draft = db.Column(db.Boolean, nullable=False, default=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    last_run_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    runs = db.relationship(
        "ExecutionRun",
        backref="automation",
        cascade="all, delete-orphan",
    )
    cursors = db.relationship(
        "RoundRobinCursor",
        cascade="all, delete-orphan",
    )

    __table_args__ = (db.UniqueConstraint("tenant_id", "name", name="uq_automation_tenant_name"),)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<Automation {self.name!r}>"


class RoundRobinCursor(db.Model):
    """Rotation pointer for one round-robin ``create_task`` node."""

    __tablename__ = "round_robin_cursors"

    id = db.Column(db.Integer, primary_key=True)
    automation_id = db.Column(
        db.Integer, db.ForeignKey("automations.id", ondelete="CASCADE"), nullable=False
    )
    node_id = db.Column(db.String(128), nullable=False)
    next_index = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("automation_id", "node_id", name="uq_round_robin_cursor"),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<RoundRobinCursor {self.automation_id}:{self.node_id}={self.next_index}>"
