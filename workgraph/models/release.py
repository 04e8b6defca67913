"""
Release and checklist models.

Models:
    - Release:              a dated deliverable owned by a workstream
    - ChecklistAssignment:  a task on a release checklist

Both are nodes of dependency graphs (graph keys "release" and "checklist",
see services.dependency_graph). The edges live in models.dependency.

Lifecycle states:
    Release:              planned → in_progress → completed  |  on_hold | cancelled
    ChecklistAssignment:  pending → in_progress → completed  |  blocked | cancelled
"""

from datetime import datetime, timezone

from workgraph.models import db
from workgraph.models.workstream import NAME_MAX_LENGTH, _in_clause


# ── Constants ────────────────────────────────────────────────────────────────

RELEASE_STATUSES = {"planned", "in_progress", "completed", "cancelled", "on_hold"}

ASSIGNMENT_STATUSES = {"pending", "in_progress", "completed", "blocked", "cancelled"}

ASSIGNMENT_PRIORITIES = {"low", "medium", "high", "critical"}

# Statuses that no longer move a schedule
CLOSED_STATUSES = {"completed", "cancelled"}


class Release(db.Model):
    __tablename__ = "releases"

    id = db.Column(db.Integer, primary_key=True)
    workstream_id = db.Column(
        db.Integer, db.ForeignKey("workstreams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(NAME_MAX_LENGTH), nullable=False)
    version = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    target_date = db.Column(db.Date, nullable=True)
    status = db.Column(
        db.String(30), nullable=False, default="planned",
        comment="planned | in_progress | completed | cancelled | on_hold",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignments = db.relationship(
        "ChecklistAssignment", backref="release", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    __table_args__ = (
        db.CheckConstraint(_in_clause("status", RELEASE_STATUSES), name="ck_release_status"),
        db.Index("ix_release_workstream_status", "workstream_id", "status"),
    )

    def to_node_summary(self):
        """Shape used by dependency-graph reports."""
        return {
            "id": self.id,
            "name": self.name,
            "target_date": self.target_date,
            "status": self.status,
            "workstream_id": self.workstream_id,
            "workstream_name": self.workstream.name if self.workstream else None,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "workstream_id": self.workstream_id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "target_date": self.target_date.isoformat() if self.target_date else None,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Release {self.id}: {self.name} [{self.status}]>"


class ChecklistAssignment(db.Model):
    __tablename__ = "checklist_assignments"

    id = db.Column(db.Integer, primary_key=True)
    release_id = db.Column(
        db.Integer, db.ForeignKey("releases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(NAME_MAX_LENGTH), nullable=False)
    assignee_id = db.Column(db.Integer, nullable=True, index=True)
    due_date = db.Column(db.Date, nullable=True)
    priority = db.Column(db.String(20), nullable=False, default="medium")
    status = db.Column(
        db.String(30), nullable=False, default="pending",
        comment="pending | in_progress | completed | blocked | cancelled",
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(_in_clause("status", ASSIGNMENT_STATUSES), name="ck_assignment_status"),
        db.CheckConstraint(_in_clause("priority", ASSIGNMENT_PRIORITIES), name="ck_assignment_priority"),
        db.Index("ix_assignment_release_status", "release_id", "status"),
    )

    def to_node_summary(self):
        return {
            "id": self.id,
            "name": self.title,
            "target_date": self.due_date,
            "status": self.status,
            "release_id": self.release_id,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "release_id": self.release_id,
            "title": self.title,
            "assignee_id": self.assignee_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "priority": self.priority,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ChecklistAssignment {self.id}: {self.title} [{self.status}]>"
