"""
Workstream hierarchy models.

Models:
    - Workstream:            node of the bounded-depth hierarchy (product line → initiative → experiment)
    - WorkstreamPermission:  per-principal grant on a workstream, optionally cascading to descendants

Architecture:
    Workstream ──1:N──▶ Workstream          (parent_workstream_id, single parent)
    Workstream ──1:N──▶ WorkstreamPermission
    Workstream ──1:N──▶ Release             (see models.release)

Invariants:
    hierarchy_depth == 1 for a root, parent.hierarchy_depth + 1 otherwise.
    hierarchy_depth <= MAX_HIERARCHY_DEPTH (app config, default 3).
    No workstream is its own ancestor.
Depth and acyclicity are maintained by services.hierarchy_service; rows
written around it are not checked beyond the constraints below.
"""

from datetime import datetime, timezone

from workgraph.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NAME_MAX_LENGTH = 255

WORKSTREAM_TYPES = {"product_line", "initiative", "experiment"}

WORKSTREAM_STATUSES = {"draft", "active", "on_hold", "completed", "cancelled"}

# Ordered weakest → strongest; services.permission_resolver.PermissionKind mirrors this.
PERMISSION_TYPES = ("view", "edit", "admin")

SCOPE_NODE_ONLY = "workstream_only"
SCOPE_WITH_DESCENDANTS = "workstream_and_children"
PERMISSION_SCOPES = {SCOPE_NODE_ONLY, SCOPE_WITH_DESCENDANTS}


def _in_clause(column, values):
    quoted = ",".join(f"'{v}'" for v in sorted(values))
    return f"{column} IN ({quoted})"


# ═════════════════════════════════════════════════════════════════════════════
# 1. Workstream
# ═════════════════════════════════════════════════════════════════════════════


class Workstream(db.Model):
    """
    A node in the workstream tree.

    ``hierarchy_depth`` is a cached value. It is recomputed for the whole
    subtree whenever ``parent_workstream_id`` changes through
    hierarchy_service.set_parent.
    """

    __tablename__ = "workstreams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(NAME_MAX_LENGTH), nullable=False)
    description = db.Column(db.Text, nullable=True)
    type = db.Column(
        db.String(30), nullable=False, default="initiative",
        comment="product_line | initiative | experiment",
    )
    status = db.Column(
        db.String(30), nullable=False, default="active",
        comment="draft | active | on_hold | completed | cancelled",
    )
    parent_workstream_id = db.Column(
        db.Integer,
        # NO ACTION (checked at statement end); leaf-only deletion is a service rule
        db.ForeignKey("workstreams.id"),
        nullable=True,
        index=True,
    )
    hierarchy_depth = db.Column(db.Integer, nullable=False, default=1)
    owner_id = db.Column(db.Integer, nullable=True, index=True, comment="Principal id of the owner")

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships ────────────────────────────────────────────────────
    permissions = db.relationship(
        "WorkstreamPermission", backref="workstream", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    releases = db.relationship(
        "Release", backref="workstream", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(_in_clause("type", WORKSTREAM_TYPES), name="ck_workstream_type"),
        db.CheckConstraint(_in_clause("status", WORKSTREAM_STATUSES), name="ck_workstream_status"),
        db.CheckConstraint("hierarchy_depth >= 1", name="ck_workstream_depth_positive"),
        db.CheckConstraint(
            "parent_workstream_id IS NULL OR parent_workstream_id != id",
            name="ck_workstream_not_own_parent",
        ),
        db.Index("ix_workstream_parent_depth", "parent_workstream_id", "hierarchy_depth"),
    )

    @property
    def is_root(self):
        return self.parent_workstream_id is None

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "status": self.status,
            "parent_workstream_id": self.parent_workstream_id,
            "hierarchy_depth": self.hierarchy_depth,
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Workstream {self.id}: {self.name} (depth={self.hierarchy_depth})>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. WorkstreamPermission
# ═════════════════════════════════════════════════════════════════════════════


class WorkstreamPermission(db.Model):
    """
    A grant of view / edit / admin on one workstream to one principal.

    Scope ``workstream_and_children`` makes the grant visible on every
    descendant. Grants are never edited in place: revoke and grant again.
    """

    __tablename__ = "workstream_permissions"

    id = db.Column(db.Integer, primary_key=True)
    workstream_id = db.Column(
        db.Integer, db.ForeignKey("workstreams.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, nullable=False, index=True)
    permission_type = db.Column(db.String(20), nullable=False, comment="view | edit | admin")
    scope = db.Column(
        db.String(40), nullable=False, default=SCOPE_NODE_ONLY,
        comment="workstream_only | workstream_and_children",
    )
    granted_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "workstream_id", "user_id", "permission_type",
            name="uq_workstream_user_permission",
        ),
        db.CheckConstraint(
            _in_clause("permission_type", PERMISSION_TYPES), name="ck_permission_type",
        ),
        db.CheckConstraint(_in_clause("scope", PERMISSION_SCOPES), name="ck_permission_scope"),
        db.Index("ix_permission_user_workstream", "user_id", "workstream_id"),
    )

    @property
    def cascades(self):
        return self.scope == SCOPE_WITH_DESCENDANTS

    def to_dict(self):
        return {
            "id": self.id,
            "workstream_id": self.workstream_id,
            "user_id": self.user_id,
            "permission_type": self.permission_type,
            "scope": self.scope,
            "granted_by": self.granted_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return (
            f"<WorkstreamPermission ws={self.workstream_id} user={self.user_id} "
            f"{self.permission_type}/{self.scope}>"
        )
