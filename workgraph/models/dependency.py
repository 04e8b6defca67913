"""
Typed dependency edges.

One table serves every dependency graph. ``graph`` names the node family
("release", "checklist", ...) and the endpoint ids are PKs in that family's
table, so there are no foreign keys on the endpoints. Edge rows are purged by
the service layer when their nodes are deleted.

Edge kinds, strictest first:
    blocks: the dependent cannot start until the prerequisite completes
    enables: the dependent is easier / cheaper once the prerequisite lands
    informs: the dependent only needs to know about the prerequisite
"""

from datetime import datetime, timezone

from workgraph.models import db
from workgraph.models.workstream import _in_clause


EDGE_KINDS = ("blocks", "enables", "informs")

EDGE_KIND_STRENGTH = {"blocks": 3, "enables": 2, "informs": 1}

DEFAULT_EDGE_KIND = "blocks"


class DependencyEdge(db.Model):
    """prerequisite ──kind──▶ dependent, within one graph."""

    __tablename__ = "dependency_edges"

    id = db.Column(db.Integer, primary_key=True)
    graph = db.Column(db.String(30), nullable=False, comment="release | checklist")
    prerequisite_id = db.Column(db.Integer, nullable=False)
    dependent_id = db.Column(db.Integer, nullable=False)
    dependency_type = db.Column(
        db.String(20), nullable=False, default=DEFAULT_EDGE_KIND,
        comment="blocks | enables | informs",
    )
    description = db.Column(db.Text, nullable=True)
    # inactive edges are kept but ignored by every traversal
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint(
            "graph", "prerequisite_id", "dependent_id",
            name="uq_dependency_edge_pair",
        ),
        db.CheckConstraint(
            "prerequisite_id != dependent_id",
            name="ck_dependency_edge_no_self_loop",
        ),
        db.CheckConstraint(
            _in_clause("dependency_type", EDGE_KINDS), name="ck_dependency_edge_kind",
        ),
        db.Index("ix_dependency_edge_prerequisite", "graph", "prerequisite_id"),
        db.Index("ix_dependency_edge_dependent", "graph", "dependent_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "graph": self.graph,
            "prerequisite_id": self.prerequisite_id,
            "dependent_id": self.dependent_id,
            "dependency_type": self.dependency_type,
            "is_active": self.is_active,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DependencyEdge {self.graph}: {self.prerequisite_id} -{self.dependency_type}→ {self.dependent_id}>"
