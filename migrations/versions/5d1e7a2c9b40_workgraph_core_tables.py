"""workgraph_core_tables

Revision ID: 5d1e7a2c9b40
Revises:
Create Date: 2026-10-17 09:12:41.318204

Adds:
    - workstreams: bounded-depth hierarchy with cached hierarchy_depth
    - workstream_permissions: view/edit/admin grants with cascade scope
    - releases: dated deliverables per workstream
    - checklist_assignments: release checklist tasks
    - dependency_edges: typed prerequisite → dependent edges, keyed by graph
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5d1e7a2c9b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # workstreams table
    op.create_table(
        "workstreams",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(30), nullable=False, server_default="initiative"),
        sa.Column("status", sa.String(30), nullable=False, server_default="active"),
        sa.Column("parent_workstream_id", sa.Integer(), nullable=True),
        sa.Column("hierarchy_depth", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "type IN ('experiment','initiative','product_line')", name="ck_workstream_type",
        ),
        sa.CheckConstraint(
            "status IN ('active','cancelled','completed','draft','on_hold')", name="ck_workstream_status",
        ),
        sa.CheckConstraint("hierarchy_depth >= 1", name="ck_workstream_depth_positive"),
        sa.CheckConstraint(
            "parent_workstream_id IS NULL OR parent_workstream_id != id",
            name="ck_workstream_not_own_parent",
        ),
        # NO ACTION: checked at statement end, so a whole tree can be emptied in one DELETE
        sa.ForeignKeyConstraint(["parent_workstream_id"], ["workstreams.id"]),
        sa.PrimaryKeyConstraint("id"),
        if_not_exists=True,
    )
    op.create_index("ix_workstreams_parent_workstream_id", "workstreams", ["parent_workstream_id"], if_not_exists=True)
    op.create_index("ix_workstreams_owner_id", "workstreams", ["owner_id"], if_not_exists=True)
    op.create_index(
        "ix_workstream_parent_depth", "workstreams", ["parent_workstream_id", "hierarchy_depth"],
        if_not_exists=True,
    )

    # workstream_permissions table
    op.create_table(
        "workstream_permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("workstream_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("permission_type", sa.String(20), nullable=False),
        sa.Column("scope", sa.String(40), nullable=False, server_default="workstream_only"),
        sa.Column("granted_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("permission_type IN ('admin','edit','view')", name="ck_permission_type"),
        sa.CheckConstraint(
            "scope IN ('workstream_and_children','workstream_only')", name="ck_permission_scope",
        ),
        sa.ForeignKeyConstraint(["workstream_id"], ["workstreams.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workstream_id", "user_id", "permission_type", name="uq_workstream_user_permission",
        ),
        if_not_exists=True,
    )
    op.create_index("ix_workstream_permissions_workstream_id", "workstream_permissions", ["workstream_id"], if_not_exists=True)
    op.create_index("ix_workstream_permissions_user_id", "workstream_permissions", ["user_id"], if_not_exists=True)
    op.create_index(
        "ix_permission_user_workstream", "workstream_permissions", ["user_id", "workstream_id"],
        if_not_exists=True,
    )

    # releases table
    op.create_table(
        "releases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("workstream_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("version", sa.String(50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="planned"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('cancelled','completed','in_progress','on_hold','planned')",
            name="ck_release_status",
        ),
        sa.ForeignKeyConstraint(["workstream_id"], ["workstreams.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        if_not_exists=True,
    )
    op.create_index("ix_releases_workstream_id", "releases", ["workstream_id"], if_not_exists=True)
    op.create_index("ix_release_workstream_status", "releases", ["workstream_id", "status"], if_not_exists=True)

    # checklist_assignments table
    op.create_table(
        "checklist_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("release_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("assignee_id", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('blocked','cancelled','completed','in_progress','pending')",
            name="ck_assignment_status",
        ),
        sa.CheckConstraint(
            "priority IN ('critical','high','low','medium')", name="ck_assignment_priority",
        ),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        if_not_exists=True,
    )
    op.create_index("ix_checklist_assignments_release_id", "checklist_assignments", ["release_id"], if_not_exists=True)
    op.create_index("ix_checklist_assignments_assignee_id", "checklist_assignments", ["assignee_id"], if_not_exists=True)
    op.create_index(
        "ix_assignment_release_status", "checklist_assignments", ["release_id", "status"],
        if_not_exists=True,
    )

    # dependency_edges table
    op.create_table(
        "dependency_edges",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("graph", sa.String(30), nullable=False),
        sa.Column("prerequisite_id", sa.Integer(), nullable=False),
        sa.Column("dependent_id", sa.Integer(), nullable=False),
        sa.Column("dependency_type", sa.String(20), nullable=False, server_default="blocks"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("prerequisite_id != dependent_id", name="ck_dependency_edge_no_self_loop"),
        sa.CheckConstraint(
            "dependency_type IN ('blocks','enables','informs')", name="ck_dependency_edge_kind",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("graph", "prerequisite_id", "dependent_id", name="uq_dependency_edge_pair"),
        if_not_exists=True,
    )
    op.create_index(
        "ix_dependency_edge_prerequisite", "dependency_edges", ["graph", "prerequisite_id"],
        if_not_exists=True,
    )
    op.create_index(
        "ix_dependency_edge_dependent", "dependency_edges", ["graph", "dependent_id"],
        if_not_exists=True,
    )


def downgrade():
    op.drop_table("dependency_edges")
    op.drop_table("checklist_assignments")
    op.drop_table("releases")
    op.drop_table("workstream_permissions")
    op.drop_table("workstreams")
