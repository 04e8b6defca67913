"""
Workstream hierarchy service (tree store).

Functions:
    - get_workstream:           load one node or raise NodeNotFoundError
    - get_ancestors:            parent chain, nearest first
    - get_descendants:          transitive subtree ordered by (hierarchy_depth, id)
    - get_descendant_ids:       same, ids only
    - would_create_cycle:       would re-parenting make a node its own ancestor
    - set_parent:               re-parent with cycle + depth checks, subtree depth recompute
    - create_workstream:        insert with computed depth
    - can_delete / delete_workstream: leaf-only deletion
    - get_root / list_roots:    tree entry points
    - build_tree:               nested dict of a subtree (cached view "tree")
    - invalidate_with_ancestors: drop cached views of a node and every ancestor

Closure queries are recursive CTEs combined with UNION (not UNION ALL), so a
corrupted parent chain terminates instead of recursing forever. The in-memory
walk over the ancestor rows is what reports such a chain (CycleDetectedError).
"""

import logging
from collections import defaultdict

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from workgraph.config import DEFAULT_MAX_HIERARCHY_DEPTH
from workgraph.core.exceptions import (
    CannotDeleteNonLeafError,
    CircularHierarchyError,
    CycleDetectedError,
    DepthExceededError,
    NodeNotFoundError,
    ValidationError,
)
from workgraph.models import db
from workgraph.models.release import ChecklistAssignment, Release
from workgraph.models.workstream import (
    NAME_MAX_LENGTH,
    WORKSTREAM_STATUSES,
    WORKSTREAM_TYPES,
    Workstream,
)
from workgraph.services import cache_service

logger = logging.getLogger(__name__)


def max_depth() -> int:
    return current_app.config.get("MAX_HIERARCHY_DEPTH", DEFAULT_MAX_HIERARCHY_DEPTH)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_workstream(workstream_id: int) -> Workstream:
    ws = db.session.get(Workstream, workstream_id)
    if ws is None:
        raise NodeNotFoundError("Workstream", workstream_id)
    return ws


def _lock_workstream(workstream_id: int) -> Workstream:
    """SELECT ... FOR UPDATE on one row (a no-op clause on SQLite)."""
    stmt = (
        select(Workstream)
        .where(Workstream.id == workstream_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    ws = db.session.execute(stmt).scalar_one_or_none()
    if ws is None:
        raise NodeNotFoundError("Workstream", workstream_id)
    return ws


def _descendant_cte(workstream_id: int):
    child = aliased(Workstream)
    tree = (
        select(Workstream.id)
        .where(Workstream.parent_workstream_id == workstream_id)
        .cte(name="descendants", recursive=True)
    )
    return tree.union(
        select(child.id).where(child.parent_workstream_id == tree.c.id)
    )


def get_descendant_ids(workstream_id: int) -> list[int]:
    get_workstream(workstream_id)
    tree = _descendant_cte(workstream_id)
    stmt = (
        select(Workstream.id)
        .join(tree, Workstream.id == tree.c.id)
        .where(Workstream.id != workstream_id)
        .order_by(Workstream.hierarchy_depth, Workstream.id)
    )
    return list(db.session.execute(stmt).scalars())


def get_descendants(workstream_id: int) -> list[Workstream]:
    """Every workstream below *workstream_id*, ordered by (hierarchy_depth, id)."""
    get_workstream(workstream_id)
    tree = _descendant_cte(workstream_id)
    stmt = (
        select(Workstream)
        .join(tree, Workstream.id == tree.c.id)
        .where(Workstream.id != workstream_id)
        .order_by(Workstream.hierarchy_depth, Workstream.id)
    )
    return list(db.session.execute(stmt).scalars())


def get_ancestors(workstream_id: int) -> list[Workstream]:
    """Parent chain of *workstream_id*, nearest first. Empty for a root.

    Raises:
        NodeNotFoundError: unknown id.
        CycleDetectedError: the stored parent chain loops.
    """
    node = get_workstream(workstream_id)
    if node.parent_workstream_id is None:
        return []

    parent = aliased(Workstream)
    chain = (
        select(Workstream.id, Workstream.parent_workstream_id)
        .where(Workstream.id == node.parent_workstream_id)
        .cte(name="ancestors", recursive=True)
    )
    chain = chain.union(
        select(parent.id, parent.parent_workstream_id).where(parent.id == chain.c.parent_workstream_id)
    )
    rows = db.session.execute(
        select(Workstream).join(chain, Workstream.id == chain.c.id)
    ).scalars()
    by_id = {ws.id: ws for ws in rows}

    ancestors = []
    seen = {node.id}
    current = node.parent_workstream_id
    while current is not None:
        if current in seen:
            logger.error(
                "Parent chain of workstream %s loops at %s", workstream_id, current,
                extra={"event_type": "hierarchy_cycle", "workstream_id": workstream_id},
            )
            raise CycleDetectedError(workstream_id, current)
        ws = by_id.get(current)
        if ws is None:
            break
        seen.add(current)
        ancestors.append(ws)
        current = ws.parent_workstream_id
    return ancestors


def get_root(workstream_id: int) -> Workstream:
    ancestors = get_ancestors(workstream_id)
    return ancestors[-1] if ancestors else get_workstream(workstream_id)


def list_roots() -> list[Workstream]:
    stmt = (
        select(Workstream)
        .where(Workstream.parent_workstream_id.is_(None))
        .order_by(Workstream.name, Workstream.id)
    )
    return list(db.session.execute(stmt).scalars())


def child_count(workstream_id: int) -> int:
    return db.session.execute(
        select(func.count(Workstream.id)).where(Workstream.parent_workstream_id == workstream_id)
    ).scalar_one()


# ── Cycle / depth rules ──────────────────────────────────────────────────────


def would_create_cycle(workstream_id: int, proposed_parent_id: int | None) -> bool:
    """True iff *proposed_parent_id* is the node itself or one of its descendants."""
    if proposed_parent_id is None:
        return False
    if proposed_parent_id == workstream_id:
        return True
    return proposed_parent_id in set(get_descendant_ids(workstream_id))


def _relative_depths(root_id: int, descendants: list[Workstream]) -> dict[int, int]:
    """Distance of each descendant from *root_id*, from the loaded parent links."""
    children = defaultdict(list)
    for ws in descendants:
        children[ws.parent_workstream_id].append(ws.id)

    offsets = {}
    frontier = [(root_id, 0)]
    while frontier:
        current, offset = frontier.pop()
        for child_id in children.get(current, ()):
            if child_id in offsets:
                continue
            offsets[child_id] = offset + 1
            frontier.append((child_id, offset + 1))
    return offsets


def _lock_subtree(workstream_id: int) -> list[Workstream]:
    """SELECT ... FOR UPDATE on every descendant of *workstream_id*.

    Returns the locked rows ordered by (hierarchy_depth, id). The lock set is
    the subtree as committed when the lock is granted; a child cannot be
    added afterwards because create_workstream locks the parent row first.
    """
    return list(db.session.execute(_subtree_lock_stmt(workstream_id)).scalars())


def _subtree_lock_stmt(workstream_id: int):
    return (
        select(Workstream)
        .where(
            Workstream.id.in_(select(_descendant_cte(workstream_id).c.id)),
            Workstream.id != workstream_id,
        )
        .order_by(Workstream.hierarchy_depth, Workstream.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


def set_parent(workstream_id: int, new_parent_id: int | None) -> Workstream:
    """Move a workstream (with its subtree) under *new_parent_id*, or make it a root.

    The node, the new parent and the whole subtree are row-locked before the
    checks, the node's and every descendant's hierarchy_depth is rewritten in
    the same transaction, and cached views of the node, its subtree, and its
    old and new ancestors are dropped after commit.

    Raises:
        NodeNotFoundError, CircularHierarchyError, DepthExceededError
    """
    try:
        node = _lock_workstream(workstream_id)
        new_parent = _lock_workstream(new_parent_id) if new_parent_id is not None else None
        descendants = _lock_subtree(workstream_id)

        if new_parent_id is not None and (
            new_parent_id == workstream_id or new_parent_id in {ws.id for ws in descendants}
        ):
            logger.warning(
                "Rejected re-parenting of workstream %s under %s: cycle",
                workstream_id, new_parent_id,
                extra={"event_type": "set_parent_rejected", "workstream_id": workstream_id,
                       "parent_workstream_id": new_parent_id},
            )
            raise CircularHierarchyError(workstream_id, new_parent_id)

        offsets = _relative_depths(workstream_id, descendants)
        new_depth = 1 if new_parent is None else new_parent.hierarchy_depth + 1
        deepest = new_depth + max(offsets.values(), default=0)
        limit = max_depth()
        if deepest > limit:
            raise DepthExceededError(workstream_id, deepest, limit)

        old_ancestor_ids = [a.id for a in get_ancestors(workstream_id)]

        node.parent_workstream_id = new_parent_id
        node.hierarchy_depth = new_depth
        for ws in descendants:
            ws.hierarchy_depth = new_depth + offsets[ws.id]
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    new_ancestor_ids = [a.id for a in get_ancestors(workstream_id)]
    cache_service.invalidate_workstreams(
        [workstream_id, *(ws.id for ws in descendants), *old_ancestor_ids, *new_ancestor_ids]
    )
    logger.info(
        "Workstream re-parented",
        extra={"event_type": "set_parent", "workstream_id": workstream_id,
               "parent_workstream_id": new_parent_id},
    )
    return node


# ── Create / delete ──────────────────────────────────────────────────────────


def create_workstream(
    name: str,
    *,
    owner_id: int | None = None,
    parent_workstream_id: int | None = None,
    type: str = "initiative",
    status: str = "active",
    description: str | None = None,
) -> Workstream:
    """Insert a workstream; depth is derived from the parent.

    Raises:
        ValidationError: empty or overlong name, unknown type/status.
        NodeNotFoundError: unknown parent.
        DepthExceededError: the parent is already at the maximum depth.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Workstream name is required.", details={"name": "required"})
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"Workstream name must be ≤ {NAME_MAX_LENGTH} characters.", details={"name": "too_long"},
        )
    if type not in WORKSTREAM_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(sorted(WORKSTREAM_TYPES))}")
    if status not in WORKSTREAM_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(WORKSTREAM_STATUSES))}")

    try:
        depth = 1
        if parent_workstream_id is not None:
            parent = _lock_workstream(parent_workstream_id)
            depth = parent.hierarchy_depth + 1
            limit = max_depth()
            if depth > limit:
                raise DepthExceededError(None, depth, limit)

        ws = Workstream(
            name=name,
            description=description,
            type=type,
            status=status,
            parent_workstream_id=parent_workstream_id,
            hierarchy_depth=depth,
            owner_id=owner_id,
        )
        db.session.add(ws)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    invalidate_with_ancestors(ws.id)
    logger.info(
        "Workstream created",
        extra={"event_type": "workstream_created", "workstream_id": ws.id,
               "parent_workstream_id": parent_workstream_id, "principal_id": owner_id},
    )
    return ws


def can_delete(workstream_id: int) -> bool:
    get_workstream(workstream_id)
    return child_count(workstream_id) == 0


def delete_workstream(workstream_id: int) -> None:
    """Delete a leaf workstream together with its releases, tasks and their edges."""
    from workgraph.services import dependency_graph

    try:
        ws = _lock_workstream(workstream_id)
        children = child_count(workstream_id)
        if children:
            raise CannotDeleteNonLeafError(workstream_id, children)

        ancestor_ids = [a.id for a in get_ancestors(workstream_id)]
        release_ids = list(db.session.execute(
            select(Release.id).where(Release.workstream_id == workstream_id)
        ).scalars())
        assignment_ids = list(db.session.execute(
            select(ChecklistAssignment.id).where(ChecklistAssignment.release_id.in_(release_ids))
        ).scalars()) if release_ids else []

        dependency_graph.purge_nodes("release", release_ids)
        dependency_graph.purge_nodes("checklist", assignment_ids)
        db.session.delete(ws)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    cache_service.invalidate_workstreams([workstream_id, *ancestor_ids])
    logger.info(
        "Workstream deleted",
        extra={"event_type": "workstream_deleted", "workstream_id": workstream_id},
    )


# ── Tree views ───────────────────────────────────────────────────────────────


def _tree_node(ws: Workstream) -> dict:
    return {
        "id": ws.id,
        "name": ws.name,
        "type": ws.type,
        "status": ws.status,
        "owner_id": ws.owner_id,
        "hierarchy_depth": ws.hierarchy_depth,
        "children": [],
    }


def _build_tree(workstream_id: int) -> dict:
    root = get_workstream(workstream_id)
    nodes = {root.id: _tree_node(root)}
    # (depth, id) ordering guarantees a parent is placed before its children
    for ws in get_descendants(workstream_id):
        nodes[ws.id] = _tree_node(ws)
        parent = nodes.get(ws.parent_workstream_id)
        if parent is not None:
            parent["children"].append(nodes[ws.id])
    return nodes[root.id]


def build_tree(workstream_id: int) -> dict:
    """Nested {id, name, type, status, owner_id, hierarchy_depth, children} for a subtree."""
    get_workstream(workstream_id)
    return cache_service.get_cached(
        cache_service.workstream_key("tree", workstream_id),
        loader=lambda: _build_tree(workstream_id),
    )


def render_tree(workstream_id: int) -> list[str]:
    """Indented text lines of a subtree, for the show-tree CLI command."""
    lines = []
    stack = [(build_tree(workstream_id), 0)]
    while stack:
        node, indent = stack.pop()
        lines.append(f"{'  ' * indent}[{node['id']}] {node['name']} ({node['type']}, {node['status']})")
        for child in reversed(node["children"]):
            stack.append((child, indent + 1))
    return lines


# ── Cache invalidation ───────────────────────────────────────────────────────


def invalidate_with_ancestors(workstream_id: int) -> list[int]:
    """Drop cached views of *workstream_id* and all of its ancestors.

    Returns the ids that were invalidated.
    """
    ids = [workstream_id, *(a.id for a in get_ancestors(workstream_id))]
    cache_service.invalidate_workstreams(ids)
    return ids
