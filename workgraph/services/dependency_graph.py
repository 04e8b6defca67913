"""
Typed dependency graphs over releases and checklist assignments.

Every function takes a ``graph`` key naming the node family. The family is
described by a GraphAdapter (model class + how to summarise a node); the
built-in graphs are "release" and "checklist" and others can be added with
register_graph.

Functions:
    - add_edge / remove_edge:     mutate with self-loop, duplicate and cycle checks
    - update_edge:                change kind, description or active flag in place
    - would_create_cycle:         would prerequisite → dependent close a loop
    - get_blockers / can_start:   "blocks" prerequisites and whether they are all completed
    - get_downstream / get_upstream / get_blocked: direct neighbours
    - get_full_chain:             every transitive prerequisite
    - get_edges_for:              edge rows touching one node
    - load_adjacency:             one query → {node: [(neighbour, kind)]}
    - purge_nodes:                drop edges of deleted nodes (caller commits)

Traversals load the graph's adjacency list once and walk it in memory with an
explicit stack, so depth is bounded by memory, not by the interpreter's
recursion limit.

Which edge kinds take part in cycle detection is the DEPENDENCY_ACYCLIC_KINDS
config value (all three by default). Edges switched off with update_edge
(is_active=False) stay in the table but take no part in any traversal or
neighbour query.
"""

import logging
import zlib
from collections import defaultdict
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import delete, or_, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from workgraph.core.exceptions import (
    CircularDependencyError,
    DuplicateEdgeError,
    NodeNotFoundError,
    NotFoundError,
    SelfDependencyError,
    ValidationError,
)
from workgraph.models import db
from workgraph.models.dependency import DEFAULT_EDGE_KIND, EDGE_KINDS, DependencyEdge
from workgraph.models.release import ChecklistAssignment, Release

logger = logging.getLogger(__name__)


# ── Graph adapters ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class GraphAdapter:
    """How one node family plugs into the dependency graph.

    ``model`` must have an integer ``id``, a ``status`` column and a
    ``to_node_summary()`` method returning at least id, name, target_date
    and status.
    """

    name: str
    model: type
    label: str

    def exists(self, node_id: int) -> bool:
        return db.session.get(self.model, node_id) is not None

    def require(self, *node_ids: int) -> None:
        """Raise NodeNotFoundError for the first id that has no row."""
        if not node_ids:
            return
        found = set(db.session.execute(
            select(self.model.id).where(self.model.id.in_(node_ids))
        ).scalars())
        for node_id in node_ids:
            if node_id not in found:
                raise NodeNotFoundError(self.label, node_id)

    def statuses(self, node_ids) -> dict[int, str]:
        ids = list(node_ids)
        if not ids:
            return {}
        rows = db.session.execute(
            select(self.model.id, self.model.status).where(self.model.id.in_(ids))
        )
        return {node_id: status for node_id, status in rows}

    def describe(self, node_ids) -> dict[int, dict]:
        ids = list(node_ids)
        if not ids:
            return {}
        rows = db.session.execute(select(self.model).where(self.model.id.in_(ids))).scalars()
        return {row.id: row.to_node_summary() for row in rows}


_GRAPHS: dict[str, GraphAdapter] = {}


def register_graph(name: str, model: type, label: str | None = None) -> GraphAdapter:
    adapter = GraphAdapter(name=name, model=model, label=label or model.__name__)
    _GRAPHS[name] = adapter
    return adapter


def get_adapter(graph: str) -> GraphAdapter:
    try:
        return _GRAPHS[graph]
    except KeyError:
        raise ValidationError(
            f"Unknown dependency graph {graph!r}; registered: {', '.join(sorted(_GRAPHS))}",
            details={"graph": graph},
        ) from None


register_graph("release", Release)
register_graph("checklist", ChecklistAssignment)


# ── Helpers ──────────────────────────────────────────────────────────────────


def acyclic_kinds() -> tuple[str, ...]:
    return tuple(current_app.config.get("DEPENDENCY_ACYCLIC_KINDS", EDGE_KINDS))


def _validate_kind(kind: str) -> str:
    if kind not in EDGE_KINDS:
        raise ValidationError(
            f"dependency_type must be one of: {', '.join(EDGE_KINDS)}",
            details={"dependency_type": kind},
        )
    return kind


def _lock_graph(graph: str) -> None:
    """Serialise check-then-insert per graph on PostgreSQL.

    The advisory lock is released at commit/rollback. SQLite allows a single
    writer, so there is nothing to take.
    """
    if db.session.get_bind().dialect.name != "postgresql":
        return
    key = zlib.crc32(f"workgraph:{graph}".encode())
    db.session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})


def _edge(graph: str, prerequisite_id: int, dependent_id: int) -> DependencyEdge | None:
    """The edge row of an ordered pair, active or not (the pair is unique either way)."""
    return db.session.execute(
        select(DependencyEdge).where(
            DependencyEdge.graph == graph,
            DependencyEdge.prerequisite_id == prerequisite_id,
            DependencyEdge.dependent_id == dependent_id,
        )
    ).scalar_one_or_none()


def load_adjacency(graph: str, kinds=None, reverse: bool = False) -> dict[int, list[tuple[int, str]]]:
    """Adjacency list of the active edges of *graph* in one query.

    Forward: prerequisite → [(dependent, kind)]. Reverse: dependent →
    [(prerequisite, kind)]. Neighbour lists are sorted by id.
    """
    stmt = select(
        DependencyEdge.prerequisite_id, DependencyEdge.dependent_id, DependencyEdge.dependency_type,
    ).where(DependencyEdge.graph == graph, DependencyEdge.is_active.is_(True))
    if kinds is not None:
        stmt = stmt.where(DependencyEdge.dependency_type.in_(list(kinds)))

    adjacency = defaultdict(list)
    for prerequisite_id, dependent_id, kind in db.session.execute(stmt):
        if reverse:
            adjacency[dependent_id].append((prerequisite_id, kind))
        else:
            adjacency[prerequisite_id].append((dependent_id, kind))
    for neighbours in adjacency.values():
        neighbours.sort()
    return dict(adjacency)


def reachable(adjacency: dict, start: int) -> set[int]:
    """Every node reachable from *start* (excluding it unless on a loop)."""
    seen = set()
    stack = [neighbour for neighbour, _ in adjacency.get(start, ())]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(neighbour for neighbour, _ in adjacency.get(current, ()))
    return seen


def _path_exists(adjacency: dict, source: int, target: int) -> bool:
    visited = set()
    stack = [source]
    while stack:
        current = stack.pop()
        if current == target:
            return True
        if current in visited:
            continue
        visited.add(current)
        for neighbour, _ in adjacency.get(current, ()):
            stack.append(neighbour)
    return False


# ── Cycle rule ───────────────────────────────────────────────────────────────


def would_create_cycle(graph: str, prerequisite_id: int, dependent_id: int,
                       kind: str = DEFAULT_EDGE_KIND) -> bool:
    """True iff adding prerequisite → dependent closes a loop among the checked kinds."""
    if prerequisite_id == dependent_id:
        return True
    kinds = acyclic_kinds()
    if kind not in kinds:
        return False
    adjacency = load_adjacency(graph, kinds=kinds)
    return _path_exists(adjacency, dependent_id, prerequisite_id)


# ── Mutations ────────────────────────────────────────────────────────────────


def add_edge(
    graph: str,
    prerequisite_id: int,
    dependent_id: int,
    kind: str = DEFAULT_EDGE_KIND,
    *,
    description: str | None = None,
    created_by: int | None = None,
) -> DependencyEdge:
    """Record that *dependent_id* depends on *prerequisite_id*.

    Raises:
        SelfDependencyError: both ids are the same node.
        NodeNotFoundError: either endpoint does not exist.
        DuplicateEdgeError: the ordered pair already has an edge (of any kind,
            active or not; reactivate an inactive one with update_edge).
        CircularDependencyError: a path dependent → … → prerequisite already exists.
    """
    adapter = get_adapter(graph)
    _validate_kind(kind)
    if prerequisite_id == dependent_id:
        raise SelfDependencyError(graph, prerequisite_id)
    for node_id in (prerequisite_id, dependent_id):
        if not adapter.exists(node_id):
            raise NodeNotFoundError(adapter.label, node_id)

    try:
        _lock_graph(graph)
        if _edge(graph, prerequisite_id, dependent_id) is not None:
            raise DuplicateEdgeError(graph, prerequisite_id, dependent_id)
        if would_create_cycle(graph, prerequisite_id, dependent_id, kind):
            logger.warning(
                "Rejected %s edge %s -> %s: cycle", kind, prerequisite_id, dependent_id,
                extra={"event_type": "edge_rejected", "graph": graph,
                       "prerequisite_id": prerequisite_id, "dependent_id": dependent_id},
            )
            raise CircularDependencyError(graph, prerequisite_id, dependent_id)

        edge = DependencyEdge(
            graph=graph,
            prerequisite_id=prerequisite_id,
            dependent_id=dependent_id,
            dependency_type=kind,
            description=description,
            created_by=created_by,
        )
        db.session.add(edge)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateEdgeError(graph, prerequisite_id, dependent_id) from None
    except (SQLAlchemyError, ValidationError, DuplicateEdgeError):
        db.session.rollback()
        raise

    logger.info(
        "Dependency edge added",
        extra={"event_type": "edge_added", "graph": graph, "prerequisite_id": prerequisite_id,
               "dependent_id": dependent_id, "dependency_type": kind},
    )
    return edge


def remove_edge(graph: str, prerequisite_id: int, dependent_id: int) -> None:
    get_adapter(graph)
    edge = _edge(graph, prerequisite_id, dependent_id)
    if edge is None:
        raise NotFoundError("DependencyEdge", f"{graph}:{prerequisite_id}->{dependent_id}")
    try:
        db.session.delete(edge)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise
    logger.info(
        "Dependency edge removed",
        extra={"event_type": "edge_removed", "graph": graph,
               "prerequisite_id": prerequisite_id, "dependent_id": dependent_id},
    )


def update_edge(
    graph: str,
    prerequisite_id: int,
    dependent_id: int,
    *,
    kind: str | None = None,
    description: str | None = None,
    is_active: bool | None = None,
) -> DependencyEdge:
    """Change the kind, description or active flag of an existing edge in place.

    Arguments left as None are not changed. When the edge ends up active with
    a kind that must stay acyclic, and either the kind or the flag changed,
    the cycle rule is checked again as if the edge were being added.

    Raises:
        NotFoundError: the ordered pair has no edge.
        ValidationError: unknown kind.
        CircularDependencyError: the updated edge would close a loop.
    """
    get_adapter(graph)
    if kind is not None:
        _validate_kind(kind)

    try:
        _lock_graph(graph)
        edge = _edge(graph, prerequisite_id, dependent_id)
        if edge is None:
            raise NotFoundError("DependencyEdge", f"{graph}:{prerequisite_id}->{dependent_id}")

        new_kind = kind if kind is not None else edge.dependency_type
        new_active = is_active if is_active is not None else edge.is_active
        topology_changed = new_kind != edge.dependency_type or new_active != edge.is_active
        if topology_changed and new_active and would_create_cycle(
            graph, prerequisite_id, dependent_id, new_kind,
        ):
            logger.warning(
                "Rejected update of edge %s -> %s to %s: cycle", prerequisite_id, dependent_id, new_kind,
                extra={"event_type": "edge_rejected", "graph": graph,
                       "prerequisite_id": prerequisite_id, "dependent_id": dependent_id},
            )
            raise CircularDependencyError(graph, prerequisite_id, dependent_id)

        edge.dependency_type = new_kind
        edge.is_active = new_active
        if description is not None:
            edge.description = description
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Dependency edge updated",
        extra={"event_type": "edge_updated", "graph": graph, "prerequisite_id": prerequisite_id,
               "dependent_id": dependent_id, "dependency_type": new_kind},
    )
    return edge


def purge_nodes(graph: str, node_ids) -> int:
    """Delete every edge touching *node_ids*. Does not commit."""
    ids = list(node_ids)
    if not ids:
        return 0
    result = db.session.execute(
        delete(DependencyEdge).where(
            DependencyEdge.graph == graph,
            or_(DependencyEdge.prerequisite_id.in_(ids), DependencyEdge.dependent_id.in_(ids)),
        )
    )
    return result.rowcount or 0


# ── Queries ──────────────────────────────────────────────────────────────────


def _neighbours(graph: str, node_id: int, kind: str | None, upstream: bool) -> list[int]:
    get_adapter(graph).require(node_id)
    if upstream:
        column, anchor = DependencyEdge.prerequisite_id, DependencyEdge.dependent_id
    else:
        column, anchor = DependencyEdge.dependent_id, DependencyEdge.prerequisite_id
    stmt = select(column).where(
        DependencyEdge.graph == graph, anchor == node_id, DependencyEdge.is_active.is_(True),
    )
    if kind is not None:
        stmt = stmt.where(DependencyEdge.dependency_type == _validate_kind(kind))
    return sorted(db.session.execute(stmt).scalars())


def get_downstream(graph: str, node_id: int, kind: str | None = None) -> list[int]:
    """Direct dependents of *node_id*, optionally of one edge kind."""
    return _neighbours(graph, node_id, kind, upstream=False)


def get_upstream(graph: str, node_id: int, kind: str | None = None) -> list[int]:
    """Direct prerequisites of *node_id*, optionally of one edge kind."""
    return _neighbours(graph, node_id, kind, upstream=True)


def get_blockers(graph: str, node_id: int) -> list[int]:
    return get_upstream(graph, node_id, "blocks")


def get_blocked(graph: str, node_id: int) -> list[int]:
    return get_downstream(graph, node_id, "blocks")


def can_start(graph: str, node_id: int, status_lookup=None) -> bool:
    """True iff every "blocks" prerequisite of *node_id* has status "completed".

    *status_lookup* maps an iterable of ids to {id: status}; the graph
    adapter's own lookup is used when omitted.
    """
    blockers = get_blockers(graph, node_id)
    if not blockers:
        return True
    lookup = status_lookup or get_adapter(graph).statuses
    statuses = lookup(blockers)
    return all(statuses.get(blocker_id) == "completed" for blocker_id in blockers)


def get_full_chain(graph: str, node_id: int) -> set[int]:
    """Every transitive prerequisite of *node_id*, over all edge kinds."""
    get_adapter(graph).require(node_id)
    chain = reachable(load_adjacency(graph, reverse=True), node_id)
    chain.discard(node_id)
    return chain


def get_edges_for(graph: str, node_id: int, include_inactive: bool = False) -> dict:
    get_adapter(graph).require(node_id)
    stmt = (
        select(DependencyEdge)
        .where(
            DependencyEdge.graph == graph,
            or_(DependencyEdge.prerequisite_id == node_id, DependencyEdge.dependent_id == node_id),
        )
        .order_by(DependencyEdge.id)
    )
    if not include_inactive:
        stmt = stmt.where(DependencyEdge.is_active.is_(True))
    result = {"prerequisites": [], "dependents": []}
    for edge in db.session.execute(stmt).scalars():
        bucket = "prerequisites" if edge.dependent_id == node_id else "dependents"
        result[bucket].append(edge.to_dict())
    return result
