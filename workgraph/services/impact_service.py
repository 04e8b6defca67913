"""
Delay impact and critical path analysis over a dependency graph.

analyze_delay
    Breadth-first walk downstream of a delayed node over every edge kind.
    A reached node's severity comes from the strongest edge entering it from
    the reached set: blocks → high, enables → medium, informs → low. Delays
    are not compounded: each affected node is pushed by the trigger's delay.

critical_path
    Longest chain of "blocks" edges through a set of nodes. Enables and
    informs edges never extend a critical path.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import select

from workgraph.core.exceptions import CycleDetectedError, NodeNotFoundError
from workgraph.models import db
from workgraph.models.dependency import EDGE_KIND_STRENGTH
from workgraph.models.release import CLOSED_STATUSES, Release
from workgraph.services.dependency_graph import get_adapter, load_adjacency, reachable
from workgraph.services.hierarchy_service import get_descendant_ids

logger = logging.getLogger(__name__)

SEVERITY_BY_KIND = {"blocks": "high", "enables": "medium", "informs": "low"}

SEVERITY_ORDER = ("high", "medium", "low")

BOTTLENECK_FAN_OUT = 2


@dataclass(frozen=True)
class DelayEvent:
    node_id: int
    original_date: date
    new_date: date

    @property
    def delay_days(self) -> int:
        return (self.new_date - self.original_date).days


def _iso(value):
    return value.isoformat() if value else None


# ── Delay propagation ────────────────────────────────────────────────────────


def analyze_delay(graph: str, event: DelayEvent) -> dict:
    """Report which nodes a delay of *event* reaches, and how hard.

    Returns:
        {
          "graph", "delayed_node": {id, name, original_target_date, new_target_date, delay_days},
          "affected": [{node_id, name, dependency_type, impact_severity, delay_days,
                        current_target_date, recommended_new_date, ...summary extras}],
          "total_affected", "severity_summary": {high, medium, low},
          "critical_path_nodes": ids reachable from the trigger through blocks edges only,
        }
    """
    adapter = get_adapter(graph)
    summaries = adapter.describe([event.node_id])
    if event.node_id not in summaries:
        raise NodeNotFoundError(adapter.label, event.node_id)

    delay = event.delay_days
    report = {
        "graph": graph,
        "delayed_node": {
            "id": event.node_id,
            "name": summaries[event.node_id]["name"],
            "original_target_date": _iso(event.original_date),
            "new_target_date": _iso(event.new_date),
            "delay_days": delay,
        },
        "affected": [],
        "total_affected": 0,
        "severity_summary": {severity: 0 for severity in SEVERITY_ORDER},
        "critical_path_nodes": [],
    }
    if delay <= 0:
        return report

    adjacency = load_adjacency(graph)
    strongest_kind: dict[int, str] = {}
    order = []
    visited = {event.node_id}
    queue = deque([event.node_id])
    while queue:
        current = queue.popleft()
        for dependent, kind in adjacency.get(current, ()):
            if dependent == event.node_id:
                continue
            previous = strongest_kind.get(dependent)
            if previous is None or EDGE_KIND_STRENGTH[kind] > EDGE_KIND_STRENGTH[previous]:
                strongest_kind[dependent] = kind
            if dependent not in visited:
                visited.add(dependent)
                order.append(dependent)
                queue.append(dependent)

    described = adapter.describe(order)
    affected = []
    for node_id in order:
        summary = dict(described.get(node_id, {"id": node_id, "name": None, "target_date": None}))
        kind = strongest_kind[node_id]
        current_date = summary.pop("target_date", None)
        summary.pop("id", None)
        entry = {
            "node_id": node_id,
            "name": summary.pop("name", None),
            "dependency_type": kind,
            "impact_severity": SEVERITY_BY_KIND[kind],
            "delay_days": delay,
            "current_target_date": _iso(current_date),
            "recommended_new_date": _iso(current_date + timedelta(days=delay)) if current_date else None,
        }
        entry.update(summary)
        affected.append(entry)

    # Stable within a severity: BFS order (nearest first)
    affected.sort(key=lambda e: SEVERITY_ORDER.index(e["impact_severity"]))
    for entry in affected:
        report["severity_summary"][entry["impact_severity"]] += 1

    blocks_only = {
        node: [(n, k) for n, k in neighbours if k == "blocks"]
        for node, neighbours in adjacency.items()
    }
    report["affected"] = affected
    report["total_affected"] = len(affected)
    report["critical_path_nodes"] = sorted(reachable(blocks_only, event.node_id) - {event.node_id})

    logger.info(
        "Delay impact analysed: %d node(s) affected", len(affected),
        extra={"event_type": "delay_analysed", "graph": graph, "node_id": event.node_id},
    )
    return report


# ── Critical path ────────────────────────────────────────────────────────────


def _topological_order(nodes: set[int], forward: dict) -> list[int]:
    """Kahn's algorithm restricted to *nodes*."""
    indegree = {n: 0 for n in nodes}
    for n in nodes:
        for dependent, _ in forward.get(n, ()):
            if dependent in indegree:
                indegree[dependent] += 1
    ready = sorted(n for n, deg in indegree.items() if deg == 0)
    order = []
    while ready:
        current = ready.pop(0)
        order.append(current)
        for dependent, _ in forward.get(current, ()):
            if dependent not in indegree:
                continue
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                ready.append(dependent)
    if len(order) != len(nodes):
        stuck = min(n for n, deg in indegree.items() if deg > 0)
        raise CycleDetectedError(stuck, stuck)
    return order


def _empty_path_report(graph):
    return {
        "graph": graph,
        "critical_path": [],
        "total_duration_days": 0,
        "risk_level": "low",
        "bottlenecks": [],
    }


def critical_path(graph: str, node_ids, *, delays=(), today: date | None = None) -> dict:
    """Longest blocks-only chain passing through at least one of *node_ids*.

    Args:
        graph: dependency graph key.
        node_ids: candidate nodes; the chain may extend beyond them.
        delays: DelayEvents currently in force.
        today: reference date for overdue detection (defaults to today).

    Returns:
        {graph, critical_path: [{node_id, name, target_date, status,
         dependencies_count, position_in_path}], total_duration_days,
         risk_level: high | medium | low, bottlenecks: [{node_id, issue_type, description}]}

    Ties between equally long chains go to the lowest node ids. Raises
    NodeNotFoundError when any of *node_ids* has no row.
    """
    adapter = get_adapter(graph)
    seeds = sorted(set(node_ids))
    if not seeds:
        return _empty_path_report(graph)
    adapter.require(*seeds)

    forward = load_adjacency(graph, kinds=("blocks",))
    backward = load_adjacency(graph, kinds=("blocks",), reverse=True)

    relevant = set(seeds)
    for seed in seeds:
        relevant |= reachable(forward, seed)
        relevant |= reachable(backward, seed)

    order = _topological_order(relevant, forward)
    longest_to = {}
    for node in order:
        longest_to[node] = 1 + max(
            (longest_to[p] for p, _ in backward.get(node, ()) if p in longest_to), default=0,
        )
    longest_from = {}
    for node in reversed(order):
        longest_from[node] = 1 + max(
            (longest_from[d] for d, _ in forward.get(node, ()) if d in longest_from), default=0,
        )

    pivot = max(seeds, key=lambda s: (longest_to[s] + longest_from[s], -s))

    upstream = [pivot]
    current = pivot
    while True:
        preds = [p for p, _ in backward.get(current, ()) if p in relevant]
        if not preds:
            break
        current = max(preds, key=lambda p: (longest_to[p], -p))
        upstream.append(current)
    path = list(reversed(upstream))
    current = pivot
    while True:
        succs = [d for d, _ in forward.get(current, ()) if d in relevant]
        if not succs:
            break
        current = max(succs, key=lambda d: (longest_from[d], -d))
        path.append(current)

    today = today or date.today()
    delayed_ids = {e.node_id for e in delays if e.delay_days > 0}
    described = adapter.describe(path)

    entries = []
    bottlenecks = []
    active_delay = False
    for position, node_id in enumerate(path, start=1):
        summary = described.get(node_id, {})
        target = summary.get("target_date")
        status = summary.get("status")
        name = summary.get("name")
        entries.append({
            "node_id": node_id,
            "name": name,
            "target_date": _iso(target),
            "status": status,
            "dependencies_count": len(backward.get(node_id, ())),
            "position_in_path": position,
        })

        overdue = target is not None and target < today and status not in CLOSED_STATUSES
        if node_id in delayed_ids or overdue:
            active_delay = True
            bottlenecks.append({
                "node_id": node_id,
                "issue_type": "delayed" if node_id in delayed_ids else "overdue",
                "description": f"{name} is behind its target date",
            })
        fan_out = len(forward.get(node_id, ()))
        if fan_out >= BOTTLENECK_FAN_OUT:
            bottlenecks.append({
                "node_id": node_id,
                "issue_type": "bottleneck",
                "description": f"{name} blocks {fan_out} items",
            })

    dates = [summary["target_date"] for summary in described.values() if summary.get("target_date")]
    total_duration = (max(dates) - min(dates)).days if dates else 0

    if active_delay:
        risk = "high"
    elif bottlenecks:
        risk = "medium"
    else:
        risk = "low"

    return {
        "graph": graph,
        "critical_path": entries,
        "total_duration_days": total_duration,
        "risk_level": risk,
        "bottlenecks": bottlenecks,
    }


def workstream_critical_path(workstream_id: int, *, delays=(), today: date | None = None) -> dict:
    """Critical path through the releases of a workstream's whole subtree."""
    scope = [workstream_id, *get_descendant_ids(workstream_id)]
    release_ids = db.session.execute(
        select(Release.id).where(Release.workstream_id.in_(scope))
    ).scalars()
    report = critical_path("release", list(release_ids), delays=delays, today=today)
    report["workstream_id"] = workstream_id
    return report
