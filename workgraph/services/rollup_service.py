"""
Workstream rollup aggregation.

aggregate() reports, for a workstream and its whole subtree:
    summary: releases and checklist tasks counted by status, plus
        completion_percentage over tasks
    child_workstreams: the same counts for each immediate child, computed
        over that child's own subtree
    releases: release list with task counts

The query count is fixed regardless of subtree size: one CTE for the subtree,
grouped counts for releases and tasks, one CTE that tags every descendant
with the immediate child it sits under, and grouped counts over that.

Results are cached under the "rollup" view. Any write that changes a status
in the subtree must call hierarchy_service.invalidate_with_ancestors on the
owning workstream.
"""

import logging
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from workgraph.models import db
from workgraph.models.release import ASSIGNMENT_STATUSES, RELEASE_STATUSES, ChecklistAssignment, Release
from workgraph.models.workstream import Workstream
from workgraph.services import cache_service
from workgraph.services.hierarchy_service import get_descendant_ids, get_workstream

logger = logging.getLogger(__name__)


def completion_percentage(completed: int, total: int) -> float:
    return round(completed / total * 100, 1) if total > 0 else 0.0


def _zeroed(statuses):
    return {status: 0 for status in sorted(statuses)}


def _child_subtree_cte(workstream_id: int):
    """(id, top_id) for every node under *workstream_id*; top_id is the immediate child above it."""
    child = aliased(Workstream)
    tagged = (
        select(Workstream.id.label("id"), Workstream.id.label("top_id"))
        .where(Workstream.parent_workstream_id == workstream_id)
        .cte(name="child_subtrees", recursive=True)
    )
    return tagged.union(
        select(child.id, tagged.c.top_id).where(child.parent_workstream_id == tagged.c.id)
    )


def _child_breakdown(ws: Workstream) -> list[dict]:
    children = list(db.session.execute(
        select(Workstream)
        .where(Workstream.parent_workstream_id == ws.id)
        .order_by(Workstream.id)
    ).scalars())
    if not children:
        return []

    tagged = _child_subtree_cte(ws.id)
    release_counts = dict(db.session.execute(
        select(tagged.c.top_id, func.count(Release.id))
        .select_from(tagged)
        .join(Release, Release.workstream_id == tagged.c.id)
        .group_by(tagged.c.top_id)
    ).all())

    task_counts = defaultdict(lambda: {"total": 0, "completed": 0})
    rows = db.session.execute(
        select(tagged.c.top_id, ChecklistAssignment.status, func.count(ChecklistAssignment.id))
        .select_from(tagged)
        .join(Release, Release.workstream_id == tagged.c.id)
        .join(ChecklistAssignment, ChecklistAssignment.release_id == Release.id)
        .group_by(tagged.c.top_id, ChecklistAssignment.status)
    )
    for top_id, status, count in rows:
        task_counts[top_id]["total"] += count
        if status == "completed":
            task_counts[top_id]["completed"] += count

    breakdown = []
    for child in children:
        tasks = task_counts[child.id]
        breakdown.append({
            "workstream_id": child.id,
            "workstream_name": child.name,
            "type": child.type,
            "status": child.status,
            "releases_count": release_counts.get(child.id, 0),
            "tasks_count": tasks["total"],
            "completion_percentage": completion_percentage(tasks["completed"], tasks["total"]),
        })
    return breakdown


def _aggregate(workstream_id: int) -> dict:
    ws = get_workstream(workstream_id)
    scope = [ws.id, *get_descendant_ids(ws.id)]

    releases_by_status = _zeroed(RELEASE_STATUSES)
    for status, count in db.session.execute(
        select(Release.status, func.count(Release.id))
        .where(Release.workstream_id.in_(scope))
        .group_by(Release.status)
    ):
        releases_by_status[status] = count

    tasks_by_status = _zeroed(ASSIGNMENT_STATUSES)
    for status, count in db.session.execute(
        select(ChecklistAssignment.status, func.count(ChecklistAssignment.id))
        .join(Release, ChecklistAssignment.release_id == Release.id)
        .where(Release.workstream_id.in_(scope))
        .group_by(ChecklistAssignment.status)
    ):
        tasks_by_status[status] = count

    total_tasks = sum(tasks_by_status.values())

    tasks_per_release = dict(db.session.execute(
        select(ChecklistAssignment.release_id, func.count(ChecklistAssignment.id))
        .join(Release, ChecklistAssignment.release_id == Release.id)
        .where(Release.workstream_id.in_(scope))
        .group_by(ChecklistAssignment.release_id)
    ).all())
    release_rows = db.session.execute(
        select(Release, Workstream.name)
        .join(Workstream, Release.workstream_id == Workstream.id)
        .where(Release.workstream_id.in_(scope))
        .order_by(Release.target_date, Release.id)
    ).all()
    releases = [
        {
            "id": release.id,
            "name": release.name,
            "status": release.status,
            "target_date": release.target_date.isoformat() if release.target_date else None,
            "workstream_id": release.workstream_id,
            "workstream_name": workstream_name,
            "tasks_count": tasks_per_release.get(release.id, 0),
        }
        for release, workstream_name in release_rows
    ]

    return {
        "workstream_id": ws.id,
        "workstream_name": ws.name,
        "summary": {
            "total_releases": sum(releases_by_status.values()),
            "releases_by_status": releases_by_status,
            "total_tasks": total_tasks,
            "tasks_by_status": tasks_by_status,
            "completion_percentage": completion_percentage(tasks_by_status["completed"], total_tasks),
        },
        "child_workstreams": _child_breakdown(ws),
        "releases": releases,
    }


def aggregate(workstream_id: int) -> dict:
    """Subtree rollup of *workstream_id* (cached)."""
    get_workstream(workstream_id)
    return cache_service.get_cached(
        cache_service.workstream_key("rollup", workstream_id),
        loader=lambda: _aggregate(workstream_id),
    )
