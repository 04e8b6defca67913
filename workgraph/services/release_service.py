"""
Release and checklist service.

Functions:
    - create_release / get_release / delete_release
    - set_release_status
    - reschedule_release:    move target_date, returns the delay impact report
    - create_assignment / get_assignment
    - set_assignment_status: lifecycle update; moving to in_progress is refused
                             while "blocks" prerequisites are incomplete
    - start_assignment / complete_assignment: shorthands

Every write that changes a status or a date clears the cached views of the
owning workstream and its ancestors.
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from workgraph.core.exceptions import NotFoundError, ValidationError
from workgraph.models import db
from workgraph.models.release import (
    ASSIGNMENT_PRIORITIES,
    ASSIGNMENT_STATUSES,
    NAME_MAX_LENGTH,
    RELEASE_STATUSES,
    ChecklistAssignment,
    Release,
)
from workgraph.services import dependency_graph
from workgraph.services.hierarchy_service import get_workstream, invalidate_with_ancestors
from workgraph.services.impact_service import DelayEvent, analyze_delay

logger = logging.getLogger(__name__)


def _check_choice(field: str, value: str, allowed: set) -> None:
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(allowed))}",
            details={field: value},
        )


def _required_text(field: str, value: str | None, label: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{label} {field} is required.", details={field: "required"})
    if len(value) > NAME_MAX_LENGTH:
        raise ValidationError(
            f"{label} {field} must be ≤ {NAME_MAX_LENGTH} characters.", details={field: "too_long"},
        )
    return value


def _commit() -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


# ── Releases ─────────────────────────────────────────────────────────────────


def get_release(release_id: int) -> Release:
    release = db.session.get(Release, release_id)
    if release is None:
        raise NotFoundError("Release", release_id)
    return release


def create_release(
    workstream_id: int,
    name: str,
    *,
    target_date: date | None = None,
    version: str | None = None,
    status: str = "planned",
    description: str | None = None,
) -> Release:
    get_workstream(workstream_id)
    name = _required_text("name", name, "Release")
    _check_choice("status", status, RELEASE_STATUSES)

    release = Release(
        workstream_id=workstream_id,
        name=name,
        version=version,
        description=description,
        target_date=target_date,
        status=status,
    )
    db.session.add(release)
    _commit()
    invalidate_with_ancestors(workstream_id)
    logger.info(
        "Release created",
        extra={"event_type": "release_created", "workstream_id": workstream_id, "node_id": release.id},
    )
    return release


def set_release_status(release_id: int, status: str) -> Release:
    _check_choice("status", status, RELEASE_STATUSES)
    release = get_release(release_id)
    release.status = status
    _commit()
    invalidate_with_ancestors(release.workstream_id)
    return release


def reschedule_release(release_id: int, new_target_date: date) -> dict:
    """Move a release's target date and report the downstream impact.

    Raises:
        ValidationError: the release has no target date to move from.
    """
    release = get_release(release_id)
    if release.target_date is None:
        raise ValidationError(
            "Release has no target date; set one before rescheduling.",
            details={"release_id": release_id},
        )
    event = DelayEvent(node_id=release.id, original_date=release.target_date, new_date=new_target_date)
    release.target_date = new_target_date
    _commit()
    invalidate_with_ancestors(release.workstream_id)

    logger.info(
        "Release rescheduled by %d day(s)", event.delay_days,
        extra={"event_type": "release_rescheduled", "workstream_id": release.workstream_id,
               "graph": "release", "node_id": release.id},
    )
    return analyze_delay("release", event)


def delete_release(release_id: int) -> None:
    release = get_release(release_id)
    workstream_id = release.workstream_id
    assignment_ids = list(db.session.execute(
        select(ChecklistAssignment.id).where(ChecklistAssignment.release_id == release_id)
    ).scalars())
    dependency_graph.purge_nodes("release", [release_id])
    dependency_graph.purge_nodes("checklist", assignment_ids)
    db.session.delete(release)
    _commit()
    invalidate_with_ancestors(workstream_id)


# ── Checklist assignments ────────────────────────────────────────────────────


def get_assignment(assignment_id: int) -> ChecklistAssignment:
    assignment = db.session.get(ChecklistAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError("ChecklistAssignment", assignment_id)
    return assignment


def create_assignment(
    release_id: int,
    title: str,
    *,
    assignee_id: int | None = None,
    due_date: date | None = None,
    priority: str = "medium",
    status: str = "pending",
) -> ChecklistAssignment:
    release = get_release(release_id)
    title = _required_text("title", title, "Assignment")
    _check_choice("priority", priority, ASSIGNMENT_PRIORITIES)
    _check_choice("status", status, ASSIGNMENT_STATUSES)

    assignment = ChecklistAssignment(
        release_id=release.id,
        title=title,
        assignee_id=assignee_id,
        due_date=due_date,
        priority=priority,
        status=status,
    )
    db.session.add(assignment)
    _commit()
    invalidate_with_ancestors(release.workstream_id)
    return assignment


def set_assignment_status(assignment_id: int, status: str) -> ChecklistAssignment:
    """Change an assignment's status.

    Raises:
        ValidationError: unknown status, or in_progress requested while a
            "blocks" prerequisite is not completed (details list the blockers).
    """
    _check_choice("status", status, ASSIGNMENT_STATUSES)
    assignment = get_assignment(assignment_id)

    if status == "in_progress" and not dependency_graph.can_start("checklist", assignment_id):
        blockers = dependency_graph.get_blockers("checklist", assignment_id)
        raise ValidationError(
            "Assignment cannot start until its blocking prerequisites are completed.",
            details={"assignment_id": assignment_id, "blockers": blockers},
        )

    now = datetime.now(timezone.utc)
    if status == "in_progress" and assignment.started_at is None:
        assignment.started_at = now
    if status == "completed":
        assignment.completed_at = now
    elif assignment.completed_at is not None:
        assignment.completed_at = None
    assignment.status = status
    _commit()

    workstream_id = assignment.release.workstream_id
    invalidate_with_ancestors(workstream_id)
    logger.info(
        "Assignment moved to %s", status,
        extra={"event_type": "assignment_status", "workstream_id": workstream_id,
               "graph": "checklist", "node_id": assignment_id},
    )
    return assignment


def start_assignment(assignment_id: int) -> ChecklistAssignment:
    return set_assignment_status(assignment_id, "in_progress")


def complete_assignment(assignment_id: int) -> ChecklistAssignment:
    return set_assignment_status(assignment_id, "completed")
