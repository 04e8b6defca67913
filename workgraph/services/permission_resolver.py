"""
Workstream permission resolver.

Effective rights of a principal on a workstream are the union of:
    - direct grants on the workstream itself (any scope)
    - grants on any ancestor whose scope is "workstream_and_children"
closed under the kind order admin ⊇ edit ⊇ view.

The owner of a workstream always passes has_permission on it. Granting and
revoking require admin on the workstream, or ownership of the workstream or
any of its ancestors.

Resolved permissions are cached per (workstream, principal) under the
"permissions" view; grant/revoke clear the workstream and its subtree.
"""

import enum
import logging
from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from workgraph.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from workgraph.models import db
from workgraph.models.workstream import (
    PERMISSION_SCOPES,
    SCOPE_NODE_ONLY,
    SCOPE_WITH_DESCENDANTS,
    WorkstreamPermission,
)
from workgraph.services import cache_service
from workgraph.services.hierarchy_service import (
    get_ancestors,
    get_descendant_ids,
    get_workstream,
)

logger = logging.getLogger(__name__)


class PermissionKind(enum.IntEnum):
    """Totally ordered permission kinds; a stronger kind implies the weaker ones."""

    VIEW = 1
    EDIT = 2
    ADMIN = 3

    @classmethod
    def parse(cls, value) -> "PermissionKind":
        if isinstance(value, cls):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ValidationError(
                f"Unknown permission type {value!r}; expected one of: view, edit, admin",
                details={"permission_type": value},
            ) from None

    @property
    def label(self) -> str:
        return self.name.lower()

    def at_least(self, required) -> bool:
        return self >= PermissionKind.parse(required)

    def implied(self) -> list["PermissionKind"]:
        """This kind and every weaker one, weakest first."""
        return [kind for kind in PermissionKind if kind <= self]


def is_at_least(granted, required) -> bool:
    """The single comparison used for every permission check."""
    return PermissionKind.parse(granted).at_least(required)


# ── Resolution ───────────────────────────────────────────────────────────────


def _resolve(workstream_id: int, principal_id: int) -> dict:
    ancestors = get_ancestors(workstream_id)
    chain_ids = [workstream_id, *(a.id for a in ancestors)]
    grants = db.session.execute(
        select(WorkstreamPermission).where(
            WorkstreamPermission.workstream_id.in_(chain_ids),
            WorkstreamPermission.user_id == principal_id,
        )
    ).scalars()

    by_workstream = defaultdict(list)
    for grant in grants:
        by_workstream[grant.workstream_id].append(grant)

    direct = sorted(
        {PermissionKind.parse(g.permission_type) for g in by_workstream[workstream_id]}
    )

    inherited = []
    recorded = set()
    for ancestor in ancestors:  # nearest first: provenance is the closest grant
        cascading = sorted(
            (PermissionKind.parse(g.permission_type) for g in by_workstream[ancestor.id] if g.cascades),
            reverse=True,
        )
        for kind in cascading:
            if kind in recorded:
                continue
            recorded.add(kind)
            inherited.append({
                "permission_type": kind.label,
                "inherited_from_workstream_id": ancestor.id,
                "inherited_from_workstream_name": ancestor.name,
            })

    strongest = max([*direct, *recorded], default=None)
    effective = [k.label for k in strongest.implied()] if strongest is not None else []

    return {
        "workstream_id": workstream_id,
        "principal_id": principal_id,
        "direct": [k.label for k in direct],
        "inherited": inherited,
        "effective": effective,
    }


def resolve_permissions(workstream_id: int, principal_id: int) -> dict:
    """Direct, inherited and effective permissions of *principal_id* on a workstream.

    A principal with no grants gets empty lists; only an unknown workstream
    raises (NodeNotFoundError).
    """
    get_workstream(workstream_id)
    return cache_service.get_cached(
        cache_service.workstream_key("permissions", workstream_id, principal_id),
        loader=lambda: _resolve(workstream_id, principal_id),
    )


def has_permission(workstream_id: int, principal_id: int, required="view") -> bool:
    required = PermissionKind.parse(required)
    ws = get_workstream(workstream_id)
    if ws.owner_id is not None and ws.owner_id == principal_id:
        return True
    effective = resolve_permissions(workstream_id, principal_id)["effective"]
    return any(is_at_least(kind, required) for kind in effective)


def can_manage_permissions(workstream_id: int, principal_id: int) -> bool:
    """Admin on the workstream, or owner of it or of any ancestor."""
    if has_permission(workstream_id, principal_id, PermissionKind.ADMIN):
        return True
    return any(a.owner_id == principal_id for a in get_ancestors(workstream_id))


def list_grants(workstream_id: int) -> list[dict]:
    get_workstream(workstream_id)
    stmt = (
        select(WorkstreamPermission)
        .where(WorkstreamPermission.workstream_id == workstream_id)
        .order_by(WorkstreamPermission.user_id, WorkstreamPermission.id)
    )
    return [g.to_dict() for g in db.session.execute(stmt).scalars()]


# ── Grant / revoke ───────────────────────────────────────────────────────────


def _invalidate_subtree(workstream_id: int) -> None:
    cache_service.invalidate_workstreams([workstream_id, *get_descendant_ids(workstream_id)])


def grant_permission(
    workstream_id: int,
    principal_id: int,
    permission_type: str,
    scope: str = SCOPE_NODE_ONLY,
    *,
    granted_by: int,
) -> WorkstreamPermission:
    """Grant *permission_type* on a workstream to *principal_id*.

    Raises:
        NodeNotFoundError: unknown workstream.
        ValidationError: unknown permission type or scope.
        PermissionDeniedError: *granted_by* may not manage permissions here.
        ConflictError: the principal already holds this kind on this workstream.
    """
    kind = PermissionKind.parse(permission_type)
    if scope not in PERMISSION_SCOPES:
        raise ValidationError(
            f"scope must be one of: {SCOPE_NODE_ONLY}, {SCOPE_WITH_DESCENDANTS}",
            details={"scope": scope},
        )
    get_workstream(workstream_id)
    if not can_manage_permissions(workstream_id, granted_by):
        raise PermissionDeniedError(granted_by, "grant permissions", workstream_id)

    conflict = ConflictError(
        "WorkstreamPermission", "workstream_id/user_id/permission_type",
        f"{workstream_id}/{principal_id}/{kind.label}",
    )
    existing = db.session.execute(
        select(WorkstreamPermission.id).where(
            WorkstreamPermission.workstream_id == workstream_id,
            WorkstreamPermission.user_id == principal_id,
            WorkstreamPermission.permission_type == kind.label,
        )
    ).first()
    if existing:
        raise conflict

    grant = WorkstreamPermission(
        workstream_id=workstream_id,
        user_id=principal_id,
        permission_type=kind.label,
        scope=scope,
        granted_by=granted_by,
    )
    db.session.add(grant)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise conflict from None
    except SQLAlchemyError:
        db.session.rollback()
        raise

    _invalidate_subtree(workstream_id)
    logger.info(
        "Permission %s granted (%s)", kind.label, scope,
        extra={"event_type": "permission_granted", "workstream_id": workstream_id,
               "principal_id": principal_id},
    )
    return grant


def revoke_permission(grant_id: int, *, revoked_by: int) -> None:
    grant = db.session.get(WorkstreamPermission, grant_id)
    if grant is None:
        raise NotFoundError("WorkstreamPermission", grant_id)
    workstream_id = grant.workstream_id
    if not can_manage_permissions(workstream_id, revoked_by):
        raise PermissionDeniedError(revoked_by, "revoke permissions", workstream_id)

    principal_id = grant.user_id
    try:
        db.session.delete(grant)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    _invalidate_subtree(workstream_id)
    logger.info(
        "Permission revoked",
        extra={"event_type": "permission_revoked", "workstream_id": workstream_id,
               "principal_id": principal_id},
    )
