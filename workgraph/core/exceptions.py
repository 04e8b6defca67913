"""
Workgraph exception hierarchy.

Three base types cover every failure a service can report:

  NotFoundError: the referenced row does not exist
  ValidationError: well-formed input that breaks a graph or business rule
  ConflictError: a uniqueness rule would be violated

The graph-specific exceptions below derive from them, so callers can catch
either the broad category or the exact rule. Every class carries a ``code``
naming the rule that was violated; it is stable and safe to expose to API
clients.

Usage:
    from workgraph.core.exceptions import NodeNotFoundError, DepthExceededError

    raise NodeNotFoundError("Workstream", 42)
    raise DepthExceededError(workstream_id=7, depth=4, max_depth=3)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Workstream", "Release").
        resource_id: The PK that was looked up.
    """

    code = "not_found"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured responses.
    """

    code = "validation_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique row.

    Args:
        resource: Model name.
        field: The unique field (or field combination) that would be duplicated.
        value: The conflicting value.
    """

    code = "conflict"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class PermissionDeniedError(Exception):
    """Raised when a principal lacks the right to perform a mutation."""

    code = "permission_denied"

    def __init__(self, principal_id: int, action: str, workstream_id: int | None = None) -> None:
        self.principal_id = principal_id
        self.action = action
        self.workstream_id = workstream_id
        msg = f"Principal {principal_id} may not {action}"
        if workstream_id is not None:
            msg += f" on workstream {workstream_id}"
        super().__init__(msg)


# ── Tree rules ───────────────────────────────────────────────────────────────


class NodeNotFoundError(NotFoundError):
    """A workstream or dependency-graph node id does not resolve to a row."""

    code = "node_not_found"


class CircularHierarchyError(ValidationError):
    """Re-parenting would make a workstream its own ancestor."""

    code = "circular_hierarchy"

    def __init__(self, workstream_id: int, proposed_parent_id: int) -> None:
        self.workstream_id = workstream_id
        self.proposed_parent_id = proposed_parent_id
        super().__init__(
            f"Workstream {proposed_parent_id} cannot become the parent of "
            f"workstream {workstream_id}: it is the node itself or one of its descendants",
            details={"workstream_id": workstream_id, "parent_workstream_id": proposed_parent_id},
        )


class DepthExceededError(ValidationError):
    code = "depth_exceeded"

    def __init__(self, workstream_id: int | None, depth: int, max_depth: int) -> None:
        self.workstream_id = workstream_id
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Hierarchy depth {depth} exceeds the maximum of {max_depth}",
            details={"workstream_id": workstream_id, "depth": depth, "max_depth": max_depth},
        )


class CannotDeleteNonLeafError(ValidationError):
    code = "cannot_delete_non_leaf"

    def __init__(self, workstream_id: int, child_count: int) -> None:
        self.workstream_id = workstream_id
        self.child_count = child_count
        super().__init__(
            f"Workstream {workstream_id} still has {child_count} child workstream(s)",
            details={"workstream_id": workstream_id, "child_count": child_count},
        )


class CycleDetectedError(Exception):
    """Stored data already contains a cycle.

    Never raised by validation of new input. Seeing it means rows were
    written around the service layer and the parent chain (or the blocks
    subgraph) needs repair.
    """

    code = "cycle_detected"

    def __init__(self, node_id: int, repeated_id: int) -> None:
        self.node_id = node_id
        self.repeated_id = repeated_id
        super().__init__(f"Cycle detected while walking from {node_id}: {repeated_id} was revisited")


# ── Dependency graph rules ───────────────────────────────────────────────────


class SelfDependencyError(ValidationError):
    code = "self_dependency"

    def __init__(self, graph: str, node_id: int) -> None:
        self.graph = graph
        self.node_id = node_id
        super().__init__(
            f"{graph} node {node_id} cannot depend on itself",
            details={"graph": graph, "node_id": node_id},
        )


class CircularDependencyError(ValidationError):
    code = "circular_dependency"

    def __init__(self, graph: str, prerequisite_id: int, dependent_id: int) -> None:
        self.graph = graph
        self.prerequisite_id = prerequisite_id
        self.dependent_id = dependent_id
        super().__init__(
            f"Edge {prerequisite_id} -> {dependent_id} would close a cycle in the {graph} graph",
            details={
                "graph": graph,
                "prerequisite_id": prerequisite_id,
                "dependent_id": dependent_id,
            },
        )


class DuplicateEdgeError(ConflictError):
    code = "duplicate_edge"

    def __init__(self, graph: str, prerequisite_id: int, dependent_id: int) -> None:
        self.graph = graph
        self.prerequisite_id = prerequisite_id
        self.dependent_id = dependent_id
        super().__init__("DependencyEdge", f"{graph}:prerequisite->dependent",
                         f"{prerequisite_id}->{dependent_id}")
