"""
Tests for the typed dependency graph.

Covers:
    1.  Self-dependency rejected for every edge kind
    2.  Direct reverse edge rejected as a cycle
    3.  Transitive cycle rejected (A→B→C, then C→A)
    4.  Diamond pattern accepted (not a cycle)
    5.  Duplicate ordered pair rejected regardless of kind
    6.  Unknown endpoint / unknown graph / unknown kind
    7.  Blockers and can_start over "blocks" edges only
    8.  Custom status lookup for can_start
    9.  Full prerequisite chain and direct neighbours
   10.  Acyclic kinds are configurable
   11.  Edge removal unblocks the dependent
   12.  Releases and checklist assignments are separate graphs
   13.  Reads on a missing node raise NodeNotFoundError
   14.  update_edge: deactivation hides an edge, reactivation and kind changes re-check cycles
"""

import pytest

from workgraph.core.exceptions import (
    CircularDependencyError,
    DuplicateEdgeError,
    NodeNotFoundError,
    NotFoundError,
    SelfDependencyError,
    ValidationError,
)
from workgraph.models.dependency import EDGE_KINDS
from workgraph.services import dependency_graph


@pytest.fixture()
def releases(tree, make_release):
    root, _, _ = tree
    return [make_release(root, name=f"R{i}") for i in range(1, 6)]


@pytest.fixture()
def tasks(tree, make_release, make_assignment):
    root, _, _ = tree
    release = make_release(root, name="Checklist release")
    return [make_assignment(release, title=f"T{i}") for i in range(1, 5)]


class TestAddEdge:
    @pytest.mark.parametrize("kind", EDGE_KINDS)
    def test_self_dependency_rejected(self, releases, kind):
        a = releases[0]
        with pytest.raises(SelfDependencyError) as exc:
            dependency_graph.add_edge("release", a.id, a.id, kind)
        assert exc.value.code == "self_dependency"

    def test_reverse_edge_is_a_cycle(self, releases):
        a, b = releases[:2]
        dependency_graph.add_edge("release", a.id, b.id, "blocks")
        with pytest.raises(CircularDependencyError):
            dependency_graph.add_edge("release", b.id, a.id, "blocks")

    def test_transitive_cycle(self, releases):
        a, b, c = releases[:3]
        dependency_graph.add_edge("release", a.id, b.id, "blocks")
        dependency_graph.add_edge("release", b.id, c.id, "blocks")
        with pytest.raises(CircularDependencyError):
            dependency_graph.add_edge("release", c.id, a.id, "blocks")
        assert dependency_graph.get_full_chain("release", c.id) == {a.id, b.id}

    def test_cycle_through_mixed_kinds_rejected_by_default(self, releases):
        a, b, c = releases[:3]
        dependency_graph.add_edge("release", a.id, b.id, "enables")
        dependency_graph.add_edge("release", b.id, c.id, "informs")
        with pytest.raises(CircularDependencyError):
            dependency_graph.add_edge("release", c.id, a.id, "blocks")

    def test_diamond_is_not_a_cycle(self, releases):
        a, b, c, d = releases[:4]
        dependency_graph.add_edge("release", a.id, b.id)
        dependency_graph.add_edge("release", a.id, c.id)
        dependency_graph.add_edge("release", b.id, d.id)
        dependency_graph.add_edge("release", c.id, d.id)
        assert dependency_graph.get_full_chain("release", d.id) == {a.id, b.id, c.id}

    def test_long_chain_no_false_positive(self, releases):
        for prereq, dependent in zip(releases, releases[1:]):
            dependency_graph.add_edge("release", prereq.id, dependent.id)
        # a shortcut in the same direction is fine
        dependency_graph.add_edge("release", releases[0].id, releases[-1].id, "informs")
        assert len(dependency_graph.get_full_chain("release", releases[-1].id)) == 4

    def test_duplicate_pair_rejected_regardless_of_kind(self, releases):
        a, b = releases[:2]
        dependency_graph.add_edge("release", a.id, b.id, "blocks")
        with pytest.raises(DuplicateEdgeError):
            dependency_graph.add_edge("release", a.id, b.id, "informs")

    def test_unknown_endpoint(self, releases):
        with pytest.raises(NodeNotFoundError):
            dependency_graph.add_edge("release", releases[0].id, 9999)

    def test_unknown_graph_and_kind(self, releases):
        a, b = releases[:2]
        with pytest.raises(ValidationError, match="Unknown dependency graph"):
            dependency_graph.add_edge("milestone", a.id, b.id)
        with pytest.raises(ValidationError, match="dependency_type must be one of"):
            dependency_graph.add_edge("release", a.id, b.id, "requires")

    def test_acyclic_kinds_configurable(self, app, releases):
        a, b = releases[:2]
        app.config["DEPENDENCY_ACYCLIC_KINDS"] = ("blocks",)
        try:
            dependency_graph.add_edge("release", a.id, b.id, "informs")
            edge = dependency_graph.add_edge("release", b.id, a.id, "informs")
            assert edge.dependency_type == "informs"
            c, d = releases[2:4]
            dependency_graph.add_edge("release", c.id, d.id, "blocks")
            with pytest.raises(CircularDependencyError):
                dependency_graph.add_edge("release", d.id, c.id, "blocks")
        finally:
            app.config["DEPENDENCY_ACYCLIC_KINDS"] = EDGE_KINDS

    def test_graphs_are_independent(self, releases, tasks):
        """Ids of releases and tasks may coincide; edges never cross graphs."""
        dependency_graph.add_edge("checklist", tasks[0].id, tasks[1].id)
        assert dependency_graph.get_downstream("release", tasks[0].id) == []
        assert dependency_graph.get_downstream("checklist", tasks[0].id) == [tasks[1].id]


class TestQueries:
    def test_blockers_only_count_blocks_edges(self, tasks):
        t1, t2, t3, t4 = tasks
        dependency_graph.add_edge("checklist", t1.id, t4.id, "blocks")
        dependency_graph.add_edge("checklist", t2.id, t4.id, "enables")
        dependency_graph.add_edge("checklist", t3.id, t4.id, "informs")
        assert dependency_graph.get_blockers("checklist", t4.id) == [t1.id]
        assert dependency_graph.get_upstream("checklist", t4.id) == [t1.id, t2.id, t3.id]
        assert dependency_graph.get_downstream("checklist", t1.id, "blocks") == [t4.id]
        assert dependency_graph.get_blocked("checklist", t2.id) == []

    def test_can_start_requires_completed_blockers(self, tasks):
        from workgraph.models import db

        t1, t2, t3, _ = tasks
        dependency_graph.add_edge("checklist", t1.id, t3.id, "blocks")
        dependency_graph.add_edge("checklist", t2.id, t3.id, "enables")
        assert dependency_graph.can_start("checklist", t3.id) is False

        t1.status = "completed"
        db.session.commit()
        assert dependency_graph.can_start("checklist", t3.id) is True

    def test_standalone_node_can_start(self, tasks):
        assert dependency_graph.can_start("checklist", tasks[0].id) is True

    def test_custom_status_lookup(self, tasks):
        t1, t2, _, _ = tasks
        dependency_graph.add_edge("checklist", t1.id, t2.id)
        assert dependency_graph.can_start(
            "checklist", t2.id, status_lookup=lambda ids: {i: "completed" for i in ids},
        ) is True
        assert dependency_graph.can_start(
            "checklist", t2.id, status_lookup=lambda ids: {},
        ) is False

    def test_remove_edge_unblocks(self, tasks):
        t1, t2, _, _ = tasks
        dependency_graph.add_edge("checklist", t1.id, t2.id)
        assert dependency_graph.can_start("checklist", t2.id) is False
        dependency_graph.remove_edge("checklist", t1.id, t2.id)
        assert dependency_graph.can_start("checklist", t2.id) is True
        with pytest.raises(NotFoundError):
            dependency_graph.remove_edge("checklist", t1.id, t2.id)

    def test_edges_for_node(self, tasks):
        t1, t2, t3, _ = tasks
        dependency_graph.add_edge("checklist", t1.id, t2.id, description="schema first")
        dependency_graph.add_edge("checklist", t2.id, t3.id, "informs")
        edges = dependency_graph.get_edges_for("checklist", t2.id)
        assert [e["prerequisite_id"] for e in edges["prerequisites"]] == [t1.id]
        assert edges["prerequisites"][0]["description"] == "schema first"
        assert [e["dependent_id"] for e in edges["dependents"]] == [t3.id]

    def test_full_chain_excludes_self_and_unrelated(self, releases):
        a, b, c, d, e = releases
        dependency_graph.add_edge("release", a.id, b.id)
        dependency_graph.add_edge("release", b.id, c.id, "informs")
        dependency_graph.add_edge("release", d.id, e.id)
        assert dependency_graph.get_full_chain("release", c.id) == {a.id, b.id}
        assert dependency_graph.get_full_chain("release", a.id) == set()


class TestUnknownNodes:
    @pytest.mark.parametrize("query", [
        dependency_graph.get_downstream,
        dependency_graph.get_upstream,
        dependency_graph.get_blockers,
        dependency_graph.get_blocked,
        dependency_graph.get_full_chain,
        dependency_graph.get_edges_for,
    ])
    def test_queries_raise_for_missing_node(self, releases, query):
        with pytest.raises(NodeNotFoundError) as exc:
            query("release", 9999)
        assert exc.value.resource_id == 9999

    def test_can_start_missing_node_is_not_startable(self, tasks):
        with pytest.raises(NodeNotFoundError):
            dependency_graph.can_start("checklist", 9999)

    def test_existing_node_without_edges_still_empty(self, releases):
        assert dependency_graph.get_full_chain("release", releases[0].id) == set()
        assert dependency_graph.get_downstream("release", releases[0].id) == []


# ═════════════════════════════════════════════════════════════════════════════
# In-place edge updates
# ═════════════════════════════════════════════════════════════════════════════


class TestUpdateEdge:
    def test_deactivated_edge_ignored_by_queries(self, tasks):
        t1, t2, _, _ = tasks
        dependency_graph.add_edge("checklist", t1.id, t2.id)
        edge = dependency_graph.update_edge("checklist", t1.id, t2.id, is_active=False)
        assert edge.is_active is False

        assert dependency_graph.get_blockers("checklist", t2.id) == []
        assert dependency_graph.can_start("checklist", t2.id) is True
        assert dependency_graph.get_full_chain("checklist", t2.id) == set()
        assert dependency_graph.load_adjacency("checklist") == {}
        assert dependency_graph.get_edges_for("checklist", t2.id)["prerequisites"] == []
        kept = dependency_graph.get_edges_for("checklist", t2.id, include_inactive=True)
        assert [e["is_active"] for e in kept["prerequisites"]] == [False]

    def test_inactive_pair_still_counts_as_duplicate(self, tasks):
        t1, t2, _, _ = tasks
        dependency_graph.add_edge("checklist", t1.id, t2.id)
        dependency_graph.update_edge("checklist", t1.id, t2.id, is_active=False)
        with pytest.raises(DuplicateEdgeError):
            dependency_graph.add_edge("checklist", t1.id, t2.id, "informs")

    def test_deactivated_edge_does_not_close_cycles(self, releases):
        a, b, _, _, _ = releases
        dependency_graph.add_edge("release", a.id, b.id)
        dependency_graph.update_edge("release", a.id, b.id, is_active=False)
        dependency_graph.add_edge("release", b.id, a.id)

        with pytest.raises(CircularDependencyError):
            dependency_graph.update_edge("release", a.id, b.id, is_active=True)
        edge = dependency_graph.get_edges_for("release", a.id, include_inactive=True)["dependents"][0]
        assert edge["is_active"] is False

    def test_kind_change_into_checked_kinds_rechecks_cycle(self, app, releases):
        a, b, c, _, _ = releases
        app.config["DEPENDENCY_ACYCLIC_KINDS"] = ("blocks",)
        try:
            dependency_graph.add_edge("release", a.id, b.id, "blocks")
            dependency_graph.add_edge("release", b.id, c.id, "blocks")
            dependency_graph.add_edge("release", c.id, a.id, "informs")
            with pytest.raises(CircularDependencyError):
                dependency_graph.update_edge("release", c.id, a.id, kind="blocks")
            assert dependency_graph.get_upstream("release", a.id, "informs") == [c.id]
        finally:
            app.config["DEPENDENCY_ACYCLIC_KINDS"] = EDGE_KINDS

    def test_description_and_kind_updated_in_place(self, tasks):
        t1, t2, _, _ = tasks
        original = dependency_graph.add_edge("checklist", t1.id, t2.id, "blocks")
        updated = dependency_graph.update_edge(
            "checklist", t1.id, t2.id, kind="enables", description="nice to have",
        )
        assert updated.id == original.id
        assert updated.dependency_type == "enables"
        assert updated.description == "nice to have"
        assert dependency_graph.get_blockers("checklist", t2.id) == []
        assert dependency_graph.get_upstream("checklist", t2.id, "enables") == [t1.id]

    def test_missing_edge_and_bad_kind(self, tasks):
        t1, t2, _, _ = tasks
        with pytest.raises(NotFoundError):
            dependency_graph.update_edge("checklist", t1.id, t2.id, is_active=False)
        dependency_graph.add_edge("checklist", t1.id, t2.id)
        with pytest.raises(ValidationError):
            dependency_graph.update_edge("checklist", t1.id, t2.id, kind="requires")
