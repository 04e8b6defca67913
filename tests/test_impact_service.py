"""
Tests for delay impact propagation and critical path analysis.

Covers:
  - X -blocks-> Y -enables-> Z delayed 10 days: Y high, Z medium, both 10 days
  - severity is the strongest edge entering a node from the reached set
  - recommended_new_date = current target + delay (no compounding)
  - non-positive delays affect nothing
  - critical path follows blocks edges only, longest chain wins
  - risk level: high on delay/overdue, medium on bottleneck, low otherwise
  - workstream-scoped critical path over the subtree's releases
"""

from datetime import date, timedelta

import pytest

from workgraph.core.exceptions import NodeNotFoundError
from workgraph.services import dependency_graph, impact_service
from workgraph.services.impact_service import DelayEvent

TODAY = date(2026, 10, 17)


def _chain(releases, kinds):
    for (prereq, dependent), kind in zip(zip(releases, releases[1:]), kinds):
        dependency_graph.add_edge("release", prereq.id, dependent.id, kind)


@pytest.fixture()
def xyz(tree, make_release):
    root, _, _ = tree
    x = make_release(root, name="X", target_date=date(2026, 11, 1))
    y = make_release(root, name="Y", target_date=date(2026, 11, 15))
    z = make_release(root, name="Z", target_date=date(2026, 12, 1))
    _chain([x, y, z], ["blocks", "enables"])
    return x, y, z


class TestDelayEvent:
    def test_delay_days(self):
        event = DelayEvent(1, date(2026, 1, 1), date(2026, 1, 11))
        assert event.delay_days == 10

    def test_negative_delay(self):
        assert DelayEvent(1, date(2026, 1, 11), date(2026, 1, 1)).delay_days == -10


class TestAnalyzeDelay:
    def test_severity_follows_edge_kind(self, xyz):
        x, y, z = xyz
        report = impact_service.analyze_delay(
            "release", DelayEvent(x.id, date(2026, 11, 1), date(2026, 11, 11)),
        )
        by_id = {entry["node_id"]: entry for entry in report["affected"]}
        assert by_id[y.id]["impact_severity"] == "high"
        assert by_id[z.id]["impact_severity"] == "medium"
        assert by_id[y.id]["delay_days"] == 10
        assert by_id[z.id]["delay_days"] == 10
        assert report["total_affected"] == 2
        assert report["delayed_node"]["delay_days"] == 10
        assert report["severity_summary"] == {"high": 1, "medium": 1, "low": 0}

    def test_recommended_dates_not_compounded(self, xyz):
        x, y, z = xyz
        report = impact_service.analyze_delay(
            "release", DelayEvent(x.id, date(2026, 11, 1), date(2026, 11, 11)),
        )
        by_id = {entry["node_id"]: entry for entry in report["affected"]}
        assert by_id[y.id]["current_target_date"] == "2026-11-15"
        assert by_id[y.id]["recommended_new_date"] == "2026-11-25"
        assert by_id[z.id]["recommended_new_date"] == "2026-12-11"
        assert by_id[y.id]["workstream_name"] == "Root"

    def test_strongest_incoming_edge_wins(self, tree, make_release):
        root, _, _ = tree
        x, a, b = (make_release(root, name=n) for n in ("X", "A", "B"))
        dependency_graph.add_edge("release", x.id, a.id, "informs")
        dependency_graph.add_edge("release", x.id, b.id, "informs")
        dependency_graph.add_edge("release", a.id, b.id, "blocks")

        report = impact_service.analyze_delay(
            "release", DelayEvent(x.id, date(2026, 11, 1), date(2026, 11, 4)),
        )
        by_id = {entry["node_id"]: entry for entry in report["affected"]}
        assert by_id[a.id]["impact_severity"] == "low"
        assert by_id[b.id]["impact_severity"] == "high"
        assert [e["node_id"] for e in report["affected"]] == [b.id, a.id]

    def test_critical_path_nodes_are_blocks_reachable(self, xyz):
        x, y, _ = xyz
        report = impact_service.analyze_delay(
            "release", DelayEvent(x.id, date(2026, 11, 1), date(2026, 11, 2)),
        )
        assert report["critical_path_nodes"] == [y.id]

    @pytest.mark.parametrize("shift", [0, -5])
    def test_non_positive_delay_affects_nothing(self, xyz, shift):
        x, _, _ = xyz
        event = DelayEvent(x.id, date(2026, 11, 1), date(2026, 11, 1) + timedelta(days=shift))
        report = impact_service.analyze_delay("release", event)
        assert report["affected"] == []
        assert report["total_affected"] == 0

    def test_upstream_nodes_not_affected(self, xyz):
        x, y, z = xyz
        report = impact_service.analyze_delay(
            "release", DelayEvent(z.id, date(2026, 12, 1), date(2026, 12, 20)),
        )
        assert report["affected"] == []

    def test_unknown_node(self, tree):
        with pytest.raises(NodeNotFoundError):
            impact_service.analyze_delay("release", DelayEvent(77, TODAY, TODAY))


class TestCriticalPath:
    def test_longest_blocks_chain(self, tree, make_release):
        root, _, _ = tree
        a, b, c, d, e = (
            make_release(root, name=n, target_date=date(2026, 11, i))
            for i, n in enumerate("ABCDE", start=1)
        )
        _chain([a, b, c], ["blocks", "blocks"])
        dependency_graph.add_edge("release", a.id, d.id, "blocks")
        # enables never extends a critical path
        dependency_graph.add_edge("release", c.id, e.id, "enables")

        report = impact_service.critical_path("release", [b.id], today=TODAY)
        assert [entry["node_id"] for entry in report["critical_path"]] == [a.id, b.id, c.id]
        assert [entry["position_in_path"] for entry in report["critical_path"]] == [1, 2, 3]
        assert report["critical_path"][1]["dependencies_count"] == 1
        assert report["total_duration_days"] == 2

    def test_bottleneck_gives_medium_risk(self, tree, make_release):
        root, _, _ = tree
        a, b, c = (make_release(root, name=n, target_date=date(2026, 12, 1)) for n in "ABC")
        dependency_graph.add_edge("release", a.id, b.id, "blocks")
        dependency_graph.add_edge("release", a.id, c.id, "blocks")

        report = impact_service.critical_path("release", [a.id], today=TODAY)
        assert report["risk_level"] == "medium"
        assert report["bottlenecks"] == [{
            "node_id": a.id,
            "issue_type": "bottleneck",
            "description": "A blocks 2 items",
        }]

    def test_active_delay_gives_high_risk(self, xyz):
        x, y, _ = xyz
        delay = DelayEvent(y.id, date(2026, 11, 15), date(2026, 11, 20))
        report = impact_service.critical_path("release", [x.id], delays=[delay], today=TODAY)
        assert report["risk_level"] == "high"
        assert report["bottlenecks"][0]["issue_type"] == "delayed"

    def test_overdue_gives_high_risk(self, xyz):
        x, _, _ = xyz
        report = impact_service.critical_path("release", [x.id], today=date(2026, 11, 5))
        assert report["risk_level"] == "high"
        assert report["bottlenecks"][0] == {
            "node_id": x.id,
            "issue_type": "overdue",
            "description": "X is behind its target date",
        }

    def test_clean_chain_is_low_risk(self, xyz):
        x, y, _ = xyz
        report = impact_service.critical_path("release", [y.id], today=TODAY)
        assert [entry["node_id"] for entry in report["critical_path"]] == [x.id, y.id]
        assert report["risk_level"] == "low"
        assert report["bottlenecks"] == []

    def test_empty_input(self, tree):
        report = impact_service.critical_path("release", [], today=TODAY)
        assert report["critical_path"] == []
        assert report["risk_level"] == "low"

    def test_unknown_seed_raises(self, xyz):
        x, _, _ = xyz
        with pytest.raises(NodeNotFoundError) as exc:
            impact_service.critical_path("release", [x.id, 9999], today=TODAY)
        assert exc.value.resource_id == 9999

    def test_workstream_critical_path_spans_subtree(self, tree, make_release):
        root, child, grandchild = tree
        r1 = make_release(root, name="R1", target_date=date(2026, 11, 1))
        r2 = make_release(child, name="R2", target_date=date(2026, 11, 10))
        r3 = make_release(grandchild, name="R3", target_date=date(2026, 11, 20))
        _chain([r1, r2, r3], ["blocks", "blocks"])

        report = impact_service.workstream_critical_path(child.id, today=TODAY)
        assert report["workstream_id"] == child.id
        # r1 lies outside the subtree but is on the chain through r2
        assert [entry["node_id"] for entry in report["critical_path"]] == [r1.id, r2.id, r3.id]
        assert report["total_duration_days"] == 19
