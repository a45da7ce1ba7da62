"""
Tests for the state reconciler — create/update/replace/delete classification.
"""

from __future__ import annotations

from converge.core.engine.graph import build_graph
from converge.core.engine.reconciler import compute_plan, diff_attributes
from converge.core.models.plan import PlanAction
from converge.core.models.resource import Reference, ResourceSpec
from converge.core.models.state import ResourceState, StateSnapshot


def _actions(plan):
    return [(e.action.value, e.address) for e in plan.entries]


def _applied_snapshot(specs, kinds) -> StateSnapshot:
    """State as it would look after a successful apply of ``specs``."""
    snap = StateSnapshot()
    ids = {}
    graph = build_graph(specs, kinds)
    for address in graph.order:
        spec = graph.get(address)
        resource_id = f"{spec.kind}-{len(ids) + 1}"
        ids[address] = resource_id

        def resolve(value):
            if isinstance(value, Reference):
                if value.output == "id":
                    return ids[value.address]
                return snap.resources[value.address].outputs[value.output]
            if isinstance(value, dict):
                return {k: resolve(v) for k, v in value.items()}
            if isinstance(value, list):
                return [resolve(v) for v in value]
            return value

        attrs = {k: resolve(v) for k, v in spec.attributes.items()}
        outputs = {o: f"{o}-{resource_id}" for o in kinds[spec.kind].outputs}
        if "name" in outputs:
            outputs["name"] = spec.name
        snap.resources[address] = ResourceState(
            kind=spec.kind,
            name=spec.name,
            resource_id=resource_id,
            attributes=attrs,
            outputs=outputs,
            dependencies=graph.dependencies_of(address),
        )
    snap.serial = 7
    return snap


class TestDiffAttributes:
    def test_equal(self):
        assert diff_attributes({"a": 1, "b": [1, 2]}, {"a": 1, "b": [1, 2]}) == []

    def test_tuple_and_list_equal(self):
        assert diff_attributes({"b": (1, 2)}, {"b": [1, 2]}) == []

    def test_changed_added_removed(self):
        assert diff_attributes({"a": 2, "new": 1}, {"a": 1, "old": 1}) == ["a", "new", "old"]


class TestClassification:
    def test_empty_state_creates_everything_in_order(self, kinds, stack_specs):
        plan = compute_plan(build_graph(stack_specs, kinds), StateSnapshot())
        assert _actions(plan) == [
            ("create", "network.main"),
            ("create", "cluster.main"),
            ("create", "nodes.workers"),
        ]
        assert plan.get("create:cluster.main").depends_on == ("create:network.main",)
        assert plan.get("create:nodes.workers").depends_on == ("create:cluster.main",)

    def test_unchanged_is_all_noop(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        plan = compute_plan(build_graph(stack_specs, kinds), snap)
        assert plan.is_empty
        assert {e.action for e in plan.entries} == {PlanAction.NOOP}
        assert plan.state_serial == 7
        assert plan.lineage == snap.lineage

    def test_mutable_change_is_update(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        specs = list(stack_specs)
        specs[2] = ResourceSpec(
            kind="nodes",
            name="workers",
            attributes={"cluster": Reference.parse("cluster.main.name"), "size": 5},
        )
        plan = compute_plan(build_graph(specs, kinds), snap)
        entry = plan.entries_for("nodes.workers")
        assert len(entry) == 1
        assert entry[0].action == PlanAction.UPDATE
        assert entry[0].changed == ("size",)
        assert plan.summary()["update"] == 1

    def test_force_new_change_is_delete_create_pair(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        specs = list(stack_specs)
        specs[0] = ResourceSpec(kind="network", name="main", attributes={"cidr": "10.1.0.0/16"})
        plan = compute_plan(build_graph(specs, kinds), snap)

        entries = plan.entries_for("network.main")
        assert [e.action for e in entries] == [PlanAction.DELETE, PlanAction.CREATE]
        assert all(e.replacement for e in entries)
        assert all(e.action != PlanAction.UPDATE for e in entries)
        create = plan.get("create:network.main")
        assert "delete:network.main" in create.depends_on

    def test_replacement_cascades_through_unknown_references(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        specs = list(stack_specs)
        specs[0] = ResourceSpec(kind="network", name="main", attributes={"cidr": "10.1.0.0/16"})
        plan = compute_plan(build_graph(specs, kinds), snap)

        # cluster.network_id is force_new and now unknown → cluster replaced too
        cluster = plan.entries_for("cluster.main")
        assert [e.action for e in cluster] == [PlanAction.DELETE, PlanAction.CREATE]
        assert "network_id" in cluster[1].changed

    def test_unknown_reference_to_mutable_attribute_is_update(self, kinds):
        specs = [
            ResourceSpec(kind="network", name="a", attributes={"cidr": "1"}),
            ResourceSpec(kind="network", name="b", attributes={"cidr": "2", "tags": {"peer": Reference.parse("network.a.id")}}),
        ]
        snap = _applied_snapshot(specs, kinds)
        specs[0] = ResourceSpec(kind="network", name="a", attributes={"cidr": "9"})
        plan = compute_plan(build_graph(specs, kinds), snap)
        assert plan.get("update:network.b").changed == ("tags",)

    def test_removed_resource_is_single_delete(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        plan = compute_plan(build_graph(stack_specs[:2], kinds), snap)
        assert plan.changes == [plan.get("delete:nodes.workers")]
        assert [e.action for e in plan.entries_for("cluster.main")] == [PlanAction.NOOP]
        assert [e.action for e in plan.entries_for("network.main")] == [PlanAction.NOOP]

    def test_destroy_deletes_dependents_first(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        plan = compute_plan(build_graph([], kinds), snap)
        assert _actions(plan) == [
            ("delete", "nodes.workers"),
            ("delete", "cluster.main"),
            ("delete", "network.main"),
        ]
        assert plan.get("delete:network.main").depends_on == ("delete:cluster.main",)

    def test_orphan_outlives_update_that_moves_off_it(self, kinds):
        specs = [
            ResourceSpec(kind="network", name="a", attributes={"cidr": "1"}),
            ResourceSpec(kind="network", name="b", attributes={"cidr": "2"}),
            ResourceSpec(kind="network", name="c", attributes={"cidr": "3", "tags": {"peer": Reference.parse("network.a.id")}}),
        ]
        snap = _applied_snapshot(specs, kinds)
        kept = [
            specs[1],
            ResourceSpec(kind="network", name="c", attributes={"cidr": "3", "tags": {"peer": Reference.parse("network.b.id")}}),
        ]
        plan = compute_plan(build_graph(kept, kinds), snap)

        assert [e.id for e in plan.changes] == ["update:network.c", "delete:network.a"]
        assert "update:network.c" in plan.get("delete:network.a").depends_on

    def test_removed_attribute_counts_as_change(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        specs = list(stack_specs)
        specs[1] = ResourceSpec(
            kind="cluster", name="main", attributes={"network_id": Reference.parse("network.main.id")}
        )
        plan = compute_plan(build_graph(specs, kinds), snap)
        assert plan.get("update:cluster.main").changed == ("version",)

    def test_plan_is_topologically_sorted(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        specs = [ResourceSpec(kind="network", name="main", attributes={"cidr": "new"})]
        plan = compute_plan(build_graph(specs, kinds), snap)
        position = {e.id: i for i, e in enumerate(plan.entries)}
        for entry in plan.entries:
            for dep in entry.depends_on:
                assert position[dep] < position[entry.id]


class TestDrift:
    def test_drift_reported_and_converged_back(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        remote = {a: dict(r.attributes) for a, r in snap.resources.items()}
        remote["nodes.workers"]["size"] = 9
        plan = compute_plan(build_graph(stack_specs, kinds), snap, remote=remote)
        entry = plan.entries_for("nodes.workers")[0]
        assert entry.action == PlanAction.UPDATE
        assert entry.drift == ("size",)
        assert entry.changed == ("size",)

    def test_gone_resource_is_recreated(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        plan = compute_plan(build_graph(stack_specs, kinds), snap, remote={"nodes.workers": None})
        entry = plan.entries_for("nodes.workers")[0]
        assert entry.action == PlanAction.CREATE
        assert entry.drift == ("gone",)

    def test_gone_orphan_is_dropped_without_provider(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        plan = compute_plan(build_graph(stack_specs[:2], kinds), snap, remote={"nodes.workers": None})
        assert plan.get("delete:nodes.workers").remote_gone

    def test_unrefreshed_resources_use_recorded_state(self, kinds, stack_specs):
        snap = _applied_snapshot(stack_specs, kinds)
        plan = compute_plan(build_graph(stack_specs, kinds), snap, remote={})
        assert plan.is_empty
