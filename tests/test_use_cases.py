"""
Tests for use cases — plan, apply, destroy, outputs, state, validate.

Projects are written to tmp_path and run against the mock provider.
"""

from pathlib import Path

from converge.adapters.mock import MockProvider
from converge.adapters.registry import ProviderRegistry
from converge.core.config.loader import load_project, resolve_kinds
from converge.core.models.plan import PlanAction
from converge.core.persistence.audit import RunLedger
from converge.core.use_cases.apply import run_apply
from converge.core.use_cases.outputs import export_kubeconfig, get_outputs
from converge.core.use_cases.plan import run_plan
from converge.core.use_cases.state import (
    list_resources,
    recent_runs,
    remove_resource,
    show_resource,
)
from converge.core.use_cases.validate import validate_project

CYCLE_YML = """\
resources:
  - kind: cluster
    name: a
    attributes:
      network_id: !ref cluster.b.name
  - kind: cluster
    name: b
    attributes:
      network_id: !ref cluster.a.name
"""


def _mock_registry(config: Path) -> tuple[MockProvider, ProviderRegistry]:
    kinds = resolve_kinds(load_project(config))
    mock = MockProvider(kinds=kinds)
    return mock, ProviderRegistry(kinds, mock_provider=mock)


def _ledger(config: Path) -> RunLedger:
    return RunLedger(config.parent / ".state" / "runs.ndjson")


# ── Plan ─────────────────────────────────────────────────────────────


class TestRunPlan:
    def test_fresh_project_creates_everything(self, make_project):
        config = make_project()
        result = run_plan(config)
        assert result.error is None
        assert result.project.name == "test-infra"
        assert [(e.action, e.address) for e in result.plan.changes] == [
            (PlanAction.CREATE, "network.main"),
            (PlanAction.CREATE, "cluster.main"),
        ]
        assert result.plan.operation_id.startswith("op-")
        # planning never writes state
        assert not (config.parent / ".state" / "converge.json").exists()

    def test_missing_config(self, tmp_path: Path):
        result = run_plan(tmp_path / "converge.yml")
        assert result.error_kind == "ConfigError"
        assert "not found" in result.error

    def test_cycle_reported_with_details(self, make_project):
        result = run_plan(make_project(infra=CYCLE_YML))
        assert result.error_kind == "CycleError"
        assert set(result.details["cycle"]) == {"cluster.a", "cluster.b"}
        assert result.to_dict()["error_kind"] == "CycleError"

    def test_corrupt_state_is_an_error(self, make_project):
        config = make_project()
        state = config.parent / ".state" / "converge.json"
        state.parent.mkdir()
        state.write_text("{{{")
        result = run_plan(config)
        assert result.error_kind == "StateError"

    def test_refresh_after_apply_is_clean(self, make_project):
        config = make_project()
        run_apply(config)
        result = run_plan(config, refresh=True)
        assert result.refreshed
        assert result.plan.is_empty

    def test_refresh_detects_drift(self, make_project):
        config = make_project()
        mock, registry = _mock_registry(config)
        run_apply(config, registry=registry)
        mock.drift("cluster.main", version="1.28")

        result = run_plan(config, refresh=True, registry=registry)
        entry = result.plan.get("update:cluster.main")
        assert entry.drift == ("version",)
        assert entry.changed == ("version",)

    def test_destroy_plan(self, make_project):
        config = make_project()
        run_apply(config)
        result = run_plan(config, destroy=True)
        assert [e.action for e in result.plan.changes] == [PlanAction.DELETE, PlanAction.DELETE]


# ── Apply / Destroy ──────────────────────────────────────────────────


class TestRunApply:
    def test_apply_records_state_outputs_and_run(self, make_project):
        config = make_project()
        result = run_apply(config)
        assert result.ok
        assert result.report.applied == 2

        state = list_resources(config)
        assert sorted(r.address for r in state.resources) == ["cluster.main", "network.main"]
        network = next(r for r in state.resources if r.address == "network.main")
        cluster = next(r for r in state.resources if r.address == "cluster.main")
        assert cluster.attributes["network_id"] == network.resource_id

        outputs = get_outputs(config).outputs
        assert outputs["network"] == network.resource_id
        assert outputs["endpoint"] == f"https://{cluster.resource_id}.mock.local"

        runs = _ledger(config).read_all()
        assert len(runs) == 1
        assert runs[0].command == "apply"
        assert runs[0].status == "ok"
        assert runs[0].planned["create"] == 2
        assert runs[0].context["mock"] is True

    def test_second_apply_changes_nothing(self, make_project):
        config = make_project()
        run_apply(config)
        serial = list_resources(config).serial

        result = run_apply(config)
        assert result.plan.is_empty
        assert result.report.applied == 0
        assert list_resources(config).serial == serial
        assert len(_ledger(config).read_all()) == 2

    def test_changed_document_updates_in_place(self, make_project):
        config = make_project()
        run_apply(config)
        before = show_resource("cluster.main", config).resources[0]

        infra = (config.parent / "infra" / "main.yml").read_text().replace('"1.29"', '"1.30"')
        (config.parent / "infra" / "main.yml").write_text(infra)
        result = run_apply(config)
        assert [e.id for e in result.plan.changes] == ["update:cluster.main"]

        after = show_resource("cluster.main", config).resources[0]
        assert after.resource_id == before.resource_id
        assert after.attributes["version"] == "1.30"

    def test_confirm_declined(self, make_project):
        config = make_project()
        seen = []

        def confirm(plan):
            seen.append(len(plan.changes))
            return False

        result = run_apply(config, confirm=confirm)
        assert result.declined
        assert result.report is None
        assert seen == [2]
        assert list_resources(config).resources == []
        assert _ledger(config).read_all() == []

    def test_confirm_not_asked_for_empty_plan(self, make_project):
        config = make_project()
        run_apply(config)
        asked = []
        result = run_apply(config, confirm=lambda plan: asked.append(plan) or False)
        assert asked == []
        assert not result.declined

    def test_dry_run_changes_nothing(self, make_project):
        config = make_project()
        result = run_apply(config, dry_run=True)
        assert result.report.dry_run
        assert list_resources(config).resources == []
        assert _ledger(config).read_all() == []

    def test_failure_is_recorded(self, make_project):
        config = make_project()
        mock, registry = _mock_registry(config)
        mock.fail_terminal("cluster.main")

        result = run_apply(config, registry=registry)
        assert not result.ok
        assert result.report.status == "partial"

        run = _ledger(config).read_all()[0]
        assert run.status == "partial"
        assert run.aborted
        assert run.failures[0].entry == "create:cluster.main"
        assert [r.address for r in list_resources(config).resources] == ["network.main"]

    def test_retry_then_converge_on_rerun(self, make_project):
        """A failed apply leaves converged work in place; the rerun finishes the rest."""
        config = make_project()
        mock, registry = _mock_registry(config)
        mock.fail_terminal("cluster.main")
        run_apply(config, registry=registry)

        result = run_apply(config, registry=registry)
        assert result.ok
        assert [e.id for e in result.plan.changes] == ["create:cluster.main"]

    def test_destroy_empties_state(self, make_project):
        config = make_project()
        run_apply(config)
        result = run_apply(config, destroy=True)
        assert result.ok
        assert result.command == "destroy"
        assert list_resources(config).resources == []
        assert get_outputs(config).outputs == {}
        assert [r.command for r in _ledger(config).read_all()] == ["apply", "destroy"]

    def test_cycle_fails_before_any_provider_call(self, make_project):
        config = make_project(infra=CYCLE_YML)
        mock, registry = _mock_registry(config)
        result = run_apply(config, registry=registry)
        assert result.error_kind == "CycleError"
        assert result.report is None
        assert mock.call_count == 0
        assert _ledger(config).read_all() == []

    def test_to_dict(self, make_project):
        d = run_apply(make_project()).to_dict()
        assert d["command"] == "apply"
        assert d["report"]["status"] == "ok"
        assert d["plan"]["summary"]["create"] == 2


# ── Outputs / State ──────────────────────────────────────────────────


class TestOutputsAndState:
    def test_single_output(self, make_project):
        config = make_project()
        run_apply(config)
        assert list(get_outputs(config, "endpoint").outputs) == ["endpoint"]

    def test_unknown_output(self, make_project):
        config = make_project()
        run_apply(config)
        assert "not found" in get_outputs(config, "nope").error

    def test_kubeconfig_needs_a_cluster_kind(self, make_project):
        config = make_project()
        run_apply(config)
        result = export_kubeconfig("network.main", config)
        assert "not an aws_eks_cluster" in result.error

    def test_show_untracked(self, make_project):
        config = make_project()
        assert "not tracked" in show_resource("network.main", config).error

    def test_remove_forgets_only(self, make_project):
        config = make_project()
        run_apply(config)

        result = remove_resource("cluster.main", config)
        assert result.removed
        assert result.resources[0].address == "cluster.main"
        assert [r.address for r in list_resources(config).resources] == ["network.main"]

        plan = run_plan(config).plan
        assert [e.id for e in plan.changes] == ["create:cluster.main"]

    def test_remove_untracked(self, make_project):
        config = make_project()
        assert "not tracked" in remove_resource("cluster.main", config).error

    def test_recent_runs(self, make_project):
        config = make_project()
        run_apply(config)
        run_apply(config, destroy=True)
        runs = recent_runs(config, n=1).runs
        assert len(runs) == 1
        assert runs[0]["command"] == "destroy"


class TestValidate:
    def test_valid(self, make_project):
        result = validate_project(make_project())
        assert result.ok
        d = result.to_dict()
        assert d["resources"] == 2
        assert d["edges"] == 1
        assert d["outputs"] == 2
        assert d["order"] == ["network.main", "cluster.main"]

    def test_unknown_reference(self, make_project):
        infra = """\
resources:
  - kind: cluster
    name: main
    attributes:
      network_id: !ref network.missing.id
"""
        result = validate_project(make_project(infra=infra))
        assert not result.ok
        assert result.error_kind == "UnknownReferenceError"
        assert result.details["target"] == "network.missing.id"
