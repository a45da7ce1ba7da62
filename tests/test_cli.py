"""
Tests for CLI commands — validate, plan, apply, destroy, outputs, state.
"""

import json
from pathlib import Path

from click.testing import CliRunner

from converge.main import cli


def _run(config: Path, *args: str, input: str | None = None):
    return CliRunner().invoke(cli, ["-q", "--config", str(config), *args], input=input)


def _json(result) -> dict:
    return json.loads(result.stdout)


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "declarative infrastructure convergence" in result.output
        for command in ("validate", "plan", "apply", "destroy", "output", "kubeconfig", "state"):
            assert command in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestValidateCommand:
    def test_valid(self, make_project):
        result = _run(make_project(), "validate")
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output
        assert "Resources: 2" in result.output

    def test_valid_json(self, make_project):
        result = _run(make_project(), "validate", "--json")
        assert result.exit_code == 0
        assert _json(result)["order"] == ["network.main", "cluster.main"]

    def test_missing_config(self, tmp_path: Path):
        result = _run(tmp_path / "converge.yml", "validate")
        assert result.exit_code == 1
        assert "ConfigError" in result.output

    def test_graph(self, make_project):
        result = _run(make_project(), "graph")
        assert result.exit_code == 0
        assert "cluster.main  ← network.main" in result.output

    def test_graph_json(self, make_project):
        result = _run(make_project(), "graph", "--json")
        assert _json(result)["edges"] == [
            {"dependent": "cluster.main", "dependency": "network.main", "reason": "reference"}
        ]


class TestPlanCommand:
    def test_plan(self, make_project):
        result = _run(make_project(), "plan")
        assert result.exit_code == 0
        assert "+ network.main" in result.output
        assert "2 to create, 0 to update, 0 to delete" in result.output

    def test_plan_json(self, make_project):
        data = _json(_run(make_project(), "plan", "--json"))
        assert data["project_name"] == "test-infra"
        assert data["plan"]["summary"]["create"] == 2

    def test_plan_after_apply_has_no_changes(self, make_project):
        config = make_project()
        _run(config, "apply", "--auto-approve")
        result = _run(config, "plan")
        assert "No changes" in result.output


class TestApplyCommand:
    def test_auto_approve(self, make_project):
        config = make_project()
        result = _run(config, "apply", "--auto-approve")
        assert result.exit_code == 0, result.output
        assert "apply — test-infra" in result.output
        assert "endpoint = " in result.output
        assert (config.parent / ".state" / "converge.json").is_file()

    def test_prompt_declined(self, make_project):
        config = make_project()
        result = _run(config, "apply", input="n\n")
        assert result.exit_code == 0
        assert "Apply these changes?" in result.output
        assert "nothing was changed" in result.output
        assert not (config.parent / ".state" / "converge.json").exists()

    def test_prompt_accepted(self, make_project):
        config = make_project()
        result = _run(config, "apply", input="y\n")
        assert result.exit_code == 0
        assert (config.parent / ".state" / "converge.json").is_file()

    def test_json_requires_auto_approve(self, make_project):
        result = _run(make_project(), "apply", "--json")
        assert result.exit_code == 2
        assert "--auto-approve" in result.output

    def test_json_report(self, make_project):
        result = _run(make_project(), "apply", "--json", "--auto-approve", "-p", "1")
        assert result.exit_code == 0
        data = _json(result)
        assert data["report"]["status"] == "ok"
        assert data["report"]["applied"] == 2

    def test_dry_run(self, make_project):
        config = make_project()
        result = _run(config, "apply", "--dry-run")
        assert result.exit_code == 0
        assert "[dry-run]" in result.output
        assert not (config.parent / ".state" / "converge.json").exists()

    def test_destroy(self, make_project):
        config = make_project()
        _run(config, "apply", "-y")
        result = _run(config, "destroy", "--json", "-y")
        assert result.exit_code == 0
        assert _json(result)["plan"]["summary"]["delete"] == 2

        listed = _json(_run(config, "state", "list", "--json"))
        assert listed["resources"] == []

    def test_history(self, make_project):
        config = make_project()
        _run(config, "apply", "-y")
        result = _run(config, "history")
        assert result.exit_code == 0
        assert "apply" in result.output
        assert "2 applied" in result.output


class TestOutputCommand:
    def test_all_outputs(self, make_project):
        config = make_project()
        _run(config, "apply", "-y")
        result = _run(config, "output")
        assert result.exit_code == 0
        assert "endpoint = " in result.output
        assert "network = " in result.output

    def test_raw_single_output(self, make_project):
        config = make_project()
        _run(config, "apply", "-y")
        result = _run(config, "output", "endpoint", "--raw")
        assert result.stdout.strip().startswith("https://cluster-")

    def test_unknown_output(self, make_project):
        config = make_project()
        result = _run(config, "output", "nope")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_kubeconfig_rejects_non_cluster(self, make_project):
        config = make_project()
        _run(config, "apply", "-y")
        result = _run(config, "kubeconfig", "network.main")
        assert result.exit_code == 1
        assert "not an aws_eks_cluster" in result.output


class TestStateCommands:
    def test_list_and_show(self, make_project):
        config = make_project()
        _run(config, "apply", "-y")

        result = _run(config, "state", "list")
        assert result.exit_code == 0
        assert "network.main" in result.output
        assert "cluster.main" in result.output

        shown = _json(_run(config, "state", "show", "cluster.main", "--json"))
        assert shown["resources"][0]["address"] == "cluster.main"

    def test_rm_needs_confirmation(self, make_project):
        config = make_project()
        _run(config, "apply", "-y")
        result = _run(config, "state", "rm", "cluster.main", input="n\n")
        assert result.exit_code != 0
        assert len(_json(_run(config, "state", "list", "--json"))["resources"]) == 2

    def test_rm(self, make_project):
        config = make_project()
        _run(config, "apply", "-y")
        result = _run(config, "state", "rm", "cluster.main", "--yes")
        assert result.exit_code == 0
        addresses = [r["address"] for r in _json(_run(config, "state", "list", "--json"))["resources"]]
        assert addresses == ["network.main"]
