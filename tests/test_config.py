"""
Tests for configuration — converge.yml loading, kind catalog, resource documents.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from converge.core.config.loader import (
    ConfigError,
    find_project_file,
    load_project,
    resolve_kinds,
)
from converge.core.config.spec_loader import load_specs, loads, parse_document
from converge.core.data import builtin_kinds
from converge.core.engine.errors import SpecError
from converge.core.models.project import Project
from converge.core.models.resource import Reference


class TestLoadProject:
    def test_minimal(self, tmp_path: Path):
        path = tmp_path / "converge.yml"
        path.write_text("name: demo\n")
        project = load_project(path)
        assert project.name == "demo"
        assert project.state_path == ".state/converge.json"

    def test_nested_under_project_key(self, tmp_path: Path):
        path = tmp_path / "converge.yml"
        path.write_text("project:\n  name: nested\n  parallelism: 8\n")
        project = load_project(path)
        assert project.name == "nested"
        assert project.parallelism == 8

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError, match="not found"):
            load_project(tmp_path / "converge.yml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "converge.yml"
        path.write_text("name: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_project(path)

    def test_not_a_mapping(self, tmp_path: Path):
        path = tmp_path / "converge.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_project(path)

    def test_schema_error(self, tmp_path: Path):
        path = tmp_path / "converge.yml"
        path.write_text("name: x\nparallelism: 0\n")
        with pytest.raises(ConfigError, match="Invalid project configuration"):
            load_project(path)


class TestFindProjectFile:
    def test_walks_up(self, tmp_path: Path):
        (tmp_path / "converge.yml").write_text("name: x\n")
        deep = tmp_path / "a" / "b"
        deep.mkdir(parents=True)
        assert find_project_file(deep) == (tmp_path / "converge.yml").resolve()

    def test_not_found(self, tmp_path: Path):
        isolated = tmp_path / "nowhere"
        isolated.mkdir()
        assert find_project_file(isolated) is None


class TestKindCatalog:
    def test_builtins(self):
        kinds = builtin_kinds()
        assert {
            "aws_vpc",
            "aws_subnet",
            "aws_iam_role",
            "aws_iam_role_policy_attachment",
            "aws_eks_cluster",
            "aws_eks_node_group",
        } <= set(kinds)
        cluster = kinds["aws_eks_cluster"]
        assert cluster.provider == "aws"
        assert cluster.requires_replacement("subnet_ids")
        assert not cluster.requires_replacement("version")
        assert cluster.has_output("endpoint")

    def test_builtins_are_copies(self):
        builtin_kinds()["aws_vpc"].mutable.append("cidr_block")
        assert "cidr_block" not in builtin_kinds()["aws_vpc"].mutable

    def test_project_kinds_override(self):
        project = Project.model_validate({
            "name": "x",
            "kinds": [
                {"name": "aws_vpc", "provider": "mock", "mutable": ["cidr_block"]},
                {"name": "bucket", "outputs": ["url"]},
            ],
        })
        kinds = resolve_kinds(project)
        assert kinds["aws_vpc"].provider == "mock"
        assert not kinds["aws_vpc"].requires_replacement("cidr_block")
        assert kinds["bucket"].has_output("url")
        assert "aws_eks_cluster" in kinds


class TestSpecLoader:
    def test_bundle_with_ref_tag(self):
        bundle = loads(textwrap.dedent("""\
            resources:
              - kind: network
                name: main
                attributes: {cidr: 10.0.0.0/16}
              - kind: cluster
                name: main
                attributes:
                  network_id: !ref network.main.id
                  subnets: [!ref network.main.id]
            outputs:
              endpoint: !ref cluster.main.endpoint
        """))
        assert [r.address for r in bundle.resources] == ["network.main", "cluster.main"]
        cluster = bundle.resources[1]
        assert cluster.attributes["network_id"] == Reference.parse("network.main.id")
        assert cluster.attributes["subnets"] == [Reference.parse("network.main.id")]
        assert bundle.outputs[0].name == "endpoint"
        assert bundle.outputs[0].value.address == "cluster.main"

    def test_dollar_ref_form(self):
        bundle = parse_document({
            "kind": "nodes",
            "name": "w",
            "attributes": {"cluster": {"$ref": "cluster.main.name"}},
            "depends_on": "network.main",
        })
        spec = bundle.resources[0]
        assert spec.attributes["cluster"] == Reference.parse("cluster.main.name")
        assert spec.depends_on == ("network.main",)

    def test_multi_document(self):
        bundle = loads("kind: a\nname: one\n---\nkind: a\nname: two\n---\n", source="x.yml")
        assert [r.name for r in bundle.resources] == ["one", "two"]
        assert bundle.sources == ["x.yml"]

    def test_output_with_description(self):
        bundle = loads(textwrap.dedent("""\
            outputs:
              ep:
                value: !ref cluster.main.endpoint
                description: API server
        """))
        assert bundle.outputs[0].description == "API server"

    @pytest.mark.parametrize(
        "text, match",
        [
            ("kind: a\nname: b\nextra: 1\n", "unknown resource keys"),
            ("resources: []\nbogus: 1\n", "unknown top-level keys"),
            ("- 1\n", "expected a mapping"),
            ("kind: a\nname: x.y\n", "invalid resource"),
            ("kind: a\nname: b\nattributes: {x: !ref bad}\n", "Invalid YAML"),
            ("outputs:\n  o: plain\n", "must be a reference"),
            ("a: [\n", "Invalid YAML"),
        ],
    )
    def test_malformed(self, text, match):
        with pytest.raises(SpecError, match=match):
            loads(text)

    def test_load_specs_directory(self, tmp_path: Path):
        (tmp_path / "infra").mkdir()
        (tmp_path / "infra" / "a.yml").write_text("kind: network\nname: a\n")
        (tmp_path / "infra" / "nested").mkdir()
        (tmp_path / "infra" / "nested" / "b.yaml").write_text("kind: network\nname: b\n")
        (tmp_path / "infra" / "README.md").write_text("ignored")
        bundle = load_specs([tmp_path / "infra"])
        assert sorted(r.name for r in bundle.resources) == ["a", "b"]
        assert len(bundle.sources) == 2

    def test_load_specs_missing_path(self, tmp_path: Path):
        with pytest.raises(SpecError, match="not found"):
            load_specs([tmp_path / "nope"])
