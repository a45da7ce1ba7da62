"""
Spec loader — reads resource documents into ResourceSpecs.

Resource documents are YAML. A file may hold several documents
(``---``-separated); each document is either a single resource::

    kind: aws_eks_node_group
    name: workers
    attributes:
      cluster_name: !ref aws_eks_cluster.main.name

or a bundle::

    resources:
      - kind: aws_vpc
        name: main
        attributes: {cidr_block: 10.0.0.0/16}
    outputs:
      cluster_endpoint: !ref aws_eks_cluster.main.endpoint

References can be written with the ``!ref`` tag or, for JSON-compatible
documents, as a one-key mapping ``{"$ref": "kind.name.output"}``. Either
form becomes a typed Reference at load time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from converge.core.engine.errors import SpecError
from converge.core.models.resource import NamedOutput, Reference, ResourceSpec

logger = logging.getLogger(__name__)

SPEC_SUFFIXES = (".yml", ".yaml")
REF_KEY = "$ref"


class _SpecLoader(yaml.SafeLoader):
    """SafeLoader that understands the ``!ref`` tag."""


def _construct_ref(loader: yaml.SafeLoader, node: yaml.Node) -> Reference:
    expr = loader.construct_scalar(node)
    try:
        return Reference.parse(str(expr))
    except ValueError as e:
        raise yaml.constructor.ConstructorError(
            None, None, str(e), node.start_mark
        ) from e


_SpecLoader.add_constructor("!ref", _construct_ref)


@dataclass
class SpecBundle:
    """Everything declared across a set of resource documents."""

    resources: list[ResourceSpec] = field(default_factory=list)
    outputs: list[NamedOutput] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)

    def extend(self, other: SpecBundle) -> None:
        self.resources.extend(other.resources)
        self.outputs.extend(other.outputs)
        self.sources.extend(other.sources)


def _convert(value: Any) -> Any:
    """Turn ``{"$ref": ...}`` mappings into References, recursively."""
    if isinstance(value, dict):
        if set(value.keys()) == {REF_KEY}:
            return Reference.parse(str(value[REF_KEY]))
        return {k: _convert(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_convert(v) for v in value]
    return value


def _parse_resource(data: Any, source: str) -> ResourceSpec:
    if not isinstance(data, dict):
        raise SpecError(f"{source}: resource must be a mapping, got {type(data).__name__}")
    unknown = set(data) - {"kind", "name", "attributes", "depends_on"}
    if unknown:
        raise SpecError(f"{source}: unknown resource keys {sorted(unknown)}")
    depends_on = data.get("depends_on") or []
    if isinstance(depends_on, str):
        depends_on = [depends_on]
    try:
        return ResourceSpec(
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            attributes=_convert(data.get("attributes") or {}),
            depends_on=tuple(depends_on),
        )
    except (ValidationError, ValueError) as e:
        raise SpecError(f"{source}: invalid resource: {e}") from e


def _parse_output(name: str, data: Any, source: str) -> NamedOutput:
    description = ""
    if isinstance(data, dict) and "value" in data:
        description = str(data.get("description", ""))
        data = data["value"]
    try:
        value = _convert(data)
    except ValueError as e:
        raise SpecError(f"{source}: output '{name}': {e}") from e
    if not isinstance(value, Reference):
        raise SpecError(f"{source}: output '{name}' must be a reference")
    return NamedOutput(name=name, value=value, description=description)


def parse_document(doc: Any, source: str = "<string>") -> SpecBundle:
    """Parse one already-loaded YAML document."""
    bundle = SpecBundle()
    if doc is None:
        return bundle
    if not isinstance(doc, dict):
        raise SpecError(f"{source}: expected a mapping, got {type(doc).__name__}")

    if "kind" in doc:
        bundle.resources.append(_parse_resource(doc, source))
        return bundle

    unknown = set(doc) - {"resources", "outputs"}
    if unknown:
        raise SpecError(f"{source}: unknown top-level keys {sorted(unknown)}")

    for item in doc.get("resources") or []:
        bundle.resources.append(_parse_resource(item, source))

    outputs = doc.get("outputs") or {}
    if not isinstance(outputs, dict):
        raise SpecError(f"{source}: 'outputs' must be a mapping")
    for name, data in outputs.items():
        bundle.outputs.append(_parse_output(str(name), data, source))

    return bundle


def loads(text: str, source: str = "<string>") -> SpecBundle:
    """Parse resource documents from a YAML string."""
    bundle = SpecBundle(sources=[source])
    try:
        docs = list(yaml.load_all(text, Loader=_SpecLoader))  # noqa: S506 - SafeLoader subclass
    except yaml.YAMLError as e:
        raise SpecError(f"Invalid YAML in {source}: {e}") from e
    for doc in docs:
        bundle.extend(parse_document(doc, source))
    return bundle


def _spec_files(path: Path) -> list[Path]:
    if path.is_dir():
        return sorted(p for p in path.rglob("*") if p.suffix in SPEC_SUFFIXES and p.is_file())
    return [path]


def load_specs(paths: list[Path]) -> SpecBundle:
    """Load every resource document under the given files or directories.

    Raises:
        SpecError: If a path is missing or a document is malformed.
    """
    bundle = SpecBundle()
    for path in paths:
        if not path.exists():
            raise SpecError(f"Spec path not found: {path}")
        for file in _spec_files(path):
            try:
                text = file.read_text(encoding="utf-8")
            except OSError as e:
                raise SpecError(f"Cannot read {file}: {e}") from e
            bundle.extend(loads(text, source=str(file)))

    logger.info(
        "Loaded %d resources and %d outputs from %d files",
        len(bundle.resources),
        len(bundle.outputs),
        len(bundle.sources),
    )
    return bundle
