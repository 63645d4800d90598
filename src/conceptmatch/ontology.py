"""Ontology records and loaders for JSON or YAML concept lists."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

try:  # pragma: no cover - optional dependency guard
    import yaml
except Exception as exc:  # pragma: no cover
    yaml = None
    YAML_IMPORT_ERROR = exc
else:  # pragma: no cover
    YAML_IMPORT_ERROR = None


@dataclass(slots=True)
class Concept:
    """A node of the curated ontology, identified by a dot-delimited key."""

    key: str
    label: str
    aliases: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "label": self.label, "aliases": list(self.aliases)}


class OntologyLoadError(RuntimeError):
    """Raised when the ontology file cannot be read or parsed."""


class OntologyValidationError(ValueError):
    """Raised when concept keys are empty, malformed or duplicated."""


def _coerce_aliases(value: object) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [str(item).strip() for item in value if str(item).strip()]


def concepts_from_records(records: Iterable[object]) -> list[Concept]:
    """Convert raw ``{key, label, aliases?}`` records into ``Concept`` objects.

    Non-mapping entries are skipped. A missing key becomes ``""`` so that key
    validation rejects it when the index is built.
    """

    concepts: list[Concept] = []
    for item in records:
        if isinstance(item, Concept):
            concepts.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        key = item.get("key")
        label = item.get("label")
        concepts.append(
            Concept(
                key=str(key).strip() if key is not None else "",
                label=str(label).strip() if label is not None else "",
                aliases=_coerce_aliases(item.get("aliases")),
            )
        )
    return concepts


def load_ontology(path: str | Path) -> list[Concept]:
    """Load concepts from a ``.json`` array or a ``.yaml``/``.yml`` list."""

    ontology_path = Path(path)
    if not ontology_path.exists():
        raise OntologyLoadError(f"Ontology file not found: {ontology_path}")

    raw = ontology_path.read_text(encoding="utf-8")
    suffix = ontology_path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        if yaml is None:  # pragma: no cover - requires pyyaml
            raise OntologyLoadError("pyyaml is required to load YAML ontologies") from YAML_IMPORT_ERROR
        try:
            data = yaml.safe_load(raw) or []
        except yaml.YAMLError as exc:
            raise OntologyLoadError(f"Invalid YAML ontology {ontology_path}: {exc}") from exc
    else:
        try:
            data = json.loads(raw) if raw.strip() else []
        except json.JSONDecodeError as exc:
            raise OntologyLoadError(f"Invalid JSON ontology {ontology_path}: {exc}") from exc

    if not isinstance(data, list):
        raise OntologyLoadError(f"Ontology {ontology_path} must contain a list of concepts")
    return concepts_from_records(data)


__all__ = [
    "Concept",
    "OntologyLoadError",
    "OntologyValidationError",
    "concepts_from_records",
    "load_ontology",
]
