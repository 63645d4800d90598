"""Read-only lookup structures over the concept ontology."""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping, Sequence

from .ontology import Concept, OntologyValidationError
from .text_normalizer import TextNormalizer, default_normalizer

logger = logging.getLogger(__name__)


class ConceptRole(str, Enum):
    ROOT = "root"
    DOMAIN = "domain"
    BRANCH = "branch"
    LEAF = "leaf"


@dataclass(frozen=True, slots=True)
class EnrichedConcept:
    """A concept annotated with its position in the key hierarchy."""

    key: str
    label: str
    depth: int
    parent: str | None
    role: ConceptRole
    aliases: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "label": self.label,
            "aliases": list(self.aliases),
            "depth": self.depth,
            "parent": self.parent,
            "role": self.role.value,
        }


def get_depth(key: str) -> int:
    """``it.ai.machine-learning`` has depth 3."""

    return len(key.split("."))


def get_parent(key: str) -> str | None:
    parts = key.split(".")
    if len(parts) <= 1:
        return None
    return ".".join(parts[:-1])


def _has_descendant(key: str, sorted_keys: Sequence[str]) -> bool:
    prefix = key + "."
    position = bisect.bisect_left(sorted_keys, prefix)
    return position < len(sorted_keys) and sorted_keys[position].startswith(prefix)


def _role_from_sorted(key: str, sorted_keys: Sequence[str]) -> ConceptRole:
    depth = get_depth(key)
    if depth == 1:
        return ConceptRole.ROOT
    if depth == 2:
        return ConceptRole.DOMAIN
    return ConceptRole.BRANCH if _has_descendant(key, sorted_keys) else ConceptRole.LEAF


def get_role(key: str, all_keys: Iterable[str]) -> ConceptRole:
    return _role_from_sorted(key, sorted(all_keys))


def have_common_parent_at_depth(key_a: str, key_b: str, depth: int) -> bool:
    """True when both keys are deeper than ``depth`` and share their first ``depth`` segments."""

    parts_a = key_a.split(".")
    parts_b = key_b.split(".")
    if len(parts_a) <= depth or len(parts_b) <= depth:
        return False
    return parts_a[:depth] == parts_b[:depth]


@dataclass(frozen=True, slots=True)
class ConceptIndex:
    """Immutable lookup tables built once from an ontology.

    ``concepts`` is the arena; the other tables store arena positions.
    """

    concepts: tuple[EnrichedConcept, ...]
    by_key: Mapping[str, int]
    by_label: Mapping[str, tuple[int, ...]]
    by_alias: Mapping[str, tuple[int, ...]]
    all_keys: tuple[str, ...]
    normalizer: TextNormalizer = field(default_factory=default_normalizer, compare=False, repr=False)

    def __len__(self) -> int:
        return len(self.by_key)

    def __contains__(self, key: object) -> bool:
        return key in self.by_key

    def __iter__(self) -> Iterator[EnrichedConcept]:
        for position in self.by_key.values():
            yield self.concepts[position]

    def get(self, key: str) -> EnrichedConcept | None:
        position = self.by_key.get(key)
        return None if position is None else self.concepts[position]

    def resolve(self, positions: Iterable[int]) -> List[EnrichedConcept]:
        return [self.concepts[position] for position in positions]

    def domains(self) -> List[EnrichedConcept]:
        return [concept for concept in self if concept.depth == 2]


def _validate_key(key: str) -> None:
    if not key or not key.strip():
        raise OntologyValidationError("Concept key must be a non-empty string")
    if any(not segment for segment in key.split(".")):
        raise OntologyValidationError(f"Concept key '{key}' contains an empty segment")


def build_concept_index(
    concepts: Iterable[Concept],
    *,
    normalizer: TextNormalizer | None = None,
    strict: bool = True,
) -> ConceptIndex:
    """Build the key/label/alias index for ``concepts``.

    In strict mode malformed or duplicate keys raise ``OntologyValidationError``.
    Otherwise malformed keys are skipped, the last concept with a given key
    wins, and a warning is logged for each.
    """

    normalizer = normalizer or default_normalizer()
    items: list[Concept] = []

    # First pass: every key, since roles depend on the whole set.
    seen: set[str] = set()
    for concept in concepts:
        try:
            _validate_key(concept.key)
        except OntologyValidationError:
            if strict:
                raise
            logger.warning("concept_index.invalid_key key=%r policy=skip", concept.key)
            continue
        items.append(concept)
        if concept.key in seen:
            if strict:
                raise OntologyValidationError(f"Duplicate concept key '{concept.key}'")
            logger.warning("concept_index.duplicate_key key=%s policy=last-wins", concept.key)
        seen.add(concept.key)
    sorted_keys = sorted(seen)

    arena: list[EnrichedConcept] = []
    by_key: dict[str, int] = {}
    by_label: dict[str, list[int]] = {}
    by_alias: dict[str, list[int]] = {}
    all_keys: list[str] = []

    for concept in items:
        enriched = EnrichedConcept(
            key=concept.key,
            label=concept.label,
            depth=get_depth(concept.key),
            parent=get_parent(concept.key),
            role=_role_from_sorted(concept.key, sorted_keys),
            aliases=tuple(concept.aliases or ()),
        )
        position = len(arena)
        arena.append(enriched)
        all_keys.append(concept.key)
        by_key[concept.key] = position

        normalized_label = normalizer.normalize(concept.label)
        if normalized_label:
            by_label.setdefault(normalized_label, []).append(position)
        for alias in concept.aliases or ():
            normalized_alias = normalizer.normalize(alias)
            if normalized_alias:
                by_alias.setdefault(normalized_alias, []).append(position)

    index = ConceptIndex(
        concepts=tuple(arena),
        by_key=MappingProxyType(by_key),
        by_label=MappingProxyType({label: tuple(values) for label, values in by_label.items()}),
        by_alias=MappingProxyType({alias: tuple(values) for alias, values in by_alias.items()}),
        all_keys=tuple(all_keys),
        normalizer=normalizer,
    )
    logger.info(
        "concept_index.built concepts=%s labels=%s aliases=%s",
        len(index),
        len(index.by_label),
        len(index.by_alias),
    )
    return index


def _dedupe_by_key(concepts: Iterable[EnrichedConcept]) -> List[EnrichedConcept]:
    seen: set[str] = set()
    unique: list[EnrichedConcept] = []
    for concept in concepts:
        if concept.key in seen:
            continue
        seen.add(concept.key)
        unique.append(concept)
    return unique


def find_concepts(token: str, index: ConceptIndex) -> List[EnrichedConcept]:
    """Resolve a normalized token to concepts.

    Exact label hits win, then exact alias hits, then a two-way substring scan
    over labels. An empty list means the token is unmatched.
    """

    if not token:
        return []
    positions = index.by_label.get(token)
    if positions:
        return _dedupe_by_key(index.resolve(positions))
    positions = index.by_alias.get(token)
    if positions:
        return _dedupe_by_key(index.resolve(positions))

    partial: list[EnrichedConcept] = []
    for label, label_positions in index.by_label.items():
        if token in label or label in token:
            partial.extend(index.resolve(label_positions))
    return _dedupe_by_key(partial)


def get_ancestors(key: str, index: ConceptIndex) -> List[EnrichedConcept]:
    """Walk parent links from ``key`` (inclusive) to the root, stopping at unknown keys."""

    ancestors: list[EnrichedConcept] = []
    current: str | None = key
    while current:
        concept = index.get(current)
        if concept is None:
            break
        ancestors.append(concept)
        current = concept.parent
    return ancestors


def get_descendants(key: str, index: ConceptIndex) -> List[EnrichedConcept]:
    prefix = key + "."
    descendants: list[EnrichedConcept] = []
    for candidate in dict.fromkeys(index.all_keys):
        if candidate.startswith(prefix):
            concept = index.get(candidate)
            if concept is not None:
                descendants.append(concept)
    return descendants


__all__ = [
    "ConceptIndex",
    "ConceptRole",
    "EnrichedConcept",
    "build_concept_index",
    "find_concepts",
    "get_ancestors",
    "get_depth",
    "get_descendants",
    "get_parent",
    "get_role",
    "have_common_parent_at_depth",
]
