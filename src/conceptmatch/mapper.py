"""Map free-text profile fields onto ontology concepts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, List, Mapping, Sequence

from .index import ConceptIndex, ConceptRole, find_concepts, get_depth, get_parent

logger = logging.getLogger(__name__)

DEFAULT_MIN_DEPTH = 3
_MIN_DESCRIPTION_LENGTH = 20


@dataclass(slots=True)
class ExtractedConcept:
    """A concept matched from one token of one profile field."""

    key: str
    label: str
    depth: int
    role: ConceptRole
    parent: str | None
    source: str
    matched_token: str | None = None
    matched_text: str | None = None
    sources: list[str] = field(default_factory=list)

    @property
    def provenance(self) -> list[str]:
        """Distinct sources after deduplication, falling back to the single raw source."""

        return list(self.sources) if self.sources else [self.source]

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ExtractedConcept":
        """Rebuild a concept from the ``to_dict`` shape, e.g. a stored lecturer document."""

        key = str(payload["key"])
        depth = int(payload.get("depth") or get_depth(key))
        role = payload.get("role")
        if role is None:
            role = {1: ConceptRole.ROOT, 2: ConceptRole.DOMAIN}.get(depth, ConceptRole.LEAF)
        return cls(
            key=key,
            label=str(payload.get("label") or key),
            depth=depth,
            role=ConceptRole(role),
            parent=payload.get("parent", get_parent(key)),
            source=str(payload.get("source") or "unknown"),
            matched_token=payload.get("matchedToken"),
            matched_text=payload.get("matchedText"),
            sources=[str(source) for source in payload.get("sources") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "depth": self.depth,
            "role": self.role.value,
            "parent": self.parent,
            "source": self.source,
            "sources": self.provenance,
            "matchedToken": self.matched_token,
            "matchedText": self.matched_text,
        }


@dataclass(slots=True)
class ExtractionResult:
    concepts: list[ExtractedConcept] = field(default_factory=list)
    unmatched_tokens: list[str] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)
    unmatched_by_source: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "concepts": [concept.to_dict() for concept in self.concepts],
            "unmatchedTokens": list(self.unmatched_tokens),
            "stats": dict(self.stats),
        }


def deduplicate_concepts(concepts: Iterable[ExtractedConcept]) -> List[ExtractedConcept]:
    """Collapse concepts sharing a key, keeping the first record and unioning sources."""

    merged: dict[str, ExtractedConcept] = {}
    for concept in concepts:
        existing = merged.get(concept.key)
        if existing is None:
            merged[concept.key] = replace(concept, sources=concept.provenance)
            continue
        for source in concept.provenance:
            if source not in existing.sources:
                existing.sources.append(source)
    return list(merged.values())


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def extract_from_text(
    text: str,
    index: ConceptIndex,
    *,
    source: str = "unknown",
    min_depth: int = DEFAULT_MIN_DEPTH,
) -> ExtractionResult:
    """Match every token of ``text`` and keep concepts at least ``min_depth`` deep.

    Shallow matches are dropped after matching, so their tokens still count as
    matched rather than unmatched.
    """

    matched: list[ExtractedConcept] = []
    unmatched: list[str] = []
    for token in index.normalizer.normalize_and_tokenize(text):
        hits = find_concepts(token, index)
        if not hits:
            unmatched.append(token)
            continue
        for concept in hits:
            matched.append(
                ExtractedConcept(
                    key=concept.key,
                    label=concept.label,
                    depth=concept.depth,
                    role=concept.role,
                    parent=concept.parent,
                    source=source,
                    matched_token=token,
                    matched_text=text,
                )
            )
    return ExtractionResult(
        concepts=[concept for concept in matched if concept.depth >= min_depth],
        unmatched_tokens=unmatched,
    )


def extract_from_array(
    texts: object,
    index: ConceptIndex,
    *,
    source: str = "unknown",
    min_depth: int = DEFAULT_MIN_DEPTH,
) -> ExtractionResult:
    if not isinstance(texts, (list, tuple)):
        return ExtractionResult()

    concepts: list[ExtractedConcept] = []
    unmatched: dict[str, None] = {}
    for text in texts:
        if not text or not isinstance(text, str):
            continue
        result = extract_from_text(text, index, source=source, min_depth=min_depth)
        concepts.extend(result.concepts)
        for token in result.unmatched_tokens:
            unmatched.setdefault(token, None)
    return ExtractionResult(concepts=deduplicate_concepts(concepts), unmatched_tokens=list(unmatched))


def _field(profile: object, name: str) -> Any:
    if isinstance(profile, Mapping):
        return profile.get(name)
    return getattr(profile, name, None)


def _names(items: object, attribute: str) -> list[str]:
    """Pull ``attribute`` out of a list of mappings or objects, skipping blanks."""

    if not isinstance(items, (list, tuple)):
        return []
    names: list[str] = []
    for item in items:
        value = item if isinstance(item, str) else _field(item, attribute)
        if isinstance(value, str) and value:
            names.append(value)
    return names


def _extract_sources(
    sources: Sequence[tuple[str, str, object]],
    index: ConceptIndex,
    *,
    min_depth: int,
) -> ExtractionResult:
    concepts: list[ExtractedConcept] = []
    unmatched: list[str] = []
    stats: dict[str, int] = {}
    by_source: dict[str, list[str]] = {}
    for stat_name, source, texts in sources:
        stats[stat_name] = 0
        if not texts:
            continue
        result = extract_from_array(texts, index, source=source, min_depth=min_depth)
        concepts.extend(result.concepts)
        unmatched.extend(result.unmatched_tokens)
        by_source[source] = list(result.unmatched_tokens)
        stats[stat_name] = len(result.concepts)

    result = ExtractionResult(concepts=deduplicate_concepts(concepts), unmatched_tokens=_unique(unmatched))
    result.stats = {**stats, "totalUnmatched": len(result.unmatched_tokens)}
    result.unmatched_by_source = by_source
    return result


def extract_lecturer_concepts(lecturer: object, index: ConceptIndex) -> ExtractionResult:
    """Extract concepts from a lecturer's interests, research areas and publication titles."""

    result = _extract_sources(
        [
            ("fromAreaInterest", "areaInterest", _field(lecturer, "areaInterest")),
            ("fromResearchInterests", "researchInterests", _field(lecturer, "researchInterests")),
            ("fromPublications", "publications", _names(_field(lecturer, "publications"), "title")),
        ],
        index,
        min_depth=DEFAULT_MIN_DEPTH,
    )
    logger.debug(
        "mapper.lecturer.extracted concepts=%s unmatched=%s",
        len(result.concepts),
        len(result.unmatched_tokens),
    )
    return result


def extract_student_concepts(student: object, index: ConceptIndex) -> ExtractionResult:
    result = _extract_sources(
        [
            ("fromSkills", "skills", _field(student, "skills")),
            ("fromInterests", "interests", _field(student, "interests")),
        ],
        index,
        min_depth=DEFAULT_MIN_DEPTH,
    )
    logger.debug(
        "mapper.student.extracted concepts=%s unmatched=%s",
        len(result.concepts),
        len(result.unmatched_tokens),
    )
    return result


def extract_topic_concepts(
    topic: object,
    index: ConceptIndex,
    *,
    min_depth: int = DEFAULT_MIN_DEPTH,
) -> ExtractionResult:
    """Extract concepts from a thesis topic's fields, requirements and description.

    The description only contributes when it is longer than twenty characters.
    """

    concepts: list[ExtractedConcept] = []
    unmatched: dict[str, None] = {}
    stats = {"fromFields": 0, "fromRequirements": 0, "fromDescription": 0}
    by_source: dict[str, list[str]] = {}

    for stat_name, source, attribute in (
        ("fromFields", "field", "fields"),
        ("fromRequirements", "requirement", "requirements"),
    ):
        names = _names(_field(topic, attribute), "name")
        if not names:
            continue
        partial = extract_from_array(names, index, source=source, min_depth=min_depth)
        concepts.extend(partial.concepts)
        stats[stat_name] = len(partial.concepts)
        by_source[source] = list(partial.unmatched_tokens)
        for token in partial.unmatched_tokens:
            unmatched.setdefault(token, None)

    description = _field(topic, "description")
    if isinstance(description, str) and len(description) > _MIN_DESCRIPTION_LENGTH:
        partial = extract_from_text(description, index, source="description", min_depth=min_depth)
        concepts.extend(partial.concepts)
        stats["fromDescription"] = len(partial.concepts)
        by_source["description"] = list(partial.unmatched_tokens)
        for token in partial.unmatched_tokens:
            unmatched.setdefault(token, None)

    unique = deduplicate_concepts(concepts)
    stats["total"] = len(unique)
    return ExtractionResult(
        concepts=unique,
        unmatched_tokens=list(unmatched),
        stats=stats,
        unmatched_by_source=by_source,
    )


def batch_extract_topic_concepts(
    topics: Iterable[object],
    index: ConceptIndex,
    *,
    min_depth: int = DEFAULT_MIN_DEPTH,
) -> List[ExtractionResult]:
    return [extract_topic_concepts(topic, index, min_depth=min_depth) for topic in topics]


__all__ = [
    "DEFAULT_MIN_DEPTH",
    "ExtractedConcept",
    "ExtractionResult",
    "batch_extract_topic_concepts",
    "deduplicate_concepts",
    "extract_from_array",
    "extract_from_text",
    "extract_lecturer_concepts",
    "extract_student_concepts",
    "extract_topic_concepts",
]
