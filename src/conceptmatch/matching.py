"""Score concept overlap between a profile and its candidates."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Mapping, Sequence

from .config import MatchingConfig
from .index import have_common_parent_at_depth
from .mapper import ExtractedConcept

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = MatchingConfig()


@dataclass(slots=True)
class MatchedConcept:
    key: str
    label: str
    depth: int
    weight: float
    source_sides: tuple[list[str], list[str]]
    match_type: str = "exact"

    @property
    def left_sources(self) -> list[str]:
        return self.source_sides[0]

    @property
    def right_sources(self) -> list[str]:
        return self.source_sides[1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "depth": self.depth,
            "weight": self.weight,
            "matchType": self.match_type,
            "studentSources": list(self.left_sources),
            "lecturerSources": list(self.right_sources),
        }


@dataclass(slots=True)
class ParentBoost:
    left_key: str
    right_key: str
    common_parent: str
    boost: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "studentKey": self.left_key,
            "lecturerKey": self.right_key,
            "commonParent": self.common_parent,
            "boost": self.boost,
        }


@dataclass(slots=True)
class MatchResult:
    """Outcome of scoring one concept set against another.

    ``parent_boosts`` holds the distinct boosted pairs for inspection only;
    ``boost_score`` is summed over every boosted pair of the cross product.
    """

    score: float
    core_score: float
    boost_score: float
    matched_concepts: list[MatchedConcept]
    parent_boosts: list[ParentBoost] = field(default_factory=list)

    @property
    def concept_count(self) -> int:
        return len(self.matched_concepts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "coreScore": self.core_score,
            "boostScore": self.boost_score,
            "matchedConcepts": [concept.to_dict() for concept in self.matched_concepts],
            "conceptCount": self.concept_count,
            "parentBoosts": [boost.to_dict() for boost in self.parent_boosts],
        }


class MatchStatus(str, Enum):
    INSUFFICIENT_CONCEPTS = "insufficient_concepts"
    BELOW_THRESHOLD = "below_threshold"
    MATCHED = "matched"


@dataclass(slots=True)
class MatchOutcome:
    status: MatchStatus
    score: float | None = None
    result: MatchResult | None = None

    @property
    def matched(self) -> bool:
        return self.status is MatchStatus.MATCHED


def _resolve_config(config: MatchingConfig | None, overrides: Mapping[str, Any]) -> MatchingConfig:
    base = config or _DEFAULT_CONFIG
    applied = {name: value for name, value in overrides.items() if value is not None}
    if not applied:
        return base
    unknown = set(applied) - {"min_depth", "min_score", "enable_parent_boost", "parent_boost", "parent_boost_depth"}
    if unknown:
        raise TypeError(f"Unknown matching option(s): {', '.join(sorted(unknown))}")
    return MatchingConfig(
        depth_weights=base.depth_weights,
        min_depth=applied.get("min_depth", base.min_depth),
        min_score=applied.get("min_score", base.min_score),
        parent_boost=applied.get("parent_boost", base.parent_boost),
        parent_boost_depth=applied.get("parent_boost_depth", base.parent_boost_depth),
        enable_parent_boost=applied.get("enable_parent_boost", base.enable_parent_boost),
    )


def score_pair(
    left: Sequence[ExtractedConcept],
    right: Sequence[ExtractedConcept],
    config: MatchingConfig | None = None,
    **overrides: Any,
) -> MatchOutcome:
    """Score ``left`` against ``right`` and report why a pair did not match."""

    cfg = _resolve_config(config, overrides)
    valid_left = [concept for concept in left if concept.depth >= cfg.min_depth]
    valid_right = [concept for concept in right if concept.depth >= cfg.min_depth]
    if not valid_left or not valid_right:
        return MatchOutcome(status=MatchStatus.INSUFFICIENT_CONCEPTS)

    right_by_key = {concept.key: concept for concept in valid_right}
    matched: list[MatchedConcept] = []
    core_score = 0.0
    for concept in valid_left:
        counterpart = right_by_key.get(concept.key)
        if counterpart is None:
            continue
        weight = cfg.weight_for_depth(concept.depth)
        core_score += weight
        matched.append(
            MatchedConcept(
                key=concept.key,
                label=concept.label,
                depth=concept.depth,
                weight=weight,
                source_sides=(concept.provenance, counterpart.provenance),
            )
        )

    boost_score = 0.0
    distinct_boosts: dict[tuple[str, str], ParentBoost] = {}
    # Boosts only apply on top of at least one exact match.
    if cfg.enable_parent_boost and core_score > 0:
        for concept in valid_left:
            for counterpart in valid_right:
                if concept.key == counterpart.key:
                    continue
                if not have_common_parent_at_depth(concept.key, counterpart.key, cfg.parent_boost_depth):
                    continue
                boost_score += cfg.parent_boost
                distinct_boosts.setdefault(
                    (concept.key, counterpart.key),
                    ParentBoost(
                        left_key=concept.key,
                        right_key=counterpart.key,
                        common_parent=".".join(concept.key.split(".")[: cfg.parent_boost_depth]),
                        boost=cfg.parent_boost,
                    ),
                )

    total = core_score + boost_score
    logger.debug("matching.pair.scored core=%s boost=%s matched=%s", core_score, boost_score, len(matched))
    if total < cfg.min_score:
        return MatchOutcome(status=MatchStatus.BELOW_THRESHOLD, score=total)

    result = MatchResult(
        score=total,
        core_score=core_score,
        boost_score=boost_score,
        matched_concepts=matched,
        parent_boosts=list(distinct_boosts.values()),
    )
    return MatchOutcome(status=MatchStatus.MATCHED, score=total, result=result)


def match_pair(
    left: Sequence[ExtractedConcept],
    right: Sequence[ExtractedConcept],
    config: MatchingConfig | None = None,
    **overrides: Any,
) -> MatchResult | None:
    """Return the match result, or None when the pair is too sparse or scores too low."""

    return score_pair(left, right, config, **overrides).result


@dataclass(slots=True)
class CandidateProfile:
    """A lecturer or topic with its extracted concepts."""

    candidate_id: str
    concepts: list[ExtractedConcept]
    name: str | None = None
    title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "CandidateProfile":
        identifier = payload.get("id", payload.get("_id"))
        user = payload.get("userId")
        name = payload.get("name")
        if name is None and isinstance(user, Mapping):
            name = user.get("name")
        metadata = {}
        if payload.get("facultyId") is not None:
            metadata["faculty"] = payload.get("facultyId")
        return cls(
            candidate_id=str(identifier) if identifier is not None else "",
            concepts=[
                concept if isinstance(concept, ExtractedConcept) else ExtractedConcept.from_mapping(concept)
                for concept in payload.get("concepts") or []
            ],
            name=name,
            title=payload.get("title"),
            metadata=metadata,
        )


@dataclass(slots=True)
class CandidateMatch:
    candidate_id: str
    result: MatchResult
    name: str | None = None
    title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def score(self) -> float:
        return self.result.score

    @property
    def concept_count(self) -> int:
        return self.result.concept_count

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "candidateId": self.candidate_id,
            "name": self.name or "Unknown",
            "title": self.title,
        }
        payload.update(self.metadata)
        payload.update(self.result.to_dict())
        return payload


def match_one_against_many(
    concepts: Sequence[ExtractedConcept],
    candidates: Iterable[CandidateProfile | Mapping[str, Any]],
    config: MatchingConfig | None = None,
    *,
    max_workers: int | None = None,
    **overrides: Any,
) -> List[CandidateMatch]:
    """Match one concept set against every candidate, best score first.

    Equal scores keep the candidates' input order.
    """

    cfg = _resolve_config(config, overrides)
    profiles = [
        candidate if isinstance(candidate, CandidateProfile) else CandidateProfile.from_mapping(candidate)
        for candidate in candidates
    ]
    profiles = [profile for profile in profiles if profile.concepts]

    def _score(profile: CandidateProfile) -> MatchResult | None:
        return match_pair(concepts, profile.concepts, cfg)

    if max_workers and max_workers > 1 and len(profiles) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(_score, profiles))
    else:
        results = [_score(profile) for profile in profiles]

    matches = [
        CandidateMatch(
            candidate_id=profile.candidate_id,
            result=result,
            name=profile.name,
            title=profile.title,
            metadata=dict(profile.metadata),
        )
        for profile, result in zip(profiles, results)
        if result is not None
    ]
    matches.sort(key=lambda match: match.score, reverse=True)
    logger.info(
        "matching.one_against_many.completed candidates=%s matches=%s",
        len(profiles),
        len(matches),
    )
    return matches


def rank_matches(
    matches: Sequence[CandidateMatch],
    *,
    top_n: int = 10,
    min_score: float = _DEFAULT_CONFIG.min_score,
    min_concept_count: int = 1,
) -> List[CandidateMatch]:
    """Filter already-sorted matches and keep the first ``top_n``."""

    kept = [
        match
        for match in matches
        if match.score >= min_score and match.concept_count >= min_concept_count
    ]
    return kept[: max(0, top_n)]


@dataclass(slots=True)
class MatchStats:
    total_matches: int = 0
    avg_score: float = 0.0
    max_score: float = 0.0
    min_score: float = 0.0
    avg_concept_count: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalMatches": self.total_matches,
            "avgScore": self.avg_score,
            "maxScore": self.max_score,
            "minScore": self.min_score,
            "avgConceptCount": self.avg_concept_count,
        }


def compute_match_stats(matches: Sequence[CandidateMatch]) -> MatchStats:
    if not matches:
        return MatchStats()
    scores = [match.score for match in matches]
    counts = [match.concept_count for match in matches]
    return MatchStats(
        total_matches=len(matches),
        avg_score=sum(scores) / len(scores),
        max_score=max(scores),
        min_score=min(scores),
        avg_concept_count=sum(counts) / len(counts),
    )


__all__ = [
    "CandidateMatch",
    "CandidateProfile",
    "MatchOutcome",
    "MatchResult",
    "MatchStats",
    "MatchStatus",
    "MatchedConcept",
    "ParentBoost",
    "compute_match_stats",
    "match_one_against_many",
    "match_pair",
    "rank_matches",
    "score_pair",
]
