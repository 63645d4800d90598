"""Mine unmatched tokens for concepts the ontology does not cover yet."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Sequence

from rapidfuzz.distance import Levenshtein

from .config import EvolutionConfig
from .index import ConceptIndex
from .llm import LLMClient, parse_json_response

logger = logging.getLogger(__name__)
_configured_level = os.getenv("CONCEPT_EVOLUTION_LOG_LEVEL")
if _configured_level:
    level_value = getattr(logging, _configured_level.upper(), None)
    if isinstance(level_value, int):
        logger.setLevel(level_value)
    elif logger.level == logging.NOTSET:
        logger.setLevel(logging.INFO)
elif logger.level == logging.NOTSET:
    logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
logger.propagate = False

_DEFAULT_CONFIG = EvolutionConfig()
_LABEL_SPLIT_RE = re.compile(r"[\s_-]+")
_KEY_STRIP_RE = re.compile(r"[^a-z0-9\s]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class TokenCluster:
    tokens: list[str]
    frequency: int
    canonical: str

    def to_dict(self) -> dict[str, Any]:
        return {"tokens": list(self.tokens), "frequency": self.frequency, "canonical": self.canonical}


@dataclass(slots=True)
class UnmatchedToken:
    """One observation of an unmatched token, kept as provenance for curators."""

    token: str
    profile_id: str
    profile_type: str
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "profileId": self.profile_id,
            "profileType": self.profile_type,
            "source": self.source,
        }

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "UnmatchedToken":
        return cls(
            token=str(payload.get("token", "")),
            profile_id=str(payload.get("profileId", "")),
            profile_type=str(payload.get("profileType", "")),
            source=str(payload.get("source", "")),
        )


@dataclass(slots=True)
class UnmatchedTokenBatch:
    """Unmatched tokens from one field of one profile."""

    profile_id: str
    profile_type: str
    source: str
    unmatched_tokens: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "UnmatchedTokenBatch":
        tokens = payload.get("unmatchedTokens") or []
        return cls(
            profile_id=str(payload.get("profileId", "")),
            profile_type=str(payload.get("profileType", "")),
            source=str(payload.get("source", "")),
            unmatched_tokens=[str(token) for token in tokens],
        )

    def observations(self) -> list[UnmatchedToken]:
        return [
            UnmatchedToken(
                token=token,
                profile_id=self.profile_id,
                profile_type=self.profile_type,
                source=self.source,
            )
            for token in self.unmatched_tokens
        ]


@dataclass(slots=True)
class ConceptSuggestion:
    parent: str
    label: str
    aliases: list[str] = field(default_factory=list)
    origin: str = "keyword"

    def to_dict(self) -> dict[str, Any]:
        return {
            "parent": self.parent,
            "label": self.label,
            "aliases": list(self.aliases),
            "origin": self.origin,
        }


@dataclass(slots=True)
class ConceptCandidate:
    """A cluster of unmatched tokens proposed as a new ontology entry."""

    canonical: str
    variants: list[str]
    frequency: int
    examples: list[UnmatchedToken] = field(default_factory=list)
    suggestion: ConceptSuggestion | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "canonical": self.canonical,
            "variants": list(self.variants),
            "frequency": self.frequency,
            "examples": [example.to_dict() for example in self.examples],
        }
        if self.suggestion is not None:
            payload["suggestion"] = self.suggestion.to_dict()
        return payload


def levenshtein_distance(left: str, right: str) -> int:
    """Single-character insert/delete/substitute edit distance."""

    return Levenshtein.distance(left, right)


def is_similar(
    left: str,
    right: str,
    *,
    max_edit_distance: int = _DEFAULT_CONFIG.max_edit_distance,
    max_length_delta: int = _DEFAULT_CONFIG.max_length_delta,
) -> bool:
    if left in right or right in left:
        return True
    if abs(len(left) - len(right)) > max_length_delta:
        return False
    return levenshtein_distance(left, right) <= max_edit_distance


def group_similar_tokens(tokens: Sequence[str], config: EvolutionConfig | None = None) -> List[List[str]]:
    """Greedy first-seen grouping: each group holds a seed and every later token similar to it.

    Members are compared with the seed only, never with each other.
    """

    cfg = config or _DEFAULT_CONFIG
    groups: list[list[str]] = []
    processed: set[str] = set()
    for position, seed in enumerate(tokens):
        if seed in processed:
            continue
        processed.add(seed)
        group = [seed]
        for other in tokens[position + 1 :]:
            if other in processed:
                continue
            if is_similar(
                seed,
                other,
                max_edit_distance=cfg.max_edit_distance,
                max_length_delta=cfg.max_length_delta,
            ):
                group.append(other)
                processed.add(other)
        groups.append(group)
    return groups


def detect_new_concepts(
    unmatched_tokens: Iterable[str],
    config: EvolutionConfig | None = None,
    *,
    min_token_length: int | None = None,
    exclude_common_words: bool | None = None,
) -> List[TokenCluster]:
    """Filter short and stoplisted tokens and cluster the rest.

    ``frequency`` is the number of tokens in the cluster and ``canonical`` its seed.
    """

    cfg = config or _DEFAULT_CONFIG
    min_length = cfg.min_token_length if min_token_length is None else min_token_length
    exclude = cfg.exclude_common_words if exclude_common_words is None else exclude_common_words

    kept = [
        token
        for token in unmatched_tokens
        if len(token) >= min_length and not (exclude and token in cfg.common_words)
    ]
    return [
        TokenCluster(tokens=group, frequency=len(group), canonical=group[0])
        for group in group_similar_tokens(kept, cfg)
    ]


def _title_case(token: str) -> str:
    words = [word for word in _LABEL_SPLIT_RE.split(token) if word]
    return " ".join(word[0].upper() + word[1:] for word in words)


def suggest_parent_by_keyword(token: str, config: EvolutionConfig | None = None) -> ConceptSuggestion:
    """Pick the first domain whose keyword occurs in ``token``; otherwise the default parent."""

    cfg = config or _DEFAULT_CONFIG
    lowered = token.lower()
    parent = cfg.default_parent
    for domain, keywords in cfg.domain_keywords:
        if any(keyword in lowered for keyword in keywords):
            parent = domain
            break
    return ConceptSuggestion(parent=parent, label=_title_case(token), aliases=[], origin="keyword")


def _build_parent_prompt(token: str, index: ConceptIndex) -> str:
    domains = "\n".join(f"{domain.key}: {domain.label}" for domain in index.domains())
    return (
        "You classify new IT research concepts into an existing ontology.\n\n"
        f'New concept: "{token}"\n\n'
        f"Existing domains:\n{domains}\n\n"
        "Suggest the most suitable parent domain key, a canonical label and any aliases.\n"
        'Reply with JSON only: {"parent": "it.xxx", "label": "...", "aliases": ["..."]}'
    )


def _suggestion_from_payload(payload: object) -> ConceptSuggestion | None:
    if not isinstance(payload, Mapping):
        return None
    parent = payload.get("parent")
    label = payload.get("label")
    if not isinstance(parent, str) or not parent.strip():
        return None
    if not isinstance(label, str) or not label.strip():
        return None
    aliases = payload.get("aliases") or []
    if not isinstance(aliases, (list, tuple)):
        aliases = [aliases]
    return ConceptSuggestion(
        parent=parent.strip(),
        label=label.strip(),
        aliases=[str(alias).strip() for alias in aliases if str(alias).strip()],
        origin="llm",
    )


def suggest_concept_parent(
    token: str,
    index: ConceptIndex,
    llm_client: LLMClient | None = None,
    config: EvolutionConfig | None = None,
) -> ConceptSuggestion:
    """Ask the LLM for a parent domain, falling back to keyword matching on any failure."""

    if llm_client is None:
        return suggest_parent_by_keyword(token, config)

    try:
        response = llm_client.generate(_build_parent_prompt(token, index), format="json")
        suggestion = _suggestion_from_payload(parse_json_response(response.text))
    except Exception as exc:
        logger.warning("concept_evolution.llm.suggest_failed token=%s error=%s", token, exc)
        return suggest_parent_by_keyword(token, config)

    if suggestion is None:
        logger.warning("concept_evolution.llm.unparseable token=%s", token)
        return suggest_parent_by_keyword(token, config)
    return suggestion


def generate_concept_key(label: str, parent: str) -> str:
    """``generate_concept_key("Edge AI", "it.ai")`` returns ``"it.ai.edge_ai"``."""

    normalized = _KEY_STRIP_RE.sub("", label.lower()).strip()
    return f"{parent}.{_WHITESPACE_RE.sub('_', normalized)}"


def _coerce_batch(batch: UnmatchedTokenBatch | Mapping[str, Any]) -> UnmatchedTokenBatch:
    if isinstance(batch, UnmatchedTokenBatch):
        return batch
    return UnmatchedTokenBatch.from_mapping(batch)


def build_concept_candidate_queue(
    unmatched_by_profile: Iterable[UnmatchedTokenBatch | Mapping[str, Any]],
    index: ConceptIndex | None = None,
    config: EvolutionConfig | None = None,
) -> List[ConceptCandidate]:
    """Cluster unmatched tokens across profiles into candidates, most frequent first.

    ``frequency`` counts observations of the canonical token only. When ``index``
    is given every candidate carries a keyword-based parent suggestion.
    """

    cfg = config or _DEFAULT_CONFIG
    observations: list[UnmatchedToken] = []
    for batch in unmatched_by_profile:
        observations.extend(_coerce_batch(batch).observations())

    frequency: dict[str, int] = {}
    for observation in observations:
        frequency[observation.token] = frequency.get(observation.token, 0) + 1

    candidates: list[ConceptCandidate] = []
    for cluster in detect_new_concepts(list(frequency), cfg):
        members = set(cluster.tokens)
        examples = [observation for observation in observations if observation.token in members]
        candidates.append(
            ConceptCandidate(
                canonical=cluster.canonical,
                variants=list(cluster.tokens),
                frequency=frequency.get(cluster.canonical) or 1,
                examples=examples[: cfg.max_examples],
                suggestion=suggest_parent_by_keyword(cluster.canonical, cfg) if index is not None else None,
            )
        )

    candidates.sort(key=lambda candidate: candidate.frequency, reverse=True)
    logger.info(
        "concept_evolution.queue.built observations=%s unique_tokens=%s candidates=%s",
        len(observations),
        len(frequency),
        len(candidates),
    )
    return candidates


def merge_candidate_queues(
    existing: Sequence[ConceptCandidate],
    incoming: Sequence[ConceptCandidate],
) -> List[ConceptCandidate]:
    """Fold ``incoming`` into ``existing`` by canonical token without mutating either.

    Frequencies add up, variants are unioned and examples are deduplicated by
    ``(profile_id, token)``. An existing suggestion is kept.
    """

    merged: dict[str, ConceptCandidate] = {}
    for candidate in existing:
        merged[candidate.canonical] = ConceptCandidate(
            canonical=candidate.canonical,
            variants=list(candidate.variants),
            frequency=candidate.frequency,
            examples=list(candidate.examples),
            suggestion=candidate.suggestion,
        )

    updated = 0
    for candidate in incoming:
        current = merged.get(candidate.canonical)
        if current is None:
            merged[candidate.canonical] = ConceptCandidate(
                canonical=candidate.canonical,
                variants=list(candidate.variants),
                frequency=candidate.frequency,
                examples=list(candidate.examples),
                suggestion=candidate.suggestion,
            )
            continue
        updated += 1
        current.frequency += candidate.frequency
        current.variants = list(dict.fromkeys([*current.variants, *candidate.variants]))
        seen: set[tuple[str, str]] = set()
        examples: list[UnmatchedToken] = []
        for example in [*current.examples, *candidate.examples]:
            marker = (example.profile_id, example.token)
            if marker in seen:
                continue
            seen.add(marker)
            examples.append(example)
        current.examples = examples
        if current.suggestion is None:
            current.suggestion = candidate.suggestion

    result = sorted(merged.values(), key=lambda candidate: candidate.frequency, reverse=True)
    logger.info(
        "concept_evolution.queue.merged created=%s updated=%s total=%s",
        len(result) - len(existing),
        updated,
        len(result),
    )
    return result


__all__ = [
    "ConceptCandidate",
    "ConceptSuggestion",
    "TokenCluster",
    "UnmatchedToken",
    "UnmatchedTokenBatch",
    "build_concept_candidate_queue",
    "detect_new_concepts",
    "generate_concept_key",
    "group_similar_tokens",
    "is_similar",
    "levenshtein_distance",
    "merge_candidate_queues",
    "suggest_concept_parent",
    "suggest_parent_by_keyword",
]
