"""Human-readable explanations of match results."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Sequence

from .llm import LLMClient
from .matching import CandidateMatch, MatchResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConceptExplanation:
    key: str
    label: str
    reason: str
    detail: str | None = None
    weight: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"key": self.key, "label": self.label, "reason": self.reason}
        if self.detail is not None:
            payload["detail"] = self.detail
        if self.weight is not None:
            payload["weight"] = self.weight
        return payload


@dataclass(slots=True)
class Explanation:
    summary: str
    matched_concepts: list[ConceptExplanation]
    score: float
    origin: str = "template"

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "matchedConcepts": [concept.to_dict() for concept in self.matched_concepts],
            "score": self.score,
        }


@dataclass(slots=True)
class ExplainedMatch:
    match: CandidateMatch
    explanation: Explanation

    def to_dict(self) -> dict[str, Any]:
        payload = self.match.to_dict()
        payload["explanation"] = self.explanation.to_dict()
        return payload


def _reason(label: str) -> str:
    return f"Both focus on {label}"


def generate_basic_explanation(result: MatchResult) -> Explanation:
    """Template explanation: one entry per distinct matched concept plus a summary line."""

    first_by_key: dict[str, Any] = {}
    for concept in result.matched_concepts:
        first_by_key.setdefault(concept.key, concept)

    explanations = [
        ConceptExplanation(
            key=concept.key,
            label=concept.label,
            reason=_reason(concept.label),
            detail=(
                f"Student interest (from {', '.join(concept.left_sources)}), "
                f"lecturer research (from {', '.join(concept.right_sources)})"
            ),
            weight=concept.weight,
        )
        for concept in first_by_key.values()
    ]
    return Explanation(
        summary=f"Matched {result.concept_count} shared concept(s), total score: {result.score:.2f}",
        matched_concepts=explanations,
        score=result.score,
    )


def _field(profile: object, name: str) -> Any:
    if profile is None:
        return None
    if isinstance(profile, Mapping):
        return profile.get(name)
    return getattr(profile, name, None)


def _joined(profile: object, name: str) -> str:
    values = _field(profile, name)
    if not isinstance(values, (list, tuple)) or not values:
        return "N/A"
    return ", ".join(str(value) for value in values)


def _build_explanation_prompt(result: MatchResult, student: object, lecturer: object) -> str:
    concepts = ", ".join(concept.label for concept in result.matched_concepts)
    return "\n".join(
        [
            "You are an academic advisor. Explain why this student and lecturer are a good fit.",
            "",
            "Student:",
            f"- Skills: {_joined(student, 'skills')}",
            f"- Interests: {_joined(student, 'interests')}",
            "",
            "Lecturer:",
            f"- Title: {_field(lecturer, 'title') or 'N/A'}",
            f"- Areas: {_joined(lecturer, 'areaInterest')}",
            f"- Research: {_joined(lecturer, 'researchInterests')}",
            "",
            f"Matched concepts: {concepts}",
            "",
            "Write two or three short sentences focused on their shared expertise.",
        ]
    )


def generate_llm_explanation(
    result: MatchResult,
    llm_client: LLMClient | None,
    *,
    student: object = None,
    lecturer: object = None,
) -> Explanation:
    """Let the LLM write the summary; any failure falls back to the template."""

    if llm_client is None:
        return generate_basic_explanation(result)

    try:
        response = llm_client.generate(_build_explanation_prompt(result, student, lecturer))
        summary = (response.text or "").strip()
    except Exception as exc:
        logger.warning("explainer.llm.failed error=%s", exc)
        return generate_basic_explanation(result)
    if not summary:
        logger.warning("explainer.llm.empty_response")
        return generate_basic_explanation(result)

    return Explanation(
        summary=summary,
        matched_concepts=[
            ConceptExplanation(key=concept.key, label=concept.label, reason=_reason(concept.label))
            for concept in result.matched_concepts
        ],
        score=result.score,
        origin="llm",
    )


def format_explanation(explanation: Explanation) -> str:
    lines = [
        f"Score: {explanation.score:.2f}",
        explanation.summary,
        "",
        "Matched concepts:",
    ]
    for position, concept in enumerate(explanation.matched_concepts, start=1):
        lines.append(f"  {position}. {concept.label}")
        lines.append(f"     {concept.reason}")
        if concept.detail:
            lines.append(f"     {concept.detail}")
    return "\n".join(lines)


def _profile_id(profile: object) -> str | None:
    identifier = _field(profile, "id")
    if identifier is None:
        identifier = _field(profile, "_id")
    return None if identifier is None else str(identifier)


def explain_matches(
    matches: Sequence[CandidateMatch],
    *,
    use_llm: bool = False,
    llm_client: LLMClient | None = None,
    student: object = None,
    lecturers: Mapping[str, object] | Iterable[object] | None = None,
) -> List[ExplainedMatch]:
    """Attach an explanation to every match.

    ``lecturers`` is either an id-to-profile mapping or a list of profiles
    carrying ``id`` or ``_id``. When given, matches without a lecturer profile
    of the same id are skipped.
    """

    profiles: dict[str, object] | None = None
    if isinstance(lecturers, Mapping):
        profiles = {str(key): value for key, value in lecturers.items()}
    elif lecturers is not None:
        profiles = {}
        for profile in lecturers:
            identifier = _profile_id(profile)
            if identifier is not None:
                profiles.setdefault(identifier, profile)

    explained: list[ExplainedMatch] = []
    for match in matches:
        lecturer = None
        if profiles is not None:
            lecturer = profiles.get(match.candidate_id)
            if lecturer is None:
                continue
        if use_llm:
            explanation = generate_llm_explanation(match.result, llm_client, student=student, lecturer=lecturer)
        else:
            explanation = generate_basic_explanation(match.result)
        explained.append(ExplainedMatch(match=match, explanation=explanation))
    return explained


__all__ = [
    "ConceptExplanation",
    "ExplainedMatch",
    "Explanation",
    "explain_matches",
    "format_explanation",
    "generate_basic_explanation",
    "generate_llm_explanation",
]
