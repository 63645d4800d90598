"""End-to-end matching run: index, extract, match, rank, explain and mine candidates."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from .config import EvolutionConfig, MatchingConfig, Settings
from .evolution import (
    ConceptCandidate,
    UnmatchedTokenBatch,
    build_concept_candidate_queue,
    suggest_concept_parent,
)
from .explainer import ExplainedMatch, explain_matches
from .index import ConceptIndex, build_concept_index
from .llm import LLMClient
from .mapper import ExtractionResult, extract_lecturer_concepts, extract_student_concepts
from .matching import (
    CandidateProfile,
    MatchStats,
    compute_match_stats,
    match_one_against_many,
    rank_matches,
)
from .observability import MetricsRecorder
from .ontology import Concept, load_ontology

logger = logging.getLogger(__name__)


def _profile_value(profile: object, name: str) -> Any:
    if isinstance(profile, Mapping):
        return profile.get(name)
    return getattr(profile, name, None)


def _profile_id(profile: object, default: str) -> str:
    for name in ("id", "_id"):
        value = _profile_value(profile, name)
        if value is not None:
            return str(value)
    return default


def _profile_name(profile: object) -> str | None:
    name = _profile_value(profile, "name")
    if name is None:
        user = _profile_value(profile, "userId")
        if isinstance(user, Mapping):
            name = user.get("name")
    return name


def _unmatched_batches(
    extraction: ExtractionResult,
    *,
    profile_id: str,
    profile_type: str,
) -> list[UnmatchedTokenBatch]:
    return [
        UnmatchedTokenBatch(
            profile_id=profile_id,
            profile_type=profile_type,
            source=source,
            unmatched_tokens=list(tokens),
        )
        for source, tokens in extraction.unmatched_by_source.items()
        if tokens
    ]


@dataclass(slots=True)
class MatchingRunResult:
    student_id: str
    student_extraction: ExtractionResult
    matches: list[ExplainedMatch]
    stats: MatchStats
    candidates: list[ConceptCandidate] = field(default_factory=list)
    timings: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "studentId": self.student_id,
            "studentConcepts": self.student_extraction.to_dict(),
            "matches": [match.to_dict() for match in self.matches],
            "stats": self.stats.to_dict(),
            "candidates": [candidate.to_dict() for candidate in self.candidates],
        }


class MatchingPipeline:
    """Match students against lecturers over one immutable concept index."""

    def __init__(
        self,
        index: ConceptIndex,
        *,
        matching_config: MatchingConfig | None = None,
        evolution_config: EvolutionConfig | None = None,
        metrics: MetricsRecorder | None = None,
        llm_client: LLMClient | None = None,
        max_workers: int | None = None,
        suggest_with_llm: bool = False,
    ) -> None:
        self._index = index
        self._matching_config = matching_config or MatchingConfig()
        self._evolution_config = evolution_config or EvolutionConfig()
        self._metrics = metrics or MetricsRecorder(enabled=False)
        self._llm_client = llm_client
        self._max_workers = max_workers
        self._suggest_with_llm = suggest_with_llm

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        concepts: Iterable[Concept] | None = None,
        strict: bool | None = None,
    ) -> "MatchingPipeline":
        """Build the pipeline from settings, loading the ontology file unless ``concepts`` is given."""

        metrics = settings.build_metrics_recorder()
        source = list(concepts) if concepts is not None else load_ontology(settings.ontology_path)
        with metrics.track_timing("index.build"):
            index = build_concept_index(
                source,
                strict=settings.ontology_strict if strict is None else strict,
            )
        metrics.set_gauge("index.concepts", len(index))
        return cls(
            index,
            matching_config=settings.matching_config(),
            evolution_config=settings.evolution_config(),
            metrics=metrics,
            llm_client=settings.build_llm_client(),
            max_workers=settings.match_max_workers,
            suggest_with_llm=settings.evolution_use_llm,
        )

    @property
    def index(self) -> ConceptIndex:
        return self._index

    @property
    def llm_client(self) -> LLMClient | None:
        return self._llm_client

    def extract_lecturers(
        self,
        lecturers: Sequence[object],
    ) -> tuple[list[CandidateProfile], list[UnmatchedTokenBatch]]:
        profiles: list[CandidateProfile] = []
        batches: list[UnmatchedTokenBatch] = []
        with self._metrics.track_timing("extract.duration", profile_type="lecturer"):
            for position, lecturer in enumerate(lecturers):
                lecturer_id = _profile_id(lecturer, f"lecturer-{position}")
                extraction = extract_lecturer_concepts(lecturer, self._index)
                faculty = _profile_value(lecturer, "facultyId")
                profiles.append(
                    CandidateProfile(
                        candidate_id=lecturer_id,
                        concepts=extraction.concepts,
                        name=_profile_name(lecturer),
                        title=_profile_value(lecturer, "title"),
                        metadata={"faculty": faculty} if faculty is not None else {},
                    )
                )
                batches.extend(_unmatched_batches(extraction, profile_id=lecturer_id, profile_type="lecturer"))
        self._metrics.increment("extract.profiles", value=len(profiles), profile_type="lecturer")
        return profiles, batches

    def run(
        self,
        student: object,
        lecturers: Sequence[object],
        *,
        top_n: int = 10,
        use_llm: bool = False,
        mine_candidates: bool = True,
    ) -> MatchingRunResult:
        timings: dict[str, float] = {}

        stage_start = time.perf_counter()
        student_id = _profile_id(student, "student")
        student_extraction = extract_student_concepts(student, self._index)
        profiles, batches = self.extract_lecturers(lecturers)
        lecturer_by_id = {profile.candidate_id: lecturer for profile, lecturer in zip(profiles, lecturers)}
        timings["extract"] = time.perf_counter() - stage_start
        self._metrics.increment("extract.concepts", value=len(student_extraction.concepts), profile_type="student")

        stage_start = time.perf_counter()
        matches = match_one_against_many(
            student_extraction.concepts,
            profiles,
            self._matching_config,
            max_workers=self._max_workers,
        )
        ranked = rank_matches(matches, top_n=top_n, min_score=self._matching_config.min_score)
        timings["match"] = time.perf_counter() - stage_start
        self._metrics.record_timing("match.duration", timings["match"])
        self._metrics.increment("match.results", value=len(ranked))

        explained = explain_matches(
            ranked,
            use_llm=use_llm,
            llm_client=self._llm_client,
            student=student,
            lecturers=lecturer_by_id,
        )

        candidates: list[ConceptCandidate] = []
        if mine_candidates:
            stage_start = time.perf_counter()
            batches = [
                *_unmatched_batches(student_extraction, profile_id=student_id, profile_type="student"),
                *batches,
            ]
            candidates = build_concept_candidate_queue(batches, self._index, self._evolution_config)
            if self._suggest_with_llm and self._llm_client is not None:
                for candidate in candidates:
                    candidate.suggestion = suggest_concept_parent(
                        candidate.canonical,
                        self._index,
                        self._llm_client,
                        self._evolution_config,
                    )
            timings["evolution"] = time.perf_counter() - stage_start
            self._metrics.increment("evolution.candidates", value=len(candidates))

        stats = compute_match_stats(ranked)
        logger.info(
            "pipeline.run.completed student=%s lecturers=%s matches=%s candidates=%s",
            student_id,
            len(profiles),
            len(ranked),
            len(candidates),
        )
        return MatchingRunResult(
            student_id=student_id,
            student_extraction=student_extraction,
            matches=explained,
            stats=stats,
            candidates=candidates,
            timings=timings,
        )


__all__ = ["MatchingPipeline", "MatchingRunResult"]
