"""Concept taxonomy matching between student and lecturer profiles."""

from __future__ import annotations

from .config import EvolutionConfig, MatchingConfig, Settings
from .index import ConceptIndex, build_concept_index, find_concepts
from .mapper import extract_lecturer_concepts, extract_student_concepts
from .matching import match_one_against_many, match_pair, rank_matches, score_pair
from .ontology import Concept, OntologyLoadError, OntologyValidationError, load_ontology

__all__ = [
    "ChatLLMClient",
    "Concept",
    "ConceptIndex",
    "EvolutionConfig",
    "MatchingConfig",
    "MatchingPipeline",
    "OntologyLoadError",
    "OntologyValidationError",
    "Settings",
    "build_concept_index",
    "extract_lecturer_concepts",
    "extract_student_concepts",
    "find_concepts",
    "load_ontology",
    "match_one_against_many",
    "match_pair",
    "rank_matches",
    "score_pair",
]


def __getattr__(name: str):  # pragma: no cover - small helper
    if name == "ChatLLMClient":
        from .llm import ChatLLMClient

        return ChatLLMClient
    if name == "MatchingPipeline":
        from .pipeline import MatchingPipeline

        return MatchingPipeline
    raise AttributeError(f"module 'conceptmatch' has no attribute {name}")
