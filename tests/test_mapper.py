from __future__ import annotations

import copy
from types import SimpleNamespace

from conceptmatch.index import ConceptIndex, ConceptRole
from conceptmatch.mapper import (
    ExtractedConcept,
    batch_extract_topic_concepts,
    deduplicate_concepts,
    extract_from_array,
    extract_from_text,
    extract_lecturer_concepts,
    extract_student_concepts,
    extract_topic_concepts,
)


def test_extract_from_text_tags_matches_and_collects_unmatched(index: ConceptIndex) -> None:
    result = extract_from_text("Machine Learning", index, source="skills")

    assert {concept.key for concept in result.concepts} == {"it.ai.machine-learning"}
    assert all(concept.source == "skills" for concept in result.concepts)
    assert all(concept.matched_text == "Machine Learning" for concept in result.concepts)
    assert result.concepts[0].matched_token == "machine learning"
    assert result.unmatched_tokens == []

    unknown = extract_from_text("Python", index)
    assert unknown.concepts == []
    assert unknown.unmatched_tokens == ["python"]


def test_shallow_matches_are_dropped_but_not_unmatched(index: ConceptIndex) -> None:
    result = extract_from_text("Artificial Intelligence", index)

    assert result.concepts == []
    assert result.unmatched_tokens == []

    relaxed = extract_from_text("Artificial Intelligence", index, min_depth=2)
    assert {concept.key for concept in relaxed.concepts} == {"it.ai"}


def test_extract_from_array_skips_invalid_items_and_dedupes(index: ConceptIndex) -> None:
    result = extract_from_array(["Machine Learning", 42, "", "ML", "Python"], index, source="skills")

    assert [concept.key for concept in result.concepts] == ["it.ai.machine-learning"]
    assert result.concepts[0].sources == ["skills"]
    assert result.unmatched_tokens == ["python"]


def test_extract_from_array_requires_a_list(index: ConceptIndex) -> None:
    result = extract_from_array("Machine Learning", index)

    assert result.concepts == []
    assert result.unmatched_tokens == []


def test_deduplicate_concepts_merges_sources(make_concept) -> None:
    concepts = [
        make_concept("it.ai.machine-learning", "skills"),
        make_concept("it.ai.computer-vision", "skills"),
        make_concept("it.ai.machine-learning", "interests"),
        make_concept("it.ai.machine-learning", "skills"),
    ]

    unique = deduplicate_concepts(concepts)

    assert [concept.key for concept in unique] == ["it.ai.machine-learning", "it.ai.computer-vision"]
    assert unique[0].sources == ["skills", "interests"]
    assert unique[0].source == "skills"
    assert concepts[0].sources == []


def test_deduplicate_concepts_is_idempotent(make_concept) -> None:
    concepts = [
        make_concept("it.ai.machine-learning", "interests"),
        make_concept("it.data.big-data", "skills"),
        make_concept("it.ai.machine-learning", "skills"),
    ]
    once = deduplicate_concepts(concepts)
    twice = deduplicate_concepts(copy.deepcopy(once))

    assert twice == once

    reversed_once = deduplicate_concepts(list(reversed(concepts)))
    by_key = {concept.key: set(concept.sources) for concept in once}
    assert {concept.key: set(concept.sources) for concept in reversed_once} == by_key


def test_extract_student_concepts_reports_per_source_stats(index: ConceptIndex, student) -> None:
    result = extract_student_concepts(student, index)

    assert [concept.key for concept in result.concepts] == ["it.ai.machine-learning", "it.ai.computer-vision"]
    assert result.concepts[0].sources == ["skills"]
    assert result.concepts[1].sources == ["interests"]
    assert result.unmatched_tokens == ["python", "thi giac may tinh"]
    assert result.stats == {"fromSkills": 1, "fromInterests": 1, "totalUnmatched": 2}
    assert result.unmatched_by_source == {"skills": ["python"], "interests": ["thi giac may tinh"]}


def test_extract_lecturer_concepts_covers_publications(index: ConceptIndex, lecturers) -> None:
    result = extract_lecturer_concepts(lecturers[0], index)

    assert [concept.key for concept in result.concepts] == [
        "it.ai.machine-learning",
        "it.ai.machine-learning.nlp",
        "it.security.cryptography",
    ]
    assert [concept.sources for concept in result.concepts] == [
        ["areaInterest"],
        ["researchInterests"],
        ["publications"],
    ]
    assert result.stats["fromAreaInterest"] == 1
    assert result.stats["fromResearchInterests"] == 1
    assert result.stats["fromPublications"] == 1
    assert "applied" in result.unmatched_tokens


def test_extract_lecturer_concepts_accepts_objects_and_missing_fields(index: ConceptIndex) -> None:
    lecturer = SimpleNamespace(areaInterest=["Big Data"], researchInterests=None)

    result = extract_lecturer_concepts(lecturer, index)

    assert [concept.key for concept in result.concepts] == ["it.data.big-data"]
    assert result.stats["fromResearchInterests"] == 0
    assert result.stats["fromPublications"] == 0

    empty = extract_lecturer_concepts({}, index)
    assert empty.concepts == []
    assert empty.stats == {
        "fromAreaInterest": 0,
        "fromResearchInterests": 0,
        "fromPublications": 0,
        "totalUnmatched": 0,
    }


def test_extract_topic_concepts_reads_fields_requirements_and_description(index: ConceptIndex) -> None:
    topic = {
        "fields": [{"name": "Computer Vision"}],
        "requirements": [{"name": "Machine Learning"}, {"name": ""}],
        "description": "Build a web development platform",
    }

    result = extract_topic_concepts(topic, index)

    keys = [concept.key for concept in result.concepts]
    assert keys == ["it.ai.computer-vision", "it.ai.machine-learning", "it.software.web"]
    assert result.concepts[0].sources == ["field"]
    assert result.concepts[1].sources == ["requirement"]
    assert result.concepts[2].sources == ["description"]
    assert result.stats["fromFields"] == 1
    assert result.stats["fromRequirements"] == 1
    assert result.stats["fromDescription"] >= 1
    assert result.stats["total"] == 3


def test_short_topic_description_is_ignored(index: ConceptIndex) -> None:
    topic = {"description": "Web Development"}

    result = extract_topic_concepts(topic, index)

    assert result.concepts == []
    assert result.stats == {"fromFields": 0, "fromRequirements": 0, "fromDescription": 0, "total": 0}
    assert len(batch_extract_topic_concepts([topic, topic], index)) == 2


def test_extraction_result_serializes_camel_case(index: ConceptIndex, student) -> None:
    payload = extract_student_concepts(student, index).to_dict()

    assert set(payload) == {"concepts", "unmatchedTokens", "stats"}
    concept = payload["concepts"][0]
    assert concept["matchedToken"] == "machine learning"
    assert concept["role"] == "branch"
    assert concept["sources"] == ["skills"]


def test_extracted_concept_from_mapping_restores_to_dict_shape(make_concept) -> None:
    original = make_concept("it.ai.machine-learning", "areaInterest")
    original.matched_token = "machine learning"
    original.sources = ["areaInterest", "researchDirection"]

    restored = ExtractedConcept.from_mapping(original.to_dict())

    assert restored == original
    assert restored.role is ConceptRole.LEAF


def test_extracted_concept_from_mapping_fills_missing_fields() -> None:
    restored = ExtractedConcept.from_mapping({"key": "it.ai"})

    assert restored.depth == 2
    assert restored.role is ConceptRole.DOMAIN
    assert restored.parent == "it"
    assert restored.label == "it.ai"
    assert restored.provenance == ["unknown"]
