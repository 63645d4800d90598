from __future__ import annotations

import json

import pytest

from conceptmatch.config import MatchingConfig
from conceptmatch.index import ConceptIndex
from conceptmatch.mapper import extract_lecturer_concepts, extract_student_concepts
from conceptmatch.matching import (
    CandidateMatch,
    CandidateProfile,
    MatchStatus,
    compute_match_stats,
    match_one_against_many,
    match_pair,
    rank_matches,
    score_pair,
)

ML = "it.ai.machine-learning"
NLP = "it.ai.machine-learning.nlp"
CV = "it.ai.computer-vision"


def test_exact_match_uses_depth_weight(make_concept) -> None:
    result = match_pair([make_concept(ML)], [make_concept(ML, "areaInterest")])

    assert result is not None
    assert result.core_score == 1.0
    assert result.boost_score == 0.0
    assert result.score == 1.0
    assert result.concept_count == 1
    matched = result.matched_concepts[0]
    assert matched.left_sources == ["skills"]
    assert matched.right_sources == ["areaInterest"]
    assert matched.match_type == "exact"


def test_domain_overlap_without_exact_match_scores_nothing(make_concept) -> None:
    left = [make_concept(ML)]
    right = [make_concept(CV)]

    assert match_pair(left, right) is None
    outcome = score_pair(left, right)
    assert outcome.status is MatchStatus.BELOW_THRESHOLD
    assert outcome.score == 0.0
    assert outcome.result is None


def test_insufficient_concepts_is_distinguished(make_concept) -> None:
    outcome = score_pair([make_concept("it.ai")], [make_concept(ML)])

    assert outcome.status is MatchStatus.INSUFFICIENT_CONCEPTS
    assert outcome.score is None
    assert not outcome.matched
    assert score_pair([], [make_concept(ML)]).status is MatchStatus.INSUFFICIENT_CONCEPTS


@pytest.mark.parametrize(
    ("key", "weight"),
    [
        ("it.ai.ml", 1.0),
        ("it.ai.ml.nlp", 1.5),
        ("it.ai.ml.nlp.ner", 2.0),
        ("it.ai.ml.nlp.ner.bio", 2.5),
        ("it.ai.ml.nlp.ner.bio.gene", 2.5),
    ],
)
def test_depth_weights_saturate(make_concept, key: str, weight: float) -> None:
    result = match_pair([make_concept(key)], [make_concept(key)], min_score=0)

    assert result is not None
    assert result.core_score == weight


def test_parent_boost_sums_cross_product(make_concept) -> None:
    left = [make_concept(ML), make_concept(CV)]
    right = [make_concept(ML), make_concept(NLP)]

    result = match_pair(left, right)

    assert result is not None
    assert result.core_score == 1.0
    assert result.boost_score == pytest.approx(0.9)
    assert result.score == pytest.approx(1.9)
    assert result.concept_count == 1
    assert {(boost.left_key, boost.right_key) for boost in result.parent_boosts} == {
        (ML, NLP),
        (CV, ML),
        (CV, NLP),
    }
    assert all(boost.common_parent == "it.ai" for boost in result.parent_boosts)


def test_repeated_concepts_overcount_boost(make_concept) -> None:
    left = [make_concept(ML), make_concept(CV), make_concept(CV, "interests")]
    right = [make_concept(ML)]

    result = match_pair(left, right)

    assert result is not None
    assert result.boost_score == pytest.approx(0.6)
    assert len(result.parent_boosts) == 1
    assert sum(boost.boost for boost in result.parent_boosts) == pytest.approx(0.3)


def test_parent_boost_can_be_disabled(make_concept) -> None:
    left = [make_concept(ML), make_concept(CV)]
    right = [make_concept(ML), make_concept(NLP)]

    result = match_pair(left, right, enable_parent_boost=False)

    assert result is not None
    assert result.score == 1.0
    assert result.parent_boosts == []


def test_min_depth_override_filters_concepts(make_concept) -> None:
    left = [make_concept(ML), make_concept(NLP)]
    right = [make_concept(ML), make_concept(NLP)]

    result = match_pair(left, right, min_depth=4, min_score=0)

    assert result is not None
    assert [concept.key for concept in result.matched_concepts] == [NLP]


def test_threshold_monotonicity(make_concept) -> None:
    left = [make_concept(ML), make_concept(CV)]
    right = [make_concept(ML), make_concept(NLP)]
    thresholds = [0.0, 0.5, 1.0, 1.5, 1.9, 2.5]

    for high in thresholds:
        upper = match_pair(left, right, min_score=high)
        if upper is None:
            continue
        for low in thresholds:
            if low > high:
                continue
            lower = match_pair(left, right, min_score=low)
            assert lower is not None
            assert lower.score == upper.score


def test_explicit_config_is_respected(make_concept) -> None:
    config = MatchingConfig(depth_weights={3: 4.0}, min_score=5.0)

    assert match_pair([make_concept(ML)], [make_concept(ML)], config) is None
    result = match_pair([make_concept(ML)], [make_concept(ML)], config, min_score=4.0)
    assert result is not None
    assert result.score == 4.0


def test_unknown_override_is_rejected(make_concept) -> None:
    with pytest.raises(TypeError):
        match_pair([make_concept(ML)], [make_concept(ML)], min_scor=1.0)


def _profiles(index: ConceptIndex, lecturers) -> list[CandidateProfile]:
    return [
        CandidateProfile(
            candidate_id=lecturer["_id"],
            concepts=extract_lecturer_concepts(lecturer, index).concepts,
            name=lecturer.get("name"),
        )
        for lecturer in lecturers
    ]


def test_match_one_against_many_orders_by_score(index: ConceptIndex, student, lecturers) -> None:
    concepts = extract_student_concepts(student, index).concepts

    matches = match_one_against_many(concepts, _profiles(index, lecturers))

    assert [match.candidate_id for match in matches] == ["lec-1", "lec-2"]
    assert matches[0].score == pytest.approx(1.9)
    assert matches[1].score == pytest.approx(1.3)


def test_match_one_against_many_accepts_mappings(make_concept) -> None:
    candidates = [
        {"_id": "a", "userId": {"name": "Dr. A"}, "facultyId": "fac-1", "concepts": [make_concept(ML)]},
        {"id": "b", "name": "Dr. B", "concepts": []},
    ]

    matches = match_one_against_many([make_concept(ML)], candidates)

    assert len(matches) == 1
    assert matches[0].name == "Dr. A"
    assert matches[0].metadata == {"faculty": "fac-1"}


def test_match_one_against_many_accepts_serialized_concepts(make_concept) -> None:
    stored = json.loads(json.dumps({"_id": "lec-1", "concepts": [make_concept(ML, "areaInterest").to_dict()]}))

    matches = match_one_against_many([make_concept(ML)], [stored])

    assert [match.candidate_id for match in matches] == ["lec-1"]
    assert matches[0].score == 1.0
    assert matches[0].result.matched_concepts[0].right_sources == ["areaInterest"]


def test_equal_scores_keep_input_order(make_concept) -> None:
    candidates = [
        CandidateProfile(candidate_id=f"lec-{position}", concepts=[make_concept(ML)])
        for position in range(8)
    ]
    expected = [candidate.candidate_id for candidate in candidates]

    sequential = match_one_against_many([make_concept(ML)], candidates)
    pooled = match_one_against_many([make_concept(ML)], candidates, max_workers=4)

    assert [match.candidate_id for match in sequential] == expected
    assert [match.candidate_id for match in pooled] == expected


def _match(make_concept, candidate_id: str, keys: list[str]) -> CandidateMatch:
    concepts = [make_concept(key) for key in keys]
    result = match_pair(concepts, concepts, min_score=0)
    assert result is not None
    return CandidateMatch(candidate_id=candidate_id, result=result)


def test_rank_matches_filters_and_truncates(make_concept) -> None:
    matches = [
        _match(make_concept, "a", [NLP, ML]),
        _match(make_concept, "b", [NLP]),
        _match(make_concept, "c", [ML]),
        _match(make_concept, "d", ["it.security.cryptography"]),
    ]

    assert [match.candidate_id for match in rank_matches(matches, top_n=2)] == ["a", "b"]
    assert [match.candidate_id for match in rank_matches(matches, min_score=1.5)] == ["a", "b"]
    assert [match.candidate_id for match in rank_matches(matches, min_concept_count=2)] == ["a"]
    assert rank_matches(matches, top_n=0) == []


def test_compute_match_stats(make_concept) -> None:
    assert compute_match_stats([]).to_dict() == {
        "totalMatches": 0,
        "avgScore": 0.0,
        "maxScore": 0.0,
        "minScore": 0.0,
        "avgConceptCount": 0.0,
    }

    matches = [_match(make_concept, "a", [NLP]), _match(make_concept, "b", [ML])]
    stats = compute_match_stats(matches)

    assert stats.total_matches == 2
    assert stats.avg_score == pytest.approx(1.25)
    assert stats.max_score == 1.5
    assert stats.min_score == 1.0
    assert stats.avg_concept_count == 1.0


def test_candidate_match_serializes_camel_case(make_concept) -> None:
    match = _match(make_concept, "lec-9", [ML])
    payload = match.to_dict()

    assert payload["candidateId"] == "lec-9"
    assert payload["name"] == "Unknown"
    assert payload["coreScore"] == 1.0
    assert payload["conceptCount"] == 1
    assert payload["matchedConcepts"][0]["studentSources"] == ["skills"]
