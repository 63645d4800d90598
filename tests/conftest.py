from __future__ import annotations

import copy
from typing import Any, Dict, List

import pytest

from conceptmatch.index import ConceptIndex, ConceptRole, build_concept_index, get_depth
from conceptmatch.mapper import ExtractedConcept
from conceptmatch.ontology import Concept, concepts_from_records


ONTOLOGY_RECORDS: List[Dict[str, Any]] = [
    {"key": "it", "label": "Information Technology"},
    {"key": "it.ai", "label": "Artificial Intelligence", "aliases": ["AI", "Trí tuệ nhân tạo"]},
    {"key": "it.ai.machine-learning", "label": "Machine Learning", "aliases": ["ML", "Học máy"]},
    {"key": "it.ai.machine-learning.nlp", "label": "Natural Language Processing", "aliases": ["NLP"]},
    {"key": "it.ai.computer-vision", "label": "Computer Vision", "aliases": ["CV"]},
    {"key": "it.data", "label": "Data Science"},
    {"key": "it.data.big-data", "label": "Big Data"},
    {"key": "it.software", "label": "Software Engineering"},
    {"key": "it.software.web", "label": "Web Development"},
    {"key": "it.security", "label": "Security"},
    {"key": "it.security.cryptography", "label": "Cryptography"},
]


@pytest.fixture()
def ontology_records() -> List[Dict[str, Any]]:
    return copy.deepcopy(ONTOLOGY_RECORDS)


@pytest.fixture()
def ontology(ontology_records: List[Dict[str, Any]]) -> List[Concept]:
    return concepts_from_records(ontology_records)


@pytest.fixture()
def index(ontology: List[Concept]) -> ConceptIndex:
    return build_concept_index(ontology)


@pytest.fixture()
def student() -> Dict[str, Any]:
    return {
        "id": "stu-1",
        "skills": ["Machine Learning", "Python"],
        "interests": ["Computer Vision"],
    }


@pytest.fixture()
def lecturers() -> List[Dict[str, Any]]:
    return [
        {
            "_id": "lec-1",
            "name": "Dr. A",
            "title": "Associate Professor",
            "areaInterest": ["Machine Learning"],
            "researchInterests": ["Natural Language Processing"],
            "publications": [{"title": "Applied Cryptography"}],
        },
        {
            "_id": "lec-2",
            "userId": {"name": "Dr. B"},
            "title": "Lecturer",
            "facultyId": "fac-it",
            "areaInterest": ["Computer Vision", "Big Data"],
        },
        {
            "_id": "lec-3",
            "name": "Dr. C",
            "areaInterest": ["Web Development"],
        },
        {
            "_id": "lec-4",
            "name": "Dr. D",
        },
    ]


def _make_concept(key: str, source: str = "skills", label: str | None = None) -> ExtractedConcept:
    depth = get_depth(key)
    return ExtractedConcept(
        key=key,
        label=label or key.rsplit(".", 1)[-1],
        depth=depth,
        role=ConceptRole.LEAF if depth > 2 else ConceptRole.DOMAIN,
        parent=key.rsplit(".", 1)[0] if "." in key else None,
        source=source,
    )


@pytest.fixture()
def make_concept():
    return _make_concept
