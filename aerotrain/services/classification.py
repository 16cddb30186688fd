"""
Document classification: category, subject areas, priority and tags.

Scores are plain term-table counts over the document's token frequencies:
an exact token match counts twice its frequency, a token that merely
contains the term counts its frequency once, and a multi-word subject phrase
counts twice the average frequency of its words when all of them occur.
"""
from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List

from aerotrain.utils.helpers import STOPWORDS, safe_divide, term_frequencies

logger = logging.getLogger(__name__)


class DocumentCategory(str, enum.Enum):
    TECHNICAL = "technical"
    REGULATORY = "regulatory"
    OPERATIONAL = "operational"
    TRAINING = "training"
    ASSESSMENT = "assessment"
    REFERENCE = "reference"
    UNCLASSIFIED = "unclassified"


class SubjectArea(str, enum.Enum):
    AIRCRAFT_SYSTEMS = "aircraft_systems"
    FLIGHT_PROCEDURES = "flight_procedures"
    EMERGENCY_PROCEDURES = "emergency_procedures"
    REGULATIONS = "regulations"
    METEOROLOGY = "meteorology"
    NAVIGATION = "navigation"
    HUMAN_FACTORS = "human_factors"
    COMMUNICATIONS = "communications"
    GENERAL = "general"


class PriorityLevel(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


CATEGORY_TERMS: Dict[DocumentCategory, List[str]] = {
    DocumentCategory.TECHNICAL: [
        "system", "component", "aircraft", "equipment", "technical", "installation",
        "maintenance", "specifications", "design", "performance", "limitations",
    ],
    DocumentCategory.REGULATORY: [
        "regulation", "compliance", "requirement", "approved", "authority", "legal",
        "certification", "standard", "rule", "law", "mandatory", "must", "shall",
    ],
    DocumentCategory.OPERATIONAL: [
        "procedure", "operation", "checklist", "normal", "abnormal", "emergency",
        "flight", "crew", "pilot", "operator", "controller", "maneuver",
    ],
    DocumentCategory.TRAINING: [
        "training", "learning", "syllabus", "course", "lesson", "module", "instructor",
        "student", "trainee", "exercise", "simulation", "practice", "skill",
    ],
    DocumentCategory.ASSESSMENT: [
        "assessment", "test", "exam", "evaluation", "grade", "score", "performance",
        "measure", "criteria", "standard", "pass", "fail", "proficiency",
    ],
    DocumentCategory.REFERENCE: [
        "reference", "manual", "handbook", "guide", "information", "data", "table",
        "chart", "appendix", "glossary", "definition", "term",
    ],
}

SUBJECT_TERMS: Dict[SubjectArea, List[str]] = {
    SubjectArea.AIRCRAFT_SYSTEMS: [
        "engine", "hydraulic", "electrical", "avionics", "fuel", "landing gear",
        "flight control", "pressurization", "air conditioning", "system", "components",
    ],
    SubjectArea.FLIGHT_PROCEDURES: [
        "procedure", "takeoff", "landing", "cruise", "climb", "descent", "approach",
        "maneuver", "configuration", "speed", "altitude", "flight plan",
    ],
    SubjectArea.EMERGENCY_PROCEDURES: [
        "emergency", "failure", "malfunction", "abort", "evacuation", "fire", "smoke",
        "decompression", "ditching", "abnormal", "warning", "caution", "alert",
    ],
    SubjectArea.REGULATIONS: [
        "regulation", "requirement", "law", "compliance", "authority", "certificate",
        "license", "approval", "standard", "rule", "part", "paragraph",
    ],
    SubjectArea.METEOROLOGY: [
        "weather", "wind", "cloud", "visibility", "temperature", "pressure", "forecast",
        "turbulence", "thunderstorm", "icing", "fog", "precipitation",
    ],
    SubjectArea.NAVIGATION: [
        "navigation", "waypoint", "route", "course", "heading", "track", "bearing",
        "distance", "gps", "vor", "ils", "approach", "departure", "arrival",
    ],
    SubjectArea.HUMAN_FACTORS: [
        "human factors", "crew resource management", "crm", "workload", "fatigue",
        "stress", "decision making", "situational awareness", "communication", "teamwork",
    ],
    SubjectArea.COMMUNICATIONS: [
        "communication", "radio", "phraseology", "clearance", "readback", "frequency",
        "call sign", "transmission", "atc", "controller", "message",
    ],
    SubjectArea.GENERAL: [
        "general", "introduction", "overview", "purpose", "scope", "description",
        "summary", "background", "information", "note",
    ],
}

PRIORITY_TERMS: Dict[PriorityLevel, List[str]] = {
    PriorityLevel.CRITICAL: [
        "warning", "caution", "danger", "emergency", "critical", "immediate", "severe",
        "must", "required", "mandatory", "essential", "life", "safety",
    ],
    PriorityLevel.HIGH: [
        "important", "significant", "major", "key", "primary", "main", "serious",
        "necessary", "should", "recommended", "advised",
    ],
    PriorityLevel.MEDIUM: [
        "normal", "standard", "regular", "routine", "common", "typical", "general",
        "suggested", "considered",
    ],
    PriorityLevel.LOW: [
        "minor", "supplementary", "additional", "optional", "reference", "may",
        "can", "could", "might", "note", "information",
    ],
}

# Modal verbs carry the priority signal, so they survive stop-word removal here
_PRIORITY_MODALS = {"must", "shall", "should", "may", "can", "could", "might"}
_STOPWORDS = (STOPWORDS | {
    "it", "its", "they", "them", "their", "what", "which", "who", "whom",
    "whose", "where", "why", "how", "all", "any", "both", "each", "few",
    "more", "most", "other", "some", "such", "no", "nor", "not", "only",
    "own", "same", "so", "than", "too", "very",
}) - _PRIORITY_MODALS

_AIRCRAFT_TOKEN = re.compile(r"\b[A-Z]{1,2}-?[0-9]{2,4}[A-Z]?\b")
_MAX_KEY_TERMS = 50


@dataclass
class DocumentClassification:
    category: DocumentCategory
    subjects: List[SubjectArea]
    priority: PriorityLevel
    tags: List[str]
    confidence: float
    key_terms: Dict[str, int] = field(default_factory=dict)
    category_scores: Dict[str, float] = field(default_factory=dict)
    processing_time_ms: float = 0.0


def classification_tokens(text: str) -> List[str]:
    """Lower-case tokens longer than two characters with stop-words removed."""
    cleaned = re.sub(r"[^\w\s]", " ", text.lower())
    return [t for t in cleaned.split() if len(t) > 2 and t not in _STOPWORDS]


def _score_terms(terms: List[str], frequencies: Dict[str, int]) -> float:
    score = 0.0
    for term in terms:
        words = term.split()
        if len(words) > 1:
            if all(w in frequencies for w in words):
                score += sum(frequencies[w] for w in words) / len(words) * 2
            continue
        score += frequencies.get(term, 0) * 2
        for token, frequency in frequencies.items():
            if term in token and token != term:
                score += frequency
    return score


def _top(scores: Dict, default):
    """Highest-scoring key; the first key in table order wins a tie."""
    best, best_score = default, 0.0
    for key, score in scores.items():
        if score > best_score:
            best, best_score = key, score
    return best


def classify_document(text: str) -> DocumentClassification:
    """
    Classify a document by category, subject areas and priority.

    Args:
        text: Document text.

    Returns:
        DocumentClassification; an empty text yields ``unclassified`` /
        ``general`` / ``medium`` with confidence 0.
    """
    t0 = time.monotonic()
    frequencies = term_frequencies(classification_tokens(text))

    category_scores = {c: _score_terms(terms, frequencies) for c, terms in CATEGORY_TERMS.items()}
    subject_scores = {s: _score_terms(terms, frequencies) for s, terms in SUBJECT_TERMS.items()}
    priority_scores = {p: _score_terms(terms, frequencies) for p, terms in PRIORITY_TERMS.items()}

    category = _top(category_scores, DocumentCategory.UNCLASSIFIED)
    ranked_subjects = sorted(subject_scores.items(), key=lambda kv: kv[1], reverse=True)
    subjects = [s for s, score in ranked_subjects[:3] if score > 0] or [SubjectArea.GENERAL]
    priority = _top(priority_scores, PriorityLevel.MEDIUM)

    key_terms = dict(sorted(frequencies.items(), key=lambda kv: kv[1], reverse=True)[:_MAX_KEY_TERMS])

    tags: List[str] = [category.value] + [s.value.replace("_", "-") for s in subjects]
    tags.extend(list(key_terms)[:5])
    tags.extend(list(dict.fromkeys(_AIRCRAFT_TOKEN.findall(text)))[:3])
    tags = list(dict.fromkeys(tags))

    result = DocumentClassification(
        category=category,
        subjects=subjects,
        priority=priority,
        tags=tags,
        confidence=classification_confidence(category_scores, subject_scores),
        key_terms=key_terms,
        category_scores={c.value: round(s, 2) for c, s in category_scores.items()},
        processing_time_ms=round((time.monotonic() - t0) * 1000, 2),
    )
    logger.info(
        "Classified document as %s (subjects=%s, priority=%s, confidence=%.2f)",
        result.category.value,
        [s.value for s in result.subjects],
        result.priority.value,
        result.confidence,
    )
    return result


def classification_confidence(
    category_scores: Dict[DocumentCategory, float],
    subject_scores: Dict[SubjectArea, float],
) -> float:
    ordered = sorted(category_scores.values(), reverse=True)
    top = ordered[0] if ordered else 0.0
    second = ordered[1] if len(ordered) > 1 else 0.0
    top_subject = max(subject_scores.values(), default=0.0)

    if second > 0:
        dominance = safe_divide(top, second)
    else:
        dominance = 2.0 if top > 0 else 0.0

    confidence = (
        min(top / 10, 1) * 0.5
        + min(top_subject / 10, 1) * 0.3
        + min(dominance / 3, 1) * 0.2
    )
    return round(max(0.0, min(1.0, confidence)), 4)
