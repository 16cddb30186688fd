"""
Context-aware parsing: what kind of document is this, and what kind of
content does each section hold?

Context types are scored with keyword signals.  Per-section contexts come
from the parsed structure when available, otherwise from heading-like lines
in the raw text.
"""
from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern, Tuple

from aerotrain.services.regulatory import extract_regulatory_references
from aerotrain.services.structure_parser import DocumentStructure, ElementType

logger = logging.getLogger(__name__)


class ContextType(str, enum.Enum):
    REGULATORY = "regulatory"
    TECHNICAL_MANUAL = "technical_manual"
    TRAINING_MATERIAL = "training_material"
    OPERATING_PROCEDURE = "operating_procedure"
    CHECKLIST = "checklist"
    MAINTENANCE_DOCUMENT = "maintenance_document"
    SAFETY_BULLETIN = "safety_bulletin"
    GENERAL = "general"


def _words(*words: str) -> Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE)


# (primary signal, weight), (secondary signal, weight) per context type
CONTEXT_SIGNALS: Dict[ContextType, List[Tuple[Pattern[str], int]]] = {
    ContextType.REGULATORY: [
        (_words("regulation", "compliance", "rule", "requirement", "law", "statute",
                "directive", "standard", "certification"), 5),
        (_words("EASA", "FAA", "CAA", "ICAO", r"part 61", r"part 91", r"part 121",
                r"part 135", "CFR", "CAR"), 10),
    ],
    ContextType.TECHNICAL_MANUAL: [
        (_words("manual", "technical", "specification", "aircraft", "system",
                "component", "engine", "avionics"), 5),
        (_words("installation", "operation", "maintenance", "troubleshooting",
                "diagram", "schematic"), 3),
    ],
    ContextType.TRAINING_MATERIAL: [
        (_words("training", "learn", "course", "study", "instructor", "student",
                "lesson", "syllabus", "curriculum"), 5),
        (_words("exam", "test", "assessment", "exercise", "module", "objective",
                "competency", "skill"), 3),
    ],
    ContextType.OPERATING_PROCEDURE: [
        (_words("procedure", "operation", "protocol", "step", "instruction",
                "sequence", "flight", "pilot"), 5),
        (_words("normal", "abnormal", "emergency", "takeoff", "landing", "cruise",
                "approach", "departure"), 3),
    ],
    ContextType.CHECKLIST: [
        (_words("checklist", "check", "item", "verify", "confirm", "complete",
                "pre-flight", "post-flight"), 8),
        (re.compile(r"□|\[\s*\]|\(\s*\)|✓|✗"), 10),
    ],
    ContextType.MAINTENANCE_DOCUMENT: [
        (_words("maintenance", "repair", "overhaul", "inspection", "service",
                "replacement", "part", "tool"), 5),
        (_words("scheduled", "unscheduled", "periodic", "life-limited",
                "time-controlled", "airworthiness"), 3),
    ],
    ContextType.SAFETY_BULLETIN: [
        (_words("safety", "bulletin", "alert", "warning", "caution", "notice",
                "advisory", "incident", "accident"), 5),
        (_words("immediate", "attention", "critical", "urgent", "hazard", "danger",
                "risk", "mandatory"), 3),
    ],
}

_INSIGHTS = {
    ContextType.REGULATORY: "Document contains regulatory content that may require compliance tracking.",
    ContextType.TECHNICAL_MANUAL: "Technical manual with detailed system and component information.",
    ContextType.TRAINING_MATERIAL: "Training material with learning objectives and competency requirements.",
    ContextType.OPERATING_PROCEDURE: "Operating procedures document with specific flight phase instructions.",
    ContextType.CHECKLIST: "Checklist with sequential verification items.",
    ContextType.MAINTENANCE_DOCUMENT: "Maintenance document with service and inspection requirements.",
    ContextType.SAFETY_BULLETIN: "Safety bulletin with critical safety information.",
}

_TEXT_HEADING = re.compile(r"^(?:#{1,6}\s+|\d+(?:\.\d+)*\s+)(.+)$", re.MULTILINE)
_IMPORTANCE_WORDS = _words("important", "critical", "essential", "key", "significant",
                           "mandatory", "required", "necessary")
_SAFETY_WORDS = _words("warning", "caution", "danger", "alert", "attention", "safety", "hazard")


@dataclass
class SectionContext:
    id: str
    title: Optional[str]
    context_type: ContextType
    confidence: float
    importance: int  # 0-100
    parent_id: Optional[str] = None
    regulatory_references: List[str] = field(default_factory=list)


@dataclass
class DocumentContext:
    primary_context: ContextType
    sections: List[SectionContext] = field(default_factory=list)
    key_insights: List[str] = field(default_factory=list)
    contextual_score: float = 50.0
    processing_time_ms: float = 0.0


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def detect_context(text: str) -> ContextType:
    """Highest-scoring context type; GENERAL when no signal fires."""
    best, best_score = ContextType.GENERAL, 0
    for context_type, signals in CONTEXT_SIGNALS.items():
        score = sum(weight for pattern, weight in signals if pattern.search(text))
        if score > best_score:
            best, best_score = context_type, score
    return best


def context_confidence(text: str, context_type: ContextType) -> float:
    """Keyword density mapped onto 0.5-1.0."""
    signals = CONTEXT_SIGNALS.get(context_type)
    word_count = len(text.split())
    if not signals or word_count == 0:
        return 0.5
    keyword_count = sum(len(pattern.findall(text)) for pattern, _ in signals)
    return round(min(0.5 + (keyword_count / word_count) * 5, 1.0), 4)


def _section_importance(
    context_type: ContextType,
    level: Optional[int],
    page: Optional[int],
    text: str,
) -> int:
    importance = 50
    if level is not None:
        importance += (6 - min(level, 6)) * 5
    if page == 1:
        importance += 5
    if _IMPORTANCE_WORDS.search(text):
        importance += 10
    if _SAFETY_WORDS.search(text):
        importance += 15
    if context_type in (ContextType.SAFETY_BULLETIN, ContextType.REGULATORY):
        importance += 10
    elif context_type in (ContextType.OPERATING_PROCEDURE, ContextType.CHECKLIST):
        importance += 5
    if len(text.split()) > 200:
        importance += 5
    return max(0, min(100, importance))


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

def _sections_from_structure(structure: DocumentStructure, primary: ContextType) -> List[SectionContext]:
    sections: List[SectionContext] = []
    id_of: Dict[int, str] = {}
    for element in structure.walk():
        if element.type != ElementType.SECTION:
            continue
        heading = next((c for c in structure.children_of(element.id) if c.type == ElementType.HEADING), None)
        title = heading.text if heading is not None else element.text
        body = structure.section_text(element.id)
        detected = detect_context(body)
        context_type = detected if detected != ContextType.GENERAL else primary

        parent_id = None
        for ancestor in structure.ancestors(element.id):
            if ancestor.id in id_of:
                parent_id = id_of[ancestor.id]
                break

        section_id = f"section-{len(sections) + 1}"
        id_of[element.id] = section_id
        sections.append(SectionContext(
            id=section_id,
            title=title,
            context_type=context_type,
            confidence=context_confidence(body, context_type),
            importance=_section_importance(context_type, element.level, element.page, body),
            parent_id=parent_id,
            regulatory_references=[r.code for r in extract_regulatory_references(body)],
        ))
    return sections


def _sections_from_text(text: str, primary: ContextType) -> List[SectionContext]:
    matches = list(_TEXT_HEADING.finditer(text))
    if not matches:
        return [SectionContext(
            id="section-1",
            title=None,
            context_type=primary,
            confidence=0.7,
            importance=50,
            regulatory_references=[r.code for r in extract_regulatory_references(text)],
        )]

    sections = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        body = text[match.start():end]
        detected = detect_context(body)
        context_type = detected if detected != ContextType.GENERAL else primary
        sections.append(SectionContext(
            id=f"section-{i + 1}",
            title=match.group(1).strip(),
            context_type=context_type,
            confidence=context_confidence(body, context_type),
            importance=_section_importance(context_type, None, None, body),
            regulatory_references=[r.code for r in extract_regulatory_references(body)],
        ))
    return sections


# ---------------------------------------------------------------------------
# Insights and score
# ---------------------------------------------------------------------------

def _key_insights(context: DocumentContext) -> List[str]:
    insights = []
    if context.primary_context in _INSIGHTS:
        insights.append(_INSIGHTS[context.primary_context])

    important = sorted(
        (s for s in context.sections if s.importance > 75),
        key=lambda s: s.importance,
        reverse=True,
    )[:3]
    if important:
        insights.append("Key sections identified: " + ", ".join(s.title or s.id for s in important))

    references = list(dict.fromkeys(r for s in context.sections for r in s.regulatory_references))
    if len(references) > 3:
        insights.append(f"References {len(references)} regulatory standards.")
    elif references:
        insights.append("References regulatory standards: " + ", ".join(references))
    return insights


def _contextual_score(context: DocumentContext) -> float:
    score = 50.0
    if context.sections:
        avg_confidence = sum(s.confidence for s in context.sections) / len(context.sections)
        score += (avg_confidence - 0.5) * 20
        primary_share = (
            sum(1 for s in context.sections if s.context_type == context.primary_context)
            / len(context.sections) * 100
        )
        if primary_share > 80:
            score += 10
        elif primary_share > 60:
            score += 5
        else:
            score -= 5
    return round(max(0.0, min(100.0, score)), 2)


def parse_document_context(text: str, structure: Optional[DocumentStructure] = None) -> DocumentContext:
    """
    Determine the primary context and per-section contexts of a document.

    Args:
        text:      Document text.
        structure: Parsed structure; sections come from raw text when omitted
                   or when it holds no sections.

    Returns:
        DocumentContext with sections, key insights and a 0-100 contextual score.
    """
    t0 = time.monotonic()
    primary = detect_context(text)

    sections: List[SectionContext] = []
    if structure is not None:
        sections = _sections_from_structure(structure, primary)
    if not sections:
        sections = _sections_from_text(text, primary)

    context = DocumentContext(primary_context=primary, sections=sections)
    context.key_insights = _key_insights(context)
    context.contextual_score = _contextual_score(context)
    context.processing_time_ms = round((time.monotonic() - t0) * 1000, 2)
    logger.info(
        "Context parsed: primary=%s, %d section(s), score %.1f",
        primary.value,
        len(sections),
        context.contextual_score,
    )
    return context
