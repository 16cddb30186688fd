"""Tests for document classification and context parsing."""
from aerotrain.services.classification import (
    DocumentCategory,
    PriorityLevel,
    SubjectArea,
    classify_document,
)
from aerotrain.services.context_parser import (
    ContextType,
    detect_context,
    parse_document_context,
)
from aerotrain.services.structure_parser import parse_document_structure


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def test_classify_empty_text():
    result = classify_document("")
    assert result.category == DocumentCategory.UNCLASSIFIED
    assert result.subjects == [SubjectArea.GENERAL]
    assert result.priority == PriorityLevel.MEDIUM
    assert result.confidence == 0.0
    assert result.key_terms == {}


def test_classify_training_material():
    result = classify_document(
        "The training course syllabus lists each lesson and module for the student and instructor."
    )
    assert result.category == DocumentCategory.TRAINING
    assert result.tags[0] == "training"
    assert 0.0 < result.confidence <= 1.0
    assert result.category_scores["training"] == 14.0


def test_classify_priority_from_modal_verbs():
    result = classify_document("Warning: the crew must confirm the fuel quantity. This is mandatory.")
    assert result.priority == PriorityLevel.CRITICAL
    assert "must" in result.key_terms


def test_classify_aircraft_tags():
    result = classify_document("The A320 and B737 crews complete the same simulator training.")
    assert "A320" in result.tags
    assert "B737" in result.tags
    assert len(result.tags) == len(set(result.tags))


def test_classify_sample_document(sample_text):
    result = classify_document(sample_text)
    assert result.category in (DocumentCategory.TRAINING, DocumentCategory.OPERATIONAL)
    assert SubjectArea.AIRCRAFT_SYSTEMS in result.subjects
    counts = list(result.key_terms.values())
    assert counts == sorted(counts, reverse=True)


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

def test_detect_context_general_for_empty_text():
    assert detect_context("") == ContextType.GENERAL


def test_detect_context_checklist():
    assert detect_context("Complete the checklist: [ ] fuel pump on") == ContextType.CHECKLIST


def test_context_without_headings():
    context = parse_document_context("Safety bulletin: immediate attention is needed for this hazard.")
    assert context.primary_context == ContextType.SAFETY_BULLETIN
    assert len(context.sections) == 1
    section = context.sections[0]
    assert section.id == "section-1"
    assert section.title is None
    assert section.confidence == 0.7
    assert context.key_insights[0].startswith("Safety bulletin")
    assert 0.0 <= context.contextual_score <= 100.0


def test_context_sections_from_markdown_headings():
    text = "# Introduction\nThe course overview.\n\n# Checklist\nComplete the checklist: [ ] battery on\n"
    context = parse_document_context(text)
    assert [s.title for s in context.sections] == ["Introduction", "Checklist"]
    assert context.sections[1].context_type == ContextType.CHECKLIST


def test_context_sections_follow_structure(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    context = parse_document_context(sample_text, structure)

    assert len(context.sections) == 6
    assert context.sections[0].title == "A320 Type Rating Training Course"
    assert context.sections[0].parent_id is None
    assert context.sections[1].parent_id == "section-1"
    assert context.sections[2].parent_id == "section-2"
    assert any("FCL.725" in s.regulatory_references for s in context.sections)
    assert all(0 <= s.importance <= 100 for s in context.sections)
