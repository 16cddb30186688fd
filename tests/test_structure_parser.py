"""Tests for the structural document parser."""
import pytest

from aerotrain.services.structure_parser import (
    ElementType,
    HeadingInput,
    TableInput,
    parse_document_structure,
)


def _types(structure, element_type):
    return [e for e in structure.elements if e.type == element_type]


def test_empty_text_yields_root_only():
    structure = parse_document_structure("")
    assert len(structure.elements) == 1
    assert structure.root.type == ElementType.DOCUMENT
    assert structure.confidence == 0.0
    assert structure.title == "Untitled Document"
    structure.validate_tree()


def test_headings_build_nested_sections(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    structure.validate_tree()

    sections = _types(structure, ElementType.SECTION)
    assert [s.text for s in sections] == [h["text"] for h in sample_headings]
    top = sections[0]
    assert top.parent == 0

    modules = [s for s in sections if s.level == 2]
    assert len(modules) == 3
    assert all(structure.parent_of(m.id).id == top.id for m in modules)

    lesson = next(s for s in sections if s.text.startswith("Lesson 1.1"))
    assert structure.parent_of(lesson.id).text.startswith("Module 1")
    # Every section owns its heading as first child
    for section in sections:
        first = structure.children_of(section.id)[0]
        assert first.type == ElementType.HEADING
        assert first.text == section.text


def test_paragraphs_attach_to_located_sections(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    module_3 = next(s for s in _types(structure, ElementType.SECTION) if s.text == "Module 3: Base Training")
    body = structure.section_text(module_3.id)
    assert "six takeoffs and landings" in body
    assert "hydraulic" not in body.lower()


def test_title_prefers_level_one_heading(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    assert structure.title == "A320 Type Rating Training Course"

    explicit = parse_document_structure(sample_text, title="Custom Title")
    assert explicit.title == "Custom Title"


def test_title_falls_back_to_first_line():
    structure = parse_document_structure("\n\nFirst line here\nSecond line")
    assert structure.title == "First line here"


def test_heading_level_jump_attaches_to_nearest_open_section():
    structure = parse_document_structure(
        "Intro\n\nDeep\n",
        headings=[HeadingInput(level=1, text="Intro"), HeadingInput(level=4, text="Deep")],
    )
    sections = _types(structure, ElementType.SECTION)
    assert structure.parent_of(sections[1].id).id == sections[0].id


def test_page_index_is_converted_to_page():
    structure = parse_document_structure("Chapter\n", headings=[{"level": 1, "text": "Chapter", "page_index": 0}])
    section = _types(structure, ElementType.SECTION)[0]
    assert section.page == 1


def test_tables_attach_to_section_on_same_page(sample_text, sample_headings):
    structure = parse_document_structure(
        sample_text,
        headings=sample_headings,
        tables=[TableInput(rows=[["Phase", "Hours"], ["Ground", "40"]], page=3)],
    )
    table = _types(structure, ElementType.TABLE)[0]
    assert structure.parent_of(table.id).text == "Lesson 2.1 Simulator Session Normal Procedures"
    assert table.metadata["rows"] == 2
    assert table.metadata["columns"] == 2
    cells = structure.children_of(table.id)
    assert [c.text for c in cells] == ["Phase", "Hours", "Ground", "40"]
    assert cells[3].metadata["row"] == 1
    assert cells[3].metadata["column"] == 1


def test_table_without_matching_page_goes_to_deepest_open_section(sample_text, sample_headings):
    structure = parse_document_structure(
        sample_text, headings=sample_headings, tables=[{"rows": [["a", "b"]], "page": 9}],
    )
    table = _types(structure, ElementType.TABLE)[0]
    assert structure.parent_of(table.id).text == "Module 3: Base Training"


def test_empty_table_is_skipped():
    structure = parse_document_structure("Some text.", tables=[[]])
    assert not _types(structure, ElementType.TABLE)


def test_lists_and_continuations():
    text = (
        "Checklist items\n"
        "\n"
        "- Parking brake set\n"
        "- Fuel quantity checked\n"
        "   against the load sheet\n"
        "1. Seat belts fastened\n"
        "\n"
        "After the list.\n"
    )
    structure = parse_document_structure(text)
    structure.validate_tree()
    lists = _types(structure, ElementType.LIST)
    assert len(lists) == 1
    items = structure.children_of(lists[0].id)
    assert [i.text for i in items] == [
        "Parking brake set",
        "Fuel quantity checked against the load sheet",
        "Seat belts fastened",
    ]
    assert lists[0].metadata["startLine"] == 2


def test_key_values_and_form_fields():
    text = "Aircraft: A320\nTrainee name: ________\n"
    structure = parse_document_structure(text)
    key_value = _types(structure, ElementType.KEY_VALUE)[0]
    assert key_value.metadata["key"] == "Aircraft"
    assert key_value.metadata["value"] == "A320"
    form_field = _types(structure, ElementType.FORM_FIELD)[0]
    assert form_field.metadata["label"] == "Trainee name"
    # Both lines still read as a paragraph
    assert structure.paragraph_count == 1


def test_footnotes_references_and_citations():
    text = (
        "Stall recovery is trained in the simulator [1] (Smith, 2019).\n"
        "\n"
        "[^1]: See the operator manual.\n"
        "\n"
        "References\n"
        "[1] EASA Part-FCL consolidated text\n"
    )
    structure = parse_document_structure(text, headings=[{"level": 1, "text": "References"}])
    structure.validate_tree()

    footnote = _types(structure, ElementType.FOOTNOTE)[0]
    assert footnote.metadata["footnoteNumber"] == 1
    assert footnote.text == "See the operator manual."

    reference_sections = [s for s in _types(structure, ElementType.SECTION) if s.metadata.get("isReferenceSection")]
    assert len(reference_sections) == 1
    reference = _types(structure, ElementType.REFERENCE)[0]
    assert reference.parent == reference_sections[0].id
    assert reference.metadata["referenceNumber"] == 1

    citations = _types(structure, ElementType.CITATION)
    kinds = {c.metadata["citationType"] for c in citations}
    assert kinds == {"numeric", "author_year"}
    assert all(c.parent == 0 for c in citations)


def test_metadata_counts(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings, page_count=4)
    meta = structure.metadata
    assert meta["page_count"] == 4
    assert meta["heading_count"] == 6
    assert meta["section_count"] == 6
    assert meta["element_count"] == len(structure.elements) - 1
    assert meta["paragraph_count"] > 0
    assert 0 < structure.confidence <= 1


def test_walk_is_preorder(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    visited = [e.id for e in structure.walk()]
    assert visited[0] == 0
    assert sorted(visited) == list(range(len(structure.elements)))


def test_to_tree_nests_children(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    tree = structure.to_tree()
    assert tree["type"] == "document"
    assert tree["children"][0]["type"] == "section"
    assert tree["children"][0]["level"] == 1


def test_validate_tree_rejects_double_ownership(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    structure.elements[0].children.append(structure.elements[0].children[0])
    with pytest.raises(ValueError):
        structure.validate_tree()
