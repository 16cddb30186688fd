"""
Structural parser: raw document text (+ optional pre-extracted headings and
tables) → typed element tree.

The tree is stored as an arena: ``DocumentStructure.elements`` is a flat list
where each element's ``id`` is its index.  Children are owned index lists and
``parent`` is a plain index, so the structure never holds reference cycles.
Element 0 is always the document root.

Public API
----------
    parse_document_structure(text, headings=None, tables=None, title=None)
        -> DocumentStructure
"""
from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

from aerotrain.utils.helpers import normalize_text, safe_divide

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Element types and heuristic confidences
# ---------------------------------------------------------------------------

class ElementType(str, enum.Enum):
    DOCUMENT = "document"
    HEADING = "heading"
    SECTION = "section"
    PARAGRAPH = "paragraph"
    LIST = "list"
    LIST_ITEM = "list_item"
    TABLE = "table"
    TABLE_CELL = "table_cell"
    KEY_VALUE = "key_value"
    FORM_FIELD = "form_field"
    REFERENCE = "reference"
    CITATION = "citation"
    FOOTNOTE = "footnote"


_CONFIDENCE = {
    ElementType.HEADING: 0.9,
    ElementType.SECTION: 0.9,
    ElementType.TABLE: 0.85,
    ElementType.TABLE_CELL: 0.85,
    ElementType.LIST: 0.75,
    ElementType.LIST_ITEM: 0.8,
    ElementType.KEY_VALUE: 0.75,
    ElementType.FORM_FIELD: 0.7,
    ElementType.PARAGRAPH: 0.7,
    ElementType.REFERENCE: 0.8,
    ElementType.CITATION: 0.7,
    ElementType.FOOTNOTE: 0.7,
}

# Applied when an element carries no confidence of its own
_DEFAULT_ELEMENT_CONFIDENCE = 0.5

_LIST_MARKER = re.compile(r"^\s*(?:[•\-\*\+]|\d+[.)]|[a-zA-Z][.)])\s+")
_KEY_VALUE = re.compile(r"^([^:]+):(.+)$")
_FORM_BLANK = re.compile(r"^[_.\s\[\]□]+$")
_FOOTNOTE = re.compile(r"^\s*\[\^(\d+)\]:?\s+(.+)$")
_REFERENCE_ENTRY = re.compile(r"^\s*\[(\d+)\]\s+(.+)$")
_REFERENCE_HEADING = re.compile(r"^\s*(references|bibliography|works cited)\s*:?\s*$", re.IGNORECASE)
_NUMERIC_CITATION = re.compile(r"\[(\d+)\]")
_AUTHOR_YEAR_CITATION = re.compile(r"\(([A-Za-z]+,?\s+\d{4}[a-z]?)\)")

_MAX_KEY_LENGTH = 50


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class HeadingInput:
    """A heading supplied by the text extraction service."""

    level: int
    text: str
    page: Optional[int] = None  # 1-based


@dataclass
class TableInput:
    """A table supplied by the text extraction service (rows of cell strings)."""

    rows: List[List[str]]
    page: Optional[int] = None  # 1-based


@dataclass
class DocumentElement:
    """One node of the element arena."""

    id: int
    type: ElementType
    text: str = ""
    level: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)

    @property
    def confidence(self) -> float:
        return float(self.metadata.get("confidence", _DEFAULT_ELEMENT_CONFIDENCE))

    @property
    def page(self) -> Optional[int]:
        return self.metadata.get("page")


@dataclass
class DocumentStructure:
    """
    Output of the structural parser.

    Attributes:
        title:              Document title (explicit, first heading or first line).
        elements:           Element arena; ``elements[i].id == i``, ``elements[0]`` is the root.
        confidence:         Mean confidence over all non-root elements (0 when there are none).
        processing_time_ms: Wall time spent parsing.
        metadata:           Element counts (paragraph_count, heading_count, …) and page_count.
    """

    title: str
    elements: List[DocumentElement]
    confidence: float = 0.0
    processing_time_ms: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def root(self) -> DocumentElement:
        return self.elements[0]

    # The hierarchy is the tree hanging off the root element
    hierarchy = root

    @property
    def paragraph_count(self) -> int:
        return int(self.metadata.get("paragraph_count", 0))

    def element(self, element_id: int) -> DocumentElement:
        return self.elements[element_id]

    def children_of(self, element_id: int) -> List[DocumentElement]:
        return [self.elements[i] for i in self.elements[element_id].children]

    def parent_of(self, element_id: int) -> Optional[DocumentElement]:
        parent = self.elements[element_id].parent
        return self.elements[parent] if parent is not None else None

    def ancestors(self, element_id: int) -> List[DocumentElement]:
        """Parents of *element_id* from the nearest up to the root."""
        result = []
        current = self.parent_of(element_id)
        while current is not None:
            result.append(current)
            current = self.parent_of(current.id)
        return result

    def walk(self, start: int = 0) -> Iterator[DocumentElement]:
        """Depth-first, pre-order traversal starting at *start*."""
        stack = [start]
        while stack:
            element = self.elements[stack.pop()]
            yield element
            stack.extend(reversed(element.children))

    def find(self, element_type: ElementType) -> List[DocumentElement]:
        return [e for e in self.elements if e.type == element_type]

    def section_text(self, section_id: int) -> str:
        """Concatenated text of every element below a section (excluding the section itself)."""
        parts = []
        for element in self.walk(section_id):
            if element.id == section_id or element.type in (ElementType.SECTION, ElementType.LIST, ElementType.TABLE):
                continue
            if element.text:
                parts.append(element.text)
        return "\n".join(parts)

    def validate_tree(self) -> None:
        """
        Check the single-parent, acyclic, fully-connected tree invariant.

        Raises:
            ValueError: describing the first violation found.
        """
        if not self.elements or self.elements[0].parent is not None:
            raise ValueError("root element missing or has a parent")

        for index, element in enumerate(self.elements):
            if element.id != index:
                raise ValueError(f"element id {element.id} does not match its arena slot")
            if element.id != 0:
                if element.parent is None:
                    raise ValueError(f"element {element.id} has no parent")
                if not 0 <= element.parent < len(self.elements):
                    raise ValueError(f"element {element.id} has dangling parent {element.parent}")
                if self.elements[element.parent].children.count(element.id) != 1:
                    raise ValueError(f"element {element.id} is not owned exactly once by its parent")
            for child in element.children:
                if not 0 <= child < len(self.elements) or self.elements[child].parent != element.id:
                    raise ValueError(f"element {element.id} lists child {child} it does not parent")

        seen = set()
        for element in self.walk(0):
            if element.id in seen:
                raise ValueError(f"cycle detected at element {element.id}")
            seen.add(element.id)
        if len(seen) != len(self.elements):
            raise ValueError("some elements are unreachable from the root")

    def to_tree(self, element_id: int = 0) -> Dict[str, Any]:
        """Nested dict rendering of the hierarchy (used by the API)."""
        element = self.elements[element_id]
        node: Dict[str, Any] = {
            "id": element.id,
            "type": element.type.value,
            "text": element.text,
            "metadata": element.metadata,
            "children": [self.to_tree(child) for child in element.children],
        }
        if element.level is not None:
            node["level"] = element.level
        return node


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class _StructureBuilder:
    """Owns the arena while parsing and enforces single ownership on attach."""

    def __init__(self) -> None:
        root = DocumentElement(id=0, type=ElementType.DOCUMENT, text="Document Root")
        self.elements: List[DocumentElement] = [root]
        # One open-section slot per heading level; slot 0 is the root
        self.open_sections: List[Optional[int]] = [0]

    def add(
        self,
        element_type: ElementType,
        text: str,
        parent: int,
        level: Optional[int] = None,
        **metadata: Any,
    ) -> DocumentElement:
        meta = {"confidence": _CONFIDENCE.get(element_type, _DEFAULT_ELEMENT_CONFIDENCE)}
        meta.update({k: v for k, v in metadata.items() if v is not None})
        element = DocumentElement(
            id=len(self.elements), type=element_type, text=text, level=level, metadata=meta,
        )
        self.elements.append(element)
        self.attach(element.id, parent)
        return element

    def attach(self, child: int, parent: int) -> None:
        element = self.elements[child]
        if element.parent is not None:
            self.elements[element.parent].children.remove(child)
        element.parent = parent
        self.elements[parent].children.append(child)

    def deepest_open_section(self) -> int:
        for slot in reversed(self.open_sections):
            if slot is not None:
                return slot
        return 0

    def best_parent(self, page: Optional[int]) -> int:
        """
        Section tagged with *page* found by DFS from the root, else the deepest
        currently-open section, else the root.
        """
        if page is not None:
            stack = [0]
            while stack:
                element = self.elements[stack.pop()]
                if element.type == ElementType.SECTION and element.metadata.get("page") == page:
                    return element.id
                stack.extend(reversed(element.children))
        return self.deepest_open_section()


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------

def _coerce_heading(heading: Union[HeadingInput, Mapping[str, Any]]) -> HeadingInput:
    if isinstance(heading, HeadingInput):
        return heading
    page = heading.get("page")
    if page is None and heading.get("page_index") is not None:
        page = int(heading["page_index"]) + 1
    return HeadingInput(level=int(heading.get("level", 1)), text=str(heading.get("text", "")), page=page)


def _coerce_table(table: Union[TableInput, Mapping[str, Any], Sequence[Sequence[Any]]]) -> TableInput:
    if isinstance(table, TableInput):
        return table
    if isinstance(table, Mapping):
        return TableInput(rows=[list(r) for r in table.get("rows", [])], page=table.get("page"))
    return TableInput(rows=[list(r) if isinstance(r, (list, tuple)) else [r] for r in table])


def _process_headings(builder: _StructureBuilder, headings: Sequence[HeadingInput]) -> Dict[int, int]:
    """Build heading/section pairs.  Returns heading element id → section element id."""
    section_of: Dict[int, int] = {}
    for heading in headings:
        level = max(1, heading.level)
        text = heading.text.strip()

        # Nearest open section at a lower level, walking upward; slot 0 is the root
        parent = 0
        for parent_level in range(min(level - 1, len(builder.open_sections) - 1), 0, -1):
            if builder.open_sections[parent_level] is not None:
                parent = builder.open_sections[parent_level]
                break

        section = builder.add(ElementType.SECTION, text, parent, level=level, page=heading.page)
        heading_el = builder.add(ElementType.HEADING, text, section.id, level=level, page=heading.page)
        section_of[heading_el.id] = section.id

        while len(builder.open_sections) <= level:
            builder.open_sections.append(None)
        builder.open_sections[level] = section.id
        for deeper in range(level + 1, len(builder.open_sections)):
            builder.open_sections[deeper] = None

        if _REFERENCE_HEADING.match(text):
            # Dedicated References section alongside the heading's own section
            builder.add(
                ElementType.SECTION, "References", parent, level=level,
                page=heading.page, isReferenceSection=True,
            )
    return section_of


def _process_tables(builder: _StructureBuilder, tables: Sequence[TableInput]) -> None:
    for index, table in enumerate(tables):
        if not table.rows:
            continue
        column_count = max((len(row) for row in table.rows), default=0)
        parent = builder.best_parent(table.page)
        table_el = builder.add(
            ElementType.TABLE, f"Table {index + 1}", parent,
            rows=len(table.rows), columns=column_count, page=table.page,
        )
        for row_index, row in enumerate(table.rows):
            for column_index, cell in enumerate(row):
                builder.add(
                    ElementType.TABLE_CELL, str(cell).strip(), table_el.id,
                    row=row_index, column=column_index,
                )


def _locate_headings(lines: List[str], builder: _StructureBuilder, section_of: Dict[int, int]) -> Dict[int, int]:
    """Map line index → section id for heading lines found verbatim in the text, in order."""
    located: Dict[int, int] = {}
    cursor = 0
    for heading_id, section_id in section_of.items():
        wanted = builder.elements[heading_id].text.lower()
        for i in range(cursor, len(lines)):
            if lines[i].strip().lower() == wanted:
                located[i] = section_id
                cursor = i + 1
                break
    return located


def _process_text(
    builder: _StructureBuilder,
    text: str,
    section_of: Dict[int, int],
) -> None:
    """Lists, key-value pairs, form fields, footnotes, reference entries and paragraphs."""
    lines = text.split("\n")
    heading_lines = _locate_headings(lines, builder, section_of)
    reference_sections = [
        e.id for e in builder.elements if e.metadata.get("isReferenceSection")
    ]

    # Without located headings, fall back to the best-parent rule for every element
    fallback_parent = builder.best_parent(None)
    current_section = 0 if heading_lines else fallback_parent

    current_list: Optional[DocumentElement] = None
    paragraph_lines: List[str] = []
    paragraph_start = 0

    def flush_paragraph(end_line: int) -> None:
        nonlocal paragraph_lines
        if paragraph_lines:
            builder.add(
                ElementType.PARAGRAPH, " ".join(paragraph_lines), current_section,
                startLine=paragraph_start, endLine=end_line,
            )
        paragraph_lines = []

    for i, raw in enumerate(lines):
        line = raw.strip()

        if i in heading_lines:
            flush_paragraph(i - 1)
            if current_list is not None:
                current_list.metadata["endLine"] = i - 1
                current_list = None
            current_section = heading_lines[i]
            continue

        if not line:
            flush_paragraph(i - 1)
            continue

        reference_match = _REFERENCE_ENTRY.match(line)
        if reference_match and reference_sections:
            flush_paragraph(i - 1)
            builder.add(
                ElementType.REFERENCE, reference_match.group(2).strip(), reference_sections[0],
                referenceNumber=int(reference_match.group(1)), lineIndex=i,
            )
            continue

        footnote_match = _FOOTNOTE.match(line)
        if footnote_match:
            flush_paragraph(i - 1)
            builder.add(
                ElementType.FOOTNOTE, footnote_match.group(2).strip(), current_section,
                footnoteNumber=int(footnote_match.group(1)), lineIndex=i,
            )
            continue

        if _LIST_MARKER.match(line):
            flush_paragraph(i - 1)
            if current_list is None:
                current_list = builder.add(ElementType.LIST, "List", current_section, startLine=i)
            builder.add(
                ElementType.LIST_ITEM, _LIST_MARKER.sub("", line, count=1).strip(), current_list.id,
                lineIndex=i,
            )
            continue

        if current_list is not None:
            if raw[:1].isspace():
                # Indented continuation of the previous item
                item = builder.elements[current_list.children[-1]]
                item.text = f"{item.text} {line}"
                continue
            current_list.metadata["endLine"] = i - 1
            current_list = None

        kv_match = _KEY_VALUE.match(line)
        if kv_match:
            key, value = kv_match.group(1).strip(), kv_match.group(2).strip()
            if 0 < len(key) < _MAX_KEY_LENGTH and value:
                if _FORM_BLANK.match(value):
                    builder.add(ElementType.FORM_FIELD, key, current_section, label=key, lineIndex=i)
                else:
                    builder.add(
                        ElementType.KEY_VALUE, line, current_section, key=key, value=value, lineIndex=i,
                    )

        if not paragraph_lines:
            paragraph_start = i
        paragraph_lines.append(line)

    flush_paragraph(len(lines) - 1)
    if current_list is not None:
        current_list.metadata["endLine"] = len(lines) - 1


def _process_citations(builder: _StructureBuilder, text: str) -> None:
    for match in _NUMERIC_CITATION.finditer(text):
        builder.add(
            ElementType.CITATION, match.group(0), 0,
            citationType="numeric", reference=match.group(1), offset=match.start(),
        )
    for match in _AUTHOR_YEAR_CITATION.finditer(text):
        builder.add(
            ElementType.CITATION, match.group(0), 0,
            citationType="author_year", reference=match.group(1), offset=match.start(),
        )


def _derive_title(text: str, headings: Sequence[HeadingInput]) -> str:
    for heading in headings:
        if heading.level == 1 and heading.text.strip():
            return heading.text.strip()
    for line in text.split("\n"):
        if line.strip():
            return line.strip()[:100]
    return "Untitled Document"


def _calculate_confidence(elements: List[DocumentElement]) -> float:
    scored = [e.confidence for e in elements if e.id != 0]
    if not scored:
        return 0.0
    return round(sum(scored) / len(scored), 4)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def parse_document_structure(
    text: str,
    headings: Optional[Sequence[Union[HeadingInput, Mapping[str, Any]]]] = None,
    tables: Optional[Sequence[Any]] = None,
    title: Optional[str] = None,
    page_count: Optional[int] = None,
) -> DocumentStructure:
    """
    Parse extracted document text into a ``DocumentStructure``.

    Args:
        text:       Raw extracted text.
        headings:   Optional pre-extracted headings (``HeadingInput`` or dicts
                    with level/text/page).
        tables:     Optional pre-extracted tables (``TableInput``, dicts with
                    rows/page, or plain lists of rows).
        title:      Explicit title; derived from the content when omitted.
        page_count: Page count reported by the extraction service.

    Returns:
        DocumentStructure whose element arena satisfies the tree invariant.
    """
    t0 = time.monotonic()
    text = normalize_text(text or "")
    heading_inputs = [_coerce_heading(h) for h in (headings or []) if h]
    table_inputs = [_coerce_table(t) for t in (tables or [])]

    builder = _StructureBuilder()
    section_of = _process_headings(builder, heading_inputs)
    _process_tables(builder, table_inputs)
    if text:
        _process_text(builder, text, section_of)
        _process_citations(builder, text)

    elements = builder.elements
    counts: Dict[str, int] = {}
    for element in elements[1:]:
        key = f"{element.type.value}_count"
        counts[key] = counts.get(key, 0) + 1

    metadata: Dict[str, Any] = {
        "page_count": page_count,
        "element_count": len(elements) - 1,
        "paragraph_count": counts.get("paragraph_count", 0),
        "heading_count": counts.get("heading_count", 0),
        "section_count": counts.get("section_count", 0),
        "table_count": counts.get("table_count", 0),
        "list_count": counts.get("list_count", 0),
        "key_value_count": counts.get("key_value_count", 0),
        "citation_count": counts.get("citation_count", 0),
        "word_count": len(text.split()),
    }
    metadata["average_paragraph_words"] = round(
        safe_divide(metadata["word_count"], metadata["paragraph_count"]), 1
    )

    structure = DocumentStructure(
        title=(title or "").strip() or _derive_title(text, heading_inputs),
        elements=elements,
        confidence=_calculate_confidence(elements),
        processing_time_ms=round((time.monotonic() - t0) * 1000, 2),
        metadata=metadata,
    )
    logger.info(
        "Structure parsed: '%s', %d elements, %d paragraph(s), confidence %.2f (%.1f ms)",
        structure.title[:60],
        metadata["element_count"],
        metadata["paragraph_count"],
        structure.confidence,
        structure.processing_time_ms,
    )
    return structure
