"""
Syllabus synthesis from training documents.

Derives modules, lessons and competencies from a document's structure and
text, maps the result onto the regulatory catalog of the governing authority,
scores the outcome and optionally builds a small syllabus-scoped graph.

Steps run strictly in order; ``generate`` reports each one through an
optional progress callback so a job tracker can follow along:

    identifying_competencies → creating_modules → creating_lessons →
    [generating_knowledge_graph] → validating_regulatory_compliance →
    generating_final_syllabus
"""
from __future__ import annotations

import enum
import logging
import math
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from aerotrain.config import settings
from aerotrain.models.schemas import GenerationOptions
from aerotrain.services.errors import MappingFailure, ValidationFailure
from aerotrain.services.regulatory import (
    InMemoryRegulatoryCatalog,
    RegulatoryCatalog,
    RegulatoryRequirement,
    canonical_code,
    detect_authority,
    extract_regulatory_references,
)
from aerotrain.services.structure_parser import DocumentStructure, ElementType
from aerotrain.services.syllabus_templates import (
    ASSESSMENT_MINUTES,
    DEFAULT_MODULES,
    INTRODUCTION_MINUTES,
    LESSON_LIKE,
    MAX_COMPETENCY_LESSONS,
    MODULE_LIKE,
    LessonType,
    ModuleType,
    TemplateModule,
    get_template,
    lesson_duration,
    lesson_type,
    module_duration,
    score_module_type,
)
from aerotrain.utils.helpers import (
    clamp,
    count_occurrences,
    jaccard_similarity,
    normalize_key,
    split_paragraphs,
    to_jsonable,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

PROGRAM_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("initial_type_rating", re.compile(r"\binitial type rating\b", re.IGNORECASE)),
    ("type_rating", re.compile(r"\btype rating\b", re.IGNORECASE)),
    ("recurrent", re.compile(r"\b(?:recurrent|refresher|proficiency check|revalidation)\b", re.IGNORECASE)),
    ("joc_mcc", re.compile(r"\b(?:jet orientation|JOC|MCC|multi-crew cooperation)\b", re.IGNORECASE)),
    ("initial", re.compile(r"\b(?:ab initio|initial training)\b", re.IGNORECASE)),
]

AIRCRAFT_TYPES: List[str] = [
    "A320", "A330", "A340", "A350", "A380",
    "B737", "B747", "B757", "B767", "B777", "B787",
    "ATR42", "ATR72",
    "CRJ", "ERJ", "E170", "E190",
    "Q400", "DHC-8",
    "Cessna", "Piper", "Beechcraft", "Diamond",
]

_GENERIC_AIRCRAFT = re.compile(r"\b[A-Z]{1,3}-?\d{2,4}[A-Z]?\b")
_NOT_AIRCRAFT_PREFIXES = {"FAR", "CFR", "FCL", "CS", "AC", "CAR", "CAO", "TP", "EU", "AMC", "GM", "DOC"}

COMPETENCY_PATTERNS = [
    re.compile(r"\b(?:able to|can|will|should|must|demonstrate ability to|proficiency in)\b", re.IGNORECASE),
    re.compile(r"\b(?:knowledge of|understand|comprehend|explain|identify|recognize)\b", re.IGNORECASE),
    re.compile(r"\b(?:execute|perform|conduct|apply|implement|analyze|evaluate)\b", re.IGNORECASE),
]
CRITERIA_PATTERN = re.compile(
    r"\b(?:accurately|correctly|safely|properly|effectively|successfully)\b", re.IGNORECASE
)

# Sentence boundary that leaves dotted codes such as "FCL.725" intact
_SENTENCE_END = re.compile(r"[.!?]+(?=\s|$)")
_LIST_LINE = re.compile(r"^\s*(?:[•\-\*\+]|\d+[.)]|[a-zA-Z][.)])\s+")

_COMPETENCY_NAME_LENGTH = 50
_MAX_CRITERIA = 3
_MAX_OBJECTIVES = 5
_TARGET_SIMILARITY = 0.3
_MAX_HEADING_LENGTH = 100


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class ExtractedCompetency:
    name: str
    description: str
    assessment_criteria: List[str] = field(default_factory=list)
    regulatory_reference: Optional[str] = None


@dataclass
class ExtractedModule:
    name: str
    description: str
    type: ModuleType
    competencies: List[ExtractedCompetency] = field(default_factory=list)
    recommended_duration: float = 0.0  # hours
    regulatory_requirements: List[str] = field(default_factory=list)
    source: str = "structure"  # structure, text, template or default


@dataclass
class ExtractedLesson:
    name: str
    description: str
    content: str
    type: LessonType
    module_index: int
    duration: int  # minutes
    learning_objectives: List[str] = field(default_factory=list)
    target_competencies: List[str] = field(default_factory=list)


@dataclass
class RegulatoryCompliance:
    authority: Optional[str] = None
    requirements_met: List[RegulatoryRequirement] = field(default_factory=list)
    requirements_partially_met: List[RegulatoryRequirement] = field(default_factory=list)
    requirements_not_met: List[RegulatoryRequirement] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return (
            len(self.requirements_met)
            + len(self.requirements_partially_met)
            + len(self.requirements_not_met)
        )


class SyllabusRelationship(str, enum.Enum):
    DEVELOPS = "develops"
    REQUIRES = "requires"
    TEACHES = "teaches"


@dataclass
class SyllabusGraphNode:
    id: str
    type: str  # module, competency, lesson or objective
    content: str


@dataclass
class SyllabusGraphEdge:
    source: str
    target: str
    relationship: SyllabusRelationship


@dataclass
class SyllabusGraph:
    nodes: List[SyllabusGraphNode] = field(default_factory=list)
    edges: List[SyllabusGraphEdge] = field(default_factory=list)


@dataclass
class GeneratedSyllabus:
    name: str
    description: str
    program_type: str
    aircraft_type: Optional[str]
    total_duration: int  # days
    modules: List[ExtractedModule]
    lessons: List[ExtractedLesson]
    regulatory_compliance: RegulatoryCompliance
    confidence_score: float
    knowledge_graph: Optional[SyllabusGraph] = None
    warnings: List[str] = field(default_factory=list)
    version: str = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

def validate_generation_options(
    options: Union[GenerationOptions, Mapping[str, Any], None],
) -> GenerationOptions:
    """
    Validate raw generation options.

    Raises:
        ValidationFailure: with pydantic's error details when *options* is malformed.
    """
    if isinstance(options, GenerationOptions):
        return options
    if options is not None and not isinstance(options, Mapping):
        raise ValidationFailure("Generation options must be an object")
    try:
        return GenerationOptions.model_validate(dict(options or {}))
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False)
        raise ValidationFailure(f"Invalid generation options: {len(errors)} error(s)", errors=errors) from exc


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def _clean(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _is_title_line(line: str, following: str) -> bool:
    """An unpunctuated line followed by a capitalised one stands on its own."""
    line = line.strip()
    return bool(line) and line[-1] not in ".!?,;:" and following[:1].isupper()


def split_units(text: str) -> List[str]:
    """Sentences, title lines and individual list items, in document order."""
    units: List[str] = []
    for paragraph in split_paragraphs(text):
        prose: List[str] = []
        lines = paragraph.split("\n")
        for index, line in enumerate(lines):
            following = lines[index + 1].strip() if index + 1 < len(lines) else ""
            if _LIST_LINE.match(line):
                if prose:
                    units.extend(_sentences(" ".join(prose)))
                    prose = []
                item = _clean(_LIST_LINE.sub("", line, count=1))
                if item:
                    units.append(item)
                continue
            prose.append(line)
            if _is_title_line(line, following):
                units.extend(_sentences(" ".join(prose)))
                prose = []
        if prose:
            units.extend(_sentences(" ".join(prose)))
    return units


def _sentences(text: str) -> List[str]:
    return [_clean(s) for s in _SENTENCE_END.split(text) if _clean(s)]


def _codes(text: str) -> List[str]:
    return [ref.code for ref in extract_regulatory_references(text)]


def _is_module_title(line: str) -> bool:
    """Module-like heading that is neither a lesson heading nor a numbered outcome sentence."""
    if not MODULE_LIKE.match(line) or LESSON_LIKE.match(line):
        return False
    if _LIST_LINE.match(line):
        item = _LIST_LINE.sub("", line, count=1)
        return not (_SENTENCE_END.search(item) or any(p.search(item) for p in COMPETENCY_PATTERNS))
    return True


def _text_sections(
    text: str,
    starts: Callable[[str], bool],
    stops: Optional[Callable[[str], bool]] = None,
) -> List[Tuple[str, str]]:
    """
    Group blank-line-delimited sections into (title, body) pairs.

    A section whose first line satisfies *starts* opens a group; following
    sections are appended to the open group until the next opening section
    or a section whose first line satisfies *stops*.
    """
    groups: List[Tuple[str, List[str]]] = []
    open_group = False
    for section in split_paragraphs(text):
        first, _, rest = section.partition("\n")
        first = first.strip()
        if len(first) <= _MAX_HEADING_LENGTH and starts(first):
            groups.append((first, [rest.strip()] if rest.strip() else []))
            open_group = True
        elif stops is not None and stops(first):
            open_group = False
        elif open_group:
            groups[-1][1].append(section)
    return [(title, "\n\n".join(body)) for title, body in groups]


def _section_body(structure: DocumentStructure, section_id: int, heading_id: int) -> str:
    parts = []
    for element in structure.walk(section_id):
        if element.id in (section_id, heading_id):
            continue
        if element.type in (ElementType.SECTION, ElementType.LIST, ElementType.TABLE):
            continue
        if element.text:
            parts.append(element.text)
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------

class SyllabusSynthesizer:
    """Heuristic syllabus synthesis over document text and structure."""

    def __init__(self, catalog: Optional[RegulatoryCatalog] = None) -> None:
        self.catalog = catalog

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_program_type(self, text: str) -> Optional[str]:
        """Most frequent program phrase, else the keyword fallback chain; None when nothing hints."""
        best, best_count = None, 0
        for program, pattern in PROGRAM_PATTERNS:
            count = len(pattern.findall(text))
            if count > best_count:
                best, best_count = program, count
        if best:
            return best

        lowered = text.lower()
        words = set(re.findall(r"[a-z\-]+", lowered))
        if "type" in words and "rating" in words:
            return "type_rating"
        if "recurrent" in words or "refresher" in words or "proficiency check" in lowered:
            return "recurrent"
        if "mcc" in words or "multi-crew" in words:
            return "joc_mcc"
        if "initial" in words or "ab initio" in lowered:
            return "initial"
        return None

    def detect_aircraft_type(self, text: str) -> Optional[str]:
        best, best_count = None, 0
        for aircraft in AIRCRAFT_TYPES:
            count = count_occurrences(aircraft, text)
            if count > best_count:
                best, best_count = aircraft, count
        if best:
            return best

        counts: Dict[str, int] = {}
        for token in _GENERIC_AIRCRAFT.findall(text):
            prefix = re.match(r"[A-Z]+", token).group(0)
            if prefix in _NOT_AIRCRAFT_PREFIXES:
                continue
            counts[token] = counts.get(token, 0) + 1
        if not counts:
            return None
        return max(counts.items(), key=lambda kv: kv[1])[0]

    # ------------------------------------------------------------------
    # Competencies
    # ------------------------------------------------------------------

    def extract_competencies(self, text: str) -> List[ExtractedCompetency]:
        """
        Competency-like sentences and list items.

        The following (up to three) units that read like outcome statements
        become assessment criteria.  Exact-name duplicates are dropped.
        """
        units = split_units(text)
        competencies: List[ExtractedCompetency] = []
        seen = set()
        for i, unit in enumerate(units):
            if not any(p.search(unit) for p in COMPETENCY_PATTERNS):
                continue
            name = unit[:_COMPETENCY_NAME_LENGTH].strip()
            if name in seen:
                continue
            seen.add(name)
            criteria = [
                units[j] for j in range(i + 1, min(i + 1 + _MAX_CRITERIA, len(units)))
                if CRITERIA_PATTERN.search(units[j])
            ]
            codes = _codes(unit)
            competencies.append(ExtractedCompetency(
                name=name,
                description=unit,
                assessment_criteria=criteria,
                regulatory_reference=codes[0] if codes else None,
            ))
        return competencies

    # ------------------------------------------------------------------
    # Modules
    # ------------------------------------------------------------------

    def build_modules(
        self,
        text: str,
        structure: Optional[DocumentStructure],
        options: GenerationOptions,
        aircraft_type: Optional[str] = None,
    ) -> List[ExtractedModule]:
        modules = self._modules_from_structure(structure) if structure is not None else []
        if len(modules) < options.min_modules:
            names = {m.name.lower() for m in modules}
            for module in self._modules_from_text(text):
                if module.name.lower() not in names:
                    modules.append(module)
                    names.add(module.name.lower())
        if len(modules) < options.min_modules:
            modules.extend(self._fill_modules(text, modules, options, aircraft_type))

        if len(modules) > options.max_modules:
            logger.info("Capping %d module(s) at %d", len(modules), options.max_modules)
            modules = modules[: options.max_modules]
        return modules

    def _make_module(self, name: str, body: str, source: str) -> ExtractedModule:
        competencies = self.extract_competencies(body)
        module_type = score_module_type(f"{name}\n{body}")
        return ExtractedModule(
            name=name,
            description=_clean(body),
            type=module_type,
            competencies=competencies,
            recommended_duration=module_duration(module_type, len(competencies)),
            regulatory_requirements=_codes(f"{name}\n{body}"),
            source=source,
        )

    def _modules_from_structure(self, structure: DocumentStructure) -> List[ExtractedModule]:
        modules = []
        module_sections = set()
        for heading in structure.find(ElementType.HEADING):
            level = heading.level or 1
            if level > 2 or heading.parent is None or not _is_module_title(heading.text):
                continue
            if any(a.id in module_sections for a in structure.ancestors(heading.parent)):
                continue
            module_sections.add(heading.parent)
            body = _section_body(structure, heading.parent, heading.id)
            modules.append(self._make_module(heading.text.strip(), body, "structure"))
        return modules

    def _modules_from_text(self, text: str) -> List[ExtractedModule]:
        return [
            self._make_module(title, body, "text")
            for title, body in _text_sections(text, _is_module_title)
        ]

    def _fill_modules(
        self,
        text: str,
        modules: List[ExtractedModule],
        options: GenerationOptions,
        aircraft_type: Optional[str],
    ) -> List[ExtractedModule]:
        """One module per unused, enabled type until the minimum is reached."""
        enabled = {
            ModuleType.GROUND: options.include_classroom_modules,
            ModuleType.SIMULATOR: options.include_simulator_exercises,
            ModuleType.AIRCRAFT: options.include_aircraft_exercises,
        }
        template = get_template(options.template_id)
        used = {m.type for m in modules}
        assigned = {c.name for m in modules for c in m.competencies}
        paragraphs = split_paragraphs(text)

        added: List[ExtractedModule] = []
        for module_type in ModuleType:
            if len(modules) + len(added) >= options.min_modules:
                break
            if module_type in used or not enabled[module_type]:
                continue
            skeleton: TemplateModule = DEFAULT_MODULES[module_type]
            source = "default"
            if template is not None and template.module_for(module_type) is not None:
                skeleton = template.module_for(module_type)
                source = "template"

            keywords = skeleton.keywords or DEFAULT_MODULES[module_type].keywords
            relevant = "\n\n".join(
                p for p in paragraphs if any(re.search(rf"\b{re.escape(k)}", p, re.IGNORECASE) for k in keywords)
            )
            competencies = [c for c in self.extract_competencies(relevant) if c.name not in assigned]
            if not competencies and skeleton.competencies:
                competencies = [ExtractedCompetency(name=c, description=c) for c in skeleton.competencies]
            assigned.update(c.name for c in competencies)

            added.append(ExtractedModule(
                name=skeleton.render_name(aircraft_type),
                description=skeleton.description,
                type=module_type,
                competencies=competencies,
                recommended_duration=module_duration(module_type, len(competencies)),
                regulatory_requirements=_codes(relevant),
                source=source,
            ))
        return added

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    def build_lessons(
        self,
        text: str,
        structure: Optional[DocumentStructure],
        modules: List[ExtractedModule],
        options: GenerationOptions,
    ) -> List[ExtractedLesson]:
        if not modules:
            return []

        found: List[Tuple[str, str]] = []
        if structure is not None:
            for heading in structure.find(ElementType.HEADING):
                level = heading.level or 1
                if level in (2, 3) and heading.parent is not None and LESSON_LIKE.match(heading.text):
                    found.append((heading.text.strip(), _section_body(structure, heading.parent, heading.id)))
        if not found:
            found = _text_sections(
                text,
                lambda line: bool(LESSON_LIKE.match(line)),
                stops=_is_module_title,
            )

        per_module: Dict[int, List[ExtractedLesson]] = {i: [] for i in range(len(modules))}
        for name, body in found:
            index = self._assign_module(f"{name} {body}", modules)
            module = modules[index]
            per_module[index].append(ExtractedLesson(
                name=name,
                description=_clean(body)[:200],
                content=body,
                type=lesson_type(f"{name} {body}"),
                module_index=index,
                duration=lesson_duration(module.type, body),
                learning_objectives=self._objectives(name, body),
                target_competencies=self._targets(f"{name} {body}", module),
            ))

        lessons: List[ExtractedLesson] = []
        for index, module in enumerate(modules):
            module_lessons = per_module[index] or self._default_lessons(module, index, options)
            lessons.extend(module_lessons[: options.max_lessons_per_module])
        return lessons

    @staticmethod
    def _assign_module(content: str, modules: Sequence[ExtractedModule]) -> int:
        """Index of the module with the highest Jaccard overlap; the first wins ties."""
        best_index, best_score = 0, -1.0
        for index, module in enumerate(modules):
            score = jaccard_similarity(content, f"{module.name} {module.description}")
            if score > best_score:
                best_index, best_score = index, score
        return best_index

    def _objectives(self, name: str, body: str) -> List[str]:
        objectives = [c.description for c in self.extract_competencies(body)][:_MAX_OBJECTIVES]
        return objectives or [f"Understand the key concepts of {name}"]

    @staticmethod
    def _targets(content: str, module: ExtractedModule) -> List[str]:
        lowered = content.lower()
        return [
            c.name for c in module.competencies
            if c.description.lower() in lowered or jaccard_similarity(content, c.description) >= _TARGET_SIMILARITY
        ]

    @staticmethod
    def _default_lessons(module: ExtractedModule, index: int, options: GenerationOptions) -> List[ExtractedLesson]:
        practical = module.type != ModuleType.GROUND
        lessons = [ExtractedLesson(
            name=f"Introduction to {module.name}",
            description=f"Overview of the {module.name} module.",
            content=module.description,
            type=LessonType.PRESENTATION,
            module_index=index,
            duration=INTRODUCTION_MINUTES,
            learning_objectives=[f"Understand the scope and objectives of {module.name}"],
        )]
        for competency in module.competencies[:MAX_COMPETENCY_LESSONS]:
            lessons.append(ExtractedLesson(
                name=competency.name,
                description=f"Lesson for {module.name}",
                content=competency.description,
                type=LessonType.INTERACTIVE if practical else LessonType.DOCUMENT,
                module_index=index,
                duration=lesson_duration(module.type, competency.description),
                learning_objectives=[competency.description],
                target_competencies=[competency.name],
            ))
        if options.include_assessments:
            criteria = [c for comp in module.competencies for c in comp.assessment_criteria]
            lessons.append(ExtractedLesson(
                name=f"Assessment - {module.name}",
                description=f"Assessment of the {module.name} competencies.",
                content="\n".join(criteria),
                type=LessonType.ASSESSMENT,
                module_index=index,
                duration=ASSESSMENT_MINUTES,
                learning_objectives=criteria[:_MAX_OBJECTIVES] or [f"Demonstrate the competencies of {module.name}"],
                target_competencies=[c.name for c in module.competencies],
            ))
        return lessons

    # ------------------------------------------------------------------
    # Syllabus-scoped graph
    # ------------------------------------------------------------------

    @staticmethod
    def build_syllabus_graph(modules: List[ExtractedModule], lessons: List[ExtractedLesson]) -> SyllabusGraph:
        graph = SyllabusGraph()
        node_ids = set()

        def add_node(node_id: str, node_type: str, content: str) -> None:
            if node_id not in node_ids:
                node_ids.add(node_id)
                graph.nodes.append(SyllabusGraphNode(id=node_id, type=node_type, content=content))

        competency_ids: Dict[Tuple[int, str], str] = {}
        for index, module in enumerate(modules):
            module_id = f"module_{index}"
            add_node(module_id, "module", module.name)
            for competency in module.competencies:
                competency_id = f"competency_{normalize_key(competency.name)}"
                add_node(competency_id, "competency", competency.name)
                competency_ids[(index, competency.name)] = competency_id
                graph.edges.append(SyllabusGraphEdge(module_id, competency_id, SyllabusRelationship.DEVELOPS))

        for position, lesson in enumerate(lessons):
            lesson_id = f"lesson_{position}"
            add_node(lesson_id, "lesson", lesson.name)
            for name in lesson.target_competencies:
                competency_id = competency_ids.get((lesson.module_index, name))
                if competency_id:
                    graph.edges.append(SyllabusGraphEdge(lesson_id, competency_id, SyllabusRelationship.REQUIRES))
            for objective in lesson.learning_objectives:
                objective_id = f"objective_{normalize_key(objective)[:80]}"
                add_node(objective_id, "objective", objective)
                graph.edges.append(SyllabusGraphEdge(lesson_id, objective_id, SyllabusRelationship.TEACHES))
        return graph

    # ------------------------------------------------------------------
    # Regulatory mapping
    # ------------------------------------------------------------------

    async def map_compliance(
        self,
        text: str,
        modules: List[ExtractedModule],
        competencies: List[ExtractedCompetency],
        options: GenerationOptions,
        catalog: Optional[RegulatoryCatalog] = None,
    ) -> RegulatoryCompliance:
        """
        Classify every catalog requirement of the authority as met, partially met or not met.

        A catalog failure is logged as a MappingFailure and leaves the lists empty.
        """
        if options.regulatory_authority is not None:
            authority = options.regulatory_authority.value
        else:
            detected = detect_authority(text)
            authority = detected.value if detected is not None else None
        if authority is None:
            logger.info("No regulatory authority detected; compliance mapping skipped")
            return RegulatoryCompliance()

        catalog = catalog or self.catalog or InMemoryRegulatoryCatalog()
        try:
            requirements = await catalog.get_requirements(authority)
        except Exception as exc:
            failure = MappingFailure(authority, str(exc))
            logger.warning("%s", failure)
            return RegulatoryCompliance(authority=authority, error=str(failure))

        cited = {canonical_code(code) for m in modules for code in m.regulatory_requirements}
        threshold = settings.REQUIREMENT_PARTIAL_MATCH_THRESHOLD
        compliance = RegulatoryCompliance(authority=authority)
        for requirement in requirements:
            if canonical_code(requirement.code) in cited:
                compliance.requirements_met.append(requirement)
            elif any(jaccard_similarity(requirement.description, c.description) > threshold for c in competencies):
                compliance.requirements_partially_met.append(requirement)
            else:
                compliance.requirements_not_met.append(requirement)
        logger.info(
            "Compliance (%s): %d met, %d partially met, %d not met",
            authority,
            len(compliance.requirements_met),
            len(compliance.requirements_partially_met),
            len(compliance.requirements_not_met),
        )
        return compliance

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def confidence_score(
        modules: List[ExtractedModule],
        lessons: List[ExtractedLesson],
        competency_count: int,
        compliance: RegulatoryCompliance,
        aircraft_detected: bool,
        program_detected: bool,
    ) -> float:
        score = 0.5
        score += min(len(modules), 5) * 0.03
        score += min(len(lessons), 20) * 0.005
        score += min(competency_count, 30) * 0.003
        if compliance.authority:
            score += 0.05
        if compliance.total:
            score += 0.1 * len(compliance.requirements_met) / compliance.total
        if aircraft_detected:
            score += 0.05
        if program_detected:
            score += 0.05
        return round(clamp(score), 4)

    @staticmethod
    def total_duration(modules: List[ExtractedModule]) -> int:
        """Days at eight training hours per day."""
        return math.ceil(sum(m.recommended_duration for m in modules) / 8)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def generate(
        self,
        text: str,
        options: Union[GenerationOptions, Mapping[str, Any], None] = None,
        structure: Optional[DocumentStructure] = None,
        catalog: Optional[RegulatoryCatalog] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> GeneratedSyllabus:
        """
        Generate a syllabus from document text.

        Args:
            text:      Document text.
            options:   GenerationOptions or a raw mapping (validated first).
            structure: Parsed structure; enables heading-based modules and lessons.
            catalog:   Regulatory catalog (the in-memory seed when omitted).
            progress:  Called as ``progress(stage, message)`` before each step.

        Returns:
            GeneratedSyllabus

        Raises:
            ValidationFailure: when *options* is malformed (before any step runs).
        """
        options = validate_generation_options(options)
        t0 = time.monotonic()

        def report(stage: str, message: str) -> None:
            if progress is not None:
                progress(stage, message)

        program_type = options.program_type.value if options.program_type else self.detect_program_type(text)
        aircraft_type = options.aircraft_type or self.detect_aircraft_type(text)

        report("identifying_competencies", "Identifying competencies")
        competencies = self.extract_competencies(text)

        report("creating_modules", "Creating training modules")
        modules = self.build_modules(text, structure, options, aircraft_type)

        report("creating_lessons", "Creating lessons")
        lessons = self.build_lessons(text, structure, modules, options)

        graph = None
        if options.include_knowledge_graph:
            report("generating_knowledge_graph", "Building syllabus knowledge graph")
            graph = self.build_syllabus_graph(modules, lessons)

        report("validating_regulatory_compliance", "Mapping regulatory requirements")
        compliance = await self.map_compliance(text, modules, competencies, options, catalog)

        report("generating_final_syllabus", "Assembling syllabus")
        known = {c.name for c in competencies}
        competency_count = len(known | {c.name for m in modules for c in m.competencies})
        score = self.confidence_score(
            modules,
            lessons,
            competency_count,
            compliance,
            aircraft_detected=aircraft_type is not None,
            program_detected=program_type not in (None, "custom"),
        )

        program_type = program_type or "custom"
        label = program_type.replace("_", " ").title()
        syllabus = GeneratedSyllabus(
            name=options.name or f"{aircraft_type or 'General'} {label} Training Program",
            description=options.description or f"Generated training program for {aircraft_type or 'aviation'} training.",
            program_type=program_type,
            aircraft_type=aircraft_type,
            total_duration=self.total_duration(modules),
            modules=modules,
            lessons=lessons,
            regulatory_compliance=compliance,
            confidence_score=score,
            knowledge_graph=graph,
        )
        if compliance.error:
            syllabus.warnings.append(compliance.error)
        if score < options.confidence_threshold:
            syllabus.warnings.append(
                f"Confidence {score:.2f} is below the requested threshold {options.confidence_threshold:.2f}"
            )

        logger.info(
            "Syllabus generated: %d module(s), %d lesson(s), %d day(s), confidence %.2f (%.1f ms)",
            len(modules),
            len(lessons),
            syllabus.total_duration,
            score,
            (time.monotonic() - t0) * 1000,
        )
        return syllabus
