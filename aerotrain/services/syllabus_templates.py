"""
Built-in syllabus templates and the module / lesson heuristics shared by
the synthesizer.

A template lists module skeletons for a program type.  When a generation
names a ``template_id``, skeletons whose module type the document did not
produce are used to seed the missing modules.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from aerotrain.utils.helpers import clamp


class ModuleType(str, enum.Enum):
    GROUND = "ground"
    SIMULATOR = "simulator"
    AIRCRAFT = "aircraft"


class LessonType(str, enum.Enum):
    DOCUMENT = "document"
    VIDEO = "video"
    INTERACTIVE = "interactive"
    PRESENTATION = "presentation"
    ASSESSMENT = "assessment"


# ---------------------------------------------------------------------------
# Heuristic tables
# ---------------------------------------------------------------------------

MODULE_BASE_HOURS: Dict[ModuleType, float] = {
    ModuleType.GROUND: 16.0,
    ModuleType.SIMULATOR: 12.0,
    ModuleType.AIRCRAFT: 8.0,
}

LESSON_BASE_MINUTES: Dict[ModuleType, int] = {
    ModuleType.GROUND: 90,
    ModuleType.SIMULATOR: 120,
    ModuleType.AIRCRAFT: 180,
}

MODULE_TYPE_KEYWORDS: Dict[ModuleType, List[str]] = {
    ModuleType.GROUND: [
        "ground", "theory", "theoretical", "classroom", "knowledge", "system", "systems",
        "regulation", "principles", "briefing", "lecture", "study", "understand",
    ],
    ModuleType.SIMULATOR: [
        "simulator", "sim", "ffs", "ftd", "fnpt", "device", "loft", "session",
        "simulated", "fixed base", "full flight",
    ],
    ModuleType.AIRCRAFT: [
        "aircraft", "flight", "flying", "practical", "base training", "line training",
        "circuit", "takeoff", "landing", "airborne",
    ],
}

LESSON_TYPE_PATTERNS: List[tuple] = [
    (LessonType.ASSESSMENT, re.compile(r"\b(?:assessment|exam|examination|test|check|evaluation|quiz)\b", re.IGNORECASE)),
    (LessonType.VIDEO, re.compile(r"\b(?:video|film|recording|demonstration)\b", re.IGNORECASE)),
    (LessonType.INTERACTIVE, re.compile(r"\b(?:exercise|practice|simulator|hands-on|workshop|interactive|drill)\b", re.IGNORECASE)),
    (LessonType.PRESENTATION, re.compile(r"\b(?:presentation|lecture|briefing|slides|seminar)\b", re.IGNORECASE)),
]

MODULE_LIKE = re.compile(
    r"^\s*(?:(?:module|section|unit|phase|chapter|part)\b|\d+(?!\.\d)(?:\.|\)|\s*[:\-])\s*\S|[IVXLC]+\.\s+\S)",
    re.IGNORECASE,
)
LESSON_LIKE = re.compile(
    r"^\s*(?:(?:lesson|session|exercise|briefing|lecture)\b|\d+\.\d+)",
    re.IGNORECASE,
)

INTRODUCTION_MINUTES = 60
ASSESSMENT_MINUTES = 120
MAX_COMPETENCY_LESSONS = 5


def score_module_type(text: str) -> ModuleType:
    """Keyword-scored module type; ties and zero scores resolve to ground."""
    lowered = text.lower()
    best, best_score = ModuleType.GROUND, 0
    for module_type, keywords in MODULE_TYPE_KEYWORDS.items():
        score = sum(len(re.findall(rf"\b{re.escape(k)}\b", lowered)) for k in keywords)
        if score > best_score:
            best, best_score = module_type, score
    return best


def module_duration(module_type: ModuleType, competency_count: int) -> float:
    """Base hours scaled by clamp(competencies / 3, 0.5, 2.0), rounded to half hours."""
    factor = clamp(competency_count / 3, 0.5, 2.0)
    return round(MODULE_BASE_HOURS[module_type] * factor * 2) / 2


def lesson_type(text: str) -> LessonType:
    for kind, pattern in LESSON_TYPE_PATTERNS:
        if pattern.search(text):
            return kind
    return LessonType.DOCUMENT


def lesson_duration(module_type: ModuleType, content: str) -> int:
    """Base minutes for the module type scaled by content complexity, in 5-minute steps."""
    words = len(content.split())
    complexity = clamp(words / 150, 0.7, 1.3)
    return int(round(LESSON_BASE_MINUTES[module_type] * complexity / 5) * 5)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@dataclass
class TemplateModule:
    name: str
    type: ModuleType
    description: str
    competencies: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)

    def render_name(self, aircraft_type: Optional[str]) -> str:
        return self.name.format(aircraft=aircraft_type or "Aircraft").strip()


@dataclass
class SyllabusTemplate:
    id: str
    name: str
    program_type: str
    description: str
    modules: List[TemplateModule] = field(default_factory=list)

    def module_for(self, module_type: ModuleType) -> Optional[TemplateModule]:
        for module in self.modules:
            if module.type == module_type:
                return module
        return None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "program_type": self.program_type,
            "description": self.description,
            "modules": [
                {"name": m.name, "type": m.type.value, "description": m.description, "competencies": m.competencies}
                for m in self.modules
            ],
        }


# Skeletons used when a document yields too few modules
DEFAULT_MODULES: Dict[ModuleType, TemplateModule] = {
    ModuleType.GROUND: TemplateModule(
        name="Theoretical Knowledge",
        type=ModuleType.GROUND,
        description="Foundational knowledge and concepts required for the training program.",
        keywords=["knowledge", "understand", "system", "theory", "principle", "describe", "explain"],
    ),
    ModuleType.SIMULATOR: TemplateModule(
        name="Simulator Training",
        type=ModuleType.SIMULATOR,
        description="Practical exercises in the simulator to develop core skills.",
        keywords=["simulator", "perform", "demonstrate", "procedure", "exercise", "session"],
    ),
    ModuleType.AIRCRAFT: TemplateModule(
        name="Aircraft Training",
        type=ModuleType.AIRCRAFT,
        description="Real aircraft flying exercises to develop and assess competencies.",
        keywords=["aircraft", "flight", "takeoff", "landing", "circuit", "practical"],
    ),
}

BUILT_IN_TEMPLATES: Dict[str, SyllabusTemplate] = {
    "type_rating": SyllabusTemplate(
        id="type_rating",
        name="Type Rating",
        program_type="type_rating",
        description="Type rating course: systems ground school, simulator training and base training.",
        modules=[
            TemplateModule(
                "{aircraft} Aircraft Systems Ground Course", ModuleType.GROUND,
                "Comprehensive ground training covering all systems of the aircraft.",
                ["Describe aircraft general systems", "Explain powerplant and fuel systems",
                 "Describe electrical and avionics systems"],
            ),
            TemplateModule(
                "{aircraft} Full Flight Simulator Training", ModuleType.SIMULATOR,
                "Normal, abnormal and emergency procedures in the full flight simulator.",
                ["Perform normal procedures", "Handle engine failures", "Manage complex emergencies"],
            ),
            TemplateModule(
                "{aircraft} Base Training", ModuleType.AIRCRAFT,
                "Takeoffs and landings in the aircraft.",
                ["Perform takeoffs and landings", "Apply normal procedures in the aircraft"],
            ),
        ],
    ),
    "joc_mcc": SyllabusTemplate(
        id="joc_mcc",
        name="JOC / MCC",
        program_type="joc_mcc",
        description="Jet orientation and multi-crew cooperation course.",
        modules=[
            TemplateModule(
                "Multi-Crew Cooperation Theoretical Knowledge", ModuleType.GROUND,
                "Multi-crew operations, CRM and threat and error management.",
                ["Understand multi-crew operations", "Apply CRM principles",
                 "Understand threat and error management"],
            ),
            TemplateModule(
                "{aircraft} MCC Full Flight Simulator", ModuleType.SIMULATOR,
                "Normal and abnormal multi-crew operations in the simulator.",
                ["Perform takeoffs and departures", "Perform approaches and landings", "Manage automation"],
            ),
        ],
    ),
    "recurrent": SyllabusTemplate(
        id="recurrent",
        name="Recurrent Training",
        program_type="recurrent",
        description="Recurrent ground refresher and proficiency check preparation.",
        modules=[
            TemplateModule(
                "{aircraft} Recurrent Ground Training", ModuleType.GROUND,
                "Systems changes, regulatory changes and safety issues review.",
                ["Review systems changes", "Review regulatory changes", "Review emergency procedures"],
            ),
            TemplateModule(
                "{aircraft} Recurrent Simulator Sessions", ModuleType.SIMULATOR,
                "Normal and non-normal operations, engine failures and non-precision approaches.",
                ["Manage non-normal procedures", "Manage engine failures"],
            ),
        ],
    ),
    "initial": SyllabusTemplate(
        id="initial",
        name="Initial Training",
        program_type="initial",
        description="Ab initio theoretical knowledge and flight training.",
        modules=[
            TemplateModule(
                "Theoretical Knowledge", ModuleType.GROUND,
                "Principles of flight, meteorology, navigation and air law.",
                ["Understand the principles of flight", "Describe meteorological concepts",
                 "Apply navigation principles"],
            ),
            TemplateModule(
                "Basic Instrument Training", ModuleType.SIMULATOR,
                "Instrument flying in a flight training device.",
                ["Navigate using instruments"],
            ),
            TemplateModule(
                "Flight Training", ModuleType.AIRCRAFT,
                "Pre-flight preparation, basic maneuvers, takeoffs and landings.",
                ["Conduct a pre-flight inspection", "Perform standard maneuvers", "Execute takeoffs and landings"],
            ),
        ],
    ),
    "custom": SyllabusTemplate(
        id="custom",
        name="Custom",
        program_type="custom",
        description="Generic ground, simulator and aircraft skeleton.",
        modules=list(DEFAULT_MODULES.values()),
    ),
}

# Program types that reuse another template
_TEMPLATE_ALIASES = {"initial_type_rating": "type_rating"}


def get_template(template_id: Optional[str]) -> Optional[SyllabusTemplate]:
    if not template_id:
        return None
    key = template_id.lower()
    return BUILT_IN_TEMPLATES.get(_TEMPLATE_ALIASES.get(key, key))


def list_templates() -> List[SyllabusTemplate]:
    return list(BUILT_IN_TEMPLATES.values())
