"""
Regulatory knowledge: authority detection, reference-code extraction and
the Regulatory Requirements Catalog.

The catalog is an external collaborator.  ``InMemoryRegulatoryCatalog``
ships with a small seed of well-known requirements; ``SqlRegulatoryCatalog``
reads the ``regulatory_requirements`` table.
"""
from __future__ import annotations

import abc
import enum
import logging
import re
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Pattern, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from aerotrain.models.database_models import RegulatoryRequirementRecord

logger = logging.getLogger(__name__)


class RegulatoryAuthority(str, enum.Enum):
    FAA = "faa"
    EASA = "easa"
    ICAO = "icao"
    TCCA = "tcca"
    CASA = "casa"
    DGCA = "dgca"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Detection tables
# ---------------------------------------------------------------------------

AUTHORITY_NAME_PATTERNS: Dict[RegulatoryAuthority, Pattern[str]] = {
    RegulatoryAuthority.FAA: re.compile(
        r"\bFAA\b|Federal Aviation Administration|\b14\s*CFR\b", re.IGNORECASE
    ),
    RegulatoryAuthority.EASA: re.compile(
        r"\bEASA\b|European (?:Union )?Aviation Safety Agency|\bPart-FCL\b", re.IGNORECASE
    ),
    RegulatoryAuthority.ICAO: re.compile(
        r"\bICAO\b|International Civil Aviation Organi[sz]ation", re.IGNORECASE
    ),
    RegulatoryAuthority.TCCA: re.compile(r"\bTCCA\b|Transport Canada", re.IGNORECASE),
    RegulatoryAuthority.CASA: re.compile(
        r"\bCASA\b|Civil Aviation Safety Authority", re.IGNORECASE
    ),
    RegulatoryAuthority.DGCA: re.compile(
        r"\bDGCA\b|Directorate General of Civil Aviation", re.IGNORECASE
    ),
}

REGULATORY_PATTERNS: Dict[RegulatoryAuthority, List[Pattern[str]]] = {
    RegulatoryAuthority.FAA: [
        re.compile(r"\b14\s*CFR\s*(?:Part\s*)?\d+(?:\.\d+)?", re.IGNORECASE),
        re.compile(r"\bFAR\s*(?:Part\s*)?\d+(?:\.\d+)?"),
        re.compile(r"\bAC\s*\d+-\d+[A-Z]?"),
        re.compile(r"\bFAA-[A-Z]-\d+(?:-\d+)?[A-Z]?"),
    ],
    RegulatoryAuthority.EASA: [
        re.compile(r"\bEU\s*(?:No\.?\s*)?\d+/\d+"),
        re.compile(r"\bPart-[A-Z]{2,4}(?:\.\d+(?:\.[A-Z])?)?"),
        re.compile(r"\bCS-[A-Z0-9]+"),
        re.compile(r"\b(?:AMC|GM)\d?\s+[A-Z]{2,4}\.\d+"),
        re.compile(r"\bFCL\.\d+(?:\.[A-Z])?"),
    ],
    RegulatoryAuthority.ICAO: [
        re.compile(r"\bAnnex\s+\d+"),
        re.compile(r"\bDoc\s+\d{4}"),
        re.compile(r"\bPANS-[A-Z]+"),
    ],
    RegulatoryAuthority.TCCA: [
        re.compile(r"\bCARs?\s+\d{3}(?:\.\d+)?"),
        re.compile(r"\bTP\s*\d{3,5}"),
    ],
    RegulatoryAuthority.CASA: [
        re.compile(r"\bCASR\s+Part\s+\d+"),
        re.compile(r"\bCAO\s+\d+\.\d+"),
    ],
    RegulatoryAuthority.DGCA: [
        re.compile(r"\bCAR\s+Section\s+\d+(?:\s+Series\s+[A-Z])?"),
    ],
}

# A full citation, optionally prefixed by the authority name, followed by the
# generic upper-case code shape (e.g. "OPS 1", "Part 61")
REFERENCE_CODE_PATTERN: Pattern[str] = re.compile(
    r"(?i:\b(?:(?:EASA|FAA|ICAO|CASA|TCCA|DGCA)\s+)?"
    r"(?:Part-[A-Z]{2,4}(?:\.\d+(?:\.[A-Z])?)?"
    r"|(?:14\s*)?CFR\s*(?:Part\s*)?\d+(?:\.\d+)?"
    r"|FAR\s*(?:Part\s*)?\d+(?:\.\d+)?"
    r"|FCL\.\d+(?:\.[A-Z])?"
    r"|CS-[A-Z0-9]+"
    r"|Annex\s+\d+"
    r"|CASR\s+Part\s+\d+"
    r"|AC\s*\d+-\d+[A-Z]?))"
    r"|\b[A-Z]{2,4}[-\s]?[0-9]{1,4}[A-Z]?\b"
    r"|\bPart\s[0-9]{1,4}\b"
)

_CODE_PREFIXES = {"EASA", "FAA", "ICAO", "CASA", "TCCA", "DGCA", "PART", "CFR", "14", "FAR"}


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class RegulatoryRequirement:
    """A single catalog requirement record."""

    code: str
    authority: str
    version: str
    description: str
    effective_date: Optional[date] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["effective_date"] = self.effective_date.isoformat() if self.effective_date else None
        return data


@dataclass
class RegulatoryReferenceMatch:
    """A regulatory code cited in text."""

    code: str
    authority: RegulatoryAuthority


DEFAULT_REQUIREMENTS: List[RegulatoryRequirement] = [
    RegulatoryRequirement(
        code="FAR 61.31",
        authority="faa",
        version="2023",
        description="Type rating requirements, additional training, and authorization requirements",
        effective_date=date(2023, 1, 1),
        url="https://www.ecfr.gov/current/title-14/chapter-I/subchapter-D/part-61/subpart-A/section-61.31",
    ),
    RegulatoryRequirement(
        code="FAR 61.58",
        authority="faa",
        version="2023",
        description="Pilot proficiency check requirements",
        effective_date=date(2023, 1, 1),
        url="https://www.ecfr.gov/current/title-14/chapter-I/subchapter-D/part-61/subpart-A/section-61.58",
    ),
    RegulatoryRequirement(
        code="EASA FCL.725",
        authority="easa",
        version="2023",
        description="Requirements for the issue of class and type ratings",
        effective_date=date(2023, 1, 1),
    ),
    RegulatoryRequirement(
        code="EASA FCL.740",
        authority="easa",
        version="2023",
        description="Validity and renewal of class and type ratings",
        effective_date=date(2023, 1, 1),
    ),
    RegulatoryRequirement(
        code="EASA FCL.735.A",
        authority="easa",
        version="2023",
        description="Multi-crew cooperation training course for aeroplanes",
        effective_date=date(2023, 1, 1),
    ),
    RegulatoryRequirement(
        code="ICAO Annex 1",
        authority="icao",
        version="12",
        description="Personnel Licensing",
        effective_date=date(2018, 7, 16),
    ),
]


# ---------------------------------------------------------------------------
# Detection helpers
# ---------------------------------------------------------------------------

def canonical_code(code: str) -> str:
    """
    Canonical form of a regulatory code used for equality checks.

    "EASA FCL.725", "Part-FCL.725" and "FCL.725" all map to "FCL.725";
    "FAR 61.31" and "14 CFR 61.31" both map to "61.31".
    """
    tokens = re.sub(r"[\s\-]+", " ", code.upper()).strip().split(" ")
    while len(tokens) > 1 and tokens[0] in _CODE_PREFIXES:
        tokens = tokens[1:]
    return " ".join(tokens)


def extract_regulatory_references(text: str) -> List[RegulatoryReferenceMatch]:
    """All authority-specific codes cited in *text*, de-duplicated, in authority order."""
    found: List[RegulatoryReferenceMatch] = []
    seen = set()
    for authority, patterns in REGULATORY_PATTERNS.items():
        for pattern in patterns:
            for match in pattern.finditer(text):
                code = re.sub(r"\s+", " ", match.group(0)).strip()
                key = canonical_code(code)
                if key not in seen:
                    seen.add(key)
                    found.append(RegulatoryReferenceMatch(code=code, authority=authority))
    return found


def detect_authority(text: str) -> Optional[RegulatoryAuthority]:
    """
    Detect the governing authority from names, codes and idioms.

    Name/idiom hits count double, code hits once.  Ties resolve in
    ``RegulatoryAuthority`` declaration order.  Returns None when nothing matches.
    """
    best: Optional[RegulatoryAuthority] = None
    best_score = 0
    for authority in RegulatoryAuthority:
        if authority == RegulatoryAuthority.OTHER:
            continue
        score = 0
        name_pattern = AUTHORITY_NAME_PATTERNS.get(authority)
        if name_pattern is not None:
            score += 2 * len(name_pattern.findall(text))
        for pattern in REGULATORY_PATTERNS.get(authority, []):
            score += len(pattern.findall(text))
        if score > best_score:
            best, best_score = authority, score
    return best


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class RegulatoryCatalog(abc.ABC):
    """Read access to per-authority requirement records."""

    @abc.abstractmethod
    async def get_requirements(self, authority: str) -> List[RegulatoryRequirement]:
        ...

    @abc.abstractmethod
    async def list_authorities(self) -> List[str]:
        ...


class InMemoryRegulatoryCatalog(RegulatoryCatalog):
    """Catalog backed by a list of records (the built-in seed by default)."""

    def __init__(self, requirements: Optional[Sequence[RegulatoryRequirement]] = None) -> None:
        self._requirements = list(DEFAULT_REQUIREMENTS if requirements is None else requirements)

    async def get_requirements(self, authority: str) -> List[RegulatoryRequirement]:
        wanted = authority.lower()
        return [r for r in self._requirements if r.authority.lower() == wanted]

    async def list_authorities(self) -> List[str]:
        return sorted({r.authority.lower() for r in self._requirements})


class SqlRegulatoryCatalog(RegulatoryCatalog):
    """Catalog backed by the ``regulatory_requirements`` table."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_requirements(self, authority: str) -> List[RegulatoryRequirement]:
        result = await self.db.execute(
            select(RegulatoryRequirementRecord)
            .where(func.lower(RegulatoryRequirementRecord.authority) == authority.lower())
            .order_by(RegulatoryRequirementRecord.code)
        )
        return [
            RegulatoryRequirement(
                code=row.code,
                authority=row.authority,
                version=row.version,
                description=row.description,
                effective_date=row.effective_date,
                url=row.url,
            )
            for row in result.scalars().all()
        ]

    async def list_authorities(self) -> List[str]:
        result = await self.db.execute(
            select(func.lower(RegulatoryRequirementRecord.authority)).distinct()
        )
        return sorted(result.scalars().all())


async def seed_regulatory_requirements(db: AsyncSession) -> int:
    """
    Insert the built-in requirement records when the table is empty.

    Returns:
        Number of rows inserted (0 if the table already had data).
    """
    existing = await db.scalar(select(func.count(RegulatoryRequirementRecord.id)))
    if existing:
        return 0
    for requirement in DEFAULT_REQUIREMENTS:
        db.add(RegulatoryRequirementRecord(
            code=requirement.code,
            authority=requirement.authority,
            version=requirement.version,
            description=requirement.description,
            effective_date=requirement.effective_date,
            url=requirement.url,
        ))
    await db.flush()
    logger.info("Seeded %d regulatory requirement(s)", len(DEFAULT_REQUIREMENTS))
    return len(DEFAULT_REQUIREMENTS)
