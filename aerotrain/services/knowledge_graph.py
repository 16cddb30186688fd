"""
Knowledge graph extraction from aviation training documents.

Builds a weighted graph of entities, concepts, key terms and topics, links
them through pattern, co-occurrence and hierarchical relationships, anchors
everything to a document node, optionally links nodes to the persisted
cross-document graph, and finally filters and bounds the graph.

Node ids are derived from node type and normalized content, so repeated
mentions collapse into a single node and repeated runs over the same text
produce the same id set.

Public API
----------
    extractor = KnowledgeGraphExtractor(graph_store=store)
    result = await extractor.extract(text, structure, ExtractionOptions(), document_id=7)
    saved = await save_knowledge_graph(result, store, document_id=7)
"""
from __future__ import annotations

import abc
import enum
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Sequence, Set, Tuple

from aerotrain.config import settings
from aerotrain.services.graph_store import GraphStore
from aerotrain.services.regulatory import REFERENCE_CODE_PATTERN
from aerotrain.services.structure_parser import DocumentStructure, ElementType
from aerotrain.utils.helpers import (
    STOPWORDS,
    jaccard_similarity,
    normalize_key,
    safe_divide,
    split_paragraphs,
    term_frequencies,
    to_jsonable,
    tokenize,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class NodeType(str, enum.Enum):
    CONCEPT = "concept"
    ENTITY = "entity"
    TOPIC = "topic"
    TERM = "term"
    REFERENCE = "reference"
    REQUIREMENT = "requirement"
    PROCEDURE = "procedure"
    SYSTEM = "system"
    DOCUMENT = "document"


class RelationshipType(str, enum.Enum):
    PART_OF = "part_of"
    HAS_PART = "has_part"
    DEPENDS_ON = "depends_on"
    PREREQUISITE_FOR = "prerequisite_for"
    REFERENCES = "references"
    REFERENCED_BY = "referenced_by"
    DERIVED_FROM = "derived_from"
    SIMILAR_TO = "similar_to"
    CONTRASTS_WITH = "contrasts_with"
    DEFINED_IN = "defined_in"
    DEFINES = "defines"
    PRECEDES = "precedes"
    SUCCEEDED_BY = "succeeded_by"
    RELATED_TO = "related_to"


# ---------------------------------------------------------------------------
# Pattern tables
# ---------------------------------------------------------------------------

ENTITY_PATTERNS: Dict[str, Pattern[str]] = {
    "regulatoryReference": REFERENCE_CODE_PATTERN,
    "aircraftType": re.compile(
        r"\b[A-Z]{1,2}[-\s]?[0-9]{1,4}[A-Z]?\b|\b[A-Z][a-z]+\s[0-9]{2,3}(?:[-/][0-9]{1,3})?\b"
    ),
    "systemComponent": re.compile(
        r"\b\w+(?:\s\w+){0,3}\s(?:system|component|module|unit|assembly)\b", re.IGNORECASE
    ),
    "procedureName": re.compile(
        r"\b(?:normal|abnormal|emergency|alternate|standard)\s\w+(?:\s\w+){0,4}?\s(?:procedure|checklist|operation)s?\b",
        re.IGNORECASE,
    ),
    "maneuver": re.compile(
        r"\b\w+(?:\s\w+){0,3}\s(?:maneuver|manoeuvre|approach|departure|arrival)\b", re.IGNORECASE
    ),
    "weatherCondition": re.compile(
        r"\b(?:vmc|imc|ifr|vfr|icing|turbulence|windshear|crosswind)\b", re.IGNORECASE
    ),
}

_ENTITY_NODE_TYPE = {
    "regulatoryReference": NodeType.REFERENCE,
    "procedureName": NodeType.PROCEDURE,
    "systemComponent": NodeType.SYSTEM,
}

_ENTITY_BASE_IMPORTANCE = {
    "regulatoryReference": 0.9,
    "aircraftType": 0.85,
    "systemComponent": 0.8,
    "procedureName": 0.85,
    "maneuver": 0.75,
    "weatherCondition": 0.7,
}

AVIATION_CONCEPTS: List[str] = list(dict.fromkeys([
    'takeoff', 'landing', 'approach', 'departure', 'cruise', 'climb', 'descent',
    'flaps', 'gear', 'thrust', 'power', 'speed', 'altitude', 'heading', 'course',
    'navigation', 'communication', 'transponder', 'autopilot', 'autothrottle',
    'flight plan', 'fuel', 'weight', 'balance', 'center of gravity', 'trim',
    'stall', 'v1', 'vr', 'v2', 'vref', 'vmca', 'vmcl', 'vmo', 'mmo', 'bank angle',
    'pitch', 'roll', 'yaw', 'rudder', 'aileron', 'elevator', 'stabilizer',
    'circuit breaker', 'checklist', 'caution', 'warning', 'advisory',
    'engine', 'hydraulic', 'electrical', 'pneumatic', 'environmental', 'pressurization',
    'oxygen', 'fire', 'icing', 'deicing', 'anti-ice', 'weather radar', 'tcas', 'egpws',
    'landing gear', 'brakes', 'nosewheel steering', 'flap', 'slat', 'spoiler',
    'thrust reverser', 'cowl', 'pylon', 'nacelle', 'inlet', 'exhaust', 'combustion',
    'compressor', 'turbine', 'rotor', 'stator', 'blade', 'fuel flow', 'oil pressure',
    'radio', 'vor', 'ils', 'gps', 'rnav', 'cdi', 'hsi', 'adf', 'dme',
    'altimeter', 'asi', 'vsi', 'attitude', 'turn coordinator', 'compass',
    'mcp', 'fmc', 'cdu', 'efis', 'eicas', 'ecam', 'pfd', 'nd', 'sd', 'fma',
    'ceiling', 'visibility', 'wind', 'precipitation', 'fog', 'cloud', 'thunderstorm',
    'holding', 'procedure turn', 'circling', 'go-around', 'missed approach', 'diversion',
    'emergency', 'abnormal', 'alternate', 'evacuation', 'ditching', 'failure',
]))

_CONCEPT_PATTERNS: List[Tuple[str, Pattern[str]]] = [
    (concept, re.compile(rf"\b{re.escape(concept)}\b", re.IGNORECASE)) for concept in AVIATION_CONCEPTS
]

RELATIONSHIP_PATTERNS: List[Tuple[Pattern[str], RelationshipType]] = [
    (re.compile(r"\bis\s(?:a|an)\s(?:type\sof|part\sof)\b", re.IGNORECASE), RelationshipType.PART_OF),
    (re.compile(r"\b(?:contains|consists\sof|includes)\b", re.IGNORECASE), RelationshipType.HAS_PART),
    (re.compile(r"\b(?:depends\son|requires)\b", re.IGNORECASE), RelationshipType.DEPENDS_ON),
    (re.compile(r"\b(?:is\srequired\sfor|enables)\b", re.IGNORECASE), RelationshipType.PREREQUISITE_FOR),
    (re.compile(r"\b(?:refers\sto|references)\b", re.IGNORECASE), RelationshipType.REFERENCES),
    (re.compile(r"\b(?:is\sreferenced\sby|mentioned\sin)\b", re.IGNORECASE), RelationshipType.REFERENCED_BY),
    (re.compile(r"\b(?:derived\sfrom|based\son)\b", re.IGNORECASE), RelationshipType.DERIVED_FROM),
    (re.compile(r"\b(?:similar\sto|like|resembles)\b", re.IGNORECASE), RelationshipType.SIMILAR_TO),
    (re.compile(r"\b(?:different\sfrom|unlike|contrasts\swith)\b", re.IGNORECASE), RelationshipType.CONTRASTS_WITH),
    (re.compile(r"\b(?:defined\s(?:in|by)|described\sin)\b", re.IGNORECASE), RelationshipType.DEFINED_IN),
    (re.compile(r"\b(?:defines|describes)\b", re.IGNORECASE), RelationshipType.DEFINES),
    (re.compile(r"\b(?:followed\sby|leads\sto|precedes)\b", re.IGNORECASE), RelationshipType.PRECEDES),
    (re.compile(r"\b(?:follows|comes\safter)\b", re.IGNORECASE), RelationshipType.SUCCEEDED_BY),
]

# Characters scanned on each side of a relationship trigger
_CONTEXT_RADIUS = 40
_MIN_ENTITY_LENGTH = 3
_MIN_TERM_LENGTH = 4
_MAX_KEY_TERMS = 50
_TOP_CONNECTED = 5


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class KnowledgeNode:
    id: str
    type: NodeType
    content: str
    importance: float
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class KnowledgeEdge:
    source: str
    target: str
    relationship: RelationshipType
    weight: float
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CrossDocumentLink:
    """A ``similar_to`` link from a new node to a node persisted for another document."""

    source: str
    target_node_id: int
    target_document_id: Optional[int]
    target_content: str
    weight: float
    confidence: float
    match: str  # "exact" or "jaccard"
    relationship: RelationshipType = RelationshipType.SIMILAR_TO

    @property
    def target(self) -> str:
        return f"db_{self.target_node_id}"


@dataclass
class GraphStatistics:
    node_count: int = 0
    edge_count: int = 0
    average_degree: float = 0.0
    most_connected: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class KnowledgeGraph:
    """Node set unique by id plus the edge list and its statistics."""

    nodes: List[KnowledgeNode] = field(default_factory=list)
    edges: List[KnowledgeEdge] = field(default_factory=list)
    statistics: GraphStatistics = field(default_factory=GraphStatistics)

    def node_ids(self) -> Set[str]:
        return {n.id for n in self.nodes}

    def get_node(self, node_id: str) -> Optional[KnowledgeNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def out_degree(self) -> Dict[str, int]:
        degree: Dict[str, int] = {}
        for edge in self.edges:
            degree[edge.source] = degree.get(edge.source, 0) + 1
        return degree


@dataclass
class KnowledgeExtractionResult(KnowledgeGraph):
    document_id: Optional[int] = None
    cross_document_links: List[CrossDocumentLink] = field(default_factory=list)
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = to_jsonable(self)
        for link, rendered in zip(self.cross_document_links, data["cross_document_links"]):
            rendered["target"] = link.target
        return data


@dataclass
class ExtractionOptions:
    extract_entities: bool = True
    extract_concepts: bool = True
    extract_relationships: bool = True
    minimum_confidence: float = field(default_factory=lambda: settings.KG_MINIMUM_CONFIDENCE)
    max_nodes: int = field(default_factory=lambda: settings.KG_MAX_NODES)
    max_edges_per_node: int = field(default_factory=lambda: settings.KG_MAX_EDGES_PER_NODE)
    link_to_existing: bool = False
    include_document_node: bool = True
    filter_node_types: Optional[List[NodeType]] = None


@dataclass
class SavedGraph:
    """Outcome of handing a graph to the Graph Store."""

    node_ids: Dict[str, int] = field(default_factory=dict)
    edges_saved: int = 0
    edges_skipped: int = 0
    links_saved: int = 0


# ---------------------------------------------------------------------------
# Candidate selection for the pairwise relationship passes
# ---------------------------------------------------------------------------

class CandidateProvider(abc.ABC):
    """Chooses which nodes take part in the O(N²) relationship passes."""

    @abc.abstractmethod
    def select(self, nodes: Sequence[KnowledgeNode]) -> List[KnowledgeNode]:
        ...


class AllNodesCandidateProvider(CandidateProvider):
    """Every extracted node is a candidate (unbounded)."""

    def select(self, nodes: Sequence[KnowledgeNode]) -> List[KnowledgeNode]:
        return list(nodes)


class TopImportanceCandidateProvider(CandidateProvider):
    """The *limit* most important nodes are candidates; extraction order breaks ties."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be positive")
        self.limit = limit

    def select(self, nodes: Sequence[KnowledgeNode]) -> List[KnowledgeNode]:
        ranked = sorted(nodes, key=lambda n: n.importance, reverse=True)[: self.limit]
        keep = {n.id for n in ranked}
        return [n for n in nodes if n.id in keep]


def default_candidate_provider() -> CandidateProvider:
    if settings.KG_RELATIONSHIP_CANDIDATE_LIMIT > 0:
        return TopImportanceCandidateProvider(settings.KG_RELATIONSHIP_CANDIDATE_LIMIT)
    return AllNodesCandidateProvider()


# ---------------------------------------------------------------------------
# Working graph
# ---------------------------------------------------------------------------

class _GraphBuilder:
    def __init__(self) -> None:
        self.nodes: Dict[str, KnowledgeNode] = {}
        self.edges: List[KnowledgeEdge] = []
        self._linked: Set[frozenset] = set()

    def add_node(self, node: KnowledgeNode) -> bool:
        """Insert *node* unless its id exists already (first-seen wins)."""
        if node.id in self.nodes:
            return False
        self.nodes[node.id] = node
        return True

    def add_edge(
        self,
        source: str,
        target: str,
        relationship: RelationshipType,
        weight: float,
        confidence: float,
        **metadata: Any,
    ) -> None:
        self.edges.append(KnowledgeEdge(
            source=source,
            target=target,
            relationship=relationship,
            weight=round(min(1.0, max(0.0, weight)), 4),
            confidence=round(min(1.0, max(0.0, confidence)), 4),
            metadata=metadata,
        ))
        self._linked.add(frozenset((source, target)))

    def linked(self, a: str, b: str) -> bool:
        return frozenset((a, b)) in self._linked

    def has_content(self, content: str) -> bool:
        wanted = content.lower()
        return any(n.content.lower() == wanted for n in self.nodes.values())


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class KnowledgeGraphExtractor:
    """Pattern- and heuristic-based knowledge graph extraction."""

    def __init__(
        self,
        graph_store: Optional[GraphStore] = None,
        candidate_provider: Optional[CandidateProvider] = None,
    ) -> None:
        self.graph_store = graph_store
        self.candidate_provider = candidate_provider or default_candidate_provider()

    async def extract(
        self,
        text: str,
        structure: Optional[DocumentStructure] = None,
        options: Optional[ExtractionOptions] = None,
        document_id: Optional[int] = None,
    ) -> KnowledgeExtractionResult:
        """
        Extract a bounded knowledge graph from *text*.

        Args:
            text:        Document text.
            structure:   Parsed structure; enables topic nodes and structure-derived nodes.
            options:     Extraction toggles and bounds (settings defaults when omitted).
            document_id: Owning document, used for the anchor node id and cross-document linking.

        Returns:
            KnowledgeExtractionResult with filtered nodes/edges and statistics.
        """
        options = options or ExtractionOptions()
        t0 = time.monotonic()
        graph = _GraphBuilder()

        if options.extract_entities:
            self._extract_entities(text, graph)
            if structure is not None:
                self._extract_structure_nodes(structure, graph)
        if options.extract_concepts:
            self._extract_concepts(text, graph)
            self._extract_key_terms(text, graph)
            if structure is not None:
                self._extract_topics(structure, graph)
        logger.info(
            "Knowledge graph: %d node(s) extracted before relationships (document %s)",
            len(graph.nodes),
            document_id,
        )

        if options.extract_relationships:
            candidates = self.candidate_provider.select(list(graph.nodes.values()))
            self._extract_pattern_relationships(text, candidates, graph)
            self._extract_cooccurrence(text, candidates, graph)
            self._connect_hierarchical(candidates, graph)

        if options.include_document_node:
            self._add_document_node(text, structure, document_id, graph)

        links: List[CrossDocumentLink] = []
        if options.link_to_existing and self.graph_store is not None:
            links = await self._link_to_existing(graph, document_id)

        nodes, edges = filter_and_bound(list(graph.nodes.values()), graph.edges, options)
        surviving = {n.id for n in nodes}
        links = [link for link in links if link.source in surviving]

        result = KnowledgeExtractionResult(
            nodes=nodes,
            edges=edges,
            statistics=compute_statistics(nodes, edges),
            document_id=document_id,
            cross_document_links=links,
            processing_time_ms=round((time.monotonic() - t0) * 1000, 2),
        )
        logger.info(
            "Knowledge graph: %d node(s), %d edge(s), %d cross-document link(s) after filtering (%.1f ms)",
            len(nodes),
            len(edges),
            len(links),
            result.processing_time_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def _extract_entities(self, text: str, graph: _GraphBuilder) -> None:
        for category, pattern in ENTITY_PATTERNS.items():
            for match in pattern.finditer(text):
                entity_text = match.group(0).strip()
                if len(entity_text) < _MIN_ENTITY_LENGTH:
                    continue
                base = _ENTITY_BASE_IMPORTANCE.get(category, 0.5)
                importance = min(1.0, base + min(len(entity_text) / 20, 1) * 0.1)
                graph.add_node(KnowledgeNode(
                    id=f"entity_{category}_{normalize_key(entity_text)}",
                    type=_ENTITY_NODE_TYPE.get(category, NodeType.ENTITY),
                    content=entity_text,
                    importance=round(importance, 4),
                    confidence=0.9,
                    metadata={"category": category, "position": match.start()},
                ))

    def _extract_structure_nodes(self, structure: DocumentStructure, graph: _GraphBuilder) -> None:
        for element in structure.elements:
            if element.type in (ElementType.REFERENCE, ElementType.CITATION) and element.text:
                graph.add_node(KnowledgeNode(
                    id=f"reference_{normalize_key(element.text)}",
                    type=NodeType.REFERENCE,
                    content=element.text,
                    importance=0.8,
                    confidence=0.9,
                    metadata={"elementType": element.type.value, "elementId": element.id},
                ))
            elif element.type == ElementType.KEY_VALUE:
                key = element.metadata.get("key", "")
                if not key:
                    continue
                graph.add_node(KnowledgeNode(
                    id=f"entity_keyValue_{normalize_key(key)}",
                    type=NodeType.ENTITY,
                    content=key,
                    importance=0.7,
                    confidence=0.85,
                    metadata={"value": element.metadata.get("value"), "elementId": element.id},
                ))

    def _extract_concepts(self, text: str, graph: _GraphBuilder) -> None:
        kilochars = len(text) / 1000
        for concept, pattern in _CONCEPT_PATTERNS:
            occurrences = len(pattern.findall(text))
            if not occurrences:
                continue
            density = safe_divide(occurrences, kilochars)
            importance = 0.7 + min(occurrences / 10, 1) * 0.2 + min(density / 0.5, 1) * 0.1
            graph.add_node(KnowledgeNode(
                id=f"concept_{normalize_key(concept)}",
                type=NodeType.CONCEPT,
                content=concept,
                importance=round(min(1.0, importance), 4),
                confidence=0.8,
                metadata={"occurrences": occurrences, "density": round(density, 4)},
            ))

    def _extract_key_terms(self, text: str, graph: _GraphBuilder) -> None:
        frequencies = term_frequencies(
            t for t in tokenize(text) if len(t) >= _MIN_TERM_LENGTH and t not in STOPWORDS
        )
        top_terms = sorted(frequencies.items(), key=lambda kv: kv[1], reverse=True)[:_MAX_KEY_TERMS]
        kilochars = len(text) / 1000
        for term, frequency in top_terms:
            if graph.has_content(term):
                continue
            density = safe_divide(frequency, kilochars)
            importance = 0.5 + min(frequency / 15, 1) * 0.3 + min(density / 0.8, 1) * 0.2
            graph.add_node(KnowledgeNode(
                id=f"term_{normalize_key(term)}",
                type=NodeType.TERM,
                content=term,
                importance=round(min(1.0, importance), 4),
                confidence=0.7,
                metadata={"frequency": frequency, "density": round(density, 4)},
            ))

    def _extract_topics(self, structure: DocumentStructure, graph: _GraphBuilder) -> None:
        topic_of: Dict[int, str] = {}
        for heading in structure.find(ElementType.HEADING):
            if not heading.text:
                continue
            level = heading.level or 1
            length_factor = max(0.0, 1 - (len(heading.text) / 50) * 0.2)
            importance = max(0.3, min(1.0, (1 - (level - 1) * 0.2) * length_factor))
            topic_id = f"topic_{normalize_key(heading.text)}"
            graph.add_node(KnowledgeNode(
                id=topic_id,
                type=NodeType.TOPIC,
                content=heading.text,
                importance=round(importance, 4),
                confidence=0.95,
                metadata={"level": level, "elementId": heading.id},
            ))
            if heading.parent is not None:
                topic_of[heading.parent] = topic_id

        # Parent/child heading pairs mirror the section tree
        for section_id, topic_id in topic_of.items():
            section = structure.element(section_id)
            if section.parent is None:
                continue
            parent_topic = topic_of.get(section.parent)
            if parent_topic and parent_topic != topic_id and not graph.linked(parent_topic, topic_id):
                graph.add_edge(parent_topic, topic_id, RelationshipType.HAS_PART, 0.9, 0.9, origin="structure")

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def _extract_pattern_relationships(
        self, text: str, candidates: List[KnowledgeNode], graph: _GraphBuilder
    ) -> None:
        ranked = sorted(candidates, key=lambda n: n.importance, reverse=True)
        lowered = [(n, n.content.lower()) for n in ranked]
        for pattern, relationship in RELATIONSHIP_PATTERNS:
            for match in pattern.finditer(text):
                start = max(0, match.start() - _CONTEXT_RADIUS)
                end = min(len(text), match.end() + _CONTEXT_RADIUS)
                window = text[start:end].lower()
                mentioned = []
                for node, content in lowered:
                    if content and content in window:
                        mentioned.append(node.id)
                        if len(mentioned) == 2:
                            break
                if len(mentioned) == 2:
                    graph.add_edge(
                        mentioned[0], mentioned[1], relationship, 0.7, 0.7,
                        context=match.group(0), fullContext=text[start:end],
                    )

    def _extract_cooccurrence(
        self, text: str, candidates: List[KnowledgeNode], graph: _GraphBuilder
    ) -> None:
        counts: Dict[Tuple[str, str], int] = {}
        order = {n.id: i for i, n in enumerate(candidates)}
        for paragraph in split_paragraphs(text):
            lowered = paragraph.lower()
            mentioned = [n.id for n in candidates if n.content and n.content.lower() in lowered]
            for i in range(len(mentioned)):
                for j in range(i + 1, len(mentioned)):
                    counts[(mentioned[i], mentioned[j])] = counts.get((mentioned[i], mentioned[j]), 0) + 1

        for (a, b), count in sorted(counts.items(), key=lambda kv: (order[kv[0][0]], order[kv[0][1]])):
            if count < 2 or graph.linked(a, b):
                continue
            graph.add_edge(
                a, b, RelationshipType.RELATED_TO,
                min(count / 5, 1), 0.6 + min(count / 10, 0.3),
                cooccurrenceCount=count,
            )

    def _connect_hierarchical(self, candidates: List[KnowledgeNode], graph: _GraphBuilder) -> None:
        topics = [n for n in candidates if n.type == NodeType.TOPIC]
        concepts = [n for n in candidates if n.type in (NodeType.CONCEPT, NodeType.TERM)]
        for topic in topics:
            topic_text = topic.content.lower()
            for concept in concepts:
                concept_text = concept.content.lower()
                if concept_text in topic_text or topic_text in concept_text:
                    graph.add_edge(topic.id, concept.id, RelationshipType.HAS_PART, 0.8, 0.8)

        systems = [n for n in candidates if n.type == NodeType.SYSTEM]
        procedures = [n for n in candidates if n.type == NodeType.PROCEDURE]
        for system in systems:
            for procedure in procedures:
                if system.content.lower() in procedure.content.lower():
                    graph.add_edge(system.id, procedure.id, RelationshipType.REFERENCED_BY, 0.85, 0.85)

    def _add_document_node(
        self,
        text: str,
        structure: Optional[DocumentStructure],
        document_id: Optional[int],
        graph: _GraphBuilder,
    ) -> None:
        anchor_id = f"document_{document_id if document_id is not None else 'current'}"
        content = text.strip()[:100] or (structure.title if structure is not None else "")
        others = list(graph.nodes)
        graph.add_node(KnowledgeNode(
            id=anchor_id,
            type=NodeType.DOCUMENT,
            content=content or "Document",
            importance=1.0,
            confidence=1.0,
            metadata={"documentId": document_id},
        ))
        for node_id in others:
            if node_id != anchor_id:
                graph.add_edge(anchor_id, node_id, RelationshipType.DEFINES, 0.9, 0.9)

    # ------------------------------------------------------------------
    # Cross-document linking
    # ------------------------------------------------------------------

    async def _link_to_existing(self, graph: _GraphBuilder, document_id: Optional[int]) -> List[CrossDocumentLink]:
        existing = [
            n for n in await self.graph_store.get_nodes_excluding_document(document_id)
            if n.node_type != NodeType.DOCUMENT.value
        ]
        if not existing:
            return []

        by_content = {}
        for stored in existing:
            by_content.setdefault(stored.content.lower(), stored)

        threshold = settings.CROSS_DOCUMENT_SIMILARITY_THRESHOLD
        links: List[CrossDocumentLink] = []
        for node in graph.nodes.values():
            if node.type == NodeType.DOCUMENT:
                continue
            exact = by_content.get(node.content.lower())
            if exact is not None:
                links.append(CrossDocumentLink(
                    source=node.id, target_node_id=exact.id, target_document_id=exact.document_id,
                    target_content=exact.content, weight=1.0, confidence=0.95, match="exact",
                ))
                continue
            for stored in existing:
                similarity = jaccard_similarity(node.content, stored.content)
                if similarity > threshold:
                    links.append(CrossDocumentLink(
                        source=node.id, target_node_id=stored.id, target_document_id=stored.document_id,
                        target_content=stored.content, weight=round(similarity, 4), confidence=0.8,
                        match="jaccard",
                    ))
                    break
        logger.info("Cross-document linking: %d link(s) to %d stored node(s)", len(links), len(existing))
        return links


# ---------------------------------------------------------------------------
# Filtering, bounding and statistics
# ---------------------------------------------------------------------------

def filter_and_bound(
    nodes: List[KnowledgeNode],
    edges: List[KnowledgeEdge],
    options: ExtractionOptions,
) -> Tuple[List[KnowledgeNode], List[KnowledgeEdge]]:
    """
    Apply the confidence filter, the node cap and the per-node out-edge cap, in that order.

    Every returned edge has both endpoints in the returned node list.
    """
    threshold = options.minimum_confidence
    allowed_types = set(options.filter_node_types) if options.filter_node_types else None

    kept = [
        n for n in nodes
        if n.confidence >= threshold
        and (allowed_types is None or n.type in allowed_types or n.type == NodeType.DOCUMENT)
    ]
    ids = {n.id for n in kept}
    kept_edges = [
        e for e in edges
        if e.confidence >= threshold and e.source in ids and e.target in ids
    ]

    if len(kept) > options.max_nodes:
        kept = sorted(kept, key=lambda n: n.importance, reverse=True)[: options.max_nodes]
        ids = {n.id for n in kept}
        kept_edges = [e for e in kept_edges if e.source in ids and e.target in ids]

    by_source: Dict[str, List[KnowledgeEdge]] = {}
    for edge in kept_edges:
        by_source.setdefault(edge.source, []).append(edge)
    bounded: List[KnowledgeEdge] = []
    for source_edges in by_source.values():
        source_edges.sort(key=lambda e: e.weight * e.confidence, reverse=True)
        bounded.extend(source_edges[: options.max_edges_per_node])

    return kept, bounded


def compute_statistics(nodes: List[KnowledgeNode], edges: List[KnowledgeEdge]) -> GraphStatistics:
    degree: Dict[str, int] = {n.id: 0 for n in nodes}
    for edge in edges:
        degree[edge.source] = degree.get(edge.source, 0) + 1
        degree[edge.target] = degree.get(edge.target, 0) + 1
    top = sorted(degree.items(), key=lambda kv: kv[1], reverse=True)[:_TOP_CONNECTED]
    return GraphStatistics(
        node_count=len(nodes),
        edge_count=len(edges),
        average_degree=round(safe_divide(sum(degree.values()), len(nodes)), 4),
        most_connected=[{"id": node_id, "connections": count} for node_id, count in top],
    )


# ---------------------------------------------------------------------------
# Persistence handoff
# ---------------------------------------------------------------------------

async def save_knowledge_graph(
    result: KnowledgeExtractionResult,
    store: GraphStore,
    document_id: Optional[int] = None,
    replace: bool = True,
) -> SavedGraph:
    """
    Persist a graph: nodes first to obtain permanent ids, then edges through
    the temporary-id → stored-id map.  Edges with an unmapped endpoint are
    skipped.

    Args:
        result:      Extraction result to persist.
        store:       Target Graph Store.
        document_id: Owning document (defaults to ``result.document_id``).
        replace:     Clear the document's previously stored graph first.

    Returns:
        SavedGraph with the id map and edge counters.
    """
    document_id = document_id if document_id is not None else result.document_id
    if replace and document_id is not None:
        await store.clear_document(document_id)

    saved = SavedGraph()
    for node in result.nodes:
        saved.node_ids[node.id] = await store.save_node(
            document_id=document_id,
            node_key=node.id,
            node_type=node.type.value,
            content=node.content,
            importance=node.importance,
            confidence=node.confidence,
            metadata=node.metadata,
        )

    for edge in result.edges:
        source_id = saved.node_ids.get(edge.source)
        target_id = saved.node_ids.get(edge.target)
        if source_id is None or target_id is None:
            saved.edges_skipped += 1
            continue
        await store.save_edge(
            document_id=document_id,
            source_id=source_id,
            target_id=target_id,
            relationship=edge.relationship.value,
            weight=edge.weight,
            confidence=edge.confidence,
            metadata=edge.metadata,
        )
        saved.edges_saved += 1

    for link in result.cross_document_links:
        source_id = saved.node_ids.get(link.source)
        if source_id is None:
            continue
        await store.save_edge(
            document_id=document_id,
            source_id=source_id,
            target_id=link.target_node_id,
            relationship=link.relationship.value,
            weight=link.weight,
            confidence=link.confidence,
            metadata={"crossDocument": True, "match": link.match},
        )
        saved.links_saved += 1

    logger.info(
        "Saved knowledge graph for document %s: %d node(s), %d edge(s), %d skipped, %d cross-document link(s)",
        document_id,
        len(saved.node_ids),
        saved.edges_saved,
        saved.edges_skipped,
        saved.links_saved,
    )
    return saved
