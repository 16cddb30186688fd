"""Tests for knowledge graph extraction, bounding and persistence handoff."""
import pytest

from aerotrain.services.graph_store import InMemoryGraphStore
from aerotrain.services.knowledge_graph import (
    AllNodesCandidateProvider,
    ExtractionOptions,
    KnowledgeEdge,
    KnowledgeExtractionResult,
    KnowledgeGraphExtractor,
    KnowledgeNode,
    NodeType,
    RelationshipType,
    TopImportanceCandidateProvider,
    compute_statistics,
    filter_and_bound,
    save_knowledge_graph,
)
from aerotrain.services.structure_parser import parse_document_structure


def _unbounded(**overrides) -> ExtractionOptions:
    options = ExtractionOptions(max_nodes=1000, max_edges_per_node=1000)
    for key, value in overrides.items():
        setattr(options, key, value)
    return options


def _node(node_id: str, importance: float = 0.5, confidence: float = 0.9, node_type=NodeType.CONCEPT):
    return KnowledgeNode(id=node_id, type=node_type, content=node_id, importance=importance, confidence=confidence)


def _edge(source: str, target: str, weight: float = 0.5, confidence: float = 0.9):
    return KnowledgeEdge(
        source=source, target=target, relationship=RelationshipType.RELATED_TO,
        weight=weight, confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Node extraction
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_entities_concepts_and_terms(sample_text):
    result = await KnowledgeGraphExtractor().extract(sample_text, options=_unbounded())
    ids = result.node_ids()

    assert "entity_regulatoryReference_fcl.725" in ids
    assert result.get_node("entity_regulatoryReference_fcl.725").type == NodeType.REFERENCE
    assert "concept_hydraulic" in ids
    assert "concept_takeoff" in ids
    assert any(n.type == NodeType.SYSTEM and "hydraulic system" in n.content.lower() for n in result.nodes)
    # A term never duplicates a concept's content
    assert "term_hydraulic" not in ids
    assert any(n.type == NodeType.TERM for n in result.nodes)


@pytest.mark.asyncio
async def test_repeated_reference_collapses_to_one_node():
    text = "Training follows EASA Part-FCL.725. Instructors confirm EASA Part-FCL.725 compliance."
    result = await KnowledgeGraphExtractor().extract(text, options=_unbounded())

    references = [n for n in result.nodes if n.type == NodeType.REFERENCE]
    assert len(references) == 1
    assert references[0].content == "EASA Part-FCL.725"
    assert references[0].id == "entity_regulatoryReference_easa_part-fcl.725"
    assert all(0.0 <= n.importance <= 1.0 and 0.0 <= n.confidence <= 1.0 for n in result.nodes)
    assert all(0.0 <= e.weight <= 1.0 and 0.0 <= e.confidence <= 1.0 for e in result.edges)


@pytest.mark.asyncio
async def test_node_ids_are_deterministic(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    extractor = KnowledgeGraphExtractor()
    first = await extractor.extract(sample_text, structure=structure, options=_unbounded(), document_id=3)
    second = await extractor.extract(sample_text, structure=structure, options=_unbounded(), document_id=3)
    assert first.node_ids() == second.node_ids()
    assert len(first.node_ids()) == len(first.nodes)


@pytest.mark.asyncio
async def test_structure_adds_topics_and_key_values(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    result = await KnowledgeGraphExtractor().extract(
        sample_text, structure=structure, options=_unbounded(),
    )

    topics = [n for n in result.nodes if n.type == NodeType.TOPIC]
    assert len(topics) == 6
    top = result.get_node("topic_a320_type_rating_training_course")
    module = result.get_node("topic_module_3:_base_training")
    assert top is not None and module is not None
    assert top.importance > module.importance
    assert top.confidence == 0.95

    has_part = [
        e for e in result.edges
        if e.source == top.id and e.target == module.id and e.relationship == RelationshipType.HAS_PART
    ]
    assert len(has_part) == 1
    assert has_part[0].weight == 0.9
    assert has_part[0].metadata["origin"] == "structure"

    key_value = result.get_node("entity_keyValue_reference")
    assert key_value is not None
    assert key_value.metadata["value"].startswith("FCL.740")


@pytest.mark.asyncio
async def test_nested_headings_mirror_the_section_tree():
    text = "Hydraulics\nPumps\nThe engine-driven pumps supply pressure."
    structure = parse_document_structure(text, headings=[
        {"level": 1, "text": "Hydraulics"},
        {"level": 2, "text": "Pumps"},
    ])
    result = await KnowledgeGraphExtractor().extract(text, structure=structure, options=_unbounded())

    edge = next(e for e in result.edges if e.source == "topic_hydraulics" and e.target == "topic_pumps")
    assert edge.relationship == RelationshipType.HAS_PART
    assert edge.metadata == {"origin": "structure"}


@pytest.mark.asyncio
async def test_disabled_extraction_leaves_document_node_only():
    options = _unbounded(extract_entities=False, extract_concepts=False)
    result = await KnowledgeGraphExtractor().extract("Engine fire checklist.", options=options, document_id=5)
    assert [n.id for n in result.nodes] == ["document_5"]
    assert result.edges == []

    options.include_document_node = False
    empty = await KnowledgeGraphExtractor().extract("Engine fire checklist.", options=options)
    assert empty.nodes == []
    assert empty.statistics.node_count == 0


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_pattern_relationship_links_two_most_important_mentions():
    result = await KnowledgeGraphExtractor().extract(
        "Autopilot depends on hydraulic pressure.",
        options=_unbounded(include_document_node=False),
    )
    edges = [e for e in result.edges if e.relationship == RelationshipType.DEPENDS_ON]
    assert len(edges) == 1
    assert (edges[0].source, edges[0].target) == ("concept_autopilot", "concept_hydraulic")
    assert edges[0].metadata["context"].lower() == "depends on"


@pytest.mark.asyncio
async def test_cooccurrence_needs_two_paragraphs():
    text = "Engine fire drills.\n\nEngine fire checks.\n\nNothing else here."
    result = await KnowledgeGraphExtractor().extract(text, options=_unbounded(include_document_node=False))
    related = [
        e for e in result.edges
        if e.relationship == RelationshipType.RELATED_TO
        and {e.source, e.target} == {"concept_engine", "concept_fire"}
    ]
    assert len(related) == 1
    assert related[0].metadata["cooccurrenceCount"] == 2
    assert related[0].weight == pytest.approx(0.4)

    single = await KnowledgeGraphExtractor().extract(
        "Engine fire drills.\n\nNothing else here.", options=_unbounded(include_document_node=False),
    )
    assert not [e for e in single.edges if e.relationship == RelationshipType.RELATED_TO]


@pytest.mark.asyncio
async def test_document_node_defines_every_node(sample_text):
    result = await KnowledgeGraphExtractor().extract(sample_text, options=_unbounded(), document_id=7)
    anchor = result.get_node("document_7")
    assert anchor is not None
    assert anchor.type == NodeType.DOCUMENT
    defined = {e.target for e in result.edges if e.source == "document_7"}
    assert defined == result.node_ids() - {"document_7"}
    assert all(
        e.relationship == RelationshipType.DEFINES for e in result.edges if e.source == "document_7"
    )


@pytest.mark.asyncio
async def test_document_node_without_id_is_current():
    result = await KnowledgeGraphExtractor().extract("Engine start.", options=_unbounded())
    assert result.get_node("document_current") is not None


# ---------------------------------------------------------------------------
# Filtering and bounding
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_confidence_filter(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    result = await KnowledgeGraphExtractor().extract(
        sample_text, structure=structure, options=_unbounded(minimum_confidence=0.85),
    )
    assert result.nodes
    assert all(n.confidence >= 0.85 for n in result.nodes)
    assert not [n for n in result.nodes if n.type in (NodeType.CONCEPT, NodeType.TERM)]
    assert all(e.confidence >= 0.85 for e in result.edges)


@pytest.mark.asyncio
async def test_node_type_filter_keeps_document_anchor(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    result = await KnowledgeGraphExtractor().extract(
        sample_text, structure=structure, options=_unbounded(filter_node_types=[NodeType.TOPIC]),
        document_id=1,
    )
    assert {n.type for n in result.nodes} == {NodeType.TOPIC, NodeType.DOCUMENT}


@pytest.mark.asyncio
async def test_node_and_edge_caps(sample_text, sample_headings):
    structure = parse_document_structure(sample_text, headings=sample_headings)
    options = ExtractionOptions(max_nodes=5, max_edges_per_node=2)
    result = await KnowledgeGraphExtractor().extract(sample_text, structure=structure, options=options)

    assert len(result.nodes) == 5
    ids = result.node_ids()
    assert all(e.source in ids and e.target in ids for e in result.edges)
    assert all(count <= 2 for count in result.out_degree().values())
    assert result.statistics.node_count == 5


def test_filter_and_bound_orders_by_importance_and_strength():
    nodes = [_node("a", 0.9), _node("b", 0.8), _node("c", 0.1), _node("d", 0.7, confidence=0.2)]
    edges = [
        _edge("a", "b", weight=0.2),
        _edge("a", "c", weight=0.9),
        _edge("b", "a", weight=0.9),
        _edge("a", "b", weight=0.6),
        _edge("b", "d"),
    ]
    options = ExtractionOptions(minimum_confidence=0.5, max_nodes=2, max_edges_per_node=1)
    kept, bounded = filter_and_bound(nodes, edges, options)

    assert [n.id for n in kept] == ["a", "b"]
    assert [(e.source, e.target, e.weight) for e in bounded] == [("a", "b", 0.6), ("b", "a", 0.9)]


def test_statistics():
    nodes = [_node("a"), _node("b"), _node("c")]
    edges = [_edge("a", "b"), _edge("a", "c")]
    stats = compute_statistics(nodes, edges)
    assert stats.edge_count == 2
    assert stats.average_degree == pytest.approx(4 / 3, abs=1e-4)
    assert stats.most_connected[0] == {"id": "a", "connections": 2}


# ---------------------------------------------------------------------------
# Candidate providers
# ---------------------------------------------------------------------------

def test_top_importance_candidates_keep_extraction_order():
    nodes = [_node("a", 0.2), _node("b", 0.9), _node("c", 0.5)]
    selected = TopImportanceCandidateProvider(limit=2).select(nodes)
    assert [n.id for n in selected] == ["b", "c"]
    assert len(AllNodesCandidateProvider().select(nodes)) == 3


def test_top_importance_candidates_reject_non_positive_limit():
    with pytest.raises(ValueError):
        TopImportanceCandidateProvider(limit=0)


@pytest.mark.asyncio
async def test_candidate_limit_restricts_relationship_passes():
    text = "Engine fire drills.\n\nEngine fire checks."
    extractor = KnowledgeGraphExtractor(candidate_provider=TopImportanceCandidateProvider(limit=1))
    result = await extractor.extract(text, options=_unbounded(include_document_node=False))
    assert result.nodes
    assert result.edges == []


# ---------------------------------------------------------------------------
# Cross-document linking and persistence
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cross_document_exact_link():
    store = InMemoryGraphStore()
    stored_id = await store.save_node(1, "concept_hydraulic", "concept", "hydraulic", 0.8, 0.8)
    await store.save_node(1, "document_1", "document", "hydraulic", 1.0, 1.0)

    extractor = KnowledgeGraphExtractor(graph_store=store)
    result = await extractor.extract(
        "The hydraulic pumps are checked.", options=_unbounded(link_to_existing=True), document_id=2,
    )

    links = [link for link in result.cross_document_links if link.source == "concept_hydraulic"]
    assert len(links) == 1
    assert links[0].match == "exact"
    assert links[0].target_node_id == stored_id
    assert links[0].target_document_id == 1
    assert links[0].weight == 1.0

    rendered = result.to_dict()["cross_document_links"]
    rendered_link = next(r for r in rendered if r["source"] == "concept_hydraulic")
    assert rendered_link["target"] == f"db_{stored_id}"
    assert rendered_link["relationship"] == "similar_to"
    # Links live beside the edge list, never inside it
    assert all(not e.target.startswith("db_") for e in result.edges)


@pytest.mark.asyncio
async def test_cross_document_link_skips_own_document():
    store = InMemoryGraphStore()
    await store.save_node(2, "concept_hydraulic", "concept", "hydraulic", 0.8, 0.8)
    result = await KnowledgeGraphExtractor(graph_store=store).extract(
        "The hydraulic pumps are checked.", options=_unbounded(link_to_existing=True), document_id=2,
    )
    assert result.cross_document_links == []


@pytest.mark.asyncio
async def test_save_knowledge_graph_round_trip(sample_text, sample_headings):
    store = InMemoryGraphStore()
    structure = parse_document_structure(sample_text, headings=sample_headings)
    result = await KnowledgeGraphExtractor().extract(sample_text, structure=structure, document_id=4)

    saved = await save_knowledge_graph(result, store)
    assert len(saved.node_ids) == len(result.nodes)
    assert saved.edges_saved == len(result.edges)
    assert saved.edges_skipped == 0

    nodes, edges = await store.get_graph_for_document(4)
    assert len(nodes) == len(result.nodes)
    assert len(edges) == len(result.edges)

    # Saving again replaces the previous graph
    await save_knowledge_graph(result, store)
    nodes_again, edges_again = await store.get_graph_for_document(4)
    assert len(nodes_again) == len(nodes)
    assert len(edges_again) == len(edges)


@pytest.mark.asyncio
async def test_save_skips_edges_with_unmapped_endpoints():
    store = InMemoryGraphStore()
    result = KnowledgeExtractionResult(
        nodes=[_node("a"), _node("b")],
        edges=[_edge("a", "b"), _edge("a", "missing")],
        document_id=9,
    )
    saved = await save_knowledge_graph(result, store)
    assert saved.edges_saved == 1
    assert saved.edges_skipped == 1


@pytest.mark.asyncio
async def test_find_similar_nodes():
    store = InMemoryGraphStore()
    await store.save_node(1, "n1", "concept", "hydraulic system pressure", 0.8, 0.8)
    await store.save_node(1, "n2", "concept", "weather radar", 0.8, 0.8)
    matches = await store.find_similar_nodes("hydraulic system", threshold=0.3)
    assert [node.node_key for node, _ in matches] == ["n1"]
    assert matches[0][1] == pytest.approx(2 / 3, abs=1e-4)
