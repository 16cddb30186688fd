"""
Pipeline orchestrators for syllabus generation and document analysis.

Public API
----------
SyllabusGenerationPipeline.run(job)
    → syllabus dict
    Tracked generation: text → structure / classification / context →
    competencies → modules → lessons → [graph] → compliance → assembly.
    Designed to be run as the runner of a ``GenerationManager`` job.

DocumentAnalysisPipeline.analyze(document_id, ...)
    → DocumentAnalysis
    Nested analysis: structure → classification → context → knowledge graph
    → syllabus.  Optional stage failures are recorded next to the partial
    results; only a missing document aborts.

run_generation(job)
    Runner that opens its own DB session (the request session is gone by
    the time a background job runs).
"""
from __future__ import annotations

import dataclasses
import inspect
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from aerotrain.database import AsyncSessionLocal
from aerotrain.services.classification import classify_document
from aerotrain.services.context_parser import parse_document_context
from aerotrain.services.document_store import DocumentStore, SqlDocumentStore, StoredDocument
from aerotrain.services.errors import StageFailure
from aerotrain.services.generation_manager import GenerationJob, GenerationStage
from aerotrain.services.graph_store import GraphStore
from aerotrain.services.knowledge_graph import (
    ExtractionOptions,
    KnowledgeGraphExtractor,
    save_knowledge_graph,
)
from aerotrain.services.regulatory import RegulatoryCatalog, SqlRegulatoryCatalog
from aerotrain.services.structure_parser import DocumentStructure, parse_document_structure
from aerotrain.services.syllabus_generator import SyllabusSynthesizer, validate_generation_options
from aerotrain.utils.helpers import to_jsonable

logger = logging.getLogger(__name__)

# Step numbers used in the "[n/8]" progress log lines
_STEP_NUMBERS: Dict[GenerationStage, int] = {
    GenerationStage.EXTRACTING_TEXT: 1,
    GenerationStage.ANALYZING_CONTENT: 2,
    GenerationStage.IDENTIFYING_COMPETENCIES: 3,
    GenerationStage.CREATING_MODULES: 4,
    GenerationStage.CREATING_LESSONS: 5,
    GenerationStage.GENERATING_KNOWLEDGE_GRAPH: 6,
    GenerationStage.VALIDATING_REGULATORY_COMPLIANCE: 7,
    GenerationStage.GENERATING_FINAL_SYLLABUS: 8,
}
_STEP_TOTAL = 8


def parse_stored_document(document: StoredDocument) -> DocumentStructure:
    return parse_document_structure(
        document.text,
        headings=document.headings,
        tables=document.tables,
        title=document.title,
        page_count=document.page_count,
    )


def structure_summary(structure: DocumentStructure, document_id: Optional[int] = None) -> Dict[str, Any]:
    """JSON form of a parsed structure (title, confidence, metadata, nested hierarchy)."""
    return {
        "document_id": document_id,
        "title": structure.title,
        "confidence": structure.confidence,
        "processing_time_ms": structure.processing_time_ms,
        "metadata": structure.metadata,
        "hierarchy": structure.to_tree(),
    }


# ---------------------------------------------------------------------------
# Tracked syllabus generation
# ---------------------------------------------------------------------------

class SyllabusGenerationPipeline:
    """Drives a generation job through its stages, strictly in order."""

    def __init__(
        self,
        document_store: DocumentStore,
        catalog: Optional[RegulatoryCatalog] = None,
        synthesizer: Optional[SyllabusSynthesizer] = None,
    ) -> None:
        self.document_store = document_store
        self.catalog = catalog
        self.synthesizer = synthesizer or SyllabusSynthesizer(catalog)

    def _advance(self, job: GenerationJob, stage: GenerationStage, message: str) -> None:
        job.advance(stage, message)
        logger.info(
            "Generation %s: [%d/%d] %s",
            job.generation_id, _STEP_NUMBERS[stage], _STEP_TOTAL, message,
        )

    async def run(
        self,
        job: GenerationJob,
        document_id: Optional[int] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Generate a syllabus for the job's document and persist it.

        Raises:
            ExtractionFailure: the document is missing or has no text.
            ValidationFailure: the job options are malformed.
        """
        document_id = job.document_id if document_id is None else document_id
        generation_options = validate_generation_options(job.options if options is None else options)

        # ---- 1. Text ----
        self._advance(job, GenerationStage.EXTRACTING_TEXT, "Loading document text")
        text = await self.document_store.get_text(document_id)
        document = await self.document_store.get_document(document_id)

        # ---- 2. Structure, classification, context ----
        self._advance(job, GenerationStage.ANALYZING_CONTENT, "Analyzing document structure and content")
        structure: Optional[DocumentStructure] = None
        try:
            structure = parse_stored_document(document)
        except Exception as exc:
            failure = StageFailure("structure", str(exc))
            job.errors.append(str(failure))
            logger.warning("Generation %s: %s", job.generation_id, failure)
        try:
            classification = classify_document(text)
            logger.info("Generation %s: category=%s", job.generation_id, classification.category.value)
        except Exception as exc:
            failure = StageFailure("classification", str(exc))
            job.errors.append(str(failure))
            logger.warning("Generation %s: %s", job.generation_id, failure)
        try:
            context = parse_document_context(text, structure)
            logger.info("Generation %s: primary context=%s", job.generation_id, context.primary_context.value)
        except Exception as exc:
            failure = StageFailure("context", str(exc))
            job.errors.append(str(failure))
            logger.warning("Generation %s: %s", job.generation_id, failure)

        # ---- 3-8. Synthesis ----
        def on_progress(stage: str, message: str) -> None:
            self._advance(job, GenerationStage(stage), message)

        syllabus = await self.synthesizer.generate(
            text,
            generation_options,
            structure=structure,
            catalog=self.catalog,
            progress=on_progress,
        )
        result = syllabus.to_dict()
        await self.document_store.save_syllabus(document_id, result, generation_id=job.generation_id)

        # The manager marks the job completed once the runner has returned
        logger.info(
            "Generation %s: syllabus ready for document %d after %.1fs",
            job.generation_id, document_id, job.elapsed_seconds,
        )
        return result


async def run_generation(job: GenerationJob) -> Dict[str, Any]:
    """GenerationManager runner backed by a fresh database session."""
    async with AsyncSessionLocal() as session:
        try:
            pipeline = SyllabusGenerationPipeline(
                SqlDocumentStore(session),
                catalog=SqlRegulatoryCatalog(session),
            )
            result = await pipeline.run(job)
            await session.commit()
            return result
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Nested document analysis
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class DocumentAnalysis:
    """Partial results plus one ``<stage>_error`` field per failed stage."""

    document_id: int
    structure: Optional[Dict[str, Any]] = None
    classification: Optional[Dict[str, Any]] = None
    context: Optional[Dict[str, Any]] = None
    knowledge_graph: Optional[Dict[str, Any]] = None
    syllabus: Optional[Dict[str, Any]] = None
    structure_error: Optional[str] = None
    classification_error: Optional[str] = None
    context_error: Optional[str] = None
    knowledge_graph_error: Optional[str] = None
    syllabus_error: Optional[str] = None
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class DocumentAnalysisPipeline:
    """
    Runs every analysis stage over one stored document.

    Each optional stage is isolated: its exception becomes a StageFailure
    recorded on the result and later stages run on whatever inputs exist.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        graph_store: Optional[GraphStore] = None,
        catalog: Optional[RegulatoryCatalog] = None,
        extractor: Optional[KnowledgeGraphExtractor] = None,
        synthesizer: Optional[SyllabusSynthesizer] = None,
    ) -> None:
        self.document_store = document_store
        self.graph_store = graph_store
        self.catalog = catalog
        self.extractor = extractor or KnowledgeGraphExtractor(graph_store=graph_store)
        self.synthesizer = synthesizer or SyllabusSynthesizer(catalog)

    async def _stage(self, analysis: DocumentAnalysis, stage: str, step: Callable[[], Any]) -> Any:
        try:
            value = step()
            if inspect.isawaitable(value):
                value = await value
            return value
        except Exception as exc:
            failure = StageFailure(stage, str(exc))
            setattr(analysis, failure.field_name, str(failure))
            logger.warning("Analysis of document %d: %s", analysis.document_id, failure, exc_info=True)
            return None

    async def analyze(
        self,
        document_id: int,
        include_knowledge_graph: bool = True,
        include_syllabus: bool = True,
        save_graph: bool = False,
        options: Optional[Mapping[str, Any]] = None,
    ) -> DocumentAnalysis:
        """
        Analyze a stored document.

        Raises:
            ExtractionFailure: the document is missing or has no text.
            ValidationFailure: *options* are malformed (checked before any stage runs).
        """
        t0 = time.monotonic()
        generation_options = validate_generation_options(options) if include_syllabus else None
        text = await self.document_store.get_text(document_id)
        document = await self.document_store.get_document(document_id)
        analysis = DocumentAnalysis(document_id=document_id)

        structure = await self._stage(analysis, "structure", lambda: parse_stored_document(document))
        if structure is not None:
            analysis.structure = structure_summary(structure, document_id)

        classification = await self._stage(analysis, "classification", lambda: classify_document(text))
        if classification is not None:
            analysis.classification = to_jsonable(classification)

        context = await self._stage(analysis, "context", lambda: parse_document_context(text, structure))
        if context is not None:
            analysis.context = to_jsonable(context)

        if include_knowledge_graph:
            analysis.knowledge_graph = await self._stage(
                analysis,
                "knowledge_graph",
                lambda: self._knowledge_graph(text, structure, document_id, save_graph),
            )

        if include_syllabus:
            syllabus = await self._stage(
                analysis,
                "syllabus",
                lambda: self.synthesizer.generate(text, generation_options, structure=structure, catalog=self.catalog),
            )
            if syllabus is not None:
                analysis.syllabus = syllabus.to_dict()

        analysis.processing_time_ms = round((time.monotonic() - t0) * 1000, 2)
        failed = [
            name for name in ("structure", "classification", "context", "knowledge_graph", "syllabus")
            if getattr(analysis, f"{name}_error")
        ]
        logger.info(
            "Analysis of document %d finished in %.1f ms (%d failed stage(s)%s)",
            document_id,
            analysis.processing_time_ms,
            len(failed),
            f": {', '.join(failed)}" if failed else "",
        )
        return analysis

    async def _knowledge_graph(
        self,
        text: str,
        structure: Optional[DocumentStructure],
        document_id: int,
        save_graph: bool,
    ) -> Dict[str, Any]:
        options = ExtractionOptions(link_to_existing=self.graph_store is not None)
        result = await self.extractor.extract(text, structure=structure, options=options, document_id=document_id)
        data = result.to_dict()
        if save_graph and self.graph_store is not None:
            saved = await save_knowledge_graph(result, self.graph_store, document_id)
            data["saved"] = {
                "nodes_saved": len(saved.node_ids),
                "edges_saved": saved.edges_saved,
                "edges_skipped": saved.edges_skipped,
                "links_saved": saved.links_saved,
            }
        return data
