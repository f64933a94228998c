import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypedDict

from langgraph.graph import StateGraph, END

from ..core.analyzers import ExperimentalDataAnalyzer, ResearchPaperAnalyzer
from ..core.checkpoints import StageCheckpointStore
from ..core.classify import DocumentClassifier
from ..core.config import Settings, load_settings
from ..core.embed import EmbeddingGenerator, create_embedding_backend, is_zero_vector
from ..core.errors import ExtractionError, VectorStoreError
from ..core.extract import TextExtractor
from ..core.faiss_index import VectorEntry, open_vector_store
from ..core.logging_config import get_audit_logger, log_document_processed, log_stage_degraded
from ..core.models import DocumentAnalysis, DocumentMetadata, DocumentUpload
from ..core.relationships import RelationshipDiscovery, SemanticSearchResult, semantic_search, vector_id
from ..core.structure import StructureAnalyzer
from ..core.text_service import create_text_service

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("orchestrator")

# Stage names, in pipeline order
EXTRACT = "extract"
STRUCTURE = "structure"
CLASSIFY = "classify"
RESEARCH = "research"
EXPERIMENTAL = "experimental"
EMBED = "embed"
PERSIST = "persist"
DISCOVER = "discover"
FINALIZE = "finalize"


# ---- State definition (keep small & explicit)
class IngestState(TypedDict, total=False):
    analysis: DocumentAnalysis
    upload: Optional[DocumentUpload]   # absent when resuming past extraction


def build_vector_entries(analysis: DocumentAnalysis) -> List[VectorEntry]:
    """Summary, methodology and full-text vectors with their lookup metadata."""
    metadata = {
        "filename": analysis.filename,
        "title": analysis.display_title,
        "documentId": analysis.id,
    }
    slots = (
        ("summary", "summary", analysis.embeddings.summary),
        ("methodology", "methodology", analysis.embeddings.methodology),
        ("full", "full_text", analysis.embeddings.full_text),
    )
    return [
        VectorEntry(id=vector_id(analysis.id, suffix), values=values, metadata={**metadata, "type": kind})
        for suffix, kind, values in slots
        if values
    ]


class DocumentOrchestrator:
    """
    Owns the DocumentAnalysis lifecycle and runs the ingestion graph.

    Every collaborator is injected; `build_orchestrator` wires the real ones
    from settings.
    """

    def __init__(
        self,
        text_service,
        embedding_backend,
        vector_store=None,
        settings: Optional[Settings] = None,
        checkpoints: Optional[StageCheckpointStore] = None,
        extractor: Optional[TextExtractor] = None,
    ):
        self.settings = settings or Settings()
        pipeline = self.settings.pipeline
        model = self.settings.llm.model

        self.vector_store = vector_store
        self.checkpoints = checkpoints
        self.extractor = extractor or TextExtractor(
            max_file_size_mb=pipeline.max_file_size_mb,
            ocr_max_width=pipeline.ocr_max_width,
            ocr_language=pipeline.ocr_language,
        )
        self.structure_analyzer = StructureAnalyzer(text_service, model, pipeline.structure_prefix_chars)
        self.classifier = DocumentClassifier(text_service, model, pipeline.classification_prefix_chars)
        self.research_analyzer = ResearchPaperAnalyzer(text_service, model, pipeline.analysis_prefix_chars)
        self.experimental_analyzer = ExperimentalDataAnalyzer(text_service, model, pipeline.analysis_prefix_chars)
        self.embedder = EmbeddingGenerator(
            embedding_backend,
            dimensions=self.settings.embedding.dimensions,
            summary_prefix_chars=pipeline.summary_prefix_chars,
            full_text_prefix_chars=pipeline.full_text_prefix_chars,
            embed_full_text=self.settings.embedding.embed_full_text,
            timeout=self.settings.embedding.timeout,
        )
        self.discovery = RelationshipDiscovery(
            text_service,
            vector_store,
            model,
            threshold=pipeline.relationship_threshold,
            top_k=pipeline.relationship_top_k,
            excerpt_chars=pipeline.relationship_excerpt_chars,
        )
        self.graph = self.build_graph()

    # ---- Helpers

    def _degrade(self, analysis: DocumentAnalysis, stage: str, reason: str) -> None:
        analysis.record_degradation(stage, reason)
        log_stage_degraded(audit_logger, analysis.id, stage, reason)

    async def _checkpoint(self, analysis: DocumentAnalysis, stage: str, execution_time_ms: float) -> None:
        if self.checkpoints is None:
            return
        await asyncio.to_thread(self.checkpoints.save_stage, analysis, stage, execution_time_ms)

    async def _run_stage(
        self,
        state: IngestState,
        stage: str,
        work: Callable[[DocumentAnalysis], Awaitable[None]],
    ) -> IngestState:
        analysis = state["analysis"]
        if analysis.has_completed(stage):
            logger.info(f"Skipping completed stage {stage} for {analysis.id}")
            return state

        start_time = time.time()
        await work(analysis)
        if not analysis.is_terminal:
            analysis.mark_stage_completed(stage)
        await self._checkpoint(analysis, stage, (time.time() - start_time) * 1000)
        return state

    # ---- Step functions

    async def step_extract(self, state: IngestState) -> IngestState:
        upload = state.get("upload")

        async def work(analysis: DocumentAnalysis) -> None:
            if upload is None:
                analysis.content.text = ""
                analysis.mark_failed("Extraction never completed and the original bytes are unavailable")
                return
            try:
                extracted = await self.extractor.extract(upload)
            except ExtractionError as e:
                logger.error(f"Extraction failed for {analysis.filename}: {e}")
                analysis.content.text = ""
                analysis.mark_failed(str(e))
                return
            analysis.content.text = extracted.text
            analysis.content.metadata = DocumentMetadata(language="en", pages=extracted.pages)

        return await self._run_stage(state, EXTRACT, work)

    async def step_structure(self, state: IngestState) -> IngestState:
        async def work(analysis: DocumentAnalysis) -> None:
            structure, reason = await self.structure_analyzer.analyze(analysis.content.text)
            analysis.content.structure = structure
            if reason:
                self._degrade(analysis, STRUCTURE, reason)

        return await self._run_stage(state, STRUCTURE, work)

    async def step_classify(self, state: IngestState) -> IngestState:
        async def work(analysis: DocumentAnalysis) -> None:
            label, reason = await self.classifier.classify(analysis.content.text)
            analysis.document_type = label
            if reason:
                self._degrade(analysis, CLASSIFY, reason)

        return await self._run_stage(state, CLASSIFY, work)

    async def step_research(self, state: IngestState) -> IngestState:
        async def work(analysis: DocumentAnalysis) -> None:
            report, reason = await self.research_analyzer.analyze(analysis.content.text)
            analysis.research = report
            if reason:
                self._degrade(analysis, RESEARCH, reason)

        return await self._run_stage(state, RESEARCH, work)

    async def step_experimental(self, state: IngestState) -> IngestState:
        async def work(analysis: DocumentAnalysis) -> None:
            report, reason = await self.experimental_analyzer.analyze(analysis.content.text)
            analysis.experimental = report
            if reason:
                self._degrade(analysis, EXPERIMENTAL, reason)

        return await self._run_stage(state, EXPERIMENTAL, work)

    async def step_embed(self, state: IngestState) -> IngestState:
        async def work(analysis: DocumentAnalysis) -> None:
            embeddings, reason = await self.embedder.generate(
                analysis.content.text, analysis.content.structure
            )
            analysis.embeddings = embeddings
            if reason:
                self._degrade(analysis, EMBED, reason)

        return await self._run_stage(state, EMBED, work)

    async def step_persist(self, state: IngestState) -> IngestState:
        async def work(analysis: DocumentAnalysis) -> None:
            if self.vector_store is None:
                return
            if is_zero_vector(analysis.embeddings.summary):
                self._degrade(analysis, PERSIST, "Summary vector is empty; document not indexed")
                return
            try:
                await self.vector_store.upsert(build_vector_entries(analysis))
            except VectorStoreError as e:
                logger.error(f"Vector storage error: {e}")
                self._degrade(analysis, PERSIST, str(e))
                return
            analysis.indexed = True

        return await self._run_stage(state, PERSIST, work)

    async def step_discover(self, state: IngestState) -> IngestState:
        async def work(analysis: DocumentAnalysis) -> None:
            relationships, reason = await self.discovery.discover(analysis)
            analysis.relationships = relationships
            if reason:
                self._degrade(analysis, DISCOVER, reason)

        return await self._run_stage(state, DISCOVER, work)

    async def step_finalize(self, state: IngestState) -> IngestState:
        analysis = state["analysis"]
        analysis.mark_completed()
        await self._checkpoint(analysis, FINALIZE, 0.0)
        return state

    # ---- Routing

    @staticmethod
    def route_after_extract(state: IngestState) -> str:
        return "end" if state["analysis"].is_terminal else STRUCTURE

    @staticmethod
    def route_after_classify(state: IngestState) -> str:
        document_type = state["analysis"].document_type
        if document_type == "research_paper":
            return RESEARCH
        if document_type == "experimental_data":
            return EXPERIMENTAL
        return EMBED

    @staticmethod
    def route_after_persist(state: IngestState) -> str:
        return DISCOVER if state["analysis"].indexed else FINALIZE

    # ---- Build the LangGraph
    def build_graph(self):
        g = StateGraph(IngestState)

        g.add_node(EXTRACT, self.step_extract)
        g.add_node(STRUCTURE, self.step_structure)
        g.add_node(CLASSIFY, self.step_classify)
        g.add_node(RESEARCH, self.step_research)
        g.add_node(EXPERIMENTAL, self.step_experimental)
        g.add_node(EMBED, self.step_embed)
        g.add_node(PERSIST, self.step_persist)
        g.add_node(DISCOVER, self.step_discover)
        g.add_node(FINALIZE, self.step_finalize)

        g.set_entry_point(EXTRACT)
        g.add_conditional_edges(
            EXTRACT,
            self.route_after_extract,
            {STRUCTURE: STRUCTURE, "end": END}
        )
        g.add_edge(STRUCTURE, CLASSIFY)
        g.add_conditional_edges(
            CLASSIFY,
            self.route_after_classify,
            {RESEARCH: RESEARCH, EXPERIMENTAL: EXPERIMENTAL, EMBED: EMBED}
        )
        g.add_edge(RESEARCH, EMBED)
        g.add_edge(EXPERIMENTAL, EMBED)
        g.add_edge(EMBED, PERSIST)
        g.add_conditional_edges(
            PERSIST,
            self.route_after_persist,
            {DISCOVER: DISCOVER, FINALIZE: FINALIZE}
        )
        g.add_edge(DISCOVER, FINALIZE)
        g.add_edge(FINALIZE, END)

        return g.compile()

    # ---- Entry points

    async def _execute(self, analysis: DocumentAnalysis, upload: Optional[DocumentUpload]) -> DocumentAnalysis:
        start_time = time.time()
        try:
            result = await self.graph.ainvoke({"analysis": analysis, "upload": upload})
            analysis = result["analysis"]
        except Exception as e:
            # Any stage bug still yields a terminal record
            logger.exception(f"Document processing error for {analysis.filename}: {e}")
            if not analysis.is_terminal:
                analysis.mark_failed(f"Unexpected error: {e}")

        if not analysis.is_terminal:
            analysis.mark_failed("Pipeline ended without a terminal status")

        log_document_processed(
            audit_logger,
            analysis_id=analysis.id,
            filename=analysis.filename,
            status=analysis.status.value,
            document_type=analysis.document_type or "unclassified",
            pages=analysis.content.metadata.pages,
            degraded_stages=[d.stage for d in analysis.degraded],
            relationships=len(analysis.relationships),
            processing_time_ms=(time.time() - start_time) * 1000,
        )
        return analysis

    async def process(self, upload: DocumentUpload) -> DocumentAnalysis:
        """Run the full pipeline for one upload; always returns a terminal record."""
        analysis = DocumentAnalysis.from_upload(upload)
        logger.info(f"Processing {upload.filename} ({upload.mime_type}) as {analysis.id}")
        return await self._execute(analysis, upload)

    async def process_bytes(self, payload: bytes, mime_type: str, filename: str = "upload") -> DocumentAnalysis:
        return await self.process(DocumentUpload(
            filename=filename, mime_type=mime_type, payload=payload, size=len(payload)
        ))

    async def process_many(
        self, uploads: Iterable[DocumentUpload], max_concurrency: Optional[int] = None
    ) -> List[DocumentAnalysis]:
        """Process independent uploads concurrently, bounded by a semaphore."""
        semaphore = asyncio.Semaphore(max_concurrency or self.settings.pipeline.max_concurrent_documents)

        async def run(upload: DocumentUpload) -> DocumentAnalysis:
            async with semaphore:
                return await self.process(upload)

        return await asyncio.gather(*(run(u) for u in uploads))

    async def resume(self, analysis_id: str, upload: Optional[DocumentUpload] = None) -> Optional[DocumentAnalysis]:
        """
        Continue a run from its latest checkpoint.

        Terminal records are returned unchanged. A run that stopped before
        extraction finished needs the original upload to continue.

        Returns:
            The terminal record, or None if no checkpoint exists
        """
        if self.checkpoints is None:
            raise ValueError("Resuming requires a checkpoint store")

        analysis = await asyncio.to_thread(self.checkpoints.load_latest, analysis_id)
        if analysis is None:
            return None
        if analysis.is_terminal:
            logger.info(f"Run {analysis_id} already {analysis.status.value}; nothing to resume")
            return analysis

        logger.info(f"Resuming {analysis_id} after stages {analysis.completed_stages}")
        return await self._execute(analysis, upload)

    async def search(self, query: str, top_k: int = 10) -> List[SemanticSearchResult]:
        return await semantic_search(self.embedder, self.vector_store, query, top_k)


def build_orchestrator(settings: Optional[Settings] = None) -> DocumentOrchestrator:
    """Wire the configured services into an orchestrator."""
    settings = settings or load_settings()

    vector_store = None
    if settings.vector_store.enabled:
        vector_store = open_vector_store(settings.embedding.dimensions, settings.vector_store.index_path)

    checkpoints = None
    if settings.pipeline.checkpoints_enabled:
        checkpoints = StageCheckpointStore(settings.pipeline.checkpoint_dir)

    return DocumentOrchestrator(
        text_service=create_text_service(settings),
        embedding_backend=create_embedding_backend(settings),
        vector_store=vector_store,
        settings=settings,
        checkpoints=checkpoints,
    )


def get_run_summary(analysis: DocumentAnalysis) -> Dict[str, Any]:
    """Compact view of a terminal record for CLI output."""
    return {
        "id": analysis.id,
        "filename": analysis.filename,
        "status": analysis.status.value,
        "document_type": analysis.document_type,
        "title": analysis.display_title,
        "pages": analysis.content.metadata.pages,
        "indexed": analysis.indexed,
        "relationships": len(analysis.relationships),
        "degraded": [f"{d.stage}: {d.reason}" for d in analysis.degraded],
        "error": analysis.error,
    }
