"""Cross-document relationship discovery, semantic search and corpus aggregation."""

import asyncio
import logging
import time
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional, Tuple

from pydantic import Field

from .classify import normalize_label
from .errors import AnalysisServiceError, ClassificationAmbiguity, EmbeddingError, VectorStoreError
from .logging_config import get_audit_logger, log_relationships_discovered
from .models import (
    RELATIONSHIP_TYPES,
    CamelModel,
    DocumentAnalysis,
    DocumentRelationship,
    DocumentStatus,
)

logger = logging.getLogger(__name__)
audit_logger = get_audit_logger("relationships")

DEFAULT_RELATIONSHIP = "similar_findings"

RELATIONSHIP_PROMPT = """Analyze the relationship between these two documents:

Source document (excerpt): {excerpt}
Target document title: {title}
Similarity score: {similarity}

Return only one of these relationship types:
- contradiction
- support
- methodological_gap
- builds_upon
- similar_findings"""


class SemanticSearchResult(CamelModel):
    id: str
    content: str
    similarity: float
    document_id: Optional[str] = None
    type: Optional[str] = None
    metadata: Dict[str, Any] = {}


def vector_id(document_id: str, segment: str) -> str:
    """Composite vector key: summary, methodology or full."""
    return f"{document_id}-{segment}"


class RelationshipDiscovery:
    """Finds near neighbours of a document and types each relationship."""

    def __init__(
        self,
        text_service,
        vector_store,
        model: Optional[str] = None,
        threshold: float = 0.7,
        top_k: int = 10,
        excerpt_chars: int = 2000,
    ):
        self.text_service = text_service
        self.vector_store = vector_store
        self.model = model
        self.threshold = threshold
        self.top_k = top_k
        self.excerpt_chars = excerpt_chars

    async def classify_relationship(self, source_text: str, target_title: str, similarity: float) -> str:
        """Ask the service for a relationship label; anything unusable is similar_findings."""
        prompt = RELATIONSHIP_PROMPT.format(
            excerpt=source_text[:self.excerpt_chars],
            title=target_title,
            similarity=similarity,
        )
        try:
            answer = await self.text_service.generate(prompt, self.model)
            return normalize_label(answer, RELATIONSHIP_TYPES)
        except (AnalysisServiceError, ClassificationAmbiguity) as e:
            logger.info(f"Relationship type defaulted to {DEFAULT_RELATIONSHIP}: {e}")
            return DEFAULT_RELATIONSHIP

    def _candidates(self, analysis_id: str, matches) -> List[Tuple[str, float, str]]:
        """Best match per target document above the threshold."""
        best: Dict[str, Tuple[float, str]] = {}
        for match in matches:
            metadata = match.metadata or {}
            target = metadata.get("documentId")
            if not target or target == analysis_id or match.score <= self.threshold:
                continue
            if target not in best or match.score > best[target][0]:
                best[target] = (match.score, metadata.get("title") or metadata.get("filename") or "")
        return [(target, score, title) for target, (score, title) in best.items()]

    async def discover(self, analysis: DocumentAnalysis) -> Tuple[List[DocumentRelationship], Optional[str]]:
        """
        Query with the summary vector and type each candidate.

        Returns:
            (relationships sorted by similarity descending, degradation reason or None)
        """
        start_time = time.time()
        metadata_filter = {"documentId": {"$ne": analysis.id}, "type": "summary"}

        try:
            matches = await self.vector_store.query(
                analysis.embeddings.summary,
                top_k=self.top_k,
                include_metadata=True,
                metadata_filter=metadata_filter,
            )
        except VectorStoreError as e:
            logger.error(f"Relationship query failed: {e}")
            return [], str(e)

        candidates = self._candidates(analysis.id, matches)
        labels = await asyncio.gather(*(
            self.classify_relationship(analysis.content.text, title, score)
            for _, score, title in candidates
        ))

        relationships = [
            DocumentRelationship(
                target_document_id=target,
                type=label,
                similarity=score,
                description=f"{round(score * 100)}% similarity with related content",
                specific_sections=[],
            )
            for (target, score, _), label in zip(candidates, labels)
        ]
        relationships.sort(key=lambda r: r.similarity, reverse=True)

        log_relationships_discovered(
            audit_logger,
            analysis_id=analysis.id,
            candidates=len(matches),
            relationships=len(relationships),
            type_counts=dict(Counter(r.type for r in relationships)),
            threshold=self.threshold,
            execution_time_ms=(time.time() - start_time) * 1000,
            filters_applied=metadata_filter,
        )
        return relationships, None


async def semantic_search(embedder, vector_store, query: str, top_k: int = 10) -> List[SemanticSearchResult]:
    """Embed a free-text query and return the closest stored vectors."""
    if vector_store is None:
        return []
    try:
        vector = await embedder.embed_query(query)
        matches = await vector_store.query(vector, top_k=top_k, include_metadata=True)
    except (EmbeddingError, VectorStoreError) as e:
        logger.error(f"Semantic search error: {e}")
        return []

    return [
        SemanticSearchResult(
            id=match.id,
            content=(match.metadata or {}).get("title") or "No content available",
            similarity=match.score,
            document_id=(match.metadata or {}).get("documentId"),
            type=(match.metadata or {}).get("type"),
            metadata=match.metadata or {},
        )
        for match in matches
    ]


# ---- Corpus-level aggregation

class DocumentContradiction(CamelModel):
    documents: List[str]
    topic: str
    conflicting_claims: List[str] = []
    possible_reasons: List[str] = []
    resolution_suggestions: List[str] = []


class MethodologicalGap(CamelModel):
    description: str
    affected_documents: List[str]
    impact: str = "medium"
    suggestions: List[str] = []


class DocumentNode(CamelModel):
    id: str
    title: str
    type: Optional[str] = None
    importance: float = 0.0


class DocumentEdge(CamelModel):
    source: str
    target: str
    relationship: str
    weight: float


class DocumentRelationshipMap(CamelModel):
    nodes: List[DocumentNode] = []
    edges: List[DocumentEdge] = []


class ConsensusFinding(CamelModel):
    statement: str
    supporting_documents: List[str]
    confidence: float
    evidence: List[str] = []


class CrossDocumentAnalysis(CamelModel):
    contradictions: List[DocumentContradiction] = []
    methodological_gaps: List[MethodologicalGap] = []
    relationship_map: DocumentRelationshipMap = Field(default_factory=DocumentRelationshipMap)
    consensus_findings: List[ConsensusFinding] = []


def build_cross_document_analysis(analyses: List[DocumentAnalysis]) -> CrossDocumentAnalysis:
    """Aggregate the relationships of completed records into a corpus view."""
    completed = [a for a in analyses if a.status == DocumentStatus.COMPLETED]
    by_id = {a.id: a for a in completed}

    def title_of(document_id: str) -> str:
        analysis = by_id.get(document_id)
        return analysis.display_title if analysis else document_id

    result = CrossDocumentAnalysis()
    degree: Counter = Counter()
    supporters: Dict[str, List[Tuple[str, DocumentRelationship]]] = defaultdict(list)
    seen_pairs = set()

    for analysis in completed:
        for rel in analysis.relationships:
            source, target = analysis.id, rel.target_document_id
            result.relationship_map.edges.append(DocumentEdge(
                source=source, target=target, relationship=rel.type, weight=rel.similarity,
            ))
            degree[source] += 1
            degree[target] += 1

            pair = (rel.type, frozenset((source, target)))
            if rel.type == "contradiction" and pair not in seen_pairs:
                seen_pairs.add(pair)
                result.contradictions.append(DocumentContradiction(
                    documents=[source, target],
                    topic=f"{title_of(source)} vs {title_of(target)}",
                    conflicting_claims=[rel.description],
                ))
            elif rel.type == "methodological_gap" and pair not in seen_pairs:
                seen_pairs.add(pair)
                result.methodological_gaps.append(MethodologicalGap(
                    description=f"Methodological gap between {title_of(source)} and {title_of(target)}",
                    affected_documents=[source, target],
                    impact="high" if rel.similarity >= 0.9 else "medium",
                ))
            elif rel.type in ("support", "similar_findings"):
                supporters[target].append((source, rel))

    max_degree = max(degree.values(), default=0)
    for analysis in completed:
        result.relationship_map.nodes.append(DocumentNode(
            id=analysis.id,
            title=analysis.display_title,
            type=analysis.document_type,
            importance=(degree[analysis.id] / max_degree) if max_degree else 0.0,
        ))

    for target, support in supporters.items():
        documents = sorted({source for source, _ in support})
        if len(documents) < 2:
            continue
        result.consensus_findings.append(ConsensusFinding(
            statement=f"Findings consistent with {title_of(target)}",
            supporting_documents=documents,
            confidence=round(sum(rel.similarity for _, rel in support) / len(support), 4),
            evidence=[rel.description for _, rel in support],
        ))

    return result
