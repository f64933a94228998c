"""Shared fixtures: scripted text service, deterministic embeddings, real FAISS store."""

import json
import math
from typing import Dict, List, Optional, Union

import pytest

from stembot.core.config import Settings
from stembot.core.errors import AnalysisServiceError, VectorStoreUnavailable
from stembot.core.faiss_index import FaissVectorStore
from stembot.core.models import DocumentUpload
from stembot.runbooks.ingest_graph import DocumentOrchestrator

DIMENSIONS = 8

# Prompt markers, one per pipeline call
STRUCTURE = "extract its structure"
CLASSIFY = "Classify this document type"
RESEARCH = "Analyze this research paper"
EXPERIMENTAL = "Analyze this experimental data document"
RELATIONSHIP = "relationship between these two documents"


class FakeTextService:
    """Answers prompts from a marker -> response table; exceptions are raised."""

    def __init__(self, responses: Optional[Dict[str, Union[str, Exception]]] = None):
        self.responses = dict(responses or {})
        self.calls: List[str] = []

    async def generate(self, prompt: str, model: Optional[str] = None, *, json_format: bool = False) -> str:
        self.calls.append(prompt)
        for marker, response in self.responses.items():
            if marker in prompt:
                if isinstance(response, Exception):
                    raise response
                return response
        raise AnalysisServiceError("No scripted response")

    def count(self, marker: str) -> int:
        return sum(1 for prompt in self.calls if marker in prompt)


def unit(*components: float) -> List[float]:
    vector = list(components) + [0.0] * (DIMENSIONS - len(components))
    return vector


def angled(cosine: float) -> List[float]:
    """Unit vector whose cosine with unit(1.0) is `cosine`."""
    return unit(cosine, math.sqrt(1.0 - cosine ** 2))


class FakeEmbeddingBackend:
    """Maps texts to vectors by keyword; unknown texts get a third axis."""

    model = "fake-embedding"

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, dimensions: int = DIMENSIONS):
        self.vectors = vectors or {}
        self.dimensions = dimensions
        self.calls: List[str] = []

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.extend(texts)
        results = []
        for text in texts:
            for keyword, vector in self.vectors.items():
                if keyword in text:
                    results.append(list(vector))
                    break
            else:
                default = [0.0] * self.dimensions
                default[-1] = 1.0
                results.append(default)
        return results


class FailingVectorStore:
    """Store whose every operation reports the backend as unreachable."""

    async def upsert(self, entries):
        raise VectorStoreUnavailable("connection refused")

    async def query(self, vector, top_k=10, include_metadata=True, metadata_filter=None):
        raise VectorStoreUnavailable("connection refused")


def research_report() -> str:
    return json.dumps({
        "researchQuestions": ["Does folding depend on temperature?"],
        "methodology": {
            "type": "experimental",
            "description": "Controlled lab study",
            "strengths": ["large sample"],
            "limitations": ["single lab"],
        },
        "keyFindings": [
            {"statement": "Folding slows above 40C", "significance": "High", "evidence": "Figure 2"}
        ],
        "novelty": {"score": 7, "justification": "New assay", "gaps": []},
        "methodology_critique": {"score": 6, "issues": [], "suggestions": []},
        "literatureGaps": ["in vivo data"],
        "futureWork": ["replicate"],
    })


def experimental_report() -> str:
    return json.dumps({
        "dataQuality": {"score": 8, "issues": [], "recommendations": []},
        "statisticalSignificance": {
            "tests": [{"type": "t-test", "pValue": 0.03, "significant": True, "interpretation": "significant"}],
            "overall": True,
            "confidence": 95,
        },
        "experimentalDesign": {
            "type": "controlled experiment",
            "controls": ["placebo"],
            "variables": [{"name": "dose", "type": "independent", "description": "mg", "range": "0-10"}],
            "sampleSize": 120,
            "critique": [],
        },
        "dataPatterns": [{"description": "dose response", "confidence": 80, "implications": []}],
        "hypotheses": [],
    })


def structure_report(title: str = "A Study", abstract: Optional[str] = None) -> str:
    return json.dumps({
        "title": title,
        "abstract": abstract,
        "sections": [
            {"title": "Methods", "content": "We measured folding rates.", "level": 1},
            {"title": "Conclusion", "content": "Heat slows folding.", "level": 1},
        ],
        "references": [],
    })


def text_upload(text: str, filename: str = "doc.txt") -> DocumentUpload:
    payload = text.encode("utf-8")
    return DocumentUpload(filename=filename, mime_type="text/plain", payload=payload, size=len(payload))


@pytest.fixture
def settings(tmp_path) -> Settings:
    settings = Settings()
    settings.embedding.dimensions = DIMENSIONS
    settings.vector_store.index_path = str(tmp_path / "index")
    settings.pipeline.checkpoint_dir = str(tmp_path / "checkpoints")
    return settings


@pytest.fixture
def vector_store() -> FaissVectorStore:
    return FaissVectorStore(DIMENSIONS)


@pytest.fixture
def text_service() -> FakeTextService:
    return FakeTextService({
        STRUCTURE: structure_report(),
        CLASSIFY: "research_paper",
        RESEARCH: research_report(),
        EXPERIMENTAL: experimental_report(),
        RELATIONSHIP: "support",
    })


@pytest.fixture
def embedding_backend() -> FakeEmbeddingBackend:
    return FakeEmbeddingBackend({
        "ALPHA": unit(1.0),
        "NEARBY": angled(0.95),
        "DISTANT": angled(0.4),
    })


@pytest.fixture
def make_orchestrator(settings, vector_store, text_service, embedding_backend):
    def factory(**overrides) -> DocumentOrchestrator:
        kwargs = dict(
            text_service=text_service,
            embedding_backend=embedding_backend,
            vector_store=vector_store,
            settings=settings,
        )
        kwargs.update(overrides)
        return DocumentOrchestrator(**kwargs)
    return factory
