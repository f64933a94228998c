"""Embedding generation: four fixed-dimension vectors per document."""

import asyncio
import os
import logging
from typing import List, Optional, Protocol, Tuple

import numpy as np
import openai
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import EmbeddingConfig, Settings
from .errors import EmbeddingError
from .models import DocumentEmbeddings, DocumentStructure

logger = logging.getLogger(__name__)

SEGMENTS = ("summary", "methodology", "conclusions", "full_text")


class EmbeddingBackend(Protocol):
    model: str

    async def embed(self, texts: List[str]) -> List[List[float]]:
        ...


def zero_vector(dimensions: int) -> List[float]:
    return [0.0] * dimensions


def is_zero_vector(vector: List[float]) -> bool:
    """True for empty vectors and vectors with no non-zero component."""
    if not vector:
        return True
    return not np.any(np.asarray(vector, dtype=np.float32))


class OpenAIEmbeddingBackend:
    """OpenAI embeddings requested at the configured dimension."""

    def __init__(self, config: EmbeddingConfig, client: Optional[openai.AsyncOpenAI] = None, api_key: Optional[str] = None):
        self.config = config
        self.model = config.model
        if client is None:
            if not api_key:
                raise ValueError("OpenAI API key not found in environment variables")
            client = openai.AsyncOpenAI(api_key=api_key, timeout=config.timeout)
        self.client = client

    def _truncate(self, text: str) -> str:
        # ~4 chars per token
        limit = self.config.max_tokens * 4
        if len(text) > limit:
            logger.warning(f"Truncated text from {len(text)} to {limit} characters")
            return text[:limit]
        return text

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type((openai.APIConnectionError, openai.RateLimitError)),
        reraise=True,
    )
    async def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a batch of texts.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors, in input order
        """
        response = await self.client.embeddings.create(
            model=self.config.model,
            input=[self._truncate(t) for t in texts],
            dimensions=self.config.dimensions,
        )
        embeddings = [item.embedding for item in response.data]
        logger.info(f"Generated {len(embeddings)} embeddings using {self.config.model}")
        return embeddings


def create_embedding_backend(settings: Settings) -> EmbeddingBackend:
    """Build the configured embedding backend."""
    config = settings.embedding
    if config.provider == "openai":
        return OpenAIEmbeddingBackend(config, api_key=os.getenv("OPENAI_API_KEY"))
    if config.provider == "local":
        from .local_embeddings import LocalEmbeddingBackend
        return LocalEmbeddingBackend(model_name=config.local_model)
    raise ValueError(f"Unknown embedding provider: {config.provider}")


class EmbeddingGenerator:
    """Turns extracted text and structure into the four document vectors."""

    def __init__(
        self,
        backend: EmbeddingBackend,
        dimensions: int = 384,
        summary_prefix_chars: int = 1000,
        full_text_prefix_chars: int = 8000,
        embed_full_text: bool = False,
        timeout: float = 30.0,
    ):
        self.backend = backend
        self.dimensions = dimensions
        self.summary_prefix_chars = summary_prefix_chars
        self.full_text_prefix_chars = full_text_prefix_chars
        self.embed_full_text = embed_full_text
        self.timeout = timeout

    def segments(self, text: str, structure: DocumentStructure) -> dict:
        """Source text for each embedding slot."""
        return {
            "summary": structure.abstract or text[:self.summary_prefix_chars],
            "methodology": structure.methodology or "",
            "conclusions": structure.conclusion or "",
            "full_text": text[:self.full_text_prefix_chars] if self.embed_full_text else "",
        }

    async def _embed_one(self, segment: str) -> List[float]:
        if not segment.strip():
            return zero_vector(self.dimensions)

        try:
            vectors = await asyncio.wait_for(self.backend.embed([segment]), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Embedding timed out after {self.timeout}s", original_error=e) from e
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding backend failed: {e}", original_error=e) from e

        if len(vectors) != 1 or len(vectors[0]) != self.dimensions:
            got = len(vectors[0]) if vectors else 0
            raise EmbeddingError(f"Expected {self.dimensions}-dimensional vector, got {got}")
        return [float(x) for x in vectors[0]]

    async def generate(self, text: str, structure: DocumentStructure) -> Tuple[DocumentEmbeddings, Optional[str]]:
        """
        Embed every segment concurrently.

        Returns:
            (embeddings, degradation reason or None); on any failure all four
            vectors are empty.
        """
        segments = self.segments(text, structure)
        try:
            vectors = await asyncio.gather(*(self._embed_one(segments[name]) for name in SEGMENTS))
        except EmbeddingError as e:
            logger.error(f"Embedding generation failed: {e}")
            return DocumentEmbeddings(), str(e)

        return DocumentEmbeddings(**dict(zip(SEGMENTS, vectors))), None

    async def embed_query(self, query: str) -> List[float]:
        """Embed a free-text query. Raises EmbeddingError."""
        if not query.strip():
            raise EmbeddingError("Cannot embed an empty query")
        return await self._embed_one(query)
