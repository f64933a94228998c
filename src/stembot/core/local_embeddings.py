"""Local embedding backend for air-gapped environments."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sentence_transformers import SentenceTransformer

logger = logging.getLogger(__name__)


# Models known to work well for scientific text
RECOMMENDED_MODELS = {
    "fast": {
        "name": "all-MiniLM-L6-v2",
        "dimension": 384,
        "speed": "fast",
        "quality": "good",
        "memory": "low"
    },
    "balanced": {
        "name": "all-mpnet-base-v2",
        "dimension": 768,
        "speed": "medium",
        "quality": "excellent",
        "memory": "medium"
    },
    "scientific": {
        "name": "allenai-specter",
        "dimension": 768,
        "speed": "medium",
        "quality": "excellent",
        "memory": "medium"
    }
}


class LocalEmbeddingBackend:
    """sentence-transformers model loaded once and run off the event loop."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", batch_size: int = 32, device: str = "cpu"):
        self.model = model_name
        self.batch_size = batch_size
        self.device = device
        self._model: Optional[SentenceTransformer] = None
        self.model_dimension: Optional[int] = None

    def _load_model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info(f"Loading local embedding model: {self.model}")
            self._model = SentenceTransformer(self.model, device=self.device)
            self.model_dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Loaded model with dimension: {self.model_dimension}")
        return self._model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        model = self._load_model()
        embeddings = model.encode(texts, batch_size=self.batch_size, convert_to_numpy=True)
        return [emb.tolist() for emb in embeddings]

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a list of texts."""
        embeddings = await asyncio.to_thread(self._encode, texts)
        logger.info(f"Generated {len(embeddings)} local embeddings")
        return embeddings

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "model_name": self.model,
            "dimension": self.model_dimension,
            "loaded": self._model is not None,
            "device": self.device,
        }


def get_model_recommendation(priority: str = "fast") -> Dict[str, Any]:
    """
    Get model recommendation based on priority.

    Args:
        priority: "fast", "balanced", or "scientific"
    """
    if priority not in RECOMMENDED_MODELS:
        priority = "fast"
    return RECOMMENDED_MODELS[priority]
