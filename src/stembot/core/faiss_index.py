"""FAISS-backed vector store with metadata filtering and on-disk persistence."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import faiss
import numpy as np
from pydantic import BaseModel

from .errors import VectorStoreError, VectorStoreUnavailable

logger = logging.getLogger(__name__)

INDEX_FILE = "faiss.index"
METADATA_FILE = "metadata.json"


class VectorEntry(BaseModel):
    """One vector keyed by a composite id such as '<documentId>-summary'."""
    id: str
    values: List[float]
    metadata: Dict[str, Any] = {}


class VectorMatch(BaseModel):
    id: str
    score: float
    metadata: Optional[Dict[str, Any]] = None


def _match_condition(value: Any, condition: Any) -> bool:
    if not isinstance(condition, dict):
        return value == condition

    for op, operand in condition.items():
        if op == "$eq":
            ok = value == operand
        elif op == "$ne":
            ok = value != operand
        elif op == "$in":
            ok = value in operand
        elif op == "$nin":
            ok = value not in operand
        else:
            raise VectorStoreError(f"Unsupported filter operator: {op}")
        if not ok:
            return False
    return True


def matches_filter(metadata: Dict[str, Any], metadata_filter: Optional[Dict[str, Any]]) -> bool:
    """Evaluate a Pinecone-style metadata filter (equality, $eq, $ne, $in, $nin)."""
    if not metadata_filter:
        return True
    return all(
        _match_condition(metadata.get(field), condition)
        for field, condition in metadata_filter.items()
    )


def normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


class FaissVectorStore:
    """
    Cosine-similarity store over a flat inner-product index.

    String keys map to int64 FAISS ids so that re-upserting a key replaces
    its vector. Mutations are serialised under an asyncio lock.
    """

    def __init__(self, dimensions: int, index_path: Optional[Path] = None):
        self.dimensions = dimensions
        self.index_path = Path(index_path) if index_path else None
        self.index = self._create_index(dimensions)
        self.key_to_id: Dict[str, int] = {}
        self.records: Dict[int, Dict[str, Any]] = {}  # FAISS id -> {key, metadata}
        self.next_id = 0
        self._lock = asyncio.Lock()

    @staticmethod
    def _create_index(dimensions: int) -> faiss.Index:
        index = faiss.IndexIDMap2(faiss.IndexFlatIP(dimensions))
        logger.info(f"Created flat IP index with dimensions={dimensions}")
        return index

    def _as_matrix(self, vectors: List[List[float]]) -> np.ndarray:
        matrix = np.asarray(vectors, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[1] != self.dimensions:
            raise VectorStoreError(
                f"Vectors must have {self.dimensions} dimensions, got shape {matrix.shape}"
            )
        return normalize(matrix)

    def _remove_key(self, key: str) -> None:
        faiss_id = self.key_to_id.pop(key, None)
        if faiss_id is None:
            return
        self.index.remove_ids(np.array([faiss_id], dtype=np.int64))
        self.records.pop(faiss_id, None)

    def _rollback(self, added: List[int], replaced: List[tuple]) -> None:
        """Undo a partial upsert: drop the new ids and restore replaced vectors."""
        if added:
            self.index.remove_ids(np.array(added, dtype=np.int64))
        for faiss_id in added:
            record = self.records.pop(faiss_id, None)
            if record and self.key_to_id.get(record["key"]) == faiss_id:
                del self.key_to_id[record["key"]]

        for key, faiss_id, vector, record in replaced:
            self.index.add_with_ids(vector.reshape(1, -1), np.array([faiss_id], dtype=np.int64))
            self.key_to_id[key] = faiss_id
            self.records[faiss_id] = record
        logger.warning(f"Rolled back upsert of {len(added)} vectors ({self.index.ntotal} total)")

    async def upsert(self, entries: List[VectorEntry]) -> int:
        """
        Insert or replace entries by id. All-zero vectors are skipped.

        The in-memory index only keeps the change if it was persisted.

        Returns:
            Number of vectors written

        Raises:
            VectorStoreError: on a dimension mismatch
            VectorStoreUnavailable: if the index cannot be persisted
        """
        entries = [e for e in entries if np.any(np.asarray(e.values, dtype=np.float32))]
        # Last entry wins for a repeated key
        entries = list({e.id: e for e in entries}.values())
        if not entries:
            return 0

        matrix = self._as_matrix([e.values for e in entries])

        async with self._lock:
            ids: List[int] = []
            replaced = []
            try:
                for entry in entries:
                    old_id = self.key_to_id.get(entry.id)
                    if old_id is not None:
                        replaced.append((entry.id, old_id, self.index.reconstruct(old_id), self.records[old_id]))
                        self._remove_key(entry.id)
                    faiss_id = self.next_id
                    self.next_id += 1
                    self.key_to_id[entry.id] = faiss_id
                    self.records[faiss_id] = {"key": entry.id, "metadata": dict(entry.metadata)}
                    ids.append(faiss_id)

                self.index.add_with_ids(matrix, np.array(ids, dtype=np.int64))
                logger.info(f"Upserted {len(entries)} vectors ({self.index.ntotal} total)")

                if self.index_path is not None:
                    await asyncio.to_thread(self.save)
            except (VectorStoreError, RuntimeError):
                self._rollback(ids, replaced)
                raise

        return len(entries)

    async def query(
        self,
        vector: List[float],
        top_k: int = 10,
        include_metadata: bool = True,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        """Rank stored vectors by cosine similarity to `vector`."""
        if not np.any(np.asarray(vector, dtype=np.float32)):
            return []
        query = self._as_matrix([vector])

        async with self._lock:
            total = self.index.ntotal
            if total == 0:
                return []
            # Filters are applied after the search, so scan everything when filtering
            k = total if metadata_filter else min(top_k, total)
            scores, ids = self.index.search(query, k)

            matches = []
            for score, faiss_id in zip(scores[0], ids[0]):
                if faiss_id == -1:
                    continue
                record = self.records.get(int(faiss_id))
                if record is None or not matches_filter(record["metadata"], metadata_filter):
                    continue
                matches.append(VectorMatch(
                    id=record["key"],
                    score=float(min(1.0, max(-1.0, score))),
                    metadata=dict(record["metadata"]) if include_metadata else None,
                ))
                if len(matches) >= top_k:
                    break

        return matches

    def save(self) -> None:
        """Write the index and its id/metadata map to disk."""
        if self.index_path is None:
            raise VectorStoreError("No index path configured")
        try:
            self.index_path.mkdir(parents=True, exist_ok=True)
            faiss.write_index(self.index, str(self.index_path / INDEX_FILE))
            with open(self.index_path / METADATA_FILE, "w") as f:
                json.dump({
                    "dimensions": self.dimensions,
                    "next_id": self.next_id,
                    "records": {str(k): v for k, v in self.records.items()},
                }, f)
        except (OSError, RuntimeError) as e:
            logger.error(f"Failed to save FAISS index: {e}")
            raise VectorStoreUnavailable(f"Failed to save FAISS index: {e}", original_error=e) from e

        logger.info(f"Saved FAISS index with {self.index.ntotal} vectors to {self.index_path}")

    def load(self) -> bool:
        """Load an existing index from disk. Returns False if none exists."""
        if self.index_path is None:
            return False
        index_file = self.index_path / INDEX_FILE
        metadata_file = self.index_path / METADATA_FILE
        if not index_file.exists() or not metadata_file.exists():
            logger.info("No existing FAISS index found")
            return False

        try:
            index = faiss.read_index(str(index_file))
            with open(metadata_file, "r") as f:
                state = json.load(f)
        except (OSError, RuntimeError, ValueError) as e:
            logger.error(f"Failed to load FAISS index: {e}")
            raise VectorStoreUnavailable(f"Failed to load FAISS index: {e}", original_error=e) from e

        if state.get("dimensions") != self.dimensions:
            raise VectorStoreError(
                f"Stored index has {state.get('dimensions')} dimensions, expected {self.dimensions}"
            )

        self.index = index
        self.next_id = state["next_id"]
        self.records = {int(k): v for k, v in state["records"].items()}
        self.key_to_id = {v["key"]: k for k, v in self.records.items()}
        logger.info(f"Loaded FAISS index with {self.index.ntotal} vectors")
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get index statistics."""
        documents = {r["metadata"].get("documentId") for r in self.records.values()}
        return {
            "total_vectors": self.index.ntotal,
            "index_type": type(self.index).__name__,
            "dimensions": self.dimensions,
            "documents": len(documents - {None}),
            "index_path": str(self.index_path) if self.index_path else None,
        }


def open_vector_store(dimensions: int, index_path: Optional[str]) -> FaissVectorStore:
    """Create a store, loading any index already saved at `index_path`."""
    store = FaissVectorStore(dimensions, Path(index_path) if index_path else None)
    store.load()
    return store
