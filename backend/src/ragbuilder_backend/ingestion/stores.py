"""In-memory vector index ranked by cosine similarity."""

from __future__ import annotations

import logging
from typing import Dict, List, Protocol, Sequence

import numpy as np

from ..errors import PreconditionError
from .models import Chunk, ScoredChunk

LOGGER = logging.getLogger(__name__)


class VectorStore(Protocol):
    """Storage seam for embedded chunks; an external vector database can implement it."""

    def upsert(self, chunks: Sequence[Chunk]) -> None:
        ...

    def top_k(self, query_vector: Sequence[float], k: int) -> List[ScoredChunk]:
        ...


class RetrievalIndex:
    """Keep embedded chunks in insertion order and rank them against a query vector.

    Ties keep insertion order, which makes retrieval deterministic for a
    fixed set of vectors.
    """

    def __init__(self, chunks: Sequence[Chunk] | None = None) -> None:
        self._chunks: List[Chunk] = []
        self._positions: Dict[str, int] = {}
        self._matrix: np.ndarray | None = None
        if chunks:
            self.upsert(chunks)

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> List[Chunk]:
        return list(self._chunks)

    # ------------------------------------------------------------------
    def upsert(self, chunks: Sequence[Chunk]) -> None:
        incoming = list(chunks)
        width = len(self._chunks[0].embedding or []) if self._chunks else None
        for chunk in incoming:
            if chunk.embedding is None:
                raise PreconditionError(f"Chunk {chunk.id} has no embedding")
            if width is None:
                width = len(chunk.embedding)
            elif len(chunk.embedding) != width:
                raise PreconditionError(
                    f"Chunk {chunk.id} has {len(chunk.embedding)} dimensions, index holds {width}"
                )

        for chunk in incoming:
            position = self._positions.get(chunk.id)
            if position is None:
                self._positions[chunk.id] = len(self._chunks)
                self._chunks.append(chunk)
            else:
                self._chunks[position] = chunk
        self._matrix = None

    def top_k(self, query_vector: Sequence[float], k: int) -> List[ScoredChunk]:
        if k <= 0 or not self._chunks:
            return []

        scores = self._score(np.asarray(query_vector, dtype=float))
        # sorted() is stable, so equal scores keep insertion order
        order = sorted(range(len(self._chunks)), key=lambda idx: -scores[idx])
        return [ScoredChunk(chunk=self._chunks[idx], score=float(scores[idx])) for idx in order[:k]]

    # ------------------------------------------------------------------
    def _score(self, query: np.ndarray) -> np.ndarray:
        matrix = self._vectors()
        if query.ndim != 1 or query.shape[0] != matrix.shape[1]:
            LOGGER.warning(
                "Query vector has %d dimensions, index holds %d; scoring as 0",
                query.shape[0] if query.ndim else 0,
                matrix.shape[1],
            )
            return np.zeros(matrix.shape[0])

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        with np.errstate(divide="ignore", invalid="ignore"):
            return np.where(norms > 0, dots / norms, 0.0)

    def _vectors(self) -> np.ndarray:
        if self._matrix is None:
            self._matrix = np.asarray([chunk.embedding for chunk in self._chunks], dtype=float)
        return self._matrix


__all__ = ["RetrievalIndex", "VectorStore"]
