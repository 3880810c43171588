"""Dataclasses shared across ingestion and retrieval layers."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Sequence


@dataclass(frozen=True, slots=True)
class Document:
    """Raw document handed to a pipeline for ingestion."""

    id: str
    name: str
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_content(self, content: str) -> "Document":
        return replace(self, content=content)


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    """Positional and strategy metadata attached to every chunk."""

    document_id: str
    chunk_index: int
    start_offset: int
    end_offset: int
    token_estimate: int
    source_strategy: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def as_record(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "token_estimate": self.token_estimate,
            "source_strategy": self.source_strategy,
            "fields": dict(self.fields),
        }


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous slice of one document plus its metadata."""

    id: str
    content: str
    metadata: ChunkMetadata
    embedding: List[float] | None = field(default=None)

    @property
    def document_id(self) -> str:
        return self.metadata.document_id

    def with_embedding(self, embedding: Sequence[float]) -> "Chunk":
        return replace(self, embedding=list(embedding))

    def as_record(self, *, include_embedding: bool = False) -> Dict[str, Any]:
        """Serialize chunk into a JSON-friendly payload."""

        record: Dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata.as_record(),
        }
        if include_embedding:
            record["embedding"] = list(self.embedding) if self.embedding is not None else None
        return record


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    """Retrieval hit: a stored chunk and its cosine similarity to the query."""

    chunk: Chunk
    score: float


__all__ = ["Chunk", "ChunkMetadata", "Document", "ScoredChunk"]
