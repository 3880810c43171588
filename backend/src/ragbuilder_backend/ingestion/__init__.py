"""Ingestion stages: cleaning, chunking, embedding and indexing."""

from .chunking import (
    ChunkingConfig,
    ChunkingStats,
    ChunkingStrategy,
    ValidationReport,
    calculate_chunking_stats,
    chunk_text,
    detect_content_type,
    validate_chunking_config,
)
from .cleaning import CleaningOptions, clean_text
from .embedding import EMBEDDING_MODELS, EmbeddingConfig, EmbeddingGateway, build_embedding_client
from .models import Chunk, ChunkMetadata, Document, ScoredChunk
from .stores import RetrievalIndex, VectorStore

__all__ = [
    "Chunk",
    "ChunkMetadata",
    "ChunkingConfig",
    "ChunkingStats",
    "ChunkingStrategy",
    "CleaningOptions",
    "Document",
    "EMBEDDING_MODELS",
    "EmbeddingConfig",
    "EmbeddingGateway",
    "RetrievalIndex",
    "ScoredChunk",
    "ValidationReport",
    "VectorStore",
    "build_embedding_client",
    "calculate_chunking_stats",
    "chunk_text",
    "clean_text",
    "detect_content_type",
    "validate_chunking_config",
]
