"""Cross-checks between chunking parameters and the embedding model they feed."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List

from .ingestion.chunking import ChunkingConfig, ChunkingStrategy
from .ingestion.embedding import EmbeddingConfig
from .text_metrics import CHARS_PER_TOKEN, estimate_tokens_for_size

# Average document length assumed by cost estimates, in characters.
AVERAGE_DOCUMENT_LENGTH = 5000


@dataclass(slots=True)
class CompatibilityReport:
    is_compatible: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ChunkSizeRecommendation:
    recommended: int
    minimum: int
    maximum: int


@dataclass(frozen=True, slots=True)
class CostEstimate:
    tokens_per_document: int
    total_tokens_per_month: int
    estimated_cost: float


def validate_embedding_compatibility(
    chunking: ChunkingConfig, embedding: EmbeddingConfig
) -> CompatibilityReport:
    """Check that chunks produced by ``chunking`` fit the embedding model."""

    report = CompatibilityReport()
    estimated = estimate_tokens_for_size(chunking.chunk_size)

    if estimated > embedding.max_tokens:
        report.errors.append(
            f"Chunk size (~{estimated} tokens) exceeds embedding model limit "
            f"({embedding.max_tokens} tokens)"
        )
        report.recommendations.append(
            f"Reduce chunk size to {math.floor(embedding.max_tokens * 0.8 * CHARS_PER_TOKEN)} "
            "characters or less"
        )
    elif estimated > embedding.max_tokens * 0.8:
        report.warnings.append(
            "Chunk size is close to embedding model limit. Consider reducing for safety margin."
        )

    if chunking.chunk_size > 0:
        overlap_ratio = chunking.chunk_overlap / chunking.chunk_size
        if overlap_ratio > 0.5:
            report.warnings.append(
                f"High overlap ratio ({round(overlap_ratio * 100)}%) may lead to redundant embeddings"
            )

    if chunking.strategy is ChunkingStrategy.SEMANTIC and embedding.dimensions < 768:
        report.warnings.append(
            "Semantic chunking works best with higher-dimensional embeddings (768+ dimensions)"
        )
    if chunking.strategy is ChunkingStrategy.FIXED and embedding.dimensions > 1536:
        report.recommendations.append(
            "Consider using recursive or semantic chunking with high-dimensional embeddings "
            "for better context preservation"
        )

    report.is_compatible = not report.errors
    return report


def get_optimal_chunk_size(embedding: EmbeddingConfig) -> ChunkSizeRecommendation:
    safe_tokens = math.floor(embedding.max_tokens * 0.75)
    return ChunkSizeRecommendation(
        recommended=min(safe_tokens * CHARS_PER_TOKEN, 2000),
        minimum=100,
        maximum=embedding.max_tokens * CHARS_PER_TOKEN,
    )


def estimate_embedding_cost(
    chunking: ChunkingConfig, embedding: EmbeddingConfig, documents_per_month: int = 1000
) -> CostEstimate:
    """Rough monthly embedding spend for documents of average length."""

    stride = max(1, chunking.chunk_size - chunking.chunk_overlap)
    chunks_per_document = max(1, math.ceil((AVERAGE_DOCUMENT_LENGTH - chunking.chunk_overlap) / stride))
    tokens_per_document = chunks_per_document * estimate_tokens_for_size(chunking.chunk_size)
    total_tokens = tokens_per_document * max(0, documents_per_month)
    return CostEstimate(
        tokens_per_document=tokens_per_document,
        total_tokens_per_month=total_tokens,
        estimated_cost=total_tokens / 1_000_000 * embedding.cost_per_1m_tokens,
    )


__all__ = [
    "AVERAGE_DOCUMENT_LENGTH",
    "ChunkSizeRecommendation",
    "CompatibilityReport",
    "CostEstimate",
    "estimate_embedding_cost",
    "get_optimal_chunk_size",
    "validate_embedding_compatibility",
]
