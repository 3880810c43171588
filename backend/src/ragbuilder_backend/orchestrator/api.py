"""Serialization helpers for exposing pipeline engines via HTTP."""

from __future__ import annotations

from typing import Any, Dict

from ..compatibility import CompatibilityReport
from .pipeline import IngestResult, PipelineEngine, PipelineStatus


def serialize_status(status: PipelineStatus) -> Dict[str, Any]:
    return {
        "isReady": status.is_ready,
        "state": status.state.value,
        "documentsIngested": status.documents_ingested,
        "chunksIndexed": status.chunks_indexed,
        "lastActivity": status.last_activity.isoformat(),
        "errors": list(status.errors),
        "warnings": list(status.warnings),
    }


def serialize_pipeline(engine: PipelineEngine) -> Dict[str, Any]:
    """Summary of a pipeline's configuration plus its current status."""

    config = engine.config
    return {
        "id": config.id,
        "name": config.name,
        "chunking": {
            "strategy": config.chunking.strategy.value,
            "chunkSize": config.chunking.chunk_size,
            "chunkOverlap": config.chunking.chunk_overlap,
        },
        "embedding": {
            "provider": config.embedding.provider,
            "model": config.embedding.model,
            "dimensions": config.embedding.dimensions,
        },
        "generation": {"provider": config.generation.provider, "model": config.generation.model},
        "retrieval": {"topK": config.retrieval.top_k},
        "status": serialize_status(engine.get_status()),
    }


def serialize_ingest_result(result: IngestResult) -> Dict[str, Any]:
    return {
        "documentsProcessed": result.documents,
        "chunksCreated": result.chunks,
        "warnings": list(result.warnings),
        "timingsMs": {stage: value * 1000.0 for stage, value in result.timings.items()},
    }


def serialize_compatibility(report: CompatibilityReport) -> Dict[str, Any]:
    return {
        "isCompatible": report.is_compatible,
        "errors": list(report.errors),
        "warnings": list(report.warnings),
        "recommendations": list(report.recommendations),
    }


__all__ = ["serialize_compatibility", "serialize_ingest_result", "serialize_pipeline", "serialize_status"]
