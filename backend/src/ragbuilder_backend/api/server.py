"""FastAPI application exposing pipeline creation, ingestion and streamed queries."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .. import configure_logging
from ..compatibility import get_optimal_chunk_size, validate_embedding_compatibility
from ..errors import ConfigurationError, NotFoundError, PipelineError, PreconditionError, ProviderError
from ..ingestion.chunking import calculate_chunking_stats, chunk_text, detect_content_type, validate_chunking_config
from ..ingestion.models import Document
from ..logging_utils import log_event
from ..metrics import event_summary, latency_summary
from ..orchestrator import (
    PipelineConfig,
    PipelineService,
    serialize_compatibility,
    serialize_ingest_result,
    serialize_pipeline,
    serialize_status,
    validate_pipeline_config,
)

LOGGER = logging.getLogger(__name__)

_STATUS_CODES = {
    ConfigurationError: 400,
    NotFoundError: 404,
    PreconditionError: 409,
    ProviderError: 502,
}


class CreatePipelineRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    configuration: Dict[str, Any] = Field(..., description="Pipeline stages as exported by the builder UI.")
    api_key: str | None = Field(default=None, alias="apiKey")


class DocumentPayload(BaseModel):
    id: str | None = None
    name: str = Field(default="document")
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IngestRequest(BaseModel):
    documents: List[DocumentPayload]


class QueryRequest(BaseModel):
    question: str = Field(..., min_length=1)


class EvaluateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    test_questions: List[str] = Field(..., alias="testQuestions")


class ChunkingPreviewRequest(BaseModel):
    text: str
    chunking: Dict[str, Any] = Field(default_factory=dict)
    embedding: Dict[str, Any] | None = None


def _error_response(exc: PipelineError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    content: Dict[str, Any] = {"success": False, "error": exc.message, "stage": exc.stage}
    if isinstance(exc, ConfigurationError):
        content["details"] = list(exc.errors)
    return JSONResponse(status_code=status_code, content=content)


def _with_api_key(configuration: Dict[str, Any], api_key: str | None) -> Dict[str, Any]:
    if not api_key:
        return configuration
    payload = dict(configuration)
    target = dict(payload.get("stages") or {}) if "stages" in payload else payload
    for stage in ("embedding", "generation"):
        section = dict(target.get(stage) or {})
        section.setdefault("apiKey", api_key)
        target[stage] = section
    if "stages" in payload:
        payload["stages"] = target
    return payload


def create_app(service: PipelineService | None = None) -> FastAPI:
    configure_logging()

    app = FastAPI(title="RAG Pipeline Builder Backend", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    pipelines = service or PipelineService()
    app.state.pipelines = pipelines

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        LOGGER.info("%s %s failed at %s: %s", request.method, request.url.path, exc.stage, exc.message)
        return _error_response(exc)

    @app.get("/healthz", tags=["system"])
    def healthcheck() -> Dict[str, Any]:
        return {"status": "ok", "pipelines": len(pipelines.list_pipelines())}

    # ------------------------------------------------------------------
    @app.post("/v1/pipelines", tags=["pipelines"])
    def create_pipeline(payload: CreatePipelineRequest) -> Dict[str, Any]:
        config = PipelineConfig.from_dict(_with_api_key(payload.configuration, payload.api_key))
        validation = validate_pipeline_config(config)
        pipeline_id = pipelines.create_pipeline(config)
        return {
            "success": True,
            "data": {
                "pipelineId": pipeline_id,
                "status": "created",
                "warnings": validation.warnings,
                "recommendations": validation.recommendations,
            },
        }

    @app.get("/v1/pipelines", tags=["pipelines"])
    def list_pipelines() -> Dict[str, Any]:
        return {"success": True, "data": [serialize_pipeline(engine) for engine in pipelines.list_pipelines()]}

    @app.get("/v1/pipelines/{pipeline_id}", tags=["pipelines"])
    def get_pipeline(pipeline_id: str) -> Dict[str, Any]:
        return {"success": True, "data": serialize_pipeline(pipelines.get_pipeline(pipeline_id))}

    @app.delete("/v1/pipelines/{pipeline_id}", tags=["pipelines"])
    def delete_pipeline(pipeline_id: str) -> Dict[str, Any]:
        pipelines.delete_pipeline(pipeline_id)
        return {"success": True, "data": {"pipelineId": pipeline_id, "status": "deleted"}}

    @app.get("/v1/pipelines/{pipeline_id}/status", tags=["pipelines"])
    def pipeline_status(pipeline_id: str) -> Dict[str, Any]:
        return {"success": True, "data": serialize_status(pipelines.get_status(pipeline_id))}

    # ------------------------------------------------------------------
    @app.post("/v1/pipelines/{pipeline_id}/ingest", tags=["pipelines"])
    async def ingest(pipeline_id: str, payload: IngestRequest) -> Dict[str, Any]:
        documents = [
            Document(
                id=item.id or f"doc-{uuid.uuid4().hex[:8]}",
                name=item.name,
                content=item.content,
                metadata=dict(item.metadata),
            )
            for item in payload.documents
        ]
        result = await pipelines.ingest(pipeline_id, documents)
        return {
            "success": True,
            "data": {
                **serialize_ingest_result(result),
                "status": serialize_status(pipelines.get_status(pipeline_id)),
            },
        }

    @app.post("/v1/pipelines/{pipeline_id}/query", tags=["pipelines"])
    async def query(pipeline_id: str, payload: QueryRequest) -> StreamingResponse:
        stream = pipelines.query(pipeline_id, payload.question)

        async def ndjson_lines():
            async with stream:
                try:
                    async for fragment in stream:
                        yield json.dumps({"type": "chunk", "data": fragment}, ensure_ascii=False) + "\n"
                    yield json.dumps({"type": "complete"}) + "\n"
                except Exception as exc:
                    LOGGER.exception("Query stream failed for pipeline %s", pipeline_id)
                    yield json.dumps({"type": "error", "error": str(exc)}, ensure_ascii=False) + "\n"

        log_event("pipeline.query", {"pipeline_id": pipeline_id, "question_length": len(payload.question)})
        return StreamingResponse(
            ndjson_lines(),
            media_type="application/x-ndjson",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/v1/pipelines/{pipeline_id}/evaluate", tags=["pipelines"])
    async def evaluate(pipeline_id: str, payload: EvaluateRequest) -> Dict[str, Any]:
        report = await pipelines.evaluate(pipeline_id, payload.test_questions)
        return {"success": True, "data": report.as_record()}

    # ------------------------------------------------------------------
    @app.post("/v1/chunking/preview", tags=["chunking"])
    def chunking_preview(payload: ChunkingPreviewRequest) -> Dict[str, Any]:
        config = PipelineConfig.from_dict({"chunking": payload.chunking, "embedding": payload.embedding or {}})
        validation = validate_chunking_config(config.chunking, config.embedding)
        chunks = chunk_text(payload.text, config.chunking) if validation.is_valid else []
        stats = calculate_chunking_stats(chunks)
        return {
            "success": True,
            "data": {
                "chunks": [chunk.as_record() for chunk in chunks],
                "stats": {
                    "totalChunks": stats.total_chunks,
                    "avgSize": stats.avg_size,
                    "minSize": stats.min_size,
                    "maxSize": stats.max_size,
                    "totalTokens": stats.total_tokens,
                    "avgTokens": stats.avg_tokens,
                    "sizeDistribution": dict(stats.size_distribution),
                    "tokenDistribution": dict(stats.token_distribution),
                },
                "validation": {"errors": validation.errors, "warnings": validation.warnings},
                "compatibility": serialize_compatibility(
                    validate_embedding_compatibility(config.chunking, config.embedding)
                ),
                "optimalChunkSize": get_optimal_chunk_size(config.embedding).recommended,
                "contentType": detect_content_type(payload.text),
            },
        }

    # ------------------------------------------------------------------
    @app.get("/metrics/latency", tags=["metrics"])
    def latency_metrics() -> Dict[str, Any]:
        return {"latency": latency_summary(), "events": event_summary()}

    return app


app = create_app()
