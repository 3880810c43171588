"""Pipeline engine: LangGraph ingest graph plus streamed retrieval-augmented answers."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, List, Sequence

from langgraph.graph import END, StateGraph

from ..config import get_settings
from ..errors import ConfigurationError, PreconditionError, ProviderError
from ..ingestion.chunking import chunk_text, validate_chunking_config
from ..ingestion.cleaning import clean_text
from ..ingestion.embedding import EmbeddingGateway, build_embedding_client
from ..ingestion.models import Chunk, Document, ScoredChunk
from ..ingestion.stores import RetrievalIndex, VectorStore
from ..logging_utils import log_event
from ..metrics import record_event, record_latency, timed
from ..providers.embeddings import EmbeddingClient
from ..providers.llm import (
    ExtractiveGenerator,
    GeminiChatGenerator,
    OpenAIChatGenerator,
    TextGenerator,
    build_prompt,
)
from ..providers.rate_limit import RateLimiter, get_rate_limiter
from .config import GenerationConfig, PipelineConfig
from .evaluation import EvaluationReport, EvaluationResult, EvaluationSample, Evaluator, RetrievalEvaluator
from .streaming import FragmentStream

LOGGER = logging.getLogger(__name__)

NOT_READY_MESSAGE = "Pipeline not ready. Please ingest documents first."
ERROR_FRAGMENT_PREFIX = "I apologize, but I encountered an error while generating a response"


class PipelineState(str, Enum):
    CREATED = "created"
    INGESTING = "ingesting"
    READY = "ready"
    QUERYING = "querying"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PipelineStatus:
    is_ready: bool = False
    documents_ingested: int = 0
    last_activity: datetime = field(default_factory=_utcnow)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    state: PipelineState = PipelineState.CREATED
    chunks_indexed: int = 0


@dataclass(slots=True)
class IngestResult:
    documents: int
    chunks: int
    warnings: List[str]
    timings: Dict[str, float]


def build_generator(config: GenerationConfig) -> TextGenerator:
    """Select the generation client; ``GENERATION_BACKEND=offline`` overrides every config."""

    settings = get_settings()
    backend = "offline" if settings.generation_backend.lower() == "offline" else config.provider
    if backend in {"offline", "extractive"}:
        return ExtractiveGenerator()
    if backend == "openai":
        api_key = config.api_key or settings.openai_api_key
        if not api_key:
            raise ConfigurationError(
                "OpenAI API key is required", ["OPENAI_API_KEY must be set for OpenAI generation"]
            )
        return OpenAIChatGenerator(config.model, api_key)
    if backend == "google":
        api_key = config.api_key or settings.google_api_key
        if not api_key:
            raise ConfigurationError(
                "Google API key is required", ["GOOGLE_API_KEY must be set for Gemini generation"]
            )
        return GeminiChatGenerator(config.model, api_key)
    raise ConfigurationError(
        f"Unsupported generation provider: {config.provider}",
        ["Generation provider must be one of openai, google, offline"],
    )


class PipelineEngine:
    """Run ingest and query for one configured pipeline.

    Only one ingest runs at a time; a second caller is rejected rather than
    queued. Queries read whichever index was last committed, so they keep
    working while a re-ingest builds its replacement.
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        embedding_client: EmbeddingClient | None = None,
        generator: TextGenerator | None = None,
        rate_limiter: RateLimiter | None = None,
        store_factory: Callable[[], VectorStore] = RetrievalIndex,
    ) -> None:
        report = validate_chunking_config(config.chunking, config.embedding)
        if report.errors:
            raise ConfigurationError("Invalid chunking configuration", report.errors)

        settings = get_settings()
        self.config = config
        self._status = PipelineStatus()
        self._gateway = EmbeddingGateway(
            config.embedding,
            embedding_client or build_embedding_client(config.embedding),
            rate_limiter=rate_limiter,
            on_fallback=self._add_warning,
        )
        self._generator = generator or build_generator(config.generation)
        self._generation_limiter = rate_limiter or get_rate_limiter(config.generation.provider)
        self._generation_timeout = settings.generation_timeout
        self._buffer_size = settings.stream_buffer_size
        self._idle_timeout = settings.stream_idle_timeout
        self._store_factory = store_factory
        self._index: VectorStore | None = None
        self._ingest_lock = asyncio.Lock()
        self._active_queries = 0
        self._graph = self._build_graph()

    @property
    def id(self) -> str:
        return self.config.id

    def get_status(self) -> PipelineStatus:
        return replace(self._status, errors=list(self._status.errors), warnings=list(self._status.warnings))

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------
    async def ingest(self, documents: Sequence[Document]) -> IngestResult:
        docs = list(documents)
        if not docs:
            raise PreconditionError("No documents provided for ingestion")
        counts = Counter(document.id for document in docs)
        duplicates = sorted(doc_id for doc_id, count in counts.items() if count > 1)
        if duplicates:
            raise PreconditionError(f"Duplicate document ids in ingest: {', '.join(duplicates)}")
        if self._ingest_lock.locked():
            raise PreconditionError("ingest already in progress")

        async with self._ingest_lock:
            previous_state = self._status.state
            self._status.state = PipelineState.INGESTING
            self._touch()
            start = time.perf_counter()
            try:
                state = await self._graph.ainvoke(
                    {"documents": docs, "warnings": [], "_timing_entries": []}
                )
            except PreconditionError:
                self._status.state = previous_state
                raise
            except Exception as exc:
                self._status.state = PipelineState.ERROR
                self._status.is_ready = False
                self._status.errors.append(f"Ingestion failed: {exc}")
                LOGGER.exception("Ingestion failed for pipeline %s", self.id)
                raise

            duration = time.perf_counter() - start
            record_latency("ingest", duration)

            self._index = state["index"]
            chunks: List[Chunk] = state["chunks"]
            self._status.documents_ingested = len(docs)
            self._status.chunks_indexed = len(chunks)
            self._status.is_ready = True
            self._status.warnings.extend(state["warnings"])
            self._settle_state()
            self._touch()

            timings = {stage: value for stage, value in state["_timing_entries"]}
            timings["total"] = duration
            log_event(
                "pipeline.ingest",
                {"pipeline_id": self.id, "documents": len(docs), "chunks": len(chunks), "timings": timings},
            )
            LOGGER.info("Pipeline %s ingested %d documents into %d chunks", self.id, len(docs), len(chunks))
            return IngestResult(
                documents=len(docs), chunks=len(chunks), warnings=list(state["warnings"]), timings=timings
            )

    def _build_graph(self):
        graph = StateGraph(dict)
        graph.add_node("clean", self._node_clean)
        graph.add_node("chunk", self._node_chunk)
        graph.add_node("embed", self._node_embed)
        graph.add_node("index", self._node_index)

        graph.set_entry_point("clean")
        graph.add_edge("clean", "chunk")
        graph.add_edge("chunk", "embed")
        graph.add_edge("embed", "index")
        graph.add_edge("index", END)
        return graph.compile()

    async def _node_clean(self, state: dict) -> dict:
        options = self.config.ingestion.cleaning
        documents: List[Document] = state["documents"]
        if not options.is_noop:
            documents = [document.with_content(clean_text(document.content, options)) for document in documents]
        base = dict(state)
        base["documents"] = documents
        return base

    async def _node_chunk(self, state: dict) -> dict:
        start = time.perf_counter()
        chunks: List[Chunk] = []
        warnings = list(state.get("warnings", []))
        with timed("chunking"):
            for document in state["documents"]:
                produced = chunk_text(document.content, self.config.chunking, document_id=document.id)
                if not produced:
                    warnings.append(f"Document {document.name} produced no chunks")
                chunks.extend(produced)
        if not chunks:
            raise PreconditionError("Documents produced no chunks to index")

        base = dict(state)
        base["chunks"] = chunks
        base["warnings"] = warnings
        base["_timing_entries"] = self._timing_entries(state, "chunking", time.perf_counter() - start)
        return base

    async def _node_embed(self, state: dict) -> dict:
        start = time.perf_counter()
        chunks: List[Chunk] = state["chunks"]
        vectors = await self._gateway.embed_batch([chunk.content for chunk in chunks])
        base = dict(state)
        base["chunks"] = [chunk.with_embedding(vector) for chunk, vector in zip(chunks, vectors)]
        base["_timing_entries"] = self._timing_entries(state, "embedding", time.perf_counter() - start)
        return base

    async def _node_index(self, state: dict) -> dict:
        start = time.perf_counter()
        index = self._store_factory()
        index.upsert(state["chunks"])
        base = dict(state)
        base["index"] = index
        base["_timing_entries"] = self._timing_entries(state, "indexing", time.perf_counter() - start)
        return base

    @staticmethod
    def _timing_entries(state: dict, stage: str, duration: float) -> List[tuple]:
        entries = list(state.get("_timing_entries", []))
        entries.append((stage, duration))
        return entries

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------
    def query(self, question: str) -> FragmentStream:
        """Return a stream of answer fragments for ``question``.

        Raises :class:`PreconditionError` before any fragment when nothing has
        been ingested yet. Close the stream (``async with`` or ``aclose()``)
        when stopping early; a consumer that neither reads nor closes for
        ``STREAM_IDLE_TIMEOUT`` seconds is treated as gone and generation stops.
        """

        index = self._index
        if index is None or not self._status.is_ready:
            raise PreconditionError(NOT_READY_MESSAGE)
        if not question or not question.strip():
            raise PreconditionError("Question must not be empty")
        return FragmentStream(
            lambda: self._answer(index, question),
            buffer_size=self._buffer_size,
            idle_timeout=self._idle_timeout,
        )

    async def _retrieve(self, index: VectorStore, question: str) -> List[ScoredChunk]:
        with timed("retrieval"):
            query_vector = await self._gateway.embed_query(question)
            return index.top_k(query_vector, self.config.retrieval.top_k)

    async def _answer(
        self, index: VectorStore, question: str, hits: List[ScoredChunk] | None = None
    ) -> AsyncIterator[str]:
        self._begin_query()
        start = time.perf_counter()
        try:
            try:
                if hits is None:
                    hits = await self._retrieve(index, question)
                context = "\n\n".join(hit.chunk.content for hit in hits)
                await self._generation_limiter.acquire()
                async with aclosing(self._generate(build_prompt(context, question))) as fragments:
                    async for fragment in fragments:
                        yield fragment
            except Exception as exc:
                LOGGER.warning("Query failed for pipeline %s: %s", self.id, exc)
                self._status.errors.append(f"Query failed: {exc}")
                record_event("generation_error")
                yield f"{ERROR_FRAGMENT_PREFIX}: {exc}"
        finally:
            record_latency("query", time.perf_counter() - start)
            self._end_query()

    async def _generate(self, prompt: str) -> AsyncIterator[str]:
        generation = self.config.generation
        iterator = self._generator.generate(
            prompt,
            system_prompt=generation.system_prompt,
            temperature=generation.temperature,
            max_tokens=generation.max_tokens,
        )
        start = time.perf_counter()
        # one deadline for the whole provider call, not per fragment
        deadline = start + self._generation_timeout
        try:
            while True:
                remaining = deadline - time.perf_counter()
                try:
                    if remaining <= 0:
                        raise asyncio.TimeoutError
                    fragment = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as exc:
                    raise ProviderError(
                        f"generation timed out after {self._generation_timeout:.1f}s", "generation"
                    ) from exc
                if fragment:
                    yield fragment
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
            record_latency("generation", time.perf_counter() - start)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    async def evaluate(
        self, test_questions: Sequence[str], evaluator: Evaluator | None = None
    ) -> EvaluationReport:
        questions = [question for question in test_questions if question and question.strip()]
        if not questions:
            raise PreconditionError("No test questions provided for evaluation")
        index = self._index
        if index is None or not self._status.is_ready:
            raise PreconditionError(NOT_READY_MESSAGE)

        scorer = evaluator or RetrievalEvaluator()
        results: List[EvaluationResult] = []
        for question in questions:
            start = time.perf_counter()
            hits = await self._retrieve(index, question)
            stream = FragmentStream(
                lambda q=question, h=hits: self._answer(index, q, h),
                buffer_size=self._buffer_size,
                idle_timeout=self._idle_timeout,
            )
            answer = await stream.text()
            sample = EvaluationSample(
                question=question,
                answer=answer,
                contexts=[hit.chunk.content for hit in hits],
                context_scores=[hit.score for hit in hits],
                latency_ms=(time.perf_counter() - start) * 1000.0,
            )
            results.append(EvaluationResult(question=question, answer=answer, metrics=scorer.score(sample)))

        report = EvaluationReport.from_results(results)
        log_event("pipeline.evaluate", {"pipeline_id": self.id, "questions": len(results), "averages": report.averages})
        return report

    # ------------------------------------------------------------------
    def _add_warning(self, message: str) -> None:
        if message not in self._status.warnings:
            self._status.warnings.append(message)

    def _touch(self) -> None:
        self._status.last_activity = _utcnow()

    def _begin_query(self) -> None:
        self._active_queries += 1
        self._touch()
        if self._status.state is PipelineState.READY:
            self._status.state = PipelineState.QUERYING

    def _end_query(self) -> None:
        self._active_queries = max(0, self._active_queries - 1)
        self._touch()
        if self._status.state is PipelineState.QUERYING and self._active_queries == 0:
            self._status.state = PipelineState.READY

    def _settle_state(self) -> None:
        self._status.state = PipelineState.QUERYING if self._active_queries else PipelineState.READY


__all__ = [
    "ERROR_FRAGMENT_PREFIX",
    "IngestResult",
    "NOT_READY_MESSAGE",
    "PipelineEngine",
    "PipelineState",
    "PipelineStatus",
    "build_generator",
]
