import asyncio
import os
import unittest
from typing import AsyncIterator, List, Sequence
from unittest import mock

os.environ.setdefault("EMBEDDING_BACKEND", "offline")
os.environ.setdefault("GENERATION_BACKEND", "offline")

from ragbuilder_backend.config import get_settings
from ragbuilder_backend.errors import ConfigurationError, PreconditionError
from ragbuilder_backend.ingestion.chunking import ChunkingConfig
from ragbuilder_backend.ingestion.cleaning import CleaningOptions
from ragbuilder_backend.ingestion.embedding import FALLBACK_WARNING, EmbeddingConfig
from ragbuilder_backend.ingestion.models import Document
from ragbuilder_backend.orchestrator.config import IngestionConfig, PipelineConfig, RetrievalConfig
from ragbuilder_backend.orchestrator.pipeline import (
    ERROR_FRAGMENT_PREFIX,
    NOT_READY_MESSAGE,
    PipelineEngine,
    PipelineState,
)
from ragbuilder_backend.providers.embeddings import OfflineEmbeddingClient
from ragbuilder_backend.providers.llm import DEFAULT_SYSTEM_PROMPT, ExtractiveGenerator
from ragbuilder_backend.providers.rate_limit import RateLimiter

DIMENSIONS = 16

THREE_SECTIONS = (
    "# Alpha\nAlpha covers chunking strategies.\n"
    "# Beta\nBeta covers embedding models.\n"
    "# Gamma\nGamma covers retrieval and generation."
)


class FakeGenerator:
    def __init__(self, fragments: Sequence[str] = ("Answer", " text")) -> None:
        self.fragments = list(fragments)
        self.calls: List[dict] = []

    async def generate(self, prompt: str, *, system_prompt: str, temperature: float, max_tokens: int) -> AsyncIterator[str]:
        self.calls.append(
            {"prompt": prompt, "system_prompt": system_prompt, "temperature": temperature, "max_tokens": max_tokens}
        )
        for fragment in self.fragments:
            yield fragment


class FailingGenerator:
    async def generate(self, prompt: str, *, system_prompt: str, temperature: float, max_tokens: int) -> AsyncIterator[str]:
        yield "Partial"
        raise RuntimeError("model overloaded")


class HangingGenerator:
    def __init__(self) -> None:
        self.closed = asyncio.Event()

    async def generate(self, prompt: str, *, system_prompt: str, temperature: float, max_tokens: int) -> AsyncIterator[str]:
        try:
            yield "first"
            await asyncio.sleep(3600)
            yield "never"
        finally:
            self.closed.set()


class DrippingGenerator:
    """Keeps producing fragments, each well inside the timeout."""

    def __init__(self, delay: float = 0.02) -> None:
        self.delay = delay
        self.closed = asyncio.Event()

    async def generate(self, prompt: str, *, system_prompt: str, temperature: float, max_tokens: int) -> AsyncIterator[str]:
        try:
            while True:
                await asyncio.sleep(self.delay)
                yield "."
        finally:
            self.closed.set()


class FailingEmbeddingClient:
    async def embed(self, texts, model, task_type):
        raise ConnectionError("provider unreachable")


class BlockingEmbeddingClient(OfflineEmbeddingClient):
    """Offline vectors that wait for a release signal while ``blocking`` is set."""

    def __init__(self, dimensions: int) -> None:
        super().__init__(dimensions)
        self.blocking = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def embed(self, texts, model, task_type):
        if self.blocking and task_type != "RETRIEVAL_QUERY":
            self.entered.set()
            await self.release.wait()
        return await super().embed(texts, model, task_type)


def _config(strategy: str = "document", **overrides) -> PipelineConfig:
    chunking = overrides.pop("chunking", ChunkingConfig(strategy=strategy, chunk_size=1000, chunk_overlap=0))
    return PipelineConfig(
        chunking=chunking,
        embedding=EmbeddingConfig(provider="offline", model="hash", dimensions=DIMENSIONS, max_tokens=512),
        name="test pipeline",
        **overrides,
    )


class PipelineEngineTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.generator = FakeGenerator()

    def _engine(self, config: PipelineConfig | None = None, **kwargs) -> PipelineEngine:
        kwargs.setdefault("embedding_client", OfflineEmbeddingClient(DIMENSIONS))
        kwargs.setdefault("generator", self.generator)
        return PipelineEngine(config or _config(), rate_limiter=RateLimiter(1000, 1.0), **kwargs)

    async def test_query_before_ingest_is_rejected(self) -> None:
        engine = self._engine()
        with self.assertRaises(PreconditionError) as ctx:
            engine.query("What is chunking?")
        self.assertEqual(str(ctx.exception), NOT_READY_MESSAGE)
        self.assertEqual(self.generator.calls, [])
        self.assertEqual(engine.get_status().state, PipelineState.CREATED)

    async def test_ingest_one_document_into_three_chunks(self) -> None:
        engine = self._engine()
        result = await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        status = engine.get_status()
        self.assertEqual(result.chunks, 3)
        self.assertEqual(status.documents_ingested, 1)
        self.assertEqual(status.chunks_indexed, 3)
        self.assertTrue(status.is_ready)
        self.assertEqual(status.state, PipelineState.READY)
        self.assertEqual(status.warnings, [])
        self.assertIn("chunking", result.timings)
        self.assertIn("embedding", result.timings)

    async def test_query_streams_generated_answer(self) -> None:
        engine = self._engine(_config(retrieval=RetrievalConfig(top_k=2)))
        await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        answer = await engine.query("What does Beta cover?").text()

        self.assertEqual(answer, "Answer text")
        call = self.generator.calls[0]
        self.assertEqual(call["system_prompt"], DEFAULT_SYSTEM_PROMPT)
        self.assertEqual(call["max_tokens"], 1000)
        self.assertTrue(call["prompt"].startswith("Context:\n"))
        self.assertIn("Question: What does Beta cover?", call["prompt"])
        context = call["prompt"].split("\n\nQuestion:")[0]
        self.assertEqual(context.count("# "), 2)
        self.assertEqual(engine.get_status().state, PipelineState.READY)

    async def test_generation_failure_becomes_final_fragment(self) -> None:
        engine = self._engine(generator=FailingGenerator())
        await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        fragments = await engine.query("Anything?").collect()

        self.assertEqual(fragments[0], "Partial")
        self.assertTrue(fragments[-1].startswith(ERROR_FRAGMENT_PREFIX))
        self.assertIn("model overloaded", fragments[-1])
        status = engine.get_status()
        self.assertTrue(status.is_ready)
        self.assertEqual(status.state, PipelineState.READY)
        self.assertTrue(any(error.startswith("Query failed") for error in status.errors))

    async def test_generation_timeout_becomes_final_fragment(self) -> None:
        with mock.patch.dict(os.environ, {"GENERATION_TIMEOUT": "0.05"}):
            get_settings.cache_clear()
            try:
                engine = self._engine(generator=HangingGenerator())
            finally:
                get_settings.cache_clear()
        await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        fragments = await engine.query("Anything?").collect()

        self.assertEqual(fragments[0], "first")
        self.assertIn("timed out", fragments[-1])

    async def test_generation_timeout_bounds_the_whole_answer(self) -> None:
        generator = DrippingGenerator()
        with mock.patch.dict(os.environ, {"GENERATION_TIMEOUT": "0.2"}):
            get_settings.cache_clear()
            try:
                engine = self._engine(generator=generator)
            finally:
                get_settings.cache_clear()
        await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        fragments = await asyncio.wait_for(engine.query("Anything?").collect(), timeout=5)

        self.assertIn("timed out", fragments[-1])
        self.assertTrue(generator.closed.is_set())
        self.assertEqual(engine.get_status().state, PipelineState.READY)

    async def test_abandoned_stream_releases_the_query(self) -> None:
        generator = DrippingGenerator(delay=0)
        with mock.patch.dict(os.environ, {"STREAM_IDLE_TIMEOUT": "0.05", "STREAM_BUFFER_SIZE": "1"}):
            get_settings.cache_clear()
            try:
                engine = self._engine(generator=generator)
            finally:
                get_settings.cache_clear()
        await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        stream = engine.query("Anything?")
        self.assertEqual(await stream.__anext__(), ".")
        self.assertEqual(engine.get_status().state, PipelineState.QUERYING)

        await asyncio.wait_for(generator.closed.wait(), timeout=5)
        self.assertTrue(stream.closed)
        self.assertEqual(engine.get_status().state, PipelineState.READY)

    async def test_closing_stream_cancels_generation(self) -> None:
        generator = HangingGenerator()
        engine = self._engine(generator=generator)
        await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        stream = engine.query("Anything?")
        self.assertEqual(await stream.__anext__(), "first")
        self.assertEqual(engine.get_status().state, PipelineState.QUERYING)
        await stream.aclose()

        self.assertTrue(generator.closed.is_set())
        self.assertEqual(engine.get_status().state, PipelineState.READY)

    async def test_embedding_failure_degrades_with_warning(self) -> None:
        engine = self._engine(embedding_client=FailingEmbeddingClient())
        await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        status = engine.get_status()
        self.assertTrue(status.is_ready)
        self.assertEqual(status.warnings, [FALLBACK_WARNING])
        self.assertEqual(await engine.query("Beta?").text(), "Answer text")

    async def test_empty_ingest_leaves_state_untouched(self) -> None:
        engine = self._engine()
        with self.assertRaises(PreconditionError):
            await engine.ingest([])
        status = engine.get_status()
        self.assertEqual(status.state, PipelineState.CREATED)
        self.assertFalse(status.is_ready)

    async def test_concurrent_ingest_is_rejected_and_queries_use_snapshot(self) -> None:
        client = BlockingEmbeddingClient(DIMENSIONS)
        engine = self._engine(embedding_client=client)
        await engine.ingest([Document(id="old", name="old.md", content="# Old\nOld content only.")])

        client.blocking = True
        running = asyncio.create_task(
            engine.ingest([Document(id="new", name="new.md", content="# New\nNew content only.")])
        )
        await asyncio.wait_for(client.entered.wait(), timeout=1)

        self.assertEqual(engine.get_status().state, PipelineState.INGESTING)
        with self.assertRaises(PreconditionError) as ctx:
            await engine.ingest([Document(id="other", name="other.md", content="Other.")])
        self.assertEqual(str(ctx.exception), "ingest already in progress")

        await engine.query("What is old?").text()
        self.assertIn("Old content only.", self.generator.calls[-1]["prompt"])

        client.release.set()
        await running
        await engine.query("What is new?").text()
        self.assertIn("New content only.", self.generator.calls[-1]["prompt"])
        self.assertNotIn("Old content only.", self.generator.calls[-1]["prompt"])
        self.assertEqual(engine.get_status().state, PipelineState.READY)

    async def test_unexpected_ingest_failure_moves_to_error(self) -> None:
        class BrokenStore:
            def upsert(self, chunks):
                raise RuntimeError("disk full")

            def top_k(self, query_vector, k):
                return []

        engine = self._engine(store_factory=BrokenStore)
        with self.assertRaises(RuntimeError):
            await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        status = engine.get_status()
        self.assertEqual(status.state, PipelineState.ERROR)
        self.assertFalse(status.is_ready)
        self.assertTrue(status.errors[0].startswith("Ingestion failed"))
        with self.assertRaises(PreconditionError):
            engine.query("Anything?")

    async def test_cleaning_runs_before_chunking(self) -> None:
        config = _config(
            strategy="fixed",
            chunking=ChunkingConfig(strategy="fixed", chunk_size=200, chunk_overlap=0),
            ingestion=IngestionConfig(cleaning=CleaningOptions(remove_whitespace=True, remove_special_chars=True)),
        )
        engine = self._engine(config, generator=ExtractiveGenerator())
        await engine.ingest([Document(id="doc-1", name="raw.txt", content="Hello   world\n\n@@tidy *text*.")])

        answer = await engine.query("hello").text()
        self.assertEqual(answer, "Hello world tidy text.")

    async def test_duplicate_document_ids_are_rejected(self) -> None:
        config = _config(chunking=ChunkingConfig(strategy="fixed", chunk_size=100, chunk_overlap=0))
        engine = self._engine(config)
        documents = [
            Document(id="doc", name="a.txt", content="alpha " * 10),
            Document(id="doc", name="b.txt", content="beta " * 10),
        ]

        with self.assertRaises(PreconditionError) as ctx:
            await engine.ingest(documents)
        self.assertIn("doc", str(ctx.exception))
        self.assertEqual(engine.get_status().state, PipelineState.CREATED)

        documents[1] = Document(id="doc-2", name="b.txt", content="beta " * 10)
        result = await engine.ingest(documents)
        self.assertEqual(result.chunks, 2)
        self.assertEqual(engine.get_status().chunks_indexed, 2)

    async def test_evaluate_reports_deterministic_metrics(self) -> None:
        engine = self._engine()
        await engine.ingest([Document(id="doc-1", name="guide.md", content=THREE_SECTIONS)])

        first = await engine.evaluate(["What does Gamma cover?", "How are embedding models chosen?"])
        second = await engine.evaluate(["What does Gamma cover?", "How are embedding models chosen?"])

        self.assertEqual(len(first.results), 2)
        for name in ("mean_context_similarity", "max_context_similarity", "question_coverage", "answer_length"):
            self.assertIn(name, first.averages)
            self.assertEqual(first.averages[name], second.averages[name])
        self.assertEqual(first.results[0].answer, "Answer text")
        self.assertGreater(first.results[0].metrics["question_coverage"], 0.0)

    async def test_evaluate_requires_questions(self) -> None:
        engine = self._engine()
        with self.assertRaises(PreconditionError):
            await engine.evaluate([])

    def test_invalid_chunking_config_is_rejected(self) -> None:
        config = _config(chunking=ChunkingConfig(strategy="fixed", chunk_size=4000, chunk_overlap=0))
        with self.assertRaises(ConfigurationError) as ctx:
            self._engine(config)
        self.assertTrue(any("exceeds embedding model limit" in error for error in ctx.exception.errors))


if __name__ == "__main__":
    unittest.main()
