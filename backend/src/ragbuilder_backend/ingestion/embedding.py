"""Embedding gateway: batched, rate-limited provider calls with a deterministic fallback."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from ..config import get_settings
from ..errors import ConfigurationError, PreconditionError, ProviderError
from ..logging_utils import log_event
from ..metrics import record_event, timed
from ..providers.embeddings import (
    TASK_RETRIEVAL_DOCUMENT,
    TASK_RETRIEVAL_QUERY,
    EmbeddingClient,
    GoogleEmbeddingClient,
    OfflineEmbeddingClient,
    OpenAIEmbeddingClient,
    hash_embedding,
)
from ..providers.rate_limit import RateLimiter, get_rate_limiter

LOGGER = logging.getLogger(__name__)

FALLBACK_WARNING = "Using fallback embeddings due to API error"

Vector = List[float]


@dataclass(frozen=True, slots=True)
class EmbeddingModelSpec:
    provider: str
    dimensions: int
    max_tokens: int
    cost_per_1m_tokens: float


EMBEDDING_MODELS: Dict[str, EmbeddingModelSpec] = {
    "text-embedding-ada-002": EmbeddingModelSpec("openai", 1536, 8191, 0.10),
    "text-embedding-3-small": EmbeddingModelSpec("openai", 1536, 8191, 0.02),
    "text-embedding-3-large": EmbeddingModelSpec("openai", 3072, 8191, 0.13),
    "embed-english-v3.0": EmbeddingModelSpec("cohere", 1024, 512, 0.10),
    "embed-multilingual-v3.0": EmbeddingModelSpec("cohere", 1024, 512, 0.10),
    "voyage-large-2": EmbeddingModelSpec("voyage", 1536, 16000, 0.12),
    "voyage-code-2": EmbeddingModelSpec("voyage", 1536, 16000, 0.12),
    "all-MiniLM-L6-v2": EmbeddingModelSpec("sentence-transformers", 384, 512, 0.0),
    "all-mpnet-base-v2": EmbeddingModelSpec("sentence-transformers", 768, 512, 0.0),
    "bge-large-en-v1.5": EmbeddingModelSpec("baai", 1024, 512, 0.0),
    "e5-large-v2": EmbeddingModelSpec("microsoft", 1024, 512, 0.0),
    "text-embedding-004": EmbeddingModelSpec("google", 768, 2048, 0.00025),
}

SUPPORTED_PROVIDERS = ("openai", "google", "offline")


@dataclass(frozen=True, slots=True)
class EmbeddingConfig:
    """Embedding model parameters for one pipeline."""

    provider: str
    model: str
    dimensions: int
    max_tokens: int
    batch_size: int = 100
    api_key: str | None = None

    def __post_init__(self) -> None:
        errors: List[str] = []
        if self.dimensions <= 0:
            errors.append("Embedding dimensions must be greater than 0")
        if self.max_tokens <= 0:
            errors.append("Embedding max tokens must be greater than 0")
        if self.batch_size <= 0:
            errors.append("Embedding batch size must be greater than 0")
        if errors:
            raise ConfigurationError("Invalid embedding configuration", errors)
        object.__setattr__(self, "provider", self.provider.lower())

    @classmethod
    def from_model(
        cls,
        model: str,
        *,
        provider: str | None = None,
        dimensions: int | None = None,
        max_tokens: int | None = None,
        batch_size: int | None = None,
        api_key: str | None = None,
    ) -> "EmbeddingConfig":
        """Build a config, filling gaps from the model catalogue and settings."""

        spec = EMBEDDING_MODELS.get(model)
        resolved_dimensions = dimensions or (spec.dimensions if spec else None)
        resolved_max_tokens = max_tokens or (spec.max_tokens if spec else None)
        resolved_provider = provider or (spec.provider if spec else None)
        if resolved_dimensions is None or resolved_max_tokens is None or resolved_provider is None:
            raise ConfigurationError(
                f"Unknown embedding model: {model}",
                [f"Unknown embedding model '{model}'; provider, dimensions and max tokens are required"],
            )
        return cls(
            provider=resolved_provider,
            model=model,
            dimensions=resolved_dimensions,
            max_tokens=resolved_max_tokens,
            batch_size=batch_size or get_settings().embedding_batch_size,
            api_key=api_key,
        )

    @property
    def cost_per_1m_tokens(self) -> float:
        spec = EMBEDDING_MODELS.get(self.model)
        return spec.cost_per_1m_tokens if spec else 0.0


def build_embedding_client(config: EmbeddingConfig) -> EmbeddingClient:
    """Select the provider client; ``EMBEDDING_BACKEND=offline`` overrides every config."""

    settings = get_settings()
    backend = "offline" if settings.embedding_backend.lower() == "offline" else config.provider
    if backend == "offline":
        LOGGER.warning("Using offline hash-based embeddings for model %s", config.model)
        return OfflineEmbeddingClient(config.dimensions)
    if backend == "openai":
        api_key = config.api_key or settings.openai_api_key
        if not api_key:
            raise ConfigurationError(
                "OpenAI API key is required", ["OPENAI_API_KEY must be set for OpenAI embeddings"]
            )
        return OpenAIEmbeddingClient(api_key, dimensions=config.dimensions, max_tokens=config.max_tokens)
    if backend == "google":
        api_key = config.api_key or settings.google_api_key
        if not api_key:
            raise ConfigurationError(
                "Google API key is required", ["GOOGLE_API_KEY must be set for Gemini embeddings"]
            )
        return GoogleEmbeddingClient(api_key)
    raise ConfigurationError(
        f"Unsupported embedding provider: {config.provider}",
        [f"Embedding provider must be one of {', '.join(SUPPORTED_PROVIDERS)}"],
    )


class EmbeddingGateway:
    """Order-preserving batch embedding that degrades to hash vectors on provider failure.

    Once a provider call fails the gateway stays in fallback mode, so every
    vector it hands out afterwards lives in the same (hash) vector space.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        client: EmbeddingClient,
        *,
        rate_limiter: RateLimiter | None = None,
        timeout: float | None = None,
        max_concurrency: int | None = None,
        on_fallback: Callable[[str], None] | None = None,
    ) -> None:
        settings = get_settings()
        self.config = config
        self._client = client
        self._rate_limiter = rate_limiter or get_rate_limiter(config.provider)
        self._timeout = timeout if timeout is not None else settings.embedding_timeout
        self._max_concurrency = max(1, max_concurrency or settings.embedding_max_concurrency)
        self._on_fallback = on_fallback
        self._fallback = False

    @property
    def using_fallback(self) -> bool:
        return self._fallback

    # ------------------------------------------------------------------
    async def embed_batch(
        self, texts: Sequence[str], task_type: str = TASK_RETRIEVAL_DOCUMENT
    ) -> List[Vector]:
        items = list(texts)
        if not items:
            raise PreconditionError("Cannot embed an empty list of texts")
        if self._fallback:
            return self._fallback_vectors(items)

        batches = [
            items[start : start + self.config.batch_size]
            for start in range(0, len(items), self.config.batch_size)
        ]
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(batch: List[str]) -> List[Vector]:
            async with semaphore:
                return await self._request(batch, task_type)

        with timed("embedding"):
            results = await asyncio.gather(*(run(batch) for batch in batches), return_exceptions=True)

        failure = next((result for result in results if isinstance(result, BaseException)), None)
        if failure is not None:
            if not isinstance(failure, ProviderError):
                raise failure
            self._enter_fallback(failure)
            return self._fallback_vectors(items)

        vectors: List[Vector] = []
        for batch_vectors in results:
            vectors.extend(batch_vectors)
        LOGGER.debug("Embedded %d texts in %d batches", len(items), len(batches))
        return vectors

    async def embed_query(self, text: str) -> Vector:
        vectors = await self.embed_batch([text], task_type=TASK_RETRIEVAL_QUERY)
        return vectors[0]

    # ------------------------------------------------------------------
    async def _request(self, batch: List[str], task_type: str) -> List[Vector]:
        await self._rate_limiter.acquire()
        try:
            vectors = await asyncio.wait_for(
                self._client.embed(batch, self.config.model, task_type), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                f"Embedding request timed out after {self._timeout:.1f}s", "embedding"
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(f"Embedding provider error: {exc}", "embedding") from exc

        if len(vectors) != len(batch):
            raise ProviderError(
                f"Embedding provider returned {len(vectors)} vectors for {len(batch)} texts", "embedding"
            )
        for vector in vectors:
            if len(vector) != self.config.dimensions:
                raise ProviderError(
                    f"Embedding provider returned {len(vector)} dimensions, expected {self.config.dimensions}",
                    "embedding",
                )
        return [[float(value) for value in vector] for vector in vectors]

    def _enter_fallback(self, error: ProviderError) -> None:
        if self._fallback:
            return
        self._fallback = True
        LOGGER.warning("%s: %s", FALLBACK_WARNING, error.message)
        record_event("embedding_fallback")
        log_event(
            "embedding.fallback",
            {"provider": self.config.provider, "model": self.config.model, "reason": error.message},
            level=logging.WARNING,
        )
        if self._on_fallback is not None:
            self._on_fallback(FALLBACK_WARNING)

    def _fallback_vectors(self, texts: Sequence[str]) -> List[Vector]:
        return [hash_embedding(text, self.config.dimensions) for text in texts]


__all__ = [
    "EMBEDDING_MODELS",
    "FALLBACK_WARNING",
    "EmbeddingConfig",
    "EmbeddingGateway",
    "EmbeddingModelSpec",
    "SUPPORTED_PROVIDERS",
    "Vector",
    "build_embedding_client",
]
