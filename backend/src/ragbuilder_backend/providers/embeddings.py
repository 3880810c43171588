"""Embedding provider clients: OpenAI and Google via LangChain, plus a deterministic offline backend."""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, List, Protocol, Sequence, Tuple

import numpy as np
from langchain_google_genai import GoogleGenerativeAIEmbeddings
from langchain_openai import OpenAIEmbeddings

from ..text_metrics import count_tokens, truncate_to_tokens

LOGGER = logging.getLogger(__name__)

TASK_RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"
TASK_RETRIEVAL_QUERY = "RETRIEVAL_QUERY"


class EmbeddingClient(Protocol):
    """External embedding provider: batched and order-preserving."""

    async def embed(self, texts: Sequence[str], model: str, task_type: str) -> List[List[float]]:
        ...


def hash_embedding(text: str, dimensions: int) -> List[float]:
    """Deterministic unit vector derived from the SHA-256 digest of ``text``."""

    digest = hashlib.sha256(text.encode("utf-8")).digest()
    seed = int.from_bytes(digest[:8], byteorder="little", signed=False)
    rng = np.random.default_rng(seed)
    vector = rng.standard_normal(dimensions)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector.tolist()
    return (vector / norm).tolist()


class OpenAIEmbeddingClient:
    """OpenAI embedding client backed by LangChain's implementation."""

    def __init__(
        self,
        api_key: str,
        *,
        dimensions: int | None = None,
        max_tokens: int | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("An OpenAI API key is required to use OpenAI embeddings.")
        self._api_key = api_key
        self._dimensions = dimensions
        self._max_tokens = max_tokens
        self._clients: Dict[str, OpenAIEmbeddings] = {}

    # ------------------------------------------------------------------
    async def embed(self, texts: Sequence[str], model: str, task_type: str) -> List[List[float]]:
        client = self._client_for(model)
        payloads = [self._prepare(text) for text in texts]
        if task_type == TASK_RETRIEVAL_QUERY and len(payloads) == 1:
            return [await client.aembed_query(payloads[0])]
        return await client.aembed_documents(payloads)

    # ------------------------------------------------------------------
    def _client_for(self, model: str) -> OpenAIEmbeddings:
        client = self._clients.get(model)
        if client is None:
            kwargs: Dict[str, object] = {"model": model, "openai_api_key": self._api_key}
            # only the text-embedding-3 family accepts a reduced output size
            if self._dimensions and model.startswith("text-embedding-3"):
                kwargs["dimensions"] = self._dimensions
            client = OpenAIEmbeddings(**kwargs)
            self._clients[model] = client
        return client

    def _prepare(self, text: str) -> str:
        stripped = text.strip()
        if self._max_tokens and count_tokens(stripped) > self._max_tokens:
            LOGGER.debug("Truncating embedding input to %d tokens", self._max_tokens)
            stripped = truncate_to_tokens(stripped, self._max_tokens)
        return stripped


class GoogleEmbeddingClient:
    """Gemini embedding client; the task type selects document or query vectors."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("A Google API key is required to use Gemini embeddings.")
        self._api_key = api_key
        self._clients: Dict[Tuple[str, str], GoogleGenerativeAIEmbeddings] = {}

    async def embed(self, texts: Sequence[str], model: str, task_type: str) -> List[List[float]]:
        client = self._client_for(model, task_type)
        payloads = [text.strip() for text in texts]
        if task_type == TASK_RETRIEVAL_QUERY and len(payloads) == 1:
            return [await client.aembed_query(payloads[0])]
        return await client.aembed_documents(payloads)

    def _client_for(self, model: str, task_type: str) -> GoogleGenerativeAIEmbeddings:
        key = (model, task_type)
        client = self._clients.get(key)
        if client is None:
            name = model if model.startswith("models/") else f"models/{model}"
            client = GoogleGenerativeAIEmbeddings(model=name, google_api_key=self._api_key, task_type=task_type)
            self._clients[key] = client
        return client


class OfflineEmbeddingClient:
    """Hash-based embeddings for local development and tests."""

    def __init__(self, dimensions: int) -> None:
        self._dimensions = dimensions

    async def embed(self, texts: Sequence[str], model: str, task_type: str) -> List[List[float]]:
        return [hash_embedding(text.strip(), self._dimensions) for text in texts]


__all__ = [
    "EmbeddingClient",
    "GoogleEmbeddingClient",
    "OfflineEmbeddingClient",
    "OpenAIEmbeddingClient",
    "TASK_RETRIEVAL_DOCUMENT",
    "TASK_RETRIEVAL_QUERY",
    "hash_embedding",
]
