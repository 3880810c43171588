"""Simple configuration loader for backend services."""

from __future__ import annotations

import os
from functools import lru_cache


class Settings:
    """Runtime configuration derived from environment variables."""

    def __init__(self) -> None:
        self.env: str = os.getenv("ENV", "local")

        # Provider credentials
        self.openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
        self.google_api_key: str | None = os.getenv("GOOGLE_API_KEY")

        # Embedding defaults (used when a pipeline config omits them)
        self.embedding_backend: str = os.getenv("EMBEDDING_BACKEND", "openai")
        self.embedding_model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
        self.embedding_batch_size: int = max(1, int(os.getenv("EMBEDDING_BATCH_SIZE", "100")))
        self.embedding_max_concurrency: int = max(1, int(os.getenv("EMBEDDING_MAX_CONCURRENCY", "4")))
        self.embedding_timeout: float = float(os.getenv("EMBEDDING_TIMEOUT", "30.0"))

        # Generation defaults
        self.generation_backend: str = os.getenv("GENERATION_BACKEND", "openai")
        self.llm_choice: str = os.getenv("LLM_CHOICE", "gpt-4o-mini")
        self.generation_timeout: float = float(os.getenv("GENERATION_TIMEOUT", "60.0"))

        # Shared admission window for external providers
        self.provider_rate_limit: int = max(1, int(os.getenv("PROVIDER_RATE_LIMIT", "60")))
        self.provider_rate_window: float = float(os.getenv("PROVIDER_RATE_WINDOW", "60.0"))

        # Query streaming
        self.stream_buffer_size: int = max(1, int(os.getenv("STREAM_BUFFER_SIZE", "16")))
        # seconds a producer waits on a full buffer before treating the consumer as gone
        self.stream_idle_timeout: float = float(os.getenv("STREAM_IDLE_TIMEOUT", "30.0"))
        self.default_top_k: int = max(1, int(os.getenv("RETRIEVAL_TOP_K", "5")))

    def dict(self) -> dict[str, object]:
        payload = self.__dict__.copy()
        for key in ("openai_api_key", "google_api_key"):
            if payload.get(key):
                payload[key] = "***"
        return payload


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
