"""External provider clients and shared admission control."""

from .embeddings import (
    EmbeddingClient,
    GoogleEmbeddingClient,
    OfflineEmbeddingClient,
    OpenAIEmbeddingClient,
    hash_embedding,
)
from .llm import (
    DEFAULT_SYSTEM_PROMPT,
    ExtractiveGenerator,
    GeminiChatGenerator,
    OpenAIChatGenerator,
    TextGenerator,
    build_prompt,
)
from .rate_limit import RateLimiter, get_rate_limiter, reset_rate_limiters

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "EmbeddingClient",
    "ExtractiveGenerator",
    "GeminiChatGenerator",
    "GoogleEmbeddingClient",
    "OfflineEmbeddingClient",
    "OpenAIChatGenerator",
    "OpenAIEmbeddingClient",
    "RateLimiter",
    "TextGenerator",
    "build_prompt",
    "get_rate_limiter",
    "hash_embedding",
    "reset_rate_limiters",
]
