"""Pipeline configuration: the per-stage settings chosen in the builder UI."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from ..config import get_settings
from ..errors import ConfigurationError
from ..ingestion.chunking import ChunkingConfig
from ..ingestion.cleaning import CleaningOptions
from ..ingestion.embedding import EmbeddingConfig
from ..providers.llm import DEFAULT_SYSTEM_PROMPT

DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"


@dataclass(frozen=True, slots=True)
class RetrievalConfig:
    top_k: int = 5

    def __post_init__(self) -> None:
        if self.top_k <= 0:
            raise ConfigurationError("Invalid retrieval configuration", ["Top K must be greater than 0"])


@dataclass(frozen=True, slots=True)
class GenerationConfig:
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    temperature: float = 0.1
    max_tokens: int = 1000
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    api_key: str | None = None

    def __post_init__(self) -> None:
        provider = self.provider.lower()
        object.__setattr__(self, "provider", "google" if provider == "gemini" else provider)
        errors = []
        if not 0.0 <= self.temperature <= 2.0:
            errors.append("Temperature must be between 0 and 2")
        if self.max_tokens <= 0:
            errors.append("Max tokens must be greater than 0")
        if errors:
            raise ConfigurationError("Invalid generation configuration", errors)


@dataclass(frozen=True, slots=True)
class IngestionConfig:
    cleaning: CleaningOptions = field(default_factory=CleaningOptions)


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Aggregate configuration for one pipeline instance."""

    chunking: ChunkingConfig
    embedding: EmbeddingConfig
    name: str = "Untitled pipeline"
    id: str = field(default_factory=lambda: f"pipeline-{uuid.uuid4().hex[:12]}")
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from a JSON payload using camelCase or snake_case keys.

        Stage sections may sit at the top level or under ``stages`` as the
        builder UI exports them. Missing embedding and generation fields are
        filled from the model catalogue and environment settings.
        """

        settings = get_settings()
        stages = payload.get("stages") or payload
        chunking_data = _section(stages, "chunking")
        embedding_data = _section(stages, "embedding")
        retrieval_data = _section(stages, "retrieval")
        generation_data = _section(stages, "generation")
        ingestion_data = _section(stages, "ingestion")

        try:
            chunking = ChunkingConfig(
                strategy=_pick(chunking_data, "strategy", default="recursive"),
                chunk_size=int(_pick(chunking_data, "chunk_size", "chunkSize", default=1000)),
                chunk_overlap=int(_pick(chunking_data, "chunk_overlap", "chunkOverlap", default=200)),
                separators=_pick(chunking_data, "separators", default=None),
                semantic_threshold=_optional_float(
                    _pick(chunking_data, "semantic_threshold", "semanticThreshold", default=None)
                ),
                preserve_structure=bool(
                    _pick(chunking_data, "preserve_structure", "preserveStructure", default=True)
                ),
            )
            embedding = EmbeddingConfig.from_model(
                _pick(embedding_data, "model", default=settings.embedding_model),
                provider=_pick(embedding_data, "provider", default=None),
                dimensions=_optional_int(_pick(embedding_data, "dimensions", default=None)),
                max_tokens=_optional_int(_pick(embedding_data, "max_tokens", "maxTokens", default=None)),
                batch_size=_optional_int(_pick(embedding_data, "batch_size", "batchSize", default=None)),
                api_key=_pick(embedding_data, "api_key", "apiKey", default=None),
            )
            retrieval = RetrievalConfig(
                top_k=int(_pick(retrieval_data, "top_k", "topK", default=settings.default_top_k))
            )
            generation_provider = str(_pick(generation_data, "provider", default=settings.generation_backend)).lower()
            default_model = DEFAULT_GEMINI_MODEL if generation_provider in {"google", "gemini"} else settings.llm_choice
            generation = GenerationConfig(
                provider=generation_provider,
                model=_pick(generation_data, "model", default=default_model),
                temperature=float(_pick(generation_data, "temperature", default=0.1)),
                max_tokens=int(_pick(generation_data, "max_tokens", "maxTokens", default=1000)),
                system_prompt=_pick(generation_data, "system_prompt", "systemPrompt", default=None)
                or DEFAULT_SYSTEM_PROMPT,
                api_key=_pick(generation_data, "api_key", "apiKey", default=None),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("Invalid pipeline configuration", [str(exc)]) from exc

        cleaning_data = _pick(ingestion_data, "cleaning", "cleaningOptions", default=None) or {}
        ingestion = IngestionConfig(
            cleaning=CleaningOptions(
                remove_whitespace=bool(_pick(cleaning_data, "remove_whitespace", "removeWhitespace", default=False)),
                remove_special_chars=bool(
                    _pick(cleaning_data, "remove_special_chars", "removeSpecialChars", default=False)
                ),
                normalize_unicode=bool(_pick(cleaning_data, "normalize_unicode", "normalizeUnicode", default=False)),
            )
        )

        kwargs: Dict[str, Any] = {
            "chunking": chunking,
            "embedding": embedding,
            "retrieval": retrieval,
            "generation": generation,
            "ingestion": ingestion,
            "name": payload.get("name") or "Untitled pipeline",
        }
        if payload.get("id"):
            kwargs["id"] = str(payload["id"])
        return cls(**kwargs)


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError("Invalid pipeline configuration", [f"'{key}' must be an object"])
    return value


def _pick(data: Mapping[str, Any], *keys: str, default: Any) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


__all__ = ["DEFAULT_GEMINI_MODEL", "GenerationConfig", "IngestionConfig", "PipelineConfig", "RetrievalConfig"]
