"""Injectable registry that owns pipeline engines and routes caller operations to them."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Sequence

from ..compatibility import validate_embedding_compatibility
from ..errors import ConfigurationError, NotFoundError
from ..ingestion.chunking import validate_chunking_config
from ..ingestion.models import Document
from ..logging_utils import log_event
from .config import PipelineConfig
from .evaluation import EvaluationReport, Evaluator
from .pipeline import IngestResult, PipelineEngine, PipelineStatus
from .streaming import FragmentStream

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ConfigurationValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_pipeline_config(config: PipelineConfig) -> ConfigurationValidation:
    """Combine chunking validation with the chunking/embedding compatibility check."""

    chunking = validate_chunking_config(config.chunking, config.embedding)
    compatibility = validate_embedding_compatibility(config.chunking, config.embedding)
    validation = ConfigurationValidation(
        errors=list(chunking.errors),
        warnings=list(chunking.warnings),
        recommendations=list(compatibility.recommendations),
    )
    for message in compatibility.errors:
        if message not in validation.errors:
            validation.errors.append(message)
    for message in compatibility.warnings:
        if message not in validation.warnings:
            validation.warnings.append(message)
    return validation


class PipelineService:
    """Create, look up and drive pipelines by id.

    Each instance keeps its own registry, so tests and applications can hold
    independent services side by side.
    """

    def __init__(self, engine_factory: Callable[[PipelineConfig], PipelineEngine] = PipelineEngine) -> None:
        self._engine_factory = engine_factory
        self._pipelines: Dict[str, PipelineEngine] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def create_pipeline(self, config: PipelineConfig | Mapping[str, Any]) -> str:
        if not isinstance(config, PipelineConfig):
            config = PipelineConfig.from_dict(config)

        validation = validate_pipeline_config(config)
        if not validation.is_valid:
            raise ConfigurationError("Invalid configuration", validation.errors)

        with self._lock:
            if config.id in self._pipelines:
                raise ConfigurationError(f"Pipeline {config.id} already exists")
            engine = self._engine_factory(config)
            self._pipelines[config.id] = engine

        log_event(
            "pipeline.created",
            {"pipeline_id": config.id, "strategy": config.chunking.strategy.value, "model": config.embedding.model},
        )
        LOGGER.info("Created pipeline %s (%s)", config.id, config.name)
        return config.id

    def get_pipeline(self, pipeline_id: str) -> PipelineEngine:
        with self._lock:
            engine = self._pipelines.get(pipeline_id)
        if engine is None:
            raise NotFoundError(pipeline_id)
        return engine

    def delete_pipeline(self, pipeline_id: str) -> None:
        with self._lock:
            if self._pipelines.pop(pipeline_id, None) is None:
                raise NotFoundError(pipeline_id)
        LOGGER.info("Deleted pipeline %s", pipeline_id)

    def list_pipelines(self) -> List[PipelineEngine]:
        with self._lock:
            return list(self._pipelines.values())

    # ------------------------------------------------------------------
    async def ingest(self, pipeline_id: str, documents: Sequence[Document]) -> IngestResult:
        return await self.get_pipeline(pipeline_id).ingest(documents)

    def query(self, pipeline_id: str, question: str) -> FragmentStream:
        return self.get_pipeline(pipeline_id).query(question)

    def get_status(self, pipeline_id: str) -> PipelineStatus:
        return self.get_pipeline(pipeline_id).get_status()

    async def evaluate(
        self, pipeline_id: str, test_questions: Sequence[str], evaluator: Evaluator | None = None
    ) -> EvaluationReport:
        return await self.get_pipeline(pipeline_id).evaluate(test_questions, evaluator)


__all__ = ["ConfigurationValidation", "PipelineService", "validate_pipeline_config"]
