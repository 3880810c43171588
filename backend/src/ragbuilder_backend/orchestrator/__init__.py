"""Pipeline orchestration: configuration, engines, streaming and the service registry."""

from .api import serialize_compatibility, serialize_ingest_result, serialize_pipeline, serialize_status
from .config import GenerationConfig, IngestionConfig, PipelineConfig, RetrievalConfig
from .evaluation import EvaluationReport, Evaluator, RetrievalEvaluator
from .pipeline import IngestResult, PipelineEngine, PipelineState, PipelineStatus
from .service import PipelineService, validate_pipeline_config
from .streaming import FragmentStream

__all__ = [
    "EvaluationReport",
    "Evaluator",
    "FragmentStream",
    "GenerationConfig",
    "IngestResult",
    "IngestionConfig",
    "PipelineConfig",
    "PipelineEngine",
    "PipelineService",
    "PipelineState",
    "PipelineStatus",
    "RetrievalConfig",
    "RetrievalEvaluator",
    "serialize_compatibility",
    "serialize_ingest_result",
    "serialize_pipeline",
    "serialize_status",
    "validate_pipeline_config",
]
