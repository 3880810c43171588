"""RAG pipeline builder backend package."""

from .logging_utils import configure_logging
from .orchestrator import PipelineConfig, PipelineEngine, PipelineService

__all__ = ["configure_logging", "PipelineConfig", "PipelineEngine", "PipelineService"]
