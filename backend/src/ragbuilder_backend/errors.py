"""Exception taxonomy shared by the chunking, embedding, and pipeline layers."""

from __future__ import annotations

from typing import Sequence


class PipelineError(Exception):
    """Base exception for pipeline failures."""

    def __init__(self, message: str, stage: str = "pipeline") -> None:
        self.message = message
        self.stage = stage
        super().__init__(message)


class ConfigurationError(PipelineError):
    """Invalid chunking/embedding parameters or incompatible stage settings."""

    def __init__(self, message: str, errors: Sequence[str] | None = None) -> None:
        super().__init__(message, "configuration")
        self.errors = list(errors or [message])


class ProviderError(PipelineError):
    """Embedding or generation provider failed, timed out, or was rate-limited."""

    def __init__(self, message: str, stage: str = "provider") -> None:
        super().__init__(message, stage)


class PreconditionError(PipelineError):
    """Operation called in a state that does not allow it."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "precondition")


class NotFoundError(PipelineError):
    """Unknown pipeline identifier."""

    def __init__(self, pipeline_id: str) -> None:
        super().__init__(f"Pipeline {pipeline_id} not found", "lookup")
        self.pipeline_id = pipeline_id


__all__ = [
    "ConfigurationError",
    "NotFoundError",
    "PipelineError",
    "PreconditionError",
    "ProviderError",
]
