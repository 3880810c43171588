"""Chunking strategies that split document text into ordered, offset-tracked chunks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple

from ..errors import ConfigurationError
from ..text_metrics import estimate_tokens, estimate_tokens_for_size
from .embedding import EmbeddingConfig
from .models import Chunk, ChunkMetadata

LOGGER = logging.getLogger(__name__)

DEFAULT_SEPARATORS: Tuple[str, ...] = ("\n\n", "\n", ". ", " ")

_ATX_HEADER_PATTERN = re.compile(r"^#{1,6}\s")
_CAPS_HEADER_PATTERN = re.compile(r"^[A-Z][A-Z\s]{2,}$")
_UNDERLINE_PATTERN = re.compile(r"^[=-]{3,}$")
_SENTENCE_PATTERN = re.compile(r"[^.!?]*[.!?]+|[^.!?]+$")
_MAX_CAPS_HEADER_LENGTH = 80

# Document chunks longer than this share of chunk_size are re-split by the agentic strategy.
_AGENTIC_RESPLIT_RATIO = 0.8


class ChunkingStrategy(str, Enum):
    FIXED = "fixed"
    RECURSIVE = "recursive"
    DOCUMENT = "document"
    SEMANTIC = "semantic"
    AGENTIC = "agentic"


@dataclass(frozen=True, slots=True)
class ChunkingConfig:
    """Configuration for chunking."""

    strategy: ChunkingStrategy = ChunkingStrategy.RECURSIVE
    chunk_size: int = 1000
    chunk_overlap: int = 200
    separators: Tuple[str, ...] | None = None
    semantic_threshold: float | None = None
    preserve_structure: bool = True

    def __post_init__(self) -> None:
        try:
            strategy = ChunkingStrategy(self.strategy)
        except ValueError as exc:
            raise ConfigurationError(f"Unknown chunking strategy: {self.strategy}") from exc
        object.__setattr__(self, "strategy", strategy)
        if self.separators is not None:
            object.__setattr__(self, "separators", tuple(self.separators))

    @property
    def effective_separators(self) -> Tuple[str, ...]:
        return self.separators or DEFAULT_SEPARATORS


@dataclass(slots=True)
class ValidationReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(slots=True)
class ChunkingStats:
    total_chunks: int = 0
    avg_size: int = 0
    min_size: int = 0
    max_size: int = 0
    total_tokens: int = 0
    avg_tokens: int = 0
    size_distribution: Dict[str, int] = field(
        default_factory=lambda: {"small": 0, "medium": 0, "large": 0}
    )
    token_distribution: Dict[str, int] = field(
        default_factory=lambda: {"small": 0, "medium": 0, "large": 0}
    )


@dataclass(slots=True)
class _Piece:
    """Span of the source text selected by a strategy, before trimming."""

    start: int
    end: int
    fields: Dict[str, Any] = field(default_factory=dict)


# ----------------------------------------------------------------------
# Public entry points
# ----------------------------------------------------------------------
def chunk_text(text: str, config: ChunkingConfig, *, document_id: str = "preview-doc") -> List[Chunk]:
    """Chunk ``text`` with the configured strategy.

    Raises :class:`ConfigurationError` when the configuration cannot be used
    (for example ``chunk_overlap >= chunk_size``).
    """

    report = validate_chunking_config(config)
    if report.errors:
        raise ConfigurationError("Invalid chunking configuration", report.errors)

    strategy = config.strategy
    if strategy is ChunkingStrategy.FIXED:
        pieces = _fixed_pieces(text, config)
    elif strategy is ChunkingStrategy.RECURSIVE:
        pieces = _recursive_pieces(text, config)
    elif strategy is ChunkingStrategy.DOCUMENT:
        pieces = _document_pieces(text, config)
    elif strategy is ChunkingStrategy.SEMANTIC:
        pieces = _semantic_pieces(text, config)
    elif strategy is ChunkingStrategy.AGENTIC:
        pieces = _agentic_pieces(text, config)
    else:  # pragma: no cover - enum is closed
        raise ConfigurationError(f"Unknown chunking strategy: {strategy}")

    chunks = _emit(text, pieces, strategy, document_id)
    LOGGER.debug("Chunked %s with %s strategy into %d chunks", document_id, strategy.value, len(chunks))
    return chunks


def validate_chunking_config(
    config: ChunkingConfig, embedding_config: EmbeddingConfig | None = None
) -> ValidationReport:
    """Return errors and warnings for ``config`` under its strategy."""

    report = _base_validation(config, embedding_config)
    strategy = config.strategy

    if strategy is ChunkingStrategy.RECURSIVE:
        if not config.separators:
            report.warnings.append("No separators defined. Using default separators.")
    elif strategy is ChunkingStrategy.DOCUMENT:
        if config.chunk_size < 500:
            report.warnings.append("Small chunk size may not capture complete document sections")
    elif strategy is ChunkingStrategy.SEMANTIC:
        threshold = config.semantic_threshold
        if threshold is None:
            report.errors.append("Semantic threshold is required for semantic chunking")
        elif threshold < 0.1 or threshold > 1.0:
            report.errors.append("Semantic threshold must be between 0.1 and 1.0")
        if config.chunk_size < 500:
            report.warnings.append("Small chunks may not provide enough context for semantic analysis")
        if embedding_config is None:
            report.warnings.append("Semantic chunking requires an embedding model for optimal performance")
    elif strategy is ChunkingStrategy.AGENTIC:
        if config.chunk_size < 500:
            report.warnings.append(
                "Agentic chunking works best with larger chunk sizes for better context understanding"
            )
        report.warnings.append(
            "Agentic chunking is slower and more expensive than other strategies"
        )

    return report


def calculate_chunking_stats(chunks: Sequence[Chunk]) -> ChunkingStats:
    """Summarize chunk sizes and token estimates for previews."""

    if not chunks:
        return ChunkingStats()

    sizes = [len(chunk.content) for chunk in chunks]
    tokens = [chunk.metadata.token_estimate for chunk in chunks]
    return ChunkingStats(
        total_chunks=len(chunks),
        avg_size=round(sum(sizes) / len(sizes)),
        min_size=min(sizes),
        max_size=max(sizes),
        total_tokens=sum(tokens),
        avg_tokens=round(sum(tokens) / len(tokens)),
        size_distribution={
            "small": sum(1 for size in sizes if size < 500),
            "medium": sum(1 for size in sizes if 500 <= size <= 1500),
            "large": sum(1 for size in sizes if size > 1500),
        },
        token_distribution={
            "small": sum(1 for count in tokens if count < 125),
            "medium": sum(1 for count in tokens if 125 <= count <= 375),
            "large": sum(1 for count in tokens if count > 375),
        },
    )


def detect_content_type(text: str) -> str:
    """Coarse content label used to annotate agentic chunks."""

    lowered = text.lower()
    if _ATX_HEADER_PATTERN.match(text):
        return "header"
    if re.search(r"```|`[^`]+`", text):
        return "code"
    if re.search(r"\|.*\|.*\|", text):
        return "table"
    if re.search(r"(?m)^\d+\.", text):
        return "numbered_list"
    if re.search(r"(?m)^[-*+]\s", text):
        return "bullet_list"
    if "therefore" in lowered or "conclusion" in lowered:
        return "conclusion"
    if "introduction" in lowered or "overview" in lowered:
        return "introduction"
    if re.search(r"[.!?]\s*$", text):
        return "paragraph"
    return "text"


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------
def _base_validation(config: ChunkingConfig, embedding_config: EmbeddingConfig | None) -> ValidationReport:
    report = ValidationReport()

    if config.chunk_size <= 0:
        report.errors.append("Chunk size must be greater than 0")
    if config.chunk_overlap < 0:
        report.errors.append("Chunk overlap cannot be negative")
    if config.chunk_overlap >= config.chunk_size:
        report.errors.append("Chunk overlap must be less than chunk size")

    if embedding_config is not None:
        estimated = estimate_tokens_for_size(config.chunk_size)
        if estimated > embedding_config.max_tokens:
            report.errors.append(
                f"Chunk size (~{estimated} tokens) exceeds embedding model limit "
                f"({embedding_config.max_tokens} tokens)"
            )
        elif estimated > embedding_config.max_tokens * 0.8:
            report.warnings.append(
                "Chunk size is close to embedding model limit. Consider reducing for better performance."
            )

    if config.chunk_size > 4000:
        report.warnings.append("Large chunk sizes may impact retrieval precision")
    if config.chunk_size > 0 and config.chunk_overlap > config.chunk_size * 0.5:
        report.warnings.append("High overlap ratio may cause redundant content")

    return report


# ----------------------------------------------------------------------
# Strategies
# ----------------------------------------------------------------------
def _fixed_pieces(text: str, config: ChunkingConfig) -> List[_Piece]:
    return [
        _Piece(start, end)
        for start, end in _window_spans(0, len(text), config.chunk_size, config.chunk_overlap)
    ]


def _recursive_pieces(text: str, config: ChunkingConfig) -> List[_Piece]:
    separators = config.effective_separators
    spans = _recursive_spans(
        text, 0, len(text), separators, config.chunk_size, config.chunk_overlap
    )
    return [_Piece(start, end, {"separators": list(separators)}) for start, end in spans]


def _document_pieces(text: str, config: ChunkingConfig) -> List[_Piece]:
    pieces: List[_Piece] = []
    lines = text.split("\n")
    offset = 0
    buffer_start = 0
    buffer_end = 0

    def flush(reason: str) -> None:
        pieces.append(
            _Piece(
                buffer_start,
                buffer_end,
                {"boundary_reason": reason, "preserve_structure": config.preserve_structure},
            )
        )

    for index, line in enumerate(lines):
        line_start = offset
        line_end = min(offset + len(line) + 1, len(text))
        offset += len(line) + 1

        next_line = lines[index + 1] if index + 1 < len(lines) else None
        buffered = text[buffer_start:buffer_end]
        if _is_header(line, next_line) and buffered.strip():
            flush("headerBoundary")
            buffer_start, buffer_end = line_start, line_end
            continue

        if buffer_end == buffer_start:
            buffer_start = line_start
        buffer_end = line_end

        if buffer_end - buffer_start > config.chunk_size:
            flush("sizeBoundary")
            buffer_start = buffer_end = line_end

    if text[buffer_start:buffer_end].strip():
        flush("finalChunk")

    return pieces


def _semantic_pieces(text: str, config: ChunkingConfig) -> List[_Piece]:
    spans = _sentence_pack(text, 0, len(text), config.chunk_size)
    pieces: List[_Piece] = []
    for position, (start, end) in enumerate(spans):
        reason = "finalChunk" if position == len(spans) - 1 else "sizeBoundary"
        pieces.append(
            _Piece(start, end, {"semantic_threshold": config.semantic_threshold, "boundary_reason": reason})
        )
    return pieces


def _agentic_pieces(text: str, config: ChunkingConfig) -> List[_Piece]:
    pieces: List[_Piece] = []
    limit = config.chunk_size * _AGENTIC_RESPLIT_RATIO

    for parent_index, parent in enumerate(_document_pieces(text, config)):
        content = text[parent.start : parent.end].strip()
        if not content:
            continue
        origin = parent.fields["boundary_reason"]

        if len(content) <= limit:
            pieces.append(
                _Piece(
                    parent.start,
                    parent.end,
                    {
                        "boundary_reason": "optimal_size",
                        "content_type": detect_content_type(content),
                        "parent_chunk": parent_index,
                        "document_boundary": origin,
                    },
                )
            )
            continue

        spans = _sentence_pack(text, parent.start, parent.end, config.chunk_size)
        for sub_index, (start, end) in enumerate(spans):
            reason = "natural_ending" if sub_index == len(spans) - 1 else "semantic_coherence"
            pieces.append(
                _Piece(
                    start,
                    end,
                    {
                        "boundary_reason": reason,
                        "content_type": detect_content_type(text[start:end].strip()),
                        "parent_chunk": parent_index,
                        "sub_chunk_index": sub_index,
                        "document_boundary": origin,
                    },
                )
            )

    return pieces


# ----------------------------------------------------------------------
# Span helpers
# ----------------------------------------------------------------------
def _window_spans(start: int, end: int, size: int, overlap: int) -> List[Tuple[int, int]]:
    spans: List[Tuple[int, int]] = []
    step = size - overlap
    position = start
    while position < end:
        window_end = min(position + size, end)
        spans.append((position, window_end))
        if window_end >= end:
            break
        position += step
    return spans


def _split_on(text: str, start: int, end: int, separator: str) -> List[Tuple[int, int]]:
    parts: List[Tuple[int, int]] = []
    cursor = start
    while True:
        found = text.find(separator, cursor, end)
        if found == -1:
            parts.append((cursor, end))
            return parts
        parts.append((cursor, found))
        cursor = found + len(separator)


def _recursive_spans(
    text: str,
    start: int,
    end: int,
    separators: Sequence[str],
    size: int,
    overlap: int,
) -> List[Tuple[int, int]]:
    if end - start <= size:
        return [(start, end)]
    if not separators:
        return _window_spans(start, end, size, overlap)

    separator, remaining = separators[0], separators[1:]
    parts = _split_on(text, start, end, separator)
    if len(parts) == 1:
        return _recursive_spans(text, start, end, remaining, size, overlap)

    result: List[Tuple[int, int]] = []
    buffer: Tuple[int, int] | None = None

    for part_start, part_end in parts:
        part_length = part_end - part_start
        if buffer is not None and part_end - buffer[0] <= size:
            # parts are contiguous, so the buffer simply grows to the end of this part
            buffer = (buffer[0], part_end)
            continue

        if buffer is not None:
            result.append(buffer)
            flushed_start, flushed_end = buffer
            buffer = None
            if part_length <= size:
                room = size - part_length - len(separator)
                keep = min(overlap, room, flushed_end - flushed_start)
                buffer = (flushed_end - keep, part_end) if keep > 0 else (part_start, part_end)
                continue

        if part_length <= size:
            buffer = (part_start, part_end)
        else:
            result.extend(_recursive_spans(text, part_start, part_end, remaining, size, overlap))

    if buffer is not None:
        result.append(buffer)
    return result


def _sentence_pack(text: str, start: int, end: int, size: int) -> List[Tuple[int, int]]:
    """Greedily pack sentences of ``text[start:end]`` into spans no longer than ``size``."""

    spans: List[Tuple[int, int]] = []
    buffer: Tuple[int, int] | None = None

    for match in _SENTENCE_PATTERN.finditer(text, start, end):
        sentence_start, sentence_end = match.span()
        if not text[sentence_start:sentence_end].strip():
            continue
        if buffer is not None and sentence_end - buffer[0] <= size:
            buffer = (buffer[0], sentence_end)
            continue
        if buffer is not None:
            spans.append(buffer)
            buffer = None
        if sentence_end - sentence_start <= size:
            buffer = (sentence_start, sentence_end)
        else:
            spans.extend(_window_spans(sentence_start, sentence_end, size, 0))

    if buffer is not None:
        spans.append(buffer)
    return spans


def _is_header(line: str, next_line: str | None) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    if _ATX_HEADER_PATTERN.match(stripped):
        return True
    if len(stripped) <= _MAX_CAPS_HEADER_LENGTH and _CAPS_HEADER_PATTERN.match(stripped):
        return True
    return next_line is not None and bool(_UNDERLINE_PATTERN.match(next_line.strip()))


def _emit(text: str, pieces: Sequence[_Piece], strategy: ChunkingStrategy, document_id: str) -> List[Chunk]:
    chunks: List[Chunk] = []
    for piece in pieces:
        raw = text[piece.start : piece.end]
        content = raw.strip()
        if not content:
            continue
        start = piece.start + (len(raw) - len(raw.lstrip()))
        end = start + len(content)
        index = len(chunks)
        metadata = ChunkMetadata(
            document_id=document_id,
            chunk_index=index,
            start_offset=start,
            end_offset=end,
            token_estimate=estimate_tokens(content),
            source_strategy=strategy.value,
            fields=dict(piece.fields),
        )
        chunks.append(Chunk(id=f"{document_id}:{index:04d}", content=content, metadata=metadata))
    return chunks


__all__ = [
    "DEFAULT_SEPARATORS",
    "ChunkingConfig",
    "ChunkingStats",
    "ChunkingStrategy",
    "ValidationReport",
    "calculate_chunking_stats",
    "chunk_text",
    "detect_content_type",
    "validate_chunking_config",
]
