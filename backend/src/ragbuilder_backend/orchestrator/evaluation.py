"""Pluggable answer-quality scoring over a set of test questions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from statistics import fmean
from typing import Any, Dict, List, Protocol, Sequence

_TERM_PATTERN = re.compile(r"\w+")
_MIN_TERM_LENGTH = 3


@dataclass(slots=True)
class EvaluationSample:
    """Everything observed while answering one test question."""

    question: str
    answer: str
    contexts: List[str]
    context_scores: List[float]
    latency_ms: float


class Evaluator(Protocol):
    def score(self, sample: EvaluationSample) -> Dict[str, float]:
        ...


class RetrievalEvaluator:
    """Deterministic retrieval and answer metrics that need no judge model."""

    def score(self, sample: EvaluationSample) -> Dict[str, float]:
        scores = sample.context_scores
        return {
            "mean_context_similarity": fmean(scores) if scores else 0.0,
            "max_context_similarity": max(scores) if scores else 0.0,
            "question_coverage": question_coverage(sample.question, sample.contexts),
            "answer_length": float(len(sample.answer)),
            "latency_ms": sample.latency_ms,
        }


def question_coverage(question: str, contexts: Sequence[str]) -> float:
    """Share of the question's terms that appear somewhere in the retrieved context."""

    terms = {term for term in _TERM_PATTERN.findall(question.lower()) if len(term) >= _MIN_TERM_LENGTH}
    if not terms:
        return 0.0
    vocabulary = set(_TERM_PATTERN.findall(" ".join(contexts).lower()))
    return len(terms & vocabulary) / len(terms)


@dataclass(slots=True)
class EvaluationResult:
    question: str
    answer: str
    metrics: Dict[str, float]


@dataclass(slots=True)
class EvaluationReport:
    results: List[EvaluationResult] = field(default_factory=list)
    averages: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_results(cls, results: Sequence[EvaluationResult]) -> "EvaluationReport":
        averages: Dict[str, float] = {}
        names = sorted({name for result in results for name in result.metrics})
        for name in names:
            values = [result.metrics[name] for result in results if name in result.metrics]
            averages[name] = fmean(values)
        return cls(results=list(results), averages=averages)

    def as_record(self) -> Dict[str, Any]:
        return {
            "results": [
                {"question": result.question, "answer": result.answer, "metrics": dict(result.metrics)}
                for result in self.results
            ],
            "averages": dict(self.averages),
        }


__all__ = [
    "EvaluationReport",
    "EvaluationResult",
    "EvaluationSample",
    "Evaluator",
    "RetrievalEvaluator",
    "question_coverage",
]
