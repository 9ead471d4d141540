"""
AIService -- the AI collaborator contract consumed by convergence.

Only the ``{result, confidence, signal_id}`` shape is relied on.  Concrete
providers (LLM clients, prompt formats) live outside this repository;
tests and the CLI inject their own implementations.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from incentive_engines.convergence import Candidate, Disambiguation
from incentive_kernel.domain.amounts import to_decimal
from incentive_kernel.logging_config import get_logger

logger = get_logger("services.ai")

TASK_FIELD_DISAMBIGUATION = "field_disambiguation"


@dataclass(frozen=True)
class AIResult:
    result: Any
    confidence: Decimal
    signal_id: str | None = None


@runtime_checkable
class AIService(Protocol):
    """Anything that can answer a classification task."""

    def classify(self, task: str, payload: dict[str, Any]) -> AIResult | None:
        ...


def field_disambiguator(ai_service: AIService):
    """
    Adapt an AIService into the convergence engine's disambiguator.

    The service receives the metric and the contending candidates and must
    answer with a candidate key (``"<data_type>.<field>"``).  A provider
    error or an unusable answer falls back to deterministic selection.
    """

    def disambiguate(metric: str, candidates: Sequence[Candidate]) -> Disambiguation | None:
        payload = {
            "metric": metric,
            "candidates": [dict(c.to_dict(), key=c.key) for c in candidates],
        }
        try:
            answer = ai_service.classify(TASK_FIELD_DISAMBIGUATION, payload)
        except Exception as exc:
            logger.warning(
                "ai_disambiguation_failed",
                extra={"metric": metric, "error": f"{type(exc).__name__}: {exc}"},
            )
            return None
        if answer is None or answer.result is None:
            return None
        confidence = to_decimal(answer.confidence)
        if confidence is None:
            return None
        return Disambiguation(
            choice=str(answer.result),
            confidence=confidence,
            signal_id=answer.signal_id,
        )

    return disambiguate
