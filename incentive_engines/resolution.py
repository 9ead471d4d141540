"""
incentive_engines.resolution -- Root-cause a disputed result.

Responsibility:
    Walk the disputed entity's execution traces to the step responsible for
    the disputed amount, cross-reference synaptic priors for the same
    metric/component/entity cohorts, and produce a root cause, a
    recommendation and (when warranted) a resolution synapse.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - The responsible step is the trace of the named component; without a
      component, the lowest-confidence trace (ties: highest outcome).
    - Root causes are evaluated in a fixed order and the first that applies
      wins:
        1. missing input on the responsible step     -> data_quality
        2. data-quality synapses on a cohort          -> data_quality
        3. repeated correction synapses on a cohort   -> calculation_error
        4. anomaly synapses + boundary lookup          -> plan_interpretation
        5. anomaly synapses                            -> calculation_error
        6. low-confidence responsible step             -> plan_interpretation
        7. a clean deterministic trace                 -> legitimate
        8. no traces at all                            -> data_quality
    - ``legitimate`` -> reject_with_evidence.  ``data_quality`` and
      ``calculation_error`` at or above ``adjust_min_confidence`` ->
      adjust, but only when a correction delta was recovered from memory;
      the claimed amount is never paid as the adjustment.  Everything else
      -> escalate.
    - No resolution synapse is produced for a ``legitimate`` root cause.

Failure modes:
    - None.  Investigations are advisory.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from incentive_config.schema import ResolutionSettings
from incentive_engines.synaptic import SynapticSurface
from incentive_engines.tracer import traced_engine
from incentive_kernel.domain.amounts import quantize_cents
from incentive_kernel.domain.trace import ExecutionTrace
from incentive_kernel.logging_config import get_logger
from incentive_kernel.models.signal import CohortDimension, SynapseBucket

logger = get_logger("engines.resolution")


class RootCause(str, Enum):
    DATA_QUALITY = "data_quality"
    CALCULATION_ERROR = "calculation_error"
    PLAN_INTERPRETATION = "plan_interpretation"
    LEGITIMATE = "legitimate"


class Recommendation(str, Enum):
    ADJUST = "adjust"
    REJECT_WITH_EVIDENCE = "reject_with_evidence"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class DisputeContext:
    dispute_id: str
    entity_external_id: str
    amount_disputed: Decimal
    component_name: str | None = None
    category: str = ""
    description: str = ""


@dataclass(frozen=True)
class Investigation:
    dispute_id: str
    root_cause: RootCause
    confidence: Decimal
    evidence: tuple[str, ...]
    recommendation: Recommendation
    adjustment: Decimal | None = None
    responsible_step: dict[str, Any] | None = None
    component_name: str | None = None
    resolution_synapse: dict[str, Any] | None = None

    @property
    def synapse_written(self) -> bool:
        return self.resolution_synapse is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "dispute_id": self.dispute_id,
            "root_cause": self.root_cause.value,
            "confidence": str(self.confidence),
            "evidence": list(self.evidence),
            "recommendation": self.recommendation.value,
            "adjustment": str(self.adjustment) if self.adjustment is not None else None,
            "responsible_step": self.responsible_step,
            "component_name": self.component_name,
            "resolution_synapse_written": self.synapse_written,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Investigation:
        """Rebuild a stored investigation (the synapse itself is not stored)."""
        adjustment = raw.get("adjustment")
        return cls(
            dispute_id=str(raw["dispute_id"]),
            root_cause=RootCause(raw["root_cause"]),
            confidence=Decimal(str(raw.get("confidence", "0"))),
            evidence=tuple(raw.get("evidence", ())),
            recommendation=Recommendation(raw["recommendation"]),
            adjustment=Decimal(str(adjustment)) if adjustment is not None else None,
            responsible_step=raw.get("responsible_step"),
            component_name=raw.get("component_name"),
        )


@dataclass(frozen=True)
class ResolutionPattern:
    root_cause: RootCause
    component_name: str | None
    count: int
    dispute_ids: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_cause": self.root_cause.value,
            "component_name": self.component_name,
            "count": self.count,
            "dispute_ids": list(self.dispute_ids),
        }


def responsible_trace(
    traces: Sequence[ExecutionTrace],
    component_name: str | None,
) -> ExecutionTrace | None:
    if not traces:
        return None
    if component_name:
        for trace in traces:
            if trace.component_name == component_name:
                return trace
        return None
    return min(traces, key=lambda t: (t.confidence, -t.outcome, t.component_index))


def _step_summary(trace: ExecutionTrace) -> dict[str, Any]:
    return {
        "trace_id": trace.trace_id,
        "component_name": trace.component_name,
        "component_type": trace.component_type,
        "inputs": [i.to_dict() for i in trace.inputs],
        "lookup": dict(trace.lookup),
        "modifiers": list(trace.modifiers),
        "confidence": str(trace.confidence),
        "outcome": str(trace.outcome),
    }


class ResolutionAgent:
    """Pure dispute investigator."""

    @traced_engine("resolution", "1.0", fingerprint_fields=("context", "traces"))
    def investigate(
        self,
        *,
        context: DisputeContext,
        traces: Sequence[ExecutionTrace],
        surface: SynapticSurface,
        settings: ResolutionSettings | None = None,
    ) -> Investigation:
        settings = settings or ResolutionSettings()
        step = responsible_trace(traces, context.component_name)
        component = step.component_name if step else context.component_name

        cohorts = [(CohortDimension.ENTITY, context.entity_external_id)]
        if component:
            cohorts.append((CohortDimension.COMPONENT, component))
        if step is not None:
            cohorts.extend(
                (CohortDimension.METRIC, m) for m in sorted({i.metric for i in step.inputs})
            )

        root_cause, confidence, evidence, adjustment = self._root_cause(
            context, traces, step, cohorts, surface, settings,
        )

        if root_cause is RootCause.LEGITIMATE:
            recommendation = Recommendation.REJECT_WITH_EVIDENCE
            adjustment = None
        elif (
            root_cause in (RootCause.DATA_QUALITY, RootCause.CALCULATION_ERROR)
            and confidence >= settings.adjust_min_confidence
            and adjustment is not None
        ):
            recommendation = Recommendation.ADJUST
            adjustment = quantize_cents(adjustment)
        else:
            if (
                root_cause in (RootCause.DATA_QUALITY, RootCause.CALCULATION_ERROR)
                and confidence >= settings.adjust_min_confidence
            ):
                evidence.append("adjustment_undetermined")
            recommendation = Recommendation.ESCALATE
            adjustment = None

        synapse = None
        if root_cause is not RootCause.LEGITIMATE:
            synapse = {
                "cohorts": [{"dimension": d.value, "key": k} for d, k in cohorts],
                "kind": root_cause.value,
                "value": str(confidence),
                "dispute_id": context.dispute_id,
                "recommendation": recommendation.value,
            }
            if adjustment is not None:
                synapse["delta"] = str(-adjustment)

        logger.info(
            "dispute_root_cause",
            extra={
                "dispute_id": context.dispute_id,
                "root_cause": root_cause.value,
                "recommendation": recommendation.value,
                "confidence": str(confidence),
            },
        )
        return Investigation(
            dispute_id=context.dispute_id,
            root_cause=root_cause,
            confidence=confidence,
            evidence=tuple(evidence),
            recommendation=recommendation,
            adjustment=adjustment,
            responsible_step=_step_summary(step) if step else None,
            component_name=component,
            resolution_synapse=synapse,
        )

    @staticmethod
    def _root_cause(
        context: DisputeContext,
        traces: Sequence[ExecutionTrace],
        step: ExecutionTrace | None,
        cohorts: list[tuple[CohortDimension, str]],
        surface: SynapticSurface,
        settings: ResolutionSettings,
    ) -> tuple[RootCause, Decimal, list[str], Decimal | None]:
        if not traces:
            return RootCause.DATA_QUALITY, Decimal("0.3"), ["no_execution_traces"], None
        if step is None:
            return (
                RootCause.DATA_QUALITY, Decimal("0.3"),
                [f"component_not_traced:{context.component_name}"], None,
            )

        missing = [i.metric for i in step.inputs if i.is_missing]
        if missing:
            return (
                RootCause.DATA_QUALITY, Decimal("0.85"),
                [f"missing_metric:{m}" for m in missing], None,
            )

        quality = [
            f"data_quality_synapse:{d.value}:{k}" for d, k in cohorts
            if surface.read(SynapseBucket.DATA_QUALITY, d, k) is not None
        ]
        if quality:
            return RootCause.DATA_QUALITY, Decimal("0.8"), quality, None

        for dimension, key in cohorts:
            if surface.has_repeated(SynapseBucket.CORRECTION, dimension, key, min_count=2):
                stats = surface.read(SynapseBucket.CORRECTION, dimension, key)
                adjustment = -stats.mean_delta if stats.mean_delta is not None else None
                return (
                    RootCause.CALCULATION_ERROR, Decimal("0.85"),
                    [f"repeated_corrections:{dimension.value}:{key}:{stats.count}"],
                    adjustment,
                )

        anomalies = [
            f"anomaly_synapse:{d.value}:{k}" for d, k in cohorts
            if surface.read(SynapseBucket.ANOMALY, d, k) is not None
        ]
        if anomalies and step.boundary_hit:
            return (
                RootCause.PLAN_INTERPRETATION, Decimal("0.75"),
                anomalies + [f"boundary_lookup:{step.component_name}"], None,
            )
        if anomalies:
            return RootCause.CALCULATION_ERROR, Decimal("0.6"), anomalies, None

        if step.confidence < settings.low_confidence_threshold:
            return (
                RootCause.PLAN_INTERPRETATION, Decimal("0.6"),
                [f"low_confidence_step:{step.component_name}:{step.confidence}"], None,
            )

        evidence = [f"deterministic_trace:{step.trace_id}"]
        evidence.extend(f"input:{i.metric}={i.value} via {i.path}" for i in step.inputs)
        return RootCause.LEGITIMATE, Decimal("0.7"), evidence, None


def detect_resolution_patterns(
    investigations: Iterable[Investigation],
    min_count: int = 3,
) -> list[ResolutionPattern]:
    """Group same-cause investigations on the same component."""
    groups: dict[tuple[RootCause, str | None], list[str]] = defaultdict(list)
    for investigation in investigations:
        groups[(investigation.root_cause, investigation.component_name)].append(
            investigation.dispute_id
        )
    patterns = [
        ResolutionPattern(root_cause=cause, component_name=component,
                          count=len(ids), dispute_ids=tuple(ids))
        for (cause, component), ids in groups.items()
        if len(ids) >= min_count
    ]
    patterns.sort(key=lambda p: (-p.count, p.root_cause.value, p.component_name or ""))
    return patterns
