"""
incentive_engines.reconciliation -- Compare calculated results to an
external benchmark.

Responsibility:
    Pair calculated totals and component payouts with customer benchmark
    records, classify every pairing, detect false greens, propose
    correction synapses and compute concordance.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The service loads results
    and priors, persists the report on the batch and writes the
    corrections as signals.

Invariants enforced:
    - Pairing key is the entity external id, plus the component name for
      component-level benchmark records.
    - A total-level pairing is always produced for every benchmarked
      entity.  When only component records are supplied, the benchmark
      total is their sum.
    - ``delta = calculated - benchmark``.
      ``|delta| <= epsilon``               -> match
      ``epsilon < |delta| < rounding``     -> rounding
      otherwise                            -> discrepancy (with a class)
    - A false green is a total within the rounding threshold whose
      non-match component deltas (rounding included) sum past
      ``false_green_threshold``.
    - concordance = (match + rounding) / all pairings, as a percentage to
      one decimal place (ROUND_HALF_UP); None when nothing was paired.
    - Results are never mutated.

Failure modes:
    - None.  Reports are advisory.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from incentive_config.schema import ReconciliationSettings
from incentive_engines.synaptic import SynapticSurface
from incentive_engines.tracer import traced_engine
from incentive_kernel.domain.amounts import ZERO, quantize_cents
from incentive_kernel.domain.trace import ExecutionTrace
from incentive_kernel.logging_config import get_logger
from incentive_kernel.models.signal import CohortDimension, SynapseBucket
from incentive_kernel.selectors.calculation_selector import ResultDTO

logger = get_logger("engines.reconciliation")

TOTAL = "__total__"
ONE_DECIMAL = Decimal("0.1")
HUNDRED = Decimal("100")


class PairingStatus(str, Enum):
    MATCH = "match"
    ROUNDING = "rounding"
    DISCREPANCY = "discrepancy"


class DiscrepancyClass(str, Enum):
    DATA_DIVERGENCE = "data_divergence"
    LOGIC_DIVERGENCE = "logic_divergence"
    SCOPE_MISMATCH = "scope_mismatch"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class BenchmarkRecord:
    entity_external_id: str
    amount: Decimal
    component: str | None = None

    @property
    def is_total(self) -> bool:
        return self.component is None


@dataclass(frozen=True)
class Pairing:
    entity_external_id: str
    component: str | None
    calculated: Decimal | None
    benchmark: Decimal | None
    delta: Decimal | None
    status: PairingStatus
    discrepancy_class: DiscrepancyClass | None = None
    confidence: Decimal | None = None
    evidence: tuple[str, ...] = ()

    @property
    def is_total(self) -> bool:
        return self.component is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_external_id": self.entity_external_id,
            "component": self.component,
            "calculated": str(self.calculated) if self.calculated is not None else None,
            "benchmark": str(self.benchmark) if self.benchmark is not None else None,
            "delta": str(self.delta) if self.delta is not None else None,
            "status": self.status.value,
            "discrepancy_class": self.discrepancy_class.value if self.discrepancy_class else None,
            "confidence": str(self.confidence) if self.confidence is not None else None,
            "evidence": list(self.evidence),
        }


@dataclass(frozen=True)
class FalseGreen:
    entity_external_id: str
    suspected: bool
    reason: str
    offsetting_delta: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_external_id": self.entity_external_id,
            "suspected": self.suspected,
            "reason": self.reason,
            "offsetting_delta": (
                str(self.offsetting_delta) if self.offsetting_delta is not None else None
            ),
        }


@dataclass(frozen=True)
class Correction:
    """A discrepancy confident enough to feed agent memory."""

    entity_external_id: str
    component: str | None
    delta: Decimal
    discrepancy_class: DiscrepancyClass
    confidence: Decimal

    def signal_value(self) -> dict[str, Any]:
        cohorts = [{"dimension": CohortDimension.ENTITY.value, "key": self.entity_external_id}]
        if self.component:
            cohorts.append({"dimension": CohortDimension.COMPONENT.value, "key": self.component})
        return {
            "cohorts": cohorts,
            "kind": self.discrepancy_class.value,
            "value": str(self.confidence),
            "delta": str(self.delta),
            "entity_external_id": self.entity_external_id,
            "component": self.component,
        }


@dataclass(frozen=True)
class ReconciliationReport:
    pairings: tuple[Pairing, ...] = ()
    false_greens: tuple[FalseGreen, ...] = ()
    corrections: tuple[Correction, ...] = ()
    unbenchmarked: tuple[str, ...] = ()
    match_count: int = 0
    mismatch_count: int = 0
    concordance: Decimal | None = None
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "pairings": [p.to_dict() for p in self.pairings],
            "false_greens": [f.to_dict() for f in self.false_greens],
            "corrections": [c.signal_value() for c in self.corrections],
            "unbenchmarked": list(self.unbenchmarked),
            "match_count": self.match_count,
            "mismatch_count": self.mismatch_count,
            "concordance": str(self.concordance) if self.concordance is not None else None,
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class ReconciliationInput:
    results: Sequence[ResultDTO]
    benchmark_records: Sequence[BenchmarkRecord]
    surface: SynapticSurface
    settings: ReconciliationSettings = field(default_factory=ReconciliationSettings)


def concordance_pct(match_count: int, mismatch_count: int) -> Decimal | None:
    """match / (match + mismatch) as a percentage to one decimal place."""
    paired = match_count + mismatch_count
    if paired == 0:
        return None
    return (Decimal(match_count) * HUNDRED / Decimal(paired)).quantize(
        ONE_DECIMAL, rounding=ROUND_HALF_UP,
    )


class ReconciliationAgent:
    """
    Pure reconciliation agent.

    Contract:
        Deterministic for a given input; pairings are ordered by entity
        external id, with the total pairing before component pairings.
    """

    @traced_engine("reconciliation", "1.0", fingerprint_fields=("data",))
    def reconcile(self, *, data: ReconciliationInput) -> ReconciliationReport:
        settings = data.settings
        results = {r.external_id: r for r in data.results}

        totals: dict[str, Decimal] = {}
        components: dict[str, dict[str, Decimal]] = {}
        for record in data.benchmark_records:
            if record.is_total:
                totals[record.entity_external_id] = (
                    totals.get(record.entity_external_id, ZERO) + record.amount
                )
            else:
                per_entity = components.setdefault(record.entity_external_id, {})
                per_entity[record.component] = per_entity.get(record.component, ZERO) + record.amount

        pairings: list[Pairing] = []
        false_greens: list[FalseGreen] = []
        for external_id in sorted(set(totals) | set(components)):
            result = results.get(external_id)
            component_benchmarks = components.get(external_id, {})
            benchmark_total = totals.get(external_id)
            if benchmark_total is None:
                benchmark_total = sum(component_benchmarks.values(), ZERO)

            total_pairing = self._pair(
                external_id, None,
                result.total_payout if result else None,
                benchmark_total, result, data.surface, settings,
            )
            pairings.append(total_pairing)

            component_pairings = []
            if component_benchmarks:
                calculated = result.component_payouts() if result else {}
                for name in sorted(component_benchmarks):
                    component_pairings.append(
                        self._pair(
                            external_id, name, calculated.get(name),
                            component_benchmarks[name], result, data.surface, settings,
                        )
                    )
            pairings.extend(component_pairings)

            false_green = self._false_green(
                external_id, total_pairing, component_pairings, data.surface, settings,
            )
            if false_green is not None:
                false_greens.append(false_green)

        match_count = sum(1 for p in pairings if p.status is not PairingStatus.DISCREPANCY)
        mismatch_count = len(pairings) - match_count
        corrections = tuple(
            Correction(
                entity_external_id=p.entity_external_id,
                component=p.component,
                delta=p.delta if p.delta is not None else (p.calculated or ZERO) - (p.benchmark or ZERO),
                discrepancy_class=p.discrepancy_class,
                confidence=p.confidence,
            )
            for p in pairings
            if p.status is PairingStatus.DISCREPANCY
            and p.confidence is not None
            and p.confidence >= settings.min_correction_confidence
        )

        report = ReconciliationReport(
            pairings=tuple(pairings),
            false_greens=tuple(false_greens),
            corrections=corrections,
            unbenchmarked=tuple(sorted(set(results) - set(totals) - set(components))),
            match_count=match_count,
            mismatch_count=mismatch_count,
            concordance=concordance_pct(match_count, mismatch_count),
            degraded=data.surface.is_empty,
        )
        logger.info(
            "reconciliation_classified",
            extra={
                "pairings": len(pairings),
                "match_count": match_count,
                "mismatch_count": mismatch_count,
                "false_greens": len(false_greens),
                "corrections": len(corrections),
            },
        )
        return report

    def _pair(
        self,
        external_id: str,
        component: str | None,
        calculated: Decimal | None,
        benchmark: Decimal | None,
        result: ResultDTO | None,
        surface: SynapticSurface,
        settings: ReconciliationSettings,
    ) -> Pairing:
        if calculated is None or benchmark is None:
            side = "calculation" if calculated is None else "benchmark"
            return Pairing(
                entity_external_id=external_id,
                component=component,
                calculated=calculated,
                benchmark=benchmark,
                delta=None,
                status=PairingStatus.DISCREPANCY,
                discrepancy_class=DiscrepancyClass.SCOPE_MISMATCH,
                confidence=Decimal("0.9"),
                evidence=(f"missing_in_{side}",),
            )

        delta = quantize_cents(calculated - benchmark)
        magnitude = abs(delta)
        if magnitude <= settings.epsilon:
            status = PairingStatus.MATCH
        elif magnitude < settings.rounding_threshold:
            status = PairingStatus.ROUNDING
        else:
            status = PairingStatus.DISCREPANCY

        if status is not PairingStatus.DISCREPANCY:
            return Pairing(external_id, component, calculated, benchmark, delta, status)

        traces = self._traces_for(result, component)
        klass, confidence, evidence = self._classify(
            external_id, component, delta, benchmark, traces, surface, settings,
        )
        return Pairing(
            entity_external_id=external_id,
            component=component,
            calculated=calculated,
            benchmark=benchmark,
            delta=delta,
            status=status,
            discrepancy_class=klass,
            confidence=confidence,
            evidence=evidence,
        )

    @staticmethod
    def _traces_for(result: ResultDTO | None, component: str | None) -> list[ExecutionTrace]:
        if result is None:
            return []
        if component is None:
            return list(result.traces)
        return [t for t in result.traces if t.component_name == component]

    @staticmethod
    def _classify(
        external_id: str,
        component: str | None,
        delta: Decimal,
        benchmark: Decimal,
        traces: list[ExecutionTrace],
        surface: SynapticSurface,
        settings: ReconciliationSettings,
    ) -> tuple[DiscrepancyClass, Decimal, tuple[str, ...]]:
        cohorts = [(CohortDimension.ENTITY, external_id)]
        if component:
            cohorts.append((CohortDimension.COMPONENT, component))
        metrics = sorted({i.metric for t in traces for i in t.inputs})
        cohorts.extend((CohortDimension.METRIC, m) for m in metrics)

        missing = sorted({i.metric for t in traces for i in t.inputs if i.is_missing})
        quality = [
            f"{dim.value}:{key}" for dim, key in cohorts
            if surface.read(SynapseBucket.DATA_QUALITY, dim, key) is not None
        ]
        if missing or quality:
            evidence = tuple(f"missing_metric:{m}" for m in missing)
            evidence += tuple(f"data_quality_synapse:{c}" for c in quality)
            return DiscrepancyClass.DATA_DIVERGENCE, Decimal("0.75"), evidence

        anomalies = [
            f"{dim.value}:{key}" for dim, key in cohorts
            if surface.read(SynapseBucket.ANOMALY, dim, key) is not None
        ]
        boundaries = [t.component_name for t in traces if t.boundary_hit]
        if anomalies or boundaries:
            evidence = tuple(f"anomaly_synapse:{c}" for c in anomalies)
            evidence += tuple(f"boundary_lookup:{name}" for name in boundaries)
            return DiscrepancyClass.LOGIC_DIVERGENCE, Decimal("0.7"), evidence

        if traces and benchmark != ZERO:
            pct = abs(delta) * HUNDRED / abs(benchmark)
            if pct > settings.data_divergence_pct:
                return (
                    DiscrepancyClass.DATA_DIVERGENCE,
                    Decimal("0.6"),
                    (f"delta_pct:{pct.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)}",),
                )

        return DiscrepancyClass.UNCLASSIFIED, Decimal("0.3"), ()

    @staticmethod
    def _false_green(
        external_id: str,
        total: Pairing,
        component_pairings: list[Pairing],
        surface: SynapticSurface,
        settings: ReconciliationSettings,
    ) -> FalseGreen | None:
        # rounding-level totals count as green
        if total.delta is None or abs(total.delta) >= settings.rounding_threshold:
            return None

        if component_pairings:
            offsetting = sum(
                (abs(p.delta) for p in component_pairings
                 if p.status is not PairingStatus.MATCH and p.delta is not None),
                ZERO,
            )
            if offsetting > settings.false_green_threshold:
                return FalseGreen(
                    entity_external_id=external_id,
                    suspected=False,
                    reason="offsetting_component_discrepancies",
                    offsetting_delta=offsetting,
                )
            return None

        if surface.has_repeated(
            SynapseBucket.CORRECTION,
            CohortDimension.ENTITY,
            external_id,
            min_count=settings.repeated_correction_count,
        ):
            return FalseGreen(
                entity_external_id=external_id,
                suspected=True,
                reason="repeated_correction_history",
            )
        return None
