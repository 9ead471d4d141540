"""
incentive_engines.components -- Evaluate a plan variant for one entity.

Responsibility:
    Compute each enabled component's payout (tier, matrix, percentage,
    conditional gate), apply the plan's gate scope, and emit one
    ExecutionTrace per enabled component.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Metric values arrive
    already resolved (see ``metric_resolution``).

Invariants enforced:
    - ``len(traces) == len(variant.enabled_components)``.
    - ``total == sum(component payouts)``; every payout is quantized to
      cents (ROUND_HALF_UP).
    - Tier and matrix lookups follow the band policy in ``bands``.
    - Percentage: ``metric * rate``; $0 below ``min_threshold``; ``cap``
      applied after multiplication.
    - Gate scope VARIANT: a failed gate zeroes every component of the
      variant.  Gate scope COMPONENT: a failed gate only zeroes itself.
    - A component with a missing input pays $0 and names the metric in its
      modifiers; a gate with a missing input fails.

Failure modes:
    - None raised for data problems.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from incentive_engines.bands import resolve_axis, resolve_tier
from incentive_engines.tracer import traced_engine
from incentive_kernel.domain.amounts import ZERO, quantize_cents, to_decimal
from incentive_kernel.domain.plan import (
    GateComponent,
    GateOperator,
    GateScope,
    MatrixComponent,
    PercentageComponent,
    PlanComponent,
    TierComponent,
    Variant,
    selector_key,
)
from incentive_kernel.domain.trace import MISSING_PATH, ExecutionTrace, ResolvedInput
from incentive_kernel.logging_config import get_logger

logger = get_logger("engines.components")

ONE = Decimal("1")


@dataclass(frozen=True)
class ComponentPayout:
    component_name: str
    component_type: str
    payout: Decimal
    trace: ExecutionTrace

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.component_name,
            "type": self.component_type,
            "payout": str(self.payout),
            "trace_id": self.trace.trace_id,
        }


@dataclass(frozen=True)
class VariantEvaluation:
    """Outcome of evaluating one variant for one entity."""

    variant_id: str
    payouts: tuple[ComponentPayout, ...]
    total: Decimal
    missing_metrics: tuple[str, ...] = ()
    gate_blocked: bool = False
    flags: tuple[str, ...] = field(default=())

    @property
    def traces(self) -> tuple[ExecutionTrace, ...]:
        return tuple(p.trace for p in self.payouts)


@dataclass
class _RawOutcome:
    """Per-component intermediate before gate scope is applied."""

    inputs: tuple[ResolvedInput, ...]
    payout: Decimal
    lookup: dict[str, Any]
    modifiers: list[str]
    gate_passed: bool | None = None


def _missing_modifiers(inputs: tuple[ResolvedInput, ...]) -> list[str]:
    return [f"missing_metric:{i.metric}" for i in inputs if i.is_missing]


def _input(metrics: Mapping[str, ResolvedInput], metric: str) -> ResolvedInput:
    return metrics.get(metric) or ResolvedInput(metric=metric, value=None, path=MISSING_PATH)


def _compare(left: Any, operator: GateOperator, right: Any) -> bool:
    if operator is GateOperator.GTE:
        return left >= right
    if operator is GateOperator.GT:
        return left > right
    if operator is GateOperator.LTE:
        return left <= right
    if operator is GateOperator.LT:
        return left < right
    if operator is GateOperator.EQ:
        return left == right
    return left != right


class ComponentEvaluator:
    """
    Pure evaluator for plan components.

    Contract:
        No I/O, no database access, fully deterministic.
    """

    @traced_engine(
        "component_evaluation", "1.0",
        fingerprint_fields=("variant_id", "metrics", "attributes"),
    )
    def evaluate_variant(
        self,
        *,
        variant: Variant,
        variant_id: str,
        metrics: Mapping[str, ResolvedInput],
        attributes: Mapping[str, Any],
        gate_scope: GateScope = GateScope.VARIANT,
        trace_prefix: str = "",
    ) -> VariantEvaluation:
        """
        Evaluate ``variant``'s enabled components in order.

        Preconditions:
            - ``metrics`` holds a ResolvedInput for every metric the enabled
              components require (missing ones marked missing).
            - ``variant_id`` equals ``variant.variant_id`` (kept separate so
              it appears in the input fingerprint).

        Postconditions:
            - One payout and one trace per enabled component.
        """
        components = variant.enabled_components
        raw = [self._evaluate(component, metrics, attributes) for component in components]

        failed_gates = [
            component.name
            for component, outcome in zip(components, raw)
            if outcome.gate_passed is False
        ]
        gate_blocked = bool(failed_gates) and gate_scope is GateScope.VARIANT

        payouts = []
        for component, outcome in zip(components, raw):
            modifiers = list(outcome.modifiers)
            payout = outcome.payout
            if gate_blocked and outcome.gate_passed is not False:
                modifiers.append(f"blocked_by_gate:{failed_gates[0]}")
                payout = ZERO
            payout = quantize_cents(payout)

            confidence = min((i.confidence for i in outcome.inputs), default=ONE)
            trace = ExecutionTrace(
                trace_id=f"{trace_prefix}{variant.variant_id}:{component.index}",
                component_index=component.index,
                component_name=component.name,
                component_type=component.kind.value,
                inputs=outcome.inputs,
                lookup=outcome.lookup,
                modifiers=tuple(modifiers),
                confidence=confidence,
                outcome=payout,
            )
            payouts.append(
                ComponentPayout(
                    component_name=component.name,
                    component_type=component.kind.value,
                    payout=payout,
                    trace=trace,
                )
            )

        missing = sorted({
            i.metric for outcome in raw for i in outcome.inputs if i.is_missing
        })
        flags = []
        if missing:
            flags.append("missing_metrics")
        if gate_blocked:
            flags.append("gate_blocked")
            logger.info(
                "variant_blocked_by_gate",
                extra={"variant_id": variant.variant_id, "gates": failed_gates},
            )

        return VariantEvaluation(
            variant_id=variant.variant_id,
            payouts=tuple(payouts),
            total=sum((p.payout for p in payouts), ZERO),
            missing_metrics=tuple(missing),
            gate_blocked=gate_blocked,
            flags=tuple(flags),
        )

    def _evaluate(
        self,
        component: PlanComponent,
        metrics: Mapping[str, ResolvedInput],
        attributes: Mapping[str, Any],
    ) -> _RawOutcome:
        if isinstance(component, TierComponent):
            return self._tier(component, metrics)
        if isinstance(component, MatrixComponent):
            return self._matrix(component, metrics)
        if isinstance(component, PercentageComponent):
            return self._percentage(component, metrics)
        if isinstance(component, GateComponent):
            return self._gate(component, metrics, attributes)
        raise TypeError(f"unsupported component {type(component).__name__}")

    @staticmethod
    def _tier(component: TierComponent, metrics: Mapping[str, ResolvedInput]) -> _RawOutcome:
        inp = _input(metrics, component.config.metric)
        inputs = (inp,)
        if inp.is_missing:
            return _RawOutcome(inputs, ZERO, {"status": "missing_input"}, _missing_modifiers(inputs))

        hit = resolve_tier(inp.value, component.config.tiers)
        payout = hit.band.value if hit.band is not None else ZERO
        lookup = hit.to_dict()
        lookup["value"] = str(payout)
        modifiers = []
        if hit.clamped == "below":
            modifiers.append("below_first_tier")
        elif hit.clamped == "above":
            modifiers.append("clamped_to_top_tier")
        if hit.in_gap:
            modifiers.append("gap_resolved_to_lower_tier")
        return _RawOutcome(inputs, payout, lookup, modifiers)

    @staticmethod
    def _matrix(component: MatrixComponent, metrics: Mapping[str, ResolvedInput]) -> _RawOutcome:
        config = component.config
        row_input = _input(metrics, config.row_metric)
        column_input = _input(metrics, config.column_metric)
        inputs = (row_input, column_input)
        if row_input.is_missing or column_input.is_missing:
            return _RawOutcome(inputs, ZERO, {"status": "missing_input"}, _missing_modifiers(inputs))

        row = resolve_axis(row_input.value, config.row_bands)
        column = resolve_axis(column_input.value, config.column_bands)
        payout = config.values[row.index][column.index]
        lookup = {
            "row": row.to_dict(),
            "column": column.to_dict(),
            "cell": [row.index, column.index],
            "value": str(payout),
            "clamped": bool(row.clamped or column.clamped),
            "boundary": row.boundary or column.boundary,
        }
        modifiers = []
        if row.clamped:
            modifiers.append(f"row_clamped_{row.clamped}")
        if column.clamped:
            modifiers.append(f"column_clamped_{column.clamped}")
        return _RawOutcome(inputs, payout, lookup, modifiers)

    @staticmethod
    def _percentage(
        component: PercentageComponent,
        metrics: Mapping[str, ResolvedInput],
    ) -> _RawOutcome:
        config = component.config
        inp = _input(metrics, config.metric)
        inputs = (inp,)
        if inp.is_missing:
            return _RawOutcome(inputs, ZERO, {"status": "missing_input"}, _missing_modifiers(inputs))

        raw_payout = inp.value * config.rate
        lookup: dict[str, Any] = {"rate": str(config.rate), "raw_payout": str(raw_payout)}
        modifiers = []
        payout = raw_payout
        if config.min_threshold is not None and inp.value < config.min_threshold:
            payout = ZERO
            modifiers.append(f"below_min_threshold:{config.min_threshold}")
        if config.cap is not None and payout > config.cap:
            payout = config.cap
            modifiers.append(f"capped:{config.cap}")
            lookup["boundary"] = True
        return _RawOutcome(inputs, payout, lookup, modifiers)

    @staticmethod
    def _gate(
        component: GateComponent,
        metrics: Mapping[str, ResolvedInput],
        attributes: Mapping[str, Any],
    ) -> _RawOutcome:
        config = component.config
        if config.metric:
            inp = _input(metrics, config.metric)
            inputs = (inp,)
            if inp.is_missing:
                return _RawOutcome(
                    inputs, ZERO,
                    {"status": "missing_input", "passed": False},
                    _missing_modifiers(inputs),
                    gate_passed=False,
                )
            passed = _compare(inp.value, config.operator, config.value)
            operand = str(inp.value)
        else:
            inputs = ()
            raw = attributes.get(config.attribute)
            if config.operator in (GateOperator.EQ, GateOperator.NEQ):
                passed = raw is not None and _compare(
                    selector_key(raw), config.operator, selector_key(config.value),
                )
                if raw is None and config.operator is GateOperator.NEQ:
                    passed = True
            else:
                numeric = to_decimal(raw)
                passed = numeric is not None and _compare(numeric, config.operator, config.value)
            operand = None if raw is None else str(raw)

        lookup = {
            "passed": passed,
            "operand": operand,
            "operator": config.operator.value,
            "threshold": str(config.value),
        }
        modifiers = [] if passed else [f"gate_failed:{component.name}"]
        payout = config.payout if passed else ZERO
        return _RawOutcome(inputs, payout, lookup, modifiers, gate_passed=passed)
