"""
incentive_engines.metric_resolution -- Resolve plan metrics for one entity.

Responsibility:
    Turn a metric name into a value plus a traceable resolution path using
    the entity's committed rows, the group-level rows of its group, the
    plan's derivation rules and the entity's attributes.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Rows are loaded by the
    calculation service and passed in.

Invariants enforced:
    - Resolution order is fixed:
        1. direct field on entity-level rows     -> ``direct:<data_type>.<field>``
        2. derivation rule over entity-level rows -> ``derived:<op>(<pattern>.<field>)``
        3. derivation rule over group-level rows  -> ``aggregated:<group_key>=<value>``
        4. entity attribute                       -> ``attribute:<name>``
        5. unresolved                             -> ``missing``
    - Ratio derivations recurse over other metrics with cycle protection;
      their confidence is the minimum over dependencies.
    - A metric is never guessed: anything not bound by steps 1-4 is
      reported as missing.

Failure modes:
    - None raised.  Cycles and zero denominators resolve to ``missing``.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from incentive_kernel.domain.amounts import to_decimal
from incentive_kernel.domain.data_row import DataRow
from incentive_kernel.domain.derivation import DerivationOperation, MetricDerivation
from incentive_kernel.domain.trace import MISSING_PATH, ResolvedInput
from incentive_kernel.logging_config import get_logger

logger = get_logger("engines.metric_resolution")

RATIO_PLACES = Decimal("0.0001")
ONE = Decimal("1")


@dataclass(frozen=True)
class EntityContext:
    """Everything metric resolution may read for one entity."""

    entity_id: str
    external_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    rows: tuple[DataRow, ...] = ()
    group_rows: tuple[DataRow, ...] = ()
    group_key: str | None = None

    @property
    def group_value(self) -> str | None:
        if not self.group_key:
            return None
        value = self.attributes.get(self.group_key)
        return str(value) if value is not None else None


def group_rows_for(
    group_key: str | None,
    group_value: str | None,
    rows: Iterable[DataRow],
) -> tuple[DataRow, ...]:
    """Group-level rows whose ``group_key`` field equals ``group_value``."""
    if not group_key or group_value is None:
        return ()
    return tuple(
        row for row in rows
        if row.is_group_level and str(row.row_data.get(group_key)) == group_value
    )


def _aggregate(
    derivation: MetricDerivation,
    rows: Sequence[DataRow],
) -> Decimal | None:
    matching = [
        row for row in rows
        if derivation.matches_data_type(row.data_type)
        and all(f.matches(row.row_data) for f in derivation.filters)
    ]
    if not matching:
        return None

    if derivation.operation is DerivationOperation.COUNT:
        if derivation.source_field:
            return Decimal(
                sum(1 for row in matching if row.row_data.get(derivation.source_field) not in (None, ""))
            )
        return Decimal(len(matching))

    values = [
        v for v in (to_decimal(row.row_data.get(derivation.source_field)) for row in matching)
        if v is not None
    ]
    if not values:
        return None

    if derivation.operation is DerivationOperation.SUM:
        return sum(values, Decimal("0"))
    if derivation.operation is DerivationOperation.AVERAGE:
        return sum(values, Decimal("0")) / Decimal(len(values))
    if derivation.operation is DerivationOperation.MIN:
        return min(values)
    if derivation.operation is DerivationOperation.MAX:
        return max(values)
    raise ValueError(f"not an aggregate operation: {derivation.operation}")


class MetricResolver:
    """
    Resolves metrics against one plan's derivation set.

    Contract:
        Stateless per call; the same resolver may be reused across entities.

    Guarantees:
        - Returns a ResolvedInput for every requested metric (possibly
          missing); never raises for data problems.
    """

    def __init__(self, derivations: Sequence[MetricDerivation] = ()):
        self._derivations = {d.metric: d for d in derivations}

    def resolve_all(
        self,
        metrics: Iterable[str],
        context: EntityContext,
    ) -> dict[str, ResolvedInput]:
        resolved = {metric: self.resolve(metric, context) for metric in metrics}
        missing = sorted(m for m, r in resolved.items() if r.is_missing)
        if missing:
            logger.info(
                "metrics_unresolved",
                extra={"entity_external_id": context.external_id, "metrics": missing},
            )
        return resolved

    def resolve(self, metric: str, context: EntityContext) -> ResolvedInput:
        return self._resolve(metric, context, frozenset())

    def _resolve(
        self,
        metric: str,
        context: EntityContext,
        stack: frozenset[str],
    ) -> ResolvedInput:
        if metric in stack:
            logger.warning(
                "metric_derivation_cycle",
                extra={"metric": metric, "stack": sorted(stack)},
            )
            return ResolvedInput(metric=metric, value=None, path=MISSING_PATH)

        direct = self._direct(metric, context)
        if direct is not None:
            return direct

        derivation = self._derivations.get(metric)
        if derivation is not None:
            if derivation.operation is DerivationOperation.RATIO:
                return self._ratio(derivation, context, stack | {metric})

            value = _aggregate(derivation, context.rows)
            if value is not None:
                return ResolvedInput(
                    metric=metric,
                    value=value,
                    path=(
                        f"derived:{derivation.operation.value}"
                        f"({derivation.source_pattern}.{derivation.source_field or '*'})"
                    ),
                    confidence=derivation.confidence,
                )

            value = _aggregate(derivation, context.group_rows)
            if value is not None:
                return ResolvedInput(
                    metric=metric,
                    value=value,
                    path=f"aggregated:{context.group_key}={context.group_value}",
                    confidence=derivation.confidence,
                )

        attribute = to_decimal(context.attributes.get(metric))
        if attribute is not None:
            return ResolvedInput(metric=metric, value=attribute, path=f"attribute:{metric}")

        return ResolvedInput(metric=metric, value=None, path=MISSING_PATH)

    @staticmethod
    def _direct(metric: str, context: EntityContext) -> ResolvedInput | None:
        by_type: dict[str, list[Decimal]] = {}
        for row in context.rows:
            value = to_decimal(row.row_data.get(metric))
            if value is not None:
                by_type.setdefault(row.data_type, []).append(value)
        if not by_type:
            return None
        data_type = sorted(by_type)[0]
        return ResolvedInput(
            metric=metric,
            value=sum(by_type[data_type], Decimal("0")),
            path=f"direct:{data_type}.{metric}",
        )

    def _ratio(
        self,
        derivation: MetricDerivation,
        context: EntityContext,
        stack: frozenset[str],
    ) -> ResolvedInput:
        numerator = self._resolve(derivation.numerator_metric, context, stack)
        denominator = self._resolve(derivation.denominator_metric, context, stack)
        confidence = min(numerator.confidence, denominator.confidence, derivation.confidence)

        if numerator.is_missing or denominator.is_missing or denominator.value == 0:
            return ResolvedInput(
                metric=derivation.metric,
                value=None,
                path=MISSING_PATH,
                confidence=confidence,
            )

        value = (numerator.value / denominator.value * derivation.scale_factor).quantize(
            RATIO_PLACES, rounding=ROUND_HALF_UP,
        )
        return ResolvedInput(
            metric=derivation.metric,
            value=value,
            path=f"derived:ratio({derivation.numerator_metric}/{derivation.denominator_metric})",
            confidence=confidence,
        )
