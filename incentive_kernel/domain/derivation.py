"""
Derivation -- stored rules describing how a metric is computed from raw data.

Responsibility:
    Typed form of ``input_bindings.metric_derivations[]`` entries plus the
    merge policy convergence uses to fold new rules into a plan's stored
    set.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Metric names are unique within a derivation set.  The one exception
      path is a ``ratio`` arriving for a metric that already has a raw
      derivation: the raw entry is renamed ``{metric}_actuals`` first.
    - Merging an unchanged metric + operation pair is a no-op, so
      re-convergence with unchanged inputs adds nothing.

Failure modes:
    - InvalidDerivationError for an unknown operation, a ratio without
      numerator/denominator, or a non-ratio without a source field
      (``count`` excepted).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any

from incentive_kernel.domain.amounts import to_decimal
from incentive_kernel.exceptions import InvalidDerivationError


class DerivationOperation(str, Enum):
    SUM = "sum"
    COUNT = "count"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    RATIO = "ratio"


class FilterOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"


@dataclass(frozen=True)
class DerivationFilter:
    """Row predicate applied before aggregation."""

    field: str
    operator: FilterOperator
    value: Any

    def matches(self, row: dict[str, Any]) -> bool:
        actual = row.get(self.field)
        if actual is None:
            return False
        if self.operator is FilterOperator.CONTAINS:
            return str(self.value).lower() in str(actual).lower()
        if self.operator in (FilterOperator.EQ, FilterOperator.NEQ):
            left, right = to_decimal(actual), to_decimal(self.value)
            if left is not None and right is not None:
                equal = left == right
            else:
                equal = str(actual).strip().lower() == str(self.value).strip().lower()
            return equal if self.operator is FilterOperator.EQ else not equal

        left, right = to_decimal(actual), to_decimal(self.value)
        if left is None or right is None:
            return False
        if self.operator is FilterOperator.GT:
            return left > right
        if self.operator is FilterOperator.GTE:
            return left >= right
        if self.operator is FilterOperator.LT:
            return left < right
        return left <= right

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}


@dataclass(frozen=True)
class MetricDerivation:
    """
    One derivation rule.

    ``source_pattern`` is matched case-insensitively as a substring of a
    row's ``data_type``.  ``confidence`` is 1 for deterministic bindings and
    the AI's confidence for ``ai_assisted`` ones.
    """

    metric: str
    operation: DerivationOperation
    source_pattern: str = ""
    source_field: str | None = None
    filters: tuple[DerivationFilter, ...] = ()
    numerator_metric: str | None = None
    denominator_metric: str | None = None
    scale_factor: Decimal = Decimal("1")
    confidence: Decimal = Decimal("1")
    ai_assisted: bool = False
    signal_id: str | None = None

    def matches_data_type(self, data_type: str) -> bool:
        return self.source_pattern.lower() in data_type.lower()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "metric": self.metric,
            "operation": self.operation.value,
            "source_pattern": self.source_pattern,
            "source_field": self.source_field,
            "filters": [f.to_dict() for f in self.filters],
            "confidence": str(self.confidence),
            "ai_assisted": self.ai_assisted,
        }
        if self.operation is DerivationOperation.RATIO:
            payload["numerator_metric"] = self.numerator_metric
            payload["denominator_metric"] = self.denominator_metric
            payload["scale_factor"] = str(self.scale_factor)
        if self.signal_id:
            payload["signal_id"] = self.signal_id
        return payload


def _decimal_or(raw: Any, default: Decimal) -> Decimal:
    value = to_decimal(raw)
    return default if value is None else value


def parse_derivation(raw: dict[str, Any]) -> MetricDerivation:
    """
    Validate one stored derivation entry.

    Raises:
        InvalidDerivationError: see module docstring.
    """
    metric = raw.get("metric")
    if not metric:
        raise InvalidDerivationError("<unnamed>", "metric is required")
    try:
        operation = DerivationOperation(raw.get("operation"))
    except ValueError:
        raise InvalidDerivationError(metric, f"unknown operation {raw.get('operation')!r}")

    if operation is DerivationOperation.RATIO:
        if not raw.get("numerator_metric") or not raw.get("denominator_metric"):
            raise InvalidDerivationError(metric, "ratio needs numerator_metric and denominator_metric")
    elif operation is not DerivationOperation.COUNT and not raw.get("source_field"):
        raise InvalidDerivationError(metric, f"{operation.value} needs source_field")

    filters = []
    for raw_filter in raw.get("filters") or []:
        try:
            filters.append(
                DerivationFilter(
                    field=raw_filter["field"],
                    operator=FilterOperator(raw_filter.get("operator", "eq")),
                    value=raw_filter.get("value"),
                )
            )
        except (KeyError, ValueError):
            raise InvalidDerivationError(metric, f"bad filter {raw_filter!r}")

    return MetricDerivation(
        metric=str(metric),
        operation=operation,
        source_pattern=str(raw.get("source_pattern") or ""),
        source_field=raw.get("source_field"),
        filters=tuple(filters),
        numerator_metric=raw.get("numerator_metric"),
        denominator_metric=raw.get("denominator_metric"),
        scale_factor=_decimal_or(raw.get("scale_factor"), Decimal("1")),
        confidence=_decimal_or(raw.get("confidence"), Decimal("1")),
        ai_assisted=bool(raw.get("ai_assisted", False)),
        signal_id=raw.get("signal_id"),
    )


def parse_derivations(raw_bindings: dict[str, Any] | None) -> tuple[MetricDerivation, ...]:
    """Parse ``input_bindings`` into derivations (empty when absent)."""
    entries = (raw_bindings or {}).get("metric_derivations") or []
    return tuple(parse_derivation(entry) for entry in entries)


@dataclass(frozen=True)
class MergeOutcome:
    """Result of folding new derivations into an existing set."""

    derivations: tuple[MetricDerivation, ...]
    appended: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    renamed: tuple[tuple[str, str], ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.appended or self.renamed)


def actuals_name(metric: str) -> str:
    return f"{metric}_actuals"


def target_name(metric: str) -> str:
    return f"{metric}_target"


def merge_derivations(
    existing: tuple[MetricDerivation, ...] | list[MetricDerivation],
    incoming: tuple[MetricDerivation, ...] | list[MetricDerivation],
) -> MergeOutcome:
    """
    Fold ``incoming`` into ``existing``.

    Policy, applied per incoming entry in order:
        - metric not present: append.
        - same metric, same operation: skip.
        - ratio for a metric held by a raw derivation: rename the raw entry
          to ``{metric}_actuals`` (dropping it if that name is taken) and
          append the ratio.
        - any other conflict (e.g. a raw derivation arriving for a metric
          already served by a ratio): skip, the stored entry wins.
    """
    merged = list(existing)
    appended: list[str] = []
    skipped: list[str] = []
    renamed: list[tuple[str, str]] = []

    for derivation in incoming:
        position = next(
            (i for i, d in enumerate(merged) if d.metric == derivation.metric), None,
        )
        if position is None:
            merged.append(derivation)
            appended.append(derivation.metric)
            continue

        current = merged[position]
        if current.operation is derivation.operation:
            skipped.append(derivation.metric)
            continue

        if (
            derivation.operation is DerivationOperation.RATIO
            and current.operation is not DerivationOperation.RATIO
        ):
            new_name = actuals_name(derivation.metric)
            if any(d.metric == new_name for d in merged):
                del merged[position]
            else:
                merged[position] = replace(current, metric=new_name)
                renamed.append((derivation.metric, new_name))
            merged.append(derivation)
            appended.append(derivation.metric)
            continue

        skipped.append(derivation.metric)

    return MergeOutcome(
        derivations=tuple(merged),
        appended=tuple(appended),
        skipped=tuple(skipped),
        renamed=tuple(renamed),
    )
