"""
Plan -- typed model of a compensation plan (rule set).

Responsibility:
    Validates the stored JSON blobs of a ``RuleSet`` into a tagged union of
    frozen component types at load time.  Evaluation code dispatches on
    ``component.kind`` and never inspects raw dicts.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Tier bands are sorted ascending, non-overlapping, and only the last
      band may be open-ended (``max`` is None).
    - Matrix value tables have exactly ``len(row_bands)`` rows of
      ``len(column_bands)`` values.
    - A conditional gate tests exactly one of a metric or an attribute.
    - Every variant the selector can choose exists in the plan.
    - A plan has at least one enabled component.

Failure modes:
    - InvalidComponentError for a malformed component blob.
    - UnknownVariantError when the selector names a missing variant.
    - NoComponentsError when no variant has an enabled component.

Usage:
    plan = parse_plan(
        rule_set_id=str(rule_set.id),
        name=rule_set.name,
        components=rule_set.components,
        population=rule_set.population_config,
    )
    variant = plan.select_variant(entity.attributes)
    for component in variant.enabled_components:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union

from incentive_kernel.domain.amounts import to_decimal
from incentive_kernel.exceptions import (
    InvalidComponentError,
    NoComponentsError,
    UnknownVariantError,
)


class ComponentKind(str, Enum):
    """Discriminator stored in ``componentType``."""

    TIER_LOOKUP = "tier_lookup"
    MATRIX_LOOKUP = "matrix_lookup"
    PERCENTAGE = "percentage"
    CONDITIONAL_GATE = "conditional_gate"


class GateOperator(str, Enum):
    """Comparison operators for conditional gates."""

    GTE = ">="
    GT = ">"
    LTE = "<="
    LT = "<"
    EQ = "=="
    NEQ = "!="


class GateScope(str, Enum):
    """What a failed gate blocks."""

    VARIANT = "variant"  # every component in the variant pays $0
    COMPONENT = "component"  # only the gate itself pays $0


@dataclass(frozen=True)
class Band:
    """
    One band of a tier table or matrix axis.

    Both ends are inclusive.  ``max`` None means open-ended.
    ``value`` is the payout for tier bands and unused on matrix axes.
    """

    min: Decimal
    max: Decimal | None
    value: Decimal = Decimal("0")
    label: str = ""

    def contains(self, amount: Decimal) -> bool:
        return amount >= self.min and (self.max is None or amount <= self.max)

    def to_dict(self) -> dict[str, Any]:
        return {
            "min": str(self.min),
            "max": str(self.max) if self.max is not None else None,
            "value": str(self.value),
            "label": self.label,
        }


@dataclass(frozen=True)
class TierConfig:
    metric: str
    tiers: tuple[Band, ...]


@dataclass(frozen=True)
class MatrixConfig:
    row_metric: str
    column_metric: str
    row_bands: tuple[Band, ...]
    column_bands: tuple[Band, ...]
    values: tuple[tuple[Decimal, ...], ...]


@dataclass(frozen=True)
class PercentageConfig:
    metric: str
    rate: Decimal
    cap: Decimal | None = None
    min_threshold: Decimal | None = None


@dataclass(frozen=True)
class GateConfig:
    operator: GateOperator
    value: Any
    metric: str | None = None
    attribute: str | None = None
    payout: Decimal = Decimal("0")


@dataclass(frozen=True)
class _ComponentBase:
    component_id: str
    name: str
    enabled: bool
    index: int

    kind: ClassVar[ComponentKind]

    @property
    def required_metrics(self) -> tuple[str, ...]:
        raise NotImplementedError


@dataclass(frozen=True)
class TierComponent(_ComponentBase):
    config: TierConfig = field(kw_only=True)

    kind: ClassVar[ComponentKind] = ComponentKind.TIER_LOOKUP

    @property
    def required_metrics(self) -> tuple[str, ...]:
        return (self.config.metric,)


@dataclass(frozen=True)
class MatrixComponent(_ComponentBase):
    config: MatrixConfig = field(kw_only=True)

    kind: ClassVar[ComponentKind] = ComponentKind.MATRIX_LOOKUP

    @property
    def required_metrics(self) -> tuple[str, ...]:
        return (self.config.row_metric, self.config.column_metric)


@dataclass(frozen=True)
class PercentageComponent(_ComponentBase):
    config: PercentageConfig = field(kw_only=True)

    kind: ClassVar[ComponentKind] = ComponentKind.PERCENTAGE

    @property
    def required_metrics(self) -> tuple[str, ...]:
        return (self.config.metric,)


@dataclass(frozen=True)
class GateComponent(_ComponentBase):
    config: GateConfig = field(kw_only=True)

    kind: ClassVar[ComponentKind] = ComponentKind.CONDITIONAL_GATE

    @property
    def required_metrics(self) -> tuple[str, ...]:
        return (self.config.metric,) if self.config.metric else ()


PlanComponent = Union[TierComponent, MatrixComponent, PercentageComponent, GateComponent]


@dataclass(frozen=True)
class Variant:
    variant_id: str
    name: str
    components: tuple[PlanComponent, ...]

    @property
    def enabled_components(self) -> tuple[PlanComponent, ...]:
        return tuple(c for c in self.components if c.enabled)


@dataclass(frozen=True)
class VariantSelector:
    """
    Chooses a variant from one entity attribute.

    ``values`` maps normalized attribute values (see ``selector_key``) to
    variant ids.  ``default`` applies when the attribute is absent or
    unmapped; with no default the plan's first variant is used.
    """

    attribute: str
    values: tuple[tuple[str, str], ...]
    default: str | None = None

    def select(self, attributes: dict[str, Any]) -> str | None:
        raw = attributes.get(self.attribute)
        if raw is not None:
            key = selector_key(raw)
            for value, variant_id in self.values:
                if value == key:
                    return variant_id
        return self.default


@dataclass(frozen=True)
class PopulationConfig:
    variant_selector: VariantSelector | None = None
    group_key: str | None = None
    gate_scope: GateScope = GateScope.VARIANT


@dataclass(frozen=True)
class Plan:
    """A validated plan."""

    rule_set_id: str
    name: str
    variants: tuple[Variant, ...]
    population: PopulationConfig = PopulationConfig()

    def variant(self, variant_id: str) -> Variant:
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        raise UnknownVariantError(variant_id)

    def select_variant(self, attributes: dict[str, Any]) -> Variant:
        selector = self.population.variant_selector
        if selector is not None:
            chosen = selector.select(attributes or {})
            if chosen is not None:
                return self.variant(chosen)
        return self.variants[0]

    def enabled_components(self) -> tuple[PlanComponent, ...]:
        return tuple(c for v in self.variants for c in v.enabled_components)

    def required_metrics(self) -> tuple[str, ...]:
        """Metrics used by any enabled component, first-seen order."""
        seen: dict[str, None] = {}
        for component in self.enabled_components():
            for metric in component.required_metrics:
                seen.setdefault(metric, None)
        return tuple(seen)


def selector_key(value: Any) -> str:
    """Normalize an attribute value for variant / gate comparison."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip().lower()


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _require_decimal(raw: Any, component_name: str, what: str) -> Decimal:
    value = to_decimal(raw)
    if value is None:
        raise InvalidComponentError(component_name, f"{what} must be numeric, got {raw!r}")
    return value


def _parse_bands(
    raw_bands: Any,
    component_name: str,
    what: str,
    with_value: bool,
) -> tuple[Band, ...]:
    if not isinstance(raw_bands, list) or not raw_bands:
        raise InvalidComponentError(component_name, f"{what} must be a non-empty list")

    bands = []
    for raw in raw_bands:
        if not isinstance(raw, dict):
            raise InvalidComponentError(component_name, f"{what} entries must be objects")
        low = _require_decimal(raw.get("min"), component_name, f"{what}.min")
        high = None
        if raw.get("max") is not None:
            high = _require_decimal(raw.get("max"), component_name, f"{what}.max")
            if high < low:
                raise InvalidComponentError(component_name, f"{what} band max {high} < min {low}")
        value = Decimal("0")
        if with_value:
            value = _require_decimal(raw.get("value"), component_name, f"{what}.value")
        bands.append(Band(min=low, max=high, value=value, label=str(raw.get("label", ""))))

    bands.sort(key=lambda b: b.min)
    for prev, nxt in zip(bands, bands[1:]):
        if prev.max is None:
            raise InvalidComponentError(
                component_name, f"{what}: only the last band may be open-ended",
            )
        if nxt.min <= prev.max:
            raise InvalidComponentError(
                component_name,
                f"{what}: bands overlap ({prev.min}-{prev.max} and {nxt.min})",
            )
    return tuple(bands)


def _parse_tier(raw: dict[str, Any], name: str) -> TierConfig:
    metric = raw.get("metric")
    if not metric:
        raise InvalidComponentError(name, "tierConfig.metric is required")
    return TierConfig(
        metric=str(metric),
        tiers=_parse_bands(raw.get("tiers"), name, "tiers", with_value=True),
    )


def _parse_matrix(raw: dict[str, Any], name: str) -> MatrixConfig:
    row_metric = raw.get("rowMetric")
    column_metric = raw.get("columnMetric")
    if not row_metric or not column_metric:
        raise InvalidComponentError(name, "matrixConfig needs rowMetric and columnMetric")

    row_bands = _parse_bands(raw.get("rowBands"), name, "rowBands", with_value=False)
    column_bands = _parse_bands(raw.get("columnBands"), name, "columnBands", with_value=False)

    raw_values = raw.get("values")
    if not isinstance(raw_values, list) or len(raw_values) != len(row_bands):
        raise InvalidComponentError(
            name, f"matrix values must have {len(row_bands)} rows",
        )
    rows = []
    for r, raw_row in enumerate(raw_values):
        if not isinstance(raw_row, list) or len(raw_row) != len(column_bands):
            raise InvalidComponentError(
                name, f"matrix row {r} must have {len(column_bands)} values",
            )
        rows.append(tuple(_require_decimal(v, name, f"values[{r}]") for v in raw_row))

    return MatrixConfig(
        row_metric=str(row_metric),
        column_metric=str(column_metric),
        row_bands=row_bands,
        column_bands=column_bands,
        values=tuple(rows),
    )


def _parse_percentage(raw: dict[str, Any], name: str) -> PercentageConfig:
    metric = raw.get("metric")
    if not metric:
        raise InvalidComponentError(name, "percentageConfig.metric is required")
    cap = None
    if raw.get("cap") is not None:
        cap = _require_decimal(raw.get("cap"), name, "cap")
        if cap < 0:
            raise InvalidComponentError(name, "cap must not be negative")
    min_threshold = None
    if raw.get("minThreshold") is not None:
        min_threshold = _require_decimal(raw.get("minThreshold"), name, "minThreshold")
    return PercentageConfig(
        metric=str(metric),
        rate=_require_decimal(raw.get("rate"), name, "rate"),
        cap=cap,
        min_threshold=min_threshold,
    )


def _parse_gate(raw: dict[str, Any], name: str) -> GateConfig:
    metric = raw.get("metric")
    attribute = raw.get("attribute")
    if bool(metric) == bool(attribute):
        raise InvalidComponentError(name, "gateConfig needs exactly one of metric or attribute")
    try:
        operator = GateOperator(raw.get("operator", ">="))
    except ValueError:
        raise InvalidComponentError(name, f"unknown gate operator {raw.get('operator')!r}")
    if "value" not in raw:
        raise InvalidComponentError(name, "gateConfig.value is required")

    value = raw["value"]
    if metric:
        value = _require_decimal(value, name, "gateConfig.value")
    elif operator not in (GateOperator.EQ, GateOperator.NEQ):
        numeric = to_decimal(value)
        if numeric is None:
            raise InvalidComponentError(
                name, f"operator {operator.value} needs a numeric value",
            )
        value = numeric

    payout = Decimal("0")
    if raw.get("payout") is not None:
        payout = _require_decimal(raw.get("payout"), name, "payout")

    return GateConfig(
        operator=operator,
        value=value,
        metric=str(metric) if metric else None,
        attribute=str(attribute) if attribute else None,
        payout=payout,
    )


_CONFIG_PARSERS = {
    ComponentKind.TIER_LOOKUP: ("tierConfig", _parse_tier, TierComponent),
    ComponentKind.MATRIX_LOOKUP: ("matrixConfig", _parse_matrix, MatrixComponent),
    ComponentKind.PERCENTAGE: ("percentageConfig", _parse_percentage, PercentageComponent),
    ComponentKind.CONDITIONAL_GATE: ("gateConfig", _parse_gate, GateComponent),
}


def parse_component(raw: dict[str, Any], index: int) -> PlanComponent:
    """
    Validate one component blob.

    Raises:
        InvalidComponentError: unknown ``componentType`` or bad config.
    """
    name = str(raw.get("name") or raw.get("id") or f"component_{index}")
    try:
        kind = ComponentKind(raw.get("componentType"))
    except ValueError:
        raise InvalidComponentError(name, f"unknown componentType {raw.get('componentType')!r}")

    config_key, parser, component_cls = _CONFIG_PARSERS[kind]
    config_raw = raw.get(config_key)
    if not isinstance(config_raw, dict):
        raise InvalidComponentError(name, f"{config_key} is required for {kind.value}")

    enabled = raw.get("enabled", True)
    if not isinstance(enabled, bool):
        raise InvalidComponentError(name, f"enabled must be true or false, got {enabled!r}")

    return component_cls(
        component_id=str(raw.get("id") or name),
        name=name,
        enabled=enabled,
        index=index,
        config=parser(config_raw, name),
    )


_POPULATION = "population_config"


def _parse_population(raw: dict[str, Any] | None) -> PopulationConfig:
    raw = raw or {}
    selector = None
    selector_raw = raw.get("variant_selector")
    if selector_raw is not None:
        if not isinstance(selector_raw, dict):
            raise InvalidComponentError(_POPULATION, "variant_selector must be an object")
        attribute = selector_raw.get("attribute")
        if not attribute:
            raise InvalidComponentError(_POPULATION, "variant_selector.attribute is required")
        values_raw = selector_raw.get("values") or {}
        if not isinstance(values_raw, dict):
            raise InvalidComponentError(_POPULATION, "variant_selector.values must be an object")
        values = tuple((selector_key(k), str(v)) for k, v in values_raw.items())
        default = selector_raw.get("default")
        selector = VariantSelector(
            attribute=str(attribute),
            values=values,
            default=str(default) if default is not None else None,
        )

    scope_raw = raw.get("gate_scope", GateScope.VARIANT.value)
    try:
        gate_scope = GateScope(scope_raw)
    except ValueError:
        allowed = ", ".join(s.value for s in GateScope)
        raise InvalidComponentError(
            _POPULATION, f"unknown gate_scope {scope_raw!r} (expected one of {allowed})",
        )
    return PopulationConfig(
        variant_selector=selector,
        group_key=raw.get("group_key"),
        gate_scope=gate_scope,
    )


def parse_plan(
    rule_set_id: str,
    name: str,
    components: dict[str, Any] | list[Any] | None,
    population: dict[str, Any] | None = None,
) -> Plan:
    """
    Validate a rule set's ``components`` and ``population_config`` blobs.

    A bare list of components is accepted as a single ``default`` variant.

    Raises:
        InvalidComponentError, UnknownVariantError, NoComponentsError.
    """
    if isinstance(components, list):
        raw_variants = [{"variant_id": "default", "name": "Default", "components": components}]
    else:
        raw_variants = (components or {}).get("variants") or []

    variants = []
    for v_index, raw_variant in enumerate(raw_variants):
        variant_id = str(raw_variant.get("variant_id") or f"variant_{v_index}")
        parsed = tuple(
            parse_component(raw, index)
            for index, raw in enumerate(raw_variant.get("components") or [])
        )
        variants.append(
            Variant(
                variant_id=variant_id,
                name=str(raw_variant.get("name") or variant_id),
                components=parsed,
            )
        )

    plan = Plan(
        rule_set_id=rule_set_id,
        name=name,
        variants=tuple(variants),
        population=_parse_population(population),
    )

    if not plan.enabled_components():
        raise NoComponentsError(rule_set_id)

    selector = plan.population.variant_selector
    if selector is not None:
        referenced = [variant_id for _, variant_id in selector.values]
        if selector.default is not None:
            referenced.append(selector.default)
        for variant_id in referenced:
            plan.variant(variant_id)

    return plan
