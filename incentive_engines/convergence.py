"""
incentive_engines.convergence -- Bind plan metrics to raw data fields.

Responsibility:
    For every metric a plan's enabled components require, score candidate
    fields across all committed data types, choose the best one above the
    confidence threshold, build derivation rules, and merge them into the
    plan's stored derivations.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The service samples rows,
    supplies the AI disambiguator, persists bindings and emits signals.

Invariants enforced:
    - A metric whose best candidate scores below ``min_confidence`` is a
      gap: reported, never bound.
    - Scoring is deterministic.  When the top two candidates are within
      ``ambiguity_margin`` an injected disambiguator may pick one; its
      derivation is marked ``ai_assisted`` with the AI's confidence.
    - Deterministic derivations carry confidence 1.
    - Merging follows ``merge_derivations``: re-convergence with unchanged
      inputs appends nothing.

Scoring:
    token_score = (|metric ∩ field| + 0.5 * |metric ∩ (data_type - field)|) / |metric|
    affinity    = 1 same semantic type, 0.5 when either is unknown, 0 on conflict
    confidence  = min(0.95, 0.3 + 0.5 * token_score + 0.2 * affinity) if token_score > 0
                  else 0.2 * affinity
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from incentive_config.schema import ConvergenceSettings
from incentive_engines.tracer import traced_engine
from incentive_kernel.domain.amounts import to_decimal
from incentive_kernel.domain.data_row import DataRow
from incentive_kernel.domain.derivation import (
    DerivationOperation,
    MergeOutcome,
    MetricDerivation,
    actuals_name,
    merge_derivations,
    target_name,
)
from incentive_kernel.domain.plan import (
    GateComponent,
    MatrixComponent,
    PercentageComponent,
    Plan,
    TierComponent,
)
from incentive_kernel.logging_config import get_logger

logger = get_logger("engines.convergence")

PERFORMANCE_TARGET = "performance_target"

STOP_WORDS = frozenset({
    "the", "and", "for", "per", "ins", "cfg", "plan", "program",
    "2024", "2025", "2026",
})

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[^a-z0-9]+")

_BOOLEAN_WORDS = frozenset({"true", "false", "yes", "no", "y", "n", "t", "f"})

# Excel serial dates for roughly 2017-2031 read as integers.
_SERIAL_DATE_MIN = Decimal("43000")
_SERIAL_DATE_MAX = Decimal("48000")

NUMERIC_RATIO = Decimal("0.8")
CONFIDENCE_PLACES = Decimal("0.01")
CONFIDENCE_CAP = Decimal("0.95")


class SemanticType(str, Enum):
    ATTAINMENT = "attainment"
    GOAL = "goal"
    QUANTITY = "quantity"
    AMOUNT = "amount"
    UNKNOWN = "unknown"


_SEMANTIC_KEYWORDS: tuple[tuple[SemanticType, frozenset[str]], ...] = (
    (SemanticType.ATTAINMENT, frozenset({"attainment", "achievement", "rate", "ratio", "percent", "pct"})),
    (SemanticType.GOAL, frozenset({"goal", "target", "quota"})),
    (SemanticType.QUANTITY, frozenset({"count", "quantity", "qty", "unit", "number", "transaction"})),
    (SemanticType.AMOUNT, frozenset({"sale", "revenue", "amount", "premium", "volume", "dollar", "booking"})),
)


class FieldKind(str, Enum):
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    CATEGORICAL = "categorical"
    DATE_LIKE = "date_like"


def tokenize(name: str) -> tuple[str, ...]:
    """camelCase / snake_case aware tokens, stop words and short tokens dropped."""
    spaced = _CAMEL_BOUNDARY.sub("_", name or "")
    tokens: dict[str, None] = {}
    for part in _SEPARATORS.split(spaced.lower()):
        if len(part) <= 2 or part in STOP_WORDS:
            continue
        if len(part) > 3 and part.endswith("s") and not part.endswith("ss"):
            part = part[:-1]
        tokens.setdefault(part, None)
    return tuple(tokens)


def infer_semantic_type(tokens: Sequence[str]) -> SemanticType:
    token_set = set(tokens)
    for semantic_type, keywords in _SEMANTIC_KEYWORDS:
        if token_set & keywords:
            return semantic_type
    return SemanticType.UNKNOWN


@dataclass(frozen=True)
class FieldProfile:
    name: str
    kind: FieldKind
    tokens: tuple[str, ...]
    semantic_type: SemanticType
    role: str | None = None

    @property
    def is_numeric(self) -> bool:
        return self.kind is FieldKind.NUMERIC


@dataclass(frozen=True)
class DataTypeProfile:
    data_type: str
    tokens: tuple[str, ...]
    fields: tuple[FieldProfile, ...]
    row_count: int = 0

    def target_field(self) -> FieldProfile | None:
        for profile in self.fields:
            if profile.role == PERFORMANCE_TARGET and profile.is_numeric:
                return profile
        return None


def _field_kind(values: Sequence[Any]) -> FieldKind:
    present = [v for v in values if v not in (None, "")]
    if not present:
        return FieldKind.CATEGORICAL
    if all(isinstance(v, bool) or str(v).strip().lower() in _BOOLEAN_WORDS for v in present):
        return FieldKind.BOOLEAN
    numbers = [n for n in (to_decimal(v) for v in present) if n is not None]
    if Decimal(len(numbers)) < NUMERIC_RATIO * len(present):
        return FieldKind.CATEGORICAL
    if all(n == n.to_integral_value() and _SERIAL_DATE_MIN <= n <= _SERIAL_DATE_MAX for n in numbers):
        return FieldKind.DATE_LIKE
    return FieldKind.NUMERIC


def profile_data_type(data_type: str, rows: Sequence[DataRow]) -> DataTypeProfile:
    """Inventory the fields of one data type from sampled rows."""
    values: dict[str, list[Any]] = {}
    roles: dict[str, str] = {}
    for row in rows:
        for name, value in row.row_data.items():
            values.setdefault(name, []).append(value)
        for name, role in (row.semantic_roles or {}).items():
            roles.setdefault(name, role)

    fields = []
    for name in sorted(values):
        tokens = tokenize(name)
        if not tokens:
            continue
        fields.append(
            FieldProfile(
                name=name,
                kind=_field_kind(values[name]),
                tokens=tokens,
                semantic_type=infer_semantic_type(tokens),
                role=roles.get(name),
            )
        )
    return DataTypeProfile(
        data_type=data_type,
        tokens=tokenize(data_type),
        fields=tuple(fields),
        row_count=len(rows),
    )


def build_inventory(samples: Mapping[str, Sequence[DataRow]]) -> dict[str, DataTypeProfile]:
    return {dt: profile_data_type(dt, rows) for dt, rows in sorted(samples.items())}


@dataclass(frozen=True)
class Candidate:
    metric: str
    data_type: str
    field_name: str
    confidence: Decimal
    semantic_type: SemanticType
    numeric: bool
    exact: bool = False

    @property
    def key(self) -> str:
        return f"{self.data_type}.{self.field_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_type": self.data_type,
            "field": self.field_name,
            "confidence": str(self.confidence),
            "semantic_type": self.semantic_type.value,
        }


def _affinity(metric_type: SemanticType, field_type: SemanticType) -> Decimal:
    if metric_type is SemanticType.UNKNOWN or field_type is SemanticType.UNKNOWN:
        return Decimal("0.5")
    return Decimal("1") if metric_type is field_type else Decimal("0")


def score_candidate(
    metric_tokens: Sequence[str],
    metric_type: SemanticType,
    data_type: DataTypeProfile,
    profile: FieldProfile,
) -> Decimal:
    if not metric_tokens:
        return Decimal("0")
    wanted = set(metric_tokens)
    field_hits = wanted & set(profile.tokens)
    sheet_hits = (wanted & set(data_type.tokens)) - field_hits
    token_score = (Decimal(len(field_hits)) + Decimal("0.5") * len(sheet_hits)) / len(wanted)
    token_score = min(token_score, Decimal("1"))
    affinity = _affinity(metric_type, profile.semantic_type)
    if token_score > 0:
        raw = min(CONFIDENCE_CAP, Decimal("0.3") + Decimal("0.5") * token_score + Decimal("0.2") * affinity)
    else:
        raw = Decimal("0.2") * affinity
    return raw.quantize(CONFIDENCE_PLACES, rounding=ROUND_HALF_UP)


def _sort_key(candidate: Candidate) -> tuple:
    return (-candidate.confidence, not candidate.exact, candidate.data_type, candidate.field_name)


@dataclass(frozen=True)
class Disambiguation:
    """What a disambiguator returns: the chosen candidate key and its confidence."""

    choice: str
    confidence: Decimal
    signal_id: str | None = None


Disambiguator = Callable[[str, Sequence[Candidate]], "Disambiguation | None"]


@dataclass(frozen=True)
class MetricMatch:
    metric: str
    candidates: tuple[Candidate, ...]
    selected: Candidate | None
    ambiguous: bool = False
    ai_assisted: bool = False
    ai_confidence: Decimal | None = None
    signal_id: str | None = None
    operation: DerivationOperation | None = None

    @property
    def is_gap(self) -> bool:
        return self.selected is None

    def to_dict(self, applied: bool) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "candidates": [c.to_dict() for c in self.candidates],
            "selected": self.selected.to_dict() if self.selected else None,
            "operation": self.operation.value if self.operation else None,
            "ambiguous": self.ambiguous,
            "ai_assisted": self.ai_assisted,
            "applied": applied,
        }


@dataclass(frozen=True)
class ConvergenceReport:
    rule_set_id: str
    derivations: tuple[MetricDerivation, ...]
    merge: MergeOutcome
    matches: tuple[MetricMatch, ...] = ()
    gaps: tuple[dict[str, Any], ...] = ()
    signals: tuple[dict[str, Any], ...] = field(default=())

    @property
    def derivations_generated(self) -> int:
        return len(self.merge.appended)

    def match_report(self) -> list[dict[str, Any]]:
        applied = set(self.merge.appended)
        return [m.to_dict(applied=m.metric in applied) for m in self.matches]

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_set_id": self.rule_set_id,
            "derivations": [d.to_dict() for d in self.derivations],
            "appended": list(self.merge.appended),
            "renamed": [list(pair) for pair in self.merge.renamed],
            "match_report": self.match_report(),
            "gaps": list(self.gaps),
            "signals": list(self.signals),
        }


def percentage_scale(plan: Plan, metric: str) -> Decimal:
    """100 when the plan's bands for ``metric`` are percent-scale, else 1."""
    bounds: list[Decimal] = []
    for component in plan.enabled_components():
        if isinstance(component, TierComponent) and component.config.metric == metric:
            bands = component.config.tiers
        elif isinstance(component, MatrixComponent) and component.config.row_metric == metric:
            bands = component.config.row_bands
        elif isinstance(component, MatrixComponent) and component.config.column_metric == metric:
            bands = component.config.column_bands
        elif isinstance(component, GateComponent) and component.config.metric == metric:
            bounds.append(component.config.value)
            continue
        else:
            continue
        for band in bands:
            bounds.append(band.min)
            if band.max is not None:
                bounds.append(band.max)
    return Decimal("100") if any(b > 1 for b in bounds) else Decimal("1")


def _count_metrics(plan: Plan) -> set[str]:
    """Percentage metrics that read as rate-per-unit counts."""
    return {
        c.config.metric
        for c in plan.enabled_components()
        if isinstance(c, PercentageComponent)
        and infer_semantic_type(tokenize(c.config.metric)) is SemanticType.QUANTITY
    }


class ConvergenceMatcher:
    """
    Pure field matcher and derivation builder.

    Contract:
        Deterministic for a given plan, inventory and existing derivation
        set, unless a disambiguator is supplied and consulted.
    """

    @traced_engine("convergence", "1.0", fingerprint_fields=("plan", "inventory", "existing"))
    def converge(
        self,
        *,
        plan: Plan,
        inventory: Mapping[str, DataTypeProfile],
        existing: Sequence[MetricDerivation] = (),
        settings: ConvergenceSettings | None = None,
        disambiguator: Disambiguator | None = None,
    ) -> ConvergenceReport:
        settings = settings or ConvergenceSettings()
        count_metrics = _count_metrics(plan)

        matches: list[MetricMatch] = []
        incoming: list[MetricDerivation] = []
        gaps: list[dict[str, Any]] = []
        for metric in plan.required_metrics():
            match = self.match_metric(
                metric, inventory, settings,
                allow_non_numeric=metric in count_metrics,
                disambiguator=disambiguator,
            )
            matches.append(match)
            if match.is_gap:
                best = match.candidates[0] if match.candidates else None
                gaps.append({
                    "metric": metric,
                    "best_candidate": best.to_dict() if best else None,
                    "reason": "below_min_confidence" if best else "no_candidates",
                })
                continue
            incoming.extend(self._derivations_for(plan, match, inventory))

        merge = merge_derivations(tuple(existing), tuple(incoming))
        applied = set(merge.appended)
        signals = tuple(self._signal(m, m.metric in applied) for m in matches)

        logger.info(
            "convergence_matched",
            extra={
                "rule_set_id": plan.rule_set_id,
                "metrics": len(matches),
                "gaps": len(gaps),
                "appended": list(merge.appended),
                "renamed": [list(pair) for pair in merge.renamed],
            },
        )
        return ConvergenceReport(
            rule_set_id=plan.rule_set_id,
            derivations=merge.derivations,
            merge=merge,
            matches=tuple(matches),
            gaps=tuple(gaps),
            signals=signals,
        )

    def match_metric(
        self,
        metric: str,
        inventory: Mapping[str, DataTypeProfile],
        settings: ConvergenceSettings,
        allow_non_numeric: bool = False,
        disambiguator: Disambiguator | None = None,
    ) -> MetricMatch:
        metric_tokens = tokenize(metric)
        metric_type = infer_semantic_type(metric_tokens)
        normalized = metric.lower()

        candidates = []
        for data_type in inventory.values():
            for profile in data_type.fields:
                if profile.kind is FieldKind.DATE_LIKE:
                    continue
                if not profile.is_numeric and not allow_non_numeric:
                    continue
                if profile.role == PERFORMANCE_TARGET and metric_type is not SemanticType.GOAL:
                    continue
                candidates.append(
                    Candidate(
                        metric=metric,
                        data_type=data_type.data_type,
                        field_name=profile.name,
                        confidence=score_candidate(metric_tokens, metric_type, data_type, profile),
                        semantic_type=profile.semantic_type,
                        numeric=profile.is_numeric,
                        exact=profile.name.lower() == normalized,
                    )
                )
        candidates.sort(key=_sort_key)
        top = tuple(candidates[: settings.max_candidates])

        if not top or top[0].confidence < settings.min_confidence:
            return MetricMatch(metric=metric, candidates=top, selected=None)

        selected = top[0]
        ambiguous = (
            len(top) > 1
            and top[1].confidence >= settings.min_confidence
            and selected.confidence - top[1].confidence <= settings.ambiguity_margin
        )
        ai_assisted = False
        ai_confidence = None
        signal_id = None
        if ambiguous and disambiguator is not None:
            contenders = [c for c in top if selected.confidence - c.confidence <= settings.ambiguity_margin]
            decision = disambiguator(metric, contenders)
            if decision is not None:
                chosen = next((c for c in contenders if c.key == decision.choice), None)
                if chosen is not None:
                    selected = chosen
                    ai_assisted = True
                    ai_confidence = decision.confidence
                    signal_id = decision.signal_id

        operation = DerivationOperation.SUM if selected.numeric else DerivationOperation.COUNT
        return MetricMatch(
            metric=metric,
            candidates=top,
            selected=selected,
            ambiguous=ambiguous,
            ai_assisted=ai_assisted,
            ai_confidence=ai_confidence,
            signal_id=signal_id,
            operation=operation,
        )

    @staticmethod
    def _derivations_for(
        plan: Plan,
        match: MetricMatch,
        inventory: Mapping[str, DataTypeProfile],
    ) -> list[MetricDerivation]:
        selected = match.selected
        confidence = match.ai_confidence if match.ai_assisted else Decimal("1")
        raw = MetricDerivation(
            metric=match.metric,
            operation=match.operation,
            source_pattern=selected.data_type,
            source_field=selected.field_name,
            confidence=confidence,
            ai_assisted=match.ai_assisted,
            signal_id=match.signal_id,
        )
        derivations = [raw]

        profile = inventory[selected.data_type]
        target = profile.target_field()
        if (
            target is None
            or target.name == selected.field_name
            or not selected.numeric
            or selected.semantic_type is SemanticType.ATTAINMENT
            or infer_semantic_type(tokenize(match.metric)) is not SemanticType.ATTAINMENT
        ):
            return derivations

        derivations.append(
            MetricDerivation(
                metric=target_name(match.metric),
                operation=DerivationOperation.SUM,
                source_pattern=selected.data_type,
                source_field=target.name,
            )
        )
        derivations.append(
            MetricDerivation(
                metric=match.metric,
                operation=DerivationOperation.RATIO,
                numerator_metric=actuals_name(match.metric),
                denominator_metric=target_name(match.metric),
                scale_factor=percentage_scale(plan, match.metric),
                confidence=confidence,
                ai_assisted=match.ai_assisted,
                signal_id=match.signal_id,
            )
        )
        return derivations

    @staticmethod
    def _signal(match: MetricMatch, applied: bool) -> dict[str, Any]:
        best = match.selected or (match.candidates[0] if match.candidates else None)
        confidence = (
            match.ai_confidence if match.ai_assisted
            else (best.confidence if best else Decimal("0"))
        )
        return {
            "metric": match.metric,
            "matched": not match.is_gap,
            "applied": applied,
            "data_type": best.data_type if best else None,
            "field": best.field_name if best else None,
            "operation": match.operation.value if match.operation else None,
            "ai_assisted": match.ai_assisted,
            "signal_id": match.signal_id,
            "confidence": str(confidence),
            "value": str(confidence),
            "cohorts": [{"dimension": "metric", "key": match.metric}],
        }
