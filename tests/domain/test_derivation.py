"""
Tests for metric derivations and the convergence merge policy.
"""

from decimal import Decimal

import pytest

from incentive_kernel.domain.derivation import (
    DerivationFilter,
    DerivationOperation,
    FilterOperator,
    MetricDerivation,
    merge_derivations,
    parse_derivation,
    parse_derivations,
)
from incentive_kernel.exceptions import InvalidDerivationError


def _raw(metric: str, field: str = "amount") -> MetricDerivation:
    return MetricDerivation(
        metric=metric,
        operation=DerivationOperation.SUM,
        source_pattern="Sales",
        source_field=field,
    )


def _ratio(metric: str) -> MetricDerivation:
    return MetricDerivation(
        metric=metric,
        operation=DerivationOperation.RATIO,
        numerator_metric=f"{metric}_actuals",
        denominator_metric=f"{metric}_target",
        scale_factor=Decimal("100"),
    )


class TestParseDerivation:
    """Stored derivation entries are validated."""

    def test_round_trip(self):
        """to_dict output parses back to an equal derivation."""
        original = MetricDerivation(
            metric="optical_sales",
            operation=DerivationOperation.SUM,
            source_pattern="Optical",
            source_field="amount",
            filters=(DerivationFilter("status", FilterOperator.EQ, "closed"),),
            confidence=Decimal("0.82"),
            ai_assisted=True,
            signal_id="sig-1",
        )

        assert parse_derivation(original.to_dict()) == original

    def test_ratio_round_trip(self):
        original = _ratio("attainment")

        assert parse_derivation(original.to_dict()) == original

    def test_unknown_operation(self):
        with pytest.raises(InvalidDerivationError, match="unknown operation"):
            parse_derivation({"metric": "m", "operation": "median", "source_field": "x"})

    def test_ratio_needs_operands(self):
        with pytest.raises(InvalidDerivationError, match="numerator"):
            parse_derivation({"metric": "m", "operation": "ratio", "numerator_metric": "a"})

    def test_sum_needs_source_field(self):
        with pytest.raises(InvalidDerivationError, match="source_field"):
            parse_derivation({"metric": "m", "operation": "sum"})

    def test_count_without_source_field(self):
        """count may count rows without naming a field."""
        derivation = parse_derivation({"metric": "visits", "operation": "count"})

        assert derivation.operation is DerivationOperation.COUNT
        assert derivation.source_field is None

    def test_bad_filter(self):
        with pytest.raises(InvalidDerivationError, match="bad filter"):
            parse_derivation({
                "metric": "m", "operation": "sum", "source_field": "x",
                "filters": [{"operator": "eq", "value": 1}],
            })

    def test_absent_bindings(self):
        assert parse_derivations(None) == ()
        assert parse_derivations({}) == ()


class TestDerivationFilter:
    def test_numeric_equality(self):
        """Numeric strings compare numerically."""
        assert DerivationFilter("qty", FilterOperator.EQ, "5").matches({"qty": "5.00"})

    def test_text_equality_case_insensitive(self):
        assert DerivationFilter("status", FilterOperator.EQ, "Closed").matches({"status": "closed "})

    def test_contains(self):
        assert DerivationFilter("product", FilterOperator.CONTAINS, "lens").matches(
            {"product": "Progressive Lens"}
        )

    def test_missing_field_never_matches(self):
        assert not DerivationFilter("qty", FilterOperator.NEQ, 1).matches({})

    def test_ordering_needs_numbers(self):
        assert DerivationFilter("qty", FilterOperator.GT, 2).matches({"qty": 3})
        assert not DerivationFilter("qty", FilterOperator.GT, 2).matches({"qty": "n/a"})


class TestMergeDerivations:
    """Merge policy used by convergence."""

    def test_append_new_metric(self):
        outcome = merge_derivations((), (_raw("revenue"),))

        assert outcome.appended == ("revenue",)
        assert outcome.changed

    def test_same_metric_same_operation_is_noop(self):
        """Re-merging an unchanged derivation adds nothing."""
        existing = (_raw("revenue"),)

        outcome = merge_derivations(existing, (_raw("revenue", field="other"),))

        assert outcome.derivations == existing
        assert outcome.skipped == ("revenue",)
        assert not outcome.changed

    def test_ratio_renames_raw_entry(self):
        """A ratio for a raw metric renames the raw entry to _actuals."""
        outcome = merge_derivations((_raw("attainment"),), (_ratio("attainment"),))

        metrics = [d.metric for d in outcome.derivations]
        assert metrics == ["attainment_actuals", "attainment"]
        assert outcome.renamed == (("attainment", "attainment_actuals"),)
        assert outcome.derivations[1].operation is DerivationOperation.RATIO

    def test_ratio_drops_raw_when_actuals_taken(self):
        """The raw entry is dropped if _actuals already exists."""
        existing = (_raw("attainment"), _raw("attainment_actuals"))

        outcome = merge_derivations(existing, (_ratio("attainment"),))

        metrics = [d.metric for d in outcome.derivations]
        assert metrics == ["attainment_actuals", "attainment"]
        assert outcome.renamed == ()

    def test_raw_does_not_replace_ratio(self):
        """The stored ratio wins over an incoming raw derivation."""
        existing = (_raw("attainment_actuals"), _ratio("attainment"))

        outcome = merge_derivations(existing, (_raw("attainment"),))

        assert outcome.derivations == existing
        assert not outcome.changed

    def test_merge_is_idempotent(self):
        """Merging the same incoming set twice changes nothing the second time."""
        incoming = (_raw("attainment"), _raw("attainment_target", field="goal"), _ratio("attainment"))

        first = merge_derivations((), incoming)
        second = merge_derivations(first.derivations, incoming)

        assert first.changed
        assert second.derivations == first.derivations
        assert not second.changed
