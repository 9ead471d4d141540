"""
Tests for Decimal coercion and execution trace serialization.
"""

from decimal import Decimal

import pytest

from incentive_kernel.domain.amounts import money_str, quantize_cents, to_decimal
from incentive_kernel.domain.trace import MISSING_PATH, ExecutionTrace, ResolvedInput


class TestToDecimal:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (5, Decimal("5")),
            (0.1, Decimal("0.1")),
            ("1,234.50", Decimal("1234.50")),
            ("$99", Decimal("99")),
            ("87.5%", Decimal("87.5")),
            (Decimal("2.5"), Decimal("2.5")),
        ],
    )
    def test_parses(self, raw, expected):
        assert to_decimal(raw) == expected

    @pytest.mark.parametrize("raw", [None, True, False, "", "  ", "n/a", float("nan"), "Infinity", [1]])
    def test_rejects(self, raw):
        assert to_decimal(raw) is None


class TestQuantize:
    def test_half_up(self):
        """Cents round half up, not banker's rounding."""
        assert quantize_cents(Decimal("0.125")) == Decimal("0.13")
        assert quantize_cents(Decimal("0.135")) == Decimal("0.14")

    def test_money_str(self):
        assert money_str(Decimal("50")) == "50.00"


class TestExecutionTrace:
    def test_round_trip(self):
        """from_dict(to_dict()) preserves every field."""
        trace = ExecutionTrace(
            trace_id="E-1:default:0",
            component_index=0,
            component_name="Units Bonus",
            component_type="tier_lookup",
            inputs=(
                ResolvedInput("units_sold", Decimal("1999"), "direct:Sales Data.units_sold"),
                ResolvedInput("revenue", None, MISSING_PATH, Decimal("0.8")),
            ),
            lookup={"band_index": 0, "boundary": True},
            modifiers=("missing_metric:revenue",),
            confidence=Decimal("0.8"),
            outcome=Decimal("50.00"),
        )

        assert ExecutionTrace.from_dict(trace.to_dict()) == trace

    def test_flags(self):
        trace = ExecutionTrace(
            trace_id="t",
            component_index=0,
            component_name="c",
            component_type="tier_lookup",
            inputs=(ResolvedInput("m", None, MISSING_PATH),),
            lookup={"clamped": "above"},
        )

        assert trace.has_missing_input
        assert trace.boundary_hit

    def test_no_boundary_by_default(self):
        trace = ExecutionTrace("t", 0, "c", "percentage", inputs=())

        assert not trace.boundary_hit
        assert not trace.has_missing_input
