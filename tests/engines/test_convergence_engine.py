"""
Tests for the convergence matcher.

Covers:
- Tokenization and field profiling
- Candidate scoring, gaps, ambiguity and AI disambiguation
- Attainment ratio derivations and re-convergence idempotence
"""

from decimal import Decimal

import pytest

from incentive_config.schema import ConvergenceSettings
from incentive_engines.convergence import (
    ConvergenceMatcher,
    Disambiguation,
    FieldKind,
    SemanticType,
    build_inventory,
    infer_semantic_type,
    percentage_scale,
    profile_data_type,
    tokenize,
)
from incentive_kernel.domain.data_row import DataRow
from incentive_kernel.domain.derivation import DerivationOperation
from incentive_kernel.domain.plan import parse_plan


def _rows(data_type, *row_data, roles=None):
    return [
        DataRow(
            row_id=f"{data_type}-{i}",
            data_type=data_type,
            entity_id="e-1",
            row_data=data,
            semantic_roles=roles or {},
        )
        for i, data in enumerate(row_data)
    ]


def _tier(metric, bands=((0, 1999, 50), (2000, None, 100)), name="Tier"):
    return {
        "name": name,
        "componentType": "tier_lookup",
        "tierConfig": {
            "metric": metric,
            "tiers": [{"min": lo, "max": hi, "value": v} for lo, hi, v in bands],
        },
    }


def _percentage(metric, name="Commission"):
    return {
        "name": name,
        "componentType": "percentage",
        "percentageConfig": {"metric": metric, "rate": "0.05"},
    }


def _plan(*components):
    return parse_plan("rs-1", "Plan", list(components))


SALES_INVENTORY = build_inventory({
    "Sales Data": _rows(
        "Sales Data",
        {"store_id": "S-1", "units_sold": 1999, "revenue": "1000"},
        {"store_id": "S-2", "units_sold": 2500, "revenue": "20,000"},
    ),
})


class TestTokenize:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("units_sold", ("unit", "sold")),
            ("unitsSold", ("unit", "sold")),
            ("Optical Sales 2024", ("optical", "sale")),
            ("store_id", ("store",)),
            ("address", ("address",)),
            ("ID", ()),
            ("", ()),
        ],
    )
    def test_tokens(self, name, expected):
        assert tokenize(name) == expected

    def test_semantic_type(self):
        assert infer_semantic_type(("unit", "sold")) is SemanticType.QUANTITY
        assert infer_semantic_type(("store", "sale")) is SemanticType.AMOUNT
        assert infer_semantic_type(("attainment",)) is SemanticType.ATTAINMENT
        assert infer_semantic_type(("sale", "goal")) is SemanticType.GOAL
        assert infer_semantic_type(("tenure",)) is SemanticType.UNKNOWN


class TestProfiling:
    def test_field_kinds(self):
        profile = profile_data_type("Roster", _rows(
            "Roster",
            {"certified": "yes", "region": "West", "hire_date": 45292, "quota": "1,200", "id": 1},
            {"certified": "no", "region": "East", "hire_date": 45300, "quota": 900, "id": 2},
        ))

        kinds = {f.name: f.kind for f in profile.fields}
        assert kinds == {
            "certified": FieldKind.BOOLEAN,
            "hire_date": FieldKind.DATE_LIKE,
            "quota": FieldKind.NUMERIC,
            "region": FieldKind.CATEGORICAL,
        }
        assert profile.row_count == 2

    def test_target_field_from_semantic_roles(self):
        profile = profile_data_type("Goals", _rows(
            "Goals", {"goal": 100}, roles={"goal": "performance_target"},
        ))

        assert profile.target_field().name == "goal"


class TestMatching:
    """Candidate selection per required metric."""

    def setup_method(self):
        self.matcher = ConvergenceMatcher()

    def test_binds_exact_fields(self):
        plan = _plan(_tier("units_sold"), _percentage("revenue"))

        report = self.matcher.converge(plan=plan, inventory=SALES_INVENTORY)

        assert report.merge.appended == ("units_sold", "revenue")
        units = report.derivations[0]
        assert units.operation is DerivationOperation.SUM
        assert units.source_pattern == "Sales Data"
        assert units.source_field == "units_sold"
        assert units.confidence == Decimal("1")
        assert report.matches[0].selected.confidence == Decimal("0.95")
        assert report.gaps == ()

    def test_reconvergence_appends_nothing(self):
        plan = _plan(_tier("units_sold"), _percentage("revenue"))
        first = self.matcher.converge(plan=plan, inventory=SALES_INVENTORY)

        second = self.matcher.converge(
            plan=plan, inventory=SALES_INVENTORY, existing=first.derivations,
        )

        assert second.merge.appended == ()
        assert second.derivations == first.derivations
        assert second.derivations_generated == 0

    def test_low_confidence_is_gap(self):
        report = self.matcher.converge(plan=_plan(_tier("tenure_years")), inventory=SALES_INVENTORY)

        assert report.derivations == ()
        gap = report.gaps[0]
        assert gap["metric"] == "tenure_years"
        assert gap["reason"] == "below_min_confidence"
        assert gap["best_candidate"]["field"] == "revenue"
        assert report.signals[0]["matched"] is False

    def test_no_candidates(self):
        report = self.matcher.converge(plan=_plan(_tier("units_sold")), inventory={})

        assert report.gaps[0]["reason"] == "no_candidates"

    def test_partial_token_overlap_with_sheet_name(self):
        """store_sales scores 0.63 against Sales Data.revenue."""
        match = self.matcher.match_metric("store_sales", SALES_INVENTORY, ConvergenceSettings())

        assert match.selected.field_name == "revenue"
        assert match.selected.confidence == Decimal("0.63")

    def test_non_numeric_count_metric(self):
        inventory = build_inventory({
            "Transactions": _rows(
                "Transactions", {"transaction_id": "T-1"}, {"transaction_id": "T-2"},
            ),
        })

        report = self.matcher.converge(
            plan=_plan(_percentage("transaction_count")), inventory=inventory,
        )

        derivation = report.derivations[0]
        assert derivation.operation is DerivationOperation.COUNT
        assert derivation.source_field == "transaction_id"

    def test_signals_carry_metric_cohort(self):
        report = self.matcher.converge(plan=_plan(_tier("units_sold")), inventory=SALES_INVENTORY)

        signal = report.signals[0]
        assert signal["applied"] is True
        assert signal["cohorts"] == [{"dimension": "metric", "key": "units_sold"}]

    def test_match_logged(self, captured_logs):
        self.matcher.converge(plan=_plan(_tier("units_sold")), inventory=SALES_INVENTORY)

        records = [r for r in captured_logs() if r["message"] == "convergence_matched"]
        assert records[-1]["appended"] == ["units_sold"]


class TestAmbiguity:
    """Ties within the margin may be settled by a disambiguator."""

    INVENTORY = build_inventory({
        "Q1": _rows("Q1", {"revenue": 10}),
        "Q2": _rows("Q2", {"revenue": 20}),
    })

    def setup_method(self):
        self.matcher = ConvergenceMatcher()
        self.plan = _plan(_percentage("revenue"))

    def test_deterministic_without_disambiguator(self):
        report = self.matcher.converge(plan=self.plan, inventory=self.INVENTORY)

        match = report.matches[0]
        assert match.ambiguous
        assert not match.ai_assisted
        assert match.selected.data_type == "Q1"

    def test_disambiguator_choice(self):
        seen = []

        def choose(metric, candidates):
            seen.append((metric, [c.key for c in candidates]))
            return Disambiguation(choice="Q2.revenue", confidence=Decimal("0.88"), signal_id="sig-1")

        report = self.matcher.converge(plan=self.plan, inventory=self.INVENTORY, disambiguator=choose)

        assert seen == [("revenue", ["Q1.revenue", "Q2.revenue"])]
        derivation = report.derivations[0]
        assert derivation.source_pattern == "Q2"
        assert derivation.ai_assisted
        assert derivation.confidence == Decimal("0.88")
        assert derivation.signal_id == "sig-1"

    def test_unknown_choice_ignored(self):
        report = self.matcher.converge(
            plan=self.plan,
            inventory=self.INVENTORY,
            disambiguator=lambda m, c: Disambiguation(choice="Nope.revenue", confidence=Decimal("0.9")),
        )

        assert report.matches[0].selected.data_type == "Q1"
        assert not report.matches[0].ai_assisted

    def test_disambiguator_declines(self):
        report = self.matcher.converge(
            plan=self.plan, inventory=self.INVENTORY, disambiguator=lambda m, c: None,
        )

        assert not report.derivations[0].ai_assisted


class TestAttainmentRatio:
    """Actual over target when the data carries a performance target."""

    INVENTORY = build_inventory({
        "Attainment Report": _rows(
            "Attainment Report",
            {"actual": 95000, "goal": 100000},
            roles={"goal": "performance_target"},
        ),
    })

    def setup_method(self):
        self.matcher = ConvergenceMatcher()
        self.plan = _plan(_tier("attainment", bands=((80, 99.99, 100), (100, 150, 200))))

    def test_ratio_derivation(self):
        report = self.matcher.converge(plan=self.plan, inventory=self.INVENTORY)

        assert [d.metric for d in report.derivations] == [
            "attainment_actuals", "attainment_target", "attainment",
        ]
        ratio = report.derivations[-1]
        assert ratio.operation is DerivationOperation.RATIO
        assert ratio.numerator_metric == "attainment_actuals"
        assert ratio.denominator_metric == "attainment_target"
        assert ratio.scale_factor == Decimal("100")
        assert report.merge.renamed == (("attainment", "attainment_actuals"),)
        assert report.derivations[1].source_field == "goal"

    def test_ratio_reconvergence_idempotent(self):
        first = self.matcher.converge(plan=self.plan, inventory=self.INVENTORY)

        second = self.matcher.converge(
            plan=self.plan, inventory=self.INVENTORY, existing=first.derivations,
        )

        assert second.merge.appended == ()
        assert second.derivations == first.derivations

    def test_fraction_scale(self):
        plan = _plan(_tier("attainment", bands=((0, "0.79", 0), ("0.8", 1, 50))))

        assert percentage_scale(plan, "attainment") == Decimal("1")
        assert percentage_scale(self.plan, "attainment") == Decimal("100")
