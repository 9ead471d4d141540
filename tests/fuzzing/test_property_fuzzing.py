"""
Hypothesis-based property tests for the pure engines.

Boundaries fuzzed here:
- Band resolution: any value against any ascending band list
- Cents rounding: half-up, two places, never more than half a cent off
- Concordance: bounded percentage, None only when nothing paired
- Convergence scoring: confidence stays within [0, 0.95]
- Derivation merge: re-merging the same derivations changes nothing
- Anomaly detection: stats, ordering and per-type invariants
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from incentive_engines.anomaly import AnomalyDetector, AnomalyType, PayoutRecord
from incentive_engines.bands import resolve_axis, resolve_tier
from incentive_engines.convergence import (
    DataTypeProfile,
    FieldKind,
    FieldProfile,
    infer_semantic_type,
    score_candidate,
    tokenize,
)
from incentive_engines.reconciliation import concordance_pct
from incentive_kernel.domain.amounts import quantize_cents
from incentive_kernel.domain.derivation import (
    DerivationOperation,
    MetricDerivation,
    merge_derivations,
)
from incentive_kernel.domain.plan import Band

amounts = st.decimals(
    min_value=Decimal("-1000"), max_value=Decimal("100000"),
    places=2, allow_nan=False, allow_infinity=False,
)


@composite
def ascending_bands(draw):
    """Integer-edged bands, optionally with gaps and an open top."""
    edges = sorted(draw(st.sets(st.integers(min_value=0, max_value=10000), min_size=2, max_size=8)))
    gap = draw(st.booleans())
    open_top = draw(st.booleans())
    bands = []
    for i in range(len(edges) - 1):
        upper = Decimal(edges[i + 1]) - (Decimal("1") if gap else Decimal("0.01"))
        if upper < edges[i]:
            upper = Decimal(edges[i])
        bands.append(Band(min=Decimal(edges[i]), max=upper, value=Decimal(i * 10)))
    if open_top:
        last = bands[-1]
        bands[-1] = Band(min=last.min, max=None, value=last.value)
    return bands


class TestBandProperties:
    @given(value=amounts, bands=ascending_bands())
    @settings(max_examples=200)
    def test_tier_picks_highest_band_reached(self, value, bands):
        hit = resolve_tier(value, bands)

        reached = [i for i, band in enumerate(bands) if band.min <= value]
        if not reached:
            assert hit.index is None
            assert hit.clamped == "below"
        else:
            assert hit.index == reached[-1]

    @given(value=amounts, bands=ascending_bands())
    @settings(max_examples=200)
    def test_axis_always_valid_index(self, value, bands):
        hit = resolve_axis(value, bands)

        assert 0 <= hit.index < len(bands)
        assert hit.band is bands[hit.index]


class TestAmountProperties:
    @given(st.decimals(min_value=-10**9, max_value=10**9, places=6, allow_nan=False, allow_infinity=False))
    def test_quantize_cents(self, raw):
        rounded = quantize_cents(raw)

        assert rounded.as_tuple().exponent == -2
        assert abs(rounded - raw) <= Decimal("0.005")


class TestConcordanceProperties:
    @given(st.integers(min_value=0, max_value=10000), st.integers(min_value=0, max_value=10000))
    def test_bounded(self, matched, mismatched):
        pct = concordance_pct(matched, mismatched)

        if matched + mismatched == 0:
            assert pct is None
        else:
            assert Decimal("0") <= pct <= Decimal("100")
            if mismatched == 0:
                assert pct == Decimal("100")
            if matched == 0:
                assert pct == Decimal("0")


names = st.from_regex(r"[A-Za-z][A-Za-z_ ]{0,20}", fullmatch=True)


class TestConvergenceProperties:
    @given(metric=names, field_name=names, sheet=names)
    def test_score_bounded(self, metric, field_name, sheet):
        metric_tokens = tokenize(metric)
        field_tokens = tokenize(field_name)
        profile = FieldProfile(
            name=field_name,
            kind=FieldKind.NUMERIC,
            tokens=field_tokens,
            semantic_type=infer_semantic_type(field_tokens),
        )
        data_type = DataTypeProfile(data_type=sheet, tokens=tokenize(sheet), fields=(profile,))

        score = score_candidate(metric_tokens, infer_semantic_type(metric_tokens), data_type, profile)

        assert Decimal("0") <= score <= Decimal("0.95")
        if metric_tokens:
            assert score.as_tuple().exponent == -2

    @given(names)
    def test_tokens_are_long_and_lowercase(self, name):
        for token in tokenize(name):
            assert len(token) > 2
            assert token == token.lower()


@composite
def derivations(draw):
    metrics = draw(st.lists(st.sampled_from(["sales", "sales_actuals", "units", "quota"]), max_size=5))
    out = []
    for metric in metrics:
        operation = draw(st.sampled_from([
            DerivationOperation.SUM, DerivationOperation.COUNT, DerivationOperation.RATIO,
        ]))
        if operation is DerivationOperation.RATIO:
            out.append(MetricDerivation(
                metric=metric, operation=operation,
                numerator_metric="num", denominator_metric="den",
            ))
        else:
            out.append(MetricDerivation(
                metric=metric, operation=operation, source_pattern="Sales", source_field=metric,
            ))
    return out


def _unique(items):
    seen = set()
    kept = []
    for item in items:
        if item.metric not in seen:
            seen.add(item.metric)
            kept.append(item)
    return kept


class TestMergeProperties:
    @given(existing=derivations(), incoming=derivations())
    @settings(max_examples=300)
    def test_remerge_is_noop(self, existing, incoming):
        first = merge_derivations(_unique(existing), incoming)
        second = merge_derivations(first.derivations, incoming)

        assert not second.changed
        assert second.derivations == first.derivations

    @given(existing=derivations(), incoming=derivations())
    def test_metric_names_stay_unique(self, existing, incoming):
        merged = merge_derivations(_unique(existing), incoming).derivations

        metrics = [d.metric for d in merged]
        assert len(metrics) == len(set(metrics))


payouts = st.lists(
    st.decimals(min_value=Decimal("0"), max_value=Decimal("5000"), places=2,
                allow_nan=False, allow_infinity=False),
    max_size=40,
)


class TestAnomalyProperties:
    def setup_method(self):
        self.detector = AnomalyDetector()

    @given(payouts)
    @settings(max_examples=150)
    def test_stats_describe_the_records(self, values):
        records = [PayoutRecord(f"E-{i}", v) for i, v in enumerate(values)]

        stats = self.detector.detect(records=records).stats

        assert stats.count == len(values)
        assert stats.total == sum(values, Decimal("0"))
        if values:
            assert stats.min <= stats.median <= stats.max
            assert stats.std_dev >= 0

    @given(payouts)
    @settings(max_examples=150)
    def test_anomaly_invariants(self, values):
        records = [PayoutRecord(f"E-{i}", v) for i, v in enumerate(values)]

        report = self.detector.detect(records=records)

        counts = [a.affected_count for a in report.anomalies]
        assert counts == sorted(counts, reverse=True)
        for anomaly in report.of_type(AnomalyType.IDENTICAL_VALUES):
            assert anomaly.value != 0
            assert anomaly.affected_count >= 3
        for anomaly in report.of_type(AnomalyType.OUTLIER_HIGH):
            assert anomaly.value > report.stats.mean
        for anomaly in report.of_type(AnomalyType.OUTLIER_LOW):
            assert anomaly.value != 0

    @given(payouts, st.integers(min_value=0, max_value=5))
    def test_missing_entities_are_the_unpaid_assignments(self, values, extra):
        records = [PayoutRecord(f"E-{i}", v) for i, v in enumerate(values)]
        absent = [f"X-{i}" for i in range(extra)]

        report = self.detector.detect(
            records=records, assigned_entity_ids=[r.entity_id for r in records] + absent,
        )

        missing = report.of_type(AnomalyType.MISSING_ENTITY)
        if absent:
            assert missing[0].entity_ids == tuple(sorted(absent))
        else:
            assert missing == []
