"""
Tests for synaptic density and its query surface.
"""

from datetime import datetime, timezone
from decimal import Decimal

from incentive_engines.synaptic import (
    SynapticDensity,
    build_density_from_signals,
    create_synaptic_surface,
    density_from_rows,
)
from incentive_kernel.models.signal import CohortDimension, SynapseBucket
from incentive_kernel.selectors.signal_selector import DensityRowDTO, SignalDTO

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
T1 = datetime(2024, 2, 1, tzinfo=timezone.utc)


def _signal(signal_type, value, confidence=None, created_at=T0, signal_id="s"):
    return SignalDTO(
        signal_id=signal_id,
        signal_type=signal_type,
        signal_value=value,
        confidence=confidence,
        source="system",
        created_at=created_at,
    )


ENTITY_E1 = {"dimension": "entity", "key": "E-1"}


class TestBuildDensity:
    """Aggregation of signals into buckets."""

    def test_buckets_by_signal_type(self):
        density = build_density_from_signals([
            _signal("reconciliation_correction", {"cohorts": [ENTITY_E1], "value": "0.8"}),
            _signal("resolution", {"cohorts": [ENTITY_E1], "value": "0.6"}),
            _signal("anomaly", {"cohorts": [ENTITY_E1], "kind": "outlier_high"}),
            _signal("data_quality", {"cohorts": [{"dimension": "metric", "key": "revenue"}]}),
        ])

        correction = density.get("correction", "entity", "E-1")
        assert correction.count == 2
        assert correction.mean_value == Decimal("0.7")
        assert density.get("anomaly", "entity", "E-1").kinds == {"outlier_high": 1}
        assert density.get("data_quality", "metric", "revenue") is not None

    def test_value_defaults_to_confidence(self):
        density = build_density_from_signals([
            _signal("convergence_binding", {"cohorts": [{"dimension": "metric", "key": "m"}]},
                    confidence=Decimal("0.9")),
        ])

        assert density.get("confidence", "metric", "m").mean_value == Decimal("0.9")

    def test_training_and_uncohorted_signals_ignored(self):
        density = build_density_from_signals([
            _signal("training", {"cohorts": [ENTITY_E1]}),
            _signal("anomaly", {"kind": "zero_payout"}),
            _signal("anomaly", {"cohorts": [{"dimension": "region", "key": "west"}]}),
        ])

        assert density.is_empty

    def test_last_seen_and_delta(self):
        density = build_density_from_signals([
            _signal("reconciliation_correction", {"cohorts": [ENTITY_E1], "delta": "-10"},
                    created_at=T1),
            _signal("reconciliation_correction", {"cohorts": [ENTITY_E1], "delta": "-30"},
                    created_at=T0),
        ])

        stats = density.get("correction", "entity", "E-1")
        assert stats.last_seen == T1
        assert stats.mean_delta == Decimal("-20")

    def test_signals_not_mutated(self):
        value = {"cohorts": [ENTITY_E1], "value": "1"}
        signal = _signal("anomaly", value)

        build_density_from_signals([signal])

        assert signal.signal_value == {"cohorts": [ENTITY_E1], "value": "1"}

    def test_bucket_sizes(self):
        density = build_density_from_signals([_signal("anomaly", {"cohorts": [ENTITY_E1]})])

        assert density.bucket_sizes() == {
            "confidence": 0, "anomaly": 1, "correction": 0, "data_quality": 0,
        }


class TestDensityFromRows:
    def test_rebuild(self):
        density = density_from_rows([
            DensityRowDTO(
                bucket="correction",
                cohort_dimension="entity",
                cohort_key="E-1",
                signal_count=3,
                mean_value=Decimal("0.75"),
                last_seen=T0,
                details={"kinds": {"data_divergence": 3}, "mean_delta": "12.5"},
            ),
        ])

        stats = density.get("correction", "entity", "E-1")
        assert stats.count == 3
        assert stats.kind_count("data_divergence") == 3
        assert stats.mean_delta == Decimal("12.5")


class TestSurface:
    """Read-only query surface."""

    def setup_method(self):
        density = build_density_from_signals([
            _signal("reconciliation_correction", {"cohorts": [ENTITY_E1], "kind": "data_divergence"}),
            _signal("reconciliation_correction", {"cohorts": [ENTITY_E1], "kind": "logic_divergence"}),
            _signal("convergence_binding", {"cohorts": [{"dimension": "metric", "key": "m"}],
                                            "value": "0.8"}),
        ])
        self.surface = create_synaptic_surface(density)

    def test_read_accepts_enums(self):
        stats = self.surface.read(SynapseBucket.CORRECTION, CohortDimension.ENTITY, "E-1")

        assert stats.count == 2

    def test_has_repeated(self):
        assert self.surface.has_repeated("correction", "entity", "E-1", min_count=2)
        assert not self.surface.has_repeated("correction", "entity", "E-1", min_count=2,
                                              kind="data_divergence")
        assert not self.surface.has_repeated("correction", "entity", "E-2")

    def test_average_confidence(self):
        assert self.surface.average_confidence("metric", "m") == Decimal("0.8")
        assert self.surface.average_confidence("metric", "other", Decimal("0.5")) == Decimal("0.5")

    def test_empty_surface(self):
        assert create_synaptic_surface(SynapticDensity.empty()).is_empty
        assert not self.surface.is_empty
