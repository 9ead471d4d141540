"""
Configuration schema for incentive evaluation.

Every tunable threshold of the system lives here as a frozen dataclass with
a documented default.  YAML configuration sets are parsed into these types
by the loader; engines receive the relevant section as a plain argument, so
they stay pure and can be exercised with defaults in tests.

None of these constants is a business rule.  They are conveniences that a
tenant's configuration set may override.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class ConvergenceSettings:
    """Field-matching thresholds for metric convergence."""

    # Candidates scoring below this are reported as gaps, never bound.
    min_confidence: Decimal = Decimal("0.60")
    # Top-two candidates closer than this are ambiguous (AI may decide).
    ambiguity_margin: Decimal = Decimal("0.05")
    # Rows sampled per data type when inventorying fields.
    sample_size: int = 50
    # Candidates kept per metric in the match report.
    max_candidates: int = 5


@dataclass(frozen=True)
class AnomalySettings:
    outlier_std_devs: Decimal = Decimal("2")
    identical_min_count: int = 3


@dataclass(frozen=True)
class ReconciliationSettings:
    # |delta| <= epsilon is a match.
    epsilon: Decimal = Decimal("0.01")
    # epsilon < |delta| < rounding_threshold is rounding.
    rounding_threshold: Decimal = Decimal("1.00")
    # Sum of |component deltas| above which a matching total is a false green.
    false_green_threshold: Decimal = Decimal("100")
    # Discrepancies at or above this confidence become correction synapses.
    min_correction_confidence: Decimal = Decimal("0.60")
    # Percent delta above which a traced discrepancy reads as data divergence.
    data_divergence_pct: Decimal = Decimal("5")
    # Correction synapses on an entity cohort needed to suspect a false green.
    repeated_correction_count: int = 2


@dataclass(frozen=True)
class ResolutionSettings:
    # Traces below this confidence suggest a plan-interpretation problem.
    low_confidence_threshold: Decimal = Decimal("0.70")
    # Root causes below this confidence are escalated rather than adjusted.
    adjust_min_confidence: Decimal = Decimal("0.70")
    # Same-cause investigations needed to report a pattern.
    pattern_min_count: int = 3


@dataclass(frozen=True)
class StoreSettings:
    page_size: int = 1000


@dataclass(frozen=True)
class AgentMemorySettings:
    # 0 disables the priors cache.
    cache_ttl_seconds: int = 300
    signal_history_limit: int = 200


@dataclass(frozen=True)
class IncentiveConfiguration:
    """A complete, validated configuration set."""

    config_id: str = "default"
    version: int = 1
    description: str = ""
    convergence: ConvergenceSettings = field(default_factory=ConvergenceSettings)
    anomaly: AnomalySettings = field(default_factory=AnomalySettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    resolution: ResolutionSettings = field(default_factory=ResolutionSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    agent_memory: AgentMemorySettings = field(default_factory=AgentMemorySettings)
    checksum: str = ""
