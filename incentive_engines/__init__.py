"""
Module: incentive_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for
    ``incentive_services``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import incentive_kernel (domain, DTOs, logging) and
    incentive_config.schema.  MUST NOT import incentive_services.

Invariants enforced:
    - Purity: engines never read the clock or the database.  Rows, priors
      and settings are passed in by services.
    - Decimal-only arithmetic for every amount and confidence.
    - Determinism: identical inputs produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine`` (see
    ``incentive_engines.tracer``), emitting INCENTIVE_ENGINE_TRACE records.

Usage:
    from incentive_engines import ComponentEvaluator, MetricResolver
    from incentive_engines import AnomalyDetector, ReconciliationAgent
"""

from incentive_kernel.logging_config import get_logger

logger = get_logger("engines")

from incentive_engines.anomaly import (  # noqa: E402
    Anomaly,
    AnomalyDetector,
    AnomalyReport,
    AnomalyType,
    PayoutRecord,
    PayoutStats,
)
from incentive_engines.bands import BandHit, resolve_axis, resolve_tier  # noqa: E402
from incentive_engines.components import (  # noqa: E402
    ComponentEvaluator,
    ComponentPayout,
    VariantEvaluation,
)
from incentive_engines.convergence import (  # noqa: E402
    Candidate,
    ConvergenceMatcher,
    ConvergenceReport,
    Disambiguation,
    build_inventory,
    tokenize,
)
from incentive_engines.metric_resolution import (  # noqa: E402
    EntityContext,
    MetricResolver,
    group_rows_for,
)
from incentive_engines.reconciliation import (  # noqa: E402
    BenchmarkRecord,
    DiscrepancyClass,
    PairingStatus,
    ReconciliationAgent,
    ReconciliationInput,
    ReconciliationReport,
    concordance_pct,
)
from incentive_engines.resolution import (  # noqa: E402
    DisputeContext,
    Investigation,
    Recommendation,
    ResolutionAgent,
    RootCause,
    detect_resolution_patterns,
)
from incentive_engines.synaptic import (  # noqa: E402
    SynapticDensity,
    SynapticSurface,
    build_density_from_signals,
    create_synaptic_surface,
    density_from_rows,
)
from incentive_engines.tracer import traced_engine  # noqa: E402

__all__ = [
    "Anomaly",
    "AnomalyDetector",
    "AnomalyReport",
    "AnomalyType",
    "BandHit",
    "BenchmarkRecord",
    "Candidate",
    "ComponentEvaluator",
    "ComponentPayout",
    "ConvergenceMatcher",
    "ConvergenceReport",
    "DiscrepancyClass",
    "Disambiguation",
    "DisputeContext",
    "EntityContext",
    "Investigation",
    "MetricResolver",
    "PairingStatus",
    "PayoutRecord",
    "PayoutStats",
    "Recommendation",
    "ReconciliationAgent",
    "ReconciliationInput",
    "ReconciliationReport",
    "ResolutionAgent",
    "RootCause",
    "SynapticDensity",
    "SynapticSurface",
    "VariantEvaluation",
    "build_density_from_signals",
    "build_inventory",
    "concordance_pct",
    "create_synaptic_surface",
    "density_from_rows",
    "detect_resolution_patterns",
    "group_rows_for",
    "resolve_axis",
    "resolve_tier",
    "tokenize",
    "traced_engine",
]
