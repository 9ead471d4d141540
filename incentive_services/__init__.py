"""
incentive_services -- Package init and public API.

Responsibility:
    Stateful orchestration services that compose the pure engines
    (incentive_engines/) with database sessions, configuration, the
    classification signal sink and the AI collaborator.  This is the
    **only** layer that may hold database sessions or use wall-clock time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        incentive_services/ -> incentive_engines/  (allowed)
        incentive_services/ -> incentive_kernel/   (allowed)
        incentive_engines/  -> incentive_services/ (FORBIDDEN)
        incentive_kernel/   -> incentive_services/ (FORBIDDEN)

Invariants enforced:
    - Services flush, never commit.  The caller owns the transaction.
    - Classification signals are best-effort and never fail a primary
      operation.

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.

Audit relevance:
    - This package is the canonical import surface for external consumers
      (the CLI included).
"""

from incentive_kernel.logging_config import get_logger

logger = get_logger("services")

from incentive_services.agent_memory import (  # noqa: E402
    AgentMemoryService,
    AgentPriors,
    PriorCache,
    PriorsOutcome,
)
from incentive_services.ai_service import AIResult, AIService, field_disambiguator  # noqa: E402
from incentive_services.calculation_service import (  # noqa: E402
    CalculationRunResult,
    CalculationService,
    EntityResult,
)
from incentive_services.convergence_service import (  # noqa: E402
    ConvergenceOutcome,
    ConvergenceService,
)
from incentive_services.reconciliation_service import (  # noqa: E402
    ReconciliationService,
    parse_benchmark_records,
)
from incentive_services.resolution_service import (  # noqa: E402
    DisputeInvestigation,
    ResolutionService,
)
from incentive_services.signal_service import SignalSink, SinkStats  # noqa: E402

__all__ = [
    "AIResult",
    "AIService",
    "AgentMemoryService",
    "AgentPriors",
    "CalculationRunResult",
    "CalculationService",
    "ConvergenceOutcome",
    "ConvergenceService",
    "DisputeInvestigation",
    "EntityResult",
    "PriorCache",
    "PriorsOutcome",
    "ReconciliationService",
    "ResolutionService",
    "SignalSink",
    "SinkStats",
    "field_disambiguator",
    "parse_benchmark_records",
]
