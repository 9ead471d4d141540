"""ORM models for the incentive kernel."""

from incentive_kernel.models.calculation import (
    BatchLifecycle,
    CalculationBatch,
    CalculationResult,
)
from incentive_kernel.models.dispute import (
    VALID_TRANSITIONS,
    Dispute,
    DisputeStatus,
    can_transition,
)
from incentive_kernel.models.raw_data import CommittedDataRow
from incentive_kernel.models.rule_set import RuleSet, RuleSetAssignment, RuleSetStatus
from incentive_kernel.models.signal import (
    ClassificationSignal,
    CohortDimension,
    SignalSource,
    SignalType,
    SynapseBucket,
    SynapticDensityRow,
)
from incentive_kernel.models.tenant import Entity, Period, Tenant

__all__ = [
    "Tenant",
    "Period",
    "Entity",
    "RuleSet",
    "RuleSetAssignment",
    "RuleSetStatus",
    "CommittedDataRow",
    "CalculationBatch",
    "CalculationResult",
    "BatchLifecycle",
    "ClassificationSignal",
    "SignalType",
    "SignalSource",
    "SynapseBucket",
    "CohortDimension",
    "SynapticDensityRow",
    "Dispute",
    "DisputeStatus",
    "VALID_TRANSITIONS",
    "can_transition",
    "import_all_models",
]


def import_all_models() -> None:
    """Ensure every model module is imported so Base.metadata is complete."""
    # The imports above register all tables; nothing else to load.
    return None
