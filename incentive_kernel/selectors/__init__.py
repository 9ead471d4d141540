"""Read-only query selectors."""

from incentive_kernel.selectors.calculation_selector import CalculationSelector, ResultDTO
from incentive_kernel.selectors.dispute_selector import DisputeDTO, DisputeSelector
from incentive_kernel.selectors.plan_selector import EntityDTO, PlanSelector
from incentive_kernel.selectors.raw_data_selector import RawDataSelector, DataRow
from incentive_kernel.selectors.signal_selector import (
    DensityRowDTO,
    SignalDTO,
    SignalSelector,
)

__all__ = [
    "CalculationSelector",
    "ResultDTO",
    "DisputeDTO",
    "DisputeSelector",
    "EntityDTO",
    "PlanSelector",
    "RawDataSelector",
    "DataRow",
    "SignalSelector",
    "SignalDTO",
    "DensityRowDTO",
]
