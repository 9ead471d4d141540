"""
Module: incentive_kernel.selectors.calculation_selector
Responsibility: Read access to calculation results joined with the entity
    external ids that benchmarks and disputes use.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from incentive_kernel.domain.trace import ExecutionTrace
from incentive_kernel.models.calculation import CalculationResult
from incentive_kernel.models.tenant import Entity
from incentive_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ResultDTO:
    """A calculation result with its entity identity and parsed traces."""

    result_id: str
    entity_id: str
    external_id: str
    total_payout: Decimal
    components: tuple[dict[str, Any], ...]
    metrics: dict[str, Any]
    traces: tuple[ExecutionTrace, ...] = ()
    variant: str | None = None
    missing_metrics: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()

    def component_payouts(self) -> dict[str, Decimal]:
        return {c["name"]: Decimal(str(c["payout"])) for c in self.components}


class CalculationSelector(BaseSelector):
    """Read calculation results."""

    def results_for_batch(self, tenant_id: UUID, batch_id: UUID) -> list[ResultDTO]:
        """All results of a batch ordered by entity external id."""
        stmt = (
            select(CalculationResult, Entity.external_id)
            .join(Entity, Entity.id == CalculationResult.entity_id)
            .where(
                CalculationResult.tenant_id == tenant_id,
                CalculationResult.batch_id == batch_id,
            )
            .order_by(Entity.external_id)
        )
        return [
            self._to_dto(result, external_id)
            for result, external_id in self.session.execute(stmt).all()
        ]

    def result_for_entity(
        self,
        tenant_id: UUID,
        batch_id: UUID,
        entity_id: UUID,
    ) -> ResultDTO | None:
        stmt = (
            select(CalculationResult, Entity.external_id)
            .join(Entity, Entity.id == CalculationResult.entity_id)
            .where(
                CalculationResult.tenant_id == tenant_id,
                CalculationResult.batch_id == batch_id,
                CalculationResult.entity_id == entity_id,
            )
        )
        row = self.session.execute(stmt).first()
        if row is None:
            return None
        return self._to_dto(row[0], row[1])

    @staticmethod
    def _to_dto(result: CalculationResult, external_id: str) -> ResultDTO:
        meta = result.meta or {}
        return ResultDTO(
            result_id=str(result.id),
            entity_id=str(result.entity_id),
            external_id=external_id,
            total_payout=Decimal(str(result.total_payout)),
            components=tuple(result.components or ()),
            metrics=dict(result.metrics or {}),
            traces=tuple(
                ExecutionTrace.from_dict(t) for t in meta.get("intentTraces", [])
            ),
            variant=meta.get("variant"),
            missing_metrics=tuple(meta.get("missingMetrics", [])),
            flags=tuple(meta.get("flags", [])),
        )
