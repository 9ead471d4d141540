"""
Module: incentive_kernel.selectors.dispute_selector
Responsibility: Read access to disputes and their stored investigations.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select

from incentive_kernel.models.dispute import Dispute
from incentive_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class DisputeDTO:
    dispute_id: str
    entity_id: str
    batch_id: str
    component_name: str | None
    category: str
    amount_disputed: Decimal
    status: str
    resolution: dict[str, Any] | None


def _status(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


class DisputeSelector(BaseSelector):
    """Read disputes."""

    def investigated(self, tenant_id: UUID) -> list[DisputeDTO]:
        """Disputes that carry a stored investigation, oldest first."""
        stmt = (
            select(Dispute)
            .where(Dispute.tenant_id == tenant_id)
            .order_by(Dispute.created_at, Dispute.id)
        )
        return [
            DisputeDTO(
                dispute_id=str(d.id),
                entity_id=str(d.entity_id),
                batch_id=str(d.batch_id),
                component_name=d.component_name,
                category=d.category,
                amount_disputed=Decimal(str(d.amount_disputed)),
                status=_status(d.status),
                resolution=dict(d.resolution) if d.resolution else None,
            )
            for d in self.session.execute(stmt).scalars().all()
            if d.resolution
        ]
