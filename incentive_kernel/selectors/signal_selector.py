"""
Module: incentive_kernel.selectors.signal_selector
Responsibility: Read access to classification signals and pre-aggregated
    synaptic density rows for agent memory.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - ``iter_signals`` pages through signals by keyset so density can be
      recomputed over an arbitrarily long history.
"""

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select

from incentive_kernel.models.signal import ClassificationSignal, SynapticDensityRow
from incentive_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class SignalDTO:
    signal_id: str
    signal_type: str
    signal_value: dict[str, Any]
    confidence: Decimal | None
    source: str
    created_at: datetime | None


@dataclass(frozen=True)
class DensityRowDTO:
    bucket: str
    cohort_dimension: str
    cohort_key: str
    signal_count: int
    mean_value: Decimal
    last_seen: datetime | None
    details: dict[str, Any]


def _plain(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


def _signal_dto(row: ClassificationSignal) -> SignalDTO:
    return SignalDTO(
        signal_id=str(row.id),
        signal_type=_plain(row.signal_type),
        signal_value=dict(row.signal_value or {}),
        confidence=Decimal(str(row.confidence)) if row.confidence is not None else None,
        source=_plain(row.source),
        created_at=row.created_at,
    )


class SignalSelector(BaseSelector):
    """Read signals and density."""

    def iter_signals(
        self,
        tenant_id: UUID,
        signal_types: Sequence[str] | None = None,
    ) -> Iterator[SignalDTO]:
        """Yield every signal of the tenant (optionally by type), paged."""
        last_id: UUID | None = None
        while True:
            stmt = select(ClassificationSignal).where(
                ClassificationSignal.tenant_id == tenant_id,
            )
            if signal_types:
                stmt = stmt.where(ClassificationSignal.signal_type.in_(list(signal_types)))
            if last_id is not None:
                stmt = stmt.where(ClassificationSignal.id > last_id)
            stmt = stmt.order_by(ClassificationSignal.id).limit(self.page_size)

            page = self.session.execute(stmt).scalars().all()
            for row in page:
                yield _signal_dto(row)
            if len(page) < self.page_size:
                return
            last_id = page[-1].id

    def recent_signals(
        self,
        tenant_id: UUID,
        limit: int,
        signal_types: Sequence[str] | None = None,
    ) -> list[SignalDTO]:
        """Most recent signals first."""
        stmt = select(ClassificationSignal).where(ClassificationSignal.tenant_id == tenant_id)
        if signal_types:
            stmt = stmt.where(ClassificationSignal.signal_type.in_(list(signal_types)))
        stmt = stmt.order_by(
            ClassificationSignal.created_at.desc(), ClassificationSignal.id.desc(),
        ).limit(limit)
        return [_signal_dto(row) for row in self.session.execute(stmt).scalars().all()]

    def density_rows(self, tenant_id: UUID) -> list[DensityRowDTO]:
        stmt = (
            select(SynapticDensityRow)
            .where(SynapticDensityRow.tenant_id == tenant_id)
            .order_by(
                SynapticDensityRow.bucket,
                SynapticDensityRow.cohort_dimension,
                SynapticDensityRow.cohort_key,
            )
        )
        return [
            DensityRowDTO(
                bucket=_plain(row.bucket),
                cohort_dimension=_plain(row.cohort_dimension),
                cohort_key=row.cohort_key,
                signal_count=row.signal_count,
                mean_value=Decimal(str(row.mean_value)),
                last_seen=row.last_seen,
                details=dict(row.details or {}),
            )
            for row in self.session.execute(stmt).scalars().all()
        ]
