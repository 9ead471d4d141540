"""
Module: incentive_kernel.selectors.raw_data_selector
Responsibility: Paginated read access to committed import rows.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every scan is tenant-scoped.
    - ``iter_rows`` eventually yields every matching row exactly once,
      reading ``page_size`` rows per query (keyset on ``id``).
"""

from collections.abc import Iterator
from uuid import UUID

from sqlalchemy import select

from incentive_kernel.domain.data_row import DataRow
from incentive_kernel.models.raw_data import CommittedDataRow
from incentive_kernel.selectors.base import BaseSelector


def _to_dto(row: CommittedDataRow) -> DataRow:
    meta = row.meta or {}
    return DataRow(
        row_id=str(row.id),
        data_type=row.data_type,
        entity_id=str(row.entity_id) if row.entity_id is not None else None,
        row_data=dict(row.row_data or {}),
        semantic_roles=dict(meta.get("semantic_roles") or {}),
    )


class RawDataSelector(BaseSelector):
    """Read committed data for calculation and convergence."""

    def iter_rows(
        self,
        tenant_id: UUID,
        period_id: UUID | None = None,
        data_type: str | None = None,
    ) -> Iterator[DataRow]:
        """
        Yield rows for the tenant, optionally narrowed to a period and
        data type, one page at a time.
        """
        last_id: UUID | None = None
        while True:
            stmt = select(CommittedDataRow).where(CommittedDataRow.tenant_id == tenant_id)
            if period_id is not None:
                stmt = stmt.where(CommittedDataRow.period_id == period_id)
            if data_type is not None:
                stmt = stmt.where(CommittedDataRow.data_type == data_type)
            if last_id is not None:
                stmt = stmt.where(CommittedDataRow.id > last_id)
            stmt = stmt.order_by(CommittedDataRow.id).limit(self.page_size)

            page = self.session.execute(stmt).scalars().all()
            for row in page:
                yield _to_dto(row)
            if len(page) < self.page_size:
                return
            last_id = page[-1].id

    def data_types(self, tenant_id: UUID, period_id: UUID | None = None) -> list[str]:
        """Distinct data types present for the tenant, sorted."""
        stmt = (
            select(CommittedDataRow.data_type)
            .where(CommittedDataRow.tenant_id == tenant_id)
            .distinct()
        )
        if period_id is not None:
            stmt = stmt.where(CommittedDataRow.period_id == period_id)
        return sorted(self.session.execute(stmt).scalars().all())

    def sample(
        self,
        tenant_id: UUID,
        data_type: str,
        limit: int,
        period_id: UUID | None = None,
    ) -> list[DataRow]:
        """First ``limit`` rows of a data type (by id), for field inventory."""
        stmt = (
            select(CommittedDataRow)
            .where(
                CommittedDataRow.tenant_id == tenant_id,
                CommittedDataRow.data_type == data_type,
            )
            .order_by(CommittedDataRow.id)
            .limit(limit)
        )
        if period_id is not None:
            stmt = stmt.where(CommittedDataRow.period_id == period_id)
        return [_to_dto(row) for row in self.session.execute(stmt).scalars().all()]
