"""
Module: incentive_kernel.models.raw_data
Responsibility: ORM persistence for committed import rows.  Each row is one
    record of one imported sheet (``data_type``) for one period.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - entity_id is nullable.  A NULL entity_id marks a group-level row
      (e.g. a store total) that is aggregated through the population's
      group key, never attributed to a single entity directly.

Failure modes:
    - None at this layer.  Shape heterogeneity is handled by convergence
      and metric resolution.
"""

from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from incentive_kernel.db.base import TrackedBase, UUIDString


class CommittedDataRow(TrackedBase):
    """
    One imported record.

    ``meta`` is stored in the ``metadata`` column and may carry
    ``semantic_roles`` (``{field: role}``, e.g. ``performance_target``).
    """

    __tablename__ = "committed_data"

    __table_args__ = (
        Index("idx_committed_data_scope", "tenant_id", "period_id", "data_type"),
        Index("idx_committed_data_entity", "tenant_id", "period_id", "entity_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("periods.id"),
        nullable=False,
    )

    # Source sheet identity
    data_type: Mapped[str] = mapped_column(String(200), nullable=False)

    entity_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("entities.id"),
        nullable=True,
    )

    row_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
