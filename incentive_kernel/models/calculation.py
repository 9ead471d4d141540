"""
Module: incentive_kernel.models.calculation
Responsibility: ORM persistence for calculation batches and per-entity
    calculation results.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one result per (tenant_id, entity_id, period_id, rule_set_id)
      (uq_calc_result_scope).  Re-runs delete prior rows for the triple
      before inserting.
    - total_payout equals the sum of component payouts (enforced by the
      calculation service, asserted in tests).
    - Results are never edited after insert.  Reconciliation output is
      written to the batch's ``config``, not to results.

Failure modes:
    - IntegrityError if a run inserts without deleting the prior triple.

Audit relevance:
    ``meta["intentTraces"]`` carries one execution trace per enabled
    component of the evaluated variant, linking every dollar to its inputs
    and the rule that produced it.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from incentive_kernel.db.base import TrackedBase, UUIDString


class BatchLifecycle(str, Enum):
    """Lifecycle state of a calculation batch."""

    DRAFT = "draft"
    PREVIEW = "preview"
    SUPERSEDED = "superseded"


class CalculationBatch(TrackedBase):
    """
    One calculation run for (tenant, period, rule_set).

    ``summary`` holds ``{"anomalies": {...}}``; ``config`` holds auxiliary
    reports such as ``{"reconciliation": {...}}``.
    """

    __tablename__ = "calculation_batches"

    __table_args__ = (
        Index("idx_calc_batch_scope", "tenant_id", "period_id", "rule_set_id"),
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

    rule_set_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rule_sets.id"),
        nullable=False,
    )

    lifecycle_state: Mapped[BatchLifecycle] = mapped_column(
        String(20),
        default=BatchLifecycle.DRAFT,
        nullable=False,
    )

    entity_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_payout: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        default=Decimal("0"),
        nullable=False,
    )

    summary: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    config: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


class CalculationResult(TrackedBase):
    """
    Payout for one entity in one batch.

    ``components`` is a list of ``{name, type, payout, trace_id}``;
    ``meta`` (column ``metadata``) carries ``intentTraces``, ``variant``,
    ``missingMetrics`` and ``flags``.
    """

    __tablename__ = "calculation_results"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "entity_id", "period_id", "rule_set_id",
            name="uq_calc_result_scope",
        ),
        Index("idx_calc_result_batch", "batch_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("calculation_batches.id"),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("entities.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("periods.id"),
        nullable=False,
    )

    rule_set_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rule_sets.id"),
        nullable=False,
    )

    total_payout: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    components: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    metrics: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
