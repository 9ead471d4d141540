"""
Module: incentive_kernel.models.signal
Responsibility: ORM persistence for classification signals and the
    pre-aggregated synaptic density built from them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Signals are append-only.  Density rows are derived data and are
      replaced wholesale by ``AgentMemoryService.refresh_density``.
    - A density row is unique per (tenant, bucket, cohort_dimension,
      cohort_key).

Failure modes:
    - Signal writes are best-effort.  Callers go through ``SignalSink``,
      which isolates each write in a savepoint and swallows failures.

Audit relevance:
    Signals record every convergence binding, anomaly, data-quality gap,
    reconciliation correction and dispute resolution for later accuracy
    auditing.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from incentive_kernel.db.base import TrackedBase, UUIDString


class SignalType(str, Enum):
    """Kinds of classification signal."""

    CONVERGENCE_BINDING = "convergence_binding"
    ANOMALY = "anomaly"
    DATA_QUALITY = "data_quality"
    CONFIDENCE = "confidence"
    RECONCILIATION_CORRECTION = "reconciliation_correction"
    RESOLUTION = "resolution"
    TRAINING = "training"


class SignalSource(str, Enum):
    """Who produced a signal."""

    AI = "ai"
    SYSTEM = "system"
    USER_CONFIRMED = "user_confirmed"
    USER_CORRECTED = "user_corrected"


class SynapseBucket(str, Enum):
    """Aggregation buckets of synaptic density."""

    CONFIDENCE = "confidence"
    ANOMALY = "anomaly"
    CORRECTION = "correction"
    DATA_QUALITY = "data_quality"


class CohortDimension(str, Enum):
    """Dimension a synapse is keyed by."""

    METRIC = "metric"
    COMPONENT = "component"
    ENTITY = "entity"


class ClassificationSignal(TrackedBase):
    """
    One classification / training event.

    ``signal_value`` is free-form JSON.  Signals that feed agent memory
    carry ``cohorts`` (``[{"dimension", "key"}]``), an optional numeric
    ``value`` and an optional ``kind`` label.
    """

    __tablename__ = "classification_signals"

    __table_args__ = (
        Index("idx_signal_tenant_type", "tenant_id", "signal_type"),
        Index("idx_signal_tenant_created", "tenant_id", "created_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    signal_type: Mapped[SignalType] = mapped_column(String(40), nullable=False)

    signal_value: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    confidence: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)

    source: Mapped[SignalSource] = mapped_column(
        String(20),
        default=SignalSource.SYSTEM,
        nullable=False,
    )


class SynapticDensityRow(TrackedBase):
    """Pre-aggregated prior for one cohort within one bucket."""

    __tablename__ = "synaptic_density"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "bucket", "cohort_dimension", "cohort_key",
            name="uq_synaptic_density_cohort",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    bucket: Mapped[SynapseBucket] = mapped_column(String(20), nullable=False)

    cohort_dimension: Mapped[CohortDimension] = mapped_column(String(20), nullable=False)

    cohort_key: Mapped[str] = mapped_column(String(200), nullable=False)

    signal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    mean_value: Mapped[Decimal] = mapped_column(
        Numeric(20, 6),
        default=Decimal("0"),
        nullable=False,
    )

    last_seen: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
