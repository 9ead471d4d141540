"""
Module: incentive_kernel.models.tenant
Responsibility: ORM persistence for tenants, measurement periods and payee
    entities.  Every other row in the store is scoped by tenant_id.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Tenant slug is unique (uq_tenant_slug).
    - A period's canonical_key is unique within its tenant.
    - An entity's external_id is unique within its tenant.  Benchmarks and
      disputes refer to entities by external_id.

Failure modes:
    - IntegrityError on duplicate slug / canonical_key / external_id.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from incentive_kernel.db.base import TrackedBase, UUIDString


class Tenant(TrackedBase):
    """
    A customer organisation.

    Guarantees:
        - Inactive tenants are treated as missing by every primary trigger.
    """

    __tablename__ = "tenants"

    __table_args__ = (
        UniqueConstraint("slug", name="uq_tenant_slug"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    slug: Mapped[str] = mapped_column(String(100), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Tenant {self.slug}>"


class Period(TrackedBase):
    """
    A measurement period (e.g. ``2024-01``) over which metrics are evaluated.
    """

    __tablename__ = "periods"

    __table_args__ = (
        UniqueConstraint("tenant_id", "canonical_key", name="uq_period_tenant_key"),
        Index("idx_period_tenant_dates", "tenant_id", "start_date", "end_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    # e.g. "2024-01", "2024-Q1"
    canonical_key: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    def __repr__(self) -> str:
        return f"<Period {self.canonical_key}>"


class Entity(TrackedBase):
    """
    A payee (individual or store) evaluated by a plan.

    ``attributes`` holds eligibility and grouping data used by variant
    selection, conditional gates and group-level aggregation
    (e.g. ``{"store_id": "S-014", "certified": true}``).
    """

    __tablename__ = "entities"

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_entity_tenant_external"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    external_id: Mapped[str] = mapped_column(String(100), nullable=False)

    display_name: Mapped[str] = mapped_column(String(200), nullable=False)

    attributes: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<Entity {self.external_id}>"
