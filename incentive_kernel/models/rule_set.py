"""
Module: incentive_kernel.models.rule_set
Responsibility: ORM persistence for compensation plans (rule sets) and the
    assignments that define each plan's eligible population.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant_id, name, version) is unique.
    - An entity is assigned to a rule set at most once.
    - The JSON blobs are stored as authored; they are validated into typed
      components by ``incentive_kernel.domain.plan`` before evaluation.

Failure modes:
    - InvalidComponentError / UnknownVariantError at load time when the
      stored blobs are malformed (raised by the domain parser, not here).

Audit relevance:
    ``input_bindings.metric_derivations`` records every binding convergence
    applied, including AI-assisted ones with their confidence and signal id.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from incentive_kernel.db.base import TrackedBase, UUIDString


class RuleSetStatus(str, Enum):
    """Lifecycle status of a plan."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class RuleSet(TrackedBase):
    """
    A versioned compensation plan.

    Contract:
        ``components`` has the shape
        ``{"variants": [{"variant_id", "name", "components": [...]}]}``.
        ``input_bindings`` has the shape ``{"metric_derivations": [...]}``.
        ``population_config`` carries the variant selector, the group key
        used for group-level aggregation and the gate scope.

    Non-goals:
        - Editing an ACTIVE plan in place.  Changes go through a new version.
    """

    __tablename__ = "rule_sets"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", "version", name="uq_rule_set_version"),
        Index("idx_rule_set_tenant_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    status: Mapped[RuleSetStatus] = mapped_column(
        String(20),
        default=RuleSetStatus.DRAFT,
        nullable=False,
    )

    components: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    input_bindings: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    population_config: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<RuleSet {self.name} v{self.version} ({self.status})>"


class RuleSetAssignment(TrackedBase):
    """Membership of an entity in a plan's eligible population."""

    __tablename__ = "rule_set_assignments"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "rule_set_id", "entity_id", name="uq_rule_set_assignment",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tenants.id"),
        nullable=False,
    )

    rule_set_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rule_sets.id"),
        nullable=False,
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("entities.id"),
        nullable=False,
    )
