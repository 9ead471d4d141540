"""
Module: incentive_kernel.selectors.plan_selector
Responsibility: Read access to plans and their eligible populations.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import select

from incentive_kernel.models.rule_set import RuleSet, RuleSetAssignment, RuleSetStatus
from incentive_kernel.models.tenant import Entity
from incentive_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class EntityDTO:
    entity_id: UUID
    external_id: str
    display_name: str
    attributes: dict[str, Any] = field(default_factory=dict)


class PlanSelector(BaseSelector):
    """Read plans and assignments."""

    def assigned_entities(self, tenant_id: UUID, rule_set_id: UUID) -> list[EntityDTO]:
        """Entities assigned to the plan, ordered by external id."""
        stmt = (
            select(Entity)
            .join(RuleSetAssignment, RuleSetAssignment.entity_id == Entity.id)
            .where(
                RuleSetAssignment.tenant_id == tenant_id,
                RuleSetAssignment.rule_set_id == rule_set_id,
                Entity.tenant_id == tenant_id,
            )
            .order_by(Entity.external_id)
        )
        return [
            EntityDTO(
                entity_id=entity.id,
                external_id=entity.external_id,
                display_name=entity.display_name,
                attributes=dict(entity.attributes or {}),
            )
            for entity in self.session.execute(stmt).scalars().all()
        ]

    def entity_by_external_id(self, tenant_id: UUID, external_id: str) -> EntityDTO | None:
        entity = self.session.execute(
            select(Entity).where(
                Entity.tenant_id == tenant_id,
                Entity.external_id == external_id,
            )
        ).scalar_one_or_none()
        if entity is None:
            return None
        return EntityDTO(
            entity_id=entity.id,
            external_id=entity.external_id,
            display_name=entity.display_name,
            attributes=dict(entity.attributes or {}),
        )

    def active_rule_set_ids(self, tenant_id: UUID) -> list[UUID]:
        stmt = (
            select(RuleSet.id)
            .where(
                RuleSet.tenant_id == tenant_id,
                RuleSet.status == RuleSetStatus.ACTIVE.value,
            )
            .order_by(RuleSet.name, RuleSet.version)
        )
        return list(self.session.execute(stmt).scalars().all())
