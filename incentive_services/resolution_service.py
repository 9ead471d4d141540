"""
incentive_services.resolution_service -- Open and investigate disputes.

Responsibility:
    Record payee disputes against a calculation batch, run
    ``ResolutionAgent`` over the disputed result's execution traces and
    the tenant's resolution priors, store the investigation on the dispute
    and move it through its status lifecycle.

Architecture position:
    Services -- imperative shell over ``incentive_engines.resolution``.

Invariants enforced:
    - Every status change is validated against ``VALID_TRANSITIONS``:
      open -> investigating -> resolved | rejected | escalated.
    - Recommendation maps to the final status:
        adjust               -> resolved
        reject_with_evidence -> rejected
        escalate             -> escalated
    - A resolution synapse and a training signal are written only when the
      root cause is not ``legitimate``.
    - Calculation results are never mutated; an ``adjust`` recommendation
      is recorded on the dispute, not applied to the result.

Failure modes:
    - TenantNotFoundError, EntityNotFoundError, BatchNotFoundError,
      DisputeNotFoundError, InvalidDisputeTransitionError.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from incentive_config import get_active_config
from incentive_config.schema import IncentiveConfiguration
from incentive_engines.resolution import (
    DisputeContext,
    Investigation,
    Recommendation,
    ResolutionAgent,
    ResolutionPattern,
    RootCause,
    detect_resolution_patterns,
)
from incentive_kernel.domain.amounts import to_decimal
from incentive_kernel.domain.clock import Clock
from incentive_kernel.exceptions import (
    BatchNotFoundError,
    DisputeNotFoundError,
    EntityNotFoundError,
    InvalidDisputeAmountError,
    InvalidDisputeTransitionError,
    TenantNotFoundError,
)
from incentive_kernel.logging_config import LogContext, get_logger
from incentive_kernel.models.calculation import CalculationBatch
from incentive_kernel.models.dispute import Dispute, DisputeStatus, can_transition
from incentive_kernel.models.signal import SignalType
from incentive_kernel.models.tenant import Entity, Tenant
from incentive_kernel.selectors.calculation_selector import CalculationSelector
from incentive_kernel.selectors.dispute_selector import DisputeSelector
from incentive_kernel.selectors.plan_selector import PlanSelector
from incentive_kernel.services.base import BaseService
from incentive_services._identifiers import coerce_uuid
from incentive_services.agent_memory import AgentMemoryService, PriorCache
from incentive_services.signal_service import SignalSink

logger = get_logger("services.resolution")

DOMAIN = "resolution"
AGENT_TYPE = "resolution"

FINAL_STATUS: dict[Recommendation, DisputeStatus] = {
    Recommendation.ADJUST: DisputeStatus.RESOLVED,
    Recommendation.REJECT_WITH_EVIDENCE: DisputeStatus.REJECTED,
    Recommendation.ESCALATE: DisputeStatus.ESCALATED,
}


@dataclass(frozen=True)
class DisputeInvestigation:
    dispute_id: str
    status: DisputeStatus
    investigation: Investigation
    priors_outcome: str
    patterns: tuple[ResolutionPattern, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "dispute_id": self.dispute_id,
            "status": self.status.value,
            "investigation": self.investigation.to_dict(),
            "priors_outcome": self.priors_outcome,
            "patterns": [p.to_dict() for p in self.patterns],
        }


class ResolutionService(BaseService):
    """
    Usage:
        service = ResolutionService(session)
        dispute = service.open_dispute(
            tenant_id, batch_id, "E-1", category="calculation", amount_disputed="50",
        )
        outcome = service.investigate_dispute(tenant_id, dispute.id)
        outcome.status          # DisputeStatus.REJECTED, ...
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: IncentiveConfiguration | None = None,
        signals: SignalSink | None = None,
        memory: AgentMemoryService | None = None,
        prior_cache: PriorCache | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or get_active_config()
        self._signals = signals or SignalSink(session, self.clock)
        self._memory = memory or AgentMemoryService(
            session,
            self.clock,
            settings=self._config.agent_memory,
            store=self._config.store,
            cache=prior_cache,
        )
        self._agent = ResolutionAgent()

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    def open_dispute(
        self,
        tenant_id: UUID | str,
        batch_id: UUID | str,
        entity_external_id: str,
        category: str,
        amount_disputed: Decimal | str | int,
        component_name: str | None = None,
        description: str = "",
    ) -> Dispute:
        tenant_uuid = self._require_tenant(tenant_id)

        batch_uuid = coerce_uuid(batch_id)
        batch = self.session.get(CalculationBatch, batch_uuid) if batch_uuid else None
        if batch is None or batch.tenant_id != tenant_uuid:
            raise BatchNotFoundError(str(batch_id))

        entity = PlanSelector(self.session).entity_by_external_id(tenant_uuid, entity_external_id)
        if entity is None:
            raise EntityNotFoundError(entity_external_id, str(tenant_uuid))

        amount = to_decimal(amount_disputed)
        if amount is None:
            raise InvalidDisputeAmountError(entity_external_id, amount_disputed)

        dispute = Dispute(
            tenant_id=tenant_uuid,
            entity_id=entity.entity_id,
            period_id=batch.period_id,
            batch_id=batch.id,
            component_name=component_name,
            category=category,
            description=description,
            amount_disputed=amount,
            status=DisputeStatus.OPEN.value,
        )
        self.session.add(dispute)
        self.session.flush()
        logger.info(
            "dispute_opened",
            extra={
                "dispute_id": str(dispute.id),
                "entity_external_id": entity_external_id,
                "component_name": component_name,
                "category": category,
            },
        )
        return dispute

    def investigate_dispute(
        self,
        tenant_id: UUID | str,
        dispute_id: UUID | str,
        **overrides: Any,
    ) -> DisputeInvestigation:
        """
        Investigate an open (or escalated) dispute and settle its status.

        ``overrides`` replace fields of the configured ResolutionSettings
        for this investigation only (e.g. ``adjust_min_confidence``).
        """
        tenant_uuid = self._require_tenant(tenant_id)
        dispute = self._require_dispute(tenant_uuid, dispute_id)
        settings = dataclasses.replace(self._config.resolution, **overrides)

        with LogContext.bind(tenant_id=str(tenant_uuid), batch_id=str(dispute.batch_id)):
            self._transition(dispute, DisputeStatus.INVESTIGATING)

            result = CalculationSelector(self.session).result_for_entity(
                tenant_uuid, dispute.batch_id, dispute.entity_id,
            )
            external_id = result.external_id if result else self._external_id(dispute.entity_id)
            priors = self._memory.load_priors_for_agent(tenant_uuid, DOMAIN, AGENT_TYPE)

            investigation = self._agent.investigate(
                context=DisputeContext(
                    dispute_id=str(dispute.id),
                    entity_external_id=external_id,
                    amount_disputed=Decimal(str(dispute.amount_disputed)),
                    component_name=dispute.component_name,
                    category=dispute.category,
                    description=dispute.description,
                ),
                traces=result.traces if result else (),
                surface=priors.surface,
                settings=settings,
            )

            final_status = FINAL_STATUS[investigation.recommendation]
            dispute.resolution = dict(
                investigation.to_dict(),
                priors=priors.summary(),
                investigated_at=self.clock.now().isoformat(),
            )
            self._transition(dispute, final_status)

            if investigation.resolution_synapse is not None:
                self._signals.emit(
                    tenant_uuid,
                    SignalType.RESOLUTION,
                    investigation.resolution_synapse,
                    confidence=investigation.confidence,
                )
                self._signals.emit(
                    tenant_uuid,
                    SignalType.TRAINING,
                    {
                        "dispute_id": str(dispute.id),
                        "category": dispute.category,
                        "component_name": investigation.component_name,
                        "root_cause": investigation.root_cause.value,
                        "recommendation": investigation.recommendation.value,
                        "evidence": list(investigation.evidence),
                    },
                    confidence=investigation.confidence,
                )
            self._signals.flush()

            patterns = tuple(self.resolution_patterns(tenant_uuid, settings.pattern_min_count))
            for pattern in patterns:
                logger.warning("resolution_pattern_detected", extra=pattern.to_dict())

        return DisputeInvestigation(
            dispute_id=str(dispute.id),
            status=final_status,
            investigation=investigation,
            priors_outcome=priors.outcome.value,
            patterns=patterns,
        )

    def resolution_patterns(
        self,
        tenant_id: UUID | str,
        min_count: int | None = None,
    ) -> list[ResolutionPattern]:
        """Recurring root causes over the tenant's stored investigations."""
        tenant_uuid = coerce_uuid(tenant_id)
        if tenant_uuid is None:
            raise TenantNotFoundError(str(tenant_id))
        investigations = [
            Investigation.from_dict(d.resolution)
            for d in DisputeSelector(self.session).investigated(tenant_uuid)
        ]
        # legitimate outcomes are not defects
        investigations = [i for i in investigations if i.root_cause is not RootCause.LEGITIMATE]
        return detect_resolution_patterns(
            investigations,
            min_count=min_count if min_count is not None else self._config.resolution.pattern_min_count,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_tenant(self, tenant_id: UUID | str) -> UUID:
        tenant_uuid = coerce_uuid(tenant_id)
        tenant = self.session.get(Tenant, tenant_uuid) if tenant_uuid else None
        if tenant is None or not tenant.is_active:
            raise TenantNotFoundError(str(tenant_id))
        return tenant_uuid

    def _require_dispute(self, tenant_id: UUID, dispute_id: UUID | str) -> Dispute:
        dispute_uuid = coerce_uuid(dispute_id)
        dispute = self.session.get(Dispute, dispute_uuid) if dispute_uuid else None
        if dispute is None or dispute.tenant_id != tenant_id:
            raise DisputeNotFoundError(str(dispute_id))
        return dispute

    def _transition(self, dispute: Dispute, to_status: DisputeStatus) -> None:
        from_status = DisputeStatus(dispute.status)
        if not can_transition(from_status, to_status):
            raise InvalidDisputeTransitionError(
                str(dispute.id), from_status.value, to_status.value,
            )
        dispute.status = to_status.value
        self.session.flush()
        logger.info(
            "dispute_status_changed",
            extra={
                "dispute_id": str(dispute.id),
                "from_status": from_status.value,
                "to_status": to_status.value,
            },
        )

    def _external_id(self, entity_id: UUID) -> str:
        entity = self.session.get(Entity, entity_id)
        return entity.external_id if entity is not None else str(entity_id)
