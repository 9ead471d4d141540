"""
incentive_services.convergence_service -- Bind plans to imported data.

Responsibility:
    For one plan (or every active plan of a tenant) sample the tenant's
    committed data, run ``ConvergenceMatcher`` and persist the merged
    derivation set to ``RuleSet.input_bindings``.  Every match is emitted
    as a ``convergence_binding`` signal.

Architecture position:
    Services -- imperative shell over ``incentive_engines.convergence``.

Invariants enforced:
    - ``input_bindings`` is replaced with a new dict so the JSON column is
      marked dirty; the write is last-write-wins across concurrent callers.
    - Re-convergence with unchanged inputs leaves ``input_bindings``
      unchanged and reports ``derivations_generated == 0``.

Failure modes:
    - TenantNotFoundError, RuleSetNotFoundError, InvalidComponentError,
      NoComponentsError, InvalidDerivationError propagate to the caller.
    - AI disambiguation failures fall back to deterministic selection.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from incentive_config import get_active_config
from incentive_config.schema import IncentiveConfiguration
from incentive_engines.convergence import (
    ConvergenceMatcher,
    ConvergenceReport,
    DataTypeProfile,
    build_inventory,
)
from incentive_kernel.domain.clock import Clock
from incentive_kernel.domain.derivation import parse_derivations
from incentive_kernel.domain.plan import parse_plan
from incentive_kernel.exceptions import RuleSetNotFoundError, TenantNotFoundError
from incentive_kernel.logging_config import LogContext, get_logger
from incentive_kernel.models.rule_set import RuleSet
from incentive_kernel.models.signal import SignalSource, SignalType
from incentive_kernel.models.tenant import Tenant
from incentive_kernel.selectors.plan_selector import PlanSelector
from incentive_kernel.selectors.raw_data_selector import RawDataSelector
from incentive_kernel.services.base import BaseService
from incentive_services._identifiers import coerce_uuid
from incentive_services.ai_service import AIService, field_disambiguator
from incentive_services.signal_service import SignalSink

logger = get_logger("services.convergence")


@dataclass(frozen=True)
class ConvergenceOutcome:
    derivations_generated: int
    rule_sets_processed: int
    reports: tuple[ConvergenceReport, ...] = field(default=())

    def to_dict(self) -> dict[str, Any]:
        return {
            "derivations_generated": self.derivations_generated,
            "rule_sets_processed": self.rule_sets_processed,
            "reports": [r.to_dict() for r in self.reports],
        }


class ConvergenceService(BaseService):
    """
    Usage:
        service = ConvergenceService(session, ai_service=my_classifier)
        outcome = service.converge(tenant_id)
        outcome.derivations_generated
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: IncentiveConfiguration | None = None,
        signals: SignalSink | None = None,
        ai_service: AIService | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or get_active_config()
        self._signals = signals or SignalSink(session, self.clock)
        self._disambiguator = field_disambiguator(ai_service) if ai_service else None
        self._matcher = ConvergenceMatcher()

    def converge(
        self,
        tenant_id: UUID | str,
        rule_set_id: UUID | str | None = None,
    ) -> ConvergenceOutcome:
        t0 = time.monotonic()
        tenant_uuid = coerce_uuid(tenant_id)
        tenant = self.session.get(Tenant, tenant_uuid) if tenant_uuid else None
        if tenant is None or not tenant.is_active:
            raise TenantNotFoundError(str(tenant_id))

        rule_sets = self._rule_sets(tenant_uuid, rule_set_id)
        with LogContext.bind(tenant_id=str(tenant_uuid)):
            inventory = self._inventory(tenant_uuid)
            reports = []
            for rule_set in rule_sets:
                with LogContext.bind(rule_set_id=str(rule_set.id)):
                    reports.append(self._converge_rule_set(tenant_uuid, rule_set, inventory))
            self._signals.flush()

            outcome = ConvergenceOutcome(
                derivations_generated=sum(r.derivations_generated for r in reports),
                rule_sets_processed=len(reports),
                reports=tuple(reports),
            )
            logger.info(
                "convergence_completed",
                extra={
                    "rule_sets_processed": outcome.rule_sets_processed,
                    "derivations_generated": outcome.derivations_generated,
                    "data_types": sorted(inventory),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return outcome

    def _rule_sets(self, tenant_id: UUID, rule_set_id: UUID | str | None) -> list[RuleSet]:
        if rule_set_id is None:
            ids = PlanSelector(self.session).active_rule_set_ids(tenant_id)
            return [self.session.get(RuleSet, rid) for rid in ids]

        rule_set_uuid = coerce_uuid(rule_set_id)
        rule_set = self.session.get(RuleSet, rule_set_uuid) if rule_set_uuid else None
        if rule_set is None or rule_set.tenant_id != tenant_id:
            raise RuleSetNotFoundError(str(rule_set_id), str(tenant_id))
        return [rule_set]

    def _inventory(self, tenant_id: UUID) -> dict[str, DataTypeProfile]:
        selector = RawDataSelector(self.session, page_size=self._config.store.page_size)
        sample_size = self._config.convergence.sample_size
        samples = {
            data_type: selector.sample(tenant_id, data_type, limit=sample_size)
            for data_type in selector.data_types(tenant_id)
        }
        return build_inventory(samples)

    def _converge_rule_set(
        self,
        tenant_id: UUID,
        rule_set: RuleSet,
        inventory: dict[str, DataTypeProfile],
    ) -> ConvergenceReport:
        plan = parse_plan(
            rule_set_id=str(rule_set.id),
            name=rule_set.name,
            components=rule_set.components,
            population=rule_set.population_config,
        )
        existing = parse_derivations(rule_set.input_bindings)
        report = self._matcher.converge(
            plan=plan,
            inventory=inventory,
            existing=existing,
            settings=self._config.convergence,
            disambiguator=self._disambiguator,
        )

        if report.merge.changed:
            bindings = dict(rule_set.input_bindings or {})
            bindings["metric_derivations"] = [d.to_dict() for d in report.derivations]
            rule_set.input_bindings = bindings
            self.session.flush()

        for signal in report.signals:
            self._signals.emit(
                tenant_id,
                SignalType.CONVERGENCE_BINDING,
                dict(signal, rule_set_id=str(rule_set.id)),
                confidence=Decimal(signal["confidence"]),
                source=SignalSource.AI if signal["ai_assisted"] else SignalSource.SYSTEM,
            )

        logger.info(
            "rule_set_converged",
            extra={
                "plan_name": rule_set.name,
                "derivations_generated": report.derivations_generated,
                "gaps": [g["metric"] for g in report.gaps],
            },
        )
        return report
