"""
incentive_services.reconciliation_service -- Reconcile a batch against a
customer benchmark.

Responsibility:
    Validate benchmark records, load the batch's results and the tenant's
    reconciliation priors, run ``ReconciliationAgent`` and persist its
    report to ``batch.config["reconciliation"]``.  Confident corrections
    are written as ``reconciliation_correction`` signals.

Architecture position:
    Services -- imperative shell over ``incentive_engines.reconciliation``.

Invariants enforced:
    - Calculation results are never mutated.
    - ``batch.config`` is replaced with a new dict (JSON dirty tracking);
      other keys it holds are preserved.
    - Degraded priors (RECOMPUTED / EMPTY) never fail the run; the report
      records the priors outcome.

Failure modes:
    - TenantNotFoundError, BatchNotFoundError, BenchmarkError.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from incentive_config import get_active_config
from incentive_config.schema import IncentiveConfiguration
from incentive_engines.reconciliation import (
    BenchmarkRecord,
    ReconciliationAgent,
    ReconciliationInput,
    ReconciliationReport,
)
from incentive_kernel.domain.amounts import to_decimal
from incentive_kernel.domain.clock import Clock
from incentive_kernel.exceptions import BatchNotFoundError, BenchmarkError, TenantNotFoundError
from incentive_kernel.logging_config import LogContext, get_logger
from incentive_kernel.models.calculation import CalculationBatch
from incentive_kernel.models.signal import SignalType
from incentive_kernel.models.tenant import Tenant
from incentive_kernel.selectors.calculation_selector import CalculationSelector
from incentive_kernel.services.base import BaseService
from incentive_services._identifiers import coerce_uuid
from incentive_services.agent_memory import AgentMemoryService, PriorCache
from incentive_services.observability import log_concordance
from incentive_services.signal_service import SignalSink

logger = get_logger("services.reconciliation")

DOMAIN = "reconciliation"
AGENT_TYPE = "reconciliation"


def parse_benchmark_records(
    raw_records: Iterable[BenchmarkRecord | Mapping[str, Any]],
) -> list[BenchmarkRecord]:
    """
    Validate benchmark input.

    Accepts BenchmarkRecord instances or mappings with
    ``entity_external_id``, ``amount`` and an optional ``component``.

    Raises:
        BenchmarkError: on a record without an entity id or with a
            non-numeric amount.
    """
    records = []
    for index, raw in enumerate(raw_records):
        if isinstance(raw, BenchmarkRecord):
            records.append(raw)
            continue
        if not isinstance(raw, Mapping):
            raise BenchmarkError("record must be an object", index)

        external_id = raw.get("entity_external_id")
        if external_id is None or not str(external_id).strip():
            raise BenchmarkError("entity_external_id is required", index)

        amount = to_decimal(raw.get("amount"))
        if amount is None:
            raise BenchmarkError(f"amount must be numeric, got {raw.get('amount')!r}", index)

        component = raw.get("component")
        records.append(
            BenchmarkRecord(
                entity_external_id=str(external_id).strip(),
                amount=amount,
                component=str(component) if component not in (None, "") else None,
            )
        )
    return records


class ReconciliationService(BaseService):
    """
    Usage:
        report = ReconciliationService(session).reconcile(
            tenant_id, batch_id,
            [{"entity_external_id": "E-1", "amount": "150.00"}],
        )
        report.concordance
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
        self._agent = ReconciliationAgent()

    def reconcile(
        self,
        tenant_id: UUID | str,
        batch_id: UUID | str,
        benchmark_records: Iterable[BenchmarkRecord | Mapping[str, Any]],
    ) -> ReconciliationReport:
        tenant_uuid = coerce_uuid(tenant_id)
        tenant = self.session.get(Tenant, tenant_uuid) if tenant_uuid else None
        if tenant is None or not tenant.is_active:
            raise TenantNotFoundError(str(tenant_id))

        batch_uuid = coerce_uuid(batch_id)
        batch = self.session.get(CalculationBatch, batch_uuid) if batch_uuid else None
        if batch is None or batch.tenant_id != tenant_uuid:
            raise BatchNotFoundError(str(batch_id))

        records = parse_benchmark_records(benchmark_records)

        with LogContext.bind(tenant_id=str(tenant_uuid), batch_id=str(batch_uuid)):
            results = CalculationSelector(self.session).results_for_batch(tenant_uuid, batch_uuid)
            priors = self._memory.load_priors_for_agent(tenant_uuid, DOMAIN, AGENT_TYPE)

            report = self._agent.reconcile(
                data=ReconciliationInput(
                    results=results,
                    benchmark_records=records,
                    surface=priors.surface,
                    settings=self._config.reconciliation,
                )
            )

            stored = dict(batch.config or {})
            stored["reconciliation"] = dict(
                report.to_dict(),
                priors=priors.summary(),
                benchmark_records=len(records),
                reconciled_at=self.clock.now().isoformat(),
            )
            batch.config = stored
            self.session.flush()

            for correction in report.corrections:
                self._signals.emit(
                    tenant_uuid,
                    SignalType.RECONCILIATION_CORRECTION,
                    dict(correction.signal_value(), batch_id=str(batch_uuid)),
                    confidence=correction.confidence,
                )
            self._signals.flush()

            log_concordance(
                batch_id=str(batch_uuid),
                match_count=report.match_count,
                mismatch_count=report.mismatch_count,
                concordance=str(report.concordance) if report.concordance is not None else None,
                false_greens=len(report.false_greens),
            )
        return report
