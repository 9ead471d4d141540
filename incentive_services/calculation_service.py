"""
incentive_services.calculation_service -- Run a plan for one period.

Responsibility:
    Orchestrates a calculation run for (tenant, period, rule_set): validate
    inputs, load committed data, resolve metrics and evaluate the plan per
    assigned entity, replace prior results for the triple, record the
    anomaly report and emit data-quality / anomaly signals.

Architecture position:
    Services -- imperative shell over ``MetricResolver``,
    ``ComponentEvaluator`` and ``AnomalyDetector`` (pure engines) and the
    kernel selectors / models (I/O).

Invariants enforced:
    - Idempotent overwrite: prior results for (tenant, period, rule_set)
      are deleted before the new ones are inserted, and prior batches for
      the triple are marked ``superseded``.  Re-running with unchanged
      inputs reproduces identical totals and row counts.
    - Every assigned entity gets exactly one result row, even when a
      required metric is missing (flagged in ``missingMetrics``).
    - ``len(intentTraces) == enabled components of the evaluated variant``.
    - ``total_payout`` of a result equals the sum of its component payouts.
    - Input errors are detected before any write.

Failure modes:
    - Structured failure ``{success: False, error: {code, message}}`` for
      TenantNotFoundError, PeriodNotFoundError, RuleSetNotFoundError,
      NoComponentsError, InvalidComponentError, InvalidDerivationError,
      UnknownVariantError and NoEligibleEntitiesError.
    - Concurrent runs for the same triple are not guarded; callers
      serialize them.

Audit relevance:
    The run's structured log is captured (``LogCapture``) and returned as
    ``log``.  The batch records the configuration id and checksum in force.

Usage:
    with session_scope() as session:
        outcome = CalculationService(session).run_calculation(
            tenant_id, period_id, rule_set_id,
        )
        if not outcome.success:
            print(outcome.error)
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from incentive_config import get_active_config
from incentive_config.schema import IncentiveConfiguration
from incentive_engines.anomaly import AnomalyDetector, AnomalyReport, PayoutRecord
from incentive_engines.components import ComponentEvaluator, VariantEvaluation
from incentive_engines.metric_resolution import EntityContext, MetricResolver, group_rows_for
from incentive_kernel.domain.amounts import ZERO, quantize_cents
from incentive_kernel.domain.clock import Clock
from incentive_kernel.domain.data_row import DataRow
from incentive_kernel.domain.derivation import parse_derivations
from incentive_kernel.domain.plan import Plan, parse_plan
from incentive_kernel.domain.trace import ResolvedInput
from incentive_kernel.exceptions import (
    IncentiveKernelError,
    NoEligibleEntitiesError,
    PeriodNotFoundError,
    RuleSetNotFoundError,
    TenantNotFoundError,
)
from incentive_kernel.logging_config import LogContext, get_logger
from incentive_kernel.models.calculation import (
    BatchLifecycle,
    CalculationBatch,
    CalculationResult,
)
from incentive_kernel.models.rule_set import RuleSet
from incentive_kernel.models.signal import CohortDimension, SignalType
from incentive_kernel.models.tenant import Period, Tenant
from incentive_kernel.selectors.plan_selector import EntityDTO, PlanSelector
from incentive_kernel.selectors.raw_data_selector import RawDataSelector
from incentive_kernel.services.base import BaseService
from incentive_kernel.services.log_capture import LogCapture
from incentive_services._identifiers import coerce_uuid
from incentive_services.observability import log_trigger_failure
from incentive_services.signal_service import SignalSink

logger = get_logger("services.calculation")


@dataclass(frozen=True)
class EntityResult:
    entity_id: str
    external_id: str
    variant_id: str
    total_payout: Decimal
    evaluation: VariantEvaluation
    metrics: dict[str, ResolvedInput]

    @property
    def missing_metrics(self) -> tuple[str, ...]:
        return self.evaluation.missing_metrics

    def components_json(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in self.evaluation.payouts]

    def metrics_json(self) -> dict[str, Any]:
        return {name: r.to_dict() for name, r in sorted(self.metrics.items())}

    def meta_json(self) -> dict[str, Any]:
        return {
            "intentTraces": [t.to_dict() for t in self.evaluation.traces],
            "variant": self.variant_id,
            "missingMetrics": list(self.missing_metrics),
            "flags": list(self.evaluation.flags),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "external_id": self.external_id,
            "variant": self.variant_id,
            "total_payout": str(self.total_payout),
            "components": self.components_json(),
            "missing_metrics": list(self.missing_metrics),
            "flags": list(self.evaluation.flags),
        }


@dataclass(frozen=True)
class CalculationRunResult:
    success: bool
    batch_id: str | None = None
    total_payout: Decimal = ZERO
    entity_count: int = 0
    results: tuple[EntityResult, ...] = ()
    anomalies: dict[str, Any] = field(default_factory=dict)
    log: tuple[dict[str, Any], ...] = ()
    error: dict[str, str] | None = None

    @classmethod
    def failure(cls, code: str, message: str) -> CalculationRunResult:
        return cls(success=False, error={"code": code, "message": message})

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": dict(self.error or {}), "log": list(self.log)}
        return {
            "success": True,
            "batch_id": self.batch_id,
            "total_payout": str(self.total_payout),
            "entity_count": self.entity_count,
            "results": [r.to_dict() for r in self.results],
            "anomalies": self.anomalies,
            "log": list(self.log),
        }


class CalculationService(BaseService):
    """
    Primary calculation trigger.

    Contract:
        ``run_calculation`` returns a CalculationRunResult; it never raises
        for input errors.  Writes are flushed, not committed.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: IncentiveConfiguration | None = None,
        signals: SignalSink | None = None,
    ):
        super().__init__(session, clock)
        self._config = config or get_active_config()
        self._signals = signals or SignalSink(session, self.clock)
        self._evaluator = ComponentEvaluator()
        self._detector = AnomalyDetector()

    def run_calculation(
        self,
        tenant_id: UUID | str,
        period_id: UUID | str,
        rule_set_id: UUID | str,
    ) -> CalculationRunResult:
        capture = LogCapture().install()
        try:
            with LogContext.bind(tenant_id=str(tenant_id), rule_set_id=str(rule_set_id)):
                try:
                    outcome = self._run(tenant_id, period_id, rule_set_id)
                except IncentiveKernelError as exc:
                    log_trigger_failure(
                        operation="run_calculation", code=exc.code, message=str(exc),
                    )
                    outcome = CalculationRunResult.failure(exc.code, str(exc))
        finally:
            capture.uninstall()
        return replace(outcome, log=tuple(capture.records))

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def _run(
        self,
        raw_tenant_id: UUID | str,
        raw_period_id: UUID | str,
        raw_rule_set_id: UUID | str,
    ) -> CalculationRunResult:
        t0 = time.monotonic()
        tenant_id, period_id, rule_set, plan = self._validate(
            raw_tenant_id, raw_period_id, raw_rule_set_id,
        )
        rule_set_id = rule_set.id
        logger.info(
            "calculation_run_started",
            extra={"period_id": str(period_id), "plan_name": plan.name},
        )

        derivations = parse_derivations(rule_set.input_bindings)
        entities = PlanSelector(self.session).assigned_entities(tenant_id, rule_set_id)
        if not entities:
            raise NoEligibleEntitiesError(str(rule_set_id))

        entity_rows, group_rows = self._load_rows(tenant_id, period_id)
        resolver = MetricResolver(derivations)
        results = [
            self._evaluate_entity(plan, resolver, entity, entity_rows, group_rows)
            for entity in entities
        ]
        total = sum((r.total_payout for r in results), ZERO)

        with self.session.begin_nested():
            batch = self._replace_results(tenant_id, period_id, rule_set_id, results, total)

        with LogContext.bind(batch_id=str(batch.id)):
            report = self._detector.detect(
                records=[
                    PayoutRecord(
                        entity_id=r.entity_id,
                        total_payout=r.total_payout,
                        external_id=r.external_id,
                    )
                    for r in results
                ],
                assigned_entity_ids=[str(e.entity_id) for e in entities],
                settings=self._config.anomaly,
            )
            batch.summary = {"anomalies": report.to_dict()}
            self.session.flush()

            self._emit_signals(tenant_id, batch.id, results, report)

            logger.info(
                "calculation_run_completed",
                extra={
                    "entity_count": len(results),
                    "total_payout": str(total),
                    "anomaly_count": len(report.anomalies),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )

        return CalculationRunResult(
            success=True,
            batch_id=str(batch.id),
            total_payout=total,
            entity_count=len(results),
            results=tuple(results),
            anomalies=report.to_dict(),
        )

    def _validate(
        self,
        raw_tenant_id: UUID | str,
        raw_period_id: UUID | str,
        raw_rule_set_id: UUID | str,
    ) -> tuple[UUID, UUID, RuleSet, Plan]:
        tenant_id = coerce_uuid(raw_tenant_id)
        tenant = self.session.get(Tenant, tenant_id) if tenant_id else None
        if tenant is None or not tenant.is_active:
            raise TenantNotFoundError(str(raw_tenant_id))

        period_id = coerce_uuid(raw_period_id)
        period = self.session.get(Period, period_id) if period_id else None
        if period is None or period.tenant_id != tenant_id:
            raise PeriodNotFoundError(str(raw_period_id), str(tenant_id))

        rule_set_id = coerce_uuid(raw_rule_set_id)
        rule_set = self.session.get(RuleSet, rule_set_id) if rule_set_id else None
        if rule_set is None or rule_set.tenant_id != tenant_id:
            raise RuleSetNotFoundError(str(raw_rule_set_id), str(tenant_id))

        plan = parse_plan(
            rule_set_id=str(rule_set.id),
            name=rule_set.name,
            components=rule_set.components,
            population=rule_set.population_config,
        )
        return tenant_id, period_id, rule_set, plan

    def _load_rows(
        self,
        tenant_id: UUID,
        period_id: UUID,
    ) -> tuple[dict[str, list[DataRow]], list[DataRow]]:
        selector = RawDataSelector(self.session, page_size=self._config.store.page_size)
        entity_rows: dict[str, list[DataRow]] = defaultdict(list)
        group_rows: list[DataRow] = []
        count = 0
        for row in selector.iter_rows(tenant_id, period_id):
            count += 1
            if row.is_group_level:
                group_rows.append(row)
            else:
                entity_rows[row.entity_id].append(row)
        logger.info(
            "committed_data_loaded",
            extra={
                "row_count": count,
                "entity_row_owners": len(entity_rows),
                "group_rows": len(group_rows),
            },
        )
        return entity_rows, group_rows

    def _evaluate_entity(
        self,
        plan: Plan,
        resolver: MetricResolver,
        entity: EntityDTO,
        entity_rows: dict[str, list[DataRow]],
        group_rows: list[DataRow],
    ) -> EntityResult:
        entity_id = str(entity.entity_id)
        group_key = plan.population.group_key
        context = EntityContext(
            entity_id=entity_id,
            external_id=entity.external_id,
            attributes=entity.attributes,
            rows=tuple(entity_rows.get(entity_id, ())),
            group_key=group_key,
        )
        context = replace(
            context,
            group_rows=group_rows_for(group_key, context.group_value, group_rows),
        )

        variant = plan.select_variant(entity.attributes)
        required: dict[str, None] = {}
        for component in variant.enabled_components:
            for metric in component.required_metrics:
                required.setdefault(metric, None)
        metrics = resolver.resolve_all(required, context)

        evaluation = self._evaluator.evaluate_variant(
            variant=variant,
            variant_id=variant.variant_id,
            metrics=metrics,
            attributes=entity.attributes,
            gate_scope=plan.population.gate_scope,
            trace_prefix=f"{entity.external_id}:",
        )
        return EntityResult(
            entity_id=entity_id,
            external_id=entity.external_id,
            variant_id=variant.variant_id,
            total_payout=quantize_cents(evaluation.total),
            evaluation=evaluation,
            metrics=metrics,
        )

    def _replace_results(
        self,
        tenant_id: UUID,
        period_id: UUID,
        rule_set_id: UUID,
        results: list[EntityResult],
        total: Decimal,
    ) -> CalculationBatch:
        deleted = self.session.execute(
            delete(CalculationResult).where(
                CalculationResult.tenant_id == tenant_id,
                CalculationResult.period_id == period_id,
                CalculationResult.rule_set_id == rule_set_id,
            )
        ).rowcount
        self.session.execute(
            update(CalculationBatch)
            .where(
                CalculationBatch.tenant_id == tenant_id,
                CalculationBatch.period_id == period_id,
                CalculationBatch.rule_set_id == rule_set_id,
                CalculationBatch.lifecycle_state != BatchLifecycle.SUPERSEDED.value,
            )
            .values(lifecycle_state=BatchLifecycle.SUPERSEDED.value)
            .execution_options(synchronize_session="fetch")
        )

        batch = CalculationBatch(
            tenant_id=tenant_id,
            period_id=period_id,
            rule_set_id=rule_set_id,
            lifecycle_state=BatchLifecycle.PREVIEW.value,
            entity_count=len(results),
            total_payout=total,
            summary={},
            config={
                "config_id": self._config.config_id,
                "config_version": self._config.version,
                "config_checksum": self._config.checksum,
                "calculated_at": self.clock.now().isoformat(),
            },
        )
        self.session.add(batch)
        self.session.flush()

        for result in results:
            self.session.add(
                CalculationResult(
                    tenant_id=tenant_id,
                    batch_id=batch.id,
                    entity_id=UUID(result.entity_id),
                    period_id=period_id,
                    rule_set_id=rule_set_id,
                    total_payout=result.total_payout,
                    components=result.components_json(),
                    metrics=result.metrics_json(),
                    meta=result.meta_json(),
                )
            )
        self.session.flush()
        logger.info(
            "calculation_results_replaced",
            extra={"batch_id": str(batch.id), "deleted": deleted, "inserted": len(results)},
        )
        return batch

    def _emit_signals(
        self,
        tenant_id: UUID,
        batch_id: UUID,
        results: list[EntityResult],
        report: AnomalyReport,
    ) -> None:
        external_ids = {r.entity_id: r.external_id for r in results}

        for result in results:
            if not result.missing_metrics:
                continue
            cohorts = [{"dimension": CohortDimension.ENTITY.value, "key": result.external_id}]
            cohorts.extend(
                {"dimension": CohortDimension.METRIC.value, "key": m}
                for m in result.missing_metrics
            )
            self._signals.emit(
                tenant_id,
                SignalType.DATA_QUALITY,
                {
                    "cohorts": cohorts,
                    "kind": "missing_metric",
                    "value": "1",
                    "batch_id": str(batch_id),
                    "metrics": list(result.missing_metrics),
                },
            )

        for anomaly in report.anomalies:
            cohorts = [
                {
                    "dimension": CohortDimension.ENTITY.value,
                    "key": external_ids.get(entity_id, entity_id),
                }
                for entity_id in anomaly.entity_ids
            ]
            self._signals.emit(
                tenant_id,
                SignalType.ANOMALY,
                {
                    "cohorts": cohorts,
                    "kind": anomaly.anomaly_type.value,
                    "value": "1",
                    "batch_id": str(batch_id),
                    "description": anomaly.description,
                },
            )

        self._signals.flush()
