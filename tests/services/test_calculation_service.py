"""
Tests for CalculationService.

Covers:
- Payout totals for the reference sales scenario
- Idempotent overwrite (superseded batches, stable row counts)
- One trace per enabled component, stored with the result
- Missing metrics flagged and signalled
- Group-level rows attributed through the population group key
- Structured failures for input errors
"""

from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select

from incentive_kernel.models import CalculationBatch, CalculationResult, ClassificationSignal
from incentive_kernel.models.calculation import BatchLifecycle
from incentive_services.calculation_service import CalculationService
from incentive_services.signal_service import SignalSink


class TestRunCalculation:
    """Happy path over the three-entity sales scenario."""

    def _run(self, session, clock, test_config, tenant, period, rule_set):
        service = CalculationService(session, clock, test_config, SignalSink(session, clock))
        return service.run_calculation(tenant.id, period.id, rule_set.id)

    def test_entity_totals(self, session, clock, test_config, tenant, period, sales_scenario):
        outcome = self._run(session, clock, test_config, tenant, period, sales_scenario["rule_set"])

        assert outcome.success, outcome.error
        totals = {r.external_id: r.total_payout for r in outcome.results}
        assert totals == sales_scenario["expected"]
        assert outcome.total_payout == Decimal("800.00")
        assert outcome.entity_count == 3

    def test_accepts_string_ids(self, session, clock, test_config, tenant, period, sales_scenario):
        service = CalculationService(session, clock, test_config)

        outcome = service.run_calculation(
            str(tenant.id), str(period.id), str(sales_scenario["rule_set"].id),
        )

        assert outcome.success

    def test_one_trace_per_component(self, session, clock, test_config, tenant, period, sales_scenario):
        outcome = self._run(session, clock, test_config, tenant, period, sales_scenario["rule_set"])

        rows = session.execute(
            select(CalculationResult).where(CalculationResult.batch_id == UUID(outcome.batch_id))
        ).scalars().all()
        assert len(rows) == 3
        for row in rows:
            assert len(row.meta["intentTraces"]) == 2
            payouts = sum(Decimal(c["payout"]) for c in row.components)
            assert Decimal(str(row.total_payout)) == payouts

    def test_missing_metric_flagged(self, session, clock, test_config, tenant, period, sales_scenario):
        outcome = self._run(session, clock, test_config, tenant, period, sales_scenario["rule_set"])

        e3 = [r for r in outcome.results if r.external_id == "E-3"][0]
        assert e3.missing_metrics == ("revenue",)
        assert "missing_metrics" in e3.evaluation.flags

        signals = session.execute(
            select(ClassificationSignal).where(
                ClassificationSignal.tenant_id == tenant.id,
                ClassificationSignal.signal_type == "data_quality",
            )
        ).scalars().all()
        assert len(signals) == 1
        assert {"dimension": "metric", "key": "revenue"} in signals[0].signal_value["cohorts"]

    def test_idempotent_rerun(self, session, clock, test_config, tenant, period, sales_scenario):
        rule_set = sales_scenario["rule_set"]
        first = self._run(session, clock, test_config, tenant, period, rule_set)
        second = self._run(session, clock, test_config, tenant, period, rule_set)

        assert second.batch_id != first.batch_id
        assert second.total_payout == first.total_payout
        count = session.execute(
            select(func.count()).select_from(CalculationResult).where(
                CalculationResult.rule_set_id == rule_set.id,
            )
        ).scalar_one()
        assert count == 3

        old = session.get(CalculationBatch, UUID(first.batch_id))
        new = session.get(CalculationBatch, UUID(second.batch_id))
        assert old.lifecycle_state == BatchLifecycle.SUPERSEDED.value
        assert new.lifecycle_state == BatchLifecycle.PREVIEW.value

    def test_batch_records_config(self, session, clock, test_config, tenant, period, sales_scenario):
        outcome = self._run(session, clock, test_config, tenant, period, sales_scenario["rule_set"])

        batch = session.get(CalculationBatch, UUID(outcome.batch_id))
        assert batch.config["config_checksum"] == "test"
        assert batch.config["calculated_at"] == clock.now().isoformat()
        assert "anomalies" in batch.summary

    def test_run_log_returned(self, session, clock, test_config, tenant, period, sales_scenario):
        outcome = self._run(session, clock, test_config, tenant, period, sales_scenario["rule_set"])

        messages = [r["message"] for r in outcome.log]
        assert "calculation_run_started" in messages
        assert "calculation_run_completed" in messages
        assert outcome.to_dict()["total_payout"] == "800.00"


class TestGroupLevelRows:
    def test_store_rows_attributed_by_group_key(
        self, session, clock, test_config, tenant, period, make_entity, make_rule_set, add_row,
    ):
        e1 = make_entity("E-1", store_id="S-1")
        e2 = make_entity("E-2", store_id="S-2")
        add_row("Store Totals", None, {"store_id": "S-1", "total": 80000})
        rule_set = make_rule_set(
            [{
                "name": "Store Bonus",
                "componentType": "tier_lookup",
                "tierConfig": {
                    "metric": "store_sales",
                    "tiers": [
                        {"min": 0, "max": 49999, "value": 10},
                        {"min": 50000, "max": None, "value": 20},
                    ],
                },
            }],
            population={"group_key": "store_id"},
            input_bindings={"metric_derivations": [{
                "metric": "store_sales",
                "operation": "sum",
                "source_pattern": "store",
                "source_field": "total",
            }]},
            entities=[e1, e2],
        )

        outcome = CalculationService(session, clock, test_config).run_calculation(
            tenant.id, period.id, rule_set.id,
        )

        results = {r.external_id: r for r in outcome.results}
        assert results["E-1"].total_payout == Decimal("20.00")
        assert results["E-1"].metrics["store_sales"].path == "aggregated:store_id=S-1"
        assert results["E-2"].total_payout == Decimal("0.00")
        assert results["E-2"].missing_metrics == ("store_sales",)


class TestInputErrors:
    """Input errors come back as structured failures before any write."""

    def _service(self, session, clock, test_config):
        return CalculationService(session, clock, test_config)

    def test_unknown_tenant(self, session, clock, test_config, period, sales_scenario):
        outcome = self._service(session, clock, test_config).run_calculation(
            uuid4(), period.id, sales_scenario["rule_set"].id,
        )

        assert not outcome.success
        assert outcome.error["code"] == "TENANT_NOT_FOUND"

    def test_unparseable_period(self, session, clock, test_config, tenant, sales_scenario):
        outcome = self._service(session, clock, test_config).run_calculation(
            tenant.id, "not-a-uuid", sales_scenario["rule_set"].id,
        )

        assert outcome.error["code"] == "PERIOD_NOT_FOUND"

    def test_unknown_rule_set(self, session, clock, test_config, tenant, period):
        outcome = self._service(session, clock, test_config).run_calculation(
            tenant.id, period.id, uuid4(),
        )

        assert outcome.error["code"] == "RULE_SET_NOT_FOUND"

    def test_no_components(self, session, clock, test_config, tenant, period, make_entity, make_rule_set):
        rule_set = make_rule_set([], entities=[make_entity("E-1")])

        outcome = self._service(session, clock, test_config).run_calculation(
            tenant.id, period.id, rule_set.id,
        )

        assert outcome.error["code"] == "NO_COMPONENTS"

    def test_no_eligible_entities(
        self, session, clock, test_config, tenant, period, make_rule_set, sales_plan_components,
    ):
        rule_set = make_rule_set(sales_plan_components)

        outcome = self._service(session, clock, test_config).run_calculation(
            tenant.id, period.id, rule_set.id,
        )

        assert outcome.error["code"] == "NO_ELIGIBLE_ENTITIES"
        batches = session.execute(
            select(func.count()).select_from(CalculationBatch).where(
                CalculationBatch.rule_set_id == rule_set.id,
            )
        ).scalar_one()
        assert batches == 0

    @pytest.mark.parametrize("population", [
        {"gate_scope": "plan"},
        {"variant_selector": {}},
        {"variant_selector": {"values": {"gold": "default"}}},
    ])
    def test_malformed_population(
        self, session, clock, test_config, tenant, period, make_entity, make_rule_set,
        sales_plan_components, population,
    ):
        rule_set = make_rule_set(
            sales_plan_components, population=population, entities=[make_entity("E-1")],
        )

        outcome = self._service(session, clock, test_config).run_calculation(
            tenant.id, period.id, rule_set.id,
        )

        assert not outcome.success
        assert outcome.error["code"] == "INVALID_COMPONENT"

    def test_string_enabled_flag_rejected(
        self, session, clock, test_config, tenant, period, make_entity, make_rule_set,
        sales_plan_components,
    ):
        components = [dict(c) for c in sales_plan_components]
        components[0]["enabled"] = "false"
        rule_set = make_rule_set(components, entities=[make_entity("E-1")])

        outcome = self._service(session, clock, test_config).run_calculation(
            tenant.id, period.id, rule_set.id,
        )

        assert outcome.error["code"] == "INVALID_COMPONENT"
        assert "enabled" in outcome.error["message"]

    def test_failure_logged(self, session, clock, test_config, tenant, period):
        outcome = self._service(session, clock, test_config).run_calculation(
            tenant.id, period.id, uuid4(),
        )

        assert any(r["message"] == "trigger_failed" for r in outcome.log)
        assert outcome.to_dict()["success"] is False
