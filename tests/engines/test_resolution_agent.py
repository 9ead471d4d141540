"""
Tests for the resolution agent.

Covers:
- Responsible-step selection
- Root-cause evaluation order
- Recommendation and adjustment
- Resolution synapses (none for legitimate outcomes)
- Pattern detection
"""

from decimal import Decimal

from incentive_engines.resolution import (
    DisputeContext,
    Investigation,
    Recommendation,
    ResolutionAgent,
    RootCause,
    detect_resolution_patterns,
    responsible_trace,
)
from incentive_engines.synaptic import (
    SynapticDensity,
    build_density_from_signals,
    create_synaptic_surface,
)
from incentive_kernel.domain.trace import MISSING_PATH, ExecutionTrace, ResolvedInput
from incentive_kernel.selectors.signal_selector import SignalDTO

EMPTY_SURFACE = create_synaptic_surface(SynapticDensity.empty())


def _trace(name="Units Bonus", index=0, value="2500", confidence="1", outcome="100", lookup=None):
    return ExecutionTrace(
        trace_id=f"E-1:default:{index}",
        component_index=index,
        component_name=name,
        component_type="tier_lookup",
        inputs=(
            ResolvedInput(
                metric="units_sold",
                value=Decimal(value) if value is not None else None,
                path="direct:Sales Data.units_sold" if value is not None else MISSING_PATH,
                confidence=Decimal(confidence),
            ),
        ),
        lookup=lookup or {},
        confidence=Decimal(confidence),
        outcome=Decimal(outcome),
    )


def _surface(*signals):
    return create_synaptic_surface(build_density_from_signals([
        SignalDTO(
            signal_id=str(i), signal_type=signal_type, signal_value=value,
            confidence=None, source="system", created_at=None,
        )
        for i, (signal_type, value) in enumerate(signals)
    ]))


def _context(component="Units Bonus", amount="50"):
    return DisputeContext(
        dispute_id="d-1",
        entity_external_id="E-1",
        amount_disputed=Decimal(amount),
        component_name=component,
    )


ENTITY = {"dimension": "entity", "key": "E-1"}


class TestResponsibleTrace:
    def test_named_component(self):
        traces = [_trace("A", 0), _trace("B", 1)]

        assert responsible_trace(traces, "B").component_name == "B"
        assert responsible_trace(traces, "C") is None

    def test_lowest_confidence_then_highest_outcome(self):
        traces = [
            _trace("A", 0, confidence="0.9", outcome="10"),
            _trace("B", 1, confidence="0.8", outcome="10"),
            _trace("C", 2, confidence="0.8", outcome="99"),
        ]

        assert responsible_trace(traces, None).component_name == "C"

    def test_no_traces(self):
        assert responsible_trace([], None) is None


class TestRootCause:
    """The first applicable root cause wins."""

    def setup_method(self):
        self.agent = ResolutionAgent()

    def _investigate(self, traces, surface=EMPTY_SURFACE, context=None):
        return self.agent.investigate(
            context=context or _context(), traces=traces, surface=surface,
        )

    def test_missing_input_escalates_without_adjustment(self):
        """The claimed amount is never used as the adjustment."""
        investigation = self._investigate(
            [_trace(value=None)], context=_context(amount="9999.00"),
        )

        assert investigation.root_cause is RootCause.DATA_QUALITY
        assert investigation.confidence == Decimal("0.85")
        assert investigation.recommendation is Recommendation.ESCALATE
        assert investigation.adjustment is None
        assert investigation.evidence == ("missing_metric:units_sold", "adjustment_undetermined")
        assert "delta" not in investigation.resolution_synapse

    def test_data_quality_synapse(self):
        surface = _surface(
            ("data_quality", {"cohorts": [{"dimension": "metric", "key": "units_sold"}]}),
        )

        investigation = self._investigate([_trace()], surface)

        assert investigation.root_cause is RootCause.DATA_QUALITY
        assert investigation.confidence == Decimal("0.8")
        assert investigation.recommendation is Recommendation.ESCALATE
        assert investigation.adjustment is None

    def test_repeated_corrections_adjust_by_mean_delta(self):
        surface = _surface(
            ("reconciliation_correction", {"cohorts": [ENTITY], "delta": "-30"}),
            ("reconciliation_correction", {"cohorts": [ENTITY], "delta": "-10"}),
        )

        investigation = self._investigate([_trace()], surface)

        assert investigation.root_cause is RootCause.CALCULATION_ERROR
        assert investigation.recommendation is Recommendation.ADJUST
        assert investigation.adjustment == Decimal("20.00")
        assert investigation.evidence == ("repeated_corrections:entity:E-1:2",)

    def test_anomaly_at_boundary_is_plan_interpretation(self):
        surface = _surface(("anomaly", {"cohorts": [ENTITY], "kind": "outlier_high"}))

        investigation = self._investigate([_trace(lookup={"boundary": True})], surface)

        assert investigation.root_cause is RootCause.PLAN_INTERPRETATION
        assert investigation.recommendation is Recommendation.ESCALATE
        assert investigation.adjustment is None
        assert "boundary_lookup:Units Bonus" in investigation.evidence
        assert "delta" not in investigation.resolution_synapse

    def test_anomaly_alone_escalates(self):
        """Calculation error below the adjust threshold escalates."""
        surface = _surface(("anomaly", {"cohorts": [ENTITY]}))

        investigation = self._investigate([_trace()], surface)

        assert investigation.root_cause is RootCause.CALCULATION_ERROR
        assert investigation.confidence == Decimal("0.6")
        assert investigation.recommendation is Recommendation.ESCALATE

    def test_low_confidence_step(self):
        investigation = self._investigate([_trace(confidence="0.5")])

        assert investigation.root_cause is RootCause.PLAN_INTERPRETATION
        assert investigation.recommendation is Recommendation.ESCALATE

    def test_clean_trace_is_legitimate(self):
        investigation = self._investigate([_trace()])

        assert investigation.root_cause is RootCause.LEGITIMATE
        assert investigation.recommendation is Recommendation.REJECT_WITH_EVIDENCE
        assert investigation.adjustment is None
        assert not investigation.synapse_written
        assert investigation.evidence[0] == "deterministic_trace:E-1:default:0"
        assert investigation.responsible_step["component_name"] == "Units Bonus"

    def test_no_traces_escalates(self):
        investigation = self._investigate([])

        assert investigation.root_cause is RootCause.DATA_QUALITY
        assert investigation.confidence == Decimal("0.3")
        assert investigation.recommendation is Recommendation.ESCALATE
        assert investigation.responsible_step is None

    def test_untraced_component(self):
        investigation = self._investigate([_trace()], context=_context(component="Spiff"))

        assert investigation.evidence == ("component_not_traced:Spiff",)
        assert investigation.component_name == "Spiff"

    def test_synapse_cohorts(self):
        investigation = self._investigate([_trace(value=None)])

        assert investigation.resolution_synapse["cohorts"] == [
            {"dimension": "entity", "key": "E-1"},
            {"dimension": "component", "key": "Units Bonus"},
            {"dimension": "metric", "key": "units_sold"},
        ]
        assert investigation.resolution_synapse["kind"] == "data_quality"

    def test_root_cause_logged(self, captured_logs):
        self._investigate([_trace()])

        records = [r for r in captured_logs() if r["message"] == "dispute_root_cause"]
        assert records[-1]["root_cause"] == "legitimate"


class TestInvestigationSerialization:
    def test_from_dict(self):
        investigation = ResolutionAgent().investigate(
            context=_context(), traces=[_trace(value=None)], surface=EMPTY_SURFACE,
        )

        rebuilt = Investigation.from_dict(investigation.to_dict())

        assert rebuilt.root_cause is investigation.root_cause
        assert rebuilt.adjustment == investigation.adjustment
        assert rebuilt.resolution_synapse is None


class TestPatterns:
    def _investigation(self, dispute_id, cause, component="Units Bonus"):
        return Investigation(
            dispute_id=dispute_id,
            root_cause=cause,
            confidence=Decimal("0.8"),
            evidence=(),
            recommendation=Recommendation.ESCALATE,
            component_name=component,
        )

    def test_groups_by_cause_and_component(self):
        investigations = [
            self._investigation("1", RootCause.DATA_QUALITY),
            self._investigation("2", RootCause.DATA_QUALITY),
            self._investigation("3", RootCause.DATA_QUALITY),
            self._investigation("4", RootCause.DATA_QUALITY, component="Other"),
            self._investigation("5", RootCause.CALCULATION_ERROR),
        ]

        patterns = detect_resolution_patterns(investigations, min_count=3)

        assert len(patterns) == 1
        assert patterns[0].count == 3
        assert patterns[0].dispute_ids == ("1", "2", "3")

    def test_sorted_by_count(self):
        investigations = [self._investigation(str(i), RootCause.CALCULATION_ERROR) for i in range(2)]
        investigations += [self._investigation(f"d{i}", RootCause.DATA_QUALITY) for i in range(3)]

        patterns = detect_resolution_patterns(investigations, min_count=2)

        assert [p.root_cause for p in patterns] == [
            RootCause.DATA_QUALITY, RootCause.CALCULATION_ERROR,
        ]
