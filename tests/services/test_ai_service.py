"""
Tests for the AIService contract adapter.
"""

from decimal import Decimal

from incentive_engines.convergence import Candidate, SemanticType
from incentive_services.ai_service import (
    TASK_FIELD_DISAMBIGUATION,
    AIResult,
    AIService,
    field_disambiguator,
)

CANDIDATES = [
    Candidate("revenue", "Q1", "revenue", Decimal("0.95"), SemanticType.AMOUNT, True),
    Candidate("revenue", "Q2", "revenue", Decimal("0.95"), SemanticType.AMOUNT, True),
]


class _Answer:
    def __init__(self, answer=None, error=None):
        self.answer = answer
        self.error = error
        self.payloads = []

    def classify(self, task, payload):
        self.payloads.append((task, payload))
        if self.error:
            raise self.error
        return self.answer


class TestFieldDisambiguator:
    def test_protocol(self):
        assert isinstance(_Answer(), AIService)

    def test_answer_becomes_disambiguation(self):
        ai = _Answer(AIResult(result="Q2.revenue", confidence=Decimal("0.8"), signal_id="s-1"))

        decision = field_disambiguator(ai)("revenue", CANDIDATES)

        assert decision.choice == "Q2.revenue"
        assert decision.confidence == Decimal("0.8")
        assert decision.signal_id == "s-1"
        task, payload = ai.payloads[0]
        assert task == TASK_FIELD_DISAMBIGUATION
        assert payload["metric"] == "revenue"
        assert payload["candidates"][0]["key"] == "Q1.revenue"

    def test_float_confidence_accepted(self):
        decision = field_disambiguator(_Answer(AIResult("Q1.revenue", 0.7)))("revenue", CANDIDATES)

        assert decision.confidence == Decimal("0.7")

    def test_no_answer(self):
        assert field_disambiguator(_Answer(None))("revenue", CANDIDATES) is None
        assert field_disambiguator(_Answer(AIResult(None, Decimal("1"))))("revenue", CANDIDATES) is None

    def test_unusable_confidence(self):
        answer = AIResult("Q1.revenue", "high")

        assert field_disambiguator(_Answer(answer))("revenue", CANDIDATES) is None

    def test_provider_error(self, captured_logs):
        ai = _Answer(error=TimeoutError("slow"))

        assert field_disambiguator(ai)("revenue", CANDIDATES) is None
        record = [r for r in captured_logs() if r["message"] == "ai_disambiguation_failed"][-1]
        assert record["error"] == "TimeoutError: slow"
