"""
Execution traces -- how one component's payout was computed for one entity.

Responsibility:
    Immutable record of resolved inputs (with resolution path), the lookup
    hit (band, tier or cell, including clamping), applied modifiers (caps,
    thresholds, gates), a confidence score and the final outcome.  Stored
    as JSON in ``CalculationResult.meta["intentTraces"]`` and read back by
    the reconciliation and resolution agents.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - One trace per enabled component of the evaluated variant.
    - ``confidence`` is the minimum confidence of the trace's inputs
      (1 when every input is deterministic).
    - ``to_dict`` / ``from_dict`` round-trip every field; Decimals are
      serialized as strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

MISSING_PATH = "missing"


@dataclass(frozen=True)
class ResolvedInput:
    """
    A metric value as it entered a component.

    ``path`` is one of ``direct:<data_type>.<field>``,
    ``derived:<operation>(...)``, ``aggregated:<group_key>=<value>``,
    ``attribute:<name>`` or ``missing``.
    """

    metric: str
    value: Decimal | None
    path: str
    confidence: Decimal = Decimal("1")

    @property
    def is_missing(self) -> bool:
        return self.value is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "value": str(self.value) if self.value is not None else None,
            "path": self.path,
            "confidence": str(self.confidence),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ResolvedInput:
        value = raw.get("value")
        return cls(
            metric=raw["metric"],
            value=Decimal(value) if value is not None else None,
            path=raw.get("path", MISSING_PATH),
            confidence=Decimal(str(raw.get("confidence", "1"))),
        )


@dataclass(frozen=True)
class ExecutionTrace:
    """One component evaluation for one entity."""

    trace_id: str
    component_index: int
    component_name: str
    component_type: str
    inputs: tuple[ResolvedInput, ...]
    lookup: dict[str, Any] = field(default_factory=dict)
    modifiers: tuple[str, ...] = ()
    confidence: Decimal = Decimal("1")
    outcome: Decimal = Decimal("0")

    @property
    def has_missing_input(self) -> bool:
        return any(i.is_missing for i in self.inputs)

    @property
    def boundary_hit(self) -> bool:
        """True when a lookup landed on a band edge or was clamped."""
        return bool(self.lookup.get("boundary") or self.lookup.get("clamped"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "component_index": self.component_index,
            "component_name": self.component_name,
            "component_type": self.component_type,
            "inputs": [i.to_dict() for i in self.inputs],
            "lookup": dict(self.lookup),
            "modifiers": list(self.modifiers),
            "confidence": str(self.confidence),
            "outcome": str(self.outcome),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ExecutionTrace:
        return cls(
            trace_id=raw["trace_id"],
            component_index=int(raw.get("component_index", 0)),
            component_name=raw.get("component_name", ""),
            component_type=raw.get("component_type", ""),
            inputs=tuple(ResolvedInput.from_dict(i) for i in raw.get("inputs", [])),
            lookup=dict(raw.get("lookup") or {}),
            modifiers=tuple(raw.get("modifiers", [])),
            confidence=Decimal(str(raw.get("confidence", "1"))),
            outcome=Decimal(str(raw.get("outcome", "0"))),
        )
