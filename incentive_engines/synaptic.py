"""
incentive_engines.synaptic -- Synaptic density (agent memory) and its
read-only query surface.

Responsibility:
    Aggregate historical classification signals into four buckets
    (confidence, anomaly, correction, data_quality), each keyed by a cohort
    dimension (metric, component, entity) and cohort key, and expose the
    result to the reconciliation and resolution agents as priors.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Loading signals and
    density rows is ``incentive_services.agent_memory``'s job.

Invariants enforced:
    - Density is derived data: building it never mutates signals.
    - The surface is read-only; agents write corrections as new signals.
    - Signals without cohorts, or of type ``training``, do not contribute.

Signal value shape consumed here::

    {"cohorts": [{"dimension": "entity", "key": "E-001"}, ...],
     "value": "0.8",          # optional, defaults to the signal confidence
     "kind": "data_divergence",  # optional label
     "delta": "12.50"}        # optional monetary delta
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from incentive_kernel.domain.amounts import ZERO, to_decimal
from incentive_kernel.models.signal import CohortDimension, SignalType, SynapseBucket
from incentive_kernel.selectors.signal_selector import DensityRowDTO, SignalDTO

SIGNAL_BUCKETS: dict[str, SynapseBucket] = {
    SignalType.CONVERGENCE_BINDING.value: SynapseBucket.CONFIDENCE,
    SignalType.CONFIDENCE.value: SynapseBucket.CONFIDENCE,
    SignalType.ANOMALY.value: SynapseBucket.ANOMALY,
    SignalType.DATA_QUALITY.value: SynapseBucket.DATA_QUALITY,
    SignalType.RECONCILIATION_CORRECTION.value: SynapseBucket.CORRECTION,
    SignalType.RESOLUTION.value: SynapseBucket.CORRECTION,
}

_DIMENSIONS = {d.value for d in CohortDimension}


@dataclass(frozen=True)
class SynapseStats:
    """Aggregate of every signal that hit one cohort in one bucket."""

    count: int
    mean_value: Decimal
    last_seen: datetime | None = None
    kinds: Mapping[str, int] = field(default_factory=dict)
    mean_delta: Decimal | None = None

    def kind_count(self, kind: str) -> int:
        return self.kinds.get(kind, 0)

    def details(self) -> dict[str, Any]:
        return {
            "kinds": dict(self.kinds),
            "mean_delta": str(self.mean_delta) if self.mean_delta is not None else None,
        }


def _cell_key(bucket: str, dimension: str, key: str) -> tuple[str, str, str]:
    return bucket, dimension, key


class SynapticDensity:
    """
    Per-tenant priors: ``{(bucket, dimension, cohort_key): SynapseStats}``.

    Instances are treated as immutable once built.
    """

    def __init__(self, cells: Mapping[tuple[str, str, str], SynapseStats] | None = None):
        self._cells = MappingProxyType(dict(cells or {}))

    @classmethod
    def empty(cls) -> SynapticDensity:
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self._cells

    def __len__(self) -> int:
        return len(self._cells)

    def __repr__(self) -> str:
        return f"SynapticDensity(cells={len(self._cells)})"

    def get(self, bucket: str, dimension: str, key: str) -> SynapseStats | None:
        return self._cells.get(_cell_key(bucket, dimension, key))

    def items(self):
        return sorted(self._cells.items())

    def bucket_sizes(self) -> dict[str, int]:
        sizes = {b.value: 0 for b in SynapseBucket}
        for bucket, _, _ in self._cells:
            sizes[bucket] = sizes.get(bucket, 0) + 1
        return sizes


@dataclass
class _Accumulator:
    count: int = 0
    total: Decimal = ZERO
    last_seen: datetime | None = None
    kinds: dict[str, int] = field(default_factory=dict)
    delta_total: Decimal = ZERO
    delta_count: int = 0

    def add(self, value: Decimal, seen: datetime | None, kind: str | None, delta: Decimal | None) -> None:
        self.count += 1
        self.total += value
        if seen is not None and (self.last_seen is None or seen > self.last_seen):
            self.last_seen = seen
        if kind:
            self.kinds[kind] = self.kinds.get(kind, 0) + 1
        if delta is not None:
            self.delta_total += delta
            self.delta_count += 1

    def stats(self) -> SynapseStats:
        return SynapseStats(
            count=self.count,
            mean_value=self.total / self.count,
            last_seen=self.last_seen,
            kinds=dict(sorted(self.kinds.items())),
            mean_delta=(self.delta_total / self.delta_count) if self.delta_count else None,
        )


def build_density_from_signals(signals: Iterable[SignalDTO]) -> SynapticDensity:
    """Recompute density from raw classification signals."""
    cells: dict[tuple[str, str, str], _Accumulator] = {}
    for signal in signals:
        bucket = SIGNAL_BUCKETS.get(signal.signal_type)
        if bucket is None:
            continue
        payload = signal.signal_value or {}
        value = to_decimal(payload.get("value"))
        if value is None:
            value = signal.confidence if signal.confidence is not None else ZERO
        kind = payload.get("kind")
        delta = to_decimal(payload.get("delta"))
        for cohort in payload.get("cohorts") or []:
            dimension = str(cohort.get("dimension", ""))
            key = cohort.get("key")
            if dimension not in _DIMENSIONS or key is None:
                continue
            cell = cells.setdefault(_cell_key(bucket.value, dimension, str(key)), _Accumulator())
            cell.add(value, signal.created_at, str(kind) if kind else None, delta)
    return SynapticDensity({k: acc.stats() for k, acc in cells.items()})


def density_from_rows(rows: Iterable[DensityRowDTO]) -> SynapticDensity:
    """Rebuild density from pre-aggregated rows."""
    cells = {}
    for row in rows:
        details = row.details or {}
        cells[_cell_key(row.bucket, row.cohort_dimension, row.cohort_key)] = SynapseStats(
            count=row.signal_count,
            mean_value=row.mean_value,
            last_seen=row.last_seen,
            kinds={str(k): int(v) for k, v in (details.get("kinds") or {}).items()},
            mean_delta=to_decimal(details.get("mean_delta")),
        )
    return SynapticDensity(cells)


class SynapticSurface:
    """
    Read-only query surface over a density map.

    Used as a prior, never as ground truth.
    """

    def __init__(self, density: SynapticDensity):
        self._density = density

    def __repr__(self) -> str:
        return f"SynapticSurface({self._density!r})"

    @property
    def is_empty(self) -> bool:
        return self._density.is_empty

    def read(self, bucket: SynapseBucket | str, dimension: CohortDimension | str, key: str) -> SynapseStats | None:
        return self._density.get(_plain(bucket), _plain(dimension), str(key))

    def has_repeated(
        self,
        bucket: SynapseBucket | str,
        dimension: CohortDimension | str,
        key: str,
        min_count: int = 2,
        kind: str | None = None,
    ) -> bool:
        """True when the cohort carries at least ``min_count`` signals (of ``kind``)."""
        stats = self.read(bucket, dimension, key)
        if stats is None:
            return False
        count = stats.kind_count(kind) if kind else stats.count
        return count >= min_count

    def average_confidence(
        self,
        dimension: CohortDimension | str,
        key: str,
        default: Decimal | None = None,
    ) -> Decimal | None:
        stats = self.read(SynapseBucket.CONFIDENCE, dimension, key)
        return stats.mean_value if stats is not None else default


def create_synaptic_surface(density: SynapticDensity) -> SynapticSurface:
    return SynapticSurface(density)


def _plain(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)
