"""
incentive_engines.anomaly -- Statistical health check over a result batch.

Responsibility:
    Flag suspicious payout distributions after a calculation run:
    identical values, high/low outliers, zero payouts and assigned entities
    with no result at all.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Read-only: input records are never mutated.
    - Standard deviation is the population standard deviation.
    - ``identical_values`` compares cents-rounded payouts and ignores zero
      payouts (those are reported by ``zero_payout``).
    - ``outlier_low`` ignores zero payouts.
    - ``zero_payout`` fires only when the population mean is positive.
    - Anomalies are ordered by affected-entity count, descending; ties keep
      detection order.

Failure modes:
    - None.  An empty record list yields zeroed stats and, at most,
      ``missing_entity`` anomalies.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from incentive_config.schema import AnomalySettings
from incentive_engines.tracer import traced_engine
from incentive_kernel.domain.amounts import ZERO, quantize_cents
from incentive_kernel.logging_config import get_logger

logger = get_logger("engines.anomaly")


class AnomalyType(str, Enum):
    IDENTICAL_VALUES = "identical_values"
    OUTLIER_HIGH = "outlier_high"
    OUTLIER_LOW = "outlier_low"
    ZERO_PAYOUT = "zero_payout"
    MISSING_ENTITY = "missing_entity"


@dataclass(frozen=True)
class PayoutRecord:
    entity_id: str
    total_payout: Decimal
    external_id: str | None = None


@dataclass(frozen=True)
class Anomaly:
    anomaly_type: AnomalyType
    entity_ids: tuple[str, ...]
    description: str
    value: Decimal | None = None
    threshold: Decimal | None = None

    @property
    def affected_count(self) -> int:
        return len(self.entity_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.anomaly_type.value,
            "entity_ids": list(self.entity_ids),
            "affected_count": self.affected_count,
            "description": self.description,
            "value": str(self.value) if self.value is not None else None,
            "threshold": str(self.threshold) if self.threshold is not None else None,
        }


@dataclass(frozen=True)
class PayoutStats:
    count: int = 0
    total: Decimal = ZERO
    mean: Decimal = ZERO
    std_dev: Decimal = ZERO
    median: Decimal = ZERO
    min: Decimal = ZERO
    max: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "total": str(quantize_cents(self.total)),
            "mean": str(quantize_cents(self.mean)),
            "std_dev": str(quantize_cents(self.std_dev)),
            "median": str(quantize_cents(self.median)),
            "min": str(quantize_cents(self.min)),
            "max": str(quantize_cents(self.max)),
        }


@dataclass(frozen=True)
class AnomalyReport:
    anomalies: tuple[Anomaly, ...] = ()
    stats: PayoutStats = field(default_factory=PayoutStats)

    def of_type(self, anomaly_type: AnomalyType) -> list[Anomaly]:
        return [a for a in self.anomalies if a.anomaly_type is anomaly_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "anomalies": [a.to_dict() for a in self.anomalies],
            "stats": self.stats.to_dict(),
        }


def compute_stats(values: Sequence[Decimal]) -> PayoutStats:
    """Descriptive statistics over payouts (population std dev)."""
    if not values:
        return PayoutStats()
    count = len(values)
    total = sum(values, ZERO)
    mean = total / count
    variance = sum(((v - mean) ** 2 for v in values), ZERO) / count
    ordered = sorted(values)
    middle = count // 2
    if count % 2:
        median = ordered[middle]
    else:
        median = (ordered[middle - 1] + ordered[middle]) / 2
    return PayoutStats(
        count=count,
        total=total,
        mean=mean,
        std_dev=variance.sqrt(),
        median=median,
        min=ordered[0],
        max=ordered[-1],
    )


class AnomalyDetector:
    """
    Stateless detector.

    Contract:
        Deterministic for a given record order; never raises.
    """

    @traced_engine("anomaly", "1.0", fingerprint_fields=("records", "assigned_entity_ids"))
    def detect(
        self,
        *,
        records: Sequence[PayoutRecord],
        assigned_entity_ids: Iterable[str] | None = None,
        settings: AnomalySettings | None = None,
    ) -> AnomalyReport:
        settings = settings or AnomalySettings()
        stats = compute_stats([r.total_payout for r in records])
        anomalies: list[Anomaly] = []

        by_value: dict[Decimal, list[str]] = defaultdict(list)
        for record in records:
            cents = quantize_cents(record.total_payout)
            if cents != ZERO:
                by_value[cents].append(record.entity_id)
        for value, entity_ids in by_value.items():
            if len(entity_ids) >= settings.identical_min_count:
                anomalies.append(
                    Anomaly(
                        anomaly_type=AnomalyType.IDENTICAL_VALUES,
                        entity_ids=tuple(entity_ids),
                        description=f"{len(entity_ids)} entities share payout {value}",
                        value=value,
                    )
                )

        if stats.count and stats.std_dev > ZERO:
            spread = settings.outlier_std_devs * stats.std_dev
            upper = stats.mean + spread
            lower = stats.mean - spread
            for record in records:
                if record.total_payout > upper:
                    anomalies.append(
                        Anomaly(
                            anomaly_type=AnomalyType.OUTLIER_HIGH,
                            entity_ids=(record.entity_id,),
                            description=(
                                f"payout {quantize_cents(record.total_payout)} above "
                                f"mean + {settings.outlier_std_devs} std dev"
                            ),
                            value=record.total_payout,
                            threshold=quantize_cents(upper),
                        )
                    )
                elif record.total_payout != ZERO and record.total_payout < lower:
                    anomalies.append(
                        Anomaly(
                            anomaly_type=AnomalyType.OUTLIER_LOW,
                            entity_ids=(record.entity_id,),
                            description=(
                                f"payout {quantize_cents(record.total_payout)} below "
                                f"mean - {settings.outlier_std_devs} std dev"
                            ),
                            value=record.total_payout,
                            threshold=quantize_cents(lower),
                        )
                    )

        if stats.mean > ZERO:
            zeros = tuple(r.entity_id for r in records if r.total_payout == ZERO)
            if zeros:
                anomalies.append(
                    Anomaly(
                        anomaly_type=AnomalyType.ZERO_PAYOUT,
                        entity_ids=zeros,
                        description=f"{len(zeros)} entities paid $0 while mean is positive",
                        value=ZERO,
                    )
                )

        if assigned_entity_ids is not None:
            seen = {r.entity_id for r in records}
            missing = tuple(sorted(e for e in set(assigned_entity_ids) if e not in seen))
            if missing:
                anomalies.append(
                    Anomaly(
                        anomaly_type=AnomalyType.MISSING_ENTITY,
                        entity_ids=missing,
                        description=f"{len(missing)} assigned entities have no result",
                    )
                )

        anomalies.sort(key=lambda a: a.affected_count, reverse=True)
        if anomalies:
            logger.info(
                "anomalies_detected",
                extra={
                    "anomaly_count": len(anomalies),
                    "types": sorted({a.anomaly_type.value for a in anomalies}),
                },
            )
        return AnomalyReport(anomalies=tuple(anomalies), stats=stats)
