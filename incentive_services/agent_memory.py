"""
incentive_services.agent_memory -- Load synaptic priors for the agents.

Responsibility:
    Produce a tenant's synaptic density for the reconciliation and
    resolution agents through an explicit fallback chain, and rebuild the
    pre-aggregated ``synaptic_density`` rows on demand.

Architecture position:
    Services -- imperative shell over ``SignalSelector`` (kernel I/O) and
    ``incentive_engines.synaptic`` (pure aggregation).

Invariants enforced:
    - ``load_priors_for_agent`` never raises.  Its outcome is one of:
        LOADED      pre-aggregated density rows were read
        RECOMPUTED  rows were absent or unreadable; density was rebuilt
                    from classification signals
        EMPTY       both steps produced nothing (or failed)
    - Each read runs in its own savepoint so a failed read does not poison
      the caller's transaction.
    - A calculation run never writes density; only ``refresh_density``
      does, and it replaces the tenant's rows wholesale.

Failure modes:
    - Degraded outcomes are logged at WARNING with the underlying error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.orm import Session

from incentive_config.schema import AgentMemorySettings, StoreSettings
from incentive_engines.synaptic import (
    SynapticDensity,
    SynapticSurface,
    build_density_from_signals,
    create_synaptic_surface,
    density_from_rows,
)
from incentive_kernel.domain.clock import Clock
from incentive_kernel.logging_config import get_logger
from incentive_kernel.models.signal import SignalType, SynapticDensityRow
from incentive_kernel.selectors.signal_selector import SignalDTO, SignalSelector
from incentive_kernel.services.base import BaseService
from incentive_services.observability import log_priors_loaded

logger = get_logger("services.agent_memory")

MEAN_PLACES = Decimal("0.000001")

DOMAIN_SIGNAL_TYPES: dict[str, tuple[str, ...]] = {
    "reconciliation": (
        SignalType.RECONCILIATION_CORRECTION.value,
        SignalType.ANOMALY.value,
        SignalType.DATA_QUALITY.value,
    ),
    "resolution": (
        SignalType.RESOLUTION.value,
        SignalType.RECONCILIATION_CORRECTION.value,
        SignalType.ANOMALY.value,
        SignalType.DATA_QUALITY.value,
    ),
}


class PriorsOutcome(str, Enum):
    LOADED = "LOADED"
    RECOMPUTED = "RECOMPUTED"
    EMPTY = "EMPTY"


@dataclass(frozen=True)
class AgentPriors:
    tenant_id: str
    domain: str
    agent_type: str
    tenant_density: SynapticDensity
    outcome: PriorsOutcome
    signal_history: tuple[SignalDTO, ...] = ()
    error: str | None = None

    @property
    def surface(self) -> SynapticSurface:
        return create_synaptic_surface(self.tenant_density)

    @property
    def degraded(self) -> bool:
        return self.outcome is not PriorsOutcome.LOADED

    def summary(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "cohorts": len(self.tenant_density),
            "buckets": self.tenant_density.bucket_sizes(),
            "signal_history": len(self.signal_history),
            "error": self.error,
        }


@dataclass
class _CacheEntry:
    priors: AgentPriors
    stored_at: float


@dataclass
class PriorCache:
    """
    TTL cache keyed by (tenant, domain, agent_type).

    Injected into ``AgentMemoryService``; a TTL of 0 disables caching.
    """

    clock: Clock
    ttl_seconds: int = 300
    _entries: dict[tuple[str, str, str], _CacheEntry] = field(default_factory=dict)

    def get(self, key: tuple[str, str, str]) -> AgentPriors | None:
        if self.ttl_seconds <= 0:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock.monotonic_seconds() - entry.stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return entry.priors

    def put(self, key: tuple[str, str, str], priors: AgentPriors) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[key] = _CacheEntry(priors=priors, stored_at=self.clock.monotonic_seconds())

    def invalidate(self, tenant_id: str | None = None) -> None:
        if tenant_id is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k[0] == tenant_id]:
            del self._entries[key]


def _describe(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"


class AgentMemoryService(BaseService):
    """
    Loads and refreshes per-tenant synaptic density.

    Usage:
        memory = AgentMemoryService(session)
        priors = memory.load_priors_for_agent(tenant_id, "reconciliation", "reconciliation")
        surface = priors.surface
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: AgentMemorySettings | None = None,
        store: StoreSettings | None = None,
        cache: PriorCache | None = None,
    ):
        super().__init__(session, clock)
        self._settings = settings or AgentMemorySettings()
        self._selector = SignalSelector(session, page_size=(store or StoreSettings()).page_size)
        self._cache = cache

    def load_priors_for_agent(
        self,
        tenant_id: UUID,
        domain: str,
        agent_type: str,
    ) -> AgentPriors:
        """Return priors for an agent run.  Never raises."""
        key = (str(tenant_id), domain, agent_type)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                log_priors_loaded(
                    tenant_id=key[0], domain=domain, agent_type=agent_type,
                    outcome=cached.outcome.value, cohort_count=len(cached.tenant_density),
                    cached=True,
                )
                return cached

        errors: list[str] = []
        density, outcome = self._load_stored(tenant_id, errors)
        if density is None:
            density, outcome = self._recompute(tenant_id, errors)
        if density is None:
            density, outcome = SynapticDensity.empty(), PriorsOutcome.EMPTY

        priors = AgentPriors(
            tenant_id=key[0],
            domain=domain,
            agent_type=agent_type,
            tenant_density=density,
            outcome=outcome,
            signal_history=self._history(tenant_id, domain, errors),
            error="; ".join(errors) or None,
        )
        log_priors_loaded(
            tenant_id=key[0], domain=domain, agent_type=agent_type,
            outcome=outcome.value, cohort_count=len(density), error=priors.error,
        )
        if self._cache is not None:
            self._cache.put(key, priors)
        return priors

    def _load_stored(
        self, tenant_id: UUID, errors: list[str],
    ) -> tuple[SynapticDensity | None, PriorsOutcome]:
        try:
            with self.session.begin_nested():
                rows = self._selector.density_rows(tenant_id)
        except Exception as exc:
            errors.append(f"density_rows: {_describe(exc)}")
            return None, PriorsOutcome.EMPTY
        if not rows:
            return None, PriorsOutcome.EMPTY
        return density_from_rows(rows), PriorsOutcome.LOADED

    def _recompute(
        self, tenant_id: UUID, errors: list[str],
    ) -> tuple[SynapticDensity | None, PriorsOutcome]:
        try:
            with self.session.begin_nested():
                density = build_density_from_signals(self._selector.iter_signals(tenant_id))
        except Exception as exc:
            errors.append(f"recompute: {_describe(exc)}")
            return None, PriorsOutcome.EMPTY
        if density.is_empty:
            return None, PriorsOutcome.EMPTY
        return density, PriorsOutcome.RECOMPUTED

    def _history(self, tenant_id: UUID, domain: str, errors: list[str]) -> tuple[SignalDTO, ...]:
        if self._settings.signal_history_limit <= 0:
            return ()
        try:
            with self.session.begin_nested():
                return tuple(
                    self._selector.recent_signals(
                        tenant_id,
                        limit=self._settings.signal_history_limit,
                        signal_types=DOMAIN_SIGNAL_TYPES.get(domain),
                    )
                )
        except Exception as exc:
            errors.append(f"signal_history: {_describe(exc)}")
            return ()

    def refresh_density(self, tenant_id: UUID) -> int:
        """
        Recompute the tenant's density from signals and replace its
        pre-aggregated rows.  Returns the number of rows written.
        """
        density = build_density_from_signals(self._selector.iter_signals(tenant_id))
        self.session.execute(
            delete(SynapticDensityRow).where(SynapticDensityRow.tenant_id == tenant_id)
        )
        for (bucket, dimension, cohort_key), stats in density.items():
            self.session.add(
                SynapticDensityRow(
                    tenant_id=tenant_id,
                    bucket=bucket,
                    cohort_dimension=dimension,
                    cohort_key=cohort_key,
                    signal_count=stats.count,
                    mean_value=stats.mean_value.quantize(MEAN_PLACES, rounding=ROUND_HALF_UP),
                    last_seen=stats.last_seen,
                    details=stats.details(),
                )
            )
        self.session.flush()
        if self._cache is not None:
            self._cache.invalidate(str(tenant_id))
        logger.info(
            "synaptic_density_refreshed",
            extra={"tenant_id": str(tenant_id), "rows": len(density)},
        )
        return len(density)
