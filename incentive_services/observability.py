"""
Observability hooks for incentive services.

Emits structured log events for metrics and dashboards:
- Signal sink health: signal_flush (written / failed / dropped counters).
- Agent memory: priors_loaded (outcome LOADED / RECOMPUTED / EMPTY).
- Primary trigger failures: trigger_failure (with error code for aggregation).
- Reconciliation: concordance_reported.

All events use a consistent ``observability_event`` field and stable extra
fields so log aggregators can parse them and build metrics.

Usage:
    from incentive_services.observability import log_priors_loaded
    log_priors_loaded(tenant_id=str(tid), domain="reconciliation",
                      agent_type="reconciliation", outcome="LOADED", cohort_count=12)
"""

from __future__ import annotations

from typing import Any

from incentive_kernel.logging_config import get_logger

logger = get_logger("services.observability")

EVENT_SIGNAL_FLUSH = "signal_flush"
EVENT_PRIORS_LOADED = "priors_loaded"
EVENT_TRIGGER_FAILURE = "trigger_failure"
EVENT_CONCORDANCE = "concordance_reported"


def log_signal_flush(
    *,
    written: int,
    failed: int,
    pending: int = 0,
    duration_ms: float | None = None,
    **extra: Any,
) -> None:
    """Log the outcome of one signal sink flush."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_SIGNAL_FLUSH,
        "written": written,
        "failed": failed,
        "pending": pending,
        **extra,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    logger.info("signal_sink_flushed", extra=payload)


def log_priors_loaded(
    *,
    tenant_id: str,
    domain: str,
    agent_type: str,
    outcome: str,
    cohort_count: int,
    cached: bool = False,
    error: str | None = None,
) -> None:
    """
    Log which rung of the agent-memory fallback chain produced priors.

    RECOMPUTED and EMPTY outcomes are logged at WARNING so degraded agent
    runs stand out.
    """
    payload: dict[str, Any] = {
        "observability_event": EVENT_PRIORS_LOADED,
        "tenant_id": tenant_id,
        "domain": domain,
        "agent_type": agent_type,
        "outcome": outcome,
        "cohort_count": cohort_count,
        "cached": cached,
    }
    if error is not None:
        payload["error"] = error
    if outcome == "LOADED":
        logger.info("agent_priors_loaded", extra=payload)
    else:
        logger.warning("agent_priors_degraded", extra=payload)


def log_trigger_failure(*, operation: str, code: str, message: str, **extra: Any) -> None:
    """Log a primary trigger that returned a structured failure."""
    logger.warning(
        "trigger_failed",
        extra={
            "observability_event": EVENT_TRIGGER_FAILURE,
            "operation": operation,
            "error_code": code,
            "error_message": message,
            **extra,
        },
    )


def log_concordance(
    *,
    batch_id: str,
    match_count: int,
    mismatch_count: int,
    concordance: str | None,
    false_greens: int = 0,
) -> None:
    logger.info(
        "reconciliation_concordance",
        extra={
            "observability_event": EVENT_CONCORDANCE,
            "batch_id": batch_id,
            "match_count": match_count,
            "mismatch_count": mismatch_count,
            "concordance": concordance,
            "false_greens": false_greens,
        },
    )
