"""
incentive_services.signal_service -- Best-effort classification signal sink.

Responsibility:
    Queue classification / training signals produced by the primary
    operations and write them in a batch, isolating each write so that a
    failing signal never fails the operation that produced it.

Architecture position:
    Services -- imperative shell.  Used by calculation, convergence,
    reconciliation and resolution services.

Invariants enforced:
    - Delivery is at-most-once: a signal is dequeued before its write is
      attempted and is never retried.
    - Each write runs inside its own savepoint (``begin_nested``); a failure
      rolls back that savepoint only.
    - ``emit`` returns the signal id up front so callers can reference it
      (e.g. in a derivation's ``signal_id``) before it is written.

Failure modes:
    - None raised.  Write failures are logged with the signal type and
      counted in ``stats().failed``.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from incentive_kernel.domain.clock import Clock
from incentive_kernel.logging_config import get_logger
from incentive_kernel.models.signal import ClassificationSignal, SignalSource, SignalType
from incentive_kernel.services.base import BaseService
from incentive_services.observability import log_signal_flush

logger = get_logger("services.signals")


@dataclass(frozen=True)
class PendingSignal:
    signal_id: UUID
    tenant_id: UUID
    signal_type: str
    signal_value: dict[str, Any]
    confidence: Decimal | None = None
    source: str = SignalSource.SYSTEM.value


@dataclass
class SinkStats:
    enqueued: int = 0
    written: int = 0
    failed: int = 0
    pending: int = 0
    failures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enqueued": self.enqueued,
            "written": self.written,
            "failed": self.failed,
            "pending": self.pending,
        }


class SignalSink(BaseService):
    """
    Fire-and-forget signal queue backed by ``classification_signals``.

    Usage:
        sink = SignalSink(session)
        signal_id = sink.emit(tenant_id, SignalType.ANOMALY, {"cohorts": [...]})
        sink.flush()
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._queue: deque[PendingSignal] = deque()
        self._stats = SinkStats()

    def emit(
        self,
        tenant_id: UUID,
        signal_type: SignalType | str,
        signal_value: dict[str, Any],
        confidence: Decimal | None = None,
        source: SignalSource | str = SignalSource.SYSTEM,
    ) -> str:
        """Queue a signal and return its id."""
        pending = PendingSignal(
            signal_id=uuid4(),
            tenant_id=tenant_id,
            signal_type=SignalType(signal_type).value,
            signal_value=signal_value,
            confidence=confidence,
            source=SignalSource(source).value,
        )
        self._queue.append(pending)
        self._stats.enqueued += 1
        return str(pending.signal_id)

    def flush(self) -> int:
        """
        Write every queued signal.  Returns the number written.

        Never raises.
        """
        t0 = time.monotonic()
        written = 0
        failed = 0
        while self._queue:
            pending = self._queue.popleft()
            try:
                with self.session.begin_nested():
                    self.session.add(
                        ClassificationSignal(
                            id=pending.signal_id,
                            tenant_id=pending.tenant_id,
                            signal_type=pending.signal_type,
                            signal_value=pending.signal_value,
                            confidence=pending.confidence,
                            source=pending.source,
                        )
                    )
                    self.session.flush()
                written += 1
            except Exception as exc:
                failed += 1
                self._stats.failures.append(pending.signal_type)
                logger.warning(
                    "signal_write_failed",
                    extra={
                        "signal_id": str(pending.signal_id),
                        "signal_type": pending.signal_type,
                        "error": f"{type(exc).__name__}: {exc}",
                    },
                )

        self._stats.written += written
        self._stats.failed += failed
        if written or failed:
            log_signal_flush(
                written=written,
                failed=failed,
                duration_ms=(time.monotonic() - t0) * 1000,
            )
        return written

    def stats(self) -> SinkStats:
        self._stats.pending = len(self._queue)
        return self._stats

    def __len__(self) -> int:
        return len(self._queue)
