"""
Injectable time source.

Services take a ``Clock`` instead of calling ``datetime.now()`` so that
signal timestamps, synapse ``last_seen`` values, batch ``calculated_at``
and agent-memory cache expiry are reproducible under test.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

EPOCH_START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class Clock(ABC):
    """Timezone-aware UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def monotonic_seconds(self) -> float:
        """Seconds since the epoch; only differences are meaningful."""
        return self.now().timestamp()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """Frozen clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._current = start or EPOCH_START

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)
