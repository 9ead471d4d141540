"""
incentive_engines.tracer -- ``@traced_engine``, the INCENTIVE_ENGINE_TRACE emitter.

Each decorated engine call logs one record naming the engine, its version,
a fingerprint of the selected keyword inputs and the call duration.  Two
calls with equal inputs carry equal fingerprints, which is how a rerun is
matched to the run it replaces when reading the log stream.

The decorator only logs.  Engines stay free of I/O, inputs are never
touched, and an exception raised by the engine is logged with
``outcome="error"`` and re-raised unchanged.

Usage:
    @traced_engine("anomaly", "1.0", fingerprint_fields=("records",))
    def detect(self, *, records, assigned_entity_ids=None):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import json
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from incentive_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def _plain(value: Any) -> Any:
    """Reduce ``value`` to JSON-serializable data with a stable ordering."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted((_plain(v) for v in value), key=lambda v: json.dumps(v, sort_keys=True, default=str))
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """
    SHA-256 prefix over the named keyword arguments.

    A field absent from ``kwargs`` hashes the same as an explicit None.
    """
    document = {name: _plain(kwargs.get(name)) for name in fingerprint_fields}
    encoded = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Wrap an engine entry point so every call emits INCENTIVE_ENGINE_TRACE."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
            )
            started = time.perf_counter()
            outcome = "error"
            try:
                result = func(*args, **kwargs)
                outcome = "ok"
                return result
            finally:
                logger.info(
                    "INCENTIVE_ENGINE_TRACE",
                    extra={
                        "trace_type": "INCENTIVE_ENGINE_TRACE",
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "function": func.__qualname__,
                        "outcome": outcome,
                    },
                )

        return wrapper

    return decorator
