"""
LogCapture -- the run log of one primary operation.

Collects every record emitted under the ``incentive_kernel`` logger while
installed, rendered exactly as ``StructuredFormatter`` would write it and
decoded back to plain JSON values.  The calculation service returns these
records as the outcome's ``log``, so callers can follow variant selection,
metric resolution paths and gate outcomes without log infrastructure.

Usage::

    capture = LogCapture().install()
    try:
        outcome = service.run(...)
    finally:
        capture.uninstall()
    run_log = capture.records
"""

import json
import logging
from typing import Any

from incentive_kernel.logging_config import ROOT_LOGGER, StructuredFormatter


class LogCapture(logging.Handler):
    """Handler that keeps JSON-safe dicts in memory."""

    def __init__(self, level: int = logging.DEBUG):
        super().__init__(level)
        self.setFormatter(StructuredFormatter())
        self._records: list[dict[str, Any]] = []
        self._restore_level: int | None = None

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._records.append(json.loads(self.format(record)))
        except Exception:
            self.handleError(record)

    def install(self) -> "LogCapture":
        """Attach to the root logger, lowering its level if it would filter us out."""
        root = logging.getLogger(ROOT_LOGGER)
        root.addHandler(self)
        if root.level == logging.NOTSET or root.level > self.level:
            self._restore_level = root.level
            root.setLevel(self.level)
        return self

    def uninstall(self) -> None:
        root = logging.getLogger(ROOT_LOGGER)
        root.removeHandler(self)
        if self._restore_level is not None:
            root.setLevel(self._restore_level)
            self._restore_level = None

    def messages(self) -> list[str]:
        return [r["message"] for r in self._records]

    @property
    def records(self) -> list[dict[str, Any]]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __enter__(self) -> "LogCapture":
        return self.install()

    def __exit__(self, *exc: Any) -> None:
        self.uninstall()
