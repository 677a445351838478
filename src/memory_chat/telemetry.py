"""Timing for the stages of a chat turn.

Each stage yields a plain attribute dict; on exit ``success`` and
``duration_ms`` are filled in and the dict goes to :meth:`TurnTelemetry.record`.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator

logger = logging.getLogger(__name__)


class TurnTelemetry:
    """Discards stage records. Subclass and override :meth:`record` to keep them."""

    @contextmanager
    def stage(self, name: str, **attributes: Any) -> Iterator[Dict[str, Any]]:
        started = time.perf_counter()
        ok = False
        try:
            yield attributes
            ok = True
        finally:
            attributes.setdefault("success", ok)
            attributes["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 3)
            self.record(name, attributes)

    def record(self, name: str, attributes: Dict[str, Any]) -> None:
        pass


class LoggingTurnTelemetry(TurnTelemetry):
    def __init__(self, level: int = logging.DEBUG) -> None:
        self.level = level

    def record(self, name: str, attributes: Dict[str, Any]) -> None:
        if logger.isEnabledFor(self.level):
            logger.log(self.level, "stage %s %s", name, dict(sorted(attributes.items())))
