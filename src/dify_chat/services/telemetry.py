"""Span helpers wrapping provider round trips."""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator

from .logging import StructuredLogger


@dataclass
class TelemetrySpan:
    """Data captured for a single span."""

    name: str
    start_time: float
    metadata: Dict[str, Any]

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.start_time) * 1000)


@contextlib.contextmanager
def telemetry_span(logger: StructuredLogger, name: str, **metadata: Any) -> Iterator[TelemetrySpan]:
    """Context manager that logs span lifecycle events."""

    start = time.perf_counter()
    logger.debug("telemetry.span.start", span=name, **metadata)
    span = TelemetrySpan(name=name, start_time=start, metadata=metadata)
    try:
        yield span
    except Exception as error:
        logger.error("telemetry.span.error", span=name, error=str(error), **metadata)
        raise
    finally:
        logger.info("telemetry.span.finish", span=name, duration_ms=span.elapsed_ms, **metadata)
