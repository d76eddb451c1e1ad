"""Per-stage timing for one pipeline invocation."""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

logger = structlog.get_logger()

# Stage budgets in milliseconds; the inbound transport gives up after ~30s.
PERFORMANCE_THRESHOLDS_MS: dict[str, int] = {
    "parsing": 2_000,
    "llm_call": 20_000,
    "email_send": 5_000,
    "total": 25_000,
}


class PerformanceTracker:
    """Measure named stages and warn about the ones that run long.

    Args:
        clock: Monotonic clock returning seconds; injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._started_at = clock()
        self._starts: dict[str, float] = {}
        self._durations: dict[str, int] = {}

    def start(self, label: str) -> None:
        self._starts[label] = self._clock()

    def end(self, label: str) -> int:
        """Stop timing *label* and return its duration in ms (0 if never started)."""
        started = self._starts.pop(label, None)
        if started is None:
            return 0
        duration = int((self._clock() - started) * 1000)
        self._durations[label] = duration
        return duration

    def duration(self, label: str) -> int:
        return self._durations.get(label, 0)

    def total(self) -> int:
        """Return ms elapsed since the tracker was created."""
        return int((self._clock() - self._started_at) * 1000)

    def warn_if_slow(self, thresholds: dict[str, int] | None = None) -> list[str]:
        """Log ``slow_<stage>`` for every stage over its budget.

        Returns:
            The labels that exceeded their threshold.
        """
        slow: list[str] = []
        for label, threshold in (thresholds or PERFORMANCE_THRESHOLDS_MS).items():
            duration = self.total() if label == "total" else self.duration(label)
            if duration > threshold:
                slow.append(label)
                logger.warning(
                    f"slow_{label}",
                    duration_ms=duration,
                    threshold_ms=threshold,
                    operation=label,
                )
        return slow

    def summary(self) -> dict[str, int]:
        """Return every recorded stage duration plus the running total."""
        return {**self._durations, "total": self.total()}
