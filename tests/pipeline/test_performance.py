"""Tests for per-stage timing."""

from __future__ import annotations

from llmbox.pipeline.performance import PerformanceTracker


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestPerformanceTracker:
    def test_records_stage_duration(self) -> None:
        clock = FakeClock()
        tracker = PerformanceTracker(clock=clock)

        tracker.start("parsing")
        clock.now += 0.25
        duration = tracker.end("parsing")

        assert duration == 250
        assert tracker.duration("parsing") == 250
        assert tracker.summary() == {"parsing": 250, "total": 250}

    def test_end_without_start_is_zero(self) -> None:
        tracker = PerformanceTracker(clock=FakeClock())

        assert tracker.end("llm_call") == 0
        assert tracker.duration("llm_call") == 0

    def test_warns_on_slow_stage(self) -> None:
        clock = FakeClock()
        tracker = PerformanceTracker(clock=clock)

        tracker.start("llm_call")
        clock.now += 21
        tracker.end("llm_call")

        assert tracker.warn_if_slow() == ["llm_call"]

    def test_total_over_budget(self) -> None:
        clock = FakeClock()
        tracker = PerformanceTracker(clock=clock)
        clock.now += 26

        assert tracker.warn_if_slow() == ["total"]

    def test_custom_thresholds(self) -> None:
        clock = FakeClock()
        tracker = PerformanceTracker(clock=clock)

        tracker.start("email_send")
        clock.now += 0.2
        tracker.end("email_send")

        assert tracker.warn_if_slow({"email_send": 100}) == ["email_send"]
        assert tracker.warn_if_slow() == []
