"""Request-processing pipeline for inbound email webhooks."""

from llmbox.pipeline.orchestrator import EmailPipeline, PipelineResult
from llmbox.pipeline.performance import PERFORMANCE_THRESHOLDS_MS, PerformanceTracker
from llmbox.pipeline.state_machine import PipelineStateMachine
from llmbox.pipeline.transitions import TERMINAL_STATES, TRANSITIONS, PipelineEvent

__all__ = [
    "PERFORMANCE_THRESHOLDS_MS",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "EmailPipeline",
    "PerformanceTracker",
    "PipelineEvent",
    "PipelineResult",
    "PipelineStateMachine",
]
