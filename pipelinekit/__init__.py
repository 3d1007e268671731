"""Reusable pipeline kernel (engine primitives).

This package is intentionally independent of `agent_bundle.*`. Any project-specific
conventions (stage order, artifact layouts, error taxonomy) must live in the
consuming application.
"""

from pipelinekit.engine import (
    ActionStep,
    Block,
    DefaultStepRecorder,
    FlowContext,
    Node,
    NullStepRecorder,
    PipelineRunner,
    PlannedAction,
    StepRecorder,
    parallel_map,
    utc_now_iso8601,
)

__all__ = [
    "ActionStep",
    "Block",
    "DefaultStepRecorder",
    "FlowContext",
    "Node",
    "NullStepRecorder",
    "PipelineRunner",
    "PlannedAction",
    "StepRecorder",
    "parallel_map",
    "utc_now_iso8601",
]
