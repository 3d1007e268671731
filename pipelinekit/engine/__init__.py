"""Engine primitives for building and running Block/ActionStep trees."""

from pipelinekit.engine.concurrency import parallel_map
from pipelinekit.engine.pipeline import (
    ActionStep,
    Block,
    DefaultStepRecorder,
    FlowContext,
    Node,
    NullStepRecorder,
    PipelineRunner,
    PlannedAction,
    StepRecorder,
    summarize,
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
    "summarize",
    "utc_now_iso8601",
]
