"""Execution engine for Block/ActionStep trees.

A tree is flattened into an ordered plan of actions before anything runs, so
naming problems surface before the first action touches the outside world.

This module is intentionally app-agnostic and must not import `agent_bundle.*`.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, TypeAlias


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class FlowContext(Protocol):
    logger: logging.Logger
    outputs: dict[str, Any]
    steps: list[dict[str, Any]]


def _optional_text(value: str | None, *, what: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{what} must be a string or None (type={type(value).__name__})")
    text = value.strip()
    if not text:
        raise ValueError(f"{what} cannot be empty")
    return text


@dataclass(frozen=True)
class ActionStep:
    """Pure-Python execution node: `fn(ctx)` runs once, its result is recorded."""

    name: str | None
    fn: Callable[[FlowContext], Any]
    capture_key: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _optional_text(self.name, what="Action name"))
        if not callable(self.fn):
            raise TypeError(f"Action fn must be callable (type={type(self.fn).__name__})")
        object.__setattr__(
            self, "capture_key", _optional_text(self.capture_key, what="Action capture_key")
        )
        if not isinstance(self.meta, dict):
            raise TypeError(f"Action meta must be a dict (type={type(self.meta).__name__})")


@dataclass(frozen=True)
class Block:
    """Ordered group of nodes; `meta` (except `doc`) is inherited by children."""

    name: str | None = None
    nodes: list["Node"] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", _optional_text(self.name, what="Block name"))
        if not isinstance(self.meta, dict):
            raise TypeError(f"Block meta must be a dict (type={type(self.meta).__name__})")


Node: TypeAlias = ActionStep | Block


@dataclass(frozen=True)
class PlannedAction:
    path: str
    name: str
    action: ActionStep
    meta: dict[str, Any]


class StepRecorder(Protocol):
    def on_step_start(self, ctx: FlowContext, path: str, **metrics: Any) -> None:
        ...

    def on_step_end(self, ctx: FlowContext, record: dict[str, Any]) -> None:
        ...

    def on_step_error(
        self, ctx: FlowContext, path: str, step_name: str, exc: Exception
    ) -> None:
        ...


class DefaultStepRecorder:
    """Logs every step through `ctx.logger` and keeps its record in `ctx.steps`."""

    def on_step_start(self, ctx: FlowContext, path: str, **metrics: Any) -> None:
        tokens: list[str] = []
        for key in ("node_type", "source"):
            value = metrics.get(key)
            if isinstance(value, str) and value.strip():
                tokens.append(f"{'type' if key == 'node_type' else key}={value.strip()}")
        doc = metrics.get("doc")
        if isinstance(doc, str) and doc.strip():
            tokens.append(f"doc={json.dumps(doc.strip(), ensure_ascii=False)}")

        if tokens:
            ctx.logger.info("Step: %s (%s)", path, ", ".join(tokens))
        else:
            ctx.logger.info("Step: %s", path)

    def on_step_end(self, ctx: FlowContext, record: dict[str, Any]) -> None:
        ctx.steps.append(record)
        ctx.logger.info(
            "Completed action %s (duration_ms=%d)", record.get("path", "<unknown>"), record["duration_ms"]
        )
        if "result" in record:
            ctx.logger.debug("Result of %s: %s", record.get("path"), record["result"])

    def on_step_error(self, ctx: FlowContext, path: str, step_name: str, exc: Exception) -> None:
        ctx.logger.error("Step failed: %s (%s)", path, exc)


class NullStepRecorder:
    """Keeps step records without logging."""

    def on_step_start(self, ctx: FlowContext, path: str, **metrics: Any) -> None:
        return

    def on_step_end(self, ctx: FlowContext, record: dict[str, Any]) -> None:
        ctx.steps.append(record)

    def on_step_error(self, ctx: FlowContext, path: str, step_name: str, exc: Exception) -> None:
        return


def summarize(value: Any, *, depth: int = 3, max_items: int = 25) -> Any:
    """JSON-friendly rendition of an action result for step records."""

    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if depth <= 0:
        return "<...>"
    if isinstance(value, dict):
        items = list(value.items())
        out = {str(k): summarize(v, depth=depth - 1, max_items=max_items) for k, v in items[:max_items]}
        if len(items) > max_items:
            out["<more>"] = f"<{len(items) - max_items} more>"
        return out
    if isinstance(value, (list, tuple)):
        out_list = [summarize(v, depth=depth - 1, max_items=max_items) for v in list(value)[:max_items]]
        if len(value) > max_items:
            out_list.append(f"<{len(value) - max_items} more>")
        return out_list
    return repr(value)


class PipelineRunner:
    """Runs a Block tree depth-first, strictly in declaration order.

    There is no scheduling, retry, or partial-success mode: the first failing
    action aborts the run and its exception propagates with the failing
    action's path attached (`pipeline_path`, `pipeline_node_type`,
    `pipeline_node_name`).
    """

    def __init__(self, *, recorder: StepRecorder | None = None):
        recorder = recorder or DefaultStepRecorder()
        for method in ("on_step_start", "on_step_end", "on_step_error"):
            if not callable(getattr(recorder, method, None)):
                raise TypeError(f"Step recorder missing required method: {method}")
        self._recorder = recorder

    @staticmethod
    def plan(node: Node) -> list[PlannedAction]:
        """Flatten `node` into its actions, in execution order.

        Raises:
            ValueError: if two siblings share a (possibly positional) name.
        """

        planned: list[PlannedAction] = []

        def visit(current: Node, segments: list[str], inherited: dict[str, Any]) -> None:
            if isinstance(current, ActionStep):
                meta = {**inherited, **current.meta}
                planned.append(PlannedAction("/".join(segments), segments[-1], current, meta))
                return
            if not isinstance(current, Block):
                raise TypeError(f"Unsupported pipeline node type: {type(current).__name__}")

            # Docs describe a single node; children never inherit them.
            child_meta = {k: v for k, v in {**inherited, **current.meta}.items() if k != "doc"}
            names: list[str] = []
            for index, child in enumerate(current.nodes):
                kind = "action" if isinstance(child, ActionStep) else "block"
                names.append(child.name or f"{kind}_{index + 1:02d}")
            duplicates = sorted({name for name in names if names.count(name) > 1})
            if duplicates:
                raise ValueError(
                    f"Duplicate node name(s) in block {'/'.join(segments)}: {', '.join(duplicates)}"
                )
            for child, child_name in zip(current.nodes, names):
                visit(child, [*segments, child_name], child_meta)

        if isinstance(node, Block):
            root = node.name or "pipeline"
        else:
            root = getattr(node, "name", None) or "action_01"
        visit(node, [root], {})
        return planned

    def run(self, ctx: FlowContext, node: Node) -> None:
        for step in self.plan(node):
            self._run_action(ctx, step)

    def _run_action(self, ctx: FlowContext, step: PlannedAction) -> None:
        action = step.action
        meta = dict(step.meta)
        meta.setdefault("source", f"{getattr(action.fn, '__module__', '<unknown_module>')}."
                                  f"{getattr(action.fn, '__qualname__', '<callable>')}")
        try:
            self._recorder.on_step_start(
                ctx, step.path, node_type="action", source=meta.get("source"), doc=meta.get("doc")
            )
            started = time.perf_counter()
            result = action.fn(ctx)
            duration_ms = int((time.perf_counter() - started) * 1000)
            if action.capture_key is not None:
                ctx.outputs[action.capture_key] = result

            record: dict[str, Any] = {
                "type": "action",
                "name": step.name,
                "path": step.path,
                "duration_ms": duration_ms,
                "created_at": utc_now_iso8601(),
                "meta": summarize(meta),
            }
            if result is not None:
                record["result"] = summarize(result)
            self._recorder.on_step_end(ctx, record)
        except BaseException as exc:
            if isinstance(exc, Exception):
                try:
                    self._recorder.on_step_error(ctx, step.path, step.name, exc)
                except Exception:
                    ctx.logger.exception("Step recorder failed during error handling for %s", step.path)
            for attr, value in (
                ("pipeline_path", step.path),
                ("pipeline_node_type", "action"),
                ("pipeline_node_name", step.name),
            ):
                if not hasattr(exc, attr):
                    try:
                        setattr(exc, attr, value)
                    except AttributeError:
                        pass
            raise
