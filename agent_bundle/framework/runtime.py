from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from agent_bundle.framework.config import BundleConfig


@dataclass
class BuildContext:
    """State threaded through the bundle pipeline for one build.

    `outputs` holds in-memory intermediates (archives, manifest, paths) keyed by
    stage; `steps` collects the runner's per-stage records.
    """

    build_id: str
    cfg: BundleConfig
    logger: logging.Logger
    created_at: str

    outputs: dict[str, Any] = field(default_factory=dict)
    steps: list[dict[str, Any]] = field(default_factory=list)

    error: dict[str, Any] | None = None

    def step_results(self) -> dict[str, Any]:
        return {str(step.get("name")): step.get("result") for step in self.steps}
