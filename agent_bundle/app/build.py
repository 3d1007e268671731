from __future__ import annotations

import hashlib
import logging
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from pipelinekit import ActionStep, Block, PipelineRunner, parallel_map, utc_now_iso8601

from agent_bundle.archive.io import (
    REPRODUCIBLE_DATE_TIME,
    StagedOutputs,
    copy_archive,
    read_library,
    write_archive,
)
from agent_bundle.archive.model import MERGE_DROP_GLOBS, Archive, DateTime, EntryKind, LibraryRef, LibrarySet
from agent_bundle.bundling.isolation import isolate_archive
from agent_bundle.bundling.manifest import ManifestAttributes, build_manifest
from agent_bundle.bundling.merge import DuplicatePolicy, merge_archives
from agent_bundle.bundling.relocation import RelocationMap, relocate_archive
from agent_bundle.foundation.logging_utils import close_operational_logger, setup_operational_logger
from agent_bundle.framework.config import BundleConfig
from agent_bundle.framework.errors import ArchiveReadError
from agent_bundle.framework.runtime import BuildContext

PIPELINE_NAME = "bundle"

STAGES: tuple[tuple[str, str], ...] = (
    ("resolve_inputs", "Check every input archive exists and drop shared libraries from agent_libs."),
    ("relocate_agent_libs", "Relocate each agent library and merge them; any duplicate path fails."),
    ("isolate", "Move the relocated agent libraries under the private namespace as .classdata."),
    (
        "relocate_merge",
        "Relocate bootstrap and upstream archives and merge after the isolated tree; first entry wins.",
    ),
    ("build_manifest", "Synthesize the bundle manifest."),
    ("write_bundle", "Write the classifier jar to a temporary file beside its destination."),
    ("copy_bundle", "Copy it for the classifier-less name, then promote both jars together."),
)


def generate_build_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class BuildResult:
    build_id: str
    bundle_path: Path
    main_path: Path
    sha256: str
    entry_counts: dict[str, int] = field(default_factory=dict)
    excluded_shared: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "build_id": self.build_id,
            "bundle_path": str(self.bundle_path),
            "main_path": str(self.main_path),
            "sha256": self.sha256,
            "entry_counts": dict(self.entry_counts),
            "excluded_shared": list(self.excluded_shared),
        }


def file_sha256(path: str | os.PathLike[str]) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def render_manifest(cfg: BundleConfig) -> ManifestAttributes:
    return build_manifest(
        cfg.manifest,
        version=cfg.project.version,
        upstream_version=cfg.project.upstream_version,
    )


def _relocate_set(ctx: BuildContext, library_set: LibrarySet, relocation: RelocationMap) -> list[Archive]:
    def relocate_one(ref: LibraryRef) -> Archive:
        return relocate_archive(read_library(ref), relocation)

    return parallel_map(relocate_one, list(library_set), max_workers=ctx.cfg.build.workers)


def _date_time(cfg: BundleConfig) -> DateTime | None:
    return REPRODUCIBLE_DATE_TIME if cfg.build.reproducible else None


def _keep_intermediate(ctx: BuildContext, archive: Archive, label: str) -> None:
    work_dir = ctx.cfg.build.work_dir
    if not ctx.cfg.build.keep_intermediates or work_dir is None:
        return
    target = work_dir / ctx.build_id / f"{label}.jar"
    write_archive(archive, target, fixed_date_time=_date_time(ctx.cfg))
    ctx.logger.debug("Kept intermediate archive %s (%d entries)", target, len(archive))


def build_pipeline(relocation: RelocationMap) -> Block:
    """Return the bundle pipeline: one Block of ActionSteps in fixed order."""

    def resolve_inputs(ctx: BuildContext) -> dict[str, Any]:
        cfg = ctx.cfg
        total = sum(len(library_set) for library_set in cfg.library_sets())
        if total == 0:
            raise ValueError(
                "No input libraries configured: set libraries.* or pass --bootstrap/--agent-libs/--upstream-agent"
            )
        for library_set in cfg.library_sets():
            for ref in library_set:
                if not ref.path.is_file():
                    raise ArchiveReadError(str(ref.path), f"file not found (library set {library_set.name})")

        agent_libs, excluded = cfg.shared.partition(cfg.agent_libs)
        for ref in excluded:
            ctx.logger.info("Shared library kept out of agent libs: %s", ref.label)
        ctx.outputs["agent_libs"] = agent_libs
        ctx.outputs["excluded_shared"] = tuple(ref.label for ref in excluded)
        return {
            "bootstrap": len(cfg.bootstrap),
            "agent_libs": len(agent_libs),
            "upstream_agent": len(cfg.upstream_agent),
            "excluded_shared": len(excluded),
        }

    def relocate_agent_libs(ctx: BuildContext) -> dict[str, Any]:
        archives = _relocate_set(ctx, ctx.outputs["agent_libs"], relocation)
        merged = merge_archives(
            archives,
            policy=DuplicatePolicy.FAIL,
            name="agent-libs-relocated",
            drop_globs=MERGE_DROP_GLOBS,
            service_dirs=ctx.cfg.service_dirs,
        )
        ctx.outputs["relocated_agent_libs"] = merged
        _keep_intermediate(ctx, merged, "relocated-agent-libs")
        return {"archives": len(archives), "entries": len(merged)}

    def isolate(ctx: BuildContext) -> dict[str, Any]:
        plan = ctx.cfg.namespace
        isolated = isolate_archive(ctx.outputs["relocated_agent_libs"], plan, name="agent-libs-isolated")
        ctx.cfg.shared.verify_isolated(isolated, prefix=plan.prefix)
        ctx.outputs["isolated"] = isolated
        _keep_intermediate(ctx, isolated, "isolated-agent-libs")
        return {"entries": len(isolated), "prefix": plan.prefix}

    def relocate_merge(ctx: BuildContext) -> dict[str, Any]:
        cfg = ctx.cfg
        bootstrap = _relocate_set(ctx, cfg.bootstrap, relocation)
        upstream = _relocate_set(ctx, cfg.upstream_agent, relocation)
        inputs = [ctx.outputs["isolated"], *bootstrap, *upstream]
        bundle = merge_archives(
            inputs,
            policy=DuplicatePolicy.EXCLUDE,
            name=cfg.project.name,
            drop_globs=MERGE_DROP_GLOBS,
            service_dirs=cfg.service_dirs,
        )
        ctx.outputs["bundle"] = bundle
        _keep_intermediate(ctx, bundle, "merged")
        return {
            "entries": len(bundle),
            "entries_dropped": sum(len(archive) for archive in inputs) - len(bundle),
            "class_entries": bundle.count(EntryKind.CLASS),
        }

    def manifest(ctx: BuildContext) -> ManifestAttributes:
        return render_manifest(ctx.cfg)

    def write_bundle(ctx: BuildContext) -> str:
        staging: StagedOutputs = ctx.outputs["staging"]
        target = write_archive(
            ctx.outputs["bundle"],
            ctx.cfg.classified_jar_path,
            manifest=ctx.outputs["manifest"].render(),
            fixed_date_time=_date_time(ctx.cfg),
            staging=staging,
        )
        ctx.logger.debug("Staged bundle %s at %s", target, staging.staged_path(target))
        return str(target)

    def copy_bundle(ctx: BuildContext) -> str:
        staging: StagedOutputs = ctx.outputs["staging"]
        target = copy_archive(
            staging.staged_path(ctx.outputs["bundle_path"]), ctx.cfg.main_jar_path, staging=staging
        )
        for path in staging.promote():
            ctx.logger.info("Wrote %s", path)
        return str(target)

    docs = dict(STAGES)
    return Block(
        name=PIPELINE_NAME,
        nodes=[
            ActionStep("resolve_inputs", resolve_inputs, meta={"doc": docs["resolve_inputs"]}),
            ActionStep("relocate_agent_libs", relocate_agent_libs, meta={"doc": docs["relocate_agent_libs"]}),
            ActionStep("isolate", isolate, meta={"doc": docs["isolate"]}),
            ActionStep("relocate_merge", relocate_merge, meta={"doc": docs["relocate_merge"]}),
            ActionStep(
                "build_manifest", manifest, capture_key="manifest", meta={"doc": docs["build_manifest"]}
            ),
            ActionStep(
                "write_bundle", write_bundle, capture_key="bundle_path", meta={"doc": docs["write_bundle"]}
            ),
            ActionStep(
                "copy_bundle", copy_bundle, capture_key="main_path", meta={"doc": docs["copy_bundle"]}
            ),
        ],
    )


def list_stages() -> list[str]:
    plan = PipelineRunner.plan(build_pipeline(RelocationMap(())))
    return [f"{step.path}: {step.meta.get('doc', '')}" for step in plan]


def _log_config_source(logger: logging.Logger, config_meta: dict[str, Any] | None) -> None:
    if not config_meta:
        return
    mode = config_meta.get("mode")
    paths = config_meta.get("paths") or []
    env_var = config_meta.get("env_var") or "AGENT_BUNDLE_CONFIG"
    if mode in {"env", "explicit"} and paths:
        label = f"env {env_var}" if mode == "env" else "explicit path"
        logger.info("Loaded config from %s=%s", label, paths[0])
    elif paths:
        base = paths[0]
        local = paths[1] if len(paths) > 1 else None
        if local:
            logger.info("Loaded config base=%s local=%s", base, local)
        else:
            logger.info("Loaded config base=%s", base)


def run_build(
    cfg: BundleConfig,
    *,
    build_id: str | None = None,
    config_meta: dict[str, Any] | None = None,
    warnings: Iterable[str] = (),
) -> BuildResult:
    """
    Assemble the bundle described by `cfg`.

    The relocation map is validated before any archive is opened. On failure
    the exception propagates with `pipeline_path` naming the failing stage.
    Both jars are staged beside their destinations and replace the previous
    outputs only once both have been written.
    """

    relocation = cfg.relocation_map()

    build_id = build_id or generate_build_id()
    log_dir = str(cfg.build.log_dir) if cfg.build.log_dir is not None else None
    logger, _log_file = setup_operational_logger(log_dir, build_id)
    try:
        _log_config_source(logger, config_meta)
        for warning in warnings:
            logger.warning("Config warning: %s", warning)
        logger.info(
            "Building %s %s (upstream %s) with %d relocation rule(s)",
            cfg.project.name,
            cfg.project.version,
            cfg.project.upstream_version,
            len(relocation),
        )

        ctx = BuildContext(build_id=build_id, cfg=cfg, logger=logger, created_at=utc_now_iso8601())
        try:
            with StagedOutputs() as staging:
                ctx.outputs["staging"] = staging
                PipelineRunner().run(ctx, build_pipeline(relocation))
        except Exception as exc:
            ctx.error = {
                "type": type(exc).__name__,
                "message": str(exc),
                "pipeline_path": getattr(exc, "pipeline_path", None),
            }
            logger.error("Build failed at %s: %s", ctx.error["pipeline_path"] or "<setup>", exc)
            raise

        counts = {
            name: int(result["entries"])
            for name, result in ctx.step_results().items()
            if isinstance(result, dict) and "entries" in result
        }
        result = BuildResult(
            build_id=build_id,
            bundle_path=Path(ctx.outputs["bundle_path"]),
            main_path=Path(ctx.outputs["main_path"]),
            sha256=file_sha256(ctx.outputs["bundle_path"]),
            entry_counts=counts,
            excluded_shared=ctx.outputs.get("excluded_shared", ()),
        )
        logger.info(
            "Build complete: %s (sha256=%s, entries=%d)",
            result.bundle_path,
            result.sha256,
            counts.get("relocate_merge", 0),
        )
        return result
    finally:
        close_operational_logger(logger)
