from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from agent_bundle.framework.errors import BundleError

logger = logging.getLogger("agent_bundle.cli")


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="Config file (default: $AGENT_BUNDLE_CONFIG, else config/config.yaml + config.local.yaml)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-bundle", add_help=True)
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Assemble the javaagent bundle")
    _add_config_argument(build)
    build.add_argument("--bootstrap", nargs="+", metavar="JAR", help="Bootstrap-tier archives")
    build.add_argument("--agent-libs", nargs="+", metavar="JAR", help="Agent library archives to isolate")
    build.add_argument("--upstream-agent", nargs="+", metavar="JAR", help="Upstream agent archive(s)")
    build.add_argument("--version", dest="bundle_version", default=None, help="Bundle version")
    build.add_argument("--upstream-version", default=None, help="Upstream instrumentation version")
    build.add_argument("--output-dir", default=None, help="Directory for the bundle jars")

    sub.add_parser("list-stages", help="List the pipeline stages in execution order")

    manifest = sub.add_parser("manifest", help="Print the manifest a build would write")
    _add_config_argument(manifest)
    manifest.add_argument("--version", dest="bundle_version", default=None, help="Bundle version")
    manifest.add_argument("--upstream-version", default=None, help="Upstream instrumentation version")

    return parser


def _load_bundle_config(args: argparse.Namespace):
    from .foundation.config_io import load_config
    from .framework.config import BundleConfig

    cfg_dict, meta = load_config(config_path=args.config)
    cfg, warnings = BundleConfig.from_dict(cfg_dict, base_dir=meta.get("repo_root"))
    cfg = cfg.with_overrides(
        version=args.bundle_version,
        upstream_version=args.upstream_version,
        output_dir=getattr(args, "output_dir", None),
        libraries={
            "bootstrap": getattr(args, "bootstrap", None) or [],
            "agent_libs": getattr(args, "agent_libs", None) or [],
            "upstream_agent": getattr(args, "upstream_agent", None) or [],
        },
    )
    return cfg, warnings, meta


def _run_build(args: argparse.Namespace) -> int:
    from .app.build import run_build

    try:
        cfg, warnings, meta = _load_bundle_config(args)
        result = run_build(cfg, config_meta=meta, warnings=warnings)
    except (BundleError, ValueError, FileNotFoundError) as exc:
        stage = getattr(exc, "pipeline_path", None)
        if stage:
            logger.error("Build failed at %s: %s", stage, exc)
        else:
            logger.error("Build failed: %s", exc)
        return 1

    print(result.bundle_path)
    print(result.main_path)
    return 0


def _print_manifest(args: argparse.Namespace) -> int:
    from .app.build import render_manifest

    try:
        cfg, _warnings, _meta = _load_bundle_config(args)
        rendered = render_manifest(cfg).render()
    except (ValueError, FileNotFoundError) as exc:
        logger.error("Cannot build manifest: %s", exc)
        return 1

    sys.stdout.write(rendered.decode("utf-8").replace("\r\n", "\n"))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

    if args.command == "build":
        return _run_build(args)

    if args.command == "list-stages":
        from .app.build import list_stages

        for line in list_stages():
            print(line)
        return 0

    if args.command == "manifest":
        return _print_manifest(args)

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
