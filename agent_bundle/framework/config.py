from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from agent_bundle.archive.model import SERVICES_DIR, LibraryRef, LibrarySet
from agent_bundle.bundling.isolation import DEFAULT_EXCLUDES, DEFAULT_RENAMES, NamespacePlan
from agent_bundle.bundling.manifest import ManifestSettings
from agent_bundle.bundling.relocation import RelocationMap, RelocationRule
from agent_bundle.bundling.shared import DEFAULT_SHARED_LIBRARIES, SharedContract, SharedLibrary
from agent_bundle.foundation.config_io import find_repo_root

LIBRARY_SET_NAMES: tuple[str, ...] = ("bootstrap", "agent_libs", "upstream_agent")


def parse_bool(value: Any, path: str) -> bool:
    """
    Strict boolean parsing to avoid bool('false') footguns.

    Accepts:
      - True/False
      - 0/1 (ints)
      - strings: true/false/1/0/yes/no (case-insensitive, surrounding whitespace ignored)

    Raises:
      ValueError for anything else, with the provided config key path.
    """

    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value in (0, 1):
            return bool(value)
        raise ValueError(f"Invalid boolean for {path}: {value!r}")
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes"}:
            return True
        if normalized in {"false", "0", "no"}:
            return False
        raise ValueError(f"Invalid boolean for {path}: {value!r}")

    raise ValueError(f"Invalid boolean for {path}: {value!r}")


def parse_int(value: Any, path: str) -> int:
    if value is None:
        raise ValueError(f"Invalid config value for {path}: None")
    if isinstance(value, bool):
        raise ValueError(f"Invalid config type for {path}: expected int, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        if not value.strip():
            raise ValueError(f"Invalid config value for {path}: must be an int")
        try:
            return int(value.strip())
        except Exception as exc:  # noqa: BLE001
            raise ValueError(f"Invalid config value for {path}: must be an int") from exc
    raise ValueError(f"Invalid config type for {path}: expected int")


def parse_str(value: Any, path: str) -> str:
    if value is None:
        raise ValueError(f"Missing required config: {path}")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(f"Invalid config type for {path}: expected string")
    text = str(value).strip()
    if not text:
        raise ValueError(f"Missing required config: {path}")
    return text


def parse_str_list(value: Any, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ValueError(f"Invalid config type for {path}: expected a list of strings")
    return tuple(parse_str(item, f"{path}[{idx}]") for idx, item in enumerate(value))


@dataclass(frozen=True)
class ProjectConfig:
    name: str
    version: str
    upstream_version: str


@dataclass(frozen=True)
class BuildSettings:
    output_dir: Path
    log_dir: Path | None = None
    work_dir: Path | None = None
    classifier: str = "all"
    workers: int = 4
    reproducible: bool = True
    keep_intermediates: bool = False


@dataclass(frozen=True)
class BundleConfig:
    project: ProjectConfig
    build: BuildSettings
    bootstrap: LibrarySet
    agent_libs: LibrarySet
    upstream_agent: LibrarySet
    relocation_rules: tuple[RelocationRule, ...] = ()
    shared: SharedContract = field(default_factory=SharedContract.default)
    namespace: NamespacePlan = field(default_factory=NamespacePlan)
    service_dirs: tuple[str, ...] = (SERVICES_DIR,)
    manifest: ManifestSettings = field(default_factory=ManifestSettings)

    @property
    def classified_jar_path(self) -> Path:
        base = f"{self.project.name}-{self.project.version}"
        return self.build.output_dir / f"{base}-{self.build.classifier}.jar"

    @property
    def main_jar_path(self) -> Path:
        return self.build.output_dir / f"{self.project.name}-{self.project.version}.jar"

    def relocation_map(self) -> RelocationMap:
        return RelocationMap(self.relocation_rules, shared=self.shared)

    def library_sets(self) -> tuple[LibrarySet, LibrarySet, LibrarySet]:
        return self.bootstrap, self.agent_libs, self.upstream_agent

    def with_overrides(
        self,
        *,
        version: str | None = None,
        upstream_version: str | None = None,
        output_dir: str | os.PathLike[str] | None = None,
        libraries: Mapping[str, list[str]] | None = None,
    ) -> "BundleConfig":
        """Apply command-line overrides on top of file configuration."""

        project = self.project
        if version is not None:
            project = replace(project, version=parse_str(version, "project.version"))
        if upstream_version is not None:
            project = replace(
                project, upstream_version=parse_str(upstream_version, "project.upstream_version")
            )
        build = self.build
        if output_dir is not None:
            build = replace(build, output_dir=Path(output_dir).expanduser().resolve())

        updated = replace(self, project=project, build=build)
        for set_name, paths in (libraries or {}).items():
            if set_name not in LIBRARY_SET_NAMES:
                raise ValueError(f"Unknown library set: {set_name}")
            if paths:
                members = tuple(LibraryRef(Path(p).expanduser().resolve()) for p in paths)
                updated = replace(updated, **{set_name: LibrarySet(name=set_name, members=members)})
        return updated

    @staticmethod
    def from_dict(
        cfg: Mapping[str, Any], *, base_dir: str | os.PathLike[str] | None = None
    ) -> tuple["BundleConfig", list[str]]:
        """
        Parse and validate configuration, returning (BundleConfig, warnings).

        Relative paths resolve against `base_dir`, or the repo root when omitted.

        Raises:
            ValueError: if required keys are missing or invalid.
        """

        if not isinstance(cfg, Mapping):
            raise ValueError("Config must be a mapping")

        warnings: list[str] = []
        root: str | None = str(base_dir) if base_dir is not None else None

        strict_unknown_keys = False
        if "strict" in cfg:
            strict_unknown_keys = parse_bool(cfg.get("strict"), "strict")

        ANY: object = object()
        schema: Mapping[str, Any] = {
            "strict": None,
            "project": {"name": None, "version": None, "upstream_version": None},
            "build": {
                "output_dir": None,
                "log_dir": None,
                "work_dir": None,
                "classifier": None,
                "workers": None,
                "reproducible": None,
                "keep_intermediates": None,
            },
            "libraries": {name: ANY for name in LIBRARY_SET_NAMES},
            "relocation": {"rules": ANY},
            "shared_contract": {"libraries": ANY},
            "isolation": {
                "prefix": None,
                "class_suffix": None,
                "isolated_suffix": None,
                "renames": ANY,
                "excludes": None,
            },
            "merge": {"service_dirs": None},
            "manifest": {
                "main_class": None,
                "agent_class": None,
                "premain_class": None,
                "vendor": None,
                "version_prefix": None,
                "extra": ANY,
            },
        }

        def collect_unknown_keys(mapping: Any, subschema: Mapping[str, Any], *, prefix: str) -> list[str]:
            if not isinstance(mapping, Mapping):
                return []
            unknown: list[str] = []
            for key, value in mapping.items():
                if not isinstance(key, str):
                    continue
                dotted = f"{prefix}.{key}" if prefix else key
                if key not in subschema:
                    unknown.append(dotted)
                    continue
                child = subschema.get(key)
                if isinstance(child, Mapping):
                    unknown.extend(collect_unknown_keys(value, child, prefix=dotted))
            return unknown

        unknown_keys = sorted(set(collect_unknown_keys(cfg, schema, prefix="")))
        if unknown_keys:
            if strict_unknown_keys:
                raise ValueError("Unknown config keys: " + ", ".join(unknown_keys))
            warnings.extend(f"Unknown config key: {key}" for key in unknown_keys)

        def normalize_path(value: str) -> Path:
            nonlocal root
            expanded = os.path.expandvars(os.path.expanduser(value.strip()))
            if not os.path.isabs(expanded):
                if root is None:
                    root = find_repo_root()
                expanded = os.path.join(root, expanded)
            return Path(os.path.abspath(expanded))

        def get_mapping(path: str) -> Mapping[str, Any]:
            cur: Any = cfg
            for part in path.split("."):
                if not isinstance(cur, Mapping):
                    return {}
                cur = cur.get(part)
            if cur is None:
                return {}
            if not isinstance(cur, Mapping):
                raise ValueError(f"Invalid config type for {path}: expected mapping")
            return cur

        project_cfg = get_mapping("project")
        project = ProjectConfig(
            name=parse_str(project_cfg.get("name", "splunk-otel-javaagent"), "project.name"),
            version=parse_str(project_cfg.get("version"), "project.version"),
            upstream_version=parse_str(
                project_cfg.get("upstream_version"), "project.upstream_version"
            ),
        )

        build_cfg = get_mapping("build")
        workers = parse_int(build_cfg.get("workers", 4), "build.workers")
        if workers < 1:
            raise ValueError("Invalid config value for build.workers: must be >= 1")
        classifier = parse_str(build_cfg.get("classifier", "all"), "build.classifier")
        log_dir_raw = build_cfg.get("log_dir")
        work_dir_raw = build_cfg.get("work_dir")
        build = BuildSettings(
            output_dir=normalize_path(
                parse_str(build_cfg.get("output_dir", "build/libs"), "build.output_dir")
            ),
            log_dir=normalize_path(parse_str(log_dir_raw, "build.log_dir")) if log_dir_raw else None,
            work_dir=normalize_path(parse_str(work_dir_raw, "build.work_dir")) if work_dir_raw else None,
            classifier=classifier,
            workers=workers,
            reproducible=parse_bool(build_cfg.get("reproducible", True), "build.reproducible"),
            keep_intermediates=parse_bool(
                build_cfg.get("keep_intermediates", False), "build.keep_intermediates"
            ),
        )
        if build.keep_intermediates and build.work_dir is None:
            raise ValueError("build.keep_intermediates=true requires build.work_dir")

        libraries_cfg = get_mapping("libraries")
        library_sets: dict[str, LibrarySet] = {}
        for set_name in LIBRARY_SET_NAMES:
            raw_members = libraries_cfg.get(set_name) or []
            if not isinstance(raw_members, (list, tuple)):
                raise ValueError(f"Invalid config type for libraries.{set_name}: expected a list")
            members: list[LibraryRef] = []
            for idx, raw in enumerate(raw_members):
                key = f"libraries.{set_name}[{idx}]"
                if isinstance(raw, Mapping):
                    extra = sorted(set(raw) - {"path", "coordinate"})
                    if extra:
                        raise ValueError(f"Unknown config key {key}.{extra[0]}")
                    path = normalize_path(parse_str(raw.get("path"), f"{key}.path"))
                    coordinate = raw.get("coordinate")
                    members.append(
                        LibraryRef(
                            path,
                            parse_str(coordinate, f"{key}.coordinate") if coordinate is not None else None,
                        )
                    )
                else:
                    members.append(LibraryRef(normalize_path(parse_str(raw, key))))
            library_sets[set_name] = LibrarySet(name=set_name, members=tuple(members))

        rules_raw = get_mapping("relocation").get("rules") or []
        if not isinstance(rules_raw, (list, tuple)):
            raise ValueError("Invalid config type for relocation.rules: expected a list")
        rules: list[RelocationRule] = []
        for idx, raw in enumerate(rules_raw):
            key = f"relocation.rules[{idx}]"
            if not isinstance(raw, Mapping):
                raise ValueError(f"Invalid config type for {key}: expected mapping")
            extra = sorted(set(raw) - {"pattern", "shaded", "excludes"})
            if extra:
                raise ValueError(f"Unknown config key {key}.{extra[0]}")
            rules.append(
                RelocationRule(
                    pattern=parse_str(raw.get("pattern"), f"{key}.pattern"),
                    shaded=parse_str(raw.get("shaded"), f"{key}.shaded"),
                    excludes=parse_str_list(raw.get("excludes"), f"{key}.excludes"),
                )
            )

        shared_cfg = get_mapping("shared_contract")
        if "libraries" in shared_cfg:
            shared_raw = shared_cfg.get("libraries") or []
            if not isinstance(shared_raw, (list, tuple)):
                raise ValueError("Invalid config type for shared_contract.libraries: expected a list")
            shared_libraries: list[SharedLibrary] = []
            for idx, raw in enumerate(shared_raw):
                key = f"shared_contract.libraries[{idx}]"
                if not isinstance(raw, Mapping):
                    raise ValueError(f"Invalid config type for {key}: expected mapping")
                shared_libraries.append(
                    SharedLibrary(
                        coordinate=parse_str(raw.get("coordinate"), f"{key}.coordinate"),
                        packages=parse_str_list(raw.get("packages"), f"{key}.packages"),
                    )
                )
            shared = SharedContract(tuple(shared_libraries))
            if not shared_libraries:
                warnings.append("shared_contract.libraries is empty: no library is excluded from isolation")
        else:
            shared = SharedContract(DEFAULT_SHARED_LIBRARIES)

        isolation_cfg = get_mapping("isolation")
        renames_raw = isolation_cfg.get("renames", DEFAULT_RENAMES)
        if not isinstance(renames_raw, Mapping):
            raise ValueError("Invalid config type for isolation.renames: expected mapping")
        namespace = NamespacePlan(
            prefix=parse_str(isolation_cfg.get("prefix", "inst"), "isolation.prefix"),
            class_suffix=parse_str(isolation_cfg.get("class_suffix", ".class"), "isolation.class_suffix"),
            isolated_suffix=parse_str(
                isolation_cfg.get("isolated_suffix", ".classdata"), "isolation.isolated_suffix"
            ),
            renames={
                parse_str(src, "isolation.renames"): parse_str(dst, f"isolation.renames.{src}")
                for src, dst in renames_raw.items()
            },
            excludes=(
                parse_str_list(isolation_cfg.get("excludes"), "isolation.excludes")
                if "excludes" in isolation_cfg
                else DEFAULT_EXCLUDES
            ),
        )

        merge_cfg = get_mapping("merge")
        if "service_dirs" in merge_cfg:
            service_dirs = tuple(
                d if d.endswith("/") else d + "/"
                for d in parse_str_list(merge_cfg.get("service_dirs"), "merge.service_dirs")
            )
        else:
            service_dirs = (SERVICES_DIR, f"{namespace.prefix}/{SERVICES_DIR}")

        manifest_cfg = get_mapping("manifest")
        defaults = ManifestSettings()
        extra_raw = manifest_cfg.get("extra") or {}
        if not isinstance(extra_raw, Mapping):
            raise ValueError("Invalid config type for manifest.extra: expected mapping")
        extra: list[tuple[str, str | bool]] = []
        for name, value in extra_raw.items():
            extra.append(
                (
                    parse_str(name, "manifest.extra"),
                    value if isinstance(value, bool) else parse_str(value, f"manifest.extra.{name}"),
                )
            )
        version_prefix = manifest_cfg.get("version_prefix", "")
        if version_prefix is None:
            version_prefix = ""
        if not isinstance(version_prefix, str):
            raise ValueError("Invalid config type for manifest.version_prefix: expected string")
        manifest = ManifestSettings(
            main_class=parse_str(manifest_cfg.get("main_class", defaults.main_class), "manifest.main_class"),
            agent_class=parse_str(manifest_cfg.get("agent_class", defaults.agent_class), "manifest.agent_class"),
            premain_class=parse_str(
                manifest_cfg.get("premain_class", defaults.premain_class), "manifest.premain_class"
            ),
            vendor=parse_str(manifest_cfg.get("vendor", defaults.vendor), "manifest.vendor"),
            version_prefix=version_prefix.strip(),
            extra=tuple(extra),
        )

        config = BundleConfig(
            project=project,
            build=build,
            bootstrap=library_sets["bootstrap"],
            agent_libs=library_sets["agent_libs"],
            upstream_agent=library_sets["upstream_agent"],
            relocation_rules=tuple(rules),
            shared=shared,
            namespace=namespace,
            service_dirs=service_dirs,
            manifest=manifest,
        )
        return config, warnings
