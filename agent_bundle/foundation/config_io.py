from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

CONFIG_ENV_VAR = "AGENT_BUNDLE_CONFIG"
LOCAL_OVERLAY_NAME = "config.local.yaml"
ROOT_MARKERS = ("pyproject.toml", ".git")


def find_repo_root(start: str | os.PathLike[str] | None = None) -> str:
    """Nearest ancestor of `start` (default: cwd) holding a pyproject.toml or .git."""

    origin = Path(start or Path.cwd()).resolve()
    if origin.is_file():
        origin = origin.parent

    for directory in (origin, *origin.parents):
        if (directory / "pyproject.toml").is_file() or (directory / ".git").exists():
            return str(directory)

    raise FileNotFoundError(
        f"Cannot locate repo root: searched from {origin} for {', '.join(ROOT_MARKERS)}"
    )


def read_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


def overlay_config(base: Any, overlay: Any, *, at: str = "") -> Any:
    """Apply `overlay` on top of `base`.

    Mappings merge key by key, lists are replaced whole, scalars are replaced.
    An explicit null in the overlay clears the value. Any other change of
    shape is an error naming the dotted key.
    """

    if overlay is None or base is None:
        return overlay

    base_is_map = isinstance(base, Mapping)
    base_is_list = isinstance(base, (list, tuple))
    overlay_is_map = isinstance(overlay, Mapping)
    overlay_is_list = isinstance(overlay, (list, tuple))

    if base_is_map != overlay_is_map or base_is_list != overlay_is_list:
        raise ValueError(
            f"Invalid config overlay merge at {at or '<root>'}: "
            f"base is {type(base).__name__} but overlay is {type(overlay).__name__}"
        )

    if overlay_is_list:
        return list(overlay)
    if not overlay_is_map:
        return overlay

    merged = dict(base)
    for key, value in overlay.items():
        child = f"{at}.{key}" if at else str(key)
        merged[key] = overlay_config(base[key], value, at=child) if key in base else value
    return merged


def load_config(
    *,
    config_path: str | os.PathLike[str] | None = None,
    env_var: str | None = CONFIG_ENV_VAR,
    config_name: str = "config",
    config_type: str = ".yaml",
    config_rel_path: str = "config",
    start_dir: str | os.PathLike[str] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load build configuration from YAML, returning (config, meta).

    Resolution order:
      1. `config_path` (explicit) or the `env_var` environment variable: a single file,
         no local overlay.
      2. `<repo_root>/<config_rel_path>/<config_name><config_type>`, overlaid with
         `config.local.yaml` from the same directory when present.
    """

    if config_path is not None:
        single, mode = str(config_path).strip(), "explicit"
    else:
        single, mode = (os.environ.get(env_var, "").strip() if env_var else ""), "env"

    if single:
        path = Path(os.path.expandvars(single)).expanduser().absolute()
        return read_yaml_mapping(path), {
            "mode": mode,
            "paths": [str(path)],
            "env_var": env_var,
            "repo_root": None,
        }

    repo_root: str | None = None
    config_dir = Path(config_rel_path)
    if not config_dir.is_absolute():
        repo_root = find_repo_root(start_dir)
        config_dir = Path(repo_root) / config_dir

    base_path = (config_dir / f"{config_name}{config_type}").absolute()
    if not base_path.exists():
        raise FileNotFoundError(f"Missing base config file: {base_path}")

    cfg = read_yaml_mapping(base_path)
    paths = [str(base_path)]

    local_path = (config_dir / LOCAL_OVERLAY_NAME).absolute()
    if local_path.exists():
        cfg = overlay_config(cfg, read_yaml_mapping(local_path))
        paths.append(str(local_path))

    return cfg, {
        "mode": "base+local" if len(paths) > 1 else "base",
        "paths": paths,
        "env_var": env_var,
        "repo_root": repo_root,
    }
