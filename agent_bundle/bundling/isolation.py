from __future__ import annotations

import fnmatch
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from agent_bundle.archive.model import (
    CLASS_SUFFIX,
    INDEX_LIST_PATH,
    SIGNATURE_GLOBS,
    Archive,
    ArchiveEntry,
    EntryKind,
)
from agent_bundle.framework.errors import AmbiguousRelocation

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES: tuple[str, ...] = (INDEX_LIST_PATH, *SIGNATURE_GLOBS)
# Clashes with a `license/` directory on case-insensitive filesystems.
DEFAULT_RENAMES: Mapping[str, str] = {"LICENSE": "LICENSE.renamed"}


@dataclass(frozen=True)
class NamespacePlan:
    """Where isolated entries go and how they are disguised.

    `renames` keys are archive-root paths; `excludes` are globs matched against
    the entry path before it is moved under `prefix`.
    """

    prefix: str = "inst"
    class_suffix: str = CLASS_SUFFIX
    isolated_suffix: str = ".classdata"
    renames: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_RENAMES))
    excludes: tuple[str, ...] = DEFAULT_EXCLUDES

    def __post_init__(self) -> None:
        prefix = str(self.prefix or "").strip().strip("/")
        if not prefix:
            raise ValueError("NamespacePlan.prefix must be a non-empty path")
        object.__setattr__(self, "prefix", prefix)
        for label, value in (("class_suffix", self.class_suffix), ("isolated_suffix", self.isolated_suffix)):
            if not isinstance(value, str) or not value.startswith(".") or len(value) < 2:
                raise ValueError(f"NamespacePlan.{label} must look like '.ext' (got {value!r})")
        if self.class_suffix == self.isolated_suffix:
            raise ValueError("NamespacePlan.isolated_suffix must differ from class_suffix")
        object.__setattr__(self, "renames", dict(self.renames))
        object.__setattr__(self, "excludes", tuple(self.excludes))

    def is_excluded(self, path: str) -> bool:
        return any(fnmatch.fnmatchcase(path, pattern) for pattern in self.excludes)

    def isolated_path(self, path: str) -> str:
        renamed = self.renames.get(path, path)
        if renamed.endswith(self.class_suffix):
            renamed = renamed[: -len(self.class_suffix)] + self.isolated_suffix
        return f"{self.prefix}/{renamed}"


def isolate_archive(archive: Archive, plan: NamespacePlan, *, name: str | None = None) -> Archive:
    """Move every entry under `plan.prefix` and disguise class entries.

    Isolated class entries lose the `class` kind: nothing a standard class
    loader would pick up is left behind.

    Raises:
        AmbiguousRelocation: if two entries land on the same isolated path
            (`Foo.class` next to `Foo.classdata`, or `LICENSE` next to
            `LICENSE.renamed`).
    """

    isolated: list[ArchiveEntry] = []
    sources: dict[str, ArchiveEntry] = {}
    excluded = 0
    for entry in archive:
        if plan.is_excluded(entry.path):
            excluded += 1
            continue
        target = plan.isolated_path(entry.path)
        if target in sources:
            first = sources[target]
            raise AmbiguousRelocation(
                f"{archive.name}: {first.path} ({first.origin or archive.name}) and "
                f"{entry.path} ({entry.origin or archive.name}) both isolate to {target}"
            )
        sources[target] = entry
        kind = EntryKind.RESOURCE if entry.kind is EntryKind.CLASS else entry.kind
        isolated.append(entry.moved(target, kind=kind))

    logger.debug(
        "Isolated %s under %s/: %d entries kept, %d excluded",
        archive.name,
        plan.prefix,
        len(isolated),
        excluded,
    )
    return archive.renamed(name or archive.name, isolated)
