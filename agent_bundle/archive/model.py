from __future__ import annotations

import fnmatch
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

MANIFEST_PATH = "META-INF/MANIFEST.MF"
SERVICES_DIR = "META-INF/services/"
CLASS_SUFFIX = ".class"

SIGNATURE_GLOBS: tuple[str, ...] = (
    "META-INF/*.SF",
    "META-INF/*.DSA",
    "META-INF/*.RSA",
    "META-INF/*.EC",
)
INDEX_LIST_PATH = "META-INF/INDEX.LIST"
MODULE_INFO_GLOBS: tuple[str, ...] = ("module-info.class", "META-INF/versions/*/module-info.class")
# Input metadata dropped at every merge.
MERGE_DROP_GLOBS: tuple[str, ...] = (
    MANIFEST_PATH,
    INDEX_LIST_PATH,
    *SIGNATURE_GLOBS,
    *MODULE_INFO_GLOBS,
)

DateTime = tuple[int, int, int, int, int, int]


class EntryKind(str, Enum):
    CLASS = "class"
    RESOURCE = "resource"
    METADATA = "metadata"


def classify_path(path: str) -> EntryKind:
    if path.endswith(CLASS_SUFFIX):
        return EntryKind.CLASS
    if path in (MANIFEST_PATH, INDEX_LIST_PATH):
        return EntryKind.METADATA
    if any(fnmatch.fnmatchcase(path, pattern) for pattern in SIGNATURE_GLOBS):
        return EntryKind.METADATA
    return EntryKind.RESOURCE


def normalize_entry_path(raw: str) -> str:
    path = raw.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    path = path.lstrip("/")
    if not path:
        raise ValueError(f"Invalid archive entry path: {raw!r}")
    parts = path.split("/")
    if any(part in ("", ".", "..") for part in parts[:-1]) or parts[-1] in (".", ".."):
        raise ValueError(f"Invalid archive entry path: {raw!r}")
    return path


@dataclass(frozen=True)
class ArchiveEntry:
    path: str
    content: bytes = field(repr=False)
    kind: EntryKind
    origin: str | None = None
    date_time: DateTime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.path, str) or not self.path or self.path.endswith("/"):
            raise ValueError(f"ArchiveEntry.path must be a non-empty file path (got {self.path!r})")
        if not isinstance(self.content, bytes):
            raise TypeError(
                f"ArchiveEntry.content must be bytes (type={type(self.content).__name__})"
            )
        if not isinstance(self.kind, EntryKind):
            object.__setattr__(self, "kind", EntryKind(self.kind))

    @classmethod
    def for_path(
        cls,
        path: str,
        content: bytes,
        *,
        origin: str | None = None,
        date_time: DateTime | None = None,
    ) -> "ArchiveEntry":
        return cls(
            path=path,
            content=content,
            kind=classify_path(path),
            origin=origin,
            date_time=date_time,
        )

    def moved(self, path: str, *, content: bytes | None = None, kind: EntryKind | None = None) -> "ArchiveEntry":
        return ArchiveEntry(
            path=path,
            content=self.content if content is None else content,
            kind=self.kind if kind is None else kind,
            origin=self.origin,
            date_time=self.date_time,
        )


@dataclass(frozen=True)
class Archive:
    """An ordered, immutable set of entries with unique paths."""

    name: str
    entries: tuple[ArchiveEntry, ...] = field(default=(), repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", tuple(self.entries))
        seen: set[str] = set()
        for entry in self.entries:
            if entry.path in seen:
                raise ValueError(f"Archive {self.name} has duplicate entry path: {entry.path}")
            seen.add(entry.path)

    def __iter__(self) -> Iterator[ArchiveEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, path: object) -> bool:
        return any(entry.path == path for entry in self.entries)

    def paths(self) -> tuple[str, ...]:
        return tuple(entry.path for entry in self.entries)

    def get(self, path: str) -> ArchiveEntry | None:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def count(self, kind: EntryKind) -> int:
        return sum(1 for entry in self.entries if entry.kind is kind)

    def renamed(self, name: str, entries: Iterable[ArchiveEntry] | None = None) -> "Archive":
        return Archive(name=name, entries=tuple(self.entries if entries is None else entries))


_VERSIONED_JAR_RE = re.compile(r"^(?P<artifact>.+?)-(?P<version>\d[\w.+\-]*)$")


def infer_artifact_id(path: str | Path) -> str:
    """`slf4j-api-1.7.36.jar` -> `slf4j-api`; unversioned names keep their stem."""

    stem = Path(path).name
    for suffix in (".jar", ".zip"):
        if stem.lower().endswith(suffix):
            stem = stem[: -len(suffix)]
            break
    match = _VERSIONED_JAR_RE.match(stem)
    if match:
        return match.group("artifact")
    return stem


@dataclass(frozen=True)
class LibraryRef:
    path: Path
    coordinate: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", Path(self.path))
        if self.coordinate is not None:
            coordinate = str(self.coordinate).strip()
            parts = coordinate.split(":")
            if len(parts) < 2 or not all(part.strip() for part in parts[:2]):
                raise ValueError(
                    f"Library coordinate must look like group:artifact[:version] (got {self.coordinate!r})"
                )
            object.__setattr__(self, "coordinate", coordinate)

    @property
    def group_id(self) -> str | None:
        if self.coordinate is None:
            return None
        return self.coordinate.split(":")[0]

    @property
    def artifact_id(self) -> str:
        if self.coordinate is not None:
            return self.coordinate.split(":")[1]
        return infer_artifact_id(self.path)

    @property
    def label(self) -> str:
        return self.coordinate or self.path.name


@dataclass(frozen=True)
class LibrarySet:
    name: str
    members: tuple[LibraryRef, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("LibrarySet.name must be a non-empty string")
        object.__setattr__(self, "name", self.name.strip())
        object.__setattr__(self, "members", tuple(self.members))

    @classmethod
    def of(cls, name: str, paths: Iterable[str | Path | LibraryRef]) -> "LibrarySet":
        members = [item if isinstance(item, LibraryRef) else LibraryRef(Path(item)) for item in paths]
        return cls(name=name, members=tuple(members))

    def __iter__(self) -> Iterator[LibraryRef]:
        return iter(self.members)

    def __len__(self) -> int:
        return len(self.members)
