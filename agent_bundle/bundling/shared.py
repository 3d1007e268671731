"""Libraries shared between the bootstrap tier and the isolated agent classes.

The isolated instrumentation code links against these types exactly as the
bootstrap tier defines them. Their archives must therefore never be bundled
into the isolated namespace, and no relocation rule may rename their packages.
"""

from __future__ import annotations

from dataclasses import dataclass

from agent_bundle.archive.model import Archive, LibraryRef, LibrarySet
from agent_bundle.framework.errors import SharedContractViolation


def _package_to_path(package: str) -> str:
    return package.strip().strip(".").replace(".", "/")


@dataclass(frozen=True)
class SharedLibrary:
    coordinate: str
    packages: tuple[str, ...]

    def __post_init__(self) -> None:
        parts = str(self.coordinate).strip().split(":")
        if len(parts) != 2 or not all(part.strip() for part in parts):
            raise ValueError(
                f"Shared library coordinate must look like group:artifact (got {self.coordinate!r})"
            )
        object.__setattr__(self, "coordinate", ":".join(part.strip() for part in parts))
        packages = tuple(str(p).strip().strip(".") for p in self.packages if str(p).strip())
        if not packages:
            raise ValueError(f"Shared library {self.coordinate} must declare at least one package")
        object.__setattr__(self, "packages", packages)

    @property
    def group_id(self) -> str:
        return self.coordinate.split(":")[0]

    @property
    def artifact_id(self) -> str:
        return self.coordinate.split(":")[1]

    def matches(self, ref: LibraryRef) -> bool:
        if ref.artifact_id != self.artifact_id:
            return False
        return ref.group_id is None or ref.group_id == self.group_id


DEFAULT_SHARED_LIBRARIES: tuple[SharedLibrary, ...] = (
    SharedLibrary("org.slf4j:slf4j-api", ("org.slf4j",)),
    SharedLibrary("io.opentelemetry:opentelemetry-api", ("io.opentelemetry.api",)),
    SharedLibrary("io.opentelemetry:opentelemetry-context", ("io.opentelemetry.context",)),
    SharedLibrary("io.opentelemetry:opentelemetry-semconv", ("io.opentelemetry.semconv",)),
)


@dataclass(frozen=True)
class SharedContract:
    libraries: tuple[SharedLibrary, ...] = DEFAULT_SHARED_LIBRARIES

    def __post_init__(self) -> None:
        object.__setattr__(self, "libraries", tuple(self.libraries))
        seen: set[str] = set()
        for library in self.libraries:
            if library.coordinate in seen:
                raise ValueError(f"Duplicate shared library: {library.coordinate}")
            seen.add(library.coordinate)

    @classmethod
    def default(cls) -> "SharedContract":
        return cls(DEFAULT_SHARED_LIBRARIES)

    @classmethod
    def empty(cls) -> "SharedContract":
        return cls(())

    @property
    def package_paths(self) -> tuple[str, ...]:
        return tuple(
            _package_to_path(package) for library in self.libraries for package in library.packages
        )

    def covers(self, internal_name: str) -> bool:
        """True when a slash- or dot-form name lies inside a shared package."""

        name = internal_name.replace(".", "/")
        return any(name == prefix or name.startswith(prefix + "/") for prefix in self.package_paths)

    def library_for(self, ref: LibraryRef) -> SharedLibrary | None:
        for library in self.libraries:
            if library.matches(ref):
                return library
        return None

    def partition(self, library_set: LibrarySet) -> tuple[LibrarySet, tuple[LibraryRef, ...]]:
        """Split a set into (members to bundle, shared members excluded from bundling)."""

        kept: list[LibraryRef] = []
        excluded: list[LibraryRef] = []
        for ref in library_set:
            if self.library_for(ref) is None:
                kept.append(ref)
            else:
                excluded.append(ref)
        return LibrarySet(name=library_set.name, members=tuple(kept)), tuple(excluded)

    def leaked_paths(self, archive: Archive, *, prefix: str) -> tuple[str, ...]:
        root = prefix.strip("/") + "/"
        leaked: list[str] = []
        for entry in archive:
            if not entry.path.startswith(root):
                continue
            relative = entry.path[len(root) :]
            directory = relative.rsplit("/", 1)[0] if "/" in relative else ""
            if directory and self.covers(directory):
                leaked.append(entry.path)
        return tuple(leaked)

    def verify_isolated(self, archive: Archive, *, prefix: str) -> None:
        leaked = self.leaked_paths(archive, prefix=prefix)
        if leaked:
            shown = ", ".join(leaked[:5])
            more = f" (+{len(leaked) - 5} more)" if len(leaked) > 5 else ""
            raise SharedContractViolation(
                f"Shared library classes found in isolated namespace {prefix}/: {shown}{more}"
            )
