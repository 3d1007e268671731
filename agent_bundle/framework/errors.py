from __future__ import annotations

from collections.abc import Mapping, Sequence


class BundleError(RuntimeError):
    """Base class for fatal bundle build failures."""


class AmbiguousRelocation(BundleError):
    """Raised when relocation rules (or their results) are not injective."""


class DuplicateEntryConflict(BundleError):
    """Raised under the FAIL duplicate policy when inputs share an entry path."""

    def __init__(self, conflicts: Mapping[str, Sequence[str]], *, archive: str | None = None):
        self.conflicts: dict[str, tuple[str, ...]] = {
            path: tuple(origins) for path, origins in conflicts.items()
        }
        self.archive = archive
        self.paths: tuple[str, ...] = tuple(self.conflicts)

        shown = list(self.conflicts.items())[:10]
        details = "; ".join(f"{path} (from: {', '.join(origins)})" for path, origins in shown)
        if len(self.conflicts) > len(shown):
            details += f"; ... {len(self.conflicts) - len(shown)} more"
        where = f" while merging {archive}" if archive else ""
        super().__init__(f"Duplicate entry path(s){where}: {details}")


class ArchiveReadError(BundleError):
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Cannot read archive {source}: {reason}")


class WriteFailure(BundleError):
    def __init__(self, target: str, reason: str):
        self.target = target
        self.reason = reason
        super().__init__(f"Cannot write {target}: {reason}")


class SharedContractViolation(BundleError):
    """Raised when a shared library's classes leak into the isolated namespace."""
