from __future__ import annotations

import fnmatch
import logging
from collections.abc import Collection, Sequence
from enum import Enum

from agent_bundle.archive.model import MERGE_DROP_GLOBS, SERVICES_DIR, Archive, ArchiveEntry
from agent_bundle.framework.errors import DuplicateEntryConflict

logger = logging.getLogger(__name__)


class DuplicatePolicy(str, Enum):
    """How a merge treats two inputs that contain the same entry path.

    FAIL: any duplicate is a build error listing every conflicting path.
    EXCLUDE: the first entry (in input order) wins; later ones are dropped.
    """

    FAIL = "fail"
    EXCLUDE = "exclude"


def _is_service_file(path: str, service_dirs: Sequence[str]) -> bool:
    for directory in service_dirs:
        if path.startswith(directory):
            name = path[len(directory) :]
            return bool(name) and "/" not in name
    return False


def _merge_service_lines(contents: Sequence[bytes]) -> bytes:
    lines: list[bytes] = []
    seen: set[bytes] = set()
    for content in contents:
        for raw in content.splitlines():
            line = raw.strip()
            if not line or line in seen:
                continue
            seen.add(line)
            lines.append(line)
    return b"\n".join(lines) + b"\n" if lines else b""


def merge_archives(
    archives: Sequence[Archive],
    *,
    policy: DuplicatePolicy,
    name: str,
    drop_globs: Collection[str] = MERGE_DROP_GLOBS,
    service_dirs: Sequence[str] = (SERVICES_DIR,),
) -> Archive:
    """
    Combine `archives` in order into one archive.

    Entries matching `drop_globs` are skipped: by default input manifests,
    signature files, index lists and module descriptors.
    Service provider files directly under one of `service_dirs` are never
    duplicates: their provider lines are concatenated in input order with
    repeats removed.

    Raises:
        DuplicateEntryConflict: under `DuplicatePolicy.FAIL`, naming every
            conflicting path and the inputs that contributed it.
    """

    policy = DuplicatePolicy(policy)
    kept: dict[str, ArchiveEntry] = {}
    origins: dict[str, list[str]] = {}
    service_parts: dict[str, list[bytes]] = {}
    conflicts: dict[str, list[str]] = {}
    dropped = 0
    metadata = 0

    for archive in archives:
        for entry in archive:
            if any(fnmatch.fnmatchcase(entry.path, glob) for glob in drop_globs):
                metadata += 1
                continue
            origin = entry.origin or archive.name
            if _is_service_file(entry.path, service_dirs):
                service_parts.setdefault(entry.path, []).append(entry.content)
                kept.setdefault(entry.path, entry)
                origins.setdefault(entry.path, []).append(origin)
                continue
            if entry.path not in kept:
                kept[entry.path] = entry
                origins[entry.path] = [origin]
                continue
            if policy is DuplicatePolicy.FAIL:
                conflicts.setdefault(entry.path, list(origins[entry.path])).append(origin)
                continue
            dropped += 1

    if conflicts:
        raise DuplicateEntryConflict(conflicts, archive=name)

    merged: list[ArchiveEntry] = []
    for path, entry in kept.items():
        parts = service_parts.get(path)
        if parts is not None and len(parts) > 1:
            entry = entry.moved(path, content=_merge_service_lines(parts))
        merged.append(entry)

    logger.debug(
        "Merged %d archive(s) into %s (policy=%s): %d entries, %d duplicates excluded, "
        "%d metadata entries dropped, %d service files",
        len(archives),
        name,
        policy.value,
        len(merged),
        dropped,
        metadata,
        len(service_parts),
    )
    return Archive(name=name, entries=tuple(merged))
