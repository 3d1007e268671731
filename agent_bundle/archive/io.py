"""Reading and writing jar-like (zip) archives.

Every file this module produces is written to a temporary sibling first and
promoted with `os.replace`, so an interrupted or failed write never leaves a
partial archive at the destination path.
"""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
import tempfile
import zipfile
from collections.abc import Iterator
from pathlib import Path

from agent_bundle.archive.model import (
    MANIFEST_PATH,
    Archive,
    ArchiveEntry,
    DateTime,
    LibraryRef,
    normalize_entry_path,
)
from agent_bundle.framework.errors import ArchiveReadError, WriteFailure

logger = logging.getLogger(__name__)

# Gradle's constant timestamp for reproducible archives.
REPRODUCIBLE_DATE_TIME: DateTime = (1980, 2, 1, 0, 0, 0)

_FILE_MODE = 0o100644 << 16
_DIR_MODE = (0o040755 << 16) | 0x10


def read_archive(path: str | os.PathLike[str], *, origin: str | None = None) -> Archive:
    """Read every file entry of a zip/jar archive (directory entries are skipped)."""

    source = Path(path)
    label = origin or source.name
    if not source.is_file():
        raise ArchiveReadError(str(source), "file not found")

    entries: list[ArchiveEntry] = []
    seen: set[str] = set()
    try:
        with zipfile.ZipFile(source, "r") as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                try:
                    entry_path = normalize_entry_path(info.filename)
                except ValueError as exc:
                    raise ArchiveReadError(str(source), str(exc)) from exc
                if entry_path in seen:
                    raise ArchiveReadError(str(source), f"duplicate entry path {entry_path}")
                seen.add(entry_path)
                entries.append(
                    ArchiveEntry.for_path(
                        entry_path,
                        zf.read(info),
                        origin=label,
                        date_time=tuple(info.date_time),  # type: ignore[arg-type]
                    )
                )
    except ArchiveReadError:
        raise
    except (zipfile.BadZipFile, zipfile.LargeZipFile, RuntimeError, OSError, EOFError) as exc:
        raise ArchiveReadError(str(source), str(exc) or type(exc).__name__) from exc

    logger.debug("Read %d entries from %s", len(entries), source)
    return Archive(name=label, entries=tuple(entries))


def read_library(ref: LibraryRef) -> Archive:
    return read_archive(ref.path, origin=ref.label)


class StagedOutputs:
    """Temporary siblings of several destinations, promoted together.

    `stage(dest)` reserves a temporary file next to `dest`. Nothing reaches a
    destination until `promote()`, which runs only after every output has
    been written. Leaving the `with` block removes whatever was not promoted.
    """

    def __init__(self) -> None:
        self._pending: dict[Path, Path] = {}

    def __enter__(self) -> "StagedOutputs":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.discard()

    def stage(self, dest: str | os.PathLike[str]) -> Path:
        target = Path(dest)
        if target in self._pending:
            return self._pending[target]
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                delete=False,
                dir=str(target.parent),
                prefix=target.name + ".",
                suffix=".tmp",
            ) as handle:
                temp_path = Path(handle.name)
        except OSError as exc:
            raise WriteFailure(str(target), str(exc)) from exc
        self._pending[target] = temp_path
        return temp_path

    def staged_path(self, dest: str | os.PathLike[str]) -> Path:
        return self._pending[Path(dest)]

    def promote(self) -> list[Path]:
        promoted: list[Path] = []
        while self._pending:
            target, temp_path = next(iter(self._pending.items()))
            try:
                os.replace(temp_path, target)
            except OSError as exc:
                raise WriteFailure(str(target), str(exc)) from exc
            del self._pending[target]
            promoted.append(target)
        return promoted

    def discard(self) -> None:
        for temp_path in self._pending.values():
            _discard(temp_path)
        self._pending.clear()


@contextlib.contextmanager
def atomic_output(dest: str | os.PathLike[str]) -> Iterator[Path]:
    """Yield a temporary path next to `dest`; promote it only if the block succeeds."""

    with StagedOutputs() as staging:
        temp_path = staging.stage(dest)
        try:
            yield temp_path
        except OSError as exc:
            raise WriteFailure(str(dest), str(exc)) from exc
        staging.promote()


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Could not remove temporary file %s", path)


def _parent_dirs(path: str) -> list[str]:
    parts = path.split("/")[:-1]
    return ["/".join(parts[: i + 1]) + "/" for i in range(len(parts))]


def _write_entries(
    zf: zipfile.ZipFile,
    entries: list[tuple[str, bytes, DateTime]],
    *,
    add_directories: bool,
) -> None:
    written_dirs: set[str] = set()
    for path, content, date_time in entries:
        if add_directories:
            for directory in _parent_dirs(path):
                if directory in written_dirs:
                    continue
                written_dirs.add(directory)
                dir_info = zipfile.ZipInfo(directory, date_time=date_time)
                dir_info.external_attr = _DIR_MODE
                zf.writestr(dir_info, b"")

        info = zipfile.ZipInfo(path, date_time=date_time)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = _FILE_MODE
        zf.writestr(info, content)


def write_archive(
    archive: Archive,
    dest: str | os.PathLike[str],
    *,
    manifest: bytes | None = None,
    fixed_date_time: DateTime | None = REPRODUCIBLE_DATE_TIME,
    add_directories: bool = True,
    staging: StagedOutputs | None = None,
) -> Path:
    """
    Write `archive` to `dest` atomically.

    With `staging`, the archive is only written to its staged temporary and
    reaches `dest` when the caller promotes the staging set.

    When `manifest` is given it is written first (as `META-INF/MANIFEST.MF`, the
    position jar readers expect) and replaces any manifest entry in the archive.
    `fixed_date_time=None` preserves each entry's own timestamp.
    """

    def stamp(entry_time: DateTime | None) -> DateTime:
        if fixed_date_time is not None:
            return fixed_date_time
        return entry_time or REPRODUCIBLE_DATE_TIME

    rows: list[tuple[str, bytes, DateTime]] = []
    if manifest is not None:
        rows.append((MANIFEST_PATH, manifest, stamp(None)))
    for entry in archive:
        if manifest is not None and entry.path == MANIFEST_PATH:
            continue
        rows.append((entry.path, entry.content, stamp(entry.date_time)))

    target = Path(dest)

    def write_to(temp_path: Path) -> None:
        try:
            with zipfile.ZipFile(temp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                _write_entries(zf, rows, add_directories=add_directories)
        except (OSError, zipfile.LargeZipFile) as exc:
            raise WriteFailure(str(target), str(exc)) from exc

    if staging is not None:
        write_to(staging.stage(target))
    else:
        with atomic_output(target) as temp_path:
            write_to(temp_path)

    logger.debug("Wrote %d entries to %s", len(rows), target)
    return target


def copy_archive(
    src: str | os.PathLike[str],
    dest: str | os.PathLike[str],
    *,
    staging: StagedOutputs | None = None,
) -> Path:
    """Byte-for-byte copy of `src` to `dest`, promoted atomically (or staged)."""

    target = Path(dest)

    def copy_to(temp_path: Path) -> None:
        try:
            shutil.copyfile(src, temp_path)
        except OSError as exc:
            raise WriteFailure(str(target), str(exc)) from exc

    if staging is not None:
        copy_to(staging.stage(target))
    else:
        with atomic_output(target) as temp_path:
            copy_to(temp_path)
    return target
