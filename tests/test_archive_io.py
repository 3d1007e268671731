import zipfile

import pytest

from agent_bundle.archive import io as archive_io
from agent_bundle.archive.io import (
    REPRODUCIBLE_DATE_TIME,
    StagedOutputs,
    atomic_output,
    copy_archive,
    read_archive,
    write_archive,
)
from agent_bundle.archive.model import Archive, ArchiveEntry, EntryKind
from agent_bundle.framework.errors import ArchiveReadError, WriteFailure
from jar_builders import class_bytes, jar_names, write_jar


def test_read_archive_classifies_entries_and_skips_directories(tmp_path):
    jar = tmp_path / "custom-1.0.jar"
    with zipfile.ZipFile(jar, "w") as zf:
        zf.writestr("com/", b"")
        zf.writestr("com/Foo.class", class_bytes("com/Foo"))
        zf.writestr("META-INF/MANIFEST.MF", b"Manifest-Version: 1.0\r\n\r\n")
        zf.writestr("config.properties", b"k=v")

    archive = read_archive(jar)

    assert archive.name == "custom-1.0.jar"
    assert archive.paths() == ("com/Foo.class", "META-INF/MANIFEST.MF", "config.properties")
    assert [entry.kind for entry in archive] == [EntryKind.CLASS, EntryKind.METADATA, EntryKind.RESOURCE]
    assert {entry.origin for entry in archive} == {"custom-1.0.jar"}


def test_read_archive_missing_file(tmp_path):
    with pytest.raises(ArchiveReadError, match="file not found"):
        read_archive(tmp_path / "missing.jar")


def test_read_archive_corrupt_file(tmp_path):
    bad = tmp_path / "bad.jar"
    bad.write_bytes(b"not a zip")

    with pytest.raises(ArchiveReadError, match="bad.jar"):
        read_archive(bad)


def test_read_archive_rejects_duplicate_names(tmp_path):
    jar = tmp_path / "dup.jar"
    with pytest.warns(UserWarning):
        with zipfile.ZipFile(jar, "w") as zf:
            zf.writestr("a.txt", b"1")
            zf.writestr("a.txt", b"2")

    with pytest.raises(ArchiveReadError, match="duplicate entry path a.txt"):
        read_archive(jar)


def test_read_archive_rejects_path_traversal(tmp_path):
    jar = write_jar(tmp_path / "evil.jar", {"../escape.txt": b"x"})

    with pytest.raises(ArchiveReadError, match="Invalid archive entry path"):
        read_archive(jar)


def test_write_archive_puts_manifest_first_with_fixed_timestamps(tmp_path):
    archive = Archive(
        name="bundle",
        entries=(
            ArchiveEntry.for_path("inst/a/B.classdata", b"b", date_time=(2020, 5, 5, 5, 5, 4)),
            ArchiveEntry.for_path("META-INF/MANIFEST.MF", b"stale"),
            ArchiveEntry.for_path("top.txt", b"t"),
        ),
    )
    dest = tmp_path / "out" / "bundle.jar"

    write_archive(archive, dest, manifest=b"Manifest-Version: 1.0\r\n\r\n")

    names = jar_names(dest)
    assert names[0] == "META-INF/MANIFEST.MF"
    assert names.count("META-INF/MANIFEST.MF") == 1
    assert "inst/" in names and "inst/a/" in names
    with zipfile.ZipFile(dest) as zf:
        assert zf.read("META-INF/MANIFEST.MF") == b"Manifest-Version: 1.0\r\n\r\n"
        assert {info.date_time for info in zf.infolist()} == {REPRODUCIBLE_DATE_TIME}


def test_write_archive_can_preserve_entry_timestamps(tmp_path):
    archive = Archive(
        name="bundle",
        entries=(ArchiveEntry.for_path("a.txt", b"a", date_time=(2020, 5, 5, 5, 5, 4)),),
    )
    dest = tmp_path / "bundle.jar"

    write_archive(archive, dest, fixed_date_time=None, add_directories=False)

    with zipfile.ZipFile(dest) as zf:
        assert zf.getinfo("a.txt").date_time == (2020, 5, 5, 5, 5, 4)


def test_write_archive_is_reproducible(tmp_path):
    archive = Archive(name="bundle", entries=(ArchiveEntry.for_path("a/b.txt", b"data"),))

    write_archive(archive, tmp_path / "one.jar")
    write_archive(archive, tmp_path / "two.jar")

    assert (tmp_path / "one.jar").read_bytes() == (tmp_path / "two.jar").read_bytes()


def test_failed_write_leaves_no_file_and_no_temporary(tmp_path, monkeypatch):
    dest = tmp_path / "bundle.jar"

    def explode(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(archive_io, "_write_entries", explode)

    with pytest.raises(WriteFailure, match="disk full"):
        write_archive(Archive(name="bundle", entries=(ArchiveEntry.for_path("a.txt", b"a"),)), dest)

    assert list(tmp_path.iterdir()) == []


def test_interrupted_write_keeps_previous_output(tmp_path):
    dest = tmp_path / "bundle.jar"
    dest.write_bytes(b"previous")

    with pytest.raises(KeyboardInterrupt):
        with atomic_output(dest) as temp_path:
            temp_path.write_bytes(b"partial")
            raise KeyboardInterrupt

    assert dest.read_bytes() == b"previous"
    assert [p.name for p in tmp_path.iterdir()] == ["bundle.jar"]


def test_copy_archive_is_byte_identical(tmp_path):
    src = write_jar(tmp_path / "a.jar", {"x.txt": b"x"})

    copy_archive(src, tmp_path / "b.jar")

    assert (tmp_path / "b.jar").read_bytes() == src.read_bytes()


def test_copy_archive_missing_source(tmp_path):
    with pytest.raises(WriteFailure):
        copy_archive(tmp_path / "missing.jar", tmp_path / "b.jar")

    assert list(tmp_path.iterdir()) == []


def test_staged_outputs_appear_only_when_promoted(tmp_path):
    archive = Archive(name="bundle", entries=(ArchiveEntry.for_path("a.txt", b"a"),))
    classified = tmp_path / "out" / "bundle-all.jar"
    main = tmp_path / "out" / "bundle.jar"

    with StagedOutputs() as staging:
        write_archive(archive, classified, staging=staging)
        copy_archive(staging.staged_path(classified), main, staging=staging)
        assert not classified.exists()
        assert not main.exists()

        promoted = staging.promote()

    assert promoted == [classified, main]
    assert main.read_bytes() == classified.read_bytes()
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["bundle-all.jar", "bundle.jar"]


def test_unpromoted_staged_outputs_are_discarded(tmp_path):
    dest = tmp_path / "bundle.jar"
    dest.write_bytes(b"previous")

    with pytest.raises(WriteFailure):
        with StagedOutputs() as staging:
            archive = Archive(name="bundle", entries=(ArchiveEntry.for_path("a.txt", b"a"),))
            write_archive(archive, dest, staging=staging)
            copy_archive(tmp_path / "missing.jar", tmp_path / "main.jar", staging=staging)

    assert dest.read_bytes() == b"previous"
    assert [p.name for p in tmp_path.iterdir()] == ["bundle.jar"]
