import logging

import pytest

from agent_bundle.archive.model import Archive, ArchiveEntry
from agent_bundle.bundling.merge import DuplicatePolicy, merge_archives
from agent_bundle.framework.errors import DuplicateEntryConflict


def _archive(name: str, entries: dict[str, bytes]) -> Archive:
    return Archive(
        name=name,
        entries=tuple(ArchiveEntry.for_path(path, content, origin=name) for path, content in entries.items()),
    )


def test_fail_policy_names_every_conflicting_path_and_its_modules():
    first = _archive("custom.jar", {"shared.properties": b"a", "a/A.class": b"1", "x.txt": b"x"})
    second = _archive("profiler.jar", {"shared.properties": b"b", "a/A.class": b"2"})
    third = _archive("netty.jar", {"shared.properties": b"c"})

    with pytest.raises(DuplicateEntryConflict) as excinfo:
        merge_archives([first, second, third], policy=DuplicatePolicy.FAIL, name="agent-libs")

    err = excinfo.value
    assert err.paths == ("shared.properties", "a/A.class")
    assert err.conflicts["shared.properties"] == ("custom.jar", "profiler.jar", "netty.jar")
    assert "shared.properties" in str(err)
    assert "profiler.jar" in str(err)
    assert err.archive == "agent-libs"


def test_fail_policy_without_overlap_is_a_plain_union():
    first = _archive("a.jar", {"a/A.class": b"1", "a/a.txt": b"t"})
    second = _archive("b.jar", {"b/B.class": b"2"})

    merged = merge_archives([first, second], policy=DuplicatePolicy.FAIL, name="out")

    assert len(merged) == len(first) + len(second)
    assert merged.paths() == ("a/A.class", "a/a.txt", "b/B.class")


def test_exclude_policy_keeps_first_entry_and_logs_no_warning(caplog):
    bootstrap = _archive("bootstrap.jar", {"com/splunk/Shared.class": b"bootstrap"})
    upstream = _archive("upstream.jar", {"com/splunk/Shared.class": b"upstream", "u.txt": b"u"})

    with caplog.at_level(logging.DEBUG):
        merged = merge_archives([bootstrap, upstream], policy=DuplicatePolicy.EXCLUDE, name="bundle")

    assert merged.get("com/splunk/Shared.class").content == b"bootstrap"
    assert merged.get("com/splunk/Shared.class").origin == "bootstrap.jar"
    assert len(merged) == 2
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_input_manifests_are_dropped():
    first = _archive("a.jar", {"META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\r\n", "a.txt": b"a"})
    second = _archive("b.jar", {"META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\r\n"})

    merged = merge_archives([first, second], policy=DuplicatePolicy.FAIL, name="out")

    assert merged.paths() == ("a.txt",)


def test_service_files_are_merged_instead_of_conflicting():
    first = _archive("a.jar", {"META-INF/services/com.x.Spi": b"com.a.Impl\ncom.shared.Impl\n"})
    second = _archive("b.jar", {"META-INF/services/com.x.Spi": b"com.shared.Impl\r\ncom.b.Impl"})

    merged = merge_archives([first, second], policy=DuplicatePolicy.FAIL, name="out")

    assert merged.get("META-INF/services/com.x.Spi").content == b"com.a.Impl\ncom.shared.Impl\ncom.b.Impl\n"


def test_single_service_file_is_left_untouched():
    content = b"# header\ncom.a.Impl"
    first = _archive("a.jar", {"META-INF/services/com.x.Spi": content})

    merged = merge_archives([first], policy=DuplicatePolicy.FAIL, name="out")

    assert merged.get("META-INF/services/com.x.Spi").content == content


def test_nested_service_directories_are_ordinary_entries():
    first = _archive("a.jar", {"META-INF/services/sub/file": b"1"})
    second = _archive("b.jar", {"META-INF/services/sub/file": b"2"})

    with pytest.raises(DuplicateEntryConflict, match="META-INF/services/sub/file"):
        merge_archives([first, second], policy=DuplicatePolicy.FAIL, name="out")


def test_policy_accepts_string_values():
    first = _archive("a.jar", {"x": b"1"})
    second = _archive("b.jar", {"x": b"2"})

    merged = merge_archives([first, second], policy="exclude", name="out")

    assert merged.get("x").content == b"1"


def test_signatures_index_lists_and_module_descriptors_are_dropped_not_conflicting():
    first = _archive(
        "a.jar",
        {
            "META-INF/A.SF": b"sig",
            "META-INF/A.RSA": b"rsa",
            "META-INF/INDEX.LIST": b"a",
            "module-info.class": b"\xca\xfe",
            "META-INF/versions/9/module-info.class": b"\xca\xfe",
            "a.txt": b"a",
        },
    )
    second = _archive("b.jar", {"META-INF/A.SF": b"other", "META-INF/INDEX.LIST": b"b", "module-info.class": b"x"})

    merged = merge_archives([first, second], policy=DuplicatePolicy.FAIL, name="out")

    assert merged.paths() == ("a.txt",)


def test_custom_drop_globs_replace_the_defaults():
    first = _archive("a.jar", {"META-INF/A.SF": b"sig", "notes/readme.md": b"r", "a.txt": b"a"})

    merged = merge_archives([first], policy=DuplicatePolicy.FAIL, name="out", drop_globs=("notes/*",))

    assert merged.paths() == ("META-INF/A.SF", "a.txt")
