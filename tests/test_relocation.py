import pytest

from agent_bundle.archive.model import Archive, ArchiveEntry
from agent_bundle.bundling.classfile import utf8_constants
from agent_bundle.bundling.relocation import RelocationMap, RelocationRule, relocate_archive, relocate_entry
from agent_bundle.bundling.shared import SharedContract
from agent_bundle.framework.errors import AmbiguousRelocation, ArchiveReadError
from jar_builders import class_bytes


def _map(*pairs, shared=None) -> RelocationMap:
    return RelocationMap([RelocationRule(pattern, shaded) for pattern, shaded in pairs], shared=shared)


def _archive(name: str, entries: dict[str, bytes]) -> Archive:
    return Archive(
        name=name,
        entries=tuple(ArchiveEntry.for_path(path, content, origin=name) for path, content in entries.items()),
    )


def test_rewrite_class_covers_internal_descriptor_and_dotted_forms():
    relocation = _map(("com.foo", "shaded.com.foo"))
    data = class_bytes(
        "com/foo/Bar",
        super_name="com/foo/Base",
        strings=["com.foo.Impl"],
        utf8=[
            "(Lcom/foo/Baz;[Lcom/foo/Qux;)V",
            "Ljava/util/List<Lcom/foo/Baz;>;",
            "(ILcom/foo/Baz;)V",
            "(JZLcom/foo/Baz;)Lcom/foo/Baz;",
            "([ILcom/foo/Baz;)V",
            "<T:Ljava/lang/Object;>(TT;Lcom/foo/Baz;)V",
        ],
    )

    assert utf8_constants(relocation.rewrite_class(data)) == [
        b"shaded/com/foo/Bar",
        b"shaded/com/foo/Base",
        b"shaded.com.foo.Impl",
        b"(Lshaded/com/foo/Baz;[Lshaded/com/foo/Qux;)V",
        b"Ljava/util/List<Lshaded/com/foo/Baz;>;",
        b"(ILshaded/com/foo/Baz;)V",
        b"(JZLshaded/com/foo/Baz;)Lshaded/com/foo/Baz;",
        b"([ILshaded/com/foo/Baz;)V",
        b"<T:Ljava/lang/Object;>(TT;Lshaded/com/foo/Baz;)V",
    ]


def test_prefixes_match_whole_package_segments_only():
    relocation = _map(("com.foo", "shaded.com.foo"))

    assert relocation.relocate_class_name("com/foobar/X") == "com/foobar/X"
    assert relocation.relocate_class_name("com.foobar.X") == "com.foobar.X"
    assert relocation.relocate_class_name("org/com/foo/X") == "org/com/foo/X"
    assert relocation.relocate_class_name("com/foo/X") == "shaded/com/foo/X"


def test_longest_pattern_wins():
    relocation = _map(("com.foo", "a.foo"), ("com.foo.inner", "b.inner"))

    assert relocation.relocate_class_name("com/foo/inner/X") == "b/inner/X"
    assert relocation.relocate_class_name("com/foo/X") == "a/foo/X"


@pytest.mark.parametrize(
    "pairs, message",
    [
        ((("com.foo", "x.foo"), ("com.foo", "y.foo")), "Duplicate relocation pattern"),
        ((("com.foo", "x.same"), ("com.bar", "x.same")), "is shared by"),
        ((("com.foo", "x.lib"), ("com.bar", "x.lib.bar")), "targets overlap"),
        ((("com.foo", "com.foo.shaded"),), "overlaps pattern"),
        ((("com.foo", "x.foo"), ("x", "y.x")), "overlaps pattern"),
    ],
)
def test_non_injective_maps_are_rejected_at_construction(pairs, message):
    with pytest.raises(AmbiguousRelocation, match=message):
        _map(*pairs)


def test_relocation_is_idempotent():
    relocation = _map(("com.foo", "shaded.com.foo"), ("net.lib", "shaded.net.lib"))
    archive = _archive(
        "lib.jar",
        {
            "com/foo/Bar.class": class_bytes("com/foo/Bar", strings=["net.lib.Thing"]),
            "net/lib/res.txt": b"com.foo.Bar",
            "META-INF/services/com.foo.Spi": b"com.foo.Bar\n",
        },
    )

    once = relocate_archive(archive, relocation)
    twice = relocate_archive(once, relocation)

    assert [(e.path, e.content) for e in twice] == [(e.path, e.content) for e in once]


def test_relocate_archive_preserves_entry_count_and_rewrites_service_files():
    relocation = _map(("com.foo", "shaded.com.foo"))
    archive = _archive(
        "lib.jar",
        {
            "com/foo/Bar.class": class_bytes("com/foo/Bar"),
            "com/foo/messages.properties": b"greeting=hi",
            "META-INF/services/com.foo.Spi": b"com.foo.Bar\n# comment\n",
            "README.txt": b"com.foo is untouched in plain resources",
        },
    )

    relocated = relocate_archive(archive, relocation)

    assert len(relocated) == len(archive)
    assert relocated.paths() == (
        "shaded/com/foo/Bar.class",
        "shaded/com/foo/messages.properties",
        "META-INF/services/shaded.com.foo.Spi",
        "README.txt",
    )
    assert relocated.get("META-INF/services/shaded.com.foo.Spi").content == b"shaded.com.foo.Bar\n# comment\n"
    assert relocated.get("README.txt").content == b"com.foo is untouched in plain resources"


def test_two_entries_relocating_onto_one_path_is_ambiguous():
    relocation = _map(("com.foo", "shaded.com.foo"))
    archive = _archive(
        "lib.jar",
        {
            "com/foo/A.txt": b"1",
            "shaded/com/foo/A.txt": b"2",
        },
    )

    with pytest.raises(AmbiguousRelocation, match="both relocate to shaded/com/foo/A.txt"):
        relocate_archive(archive, relocation)


def test_rule_excludes_keep_matching_names():
    relocation = RelocationMap(
        [RelocationRule("com.foo", "shaded.com.foo", excludes=("com.foo.api.*",))]
    )

    assert relocation.relocate_class_name("com/foo/api/Public") == "com/foo/api/Public"
    assert relocation.relocate_class_name("com/foo/impl/Hidden") == "shaded/com/foo/impl/Hidden"


def test_shared_packages_pass_through_byte_identical():
    relocation = _map(("org", "shaded.org"), shared=SharedContract.default())
    data = class_bytes("org/slf4j/Logger", strings=["org.slf4j.LoggerFactory"])
    entry = ArchiveEntry.for_path("org/slf4j/Logger.class", data, origin="slf4j-api.jar")

    relocated = relocate_entry(entry, relocation)

    assert relocated is entry
    assert relocation.relocate_class_name("org/other/Thing") == "shaded/org/other/Thing"


def test_malformed_class_names_the_input():
    relocation = _map(("com.foo", "shaded.com.foo"))
    entry = ArchiveEntry.for_path("com/foo/Broken.class", b"\xca\xfe\xba\xbe", origin="broken-1.0.jar")

    with pytest.raises(ArchiveReadError, match="broken-1.0.jar"):
        relocate_entry(entry, relocation)


def test_invalid_package_names_are_rejected():
    with pytest.raises(ValueError, match="dotted package name"):
        RelocationRule("com/foo", "shaded.com.foo")
