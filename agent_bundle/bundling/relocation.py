"""Package relocation ("shading") of class files, resources and service files.

A relocation rule moves every name under a package prefix to a new prefix.
Names are recognised in the three spellings a class file uses:

- internal form:   ``com/foo/Bar`` (class entries, paths)
- descriptor form: ``Lcom/foo/Bar;`` (field/method descriptors, signatures, arrays)
- dotted form:     ``com.foo.Bar`` (string literals, service provider files)

Prefixes only match whole package segments, so ``com.foo`` never touches
``com.foobar``. Because rule targets may not overlap any rule pattern (checked
when the map is built), a relocated name can never match again, which makes
relocation idempotent.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from agent_bundle.archive.model import SERVICES_DIR, Archive, ArchiveEntry, EntryKind
from agent_bundle.bundling.classfile import ClassFormatError, rewrite_utf8
from agent_bundle.bundling.shared import SharedContract
from agent_bundle.framework.errors import AmbiguousRelocation, ArchiveReadError

logger = logging.getLogger(__name__)

_PACKAGE_RE = re.compile(r"^[A-Za-z_$][\w$]*(\.[A-Za-z_$][\w$]*)*$", re.ASCII)

# Bytes that may not precede a matched name: identifier characters, separators,
# and any non-ASCII byte (part of a longer identifier).
_BOUNDARY = rb"(?<![\w$./\x80-\xff])"
_TAIL = rb"(?![\w$])"
# Characters that may directly precede the `L` of an object type inside a
# descriptor or signature, e.g. `(ILcom/foo/Bar;)V` or `[Lcom/foo/Bar;`.
_DESCRIPTOR_LEAD = rb"(?<=[BCDFIJSZ()\[;<>:^+\-*])L"


def _overlaps(a: str, b: str) -> bool:
    return a == b or a.startswith(b + "/") or b.startswith(a + "/")


@dataclass(frozen=True)
class RelocationRule:
    pattern: str
    shaded: str
    excludes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for label, value in (("pattern", self.pattern), ("shaded", self.shaded)):
            if not isinstance(value, str) or not _PACKAGE_RE.match(value.strip()):
                raise ValueError(f"Relocation {label} must be a dotted package name (got {value!r})")
        object.__setattr__(self, "pattern", self.pattern.strip())
        object.__setattr__(self, "shaded", self.shaded.strip())
        object.__setattr__(
            self, "excludes", tuple(str(item).strip() for item in self.excludes if str(item).strip())
        )

    @property
    def pattern_path(self) -> str:
        return self.pattern.replace(".", "/")

    @property
    def shaded_path(self) -> str:
        return self.shaded.replace(".", "/")

    def excludes_name(self, dotted_name: str) -> bool:
        return any(fnmatch.fnmatchcase(dotted_name, glob) for glob in self.excludes)


class RelocationMap:
    """An injective set of relocation rules.

    Raises:
        AmbiguousRelocation: if two rules share a pattern, two rules share a
            target, or any target overlaps another target or any pattern.
    """

    def __init__(self, rules: Iterable[RelocationRule], *, shared: SharedContract | None = None):
        self.rules: tuple[RelocationRule, ...] = tuple(rules)
        self.shared = shared if shared is not None else SharedContract.empty()
        self._validate()

        self._by_pattern_path = {rule.pattern_path.encode("ascii"): rule for rule in self.rules}
        self._by_pattern = {rule.pattern.encode("ascii"): rule for rule in self.rules}
        self._slash_re = self._compile(self._by_pattern_path, separator=b"/", descriptor=True)
        self._dot_re = self._compile(self._by_pattern, separator=rb"\.", descriptor=False)

    def __repr__(self) -> str:
        body = ", ".join(f"{rule.pattern}->{rule.shaded}" for rule in self.rules)
        return f"RelocationMap({body})"

    def __len__(self) -> int:
        return len(self.rules)

    def _validate(self) -> None:
        patterns: dict[str, RelocationRule] = {}
        targets: dict[str, RelocationRule] = {}
        for rule in self.rules:
            if rule.pattern_path in patterns:
                raise AmbiguousRelocation(f"Duplicate relocation pattern: {rule.pattern}")
            patterns[rule.pattern_path] = rule
            if rule.shaded_path in targets:
                other = targets[rule.shaded_path]
                raise AmbiguousRelocation(
                    f"Relocation target {rule.shaded} is shared by {other.pattern} and {rule.pattern}"
                )
            targets[rule.shaded_path] = rule

        for target, rule in targets.items():
            for other_target, other in targets.items():
                if other is not rule and _overlaps(target, other_target):
                    raise AmbiguousRelocation(
                        f"Relocation targets overlap: {rule.shaded} ({rule.pattern}) "
                        f"and {other.shaded} ({other.pattern})"
                    )
            for pattern, other in patterns.items():
                if _overlaps(target, pattern):
                    raise AmbiguousRelocation(
                        f"Relocation target {rule.shaded} ({rule.pattern}) overlaps pattern {other.pattern}"
                    )

    @staticmethod
    def _compile(prefixes: dict[bytes, RelocationRule], *, separator: bytes, descriptor: bool) -> re.Pattern[bytes] | None:
        if not prefixes:
            return None
        ordered = sorted(prefixes, key=len, reverse=True)
        alternatives = b"|".join(re.escape(prefix) for prefix in ordered)
        if descriptor:
            lead = b"(" + _DESCRIPTOR_LEAD + b"|" + _BOUNDARY + b"L?)"
        else:
            lead = _BOUNDARY + b"()"
        return re.compile(
            lead + b"(" + alternatives + b")" + _TAIL + b"((?:" + separator + rb"[\w$]+)*)"
        )

    def _skip(self, rule: RelocationRule, dotted_name: str) -> bool:
        return self.shared.covers(dotted_name) or rule.excludes_name(dotted_name)

    def _replace(self, match: re.Match[bytes], *, rules: dict[bytes, RelocationRule], separator: str) -> bytes:
        lead, prefix, rest = match.group(1), match.group(2), match.group(3)
        rule = rules[prefix]
        dotted_name = (prefix + rest).decode("ascii").replace(separator, ".")
        if self._skip(rule, dotted_name):
            return match.group(0)
        target = rule.shaded_path if separator == "/" else rule.shaded
        return lead + target.encode("ascii") + rest

    def rewrite_internal(self, data: bytes) -> bytes:
        if self._slash_re is None:
            return data
        return self._slash_re.sub(
            lambda m: self._replace(m, rules=self._by_pattern_path, separator="/"), data
        )

    def rewrite_dotted(self, data: bytes) -> bytes:
        if self._dot_re is None:
            return data
        return self._dot_re.sub(lambda m: self._replace(m, rules=self._by_pattern, separator="."), data)

    def rewrite_bytes(self, data: bytes) -> bytes:
        return self.rewrite_dotted(self.rewrite_internal(data))

    def relocate_class_name(self, name: str) -> str:
        """Relocate an internal (``com/foo/Bar``) or dotted (``com.foo.Bar``) class name."""

        return self.rewrite_bytes(name.encode("utf-8")).decode("utf-8")

    def relocate_path(self, path: str) -> str:
        if path.startswith(SERVICES_DIR):
            service = path[len(SERVICES_DIR) :]
            return SERVICES_DIR + self.rewrite_dotted(service.encode("utf-8")).decode("utf-8")
        return self.rewrite_internal(path.encode("utf-8")).decode("utf-8")

    def rewrite_class(self, data: bytes) -> bytes:
        return rewrite_utf8(data, self.rewrite_bytes)

    def rewrite_service_file(self, data: bytes) -> bytes:
        return self.rewrite_dotted(data)


def relocate_entry(entry: ArchiveEntry, relocation: RelocationMap) -> ArchiveEntry:
    path = relocation.relocate_path(entry.path)
    content = entry.content
    if entry.kind is EntryKind.CLASS:
        try:
            content = relocation.rewrite_class(entry.content)
        except ClassFormatError as exc:
            raise ArchiveReadError(entry.origin or "<unknown>", f"malformed class {entry.path}: {exc}") from exc
    elif entry.path.startswith(SERVICES_DIR):
        content = relocation.rewrite_service_file(entry.content)

    if path == entry.path and content == entry.content:
        return entry
    return entry.moved(path, content=content)


def relocate_archive(archive: Archive, relocation: RelocationMap, *, name: str | None = None) -> Archive:
    """Relocate every entry of `archive`; the entry count never changes.

    Raises:
        AmbiguousRelocation: if two entries relocate onto the same path.
        ArchiveReadError: if a class entry is not a valid class file.
    """

    relocated: list[ArchiveEntry] = []
    sources: dict[str, str] = {}
    renamed = 0
    for entry in archive:
        moved = relocate_entry(entry, relocation)
        if moved.path in sources:
            raise AmbiguousRelocation(
                f"{archive.name}: {sources[moved.path]} and {entry.path} both relocate to {moved.path}"
            )
        sources[moved.path] = entry.path
        if moved.path != entry.path:
            renamed += 1
        relocated.append(moved)

    logger.debug("Relocated %s: %d entries, %d renamed", archive.name, len(relocated), renamed)
    return archive.renamed(name or archive.name, relocated)
