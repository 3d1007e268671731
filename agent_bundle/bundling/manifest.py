"""Jar manifest synthesis and rendering.

The rendered form follows the JAR manifest format: `Name: value` lines
terminated by CRLF, no line longer than 72 bytes (longer values continue on
lines starting with a single space), and a blank line ending the main section.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

MANIFEST_VERSION = "1.0"
MAX_LINE_BYTES = 72

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,69}$")

AttributeValue = str | bool


def composite_version(version: str, upstream_version: str, *, prefix: str = "") -> str:
    """`1.2.0` + `1.15.0-alpha` -> `1.2.0-otel-1.15.0-alpha` (optionally prefixed)."""

    for label, value in (("version", version), ("upstream_version", upstream_version)):
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{label} must be a non-empty string")
    return f"{prefix}{version.strip()}-otel-{upstream_version.strip()}"


def _render_value(value: AttributeValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def _wrap_line(line: str) -> Iterator[bytes]:
    encoded = line.encode("utf-8")
    limit = MAX_LINE_BYTES
    start = 0
    while len(encoded) - start > limit:
        end = start + limit
        # Never split a multi-byte UTF-8 sequence.
        while end > start and (encoded[end] & 0xC0) == 0x80:
            end -= 1
        yield encoded[start:end]
        start = end
        limit = MAX_LINE_BYTES - 1
    yield encoded[start:]


@dataclass(frozen=True)
class ManifestAttributes:
    """Ordered main-section attributes; `Manifest-Version` is always first."""

    items: tuple[tuple[str, AttributeValue], ...]

    def __post_init__(self) -> None:
        items = tuple((str(name), value) for name, value in self.items)
        seen: set[str] = set()
        for name, value in items:
            if not _NAME_RE.match(name):
                raise ValueError(f"Invalid manifest attribute name: {name!r}")
            folded = name.lower()
            if folded in seen:
                raise ValueError(f"Duplicate manifest attribute: {name}")
            seen.add(folded)
            if not isinstance(value, (str, bool)):
                raise TypeError(
                    f"Manifest attribute {name} must be str or bool (type={type(value).__name__})"
                )
            if isinstance(value, str) and any(ch in value for ch in "\r\n\x00"):
                raise ValueError(f"Manifest attribute {name} contains a line break or NUL")
        if not items or items[0][0] != "Manifest-Version":
            items = (("Manifest-Version", MANIFEST_VERSION),) + tuple(
                item for item in items if item[0].lower() != "manifest-version"
            )
        object.__setattr__(self, "items", items)

    def get(self, name: str) -> AttributeValue | None:
        folded = name.lower()
        for key, value in self.items:
            if key.lower() == folded:
                return value
        return None

    def names(self) -> tuple[str, ...]:
        return tuple(name for name, _value in self.items)

    def as_dict(self) -> dict[str, str]:
        return {name: _render_value(value) for name, value in self.items}

    def render(self) -> bytes:
        lines: list[bytes] = []
        for name, value in self.items:
            for index, chunk in enumerate(_wrap_line(f"{name}: {_render_value(value)}")):
                lines.append(chunk if index == 0 else b" " + chunk)
        return b"\r\n".join(lines) + b"\r\n\r\n"


@dataclass(frozen=True)
class ManifestSettings:
    main_class: str = "io.opentelemetry.javaagent.OpenTelemetryAgent"
    agent_class: str = "com.splunk.opentelemetry.javaagent.SplunkAgent"
    premain_class: str = "com.splunk.opentelemetry.javaagent.SplunkAgent"
    vendor: str = "Splunk"
    version_prefix: str = ""
    extra: tuple[tuple[str, AttributeValue], ...] = ()


def build_manifest(
    settings: ManifestSettings,
    *,
    version: str,
    upstream_version: str,
) -> ManifestAttributes:
    """
    Produce the bundle manifest.

    Redefinition and retransformation are always enabled: the agent attaches
    to classes that are already loaded.
    """

    items: Sequence[tuple[str, AttributeValue]] = (
        ("Manifest-Version", MANIFEST_VERSION),
        ("Main-Class", settings.main_class),
        ("Agent-Class", settings.agent_class),
        ("Premain-Class", settings.premain_class),
        ("Can-Redefine-Classes", True),
        ("Can-Retransform-Classes", True),
        ("Implementation-Vendor", settings.vendor),
        (
            "Implementation-Version",
            composite_version(version, upstream_version, prefix=settings.version_prefix),
        ),
        *settings.extra,
    )
    return ManifestAttributes(tuple(items))
