"""Minimal class-file constant pool codec.

Only `CONSTANT_Utf8` payloads carry names, descriptors and string literals, and
every other structure in a class file addresses the pool by index. Rewriting a
class therefore means re-encoding the Utf8 entries and copying everything
after the pool verbatim.

Utf8 payloads are "modified UTF-8"; rewrite callbacks receive and return raw
bytes, which is safe for ASCII name prefixes because ASCII bytes never occur
inside a multi-byte sequence.
"""

from __future__ import annotations

import struct
from collections.abc import Callable
from dataclasses import dataclass

MAGIC = 0xCAFEBABE

TAG_UTF8 = 1
TAG_INTEGER = 3
TAG_FLOAT = 4
TAG_LONG = 5
TAG_DOUBLE = 6
TAG_CLASS = 7
TAG_STRING = 8
TAG_FIELDREF = 9
TAG_METHODREF = 10
TAG_INTERFACE_METHODREF = 11
TAG_NAME_AND_TYPE = 12
TAG_METHOD_HANDLE = 15
TAG_METHOD_TYPE = 16
TAG_DYNAMIC = 17
TAG_INVOKE_DYNAMIC = 18
TAG_MODULE = 19
TAG_PACKAGE = 20

# Payload sizes (bytes after the tag) for fixed-width constants.
_FIXED_SIZES: dict[int, int] = {
    TAG_INTEGER: 4,
    TAG_FLOAT: 4,
    TAG_LONG: 8,
    TAG_DOUBLE: 8,
    TAG_CLASS: 2,
    TAG_STRING: 2,
    TAG_FIELDREF: 4,
    TAG_METHODREF: 4,
    TAG_INTERFACE_METHODREF: 4,
    TAG_NAME_AND_TYPE: 4,
    TAG_METHOD_HANDLE: 3,
    TAG_METHOD_TYPE: 2,
    TAG_DYNAMIC: 4,
    TAG_INVOKE_DYNAMIC: 4,
    TAG_MODULE: 2,
    TAG_PACKAGE: 2,
}

_HEADER_SIZE = 10  # magic u4, minor u2, major u2, constant_pool_count u2


class ClassFormatError(ValueError):
    pass


@dataclass(frozen=True)
class _PoolEntry:
    tag: int
    raw: bytes  # the full encoded entry (tag included)
    utf8: bytes | None = None


def _parse_pool(data: bytes) -> tuple[list[_PoolEntry], int]:
    if len(data) < _HEADER_SIZE:
        raise ClassFormatError("truncated class file header")
    magic, _minor, _major, pool_count = struct.unpack_from(">IHHH", data, 0)
    if magic != MAGIC:
        raise ClassFormatError(f"bad magic 0x{magic:08X}")

    entries: list[_PoolEntry] = []
    offset = _HEADER_SIZE
    index = 1
    while index < pool_count:
        if offset >= len(data):
            raise ClassFormatError(f"truncated constant pool at index {index}")
        tag = data[offset]
        if tag == TAG_UTF8:
            if offset + 3 > len(data):
                raise ClassFormatError(f"truncated Utf8 length at index {index}")
            (length,) = struct.unpack_from(">H", data, offset + 1)
            end = offset + 3 + length
            if end > len(data):
                raise ClassFormatError(f"truncated Utf8 payload at index {index}")
            entries.append(_PoolEntry(tag, data[offset:end], data[offset + 3 : end]))
            offset = end
            index += 1
            continue

        size = _FIXED_SIZES.get(tag)
        if size is None:
            raise ClassFormatError(f"unknown constant pool tag {tag} at index {index}")
        end = offset + 1 + size
        if end > len(data):
            raise ClassFormatError(f"truncated constant at index {index}")
        entries.append(_PoolEntry(tag, data[offset:end]))
        offset = end
        # Long and Double occupy two pool slots.
        index += 2 if tag in (TAG_LONG, TAG_DOUBLE) else 1

    return entries, offset


def is_class_file(data: bytes) -> bool:
    return len(data) >= 4 and struct.unpack_from(">I", data, 0)[0] == MAGIC


def utf8_constants(data: bytes) -> list[bytes]:
    """Return every Utf8 payload in the constant pool, in pool order."""

    entries, _end = _parse_pool(data)
    return [entry.utf8 for entry in entries if entry.utf8 is not None]


def rewrite_utf8(data: bytes, rewrite: Callable[[bytes], bytes]) -> bytes:
    """Return `data` with every Utf8 constant passed through `rewrite`.

    The original bytes object is returned when nothing changed.
    """

    entries, pool_end = _parse_pool(data)
    changed = False
    parts: list[bytes] = [data[:_HEADER_SIZE]]
    for entry in entries:
        if entry.utf8 is None:
            parts.append(entry.raw)
            continue
        updated = rewrite(entry.utf8)
        if updated == entry.utf8:
            parts.append(entry.raw)
            continue
        if len(updated) > 0xFFFF:
            raise ClassFormatError("rewritten Utf8 constant exceeds 65535 bytes")
        changed = True
        parts.append(struct.pack(">BH", TAG_UTF8, len(updated)) + updated)

    if not changed:
        return data
    parts.append(data[pool_end:])
    return b"".join(parts)
