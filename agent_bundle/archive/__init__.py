"""Archive representation and zip/jar I/O.

- `agent_bundle.archive.model`: entries, archives, library references/sets
- `agent_bundle.archive.io`: reading, atomic writing, atomic copying
"""

from agent_bundle.archive.io import (
    REPRODUCIBLE_DATE_TIME,
    StagedOutputs,
    atomic_output,
    copy_archive,
    read_archive,
    read_library,
    write_archive,
)
from agent_bundle.archive.model import (
    MANIFEST_PATH,
    SERVICES_DIR,
    Archive,
    ArchiveEntry,
    EntryKind,
    LibraryRef,
    LibrarySet,
    classify_path,
    infer_artifact_id,
)

__all__ = [
    "MANIFEST_PATH",
    "REPRODUCIBLE_DATE_TIME",
    "SERVICES_DIR",
    "StagedOutputs",
    "Archive",
    "ArchiveEntry",
    "EntryKind",
    "LibraryRef",
    "LibrarySet",
    "atomic_output",
    "classify_path",
    "copy_archive",
    "infer_artifact_id",
    "read_archive",
    "read_library",
    "write_archive",
]
