"""Archive transformations that make up a bundle build.

- `relocation`: package relocation of classes, resources and service files
- `isolation`: moving a library set under the private `inst/` namespace
- `merge`: the single merge primitive and its duplicate policies
- `manifest`: jar manifest synthesis
- `shared`: the libraries shared with the bootstrap tier
"""

from agent_bundle.bundling.isolation import NamespacePlan, isolate_archive
from agent_bundle.bundling.manifest import (
    ManifestAttributes,
    ManifestSettings,
    build_manifest,
    composite_version,
)
from agent_bundle.bundling.merge import DuplicatePolicy, merge_archives
from agent_bundle.bundling.relocation import (
    RelocationMap,
    RelocationRule,
    relocate_archive,
    relocate_entry,
)
from agent_bundle.bundling.shared import SharedContract, SharedLibrary

__all__ = [
    "DuplicatePolicy",
    "ManifestAttributes",
    "ManifestSettings",
    "NamespacePlan",
    "RelocationMap",
    "RelocationRule",
    "SharedContract",
    "SharedLibrary",
    "build_manifest",
    "composite_version",
    "isolate_archive",
    "merge_archives",
    "relocate_archive",
    "relocate_entry",
]
