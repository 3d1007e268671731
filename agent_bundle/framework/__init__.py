"""Project-specific framework utilities.

Structural helpers shared by the build application: configuration parsing,
the per-build runtime context and the error taxonomy. Archive transformations
live in `agent_bundle.bundling`.

Common entrypoints:

- `agent_bundle.framework.config`: `BundleConfig.from_dict` (returns warnings, honors `strict`)
- `agent_bundle.framework.errors`: `BundleError` and its subclasses

For reusable, project-agnostic pipeline primitives, use `pipelinekit`.
"""
