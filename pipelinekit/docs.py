"""`pipelinekit` invariants and boundaries.

This module exists to make repository-wide refactors and boundary tests explicit.

Generic invariants:

1) `pipelinekit` must not import `agent_bundle.*`.
2) `pipelinekit` provides reusable engine primitives (action/block execution + recording)
   and an order-preserving fan-out helper.
3) `pipelinekit` does not define project conventions like:
   - which stages a build runs, or in what order
   - what an archive, entry, or relocation rule is
   - how stage failures map onto a project's error taxonomy

Project code should inject conventions by composing Blocks of ActionSteps outside
this package.
"""
