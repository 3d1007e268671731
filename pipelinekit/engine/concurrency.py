"""Order-preserving fan-out helper for independent per-item work.

These helpers are intentionally generic (no `agent_bundle.*` dependencies).
"""

from __future__ import annotations

import concurrent.futures
from collections.abc import Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


def parallel_map(
    fn: Callable[[T], R],
    items: Sequence[T],
    *,
    max_workers: int = 1,
) -> list[R]:
    """Apply `fn` to every item, possibly concurrently, returning results in input order.

    Items must not share mutable state. The first failure (in input order) is
    re-raised after pending work is cancelled, so callers see the same error a
    sequential run would report first.
    """

    if not isinstance(max_workers, int) or isinstance(max_workers, bool) or max_workers < 1:
        raise ValueError(f"max_workers must be a positive int (got {max_workers!r})")

    items = list(items)
    if max_workers == 1 or len(items) <= 1:
        return [fn(item) for item in items]

    with concurrent.futures.ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        futures = [executor.submit(fn, item) for item in items]
        results: list[R] = []
        try:
            for future in futures:
                results.append(future.result())
        except BaseException:
            for future in futures:
                future.cancel()
            raise
        return results
