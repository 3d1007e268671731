import threading
import time

import pytest

from pipelinekit import parallel_map


def test_results_keep_input_order_with_many_workers():
    def slow_square(value: int) -> int:
        time.sleep(0.01 * (5 - value))
        return value * value

    assert parallel_map(slow_square, [1, 2, 3, 4], max_workers=4) == [1, 4, 9, 16]


def test_single_worker_runs_on_the_calling_thread():
    threads: list[int] = []

    def record(value: int) -> int:
        threads.append(threading.get_ident())
        return value

    assert parallel_map(record, [1, 2, 3], max_workers=1) == [1, 2, 3]
    assert set(threads) == {threading.get_ident()}


def test_first_failure_in_input_order_is_raised():
    def check(value: int) -> int:
        if value == 2:
            raise ValueError("two")
        if value == 3:
            raise KeyError("three")
        return value

    with pytest.raises(ValueError, match="two"):
        parallel_map(check, [1, 2, 3], max_workers=3)


@pytest.mark.parametrize("workers", [0, -1, True, "2"])
def test_invalid_worker_counts_are_rejected(workers):
    with pytest.raises(ValueError, match="max_workers"):
        parallel_map(lambda v: v, [1], max_workers=workers)


def test_empty_input():
    assert parallel_map(lambda v: v, [], max_workers=4) == []
