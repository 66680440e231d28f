"""Unit tests for the bounded worker pool."""

import threading
import time

import pytest

from batch import BatchResult, Deadline, DeadlineExceeded, client_config, run_batch


def fail_on(bad):
    def func(item):
        if item in bad:
            raise OSError(f"cannot process {item}")
        return item * 10
    return func


@pytest.mark.parametrize("workers", [1, 4])
def test_failures_do_not_stop_other_items(workers):
    result = run_batch(range(6), fail_on({2, 4}), max_workers=workers)

    assert sorted(result.succeeded) == [(0, 0), (1, 10), (3, 30), (5, 50)]
    assert sorted(f.item for f in result.failures) == [2, 4]
    assert all(isinstance(f.error, OSError) for f in result.failures)
    assert not result.ok


def test_empty_input_is_ok():
    result = run_batch([], fail_on(set()), max_workers=3)
    assert result == BatchResult()
    assert result.ok


def test_concurrency_is_bounded():
    lock = threading.Lock()
    active = 0
    peak = 0

    def func(item):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1
        return item

    result = run_batch(range(20), func, max_workers=3)

    assert len(result.succeeded) == 20
    assert peak <= 3


@pytest.mark.parametrize("workers", [1, 2])
def test_cancelled_deadline_reads_no_input(workers):
    calls = []
    read = []
    deadline = Deadline()
    deadline.cancel()

    def listing():
        for item in range(50):
            read.append(item)
            yield item

    result = run_batch(listing(), calls.append, max_workers=workers, deadline=deadline)

    assert calls == []
    assert read == []
    assert result.stopped_early
    assert not result.ok


@pytest.mark.parametrize("workers", [1, 2])
def test_deadline_stops_reading_the_input(workers):
    read = []
    deadline = Deadline()

    def listing():
        for item in range(50):
            read.append(item)
            yield item

    cancelled = threading.Event()

    def func(item):
        if item == 0:
            deadline.cancel()
            cancelled.set()
        else:
            cancelled.wait(5)
        return item

    result = run_batch(listing(), func, max_workers=workers, deadline=deadline)

    assert len(read) <= workers * 2
    assert result.stopped_early
    assert len(result.succeeded) + len(result.failures) == len(read)
    assert all(isinstance(f.error, DeadlineExceeded) for f in result.failures)


def test_exhausted_input_is_not_stopped_early():
    result = run_batch(range(3), fail_on(set()), max_workers=2, deadline=Deadline(60))
    assert not result.stopped_early
    assert result.ok


def test_deadline_remaining():
    assert Deadline().remaining() is None
    assert not Deadline().expired()
    assert 0 < Deadline(30).remaining() <= 30


def test_input_is_consumed_lazily_and_listing_errors_propagate():
    calls = []

    def listing():
        yield "a"
        yield "b"
        raise RuntimeError("listing failed")

    with pytest.raises(RuntimeError, match="listing failed"):
        run_batch(listing(), calls.append, max_workers=1)
    assert calls == ["a", "b"]


def test_rejects_non_positive_workers():
    with pytest.raises(ValueError):
        run_batch([1], fail_on(set()), max_workers=0)


def test_client_config_caps_timeouts_to_deadline():
    assert client_config().read_timeout == 60
    config = client_config(Deadline(5))
    assert 1 <= config.read_timeout <= 5
    assert config.connect_timeout <= config.read_timeout
    assert config.retries["mode"] == "standard"


def test_client_config_pool_matches_worker_count():
    assert client_config().max_pool_connections == 10
    assert client_config(max_workers=16).max_pool_connections == 16
