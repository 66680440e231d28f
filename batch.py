"""
Run one callable over many items with a bounded thread pool.

A failure on one item is recorded and never stops the others. Results and
failures are gathered in the calling thread, so callers get plain lists back.
"""

import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Callable, Iterable

from botocore.config import Config


class DeadlineExceeded(RuntimeError):
    """The run deadline passed, or the run was cancelled, before the item started."""


class Deadline:
    """Overall time limit for a run, with manual cancellation."""

    def __init__(self, seconds: float = None):
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds if seconds else None
        self._cancelled = threading.Event()

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at


def client_config(deadline: Deadline = None, max_workers: int = 1) -> Config:
    """botocore settings sized for max_workers callers sharing one client.

    Network timeouts never outlive the run deadline.
    """
    read_timeout = 60
    remaining = deadline.remaining() if deadline else None
    if remaining is not None:
        read_timeout = max(1, min(read_timeout, int(remaining)))
    return Config(
        retries={"max_attempts": 10, "mode": "standard"},
        connect_timeout=min(10, read_timeout),
        read_timeout=read_timeout,
        max_pool_connections=max(10, max_workers),
    )


@dataclass
class ItemFailure:
    item: Any
    error: BaseException


@dataclass
class BatchResult:
    succeeded: list = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    # the deadline passed before the input was fully read
    stopped_early: bool = False

    @property
    def ok(self) -> bool:
        return not self.failures and not self.stopped_early


def _expired(deadline: Deadline | None) -> bool:
    return deadline is not None and deadline.expired()


def _call(func: Callable, item, deadline: Deadline | None):
    if _expired(deadline):
        raise DeadlineExceeded("deadline exceeded before the item was started")
    return func(item)


def run_batch(items: Iterable, func: Callable, max_workers: int = 1,
              deadline: Deadline = None) -> BatchResult:
    """Apply func to every item, isolating failures per item.

    succeeded holds (item, return value) pairs. With max_workers == 1 the
    items run one at a time in the calling thread. Once the deadline has
    passed no further items are read from the input; items already read
    but not started fail with DeadlineExceeded and stopped_early is set.
    """
    if max_workers < 1:
        raise ValueError("max_workers must be at least 1")

    result = BatchResult()
    source = iter(items)

    if max_workers == 1:
        while True:
            if _expired(deadline):
                result.stopped_early = True
                return result
            try:
                item = next(source)
            except StopIteration:
                return result
            try:
                result.succeeded.append((item, _call(func, item, deadline)))
            except Exception as e:
                result.failures.append(ItemFailure(item, e))

    exhausted = False

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="batch") as pool:
        pending = {}

        def refill(count: int):
            nonlocal exhausted
            if exhausted:
                return
            if _expired(deadline):
                result.stopped_early = True
                exhausted = True
                return
            taken = 0
            for item in islice(source, count):
                pending[pool.submit(_call, func, item, deadline)] = item
                taken += 1
            if taken < count:
                exhausted = True

        refill(max_workers * 2)
        while pending:
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                item = pending.pop(future)
                try:
                    result.succeeded.append((item, future.result()))
                except Exception as e:
                    result.failures.append(ItemFailure(item, e))
            refill(len(done))

    return result
