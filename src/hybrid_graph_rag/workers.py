"""
Bounded worker pools and the per-request deadline token.

A ``WorkerPool`` never drops work: once its workers and queue are full, the
submitted callable runs on the caller's own thread instead.
"""
from __future__ import annotations
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional, TypeVar

from .errors import PipelineTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WAIT_SLICE_SECONDS = 0.05


class WorkerPool:
    def __init__(self, name: str, max_workers: int, queue_capacity: int = 0):
        self.name = name
        self.max_workers = max(1, max_workers)
        self.queue_capacity = max(0, queue_capacity)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix=f"{name}-"
        )
        self._slots = threading.BoundedSemaphore(self.max_workers + self.queue_capacity)
        self._closed = False

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        if self._closed:
            raise RuntimeError(f"worker pool {self.name} is shut down")
        if not self._slots.acquire(blocking=False):
            logger.debug("Pool %s saturated, running on caller thread", self.name)
            return self._run_inline(fn, *args, **kwargs)

        def _task():
            try:
                return fn(*args, **kwargs)
            finally:
                self._slots.release()

        try:
            return self._executor.submit(_task)
        except RuntimeError:
            self._slots.release()
            raise

    @staticmethod
    def _run_inline(fn: Callable[..., T], *args: Any, **kwargs: Any) -> "Future[T]":
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:  # handed back through the future
            future.set_exception(e)
        return future

    def shutdown(self, wait: bool = True):
        self._closed = True
        self._executor.shutdown(wait=wait)

    @property
    def closed(self):
        return self._closed


class Deadline:
    """Cancellation token with an absolute expiry, checked at blocking boundaries."""

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout
        self._cancelled = threading.Event()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def remaining(self):
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self):
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def check(self, stage: str):
        if self.cancelled:
            raise PipelineTimeoutError(f"request cancelled before {stage}")
        if self.expired:
            raise PipelineTimeoutError(f"request deadline expired before {stage}")

    def wait(self, future: "Future[T]", stage: str) -> T:
        """Block on ``future`` until it settles, the deadline passes or the token is cancelled."""
        while True:
            self.check(stage)
            remaining = self.remaining()
            slice_ = _WAIT_SLICE_SECONDS if remaining is None else min(remaining, _WAIT_SLICE_SECONDS)
            try:
                return future.result(timeout=slice_)
            except FutureTimeoutError:
                # the callable itself may have raised TimeoutError
                if future.done():
                    return future.result()
                continue
