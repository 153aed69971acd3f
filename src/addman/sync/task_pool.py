"""
Bounded Task Pools

Fixed-size worker pools with a bounded submission queue. addman runs three of
them per sync: one for network fetches, one for disk writes, and one that
runs the per-add-on update coordinators, so network and disk concurrency can
be tuned independently.
"""

import queue
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import Any, Callable, Iterator, Optional, TypeVar

from rich.markup import escape

from addman.log_utils import logger

R = TypeVar("R")

# marks the end of the completed-task stream
_DONE = object()


class TaskPool:
    """
    A pool of `workers` threads executing zero-argument units of work.

    At most `workers + capacity` units may be pending (queued or running) at
    once; `submit` blocks until a slot frees up. A unit that raises only fails
    its own Future, the worker thread moves on to the next queued unit.

    With `collect_results`, every finished Future is also delivered on the
    stream returned by `completed()`, in completion order rather than
    submission order.

    Lifecycle:
    - `close()` stops accepting work; queued and running units still finish.
    - `cancel()` stops immediately: queued units are abandoned and units
      picked up after the cancel never start. Running units are not interrupted.
    """

    def __init__(
        self,
        workers: int,
        capacity: int,
        name: str = "tasks",
        collect_results: bool = False,
    ) -> None:
        if workers < 1:
            raise ValueError(f"task pool {name} needs at least one worker")
        self.name = name
        self.workers = workers
        self.capacity = max(capacity, 0)
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=f"addman-{name}"
        )
        self._slots = threading.BoundedSemaphore(workers + self.capacity)
        self._lock = threading.Lock()
        self._pending = 0
        self._closed = False
        self._cancelled = threading.Event()
        self._results: Optional["queue.Queue[Any]"] = (
            queue.Queue() if collect_results else None
        )

    def __enter__(self) -> "TaskPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close(wait=True)
        else:
            self.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def submit(self, task: Callable[[], R]) -> "Future[R]":
        """
        Queue a unit of work, blocking while the pool is at capacity.

        Raises:
            RuntimeError: If the pool was closed or cancelled.
        """
        with self._lock:
            if self._closed or self.cancelled:
                raise RuntimeError(f"task pool {self.name} is not accepting work")
        self._slots.acquire()
        with self._lock:
            if self._closed or self.cancelled:
                self._slots.release()
                raise RuntimeError(f"task pool {self.name} is not accepting work")
            self._pending += 1
        future = self._executor.submit(self._run, task)
        future.add_done_callback(self._on_done)
        return future

    def _run(self, task: Callable[[], R]) -> R:
        if self.cancelled:
            raise CancelledError(f"task pool {self.name} was cancelled")
        return task()

    def _on_done(self, future: Future) -> None:
        self._slots.release()
        if not future.cancelled():
            exc = future.exception()
            if exc is not None and not isinstance(exc, CancelledError):
                logger.debug("Task in pool %s failed: %s", self.name, escape(str(exc)))

        # deliver before decrementing so close() never ends the stream ahead of it
        deliver = self._results is not None and not self.cancelled
        if deliver:
            self._results.put(future)
        with self._lock:
            self._pending -= 1
            finished = self._closed and self._pending == 0
        if deliver and finished:
            self._results.put(_DONE)

    def close(self, wait: bool = False) -> None:
        """Stop accepting work and let queued units drain."""
        with self._lock:
            if self._closed:
                already_closed = True
            else:
                already_closed = False
                self._closed = True
            finished = self._pending == 0
        if not already_closed and finished and self._results is not None:
            self._results.put(_DONE)
        self._executor.shutdown(wait=wait)

    def cancel(self) -> None:
        """Abandon queued work and stop delivering results."""
        self._cancelled.set()
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._results is not None:
            self._results.put(_DONE)

    def completed(self) -> Iterator[Future]:
        """
        Yield finished Futures in completion order until the pool is drained.

        Only available on pools created with `collect_results`. The stream
        ends after `close()` once every submitted unit has finished, or right
        away after `cancel()`.
        """
        if self._results is None:
            raise RuntimeError(f"task pool {self.name} does not collect results")
        while True:
            item = self._results.get()
            if item is _DONE:
                return
            yield item


def spawn_task_pool(workers: int, capacity: int, name: str = "tasks") -> TaskPool:
    """Create a pool whose units are awaited through the Futures `submit` returns."""
    return TaskPool(workers, capacity, name=name)


def spawn_task_result_pool(
    workers: int, capacity: int, name: str = "results"
) -> TaskPool:
    """Create a pool that also streams every finished unit through `completed()`."""
    return TaskPool(workers, capacity, name=name, collect_results=True)
