import threading

import pytest

from addman.sync.task_pool import TaskPool, spawn_task_pool, spawn_task_result_pool

pytestmark = [pytest.mark.unit]

WAIT = 5


class InFlightTracker:
    def __init__(self):
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def task(self, value):
        def run():
            with self.lock:
                self.active += 1
                self.peak = max(self.peak, self.active)
            threading.Event().wait(0.02)
            with self.lock:
                self.active -= 1
            return value

        return run


def test_never_more_units_in_flight_than_workers():
    tracker = InFlightTracker()
    pool = spawn_task_result_pool(2, 5, name="test")
    for i in range(5):
        pool.submit(tracker.task(i))
    pool.close()

    results = sorted(f.result() for f in pool.completed())
    assert results == [0, 1, 2, 3, 4]
    assert 1 <= tracker.peak <= 2


def test_failing_unit_only_fails_its_own_future():
    pool = spawn_task_result_pool(2, 4, name="test")

    def boom():
        raise ValueError("boom")

    futures = [pool.submit(lambda: 1), pool.submit(boom), pool.submit(lambda: 3)]
    pool.close()

    completed = list(pool.completed())
    assert len(completed) == 3
    assert futures[0].result() == 1
    assert futures[2].result() == 3
    with pytest.raises(ValueError):
        futures[1].result()


def test_submit_blocks_at_capacity():
    release = threading.Event()
    pool = spawn_task_pool(1, 1, name="test")
    pool.submit(lambda: release.wait(WAIT))
    pool.submit(lambda: None)

    third_submitted = threading.Event()

    def submit_third():
        pool.submit(lambda: None).result(WAIT)
        third_submitted.set()

    submitter = threading.Thread(target=submit_third)
    submitter.start()
    assert not third_submitted.wait(0.1)

    release.set()
    assert third_submitted.wait(WAIT)
    submitter.join(WAIT)
    pool.close(wait=True)


def test_submit_after_close_raises():
    pool = spawn_task_pool(1, 0, name="test")
    pool.close(wait=True)
    with pytest.raises(RuntimeError):
        pool.submit(lambda: None)


def test_completed_ends_for_empty_closed_pool():
    pool = spawn_task_result_pool(1, 0, name="test")
    pool.close()
    assert list(pool.completed()) == []


def test_completed_requires_result_pool():
    pool = spawn_task_pool(1, 0, name="test")
    try:
        with pytest.raises(RuntimeError):
            next(pool.completed())
    finally:
        pool.close(wait=True)


def test_cancel_abandons_queued_units():
    started = threading.Event()
    release = threading.Event()
    ran = []
    pool = spawn_task_result_pool(1, 3, name="test")

    def blocker():
        started.set()
        release.wait(WAIT)
        return "first"

    first = pool.submit(blocker)
    queued = [pool.submit(lambda i=i: ran.append(i)) for i in range(2)]
    assert started.wait(WAIT)

    pool.cancel()
    release.set()

    assert list(pool.completed()) == []
    assert first.result(WAIT) == "first"
    for future in queued:
        assert future.cancelled() or isinstance(future.exception(WAIT), Exception)
    assert ran == []
    assert pool.cancelled

    with pytest.raises(RuntimeError):
        pool.submit(lambda: None)


def test_context_manager_closes_pool():
    with TaskPool(2, 2, name="test") as pool:
        future = pool.submit(lambda: 42)
    assert future.result() == 42
    with pytest.raises(RuntimeError):
        pool.submit(lambda: None)


def test_needs_a_worker():
    with pytest.raises(ValueError):
        TaskPool(0, 1)
