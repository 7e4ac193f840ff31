"""Tests for the bounded probe worker pool."""

import threading
import time

from scanner.scheduler import ProbeScheduler


def test_never_exceeds_pool_width():
    lock = threading.Lock()
    state = {"in_flight": 0, "peak": 0}

    def task(key):
        with lock:
            state["in_flight"] += 1
            state["peak"] = max(state["peak"], state["in_flight"])
        time.sleep(0.02)
        with lock:
            state["in_flight"] -= 1
        return key * 2

    scheduler = ProbeScheduler(workers=3)
    results = scheduler.run(list(range(30)), task, on_abandon=lambda key: None)

    assert state["peak"] <= 3
    assert results == {key: key * 2 for key in range(30)}


def test_empty_key_list():
    assert ProbeScheduler(workers=2).run([], lambda key: key, on_abandon=lambda key: None) == {}


def test_deadline_abandons_unfinished_tasks():
    release = threading.Event()

    def task(key):
        if key == "slow":
            release.wait(5)
        return "done"

    scheduler = ProbeScheduler(workers=2, deadline=time.monotonic() + 0.3)
    try:
        results = scheduler.run(["fast", "slow"], task, on_abandon=lambda key: "abandoned")
    finally:
        release.set()

    assert results == {"fast": "done", "slow": "abandoned"}
    assert scheduler.abandoned == 1


def test_failing_task_uses_fallback_result():
    def task(key):
        if key == 2:
            raise RuntimeError("boom")
        return "ok"

    results = ProbeScheduler(workers=2).run([1, 2, 3], task, on_abandon=lambda key: "fallback")
    assert results == {1: "ok", 2: "fallback", 3: "ok"}
