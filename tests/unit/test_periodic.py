"""Unit tests for obsguard/utils/periodic.py."""

from __future__ import annotations

import threading

import pytest

from obsguard.utils.periodic import PeriodicTask


class TestPeriodicTask:
    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError, match="interval must be positive"):
            PeriodicTask("bad", 0, lambda: None)

    def test_runs_until_stopped(self) -> None:
        ticked = threading.Event()
        task = PeriodicTask("tick", 0.01, ticked.set)
        task.start()
        assert ticked.wait(2.0)
        assert task.running
        task.stop()
        assert not task.running

    def test_failing_func_keeps_running(self) -> None:
        calls: list[int] = []
        second = threading.Event()

        def flaky() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")
            second.set()

        task = PeriodicTask("flaky", 0.01, flaky)
        task.start()
        assert second.wait(2.0)
        task.stop()

    def test_stop_is_idempotent_and_start_after_stop_is_noop(self) -> None:
        task = PeriodicTask("idle", 60, lambda: None)
        task.start()
        task.stop()
        task.stop()
        task.start()
        assert not task.running

    def test_stop_without_start(self) -> None:
        PeriodicTask("never", 60, lambda: None).stop()

    def test_stop_from_own_thread_does_not_deadlock(self) -> None:
        done = threading.Event()
        holder: dict[str, PeriodicTask] = {}

        def stop_self() -> None:
            holder["task"].stop()
            done.set()

        holder["task"] = PeriodicTask("self-stop", 0.01, stop_self)
        holder["task"].start()
        assert done.wait(2.0)
