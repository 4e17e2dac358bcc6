"""Tests for detached task execution and cancellation."""

import threading
import time

import pytest

from sublate.utils.tasks import (
    CancellationToken,
    TaskAlreadyRunningError,
    TaskCancelledError,
    TaskRunner,
)


class TestCancellationToken:
    def test_initial_state(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_cancel(self):
        token = CancellationToken()
        token.cancel()
        assert token.cancelled
        with pytest.raises(TaskCancelledError):
            token.raise_if_cancelled()


class TestTaskRunner:
    def test_returns_result(self):
        runner = TaskRunner()
        try:
            handle = runner.spawn("k", lambda token: 42)
            assert handle.result(timeout=5) == 42
        finally:
            runner.shutdown()

    def test_one_task_per_key(self):
        runner = TaskRunner()
        gate = threading.Event()
        try:
            handle = runner.spawn("k", lambda token: gate.wait(5))
            assert runner.is_running("k")
            with pytest.raises(TaskAlreadyRunningError):
                runner.spawn("k", lambda token: None)
            other = runner.spawn("other", lambda token: "ok")
            assert other.result(timeout=5) == "ok"
            gate.set()
            handle.result(timeout=5)
            assert not runner.is_running("k")
            assert runner.spawn("k", lambda token: "again").result(timeout=5) == "again"
        finally:
            gate.set()
            runner.shutdown()

    def test_cancel_reaches_task(self):
        runner = TaskRunner()
        started = threading.Event()

        def work(token: CancellationToken) -> str:
            started.set()
            while True:
                token.raise_if_cancelled()
                time.sleep(0.01)

        try:
            handle = runner.spawn("k", work)
            started.wait(5)
            handle.cancel()
            with pytest.raises(TaskCancelledError):
                handle.result(timeout=5)
            assert handle.done()
        finally:
            runner.shutdown()

    def test_exception_propagates(self):
        runner = TaskRunner()

        def boom(token):
            raise ValueError("bad")

        try:
            with pytest.raises(ValueError, match="bad"):
                runner.spawn("k", boom).result(timeout=5)
        finally:
            runner.shutdown()
