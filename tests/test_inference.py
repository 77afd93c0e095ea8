"""Tests for the inference concurrency pool."""

from __future__ import annotations

import threading

import pytest

from facevault.config import Settings
from facevault.ml.inference import InferencePool


def _square(x: int) -> int:
    return x * x


class TestInferencePool:
    async def test_run_returns_result(self) -> None:
        pool = InferencePool(Settings(max_concurrent=2))
        try:
            assert await pool.run(_square, 7) == 49
        finally:
            pool.shutdown()

    async def test_runs_off_event_loop_thread(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1))
        try:
            name = await pool.run(lambda: threading.current_thread().name)
        finally:
            pool.shutdown()
        assert name.startswith("facevault-inference")

    async def test_exceptions_propagate_and_release_slot(self) -> None:
        def boom() -> None:
            raise ValueError("nope")

        pool = InferencePool(Settings(max_concurrent=1))
        try:
            with pytest.raises(ValueError, match="nope"):
                await pool.run(boom)
            assert pool.active_count == 0
            assert await pool.run(_square, 3) == 9
        finally:
            pool.shutdown()

    async def test_queue_timeout(self) -> None:
        pool = InferencePool(Settings(max_concurrent=1, queue_timeout=0.05))
        try:
            await pool._semaphore.acquire()
            with pytest.raises(TimeoutError):
                await pool.run(_square, 2)
            assert pool.queue_depth == 0
            pool._semaphore.release()
        finally:
            pool.shutdown()
