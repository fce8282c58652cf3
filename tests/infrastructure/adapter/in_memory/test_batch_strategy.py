"""
Tests for batch strategies.

This module tests SequentialBatchStrategy, ThreadPoolBatchStrategy and
BatchStrategyFactory.
"""

import threading
import time
from unittest.mock import Mock

import pytest

from unitflow.application.adapter import FunctionUnit
from unitflow.application.port import Invoker
from unitflow.application.service import InvocationEngine
from unitflow.domain.entity import ExecutionContext
from unitflow.domain.error import ExecutionFailure
from unitflow.domain.value_object import InvocationResult, ResultStatus
from unitflow.infrastructure.adapter.in_memory.batch_strategy import (
    BatchStrategyFactory,
    SequentialBatchStrategy,
    ThreadPoolBatchStrategy,
)


def halve(x: int) -> int:
    if x % 2:
        raise ValueError(f"cannot halve {x}")
    return x // 2


class TestSequentialBatchStrategy:
    """Test cases for SequentialBatchStrategy."""

    def setup_method(self):
        """Setup test fixtures."""
        self.strategy = SequentialBatchStrategy(InvocationEngine())
        self.unit = FunctionUnit(halve)
        self.context = ExecutionContext.create()

    def test_execute(self):
        """Test every input is processed in order."""
        results = self.strategy.execute(self.unit, [2, 4, 6], self.context)

        assert [r.value for r in results] == [1, 2, 3]

    def test_failures_captured(self):
        """Test failures are captured per element."""
        results = self.strategy.execute(self.unit, [2, 3], self.context)

        assert results[0].ok
        assert results[1].status == ResultStatus.FAILED

    def test_fail_fast_stops(self):
        """Test fail-fast stops at the first failure."""
        invoker = Mock(spec=Invoker)
        invoker.invoke.side_effect = [
            InvocationResult.success("halve", 1, 0.0),
            InvocationResult.failed("halve", ExecutionFailure("halve", "boom"), 0.0),
            InvocationResult.success("halve", 3, 0.0),
        ]
        strategy = SequentialBatchStrategy(invoker)

        with pytest.raises(ExecutionFailure) as exc_info:
            strategy.execute(self.unit, [2, 3, 6], self.context, fail_fast=True)

        assert exc_info.value.index == 1
        assert invoker.invoke.call_count == 2


class TestThreadPoolBatchStrategy:
    """Test cases for ThreadPoolBatchStrategy."""

    def setup_method(self):
        """Setup test fixtures."""
        self.engine = InvocationEngine()
        self.context = ExecutionContext.create()

    def test_invalid_concurrency(self):
        """Test the worker budget must be positive."""
        with pytest.raises(ValueError):
            ThreadPoolBatchStrategy(self.engine, 0)

    def test_order_preserved(self):
        """Test results stay at their input's index."""

        def reverse_sleep(x):
            time.sleep(0.01 * (4 - x))
            return x

        strategy = ThreadPoolBatchStrategy(self.engine, 4)
        results = strategy.execute(FunctionUnit(reverse_sleep), [0, 1, 2, 3], self.context)

        assert [r.value for r in results] == [0, 1, 2, 3]

    def test_bounded_concurrency(self):
        """Test no more than max_concurrency elements run at once."""
        active = []
        peak = []
        lock = threading.Lock()

        def track(x):
            with lock:
                active.append(x)
                peak.append(len(active))
            time.sleep(0.01)
            with lock:
                active.remove(x)
            return x

        strategy = ThreadPoolBatchStrategy(self.engine, 2)
        results = strategy.execute(FunctionUnit(track), list(range(8)), self.context)

        assert all(r.ok for r in results)
        assert max(peak) <= 2

    def test_empty(self):
        """Test an empty batch."""
        assert ThreadPoolBatchStrategy(self.engine, 2).execute(FunctionUnit(halve), [], self.context) == []

    def test_fail_fast_cancels_remaining(self):
        """Test fail-fast cancels elements that have not finished."""
        started = []

        def slow_or_fail(x):
            started.append(x)
            if x == 0:
                raise ValueError("first fails")
            time.sleep(0.05)
            return x

        strategy = ThreadPoolBatchStrategy(self.engine, 1)

        with pytest.raises(ExecutionFailure) as exc_info:
            strategy.execute(FunctionUnit(slow_or_fail), [0, 1, 2, 3], self.context, fail_fast=True)

        assert exc_info.value.index == 0
        assert len(started) < 4
        assert not self.context.cancelled


class TestBatchStrategyFactory:
    """Test cases for BatchStrategyFactory."""

    def test_sequential(self):
        """Test a budget of one gives the sequential strategy."""
        assert isinstance(BatchStrategyFactory.get_strategy(1, Mock(spec=Invoker)), SequentialBatchStrategy)

    def test_thread_pool(self):
        """Test a larger budget gives the thread-pool strategy."""
        strategy = BatchStrategyFactory.get_strategy(4, Mock(spec=Invoker))

        assert isinstance(strategy, ThreadPoolBatchStrategy)
        assert strategy.max_concurrency == 4
