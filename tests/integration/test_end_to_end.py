"""
Integration tests for the entire UnitFlow framework.

This module tests end-to-end functionality across all layers.
"""

import json
import time
from collections.abc import Iterator, Mapping

import pytest

from unitflow import (
    AllFallbacksFailed,
    BackendType,
    Cancelled,
    ExecutionContext,
    ExponentialBackoff,
    NoBackoff,
    ParallelFailure,
    ResultStatus,
    TimeoutFailure,
    TypeMismatch,
    WorkUnit,
    assign,
    batch,
    chain,
    create,
    invoke,
    parallel,
    stream,
    with_fallbacks,
    with_retry,
    with_timeout,
    work_unit,
)


@work_unit
def parse(text: str) -> int:
    return int(text)


@work_unit
def square(x: int) -> int:
    return x * x


@work_unit
def describe(x: int) -> dict:
    return {"value": x}


@work_unit
def digits(x: int) -> Iterator[int]:
    for ch in str(x):
        yield int(ch)


class Greeter(WorkUnit):
    """Hand-written unit with declared types."""

    def __init__(self):
        super().__init__(name="greeter", input_type=str, output_type=str)

    def invoke(self, input: str, context: ExecutionContext | None = None) -> str:
        return f"Hello, {input}!"


class TestEndToEnd:
    """End-to-end test cases."""

    def test_pipeline(self):
        """Test a typed pipeline built with the pipe operator."""
        pipeline = parse | square | describe

        result = invoke(pipeline, "12")

        assert result.ok
        assert result.value == {"value": 144}

    def test_pipeline_type_checked(self):
        """Test a mistyped pipeline fails at composition time."""
        with pytest.raises(TypeMismatch):
            square | Greeter()

    def test_pipeline_failure_result(self):
        """Test a failing stage yields a failed result naming the stage."""
        result = invoke(parse | square, "twelve")

        assert result.status == ResultStatus.FAILED
        assert result.failure.unit == "parse"
        data = json.loads(result.to_json())
        assert data["failure"]["kind"] == "execution_failure"

    def test_streaming_pipeline(self):
        """Test a pipeline ending in a streaming unit streams lazily."""
        pipeline = chain(parse, square, digits)

        assert list(stream(pipeline, "12")) == [1, 4, 4]
        assert invoke(pipeline, "3").value == [9]

    def test_fan_out_and_assign(self):
        """Test fan-out and field assignment together."""

        def is_even(m: Mapping) -> bool:
            return m["value"] % 2 == 0

        enrich = assign(parse | square | describe, even=is_even, negated=lambda m: -m["value"])
        fanout = parallel(enriched=enrich, greeting=lambda s: f"got {s}")

        result = invoke(fanout, "4")

        assert result.value == {
            "enriched": {"value": 16, "even": True, "negated": -16},
            "greeting": "got 4",
        }

    def test_fan_out_partial_failure(self):
        """Test a partial fan-out failure keeps the successful branches."""
        result = invoke(parallel(good=parse, bad=lambda s: 1 / 0), "5")

        assert isinstance(result.failure, ParallelFailure)
        assert result.failure.partial == {"good": 5}
        assert result.to_dict()["failure"]["causes"]["bad"]["message"].startswith("ZeroDivisionError")

    def test_retry_then_fallback(self):
        """Test retries inside a fallback chain."""
        calls = []

        def unreliable(x: int) -> int:
            calls.append(x)
            raise ConnectionError("down")

        def cached(x: int) -> int:
            return -1

        resilient = with_fallbacks(with_retry(unreliable, max_attempts=3, backoff=NoBackoff()), [cached])

        assert invoke(resilient, 1).value == -1
        assert len(calls) == 3

    def test_all_fallbacks_fail(self):
        """Test exhausting every alternate."""

        def down(x: int) -> int:
            raise ConnectionError("down")

        def also_down(x: int) -> int:
            raise ConnectionError("also down")

        result = invoke(with_fallbacks(down, [also_down]), 1)

        assert isinstance(result.failure, AllFallbacksFailed)
        assert [name for name, _ in result.failure.failures] == ["down", "also_down"]

    def test_timeout(self):
        """Test a slow unit times out."""

        def slow(x):
            time.sleep(0.5)
            return x

        result = invoke(with_timeout(slow, 0.05), 1)

        assert isinstance(result.failure, TimeoutFailure)

    def test_batch_with_pipeline(self):
        """Test batching a pipeline, concurrently and in order."""
        results = batch(parse | square, ["1", "2", "x", "4"], max_concurrency=3)

        assert [r.value for r in results] == [1, 4, None, 16]
        assert [r.ok for r in results] == [True, True, False, True]

    def test_context_deadline(self):
        """Test a context deadline cancels a long retry loop."""

        def always_down(x: int) -> int:
            raise ConnectionError("down")

        unit = with_retry(always_down, max_attempts=100, backoff=ExponentialBackoff(base=0.05, factor=1.0))
        context = ExecutionContext.create(timeout=0.1)

        result = invoke(unit, 1, context)

        assert result.status == ResultStatus.CANCELLED
        assert isinstance(result.failure, Cancelled)

    def test_client(self):
        """Test the client facade with retries and a threaded backend."""
        attempts = []

        def flaky(x: int) -> int:
            attempts.append(x)
            if len(attempts) == 1:
                raise ConnectionError("blip")
            return x * 2

        with create(BackendType.THREADED, options={"retries": 1, "timeout": 5.0}) as client:
            result = client.invoke(flaky, 21)

        assert result.value == 42
        assert len(attempts) == 2
