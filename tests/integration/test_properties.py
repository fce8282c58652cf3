"""
Behavioural properties of composition, batching, streaming and resilience.
"""

from collections.abc import Iterator, Mapping
from itertools import islice

import pytest

from unitflow import (
    AllFallbacksFailed,
    Exhausted,
    NoBackoff,
    assign,
    batch,
    chain,
    invoke,
    parallel,
    stream,
    with_fallbacks,
    with_retry,
)


def add_three(x: int) -> int:
    return x + 3


def times_ten(x: int) -> int:
    return x * 10


def square_value(x: int) -> int:
    return x * x


def count_down(n: int) -> Iterator[int]:
    yield from range(n, 0, -1)


class FailsThenSucceeds:
    """Fails a given number of times before returning its input."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    def __call__(self, x: int) -> int:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("unavailable")
        return x


class TestCompositionProperties:
    """Chain, fan-out and assignment properties."""

    def test_chain(self):
        """Test add_three then times_ten."""
        assert invoke(chain([add_three, times_ten]), 4).value == 70

    def test_chain_associative(self):
        """Test grouping does not change a chain's result."""
        left = chain([add_three, chain([times_ten, square_value])])
        right = chain([chain([add_three, times_ten]), square_value])

        for x in range(5):
            assert invoke(left, x).value == invoke(right, x).value

    def test_parallel(self):
        """Test every branch is applied to the same input."""
        assert invoke(parallel({"a": add_three, "b": times_ten}), 2).value == {"a": 5, "b": 20}

    def test_assign(self):
        """Test square and cube assigned onto a mapping."""

        def identity(m: dict) -> dict:
            return m

        def square(m: Mapping) -> int:
            return m["x"] ** 2

        def cube(m: Mapping) -> int:
            return m["x"] ** 3

        result = invoke(assign(identity, {"square": square, "cube": cube}), {"x": 4})

        assert result.value == {"x": 4, "square": 16, "cube": 64}


class TestBatchProperties:
    """Batch properties."""

    @pytest.mark.parametrize("max_concurrency", [1, 2, 4, 8])
    def test_batch_matches_invoke(self, max_concurrency):
        """Test each batch result equals invoking the element alone."""
        inputs = list(range(10))

        results = batch(square_value, inputs, max_concurrency=max_concurrency)

        assert [r.value for r in results] == [invoke(square_value, x).value for x in inputs]

    def test_squares(self):
        """Test squares of one to five with four workers."""
        results = batch(lambda x: x * x, [1, 2, 3, 4, 5], max_concurrency=4)

        assert [r.value for r in results] == [1, 4, 9, 16, 25]


class TestStreamProperties:
    """Stream properties."""

    def test_stream_matches_invoke(self):
        """Test streamed elements equal the accumulated invocation."""
        assert list(stream(count_down, 4)) == invoke(count_down, 4).value == [4, 3, 2, 1]

    def test_stream_repeatable(self):
        """Test every stream call reproduces the sequence."""
        assert list(stream(count_down, 3)) == list(stream(count_down, 3))

    def test_stream_through_resilience_wrappers_is_lazy(self):
        """Test one pull through retry and fallback wrappers produces one element."""
        produced = []

        def numbers(n: int) -> Iterator[int]:
            for i in range(n):
                produced.append(i)
                yield i

        resilient = with_fallbacks(with_retry(numbers, backoff=NoBackoff()), [numbers])

        assert list(islice(stream(resilient, 1000), 1)) == [0]
        assert produced == [0]


class TestResilienceProperties:
    """Retry and fallback properties."""

    def test_retry_recovers(self):
        """Test two failures then success yields the value after three calls."""
        unit = FailsThenSucceeds(failures=2)

        result = invoke(with_retry(unit, max_attempts=5, backoff=NoBackoff()), 7)

        assert result.value == 7
        assert unit.calls == 3

    def test_retry_exhausted(self):
        """Test a unit that always fails is attempted exactly max_attempts times."""
        unit = FailsThenSucceeds(failures=100)

        result = invoke(with_retry(unit, max_attempts=5, backoff=NoBackoff()), 7)

        assert isinstance(result.failure, Exhausted)
        assert unit.calls == 5

    def test_fallback(self):
        """Test the backup value is returned when the primary fails."""

        def primary(x: int) -> int:
            raise ConnectionError("down")

        def backup(x: int) -> int:
            return x + 1

        assert invoke(with_fallbacks(primary, [backup]), 1).value == 2

    def test_fallback_both_fail(self):
        """Test AllFallbacksFailed only when both fail."""

        def primary(x: int) -> int:
            raise ConnectionError("down")

        def backup(x: int) -> int:
            raise ConnectionError("also down")

        assert isinstance(invoke(with_fallbacks(primary, [backup]), 1).failure, AllFallbacksFailed)
