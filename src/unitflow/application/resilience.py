"""Retry, fallback and timeout wrappers, plus the backoff policies retries wait on."""

import concurrent.futures
import logging
import random
from collections.abc import Callable, Iterator
from typing import Any

from unitflow.application.adapter import as_unit, releasing
from unitflow.application.port import BackoffPolicy
from unitflow.domain.entity import ExecutionContext, ensure_context
from unitflow.domain.error import (
    AllFallbacksFailed,
    Cancelled,
    Exhausted,
    ExecutionFailure,
    TimeoutFailure,
    UnitFailure,
)
from unitflow.domain.port import WorkUnit
from unitflow.domain.service import validate_alternates

logger = logging.getLogger(__name__)


class NoBackoff(BackoffPolicy):
    def delay(self, attempt: int) -> float:
        return 0.0


class ConstantBackoff(BackoffPolicy):
    def __init__(self, delay: float):
        self._delay = delay

    def delay(self, attempt: int) -> float:
        return self._delay


class ExponentialBackoff(BackoffPolicy):
    """Simple exponential backoff: ``base * factor ** (attempt - 1)``, capped and optionally jittered."""

    def __init__(
        self,
        base: float = 0.1,
        factor: float = 2.0,
        max_delay: float | None = None,
        jitter: float = 0.0,
    ):
        self.base = base
        self.factor = factor
        self.max_delay = max_delay
        self.jitter = jitter

    def delay(self, attempt: int) -> float:
        delay = self.base * (self.factor ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay


def _not_cancelled(failure: UnitFailure) -> bool:
    return not isinstance(failure, Cancelled)


class _Wrapper(WorkUnit):
    """Shared shape of units that wrap another unit with the same signature."""

    def __init__(self, unit: WorkUnit | Any):
        unit = as_unit(unit)
        super().__init__(name=unit.name, input_type=unit.input_type, output_type=unit.output_type)
        self.unit = unit
        self.streaming = unit.streaming

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        return self.unit.invoke(input, context)


def _open(unit: WorkUnit, input: Any, context: ExecutionContext) -> tuple[Iterator[Any], list[Any]]:
    """
    Start ``unit``'s stream and pull its first element.

    :returns: The open stream and a list holding the first element, empty if the stream was empty
    :raises UnitFailure: If the stream fails before producing its first element
    """
    items = iter(unit.stream(input, context))
    try:
        return items, [next(items)]
    except StopIteration:
        return items, []


def _drain(items: Iterator[Any], head: list[Any]) -> Iterator[Any]:
    with releasing(items):
        yield from head
        yield from items


class RetryUnit(_Wrapper):
    """
    Re-invokes a unit on failure, up to ``max_attempts`` times in total.

    After a failed attempt ``n``, if ``n < max_attempts`` and ``retry_on`` accepts
    the failure, waits ``backoff.delay(n)`` and tries again; otherwise raises
    :class:`Exhausted` carrying the last failure. Cancellation is never retried,
    and cancellation during a backoff wait raises :class:`Cancelled` at once.

    Streams are retried only until their first element; once an element has
    reached the consumer, later failures propagate unchanged.
    """

    def __init__(
        self,
        unit: WorkUnit | Any,
        max_attempts: int = 3,
        backoff: BackoffPolicy | None = None,
        retry_on: Callable[[UnitFailure], bool] | None = None,
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        super().__init__(unit)
        self.max_attempts = max_attempts
        self.backoff = backoff if backoff is not None else ExponentialBackoff()
        self.retry_on = retry_on if retry_on is not None else _not_cancelled

    def _attempts(self, action: Callable[[], Any], context: ExecutionContext) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return action()
            except Cancelled:
                raise
            except Exception as e:
                failure = ExecutionFailure.wrap(self.unit.name, e)

            if attempt >= self.max_attempts or not self.retry_on(failure):
                logger.warning(f"Unit {self.name} failed after {attempt} attempt(s): {failure.message}")
                raise Exhausted(self.name, attempt, failure)

            delay = self.backoff.delay(attempt)
            logger.warning(
                f"Unit {self.name} attempt {attempt}/{self.max_attempts} failed: {failure.message}; "
                f"retrying in {delay:.3f}s"
            )
            if context.cancellation.wait(delay):
                logger.info(f"Unit {self.name} cancelled during retry backoff")
                raise Cancelled(self.name) from failure

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        context = ensure_context(context)
        return self._attempts(lambda: self.unit.invoke(input, context), context)

    def stream(self, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        context = ensure_context(context)
        items, head = self._attempts(lambda: _open(self.unit, input, context), context)
        yield from _drain(items, head)


class FallbackUnit(_Wrapper):
    """
    Tries the primary unit, then each alternate in order, returning the first success.

    If every unit fails, raises :class:`AllFallbacksFailed` listing each failure
    in the order tried. Failures rejected by ``handle`` (and any cancellation)
    propagate immediately without trying further alternates. A stream falls
    back only while no element has been produced.
    """

    def __init__(
        self,
        primary: WorkUnit | Any,
        alternates: list[WorkUnit | Any],
        handle: Callable[[UnitFailure], bool] | None = None,
    ):
        super().__init__(primary)
        adapted = [as_unit(alternate) for alternate in alternates]
        validate_alternates(self.unit, adapted, self.name)
        self.alternates = tuple(adapted)
        self.handle = handle if handle is not None else _not_cancelled

    def _first_success(self, action: Callable[[WorkUnit], Any], context: ExecutionContext) -> Any:
        failures: list[tuple[str, UnitFailure]] = []
        for candidate in (self.unit, *self.alternates):
            context.raise_if_cancelled(self.name)
            try:
                return action(candidate)
            except Exception as e:
                failure = ExecutionFailure.wrap(candidate.name, e)
            if isinstance(failure, Cancelled) or not self.handle(failure):
                raise failure
            failures.append((candidate.name, failure))
            logger.warning(f"Unit {candidate.name} failed, falling back: {failure.message}")
        raise AllFallbacksFailed(self.name, failures)

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        context = ensure_context(context)
        return self._first_success(lambda candidate: candidate.invoke(input, context), context)

    def stream(self, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        context = ensure_context(context)
        items, head = self._first_success(lambda candidate: _open(candidate, input, context), context)
        yield from _drain(items, head)


class TimeoutUnit(_Wrapper):
    """
    Fails with :class:`TimeoutFailure` if the wrapped unit does not finish in time.

    The wrapped unit runs under a child context that is cancelled on timeout, so
    a computation that checks its context stops and frees its thread. A stream
    has the whole budget for all of its elements and is not moved to a thread;
    it is stopped at the next cancellation check after the deadline.
    """

    def __init__(self, unit: WorkUnit | Any, seconds: float):
        if seconds <= 0:
            raise ValueError(f"Timeout must be positive, got {seconds}")
        super().__init__(unit)
        self.seconds = seconds

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        context = ensure_context(context)
        child = context.child()
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self.unit.invoke, input, child)
        try:
            return future.result(timeout=self.seconds)
        except concurrent.futures.TimeoutError:
            child.cancel()
            logger.warning(f"Unit {self.name} timed out after {self.seconds}s")
            raise TimeoutFailure(self.name, self.seconds) from None
        finally:
            executor.shutdown(wait=False)

    def stream(self, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        if not self.streaming:
            yield self.invoke(input, context)
            return
        context = ensure_context(context)
        child = context.child(timeout=self.seconds)
        try:
            with releasing(self.unit.stream(input, child)) as items:
                yield from items
        except Cancelled:
            if context.cancelled:
                raise
            logger.warning(f"Unit {self.name} stream timed out after {self.seconds}s")
            raise TimeoutFailure(self.name, self.seconds) from None
