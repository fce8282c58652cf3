import concurrent.futures
import logging
import time
from collections.abc import Callable, Iterator, Mapping
from typing import Any

import msgspec

from unitflow.application.adapter import as_unit
from unitflow.application.composite import AssignUnit, ChainUnit, ParallelUnit
from unitflow.application.port import BackoffPolicy, Invoker, TaskRunner
from unitflow.application.resilience import FallbackUnit, RetryUnit, TimeoutUnit
from unitflow.domain.entity import ExecutionContext, ensure_context
from unitflow.domain.error import ExecutionFailure, UnitFailure
from unitflow.domain.port import WorkUnit
from unitflow.domain.value_object import ExecutionOptions, InvocationResult, SequenceOutput
from unitflow.infrastructure.adapter.in_memory.batch_strategy import BatchStrategyFactory
from unitflow.infrastructure.adapter.in_memory.task_runner import InMemoryTaskRunner

logger = logging.getLogger(__name__)


class InvocationEngine(Invoker):
    """
    Invokes a unit against one input and captures the outcome.

    Failures never escape :meth:`invoke`; they are recorded on the returned
    :class:`InvocationResult`. :meth:`submit` is the non-blocking variant.
    """

    def __init__(self, task_runner: TaskRunner | None = None, max_workers: int | None = None):
        """
        :param task_runner: Runs the unit's computation; defaults to running in the calling thread
        :type task_runner: TaskRunner | None
        :param max_workers: Size of the pool used by :meth:`submit`
        :type max_workers: int | None
        """
        self.task_runner = task_runner if task_runner is not None else InMemoryTaskRunner()
        self.max_workers = max_workers
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None

    def invoke(self, unit: WorkUnit, input: Any, context: ExecutionContext | None = None) -> InvocationResult:
        """
        Invoke ``unit`` once.

        Cancellation seen before the computation starts, or raised by it while
        it runs, yields a ``Cancelled`` result. A computation that has already
        returned keeps its value even if the context is cancelled afterwards.

        :param unit: The unit to invoke
        :type unit: WorkUnit
        :param input: The input value
        :type input: Any
        :param context: Optional execution context
        :type context: ExecutionContext | None
        :returns: The value or the failure, never both
        :rtype: InvocationResult
        """
        context = ensure_context(context)
        started_at = time.time()
        logger.debug(f"Invoking {unit.name} (run {context.run_id})")
        try:
            context.raise_if_cancelled(unit.name)
            value = self.task_runner.run(unit, input, context)
        except Exception as e:
            failure = ExecutionFailure.wrap(unit.name, e)
            logger.debug(f"Invocation of {unit.name} failed: {failure}")
            return InvocationResult.failed(unit.name, failure, started_at)
        return InvocationResult.success(unit.name, value, started_at)

    def submit(
        self, unit: WorkUnit, input: Any, context: ExecutionContext | None = None
    ) -> concurrent.futures.Future:
        """
        Invoke ``unit`` in the background.

        :returns: A future resolving to the :class:`InvocationResult`
        :rtype: concurrent.futures.Future
        """
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="unitflow-submit"
            )
        return self._executor.submit(self.invoke, unit, input, context)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.task_runner.shutdown()

    def __enter__(self) -> "InvocationEngine":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class BatchExecutor:
    """Applies a unit to an ordered sequence of inputs, preserving order in the results."""

    def __init__(self, invoker: Invoker | None = None, strategy_factory: BatchStrategyFactory | None = None):
        self.invoker = invoker if invoker is not None else InvocationEngine()
        self.strategy_factory = strategy_factory if strategy_factory is not None else BatchStrategyFactory()

    def batch(
        self,
        unit: WorkUnit,
        inputs: list[Any],
        context: ExecutionContext | None = None,
        max_concurrency: int | None = None,
        fail_fast: bool = False,
    ) -> list[InvocationResult]:
        """
        Invoke ``unit`` on every input.

        :param unit: The unit to apply
        :type unit: WorkUnit
        :param inputs: The inputs, in order
        :type inputs: list[Any]
        :param context: Optional execution context shared by every element
        :type context: ExecutionContext | None
        :param max_concurrency: Worker budget; defaults to the context's, else 1 (sequential).
            Without a budget on the context, it also bounds leaf computations nested in each element.
        :type max_concurrency: int | None
        :param fail_fast: Cancel the remaining elements and raise on the first failure
        :type fail_fast: bool
        :returns: ``results[i]`` is the outcome for ``inputs[i]``
        :rtype: list[InvocationResult]
        :raises UnitFailure: The first failure (with its ``index`` set), when ``fail_fast`` is set
        """
        context = ensure_context(context)
        inputs = list(inputs)
        concurrency = max_concurrency or context.max_concurrency or 1
        if context.limiter is None and concurrency > 1:
            # nested fan-outs draw on the same budget as the batch itself
            context = context.merge(max_concurrency=concurrency)
        strategy = self.strategy_factory.get_strategy(concurrency, self.invoker)
        logger.debug(f"Batching {unit.name} over {len(inputs)} input(s) with {type(strategy).__name__}")
        return strategy.execute(unit, inputs, context, fail_fast=fail_fast)


class StreamExecutor:
    """Drives a unit's output as a lazy, pull-based, single-pass sequence."""

    def stream(self, unit: WorkUnit, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        """
        Yield the unit's output element by element.

        Nothing runs until the first element is requested. Cancellation is
        checked before every pull. Closing the returned generator closes the
        producer, letting it release what it acquired.

        :param unit: The unit to drive
        :type unit: WorkUnit
        :param input: The input value
        :type input: Any
        :param context: Optional execution context
        :type context: ExecutionContext | None
        :returns: A generator over the output
        :rtype: Iterator[Any]
        :raises UnitFailure: If the producer fails or the context is cancelled
        """
        context = ensure_context(context)
        context.raise_if_cancelled(unit.name)
        logger.debug(f"Streaming {unit.name} (run {context.run_id})")
        try:
            output = unit.produce(input, context)
        except UnitFailure:
            raise
        except Exception as e:
            raise ExecutionFailure.wrap(unit.name, e) from e
        items = output.items if isinstance(output, SequenceOutput) else iter((output.value,))
        count = 0
        try:
            while True:
                context.raise_if_cancelled(unit.name)
                try:
                    item = next(items)
                except StopIteration:
                    break
                except UnitFailure:
                    raise
                except Exception as e:
                    raise ExecutionFailure.wrap(unit.name, e) from e
                count += 1
                yield item
        finally:
            close = getattr(items, "close", None)
            if close is not None:
                close()
            logger.debug(f"Stream of {unit.name} closed after {count} element(s)")


_engine = InvocationEngine()
_batch_executor = BatchExecutor(_engine)
_stream_executor = StreamExecutor()


def invoke(unit: WorkUnit | Callable, input: Any, context: ExecutionContext | None = None) -> InvocationResult:
    """Invoke a unit (or adapted callable) once with the default engine."""
    return _engine.invoke(as_unit(unit), input, context)


def batch(
    unit: WorkUnit | Callable,
    inputs: list[Any],
    context: ExecutionContext | None = None,
    max_concurrency: int | None = None,
    fail_fast: bool = False,
) -> list[InvocationResult]:
    """Apply a unit to every input with the default batch executor."""
    return _batch_executor.batch(as_unit(unit), inputs, context, max_concurrency=max_concurrency, fail_fast=fail_fast)


def stream(unit: WorkUnit | Callable, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
    """Stream a unit's output with the default stream executor."""
    return _stream_executor.stream(as_unit(unit), input, context)


def chain(*units: WorkUnit | Callable | list) -> ChainUnit:
    """
    Compose units into a chain: ``chain([a, b, c])`` or ``chain(a, b, c)``.

    :raises TypeMismatch: If adjacent stages disagree on types
    """
    if len(units) == 1 and isinstance(units[0], list | tuple):
        units = tuple(units[0])
    return ChainUnit(list(units))


def parallel(branches: Mapping[str, WorkUnit | Callable] | None = None, **named: WorkUnit | Callable) -> ParallelUnit:
    """Compose named branches into a fan-out: ``parallel({"a": a})`` or ``parallel(a=a)``."""
    return ParallelUnit({**(branches or {}), **named})


def assign(
    base: WorkUnit | Callable,
    fields: Mapping[str, WorkUnit | Callable] | None = None,
    **named: WorkUnit | Callable,
) -> AssignUnit:
    """Extend ``base``'s mapping output with computed fields."""
    return AssignUnit(base, {**(fields or {}), **named})


def with_retry(
    unit: WorkUnit | Callable,
    max_attempts: int = 3,
    backoff: BackoffPolicy | None = None,
    retry_on: Callable[[UnitFailure], bool] | None = None,
) -> RetryUnit:
    return RetryUnit(unit, max_attempts=max_attempts, backoff=backoff, retry_on=retry_on)


def with_fallbacks(
    primary: WorkUnit | Callable,
    alternates: list[WorkUnit | Callable],
    handle: Callable[[UnitFailure], bool] | None = None,
) -> FallbackUnit:
    return FallbackUnit(primary, alternates, handle=handle)


def with_timeout(unit: WorkUnit | Callable, seconds: float) -> TimeoutUnit:
    return TimeoutUnit(unit, seconds)


def load_options(data: dict | ExecutionOptions | None) -> ExecutionOptions:
    """
    Decodes and validates execution options from a Python dictionary.

    :param data: The options as a dictionary, an ExecutionOptions instance, or None for defaults
    :type data: dict | ExecutionOptions | None
    :returns: A validated ExecutionOptions instance
    :rtype: ExecutionOptions
    :raises msgspec.ValidationError: If a field has the wrong type
    :raises ValueError: If a field has an invalid value
    """
    if data is None:
        return ExecutionOptions()
    options = data if isinstance(data, ExecutionOptions) else msgspec.convert(data, type=ExecutionOptions)
    if options.max_concurrency < 1:
        raise ValueError(f"max_concurrency must be at least 1, got {options.max_concurrency}")
    if options.retries < 0:
        raise ValueError(f"retries must not be negative, got {options.retries}")
    if options.timeout is not None and options.timeout <= 0:
        raise ValueError(f"timeout must be positive, got {options.timeout}")
    return options
