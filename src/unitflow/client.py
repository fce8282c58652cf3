from collections.abc import Callable, Iterator
from concurrent.futures import Future
from typing import Any

from unitflow.application.adapter import as_unit
from unitflow.application.resilience import RetryUnit
from unitflow.application.service import BatchExecutor, InvocationEngine, StreamExecutor
from unitflow.domain.entity import ExecutionContext
from unitflow.domain.port import WorkUnit
from unitflow.domain.value_object import ExecutionOptions, InvocationResult


class Client:
    """
    Unified client façade for running work units.

    The Client is the only thing callers need to hold. It exposes ``invoke``,
    ``submit``, ``batch`` and ``stream``, applying its :class:`ExecutionOptions`
    (retries, batch concurrency, fail-fast) uniformly regardless of how deeply
    a unit is composed. It holds a reference to the chosen backend's engine
    under the hood.
    """

    def __init__(
        self,
        engine: InvocationEngine,
        batch_executor: BatchExecutor | None = None,
        stream_executor: StreamExecutor | None = None,
        options: ExecutionOptions | None = None,
    ):
        """
        Initialize the client with a backend engine.

        :param engine: The invocation engine for the chosen backend
        :type engine: InvocationEngine
        :param batch_executor: Batch executor; defaults to one sharing ``engine``
        :type batch_executor: BatchExecutor | None
        :param stream_executor: Stream executor
        :type stream_executor: StreamExecutor | None
        :param options: Execution options applied to every call
        :type options: ExecutionOptions | None
        """
        self._engine = engine
        self._batch_executor = batch_executor if batch_executor is not None else BatchExecutor(engine)
        self._stream_executor = stream_executor if stream_executor is not None else StreamExecutor()
        self.options = options if options is not None else ExecutionOptions()

    def _prepare(self, unit: WorkUnit | Callable) -> WorkUnit:
        unit = as_unit(unit)
        if self.options.retries > 0:
            return RetryUnit(unit, max_attempts=self.options.retries + 1)
        return unit

    def invoke(self, unit: WorkUnit | Callable, input: Any, context: ExecutionContext | None = None) -> InvocationResult:
        """
        Invoke a unit once.

        :param unit: The unit to invoke
        :type unit: WorkUnit | Callable
        :param input: The input value
        :type input: Any
        :param context: Optional execution context
        :type context: ExecutionContext | None
        :returns: The captured outcome
        :rtype: InvocationResult
        """
        return self._engine.invoke(self._prepare(unit), input, context)

    def submit(self, unit: WorkUnit | Callable, input: Any, context: ExecutionContext | None = None) -> Future:
        """
        Invoke a unit in the background.

        :returns: A future resolving to the :class:`InvocationResult`
        :rtype: Future
        """
        return self._engine.submit(self._prepare(unit), input, context)

    def batch(
        self,
        unit: WorkUnit | Callable,
        inputs: list[Any],
        context: ExecutionContext | None = None,
    ) -> list[InvocationResult]:
        """
        Apply a unit to every input using the client's concurrency and fail-fast options.

        :param unit: The unit to apply
        :type unit: WorkUnit | Callable
        :param inputs: The inputs, in order
        :type inputs: list[Any]
        :param context: Optional execution context
        :type context: ExecutionContext | None
        :returns: One result per input, in input order
        :rtype: list[InvocationResult]
        """
        return self._batch_executor.batch(
            self._prepare(unit),
            inputs,
            context,
            max_concurrency=self.options.max_concurrency,
            fail_fast=self.options.fail_fast,
        )

    def stream(self, unit: WorkUnit | Callable, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        """
        Stream a unit's output.

        Retries are not applied to streams; a retried stream would replay
        elements the consumer has already seen.

        :returns: A lazy, single-pass iterator over the output
        :rtype: Iterator[Any]
        """
        return self._stream_executor.stream(as_unit(unit), input, context)

    def close(self) -> None:
        self._engine.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
