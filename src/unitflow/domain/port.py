from collections.abc import Callable, Iterator
from typing import Any

from unitflow.domain.entity import ExecutionContext
from unitflow.domain.value_object import OutputShape, SequenceOutput, SingleOutput


class WorkUnit:
    """
    Base class for all work units. Enforces the 'invoke' method, or the 'stream'
    method for units marked ``streaming``.

    A unit is immutable once constructed: attributes may be bound once, in
    ``__init__``, and never rebound. Composition always builds a new unit.
    """

    streaming: bool = False

    def __init_subclass__(cls, **kwargs):
        """
        Ensures the subclass provides the methods its capability marker promises.

        :param kwargs: Additional keyword arguments passed to super().__init_subclass__
        :raises TypeError: If a streaming subclass lacks 'stream' or any other subclass lacks 'invoke'
        """
        super().__init_subclass__(**kwargs)

        if cls.streaming:
            if cls.stream is WorkUnit.stream:
                raise TypeError(f"{cls.__name__} is marked streaming and must define a 'stream' method")
        elif cls.invoke is WorkUnit.invoke:
            raise TypeError(f"{cls.__name__} must define an 'invoke' method")

    def __init__(self, name: str, input_type: Any = Any, output_type: Any = Any):
        """
        :param name: Name used in failures and logs
        :type name: str
        :param input_type: Declared input type
        :param output_type: Declared output type (element type for streaming units)
        """
        self.name = name
        self.input_type = input_type
        self.output_type = output_type

    def __setattr__(self, key: str, value: Any) -> None:
        if key in self.__dict__:
            raise AttributeError(f"{type(self).__name__} is immutable; compose a new unit instead")
        super().__setattr__(key, value)

    @property
    def invoke_output_type(self) -> Any:
        """Type returned by :meth:`invoke`; streaming units accumulate into a list."""
        return list[self.output_type] if self.streaming else self.output_type

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        """
        Run the unit once against ``input``.

        Non-streaming subclasses always override this; the base version serves
        streaming units and accumulates every produced element into a list.

        :param input: The input value
        :type input: Any
        :param context: Ambient execution context
        :type context: ExecutionContext | None
        :returns: The unit's output
        :rtype: Any
        :raises UnitFailure: If the computation fails or is cancelled
        """
        return list(self.stream(input, context))

    def stream(self, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        """
        Run the unit against ``input`` and yield its output lazily.

        Non-streaming units yield their single output.

        :param input: The input value
        :type input: Any
        :param context: Ambient execution context
        :type context: ExecutionContext | None
        :returns: A single-pass iterator over the output
        :rtype: Iterator[Any]
        """
        yield self.invoke(input, context)

    def produce(self, input: Any, context: ExecutionContext | None = None) -> OutputShape:
        """
        Run the unit and tag its output by shape.

        :returns: ``SequenceOutput`` wrapping a lazy iterator for streaming units, else ``SingleOutput``
        :rtype: SingleOutput | SequenceOutput
        """
        if self.streaming:
            return SequenceOutput(items=self.stream(input, context))
        return SingleOutput(value=self.invoke(input, context))

    def batch(
        self,
        inputs: list[Any],
        context: ExecutionContext | None = None,
        max_concurrency: int | None = None,
        fail_fast: bool = False,
    ) -> list:
        from unitflow.application.service import batch

        return batch(self, inputs, context, max_concurrency=max_concurrency, fail_fast=fail_fast)

    def with_retry(
        self,
        max_attempts: int = 3,
        backoff: Any = None,
        retry_on: Callable[[Exception], bool] | None = None,
    ) -> "WorkUnit":
        from unitflow.application.resilience import RetryUnit

        return RetryUnit(self, max_attempts=max_attempts, backoff=backoff, retry_on=retry_on)

    def with_fallbacks(
        self,
        alternates: list["WorkUnit"],
        handle: Callable[[Exception], bool] | None = None,
    ) -> "WorkUnit":
        from unitflow.application.resilience import FallbackUnit

        return FallbackUnit(self, alternates, handle=handle)

    def with_timeout(self, seconds: float) -> "WorkUnit":
        from unitflow.application.resilience import TimeoutUnit

        return TimeoutUnit(self, seconds)

    def with_context(
        self,
        tags: list[str] | tuple[str, ...] = (),
        metadata: dict[str, Any] | None = None,
    ) -> "WorkUnit":
        from unitflow.application.adapter import BoundUnit

        return BoundUnit(self, tags=tags, metadata=metadata)

    def __or__(self, other: Any) -> "WorkUnit":
        from unitflow.application.composite import ChainUnit

        return ChainUnit([self, other])

    def __ror__(self, other: Any) -> "WorkUnit":
        from unitflow.application.composite import ChainUnit

        return ChainUnit([other, self])

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"
