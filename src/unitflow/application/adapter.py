import collections.abc
import inspect
import typing
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any, get_args, get_origin

import msgspec

from unitflow.domain.entity import ExecutionContext, ensure_context
from unitflow.domain.error import ExecutionFailure, UnitFailure
from unitflow.domain.port import WorkUnit

_STREAM_ORIGINS = (
    collections.abc.Iterator,
    collections.abc.Iterable,
    collections.abc.Generator,
)


@contextmanager
def releasing(items: Iterable[Any]) -> Iterator[Iterator[Any]]:
    """Iterate ``items``, closing the iterator on exit when it supports ``close()``."""
    iterator = iter(items)
    try:
        yield iterator
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()


class CallableSignature(msgspec.Struct, frozen=True):
    """Input/output shape of a wrapped callable, read from its annotations."""

    input_type: Any
    output_type: Any
    accepts_context: bool


class SignatureReader:
    """Reads declared types off a callable so it can be adapted into a unit."""

    def read(self, func: Callable) -> CallableSignature:
        """
        Reads the callable's first parameter type, return type, and whether it takes ``context``.

        :param func: The callable to inspect
        :type func: Callable
        :returns: The declared signature; undeclared types are ``Any``
        :rtype: CallableSignature
        """
        target = func if inspect.isroutine(func) else type(func).__call__
        try:
            sig = inspect.signature(func)
        except ValueError:
            # builtins without introspectable signatures
            return CallableSignature(input_type=Any, output_type=Any, accepts_context=False)
        try:
            hints = typing.get_type_hints(target)
        except (NameError, TypeError):
            # unresolvable forward references, or callables such as functools.partial
            hints = {}
        params = [p for p in sig.parameters.values() if p.name not in ("self", "context")]
        input_type = hints.get(params[0].name, Any) if params else Any
        return CallableSignature(
            input_type=input_type,
            output_type=hints.get("return", Any),
            accepts_context="context" in sig.parameters,
        )

    def element_type(self, return_type: Any) -> Any:
        """
        Element type of an ``Iterator[T]`` / ``Iterable[T]`` / ``Generator[T, ...]`` annotation.

        :param return_type: A generator function's return annotation
        :returns: ``T``, or ``Any`` if the annotation is not a parametrized iterator
        """
        origin = get_origin(return_type)
        args = get_args(return_type)
        if origin in _STREAM_ORIGINS and args:
            return args[0]
        return Any


class FunctionUnit(WorkUnit):
    """
    Wraps a plain callable ``input -> output`` as a unit.

    If the callable declares a ``context`` parameter, the current
    :class:`ExecutionContext` is passed to it by keyword.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        input_type: Any = None,
        output_type: Any = None,
        name: str | None = None,
    ):
        signature = SignatureReader().read(func)
        super().__init__(
            name=name or getattr(func, "__name__", type(func).__name__),
            input_type=input_type if input_type is not None else signature.input_type,
            output_type=output_type if output_type is not None else signature.output_type,
        )
        self.func = func
        self.accepts_context = signature.accepts_context

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        context = ensure_context(context)
        context.raise_if_cancelled(self.name)
        try:
            with context.slot(self.name):
                if self.accepts_context:
                    return self.func(input, context=context)
                return self.func(input)
        except UnitFailure:
            raise
        except Exception as e:
            raise ExecutionFailure.wrap(self.name, e) from e


class StreamingFunctionUnit(WorkUnit):
    """
    Wraps a generator function ``input -> Iterator[output]`` as a streaming unit.

    The generator is closed when the consumer stops early, so ``finally`` blocks
    and context managers inside it release their resources.
    """

    streaming = True

    def __init__(
        self,
        func: Callable[..., Iterator[Any]],
        input_type: Any = None,
        output_type: Any = None,
        name: str | None = None,
    ):
        reader = SignatureReader()
        signature = reader.read(func)
        super().__init__(
            name=name or getattr(func, "__name__", type(func).__name__),
            input_type=input_type if input_type is not None else signature.input_type,
            output_type=output_type if output_type is not None else reader.element_type(signature.output_type),
        )
        self.func = func
        self.accepts_context = signature.accepts_context

    def stream(self, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        context = ensure_context(context)
        context.raise_if_cancelled(self.name)
        try:
            with context.slot(self.name):
                items = self.func(input, context=context) if self.accepts_context else self.func(input)
            with releasing(items) as iterator:
                while True:
                    # a slot is held per pull, never across a yield
                    with context.slot(self.name):
                        try:
                            item = next(iterator)
                        except StopIteration:
                            return
                    yield item
                    context.raise_if_cancelled(self.name)
        except UnitFailure:
            raise
        except Exception as e:
            raise ExecutionFailure.wrap(self.name, e) from e


class PassthroughUnit(WorkUnit):
    """Returns its input unchanged."""

    def __init__(self, input_type: Any = Any, name: str = "passthrough"):
        super().__init__(name=name, input_type=input_type, output_type=input_type)

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        ensure_context(context).raise_if_cancelled(self.name)
        return input


class BoundUnit(WorkUnit):
    """Runs the wrapped unit with extra tags and metadata merged into the context."""

    def __init__(
        self,
        unit: WorkUnit,
        tags: list[str] | tuple[str, ...] = (),
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(name=unit.name, input_type=unit.input_type, output_type=unit.output_type)
        self.unit = unit
        self.tags = tuple(tags)
        self.metadata = dict(metadata or {})
        self.streaming = unit.streaming

    def _bind(self, context: ExecutionContext | None) -> ExecutionContext:
        return ensure_context(context).merge(tags=self.tags, metadata=self.metadata)

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        return self.unit.invoke(input, self._bind(context))

    def stream(self, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        return self.unit.stream(input, self._bind(context))


def as_unit(
    obj: WorkUnit | Callable[..., Any],
    input_type: Any = None,
    output_type: Any = None,
    name: str | None = None,
) -> WorkUnit:
    """
    Adapts a callable into a unit; units are returned unchanged.

    Generator functions become streaming units.

    :param obj: A unit, a plain callable, or a generator function
    :param input_type: Declared input type, overriding annotations
    :param output_type: Declared output (or element) type, overriding annotations
    :param name: Unit name, defaulting to the callable's ``__name__``
    :returns: The adapted unit
    :rtype: WorkUnit
    :raises TypeError: If ``obj`` is neither a unit nor callable
    """
    if isinstance(obj, WorkUnit):
        return obj
    if not callable(obj):
        raise TypeError(f"Cannot adapt {type(obj).__name__} into a work unit")
    if inspect.isgeneratorfunction(obj):
        return StreamingFunctionUnit(obj, input_type=input_type, output_type=output_type, name=name)
    return FunctionUnit(obj, input_type=input_type, output_type=output_type, name=name)


def work_unit(
    func: Callable[..., Any] | None = None,
    *,
    input_type: Any = None,
    output_type: Any = None,
    name: str | None = None,
) -> Any:
    """
    Decorator form of :func:`as_unit`, usable bare or with keyword arguments.

    Example::

        @work_unit
        def add_three(x: int) -> int:
            return x + 3
    """

    def decorate(f: Callable[..., Any]) -> WorkUnit:
        return as_unit(f, input_type=input_type, output_type=output_type, name=name)

    if func is not None:
        return decorate(func)
    return decorate
