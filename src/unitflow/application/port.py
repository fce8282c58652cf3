from abc import ABC, abstractmethod
from typing import Any

from unitflow.domain.entity import ExecutionContext
from unitflow.domain.port import WorkUnit
from unitflow.domain.value_object import InvocationResult


class TaskRunner(ABC):
    """Abstract interface for running a unit's computation."""

    @abstractmethod
    def run(self, unit: WorkUnit, input: Any, context: ExecutionContext) -> Any:
        """
        Run a unit against one input.

        :param unit: The unit to run
        :type unit: WorkUnit
        :param input: The input value
        :type input: Any
        :param context: The execution context for this run
        :type context: ExecutionContext
        :returns: The unit's output
        :rtype: Any
        :raises UnitFailure: If the unit fails
        """

    def shutdown(self) -> None:
        """Release any resources held by the runner."""


class Invoker(ABC):
    """Abstract interface for invoking a unit and capturing its outcome."""

    @abstractmethod
    def invoke(self, unit: WorkUnit, input: Any, context: ExecutionContext | None = None) -> InvocationResult:
        """
        Invoke a unit once, capturing success or failure.

        :param unit: The unit to invoke
        :type unit: WorkUnit
        :param input: The input value
        :type input: Any
        :param context: Optional execution context
        :type context: ExecutionContext | None
        :returns: The captured outcome
        :rtype: InvocationResult
        """
        ...


class BatchStrategy(ABC):
    """Abstract strategy for applying a unit to an ordered sequence of inputs."""

    @abstractmethod
    def execute(
        self,
        unit: WorkUnit,
        inputs: list[Any],
        context: ExecutionContext,
        fail_fast: bool = False,
    ) -> list[InvocationResult]:
        """
        Apply ``unit`` to every input, preserving input order in the results.

        :param unit: The unit to apply
        :type unit: WorkUnit
        :param inputs: The inputs, in order
        :type inputs: list[Any]
        :param context: The execution context shared by every element
        :type context: ExecutionContext
        :param fail_fast: Abort the batch on the first failure
        :type fail_fast: bool
        :returns: One result per input, at the input's index
        :rtype: list[InvocationResult]
        :raises UnitFailure: The first failure, when ``fail_fast`` is set
        """
        ...


class BackoffPolicy(ABC):
    """Abstract interface for computing the wait between retry attempts."""

    @abstractmethod
    def delay(self, attempt: int) -> float:
        """
        Seconds to wait after the given failed attempt.

        :param attempt: The attempt number that just failed, starting at 1
        :type attempt: int
        :returns: Delay in seconds
        :rtype: float
        """
