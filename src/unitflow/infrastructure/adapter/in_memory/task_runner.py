from typing import Any

from unitflow.application.port import TaskRunner
from unitflow.domain.entity import ExecutionContext
from unitflow.domain.port import WorkUnit


class InMemoryTaskRunner(TaskRunner):
    def run(self, unit: WorkUnit, input: Any, context: ExecutionContext) -> Any:
        """
        Run a unit in the calling thread.

        :param unit: The unit to run
        :type unit: WorkUnit
        :param input: The input value
        :type input: Any
        :param context: The execution context for this run
        :type context: ExecutionContext
        :returns: The unit's output
        :rtype: Any
        """
        return unit.invoke(input, context)
