import concurrent.futures
import logging
from typing import Any

from unitflow.application.port import TaskRunner
from unitflow.domain.entity import ExecutionContext
from unitflow.domain.error import TimeoutFailure
from unitflow.domain.port import WorkUnit

logger = logging.getLogger(__name__)


class ThreadedTaskRunner(TaskRunner):
    """Runs each unit in a worker thread, optionally bounded by a timeout."""

    def __init__(self, timeout: float | None = None, max_workers: int | None = None):
        """
        :param timeout: Seconds to wait for a unit before failing with :class:`TimeoutFailure`
        :type timeout: float | None
        :param max_workers: Size of the worker pool
        :type max_workers: int | None
        """
        self.timeout = timeout
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="unitflow"
        )

    def run(self, unit: WorkUnit, input: Any, context: ExecutionContext) -> Any:
        """
        Run a unit in a worker thread and wait for its output.

        The unit runs under a child of ``context`` that is cancelled on timeout,
        so a computation polling its context gives its worker back.

        :param unit: The unit to run
        :type unit: WorkUnit
        :param input: The input value
        :type input: Any
        :param context: The execution context for this run
        :type context: ExecutionContext
        :returns: The unit's output
        :rtype: Any
        :raises TimeoutFailure: If the unit does not finish within ``timeout``
        """
        child = context.child()
        future = self._executor.submit(unit.invoke, input, child)
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            child.cancel()
            logger.warning(f"Unit {unit.name} timed out after {self.timeout}s")
            raise TimeoutFailure(unit.name, self.timeout) from None

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
