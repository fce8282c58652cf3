from unitflow.application.service import BatchExecutor, InvocationEngine, StreamExecutor
from unitflow.client import Client
from unitflow.domain.value_object import ExecutionOptions
from unitflow.infrastructure.adapter.in_memory.batch_strategy import BatchStrategyFactory
from unitflow.infrastructure.adapter.threaded.task_runner import ThreadedTaskRunner


def create(options: ExecutionOptions, max_workers: int | None = None) -> Client:
    """
    Creates a Client that runs every unit in a worker thread, bounded by ``options.timeout``.

    :param options: Execution options for the client
    :type options: ExecutionOptions
    :param max_workers: Size of the worker pool shared by all invocations
    :type max_workers: int | None
    :returns: Configured Client instance
    :rtype: Client
    """
    engine = InvocationEngine(task_runner=ThreadedTaskRunner(timeout=options.timeout, max_workers=max_workers))
    return Client(
        engine=engine,
        batch_executor=BatchExecutor(engine, BatchStrategyFactory()),
        stream_executor=StreamExecutor(),
        options=options,
    )
