from unitflow.application.service import BatchExecutor, InvocationEngine, StreamExecutor
from unitflow.client import Client
from unitflow.domain.value_object import ExecutionOptions
from unitflow.infrastructure.adapter.in_memory.batch_strategy import BatchStrategyFactory
from unitflow.infrastructure.adapter.in_memory.task_runner import InMemoryTaskRunner


def create(options: ExecutionOptions) -> Client:
    """
    Creates a Client that runs every unit in the calling thread.

    :param options: Execution options for the client
    :type options: ExecutionOptions
    :returns: Configured Client instance
    :rtype: Client
    """
    engine = InvocationEngine(task_runner=InMemoryTaskRunner())
    return Client(
        engine=engine,
        batch_executor=BatchExecutor(engine, BatchStrategyFactory()),
        stream_executor=StreamExecutor(),
        options=options,
    )
