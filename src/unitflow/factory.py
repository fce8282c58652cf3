from unitflow.application.service import load_options
from unitflow.backend import BackendType
from unitflow.client import Client
from unitflow.domain.value_object import ExecutionOptions
from unitflow.infrastructure.adapter.in_memory.client import create as create_in_memory_client
from unitflow.infrastructure.adapter.threaded.client import create as create_threaded_client


def create(
    backend: BackendType = BackendType.IN_MEMORY,
    options: dict | ExecutionOptions | None = None,
    **kwargs,
) -> Client:
    """
    Factory function to create a Client with the specified backend.

    :param backend: The backend type to use for invocations
    :type backend: BackendType
    :param options: Execution options, as a dict or ExecutionOptions instance
    :type options: dict | ExecutionOptions | None
    :param kwargs: Additional backend-specific configuration options
    :returns: A configured Client instance
    :rtype: Client
    :raises ValueError: If the backend type is unsupported or the options are invalid
    """
    options = load_options(options)

    if backend == BackendType.IN_MEMORY:
        return create_in_memory_client(options)

    elif backend == BackendType.THREADED:
        return create_threaded_client(options, max_workers=kwargs.get("max_workers"))

    else:
        raise ValueError(f"Unsupported backend: {backend}")
