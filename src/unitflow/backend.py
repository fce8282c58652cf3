from enum import Enum


class BackendType(Enum):
    """Supported invocation backends."""

    IN_MEMORY = "in_memory"
    THREADED = "threaded"
