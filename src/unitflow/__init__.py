"""
UnitFlow - Composable Units of Work

Wrap plain computations once, then invoke them singly, in batches, or as
streams; chain them into pipelines, fan them out in parallel, and make them
resilient with retries and fallbacks.
"""

from unitflow.application.adapter import (
    BoundUnit,
    FunctionUnit,
    PassthroughUnit,
    StreamingFunctionUnit,
    as_unit,
    work_unit,
)
from unitflow.application.composite import AssignUnit, ChainUnit, ParallelUnit
from unitflow.application.resilience import (
    ConstantBackoff,
    ExponentialBackoff,
    FallbackUnit,
    NoBackoff,
    RetryUnit,
    TimeoutUnit,
)
from unitflow.application.service import (
    BatchExecutor,
    InvocationEngine,
    StreamExecutor,
    assign,
    batch,
    chain,
    invoke,
    load_options,
    parallel,
    stream,
    with_fallbacks,
    with_retry,
    with_timeout,
)
from unitflow.backend import BackendType
from unitflow.client import Client
from unitflow.domain.entity import CancellationToken, ConcurrencyLimiter, ExecutionContext
from unitflow.domain.error import (
    AllFallbacksFailed,
    Cancelled,
    ExecutionFailure,
    Exhausted,
    ParallelFailure,
    TimeoutFailure,
    TypeMismatch,
    UnitFailure,
)
from unitflow.domain.port import WorkUnit
from unitflow.domain.value_object import ExecutionOptions, FailureKind, InvocationResult, ResultStatus
from unitflow.factory import create

__all__ = [
    "Client",
    "BackendType",
    "create",
    "WorkUnit",
    "FunctionUnit",
    "StreamingFunctionUnit",
    "PassthroughUnit",
    "BoundUnit",
    "ChainUnit",
    "ParallelUnit",
    "AssignUnit",
    "RetryUnit",
    "FallbackUnit",
    "TimeoutUnit",
    "NoBackoff",
    "ConstantBackoff",
    "ExponentialBackoff",
    "InvocationEngine",
    "BatchExecutor",
    "StreamExecutor",
    "as_unit",
    "work_unit",
    "invoke",
    "batch",
    "stream",
    "chain",
    "parallel",
    "assign",
    "with_retry",
    "with_fallbacks",
    "with_timeout",
    "load_options",
    "ExecutionContext",
    "CancellationToken",
    "ConcurrencyLimiter",
    "ExecutionOptions",
    "InvocationResult",
    "ResultStatus",
    "FailureKind",
    "UnitFailure",
    "ExecutionFailure",
    "TimeoutFailure",
    "ParallelFailure",
    "Cancelled",
    "TypeMismatch",
    "Exhausted",
    "AllFallbacksFailed",
]
