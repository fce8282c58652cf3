import time
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import msgspec


@dataclass
class ExecutionOptions:
    max_concurrency: int = 1
    fail_fast: bool = False
    timeout: float | None = None
    retries: int = 0


class ResultStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    EXECUTION_FAILURE = "execution_failure"
    TIMEOUT = "timeout"
    PARALLEL_FAILURE = "parallel_failure"
    CANCELLED = "cancelled"
    TYPE_MISMATCH = "type_mismatch"
    EXHAUSTED = "exhausted"
    ALL_FALLBACKS_FAILED = "all_fallbacks_failed"


class FailureInfo(msgspec.Struct, forbid_unknown_fields=True):
    """Serializable description of a failure, including nested causes."""

    kind: FailureKind
    unit: str
    message: str
    attempts: int | None = None
    index: int | None = None
    causes: dict[str, "FailureInfo"] = {}
    partial: dict[str, Any] = {}


class SingleOutput(msgspec.Struct, tag_field="kind", tag="single"):
    """A unit's output as one value."""

    value: Any


class SequenceOutput(msgspec.Struct, tag_field="kind", tag="sequence"):
    """A unit's output as a lazy, single-pass sequence of values."""

    items: Iterator[Any]


OutputShape = SingleOutput | SequenceOutput


def _encode_failure(obj: Any) -> Any:
    info = getattr(obj, "info", None)
    if callable(info):
        return info()
    raise NotImplementedError(f"Cannot encode objects of type {type(obj).__name__}")


class InvocationResult(msgspec.Struct, kw_only=True):
    """
    Outcome of invoking a unit once: either a value or a failure, never both.

    ``failure`` holds the raised :class:`~unitflow.domain.error.UnitFailure`;
    it is encoded as a :class:`FailureInfo` when the result is serialized.
    """

    unit: str
    status: ResultStatus
    value: Any = None
    failure: Any = None
    started_at: float = 0.0
    finished_at: float = 0.0

    @classmethod
    def success(cls, unit: str, value: Any, started_at: float) -> "InvocationResult":
        return cls(
            unit=unit,
            status=ResultStatus.SUCCESS,
            value=value,
            started_at=started_at,
            finished_at=time.time(),
        )

    @classmethod
    def failed(cls, unit: str, failure: Exception, started_at: float) -> "InvocationResult":
        status = (
            ResultStatus.CANCELLED
            if getattr(failure, "kind", None) == FailureKind.CANCELLED
            else ResultStatus.FAILED
        )
        return cls(
            unit=unit,
            status=status,
            failure=failure,
            started_at=started_at,
            finished_at=time.time(),
        )

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def unwrap(self) -> Any:
        """
        Return the value, or raise the captured failure.

        :returns: The value produced by the unit
        :rtype: Any
        :raises UnitFailure: If the invocation failed
        """
        if self.failure is not None:
            raise self.failure
        return self.value

    def to_dict(self) -> dict:
        """Convert the result to builtin Python types."""
        return msgspec.to_builtins(self, enc_hook=_encode_failure)

    def to_json(self) -> str:
        """Convert the result to a JSON string."""
        return msgspec.json.encode(self, enc_hook=_encode_failure).decode()

    def to_yaml(self) -> str:
        """Convert the result to a YAML string."""
        return msgspec.yaml.encode(self, enc_hook=_encode_failure).decode()
