"""Failure types raised and captured by work units."""

from typing import Any

from unitflow.domain.value_object import FailureInfo, FailureKind


class UnitFailure(Exception):
    """Base class for every failure a unit can surface."""

    kind: FailureKind = FailureKind.EXECUTION_FAILURE

    def __init__(self, unit: str, message: str | None = None):
        self.unit = unit
        self.message = message if message is not None else self.kind.value.replace("_", " ")
        self.index: int | None = None
        super().__init__(f"{self.unit}: {self.message}")

    def info(self) -> FailureInfo:
        """
        Describe the failure as a serializable struct.

        :returns: The failure description
        :rtype: FailureInfo
        """
        return FailureInfo(kind=self.kind, unit=self.unit, message=self.message, index=self.index)


class ExecutionFailure(UnitFailure):
    """The wrapped computation raised; the original exception is ``__cause__``."""

    kind = FailureKind.EXECUTION_FAILURE

    @classmethod
    def wrap(cls, unit: str, exc: BaseException) -> UnitFailure:
        """
        Adapt an arbitrary exception into a unit failure.

        :param unit: Name of the unit whose computation raised
        :type unit: str
        :param exc: The raised exception
        :type exc: BaseException
        :returns: ``exc`` itself if it already is a :class:`UnitFailure`, else a new
            :class:`ExecutionFailure` chained to it
        :rtype: UnitFailure
        """
        if isinstance(exc, UnitFailure):
            return exc
        failure = cls(unit, f"{type(exc).__name__}: {exc}")
        failure.__cause__ = exc
        return failure


class TimeoutFailure(ExecutionFailure):
    kind = FailureKind.TIMEOUT

    def __init__(self, unit: str, timeout: float):
        self.timeout = timeout
        super().__init__(unit, f"timed out after {timeout}s")


class ParallelFailure(ExecutionFailure):
    """
    One or more branches of a fan-out failed.

    ``failures`` maps each failing branch to its failure and ``partial`` keeps
    the values of the branches that succeeded, both in declaration order.
    """

    kind = FailureKind.PARALLEL_FAILURE

    def __init__(self, unit: str, failures: dict[str, UnitFailure], partial: dict[str, Any]):
        self.failures = failures
        self.partial = partial
        super().__init__(unit, f"branches failed: {', '.join(failures)}")

    def info(self) -> FailureInfo:
        return FailureInfo(
            kind=self.kind,
            unit=self.unit,
            message=self.message,
            index=self.index,
            causes={name: failure.info() for name, failure in self.failures.items()},
            partial=dict(self.partial),
        )


class Cancelled(UnitFailure):
    kind = FailureKind.CANCELLED


class TypeMismatch(UnitFailure, TypeError):
    """Raised while composing units whose declared types do not line up."""

    kind = FailureKind.TYPE_MISMATCH


class Exhausted(UnitFailure):
    """The retry budget is used up; ``last_failure`` is the final attempt's failure."""

    kind = FailureKind.EXHAUSTED

    def __init__(self, unit: str, attempts: int, last_failure: UnitFailure):
        self.attempts = attempts
        self.last_failure = last_failure
        super().__init__(unit, f"gave up after {attempts} attempt(s): {last_failure.message}")
        self.__cause__ = last_failure

    def info(self) -> FailureInfo:
        return FailureInfo(
            kind=self.kind,
            unit=self.unit,
            message=self.message,
            attempts=self.attempts,
            index=self.index,
            causes={"last": self.last_failure.info()},
        )


class AllFallbacksFailed(UnitFailure):
    """Primary and every alternate failed; ``failures`` lists them in the order tried."""

    kind = FailureKind.ALL_FALLBACKS_FAILED

    def __init__(self, unit: str, failures: list[tuple[str, UnitFailure]]):
        self.failures = failures
        super().__init__(unit, f"all {len(failures)} unit(s) failed")
        if failures:
            self.__cause__ = failures[-1][1]

    def info(self) -> FailureInfo:
        return FailureInfo(
            kind=self.kind,
            unit=self.unit,
            message=self.message,
            attempts=len(self.failures),
            index=self.index,
            causes={f"{i}:{name}": failure.info() for i, (name, failure) in enumerate(self.failures)},
        )
