"""Units built from other units: chains, fan-outs and field assignment."""

import concurrent.futures
import logging
import types
from collections.abc import Iterator, Mapping
from typing import Any

from unitflow.application.adapter import as_unit
from unitflow.domain.entity import ExecutionContext, ensure_context
from unitflow.domain.error import Cancelled, ExecutionFailure, ParallelFailure, TypeMismatch, UnitFailure
from unitflow.domain.port import WorkUnit
from unitflow.domain.service import (
    is_compatible,
    is_mapping_type,
    type_name,
    validate_branches,
    validate_chain,
)
from unitflow.domain.value_object import SequenceOutput

logger = logging.getLogger(__name__)


class ChainUnit(WorkUnit):
    """
    Runs stages in order, feeding each stage's output to the next.

    Nested chains are flattened on construction, so ``(a | b) | c`` and
    ``a | (b | c)`` are the same chain. The first failing stage short-circuits
    the chain. If the last stage streams, the chain streams.
    """

    def __init__(self, units: list[WorkUnit | Any], name: str | None = None):
        stages: list[WorkUnit] = []
        for unit in units:
            unit = as_unit(unit)
            if isinstance(unit, ChainUnit):
                stages.extend(unit._stages)
            else:
                stages.append(unit)
        validate_chain(stages)
        super().__init__(
            name=name or " | ".join(stage.name for stage in stages),
            input_type=stages[0].input_type,
            output_type=stages[-1].output_type,
        )
        self._stages = tuple(stages)
        self.streaming = stages[-1].streaming

    def _run(self, stages: tuple[WorkUnit, ...], input: Any, context: ExecutionContext) -> Any:
        value = input
        for stage in stages:
            context.raise_if_cancelled(stage.name)
            logger.debug(f"Chain {self.name}: running stage {stage.name}")
            try:
                value = stage.invoke(value, context)
            except UnitFailure:
                raise
            except Exception as e:
                raise ExecutionFailure.wrap(stage.name, e) from e
        return value

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> Any:
        return self._run(self._stages, input, ensure_context(context))

    def stream(self, input: Any, context: ExecutionContext | None = None) -> Iterator[Any]:
        context = ensure_context(context)
        value = self._run(self._stages[:-1], input, context)
        last = self._stages[-1]
        context.raise_if_cancelled(last.name)
        output = last.produce(value, context)
        if isinstance(output, SequenceOutput):
            yield from output.items
        else:
            yield output.value

    def __len__(self) -> int:
        return len(self._stages)


def _common_input_type(units: list[WorkUnit]) -> Any:
    for candidate in (unit.input_type for unit in units):
        if all(is_compatible(candidate, unit.input_type) for unit in units):
            return candidate
    return Any


class ParallelUnit(WorkUnit):
    """
    Runs named branches concurrently against the same input.

    The output maps each branch name to its value, in declaration order. Each
    branch sees the caller's context with a ``branch:<name>`` tag added. The
    worker count is the context's ``max_concurrency`` or, if unset, one worker
    per branch. Leaf computations in every branch share the context's
    concurrency budget with any enclosing batch or fan-out.
    """

    def __init__(self, branches: Mapping[str, WorkUnit | Any], name: str = "parallel"):
        adapted = {branch: as_unit(unit) for branch, unit in branches.items()}
        validate_branches(adapted, name)
        super().__init__(
            name=name,
            input_type=_common_input_type(list(adapted.values())),
            output_type=dict[str, Any],
        )
        self._branches = adapted

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> dict[str, Any]:
        context = ensure_context(context)
        context.raise_if_cancelled(self.name)

        def run_branch(branch: str, unit: WorkUnit) -> Any:
            context.raise_if_cancelled(unit.name)
            return unit.invoke(input, context.merge(tags=(f"branch:{branch}",)))

        workers = min(context.max_concurrency or len(self._branches), len(self._branches))
        values: dict[str, Any] = {}
        failures: dict[str, UnitFailure] = {}
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {branch: executor.submit(run_branch, branch, unit) for branch, unit in self._branches.items()}
            for branch, future in futures.items():
                try:
                    values[branch] = future.result()
                except Exception as e:
                    failures[branch] = ExecutionFailure.wrap(self._branches[branch].name, e)

        if not failures:
            return values
        if context.cancelled and all(isinstance(f, Cancelled) for f in failures.values()):
            logger.info(f"Parallel {self.name} cancelled with {len(values)} branch(es) complete")
            raise Cancelled(self.name)
        logger.debug(f"Parallel {self.name}: branches failed: {list(failures)}")
        raise ParallelFailure(self.name, failures, values)

    def __repr__(self) -> str:
        return f"ParallelUnit({list(self._branches)})"


class AssignUnit(WorkUnit):
    """
    Extends the mapping produced by ``base`` with fields computed from it.

    Every field unit receives the same read-only view of the base mapping, so
    fields never see each other's values. Fields run concurrently, as in
    :class:`ParallelUnit`. On a key collision the assigned field wins.
    """

    def __init__(self, base: WorkUnit | Any, fields: Mapping[str, WorkUnit | Any], name: str | None = None):
        base = as_unit(base)
        name = name or f"{base.name}.assign"
        if not is_mapping_type(base.invoke_output_type):
            raise TypeMismatch(name, f"base {base.name} produces {type_name(base.invoke_output_type)}, not a mapping")
        adapted = {field: as_unit(unit) for field, unit in fields.items()}
        for unit in adapted.values():
            if not is_compatible(base.invoke_output_type, unit.input_type):
                raise TypeMismatch(
                    name,
                    f"field {unit.name} expects {type_name(unit.input_type)} "
                    f"but {base.name} produces {type_name(base.invoke_output_type)}",
                )
        super().__init__(name=name, input_type=base.input_type, output_type=dict[str, Any])
        self._base = base
        self._fields = ParallelUnit(adapted, name=f"{name}.fields")

    def invoke(self, input: Any, context: ExecutionContext | None = None) -> dict[str, Any]:
        context = ensure_context(context)
        mapping = self._base.invoke(input, context)
        if not isinstance(mapping, Mapping):
            raise ExecutionFailure(self.name, f"base {self._base.name} returned {type(mapping).__name__}, not a mapping")
        snapshot = dict(mapping)
        assigned = self._fields.invoke(types.MappingProxyType(snapshot), context)
        snapshot.update(assigned)
        return snapshot
