"""Batch execution strategies for sequential and thread-pool processing."""

import concurrent.futures
import logging
from typing import Any

from unitflow.application.port import BatchStrategy, Invoker
from unitflow.domain.entity import ExecutionContext
from unitflow.domain.port import WorkUnit
from unitflow.domain.value_object import InvocationResult

logger = logging.getLogger(__name__)


def _abort(result: InvocationResult, index: int) -> None:
    failure = result.failure
    failure.index = index
    logger.debug(f"Batch aborted at index {index}: {failure}")
    raise failure


class SequentialBatchStrategy(BatchStrategy):
    """Invokes the unit on each input in turn."""

    def __init__(self, invoker: Invoker):
        self.invoker = invoker

    def execute(
        self,
        unit: WorkUnit,
        inputs: list[Any],
        context: ExecutionContext,
        fail_fast: bool = False,
    ) -> list[InvocationResult]:
        results = []
        for index, item in enumerate(inputs):
            result = self.invoker.invoke(unit, item, context)
            if fail_fast and not result.ok:
                _abort(result, index)
            results.append(result)
        return results


class ThreadPoolBatchStrategy(BatchStrategy):
    """Invokes the unit on up to ``max_concurrency`` inputs at once."""

    def __init__(self, invoker: Invoker, max_concurrency: int):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.invoker = invoker
        self.max_concurrency = max_concurrency

    def execute(
        self,
        unit: WorkUnit,
        inputs: list[Any],
        context: ExecutionContext,
        fail_fast: bool = False,
    ) -> list[InvocationResult]:
        if not inputs:
            return []
        # fail-fast cancels this child, never the caller's context
        batch_context = context.child() if fail_fast else context
        results: list[InvocationResult | None] = [None] * len(inputs)
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=min(self.max_concurrency, len(inputs)))
        try:
            futures = {
                executor.submit(self.invoker.invoke, unit, item, batch_context): index
                for index, item in enumerate(inputs)
            }
            for future in concurrent.futures.as_completed(futures):
                index = futures[future]
                result = future.result()
                if fail_fast and not result.ok:
                    batch_context.cancel()
                    executor.shutdown(wait=False, cancel_futures=True)
                    _abort(result, index)
                results[index] = result
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results


class BatchStrategyFactory:
    """Factory to return the correct BatchStrategy for a concurrency budget."""

    @staticmethod
    def get_strategy(max_concurrency: int, invoker: Invoker) -> BatchStrategy:
        if max_concurrency > 1:
            return ThreadPoolBatchStrategy(invoker, max_concurrency)
        else:
            return SequentialBatchStrategy(invoker)
