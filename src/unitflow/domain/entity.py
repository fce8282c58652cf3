import threading
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import msgspec
from msgspec import structs

from unitflow.domain.error import Cancelled


class UUIDGenerator:
    """Generates unique identifiers using UUID."""

    def generate(self) -> str:
        """
        Generate a unique identifier.

        :returns: A unique identifier string
        :rtype: str
        """
        return uuid.uuid4().hex


class CancellationToken:
    """
    Cooperative cancellation signal with an optional deadline.

    Cancelling a token cancels every child created from it; cancelling a child
    leaves its parent untouched.
    """

    def __init__(self, timeout: float | None = None, deadline: float | None = None):
        """
        :param timeout: Seconds from now after which the token counts as cancelled
        :type timeout: float | None
        :param deadline: Absolute ``time.monotonic()`` deadline, overrides ``timeout``
        :type deadline: float | None
        """
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: list["CancellationToken"] = []
        if deadline is None and timeout is not None:
            deadline = time.monotonic() + timeout
        self.deadline = deadline

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def child(self, timeout: float | None = None) -> "CancellationToken":
        """
        Create a token that is cancelled whenever this one is.

        :param timeout: Optional extra deadline, in seconds from now, for the child only
        :type timeout: float | None
        :returns: A new linked token, never outliving this token's deadline
        :rtype: CancellationToken
        """
        deadline = self.deadline
        if timeout is not None:
            own = time.monotonic() + timeout
            deadline = own if deadline is None else min(deadline, own)
        token = CancellationToken(deadline=deadline)
        with self._lock:
            if self._event.is_set():
                token._event.set()
            else:
                self._children.append(token)
        return token

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to ``seconds``, waking early on cancellation.

        :param seconds: Maximum time to wait
        :type seconds: float
        :returns: True if the token was cancelled before or during the wait
        :rtype: bool
        """
        if self.deadline is not None:
            remaining = self.deadline - time.monotonic()
            if remaining <= seconds:
                self._event.wait(max(remaining, 0.0))
                return True
        self._event.wait(max(seconds, 0.0))
        return self.cancelled

    def raise_if_cancelled(self, unit: str) -> None:
        """
        :param unit: Name of the unit observing the cancellation
        :type unit: str
        :raises Cancelled: If the token has been cancelled or its deadline passed
        """
        if self.cancelled:
            raise Cancelled(unit)


class ConcurrencyLimiter:
    """
    Bounds how many leaf computations run at once across a whole run.

    Every context derived from the same root shares one limiter, so a batch of
    fan-outs stays within the root's budget. Slots are per-thread reentrant: a
    computation that invokes another unit inline does not wait on itself.
    """

    # how often a blocked acquire re-checks cancellation
    poll_interval = 0.05

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be at least 1, got {limit}")
        self.limit = limit
        self._semaphore = threading.BoundedSemaphore(limit)
        self._local = threading.local()

    @contextmanager
    def slot(self, cancellation: CancellationToken, unit: str) -> Iterator[None]:
        """
        Hold one slot for the duration of the block.

        :param cancellation: Token whose cancellation abandons the wait
        :param unit: Name of the unit waiting, for the :class:`Cancelled` failure
        :raises Cancelled: If cancelled while waiting for a slot
        """
        depth = getattr(self._local, "depth", 0)
        if depth == 0:
            while not self._semaphore.acquire(timeout=self.poll_interval):
                cancellation.raise_if_cancelled(unit)
        self._local.depth = depth + 1
        try:
            yield
        finally:
            self._local.depth = depth
            if depth == 0:
                self._semaphore.release()


@contextmanager
def _unbounded() -> Iterator[None]:
    yield


class ExecutionContext(msgspec.Struct, frozen=True, kw_only=True):
    """
    Ambient metadata and cancellation signal threaded through every invocation.

    Contexts are immutable; nested composites derive new ones with
    :meth:`merge`, which may add tags and metadata but never removes them.
    """

    run_id: str = msgspec.field(default_factory=lambda: UUIDGenerator().generate())
    tags: tuple[str, ...] = ()
    metadata: dict[str, Any] = {}
    cancellation: Any = msgspec.field(default_factory=CancellationToken)
    max_concurrency: int | None = None
    limiter: Any = None

    @classmethod
    def create(
        cls,
        tags: list[str] | tuple[str, ...] = (),
        metadata: dict[str, Any] | None = None,
        timeout: float | None = None,
        max_concurrency: int | None = None,
    ) -> "ExecutionContext":
        """
        Build a root context.

        :param tags: Initial tags
        :param metadata: Initial metadata
        :param timeout: Optional deadline, in seconds from now
        :param max_concurrency: Concurrency budget shared by batches and fan-outs
        :returns: A fresh context with its own cancellation token
        :rtype: ExecutionContext
        """
        return cls(
            tags=tuple(dict.fromkeys(tags)),
            metadata=dict(metadata or {}),
            cancellation=CancellationToken(timeout=timeout),
            max_concurrency=max_concurrency,
            limiter=ConcurrencyLimiter(max_concurrency) if max_concurrency is not None else None,
        )

    def merge(
        self,
        tags: list[str] | tuple[str, ...] = (),
        metadata: dict[str, Any] | None = None,
        max_concurrency: int | None = None,
    ) -> "ExecutionContext":
        """
        Derive a context with extra tags and metadata.

        Existing tags keep their position; new metadata keys override old ones.
        A new ``max_concurrency`` starts a fresh budget for everything run under
        the derived context; otherwise the budget is shared.

        :returns: A new context; ``self`` is unchanged
        :rtype: ExecutionContext
        """
        merged_metadata = dict(self.metadata)
        merged_metadata.update(metadata or {})
        limiter = self.limiter
        if max_concurrency is not None and max_concurrency != self.max_concurrency:
            limiter = ConcurrencyLimiter(max_concurrency)
        return structs.replace(
            self,
            tags=tuple(dict.fromkeys((*self.tags, *tags))),
            metadata=merged_metadata,
            max_concurrency=max_concurrency if max_concurrency is not None else self.max_concurrency,
            limiter=limiter,
        )

    def child(self, timeout: float | None = None) -> "ExecutionContext":
        """
        Derive a context whose cancellation can be triggered without affecting this one.

        :param timeout: Optional deadline, in seconds from now, applying to the child only
        :returns: A context sharing this one's tags, metadata and concurrency budget
        :rtype: ExecutionContext
        """
        return structs.replace(self, cancellation=self.cancellation.child(timeout))

    def slot(self, unit: str):
        """
        Context manager holding one slot of the shared concurrency budget.

        Only leaf computations take a slot; composites never hold one while they
        wait on their children. Without a budget the block runs unbounded.
        """
        if self.limiter is None:
            return _unbounded()
        return self.limiter.slot(self.cancellation, unit)

    def cancel(self) -> None:
        self.cancellation.cancel()

    @property
    def cancelled(self) -> bool:
        return self.cancellation.cancelled

    def raise_if_cancelled(self, unit: str) -> None:
        self.cancellation.raise_if_cancelled(unit)


def ensure_context(context: ExecutionContext | None) -> ExecutionContext:
    """Return ``context``, or a fresh root context if none was given."""
    return context if context is not None else ExecutionContext.create()
