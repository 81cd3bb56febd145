"""Concurrency controls for embedding calls and index rebuilds.

Two primitives, both bound lazily to the running event loop:

- a semaphore capping *concurrent* outbound embedding requests per worker
  process, so a local rebuild of a large subject cannot exhaust the
  provider's rate limit;
- a single-flight group so that concurrent callers asking for the same
  rebuild share one underlying task instead of duplicating the work.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Hashable, TypeVar

from config.settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Embedding semaphore ──────────────────────────────────────

_embedding_semaphore: asyncio.Semaphore | None = None


def _get_semaphore() -> asyncio.Semaphore:
    """Lazy-init to ensure semaphore is bound to the running event loop."""
    global _embedding_semaphore
    if _embedding_semaphore is None:
        limit = get_settings().max_concurrent_embeddings
        _embedding_semaphore = asyncio.Semaphore(limit)
        logger.info("Embedding concurrency semaphore initialized (max=%d)", limit)
    return _embedding_semaphore


async def rate_limited_call(
    func: Callable[..., Coroutine[Any, Any, Any]],
    *args: Any,
    **kwargs: Any,
) -> Any:
    """Execute an async provider call with concurrency limiting.

    Usage::

        response = await rate_limited_call(litellm.aembedding, model=..., input=[...])
    """
    sem = _get_semaphore()
    async with sem:
        return await func(*args, **kwargs)


# ── Single-flight ────────────────────────────────────────────


class SingleFlight:
    """At most one in-flight task per key; concurrent callers await the same result.

    Each caller awaits the shared task through :func:`asyncio.shield`, so a
    caller that is cancelled (e.g. its chat session was closed) stops waiting
    without cancelling the work for everyone else.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._inflight: dict[Hashable, asyncio.Task] = {}

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
            logger.debug("%s: started %s", self._name, key)
        else:
            logger.info("%s: joining in-flight %s", self._name, key)
        return await asyncio.shield(task)

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter was cancelled.
        if not task.cancelled():
            task.exception()


_rebuild_flight: SingleFlight | None = None


def get_rebuild_flight() -> SingleFlight:
    """Return the process-wide single-flight group for index rebuilds."""
    global _rebuild_flight
    if _rebuild_flight is None:
        _rebuild_flight = SingleFlight("index-rebuild")
    return _rebuild_flight
