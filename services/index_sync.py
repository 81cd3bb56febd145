"""Keep caches and the remote index in step with resource mutations.

On every ResourceStore event the caches of all sessions studying the
affected subject are invalidated synchronously.  When the caller knows the
topic, the *complete* currently-indexed text set is resubmitted to the
remote indexing service: the remote protocol only supports
collection-wide replace, so adding, deleting, including and excluding a
resource all resubmit everything.

Reindex jobs run as background tasks owned by this service, not by chat
sessions, so closing a chat never cancels one.  A failed reindex is a
warning: the local mutation has already happened and is never rolled back.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Literal

from errors.exceptions import RemoteTransportError
from models.base import CamelModel
from models.resource import ResourceEvent, ResourceText
from models.retrieval import TopicScope
from resource_index.index_client import RemoteIndexClient, get_index_client
from services.chat_session import ChatSessionRegistry, get_session_registry
from services.resource_store import ResourceStore, get_resource_store

logger = logging.getLogger(__name__)

NOT_INDEXED_WARNING = "Resource saved locally but remote index not updated"


class SyncOutcome(CamelModel):
    status: Literal["ok", "skipped", "warning"]
    chunk_count: int | None = None
    message: str | None = None


class IndexSync:
    """Resource-event listener plus background reindex scheduler."""

    def __init__(
        self,
        store: ResourceStore,
        client: RemoteIndexClient,
        registry: ChatSessionRegistry,
    ) -> None:
        self._store = store
        self._client = client
        self._registry = registry
        self._pending: set[asyncio.Task] = set()
        self._attached = False

    def attach(self) -> None:
        if not self._attached:
            self._store.subscribe(self.on_event)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self._store.unsubscribe(self.on_event)
            self._attached = False

    @property
    def pending(self) -> int:
        return len(self._pending)

    def on_event(self, event: ResourceEvent) -> None:
        self._registry.invalidate_subject(event.subject_id, event.type.value)

    # -- reindex -------------------------------------------------------------

    def schedule_reindex(self, scope: TopicScope) -> asyncio.Task:
        """Start a collection-wide reindex for *scope* in the background."""
        task = asyncio.ensure_future(self.reindex(scope))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def sync_after_mutation(self, scope: TopicScope | None) -> SyncOutcome:
        """Reindex after a mutation and wait for the outcome.

        The wait is shielded: if the caller goes away the reindex still
        completes.
        """
        if scope is None:
            return SyncOutcome(status="skipped", message="No topic given; remote index not updated")
        return await asyncio.shield(self.schedule_reindex(scope))

    async def reindex(self, scope: TopicScope) -> SyncOutcome:
        resources = self._store.indexed_text_resources(scope.subject_id)
        if not resources:
            logger.info(
                "No indexed text resources for %s — skipping remote reindex",
                scope.subject_id,
            )
            return SyncOutcome(status="skipped", message="No indexed text resources")
        if not self._client.reindex_configured:
            logger.info("Index service not configured — skipping remote reindex")
            return SyncOutcome(status="skipped", message="Index service not configured")

        texts = [ResourceText(name=r.name, text=r.decode_text()) for r in resources]
        try:
            chunk_count = await self._client.reindex(scope, texts)
        except RemoteTransportError as exc:
            logger.warning("%s: %s", NOT_INDEXED_WARNING, exc)
            return SyncOutcome(status="warning", message=NOT_INDEXED_WARNING)

        self._registry.invalidate_subject(scope.subject_id, "remote index updated")
        return SyncOutcome(status="ok", chunk_count=chunk_count)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding reindex jobs (application shutdown)."""
        if not self._pending:
            return
        logger.info("Waiting for %d pending reindex jobs", len(self._pending))
        _, not_done = await asyncio.wait(list(self._pending), timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning("Cancelled %d reindex jobs still running at shutdown", len(not_done))


# ── Module-level Singleton ───────────────────────────────────

_sync: IndexSync | None = None


def get_index_sync() -> IndexSync:
    """Get the singleton index sync service (subscribed to the resource store)."""
    global _sync
    if _sync is None:
        _sync = IndexSync(get_resource_store(), get_index_client(), get_session_registry())
        _sync.attach()
    return _sync
