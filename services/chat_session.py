"""Chat sessions — one IndexCache and one QueryOrchestrator per open chat.

A session is created when the chat UI opens for a (subject, topic) and torn
down when it closes.  Closing cancels the session's in-flight query and
index warm-up so nothing resolves into a torn-down context; background
reindex jobs are not owned by sessions and keep running.

The registry is in-memory with TTL expiration, like the rest of the
process-local state.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable

from config.settings import get_settings
from errors.exceptions import (
    EmbeddingFailure,
    QueryInProgress,
    RemoteTransportError,
    SessionClosed,
    SessionNotFound,
)
from models.retrieval import (
    EnabledSources,
    IndexSnapshot,
    IndexStatus,
    QueryContext,
    QueryResult,
    TopicScope,
)
from resource_index.index_cache import IndexCache
from resource_index.index_client import RemoteIndexClient, get_index_client
from services.answer_backend import AnswerBackend, get_answer_backend
from services.concurrency import SingleFlight
from services.embedding import EmbeddingProvider, get_embedding_provider
from services.query_orchestrator import QueryOrchestrator
from services.resource_store import ResourceStore, get_resource_store

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """Generate a new server-side chat session ID."""
    return f"chat-{uuid.uuid4().hex[:12]}"


def _status_for(snapshot: IndexSnapshot) -> IndexStatus:
    if snapshot.is_empty:
        return IndexStatus(state="empty", fragment_count=0)
    return IndexStatus(state="ready", fragment_count=snapshot.fragment_count)


class ChatSession:
    """Per-chat state: scope, cache, orchestrator and owned tasks."""

    def __init__(
        self,
        session_id: str,
        scope: TopicScope,
        cache: IndexCache,
        orchestrator: QueryOrchestrator,
    ) -> None:
        self.session_id = session_id
        self._scope = scope
        self._cache = cache
        self._orchestrator = orchestrator
        self._tasks: set[asyncio.Task] = set()
        self._warmup: asyncio.Task | None = None
        self._last_error: str | None = None
        self._closed = False
        self.created_at = time.time()
        self.updated_at = self.created_at

    # -- properties ----------------------------------------------------------

    @property
    def scope(self) -> TopicScope:
        return self._scope

    @property
    def cache(self) -> IndexCache:
        return self._cache

    @property
    def orchestrator(self) -> QueryOrchestrator:
        return self._orchestrator

    @property
    def closed(self) -> bool:
        return self._closed

    def touch(self) -> None:
        self.updated_at = time.time()

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosed(self.session_id)

    # -- owned tasks ---------------------------------------------------------

    async def _run_owned(self, coro: Awaitable[Any]) -> Any:
        """Run *coro* as a task that :meth:`close` can cancel."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            if self._closed:
                raise SessionClosed(self.session_id) from None
            raise
        finally:
            self._tasks.discard(task)

    # -- operations ----------------------------------------------------------

    async def ask(
        self,
        query: str,
        sources: EnabledSources | None = None,
        editor_text: str = "",
    ) -> QueryResult:
        self._check_open()
        if self._orchestrator.busy:
            raise QueryInProgress()
        self.touch()
        ctx = QueryContext(
            scope=self._scope,
            enabled_sources=sources or EnabledSources(),
            editor_text=editor_text,
        )
        return await self._run_owned(self._orchestrator.ask(ctx, query))

    def change_topic(self, scope: TopicScope) -> None:
        """Switch the active topic; the held snapshot is dropped at once."""
        self._check_open()
        self.touch()
        if scope == self._scope:
            return
        logger.info(
            "Session %s topic %s → %s",
            self.session_id, self._scope.topic_slug, scope.topic_slug,
        )
        self._scope = scope
        self._last_error = None
        self._cache.invalidate("topic changed")

    def invalidate(self, reason: str) -> None:
        self._last_error = None
        self._cache.invalidate(reason)

    def index_status(self) -> IndexStatus:
        self._check_open()
        if self._warmup is not None and not self._warmup.done():
            return IndexStatus(state="loading")
        if self._last_error:
            return IndexStatus(state="error", detail=self._last_error)
        cached = self._cache.get(self._scope)
        if isinstance(cached, IndexSnapshot):
            return _status_for(cached)
        return IndexStatus(state="loading", detail=f"rebuild pending: {cached.reason}")

    async def refresh_index(self) -> IndexStatus:
        """Warm the cache for the current topic and report the badge state."""
        self._check_open()
        self.touch()
        if self._warmup is None or self._warmup.done():
            self._warmup = asyncio.ensure_future(self._cache.ensure(self._scope))
        warmup = self._warmup
        try:
            snapshot = await self._run_owned(asyncio.shield(warmup))
        except (RemoteTransportError, EmbeddingFailure) as exc:
            self._last_error = str(exc)
            logger.warning("Index warm-up failed for session %s: %s", self.session_id, exc)
            return IndexStatus(state="error", detail=self._last_error)
        self._last_error = None
        return _status_for(snapshot)

    async def close(self) -> None:
        """Cancel owned work and tear down the cache.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        pending = list(self._tasks)
        if self._warmup is not None and not self._warmup.done():
            pending.append(self._warmup)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._cache.close()
        logger.info("Chat session %s closed", self.session_id)


class ChatSessionRegistry:
    """In-memory session registry with TTL expiration."""

    def __init__(
        self,
        store: ResourceStore,
        client: RemoteIndexClient,
        embedder: EmbeddingProvider,
        backend: AnswerBackend,
        ttl_seconds: int = 1800,
        flight: SingleFlight | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._embedder = embedder
        self._backend = backend
        self._ttl = ttl_seconds
        self._flight = flight
        self._sessions: dict[str, ChatSession] = {}

    def _is_expired(self, session: ChatSession) -> bool:
        return (time.time() - session.updated_at) > self._ttl

    def create(self, scope: TopicScope) -> ChatSession:
        settings = get_settings()
        cache = IndexCache(
            self._store,
            self._client,
            self._embedder,
            ttl_seconds=settings.index_cache_ttl,
            max_chars=settings.chunk_max_chars,
            min_chars=settings.min_chunk_chars,
            flight=self._flight,
        )
        orchestrator = QueryOrchestrator(
            cache,
            self._embedder,
            self._backend,
            top_k=settings.top_k,
            notes_max_chars=settings.notes_max_chars,
        )
        session = ChatSession(generate_session_id(), scope, cache, orchestrator)
        self._sessions[session.session_id] = session
        logger.info(
            "Chat session %s opened for %s/%s",
            session.session_id, scope.subject_slug, scope.topic_slug,
        )
        return session

    def get(self, session_id: str) -> ChatSession:
        session = self._sessions.get(session_id)
        if session is None or session.closed:
            raise SessionNotFound(session_id)
        if self._is_expired(session) and not session.orchestrator.busy:
            raise SessionNotFound(session_id)
        return session

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFound(session_id)
        await session.close()

    def sessions_for_subject(self, subject_id: str) -> list[ChatSession]:
        return [s for s in self._sessions.values() if s.scope.subject_id == subject_id]

    def invalidate_subject(self, subject_id: str, reason: str) -> int:
        """Synchronously drop every cached snapshot for *subject_id*."""
        sessions = self.sessions_for_subject(subject_id)
        for session in sessions:
            session.invalidate(reason)
        if sessions:
            logger.info(
                "Invalidated %d session caches for subject %s (%s)",
                len(sessions), subject_id, reason,
            )
        return len(sessions)

    async def cleanup_expired(self) -> int:
        expired = [
            sid for sid, s in self._sessions.items()
            if self._is_expired(s) and not s.orchestrator.busy
        ]
        for sid in expired:
            await self._sessions.pop(sid).close()
        if expired:
            logger.info("Cleaned up %d expired chat sessions", len(expired))
        return len(expired)

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()

    @property
    def size(self) -> int:
        """Number of sessions currently registered (may include expired)."""
        return len(self._sessions)


# ── Module-level Singleton ───────────────────────────────────

_registry: ChatSessionRegistry | None = None


def get_session_registry() -> ChatSessionRegistry:
    """Get the singleton chat session registry."""
    global _registry
    if _registry is None:
        settings = get_settings()
        _registry = ChatSessionRegistry(
            get_resource_store(),
            get_index_client(),
            get_embedding_provider(),
            get_answer_backend(),
            ttl_seconds=settings.session_ttl,
        )
        logger.info("Initialized ChatSessionRegistry (TTL=%ds)", settings.session_ttl)
    return _registry


# ── Background Cleanup Task ──────────────────────────────────


async def periodic_cleanup(interval_seconds: int = 300) -> None:
    """Background task that periodically closes idle sessions.

    Should be started as an ``asyncio.Task`` in the FastAPI lifespan.
    """
    registry = get_session_registry()
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await registry.cleanup_expired()
        except Exception:
            logger.exception("Chat session cleanup failed")
