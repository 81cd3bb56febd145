"""Query orchestration — one question from sources to answer.

State machine per chat session::

    Idle → Validating → Retrieving → Answering → Idle
    Idle → Validating → Failed → Idle

Only one query runs at a time; a request that arrives while the
orchestrator is not idle is rejected with :class:`QueryInProgress`, never
queued.  Every exit path, including cancellation, returns to ``Idle``.

Failure policy:
- validation errors are raised before any network call;
- remote-index and embedding failures degrade to "no resource context"
  and only surface if no enabled source is left with content;
- answering-backend failures surface as :class:`BackendUnavailable`.
"""

from __future__ import annotations

import logging
from enum import Enum

from errors.exceptions import (
    BackendUnavailable,
    EmbeddingFailure,
    NoContentAvailable,
    NoSourceSelected,
    QueryInProgress,
    QueryValidationError,
    RemoteTransportError,
)
from models.retrieval import (
    NOTES_LABEL,
    RESOURCES_LABEL,
    AskChunk,
    AskRequest,
    QueryContext,
    QueryResult,
    TextChunk,
)
from resource_index.index_cache import IndexCache
from resource_index.retriever import DEFAULT_TOP_K, filter_by_topic, rank
from services.answer_backend import AnswerBackend
from services.embedding import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_NOTES_MAX_CHARS = 3000


class QueryState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    RETRIEVING = "retrieving"
    ANSWERING = "answering"
    FAILED = "failed"


def truncate_notes(text: str, limit: int = DEFAULT_NOTES_MAX_CHARS) -> str:
    """Trim editor text to *limit* characters, preferring a word boundary.

    The cut moves back to the last whitespace inside the window; the text is
    cut hard at *limit* only when the window holds a single word.
    """
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if not text[limit].isspace():
        boundary = max(cut.rfind(" "), cut.rfind("\n"), cut.rfind("\t"))
        if boundary > 0:
            cut = cut[:boundary]
    return cut.rstrip()


class QueryOrchestrator:
    """Single-flight query pipeline for one chat session."""

    def __init__(
        self,
        cache: IndexCache,
        embedder: EmbeddingProvider,
        backend: AnswerBackend,
        *,
        top_k: int = DEFAULT_TOP_K,
        notes_max_chars: int = DEFAULT_NOTES_MAX_CHARS,
    ) -> None:
        self._cache = cache
        self._embedder = embedder
        self._backend = backend
        self._top_k = top_k
        self._notes_max_chars = notes_max_chars
        self._state = QueryState.IDLE

    @property
    def state(self) -> QueryState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is not QueryState.IDLE

    def _transition(self, state: QueryState) -> None:
        logger.info("Query state: %s → %s", self._state.value, state.value)
        self._state = state

    async def ask(self, ctx: QueryContext, query: str) -> QueryResult:
        """Run one query.  Raises :class:`QueryInProgress` if one is running."""
        if self._state is not QueryState.IDLE:
            raise QueryInProgress()
        self._transition(QueryState.VALIDATING)
        try:
            return await self._run(ctx, query)
        except Exception as exc:
            self._transition(QueryState.FAILED)
            if isinstance(exc, BackendUnavailable):
                logger.error("Answering backend unavailable: %s", exc.detail)
            raise
        finally:
            self._transition(QueryState.IDLE)

    async def _run(self, ctx: QueryContext, query: str) -> QueryResult:
        query = (query or "").strip()
        if not query:
            raise QueryValidationError("Query is empty")

        sources = ctx.enabled_sources
        if not sources.any_enabled:
            raise NoSourceSelected()

        notes = truncate_notes(ctx.editor_text, self._notes_max_chars) if sources.notes else ""

        top_chunks: list[TextChunk] = []
        if sources.resources:
            self._transition(QueryState.RETRIEVING)
            top_chunks = await self._retrieve(ctx, query)

        missing: list[str] = []
        if sources.notes and not notes:
            missing.append(NOTES_LABEL)
        if sources.resources and not top_chunks:
            missing.append(RESOURCES_LABEL)

        if not sources.web and not notes and not top_chunks:
            raise NoContentAvailable(missing)
        if missing:
            logger.warning("Answering with degraded sources, empty: %s", ", ".join(missing))

        self._transition(QueryState.ANSWERING)
        request = AskRequest(
            subject_id=ctx.subject_id,
            topic_id=ctx.topic_id,
            query=query,
            top_chunks=[
                AskChunk(text=c.text, source=c.source_name, url=c.source_url)
                for c in top_chunks
            ],
            extra_context=notes,
            allow_web=sources.web,
        )
        result = await self._backend.answer(request)
        return result.model_copy(update={"missing_sources": missing, "demo": self._backend.demo})

    async def _retrieve(self, ctx: QueryContext, query: str) -> list[TextChunk]:
        try:
            snapshot = await self._cache.ensure(ctx.scope)
        except (RemoteTransportError, EmbeddingFailure) as exc:
            logger.warning("Skipping resource context: index unavailable (%s)", exc)
            return []
        if snapshot.is_empty:
            return []

        candidates = filter_by_topic(snapshot.chunks, ctx.scope.topic_slug)
        if not candidates:
            return []

        try:
            query_embedding = await self._embedder.embed(query)
        except EmbeddingFailure as exc:
            logger.warning("Skipping resource context: query embedding failed (%s)", exc)
            return []
        return rank(query_embedding, candidates, self._top_k)
