"""Per-session snapshot cache for a (subject, topic) chunk index.

A held snapshot is served only while all three hold:

1. its fingerprint equals the fingerprint derived from the current
   resource set of the subject;
2. it is younger than the TTL;
3. no invalidation has happened since it was captured.

Rebuilds go to the remote index first and fall back to chunking the
indexed text resources locally.  Rebuilds for the same (subject, topic)
are shared across sessions through a single-flight group; the filter that
drops chunks of excluded resources always runs against the live resource
flags of the caller, after the shared work completes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Callable, Iterable

from errors.exceptions import RemoteMiss, RemoteTransportError
from models.resource import ResourceRecord, source_key
from models.retrieval import IndexSnapshot, NeedsRebuild, SnapshotSource, TextChunk, TopicScope
from resource_index import chunker
from resource_index.index_client import RemoteIndexClient
from services.concurrency import SingleFlight, get_rebuild_flight
from services.embedding import EmbeddingProvider
from services.resource_store import ResourceStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


def compute_fingerprint(
    subject_id: str,
    topic_id: str,
    resources: Iterable[ResourceRecord],
) -> str:
    """Deterministic digest of the subject's resource set and flags."""
    entries = sorted(f"{r.id}:{str(r.indexed).lower()}" for r in resources)
    payload = json.dumps([subject_id, topic_id, entries], separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def filter_excluded(chunks: Iterable[TextChunk], resources: Iterable[ResourceRecord]) -> list[TextChunk]:
    """Keep chunks whose joined resources are all currently indexed.

    A chunk joins by ``resource_id`` when it carries one that the store
    knows, otherwise by name key.  Several resources may share a name key;
    they are treated as the same source, so one excluded resource excludes
    the chunk.  Chunks that join to nothing are dropped.
    """
    by_id: dict[str, ResourceRecord] = {}
    by_key: dict[str, list[ResourceRecord]] = {}
    for r in resources:
        by_id[r.id] = r
        by_key.setdefault(source_key(r.name), []).append(r)

    kept: list[TextChunk] = []
    for c in chunks:
        if c.resource_id and c.resource_id in by_id:
            joined = [by_id[c.resource_id]]
        else:
            joined = by_key.get(source_key(c.source_name), [])
        if joined and all(r.indexed for r in joined):
            kept.append(c)
    return kept


class IndexCache:
    """Snapshot holder for one chat session."""

    def __init__(
        self,
        store: ResourceStore,
        client: RemoteIndexClient,
        embedder: EmbeddingProvider,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_chars: int = chunker.DEFAULT_MAX_CHARS,
        min_chars: int = chunker.DEFAULT_MIN_CHARS,
        flight: SingleFlight | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._client = client
        self._embedder = embedder
        self._ttl = ttl_seconds
        self._max_chars = max_chars
        self._min_chars = min_chars
        self._flight = flight or get_rebuild_flight()
        self._clock = clock

        self._snapshot: IndexSnapshot | None = None
        self._scope_key: tuple[str, str] | None = None
        self._generation = 0

    # -- reads ---------------------------------------------------------------

    def current_fingerprint(self, scope: TopicScope) -> str:
        return compute_fingerprint(
            scope.subject_id, scope.topic_id, self._store.list_resources(scope.subject_id)
        )

    def get(self, scope: TopicScope) -> IndexSnapshot | NeedsRebuild:
        snapshot = self._snapshot
        if snapshot is None:
            return NeedsRebuild("no snapshot")
        if self._scope_key != scope.key:
            return NeedsRebuild("topic changed")
        if snapshot.fingerprint != self.current_fingerprint(scope):
            return NeedsRebuild("fingerprint changed")
        if self._clock() - snapshot.captured_at >= self._ttl:
            return NeedsRebuild("expired")
        logger.debug(
            "Index cache hit for %s/%s (%d fragments)",
            scope.subject_id, scope.topic_id, snapshot.fragment_count,
        )
        return snapshot

    @property
    def snapshot(self) -> IndexSnapshot | None:
        return self._snapshot

    # -- invalidation --------------------------------------------------------

    def invalidate(self, reason: str = "explicit") -> None:
        """Drop the held snapshot.  Visible to the very next ``get``."""
        self._generation += 1
        if self._snapshot is not None:
            logger.info("Index cache invalidated (%s)", reason)
        self._snapshot = None
        self._scope_key = None

    def close(self) -> None:
        self.invalidate("session closed")

    # -- rebuilds ------------------------------------------------------------

    async def ensure(self, scope: TopicScope) -> IndexSnapshot:
        """Return a usable snapshot, rebuilding when needed.

        Remote first; local chunking only after a remote miss or transport
        failure.  A subject with no indexed resources yields an explicit
        empty snapshot without touching the network.
        """
        cached = self.get(scope)
        if isinstance(cached, IndexSnapshot):
            return cached

        logger.info("Index rebuild needed for %s/%s: %s", scope.subject_id, scope.topic_id, cached.reason)
        if not any(r.indexed for r in self._store.list_resources(scope.subject_id)):
            return self._store_snapshot(scope, [], SnapshotSource.EMPTY,
                                        self.current_fingerprint(scope), self._generation)

        try:
            return await self.rebuild_from_remote(scope)
        except RemoteMiss:
            logger.info("No remote index for %s/%s — rebuilding locally",
                        scope.subject_slug, scope.topic_slug)
        except RemoteTransportError as exc:
            logger.error("Remote index unreachable (%s) — rebuilding locally", exc)
        return await self.rebuild_locally(scope)

    async def rebuild_from_remote(self, scope: TopicScope) -> IndexSnapshot:
        """Fetch the remote index and drop chunks of excluded resources.

        Raises :class:`RemoteMiss` or :class:`RemoteTransportError`.
        """
        fingerprint = self.current_fingerprint(scope)
        generation = self._generation
        logger.info("Index rebuild started (remote) for %s/%s", scope.subject_slug, scope.topic_slug)

        fetched = await self._flight.run(
            ("remote", scope.subject_id, scope.topic_id),
            lambda: self._client.fetch_index(scope.subject_slug, scope.topic_slug),
        )
        chunks = filter_excluded(fetched, self._store.list_resources(scope.subject_id))
        if len(chunks) < len(fetched):
            logger.info(
                "Dropped %d remote chunks of excluded or unknown resources",
                len(fetched) - len(chunks),
            )
        return self._store_snapshot(scope, chunks, SnapshotSource.REMOTE, fingerprint, generation)

    async def rebuild_locally(self, scope: TopicScope) -> IndexSnapshot:
        """Chunk and embed every indexed text resource of the subject.

        Raises :class:`EmbeddingFailure` if the provider fails.
        """
        fingerprint = self.current_fingerprint(scope)
        generation = self._generation
        logger.info("Index rebuild started (local) for %s/%s", scope.subject_slug, scope.topic_slug)

        built = await self._flight.run(
            ("local", scope.subject_id, scope.topic_id, fingerprint),
            lambda: self._chunk_resources(scope),
        )
        chunks = filter_excluded(built, self._store.list_resources(scope.subject_id))
        source = SnapshotSource.LOCAL if chunks else SnapshotSource.EMPTY
        return self._store_snapshot(scope, chunks, source, fingerprint, generation)

    async def _chunk_resources(self, scope: TopicScope) -> list[TextChunk]:
        chunks: list[TextChunk] = []
        for resource in self._store.indexed_text_resources(scope.subject_id):
            chunks.extend(
                await chunker.chunk(
                    resource.decode_text(),
                    resource.name,
                    self._embedder,
                    topic_slug=scope.topic_slug,
                    resource_id=resource.id,
                    max_chars=self._max_chars,
                    min_chars=self._min_chars,
                )
            )
        return chunks

    def _store_snapshot(
        self,
        scope: TopicScope,
        chunks: list[TextChunk],
        source: SnapshotSource,
        fingerprint: str,
        generation: int,
    ) -> IndexSnapshot:
        snapshot = IndexSnapshot(
            chunks=chunks,
            fingerprint=fingerprint,
            captured_at=self._clock(),
            source=source,
        )
        if generation == self._generation:
            self._snapshot = snapshot
            self._scope_key = scope.key
        else:
            logger.info("Index invalidated during rebuild — result not cached")
        logger.info(
            "Index rebuild finished (%s) for %s/%s — %d fragments",
            source.value, scope.subject_slug, scope.topic_slug, snapshot.fragment_count,
        )
        return snapshot
