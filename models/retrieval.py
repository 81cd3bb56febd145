"""Data models for the resource indexing & retrieval pipeline.

Chunks and snapshots are ephemeral: they are rebuilt whenever the cache
decides the held snapshot is stale.  Query contexts are built per query and
query results are immutable once returned.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import ConfigDict, Field

from models.base import CamelModel
from resource_index.slugs import normalize_slug

# Human-facing source labels, used in NoContentAvailable diagnostics.
NOTES_LABEL = "apuntes del editor"
RESOURCES_LABEL = "recursos indexados"
WEB_LABEL = "web externa"


class TopicScope(CamelModel):
    """The (subject, topic) pair a chat session is studying."""

    subject_id: str
    subject_name: str
    topic_id: str
    topic_name: str

    @property
    def subject_slug(self) -> str:
        return normalize_slug(self.subject_name)

    @property
    def topic_slug(self) -> str:
        return normalize_slug(self.topic_name)

    @property
    def key(self) -> tuple[str, str]:
        return (self.subject_id, self.topic_id)


class TextChunk(CamelModel):
    """A bounded slice of a resource's text plus its embedding.

    ``source_name`` joins the chunk back to its resource by name (see
    :func:`models.resource.source_key`).  ``resource_id`` is only present
    when the index carries it; legacy indices fall back to the name join.
    """

    text: str
    source_name: str = ""
    source_url: str | None = None
    embedding: list[float] = Field(default_factory=list)
    topic_slug: str | None = None
    id: str | None = None
    ord: int | None = None
    resource_id: str | None = None


class SnapshotSource(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"
    EMPTY = "empty"


class IndexSnapshot(CamelModel):
    """The cached chunk set for a (subject, topic) at a point in time."""

    chunks: list[TextChunk] = Field(default_factory=list)
    fingerprint: str
    captured_at: float = Field(default_factory=time.time)
    source: SnapshotSource = SnapshotSource.EMPTY

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    @property
    def fragment_count(self) -> int:
        return len(self.chunks)


@dataclass(frozen=True)
class NeedsRebuild:
    """Returned by ``IndexCache.get`` when the held snapshot cannot be used."""

    reason: str


class EnabledSources(CamelModel):
    notes: bool = True
    resources: bool = True
    web: bool = False

    @property
    def any_enabled(self) -> bool:
        return self.notes or self.resources or self.web


class QueryContext(CamelModel):
    """Everything a single query needs.  Built fresh per query, never cached."""

    scope: TopicScope
    enabled_sources: EnabledSources = Field(default_factory=EnabledSources)
    editor_text: str = ""

    @property
    def subject_id(self) -> str:
        return self.scope.subject_id

    @property
    def topic_id(self) -> str:
        return self.scope.topic_id


class SourceCitation(CamelModel):
    name: str
    snippet: str = ""
    url: str | None = None


class QueryResult(CamelModel):
    """Answer text plus cited sources.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    answer_text: str
    sources: list[SourceCitation] = Field(default_factory=list)
    missing_sources: list[str] = Field(default_factory=list)
    demo: bool = False


class AskChunk(CamelModel):
    text: str
    source: str = ""
    url: str | None = None


class AskRequest(CamelModel):
    """Body of ``POST /ask`` on the answering backend."""

    subject_id: str
    topic_id: str
    query: str
    top_chunks: list[AskChunk] = Field(default_factory=list)
    extra_context: str = ""
    allow_web: bool = False


class IndexStatus(CamelModel):
    """Badge state for the chat UI."""

    state: Literal["loading", "ready", "empty", "error"]
    fragment_count: int | None = None
    detail: str | None = None
