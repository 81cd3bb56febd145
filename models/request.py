"""API request / response models."""

from __future__ import annotations

from pydantic import Field

from models.base import CamelModel
from models.retrieval import EnabledSources, IndexStatus, TopicScope


class UploadResourceRequest(CamelModel):
    """POST /api/subjects/{subjectId}/resources — request body.

    ``contentBase64`` may be bare base64 or a ``data:`` URL; its decoded
    length is the stored size.  When ``topic`` is given, the subject's
    indexed text set is resubmitted for that topic.
    """

    name: str
    mime_type: str
    content_base64: str
    topic: TopicScope | None = None


class UpdateResourceRequest(CamelModel):
    """PATCH /api/subjects/{subjectId}/resources/{resourceId} — request body."""

    indexed: bool
    topic: TopicScope | None = None


class CreateSessionResponse(CamelModel):
    session_id: str
    index_status: IndexStatus


class AskQueryRequest(CamelModel):
    """POST /api/chat/sessions/{sessionId}/ask — request body."""

    query: str
    sources: EnabledSources = Field(default_factory=EnabledSources)
    editor_text: str = ""
