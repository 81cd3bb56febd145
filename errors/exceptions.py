"""Domain-specific exceptions for the resource retrieval service.

These exceptions let the orchestrator and API layers tell apart
user-actionable validation failures, expected index misses, transport
failures that degrade gracefully, and answering-backend outages.
"""

from __future__ import annotations


class RetrievalError(Exception):
    """Base class for every error raised by the retrieval subsystem."""


# ── Validation (user-actionable, never retried) ─────────────────


class QueryValidationError(RetrievalError):
    """The query cannot be answered with the selected sources."""


class NoSourceSelected(QueryValidationError):
    def __init__(self) -> None:
        super().__init__("Select at least one source: notes, resources or web")


class NoContentAvailable(QueryValidationError):
    """Every enabled non-web source came back empty.

    ``missing_sources`` names exactly the enabled sources that had no
    content, in the order notes, resources.
    """

    def __init__(self, missing_sources: list[str]) -> None:
        self.missing_sources = list(missing_sources)
        super().__init__(
            "No information available in the selected sources: "
            + ", ".join(self.missing_sources)
        )


class QueryInProgress(RetrievalError):
    """A query is already running for this chat session."""

    def __init__(self) -> None:
        super().__init__("A query is already in progress for this session")


# ── Remote index ────────────────────────────────────────────────


class RemoteMiss(RetrievalError):
    """No remote index exists yet for the topic (expected, not an error)."""

    def __init__(self, subject_slug: str, topic_slug: str) -> None:
        self.subject_slug = subject_slug
        self.topic_slug = topic_slug
        super().__init__(f"No remote index for {subject_slug}/{topic_slug}")


class RemoteTransportError(RetrievalError):
    """Network or HTTP failure talking to the remote indexing service."""

    def __init__(self, detail: str, status_code: int | None = None, url: str = "") -> None:
        self.detail = detail
        self.status_code = status_code
        self.url = url
        prefix = f"HTTP {status_code}: " if status_code is not None else ""
        super().__init__(f"{prefix}{detail} ({url})" if url else f"{prefix}{detail}")


# ── Capabilities ────────────────────────────────────────────────


class EmbeddingFailure(RetrievalError):
    """The embedding provider could not embed a text."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Embedding failed: {detail}")


class BackendUnavailable(RetrievalError):
    """The answering backend failed; the user may retry."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Answering backend unavailable: {detail}")


# ── Sessions & resources ────────────────────────────────────────


class SessionClosed(RetrievalError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Chat session '{session_id}' is closed")


class SessionNotFound(RetrievalError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Chat session '{session_id}' not found")


class ResourceNotFound(RetrievalError):
    def __init__(self, resource_id: str) -> None:
        self.resource_id = resource_id
        super().__init__(f"Resource '{resource_id}' not found")


class ResourceRejected(RetrievalError):
    """An upload failed validation (size or type)."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)
