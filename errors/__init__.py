"""Custom exception hierarchy for the resource retrieval service."""

from errors.exceptions import (
    BackendUnavailable,
    EmbeddingFailure,
    NoContentAvailable,
    NoSourceSelected,
    QueryInProgress,
    QueryValidationError,
    RemoteMiss,
    RemoteTransportError,
    ResourceNotFound,
    ResourceRejected,
    RetrievalError,
    SessionClosed,
    SessionNotFound,
)

__all__ = [
    "BackendUnavailable",
    "EmbeddingFailure",
    "NoContentAvailable",
    "NoSourceSelected",
    "QueryInProgress",
    "QueryValidationError",
    "RemoteMiss",
    "RemoteTransportError",
    "ResourceNotFound",
    "ResourceRejected",
    "RetrievalError",
    "SessionClosed",
    "SessionNotFound",
]
