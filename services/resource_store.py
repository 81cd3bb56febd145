"""Resource store — per-subject resource records with an ``indexed`` flag.

In-memory and owned by the host application.  Every mutation notifies the
registered listeners synchronously, before the mutating call returns, so
that cache invalidation is visible to the very next read.
"""

from __future__ import annotations

import binascii
import logging
from typing import Callable

from config.settings import get_settings
from errors.exceptions import ResourceNotFound, ResourceRejected
from models.resource import (
    ResourceEvent,
    ResourceEventType,
    ResourceRecord,
    decode_base64_payload,
)

logger = logging.getLogger(__name__)

ResourceListener = Callable[[ResourceEvent], None]


def payload_size(content_base64: str) -> int:
    """Decoded byte size of a bare base64 string or ``data:`` URL.

    Raises :class:`ResourceRejected` when the content is not valid base64.
    """
    try:
        return len(decode_base64_payload(content_base64))
    except (binascii.Error, ValueError) as exc:
        raise ResourceRejected(f"Content is not valid base64: {exc}") from None


class ResourceStore:
    """In-memory resource collection keyed by subject."""

    def __init__(
        self,
        max_bytes: int | None = None,
        allowed_mime_types: list[str] | None = None,
    ) -> None:
        settings = get_settings()
        self._max_bytes = settings.max_resource_bytes if max_bytes is None else max_bytes
        self._allowed = set(
            settings.allowed_mime_types if allowed_mime_types is None else allowed_mime_types
        )
        self._subjects: dict[str, dict[str, ResourceRecord]] = {}
        self._listeners: list[ResourceListener] = []

    # -- listeners -----------------------------------------------------------

    def subscribe(self, listener: ResourceListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ResourceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: ResourceEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Resource listener failed for %s", event.type.value)

    # -- reads ---------------------------------------------------------------

    def list_resources(self, subject_id: str) -> list[ResourceRecord]:
        """All resources of a subject, in upload order."""
        return list(self._subjects.get(subject_id, {}).values())

    def get(self, subject_id: str, resource_id: str) -> ResourceRecord:
        record = self._subjects.get(subject_id, {}).get(resource_id)
        if record is None:
            raise ResourceNotFound(resource_id)
        return record

    def indexed_text_resources(self, subject_id: str) -> list[ResourceRecord]:
        return [r for r in self.list_resources(subject_id) if r.indexed and r.is_text]

    # -- mutations -----------------------------------------------------------

    def add(
        self,
        subject_id: str,
        name: str,
        mime_type: str,
        content_base64: str,
    ) -> ResourceRecord:
        """Validate and store a new resource (``indexed=True``).

        The size limit applies to the decoded payload; that measured size is
        what the record stores.
        """
        if not name or not name.strip():
            raise ResourceRejected("Resource name is required")
        if mime_type not in self._allowed:
            raise ResourceRejected(f"File type not allowed: {mime_type}")
        size = payload_size(content_base64)
        if size > self._max_bytes:
            raise ResourceRejected(
                f"File too large: {size} bytes (max {self._max_bytes})"
            )

        record = ResourceRecord(
            subject_id=subject_id,
            name=name.strip(),
            mime_type=mime_type,
            size_bytes=size,
            content_base64=content_base64,
            indexed=True,
        )
        self._subjects.setdefault(subject_id, {})[record.id] = record
        logger.info(
            "Resource added: subject=%s id=%s name='%s' kind=%s (%d bytes)",
            subject_id, record.id, record.name, record.kind.value, size,
        )
        self._emit(ResourceEvent(
            type=ResourceEventType.ADDED,
            subject_id=subject_id,
            resource_id=record.id,
            resource_name=record.name,
            new_flag=True,
        ))
        return record

    def set_indexed(self, subject_id: str, resource_id: str, flag: bool) -> ResourceRecord:
        """Set the ``indexed`` flag.  Emits an event only when the flag changes."""
        record = self.get(subject_id, resource_id)
        if record.indexed == flag:
            return record
        record.indexed = flag
        logger.info(
            "Resource %s %s for indexing",
            resource_id, "included" if flag else "excluded",
        )
        self._emit(ResourceEvent(
            type=ResourceEventType.INDEX_TOGGLED,
            subject_id=subject_id,
            resource_id=resource_id,
            resource_name=record.name,
            new_flag=flag,
        ))
        return record

    def toggle_indexed(self, subject_id: str, resource_id: str) -> ResourceRecord:
        record = self.get(subject_id, resource_id)
        return self.set_indexed(subject_id, resource_id, not record.indexed)

    def delete(self, subject_id: str, resource_id: str) -> ResourceRecord:
        record = self.get(subject_id, resource_id)
        del self._subjects[subject_id][resource_id]
        logger.info("Resource deleted: subject=%s id=%s", subject_id, resource_id)
        self._emit(ResourceEvent(
            type=ResourceEventType.DELETED,
            subject_id=subject_id,
            resource_id=resource_id,
            resource_name=record.name,
        ))
        return record


# ── Module-level Singleton ───────────────────────────────────

_store: ResourceStore | None = None


def get_resource_store() -> ResourceStore:
    """Get the singleton resource store instance."""
    global _store
    if _store is None:
        _store = ResourceStore()
        logger.info("Initialized in-memory ResourceStore")
    return _store
