"""Resource records owned by the host application's ResourceStore.

A resource is a file the learner attached to a subject.  Only plain-text
resources are chunked; every other kind is stored but never indexed.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import Field

from models.base import CamelModel

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"\.[^/.]+$")


class ResourceKind(str, Enum):
    IMAGE = "image"
    PDF = "pdf"
    TEXT = "text"
    AUDIO = "audio"
    FILE = "file"


def kind_for_mime(mime_type: str) -> ResourceKind:
    """Map a mime type to the coarse resource kind used by the study app."""
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return ResourceKind.IMAGE
    if mime == "application/pdf":
        return ResourceKind.PDF
    if mime == "text/plain":
        return ResourceKind.TEXT
    if mime.startswith("audio/"):
        return ResourceKind.AUDIO
    return ResourceKind.FILE


def source_key(name: str) -> str:
    """Join key between a chunk's ``sourceName`` and a resource name.

    Case-insensitive with the extension stripped, so ``Notes.TXT`` and
    ``notes.pdf`` share a key.  Resources that collide on this key are
    treated as the same source.
    """
    return _EXTENSION_RE.sub("", (name or "").strip().lower())


def new_resource_id() -> str:
    return f"resource_{uuid.uuid4().hex[:12]}"


def decode_base64_payload(content: str) -> bytes:
    """Decode a bare base64 string or a ``data:`` URL into bytes.

    Whitespace is ignored and missing ``=`` padding is restored.  Raises
    :class:`binascii.Error` when the payload is not valid base64.
    """
    payload = content or ""
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    payload = "".join(payload.split())
    payload += "=" * (-len(payload) % 4)
    return base64.b64decode(payload, validate=True)


def decode_base64_text(content: str) -> str:
    """Decode a bare base64 string or a ``data:`` URL into UTF-8 text."""
    try:
        raw = decode_base64_payload(content)
    except (binascii.Error, ValueError) as exc:
        logger.warning("Resource content is not valid base64 (%s); treating as empty", exc)
        return ""
    return raw.decode("utf-8", errors="replace")


class ResourceRecord(CamelModel):
    """A file attached to a subject."""

    id: str = Field(default_factory=new_resource_id)
    subject_id: str
    name: str
    mime_type: str
    size_bytes: int = 0
    content_base64: str = ""
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    indexed: bool = True

    @property
    def kind(self) -> ResourceKind:
        return kind_for_mime(self.mime_type)

    @property
    def is_text(self) -> bool:
        return self.kind is ResourceKind.TEXT

    def decode_text(self) -> str:
        return decode_base64_text(self.content_base64)

    def summary(self) -> dict:
        """Wire representation without the (potentially large) content."""
        data = self.model_dump(by_alias=True, mode="json", exclude={"content_base64"})
        data["kind"] = self.kind.value
        return data


class ResourceText(CamelModel):
    """A decoded text resource submitted to the remote indexing service."""

    name: str
    text: str


class ResourceEventType(str, Enum):
    ADDED = "resourceAdded"
    DELETED = "resourceDeleted"
    INDEX_TOGGLED = "resourceIndexToggled"


class ResourceEvent(CamelModel):
    """Mutation event emitted by the ResourceStore."""

    type: ResourceEventType
    subject_id: str
    resource_id: str
    resource_name: str = ""
    new_flag: bool | None = None
