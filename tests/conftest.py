"""Shared pytest fixtures for the retrieval service tests.

Provides:
- ``scope``: the Biology / Cells topic scope
- ``store``: fresh in-memory ResourceStore per test
- ``embedder``: deterministic hash embeddings that count calls
- ``flight``: isolated single-flight group so rebuilds never leak across tests
- ``make_text_resource``: uploads a text/plain resource into ``store``
"""

from __future__ import annotations

import pytest

from models.retrieval import TopicScope
from services.concurrency import SingleFlight
from services.resource_store import ResourceStore
from tests.helpers import CountingEmbedder, b64


@pytest.fixture
def scope() -> TopicScope:
    return TopicScope(
        subject_id="subj-bio",
        subject_name="Biology",
        topic_id="topic-cells",
        topic_name="Cells",
    )


@pytest.fixture
def store() -> ResourceStore:
    return ResourceStore(
        max_bytes=1024 * 1024,
        allowed_mime_types=["text/plain", "application/pdf", "image/png"],
    )


@pytest.fixture
def embedder() -> CountingEmbedder:
    return CountingEmbedder()


@pytest.fixture
def flight() -> SingleFlight:
    return SingleFlight("test")


@pytest.fixture
def make_text_resource(store):
    def _make(name: str, text: str, subject_id: str = "subj-bio", indexed: bool = True):
        record = store.add(subject_id, name, "text/plain", b64(text))
        if not indexed:
            store.set_indexed(subject_id, record.id, False)
        return record

    return _make
