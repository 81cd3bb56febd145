"""Tests for resource_index/chunker.py."""

from __future__ import annotations

import pytest

from errors.exceptions import EmbeddingFailure
from resource_index.chunker import chunk, split_text, words_per_chunk
from tests.helpers import CountingEmbedder, long_text


class TestSplitText:
    def test_words_per_chunk(self):
        assert words_per_chunk(500) == 83
        assert words_per_chunk(3) == 1

    def test_empty_text(self):
        assert split_text("") == []
        assert split_text("   \n\t ") == []

    def test_never_emits_short_chunks(self):
        text = long_text("cell", 200) + " tiny"
        pieces = split_text(text, max_chars=120)
        assert pieces
        assert all(len(p.strip()) >= 50 for p in pieces)

    def test_short_text_dropped(self):
        assert split_text("Too short to matter.") == []

    def test_covers_text_modulo_whitespace(self):
        text = "Mitochondria  produce\nATP.\t" + long_text("organelle", 297)
        pieces = split_text(text, max_chars=60)
        assert " ".join(pieces) == " ".join(text.split())

    def test_groups_by_word_count(self):
        words = [f"word{i:03d}" for i in range(30)]
        pieces = split_text(" ".join(words), max_chars=60, min_chars=1)
        assert [len(p.split()) for p in pieces] == [10, 10, 10]


class TestChunk:
    @pytest.mark.asyncio
    async def test_embeds_once_per_chunk(self):
        embedder = CountingEmbedder()
        chunks = await chunk(long_text("membrane", 250), "notes.txt", embedder, topic_slug="cells")
        assert len(chunks) == len(embedder.calls)
        assert [c.text for c in chunks] == embedder.calls

    @pytest.mark.asyncio
    async def test_chunk_metadata(self):
        embedder = CountingEmbedder(dimensions=8)
        chunks = await chunk(
            long_text("nucleus", 200), "notes.txt", embedder,
            topic_slug="cells", resource_id="resource_1",
        )
        assert all(c.source_name == "notes.txt" for c in chunks)
        assert all(c.topic_slug == "cells" for c in chunks)
        assert all(c.resource_id == "resource_1" for c in chunks)
        assert [c.ord for c in chunks] == list(range(len(chunks)))
        assert all(len(c.embedding) == 8 for c in chunks)

    @pytest.mark.asyncio
    async def test_embedding_failure_propagates(self):
        class Failing(CountingEmbedder):
            async def embed(self, text):
                raise EmbeddingFailure("offline")

        with pytest.raises(EmbeddingFailure):
            await chunk(long_text("ribosome", 200), "notes.txt", Failing())
