"""Tests for resource_index/retriever.py — cosine ranking and topic filter."""

from __future__ import annotations

import logging

import pytest

from models.retrieval import TextChunk
from resource_index.retriever import cosine_similarity, filter_by_topic, rank


def _chunk(text: str, embedding: list[float], topic_slug: str | None = None) -> TextChunk:
    return TextChunk(text=text, source_name="notes.txt", embedding=embedding, topic_slug=topic_slug)


class TestCosineSimilarity:
    def test_self_similarity_is_one(self):
        v = [0.3, -1.2, 4.0, 0.5]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal_is_zero(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)

    def test_opposite_is_minus_one(self):
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_zero_norm_is_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch_is_zero(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0]) == 0.0

    def test_empty_is_zero(self):
        assert cosine_similarity([], []) == 0.0


class TestRank:
    def test_sorted_non_increasing_and_bounded(self):
        chunks = [_chunk(f"c{i}", [1.0, float(i)]) for i in range(8)]
        query = [0.0, 1.0]
        ranked = rank(query, chunks, top_k=5)
        assert len(ranked) == 5
        scores = [cosine_similarity(query, c.embedding) for c in ranked]
        assert scores == sorted(scores, reverse=True)

    def test_fewer_chunks_than_k(self):
        chunks = [_chunk("a", [1.0, 0.0]), _chunk("b", [0.0, 1.0])]
        assert len(rank([1.0, 0.0], chunks, top_k=5)) == 2

    def test_ties_keep_original_order(self):
        chunks = [_chunk(name, [1.0, 0.0]) for name in ("first", "second", "third")]
        assert [c.text for c in rank([2.0, 0.0], chunks, top_k=3)] == ["first", "second", "third"]

    def test_best_match_first(self):
        chunks = [_chunk("far", [0.0, 1.0]), _chunk("near", [1.0, 0.1])]
        assert rank([1.0, 0.0], chunks)[0].text == "near"

    def test_empty_and_zero_k(self):
        assert rank([1.0], [], top_k=5) == []
        assert rank([1.0], [_chunk("a", [1.0])], top_k=0) == []

    def test_mismatched_embeddings_rank_last(self):
        chunks = [_chunk("broken", [1.0, 0.0, 0.0]), _chunk("ok", [1.0, 0.0])]
        assert [c.text for c in rank([1.0, 0.0], chunks)] == ["ok", "broken"]


class TestFilterByTopic:
    def test_keeps_matching_topic(self):
        chunks = [
            _chunk("a", [1.0], topic_slug="cells"),
            _chunk("b", [1.0], topic_slug="genetics"),
        ]
        assert [c.text for c in filter_by_topic(chunks, "cells")] == ["a"]

    def test_legacy_index_kept_whole_and_logged(self, caplog):
        chunks = [_chunk("a", [1.0]), _chunk("b", [1.0])]
        with caplog.at_level(logging.WARNING, logger="resource_index.retriever"):
            kept = filter_by_topic(chunks, "cells")
        assert kept == chunks
        assert "Reduced precision" in caplog.text
