"""Test helpers shared across modules."""

from __future__ import annotations

import base64

from services.embedding import EmbeddingProvider, HashEmbeddingProvider


def b64(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def long_text(topic: str, words: int = 120) -> str:
    """Readable filler text, long enough to yield chunks past the 50-char floor."""
    return " ".join(f"{topic}{i % 10}" for i in range(words))


class CountingEmbedder(EmbeddingProvider):
    """Hash embeddings that record every call."""

    name = "counting"

    def __init__(self, dimensions: int = 16) -> None:
        self._inner = HashEmbeddingProvider(dimensions)
        self.calls: list[str] = []

    @property
    def dimensions(self) -> int:
        return self._inner.dimensions

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        return await self._inner.embed(text)
