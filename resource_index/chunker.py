"""Split decoded resource text into word-grouped chunks.

Chunks are built from whitespace-delimited words, ``max_chars // 6`` words
per chunk (about six characters per word), so ``max_chars`` is an
approximation rather than a strict character bound.  Chunks whose trimmed
text is shorter than ``min_chars`` carry too little signal and are dropped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from models.retrieval import TextChunk

if TYPE_CHECKING:
    from services.embedding import EmbeddingProvider

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 500
DEFAULT_MIN_CHARS = 50
AVG_CHARS_PER_WORD = 6


def words_per_chunk(max_chars: int) -> int:
    return max(1, max_chars // AVG_CHARS_PER_WORD)


def split_text(
    text: str,
    max_chars: int = DEFAULT_MAX_CHARS,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> list[str]:
    """Return the chunk texts for *text*, in order, without embeddings."""
    words = (text or "").split()
    if not words:
        return []

    size = words_per_chunk(max_chars)
    pieces: list[str] = []
    for start in range(0, len(words), size):
        piece = " ".join(words[start:start + size]).strip()
        if len(piece) < min_chars:
            continue
        pieces.append(piece)
    return pieces


async def chunk(
    text: str,
    source_name: str,
    embedder: EmbeddingProvider,
    *,
    topic_slug: str | None = None,
    resource_id: str | None = None,
    max_chars: int = DEFAULT_MAX_CHARS,
    min_chars: int = DEFAULT_MIN_CHARS,
) -> list[TextChunk]:
    """Chunk one resource's text and embed every chunk.

    The embedder is called exactly once per emitted chunk, sequentially, so a
    cancelled caller never leaves embedding calls running in the background.
    """
    pieces = split_text(text, max_chars=max_chars, min_chars=min_chars)
    chunks: list[TextChunk] = []
    for ord_, piece in enumerate(pieces):
        embedding = await embedder.embed(piece)
        chunks.append(
            TextChunk(
                text=piece,
                source_name=source_name,
                embedding=embedding,
                topic_slug=topic_slug,
                id=f"{resource_id or source_name}:{ord_}",
                ord=ord_,
                resource_id=resource_id,
            )
        )

    logger.debug("Chunked '%s' → %d chunks", source_name, len(chunks))
    return chunks
