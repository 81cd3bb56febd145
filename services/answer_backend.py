"""Answering backends — turn an assembled ask request into a QueryResult.

- :class:`HttpAnswerBackend` posts to the real ``/ask`` endpoint.
- :class:`DemoAnswerBackend` is a deterministic responder used when no
  backend is configured.  It follows the same control flow but performs no
  synthesis: the answer only echoes what was found.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import ValidationError

from config.settings import get_settings
from errors.exceptions import BackendUnavailable
from models.retrieval import AskRequest, QueryResult, SourceCitation

logger = logging.getLogger(__name__)

DEMO_SNIPPET_CHARS = 100


class AnswerBackend(ABC):
    demo: bool = False

    @abstractmethod
    async def answer(self, request: AskRequest) -> QueryResult:
        """Answer *request*.  Raises :class:`BackendUnavailable` on failure."""
        ...

    async def close(self) -> None:
        return None


class HttpAnswerBackend(AnswerBackend):
    """``POST ask_url`` with the assembled request body."""

    def __init__(
        self,
        ask_url: str,
        api_key: str = "",
        timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._ask_url = ask_url
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers=headers,
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def answer(self, request: AskRequest) -> QueryResult:
        body = request.model_dump(by_alias=True, mode="json")
        t0 = time.monotonic()
        try:
            response = await self._client().post(self._ask_url, json=body)
        except httpx.TransportError as exc:
            elapsed_ms = (time.monotonic() - t0) * 1000
            logger.warning("POST %s → network error (%.0fms): %s", self._ask_url, elapsed_ms, exc)
            raise BackendUnavailable(str(exc) or type(exc).__name__) from exc

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info("POST %s → %d (%.0fms)", self._ask_url, response.status_code, elapsed_ms)
        if not response.is_success:
            detail = response.text[:300] if response.text else f"HTTP {response.status_code}"
            raise BackendUnavailable(f"HTTP {response.status_code}: {detail}")

        try:
            data = response.json()
        except ValueError as exc:
            raise BackendUnavailable("Malformed answer response") from exc
        return _result_from_payload(data)


class DemoAnswerBackend(AnswerBackend):
    """Deterministic stand-in: echoes the query and what retrieval found."""

    demo = True

    async def answer(self, request: AskRequest) -> QueryResult:
        fragments = len(request.top_chunks)
        lines = [
            "**Modo Demo**",
            "",
            f'Pregunta: "{request.query}"',
            f"Fragmentos relevantes encontrados: {fragments}",
            f"Apuntes incluidos: {'sí' if request.extra_context else 'no'}",
            f"Búsqueda web permitida: {'sí' if request.allow_web else 'no'}",
            "",
            "Configura un backend de respuestas para obtener respuestas reales.",
        ]

        sources: list[SourceCitation] = []
        seen: set[str] = set()
        for c in request.top_chunks:
            if c.source in seen:
                continue
            seen.add(c.source)
            sources.append(SourceCitation(
                name=c.source,
                snippet=_snippet(c.text, DEMO_SNIPPET_CHARS),
                url=c.url,
            ))

        return QueryResult(answer_text="\n".join(lines), sources=sources, demo=True)


def _snippet(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _result_from_payload(data: Any) -> QueryResult:
    if not isinstance(data, dict):
        raise BackendUnavailable("Malformed answer response")
    items = data.get("sources") or []
    if not isinstance(items, list):
        raise BackendUnavailable("Malformed answer response: sources is not a list")
    sources: list[SourceCitation] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = item.get("name") or item.get("source") or ""
        if not name:
            continue
        try:
            sources.append(SourceCitation(
                name=name,
                snippet=item.get("snippet") or "",
                url=item.get("url"),
            ))
        except ValidationError as exc:
            logger.warning("Skipping malformed source in answer response: %s", exc.errors()[0]["msg"])
    return QueryResult(answer_text=str(data.get("answer") or ""), sources=sources)


# ── Module-level Singleton ───────────────────────────────────

_backend: AnswerBackend | None = None


def get_answer_backend() -> AnswerBackend:
    """Return the configured answering backend (demo when ``ask_url`` is unset)."""
    global _backend
    if _backend is None:
        settings = get_settings()
        if settings.demo_mode:
            _backend = DemoAnswerBackend()
            logger.info("Answering backend: demo responder")
        else:
            _backend = HttpAnswerBackend(
                settings.ask_url,
                api_key=settings.remote_api_key,
                timeout=max(settings.remote_timeout, 60),
            )
            logger.info("Answering backend: %s", settings.ask_url)
    return _backend
