"""HTTP client for the remote indexing service.

Wraps ``httpx.AsyncClient`` with:
- collection-wide ``POST /index`` (the stored topic index is replaced by
  exactly the submitted resource set; there is no incremental primitive)
- index fetch from a slug-keyed storage location, falling back to a
  second static location
- request timing logs
- connection-pool lifecycle tied to FastAPI lifespan

No request is retried automatically.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from config.settings import get_settings
from errors.exceptions import RemoteMiss, RemoteTransportError
from models.resource import ResourceText
from models.retrieval import TextChunk, TopicScope

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_client: RemoteIndexClient | None = None


def index_path(subject_slug: str, topic_slug: str) -> str:
    return f"indices/{subject_slug}/{topic_slug}.json"


class RemoteIndexClient:
    """Async HTTP client for reindex and index fetch."""

    def __init__(
        self,
        index_service_url: str | None = None,
        storage_url: str | None = None,
        static_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._index_service_url = (
            settings.index_service_url if index_service_url is None else index_service_url
        ).rstrip("/")
        self._locations = [
            url.rstrip("/")
            for url in (
                settings.index_storage_url if storage_url is None else storage_url,
                settings.index_static_url if static_url is None else static_url,
            )
            if url
        ]
        self._api_key = settings.remote_api_key if api_key is None else api_key
        self._timeout = settings.remote_timeout if timeout is None else timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Create the underlying ``httpx.AsyncClient`` connection pool."""
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            headers=self._auth_headers(),
            transport=self._transport,
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=30,
            ),
        )
        logger.info(
            "RemoteIndexClient started — index_service=%s, locations=%s",
            self._index_service_url or "<unset>", self._locations,
        )

    async def close(self) -> None:
        """Gracefully close the connection pool."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None
            logger.info("RemoteIndexClient closed")

    @property
    def reindex_configured(self) -> bool:
        return bool(self._index_service_url)

    # -- public API ----------------------------------------------------------

    async def reindex(self, scope: TopicScope, resource_texts: list[ResourceText]) -> int:
        """Replace the remote index for *scope* with chunks from *resource_texts*.

        Returns the chunk count reported by the service.
        Raises :class:`RemoteTransportError` on any failure.
        """
        if not self._index_service_url:
            raise RemoteTransportError("Index service URL not configured")

        url = f"{self._index_service_url}/index"
        body = {
            "subjectId": scope.subject_id,
            "topicId": scope.topic_id,
            "subjectName": scope.subject_name,
            "topicName": scope.topic_name,
            "resourceTexts": [rt.model_dump(by_alias=True) for rt in resource_texts],
        }
        response = await self._send("POST", url, json_body=body)
        if not response.is_success:
            raise RemoteTransportError(
                _error_detail(response),
                status_code=response.status_code,
                url=url,
            )

        data = _json_or_none(response)
        if not isinstance(data, dict):
            raise RemoteTransportError("Malformed reindex response", url=url)
        chunk_count = data.get("chunks", 0)
        if not isinstance(chunk_count, int):
            chunk_count = len(chunk_count) if isinstance(chunk_count, list) else 0
        logger.info(
            "Reindexed %s/%s with %d resources → %d chunks",
            scope.subject_slug, scope.topic_slug, len(resource_texts), chunk_count,
        )
        return chunk_count

    async def fetch_index(self, subject_slug: str, topic_slug: str) -> list[TextChunk]:
        """Fetch the precomputed chunk list for a topic.

        Locations are tried in order.  HTTP-not-ok, a non-list body and an
        empty list all count as a miss.  Raises :class:`RemoteMiss` when every
        location missed and :class:`RemoteTransportError` when at least one
        location failed at the network level and none returned chunks.
        """
        if not self._locations:
            logger.info("No remote index location configured — treating as miss")
            raise RemoteMiss(subject_slug, topic_slug)

        path = index_path(subject_slug, topic_slug)
        transport_error: RemoteTransportError | None = None

        for base in self._locations:
            url = f"{base}/{path}"
            try:
                response = await self._send("GET", url)
            except RemoteTransportError as exc:
                logger.error("Remote index fetch failed at %s: %s", url, exc.detail)
                transport_error = exc
                continue

            if not response.is_success:
                logger.info("Remote index miss at %s (HTTP %d)", url, response.status_code)
                continue

            chunks = _parse_chunks(_json_or_none(response), url)
            if not chunks:
                logger.info("Remote index miss at %s (empty or malformed body)", url)
                continue

            logger.info("Remote index hit at %s — %d fragments", url, len(chunks))
            return chunks

        if transport_error is not None:
            raise transport_error
        raise RemoteMiss(subject_slug, topic_slug)

    # -- internals -----------------------------------------------------------

    async def _send(
        self,
        method: str,
        url: str,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        client = self._ensure_started()
        t0 = time.monotonic()
        try:
            response = await client.request(method, url, json=json_body)
        except httpx.TransportError as exc:
            elapsed_ms = (time.monotonic() - t0) * 1000
            logger.warning("%s %s → network error (%.0fms): %s", method, url, elapsed_ms, exc)
            raise RemoteTransportError(str(exc) or type(exc).__name__, url=url) from exc

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info("%s %s → %d (%.0fms)", method, url, response.status_code, elapsed_ms)
        return response

    def _auth_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("RemoteIndexClient not started — call await client.start() first")
        return self._http


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _error_detail(response: httpx.Response) -> str:
    return response.text[:500] if response.text else f"HTTP {response.status_code}"


def _parse_chunks(data: Any, url: str) -> list[TextChunk]:
    if not isinstance(data, list):
        return []
    chunks: list[TextChunk] = []
    skipped = 0
    for item in data:
        try:
            chunks.append(TextChunk.model_validate(item))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning("Skipped %d malformed chunks from %s", skipped, url)
    return chunks


# ---------------------------------------------------------------------------
# Singleton accessor
# ---------------------------------------------------------------------------

def get_index_client() -> RemoteIndexClient:
    """Return the module-level RemoteIndexClient singleton (create if needed)."""
    global _client
    if _client is None:
        _client = RemoteIndexClient()
    return _client
