"""FastAPI endpoint tests using httpx.AsyncClient."""

from __future__ import annotations

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

import resource_index.index_client as index_client_module
import services.answer_backend as answer_backend_module
import services.chat_session as chat_session_module
import services.concurrency as concurrency_module
import services.embedding as embedding_module
import services.index_sync as index_sync_module
import services.resource_store as resource_store_module
from main import app
from resource_index.index_client import RemoteIndexClient
from services.answer_backend import DemoAnswerBackend
from services.embedding import HashEmbeddingProvider
from tests.helpers import b64, long_text

SCOPE = {
    "subjectId": "subj-bio",
    "subjectName": "Biology",
    "topicId": "topic-cells",
    "topicName": "Cells",
}


@pytest.fixture
def backend() -> DemoAnswerBackend:
    return DemoAnswerBackend()


@pytest.fixture(autouse=True)
def offline_services(monkeypatch, store, backend):
    """Fresh offline singletons: no remote index, hash embeddings, demo answers."""
    monkeypatch.setattr(resource_store_module, "_store", store)
    monkeypatch.setattr(embedding_module, "_provider", HashEmbeddingProvider(16))
    monkeypatch.setattr(answer_backend_module, "_backend", backend)
    monkeypatch.setattr(
        index_client_module,
        "_client",
        RemoteIndexClient(index_service_url="", storage_url="", static_url=""),
    )
    monkeypatch.setattr(concurrency_module, "_rebuild_flight", None)
    monkeypatch.setattr(chat_session_module, "_registry", None)
    monkeypatch.setattr(index_sync_module, "_sync", None)
    # The sync service subscribes to the store when first created.
    index_sync_module.get_index_sync()


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _upload(client, name="notes.txt", text=None, mime="text/plain", topic=True):
    body = {
        "name": name,
        "mimeType": mime,
        "contentBase64": b64(text if text is not None else long_text("membrane")),
    }
    if topic:
        body["topic"] = SCOPE
    return await client.post("/api/subjects/subj-bio/resources", json=body)


async def _open_session(client) -> str:
    resp = await client.post("/api/chat/sessions", json=SCOPE)
    assert resp.status_code == 201
    return resp.json()["sessionId"]


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["embeddingBackend"] == "hash"


# ── Resources ──────────────────────────────────────────────────


class TestResources:
    @pytest.mark.asyncio
    async def test_upload_and_list(self, client):
        resp = await _upload(client)
        assert resp.status_code == 201
        data = resp.json()
        assert data["resource"]["indexed"] is True
        assert data["resource"]["name"] == "notes.txt"
        assert "contentBase64" not in data["resource"]
        # No index service configured in tests
        assert data["sync"]["status"] == "skipped"

        listed = await client.get("/api/subjects/subj-bio/resources")
        assert [r["name"] for r in listed.json()] == ["notes.txt"]

    @pytest.mark.asyncio
    async def test_upload_without_topic(self, client):
        resp = await _upload(client, topic=False)
        assert resp.status_code == 201
        assert resp.json()["sync"]["status"] == "skipped"

    @pytest.mark.asyncio
    async def test_upload_rejected_type(self, client):
        resp = await _upload(client, name="tool.exe", mime="application/x-msdownload")
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_upload_stores_measured_size(self, client):
        resp = await client.post(
            "/api/subjects/subj-bio/resources",
            json={"name": "a.txt", "mimeType": "text/plain", "contentBase64": b64("hello"), "sizeBytes": 1},
        )
        assert resp.status_code == 201
        assert resp.json()["resource"]["sizeBytes"] == 5

    @pytest.mark.asyncio
    async def test_upload_invalid_base64_rejected(self, client):
        resp = await client.post(
            "/api/subjects/subj-bio/resources",
            json={"name": "a.txt", "mimeType": "text/plain", "contentBase64": "%%%", "sizeBytes": 1},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_upload_missing_fields(self, client):
        resp = await client.post("/api/subjects/subj-bio/resources", json={})
        assert resp.status_code == 422  # FastAPI validation error

    @pytest.mark.asyncio
    async def test_toggle_indexed(self, client):
        resource_id = (await _upload(client)).json()["resource"]["id"]
        resp = await client.patch(
            f"/api/subjects/subj-bio/resources/{resource_id}",
            json={"indexed": False, "topic": SCOPE},
        )
        assert resp.status_code == 200
        assert resp.json()["resource"]["indexed"] is False

    @pytest.mark.asyncio
    async def test_patch_unknown_resource(self, client):
        resp = await client.patch(
            "/api/subjects/subj-bio/resources/resource_missing", json={"indexed": False}
        )
        assert resp.status_code == 404
        assert resp.json()["code"] == "RESOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_delete(self, client):
        resource_id = (await _upload(client)).json()["resource"]["id"]
        resp = await client.delete(
            f"/api/subjects/subj-bio/resources/{resource_id}",
            params={"topicId": "topic-cells", "topicName": "Cells", "subjectName": "Biology"},
        )
        assert resp.status_code == 200
        assert resp.json()["deleted"] == resource_id
        listed = await client.get("/api/subjects/subj-bio/resources")
        assert listed.json() == []

    @pytest.mark.asyncio
    async def test_mutation_invalidates_open_session(self, client):
        await _upload(client)
        session_id = await _open_session(client)
        status = await client.get(f"/api/chat/sessions/{session_id}/index-status")
        assert status.json()["state"] == "ready"

        await _upload(client, name="more.txt", text=long_text("ribosome"))
        status = await client.get(f"/api/chat/sessions/{session_id}/index-status")
        assert status.json()["state"] == "loading"


# ── Chat sessions ──────────────────────────────────────────────


class TestChat:
    @pytest.mark.asyncio
    async def test_create_session_without_resources(self, client):
        resp = await client.post("/api/chat/sessions", json=SCOPE)
        assert resp.status_code == 201
        data = resp.json()
        assert data["sessionId"].startswith("chat-")
        assert data["indexStatus"]["state"] == "empty"

    @pytest.mark.asyncio
    async def test_create_session_builds_local_index(self, client):
        await _upload(client)
        resp = await client.post("/api/chat/sessions", json=SCOPE)
        status = resp.json()["indexStatus"]
        assert status["state"] == "ready"
        assert status["fragmentCount"] > 0

    @pytest.mark.asyncio
    async def test_ask_from_notes(self, client):
        session_id = await _open_session(client)
        resp = await client.post(
            f"/api/chat/sessions/{session_id}/ask",
            json={
                "query": "What is a membrane?",
                "sources": {"notes": True, "resources": True, "web": False},
                "editorText": "The membrane is a lipid bilayer.",
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["demo"] is True
        assert "Modo Demo" in data["answerText"]
        assert data["missingSources"] == ["recursos indexados"]

    @pytest.mark.asyncio
    async def test_ask_cites_indexed_resources(self, client):
        await _upload(client)
        session_id = await _open_session(client)
        resp = await client.post(
            f"/api/chat/sessions/{session_id}/ask",
            json={"query": "membrane?", "sources": {"notes": False, "resources": True}},
        )
        assert resp.status_code == 200
        assert {s["name"] for s in resp.json()["sources"]} == {"notes.txt"}

    @pytest.mark.asyncio
    async def test_ask_without_sources(self, client):
        session_id = await _open_session(client)
        resp = await client.post(
            f"/api/chat/sessions/{session_id}/ask",
            json={"query": "q?", "sources": {"notes": False, "resources": False, "web": False}},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "NO_SOURCE_SELECTED"

    @pytest.mark.asyncio
    async def test_ask_with_nothing_to_answer_from(self, client):
        session_id = await _open_session(client)
        resp = await client.post(
            f"/api/chat/sessions/{session_id}/ask",
            json={"query": "q?", "sources": {"notes": False, "resources": True}},
        )
        assert resp.status_code == 422
        data = resp.json()
        assert data["code"] == "NO_CONTENT_AVAILABLE"
        assert data["missingSources"] == ["recursos indexados"]

    @pytest.mark.asyncio
    async def test_second_query_while_busy(self, client, monkeypatch):
        release = asyncio.Event()

        class SlowBackend(DemoAnswerBackend):
            async def answer(self, request):
                await release.wait()
                return await super().answer(request)

        monkeypatch.setattr(answer_backend_module, "_backend", SlowBackend())
        monkeypatch.setattr(chat_session_module, "_registry", None)
        session_id = await _open_session(client)
        session = chat_session_module.get_session_registry().get(session_id)
        body = {"query": "q?", "sources": {"notes": True, "resources": False}, "editorText": "n"}

        first = asyncio.ensure_future(client.post(f"/api/chat/sessions/{session_id}/ask", json=body))
        for _ in range(100):
            if session.orchestrator.busy:
                break
            await asyncio.sleep(0)
        assert session.orchestrator.busy

        resp = await client.post(f"/api/chat/sessions/{session_id}/ask", json=body)
        assert resp.status_code == 409
        assert resp.json()["code"] == "QUERY_IN_PROGRESS"

        release.set()
        assert (await first).status_code == 200

    @pytest.mark.asyncio
    async def test_change_topic(self, client):
        session_id = await _open_session(client)
        resp = await client.put(
            f"/api/chat/sessions/{session_id}/topic",
            json={**SCOPE, "topicId": "topic-dna", "topicName": "DNA"},
        )
        assert resp.status_code == 200
        assert resp.json()["indexStatus"]["state"] == "empty"

    @pytest.mark.asyncio
    async def test_refresh_index(self, client):
        session_id = await _open_session(client)
        await _upload(client)
        resp = await client.post(f"/api/chat/sessions/{session_id}/index/refresh")
        assert resp.status_code == 200
        assert resp.json()["state"] == "ready"

    @pytest.mark.asyncio
    async def test_close_session(self, client):
        session_id = await _open_session(client)
        resp = await client.delete(f"/api/chat/sessions/{session_id}")
        assert resp.status_code == 204

        resp = await client.get(f"/api/chat/sessions/{session_id}/index-status")
        assert resp.status_code == 404
        assert resp.json()["code"] == "SESSION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_session(self, client):
        resp = await client.post("/api/chat/sessions/chat-nope/ask", json={"query": "q"})
        assert resp.status_code == 404
