"""Chat API — per-topic sessions that answer questions from notes and resources."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from models.request import AskQueryRequest, CreateSessionResponse
from models.retrieval import TopicScope
from services.chat_session import get_session_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("/sessions", status_code=201)
async def create_session(scope: TopicScope):
    """Open a chat for a topic and warm its index."""
    session = get_session_registry().create(scope)
    status = await session.refresh_index()
    return CreateSessionResponse(
        session_id=session.session_id, index_status=status
    ).model_dump(by_alias=True, exclude_none=True)


@router.put("/sessions/{session_id}/topic")
async def change_topic(session_id: str, scope: TopicScope):
    session = get_session_registry().get(session_id)
    session.change_topic(scope)
    status = await session.refresh_index()
    return {"indexStatus": status.model_dump(by_alias=True, exclude_none=True)}


@router.get("/sessions/{session_id}/index-status")
async def index_status(session_id: str):
    status = get_session_registry().get(session_id).index_status()
    return status.model_dump(by_alias=True, exclude_none=True)


@router.post("/sessions/{session_id}/index/refresh")
async def refresh_index(session_id: str):
    status = await get_session_registry().get(session_id).refresh_index()
    return status.model_dump(by_alias=True, exclude_none=True)


@router.post("/sessions/{session_id}/ask")
async def ask(session_id: str, req: AskQueryRequest):
    """Answer one question.  422 on source validation, 409 while busy, 503 on backend failure."""
    session = get_session_registry().get(session_id)
    result = await session.ask(req.query, req.sources, req.editor_text)
    return result.model_dump(by_alias=True, exclude_none=True)


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str):
    await get_session_registry().close(session_id)
