"""Resource library API — upload, list, include/exclude and delete.

Each mutation invalidates the caches of open chats on the subject before
the response is sent.  When a topic scope is supplied, the subject's
complete indexed text set is resubmitted to the remote index and the
outcome is returned as ``sync``; a failed resubmission is a warning, the
mutation itself has already succeeded.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from models.request import UpdateResourceRequest, UploadResourceRequest
from models.retrieval import TopicScope
from services.index_sync import get_index_sync
from services.resource_store import get_resource_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subjects", tags=["resources"])


def _scope_for(subject_id: str, scope: TopicScope | None) -> TopicScope | None:
    if scope is None:
        return None
    if scope.subject_id != subject_id:
        logger.warning(
            "Topic scope subject %s differs from path subject %s — using path subject",
            scope.subject_id, subject_id,
        )
        return scope.model_copy(update={"subject_id": subject_id})
    return scope


@router.post("/{subject_id}/resources", status_code=201)
async def upload_resource(subject_id: str, req: UploadResourceRequest):
    """Store a resource (``indexed=true``) and resubmit the indexed set."""
    record = get_resource_store().add(
        subject_id,
        req.name,
        req.mime_type,
        req.content_base64,
    )
    outcome = await get_index_sync().sync_after_mutation(_scope_for(subject_id, req.topic))
    return {
        "resource": record.summary(),
        "sync": outcome.model_dump(by_alias=True, exclude_none=True),
    }


@router.get("/{subject_id}/resources")
async def list_resources(subject_id: str):
    return [r.summary() for r in get_resource_store().list_resources(subject_id)]


@router.patch("/{subject_id}/resources/{resource_id}")
async def update_resource(subject_id: str, resource_id: str, req: UpdateResourceRequest):
    """Include or exclude a resource from retrieval."""
    record = get_resource_store().set_indexed(subject_id, resource_id, req.indexed)
    outcome = await get_index_sync().sync_after_mutation(_scope_for(subject_id, req.topic))
    return {
        "resource": record.summary(),
        "sync": outcome.model_dump(by_alias=True, exclude_none=True),
    }


@router.delete("/{subject_id}/resources/{resource_id}")
async def delete_resource(
    subject_id: str,
    resource_id: str,
    topic_id: str | None = Query(None, alias="topicId"),
    topic_name: str | None = Query(None, alias="topicName"),
    subject_name: str | None = Query(None, alias="subjectName"),
):
    get_resource_store().delete(subject_id, resource_id)
    scope = None
    if topic_id and topic_name and subject_name:
        scope = TopicScope(
            subject_id=subject_id,
            subject_name=subject_name,
            topic_id=topic_id,
            topic_name=topic_name,
        )
    outcome = await get_index_sync().sync_after_mutation(scope)
    return {
        "deleted": resource_id,
        "sync": outcome.model_dump(by_alias=True, exclude_none=True),
    }
