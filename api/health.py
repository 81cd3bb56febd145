"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from config.settings import get_settings
from services.embedding import get_embedding_provider

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health():
    settings = get_settings()
    return {
        "status": "healthy",
        "demoMode": settings.demo_mode,
        "embeddingBackend": get_embedding_provider().name,
    }
