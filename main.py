"""FastAPI entry point for the resource retrieval service."""

import asyncio
import logging
from contextlib import asynccontextmanager

import litellm
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import get_settings
from errors.exceptions import RetrievalError
from models.errors import error_payload
from resource_index.index_client import get_index_client
from services.answer_backend import get_answer_backend
from services.chat_session import get_session_registry, periodic_cleanup
from services.index_sync import get_index_sync
from services.middleware import RequestIdMiddleware

logger = logging.getLogger(__name__)

# ── Global LiteLLM settings ──────────────────────────────────
litellm.request_timeout = 60  # 60s timeout for all embedding API calls

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle — start/stop shared resources."""
    client = get_index_client()
    await client.start()

    registry = get_session_registry()
    sync = get_index_sync()
    cleanup_task = asyncio.create_task(
        periodic_cleanup(interval_seconds=settings.session_cleanup_interval)
    )
    logger.info(
        "Service ready (demo_mode=%s, embeddings=%s)",
        settings.demo_mode, settings.embedding_backend,
    )

    yield

    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    await registry.close_all()
    await sync.drain(timeout=settings.remote_timeout)
    await get_answer_backend().close()
    await client.close()


app = FastAPI(
    title="Resource Retrieval Service",
    description="Resource indexing, retrieval and question answering for study subjects",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


@app.exception_handler(RetrievalError)
async def retrieval_error_handler(request: Request, exc: RetrievalError):
    status_code, body = error_payload(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=body)


# ── Register routers ────────────────────────────────────────
from api.health import router as health_router  # noqa: E402
from api.resources import router as resources_router  # noqa: E402
from api.chat import router as chat_router  # noqa: E402

app.include_router(health_router)
app.include_router(resources_router)
app.include_router(chat_router)


if __name__ == "__main__":
    # Single worker: sessions, caches and resources live in process memory.
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.service_port,
        reload=settings.debug,
    )
