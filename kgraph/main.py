"""FastAPI application factory with lifespan events."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kgraph.api.dependencies import (
    set_chat_log,
    set_mutations,
    set_persistence,
    set_sessions,
)
from kgraph.api.router import api_router
from kgraph.config import get_settings
from kgraph.graph.layout import LayoutConfig
from kgraph.models.llm_registry import LLMRegistry
from kgraph.models.model_router import ModelRouter
from kgraph.services.chat_log import ChatLog
from kgraph.services.generation_service import GenerationService
from kgraph.services.mutation_service import MutationService
from kgraph.services.persistence_service import PersistenceBridge
from kgraph.services.project_store import ProjectStore
from kgraph.services.session import SessionRegistry
from kgraph.utils.exceptions import (
    ExpansionInProgressError,
    GenerationError,
    SessionNotFoundError,
    StaleResultError,
)
from kgraph.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application startup and shutdown resources."""
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    # Redis-backed project store + chat log (optional capability)
    redis_client = None
    store: ProjectStore | None = None
    chat_log: ChatLog | None = None
    if settings.PERSISTENCE_ENABLED:
        redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        store = ProjectStore(client=redis_client)
        chat_log = ChatLog(client=redis_client)
        logger.info("persistence_enabled", redis_url=settings.REDIS_URL)
    else:
        logger.info("persistence_disabled")

    persistence = PersistenceBridge(store)
    set_persistence(persistence, store)
    set_chat_log(chat_log)

    # LLM collaborators
    registry = LLMRegistry(settings)
    generation = GenerationService(
        ModelRouter(registry, timeout=settings.LLM_TIMEOUT_SECONDS),
        extraction_max_chars=settings.EXTRACTION_MAX_CHARS,
    )
    mutations = MutationService(
        generation,
        generation,
        persistence=persistence,
        chat_log=chat_log,
    )
    set_mutations(mutations)

    sessions = SessionRegistry(
        LayoutConfig.from_settings(settings),
        autorun_layout=settings.LAYOUT_AUTORUN,
    )
    set_sessions(sessions)

    logger.info("app_started")
    yield

    # Shutdown
    sessions.close_all()
    await mutations.drain()
    if redis_client is not None:
        await redis_client.aclose()
    logger.info("app_stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    application = FastAPI(
        title="kgraph",
        description="Knowledge-graph engine for the research assistant",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(api_router)

    @application.middleware("http")
    async def request_id_middleware(request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @application.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @application.exception_handler(ExpansionInProgressError)
    async def expansion_in_progress_handler(request: Request, exc: ExpansionInProgressError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc), "node_id": exc.node_id})

    @application.exception_handler(StaleResultError)
    async def stale_result_handler(request: Request, exc: StaleResultError) -> JSONResponse:
        logger.info("stale_result_discarded", error=str(exc), path=request.url.path)
        return JSONResponse(status_code=409, content={"detail": str(exc), "type": type(exc).__name__})

    @application.exception_handler(GenerationError)
    async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
        logger.warning("generation_failed", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=502,
            content={"detail": f"{exc}. Please try again.", "type": type(exc).__name__},
        )

    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "type": type(exc).__name__},
        )

    return application


app = create_app()
