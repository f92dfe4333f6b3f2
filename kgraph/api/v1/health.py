"""Health and readiness probe endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from kgraph.api.dependencies import get_sessions, get_store
from kgraph.services.project_store import ProjectStore
from kgraph.services.session import SessionRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    return {"status": "healthy"}


@router.get("/ready")
async def ready(
    store: ProjectStore | None = Depends(get_store),
    sessions: SessionRegistry = Depends(get_sessions),
) -> dict:
    if store is None:
        return {"status": "ready", "persistence": "disabled", "sessions": len(sessions)}
    ok = await store.ping()
    return {"status": "ready" if ok else "degraded", "redis": ok, "sessions": len(sessions)}
