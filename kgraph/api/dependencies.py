"""Shared FastAPI dependency injection."""

from __future__ import annotations

from kgraph.services.chat_log import ChatLog
from kgraph.services.mutation_service import MutationService
from kgraph.services.persistence_service import PersistenceBridge
from kgraph.services.project_store import ProjectStore
from kgraph.services.session import SessionRegistry

_sessions: SessionRegistry | None = None
_mutations: MutationService | None = None
_persistence: PersistenceBridge | None = None
_store: ProjectStore | None = None
_chat_log: ChatLog | None = None


def set_sessions(sessions: SessionRegistry) -> None:
    global _sessions
    _sessions = sessions


def set_mutations(mutations: MutationService) -> None:
    global _mutations
    _mutations = mutations


def set_persistence(persistence: PersistenceBridge, store: ProjectStore | None = None) -> None:
    global _persistence, _store
    _persistence = persistence
    _store = store


def set_chat_log(chat_log: ChatLog | None) -> None:
    global _chat_log
    _chat_log = chat_log


def get_sessions() -> SessionRegistry:
    if _sessions is None:
        raise RuntimeError("Session registry not initialized")
    return _sessions


def get_mutations() -> MutationService:
    if _mutations is None:
        raise RuntimeError("Mutation service not initialized")
    return _mutations


def get_persistence() -> PersistenceBridge:
    if _persistence is None:
        raise RuntimeError("Persistence bridge not initialized")
    return _persistence


def get_store() -> ProjectStore | None:
    return _store


def get_chat_log() -> ChatLog | None:
    return _chat_log
