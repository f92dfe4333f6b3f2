"""Collaborator interfaces the graph services depend on.

The concrete implementations are ``GenerationService`` (both generators),
``ProjectStore`` and ``ChatLog``; tests substitute mocks.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from kgraph.models.schemas import ChatNote


class EntityGenerator(Protocol):
    async def generate(self, seed_label: str) -> str:
        """Loosely formatted ``"Label (Type)"`` lines."""
        ...


class GraphExtractor(Protocol):
    async def extract(self, document_text: str) -> Mapping[str, Any]:
        """``{"nodes": [...], "links": [...]}``, not guaranteed consistent."""
        ...


class DocumentStore(Protocol):
    async def get(self, project_id: str) -> dict[str, Any] | None: ...

    async def update(self, project_id: str, updates: dict[str, Any]) -> dict[str, Any]: ...


class ChatNotifier(Protocol):
    async def notify(self, session_id: str, note: ChatNote) -> None: ...
