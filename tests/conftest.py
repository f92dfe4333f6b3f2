"""Shared test fixtures."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest


@pytest.fixture(autouse=True)
def _env_setup(monkeypatch):
    """Set required environment variables for tests."""
    monkeypatch.setenv("OPENROUTER_API_KEY", "test-key")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("LANGSMITH_API_KEY", "")
    monkeypatch.setenv("LANGCHAIN_TRACING_V2", "false")
    monkeypatch.setenv("LAYOUT_AUTORUN", "false")
    monkeypatch.setenv("LOG_FORMAT", "console")


@pytest.fixture
def settings():
    from kgraph.config import Settings

    return Settings(
        OPENROUTER_API_KEY="test-key",
        LANGSMITH_API_KEY="",
        LANGCHAIN_TRACING_V2=False,
    )


@pytest.fixture
def mock_registry(settings):
    """LLM registry with mocked models."""
    from kgraph.models.llm_registry import MODEL_CONFIG, LLMRegistry

    with patch.object(LLMRegistry, "__init__", lambda self, s: None):
        registry = LLMRegistry.__new__(LLMRegistry)
        registry._settings = settings
        registry._models = {}
        registry._slug_cache = {}
        registry._call_stats = {}

        mock_model = MagicMock()
        mock_model.ainvoke = AsyncMock(return_value=MagicMock(content="test response"))
        mock_model.model_name = "test-model"

        for task in MODEL_CONFIG:
            registry._models[task] = mock_model
            registry._call_stats[task] = {"calls": 0, "tokens": 0}

        registry.get_fallback_chain = MagicMock(return_value=[])
        return registry


@pytest.fixture
def mock_router(mock_registry):
    from kgraph.models.model_router import ModelRouter

    return ModelRouter(mock_registry)


@pytest.fixture
def drug_graph():
    """G0: a single drug node."""
    from kgraph.models.schemas import GraphData, GraphNode

    return GraphData(nodes=[GraphNode(id="a", group=1, label="DrugX")])


@pytest.fixture
def treats_graph():
    """G1: a -[treats]-> b."""
    from kgraph.models.schemas import GraphData, GraphLink, GraphNode

    return GraphData(
        nodes=[GraphNode(id="a", label="DrugX"), GraphNode(id="b", label="DiseaseY", group=3)],
        links=[GraphLink(source="a", target="b", relation="treats")],
    )


@pytest.fixture
def generator():
    gen = MagicMock()
    gen.generate = AsyncMock(return_value="- TargetY (Gene)\n- CompanyZ (Company)")
    return gen


@pytest.fixture
def extractor():
    ext = MagicMock()
    ext.extract = AsyncMock(return_value={"nodes": [], "links": []})
    return ext


@pytest.fixture
def store():
    s = MagicMock()
    s.get = AsyncMock(return_value=None)
    s.update = AsyncMock(return_value={})
    return s


@pytest.fixture
def chat_log():
    log = MagicMock()
    log.notify = AsyncMock()
    return log


@pytest.fixture
def sessions():
    from kgraph.services.session import SessionRegistry

    return SessionRegistry(autorun_layout=False)
