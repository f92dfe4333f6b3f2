"""Unit tests for the model router with fallback logic."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kgraph.models.llm_registry import EXTRACTION_TASK, SUBENTITY_TASK
from kgraph.models.model_router import ModelRouter
from kgraph.utils.exceptions import LLMError


@pytest.mark.asyncio
async def test_router_invokes_primary_model(mock_registry):
    from langchain_core.messages import HumanMessage

    mock_result = MagicMock()
    mock_result.content = "test"
    mock_result.usage_metadata = {"total_tokens": 42}
    mock_registry.get_model(SUBENTITY_TASK).ainvoke = AsyncMock(return_value=mock_result)

    router = ModelRouter(mock_registry)

    with patch("kgraph.models.model_router.traceable", lambda **kw: lambda f: f):
        result = await router.invoke(SUBENTITY_TASK, [HumanMessage(content="test")])

    assert result is mock_result
    assert mock_registry.stats[SUBENTITY_TASK] == {"calls": 1, "tokens": 42}


@pytest.mark.asyncio
async def test_router_falls_back_on_failure(mock_registry):
    from langchain_core.messages import HumanMessage

    mock_registry.get_model(SUBENTITY_TASK).ainvoke = AsyncMock(side_effect=RuntimeError("timeout"))

    fallback_result = MagicMock()
    fallback_result.content = "fallback response"
    fallback_result.usage_metadata = None

    fallback_model = MagicMock()
    fallback_model.ainvoke = AsyncMock(return_value=fallback_result)
    fallback_model.model_name = "fallback"
    mock_registry.get_fallback_chain = MagicMock(return_value=[fallback_model])

    router = ModelRouter(mock_registry)

    with patch("kgraph.models.model_router.traceable", lambda **kw: lambda f: f):
        result = await router.invoke(SUBENTITY_TASK, [HumanMessage(content="test")])

    assert result is fallback_result


@pytest.mark.asyncio
async def test_router_raises_when_every_model_fails(mock_registry):
    from langchain_core.messages import HumanMessage

    mock_registry.get_model(SUBENTITY_TASK).ainvoke = AsyncMock(side_effect=RuntimeError("down"))
    fallback_model = MagicMock()
    fallback_model.ainvoke = AsyncMock(side_effect=RuntimeError("also down"))
    fallback_model.model_name = "fallback"
    mock_registry.get_fallback_chain = MagicMock(return_value=[fallback_model])

    router = ModelRouter(mock_registry)

    with pytest.raises(LLMError, match="also down"):
        await router.invoke(SUBENTITY_TASK, [HumanMessage(content="test")])


@pytest.mark.asyncio
async def test_router_uses_structured_output(mock_registry):
    from langchain_core.messages import HumanMessage

    from kgraph.models.schemas import ExtractedGraph

    parsed = ExtractedGraph(nodes=[], links=[])
    model = mock_registry.get_model(EXTRACTION_TASK)
    model.with_structured_output.return_value.ainvoke = AsyncMock(return_value=parsed)

    router = ModelRouter(mock_registry)
    result = await router.invoke(EXTRACTION_TASK, [HumanMessage(content="doc")], structured_output=ExtractedGraph)

    model.with_structured_output.assert_called_once_with(ExtractedGraph)
    assert result is parsed
