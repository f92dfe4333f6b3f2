"""Unit tests for the persistence bridge."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from kgraph.models.schemas import GraphData
from kgraph.services.persistence_service import PersistenceBridge
from kgraph.utils.exceptions import PersistenceError


@pytest.mark.asyncio
async def test_sync_writes_knowledge_graph(store, sessions, treats_graph):
    session = sessions.create(graph=treats_graph, project_id="proj-1")
    bridge = PersistenceBridge(store)

    task = bridge.request_sync(session)
    await task

    store.update.assert_awaited_once_with("proj-1", {"knowledge_graph": treats_graph.model_dump()})


@pytest.mark.asyncio
async def test_sync_skipped_without_project(store, sessions, treats_graph):
    session = sessions.create(graph=treats_graph)
    bridge = PersistenceBridge(store)

    assert bridge.request_sync(session) is None
    store.update.assert_not_awaited()


def test_bridge_without_store_is_disabled(sessions, treats_graph):
    session = sessions.create(graph=treats_graph, project_id="proj-1")
    bridge = PersistenceBridge()

    assert not bridge.enabled
    assert bridge.request_sync(session) is None


@pytest.mark.asyncio
async def test_sync_failure_is_logged_not_raised(store, sessions, treats_graph):
    store.update.side_effect = PersistenceError("redis down")
    session = sessions.create(graph=treats_graph, project_id="proj-1")
    bridge = PersistenceBridge(store)

    bridge.request_sync(session)
    await bridge.drain()

    store.update.assert_awaited_once()


@pytest.mark.asyncio
async def test_writes_for_one_project_are_serialized(store, sessions, treats_graph):
    active = 0
    peak = 0

    async def update(project_id, fields):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0)
        active -= 1
        return fields

    store.update = AsyncMock(side_effect=update)
    session = sessions.create(graph=treats_graph, project_id="proj-1")
    bridge = PersistenceBridge(store)

    for _ in range(3):
        bridge.request_sync(session)
    await bridge.drain()

    assert store.update.await_count == 3
    assert peak == 1


@pytest.mark.asyncio
async def test_write_uses_graph_at_write_time(store, sessions, treats_graph):
    session = sessions.create(graph=treats_graph, project_id="proj-1")
    bridge = PersistenceBridge(store)

    bridge.request_sync(session)
    session.replace_graph(GraphData())
    await bridge.drain()

    assert store.update.await_args.args[1] == {"knowledge_graph": {"nodes": [], "links": []}}


@pytest.mark.asyncio
async def test_load_validates_stored_graph(store):
    store.get.return_value = {
        "id": "proj-1",
        "knowledge_graph": {
            "nodes": [{"id": "a", "label": "DrugX", "group": 1}],
            "links": [{"source": "a", "target": "ghost", "relation": "treats"}],
        },
    }
    bridge = PersistenceBridge(store)

    graph = await bridge.load("proj-1")

    assert [n.id for n in graph.nodes] == ["a"]
    assert graph.links == []


@pytest.mark.asyncio
@pytest.mark.parametrize("record", [None, {"id": "proj-1"}, {"id": "proj-1", "knowledge_graph": None}])
async def test_load_returns_none_without_graph(store, record):
    store.get.return_value = record
    bridge = PersistenceBridge(store)

    assert await bridge.load("proj-1") is None


@pytest.mark.asyncio
async def test_load_swallows_store_errors(store):
    store.get.side_effect = PersistenceError("bad json")
    bridge = PersistenceBridge(store)

    assert await bridge.load("proj-1") is None
