"""Unit tests for MutationService expand / delete / regenerate."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from kgraph.graph.model import node_ids
from kgraph.models.schemas import ChatNote, GraphLink
from kgraph.services.mutation_service import MutationService, expansion_note
from kgraph.services.persistence_service import PersistenceBridge
from kgraph.services.session import MutationState
from kgraph.utils.exceptions import ExpansionInProgressError, GenerationError, StaleResultError


@pytest.fixture
def service(generator, extractor, store, chat_log):
    return MutationService(
        generator,
        extractor,
        persistence=PersistenceBridge(store),
        chat_log=chat_log,
    )


@pytest.fixture
def drug_session(sessions, drug_graph):
    return sessions.create(graph=drug_graph, project_id="proj-1")


@pytest.fixture
def treats_session(sessions, treats_graph):
    return sessions.create(graph=treats_graph, project_id="proj-1")


class TestExpand:
    @pytest.mark.asyncio
    async def test_expand_adds_sub_entities(self, service, drug_session, generator):
        graph = await service.expand(drug_session, "a", "DrugX")

        generator.generate.assert_awaited_once_with("DrugX")
        assert [(n.id, n.group, n.label) for n in graph.nodes] == [
            ("a", 1, "DrugX"),
            ("a-sub-0", 1, "TargetY"),
            ("a-sub-1", 2, "CompanyZ"),
        ]
        assert graph.links == [
            GraphLink(source="a", target="a-sub-0", relation="related_to"),
            GraphLink(source="a", target="a-sub-1", relation="related_to"),
        ]
        assert drug_session.graph == graph
        assert drug_session.state is MutationState.IDLE

    @pytest.mark.asyncio
    async def test_expand_twice_duplicates_ids(self, service, drug_session):
        await service.expand(drug_session, "a", "DrugX")
        graph = await service.expand(drug_session, "a", "DrugX")

        ids = [n.id for n in graph.nodes]
        assert ids == ["a", "a-sub-0", "a-sub-1", "a-sub-0", "a-sub-1"]
        assert len(graph.links) == 4

    @pytest.mark.asyncio
    async def test_expand_reseeds_layout(self, service, drug_session):
        await service.expand(drug_session, "a", "DrugX")

        assert set(drug_session.layout.positions()) == {"a", "a-sub-0", "a-sub-1"}
        assert drug_session.layout.is_hot

    @pytest.mark.asyncio
    async def test_expand_posts_chat_note_and_syncs(self, service, drug_session, chat_log, store):
        await service.expand(drug_session, "a", "DrugX")
        await service.drain()

        chat_log.notify.assert_awaited_once()
        session_id, note = chat_log.notify.await_args.args
        assert session_id == drug_session.session_id
        assert note.role == "user"
        assert note.message == "Expand more details on: DrugX"

        store.update.assert_awaited_once()
        project_id, fields = store.update.await_args.args
        assert project_id == "proj-1"
        assert [n["id"] for n in fields["knowledge_graph"]["nodes"]] == ["a", "a-sub-0", "a-sub-1"]

    @pytest.mark.asyncio
    async def test_chat_note_failure_is_swallowed(self, service, drug_session, chat_log):
        chat_log.notify.side_effect = RuntimeError("redis down")

        graph = await service.expand(drug_session, "a", "DrugX")
        await service.drain()

        assert len(graph.nodes) == 3

    @pytest.mark.asyncio
    async def test_generation_failure_leaves_graph_unchanged(self, service, drug_session, drug_graph, generator, store):
        generator.generate.side_effect = RuntimeError("model unavailable")

        with pytest.raises(GenerationError):
            await service.expand(drug_session, "a", "DrugX")
        await service.drain()

        assert drug_session.graph == drug_graph
        assert drug_session.expanding == set()
        store.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generation_error_passes_through(self, service, drug_session, generator):
        generator.generate.side_effect = GenerationError("empty completion")

        with pytest.raises(GenerationError, match="empty completion"):
            await service.expand(drug_session, "a", "DrugX")

    @pytest.mark.asyncio
    async def test_empty_generation_keeps_nodes(self, service, drug_session, generator):
        generator.generate.return_value = ""

        graph = await service.expand(drug_session, "a", "DrugX")

        assert node_ids(graph) == {"a"}

    @pytest.mark.asyncio
    async def test_concurrent_expand_of_same_node_is_rejected(self, service, drug_session, generator):
        release = asyncio.Event()

        async def slow_generate(label):
            await release.wait()
            return "- Slow (Gene)"

        generator.generate.side_effect = slow_generate
        first = asyncio.create_task(service.expand(drug_session, "a", "DrugX"))
        await asyncio.sleep(0)
        assert drug_session.state is MutationState.EXPANDING

        with pytest.raises(ExpansionInProgressError) as exc_info:
            await service.expand(drug_session, "a", "DrugX")
        assert exc_info.value.node_id == "a"

        release.set()
        graph = await first
        assert [n.id for n in graph.nodes] == ["a", "a-sub-0"]

    @pytest.mark.asyncio
    async def test_concurrent_expands_of_different_nodes_both_apply(self, service, treats_session, generator):
        gates = {"DrugX": asyncio.Event(), "DiseaseY": asyncio.Event()}

        async def gated_generate(label):
            await gates[label].wait()
            return f"- {label} child"

        generator.generate.side_effect = gated_generate
        first = asyncio.create_task(service.expand(treats_session, "a", "DrugX"))
        second = asyncio.create_task(service.expand(treats_session, "b", "DiseaseY"))
        await asyncio.sleep(0)

        gates["DiseaseY"].set()
        await second
        gates["DrugX"].set()
        graph = await first

        assert node_ids(graph) == {"a", "b", "a-sub-0", "b-sub-0"}
        assert len(graph.links) == 3

    @pytest.mark.asyncio
    async def test_expand_discarded_when_parent_deleted_meanwhile(self, service, treats_session, generator):
        release = asyncio.Event()

        async def slow_generate(label):
            await release.wait()
            return "- Orphan"

        generator.generate.side_effect = slow_generate
        pending = asyncio.create_task(service.expand(treats_session, "a", "DrugX"))
        await asyncio.sleep(0)

        service.delete(treats_session, "a")
        release.set()
        with pytest.raises(StaleResultError):
            await pending

        assert node_ids(treats_session.graph) == {"b"}

    @pytest.mark.asyncio
    async def test_expand_superseded_by_regenerate(self, service, drug_session, generator, extractor):
        release = asyncio.Event()

        async def slow_generate(label):
            await release.wait()
            return "- Late (Gene)"

        generator.generate.side_effect = slow_generate
        extractor.extract.return_value = {"nodes": [{"id": "fresh", "label": "Fresh", "group": 2}], "links": []}

        pending = asyncio.create_task(service.expand(drug_session, "a", "DrugX"))
        await asyncio.sleep(0)
        fresh = await service.regenerate(drug_session)
        release.set()
        with pytest.raises(StaleResultError):
            await pending

        assert node_ids(fresh) == {"fresh"}
        assert drug_session.graph == fresh

    @pytest.mark.asyncio
    async def test_expand_survives_failed_regenerate(self, service, drug_session, generator, extractor):
        release = asyncio.Event()

        async def slow_generate(label):
            await release.wait()
            return "- TargetY (Gene)"

        generator.generate.side_effect = slow_generate
        extractor.extract.side_effect = GenerationError("model unavailable")

        pending = asyncio.create_task(service.expand(drug_session, "a", "DrugX"))
        await asyncio.sleep(0)
        with pytest.raises(GenerationError):
            await service.regenerate(drug_session)
        release.set()
        graph = await pending

        assert node_ids(graph) == {"a", "a-sub-0"}
        assert drug_session.graph == graph

    @pytest.mark.asyncio
    async def test_expand_started_during_regenerate_is_kept_until_it_commits(
        self, service, drug_session, generator, extractor
    ):
        gate = asyncio.Event()

        async def slow_extract(text):
            await gate.wait()
            return {"nodes": [{"id": "fresh"}], "links": []}

        extractor.extract.side_effect = slow_extract
        regenerating = asyncio.create_task(service.regenerate(drug_session))
        await asyncio.sleep(0)

        graph = await service.expand(drug_session, "a", "DrugX")
        assert node_ids(graph) == {"a", "a-sub-0", "a-sub-1"}

        gate.set()
        assert node_ids(await regenerating) == {"fresh"}
        assert node_ids(drug_session.graph) == {"fresh"}


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_cascades(self, service, treats_session, store):
        graph = service.delete(treats_session, "a")
        await service.drain()

        assert [n.id for n in graph.nodes] == ["b"]
        assert graph.links == []
        assert treats_session.graph == graph
        assert set(treats_session.layout.positions()) == {"b"}
        store.update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_missing_node_keeps_graph_and_still_syncs(self, service, treats_session, treats_graph, store):
        alpha = treats_session.layout.alpha
        graph = service.delete(treats_session, "zzz")
        await service.drain()

        assert graph == treats_graph
        assert treats_session.layout.alpha == alpha
        store.update.assert_awaited_once()
        _, fields = store.update.await_args.args
        assert [n["id"] for n in fields["knowledge_graph"]["nodes"]] == ["a", "b"]

    def test_delete_without_project_needs_no_event_loop(self, generator, extractor, sessions, treats_graph):
        session = sessions.create(graph=treats_graph)
        service = MutationService(generator, extractor)

        graph = service.delete(session, "b")

        assert node_ids(graph) == {"a"}


class TestRegenerate:
    @pytest.mark.asyncio
    async def test_regenerate_drops_dangling_links(self, service, drug_session, extractor):
        drug_session.document_text = "Aspirin is made by Bayer."
        extractor.extract.return_value = {
            "nodes": [
                {"id": "x", "label": "Aspirin", "group": 1},
                {"id": "y", "label": "Bayer", "group": 2},
            ],
            "links": [
                {"source": "x", "target": "y", "relation": "made_by"},
                {"source": "x", "target": "ghost", "relation": "treats"},
            ],
        }

        graph = await service.regenerate(drug_session)

        extractor.extract.assert_awaited_once_with("Aspirin is made by Bayer.")
        assert node_ids(graph) == {"x", "y"}
        assert graph.links == [GraphLink(source="x", target="y", relation="made_by")]

    @pytest.mark.asyncio
    async def test_regenerate_with_new_text_updates_session(self, service, drug_session, extractor):
        await service.regenerate(drug_session, "New findings")

        extractor.extract.assert_awaited_once_with("New findings")
        assert drug_session.document_text == "New findings"
        assert drug_session.graph.nodes == []
        assert drug_session.graph.links == []

    @pytest.mark.asyncio
    async def test_regenerate_failure_keeps_graph(self, service, drug_session, drug_graph, extractor):
        extractor.extract.side_effect = ValueError("bad json")

        with pytest.raises(GenerationError):
            await service.regenerate(drug_session)

        assert drug_session.graph == drug_graph
        assert drug_session.state is MutationState.IDLE

    @pytest.mark.asyncio
    async def test_latest_regenerate_wins(self, service, drug_session, extractor):
        first_gate = asyncio.Event()
        calls = []

        async def extract(text):
            calls.append(text)
            if text == "first":
                await first_gate.wait()
                return {"nodes": [{"id": "old"}], "links": []}
            return {"nodes": [{"id": "new"}], "links": []}

        extractor.extract.side_effect = extract
        earlier = asyncio.create_task(service.regenerate(drug_session, "first"))
        await asyncio.sleep(0)
        assert drug_session.state is MutationState.REGENERATING

        await service.regenerate(drug_session, "second")
        first_gate.set()
        with pytest.raises(StaleResultError):
            await earlier

        assert calls == ["first", "second"]
        assert node_ids(drug_session.graph) == {"new"}
        assert drug_session.document_text == "second"

    @pytest.mark.asyncio
    async def test_earlier_regenerate_applies_when_later_one_fails(self, service, drug_session, extractor):
        first_gate = asyncio.Event()

        async def extract(text):
            if text == "first":
                await first_gate.wait()
                return {"nodes": [{"id": "old"}], "links": []}
            raise GenerationError("model unavailable")

        extractor.extract.side_effect = extract
        earlier = asyncio.create_task(service.regenerate(drug_session, "first"))
        await asyncio.sleep(0)

        with pytest.raises(GenerationError):
            await service.regenerate(drug_session, "second")
        first_gate.set()

        assert node_ids(await earlier) == {"old"}
        assert node_ids(drug_session.graph) == {"old"}
        assert drug_session.document_text == "first"

    @pytest.mark.asyncio
    async def test_failed_regenerate_keeps_epoch(self, service, drug_session, extractor):
        epoch = drug_session.epoch
        extractor.extract.side_effect = GenerationError("model unavailable")

        with pytest.raises(GenerationError):
            await service.regenerate(drug_session)

        assert drug_session.epoch == epoch

    @pytest.mark.asyncio
    async def test_committed_regenerate_bumps_epoch(self, service, drug_session):
        epoch = drug_session.epoch

        await service.regenerate(drug_session)

        assert drug_session.epoch == epoch + 1

    @pytest.mark.asyncio
    async def test_closed_session_discards_result(self, service, sessions, drug_session, extractor, drug_graph):
        gate = asyncio.Event()

        async def extract(text):
            await gate.wait()
            return {"nodes": [{"id": "late"}], "links": []}

        extractor.extract.side_effect = extract
        pending = asyncio.create_task(service.regenerate(drug_session))
        await asyncio.sleep(0)

        sessions.close(drug_session.session_id)
        gate.set()

        with pytest.raises(StaleResultError):
            await pending
        assert drug_session.graph == drug_graph


class TestPersistenceSequencing:
    @pytest.mark.asyncio
    async def test_store_converges_on_latest_graph(self, service, treats_session, store):
        writes = []

        async def slow_update(project_id, fields):
            await asyncio.sleep(0)
            writes.append([n["id"] for n in fields["knowledge_graph"]["nodes"]])
            return fields

        store.update = AsyncMock(side_effect=slow_update)
        await service.expand(treats_session, "a", "DrugX")
        service.delete(treats_session, "b")
        await service.drain()

        assert writes[-1] == ["a", "a-sub-0", "a-sub-1"]


def test_expansion_note():
    note = expansion_note("Keytruda")

    assert isinstance(note, ChatNote)
    assert note.role == "user"
    assert note.message == "Expand more details on: Keytruda"
