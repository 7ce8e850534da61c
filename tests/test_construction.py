"""
Tests for Stage 2 graph construction.
"""

import threading

import httpx
import pytest

from conftest import ScriptedLLM
from docgraph.db import CHUNK, CONTAINS, DOCUMENT, ENTITY, MENTIONS, RELATED_TO, NodeQuery, RecordRef
from docgraph.graph.construction import GraphConstructionStage


@pytest.fixture
def seed_chunks(memory_store):
    """Factory: one document with the given chunk texts, all unprocessed."""

    def seed(*texts):
        doc = memory_store.create_node(DOCUMENT, "d1", {"filename": "notes.pdf", "metadata": {}}).ref
        refs = []
        for index, text in enumerate(texts):
            ref = memory_store.create_node(
                CHUNK,
                f"c{index}",
                {
                    "content": text,
                    "index": index,
                    "created_at": f"2024-01-01T00:00:0{index}",
                    "metadata": {"processed": False},
                },
            ).ref
            memory_store.relate(CONTAINS, doc, ref, {"index": index})
            refs.append(ref)
        return refs

    return seed


def _entity(store, id):
    return store.get_node(RecordRef(ENTITY, id))


class TestLinking:
    """Tests for entity and relation writes."""

    def test_entities_mentions_relations(self, make_context, seed_chunks, graph_reply):
        """Entities are upserted, mentioned and related."""
        seed_chunks("Bob works at Acme.")
        llm = ScriptedLLM(
            default=graph_reply(
                entities=[("Bob", "Person"), ("Acme", "Organization")],
                relations=[("Bob", "works_at", "Acme")],
            )
        )
        ctx = make_context(link_llm=llm)

        report = GraphConstructionStage(ctx).run()

        store = ctx.store
        assert _entity(store, "bob").content["category"] == "Person"
        assert _entity(store, "bob").content["description"] == "Bob summary"
        assert _entity(store, "acme").content["name"] == "Acme"
        mentions = store.edges(MENTIONS)
        assert {e.target.local_id for e in mentions} == {"bob", "acme"}
        assert all(e.source == RecordRef(CHUNK, "c0") for e in mentions)

        related = store.edges(RELATED_TO)
        assert len(related) == 1
        assert related[0].source == RecordRef(ENTITY, "bob")
        assert related[0].target == RecordRef(ENTITY, "acme")
        assert related[0].props["relation"] == "works_at"
        assert related[0].props["reason"] == "stated"

        assert report.chunks_linked == 1
        assert report.mentions_created == 2
        assert report.relations_created == 1

    def test_marks_processed(self, make_context, seed_chunks, graph_reply):
        """Linked chunks carry processed, linked_at and counts."""
        seed_chunks("Alice met Bob.")
        llm = ScriptedLLM(default=graph_reply(entities=[("Alice", "Person"), ("Bob", "Person")]))
        ctx = make_context(link_llm=llm)

        GraphConstructionStage(ctx).run()

        metadata = ctx.store.get_node(RecordRef(CHUNK, "c0")).metadata
        assert metadata["processed"] is True
        assert metadata["linked_at"]
        assert metadata["entity_count"] == 2
        assert metadata["relation_count"] == 0
        assert "link_error" not in metadata

    def test_same_name_across_chunks_is_one_entity(self, make_context, seed_chunks, graph_reply):
        """Bob in two chunks resolves to one entity node."""
        seed_chunks("Alice met Bob.", "BOB works at Acme.")
        llm = ScriptedLLM(
            replies={
                "Alice": graph_reply(entities=[("Alice", "Person"), ("Bob", "Person")]),
                "Acme": graph_reply(entities=[("BOB", "Person"), ("Acme", "Organization")]),
            }
        )
        ctx = make_context(link_llm=llm)

        GraphConstructionStage(ctx).run()

        ids = {n.id for n in ctx.store.select(NodeQuery(ENTITY))}
        assert ids == {"alice", "bob", "acme"}

    def test_punctuation_variants_merge(self, make_context, seed_chunks, graph_reply):
        """Names that canonicalize alike share one node; the last write wins."""
        seed_chunks("Acme Inc. hired Bob.", "acme-inc. is growing.")
        llm = ScriptedLLM(
            replies={
                "hired": graph_reply(entities=[("Acme Inc.", "Organization")]),
                "growing": graph_reply(entities=[("acme-inc.", "Company")]),
            }
        )
        ctx = make_context(link_llm=llm)

        GraphConstructionStage(ctx).run()

        assert [n.id for n in ctx.store.select(NodeQuery(ENTITY))] == ["acme_inc_"]
        node = _entity(ctx.store, "acme_inc_")
        assert (node.content["name"], node.content["category"]) == ("acme-inc.", "Company")
        assert len(ctx.store.edges(MENTIONS)) == 2

    def test_entity_created_at_is_stable(self, make_context, seed_chunks, graph_reply):
        """Later mentions keep the entity's original creation time."""
        seed_chunks("Bob arrived.", "Bob left.")
        llm = ScriptedLLM(default=graph_reply(entities=[("Bob", "Person")]))
        ctx = make_context(link_llm=llm)
        stage = GraphConstructionStage(ctx)

        stage.run(limit=1)
        first = _entity(ctx.store, "bob").content["created_at"]
        stage.run(limit=1)

        assert stage.pending_chunks() == []
        assert _entity(ctx.store, "bob").content["created_at"] == first

    def test_one_mention_per_entity_per_chunk(self, make_context, seed_chunks, graph_reply):
        """Repeated candidates in one chunk create one mention."""
        seed_chunks("Bob, bob and B.O.B")
        llm = ScriptedLLM(default=graph_reply(entities=[("Bob", "Person"), ("bob", "Person")]))
        ctx = make_context(link_llm=llm)

        GraphConstructionStage(ctx).run()

        assert len(ctx.store.edges(MENTIONS)) == 1

    def test_unnamed_entities_skipped(self, make_context, seed_chunks, graph_reply):
        """Candidates whose id has no letters or digits are not stored."""
        seed_chunks("...")
        llm = ScriptedLLM(default=graph_reply(entities=[("!!!", "Unknown"), ("Bob", "Person")]))
        ctx = make_context(link_llm=llm)

        GraphConstructionStage(ctx).run()

        assert {n.id for n in ctx.store.select(NodeQuery(ENTITY))} == {"bob"}

    def test_relation_endpoints_get_placeholders(self, make_context, seed_chunks, graph_reply):
        """Relation endpoints not extracted as entities become Unknown entities."""
        seed_chunks("Bob works at Acme.")
        llm = ScriptedLLM(
            default=graph_reply(entities=[("Bob", "Person")], relations=[("Bob", "works_at", "Acme")])
        )
        ctx = make_context(link_llm=llm)

        GraphConstructionStage(ctx).run()

        acme = _entity(ctx.store, "acme")
        assert acme.content["name"] == "Acme"
        assert acme.content["category"] == "Unknown"

    def test_placeholder_does_not_overwrite(self, make_context, seed_chunks, graph_reply, memory_store):
        """An existing entity keeps its category when only named in a relation."""
        memory_store.upsert_node(ENTITY, "acme", {"name": "Acme", "category": "Organization"})
        seed_chunks("Bob works at Acme.")
        llm = ScriptedLLM(
            default=graph_reply(entities=[("Bob", "Person")], relations=[("Bob", "works_at", "Acme")])
        )
        ctx = make_context(link_llm=llm)

        GraphConstructionStage(ctx).run()

        assert _entity(ctx.store, "acme").content["category"] == "Organization"

    def test_processed_chunks_ignored(self, make_context, seed_chunks, memory_store):
        """Chunks already marked processed are not selected."""
        refs = seed_chunks("one", "two")
        memory_store.update_node(refs[0], {"metadata": {"processed": True}})
        llm = ScriptedLLM()
        ctx = make_context(link_llm=llm)

        report = GraphConstructionStage(ctx).run()

        assert report.chunks_selected == 1
        assert [r["messages"][1]["content"] for r in llm.requests] == ["two"]


class TestBatching:
    """Tests for limits, ordering and resumability."""

    def test_limit_oldest_first(self, make_context, seed_chunks):
        """The batch holds the oldest unprocessed chunks."""
        seed_chunks("first", "second", "third")
        llm = ScriptedLLM()
        ctx = make_context(link_llm=llm)

        report = GraphConstructionStage(ctx).run(limit=2)

        assert report.chunks_selected == 2
        assert [r["messages"][1]["content"] for r in llm.requests] == ["first", "second"]

    def test_default_limit_from_config(self, make_context, seed_chunks):
        """Without a limit LINK_BATCH_SIZE applies."""
        seed_chunks("a", "b", "c")
        ctx = make_context(LINK_BATCH_SIZE=1)

        assert GraphConstructionStage(ctx).run().chunks_selected == 1

    def test_second_run_is_noop(self, make_context, seed_chunks, graph_reply):
        """Re-running with no new chunks performs zero writes."""
        seed_chunks("Alice met Bob.", "Bob works at Acme.")
        llm = ScriptedLLM(default=graph_reply(entities=[("Bob", "Person")]))
        ctx = make_context(link_llm=llm)
        stage = GraphConstructionStage(ctx)

        stage.run()
        writes = ctx.store.write_count
        report = stage.run()

        assert ctx.store.write_count == writes
        assert report.chunks_selected == 0
        assert report.summary() == "No unlinked chunks"

    def test_resumes_after_partial_run(self, make_context, seed_chunks):
        """A later run picks up exactly the chunks left over."""
        seed_chunks("a", "b", "c")
        ctx = make_context()
        stage = GraphConstructionStage(ctx)

        stage.run(limit=1)
        report = stage.run()

        assert report.chunks_selected == 2
        assert stage.pending_chunks() == []


class TestFailures:
    """Tests for per-chunk extraction failures."""

    def test_failed_chunk_marked_with_error(self, make_context, seed_chunks, graph_reply):
        """A failing chunk is marked processed with link_error; others still link."""
        seed_chunks("bad chunk", "Bob works at Acme.")
        llm = ScriptedLLM(
            replies={"bad": httpx.Response(500, text="oom")},
            default=graph_reply(entities=[("Bob", "Person")]),
        )
        ctx = make_context(link_llm=llm)

        report = GraphConstructionStage(ctx).run()

        bad = ctx.store.get_node(RecordRef(CHUNK, "c0")).metadata
        assert bad["processed"] is True
        assert "500" in bad["link_error"]
        assert bad["entity_count"] == 0
        assert report.chunks_failed == 1
        assert report.chunks_linked == 1
        assert _entity(ctx.store, "bob") is not None

    @pytest.mark.parametrize(
        "reply",
        [
            '{"entities": 5, "relations": []}',
            '{"entities": [], "relations": true}',
        ],
    )
    def test_malformed_fields_do_not_abort(self, make_context, seed_chunks, graph_reply, reply):
        """Scalars where lists belong link nothing; later chunks still link."""
        seed_chunks("odd chunk", "Bob works at Acme.")
        llm = ScriptedLLM(
            replies={"odd": reply},
            default=graph_reply(entities=[("Bob", "Person")]),
        )
        ctx = make_context(link_llm=llm)

        report = GraphConstructionStage(ctx).run()

        odd = ctx.store.get_node(RecordRef(CHUNK, "c0")).metadata
        assert odd["processed"] is True
        assert odd["entity_count"] == 0
        assert report.chunks_linked == 2
        assert {n.id for n in ctx.store.select(NodeQuery(ENTITY))} == {"bob"}

    def test_lone_string_entity(self, make_context, seed_chunks):
        """A single name is stored as one entity."""
        seed_chunks("Alice spoke.")
        ctx = make_context(link_llm=ScriptedLLM(default='{"entities": "Alice"}'))

        GraphConstructionStage(ctx).run()

        assert [n.id for n in ctx.store.select(NodeQuery(ENTITY))] == ["alice"]

    def test_cancel(self, make_context, seed_chunks):
        """A set cancel event stops before the next chunk."""
        seed_chunks("a", "b")
        cancel = threading.Event()
        cancel.set()
        ctx = make_context()

        report = GraphConstructionStage(ctx).run(cancel_event=cancel)

        assert report.cancelled
        assert report.chunks_linked == 0
        assert len(GraphConstructionStage(ctx).pending_chunks()) == 2


class TestAnalysisLinking:
    """Stage 2 with the analysis strategy links key entities only."""

    def test_key_entities_become_mentions(self, make_context, seed_chunks):
        """Key entities are stored as Keyword entities without relations."""
        from docgraph.ingest.extractor import AnalysisStrategy

        seed_chunks("Python and Rust")
        llm = ScriptedLLM(default='{"topic": "Languages", "key_entities": ["Python", "Rust"]}')
        ctx = make_context()
        ctx.link_client = llm.client(AnalysisStrategy())

        GraphConstructionStage(ctx).run()

        assert _entity(ctx.store, "python").content["category"] == "Keyword"
        assert len(ctx.store.edges(MENTIONS)) == 2
        assert ctx.store.edges(RELATED_TO) == []
