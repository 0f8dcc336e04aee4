import json
import threading

import pytest

from toolfinder.catalog_build import (
    build_canonical_text,
    build_catalog_snapshot,
    is_canonical_current,
    write_catalog_snapshot,
)
from toolfinder.catalog_store import CatalogStore, matches_filters
from toolfinder.config import SearchFilters, ToolStatus
from toolfinder.errors import CatalogUnavailableError, EmbeddingServiceError

from conftest import FakeEmbedder


def test_unloaded_store_is_unavailable():
    store = CatalogStore()
    with pytest.raises(CatalogUnavailableError):
        store.all_tools()
    with pytest.raises(CatalogUnavailableError):
        store.eligible(SearchFilters())


def test_missing_snapshot_raises_catalog_unavailable(tmp_path):
    with pytest.raises(CatalogUnavailableError):
        CatalogStore.from_snapshot(tmp_path / "nope.parquet")


def test_from_snapshot_and_save(tmp_path, seed_tools):
    path = write_catalog_snapshot(seed_tools, tmp_path / "c.parquet")
    store = CatalogStore.from_snapshot(path)
    assert len(store) == len(seed_tools)
    assert store.stale_ids() == []
    store.save()
    assert len(CatalogStore.from_snapshot(path)) == len(seed_tools)


def test_eligible_excludes_pending_and_stale(store):
    ids = [t.id for t in store.eligible(SearchFilters())]
    assert "synthesia" not in ids
    assert len(ids) == 6

    # a field change without re-embedding makes the tool unqueryable
    midjourney = store.get("midjourney")
    store.upsert(midjourney.model_copy(update={"description": "Changed description text."}))
    assert "midjourney" not in [t.id for t in store.eligible(SearchFilters())]
    assert store.stale_ids() == ["midjourney"]


def test_matches_filters_requires_approval(store):
    pending = store.get("synthesia")
    assert not matches_filters(pending, SearchFilters(status=ToolStatus.PENDING))
    assert matches_filters(store.get("chatgpt"), SearchFilters(status=ToolStatus.APPROVED))


def test_get_many_keeps_requested_order(store):
    tools = store.get_many(["runway-ml", "unknown", "chatgpt"])
    assert [t.id for t in tools] == ["runway-ml", "chatgpt"]


def test_category_names_in_request_order(store):
    assert store.category_names(["cat-video", "cat-writing", "cat-missing"]) == ["Video", "Writing"]
    assert store.category_names([]) == []


def test_update_semantics_rejects_mismatched_text(store):
    before = store.get("chatgpt")
    with pytest.raises(ValueError):
        store.update_semantics("chatgpt", "Tool: something else", [1.0] * 11, "m")
    assert store.get("chatgpt") == before


def test_update_semantics_unknown_id(store):
    with pytest.raises(KeyError):
        store.update_semantics("ghost", "x", [1.0], "m")


def test_update_semantics_swaps_all_fields(store):
    tool = store.get("chatgpt")
    updated = store.update_semantics("chatgpt", build_canonical_text(tool), [0.5] * 11, "other-model")
    assert updated.embedding == [0.5] * 11
    assert updated.embedding_model == "other-model"
    assert store.get("chatgpt") == updated


def test_update_tool_reembeds(store, embedder):
    updated = store.update_tool("notion-ai", {"strengths": ["Video captions"]}, embedder)
    assert updated.strengths == ["Video captions"]
    assert is_canonical_current(updated)
    assert "Strengths: Video captions" in updated.canonical_text
    assert store.is_queryable(store.get("notion-ai"))


def test_update_tool_embedding_failure_leaves_record(store):
    before = store.get("notion-ai")
    with pytest.raises(EmbeddingServiceError):
        store.update_tool("notion-ai", {"name": "Notion Q&A"}, FakeEmbedder(fail=True))
    assert store.get("notion-ai") == before


def test_reindex_only_touches_stale(store, embedder):
    store.upsert(store.get("descript").model_copy(update={"name": "Descript 2"}))
    assert store.reindex(embedder) == 1
    assert store.stale_ids() == []
    assert store.reindex(embedder, only_stale=False) == 7


def test_readers_never_see_half_updated_records(store, embedder):
    stop = threading.Event()
    bad = []

    def reader():
        while not stop.is_set():
            for t in store.eligible(SearchFilters()):
                if not is_canonical_current(t):
                    bad.append(t.id)

    threads = [threading.Thread(target=reader) for _ in range(3)]
    for th in threads:
        th.start()
    try:
        for i in range(20):
            store.update_tool("chatgpt", {"short_description": f"revision {i}"}, embedder)
            store.update_tool("runway-ml", {"limitations": [f"limit {i}"]}, embedder)
    finally:
        stop.set()
        for th in threads:
            th.join()
    assert bad == []
    assert store.get("runway-ml").limitations == ["limit 19"]


def test_reindex_treats_other_model_vectors_as_stale(store):
    assert store.stale_ids() == []
    assert store.stale_ids("kw-2") == [t.id for t in store.all_tools()]
    assert store.reindex(FakeEmbedder(model_id="kw-2")) == 7
    assert {t.embedding_model for t in store.all_tools()} == {"kw-2"}
    assert store.reindex(FakeEmbedder(model_id="kw-2")) == 0


def test_category_table_survives_snapshot_round_trip(tmp_path, seed_json):
    seed_json["categories"].append({"id": "cat-research", "name": "Research", "slug": "research"})
    raw = tmp_path / "raw.json"
    raw.write_text(json.dumps(seed_json), encoding="utf-8")
    path = build_catalog_snapshot(raw, tmp_path / "snap.parquet", embedder=FakeEmbedder())

    store = CatalogStore.from_snapshot(path)
    assert store.category_names(["cat-research", "cat-video"]) == ["Research", "Video"]

    store.save(tmp_path / "copy.parquet")
    copy = CatalogStore.from_snapshot(tmp_path / "copy.parquet")
    assert copy.category_names(["cat-research"]) == ["Research"]
