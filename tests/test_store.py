"""Tests for index persistence and snapshots."""
import json

import numpy as np
import pytest

from docqa.rag.models import IndexEntry, SourceKind
from docqa.rag.store import (
    IndexStore,
    VectorTable,
    read_guide_fragments,
    write_embeddings,
    write_guide_chunks,
)

from conftest import bag_of_words, make_drive_fragment, make_guide_fragment


def drive_entries():
    fragments = [
        make_drive_fragment("doc-a", "Install the server on a Windows laptop.", position=0, total=2),
        make_drive_fragment("doc-a", "Then open the browser and sign in.", position=1, total=2),
        make_drive_fragment("doc-b", "Facilities group classes and learners together."),
    ]
    return [
        IndexEntry(fragments[0], np.asarray(bag_of_words(fragments[0].content), dtype=np.float32)),
        IndexEntry(fragments[1], None),
        IndexEntry(fragments[2], np.asarray(bag_of_words(fragments[2].content), dtype=np.float32)),
    ]


def test_save_then_load_round_trip(store):
    """Test that save and load reproduce fragments and embeddings."""
    store.replace_source(SourceKind.DRIVE, drive_entries())
    store.save()

    reloaded = IndexStore(store.index_path, store.guide_chunks_path, store.guide_embeddings_path)
    reloaded.load()

    original = store.entries()
    restored = reloaded.entries()
    assert len(restored) == len(original)
    assert [e.fragment.content for e in restored] == [e.fragment.content for e in original]
    assert [e.fragment for e in restored] == [e.fragment for e in original]
    assert sum(e.has_embedding for e in restored) == sum(e.has_embedding for e in original) == 2
    assert not restored[1].has_embedding
    np.testing.assert_allclose(restored[0].embedding, original[0].embedding)


def test_saved_artifact_uses_camel_case(store):
    """Test the on-disk field names of the drive artifact."""
    store.replace_source(SourceKind.DRIVE, drive_entries())
    store.save()

    data = json.loads(store.index_path.read_text())
    record = data["fragments"][0]
    assert record["documentId"] == "doc-a"
    assert record["totalFragments"] == 2
    assert record["source"] == "drive-document"
    assert len(data["vectors"]) == 3
    assert data["vectors"][1] == []
    assert data["totalDocuments"] == 2
    assert "indexedAt" in data


def test_save_stamps_drive_refresh_time(store, monkeypatch):
    """Test that a later guide refresh does not move the drive timestamp."""
    monkeypatch.setattr("docqa.rag.store.utc_now", lambda: "2026-01-01T00:00:00+00:00")
    store.replace_source(SourceKind.DRIVE, drive_entries())

    monkeypatch.setattr("docqa.rag.store.utc_now", lambda: "2026-02-01T00:00:00+00:00")
    store.append_source([make_guide_fragment("faq", "Frequently asked questions about syncing.")])
    store.save()

    data = json.loads(store.index_path.read_text())
    assert data["indexedAt"] == "2026-01-01T00:00:00+00:00"
    assert store.snapshot().indexed_at == "2026-02-01T00:00:00+00:00"


def test_malformed_artifact_loads_as_empty(store):
    """Test that corrupt JSON is treated as no prior index."""
    store.index_path.write_text("{not json")
    store.load()

    assert len(store.snapshot()) == 0
    assert store.status()["is_indexed"] is False


def test_missing_artifacts_load_as_empty(store):
    store.load()
    assert store.entries() == []


def test_vector_count_mismatch_pads_missing_vectors(store):
    """Test that fragments without an aligned vector load without one."""
    store.replace_source(SourceKind.DRIVE, drive_entries())
    store.save()

    data = json.loads(store.index_path.read_text())
    data["vectors"] = data["vectors"][:1]
    store.index_path.write_text(json.dumps(data))
    store.load()

    entries = store.entries()
    assert len(entries) == 3
    assert [e.has_embedding for e in entries] == [True, False, False]


def test_guide_fragments_load_with_and_without_embeddings(store):
    """Test that guide embeddings are joined by fragment id."""
    fragments = [
        make_guide_fragment("install", "Install Kolibri on Windows with the installer.", topics=["windows"]),
        make_guide_fragment("users", "Create users and assign them to classes."),
    ]
    write_guide_chunks(store.guide_chunks_path, fragments)
    store.load()

    assert len(store.entries(SourceKind.GUIDE)) == 2
    assert not any(e.has_embedding for e in store.entries())

    write_embeddings(
        store.guide_embeddings_path,
        {fragments[0].id: bag_of_words(fragments[0].content)},
        model="fake-embedding",
        total_chunks=2,
    )
    store.load()

    entries = store.entries(SourceKind.GUIDE)
    assert [e.has_embedding for e in entries] == [True, False]
    assert entries[0].fragment.topics == ["windows"]
    assert entries[0].fragment.url.endswith("install.html")


def test_embeddings_artifact_metadata(tmp_path):
    path = tmp_path / "embeddings.json"
    write_embeddings(path, {"a-chunk-0": [0.1, 0.2, 0.3]}, model="fake-embedding", total_chunks=4)

    data = json.loads(path.read_text())
    assert data["metadata"]["model"] == "fake-embedding"
    assert data["metadata"]["embeddingDimensions"] == 3
    assert data["metadata"]["totalChunks"] == 4
    assert data["metadata"]["successfulEmbeddings"] == 1
    assert data["embeddings"]["a-chunk-0"] == pytest.approx([0.1, 0.2, 0.3])


def test_read_guide_fragments_missing_file(tmp_path):
    assert read_guide_fragments(tmp_path / "missing.json") == []


def test_clear_persists_empty_state(store):
    """Test that clear empties memory and the artifacts."""
    store.replace_source(SourceKind.DRIVE, drive_entries())
    store.save()
    write_embeddings(store.guide_embeddings_path, {"x": [1.0]}, model="m", total_chunks=1)

    store.clear()

    assert len(store.snapshot()) == 0
    assert not store.guide_embeddings_path.exists()

    reloaded = IndexStore(store.index_path, store.guide_chunks_path, store.guide_embeddings_path)
    reloaded.load()
    assert reloaded.entries() == []


def test_append_source_replaces_same_source(store):
    """Test that refreshing a source twice does not duplicate it."""
    store.replace_source(SourceKind.DRIVE, drive_entries())
    guide = [make_guide_fragment("install", "Install Kolibri on Windows with the installer.")]

    store.append_source(guide, {guide[0].id: bag_of_words(guide[0].content)})
    store.append_source(guide, {})

    assert len(store.entries(SourceKind.GUIDE)) == 1
    assert len(store.entries(SourceKind.DRIVE)) == 3
    assert not store.entries(SourceKind.GUIDE)[0].has_embedding


def test_append_source_rejects_mixed_sources(store):
    mixed = [
        make_drive_fragment("a", "Drive content that is long enough."),
        make_guide_fragment("b", "Guide content that is long enough."),
    ]
    with pytest.raises(ValueError):
        store.append_source(mixed)


def test_replace_source_rejects_wrong_kind(store):
    entries = [IndexEntry(make_guide_fragment("b", "Guide content."), None)]
    with pytest.raises(ValueError):
        store.replace_source(SourceKind.DRIVE, entries)


def test_snapshot_unchanged_by_later_writes(store):
    """Test that a held snapshot keeps its view after a mutation."""
    store.replace_source(SourceKind.DRIVE, drive_entries())
    snapshot = store.snapshot()

    store.clear()

    assert len(snapshot) == 3
    assert len(store.snapshot()) == 0


def test_vector_table_skips_zero_and_minority_dimensions():
    """Test that only normalizable vectors of the dominant dimension are indexed."""
    fragments = [make_drive_fragment(f"d{i}", f"content number {i}") for i in range(4)]
    entries = [
        IndexEntry(fragments[0], np.asarray([1.0, 0.0, 0.0], dtype=np.float32)),
        IndexEntry(fragments[1], np.asarray([0.0, 1.0, 0.0], dtype=np.float32)),
        IndexEntry(fragments[2], np.asarray([0.0, 0.0, 0.0], dtype=np.float32)),
        IndexEntry(fragments[3], np.asarray([1.0, 1.0], dtype=np.float32)),
    ]
    table = VectorTable.build(entries)

    assert table.dimension == 3
    assert [e.fragment.document_id for e in table.entries] == ["d0", "d1"]

    results = table.search(np.asarray([2.0, 0.0, 0.0], dtype=np.float32), top_k=5)
    assert results[0][0].fragment.document_id == "d0"
    assert results[0][1] == pytest.approx(1.0)
    assert all(-1.0 <= score <= 1.0 for _, score in results)


def test_status_counts_per_source(store):
    store.replace_source(SourceKind.DRIVE, drive_entries())
    status = store.status()

    assert status["is_indexed"] is True
    assert status["total_fragments"] == 3
    assert status["sources"]["drive-document"] == {"fragments": 3, "embedded": 2, "documents": 2}
    assert status["sources"]["scraped-page"]["fragments"] == 0
