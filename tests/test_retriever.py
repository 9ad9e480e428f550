"""Tests for the retrieval query interface."""
import pytest

from docqa.errors import IndexEmptyError
from docqa.rag.models import MIN_PARTIAL_BLOCK, IndexEntry, SearchResult, SourceKind
from docqa.rag.retriever import Retriever
from docqa.rag.search import HybridSearch

from conftest import make_drive_fragment, make_guide_fragment


@pytest.fixture
def retriever(store, embedding_client):
    store.replace_source(
        SourceKind.DRIVE,
        [
            IndexEntry(
                make_drive_fragment(
                    "doc-windows",
                    "Run the Windows installer as an administrator.",
                    name="Windows Installation",
                    parent="IT/Guides",
                ),
                None,
            )
        ],
    )
    store.replace_source(
        SourceKind.GUIDE,
        [
            IndexEntry(
                make_guide_fragment("windows", "Kolibri ships a Windows installer.", name="Windows"),
                None,
            )
        ],
    )
    return Retriever(HybridSearch(store, embedding_client), top_k=5)


@pytest.mark.asyncio
async def test_get_relevant_documents(retriever):
    results = await retriever.get_relevant_documents("windows installer")

    assert {r.source_kind for r in results} == {SourceKind.DRIVE, SourceKind.GUIDE}
    assert len(results) == 2


@pytest.mark.asyncio
async def test_retrieve_context_formats_sources(retriever):
    """Test that context blocks name their source with group and url."""
    context = await retriever.retrieve_context("windows installer")

    assert "[Source 1:" in context
    assert "[Source 2:" in context
    assert "Windows Installation (in IT/Guides)" in context
    assert "<https://docs.example.org/en/latest/windows.html>" in context


@pytest.mark.asyncio
async def test_retrieve_context_empty_when_nothing_matches(retriever):
    assert await retriever.retrieve_context("quantum chromodynamics") == ""


@pytest.mark.asyncio
async def test_retrieve_context_truncated(retriever):
    context = await retriever.retrieve_context("windows installer", max_chars=60)
    assert len(context) <= 60 + len("...\n")


@pytest.mark.asyncio
async def test_empty_index_propagates(store, embedding_client):
    retriever = Retriever(HybridSearch(store, embedding_client))
    with pytest.raises(IndexEmptyError):
        await retriever.get_relevant_documents("anything")


def test_source_label_hides_root_folder():
    result = SearchResult(
        document_id="a",
        document_name="Welcome",
        content="",
        similarity=0.5,
        source_kind=SourceKind.DRIVE,
        parent_group="Root Folder",
    )
    assert result.source == "Welcome"


def make_result(content):
    return SearchResult(
        document_id="a",
        document_name="Welcome",
        content=content,
        similarity=0.5,
        source_kind=SourceKind.DRIVE,
    )


def test_context_block_fits_budget():
    block = make_result("Short text.").context_block(1, budget=1000)
    assert block == "[Source 1: Welcome]\nShort text.\n"


def test_context_block_truncated_to_budget():
    """Test that an overflowing block is cut at the budget and marked."""
    block = make_result("word " * 200).context_block(2, budget=250)

    assert block.startswith("[Source 2: Welcome]\n")
    assert block.endswith("...\n")
    assert len(block) == 250 + len("...\n")


def test_context_block_dropped_when_budget_too_small():
    assert make_result("word " * 200).context_block(1, budget=MIN_PARTIAL_BLOCK - 1) is None
