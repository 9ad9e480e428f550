"""Pytest configuration and fixtures for the retrieval engine tests."""
import asyncio
import re
import zlib

import pytest

from docqa.errors import EmbeddingServiceError
from docqa.rag.models import DriveFragment, GuideFragment, fragment_id
from docqa.rag.store import IndexStore

EMBEDDING_DIMENSION = 64
FAIL_MARKER = "FAILBATCH"
SLOW_MARKER = "SLOWBATCH"


def bag_of_words(text: str, dimension: int = EMBEDDING_DIMENSION) -> list:
    """Deterministic word-count vector, so similar texts embed close together."""
    vector = [0.0] * dimension
    for word in re.findall(r"\w+", text.lower()):
        vector[zlib.crc32(word.encode()) % dimension] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


class FakeEmbeddingClient:
    """In-process stand-in for the embedding service.

    Batches containing FAIL_MARKER raise, batches containing SLOW_MARKER
    sleep for slow_delay, and peak concurrency is recorded.
    """

    model = "fake-embedding"

    def __init__(self, delay: float = 0.0, slow_delay: float = 1.0, fail_queries: bool = False):
        self.delay = delay
        self.slow_delay = slow_delay
        self.fail_queries = fail_queries
        self.calls = 0
        self.query_calls = 0
        self.active = 0
        self.max_active = 0

    async def embed(self, texts):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if any(SLOW_MARKER in text for text in texts):
                await asyncio.sleep(self.slow_delay)
            elif self.delay:
                await asyncio.sleep(self.delay)
            if any(FAIL_MARKER in text for text in texts):
                raise EmbeddingServiceError("Embedding request failed with status 500")
            return [bag_of_words(text) for text in texts]
        finally:
            self.active -= 1

    async def embed_query(self, text):
        self.query_calls += 1
        if self.fail_queries:
            raise EmbeddingServiceError("Embedding service unreachable")
        vectors = await self.embed([text])
        return vectors[0]


def make_drive_fragment(document_id, content, name=None, position=0, total=1, parent="Root Folder"):
    return DriveFragment(
        id=fragment_id(document_id, position),
        content=content,
        document_id=document_id,
        document_name=name or document_id,
        position=position,
        total_fragments=total,
        parent_group=parent,
    )


def make_guide_fragment(document_id, content, name=None, position=0, total=1, topics=None):
    return GuideFragment(
        id=fragment_id(document_id, position),
        content=content,
        document_id=document_id,
        document_name=name or document_id,
        position=position,
        total_fragments=total,
        parent_group="Install",
        url=f"https://docs.example.org/en/latest/{document_id}.html",
        section=name or document_id,
        topics=topics or [],
        word_count=len(content.split()),
    )


@pytest.fixture
def embedding_client():
    return FakeEmbeddingClient()


@pytest.fixture
def failing_embedding_client():
    return FakeEmbeddingClient(fail_queries=True)


@pytest.fixture
def store(tmp_path):
    """Empty index store writing into a temporary directory."""
    return IndexStore(
        index_path=tmp_path / "vector-index.json",
        guide_chunks_path=tmp_path / "guide-chunks.json",
        guide_embeddings_path=tmp_path / "guide-embeddings.json",
    )


@pytest.fixture
def windows_corpus():
    """One long installation document and one short, unrelated one."""
    installation = (
        "This guide covers installation on Windows machines. "
        "Download the installer from the official website and run it as an administrator. "
        "The setup wizard asks for an installation directory and a port number. "
        "After the installation finishes, the server starts automatically in the background. "
        "Open a web browser and visit the local address to finish the setup. "
        "If the firewall blocks the port, allow the application through the Windows firewall settings. "
        "You can also install the software silently from the command line for lab deployments. "
        "Upgrades reuse the same installer and keep existing data in place. "
        "Uninstalling removes the program files but keeps the content folder. "
        "Check the system requirements before installing on older Windows versions."
    )
    return [
        make_drive_fragment("doc-windows", installation, name="Windows Installation Guide"),
        make_drive_fragment("doc-network", "Troubleshooting network issues in the lab setup.", name="Network"),
    ]
