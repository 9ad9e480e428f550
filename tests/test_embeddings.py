"""Tests for the embedding client and batched generation."""
import json

import httpx
import pytest

from docqa.embedding_client import EmbeddingClient
from docqa.errors import EmbeddingServiceError
from docqa.rag.embeddings import EmbeddingGenerator

from conftest import FAIL_MARKER, SLOW_MARKER, FakeEmbeddingClient, make_drive_fragment


def fragments(count, marker_positions=(), marker=FAIL_MARKER):
    return [
        make_drive_fragment(
            f"doc-{i}",
            f"Fragment {i} about classes and learners {marker if i in marker_positions else ''}",
        )
        for i in range(count)
    ]


@pytest.mark.asyncio
async def test_all_batches_succeed(embedding_client):
    """Test that every fragment gets a vector when the service is healthy."""
    generator = EmbeddingGenerator(embedding_client, batch_size=4, max_concurrent_batches=2, wave_delay=0)
    items = fragments(10)

    run = await generator.embed(items)

    assert run.total == 10
    assert run.succeeded == 10
    assert run.failed == 0
    assert set(run.embeddings) == {f.id for f in items}
    assert embedding_client.calls == 3
    assert run.dimensions == 64


@pytest.mark.asyncio
async def test_failed_batch_is_isolated(embedding_client):
    """Test that one failing batch does not affect the others."""
    generator = EmbeddingGenerator(embedding_client, batch_size=3, max_concurrent_batches=2, wave_delay=0)
    items = fragments(9, marker_positions={4})

    run = await generator.embed(items)

    assert run.succeeded == 6
    assert run.failed == 3
    assert run.failed_batches == [1]
    assert run.failed_ids == [f.id for f in items[3:6]]
    assert set(run.embeddings) == {f.id for f in items[:3] + items[6:]}


@pytest.mark.asyncio
async def test_concurrency_bounded_per_wave():
    """Test that no more than max_concurrent_batches requests are in flight."""
    client = FakeEmbeddingClient(delay=0.01)
    generator = EmbeddingGenerator(client, batch_size=1, max_concurrent_batches=3, wave_delay=0)

    run = await generator.embed(fragments(10))

    assert run.succeeded == 10
    assert client.max_active == 3


@pytest.mark.asyncio
async def test_timeout_counts_as_batch_failure():
    """Test that a batch exceeding the request timeout fails alone."""
    client = FakeEmbeddingClient(slow_delay=1.0)
    generator = EmbeddingGenerator(
        client, batch_size=2, max_concurrent_batches=2, wave_delay=0, request_timeout=0.05
    )
    items = fragments(4, marker_positions={0}, marker=SLOW_MARKER)

    run = await generator.embed(items)

    assert run.failed == 2
    assert run.succeeded == 2
    assert run.failed_batches == [0]


@pytest.mark.asyncio
async def test_artifact_written_and_overwritten(tmp_path, embedding_client):
    """Test that each run replaces the persisted embeddings."""
    path = tmp_path / "guide-embeddings.json"
    generator = EmbeddingGenerator(embedding_client, batch_size=5, wave_delay=0)

    await generator.embed(fragments(3), output_path=path)
    first = json.loads(path.read_text())
    assert first["metadata"]["model"] == "fake-embedding"
    assert first["metadata"]["successfulEmbeddings"] == 3

    await generator.embed(fragments(1), output_path=path)
    second = json.loads(path.read_text())
    assert list(second["embeddings"]) == ["doc-0-chunk-0"]
    assert second["metadata"]["totalChunks"] == 1


@pytest.mark.asyncio
async def test_empty_input(embedding_client):
    run = await EmbeddingGenerator(embedding_client, wave_delay=0).embed([])
    assert run.total == 0
    assert run.embeddings == {}
    assert embedding_client.calls == 0


def test_invalid_batch_settings():
    with pytest.raises(ValueError):
        EmbeddingGenerator(FakeEmbeddingClient(), batch_size=-1)


def test_estimate_duration():
    generator = EmbeddingGenerator(FakeEmbeddingClient(), batch_size=10, max_concurrent_batches=2, wave_delay=1.0)
    # 5 batches in 3 waves
    assert generator.estimate_duration(45, seconds_per_batch=2.0) == 12.0


def embeddings_transport(handler):
    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_client_restores_input_order():
    """Test that response items are ordered by their index field."""

    def handler(request):
        payload = json.loads(request.content)
        assert payload["model"] == "test-model"
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0]},
                    {"index": 0, "embedding": [1.0, 0.0]},
                ]
            },
        )

    client = EmbeddingClient(
        base_url="https://embeddings.test/v1",
        api_key="secret",
        model="test-model",
        transport=embeddings_transport(handler),
    )

    vectors = await client.embed(["first", "second"])
    assert vectors == [[1.0, 0.0], [0.0, 1.0]]


@pytest.mark.asyncio
async def test_client_http_error_raises():
    client = EmbeddingClient(
        base_url="https://embeddings.test/v1",
        transport=embeddings_transport(lambda request: httpx.Response(500, json={})),
    )
    with pytest.raises(EmbeddingServiceError):
        await client.embed_query("hello")


@pytest.mark.asyncio
async def test_client_count_mismatch_raises():
    client = EmbeddingClient(
        base_url="https://embeddings.test/v1",
        transport=embeddings_transport(
            lambda request: httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})
        ),
    )
    with pytest.raises(EmbeddingServiceError):
        await client.embed(["one", "two"])


@pytest.mark.asyncio
async def test_client_connection_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = EmbeddingClient(base_url="https://embeddings.test/v1", transport=embeddings_transport(handler))
    with pytest.raises(EmbeddingServiceError):
        await client.embed(["one"])


def html_page_transport():
    return embeddings_transport(
        lambda request: httpx.Response(200, text="<html><body>502 Bad Gateway</body></html>")
    )


@pytest.mark.asyncio
async def test_client_non_json_response_raises():
    """Test that a gateway page with a 200 status is a service error."""
    client = EmbeddingClient(base_url="https://embeddings.test/v1", transport=html_page_transport())
    with pytest.raises(EmbeddingServiceError):
        await client.embed(["one"])


@pytest.mark.asyncio
async def test_client_malformed_items_raise():
    client = EmbeddingClient(
        base_url="https://embeddings.test/v1",
        transport=embeddings_transport(lambda request: httpx.Response(200, json={"data": ["one"]})),
    )
    with pytest.raises(EmbeddingServiceError):
        await client.embed(["one"])


@pytest.mark.asyncio
async def test_non_json_response_fails_batches_not_run():
    client = EmbeddingClient(base_url="https://embeddings.test/v1", transport=html_page_transport())
    generator = EmbeddingGenerator(client, batch_size=2, max_concurrent_batches=2, wave_delay=0)

    run = await generator.embed(fragments(4))

    assert run.succeeded == 0
    assert run.failed == 4
    assert run.embeddings == {}
