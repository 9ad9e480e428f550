"""Batched, wave-parallel embedding generation.

Fragments are split into fixed-size batches. Up to max_concurrent_batches
batches are sent concurrently as one wave, and a fixed delay separates
waves. A failing batch only fails its own fragments.
"""
import asyncio
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import httpx
import structlog

from docqa import config
from docqa.embedding_client import EmbeddingClient
from docqa.errors import EmbeddingServiceError
from docqa.rag.models import Fragment
from docqa.rag.store import write_embeddings

logger = structlog.get_logger()


@dataclass
class BatchResult:
    """Outcome of one batch request."""

    batch_index: int
    fragment_ids: List[str]
    vectors: Optional[List[List[float]]] = None
    error: Optional[str] = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.vectors is not None


@dataclass
class EmbeddingRun:
    """Summary of an embedding pass."""

    model: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    elapsed: float = 0.0
    embeddings: Dict[str, List[float]] = field(default_factory=dict)
    failed_batches: List[int] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    @property
    def dimensions(self) -> int:
        if not self.embeddings:
            return 0
        return len(next(iter(self.embeddings.values())))

    @property
    def throughput(self) -> float:
        """Embeddings per second."""
        if self.elapsed <= 0:
            return 0.0
        return self.succeeded / self.elapsed


class EmbeddingGenerator:
    """Generate embeddings for fragments with bounded parallelism."""

    def __init__(
        self,
        client: EmbeddingClient = None,
        batch_size: int = None,
        max_concurrent_batches: int = None,
        wave_delay: float = None,
        request_timeout: float = None,
    ):
        """Initialize the generator.

        Args:
            client: Embedding service client (default client from config)
            batch_size: Fragments per request
            max_concurrent_batches: Batches in flight per wave
            wave_delay: Seconds to wait between waves
            request_timeout: Per-batch timeout; a timeout fails the batch
        """
        self.client = client or EmbeddingClient()
        self.batch_size = batch_size or config.EMBED_BATCH_SIZE
        self.max_concurrent_batches = (
            max_concurrent_batches or config.EMBED_MAX_CONCURRENT_BATCHES
        )
        self.wave_delay = config.EMBED_WAVE_DELAY if wave_delay is None else wave_delay
        self.request_timeout = request_timeout or config.EMBEDDING_TIMEOUT

        if self.batch_size < 1 or self.max_concurrent_batches < 1:
            raise ValueError("batch_size and max_concurrent_batches must be positive")

    @property
    def model(self) -> str:
        return getattr(self.client, "model", config.EMBEDDING_MODEL)

    def create_batches(self, fragments: Sequence[Fragment]) -> List[List[Fragment]]:
        return [
            list(fragments[i : i + self.batch_size])
            for i in range(0, len(fragments), self.batch_size)
        ]

    async def embed(
        self,
        fragments: Sequence[Fragment],
        output_path: Path = None,
    ) -> EmbeddingRun:
        """Embed fragments, tolerating per-batch failures.

        Args:
            fragments: Fragments to embed
            output_path: If given, the embeddings artifact is written here,
                replacing any previous file

        Returns:
            EmbeddingRun with the partial fragment id -> vector map and counts
        """
        start_time = time.monotonic()
        run = EmbeddingRun(model=self.model, total=len(fragments))
        batches = self.create_batches(fragments)
        wave_count = math.ceil(len(batches) / self.max_concurrent_batches)

        logger.info(
            "embedding_generation_started",
            fragments=len(fragments),
            batches=len(batches),
            waves=wave_count,
            batch_size=self.batch_size,
            max_concurrent_batches=self.max_concurrent_batches,
        )

        for wave_start in range(0, len(batches), self.max_concurrent_batches):
            wave = batches[wave_start : wave_start + self.max_concurrent_batches]

            logger.debug(
                "embedding_wave_started",
                wave=wave_start // self.max_concurrent_batches + 1,
                waves=wave_count,
            )

            results = await asyncio.gather(
                *(
                    self._process_batch(batch, wave_start + offset)
                    for offset, batch in enumerate(wave)
                )
            )

            # Merged between waves, never from inside a running batch
            for result in results:
                self._merge(run, result)

            if wave_start + self.max_concurrent_batches < len(batches):
                await asyncio.sleep(self.wave_delay)

        run.elapsed = time.monotonic() - start_time

        logger.info(
            "embedding_generation_completed",
            total=run.total,
            succeeded=run.succeeded,
            failed=run.failed,
            failed_batches=len(run.failed_batches),
            elapsed_seconds=round(run.elapsed, 2),
            embeddings_per_second=round(run.throughput, 2),
        )

        if output_path is not None:
            write_embeddings(output_path, run.embeddings, run.model, run.total)

        return run

    async def _process_batch(self, batch: List[Fragment], batch_index: int) -> BatchResult:
        batch_start = time.monotonic()
        fragment_ids = [fragment.id for fragment in batch]

        try:
            vectors = await asyncio.wait_for(
                self.client.embed([fragment.content for fragment in batch]),
                timeout=self.request_timeout,
            )
            if len(vectors) != len(batch):
                raise EmbeddingServiceError(
                    f"Expected {len(batch)} embeddings, got {len(vectors)}"
                )
        except (EmbeddingServiceError, httpx.HTTPError, asyncio.TimeoutError) as e:
            error = str(e) or type(e).__name__
            logger.error(
                "embedding_batch_failed",
                batch=batch_index + 1,
                size=len(batch),
                error=error,
                error_type=type(e).__name__,
            )
            return BatchResult(
                batch_index=batch_index,
                fragment_ids=fragment_ids,
                error=error,
                elapsed=time.monotonic() - batch_start,
            )

        elapsed = time.monotonic() - batch_start
        logger.debug(
            "embedding_batch_completed",
            batch=batch_index + 1,
            size=len(batch),
            elapsed_ms=int(elapsed * 1000),
        )
        return BatchResult(
            batch_index=batch_index,
            fragment_ids=fragment_ids,
            vectors=[list(vector) for vector in vectors],
            elapsed=elapsed,
        )

    @staticmethod
    def _merge(run: EmbeddingRun, result: BatchResult) -> None:
        if result.succeeded:
            for fragment_id, vector in zip(result.fragment_ids, result.vectors):
                run.embeddings[fragment_id] = vector
            run.succeeded += len(result.fragment_ids)
        else:
            run.failed += len(result.fragment_ids)
            run.failed_batches.append(result.batch_index)
            run.failed_ids.extend(result.fragment_ids)

    def estimate_duration(self, fragment_count: int, seconds_per_batch: float = 2.0) -> float:
        """Rough wall-clock estimate in seconds for planning a run."""
        batches = math.ceil(fragment_count / self.batch_size)
        waves = math.ceil(batches / self.max_concurrent_batches)
        return batches * seconds_per_batch + max(0, waves - 1) * self.wave_delay

    def get_processing_stats(self) -> dict:
        return {
            "batch_size": self.batch_size,
            "max_concurrent_batches": self.max_concurrent_batches,
            "wave_delay": self.wave_delay,
            "request_timeout": self.request_timeout,
            "model": self.model,
        }
