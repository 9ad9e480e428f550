"""Hybrid search over the index.

Each call:
1. Partitions fragments by source and embedding presence
2. Scores embedded fragments by cosine similarity to one query embedding
3. Scores the remaining fragments with keyword matching
4. Merges both phases across sources into one ranking
"""
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
import structlog

from docqa import config
from docqa.embedding_client import EmbeddingClient
from docqa.errors import EmbeddingServiceError, IndexEmptyError, RetrievalUnavailableError
from docqa.rag.aggregator import aggregate
from docqa.rag.models import FragmentHit, IndexEntry, KeywordWeights, SearchResult, SourceKind
from docqa.rag.store import IndexSnapshot, IndexStore

logger = structlog.get_logger()

_WORD_PATTERN = re.compile(r"\w+")


def tokenize_query(query: str, min_length: int = None) -> List[str]:
    """Lowercased, de-duplicated query words of at least min_length characters."""
    min_length = min_length or config.KEYWORD_MIN_WORD_LENGTH
    words = []
    for word in _WORD_PATTERN.findall(query.lower()):
        if len(word) >= min_length and word not in words:
            words.append(word)
    return words


@dataclass
class SourceHits:
    """Fragment hits of one source, split by the phase that produced them."""

    kind: SourceKind
    vector: List[FragmentHit] = field(default_factory=list)
    keyword: List[FragmentHit] = field(default_factory=list)


class HybridSearch:
    """Vector similarity search with a keyword fallback, merged across sources."""

    def __init__(
        self,
        store: IndexStore,
        embedding_client: EmbeddingClient = None,
        weights: KeywordWeights = None,
    ):
        """Initialize hybrid search.

        Args:
            store: Index store to query (its current snapshot is read per call)
            embedding_client: Client used for the query embedding
            weights: Keyword scoring weights (default from config)
        """
        self.store = store
        self.embedding_client = embedding_client or EmbeddingClient()
        self.weights = weights or KeywordWeights()

    async def search(self, query: str, top_k: int = None) -> List[SearchResult]:
        """Return at most top_k document-level results for a query.

        Raises:
            IndexEmptyError: If nothing is indexed
            RetrievalUnavailableError: If the query embedding failed and the
                keyword fallback found nothing
            ValueError: If top_k is not positive
        """
        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        if top_k < 1:
            raise ValueError(f"top_k must be positive, got {top_k}")

        snapshot = self.store.snapshot()
        if len(snapshot) == 0:
            raise IndexEmptyError()

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        per_source = math.ceil(top_k / 2)
        source_hits, vector_failed = await self._score(snapshot, query, top_k)

        # Each (source, phase) group gets ceil(top_k / 2) places; results past
        # that quota only fill places the other groups leave empty.
        primary: List[SearchResult] = []
        overflow: List[SearchResult] = []
        for hits in source_hits:
            for group in (aggregate(hits.vector), aggregate(hits.keyword)):
                primary.extend(group[:per_source])
                overflow.extend(group[per_source:])

        merged = self._merge(primary, overflow, top_k)

        if not merged and vector_failed:
            raise RetrievalUnavailableError(
                "Retrieval is currently unavailable: the embedding service failed "
                "and keyword matching found nothing"
            )

        logger.info(
            "search_completed",
            query_length=len(query),
            top_k=top_k,
            results_returned=len(merged),
            vector_results=sum(1 for r in merged if r.match == "vector"),
            keyword_results=sum(1 for r in merged if r.match == "keyword"),
            degraded=vector_failed,
        )

        return merged

    async def search_fragments(self, query: str, top_k: int = None) -> List[FragmentHit]:
        """Raw fragment ranking from both phases, for diagnostics.

        Raises:
            IndexEmptyError: If nothing is indexed
        """
        top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        snapshot = self.store.snapshot()
        if len(snapshot) == 0:
            raise IndexEmptyError()
        if not query or not query.strip():
            return []

        source_hits, _ = await self._score(snapshot, query, top_k)
        hits = [hit for s in source_hits for hit in s.vector + s.keyword]
        return sorted(hits, key=lambda hit: (-hit.score, hit.fragment.id))

    async def _score(
        self,
        snapshot: IndexSnapshot,
        query: str,
        top_k: int,
    ) -> tuple:
        """Run both phases for every source.

        Returns:
            Tuple of (list of SourceHits, whether the query embedding failed)
        """
        sources = snapshot.sources()
        tables = {kind: snapshot.vector_table(kind) for kind in sources}

        query_vector: Optional[np.ndarray] = None
        vector_failed = False
        if any(table is not None for table in tables.values()):
            try:
                embedding = await self.embedding_client.embed_query(query)
                query_vector = np.asarray(embedding, dtype=np.float32)
            except EmbeddingServiceError as e:
                vector_failed = True
                logger.warning(
                    "query_embedding_failed_keyword_fallback",
                    error=str(e),
                )

        words = tokenize_query(query)
        results = []

        for kind in sources:
            hits = SourceHits(kind=kind)
            table = tables[kind]
            covered = set()

            if table is not None and query_vector is not None:
                if query_vector.shape[0] == table.dimension:
                    hits.vector = [
                        FragmentHit(fragment=entry.fragment, score=score, match="vector")
                        for entry, score in table.search(query_vector, top_k)
                    ]
                    covered = {id(entry) for entry in table.entries}
                else:
                    logger.warning(
                        "query_dimension_mismatch",
                        source=kind.value,
                        query_dimension=int(query_vector.shape[0]),
                        index_dimension=table.dimension,
                    )

            remaining = [e for e in snapshot.by_source(kind) if id(e) not in covered]
            hits.keyword = self._keyword_phase(remaining, words, top_k)
            results.append(hits)

            logger.debug(
                "source_scored",
                source=kind.value,
                vector_candidates=len(covered),
                keyword_candidates=len(remaining),
                vector_hits=len(hits.vector),
                keyword_hits=len(hits.keyword),
            )

        return results, vector_failed

    def _keyword_phase(
        self,
        entries: Sequence[IndexEntry],
        words: Sequence[str],
        limit: int,
    ) -> List[FragmentHit]:
        """Score fragments by keyword matches, keeping the best `limit`."""
        if not entries or not words:
            return []

        scored = []
        for entry in entries:
            raw = entry.fragment.keyword_score(words, self.weights)
            if raw > 0:
                scored.append((raw, entry.fragment))

        scored.sort(key=lambda item: (-item[0], item[1].document_id, item[1].position))

        return [
            FragmentHit(fragment=fragment, score=self.weights.normalize(raw), match="keyword")
            for raw, fragment in scored[:limit]
        ]

    @staticmethod
    def _merge(
        primary: Sequence[SearchResult],
        overflow: Sequence[SearchResult],
        top_k: int,
    ) -> List[SearchResult]:
        """One result per source document, best similarity first.

        Overflow results are only used while fewer than top_k documents
        came out of the primary quotas.
        """
        def rank(results):
            return sorted(results, key=lambda r: (-r.similarity, r.document_id))

        best: Dict[tuple, SearchResult] = {}
        for result in primary:
            key = (result.source_kind, result.document_id)
            if key not in best or result.similarity > best[key].similarity:
                best[key] = result

        for result in rank(overflow):
            if len(best) >= top_k:
                break
            key = (result.source_kind, result.document_id)
            if key not in best:
                best[key] = result

        return rank(best.values())[:top_k]
