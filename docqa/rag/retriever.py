"""Query interface consumed by the question-answering layer.

Handles:
- Document-level retrieval for a free-text question
- Formatting retrieved documents as grounding context for generation
"""
from typing import List, Optional

import structlog

from docqa import config
from docqa.rag.models import SearchResult
from docqa.rag.search import HybridSearch

logger = structlog.get_logger()


class Retriever:
    """Retriever for the RAG pipeline."""

    def __init__(self, search: HybridSearch, top_k: int = None):
        """Initialize the retriever.

        Args:
            search: Hybrid search over a loaded index store
            top_k: Default number of documents to return (default from config)
        """
        self.search = search
        self.top_k = top_k or config.RETRIEVAL_TOP_K

    async def get_relevant_documents(
        self, query_text: str, top_k: Optional[int] = None
    ) -> List[SearchResult]:
        """Retrieve the most relevant documents for a query.

        Args:
            query_text: User question
            top_k: Number of documents to return (overrides default)

        Returns:
            SearchResult list, best first; empty when nothing matched

        Raises:
            IndexEmptyError: If nothing is indexed
            RetrievalUnavailableError: If no scoring method could run
        """
        top_k = top_k or self.top_k
        logger.info("retrieval_started", query_length=len(query_text), top_k=top_k)

        results = await self.search.search(query_text, top_k=top_k)

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_similarity=round(results[0].similarity, 4) if results else None,
        )
        return results

    async def retrieve_context(
        self,
        query: str,
        top_k: Optional[int] = None,
        max_chars: int = None,
    ) -> str:
        """Retrieve and format context for an LLM prompt.

        Args:
            query: User query text
            top_k: Number of documents to retrieve
            max_chars: Maximum total characters of context to return

        Returns:
            Formatted context string, or "" when no document matched
        """
        max_chars = max_chars or config.MAX_CONTEXT_CHARS
        results = await self.get_relevant_documents(query, top_k=top_k)

        if not results:
            return ""

        context_parts = []
        budget = max_chars
        for position, result in enumerate(results, 1):
            block = result.context_block(position, budget)
            if block is None:
                break
            context_parts.append(block)
            budget -= len(block)
            if budget <= 0:
                break

        context = "\n".join(context_parts)

        logger.debug(
            "context_formatted",
            num_documents=len(context_parts),
            total_chars=len(context),
        )

        return context
