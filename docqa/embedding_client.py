"""Embedding service client wrapper with error handling."""
from typing import List, Optional

import httpx
import structlog

from docqa import config
from docqa.errors import EmbeddingServiceError

logger = structlog.get_logger()


class EmbeddingClient:
    """Async client for an OpenAI-compatible embeddings API."""

    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        model: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the embedding client.

        Args:
            base_url: API base URL (defaults to config.EMBEDDING_BASE_URL)
            api_key: Bearer token for the service (defaults to config.EMBEDDING_API_KEY)
            model: Embedding model identifier (defaults to config.EMBEDDING_MODEL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.EMBEDDING_BASE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else config.EMBEDDING_API_KEY
        self.model = model or config.EMBEDDING_MODEL
        self.timeout = timeout or config.EMBEDDING_TIMEOUT
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for a batch of texts.

        Args:
            texts: Texts to embed, in order

        Returns:
            One vector per input text, in input order

        Raises:
            EmbeddingServiceError: On transport errors, HTTP errors or a malformed response
        """
        if not texts:
            return []

        payload = {"model": self.model, "input": texts}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                logger.debug(
                    "embedding_request",
                    model=self.model,
                    batch_size=len(texts),
                )

                response = await client.post(
                    f"{self.base_url}/embeddings",
                    json=payload,
                    headers=self._headers(),
                )
                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            logger.error(
                "embedding_http_error",
                error=str(e),
                status_code=e.response.status_code,
            )
            raise EmbeddingServiceError(
                f"Embedding request failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("embedding_connection_error", error=str(e), base_url=self.base_url)
            raise EmbeddingServiceError(f"Embedding service unreachable: {e}") from e

        try:
            data = response.json()
            items = data.get("data") if isinstance(data, dict) else None
            if not isinstance(items, list) or len(items) != len(texts):
                raise EmbeddingServiceError(
                    f"Expected {len(texts)} embeddings, got "
                    f"{len(items) if isinstance(items, list) else 'none'}"
                )

            # The API may return items out of order; "index" restores input order
            items = sorted(items, key=lambda item: item.get("index", 0))
            vectors = [item.get("embedding") or [] for item in items]
        except (ValueError, AttributeError, TypeError) as e:
            logger.error("embedding_response_malformed", error=str(e), base_url=self.base_url)
            raise EmbeddingServiceError(f"Malformed embedding response: {e}") from e

        if any(not vector for vector in vectors):
            raise EmbeddingServiceError("Empty embedding returned by the service")

        logger.debug(
            "embedding_response",
            model=self.model,
            batch_size=len(vectors),
            dimension=len(vectors[0]),
        )

        return vectors

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query string.

        Raises:
            EmbeddingServiceError: If the service call fails
        """
        vectors = await self.embed([text])
        return vectors[0]
