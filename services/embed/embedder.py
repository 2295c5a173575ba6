"""
Ticket Embedding Service
Generates embeddings for ticket text through an OpenAI-compatible API
"""

import hashlib
from typing import Any, Optional

import httpx
import structlog

from shared.schemas.embedding import EmbeddingConfig
from shared.schemas.ticket import Ticket

from .errors import ProviderError, ProviderNotConfiguredError, classify_provider_error

logger = structlog.get_logger()

# text-embedding-3-small vectors
DEFAULT_DIMENSION = 1536

# Per-text character budget, matches EmbeddingConfig.max_chars
DEFAULT_MAX_CHARS = 8000


def ticket_text(ticket: Ticket) -> str:
    """Build the text representation of a ticket that gets embedded"""
    text = f"{ticket.key}: {ticket.summary}"
    if ticket.description:
        text += f"\n{ticket.description}"
    if ticket.labels:
        text += f"\nLabels: {', '.join(ticket.labels)}"
    return text


def truncate_for_embedding(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """
    Keep the first and last max_chars/2 characters of an overlong text.

    The head carries the key and summary, the tail carries trailing detail.
    """
    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    return text[:half] + text[len(text) - half:]


def text_hash(text: str) -> str:
    """Generate a hash for text (for cache freshness checks)"""
    return hashlib.md5(text.encode()).hexdigest()[:16]


def parse_embeddings(body: Any) -> list[list[float]]:
    """
    Extract vectors from an embeddings response, ordered by input index.

    Raises:
        ProviderError: the body is not a list of items that each carry an
            embedding list
    """
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, list):
        raise ProviderError("Malformed embedding response: missing data list")
    for item in data:
        if not isinstance(item, dict) or not isinstance(item.get("embedding"), list):
            raise ProviderError("Malformed embedding response: item without embedding")
        if not isinstance(item.get("index", 0), int):
            raise ProviderError("Malformed embedding response: non-integer index")

    # Provider returns items tagged with their input index
    items = sorted(data, key=lambda item: item.get("index") or 0)
    return [item["embedding"] for item in items]


class EmbeddingClient:
    """
    Raw embedding provider client.

    One call to generate_embeddings() is one provider request; batching to
    stay under the token ceiling is the TokenBudgetBatcher's job.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            config: Provider settings (base URL, API key, model)
            http_client: Optional shared client, created lazily if omitted
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "EmbeddingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create a persistent HTTP client for connection reuse."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout, connect=10.0)
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            **self.config.headers,
        }

    async def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for a list of texts in a single provider call.

        Args:
            texts: Texts to embed (each truncated to the character budget)

        Returns:
            Vectors in the same order as texts

        Raises:
            ProviderError: classified provider failure
        """
        if not self.config.is_configured:
            raise ProviderNotConfiguredError("LLM service not configured")
        if not texts:
            return []

        payload = {
            "model": self.config.model,
            "input": [truncate_for_embedding(t, self.config.max_chars) for t in texts],
        }

        try:
            response = await self._get_client().post(
                f"{self.base_url}/embeddings",
                json=payload,
                headers=self._headers(),
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            error = classify_provider_error(e, "embedding request")
            logger.error(
                "Embedding request failed",
                kind=error.kind.value,
                status=error.status_code,
                count=len(texts),
                error=str(error),
            )
            raise error from e

        vectors = parse_embeddings(body)
        if len(vectors) != len(texts):
            raise ProviderError(
                f"Embedding count mismatch: sent {len(texts)}, received {len(vectors)}"
            )

        logger.debug("Generated embeddings", count=len(vectors), model=self.config.model)
        return vectors

    async def generate_embedding(self, text: str) -> list[float]:
        """Generate embedding for a single text"""
        vectors = await self.generate_embeddings([text])
        return vectors[0]

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
