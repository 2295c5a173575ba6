"""
JTI Embed Service
Generates ticket embeddings within the provider token budget and scores similarity

Components:
- embedder.py: EmbeddingClient for the OpenAI-compatible embeddings endpoint
- batcher.py: TokenBudgetBatcher that bisects oversized requests
- cache.py: EmbeddingCache with in-flight de-duplication and persistence hooks
- similarity.py: Cosine similarity and related-ticket search
- summarizer.py: TicketSummarizer for LLM-generated ticket summaries
- errors.py: Provider error taxonomy
"""

from typing import Optional

from .batcher import TokenBudgetBatcher, estimate_tokens
from .cache import EmbeddingCache, EmbeddingStore, EmbeddingStoreError, MemoryEmbeddingStore
from .embedder import EmbeddingClient, parse_embeddings, text_hash, ticket_text, truncate_for_embedding
from .errors import (
    ProviderAuthError,
    ProviderError,
    ProviderErrorKind,
    ProviderNetworkError,
    ProviderNotConfiguredError,
    ProviderRateLimitError,
)
from .similarity import RELATED_THRESHOLD, cosine_similarity, find_related
from .summarizer import TicketSummarizer

__all__ = [
    "EmbeddingClient",
    "TokenBudgetBatcher",
    "estimate_tokens",
    "EmbeddingCache",
    "EmbeddingStore",
    "EmbeddingStoreError",
    "MemoryEmbeddingStore",
    "ticket_text",
    "text_hash",
    "truncate_for_embedding",
    "parse_embeddings",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderAuthError",
    "ProviderRateLimitError",
    "ProviderNetworkError",
    "ProviderNotConfiguredError",
    "RELATED_THRESHOLD",
    "cosine_similarity",
    "find_related",
    "TicketSummarizer",
    "build_cache",
]


def build_cache(config, store=None, http_client=None) -> Optional[EmbeddingCache]:
    """
    Wire an EmbeddingClient, batcher and cache together from a provider config.

    Returns None when the provider is not configured, which disables the
    similarity tier of smart sorting.
    """
    if not config.is_configured:
        return None
    client = EmbeddingClient(config, http_client=http_client)
    batcher = TokenBudgetBatcher(client.generate_embeddings, token_limit=config.token_limit)
    return EmbeddingCache(batcher, store=store, client=client, max_chars=config.max_chars)
