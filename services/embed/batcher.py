"""
Token-Budget Batcher
Splits embedding requests so every provider call stays under the token ceiling
"""

import asyncio
import math
from typing import Awaitable, Callable

import structlog

from shared.schemas.embedding import DEFAULT_TOKEN_LIMIT

from .errors import ProviderError

logger = structlog.get_logger()

EmbedFn = Callable[[list[str]], Awaitable[list[list[float]]]]


def estimate_tokens(text: str) -> int:
    """Rough token estimate (1 token ~ 4 characters), not a real tokenizer"""
    return math.ceil(len(text) / 4)


class TokenBudgetBatcher:
    """
    Order-preserving embedding batcher.

    A batch whose estimated token sum exceeds the ceiling is bisected at its
    midpoint and both halves are embedded concurrently. Halving terminates at
    single texts, which are always sent alone even when over budget; the
    provider error then propagates. There are no retries, and any failed
    sub-batch fails the whole batch.
    """

    def __init__(self, embed_fn: EmbedFn, token_limit: int = DEFAULT_TOKEN_LIMIT):
        """
        Args:
            embed_fn: Raw provider call, one request per invocation
            token_limit: Estimated token ceiling per request
        """
        self.embed_fn = embed_fn
        self.token_limit = token_limit

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts, returning one vector per text in input order.

        Raises:
            ProviderError: when any provider call fails or miscounts
        """
        if not texts:
            return []

        total_tokens = sum(estimate_tokens(t) for t in texts)
        if total_tokens <= self.token_limit or len(texts) == 1:
            if total_tokens > self.token_limit:
                logger.warning(
                    "Single text exceeds token budget",
                    tokens=total_tokens,
                    limit=self.token_limit,
                )
            vectors = await self.embed_fn(list(texts))
            if len(vectors) != len(texts):
                raise ProviderError(
                    f"Embedding count mismatch: sent {len(texts)}, received {len(vectors)}"
                )
            return vectors

        mid = len(texts) // 2
        logger.debug(
            "Splitting embedding batch",
            size=len(texts),
            tokens=total_tokens,
            limit=self.token_limit,
        )
        left, right = await asyncio.gather(
            self.embed_batch(texts[:mid]),
            self.embed_batch(texts[mid:]),
        )
        return left + right
