"""
Similarity Availability Probe
Checks whether the embedding provider can serve smart sorting
"""

from typing import Optional

import structlog

from shared.schemas.embedding import AvailabilityStatus, EmbeddingConfig
from services.embed.embedder import EmbeddingClient
from services.embed.errors import ProviderError, ProviderErrorKind

logger = structlog.get_logger()

PROBE_TEXT = "Test ticket for similarity feature check"

NOT_CONFIGURED_MESSAGE = "Configure an LLM API key in settings to enable smart ordering."

ERROR_MESSAGES = {
    ProviderErrorKind.UNAUTHORIZED: "Invalid API key. Please check your API key in settings.",
    ProviderErrorKind.RATE_LIMITED: "Rate limit exceeded. Please try again in a few moments.",
    ProviderErrorKind.NETWORK: "Network error. Please check your connection.",
    ProviderErrorKind.NOT_CONFIGURED: NOT_CONFIGURED_MESSAGE,
}


async def check_availability(
    config: EmbeddingConfig,
    client: Optional[EmbeddingClient] = None,
) -> AvailabilityStatus:
    """
    Probe the embedding provider with one short request.

    Advisory only; sorting degrades on its own when the provider fails.
    """
    if not config.is_configured:
        return AvailabilityStatus(
            available=False,
            message=NOT_CONFIGURED_MESSAGE,
            error_kind=ProviderErrorKind.NOT_CONFIGURED.value,
        )

    owns_client = client is None
    client = client or EmbeddingClient(config)
    try:
        await client.generate_embedding(PROBE_TEXT)
    except ProviderError as e:
        message = ERROR_MESSAGES.get(e.kind, f"Similarity feature unavailable: {e}")
        logger.warning("Similarity probe failed", kind=e.kind.value, error=str(e))
        return AvailabilityStatus(available=False, message=message, error_kind=e.kind.value)
    finally:
        if owns_client:
            await client.aclose()

    return AvailabilityStatus(available=True, message="Similarity feature available")
