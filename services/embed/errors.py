"""
Provider Error Taxonomy
Classifies embedding/chat provider failures so callers can tell
"fix your key" apart from "try again later"
"""

from enum import Enum
from typing import Optional

import httpx


class ProviderErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


class ProviderError(Exception):
    """Base error for embedding and chat-completion provider calls"""

    kind = ProviderErrorKind.UNKNOWN

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    kind = ProviderErrorKind.UNAUTHORIZED


class ProviderRateLimitError(ProviderError):
    kind = ProviderErrorKind.RATE_LIMITED


class ProviderNetworkError(ProviderError):
    kind = ProviderErrorKind.NETWORK


class ProviderNotConfiguredError(ProviderError):
    kind = ProviderErrorKind.NOT_CONFIGURED


def classify_provider_error(exc: Exception, operation: str = "provider call") -> ProviderError:
    """Map an httpx failure onto the provider error taxonomy"""
    if isinstance(exc, ProviderError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = exc.response.text[:300]
        if status in (401, 403):
            return ProviderAuthError(
                "LLM API authentication failed. Please check your API key.",
                status_code=status,
            )
        if status == 429:
            return ProviderRateLimitError(
                "LLM API rate limit exceeded. Please try again later.",
                status_code=status,
            )
        if status == 400 and "maximum context length" in body:
            return ProviderError(f"Token limit exceeded: {body}", status_code=status)
        return ProviderError(f"Failed {operation}: HTTP {status} {body}", status_code=status)

    if isinstance(exc, httpx.TransportError):
        return ProviderNetworkError(
            f"Network error when connecting to LLM API: {exc.__class__.__name__}"
        )

    return ProviderError(f"Failed {operation}: {exc}")
