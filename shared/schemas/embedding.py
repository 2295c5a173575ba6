"""
Jira Ticket Intelligence - Embedding Provider Schemas

Provider configuration and availability status for the similarity features
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
DEFAULT_EMBED_MODEL = os.getenv("EMBED_MODEL", "text-embedding-3-small")
DEFAULT_CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")
# Provider hard limit is 8191 tokens per request, keep a margin
DEFAULT_TOKEN_LIMIT = int(os.getenv("EMBED_TOKEN_LIMIT", "8000"))


class EmbeddingConfig(BaseModel):
    """OpenAI-compatible provider settings used for embeddings and summaries"""
    base_url: str = DEFAULT_LLM_BASE_URL
    api_key: Optional[str] = None
    model: str = DEFAULT_EMBED_MODEL
    chat_model: str = DEFAULT_CHAT_MODEL
    headers: dict[str, str] = Field(default_factory=dict)
    token_limit: int = Field(DEFAULT_TOKEN_LIMIT, gt=0)
    max_chars: int = Field(8000, gt=1, description="Per-text character budget before truncation")
    timeout: float = 60.0

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.base_url)

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        """Build a config from LLM_* environment variables"""
        return cls(
            base_url=os.getenv("LLM_BASE_URL", DEFAULT_LLM_BASE_URL),
            api_key=os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY"),
            model=os.getenv("EMBED_MODEL", DEFAULT_EMBED_MODEL),
            chat_model=os.getenv("CHAT_MODEL", DEFAULT_CHAT_MODEL),
            token_limit=int(os.getenv("EMBED_TOKEN_LIMIT", str(DEFAULT_TOKEN_LIMIT))),
        )


class AvailabilityStatus(BaseModel):
    """Advisory result of probing the embedding provider"""
    available: bool
    message: str
    error_kind: Optional[str] = None
