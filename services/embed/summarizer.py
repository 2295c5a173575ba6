"""
Ticket Summarizer Service
Uses an OpenAI-compatible chat model to summarize tickets, groups of tickets
and the children of a parent ticket.
"""

from typing import Optional

import httpx
import structlog

from shared.schemas.embedding import EmbeddingConfig
from shared.schemas.ticket import Ticket

from .errors import ProviderNotConfiguredError, classify_provider_error

logger = structlog.get_logger()

TICKET_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes Jira tickets. Provide concise, "
    "clear summaries that capture the key points and current status."
)
AGGREGATED_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes groups of Jira tickets. Provide an "
    "overview that identifies patterns, priorities, and key insights."
)
CHILDREN_SYSTEM_PROMPT = (
    "You are a helpful assistant that summarizes child tasks under a parent ticket "
    "(Epic/Initiative). Provide a clear overview of progress, patterns, and blockers."
)

SUMMARY_UNAVAILABLE = "Summary unavailable"


def build_ticket_prompt(ticket: Ticket, comments: Optional[list[str]] = None) -> str:
    """Build the single-ticket summary prompt"""
    lines = [
        "Summarize this Jira ticket:",
        "",
        f"Key: {ticket.key}",
        f"Type: {ticket.issue_type}",
        f"Status: {ticket.status}",
        f"Priority: {ticket.priority or 'Not set'}",
        f"Summary: {ticket.summary}",
        "",
    ]
    if ticket.description:
        lines += ["Description:", ticket.description, ""]

    if comments:
        lines.append("Recent Comments:")
        lines += [f"{i}. {comment}" for i, comment in enumerate(comments, 1)]
        lines.append("")

    if ticket.labels:
        lines.append(f"Labels: {', '.join(ticket.labels)}")

    lines += [
        "",
        "Provide a concise summary (2-3 sentences) highlighting the main objective, "
        "current status, and any blockers or important details.",
    ]
    return "\n".join(lines)


def build_aggregated_prompt(tickets: list[Ticket]) -> str:
    """Build the prompt for an overview of a group of tickets"""
    lines = [f"Summarize this group of {len(tickets)} Jira tickets:", ""]
    for i, ticket in enumerate(tickets, 1):
        lines.append(f"{i}. [{ticket.key}] {ticket.summary}")
        detail = f"   Type: {ticket.issue_type}, Status: {ticket.status}"
        if ticket.priority:
            detail += f", Priority: {ticket.priority}"
        lines.append(detail)

    lines += [
        "",
        "Provide an overview that:",
        "1. Identifies common themes or patterns",
        "2. Highlights the overall status distribution",
        "3. Points out any high-priority items or blockers",
        "4. Suggests potential areas of focus",
    ]
    return "\n".join(lines)


def build_children_prompt(parent: Ticket, children: list[Ticket]) -> str:
    """Build the prompt summarizing the children of an epic or initiative"""
    lines = [
        "Summarize the children tasks under this parent ticket:",
        "",
        f"Parent: [{parent.key}] {parent.summary}",
        f"Type: {parent.issue_type}",
        "",
        f"Children ({len(children)} total):",
        "",
    ]
    for i, child in enumerate(children, 1):
        lines.append(f"{i}. [{child.key}] {child.summary}")
        detail = f"   Status: {child.status}"
        if child.priority:
            detail += f", Priority: {child.priority}"
        if child.assignee:
            detail += f", Assignee: {child.assignee}"
        lines.append(detail)

    lines += [
        "",
        "Provide a concise summary (3-4 sentences) that:",
        "1. Summarizes overall progress (how many done vs in progress vs todo)",
        "2. Identifies any high-priority items or blockers",
        "3. Highlights common themes or patterns across children",
        "4. Notes any items that need attention",
    ]
    return "\n".join(lines)


class TicketSummarizer:
    """Summarizes tickets through an OpenAI-compatible chat completions API.

    Children summaries are cached per parent and child id set for the life
    of the summarizer.
    """

    DEFAULT_MAX_OUTPUT_TOKENS = 500

    def __init__(
        self,
        config: EmbeddingConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.max_output_tokens = max_output_tokens
        self._client = http_client
        self._owns_client = http_client is None
        self._children_cache: dict[tuple[str, frozenset[str]], str] = {}

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create a persistent HTTP client for connection reuse."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout, connect=10.0)
            )
        return self._client

    async def _complete(self, system_prompt: str, prompt: str, operation: str) -> str:
        if not self.config.is_configured:
            raise ProviderNotConfiguredError("LLM service not configured")

        try:
            response = await self._get_client().post(
                f"{self.base_url}/chat/completions",
                json={
                    "model": self.config.chat_model,
                    "messages": [
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": prompt},
                    ],
                    "max_completion_tokens": self.max_output_tokens,
                },
                headers={
                    "Authorization": f"Bearer {self.config.api_key}",
                    **self.config.headers,
                },
            )
            response.raise_for_status()
            choices = response.json().get("choices") or []
        except (httpx.HTTPError, ValueError) as e:
            error = classify_provider_error(e, operation)
            logger.error("Summarization failed", operation=operation, kind=error.kind.value, error=str(error))
            raise error from e

        content = choices[0].get("message", {}).get("content") if choices else None
        return (content or "").strip() or SUMMARY_UNAVAILABLE

    async def summarize_ticket(self, ticket: Ticket, comments: Optional[list[str]] = None) -> str:
        """Summarize one ticket, optionally with its recent comments"""
        if comments is None and ticket.comments:
            comments = [c.body for c in ticket.comments[-5:] if c.body]
        summary = await self._complete(
            TICKET_SYSTEM_PROMPT,
            build_ticket_prompt(ticket, comments),
            "ticket summary",
        )
        logger.info("Summarized ticket", ticket=ticket.key, chars=len(summary))
        return summary

    async def summarize_aggregated(self, tickets: list[Ticket]) -> str:
        """Summarize a group of tickets (e.g. the current filtered view)"""
        if not tickets:
            return SUMMARY_UNAVAILABLE
        summary = await self._complete(
            AGGREGATED_SYSTEM_PROMPT,
            build_aggregated_prompt(tickets),
            "aggregated summary",
        )
        logger.info("Summarized ticket group", count=len(tickets))
        return summary

    async def summarize_children(self, parent: Ticket, children: list[Ticket]) -> str:
        """Summarize the children of a parent ticket, cached per child set"""
        if not children:
            return SUMMARY_UNAVAILABLE

        cache_key = (parent.id, frozenset(c.id for c in children))
        if cache_key in self._children_cache:
            logger.debug("Children summary cache hit", parent=parent.key)
            return self._children_cache[cache_key]

        summary = await self._complete(
            CHILDREN_SYSTEM_PROMPT,
            build_children_prompt(parent, children),
            "children summary",
        )
        self._children_cache[cache_key] = summary
        logger.info("Summarized children", parent=parent.key, children=len(children))
        return summary

    def clear_cache(self) -> None:
        self._children_cache.clear()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
