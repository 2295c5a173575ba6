"""
Ticket Sort Orchestrator
Simple attribute orderings plus the four-tier smart ordering
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Union

import structlog

from shared.schemas.ticket import SortMode, Ticket, priority_rank
from services.embed.cache import EmbeddingCache
from services.embed.errors import ProviderError
from services.embed.similarity import RELATED_THRESHOLD, find_related

from .tree import child_index

logger = structlog.get_logger()

# Above this many owned tickets the similarity tier is skipped
MAX_SEED_TICKETS = 20

UNASSIGNED = "Unassigned"

SortKey = Callable[[Ticket], tuple]

SIMPLE_SORT_KEYS: dict[SortMode, SortKey] = {
    SortMode.ALPHABETICAL: lambda t: (t.key,),
    SortMode.CREATED: lambda t: (-t.created_ts,),
    SortMode.UPDATED: lambda t: (-t.updated_ts,),
    SortMode.STATUS: lambda t: (t.status, -t.updated_ts),
    SortMode.PRIORITY: lambda t: (priority_rank(t.priority), -t.updated_ts),
    SortMode.ASSIGNEE: lambda t: (t.assignee or UNASSIGNED, -t.updated_ts),
}

# Errors that downgrade smart sorting to the updated ordering
SIMILARITY_ERRORS = (ProviderError, asyncio.TimeoutError, ValueError)


@dataclass
class SortOutcome:
    """Ordered tickets plus how they were ordered"""
    tickets: list[Ticket]
    requested_mode: SortMode
    applied_mode: SortMode
    fell_back: bool = False
    message: Optional[str] = None
    tiers: dict[str, list[str]] = field(default_factory=dict)


def is_owned_by(ticket: Ticket, user_email: Optional[str]) -> bool:
    """Assignee or reporter email equals the user's email, ignoring case"""
    if not user_email:
        return False
    email = user_email.strip().lower()
    return any(
        candidate and candidate.lower() == email
        for candidate in (ticket.assignee_email, ticket.reporter_email)
    )


def sort_simple(tickets: Iterable[Ticket], mode: SortMode) -> list[Ticket]:
    """Order tickets by one of the simple attribute modes"""
    return sorted(tickets, key=SIMPLE_SORT_KEYS[mode])


def _by_updated(tickets: Iterable[Ticket]) -> list[Ticket]:
    return sort_simple(tickets, SortMode.UPDATED)


def _by_created(tickets: Iterable[Ticket]) -> list[Ticket]:
    return sort_simple(tickets, SortMode.CREATED)


class TicketSorter:
    """
    Sort orchestrator.

    Smart (default) ordering concatenates four disjoint tiers:
    1. tickets the user owns, newest update first
    2. tickets similar to an owned ticket, newest update first
    3. remaining tickets with children, newest created first
    4. everything else, newest update first

    Tier 2 needs the embedding cache. It is skipped when no cache is given,
    when the user owns nothing, or when the user owns more than
    max_seed_tickets tickets. If computing it fails, the whole result falls
    back to the updated ordering.
    """

    def __init__(
        self,
        cache: Optional[EmbeddingCache] = None,
        max_seed_tickets: int = MAX_SEED_TICKETS,
        threshold: float = RELATED_THRESHOLD,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            cache: Embedding cache, None disables the similarity tier
            max_seed_tickets: Owned-ticket count above which similarity is skipped
            threshold: Minimum cosine similarity for the related tier
            timeout: Optional bound in seconds on the similarity tier
        """
        self.cache = cache
        self.max_seed_tickets = max_seed_tickets
        self.threshold = threshold
        self.timeout = timeout

    async def sort(
        self,
        tickets: Iterable[Ticket],
        mode: Union[SortMode, str] = SortMode.DEFAULT,
        user_email: Optional[str] = None,
    ) -> list[Ticket]:
        outcome = await self.sort_with_outcome(tickets, mode, user_email)
        return outcome.tickets

    async def sort_with_outcome(
        self,
        tickets: Iterable[Ticket],
        mode: Union[SortMode, str] = SortMode.DEFAULT,
        user_email: Optional[str] = None,
    ) -> SortOutcome:
        """
        Order tickets and report the mode actually applied.

        Never raises for similarity failures; those are logged and reported
        through fell_back/message.
        """
        mode = SortMode(mode)
        tickets = list(tickets)

        if not tickets:
            return SortOutcome(tickets=[], requested_mode=mode, applied_mode=mode)

        if mode != SortMode.DEFAULT:
            return SortOutcome(
                tickets=sort_simple(tickets, mode),
                requested_mode=mode,
                applied_mode=mode,
            )

        try:
            outcome = await self._sort_smart(tickets, user_email)
        except SIMILARITY_ERRORS as e:
            message = str(e) or e.__class__.__name__
            logger.warning(
                "Smart sort failed, falling back to updated order",
                error=message,
                error_type=e.__class__.__name__,
                tickets=len(tickets),
            )
            return SortOutcome(
                tickets=_by_updated(tickets),
                requested_mode=mode,
                applied_mode=SortMode.UPDATED,
                fell_back=True,
                message=message,
            )

        logger.info(
            "Sorted tickets",
            mode=mode.value,
            owned=len(outcome.tiers["owned"]),
            related=len(outcome.tiers["related"]),
            parents=len(outcome.tiers["parents"]),
            remainder=len(outcome.tiers["remainder"]),
        )
        return outcome

    async def _sort_smart(self, tickets: list[Ticket], user_email: Optional[str]) -> SortOutcome:
        owned = _by_updated(t for t in tickets if is_owned_by(t, user_email))
        placed = {t.id for t in owned}

        related_ids = await self._related_ids(owned, [t for t in tickets if t.id not in placed])
        related = _by_updated(t for t in tickets if t.id in related_ids and t.id not in placed)
        placed.update(t.id for t in related)

        has_children = child_index(tickets)
        parents = _by_created(t for t in tickets if t.id in has_children and t.id not in placed)
        placed.update(t.id for t in parents)

        remainder = _by_updated(t for t in tickets if t.id not in placed)

        return SortOutcome(
            tickets=owned + related + parents + remainder,
            requested_mode=SortMode.DEFAULT,
            applied_mode=SortMode.DEFAULT,
            tiers={
                "owned": [t.id for t in owned],
                "related": [t.id for t in related],
                "parents": [t.id for t in parents],
                "remainder": [t.id for t in remainder],
            },
        )

    async def _related_ids(self, owned: list[Ticket], candidates: list[Ticket]) -> set[str]:
        if not owned or not candidates:
            return set()
        if self.cache is None:
            logger.info("Embedding provider not configured, skipping related tickets")
            return set()
        if len(owned) > self.max_seed_tickets:
            logger.info(
                "Too many owned tickets for similarity, skipping related tickets",
                owned=len(owned),
                limit=self.max_seed_tickets,
            )
            return set()

        lookup = self.cache.get_or_compute_many(owned + candidates)
        if self.timeout is not None:
            vectors = await asyncio.wait_for(lookup, timeout=self.timeout)
        else:
            vectors = await lookup

        related = find_related(
            {t.id: vectors[t.id] for t in owned},
            {t.id: vectors[t.id] for t in candidates},
            threshold=self.threshold,
        )
        logger.debug("Found related tickets", seeds=len(owned), related=len(related))
        return {ticket_id for ticket_id, _ in related}


async def sort_tickets(
    tickets: Iterable[Ticket],
    mode: Union[SortMode, str] = SortMode.DEFAULT,
    user_email: Optional[str] = None,
    cache: Optional[EmbeddingCache] = None,
) -> list[Ticket]:
    """Order tickets; smart mode degrades to the updated ordering on provider failure"""
    return await TicketSorter(cache=cache).sort(tickets, mode, user_email)
