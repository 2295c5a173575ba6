"""
Ticket Filters
Applies view filters while keeping every match's ancestor chain
"""

from datetime import datetime, time, timezone
from typing import Iterable, Optional

import structlog

from shared.schemas.ticket import Ticket, TicketFilters, parse_timestamp

from .tree import TicketIndex, resolve_parent

logger = structlog.get_logger()


def _day_bound(value: Optional[str], end: bool) -> Optional[float]:
    """Start (or end) of the given day as epoch seconds, UTC"""
    if not value:
        return None
    ts = parse_timestamp(value)
    if ts == 0.0:
        logger.warning("Ignoring unparseable date filter", value=value)
        return None
    day = datetime.fromtimestamp(ts, tz=timezone.utc).date()
    bound = datetime.combine(day, time.max if end else time.min, tzinfo=timezone.utc)
    return bound.timestamp()


def matches(ticket: Ticket, filters: TicketFilters) -> bool:
    """True if the ticket itself satisfies every active filter"""
    if filters.search:
        needle = filters.search.lower()
        haystacks = (ticket.summary, ticket.key, ticket.description or "")
        if not any(needle in h.lower() for h in haystacks):
            return False

    if filters.assignee and ticket.assignee not in filters.assignee:
        return False
    if filters.reporter and ticket.reporter not in filters.reporter:
        return False
    if filters.status and ticket.status not in filters.status:
        return False
    if filters.issue_type and ticket.issue_type not in filters.issue_type:
        return False
    if filters.component and not set(ticket.components) & set(filters.component):
        return False

    if filters.date_from or filters.date_to:
        ts = ticket.updated_ts if filters.date_field == "updated" else ticket.created_ts
        lower = _day_bound(filters.date_from, end=False)
        upper = _day_bound(filters.date_to, end=True)
        if lower is not None and ts < lower:
            return False
        if upper is not None and ts > upper:
            return False

    if filters.min_comments > 0 and len(ticket.comments) < filters.min_comments:
        return False

    return True


def apply_filters(tickets: Iterable[Ticket], filters: Optional[TicketFilters]) -> list[Ticket]:
    """
    Filter tickets, keeping each match's full ancestor chain so the tree
    still shows matches in context. Input order is preserved.
    """
    tickets = list(tickets)
    if filters is None or filters.is_empty:
        return tickets

    index = TicketIndex.build(tickets)
    include: set[str] = set()

    for ticket in tickets:
        if not matches(ticket, filters):
            continue
        include.add(ticket.id)
        current = ticket
        while True:
            parent = resolve_parent(current, index).parent
            if parent is None or parent.id in include:
                break
            include.add(parent.id)
            current = parent

    result = [t for t in tickets if t.id in include]
    logger.debug("Applied filters", total=len(tickets), kept=len(result))
    return result
