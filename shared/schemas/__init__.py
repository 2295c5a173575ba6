"""JTI Shared Schemas"""

from .embedding import AvailabilityStatus, EmbeddingConfig
from .ticket import (
    PRIORITY_RANK,
    UNKNOWN_PRIORITY_RANK,
    SortMode,
    Ticket,
    TicketComment,
    TicketFilters,
    UserIdentity,
    parse_timestamp,
    priority_rank,
)

__all__ = [
    # Ticket schemas
    "Ticket",
    "TicketComment",
    "TicketFilters",
    "UserIdentity",
    "SortMode",
    "PRIORITY_RANK",
    "UNKNOWN_PRIORITY_RANK",
    "parse_timestamp",
    "priority_rank",
    # Provider schemas
    "EmbeddingConfig",
    "AvailabilityStatus",
]
