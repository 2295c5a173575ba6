"""
JTI Ranking Service
Builds the ticket tree and orders tickets, including the smart ordering

Components:
- tree.py: Parent resolution policy, tree builder and orphan detection
- filters.py: View filters that keep each match's ancestor chain
- sorter.py: TicketSorter with simple modes and the four-tier smart mode
- availability.py: Advisory probe of the embedding provider
- coordinator.py: SortCoordinator that drops superseded sort results
- cli.py: Command-line interface for sorting and tree printing
"""

from .availability import check_availability
from .coordinator import SortCoordinator
from .filters import apply_filters
from .sorter import SortOutcome, TicketSorter, sort_tickets
from .tree import (
    PARENT_RESOLVERS,
    ParentLink,
    TicketIndex,
    TicketTree,
    TreeNode,
    build_tree,
    child_index,
    find_parent_path,
    resolve_parent,
)

__all__ = [
    "check_availability",
    "SortCoordinator",
    "apply_filters",
    "SortOutcome",
    "TicketSorter",
    "sort_tickets",
    "PARENT_RESOLVERS",
    "ParentLink",
    "TicketIndex",
    "TicketTree",
    "TreeNode",
    "build_tree",
    "child_index",
    "find_parent_path",
    "resolve_parent",
]
