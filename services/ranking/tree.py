"""
Ticket Tree Builder
Builds the parent/child forest and the orphan list from a flat ticket set
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional

import structlog

from shared.schemas.ticket import Ticket

logger = structlog.get_logger()

# Issue types shown as tree roots even without children (substring match)
CONTAINER_TYPES = ("initiative", "epic", "story", "feature")


@dataclass
class TicketIndex:
    """Lookup tables over the current ticket set"""
    by_id: dict[str, Ticket] = field(default_factory=dict)
    by_key: dict[str, Ticket] = field(default_factory=dict)

    @classmethod
    def build(cls, tickets: Iterable[Ticket]) -> "TicketIndex":
        index = cls()
        for ticket in tickets:
            index.by_id.setdefault(ticket.id, ticket)
            index.by_key.setdefault(ticket.key, ticket)
        return index


@dataclass
class ParentResolver:
    """One parent-resolution strategy: which field to read and which table to search"""
    name: str
    reference: Callable[[Ticket], Optional[str]]
    lookup: Callable[[TicketIndex, str], Optional[Ticket]]


# Ordered policy. The first resolver whose field is populated decides, even
# when it fails to resolve and a later field would have.
PARENT_RESOLVERS = (
    ParentResolver("parent_id", lambda t: t.parent_id, lambda idx, ref: idx.by_id.get(ref)),
    ParentResolver("parent_key", lambda t: t.parent_key, lambda idx, ref: idx.by_key.get(ref)),
)


@dataclass
class ParentLink:
    """Outcome of resolving a ticket's parent reference"""
    strategy: Optional[str] = None
    reference: Optional[str] = None
    parent: Optional[Ticket] = None

    @property
    def has_reference(self) -> bool:
        return self.reference is not None

    @property
    def is_dangling(self) -> bool:
        """A reference was given but no ticket in the set matches it"""
        return self.has_reference and self.parent is None


def resolve_parent(ticket: Ticket, index: TicketIndex) -> ParentLink:
    """Resolve a ticket's parent against the index using PARENT_RESOLVERS"""
    for resolver in PARENT_RESOLVERS:
        reference = resolver.reference(ticket)
        if reference:
            return ParentLink(resolver.name, reference, resolver.lookup(index, reference))
    return ParentLink()


def is_container(ticket: Ticket) -> bool:
    issue_type = ticket.issue_type.lower()
    return any(t in issue_type for t in CONTAINER_TYPES)


def _unique(tickets: Iterable[Ticket]) -> list[Ticket]:
    seen: set[str] = set()
    unique = []
    for ticket in tickets:
        if ticket.id in seen:
            logger.warning("Duplicate ticket id, keeping first occurrence", ticket_id=ticket.id, key=ticket.key)
            continue
        seen.add(ticket.id)
        unique.append(ticket)
    return unique


def child_index(tickets: Iterable[Ticket]) -> dict[str, list[Ticket]]:
    """
    Map parent id -> resolved children, in input order.

    Self-references are not child links.
    """
    tickets = _unique(tickets)
    return _children_by_parent(tickets, TicketIndex.build(tickets))


def _children_by_parent(tickets: list[Ticket], index: TicketIndex) -> dict[str, list[Ticket]]:
    children: dict[str, list[Ticket]] = {}
    for ticket in tickets:
        link = resolve_parent(ticket, index)
        if link.parent is not None and link.parent.id != ticket.id:
            children.setdefault(link.parent.id, []).append(ticket)
    return children


@dataclass
class TreeNode:
    """A ticket and its resolved children"""
    ticket: Ticket
    children: list["TreeNode"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.ticket.id

    def walk(self) -> Iterator["TreeNode"]:
        """Yield this node and all descendants, depth first"""
        yield self
        for child in self.children:
            yield from child.walk()

    def comment_counts(self) -> tuple[int, int]:
        """(own comments, own plus all descendants' comments)"""
        own = len(self.ticket.comments)
        return own, own + sum(child.comment_counts()[1] for child in self.children)

    def to_dict(self) -> dict:
        own, total = self.comment_counts()
        data = self.ticket.model_dump(by_alias=True, exclude={"embedding", "embedding_hash"})
        data["commentCount"] = {"own": own, "total": total}
        data["children"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class TicketTree:
    roots: list[TreeNode] = field(default_factory=list)
    orphans: list[Ticket] = field(default_factory=list)

    def walk(self) -> Iterator[TreeNode]:
        for root in self.roots:
            yield from root.walk()

    def to_dict(self) -> dict:
        return {
            "roots": [root.to_dict() for root in self.roots],
            "orphans": [t.model_dump(by_alias=True, exclude={"embedding", "embedding_hash"}) for t in self.orphans],
        }


def build_tree(tickets: Iterable[Ticket], hide_empty_parents: bool = False) -> TicketTree:
    """
    Build the ticket forest.

    A ticket with no parent reference becomes a root if it has children or
    is a container type (initiative, epic, story, feature); with
    hide_empty_parents only tickets with children become roots. A ticket
    whose parent reference does not resolve is an orphan.

    Every ticket lands exactly once in the forest or in the orphans. Tickets
    no root can reach (descendants of an orphan, parent cycles,
    self-parented tickets) are orphans too. Children and orphans keep input
    order; nothing is re-sorted here.
    """
    tickets = _unique(tickets)
    index = TicketIndex.build(tickets)
    children = _children_by_parent(tickets, index)

    root_tickets = []
    for ticket in tickets:
        if resolve_parent(ticket, index).has_reference:
            continue
        has_children = ticket.id in children
        if has_children or (is_container(ticket) and not hide_empty_parents):
            root_tickets.append(ticket)

    placed: set[str] = set()

    def attach(ticket: Ticket) -> TreeNode:
        placed.add(ticket.id)
        node = TreeNode(ticket)
        for child in children.get(ticket.id, []):
            if child.id not in placed:
                node.children.append(attach(child))
        return node

    roots = [attach(ticket) for ticket in root_tickets]
    orphans = [ticket for ticket in tickets if ticket.id not in placed]

    logger.debug(
        "Built ticket tree",
        tickets=len(tickets),
        roots=len(roots),
        orphans=len(orphans),
    )
    return TicketTree(roots=roots, orphans=orphans)


def find_parent_path(ticket_id: str, tickets: Iterable[Ticket]) -> list[str]:
    """Ancestor ids of a ticket, nearest first (used to expand a selected ticket)"""
    tickets = list(tickets)
    index = TicketIndex.build(tickets)
    path: list[str] = []
    seen = {ticket_id}

    current = index.by_id.get(ticket_id)
    while current is not None:
        parent = resolve_parent(current, index).parent
        if parent is None or parent.id in seen:
            break
        path.append(parent.id)
        seen.add(parent.id)
        current = parent
    return path
