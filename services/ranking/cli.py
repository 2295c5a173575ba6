#!/usr/bin/env python3
"""
JTI Ranking CLI
Command-line tool for ordering tickets and printing the ticket tree
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import structlog

from shared.schemas.embedding import EmbeddingConfig
from shared.schemas.ticket import SortMode, Ticket, TicketFilters
from services.embed import build_cache
from services.ingest.storage import ArangoStorage
from services.ranking.availability import check_availability
from services.ranking.filters import apply_filters
from services.ranking.sorter import TicketSorter
from services.ranking.tree import TreeNode, build_tree

logger = structlog.get_logger()


def configure_logging(verbose: bool) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.WARNING
        ),
    )


def open_storage(args) -> Optional[ArangoStorage]:
    """ArangoDB storage, unless tickets come from a JSON file"""
    if args.input:
        return None
    return ArangoStorage(host=args.arango_host, port=args.arango_port)


def load_tickets(args, storage: Optional[ArangoStorage] = None) -> list[Ticket]:
    """Load tickets from a JSON export or from ArangoDB"""
    if storage is not None:
        return storage.get_tickets(project_key=args.project)

    with open(args.input, "r") as f:
        raw = json.load(f)
    if isinstance(raw, dict):
        raw = raw.get("tickets", [])
    return [Ticket.model_validate(t) for t in raw]


async def run_sort(args) -> int:
    storage = open_storage(args)
    tickets = load_tickets(args, storage)
    print(f"Loaded {len(tickets)} tickets")

    config = EmbeddingConfig.from_env()
    cache = build_cache(config, store=storage)
    sorter = TicketSorter(cache=cache, timeout=args.timeout)
    try:
        outcome = await sorter.sort_with_outcome(tickets, args.mode, args.user_email)
    finally:
        if cache is not None:
            await cache.aclose()

    if outcome.fell_back:
        print(f"⚠️  Smart ordering unavailable, using {outcome.applied_mode.value}: {outcome.message}")

    if args.json:
        print(json.dumps([t.key for t in outcome.tickets], indent=2))
        return 0

    tier_of = {tid: name for name, ids in outcome.tiers.items() for tid in ids}
    print(f"\n📋 Tickets ordered by {outcome.applied_mode.value}:")
    for i, ticket in enumerate(outcome.tickets, 1):
        tier = f"[{tier_of[ticket.id]}] " if ticket.id in tier_of else ""
        print(f"  {i:3}. {tier}{ticket.key:<12} {ticket.status:<14} {ticket.summary[:60]}")
    return 0


def _print_node(node: TreeNode, depth: int = 0) -> None:
    own, total = node.comment_counts()
    ticket = node.ticket
    comments = f" 💬 {own}/{total}" if total else ""
    print(f"{'  ' * depth}- {ticket.key} [{ticket.issue_type}] {ticket.summary[:60]}{comments}")
    for child in node.children:
        _print_node(child, depth + 1)


async def run_tree(args) -> int:
    tickets = load_tickets(args, open_storage(args))
    filters = TicketFilters(
        search=args.search,
        status=args.status or [],
        assignee=args.assignee or [],
        hide_empty_parents=args.hide_empty_parents,
    )
    tickets = apply_filters(tickets, filters)

    # Order siblings with the requested mode, the tree keeps input order
    sorter = TicketSorter()
    tickets = await sorter.sort(tickets, args.mode)
    tree = build_tree(tickets, hide_empty_parents=filters.hide_empty_parents)

    if args.json:
        print(json.dumps(tree.to_dict(), indent=2, default=str))
        return 0

    print(f"\n🌳 Ticket tree ({len(tree.roots)} roots)")
    for root in tree.roots:
        _print_node(root)

    print(f"\n🧩 Orphan tickets ({len(tree.orphans)})")
    for ticket in tree.orphans:
        print(f"- {ticket.key} [{ticket.issue_type}] {ticket.summary[:60]}")
    return 0


async def run_check(args) -> int:
    config = EmbeddingConfig.from_env()
    print(f"Checking embedding provider at {config.base_url} (model {config.model})...")
    status = await check_availability(config)
    if status.available:
        print(f"✅ {status.message}")
        return 0
    print(f"❌ {status.message}")
    return 1


def main():
    parser = argparse.ArgumentParser(description="JTI Ranking CLI")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    source = argparse.ArgumentParser(add_help=False)
    source.add_argument("--input", "-i", help="Tickets JSON file (default: read ArangoDB)")
    source.add_argument("--project", default=os.getenv("JIRA_PROJECT"), help="Project key filter")
    source.add_argument("--arango-host", default=os.getenv("ARANGODB_HOST", "localhost"))
    source.add_argument("--arango-port", type=int, default=int(os.getenv("ARANGODB_PORT", "8529")))
    source.add_argument("--json", action="store_true", help="Print JSON")
    source.add_argument(
        "--mode",
        choices=[m.value for m in SortMode],
        default=SortMode.DEFAULT.value,
        help="Sort mode",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sort_parser = subparsers.add_parser("sort", parents=[source], help="Order tickets")
    sort_parser.add_argument("--user-email", default=os.getenv("JIRA_EMAIL"), help="Owner email for smart ordering")
    sort_parser.add_argument("--timeout", type=float, default=None, help="Similarity step timeout (s)")

    tree_parser = subparsers.add_parser("tree", parents=[source], help="Print the ticket tree")
    tree_parser.add_argument("--search", help="Search summary, key and description")
    tree_parser.add_argument("--status", action="append", help="Status filter (repeatable)")
    tree_parser.add_argument("--assignee", action="append", help="Assignee filter (repeatable)")
    tree_parser.add_argument("--hide-empty-parents", action="store_true")

    subparsers.add_parser("check", help="Check the similarity feature")

    args = parser.parse_args()
    configure_logging(args.verbose)

    if args.command == "sort":
        code = asyncio.run(run_sort(args))
    elif args.command == "tree":
        if args.mode == SortMode.DEFAULT.value:
            args.mode = SortMode.UPDATED.value
        code = asyncio.run(run_tree(args))
    else:
        code = asyncio.run(run_check(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
