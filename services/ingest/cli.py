#!/usr/bin/env python3
"""
JTI Ingest CLI
Command-line tool for pulling tickets from Jira
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from services.ingest.client import DEFAULT_JIRA_PROJECT, JiraClient, JiraError
from services.ingest.storage import ArangoStorage


async def test_connection(jira_url: str, email: str, token: str) -> bool:
    """Test connection to Jira"""
    print(f"Testing connection to {jira_url}...")
    async with JiraClient(jira_url, email, token) as client:
        if not await client.check_health():
            print("❌ Failed to connect to Jira")
            return False
        user = await client.get_current_user()
        print("✅ Jira is reachable and credentials are valid")
        print(f"   Authenticated as: {user.display_name} <{user.email}>")
        return True


async def fetch_tickets(
    jira_url: str,
    email: str,
    token: str,
    project: str,
    output_file: str = None,
) -> list:
    """Fetch tickets from Jira"""
    print(f"Fetching tickets for project {project}...")
    async with JiraClient(jira_url, email, token) as client:
        tickets = await client.fetch_all_tickets(project)
    print(f"✅ Fetched {len(tickets)} tickets")

    if output_file:
        with open(output_file, "w") as f:
            json.dump([t.model_dump(by_alias=True) for t in tickets], f, indent=2, default=str)
        print(f"   Saved to {output_file}")

    return tickets


async def run_sync(
    jira_url: str,
    email: str,
    token: str,
    project: str,
    arango_host: str,
    arango_port: int,
) -> int:
    """Fetch tickets and store them in ArangoDB"""
    print(f"Syncing project {project}...")
    storage = ArangoStorage(host=arango_host, port=arango_port)

    async with JiraClient(jira_url, email, token) as client:
        tickets = await client.fetch_all_tickets(project)
    print(f"   Fetched {len(tickets)} tickets")

    count = storage.store_tickets(tickets)
    print(f"✅ Stored {count} tickets")
    return count


def main():
    parser = argparse.ArgumentParser(description="JTI Ingest CLI (Jira)")
    parser.add_argument("--jira-url", default=os.getenv("JIRA_URL", ""), help="Jira base URL")
    parser.add_argument("--email", default=os.getenv("JIRA_EMAIL", ""), help="Jira account email")
    parser.add_argument("--token", default=os.getenv("JIRA_TOKEN", ""), help="Jira API token")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Test command
    subparsers.add_parser("test", help="Test Jira connection")

    # Fetch command
    fetch_parser = subparsers.add_parser("fetch", help="Fetch tickets to file")
    fetch_parser.add_argument("--project", default=DEFAULT_JIRA_PROJECT, help="Project key")
    fetch_parser.add_argument("--output", "-o", default="tickets.json", help="Output file")

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Sync tickets to database")
    sync_parser.add_argument("--project", default=DEFAULT_JIRA_PROJECT, help="Project key")
    sync_parser.add_argument(
        "--arango-host",
        default=os.getenv("ARANGODB_HOST", "localhost"),
        help="ArangoDB host",
    )
    sync_parser.add_argument(
        "--arango-port",
        type=int,
        default=int(os.getenv("ARANGODB_PORT", "8529")),
        help="ArangoDB port",
    )

    args = parser.parse_args()

    if not args.jira_url:
        print("❌ No Jira URL. Set JIRA_URL or pass --jira-url")
        sys.exit(1)

    try:
        if args.command == "test":
            success = asyncio.run(test_connection(args.jira_url, args.email, args.token))
            sys.exit(0 if success else 1)

        elif args.command == "fetch":
            asyncio.run(fetch_tickets(args.jira_url, args.email, args.token, args.project, args.output))

        elif args.command == "sync":
            asyncio.run(run_sync(
                args.jira_url,
                args.email,
                args.token,
                args.project,
                args.arango_host,
                args.arango_port,
            ))
    except JiraError as e:
        print(f"❌ {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
