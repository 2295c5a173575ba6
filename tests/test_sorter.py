import asyncio

import httpx
import pytest

from shared.schemas.embedding import EmbeddingConfig
from shared.schemas.ticket import SortMode
from services.embed import build_cache
from services.embed.batcher import TokenBudgetBatcher
from services.embed.cache import EmbeddingCache
from services.embed.errors import ProviderAuthError
from services.ranking.sorter import TicketSorter, sort_simple, sort_tickets

ME = "me@example.com"


def day(n: int) -> str:
    return f"2025-01-{n:02d}T00:00:00.000+0000"


def keys(tickets):
    return [t.key for t in tickets]


def make_cache(embedder):
    return EmbeddingCache(TokenBudgetBatcher(embedder, token_limit=8000))


@pytest.fixture
def workspace(ticket):
    """Owned, similar, parent and leftover tickets with distinct dates"""
    return [
        ticket("OWN-1", assignee_email=ME, updated=day(2), created=day(1)),
        ticket("OWN-2", reporter_email="ME@Example.com", updated=day(5), created=day(1)),
        ticket("SIM-1", updated=day(3), created=day(1)),
        ticket("EPIC-1", issue_type="Epic", updated=day(1), created=day(4)),
        ticket("EPIC-2", issue_type="Epic", updated=day(9), created=day(8)),
        ticket("KID-1", parent_key="EPIC-1", updated=day(6), created=day(2)),
        ticket("KID-2", parent_key="EPIC-2", updated=day(7), created=day(2)),
        ticket("LONE-1", updated=day(4), created=day(3)),
    ]


VECTORS = {
    "OWN-1": [1.0, 0.0, 0.0],
    "OWN-2": [0.0, 1.0, 0.0],
    "SIM-1": [0.9, 0.1, 0.0],
    "EPIC-1": [0.0, 0.0, 1.0],
    "EPIC-2": [0.0, 0.0, 1.0],
    "KID-1": [0.0, 0.0, 1.0],
    "KID-2": [0.0, 0.0, 1.0],
    "LONE-1": [0.0, 0.0, 1.0],
}


def test_empty_input(ticket):
    assert asyncio.run(sort_tickets([], SortMode.DEFAULT)) == []
    assert asyncio.run(sort_tickets([], SortMode.PRIORITY)) == []


def test_priority_order_unknown_last(ticket):
    tickets = [
        ticket("P-1", priority=None),
        ticket("P-2", priority="Low"),
        ticket("P-3", priority="Highest"),
        ticket("P-4", priority="Medium"),
    ]

    ordered = asyncio.run(sort_tickets(tickets, "priority"))

    assert [t.priority for t in ordered] == ["Highest", "Medium", "Low", None]


def test_simple_modes(ticket):
    tickets = [
        ticket("B-2", status="Done", assignee="Zed", created=day(1), updated=day(3)),
        ticket("A-10", status="Doing", assignee=None, created=day(3), updated=day(1)),
        ticket("A-9", status="Done", assignee="Amy", created=day(2), updated=day(5)),
    ]

    assert keys(sort_simple(tickets, SortMode.ALPHABETICAL)) == ["A-10", "A-9", "B-2"]
    assert keys(sort_simple(tickets, SortMode.CREATED)) == ["A-10", "A-9", "B-2"]
    assert keys(sort_simple(tickets, SortMode.UPDATED)) == ["A-9", "B-2", "A-10"]
    # Ties on status fall back to newest update
    assert keys(sort_simple(tickets, SortMode.STATUS)) == ["A-10", "A-9", "B-2"]
    # Missing assignee sorts as "Unassigned"
    assert keys(sort_simple(tickets, SortMode.ASSIGNEE)) == ["A-9", "A-10", "B-2"]


def test_smart_sort_without_provider(workspace):
    sorter = TicketSorter()

    outcome = asyncio.run(sorter.sort_with_outcome(workspace, SortMode.DEFAULT, ME))

    assert not outcome.fell_back
    assert outcome.applied_mode == SortMode.DEFAULT
    assert keys(outcome.tickets) == [
        "OWN-2", "OWN-1",               # owned, newest update first
        "EPIC-2", "EPIC-1",             # parents, newest created first
        "KID-2", "KID-1", "LONE-1", "SIM-1",
    ]
    assert outcome.tiers["related"] == []


def test_smart_sort_with_related_tier(workspace, recording_embedder):
    embedder = recording_embedder(vectors=VECTORS)
    sorter = TicketSorter(cache=make_cache(embedder))

    outcome = asyncio.run(sorter.sort_with_outcome(workspace, SortMode.DEFAULT, ME))

    assert keys(outcome.tickets)[:3] == ["OWN-2", "OWN-1", "SIM-1"]
    assert outcome.tiers["related"] == ["SIM1"]
    assert len(embedder.calls) == 1


def test_smart_tiers_are_disjoint_and_complete(workspace, recording_embedder):
    sorter = TicketSorter(cache=make_cache(recording_embedder(vectors=VECTORS)))

    outcome = asyncio.run(sorter.sort_with_outcome(workspace, SortMode.DEFAULT, ME))

    tier_ids = [tid for ids in outcome.tiers.values() for tid in ids]
    assert len(tier_ids) == len(set(tier_ids))
    assert sorted(tier_ids) == sorted(t.id for t in workspace)
    assert [t.id for t in outcome.tickets] == tier_ids


def test_provider_failure_falls_back_to_updated(workspace, recording_embedder):
    embedder = recording_embedder(error=ProviderAuthError("bad key", status_code=401))
    sorter = TicketSorter(cache=make_cache(embedder))

    outcome = asyncio.run(sorter.sort_with_outcome(workspace, SortMode.DEFAULT, ME))

    assert outcome.fell_back
    assert outcome.applied_mode == SortMode.UPDATED
    assert outcome.requested_mode == SortMode.DEFAULT
    assert "bad key" in outcome.message
    assert keys(outcome.tickets) == keys(sort_simple(workspace, SortMode.UPDATED))


def test_similarity_timeout_falls_back(workspace, recording_embedder):
    embedder = recording_embedder(vectors=VECTORS, delay=1.0)
    sorter = TicketSorter(cache=make_cache(embedder), timeout=0.01)

    outcome = asyncio.run(sorter.sort_with_outcome(workspace, SortMode.DEFAULT, ME))

    assert outcome.fell_back
    assert outcome.applied_mode == SortMode.UPDATED


def test_too_many_owned_tickets_skips_similarity(ticket, recording_embedder):
    embedder = recording_embedder()
    tickets = [ticket(f"OWN-{i}", assignee_email=ME) for i in range(3)] + [ticket("X-1")]
    sorter = TicketSorter(cache=make_cache(embedder), max_seed_tickets=2)

    outcome = asyncio.run(sorter.sort_with_outcome(tickets, SortMode.DEFAULT, ME))

    assert embedder.calls == []
    assert not outcome.fell_back
    assert outcome.tiers["related"] == []


def test_no_user_means_no_owned_tier(workspace, recording_embedder):
    embedder = recording_embedder(vectors=VECTORS)
    sorter = TicketSorter(cache=make_cache(embedder))

    outcome = asyncio.run(sorter.sort_with_outcome(workspace, SortMode.DEFAULT, None))

    assert outcome.tiers["owned"] == []
    assert outcome.tiers["related"] == []
    assert embedder.calls == []


def test_malformed_provider_response_falls_back(workspace):
    config = EmbeddingConfig(base_url="https://llm.test/v1", api_key="sk-test")
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"data": None})))
    cache = build_cache(config, http_client=http)
    sorter = TicketSorter(cache=cache)

    outcome = asyncio.run(sorter.sort_with_outcome(workspace, SortMode.DEFAULT, ME))

    assert outcome.fell_back
    assert outcome.applied_mode == SortMode.UPDATED
    assert keys(outcome.tickets) == keys(sort_simple(workspace, SortMode.UPDATED))
