import asyncio

import pytest

from services.embed.batcher import TokenBudgetBatcher
from services.embed.cache import EmbeddingCache, EmbeddingStoreError
from services.embed.embedder import text_hash, ticket_text
from services.ingest.storage import TICKETS_COLLECTION, ArangoStorage


def make_cache(embedder, store):
    return EmbeddingCache(TokenBudgetBatcher(embedder, token_limit=8000), store=store)


@pytest.fixture
def storage(fake_db):
    return ArangoStorage(db=fake_db)


def test_creates_collection(fake_db):
    ArangoStorage(db=fake_db)

    assert fake_db.has_collection(TICKETS_COLLECTION)


def test_store_dedupes_by_key_last_wins(storage, ticket):
    stored = storage.store_tickets([
        ticket("A-1", summary="old"),
        ticket("A-2"),
        ticket("A-1", summary="new"),
    ])

    assert stored == 2
    assert storage.get_ticket("A1").summary == "new"
    assert {t.key for t in storage.get_tickets()} == {"A-1", "A-2"}


def test_embedding_survives_unchanged_text(storage, ticket):
    storage.store_tickets([ticket("A-1", embedding=[0.1, 0.2], embedding_hash="hash-a1")])

    storage.store_tickets([ticket("A-1", status="Done")])

    assert storage.get_ticket("A1").embedding == [0.1, 0.2]
    assert storage.load_embedding("A1") == ([0.1, 0.2], "hash-a1")
    assert storage.get_ticket("A1").status == "Done"


def test_embedding_dropped_when_text_changes(storage, ticket):
    storage.store_tickets([ticket("A-1", embedding=[0.1, 0.2])])

    storage.store_tickets([ticket("A-1", summary="rewritten")])

    assert storage.get_ticket("A1").embedding is None


def test_project_filter(storage, ticket):
    storage.store_tickets([ticket("A-1", project_key="A"), ticket("B-1", project_key="B")])

    assert [t.key for t in storage.get_tickets("B")] == ["B-1"]


def test_embedding_store_operations(storage, ticket):
    storage.store_tickets([ticket("A-1"), ticket("A-2")])

    storage.store_embedding("A1", [1.0, 0.0], "hash-a1")
    storage.store_embedding("A2", [0.0, 1.0], "hash-a2")
    storage.store_embedding("UNKNOWN", [1.0], "hash-x")

    assert storage.load_embedding("A1") == ([1.0, 0.0], "hash-a1")
    assert storage.get_ticket("A1").embedding_hash == "hash-a1"
    assert storage.load_embedding("UNKNOWN") is None

    storage.delete_embedding("A1")
    assert storage.load_embedding("A1") is None

    storage.clear_embeddings()
    assert storage.load_embedding("A2") is None


def test_storage_failures_become_store_errors(storage, fake_db):
    fake_db.collection(TICKETS_COLLECTION).fail = True

    with pytest.raises(EmbeddingStoreError):
        storage.store_embedding("A1", [1.0], "hash-a1")
    with pytest.raises(EmbeddingStoreError):
        storage.load_embedding("A1")
    with pytest.raises(EmbeddingStoreError):
        storage.clear_embeddings()


def test_health(storage):
    assert storage.check_health()


def test_new_cache_rejects_vector_for_edited_text(storage, ticket, recording_embedder):
    embedder = recording_embedder()
    original = ticket("A-1", description="old text")
    storage.store_tickets([original])
    asyncio.run(make_cache(embedder, storage).get_or_compute(original))

    # A fresh cache sharing the database sees the edit before the next sync
    edited = original.with_changes(description="new text")
    asyncio.run(make_cache(embedder, storage).get_or_compute(edited))
    asyncio.run(make_cache(embedder, storage).get_or_compute(edited))

    assert len(embedder.calls) == 2
    assert "new text" in embedder.calls[1][0]
    assert storage.load_embedding("A1")[1] == text_hash(ticket_text(edited))
