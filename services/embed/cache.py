"""
Embedding Cache
Session-scoped map from ticket id to embedding vector, backed by an optional
persisted copy
"""

import asyncio
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

import structlog

from shared.schemas.ticket import Ticket

from .batcher import TokenBudgetBatcher
from .embedder import DEFAULT_MAX_CHARS, EmbeddingClient, text_hash, ticket_text, truncate_for_embedding

logger = structlog.get_logger()


class EmbeddingStoreError(Exception):
    """Persisting or loading an embedding failed (quota, connectivity, ...)"""


class EmbeddingStore(Protocol):
    """
    Persistence hook for embeddings, keyed by ticket id.

    Each vector is stored with the hash of the text it was computed from.
    """

    def load_embedding(self, ticket_id: str) -> Optional[tuple[list[float], Optional[str]]]: ...

    def store_embedding(self, ticket_id: str, vector: list[float], text_hash: str) -> None: ...

    def delete_embedding(self, ticket_id: str) -> None: ...

    def clear_embeddings(self) -> None: ...


class MemoryEmbeddingStore:
    """Non-persistent store, used when no database is available"""

    def __init__(self):
        self._vectors: dict[str, tuple[list[float], str]] = {}

    def load_embedding(self, ticket_id: str) -> Optional[tuple[list[float], Optional[str]]]:
        return self._vectors.get(ticket_id)

    def store_embedding(self, ticket_id: str, vector: list[float], text_hash: str) -> None:
        self._vectors[ticket_id] = (vector, text_hash)

    def delete_embedding(self, ticket_id: str) -> None:
        self._vectors.pop(ticket_id, None)

    def clear_embeddings(self) -> None:
        self._vectors.clear()


@dataclass
class CacheEntry:
    vector: list[float]
    text_hash: str


class EmbeddingCache:
    """
    Ticket embedding cache.

    Lookup order: in-memory entry whose text hash still matches the ticket,
    then the ticket's own persisted embedding, then the store, then the
    provider (through the batcher). Concurrent requests for a ticket that is
    already being embedded share the pending provider call.

    Construct one per session and pass it to the sorter; it is never global.
    """

    def __init__(
        self,
        batcher: TokenBudgetBatcher,
        store: Optional[EmbeddingStore] = None,
        client: Optional[EmbeddingClient] = None,
        max_chars: int = DEFAULT_MAX_CHARS,
    ):
        """
        Args:
            batcher: Batcher wrapping the provider call
            store: Optional persisted copy of the embeddings
            client: Provider client to close with the cache, if the cache owns it
            max_chars: Per-text character budget applied before batching
        """
        self.batcher = batcher
        self.store = store
        self.client = client
        self.max_chars = max_chars
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ticket_id: str) -> bool:
        return ticket_id in self._entries

    def get(self, ticket_id: str) -> Optional[list[float]]:
        """Return the in-memory vector for a ticket id, if any"""
        entry = self._entries.get(ticket_id)
        return entry.vector if entry else None

    async def get_or_compute(self, ticket: Ticket) -> list[float]:
        """Return the ticket's embedding, generating it on a miss"""
        vectors = await self.get_or_compute_many([ticket])
        return vectors[ticket.id]

    async def get_or_compute_many(self, tickets: Iterable[Ticket]) -> dict[str, list[float]]:
        """
        Return embeddings for many tickets; all misses go to the provider
        in one batched request.
        """
        results: dict[str, list[float]] = {}
        waiting: dict[str, asyncio.Future] = {}
        misses: dict[str, tuple[Ticket, str, str]] = {}

        for ticket in tickets:
            if ticket.id in results or ticket.id in waiting or ticket.id in misses:
                continue
            text = ticket_text(ticket)
            digest = text_hash(text)
            vector = self._lookup(ticket, digest)
            if vector is not None:
                results[ticket.id] = vector
            elif ticket.id in self._inflight:
                waiting[ticket.id] = self._inflight[ticket.id]
            else:
                # Token estimates are made on the text actually sent
                misses[ticket.id] = (ticket, truncate_for_embedding(text, self.max_chars), digest)

        if misses:
            results.update(await self._compute(misses))

        for ticket_id, future in waiting.items():
            results[ticket_id] = await future

        return results

    def _lookup(self, ticket: Ticket, digest: str) -> Optional[list[float]]:
        entry = self._entries.get(ticket.id)
        if entry is not None:
            if entry.text_hash == digest:
                return entry.vector
            logger.debug("Embedding stale, text changed", ticket=ticket.key)
            self.invalidate(ticket.id)
            return None

        # A payload vector without a hash is trusted; Ticket.with_changes drops it on edits
        if ticket.embedding and ticket.embedding_hash in (None, digest):
            self._entries[ticket.id] = CacheEntry(ticket.embedding, digest)
            return ticket.embedding

        if self.store is not None:
            try:
                stored = self.store.load_embedding(ticket.id)
            except EmbeddingStoreError as e:
                logger.warning("Failed to load stored embedding", ticket=ticket.key, error=str(e))
                stored = None
            if stored and stored[0]:
                vector, stored_hash = stored
                if stored_hash == digest:
                    self._entries[ticket.id] = CacheEntry(vector, digest)
                    return vector
                logger.debug("Stored embedding stale, text changed", ticket=ticket.key)
                self.invalidate(ticket.id)

        return None

    async def _compute(self, misses: dict[str, tuple[Ticket, str, str]]) -> dict[str, list[float]]:
        loop = asyncio.get_running_loop()
        futures = {ticket_id: loop.create_future() for ticket_id in misses}
        self._inflight.update(futures)

        try:
            texts = [text for _, text, _ in misses.values()]
            logger.info("Generating embeddings", count=len(texts))
            vectors = await self.batcher.embed_batch(texts)
        except BaseException as e:
            for future in futures.values():
                if future.done():
                    continue
                if isinstance(e, asyncio.CancelledError):
                    future.cancel()
                else:
                    future.set_exception(e)
                    # Waiters still see the error; silence the unretrieved warning
                    future.exception()
            raise
        finally:
            for ticket_id, future in futures.items():
                if self._inflight.get(ticket_id) is future:
                    del self._inflight[ticket_id]

        results = {}
        for (ticket_id, (ticket, _, digest)), vector in zip(misses.items(), vectors):
            self._entries[ticket_id] = CacheEntry(vector, digest)
            self._persist(ticket, vector, digest)
            futures[ticket_id].set_result(vector)
            results[ticket_id] = vector
        return results

    def _persist(self, ticket: Ticket, vector: list[float], digest: str) -> None:
        if self.store is None:
            return
        try:
            self.store.store_embedding(ticket.id, vector, digest)
        except EmbeddingStoreError as e:
            logger.warning(
                "Failed to persist embedding, evicting stored embeddings",
                ticket=ticket.key,
                error=str(e),
            )
            self.evict_persisted()

    def invalidate(self, ticket_id: str) -> None:
        """Drop one ticket's vector (its text changed)"""
        self._entries.pop(ticket_id, None)
        if self.store is not None:
            try:
                self.store.delete_embedding(ticket_id)
            except EmbeddingStoreError as e:
                logger.warning("Failed to delete stored embedding", ticket_id=ticket_id, error=str(e))

    def refresh(self, ticket: Ticket) -> bool:
        """Invalidate the ticket's vector if its text no longer matches. Returns True if dropped."""
        entry = self._entries.get(ticket.id)
        if entry is None or entry.text_hash == text_hash(ticket_text(ticket)):
            return False
        self.invalidate(ticket.id)
        return True

    def clear(self) -> None:
        """
        Drop every in-memory vector.

        Persisted and ticket-carried vectors are not touched; they are reloaded
        on the next lookup when their text hash still matches.
        """
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cleared embedding cache", entries=count)

    def evict_persisted(self) -> None:
        """
        Clear persisted embeddings and continue memory-only.

        Vectors already in memory stay valid; everything else regenerates on
        demand for the rest of the session.
        """
        store, self.store = self.store, None
        if store is None:
            return
        try:
            store.clear_embeddings()
        except EmbeddingStoreError as e:
            logger.error("Failed to clear stored embeddings", error=str(e))
        logger.info("Embedding cache is now memory-only")

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
