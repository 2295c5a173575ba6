"""
ArangoDB Storage for JTI Ingest Service
Persists the ticket set and the tickets' embedding vectors
"""

import os
from datetime import datetime, timezone
from typing import Optional

import structlog
from arango import ArangoClient
from arango.database import StandardDatabase
from arango.exceptions import ArangoError

from shared.schemas.ticket import Ticket
from services.embed.cache import EmbeddingStoreError

logger = structlog.get_logger()

TICKETS_COLLECTION = "tickets"

DEFAULT_ARANGO_HOST = os.getenv("ARANGODB_HOST", "localhost")
DEFAULT_ARANGO_PORT = int(os.getenv("ARANGODB_PORT", "8529"))
DEFAULT_ARANGO_DB = os.getenv("ARANGODB_DB", "jti")
DEFAULT_ARANGO_USER = os.getenv("ARANGODB_USER", "root")
DEFAULT_ARANGO_PASSWORD = os.getenv("ARANGODB_PASSWORD", "")


class ArangoStorage:
    """
    ArangoDB storage for tickets.

    Embeddings live on the ticket documents, so a synced ticket keeps its
    vector as long as its summary and description are unchanged. Also
    serves as the EmbeddingStore behind the embedding cache.
    """

    def __init__(
        self,
        host: str = DEFAULT_ARANGO_HOST,
        port: int = DEFAULT_ARANGO_PORT,
        database: str = DEFAULT_ARANGO_DB,
        username: str = DEFAULT_ARANGO_USER,
        password: str = DEFAULT_ARANGO_PASSWORD,
        db: Optional[StandardDatabase] = None,
    ):
        self.host = host
        self.port = port
        self.database_name = database
        self.username = username
        self.password = password
        self._client: Optional[ArangoClient] = None
        self._db = db
        if self._db is None:
            self._connect()
        self._ensure_collections()

    def _connect(self):
        """Establish connection to ArangoDB"""
        try:
            self._client = ArangoClient(hosts=f"http://{self.host}:{self.port}")
            # Connect without auth (dev mode) or with credentials
            if self.password:
                self._db = self._client.db(
                    self.database_name, username=self.username, password=self.password
                )
            else:
                self._db = self._client.db(self.database_name)
            logger.info("Connected to ArangoDB", host=self.host, database=self.database_name)
        except ArangoError as e:
            logger.error("Failed to connect to ArangoDB", error=str(e))
            raise

    def _ensure_collections(self):
        if not self._db.has_collection(TICKETS_COLLECTION):
            self._db.create_collection(TICKETS_COLLECTION)

    @property
    def tickets(self):
        return self._db.collection(TICKETS_COLLECTION)

    def check_health(self) -> bool:
        """Check database connectivity"""
        try:
            self._db.version()
            return True
        except ArangoError as e:
            logger.warning("ArangoDB health check failed", error=str(e))
        return False

    def store_tickets(self, tickets: list[Ticket]) -> int:
        """
        Upsert tickets, de-duplicated by key (last one wins).

        A stored embedding survives the upsert when summary and description
        are unchanged; otherwise it is dropped so it regenerates.

        Returns:
            Number of tickets stored
        """
        if not tickets:
            return 0

        by_key = {ticket.key: ticket for ticket in tickets}
        collection = self.tickets
        synced_at = datetime.now(timezone.utc).isoformat()
        preserved = 0

        for ticket in by_key.values():
            existing = collection.get(ticket.id)
            embedding, embedding_hash = ticket.embedding, ticket.embedding_hash
            if embedding is None and existing and existing.get("embedding"):
                previous = Ticket.model_validate(existing)
                if not ticket.text_changed(previous):
                    embedding, embedding_hash = previous.embedding, previous.embedding_hash
                    preserved += 1

            doc = ticket.model_dump(exclude={"embedding", "embedding_hash"})
            doc["_key"] = ticket.id
            doc["embedding"] = embedding
            doc["embedding_hash"] = embedding_hash
            doc["synced_at"] = synced_at
            collection.insert(doc, overwrite=True)

        logger.info("Stored tickets", count=len(by_key), embeddings_preserved=preserved)
        return len(by_key)

    def get_tickets(self, project_key: Optional[str] = None) -> list[Ticket]:
        """Load stored tickets (with their embeddings), optionally for one project"""
        if project_key:
            cursor = self._db.aql.execute(
                "FOR t IN @@col FILTER t.project_key == @project RETURN t",
                bind_vars={"@col": TICKETS_COLLECTION, "project": project_key},
            )
        else:
            cursor = self.tickets.all()
        return [Ticket.model_validate(doc) for doc in cursor]

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        doc = self.tickets.get(ticket_id)
        return Ticket.model_validate(doc) if doc else None

    # EmbeddingStore

    def load_embedding(self, ticket_id: str) -> Optional[tuple[list[float], Optional[str]]]:
        """Stored vector and the hash of the text it was computed from"""
        try:
            doc = self.tickets.get(ticket_id)
        except ArangoError as e:
            raise EmbeddingStoreError(f"Failed to load embedding for {ticket_id}: {e}") from e
        if not doc or not doc.get("embedding"):
            return None
        return doc["embedding"], doc.get("embedding_hash")

    def store_embedding(self, ticket_id: str, vector: list[float], text_hash: str) -> None:
        try:
            if not self.tickets.has(ticket_id):
                logger.debug("Not persisting embedding for unknown ticket", ticket_id=ticket_id)
                return
            self.tickets.update({"_key": ticket_id, "embedding": vector, "embedding_hash": text_hash})
        except ArangoError as e:
            raise EmbeddingStoreError(f"Failed to store embedding for {ticket_id}: {e}") from e

    def delete_embedding(self, ticket_id: str) -> None:
        try:
            if self.tickets.has(ticket_id):
                self.tickets.update(
                    {"_key": ticket_id, "embedding": None, "embedding_hash": None},
                    keep_none=True,
                )
        except ArangoError as e:
            raise EmbeddingStoreError(f"Failed to delete embedding for {ticket_id}: {e}") from e

    def clear_embeddings(self) -> None:
        """Drop every stored embedding (frees space, vectors regenerate on demand)"""
        try:
            self._db.aql.execute(
                "FOR t IN @@col FILTER t.embedding != null "
                "UPDATE t WITH { embedding: null, embedding_hash: null } IN @@col",
                bind_vars={"@col": TICKETS_COLLECTION},
            )
        except ArangoError as e:
            raise EmbeddingStoreError(f"Failed to clear embeddings: {e}") from e
        logger.info("Cleared stored embeddings")
