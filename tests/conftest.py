"""Shared fixtures: ticket factory, fake embedding provider, fake ArangoDB"""

import asyncio
from typing import Optional

import pytest
from arango.exceptions import ArangoClientError

from shared.schemas.ticket import Ticket


def make_ticket(key: str, **fields) -> Ticket:
    """Ticket with sensible defaults; id is derived from the key unless given"""
    defaults = {
        "id": fields.pop("id", key.replace("-", "")),
        "key": key,
        "summary": f"Summary of {key}",
        "issue_type": "Task",
        "status": "To Do",
        "created": "2025-01-01T00:00:00.000+0000",
        "updated": "2025-01-01T00:00:00.000+0000",
    }
    defaults.update(fields)
    return Ticket(**defaults)


@pytest.fixture
def ticket():
    return make_ticket


class RecordingEmbedder:
    """
    Fake provider call.

    Vectors come from `vectors` keyed by ticket key (the text prefix before
    the first colon), falling back to a constant vector. Every call is
    recorded so tests can count provider requests.
    """

    def __init__(self, vectors: Optional[dict] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.vectors = vectors or {}
        self.error = error
        self.delay = delay
        self.calls: list[list[str]] = []

    async def __call__(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [list(self.vectors.get(t.split(":", 1)[0], [1.0, 0.0, 0.0])) for t in texts]

    @property
    def embedded_texts(self) -> list[str]:
        return [t for call in self.calls for t in call]


@pytest.fixture
def recording_embedder():
    return RecordingEmbedder


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: dict[str, dict] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ArangoClientError("storage quota exceeded")

    def has(self, key):
        self._check()
        return key in self.docs

    def get(self, key):
        self._check()
        doc = self.docs.get(key)
        return dict(doc) if doc is not None else None

    def insert(self, doc, overwrite=False):
        self._check()
        self.docs[doc["_key"]] = dict(doc)
        return {"_key": doc["_key"]}

    def update(self, doc, keep_none=True):
        self._check()
        self.docs[doc["_key"]].update(doc)
        return {"_key": doc["_key"]}

    def all(self):
        self._check()
        return iter([dict(d) for d in self.docs.values()])


class FakeAQL:
    def __init__(self, db: "FakeArangoDB"):
        self.db = db
        self.queries: list[str] = []

    def execute(self, query, bind_vars=None):
        bind_vars = bind_vars or {}
        self.queries.append(query)
        collection = self.db.collection(bind_vars["@col"])
        collection._check()
        if "UPDATE" in query:
            for doc in collection.docs.values():
                doc["embedding"] = None
                doc["embedding_hash"] = None
            return iter([])
        return iter([
            dict(d) for d in collection.docs.values()
            if d.get("project_key") == bind_vars.get("project")
        ])


class FakeArangoDB:
    """Just enough of python-arango's StandardDatabase for ArangoStorage"""

    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}
        self.aql = FakeAQL(self)

    def has_collection(self, name):
        return name in self.collections

    def create_collection(self, name):
        self.collections[name] = FakeCollection(name)
        return self.collections[name]

    def collection(self, name):
        return self.collections[name]

    def version(self):
        return "3.11.0"


@pytest.fixture
def fake_db():
    return FakeArangoDB()
