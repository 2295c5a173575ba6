"""
JTI API Service - FastAPI backend for ticket ordering, the ticket tree and
LLM summaries
"""

import os
from dataclasses import dataclass
from typing import Any, List, Optional

import structlog
from arango.exceptions import ArangoError
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from shared.schemas.embedding import AvailabilityStatus, EmbeddingConfig
from shared.schemas.ticket import SortMode, Ticket, TicketFilters
from services.embed import build_cache
from services.embed.cache import EmbeddingCache
from services.embed.errors import ProviderError, ProviderErrorKind
from services.embed.summarizer import TicketSummarizer
from services.ingest.storage import ArangoStorage
from services.ranking.availability import check_availability
from services.ranking.filters import apply_filters
from services.ranking.sorter import MAX_SEED_TICKETS, TicketSorter
from services.ranking.tree import build_tree, find_parent_path

logger = structlog.get_logger()

app = FastAPI(
    title="JTI API",
    description="Jira Ticket Intelligence - Ticket ordering, tree and summaries",
    version="0.1.0"
)

# CORS for UI access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configuration
ARANGODB_HOST = os.getenv("ARANGODB_HOST", "localhost")
ARANGODB_PORT = int(os.getenv("ARANGODB_PORT", "8529"))
ARANGODB_DB = os.getenv("ARANGODB_DB", "jti")
SIMILARITY_TIMEOUT = float(os.getenv("SIMILARITY_TIMEOUT", "60"))


@dataclass
class Services:
    """Per-process collaborators shared by the endpoints"""
    config: EmbeddingConfig
    cache: Optional[EmbeddingCache]
    summarizer: TicketSummarizer
    storage: Optional[ArangoStorage] = None

    @property
    def sorter(self) -> TicketSorter:
        return TicketSorter(
            cache=self.cache,
            max_seed_tickets=MAX_SEED_TICKETS,
            timeout=SIMILARITY_TIMEOUT,
        )


# Lazy init
_services: Optional[Services] = None


def get_services() -> Services:
    """Build the shared services on first use."""
    global _services
    if _services is None:
        storage = None
        try:
            storage = ArangoStorage(host=ARANGODB_HOST, port=ARANGODB_PORT, database=ARANGODB_DB)
        except (ArangoError, OSError) as e:
            logger.warning("ArangoDB unavailable, embeddings are memory-only", error=str(e))

        config = EmbeddingConfig.from_env()
        _services = Services(
            config=config,
            cache=build_cache(config, store=storage),
            summarizer=TicketSummarizer(config),
            storage=storage,
        )
    return _services


def provider_http_error(error: ProviderError) -> HTTPException:
    status = {
        ProviderErrorKind.NOT_CONFIGURED: 503,
        ProviderErrorKind.RATE_LIMITED: 429,
    }.get(error.kind, 502)
    return HTTPException(status_code=status, detail={"kind": error.kind.value, "message": str(error)})


def _public(tickets: List[Ticket]) -> List[Ticket]:
    """Drop embedding vectors from API responses"""
    return [t.model_copy(update={"embedding": None, "embedding_hash": None}) for t in tickets]


# ============================================================================
# Request / Response Models
# ============================================================================

class SortRequest(BaseModel):
    tickets: List[Ticket]
    mode: SortMode = SortMode.DEFAULT
    user_email: Optional[str] = Field(None, alias="userEmail")
    filters: Optional[TicketFilters] = None

    class Config:
        populate_by_name = True


class SortResponse(BaseModel):
    tickets: List[Ticket]
    requested_mode: SortMode
    applied_mode: SortMode
    fell_back: bool = False
    message: Optional[str] = None
    tiers: dict[str, List[str]] = {}


class TreeRequest(BaseModel):
    tickets: List[Ticket]
    mode: SortMode = SortMode.UPDATED
    user_email: Optional[str] = Field(None, alias="userEmail")
    filters: Optional[TicketFilters] = None

    class Config:
        populate_by_name = True


class TreeResponse(BaseModel):
    roots: List[dict]
    orphans: List[dict]
    applied_mode: SortMode


class TicketSummaryRequest(BaseModel):
    ticket: Ticket
    comments: Optional[List[str]] = None


class AggregatedSummaryRequest(BaseModel):
    tickets: List[Ticket]


class ChildrenSummaryRequest(BaseModel):
    parent: Ticket
    children: List[Ticket]


class SummaryResponse(BaseModel):
    summary: str


# ============================================================================
# Health
# ============================================================================

@app.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint."""
    database = "connected" if services.storage and services.storage.check_health() else "unavailable"
    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
        "llm_configured": services.config.is_configured,
        "cached_embeddings": len(services.cache) if services.cache else 0,
    }


# ============================================================================
# Ticket Endpoints
# ============================================================================

@app.get("/api/tickets", response_model=List[Ticket])
async def list_tickets(
    project: Optional[str] = Query(None, description="Project key"),
    services: Services = Depends(get_services),
):
    """List stored tickets."""
    if services.storage is None:
        raise HTTPException(status_code=503, detail="Ticket storage unavailable")
    try:
        return _public(services.storage.get_tickets(project_key=project))
    except ArangoError as e:
        logger.error("Failed to load tickets", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/api/tickets/{ticket_id}/parents", response_model=List[str])
async def get_parent_path(ticket_id: str, services: Services = Depends(get_services)):
    """Ancestor ids of a stored ticket, nearest first."""
    if services.storage is None:
        raise HTTPException(status_code=503, detail="Ticket storage unavailable")
    tickets = services.storage.get_tickets()
    if not any(t.id == ticket_id for t in tickets):
        raise HTTPException(status_code=404, detail="Ticket not found")
    return find_parent_path(ticket_id, tickets)


@app.post("/api/tickets/sort", response_model=SortResponse)
async def sort_tickets_endpoint(request: SortRequest, services: Services = Depends(get_services)):
    """Order tickets; smart mode reports a fallback instead of failing."""
    tickets = apply_filters(request.tickets, request.filters)
    outcome = await services.sorter.sort_with_outcome(tickets, request.mode, request.user_email)
    return SortResponse(
        tickets=_public(outcome.tickets),
        requested_mode=outcome.requested_mode,
        applied_mode=outcome.applied_mode,
        fell_back=outcome.fell_back,
        message=outcome.message,
        tiers=outcome.tiers,
    )


@app.post("/api/tickets/tree", response_model=TreeResponse)
async def ticket_tree(request: TreeRequest, services: Services = Depends(get_services)):
    """Filter, order and build the ticket tree plus the orphan list."""
    filters = request.filters or TicketFilters()
    tickets = apply_filters(request.tickets, filters)
    outcome = await services.sorter.sort_with_outcome(tickets, request.mode, request.user_email)
    tree = build_tree(outcome.tickets, hide_empty_parents=filters.hide_empty_parents)
    data = tree.to_dict()
    return TreeResponse(roots=data["roots"], orphans=data["orphans"], applied_mode=outcome.applied_mode)


# ============================================================================
# Similarity Endpoints
# ============================================================================

@app.get("/api/similarity/status", response_model=AvailabilityStatus)
async def similarity_status(services: Services = Depends(get_services)):
    """Probe the embedding provider (advisory)."""
    client = services.cache.client if services.cache else None
    return await check_availability(services.config, client=client)


@app.delete("/api/embeddings/cache")
async def clear_embedding_cache(services: Services = Depends(get_services)) -> dict[str, Any]:
    """
    Drop the in-memory embeddings.

    Persisted vectors are kept and reloaded on the next sort as long as the
    ticket text they were computed from is unchanged.
    """
    if services.cache is None:
        return {"cleared": 0}
    count = len(services.cache)
    services.cache.clear()
    return {"cleared": count}


# ============================================================================
# Summary Endpoints
# ============================================================================

@app.post("/api/summaries/ticket", response_model=SummaryResponse)
async def summarize_ticket(request: TicketSummaryRequest, services: Services = Depends(get_services)):
    """Summarize one ticket."""
    try:
        summary = await services.summarizer.summarize_ticket(request.ticket, request.comments)
    except ProviderError as e:
        raise provider_http_error(e)
    return SummaryResponse(summary=summary)


@app.post("/api/summaries/aggregated", response_model=SummaryResponse)
async def summarize_aggregated(request: AggregatedSummaryRequest, services: Services = Depends(get_services)):
    """Summarize a group of tickets."""
    try:
        summary = await services.summarizer.summarize_aggregated(request.tickets)
    except ProviderError as e:
        raise provider_http_error(e)
    return SummaryResponse(summary=summary)


@app.post("/api/summaries/children", response_model=SummaryResponse)
async def summarize_children(request: ChildrenSummaryRequest, services: Services = Depends(get_services)):
    """Summarize the children of an epic or initiative."""
    try:
        summary = await services.summarizer.summarize_children(request.parent, request.children)
    except ProviderError as e:
        raise provider_http_error(e)
    return SummaryResponse(summary=summary)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("API_PORT", "8000")))
