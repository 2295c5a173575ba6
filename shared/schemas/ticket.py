"""
Jira Ticket Intelligence - Ticket Schemas

Defines the canonical Ticket model consumed by the ranking and tree services
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class SortMode(str, Enum):
    """Ticket ordering modes offered to the presentation layer"""
    DEFAULT = "default"  # owned, related, parents, remainder
    ALPHABETICAL = "alphabetical"
    CREATED = "created"
    UPDATED = "updated"
    STATUS = "status"
    PRIORITY = "priority"
    ASSIGNEE = "assignee"


PRIORITY_RANK = {
    "Highest": 1,
    "High": 2,
    "Medium": 3,
    "Low": 4,
    "Lowest": 5,
}
UNKNOWN_PRIORITY_RANK = 999

# Fields whose change makes a cached embedding stale
EMBEDDED_TEXT_FIELDS = ("summary", "description")

# Jira sometimes emits offsets as +0000 instead of +00:00
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def priority_rank(priority: Optional[str]) -> int:
    """Rank a priority name, unknown or missing priorities last"""
    if not priority:
        return UNKNOWN_PRIORITY_RANK
    return PRIORITY_RANK.get(priority, UNKNOWN_PRIORITY_RANK)


def parse_timestamp(value: Union[str, datetime, None]) -> float:
    """
    Convert an ISO timestamp to epoch seconds.

    Naive values are treated as UTC. Missing or unparseable values return 0.0
    so they sort as the oldest entries.
    """
    if not value:
        return 0.0
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        text = _COMPACT_OFFSET.sub(r"\1:\2", text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


class TicketComment(BaseModel):
    """Individual ticket comment"""
    id: str
    author: str = ""
    body: str = ""
    created: Optional[str] = None
    updated: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class Ticket(BaseModel):
    """
    Canonical ticket record.
    This is the unit for tree building, ranking and embeddings.
    """
    # Identifiers
    id: str
    key: str
    project_key: Optional[str] = None

    # Content
    summary: str = ""
    description: Optional[str] = None

    # Classification
    issue_type: str = ""
    status: str = ""
    status_category: str = ""
    priority: Optional[str] = None
    resolution: Optional[str] = None

    # Ownership (email is the join key, display names are not)
    assignee: Optional[str] = None
    assignee_email: Optional[str] = None
    assignee_account_id: Optional[str] = None
    reporter: Optional[str] = None
    reporter_email: Optional[str] = None
    reporter_account_id: Optional[str] = None

    # Timestamps (ISO strings as delivered by Jira)
    created: str = ""
    updated: str = ""
    due_date: Optional[str] = None
    resolution_date: Optional[str] = None

    # Hierarchy
    parent_id: Optional[str] = None
    parent_key: Optional[str] = None
    subtasks: list[str] = Field(default_factory=list)

    # Metadata
    labels: list[str] = Field(default_factory=list)
    components: list[str] = Field(default_factory=list)
    comments: list[TicketComment] = Field(default_factory=list)
    attachment_count: int = 0

    # Cached embedding vector, cleared whenever summary/description change
    embedding: Optional[list[float]] = None
    # Hash of the text the embedding was computed from
    embedding_hash: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "id": "10042",
                "key": "EVO-42",
                "summary": "Checkout fails for saved cards",
                "issueType": "Story",
                "status": "In Progress",
                "priority": "High",
                "assigneeEmail": "dev@example.com",
                "created": "2025-01-15T10:30:00.000+0000",
                "updated": "2025-01-16T14:00:00.000+0000",
                "parentKey": "EVO-7",
                "labels": ["payments"],
            }
        }

    @property
    def has_parent_reference(self) -> bool:
        return bool(self.parent_id or self.parent_key)

    @property
    def created_ts(self) -> float:
        return parse_timestamp(self.created)

    @property
    def updated_ts(self) -> float:
        return parse_timestamp(self.updated)

    def text_changed(self, other: "Ticket") -> bool:
        """True if the embedded text fields differ from another version of this ticket"""
        return any(getattr(self, f) != getattr(other, f) for f in EMBEDDED_TEXT_FIELDS)

    def with_changes(self, **changes: Any) -> "Ticket":
        """
        Return an updated copy of the ticket.

        A change to summary or description drops the cached embedding so it
        is regenerated on the next similarity computation.
        """
        updated = self.model_copy(update=changes)
        if "embedding" not in changes and updated.text_changed(self):
            updated.embedding = None
            updated.embedding_hash = None
        return updated


class UserIdentity(BaseModel):
    """The current user as reported by the issue tracker"""
    email: Optional[str] = None
    display_name: Optional[str] = None
    account_id: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class TicketFilters(BaseModel):
    """Filters applied before sorting and tree building"""
    status: list[str] = Field(default_factory=list)
    assignee: list[str] = Field(default_factory=list)
    reporter: list[str] = Field(default_factory=list)
    issue_type: list[str] = Field(default_factory=list)
    component: list[str] = Field(default_factory=list)
    search: Optional[str] = None
    date_field: str = Field("updated", pattern="^(updated|created)$")
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    min_comments: int = 0
    hide_empty_parents: bool = False

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @property
    def is_empty(self) -> bool:
        return not (
            self.status or self.assignee or self.reporter or self.issue_type
            or self.component or self.search or self.date_from or self.date_to
            or self.min_comments > 0
        )
