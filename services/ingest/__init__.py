"""
JTI Ingest Service
Pulls tickets from Jira and persists them to ArangoDB

Components:
- client.py: Jira REST API client (token-paginated search)
- normalizer.py: Raw Jira issue to Ticket conversion (ADF, Epic Link parents)
- storage.py: ArangoDB storage layer, also the persisted embedding store
- cli.py: Command-line interface for fetching and syncing
"""

from .client import JiraClient, JiraError
from .normalizer import JiraIssueNormalizer, adf_to_text, normalize_issue
from .storage import ArangoStorage

__all__ = [
    "JiraClient",
    "JiraError",
    "JiraIssueNormalizer",
    "adf_to_text",
    "normalize_issue",
    "ArangoStorage",
]
