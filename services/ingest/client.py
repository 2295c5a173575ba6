"""
Jira REST Client
Fetches project issues from Jira Cloud (REST API v3) with basic auth
"""

import os
from typing import Any, Optional

import httpx
import structlog

from shared.schemas.ticket import Ticket, UserIdentity

from .normalizer import ISSUE_FIELDS, JiraIssueNormalizer

logger = structlog.get_logger()

# Environment-based defaults
DEFAULT_JIRA_URL = os.getenv("JIRA_URL", "")
DEFAULT_JIRA_EMAIL = os.getenv("JIRA_EMAIL", "")
DEFAULT_JIRA_TOKEN = os.getenv("JIRA_TOKEN", "")
DEFAULT_JIRA_PROJECT = os.getenv("JIRA_PROJECT", "EVO")

PAGE_SIZE = 100


class JiraError(Exception):
    """A Jira request failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class JiraClient:
    """
    Async client for the Jira REST API.

    Search uses the token-paginated /search/jql endpoint; every page is
    normalized to Ticket and the result is de-duplicated by issue key.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        email: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or DEFAULT_JIRA_URL).rstrip("/")
        self.email = email or DEFAULT_JIRA_EMAIL
        self.api_token = api_token or DEFAULT_JIRA_TOKEN
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self.normalizer = JiraIssueNormalizer()

    async def __aenter__(self) -> "JiraClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/rest/api/3"

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create a persistent HTTP client for connection reuse."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
            )
        return self._client

    async def _get(self, path: str, params: Optional[dict] = None) -> Any:
        if not self.base_url:
            raise JiraError("Jira URL not configured")
        url = f"{self.api_url}{path}"
        try:
            response = await self._get_client().get(
                url,
                params=params,
                auth=(self.email, self.api_token),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Jira request failed", path=path, status=status)
            raise JiraError(f"Jira request {path} failed: HTTP {status}", status_code=status) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Jira request failed", path=path, error=str(e))
            raise JiraError(f"Jira request {path} failed: {e}") from e

    async def check_health(self) -> bool:
        """Check if Jira is reachable with the configured credentials"""
        try:
            await self._get("/myself")
            return True
        except JiraError as e:
            logger.warning("Jira health check failed", error=str(e))
            return False

    async def get_current_user(self) -> UserIdentity:
        """The user the API token belongs to (email drives smart ordering)"""
        data = await self._get("/myself")
        return UserIdentity(
            email=data.get("emailAddress"),
            display_name=data.get("displayName"),
            account_id=data.get("accountId"),
        )

    async def search_issues(self, jql: str, sync_comments: bool = True) -> list[dict]:
        """
        Run a JQL search and return every raw issue across all pages.

        Args:
            jql: JQL query
            sync_comments: Also request the embedded comment page
        """
        fields = list(ISSUE_FIELDS)
        if sync_comments:
            fields.append("comment")

        issues: list[dict] = []
        page_token: Optional[str] = None
        page = 0

        while True:
            params = {"jql": jql, "maxResults": PAGE_SIZE, "fields": ",".join(fields)}
            if page_token:
                params["nextPageToken"] = page_token

            data = await self._get("/search/jql", params=params)
            batch = data.get("issues", []) or []
            issues.extend(batch)
            page += 1
            logger.debug("Fetched issue page", page=page, count=len(batch))

            page_token = data.get("nextPageToken")
            if data.get("isLast", True) or not page_token or not batch:
                break

        return issues

    async def fetch_all_tickets(
        self,
        project_key: Optional[str] = None,
        sync_comments: bool = True,
    ) -> list[Ticket]:
        """
        Fetch every ticket in a project.

        Returns:
            Tickets de-duplicated by key; a later copy of a key replaces an
            earlier one in place.
        """
        project_key = project_key or DEFAULT_JIRA_PROJECT
        logger.info("Fetching tickets from Jira", project=project_key)

        issues = await self.search_issues(
            f"project = {project_key} ORDER BY created DESC",
            sync_comments=sync_comments,
        )

        by_key: dict[str, Ticket] = {}
        for ticket in self.normalizer.normalize_many(issues):
            by_key[ticket.key] = ticket

        tickets = list(by_key.values())
        logger.info(
            "Fetched tickets",
            project=project_key,
            issues=len(issues),
            tickets=len(tickets),
        )
        return tickets

    async def get_ticket(self, ticket_key: str) -> Ticket:
        """Fetch one ticket by key"""
        fields = ",".join([*ISSUE_FIELDS, "comment"])
        data = await self._get(f"/issue/{ticket_key}", params={"fields": fields})
        return self.normalizer.normalize(data)

    async def close(self):
        """Close the client and cleanup"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
